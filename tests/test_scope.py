"""Tests for the enforcement scope controller."""

import pytest

from tests.conftest import BUILTIN, SUBSCRIPTION, FakeCloud, RecordingSleep
from vault_policy_harness.enforcement import EnforcementScopeController, PolicyDefinitionResolver
from vault_policy_harness.enforcement.scope import build_assignment_parameters
from vault_policy_harness.errors import ControlPlaneError
from vault_policy_harness.settings import Settings

RUN_ID = "20261018-120000-abc123"
SECRET_GUID = "98728c90-32c7-4049-8429-847dc0f4fe37"
KEY_GUID = "75c4f823-d65c-4f29-a733-01d0077fdbcb"


class _Boom(Exception):
    pass


class _InvisibleAssignmentsCloud(FakeCloud):
    async def get_policy_assignment(self, scope: str, name: str) -> dict | None:
        return None


class _ThrottledVisibilityCloud(FakeCloud):
    async def get_policy_assignment(self, scope: str, name: str) -> dict | None:
        raise ControlPlaneError("GET assignment failed with 429: throttled", status_code=429)


class _BrokenVisibilityCloud(FakeCloud):
    async def get_policy_assignment(self, scope: str, name: str) -> dict | None:
        raise _Boom()


def _controller(cloud: FakeCloud, settings: Settings, sleep: RecordingSleep) -> EnforcementScopeController:
    return EnforcementScopeController(cloud, PolicyDefinitionResolver(cloud, settings), settings, RUN_ID, sleep=sleep)


@pytest.fixture()
def controller(cloud: FakeCloud, settings: Settings, sleep: RecordingSleep) -> EnforcementScopeController:
    """Return a controller with two registered definitions.

    Args:
        cloud: In-memory cloud.
        settings: Test settings.
        sleep: Recording sleep.

    Returns:
        EnforcementScopeController under test.
    """
    cloud.register_definition(SECRET_GUID, "Secrets should have an expiration date")
    cloud.register_definition(KEY_GUID, "Keys should be the specified cryptographic type", ["effect", "allowedKeyTypes"])
    return _controller(cloud, settings, sleep)


class TestBuildAssignmentParameters:
    """Tests for build_assignment_parameters."""

    def test_effect_and_declared_parameters(self) -> None:
        """Effect is Deny and undeclared parameters are dropped."""
        params = build_assignment_parameters(
            frozenset({"effect", "allowedKeyTypes"}),
            {"allowedKeyTypes": ["RSA", "EC"], "unknown": 1},
        )
        assert params == {"effect": {"value": "Deny"}, "allowedKeyTypes": {"value": ["RSA", "EC"]}}

    def test_no_effect_parameter(self) -> None:
        """A definition without an effect parameter gets no effect value."""
        assert build_assignment_parameters(frozenset(), {}) == {}


class TestEnforcementScopeController:
    """Tests for activation and guaranteed release of the Deny scope."""

    @pytest.mark.asyncio()
    async def test_activation_creates_subscription_scope_deny_assignments(
        self, cloud: FakeCloud, controller: EnforcementScopeController
    ) -> None:
        """One Deny assignment per policy at subscription scope."""
        assignments = await controller.activate_deny_scope(
            [SECRET_GUID, KEY_GUID], {KEY_GUID: {"allowedKeyTypes": ["RSA", "EC"]}}
        )

        assert len(assignments) == 2
        assert {a.scope for a in assignments} == {f"/subscriptions/{SUBSCRIPTION}"}
        key_assignment = cloud.assignments[(assignments[1].scope, assignments[1].name)]
        assert key_assignment["properties"]["parameters"]["effect"] == {"value": "Deny"}
        assert key_assignment["properties"]["parameters"]["allowedKeyTypes"] == {"value": ["RSA", "EC"]}
        assert key_assignment["properties"]["displayName"].startswith(f"[harness {RUN_ID}]")
        assert assignments[1].definition_id == f"{BUILTIN}/{KEY_GUID}"

    @pytest.mark.asyncio()
    async def test_duplicate_policies_assigned_once(
        self, cloud: FakeCloud, controller: EnforcementScopeController
    ) -> None:
        """Repeated policy ids produce one assignment."""
        assignments = await controller.activate_deny_scope([SECRET_GUID, SECRET_GUID])
        assert len(assignments) == 1
        assert len(cloud.assignments) == 1

    @pytest.mark.asyncio()
    async def test_unresolved_policies_are_skipped(
        self, cloud: FakeCloud, controller: EnforcementScopeController
    ) -> None:
        """Zero resolvable policies means zero assignments."""
        async with controller.deny_scope(["unknown-policy"]) as assignments:
            assert assignments == []
        assert cloud.assignments == {}
        assert controller.last_report is not None
        assert controller.last_report.clean

    @pytest.mark.asyncio()
    async def test_release_on_normal_exit(self, cloud: FakeCloud, controller: EnforcementScopeController) -> None:
        """Every assignment is gone after the block."""
        async with controller.deny_scope([SECRET_GUID, KEY_GUID]) as assignments:
            assert len(cloud.assignments) == 2
        assert cloud.assignments == {}
        assert sorted(cloud.deleted_assignments) == sorted(a.name for a in assignments)

    @pytest.mark.asyncio()
    async def test_release_on_exception(self, cloud: FakeCloud, controller: EnforcementScopeController) -> None:
        """An error inside the block still releases the scope and propagates."""
        with pytest.raises(_Boom):
            async with controller.deny_scope([SECRET_GUID, KEY_GUID]):
                raise _Boom()
        assert cloud.assignments == {}

    @pytest.mark.asyncio()
    async def test_partial_activation_is_released(
        self, cloud: FakeCloud, controller: EnforcementScopeController
    ) -> None:
        """A failure creating the second assignment releases the first."""
        cloud.failing_assignment_creates.add(f"{BUILTIN}/{KEY_GUID}")
        with pytest.raises(Exception, match="InvalidPolicyParameters"):
            await controller.activate_deny_scope([SECRET_GUID, KEY_GUID])
        assert cloud.assignments == {}
        assert len(cloud.deleted_assignments) == 1

    @pytest.mark.asyncio()
    async def test_leaked_assignment_is_reported(
        self, cloud: FakeCloud, controller: EnforcementScopeController, sleep: RecordingSleep
    ) -> None:
        """A delete that keeps failing becomes a TeardownFailure after retrying."""
        async with controller.deny_scope([SECRET_GUID, KEY_GUID]) as assignments:
            cloud.failing_assignment_deletes.add(assignments[0].name)

        report = controller.last_report
        assert report is not None
        assert not report.clean
        assert report.released == [assignments[1].name]
        assert report.failures[0].kind == "assignment"
        assert report.failures[0].target == assignments[0].assignment_id
        # Two attempts, one pause between them.
        assert sleep.calls == [1.0]

    @pytest.mark.asyncio()
    async def test_invisible_assignments_do_not_fail_activation(
        self, settings: Settings, sleep: RecordingSleep
    ) -> None:
        """Visibility polling is bounded and only logged on timeout."""
        cloud = _InvisibleAssignmentsCloud()
        cloud.register_definition(SECRET_GUID, "Secrets should have an expiration date")
        assignments = await _controller(cloud, settings, sleep).activate_deny_scope([SECRET_GUID])
        assert len(assignments) == 1
        # 2s visibility bound with 1s interval: three lookups, two sleeps.
        assert sleep.calls == [1.0, 1.0]

    @pytest.mark.asyncio()
    async def test_settle_wait_after_activation(
        self, cloud: FakeCloud, settings: Settings, sleep: RecordingSleep
    ) -> None:
        """The configured settle period is slept once assignments exist."""
        cloud.register_definition(SECRET_GUID, "Secrets should have an expiration date")
        settled = settings.model_copy(update={"deny_settle_seconds": 30.0})
        async with _controller(cloud, settled, sleep).deny_scope([SECRET_GUID]):
            assert sleep.calls == [30.0]

    @pytest.mark.asyncio()
    async def test_failing_visibility_lookups_count_as_not_visible(
        self, settings: Settings, sleep: RecordingSleep
    ) -> None:
        """Provider errors while polling visibility do not abort activation."""
        cloud = _ThrottledVisibilityCloud()
        cloud.register_definition(SECRET_GUID, "Secrets should have an expiration date")
        controller = _controller(cloud, settings, sleep)

        async with controller.deny_scope([SECRET_GUID]) as assignments:
            assert len(assignments) == 1
            assert len(cloud.assignments) == 1

        assert cloud.assignments == {}
        assert sleep.calls == [1.0, 1.0]

    @pytest.mark.asyncio()
    async def test_error_during_visibility_wait_releases_assignments(
        self, settings: Settings, sleep: RecordingSleep
    ) -> None:
        """Assignments created before a visibility failure are still deleted."""
        cloud = _BrokenVisibilityCloud()
        cloud.register_definition(SECRET_GUID, "Secrets should have an expiration date")
        controller = _controller(cloud, settings, sleep)

        with pytest.raises(_Boom):
            async with controller.deny_scope([SECRET_GUID]):
                pass

        assert cloud.assignments == {}
        assert len(cloud.deleted_assignments) == 1
        assert controller.last_report is not None
        assert controller.last_report.clean

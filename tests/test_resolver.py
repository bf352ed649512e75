"""Tests for the policy definition resolver."""

import pytest

from tests.conftest import BUILTIN, SUBSCRIPTION, FakeCloud
from vault_policy_harness.enforcement import PolicyDefinitionResolver
from vault_policy_harness.errors import ResolutionError
from vault_policy_harness.settings import Settings

GUID = "98728c90-32c7-4049-8429-847dc0f4fe37"
SUBSCRIPTION_SCOPE = f"/subscriptions/{SUBSCRIPTION}/providers/Microsoft.Authorization/policyDefinitions"
INITIATIVE = "/providers/Microsoft.Authorization/policySetDefinitions/kv-initiative"


class _CountingCloud(FakeCloud):
    def __init__(self) -> None:
        super().__init__()
        self.definition_lookups = 0
        self.listings = 0

    async def get_policy_definition(self, definition_id: str) -> dict | None:
        self.definition_lookups += 1
        return await super().get_policy_definition(definition_id)

    async def list_policy_definitions(self) -> list[dict]:
        self.listings += 1
        return await super().list_policy_definitions()


class TestPolicyDefinitionResolver:
    """Tests for each resolution strategy."""

    @pytest.mark.asyncio()
    async def test_full_builtin_id_resolves_directly(self, cloud: FakeCloud, settings: Settings) -> None:
        """A provider-scoped id is looked up as given."""
        definition_id = cloud.register_definition(GUID, "Secrets should have an expiration date")
        resolved = await PolicyDefinitionResolver(cloud, settings).resolve(definition_id)
        assert resolved.definition_id == definition_id
        assert resolved.strategy == "direct"
        assert "effect" in resolved.declared_parameters

    @pytest.mark.asyncio()
    async def test_bare_guid_resolves_builtin(self, cloud: FakeCloud, settings: Settings) -> None:
        """A bare GUID is tried in the built-in scope."""
        cloud.register_definition(GUID, "Secrets should have an expiration date")
        resolved = await PolicyDefinitionResolver(cloud, settings).resolve(GUID.upper())
        assert resolved.definition_id == f"{BUILTIN}/{GUID}"
        assert resolved.strategy == "builtin"

    @pytest.mark.asyncio()
    async def test_custom_definition_resolves_in_subscription(self, cloud: FakeCloud, settings: Settings) -> None:
        """Custom definitions are found in the subscription scope."""
        cloud.register_definition("custom-secret-policy", "Custom secret policy", scope=SUBSCRIPTION_SCOPE)
        resolved = await PolicyDefinitionResolver(cloud, settings).resolve("custom-secret-policy")
        assert resolved.strategy == "subscription"
        assert resolved.definition_id.startswith(f"/subscriptions/{SUBSCRIPTION}/")

    @pytest.mark.asyncio()
    async def test_reference_id_resolves_through_initiative(self, cloud: FakeCloud, settings: Settings) -> None:
        """An initiative rule reference id maps to the member definition."""
        definition_id = cloud.register_definition(GUID, "Secrets should have an expiration date")
        cloud.set_definitions[INITIATIVE.lower()] = {
            "id": INITIATIVE,
            "properties": {
                "displayName": "Key Vault baseline",
                "policyDefinitions": [
                    {"policyDefinitionId": definition_id, "policyDefinitionReferenceId": "KV-SECRET-EXPIRY"},
                ],
            },
        }
        configured = settings.model_copy(update={"initiative_ids": [INITIATIVE]})
        resolved = await PolicyDefinitionResolver(cloud, configured).resolve("kv-secret-expiry")
        assert resolved.definition_id == definition_id
        assert resolved.strategy == "initiative"

    @pytest.mark.asyncio()
    async def test_initiative_id_resolves_as_set(self, cloud: FakeCloud, settings: Settings) -> None:
        """A set definition id resolves to the set itself."""
        cloud.set_definitions[INITIATIVE.lower()] = {
            "id": INITIATIVE,
            "properties": {"displayName": "Key Vault baseline", "policyDefinitions": []},
        }
        resolved = await PolicyDefinitionResolver(cloud, settings).resolve(INITIATIVE)
        assert resolved.is_set
        assert resolved.display_name == "Key Vault baseline"

    @pytest.mark.asyncio()
    async def test_display_name_search(self, cloud: FakeCloud, settings: Settings) -> None:
        """Display names match case-insensitively."""
        definition_id = cloud.register_definition(GUID, "Secrets should have an expiration date")
        resolved = await PolicyDefinitionResolver(cloud, settings).resolve("SECRETS SHOULD HAVE AN EXPIRATION DATE")
        assert resolved.definition_id == definition_id
        assert resolved.strategy == "name_search"

    @pytest.mark.asyncio()
    async def test_unresolvable_raises(self, cloud: FakeCloud, settings: Settings) -> None:
        """An identifier no strategy matches raises ResolutionError."""
        with pytest.raises(ResolutionError) as exc_info:
            await PolicyDefinitionResolver(cloud, settings).resolve("no-such-policy")
        assert exc_info.value.policy_identifier == "no-such-policy"

    @pytest.mark.asyncio()
    async def test_results_are_cached(self, settings: Settings) -> None:
        """A second resolve of the same identifier makes no calls."""
        cloud = _CountingCloud()
        cloud.register_definition(GUID, "Secrets should have an expiration date")
        resolver = PolicyDefinitionResolver(cloud, settings)
        await resolver.resolve(GUID)
        lookups = cloud.definition_lookups
        await resolver.resolve(GUID)
        assert cloud.definition_lookups == lookups

    @pytest.mark.asyncio()
    async def test_definitions_listed_once(self, settings: Settings) -> None:
        """The name search lists visible definitions only once."""
        cloud = _CountingCloud()
        resolver = PolicyDefinitionResolver(cloud, settings)
        for identifier in ("missing-one", "missing-two"):
            with pytest.raises(ResolutionError):
                await resolver.resolve(identifier)
        assert cloud.listings == 1

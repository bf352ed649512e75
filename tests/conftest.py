"""Test fixtures for vault-policy-harness.

Provides:
- FakeCloud: one in-memory object implementing IResourceClient,
  IVaultDataClient, IPolicyClient and IDirectoryClient
- RecordingSleep: an injectable sleep that records durations and never waits
- settings: Settings with tmp_path artifact directories and tiny poll bounds
- make_case / make_result: factories for catalog entries and results
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from vault_policy_harness.catalog.policy_catalog import get_catalog
from vault_policy_harness.core.models import (
    Category,
    CertificateInfo,
    CheckKind,
    KeyInfo,
    Mode,
    Narrative,
    Outcome,
    PolicyTestCase,
    SecretInfo,
    TestResult,
)
from vault_policy_harness.core.resource_ids import definition_guid
from vault_policy_harness.errors import (
    AuthorizationFailedError,
    ControlPlaneError,
    RequestDisallowedByPolicyError,
)
from vault_policy_harness.settings import Settings

SUBSCRIPTION = "00000000-0000-0000-0000-0000000000aa"
PRINCIPAL_ID = "11111111-2222-3333-4444-555555555555"
BUILTIN = "/providers/Microsoft.Authorization/policyDefinitions"
FIXED_TIME = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class RecordingSleep:
    """Async sleep replacement that records requested durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeCloud:
    """In-memory control plane, data plane, policy engine and directory.

    While any Deny assignment exists, creating a scenario vault or a
    non-baseline vault object is rejected with RequestDisallowedByPolicyError,
    unless its name is listed in ``allow_through``.
    """

    def __init__(self, subscription: str = SUBSCRIPTION) -> None:
        self.subscription = subscription
        self.resource_groups: dict[str, dict[str, Any]] = {}
        self.vaults: dict[str, dict[str, Any]] = {}
        self.workspaces: dict[str, dict[str, Any]] = {}
        self.diagnostics: dict[str, list[dict[str, Any]]] = {}
        self.role_assignments: list[dict[str, Any]] = []
        self.secrets: dict[str, dict[str, SecretInfo]] = {}
        self.keys: dict[str, dict[str, KeyInfo]] = {}
        self.certificates: dict[str, dict[str, CertificateInfo]] = {}
        self.definitions: dict[str, dict[str, Any]] = {}
        self.set_definitions: dict[str, dict[str, Any]] = {}
        self.assignments: dict[tuple[str, str], dict[str, Any]] = {}
        self.compliance_states: dict[str, list[dict[str, Any]]] = {}
        self.default_audit_state: str | None = None
        self.scenario_ids: set[str] = set()
        self.triggered_scopes: list[str] = []
        self.allow_through: set[str] = set()
        self.failing_assignment_deletes: set[str] = set()
        self.failing_assignment_creates: set[str] = set()
        self.data_plane_auth_failures = 0
        self.vault_ready = True
        self.fail_resource_group_delete = False
        self.token_claims: dict[str, Any] = {"oid": PRINCIPAL_ID}
        self.signed_in_user: dict[str, Any] | None = None
        self.users: dict[str, dict[str, Any]] = {}
        self.created_vaults: list[str] = []
        self.deleted_resource_groups: list[str] = []
        self.deleted_assignments: list[str] = []

    # ---- helpers ----------------------------------------------------------

    def _group_id(self, name: str) -> str:
        return f"/subscriptions/{self.subscription}/resourceGroups/{name}"

    def _deny_active(self) -> bool:
        return bool(self.assignments)

    def register_definition(
        self,
        guid: str,
        display_name: str,
        parameters: list[str] | None = None,
        scope: str = BUILTIN,
    ) -> str:
        definition_id = f"{scope}/{guid}"
        self.definitions[definition_id.lower()] = {
            "id": definition_id,
            "name": guid,
            "properties": {
                "displayName": display_name,
                "parameters": {name: {"type": "String"} for name in (parameters or ["effect"])},
            },
        }
        return definition_id

    def register_catalog(self, cases: tuple[PolicyTestCase, ...] | None = None, skip: set[str] | None = None) -> None:
        """Register a built-in definition for every catalog case not in ``skip``."""
        for case in cases or get_catalog():
            if skip and case.id in skip:
                continue
            self.register_definition(
                definition_guid(case.policy_identifier),
                case.name,
                ["effect", *case.deny_parameters.keys()],
            )

    # ---- IResourceClient --------------------------------------------------

    async def get_resource_group(self, name: str) -> dict[str, Any] | None:
        return self.resource_groups.get(name)

    async def create_resource_group(self, name: str, location: str, tags: dict[str, str]) -> dict[str, Any]:
        group = {"id": self._group_id(name), "name": name, "location": location, "tags": tags}
        self.resource_groups[name] = group
        return group

    async def delete_resource_group(self, name: str) -> None:
        if self.fail_resource_group_delete:
            raise ControlPlaneError("ScopeLocked", status_code=409, code="ScopeLocked")
        self.deleted_resource_groups.append(name)
        self.resource_groups.pop(name, None)

    async def get_vault(self, resource_group: str, name: str) -> dict[str, Any] | None:
        vault = self.vaults.get(name)
        if vault is None:
            return None
        state = "Succeeded" if self.vault_ready else "Provisioning"
        return {**vault, "properties": {**vault["properties"], "provisioningState": state}}

    async def create_vault(
        self,
        resource_group: str,
        name: str,
        location: str,
        properties: dict[str, Any],
        tags: dict[str, str],
    ) -> dict[str, Any]:
        if tags.get("role") == "scenario" and self._deny_active() and name not in self.allow_through:
            raise RequestDisallowedByPolicyError(
                f"Resource '{name}' was disallowed by policy", status_code=403, code="RequestDisallowedByPolicy"
            )
        vault_id = f"{self._group_id(resource_group)}/providers/Microsoft.KeyVault/vaults/{name}"
        vault = {
            "id": vault_id,
            "name": name,
            "location": location,
            "tags": tags,
            "properties": {**properties, "vaultUri": f"https://{name}.vault.azure.net/"},
        }
        self.vaults[name] = vault
        self.created_vaults.append(name)
        if tags.get("role") == "scenario":
            self.scenario_ids.add(vault_id)
        return vault

    async def get_log_workspace(self, resource_group: str, name: str) -> dict[str, Any] | None:
        return self.workspaces.get(name)

    async def create_log_workspace(self, resource_group: str, name: str, location: str) -> dict[str, Any]:
        workspace = {
            "id": f"{self._group_id(resource_group)}/providers/Microsoft.OperationalInsights/workspaces/{name}",
            "name": name,
            "location": location,
        }
        self.workspaces[name] = workspace
        return workspace

    async def list_diagnostic_settings(self, resource_id: str) -> list[dict[str, Any]]:
        return list(self.diagnostics.get(resource_id, []))

    async def create_diagnostic_setting(self, resource_id: str, name: str, workspace_id: str) -> dict[str, Any]:
        setting = {
            "name": name,
            "properties": {"workspaceId": workspace_id, "logs": [{"categoryGroup": "audit", "enabled": True}]},
        }
        self.diagnostics.setdefault(resource_id, []).append(setting)
        return setting

    async def create_role_assignment(self, scope: str, role_definition_id: str, principal_id: str) -> dict[str, Any]:
        assignment = {"scope": scope, "roleDefinitionId": role_definition_id, "principalId": principal_id}
        self.role_assignments.append(assignment)
        return assignment

    async def list_role_assignments(self, scope: str) -> list[dict[str, Any]]:
        return [a for a in self.role_assignments if a["scope"] == scope]

    # ---- IVaultDataClient -------------------------------------------------

    def _data_plane_write(self, vault_uri: str, name: str) -> None:
        if self.data_plane_auth_failures > 0:
            self.data_plane_auth_failures -= 1
            raise AuthorizationFailedError("Caller is not authorized", status_code=403, code="Forbidden")
        if not name.startswith("base-") and self._deny_active() and name not in self.allow_through:
            raise RequestDisallowedByPolicyError(
                f"Operation on '{name}' is forbidden by policy", status_code=403, code="ForbiddenByPolicy"
            )

    async def list_secrets(self, vault_uri: str) -> list[SecretInfo]:
        return list(self.secrets.get(vault_uri, {}).values())

    async def list_keys(self, vault_uri: str) -> list[KeyInfo]:
        return list(self.keys.get(vault_uri, {}).values())

    async def list_certificates(self, vault_uri: str) -> list[CertificateInfo]:
        return list(self.certificates.get(vault_uri, {}).values())

    def _track_object(self, vault_uri: str, collection: str, name: str) -> None:
        vault = next(v for v in self.vaults.values() if v["properties"]["vaultUri"] == vault_uri)
        if not name.startswith("base-"):
            self.scenario_ids.add(f"{vault['id']}/{collection}/{name}")

    async def set_secret(
        self,
        vault_uri: str,
        name: str,
        value: str,
        expires_on: datetime | None,
        content_type: str | None,
    ) -> str:
        self._data_plane_write(vault_uri, name)
        self.secrets.setdefault(vault_uri, {})[name] = SecretInfo(name, expires_on, content_type)
        self._track_object(vault_uri, "secrets", name)
        return f"{vault_uri}secrets/{name}"

    async def create_key(
        self,
        vault_uri: str,
        name: str,
        key_type: str,
        key_size: int | None,
        curve: str | None,
        expires_on: datetime | None,
    ) -> str:
        self._data_plane_write(vault_uri, name)
        self.keys.setdefault(vault_uri, {})[name] = KeyInfo(name, key_type, key_size, curve, expires_on)
        self._track_object(vault_uri, "keys", name)
        return f"{vault_uri}keys/{name}"

    async def create_certificate(self, vault_uri: str, name: str, policy: dict[str, Any]) -> str:
        self._data_plane_write(vault_uri, name)
        key_props = policy["key_props"]
        self.certificates.setdefault(vault_uri, {})[name] = CertificateInfo(
            name=name,
            validity_months=policy["x509_props"]["validity_months"],
            issuer=policy["issuer"]["name"],
            key_type=key_props["kty"],
            key_size=key_props.get("key_size"),
            curve=key_props.get("crv"),
            lifetime_actions=tuple(a["action"]["action_type"] for a in policy["lifetime_actions"]),
        )
        self._track_object(vault_uri, "certificates", name)
        return f"{vault_uri}certificates/{name}"

    # ---- IPolicyClient ----------------------------------------------------

    async def get_policy_definition(self, definition_id: str) -> dict[str, Any] | None:
        return self.definitions.get(definition_id.lower())

    async def get_policy_set_definition(self, set_definition_id: str) -> dict[str, Any] | None:
        return self.set_definitions.get(set_definition_id.lower())

    async def list_policy_definitions(self) -> list[dict[str, Any]]:
        return list(self.definitions.values())

    async def create_policy_assignment(
        self,
        scope: str,
        name: str,
        definition_id: str,
        display_name: str,
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        if definition_id in self.failing_assignment_creates:
            raise ControlPlaneError("InvalidPolicyParameters", status_code=400, code="InvalidPolicyParameters")
        assignment = {
            "id": f"{scope}/providers/Microsoft.Authorization/policyAssignments/{name}",
            "name": name,
            "properties": {
                "policyDefinitionId": definition_id,
                "displayName": display_name,
                "parameters": parameters,
            },
        }
        self.assignments[(scope, name)] = assignment
        return assignment

    async def get_policy_assignment(self, scope: str, name: str) -> dict[str, Any] | None:
        return self.assignments.get((scope, name))

    async def delete_policy_assignment(self, scope: str, name: str) -> None:
        if name in self.failing_assignment_deletes:
            raise ControlPlaneError("InternalServerError", status_code=500)
        self.assignments.pop((scope, name), None)
        self.deleted_assignments.append(name)

    async def trigger_compliance_evaluation(self, scope: str) -> None:
        self.triggered_scopes.append(scope)

    async def query_compliance_states(self, resource_id: str) -> list[dict[str, Any]]:
        if resource_id in self.compliance_states:
            return list(self.compliance_states[resource_id])
        if self.default_audit_state and resource_id in self.scenario_ids:
            return [
                {
                    "policyDefinitionId": definition["id"],
                    "complianceState": self.default_audit_state,
                    "timestamp": "2026-10-18T12:00:00Z",
                }
                for definition in self.definitions.values()
            ]
        return []

    # ---- IDirectoryClient -------------------------------------------------

    def get_token_claims(self) -> dict[str, Any]:
        return dict(self.token_claims)

    async def get_signed_in_user(self) -> dict[str, Any] | None:
        return self.signed_in_user

    async def find_user(self, identifier: str) -> dict[str, Any] | None:
        if "#EXT#" in identifier:
            return next((u for upn, u in self.users.items() if upn.startswith(identifier)), None)
        return self.users.get(identifier)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def cloud() -> FakeCloud:
    """Return an empty in-memory cloud."""
    return FakeCloud()


@pytest.fixture()
def sleep() -> RecordingSleep:
    """Return a sleep that records durations without waiting."""
    return RecordingSleep()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Return settings pointing artifacts at tmp_path with tiny poll bounds.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        Settings for a fake subscription.
    """
    return Settings(
        subscription_id=SUBSCRIPTION,
        tenant_id="tenant-0001",
        client_ip_ranges=["203.0.113.10/32"],
        output_dir=tmp_path / "results",
        tracking_dir=tmp_path / ".tracking",
        resource_ready_attempts=3,
        resource_ready_interval_seconds=1.0,
        permission_propagation_delay_seconds=5.0,
        assignment_visibility_interval_seconds=1.0,
        assignment_visibility_timeout_seconds=2.0,
        assignment_delete_attempts=2,
        deny_settle_seconds=0.0,
        compliance_settle_seconds=0.0,
        compliance_poll_interval_seconds=1.0,
        compliance_max_wait_seconds=2.0,
    )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_case(
    case_id: str = "soft-delete",
    check: CheckKind = CheckKind.SOFT_DELETE,
    category: Category = Category.DATA_PROTECTION,
    policy_identifier: str = "1e66c121-a66a-4b1f-9b83-0fd99bf0fc2d",
    modes: tuple[Mode, ...] = (Mode.AUDIT, Mode.DENY, Mode.COMPLIANCE),
    requires_resource: bool = False,
    short_code: str = "sd",
    deny_parameters: dict[str, Any] | None = None,
) -> PolicyTestCase:
    """Build a PolicyTestCase with a placeholder narrative."""
    return PolicyTestCase(
        id=case_id,
        name=f"Policy {case_id}",
        category=category,
        policy_identifier=policy_identifier,
        supported_modes=frozenset(modes),
        requires_resource=requires_resource,
        short_code=short_code,
        check=check,
        narrative=Narrative(
            before_state="Vaults were created without the control.",
            requirement="The control must be enabled.",
            verification_method="Live inspection and platform verdicts.",
            benefits="Reduces exposure.",
            next_steps="Remediate non-compliant vaults.",
        ),
        deny_parameters=deny_parameters or {},
        framework_tags=("CIS 8.5",),
        remediation_snippet="az keyvault update --name <vault> --enable-purge-protection true",
    )


def make_result(
    case_id: str = "soft-delete",
    mode: Mode = Mode.AUDIT,
    outcome: Outcome = Outcome.PASS,
    category: Category = Category.DATA_PROTECTION,
    resource_id: str | None = None,
    policy_id: str = "1e66c121-a66a-4b1f-9b83-0fd99bf0fc2d",
) -> TestResult:
    """Build a TestResult with a fixed timestamp."""
    return TestResult(
        timestamp=FIXED_TIME,
        test_name=f"Policy {case_id} [{mode.value}]",
        case_id=case_id,
        category=category,
        policy_name=f"Policy {case_id}",
        policy_id=policy_id,
        mode=mode,
        outcome=outcome,
        details=f"{outcome.value} details",
        resource_id=resource_id,
        framework_tags=["CIS 8.5"],
    )

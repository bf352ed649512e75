"""Resource Manager REST client.

Implements IResourceClient and IPolicyClient against the management
endpoint:

- Resource groups, vaults, log analytics workspaces
- Diagnostic settings and role assignments
- Policy definitions, set definitions and assignments
- Policy Insights evaluation triggers and latest compliance states
"""

import uuid
from typing import Any

import httpx

from vault_policy_harness.adapters.http import RestAdapter
from vault_policy_harness.core.resource_ids import split_object_id, subscription_scope
from vault_policy_harness.errors import ControlPlaneError, ResourceNotFoundError
from vault_policy_harness.observability import get_logger
from vault_policy_harness.settings import Settings

logger = get_logger(__name__)

RESOURCE_GROUP_API = "2021-04-01"
VAULT_API = "2023-07-01"
WORKSPACE_API = "2022-10-01"
DIAGNOSTIC_API = "2021-05-01-preview"
ROLE_ASSIGNMENT_API = "2022-04-01"
POLICY_API = "2023-04-01"
POLICY_INSIGHTS_API = "2019-10-01"


class ArmClient(RestAdapter):
    """Async Resource Manager client.

    Args:
        settings: Harness settings (endpoint, token, subscription).
        client: Optional pre-built httpx client.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize ArmClient.

        Args:
            settings: Harness settings.
            client: Optional pre-built httpx client.
        """
        super().__init__(settings.arm_endpoint, settings.arm_token, settings.request_timeout_seconds, client)
        self._subscription = subscription_scope(settings.subscription_id)

    def _group(self, name: str) -> str:
        return f"{self._subscription}/resourceGroups/{name}"

    # -------------------------------------------------------------------------
    # Resource groups, vaults, workspaces
    # -------------------------------------------------------------------------

    async def get_resource_group(self, name: str) -> dict[str, Any] | None:
        return await self._get_or_none(self._group(name), {"api-version": RESOURCE_GROUP_API})

    async def create_resource_group(self, name: str, location: str, tags: dict[str, str]) -> dict[str, Any]:
        return await self._json(
            "PUT",
            self._group(name),
            params={"api-version": RESOURCE_GROUP_API},
            json={"location": location, "tags": tags},
        )

    async def delete_resource_group(self, name: str) -> None:
        await self._request("DELETE", self._group(name), params={"api-version": RESOURCE_GROUP_API})

    def _vault(self, resource_group: str, name: str) -> str:
        return f"{self._group(resource_group)}/providers/Microsoft.KeyVault/vaults/{name}"

    async def get_vault(self, resource_group: str, name: str) -> dict[str, Any] | None:
        return await self._get_or_none(self._vault(resource_group, name), {"api-version": VAULT_API})

    async def create_vault(
        self,
        resource_group: str,
        name: str,
        location: str,
        properties: dict[str, Any],
        tags: dict[str, str],
    ) -> dict[str, Any]:
        logger.debug("Creating vault", vault_name=name, resource_group=resource_group)
        return await self._json(
            "PUT",
            self._vault(resource_group, name),
            params={"api-version": VAULT_API},
            json={"location": location, "properties": properties, "tags": tags},
        )

    def _workspace(self, resource_group: str, name: str) -> str:
        return f"{self._group(resource_group)}/providers/Microsoft.OperationalInsights/workspaces/{name}"

    async def get_log_workspace(self, resource_group: str, name: str) -> dict[str, Any] | None:
        return await self._get_or_none(self._workspace(resource_group, name), {"api-version": WORKSPACE_API})

    async def create_log_workspace(self, resource_group: str, name: str, location: str) -> dict[str, Any]:
        return await self._json(
            "PUT",
            self._workspace(resource_group, name),
            params={"api-version": WORKSPACE_API},
            json={"location": location, "properties": {"sku": {"name": "PerGB2018"}, "retentionInDays": 30}},
        )

    # -------------------------------------------------------------------------
    # Diagnostics and roles
    # -------------------------------------------------------------------------

    async def list_diagnostic_settings(self, resource_id: str) -> list[dict[str, Any]]:
        body = await self._json(
            "GET",
            f"{resource_id}/providers/Microsoft.Insights/diagnosticSettings",
            params={"api-version": DIAGNOSTIC_API},
        )
        return list(body.get("value", []))

    async def create_diagnostic_setting(self, resource_id: str, name: str, workspace_id: str) -> dict[str, Any]:
        return await self._json(
            "PUT",
            f"{resource_id}/providers/Microsoft.Insights/diagnosticSettings/{name}",
            params={"api-version": DIAGNOSTIC_API},
            json={
                "properties": {
                    "workspaceId": workspace_id,
                    "logs": [{"categoryGroup": "audit", "enabled": True}],
                    "metrics": [{"category": "AllMetrics", "enabled": True}],
                }
            },
        )

    async def create_role_assignment(
        self,
        scope: str,
        role_definition_id: str,
        principal_id: str,
    ) -> dict[str, Any]:
        # Deterministic name so repeating a grant targets the same assignment.
        name = uuid.uuid5(uuid.NAMESPACE_URL, f"{scope}|{role_definition_id}|{principal_id}")
        try:
            return await self._json(
                "PUT",
                f"{scope}/providers/Microsoft.Authorization/roleAssignments/{name}",
                params={"api-version": ROLE_ASSIGNMENT_API},
                json={"properties": {"roleDefinitionId": role_definition_id, "principalId": principal_id}},
            )
        except ControlPlaneError as exc:
            if exc.code == "RoleAssignmentExists":
                logger.debug("Role assignment already exists", scope=scope, principal_id=principal_id)
                return {"name": str(name)}
            raise

    async def list_role_assignments(self, scope: str) -> list[dict[str, Any]]:
        return await self._paged(
            f"{scope}/providers/Microsoft.Authorization/roleAssignments",
            {"api-version": ROLE_ASSIGNMENT_API, "$filter": "atScope()"},
        )

    # -------------------------------------------------------------------------
    # Policy definitions and assignments
    # -------------------------------------------------------------------------

    async def get_policy_definition(self, definition_id: str) -> dict[str, Any] | None:
        return await self._get_or_none(definition_id, {"api-version": POLICY_API})

    async def get_policy_set_definition(self, set_definition_id: str) -> dict[str, Any] | None:
        return await self._get_or_none(set_definition_id, {"api-version": POLICY_API})

    async def list_policy_definitions(self) -> list[dict[str, Any]]:
        return await self._paged(
            f"{self._subscription}/providers/Microsoft.Authorization/policyDefinitions",
            {"api-version": POLICY_API},
        )

    def _assignment(self, scope: str, name: str) -> str:
        return f"{scope}/providers/Microsoft.Authorization/policyAssignments/{name}"

    async def create_policy_assignment(
        self,
        scope: str,
        name: str,
        definition_id: str,
        display_name: str,
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        return await self._json(
            "PUT",
            self._assignment(scope, name),
            params={"api-version": POLICY_API},
            json={
                "properties": {
                    "policyDefinitionId": definition_id,
                    "displayName": display_name,
                    "parameters": parameters,
                    "enforcementMode": "Default",
                }
            },
        )

    async def get_policy_assignment(self, scope: str, name: str) -> dict[str, Any] | None:
        return await self._get_or_none(self._assignment(scope, name), {"api-version": POLICY_API})

    async def delete_policy_assignment(self, scope: str, name: str) -> None:
        try:
            await self._request("DELETE", self._assignment(scope, name), params={"api-version": POLICY_API})
        except ResourceNotFoundError:
            logger.debug("Policy assignment already absent", assignment_name=name)

    # -------------------------------------------------------------------------
    # Policy Insights
    # -------------------------------------------------------------------------

    async def trigger_compliance_evaluation(self, scope: str) -> None:
        await self._request(
            "POST",
            f"{scope}/providers/Microsoft.PolicyInsights/policyStates/latest/triggerEvaluation",
            params={"api-version": POLICY_INSIGHTS_API},
        )

    async def query_compliance_states(self, resource_id: str) -> list[dict[str, Any]]:
        """Return latest states for a vault, or for one object inside it.

        Object-level states are recorded as components of the vault's state,
        so object ids are queried at the vault with components expanded.
        """
        vault_id, collection, object_name = split_object_id(resource_id)
        params: dict[str, Any] = {"api-version": POLICY_INSIGHTS_API}
        if collection:
            params["$expand"] = "components"

        body = await self._json(
            "POST",
            f"{vault_id}/providers/Microsoft.PolicyInsights/policyStates/latest/queryResults",
            params=params,
        )
        states = list(body.get("value", []))
        if not collection:
            return states

        matched: list[dict[str, Any]] = []
        for state in states:
            for component in state.get("components") or []:
                if str(component.get("name", "")).lower() != str(object_name).lower():
                    continue
                matched.append(
                    {
                        "policyDefinitionId": state.get("policyDefinitionId"),
                        "complianceState": component.get("complianceState"),
                        "timestamp": component.get("timestamp", state.get("timestamp")),
                    }
                )
        return matched

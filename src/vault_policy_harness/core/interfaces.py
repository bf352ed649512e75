"""Abstract interfaces (Protocol classes) for the provider control plane.

The harness core depends on these protocols, never on the concrete REST
adapters. This keeps the provider APIs a black box and enables testing with
in-memory fakes.

Protocols defined:
- IResourceClient  : resource groups, vaults, workspaces, diagnostics, roles
- IVaultDataClient : secrets, keys and certificates inside a vault
- IPolicyClient    : definitions, assignments and compliance states
- IDirectoryClient : signed-in principal lookups

Getter methods return None when the resource does not exist. Mutating
methods raise ControlPlaneError subclasses on failure, in particular
AuthorizationFailedError and RequestDisallowedByPolicyError.
"""

from datetime import datetime
from typing import Any, Protocol

from vault_policy_harness.core.models import CertificateInfo, KeyInfo, SecretInfo


class IResourceClient(Protocol):
    """Contract for Resource Manager operations."""

    async def get_resource_group(self, name: str) -> dict[str, Any] | None:
        """Return the resource group, or None if it does not exist."""
        ...

    async def create_resource_group(
        self,
        name: str,
        location: str,
        tags: dict[str, str],
    ) -> dict[str, Any]:
        """Create or update a resource group.

        Args:
            name: Resource group name.
            location: Region.
            tags: Tags applied to the group.

        Returns:
            The resource group as returned by the platform.
        """
        ...

    async def delete_resource_group(self, name: str) -> None:
        """Start a cascading delete of the resource group."""
        ...

    async def get_vault(self, resource_group: str, name: str) -> dict[str, Any] | None:
        """Return the vault resource including ``properties``, or None."""
        ...

    async def create_vault(
        self,
        resource_group: str,
        name: str,
        location: str,
        properties: dict[str, Any],
        tags: dict[str, str],
    ) -> dict[str, Any]:
        """Create or update a vault.

        Raises:
            RequestDisallowedByPolicyError: If a Deny assignment blocked creation.
        """
        ...

    async def get_log_workspace(self, resource_group: str, name: str) -> dict[str, Any] | None:
        """Return the log analytics workspace, or None."""
        ...

    async def create_log_workspace(
        self,
        resource_group: str,
        name: str,
        location: str,
    ) -> dict[str, Any]:
        """Create a log analytics workspace."""
        ...

    async def list_diagnostic_settings(self, resource_id: str) -> list[dict[str, Any]]:
        """Return diagnostic settings attached to a resource."""
        ...

    async def create_diagnostic_setting(
        self,
        resource_id: str,
        name: str,
        workspace_id: str,
    ) -> dict[str, Any]:
        """Send audit logs of ``resource_id`` to ``workspace_id``."""
        ...

    async def create_role_assignment(
        self,
        scope: str,
        role_definition_id: str,
        principal_id: str,
    ) -> dict[str, Any]:
        """Grant a role on ``scope``. Existing identical grants are not an error."""
        ...

    async def list_role_assignments(self, scope: str) -> list[dict[str, Any]]:
        """Return role assignments visible at ``scope``."""
        ...


class IVaultDataClient(Protocol):
    """Contract for vault data-plane operations.

    Listing methods return normalized metadata and never secret values.
    """

    async def list_secrets(self, vault_uri: str) -> list[SecretInfo]:
        ...

    async def list_keys(self, vault_uri: str) -> list[KeyInfo]:
        ...

    async def list_certificates(self, vault_uri: str) -> list[CertificateInfo]:
        ...

    async def set_secret(
        self,
        vault_uri: str,
        name: str,
        value: str,
        expires_on: datetime | None,
        content_type: str | None,
    ) -> str:
        """Create a secret version.

        Returns:
            The secret identifier URL.
        """
        ...

    async def create_key(
        self,
        vault_uri: str,
        name: str,
        key_type: str,
        key_size: int | None,
        curve: str | None,
        expires_on: datetime | None,
    ) -> str:
        """Create a key.

        Returns:
            The key identifier URL.
        """
        ...

    async def create_certificate(
        self,
        vault_uri: str,
        name: str,
        policy: dict[str, Any],
    ) -> str:
        """Start certificate creation from an issuance policy.

        Returns:
            The certificate identifier URL.
        """
        ...


class IPolicyClient(Protocol):
    """Contract for policy definition, assignment and compliance operations."""

    async def get_policy_definition(self, definition_id: str) -> dict[str, Any] | None:
        """Return a definition by its full resource id, or None."""
        ...

    async def get_policy_set_definition(self, set_definition_id: str) -> dict[str, Any] | None:
        """Return a set definition (initiative) by its full resource id, or None."""
        ...

    async def list_policy_definitions(self) -> list[dict[str, Any]]:
        """Return every definition visible to the subscription (built-in and custom)."""
        ...

    async def create_policy_assignment(
        self,
        scope: str,
        name: str,
        definition_id: str,
        display_name: str,
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        """Create an enforced assignment at ``scope``."""
        ...

    async def get_policy_assignment(self, scope: str, name: str) -> dict[str, Any] | None:
        ...

    async def delete_policy_assignment(self, scope: str, name: str) -> None:
        """Delete an assignment. Deleting a missing assignment is not an error."""
        ...

    async def trigger_compliance_evaluation(self, scope: str) -> None:
        """Ask the platform to re-evaluate compliance for ``scope``."""
        ...

    async def query_compliance_states(self, resource_id: str) -> list[dict[str, Any]]:
        """Return the latest policy states recorded for a resource.

        Each state carries at least ``policyDefinitionId``, ``complianceState``
        and ``timestamp``.
        """
        ...


class IDirectoryClient(Protocol):
    """Contract for directory lookups used to resolve the signed-in principal."""

    def get_token_claims(self) -> dict[str, Any]:
        """Return the unverified claims of the management bearer token."""
        ...

    async def get_signed_in_user(self) -> dict[str, Any] | None:
        ...

    async def find_user(self, identifier: str) -> dict[str, Any] | None:
        """Look up a user by user principal name or mail."""
        ...

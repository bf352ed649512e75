"""Resource lifecycle manager.

Creates or reuses everything a run needs, always in this order of preference:
the tracking manifest, then the live platform, then creation.

- Resource group and log analytics workspace
- The baseline vault: compliant in every dimension the catalog checks, and
  seeded with compliant secrets, keys and a certificate
- Scenario vaults: one per (case, mode), non-compliant in exactly one
  vault-level dimension
- Scenario objects: one secret, key or certificate per (case, mode) inside the
  baseline vault, non-compliant in exactly one object-level dimension

Data-plane writes retry exactly once after the permission propagation delay
when the role grant has not reached the vault yet.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from secrets import token_urlsafe
from typing import Any, TypeVar

from vault_policy_harness.core.interfaces import IResourceClient, IVaultDataClient
from vault_policy_harness.core.models import (
    CheckKind,
    Mode,
    PolicyTestCase,
    ResourceKind,
    TeardownFailure,
    TrackedResource,
)
from vault_policy_harness.core.polling import SleepFn, poll_until
from vault_policy_harness.core.resource_ids import object_resource_id, subscription_scope
from vault_policy_harness.errors import (
    AuthorizationFailedError,
    ControlPlaneError,
    ProvisioningError,
    RequestDisallowedByPolicyError,
    ResourceNotFoundError,
)
from vault_policy_harness.identity.principal import PrincipalResolver
from vault_policy_harness.observability import get_logger
from vault_policy_harness.settings import Settings
from vault_policy_harness.tracking.naming import (
    baseline_object_name,
    baseline_vault_name,
    log_workspace_name,
    object_name,
    resource_name,
)
from vault_policy_harness.tracking.store import TrackingStore

logger = get_logger(__name__)

T = TypeVar("T")

KEY_VAULT_ADMINISTRATOR_ROLE = "00482a5a-887f-4fb3-b363-3b7fe8e74483"
DIAGNOSTIC_SETTING_NAME = "kvh-audit-logs"
OBJECT_EXPIRY_DAYS = 90

_VAULT_CHECKS = {
    CheckKind.SOFT_DELETE,
    CheckKind.PURGE_PROTECTION,
    CheckKind.RBAC_MODEL,
    CheckKind.FIREWALL,
    CheckKind.DIAGNOSTIC_LOGGING,
}


# ---------------------------------------------------------------------------
# Resource shapes
# ---------------------------------------------------------------------------


def baseline_vault_properties(settings: Settings) -> dict[str, Any]:
    """Vault properties that satisfy every vault-level check."""
    return {
        "tenantId": settings.tenant_id,
        "sku": {"family": "A", "name": "premium"},
        "enableSoftDelete": True,
        "softDeleteRetentionInDays": 90,
        "enablePurgeProtection": True,
        "enableRbacAuthorization": True,
        "publicNetworkAccess": "Enabled",
        "networkAcls": {
            "defaultAction": "Deny",
            "bypass": "AzureServices",
            "ipRules": [{"value": cidr} for cidr in settings.client_ip_ranges],
            "virtualNetworkRules": [],
        },
    }


def noncompliant_vault_properties(check: CheckKind, settings: Settings) -> dict[str, Any]:
    """Baseline properties broken in exactly the dimension ``check`` inspects.

    Diagnostic logging is broken by omitting the diagnostic setting, so its
    properties equal the baseline.

    Raises:
        ValueError: If ``check`` is not a vault-level check.
    """
    if check not in _VAULT_CHECKS:
        raise ValueError(f"{check.value} is not a vault-level check")

    properties = baseline_vault_properties(settings)
    if check == CheckKind.SOFT_DELETE:
        properties["enableSoftDelete"] = False
        properties.pop("softDeleteRetentionInDays")
        properties.pop("enablePurgeProtection")
    elif check == CheckKind.PURGE_PROTECTION:
        properties.pop("enablePurgeProtection")
    elif check == CheckKind.RBAC_MODEL:
        properties["enableRbacAuthorization"] = False
        properties["accessPolicies"] = []
    elif check == CheckKind.FIREWALL:
        properties["networkAcls"] = {"defaultAction": "Allow", "bypass": "AzureServices"}
    return properties


def certificate_policy(
    subject: str,
    validity_months: int = 12,
    issuer: str = "Self",
    key_type: str = "RSA",
    key_size: int | None = 4096,
    lifetime_action: str = "AutoRenew",
) -> dict[str, Any]:
    """Build a certificate issuance policy in the vault data-plane shape."""
    key_props: dict[str, Any] = {"exportable": True, "kty": key_type, "reuse_key": False}
    if key_size is not None:
        key_props["key_size"] = key_size
    return {
        "key_props": key_props,
        "secret_props": {"contentType": "application/x-pkcs12"},
        "x509_props": {"subject": f"CN={subject}", "validity_months": validity_months},
        "issuer": {"name": issuer},
        "lifetime_actions": [
            {"trigger": {"lifetime_percentage": 80}, "action": {"action_type": lifetime_action}}
        ],
    }


class ResourceLifecycleManager:
    """Provisions and tears down the resources of one run.

    Args:
        resource_client: Resource Manager operations.
        vault_client: Vault data-plane operations.
        principal_resolver: Resolves the principal granted data-plane access.
        store: Tracking store of the run.
        settings: Harness settings.
        sleep: Sleep coroutine function, injectable for tests.
    """

    def __init__(
        self,
        resource_client: IResourceClient,
        vault_client: IVaultDataClient,
        principal_resolver: PrincipalResolver,
        store: TrackingStore,
        settings: Settings,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the manager.

        Args:
            resource_client: Resource Manager operations.
            vault_client: Vault data-plane operations.
            principal_resolver: Principal resolver.
            store: Tracking store.
            settings: Harness settings.
            sleep: Sleep coroutine function.
        """
        self._resources = resource_client
        self._vaults = vault_client
        self._principals = principal_resolver
        self._store = store
        self._settings = settings
        self._sleep = sleep
        self._baseline: TrackedResource | None = None
        self._baseline_uri: str | None = None
        self._granted_scopes: set[str] = set()

    @property
    def run_id(self) -> str:
        return self._store.run_id

    @property
    def resource_group(self) -> str:
        return self._store.resource_group

    def _tags(self, **extra: str) -> dict[str, str]:
        return {"purpose": "kv-policy-harness", "runId": self.run_id, **extra}

    def _track(self, kind: ResourceKind, name: str, resource: dict[str, Any]) -> TrackedResource:
        return self._store.record(
            TrackedResource(
                kind=kind,
                name=name,
                platform_resource_id=resource["id"],
                location=resource.get("location", self._settings.location),
                created_at=datetime.now(UTC),
            )
        )

    # -------------------------------------------------------------------------
    # Shared infrastructure
    # -------------------------------------------------------------------------

    async def ensure_resource_group(self) -> TrackedResource:
        """Reuse or create the run's resource group.

        Returns:
            The tracked resource group.
        """
        name = self.resource_group
        tracked = self._store.find(ResourceKind.RESOURCE_GROUP, name)
        if tracked is not None:
            return tracked

        live = await self._resources.get_resource_group(name)
        if live is not None:
            logger.info("Adopting existing resource group", resource_group=name)
            return self._track(ResourceKind.RESOURCE_GROUP, name, live)

        try:
            created = await self._resources.create_resource_group(name, self._settings.location, self._tags())
        except ControlPlaneError as exc:
            raise ProvisioningError(f"Resource group {name} could not be created: {exc.message}") from exc
        logger.info("Resource group created", resource_group=name, location=self._settings.location)
        return self._track(ResourceKind.RESOURCE_GROUP, name, created)

    async def ensure_log_workspace(self) -> TrackedResource:
        """Reuse or create the workspace receiving baseline vault audit logs."""
        await self.ensure_resource_group()
        name = log_workspace_name(self.run_id)
        tracked = self._store.find(ResourceKind.LOG_WORKSPACE, name)
        if tracked is not None:
            return tracked

        live = await self._resources.get_log_workspace(self.resource_group, name)
        if live is not None:
            return self._track(ResourceKind.LOG_WORKSPACE, name, live)

        try:
            created = await self._resources.create_log_workspace(self.resource_group, name, self._settings.location)
        except ControlPlaneError as exc:
            raise ProvisioningError(f"Log workspace {name} could not be created: {exc.message}") from exc
        logger.info("Log workspace created", workspace_name=name)
        return self._track(ResourceKind.LOG_WORKSPACE, name, created)

    # -------------------------------------------------------------------------
    # Vaults
    # -------------------------------------------------------------------------

    async def _wait_until_ready(self, name: str) -> dict[str, Any]:
        async def _fetch() -> dict[str, Any] | None:
            vault = await self._resources.get_vault(self.resource_group, name)
            if vault and vault.get("properties", {}).get("provisioningState") == "Succeeded":
                return vault
            return None

        vault = await poll_until(
            _fetch,
            attempts=self._settings.resource_ready_attempts,
            interval_seconds=self._settings.resource_ready_interval_seconds,
            sleep=self._sleep,
        )
        if vault is None:
            raise ProvisioningError(
                f"Vault {name} did not reach provisioningState Succeeded after "
                f"{self._settings.resource_ready_attempts} polls"
            )
        return vault

    async def _ensure_vault(
        self,
        name: str,
        properties: dict[str, Any],
        tags: dict[str, str],
        reuse: bool = True,
    ) -> tuple[TrackedResource, dict[str, Any]]:
        """Reuse or create a vault and wait until it is ready.

        With ``reuse`` off, an existing vault of that name is an error: the
        caller needs the creation call itself.

        Raises:
            RequestDisallowedByPolicyError: If a Deny assignment blocked creation.
            ProvisioningError: If creation failed otherwise, never completed, or
                the vault already exists and ``reuse`` is off.
        """
        tracked = self._store.find(ResourceKind.VAULT, name)
        live = await self._resources.get_vault(self.resource_group, name)
        if live is not None:
            if not reuse:
                raise ProvisioningError(f"Vault {name} already exists; creation was not exercised")
            if tracked is None:
                logger.info("Adopting existing vault", vault_name=name)
                tracked = self._track(ResourceKind.VAULT, name, live)
            return tracked, await self._wait_until_ready(name)

        try:
            created = await self._resources.create_vault(
                self.resource_group, name, self._settings.location, properties, tags
            )
        except RequestDisallowedByPolicyError:
            raise
        except ControlPlaneError as exc:
            raise ProvisioningError(f"Vault {name} could not be created: {exc.message}") from exc

        tracked = self._track(ResourceKind.VAULT, name, created)
        logger.info("Vault created", vault_name=name)
        return tracked, await self._wait_until_ready(name)

    async def _grant_data_plane_access(self, scope: str) -> None:
        if scope in self._granted_scopes:
            return
        principal_id = await self._principals.resolve_principal_id()
        role_definition_id = (
            f"{subscription_scope(self._settings.subscription_id)}"
            f"/providers/Microsoft.Authorization/roleDefinitions/{KEY_VAULT_ADMINISTRATOR_ROLE}"
        )
        try:
            await self._resources.create_role_assignment(scope, role_definition_id, principal_id)
        except ControlPlaneError as exc:
            raise ProvisioningError(f"Role grant on {scope} failed: {exc.message}") from exc
        self._granted_scopes.add(scope)
        logger.info("Key Vault Administrator granted", scope=scope, principal_id=principal_id)

    async def _with_auth_retry(self, description: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a data-plane operation, retrying once after an authorization failure."""
        try:
            return await operation()
        except AuthorizationFailedError as exc:
            logger.info(
                "Authorization not yet propagated; retrying once",
                operation=description,
                delay_seconds=self._settings.permission_propagation_delay_seconds,
                error=exc.message,
            )
        await self._sleep(self._settings.permission_propagation_delay_seconds)
        return await operation()

    async def ensure_baseline_vault(self) -> TrackedResource:
        """Reuse or create the fully-compliant baseline vault.

        Returns:
            The tracked baseline vault.

        Raises:
            ProvisioningError: If any part of the baseline could not be provisioned.
        """
        if self._baseline is not None:
            return self._baseline

        await self.ensure_resource_group()
        workspace = await self.ensure_log_workspace()
        name = baseline_vault_name(self.run_id)

        try:
            tracked, vault = await self._ensure_vault(
                name, baseline_vault_properties(self._settings), self._tags(role="baseline")
            )
        except RequestDisallowedByPolicyError as exc:
            raise ProvisioningError(f"Baseline vault {name} was blocked by policy: {exc.message}") from exc

        settings = await self._resources.list_diagnostic_settings(tracked.platform_resource_id)
        if not any(setting.get("name") == DIAGNOSTIC_SETTING_NAME for setting in settings):
            try:
                await self._resources.create_diagnostic_setting(
                    tracked.platform_resource_id, DIAGNOSTIC_SETTING_NAME, workspace.platform_resource_id
                )
            except ControlPlaneError as exc:
                raise ProvisioningError(f"Diagnostic setting on {name} failed: {exc.message}") from exc

        await self._grant_data_plane_access(tracked.platform_resource_id)
        vault_uri = vault.get("properties", {}).get("vaultUri")
        if not vault_uri:
            raise ProvisioningError(f"Baseline vault {name} has no vaultUri")

        try:
            await self._seed_baseline(vault_uri)
        except ControlPlaneError as exc:
            raise ProvisioningError(f"Seeding baseline vault {name} failed: {exc.message}") from exc

        self._baseline = tracked
        self._baseline_uri = vault_uri
        logger.info("Baseline vault ready", vault_name=name)
        return tracked

    def baseline_object_names(self) -> list[str]:
        """Names of the compliant objects seeded into the baseline vault."""
        return [baseline_object_name(kind, self.run_id) for kind in ("secret", "rsa", "ec", "cert")]

    async def _seed_baseline(self, vault_uri: str) -> None:
        secret_name, rsa_name, ec_name, cert_name = self.baseline_object_names()
        expires_on = datetime.now(UTC) + timedelta(days=OBJECT_EXPIRY_DAYS)

        existing_secrets = {s.name for s in await self._with_auth_retry(
            "list_secrets", lambda: self._vaults.list_secrets(vault_uri)
        )}
        if secret_name not in existing_secrets:
            await self._with_auth_retry(
                "set_secret",
                lambda: self._vaults.set_secret(vault_uri, secret_name, token_urlsafe(32), expires_on, "text/plain"),
            )

        existing_keys = {k.name for k in await self._vaults.list_keys(vault_uri)}
        if rsa_name not in existing_keys:
            await self._with_auth_retry(
                "create_key",
                lambda: self._vaults.create_key(vault_uri, rsa_name, "RSA", 4096, None, expires_on),
            )
        if ec_name not in existing_keys:
            await self._with_auth_retry(
                "create_key",
                lambda: self._vaults.create_key(vault_uri, ec_name, "EC", None, "P-256", expires_on),
            )

        existing_certificates = {c.name for c in await self._vaults.list_certificates(vault_uri)}
        if cert_name not in existing_certificates:
            await self._with_auth_retry(
                "create_certificate",
                lambda: self._vaults.create_certificate(vault_uri, cert_name, certificate_policy(cert_name)),
            )
        logger.debug("Baseline objects present", vault_uri=vault_uri)

    # -------------------------------------------------------------------------
    # Scenarios
    # -------------------------------------------------------------------------

    async def ensure_scenario_resource(self, case: PolicyTestCase, mode: Mode) -> TrackedResource:
        """Create a vault non-compliant in the dimension ``case`` checks.

        Audit scenarios reuse a vault left by an earlier attempt of the run.
        Deny scenarios never do; an existing vault raises ProvisioningError.

        Args:
            case: A vault-level catalog entry.
            mode: Audit or Deny.

        Returns:
            The tracked scenario vault.

        Raises:
            RequestDisallowedByPolicyError: If a Deny assignment blocked creation.
            ProvisioningError: If the vault could not be provisioned, or a Deny
                scenario vault already exists.
        """
        if case.requires_resource:
            raise ValueError(f"Case {case.id} targets vault objects, not a vault")

        await self.ensure_resource_group()
        name = resource_name(case.short_code, mode, self.run_id)
        tracked, _ = await self._ensure_vault(
            name,
            noncompliant_vault_properties(case.check, self._settings),
            self._tags(role="scenario", case=case.id, mode=mode.value),
            reuse=mode != Mode.DENY,
        )
        return tracked

    async def seed_scenario_object(self, case: PolicyTestCase, mode: Mode) -> str:
        """Create an object non-compliant in the dimension ``case`` checks.

        The object lives in the baseline vault.

        Args:
            case: An object-level catalog entry.
            mode: Audit or Deny.

        Returns:
            The platform id of the created object.

        Raises:
            RequestDisallowedByPolicyError: If a Deny assignment blocked creation.
            ProvisioningError: If the baseline is unavailable or creation failed otherwise.
        """
        if not case.requires_resource:
            raise ValueError(f"Case {case.id} targets a vault, not vault objects")

        baseline = await self.ensure_baseline_vault()
        vault_uri = self._baseline_uri or ""
        name = object_name(case.short_code, mode, self.run_id)
        collection, operation = self._scenario_object(case.check, vault_uri, name)

        try:
            await self._with_auth_retry(f"seed {case.check.value}", operation)
        except RequestDisallowedByPolicyError:
            raise
        except ControlPlaneError as exc:
            raise ProvisioningError(f"Scenario object {name} could not be created: {exc.message}") from exc

        logger.info("Scenario object created", object_name=name, check=case.check.value, mode=mode.value)
        return object_resource_id(baseline.platform_resource_id, collection, name)

    def _scenario_object(
        self,
        check: CheckKind,
        vault_uri: str,
        name: str,
    ) -> tuple[str, Callable[[], Awaitable[str]]]:
        expires_on = datetime.now(UTC) + timedelta(days=OBJECT_EXPIRY_DAYS)
        vaults = self._vaults

        if check == CheckKind.SECRET_EXPIRATION:
            return "secrets", lambda: vaults.set_secret(vault_uri, name, token_urlsafe(32), None, "text/plain")
        if check == CheckKind.SECRET_CONTENT_TYPE:
            return "secrets", lambda: vaults.set_secret(vault_uri, name, token_urlsafe(32), expires_on, None)
        if check == CheckKind.KEY_EXPIRATION:
            return "keys", lambda: vaults.create_key(vault_uri, name, "RSA", 4096, None, None)
        if check == CheckKind.KEY_TYPE:
            return "keys", lambda: vaults.create_key(vault_uri, name, "RSA-HSM", 4096, None, expires_on)
        if check == CheckKind.KEY_RSA_MIN_SIZE:
            return "keys", lambda: vaults.create_key(vault_uri, name, "RSA", 2048, None, expires_on)
        if check == CheckKind.KEY_EC_CURVE:
            return "keys", lambda: vaults.create_key(vault_uri, name, "EC", None, "P-256K", expires_on)

        policies = {
            CheckKind.CERTIFICATE_VALIDITY: certificate_policy(name, validity_months=24),
            CheckKind.CERTIFICATE_ISSUER: certificate_policy(name, issuer="Unknown"),
            CheckKind.CERTIFICATE_KEY_TYPE: certificate_policy(name, key_type="RSA-HSM"),
            CheckKind.CERTIFICATE_AUTO_RENEWAL: certificate_policy(name, lifetime_action="EmailContacts"),
            CheckKind.CERTIFICATE_RSA_MIN_SIZE: certificate_policy(name, key_size=2048),
        }
        if check not in policies:
            raise ValueError(f"{check.value} is not an object-level check")
        policy = policies[check]
        return "certificates", lambda: vaults.create_certificate(vault_uri, name, policy)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def teardown_all(self) -> list[TeardownFailure]:
        """Delete the resource group (cascading) and the tracking manifest.

        The manifest is kept when the resource group delete fails so a later
        teardown can retry.

        Returns:
            Items that could not be released. Never raises.
        """
        failures: list[TeardownFailure] = []
        name = self.resource_group
        try:
            await self._resources.delete_resource_group(name)
            logger.info("Resource group deletion started", resource_group=name)
        except ResourceNotFoundError:
            logger.info("Resource group already gone", resource_group=name)
        except ControlPlaneError as exc:
            logger.error("Resource group deletion failed", resource_group=name, error=exc.message)
            failures.append(TeardownFailure(kind="resource_group", target=name, error=exc.message))
            return failures

        try:
            self._store.delete()
        except OSError as exc:
            logger.error("Tracking manifest removal failed", path=str(self._store.path), error=str(exc))
            failures.append(TeardownFailure(kind="manifest", target=str(self._store.path), error=str(exc)))

        self._baseline = None
        self._baseline_uri = None
        return failures

"""Compliance evaluator: decides whether a resource complies with a policy.

Two modes of judgement:

- Live: fetch the vault, its diagnostic settings or its objects and apply a
  pure check from ``checks.py``. Used for Compliance-mode scenarios against
  the baseline vault. Never mutates anything.
- Platform: ask the policy engine to re-evaluate the resource group, wait a
  settle period, then poll the latest recorded compliance state for the
  resource and definition. Used for Audit-mode scenarios. A state that never
  arrives yields a Pending verdict, which is never compliant.
"""

import asyncio
from collections.abc import Collection
from typing import Any

from vault_policy_harness.core.interfaces import IPolicyClient, IResourceClient, IVaultDataClient
from vault_policy_harness.core.models import (
    CheckKind,
    ComplianceState,
    ComplianceVerdict,
    Outcome,
    TrackedResource,
)
from vault_policy_harness.core.polling import SleepFn, attempts_for, poll_until
from vault_policy_harness.core.resource_ids import (
    definition_guid,
    resource_group_name,
    resource_group_scope,
)
from vault_policy_harness.errors import ControlPlaneError
from vault_policy_harness.evaluation.checks import (
    CHECK_TARGETS,
    TARGET_CERTIFICATES,
    TARGET_DIAGNOSTICS,
    TARGET_KEYS,
    TARGET_SECRETS,
    TARGET_VAULT,
    CheckParameters,
    run_check,
)
from vault_policy_harness.observability import get_logger
from vault_policy_harness.settings import Settings

logger = get_logger(__name__)

_PLATFORM_STATES = {
    "compliant": ComplianceState.COMPLIANT,
    "noncompliant": ComplianceState.NON_COMPLIANT,
}


def audit_outcome(verdict: ComplianceVerdict) -> Outcome:
    """Map a platform verdict on a deliberately non-compliant resource to an outcome.

    NonCompliant means the policy flagged it (Pass), Compliant means it did
    not (Fail). Pending and Unknown are Error, never Pass.
    """
    if verdict.state == ComplianceState.NON_COMPLIANT:
        return Outcome.PASS
    if verdict.state == ComplianceState.COMPLIANT:
        return Outcome.FAIL
    return Outcome.ERROR


def compliance_outcome(verdict: ComplianceVerdict) -> Outcome:
    """Map a live verdict on the baseline vault to an outcome."""
    return Outcome.PASS if verdict.is_compliant else Outcome.FAIL


class ComplianceEvaluator:
    """Judges resources live or through the platform policy engine.

    Args:
        resource_client: Resource Manager operations.
        vault_client: Vault data-plane operations.
        policy_client: Policy and compliance-state operations.
        settings: Harness settings (check parameters and polling bounds).
        sleep: Sleep coroutine function, injectable for tests.
    """

    def __init__(
        self,
        resource_client: IResourceClient,
        vault_client: IVaultDataClient,
        policy_client: IPolicyClient,
        settings: Settings,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the evaluator.

        Args:
            resource_client: Resource Manager operations.
            vault_client: Vault data-plane operations.
            policy_client: Policy and compliance-state operations.
            settings: Harness settings.
            sleep: Sleep coroutine function.
        """
        self._resources = resource_client
        self._vaults = vault_client
        self._policies = policy_client
        self._settings = settings
        self._sleep = sleep
        self._default_params = CheckParameters.from_settings(settings)

    # -------------------------------------------------------------------------
    # Live evaluation
    # -------------------------------------------------------------------------

    async def evaluate_live(
        self,
        resource: TrackedResource,
        check_kind: CheckKind,
        params: CheckParameters | None = None,
        *,
        object_names: Collection[str] | None = None,
    ) -> ComplianceVerdict:
        """Evaluate a vault against a live check.

        Args:
            resource: The tracked vault to inspect.
            check_kind: The check to apply.
            params: Check thresholds; defaults to the configured ones.
            object_names: Restrict object-level checks to these object names.
                None inspects every object in the vault.

        Returns:
            The verdict. Unknown when the vault no longer exists.
        """
        check_params = params or self._default_params
        vault = await self._resources.get_vault(
            resource_group_name(resource.platform_resource_id), resource.name
        )
        if vault is None:
            return ComplianceVerdict(
                state=ComplianceState.UNKNOWN,
                details=f"Vault {resource.name} not found",
            )

        target = CHECK_TARGETS[check_kind]
        subject: Any
        if target == TARGET_VAULT:
            subject = vault
        elif target == TARGET_DIAGNOSTICS:
            subject = await self._resources.list_diagnostic_settings(resource.platform_resource_id)
        else:
            subject = await self._list_objects(vault, target)
            if object_names is not None:
                wanted = set(object_names)
                subject = [item for item in subject if item.name in wanted]

        verdict = run_check(check_kind, subject, check_params)
        logger.info(
            "Live check evaluated",
            vault_name=resource.name,
            check=check_kind.value,
            state=verdict.state.value,
        )
        return verdict

    async def _list_objects(self, vault: dict[str, Any], target: str) -> list[Any]:
        vault_uri = vault.get("properties", {}).get("vaultUri")
        if not vault_uri:
            raise ControlPlaneError(f"Vault {vault.get('name')} has no vaultUri")
        if target == TARGET_SECRETS:
            return list(await self._vaults.list_secrets(vault_uri))
        if target == TARGET_KEYS:
            return list(await self._vaults.list_keys(vault_uri))
        if target == TARGET_CERTIFICATES:
            return list(await self._vaults.list_certificates(vault_uri))
        raise ValueError(f"Unknown check target {target!r}")

    # -------------------------------------------------------------------------
    # Platform evaluation
    # -------------------------------------------------------------------------

    async def evaluate_platform(
        self,
        resource_id: str,
        policy_id: str,
        max_wait_seconds: float | None = None,
    ) -> ComplianceVerdict:
        """Obtain the platform's recorded compliance state for a resource.

        Args:
            resource_id: Platform id of the vault or vault object.
            policy_id: Definition id (any shape) whose state is wanted.
            max_wait_seconds: Upper bound for polling after the settle period.
                Defaults to the configured compliance wait.

        Returns:
            Compliant or NonCompliant when a state was recorded, Unknown for
            other recorded states, Pending when nothing arrived in time.
        """
        wait = self._settings.compliance_max_wait_seconds if max_wait_seconds is None else max_wait_seconds
        scope = resource_group_scope(resource_id)

        try:
            await self._policies.trigger_compliance_evaluation(scope)
        except ControlPlaneError as exc:
            logger.warning(
                "Compliance evaluation trigger failed; relying on the platform schedule",
                scope=scope,
                error=exc.message,
            )

        if self._settings.compliance_settle_seconds > 0:
            await self._sleep(self._settings.compliance_settle_seconds)

        guid = definition_guid(policy_id)

        async def _fetch() -> dict[str, Any] | None:
            states = await self._policies.query_compliance_states(resource_id)
            matching = [
                state
                for state in states
                if definition_guid(str(state.get("policyDefinitionId", ""))) == guid
            ]
            if not matching:
                return None
            return max(matching, key=lambda state: str(state.get("timestamp", "")))

        latest = await poll_until(
            _fetch,
            attempts=attempts_for(wait, self._settings.compliance_poll_interval_seconds),
            interval_seconds=self._settings.compliance_poll_interval_seconds,
            sleep=self._sleep,
        )

        if latest is None:
            logger.warning(
                "No compliance state recorded in time",
                resource_id=resource_id,
                policy_guid=guid,
                max_wait_seconds=wait,
            )
            return ComplianceVerdict.pending(
                f"Platform evaluation pending: no state recorded within {wait:.0f}s"
            )

        raw_state = str(latest.get("complianceState", ""))
        state = _PLATFORM_STATES.get(raw_state.lower(), ComplianceState.UNKNOWN)
        details = f"Platform reported {raw_state or 'no state'} at {latest.get('timestamp', 'unknown time')}"
        logger.info(
            "Platform compliance state observed",
            resource_id=resource_id,
            policy_guid=guid,
            state=state.value,
        )
        return ComplianceVerdict(state=state, details=details)

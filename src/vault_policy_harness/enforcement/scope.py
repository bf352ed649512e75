"""Enforcement scope controller.

Creates temporary subscription-scope assignments with ``effect=Deny`` for the
Deny phase and guarantees their removal. Use through the ``deny_scope``
async context manager so release happens on normal exit, on exceptions and
on cancellation:

    async with controller.deny_scope(policy_ids, deny_parameters) as assignments:
        ...

A leaked Deny assignment keeps blocking unrelated work in the subscription,
so every release failure is reported as a TeardownFailure rather than
swallowed.
"""

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from vault_policy_harness.core.interfaces import IPolicyClient
from vault_policy_harness.core.models import TeardownFailure, TemporaryAssignment
from vault_policy_harness.core.polling import SleepFn, attempts_for, poll_until
from vault_policy_harness.core.resource_ids import subscription_scope
from vault_policy_harness.enforcement.resolver import PolicyDefinitionResolver
from vault_policy_harness.errors import ControlPlaneError, PropagationTimeout, ResolutionError, TeardownError
from vault_policy_harness.observability import get_logger
from vault_policy_harness.settings import Settings
from vault_policy_harness.tracking.naming import assignment_name

logger = get_logger(__name__)

DENY_EFFECT = "Deny"


@dataclass
class DeactivationReport:
    """Outcome of releasing the Deny scope.

    Attributes:
        released: Names of assignments that were deleted.
        failures: Assignments that could not be deleted.
    """

    released: list[str] = field(default_factory=list)
    failures: list[TeardownFailure] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failures


def build_assignment_parameters(
    declared: frozenset[str],
    deny_parameters: Mapping[str, Any],
) -> dict[str, dict[str, Any]]:
    """Build assignment parameters for a Deny assignment.

    Sets ``effect`` to Deny and adds the case's parameters, keeping only the
    ones the definition declares.

    Args:
        declared: Parameter names declared by the definition.
        deny_parameters: Case-specific parameter values.

    Returns:
        Parameters in ``{"name": {"value": ...}}`` form.
    """
    wanted: dict[str, Any] = {"effect": DENY_EFFECT, **deny_parameters}
    return {name: {"value": value} for name, value in wanted.items() if name in declared}


class EnforcementScopeController:
    """Activates and releases temporary Deny assignments.

    Args:
        policy_client: Policy assignment operations.
        resolver: Policy definition resolver.
        settings: Harness settings (subscription and polling bounds).
        run_id: Run identifier embedded in assignment names.
        sleep: Sleep coroutine function, injectable for tests.
    """

    def __init__(
        self,
        policy_client: IPolicyClient,
        resolver: PolicyDefinitionResolver,
        settings: Settings,
        run_id: str,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the controller.

        Args:
            policy_client: Policy assignment operations.
            resolver: Policy definition resolver.
            settings: Harness settings.
            run_id: Run identifier.
            sleep: Sleep coroutine function.
        """
        self._policies = policy_client
        self._resolver = resolver
        self._settings = settings
        self._run_id = run_id
        self._sleep = sleep
        self.last_report: DeactivationReport | None = None

    @property
    def scope(self) -> str:
        return subscription_scope(self._settings.subscription_id)

    async def activate_deny_scope(
        self,
        policy_ids: Sequence[str],
        deny_parameters: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> list[TemporaryAssignment]:
        """Create one Deny assignment per resolvable policy.

        Unresolvable identifiers are logged and skipped. If creating an
        assignment fails, the ones already created are released before the
        error propagates.

        Args:
            policy_ids: Policy identifiers to enforce.
            deny_parameters: Extra assignment parameters keyed by policy identifier.

        Returns:
            The created assignments, in input order.
        """
        parameters_by_policy = deny_parameters or {}
        created: list[TemporaryAssignment] = []

        try:
            for policy_id in dict.fromkeys(policy_ids):
                try:
                    resolved = await self._resolver.resolve(policy_id)
                except ResolutionError as exc:
                    logger.warning(
                        "Skipping Deny assignment for unresolved policy",
                        policy_identifier=exc.policy_identifier,
                        error=exc.message,
                    )
                    continue

                if "effect" not in resolved.declared_parameters:
                    logger.warning(
                        "Definition declares no effect parameter; assignment keeps its default effect",
                        definition_id=resolved.definition_id,
                    )

                name = assignment_name(resolved.display_name, self._run_id)
                response = await self._policies.create_policy_assignment(
                    scope=self.scope,
                    name=name,
                    definition_id=resolved.definition_id,
                    display_name=f"[harness {self._run_id}] {resolved.display_name}",
                    parameters=build_assignment_parameters(
                        resolved.declared_parameters,
                        parameters_by_policy.get(policy_id, {}),
                    ),
                )
                default_id = f"{self.scope}/providers/Microsoft.Authorization/policyAssignments/{name}"
                assignment = TemporaryAssignment(
                    name=name,
                    scope=self.scope,
                    assignment_id=response.get("id", default_id),
                    policy_identifier=policy_id,
                    definition_id=resolved.definition_id,
                )
                created.append(assignment)
                logger.info(
                    "Deny assignment created",
                    assignment_name=name,
                    definition_id=resolved.definition_id,
                )

            await self._wait_until_visible(created)
        except BaseException:
            if created:
                logger.error("Deny scope activation failed; releasing partial scope", created=len(created))
                await self.deactivate_deny_scope(created)
            raise

        return created

    async def _wait_until_visible(self, assignments: Sequence[TemporaryAssignment]) -> None:
        interval = self._settings.assignment_visibility_interval_seconds
        attempts = attempts_for(self._settings.assignment_visibility_timeout_seconds, interval)
        for assignment in assignments:

            async def _fetch(target: TemporaryAssignment = assignment) -> dict[str, Any] | None:
                try:
                    return await self._policies.get_policy_assignment(target.scope, target.name)
                except ControlPlaneError as exc:
                    logger.debug("Assignment visibility lookup failed", assignment_name=target.name, error=exc.message)
                    return None

            visible = await poll_until(_fetch, attempts=attempts, interval_seconds=interval, sleep=self._sleep)
            if visible is None:
                timeout = PropagationTimeout(
                    f"Assignment {assignment.name} not visible after "
                    f"{self._settings.assignment_visibility_timeout_seconds:.0f}s"
                )
                logger.warning("Assignment visibility timed out", assignment_name=assignment.name, error=timeout.message)

    async def _delete_with_retry(self, assignment: TemporaryAssignment) -> None:
        attempts = max(1, self._settings.assignment_delete_attempts)
        last_error = ""
        for attempt in range(attempts):
            if attempt:
                await self._sleep(self._settings.assignment_visibility_interval_seconds)
            try:
                await self._policies.delete_policy_assignment(assignment.scope, assignment.name)
                return
            except ControlPlaneError as exc:
                last_error = exc.message
                logger.warning(
                    "Deny assignment delete failed",
                    assignment_name=assignment.name,
                    attempt=attempt + 1,
                    error=exc.message,
                )
        raise TeardownError(last_error, target=assignment.name)

    async def deactivate_deny_scope(
        self,
        assignments: Sequence[TemporaryAssignment],
    ) -> DeactivationReport:
        """Delete every assignment, retrying each one.

        Never raises for a single failed delete; failures are collected.

        Args:
            assignments: Assignments created by ``activate_deny_scope``.

        Returns:
            Which assignments were released and which leaked.
        """
        report = DeactivationReport()
        for assignment in assignments:
            try:
                await self._delete_with_retry(assignment)
            except TeardownError as exc:
                logger.error(
                    "Deny assignment leaked",
                    assignment_name=exc.target,
                    assignment_id=assignment.assignment_id,
                    error=exc.message,
                )
                report.failures.append(
                    TeardownFailure(kind="assignment", target=assignment.assignment_id, error=exc.message)
                )
                continue
            report.released.append(assignment.name)
            logger.info("Deny assignment released", assignment_name=assignment.name)

        self.last_report = report
        return report

    @asynccontextmanager
    async def deny_scope(
        self,
        policy_ids: Sequence[str],
        deny_parameters: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> AsyncIterator[list[TemporaryAssignment]]:
        """Hold Deny assignments for the duration of the block.

        Args:
            policy_ids: Policy identifiers to enforce.
            deny_parameters: Extra assignment parameters keyed by policy identifier.

        Yields:
            The active assignments.
        """
        assignments = await self.activate_deny_scope(policy_ids, deny_parameters)
        try:
            if assignments and self._settings.deny_settle_seconds > 0:
                await self._sleep(self._settings.deny_settle_seconds)
            yield assignments
        finally:
            await self.deactivate_deny_scope(assignments)

"""Test matrix runner.

Executes the (case x mode) matrix sequentially in three phases, always in
the order Compliance, Audit, Deny, and within each phase in catalog order:

- Compliance: live check of the baseline vault. Never mutates anything.
- Audit: create a non-compliant vault or object, then wait for the platform
  verdict. NonCompliant is Pass; Compliant is Fail; anything else is Error.
- Deny: inside a temporary Deny scope, try to create the non-compliant vault
  or object. Blocked is Pass; created is Fail; no assignment is Skipped.

Every scenario produces exactly one TestResult. Errors are caught at the case
boundary and recorded, so one broken scenario never stops the run. An abort
request is honored between cases and phases.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from vault_policy_harness.catalog.policy_catalog import select_cases
from vault_policy_harness.core.models import (
    MODE_ORDER,
    Mode,
    Outcome,
    PolicyTestCase,
    TemporaryAssignment,
    TestResult,
    TrackedResource,
)
from vault_policy_harness.enforcement.scope import EnforcementScopeController
from vault_policy_harness.errors import (
    ConfigurationError,
    HarnessError,
    ProvisioningError,
    RequestDisallowedByPolicyError,
)
from vault_policy_harness.evaluation.evaluator import (
    ComplianceEvaluator,
    audit_outcome,
    compliance_outcome,
)
from vault_policy_harness.lifecycle.manager import ResourceLifecycleManager
from vault_policy_harness.observability import get_logger
from vault_policy_harness.reporting.recorder import ResultRecorder, build_result

logger = get_logger(__name__)

ABORTED_DETAILS = "run aborted"


@dataclass
class RunConfig:
    """Selection for one run.

    Attributes:
        case_ids: Explicit catalog ids.
        categories: Category names.
        select_all: Run the whole catalog.
        modes: Requested modes; executed in the fixed phase order.
    """

    case_ids: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    select_all: bool = False
    modes: list[Mode] = field(default_factory=lambda: list(MODE_ORDER))


class MatrixRunner:
    """Drives provisioning, enforcement and evaluation for each scenario.

    Args:
        lifecycle: Resource lifecycle manager.
        evaluator: Compliance evaluator.
        scope_controller: Enforcement scope controller for the Deny phase.
        recorder: Result recorder.
        catalog: Catalog to select from (defaults to the bundled one).
    """

    def __init__(
        self,
        lifecycle: ResourceLifecycleManager,
        evaluator: ComplianceEvaluator,
        scope_controller: EnforcementScopeController,
        recorder: ResultRecorder,
        catalog: tuple[PolicyTestCase, ...] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            lifecycle: Resource lifecycle manager.
            evaluator: Compliance evaluator.
            scope_controller: Enforcement scope controller.
            recorder: Result recorder.
            catalog: Optional catalog override.
        """
        self._lifecycle = lifecycle
        self._evaluator = evaluator
        self._scope = scope_controller
        self._recorder = recorder
        self._catalog = catalog
        self._abort_requested = False
        self._baseline_error: str | None = None

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested

    def request_abort(self) -> None:
        """Ask the runner to stop before the next scenario."""
        if not self._abort_requested:
            logger.warning("Abort requested; finishing the current scenario")
        self._abort_requested = True

    async def run(self, config: RunConfig) -> list[TestResult]:
        """Select cases and run the matrix.

        Raises:
            ConfigurationError: If the selection or mode list is empty or invalid.
        """
        cases = select_cases(
            case_ids=config.case_ids,
            categories=config.categories,
            select_all=config.select_all,
            catalog=self._catalog,
        )
        return await self.run_matrix(cases, config.modes)

    async def run_matrix(self, cases: Sequence[PolicyTestCase], modes: Sequence[Mode]) -> list[TestResult]:
        """Run every supported (case, mode) scenario.

        Args:
            cases: Selected cases, in catalog order.
            modes: Requested modes.

        Returns:
            All results recorded by the recorder.

        Raises:
            ConfigurationError: If ``cases`` or ``modes`` is empty. Raised
                before any resource is touched.
        """
        if not cases:
            raise ConfigurationError("No test cases selected")
        if not modes:
            raise ConfigurationError("No modes selected")

        phases = [mode for mode in MODE_ORDER if mode in set(modes)]
        logger.info(
            "Matrix run starting",
            case_count=len(cases),
            phases=[mode.value for mode in phases],
        )

        for mode in phases:
            scenarios = [case for case in cases if case.supports(mode)]
            if not scenarios:
                continue
            if self._abort_requested:
                self._skip_remaining(scenarios, mode, recorded=set())
                continue
            if mode == Mode.COMPLIANCE:
                await self._run_phase(scenarios, mode, self._run_compliance)
            elif mode == Mode.AUDIT:
                await self._run_phase(scenarios, mode, self._run_audit)
            else:
                await self._run_deny_phase(scenarios)

        summary = self._recorder.summarize()
        logger.info(
            "Matrix run finished",
            total=summary.total,
            passed=summary.passed,
            failed=summary.failed,
            errored=summary.errored,
            skipped=summary.skipped,
            success_rate=summary.success_rate,
        )
        return self._recorder.results

    # -------------------------------------------------------------------------
    # Phase plumbing
    # -------------------------------------------------------------------------

    def _skip_remaining(self, scenarios: Sequence[PolicyTestCase], mode: Mode, recorded: set[str]) -> None:
        self._recorder.aborted = True
        for case in scenarios:
            if case.id not in recorded:
                self._recorder.record(build_result(case, mode, Outcome.SKIPPED, ABORTED_DETAILS))

    async def _run_phase(
        self,
        scenarios: Sequence[PolicyTestCase],
        mode: Mode,
        scenario: Callable[[PolicyTestCase], Awaitable[TestResult]],
    ) -> None:
        recorded: set[str] = set()
        for case in scenarios:
            if self._abort_requested:
                self._skip_remaining(scenarios, mode, recorded)
                return
            self._recorder.record(await self._guarded(case, mode, scenario))
            recorded.add(case.id)

    async def _guarded(
        self,
        case: PolicyTestCase,
        mode: Mode,
        scenario: Callable[[PolicyTestCase], Awaitable[TestResult]],
    ) -> TestResult:
        """Run one scenario, converting any failure into an Error result."""
        logger.info("Scenario starting", case_id=case.id, mode=mode.value)
        try:
            return await scenario(case)
        except Exception as exc:
            message = exc.message if isinstance(exc, HarnessError) else str(exc)
            logger.error(
                "Scenario errored",
                case_id=case.id,
                mode=mode.value,
                error_type=type(exc).__name__,
                error=message,
            )
            return build_result(case, mode, Outcome.ERROR, f"{type(exc).__name__}: {message}", error_message=message)

    async def _baseline(self) -> TrackedResource:
        """Return the baseline vault, provisioning it at most once per run."""
        if self._baseline_error is not None:
            raise ProvisioningError(f"Baseline vault unavailable: {self._baseline_error}")
        try:
            return await self._lifecycle.ensure_baseline_vault()
        except HarnessError as exc:
            self._baseline_error = exc.message
            raise

    async def _provision(self, case: PolicyTestCase, mode: Mode) -> str:
        """Create the scenario's non-compliant vault or object and return its id."""
        if case.requires_resource:
            await self._baseline()
        return await self._create_scenario(case, mode)

    async def _create_scenario(self, case: PolicyTestCase, mode: Mode) -> str:
        """Issue the scenario's create call. The baseline must already exist for objects."""
        if case.requires_resource:
            return await self._lifecycle.seed_scenario_object(case, mode)
        tracked = await self._lifecycle.ensure_scenario_resource(case, mode)
        return tracked.platform_resource_id

    # -------------------------------------------------------------------------
    # Scenarios
    # -------------------------------------------------------------------------

    async def _run_compliance(self, case: PolicyTestCase) -> TestResult:
        baseline = await self._baseline()
        verdict = await self._evaluator.evaluate_live(
            baseline,
            case.check,
            object_names=self._lifecycle.baseline_object_names() if case.requires_resource else None,
        )
        return build_result(
            case,
            Mode.COMPLIANCE,
            compliance_outcome(verdict),
            verdict.details,
            resource_id=baseline.platform_resource_id,
        )

    async def _run_audit(self, case: PolicyTestCase) -> TestResult:
        resource_id = await self._provision(case, Mode.AUDIT)
        verdict = await self._evaluator.evaluate_platform(resource_id, case.policy_identifier)
        outcome = audit_outcome(verdict)
        return build_result(
            case,
            Mode.AUDIT,
            outcome,
            verdict.details,
            error_message="Platform evaluation pending or unknown" if outcome == Outcome.ERROR else None,
            resource_id=resource_id,
        )

    async def _run_deny(self, case: PolicyTestCase, assignment: TemporaryAssignment | None) -> TestResult:
        if assignment is None:
            return build_result(
                case,
                Mode.DENY,
                Outcome.SKIPPED,
                f"No Deny assignment: policy {case.policy_identifier} could not be resolved",
            )
        if case.requires_resource:
            await self._baseline()
        # Only the scenario create call itself may count as blocked.
        try:
            resource_id = await self._create_scenario(case, Mode.DENY)
        except RequestDisallowedByPolicyError as exc:
            return build_result(
                case,
                Mode.DENY,
                Outcome.PASS,
                f"Creation blocked by assignment {assignment.name}: {exc.message}",
            )
        return build_result(
            case,
            Mode.DENY,
            Outcome.FAIL,
            f"Non-compliant resource was created despite assignment {assignment.name}",
            resource_id=resource_id,
        )

    async def _run_deny_phase(self, scenarios: Sequence[PolicyTestCase]) -> None:
        policy_ids = [case.policy_identifier for case in scenarios]
        parameters = {case.policy_identifier: case.deny_parameters for case in scenarios}
        recorded: set[str] = set()
        self._scope.last_report = None

        try:
            async with self._scope.deny_scope(policy_ids, parameters) as assignments:
                by_policy = {assignment.policy_identifier: assignment for assignment in assignments}
                for case in scenarios:
                    if self._abort_requested:
                        self._skip_remaining(scenarios, Mode.DENY, recorded)
                        break
                    assignment = by_policy.get(case.policy_identifier)
                    self._recorder.record(
                        await self._guarded(
                            case,
                            Mode.DENY,
                            lambda c, a=assignment: self._run_deny(c, a),
                        )
                    )
                    recorded.add(case.id)
        except Exception as exc:
            message = exc.message if isinstance(exc, HarnessError) else str(exc)
            logger.error("Deny phase failed", error_type=type(exc).__name__, error=message)
            for case in scenarios:
                if case.id not in recorded:
                    self._recorder.record(
                        build_result(
                            case,
                            Mode.DENY,
                            Outcome.ERROR,
                            f"Deny scope unavailable: {message}",
                            error_message=message,
                        )
                    )
        finally:
            report = self._scope.last_report
            if report is not None:
                for failure in report.failures:
                    self._recorder.record_teardown_failure(failure)

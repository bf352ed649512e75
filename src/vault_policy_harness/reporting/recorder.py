"""Result recorder: append-only collection of scenario outcomes."""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from vault_policy_harness.core.models import (
    Mode,
    Outcome,
    PolicyTestCase,
    ResultSet,
    RunSummary,
    TeardownFailure,
    TestResult,
)
from vault_policy_harness.observability import get_logger

logger = get_logger(__name__)


def summarize(
    results: Sequence[TestResult],
    teardown_failures: Iterable[TeardownFailure] = (),
    aborted: bool = False,
) -> RunSummary:
    """Aggregate outcome counts.

    Args:
        results: Recorded results.
        teardown_failures: Items that could not be released.
        aborted: Whether the run was aborted.

    Returns:
        The summary. The success rate is passed/total*100 rounded to two
        decimals, and 0.0 when there are no results.
    """
    total = len(results)
    counts = {outcome: 0 for outcome in Outcome}
    for result in results:
        counts[result.outcome] += 1
    rate = round(counts[Outcome.PASS] / total * 100, 2) if total else 0.0
    return RunSummary(
        total=total,
        passed=counts[Outcome.PASS],
        failed=counts[Outcome.FAIL],
        errored=counts[Outcome.ERROR],
        skipped=counts[Outcome.SKIPPED],
        success_rate=rate,
        teardown_failures=list(teardown_failures),
        aborted=aborted,
    )


def build_result(
    case: PolicyTestCase,
    mode: Mode,
    outcome: Outcome,
    details: str = "",
    error_message: str | None = None,
    resource_id: str | None = None,
    timestamp: datetime | None = None,
) -> TestResult:
    """Build a TestResult carrying the case's narrative and references."""
    return TestResult(
        timestamp=timestamp or datetime.now(UTC),
        test_name=f"{case.name} [{mode.value}]",
        case_id=case.id,
        category=case.category,
        policy_name=case.name,
        policy_id=case.policy_identifier,
        mode=mode,
        outcome=outcome,
        details=details,
        error_message=error_message,
        resource_id=resource_id,
        framework_tags=list(case.framework_tags),
        remediation_snippet=case.remediation_snippet,
        before_state=case.narrative.before_state,
        requirement=case.narrative.requirement,
        verification_method=case.narrative.verification_method,
        benefits=case.narrative.benefits,
        next_steps=case.narrative.next_steps,
    )


class ResultRecorder:
    """Collects results and teardown failures for one run.

    Args:
        run_id: Run identifier.
        subscription: Target subscription id.
    """

    def __init__(self, run_id: str, subscription: str) -> None:
        """Initialize an empty recorder.

        Args:
            run_id: Run identifier.
            subscription: Target subscription id.
        """
        self.run_id = run_id
        self.subscription = subscription
        self._results: list[TestResult] = []
        self._teardown_failures: list[TeardownFailure] = []
        self.aborted = False

    def record(self, result: TestResult) -> TestResult:
        """Append a result. Recorded results are never modified."""
        self._results.append(result)
        logger.info(
            "Scenario recorded",
            case_id=result.case_id,
            mode=result.mode.value,
            outcome=result.outcome.value,
        )
        return result

    @property
    def results(self) -> list[TestResult]:
        return list(self._results)

    @property
    def teardown_failures(self) -> list[TeardownFailure]:
        return list(self._teardown_failures)

    def record_teardown_failure(self, failure: TeardownFailure) -> None:
        logger.error("Teardown failure recorded", kind=failure.kind, target=failure.target)
        self._teardown_failures.append(failure)

    def summarize(self) -> RunSummary:
        return summarize(self._results, self._teardown_failures, self.aborted)

    def to_result_set(self, generated_at: datetime | None = None) -> ResultSet:
        """Snapshot everything recorded so far as a ResultSet."""
        return ResultSet(
            run_id=self.run_id,
            generated_at=generated_at or datetime.now(UTC),
            subscription=self.subscription,
            results=list(self._results),
            teardown_failures=list(self._teardown_failures),
            aborted=self.aborted,
        )

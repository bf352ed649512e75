"""Compliance report regenerator.

Platform compliance evaluation often finishes long after a run. The
regenerator loads a stored ResultSet, re-polls the platform verdict for every
Audit result that recorded a resource id, and rewrites both artifacts.
Results of other modes, and Audit results whose re-evaluation fails, are
left untouched.
"""

from datetime import UTC, datetime
from pathlib import Path

from vault_policy_harness.core.models import Mode, Outcome, TestResult
from vault_policy_harness.errors import HarnessError
from vault_policy_harness.evaluation.evaluator import ComplianceEvaluator, audit_outcome
from vault_policy_harness.observability import get_logger
from vault_policy_harness.reporting.artifacts import ResultArtifactStore

logger = get_logger(__name__)


class ComplianceReportRegenerator:
    """Refreshes Audit outcomes of a stored run.

    Args:
        evaluator: Evaluator used for platform verdicts.
        artifacts: Store holding the run's artifacts.
    """

    def __init__(self, evaluator: ComplianceEvaluator, artifacts: ResultArtifactStore) -> None:
        self._evaluator = evaluator
        self._artifacts = artifacts

    async def _refresh(self, result: TestResult, max_wait_seconds: float | None) -> TestResult:
        if result.mode != Mode.AUDIT or not result.resource_id:
            return result
        try:
            verdict = await self._evaluator.evaluate_platform(result.resource_id, result.policy_id, max_wait_seconds)
        except HarnessError as exc:
            logger.warning(
                "Audit result not refreshed; keeping stored outcome",
                case_id=result.case_id,
                resource_id=result.resource_id,
                error=exc.message,
            )
            return result
        outcome = audit_outcome(verdict)
        return result.model_copy(
            update={
                "outcome": outcome,
                "details": verdict.details,
                "error_message": None if outcome != Outcome.ERROR else "Platform evaluation pending or unknown",
                "timestamp": datetime.now(UTC),
            }
        )

    async def regenerate(self, run_id: str, max_wait_seconds: float | None = None) -> Path:
        """Re-poll Audit verdicts for a run and rewrite its artifacts.

        Args:
            run_id: Run whose artifacts are refreshed.
            max_wait_seconds: Polling bound per result; defaults to the configured wait.

        Returns:
            Path of the rewritten report.

        Raises:
            ConfigurationError: If the run has no stored results.
        """
        result_set = self._artifacts.load(run_id)
        refreshed = [await self._refresh(result, max_wait_seconds) for result in result_set.results]
        changed = sum(1 for old, new in zip(result_set.results, refreshed) if old.outcome != new.outcome)
        logger.info("Audit results refreshed", run_id=run_id, changed=changed, total=len(refreshed))
        return self._artifacts.save(
            result_set.model_copy(update={"results": refreshed, "generated_at": datetime.now(UTC)})
        )

"""Result artifact store.

Each run owns ``<output_dir>/<run_id>/`` holding ``results.json`` (the
ResultSet) and ``report.md`` (its Markdown rendering).
"""

from pathlib import Path

from vault_policy_harness.core.models import ResultSet
from vault_policy_harness.errors import ConfigurationError
from vault_policy_harness.observability import get_logger
from vault_policy_harness.reporting.renderer import render_json, render_report

logger = get_logger(__name__)

RESULTS_FILE = "results.json"
REPORT_FILE = "report.md"


class ResultArtifactStore:
    """Reads and writes per-run result artifacts.

    Args:
        output_dir: Root directory for run artifacts.
    """

    def __init__(self, output_dir: Path) -> None:
        self._output_dir = output_dir

    def run_dir(self, run_id: str) -> Path:
        return self._output_dir / run_id

    def results_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / RESULTS_FILE

    def report_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / REPORT_FILE

    def save(self, result_set: ResultSet) -> Path:
        """Write results.json and report.md for a run.

        Args:
            result_set: The run's results.

        Returns:
            Path of the written report.
        """
        run_dir = self.run_dir(result_set.run_id)
        run_dir.mkdir(parents=True, exist_ok=True)
        self.results_path(result_set.run_id).write_bytes(render_json(result_set))
        report_path = self.report_path(result_set.run_id)
        report_path.write_bytes(render_report(result_set))
        logger.info(
            "Result artifacts written",
            run_id=result_set.run_id,
            report_path=str(report_path),
            result_count=len(result_set.results),
        )
        return report_path

    def load(self, run_id: str) -> ResultSet:
        """Load a stored ResultSet.

        Raises:
            ConfigurationError: If the run has no stored results.
        """
        path = self.results_path(run_id)
        if not path.exists():
            raise ConfigurationError(f"No stored results for run {run_id!r} at {path}")
        return ResultSet.model_validate_json(path.read_bytes())

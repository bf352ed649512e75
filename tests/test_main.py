"""Tests for the command-line entrypoint."""

import contextlib
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import pytest

from tests.conftest import FakeCloud
from vault_policy_harness import main as cli
from vault_policy_harness.catalog.policy_catalog import get_catalog
from vault_policy_harness.core.models import Mode, Outcome, PolicyTestCase, ResultSet, TestResult
from vault_policy_harness.runner import MatrixRunner
from vault_policy_harness.settings import Settings


class _AbortingRunner(MatrixRunner):
    """Runner whose operator presses Ctrl-C before the first scenario."""

    async def run_matrix(self, cases: Sequence[PolicyTestCase], modes: Sequence[Mode]) -> list[TestResult]:
        self.request_abort()
        return await super().run_matrix(cases, modes)


@pytest.fixture()
def wired_cloud(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> FakeCloud:
    """Route the CLI's clients and settings to the in-memory cloud.

    Args:
        monkeypatch: Pytest monkeypatch fixture.
        settings: Test settings.

    Returns:
        The FakeCloud serving every client role.
    """
    cloud = FakeCloud()
    cloud.register_catalog()

    @contextlib.asynccontextmanager
    async def _fake_clients(_: Settings) -> AsyncIterator[tuple[FakeCloud, FakeCloud, FakeCloud]]:
        yield cloud, cloud, cloud

    monkeypatch.setattr(cli, "_open_clients", _fake_clients)
    monkeypatch.setattr(
        cli, "_load_settings", lambda: settings.model_copy(update={"resource_ready_interval_seconds": 0.0})
    )
    return cloud


def _stored_result_set(output_dir: Path) -> ResultSet:
    [results_path] = output_dir.glob("*/results.json")
    assert (results_path.parent / "report.md").exists()
    return ResultSet.model_validate_json(results_path.read_text(encoding="utf-8"))


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the CLI away from real settings and global logging configuration.

    Args:
        monkeypatch: Pytest monkeypatch fixture.
        tmp_path: Pytest temporary directory.
    """
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.delenv("VAULT_HARNESS_SUBSCRIPTION_ID", raising=False)
    monkeypatch.setenv("VAULT_HARNESS_TRACKING_DIR", str(tmp_path / ".tracking"))
    monkeypatch.setenv("VAULT_HARNESS_OUTPUT_DIR", str(tmp_path / "results"))


class TestParser:
    """Tests for argument parsing."""

    def test_run_arguments(self) -> None:
        """Repeatable selectors accumulate."""
        args = cli._build_parser().parse_args(
            ["run", "--case", "soft-delete", "--case", "firewall", "--mode", "Audit", "--max-wait", "60"]
        )
        assert args.cases == ["soft-delete", "firewall"]
        assert args.modes == ["Audit"]
        assert args.max_wait == 60.0
        assert not args.teardown

    def test_unknown_mode_rejected(self) -> None:
        """Modes are limited to the known values."""
        with pytest.raises(SystemExit):
            cli._build_parser().parse_args(["run", "--mode", "Sometimes"])

    def test_command_required(self) -> None:
        """A subcommand must be given."""
        with pytest.raises(SystemExit):
            cli._build_parser().parse_args([])


class TestMain:
    """Tests for exit codes of main."""

    def test_list_cases(self, capsys: pytest.CaptureFixture[str]) -> None:
        """list-cases prints the catalog and exits 0."""
        assert cli.main(["list-cases"]) == cli.EXIT_OK
        output = capsys.readouterr().out
        for case in get_catalog():
            assert case.id in output

    def test_list_cases_unknown_category(self) -> None:
        """An unknown category is a configuration error."""
        assert cli.main(["list-cases", "--category", "Quantum"]) == cli.EXIT_CONFIGURATION

    def test_run_without_subscription(self) -> None:
        """A run needs a subscription."""
        assert cli.main(["run", "--all"]) == cli.EXIT_CONFIGURATION

    def test_run_with_unknown_case(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Selection errors surface before any client is created."""
        monkeypatch.setenv("VAULT_HARNESS_SUBSCRIPTION_ID", "sub-1")
        assert cli.main(["run", "--case", "nope"]) == cli.EXIT_CONFIGURATION

    def test_teardown_without_tracked_run(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Teardown with nothing tracked is a configuration error."""
        monkeypatch.setenv("VAULT_HARNESS_SUBSCRIPTION_ID", "sub-1")
        assert cli.main(["teardown"]) == cli.EXIT_CONFIGURATION

    def test_regenerate_unknown_run(self) -> None:
        """Regenerating a run without artifacts is a configuration error."""
        assert cli.main(["regenerate", "missing-run"]) == cli.EXIT_CONFIGURATION

    def test_invalid_setting_is_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A malformed environment value maps to exit 2, not a traceback."""
        monkeypatch.setenv("VAULT_HARNESS_COMPLIANCE_MAX_WAIT_SECONDS", "soon")
        assert cli.main(["list-cases"]) == cli.EXIT_CONFIGURATION


# ---------------------------------------------------------------------------
# run command against the in-memory cloud
# ---------------------------------------------------------------------------


class TestRunCommand:
    """Tests for exit codes and artifacts of the run command."""

    def test_scenario_errors_still_exit_zero(self, wired_cloud: FakeCloud, settings: Settings) -> None:
        """Completed runs exit 0 whatever the scenario outcomes."""
        wired_cloud.vault_ready = False

        assert cli.main(["run", "--case", "soft-delete", "--mode", "Compliance"]) == cli.EXIT_OK

        stored = _stored_result_set(settings.output_dir)
        assert [r.outcome for r in stored.results] == [Outcome.ERROR]
        assert not stored.aborted

    def test_abort_exits_130_and_saves_partial_results(
        self, monkeypatch: pytest.MonkeyPatch, wired_cloud: FakeCloud, settings: Settings
    ) -> None:
        """An aborted run still writes its results and report."""
        monkeypatch.setattr(cli, "MatrixRunner", _AbortingRunner)

        assert cli.main(["run", "--case", "soft-delete", "--mode", "Compliance"]) == cli.EXIT_ABORTED

        stored = _stored_result_set(settings.output_dir)
        assert stored.aborted
        assert [r.outcome for r in stored.results] == [Outcome.SKIPPED]
        assert wired_cloud.resource_groups == {}

    def test_teardown_failure_is_saved(self, wired_cloud: FakeCloud, settings: Settings) -> None:
        """A failed teardown after the run is listed in the stored artifacts."""
        wired_cloud.fail_resource_group_delete = True

        assert cli.main(["run", "--case", "soft-delete", "--mode", "Compliance", "--teardown"]) == cli.EXIT_OK

        stored = _stored_result_set(settings.output_dir)
        assert [r.outcome for r in stored.results] == [Outcome.PASS]
        assert [f.kind for f in stored.teardown_failures] == ["resource_group"]
        assert "Teardown Failures" in (next(settings.output_dir.glob("*/report.md"))).read_text(encoding="utf-8")

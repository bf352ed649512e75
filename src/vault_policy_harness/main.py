"""Command-line entrypoint for the vault policy harness.

Subcommands:
- run         Execute the policy test matrix and write results and report
- regenerate  Re-poll platform verdicts for a stored run and rewrite its report
- teardown    Delete the resources tracked for a run
- list-cases  Print the policy catalog

Exit codes: 0 when the command completed (whatever the scenario outcomes),
1 on a structural control-plane failure, 2 on a configuration error and 130
when the operator aborted the run.
"""

import argparse
import asyncio
import contextlib
import signal
import sys
from collections.abc import AsyncIterator

from pydantic import ValidationError

from vault_policy_harness.adapters import ArmClient, GraphDirectoryClient, KeyVaultDataClient
from vault_policy_harness.catalog.policy_catalog import get_catalog, select_cases
from vault_policy_harness.core.models import MODE_ORDER, Mode, RunSummary
from vault_policy_harness.enforcement import EnforcementScopeController, PolicyDefinitionResolver
from vault_policy_harness.errors import ConfigurationError, ControlPlaneError
from vault_policy_harness.evaluation import ComplianceEvaluator
from vault_policy_harness.identity import PrincipalResolver
from vault_policy_harness.lifecycle import ResourceLifecycleManager
from vault_policy_harness.observability import bind_run_context, configure_logging, get_logger
from vault_policy_harness.reporting import ResultArtifactStore, ResultRecorder
from vault_policy_harness.reporting.regenerator import ComplianceReportRegenerator
from vault_policy_harness.runner import MatrixRunner
from vault_policy_harness.settings import Settings
from vault_policy_harness.tracking import TrackingStore, new_run_id
from vault_policy_harness.tracking.naming import resource_group_name
from vault_policy_harness.tracking.store import latest_run_id

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2
EXIT_ABORTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-policy-harness",
        description="Exercise vault governance policies in Audit, Deny and Compliance modes.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the policy test matrix.")
    run.add_argument("--case", dest="cases", action="append", default=[], help="Catalog case id (repeatable).")
    run.add_argument("--category", dest="categories", action="append", default=[], help="Category (repeatable).")
    run.add_argument("--all", dest="select_all", action="store_true", help="Run every catalog case.")
    run.add_argument(
        "--mode",
        dest="modes",
        action="append",
        choices=[mode.value for mode in Mode],
        help="Mode to run (repeatable). Defaults to all modes.",
    )
    run.add_argument("--run-id", help="Resume an earlier run, reusing its tracked resources.")
    run.add_argument("--max-wait", type=float, help="Upper bound in seconds for each platform compliance wait.")
    run.add_argument("--teardown", action="store_true", help="Delete the run's resources afterwards.")

    regenerate = subparsers.add_parser("regenerate", help="Refresh Audit verdicts of a stored run.")
    regenerate.add_argument("run_id", help="Run id whose report is regenerated.")
    regenerate.add_argument("--max-wait", type=float, help="Upper bound in seconds for each platform compliance wait.")

    teardown = subparsers.add_parser("teardown", help="Delete resources tracked for a run.")
    teardown.add_argument("--run-id", help="Run id to tear down. Defaults to the latest tracked run.")

    list_cases = subparsers.add_parser("list-cases", help="Print the policy catalog.")
    list_cases.add_argument("--category", dest="categories", action="append", default=[])
    return parser


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid VAULT_HARNESS_ settings: {exc}") from exc


@contextlib.asynccontextmanager
async def _open_clients(
    settings: Settings,
) -> AsyncIterator[tuple[ArmClient, KeyVaultDataClient, GraphDirectoryClient]]:
    """Open the Resource Manager, vault data-plane and Graph clients."""
    async with ArmClient(settings) as arm, KeyVaultDataClient(settings) as vaults, GraphDirectoryClient(
        settings
    ) as directory:
        yield arm, vaults, directory


def _require_subscription(settings: Settings) -> None:
    if not settings.subscription_id:
        raise ConfigurationError("VAULT_HARNESS_SUBSCRIPTION_ID is required")


def _print_summary(summary: RunSummary, report_path: str) -> None:
    print(
        f"Total {summary.total}: {summary.passed} passed, {summary.failed} failed, "
        f"{summary.errored} errors, {summary.skipped} skipped ({summary.success_rate:.2f}% success)"
    )
    if summary.teardown_failures:
        print(f"WARNING: {len(summary.teardown_failures)} item(s) were not released; see the report.")
    print(f"Report: {report_path}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    _require_subscription(settings)
    if args.max_wait is not None:
        settings = settings.model_copy(update={"compliance_max_wait_seconds": args.max_wait})

    # Selection errors surface before anything is touched.
    cases = select_cases(case_ids=args.cases, categories=args.categories, select_all=args.select_all)
    modes = [Mode(value) for value in args.modes] if args.modes else list(MODE_ORDER)

    run_id = args.run_id or new_run_id()
    bind_run_context(run_id, settings.subscription_id)
    store = TrackingStore(
        settings.tracking_dir,
        run_id,
        settings.subscription_id,
        resource_group_name(settings.resource_group_prefix, run_id),
    )
    recorder = ResultRecorder(run_id, settings.subscription_id)
    artifacts = ResultArtifactStore(settings.output_dir)

    async with _open_clients(settings) as (arm, vaults, directory):
        principals = PrincipalResolver(directory, settings)
        try:
            await principals.resolve_principal_id()
        except ConfigurationError as exc:
            logger.error("Principal resolution failed", error=exc.message)
            return EXIT_FAILURE

        lifecycle = ResourceLifecycleManager(arm, vaults, principals, store, settings)
        evaluator = ComplianceEvaluator(arm, vaults, arm, settings)
        scope = EnforcementScopeController(arm, PolicyDefinitionResolver(arm, settings), settings, run_id)
        runner = MatrixRunner(lifecycle, evaluator, scope, recorder)

        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, runner.request_abort)

        try:
            await runner.run_matrix(cases, modes)
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)
            if args.teardown:
                for failure in await lifecycle.teardown_all():
                    recorder.record_teardown_failure(failure)
            report_path = artifacts.save(recorder.to_result_set())

    _print_summary(recorder.summarize(), str(report_path))
    return EXIT_ABORTED if runner.abort_requested else EXIT_OK


async def _regenerate(args: argparse.Namespace, settings: Settings) -> int:
    async with _open_clients(settings) as (arm, vaults, _):
        evaluator = ComplianceEvaluator(arm, vaults, arm, settings)
        regenerator = ComplianceReportRegenerator(evaluator, ResultArtifactStore(settings.output_dir))
        report_path = await regenerator.regenerate(args.run_id, args.max_wait)
    print(f"Report: {report_path}")
    return EXIT_OK


async def _teardown(args: argparse.Namespace, settings: Settings) -> int:
    _require_subscription(settings)
    run_id = args.run_id or latest_run_id(settings.tracking_dir)
    if not run_id:
        raise ConfigurationError(f"No tracked run found in {settings.tracking_dir}; pass --run-id")
    bind_run_context(run_id, settings.subscription_id)

    store = TrackingStore(
        settings.tracking_dir,
        run_id,
        settings.subscription_id,
        resource_group_name(settings.resource_group_prefix, run_id),
    )
    async with _open_clients(settings) as (arm, vaults, directory):
        lifecycle = ResourceLifecycleManager(arm, vaults, PrincipalResolver(directory, settings), store, settings)
        failures = await lifecycle.teardown_all()

    for failure in failures:
        print(f"NOT RELEASED {failure.kind} {failure.target}: {failure.error}")
    print(f"Teardown of run {run_id} {'incomplete' if failures else 'started'}")
    return EXIT_FAILURE if failures else EXIT_OK


def _list_cases(args: argparse.Namespace) -> int:
    cases = (
        select_cases(categories=args.categories) if args.categories else list(get_catalog())
    )
    for case in cases:
        modes = ",".join(mode.value for mode in MODE_ORDER if case.supports(mode))
        print(f"{case.id:<22} {case.category.value:<18} {modes:<24} {case.name}")
    return EXIT_OK


async def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "run":
        return await _run(args, settings)
    if args.command == "regenerate":
        return await _regenerate(args, settings)
    return await _teardown(args, settings)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the command and return its exit code."""
    args = _build_parser().parse_args(argv)

    try:
        settings = _load_settings()
        configure_logging(settings.log_level, settings.log_json)
        if args.command == "list-cases":
            return _list_cases(args)
        return asyncio.run(_dispatch(args, settings))
    except ConfigurationError as exc:
        logger.error("Configuration error", error=exc.message)
        return EXIT_CONFIGURATION
    except ControlPlaneError as exc:
        logger.error("Control plane failure", error=exc.message, status_code=exc.status_code, code=exc.code)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_ABORTED


if __name__ == "__main__":
    sys.exit(main())

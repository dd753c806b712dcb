import argparse
import logging
from pathlib import Path

from auditflow.config import ERROR_ACTIONS, Settings, get_settings
from auditflow.database import build_session_factory
from auditflow.errors import InputPathNotFound
from auditflow.pipeline import PipelineRunner
from auditflow.progress import AzurePipelinesReporter, CompositeReporter, LoggingReporter
from auditflow.step_logic import locate_report_files, validate_reports


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate exported audit reports and forward the results")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run one validation, evaluation and export pass")
    run_parser.add_argument("--report-output-path", help="Root directory holding exported JSON reports")
    run_parser.add_argument("--workspace-id", help="Log Analytics workspace id")
    run_parser.add_argument("--shared-key", help="Log Analytics shared key")
    run_parser.add_argument("--run-key", help="Label for this run in the run history")
    run_parser.add_argument(
        "--error-action",
        choices=ERROR_ACTIONS,
        help="continue past recoverable errors or stop on the first one",
    )
    run_parser.add_argument(
        "--azure-pipelines",
        action="store_true",
        help="also emit progress and warnings as Azure Pipelines logging commands",
    )

    validate_parser = subparsers.add_parser("validate", help="classify reports without evaluating them")
    validate_parser.add_argument("--report-output-path", help="Root directory holding exported JSON reports")

    return parser.parse_args()


def run_command(args: argparse.Namespace, settings: Settings) -> int:
    settings = settings.with_overrides(
        report_output_path=args.report_output_path,
        workspace_id=args.workspace_id,
        shared_key=args.shared_key,
        error_action=args.error_action,
    )
    reporter = LoggingReporter()
    if args.azure_pipelines:
        reporter = CompositeReporter(reporter, AzurePipelinesReporter())

    session_factory = build_session_factory(settings.database_url)
    runner = PipelineRunner.from_settings(settings, session_factory, reporter=reporter)
    result = runner.run(run_key=args.run_key)

    print(
        "run_id={run_id} run_key={run_key} status={status} state={state} files={files} valid={valid} empty={empty} malformed={malformed} sent={sent} warnings={warnings} summary={summary}".format(
            run_id=result.run_id,
            run_key=result.run_key,
            status=result.status.value,
            state=result.state.value,
            files=result.files_discovered,
            valid=result.valid_files,
            empty=result.empty_files,
            malformed=result.malformed_files,
            sent=result.results_sent,
            warnings=result.warnings,
            summary=result.summary_path,
        )
    )
    return 0 if result.status.is_success else 1


def validate_command(args: argparse.Namespace, settings: Settings) -> int:
    root = Path(args.report_output_path or settings.report_output_path)
    try:
        reports = locate_report_files(root)
    except InputPathNotFound as exc:
        print(f"error={exc}")
        return 1

    summary = validate_reports(reports, max_workers=settings.validation_workers)
    for item in summary.classified:
        reason = f" reason={item.outcome.reason}" if item.outcome.reason else ""
        print(f"{item.outcome.kind.value} {item.report.path}{reason}")
    for pattern in summary.globs:
        print(f"glob {pattern}")
    print(f"files={len(reports)} valid={summary.valid_count} globs={len(summary.globs)}")
    return 0


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "validate":
        raise SystemExit(validate_command(args, settings))
    raise SystemExit(run_command(args, settings))


if __name__ == "__main__":
    main()

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
import logging
from pathlib import Path
from typing import TypeVar
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from auditflow.config import Settings
from auditflow.db_models import PipelineRun
from auditflow.engine import PowerShellRuleEngine, RuleEngine
from auditflow.errors import NoEvaluationResults, PipelineError, RuleEngineError
from auditflow.progress import Checkpoint, LoggingReporter, ProgressReporter, ProgressTracker
from auditflow.run_store import (
    create_run,
    create_step,
    finish_step_failure,
    finish_step_success,
    mark_run_finished,
    store_rejected_reports,
)
from auditflow.schemas import (
    EvaluationOutcome,
    OutcomeKind,
    PipelineResult,
    RunState,
    RunStatus,
    ValidationSummary,
)
from auditflow.step_logic import locate_report_files, validate_reports, write_json
from auditflow.telemetry import LogAnalyticsClient, TelemetrySink


logger = logging.getLogger(__name__)
T = TypeVar("T")


def new_run_key() -> str:
    return f"run-{datetime.now(UTC):%Y%m%dT%H%M%SZ}-{uuid4().hex[:8]}"


@dataclass
class _RunContext:
    run_key: str
    input_path: Path
    tracker: ProgressTracker
    state: RunState = RunState.START
    status: RunStatus = RunStatus.FAILED
    files_discovered: int = 0
    summary: ValidationSummary | None = None
    results_sent: int = 0
    error: str | None = None

    def finish(self, state: RunState, status: RunStatus) -> None:
        self.state = state
        self.status = status


class PipelineRunner:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        engine: RuleEngine,
        sink: TelemetrySink,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.engine = engine
        self.sink = sink
        self.reporter = reporter or LoggingReporter()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        reporter: ProgressReporter | None = None,
    ) -> "PipelineRunner":
        engine = PowerShellRuleEngine(settings.pwsh_path)
        sink = LogAnalyticsClient(
            settings.workspace_id,
            settings.shared_key,
            timeout_seconds=settings.telemetry_timeout_seconds,
            max_retries=settings.max_send_retries,
            backoff_seconds=settings.retry_backoff_seconds,
        )
        return cls(settings, session_factory, engine=engine, sink=sink, reporter=reporter)

    def run(self, *, input_path: Path | None = None, run_key: str | None = None) -> PipelineResult:
        ctx = _RunContext(
            run_key=run_key or new_run_key(),
            input_path=Path(input_path or self.settings.report_output_path),
            tracker=ProgressTracker(self.reporter),
        )

        with self.session_factory() as db:
            run = self._record(
                db, "create_run", lambda: create_run(db, run_key=ctx.run_key, input_path=str(ctx.input_path))
            )
            run_id = run.id if run is not None else None
            logger.info("pipeline run started", extra={"run_key": ctx.run_key, "input_path": str(ctx.input_path)})

            try:
                self._execute(db, run, ctx)
            except Exception as exc:
                failed_stage = ctx.state.value
                ctx.finish(RunState.FAILED, RunStatus.FAILED)
                ctx.error = str(exc)
                ctx.tracker.error(f"pipeline run failed: {exc}")
                logger.exception("pipeline run failed", extra={"run_key": ctx.run_key, "stage": failed_stage})

            result = self._result_from_context(ctx, run_id=run_id)
            result = self._write_summary(result)
            if run is not None:
                self._record(db, "mark_run_finished", lambda: mark_run_finished(db, run, result))

        logger.info(
            "pipeline run finished",
            extra={"run_key": result.run_key, "status": result.status.value, "state": result.state.value},
        )
        return result

    def _execute(self, db: Session, run: PipelineRun | None, ctx: _RunContext) -> None:
        tracker = ctx.tracker

        reports = self._run_step(db, run, "locate", lambda: locate_report_files(ctx.input_path))
        ctx.files_discovered = len(reports)
        ctx.state = RunState.LOCATED
        tracker.checkpoint(Checkpoint.LOCATED, files_discovered=len(reports))
        if not reports:
            tracker.warning(f"no report files found under {ctx.input_path}", ctx.input_path)
            ctx.finish(RunState.EARLY_EXIT, RunStatus.NO_DATA)
            return

        summary = self._run_step(
            db,
            run,
            "validate",
            lambda: validate_reports(reports, max_workers=self.settings.validation_workers),
        )
        ctx.summary = summary
        for item in summary.rejected:
            if item.outcome.kind is OutcomeKind.EMPTY:
                tracker.warning(f"report file is empty: {item.report.path}", item.report.path)
            else:
                tracker.warning(
                    f"report file is not valid JSON: {item.report.path}: {item.outcome.reason}",
                    item.report.path,
                )
        if run is not None:
            self._record(
                db, "store_rejected_reports", lambda: store_rejected_reports(db, run_id=run.id, rejected=summary.rejected)
            )
        ctx.state = RunState.VALIDATED
        tracker.checkpoint(Checkpoint.VALIDATED, valid_files=summary.valid_count, globs=len(summary.globs))

        if summary.rejected and self.settings.stop_on_error:
            raise PipelineError(f"{len(summary.rejected)} report file(s) failed validation")
        if not summary.globs:
            tracker.warning("no valid report files to evaluate", ctx.input_path)
            ctx.finish(RunState.EARLY_EXIT, RunStatus.NO_DATA)
            return

        self._assert_rules(db, run, ctx, summary.globs)
        tracker.checkpoint(Checkpoint.ASSERTED)

        outcome = self._evaluate(db, run, summary.globs)
        if outcome.error is not None:
            if not outcome.results:
                raise NoEvaluationResults(f"rule evaluation produced no results: {outcome.error}") from outcome.error
            if self.settings.stop_on_error:
                raise PipelineError(f"rule evaluation failed: {outcome.error}") from outcome.error
            tracker.warning(
                f"rule evaluation failed after {len(outcome.results)} result(s); sending partial results: {outcome.error}"
            )
        ctx.state = RunState.EVALUATED
        tracker.checkpoint(Checkpoint.EVALUATED, results=len(outcome.results))

        if not outcome.results:
            tracker.warning("rule evaluation returned no results; nothing to send")
            ctx.finish(RunState.EARLY_EXIT, RunStatus.NO_DATA)
            return

        self._run_step(db, run, "send", lambda: self.sink.send(self.settings.log_type, outcome.results))
        ctx.results_sent = len(outcome.results)
        ctx.state = RunState.SENT
        tracker.checkpoint(Checkpoint.SENT, results_sent=ctx.results_sent)

        ctx.finish(RunState.DONE, RunStatus.DEGRADED if outcome.degraded else RunStatus.SUCCEEDED)
        tracker.checkpoint(Checkpoint.DONE)

    def _assert_rules(self, db: Session, run: PipelineRun | None, ctx: _RunContext, globs: tuple[str, ...]) -> None:
        # Best effort: this pass checks the rule module itself, not the audited data.
        try:
            self._run_step(
                db,
                run,
                "assert",
                lambda: self.engine.assert_rules([self.settings.rule_module], list(globs), self.settings.culture),
            )
        except Exception as exc:
            if self.settings.stop_on_error:
                raise
            ctx.tracker.warning(f"rule assertion pass failed: {exc}")

    def _evaluate(self, db: Session, run: PipelineRun | None, globs: tuple[str, ...]) -> EvaluationOutcome:
        try:
            results = self._run_step(
                db,
                run,
                "evaluate",
                lambda: self.engine.evaluate(
                    list(self.settings.evaluation_modules),
                    list(globs),
                    self.settings.output_format,
                    self.settings.culture,
                ),
            )
        except RuleEngineError as exc:
            return EvaluationOutcome(results=list(exc.partial_results), error=exc)
        return EvaluationOutcome(results=list(results))

    def _run_step(self, db: Session, run: PipelineRun | None, step_name: str, fn: Callable[[], T]) -> T:
        step = None
        if run is not None:
            step = self._record(db, "create_step", lambda: create_step(db, run_id=run.id, step_name=step_name))
        try:
            result = fn()
        except Exception as exc:
            if step is not None:
                self._record(db, "finish_step", lambda: finish_step_failure(db, step, str(exc)))
            raise
        if step is not None:
            self._record(db, "finish_step", lambda: finish_step_success(db, step))
        return result

    def _record(self, db: Session, action: str, fn: Callable[[], T]) -> T | None:
        # Run history is write-only; a failed write must not change the run outcome.
        try:
            return fn()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("run history write failed", extra={"action": action})
            return None

    def _write_summary(self, result: PipelineResult) -> PipelineResult:
        summary_path = Path(self.settings.output_dir) / f"{result.run_key}.json"
        try:
            write_json(
                summary_path,
                {
                    "run_key": result.run_key,
                    "input_path": result.input_path,
                    "status": result.status.value,
                    "state": result.state.value,
                    "files_discovered": result.files_discovered,
                    "valid_files": result.valid_files,
                    "empty_files": result.empty_files,
                    "malformed_files": result.malformed_files,
                    "globs": list(result.globs),
                    "results_sent": result.results_sent,
                    "warnings": result.warnings,
                    "checkpoints": list(result.checkpoints),
                    "error": result.error,
                },
            )
        except OSError:
            logger.exception("unable to write run summary", extra={"summary_path": str(summary_path)})
            return result
        return replace(result, summary_path=str(summary_path))

    def _result_from_context(self, ctx: _RunContext, *, run_id: int | None) -> PipelineResult:
        summary = ctx.summary
        return PipelineResult(
            run_key=ctx.run_key,
            input_path=str(ctx.input_path),
            status=ctx.status,
            state=ctx.state,
            files_discovered=ctx.files_discovered,
            valid_files=summary.valid_count if summary else 0,
            empty_files=summary.count(OutcomeKind.EMPTY) if summary else 0,
            malformed_files=summary.count(OutcomeKind.MALFORMED) if summary else 0,
            globs=summary.globs if summary else (),
            results_sent=ctx.results_sent,
            warnings=ctx.tracker.warnings,
            error=ctx.error,
            run_id=run_id,
            checkpoints=tuple(int(checkpoint) for checkpoint in ctx.tracker.reached),
        )


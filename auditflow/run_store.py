from datetime import UTC, datetime

from sqlalchemy.orm import Session

from auditflow.db_models import PipelineRun, RejectedReport, StepRun
from auditflow.schemas import ClassifiedReport, PipelineResult


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def create_run(db: Session, *, run_key: str, input_path: str) -> PipelineRun:
    run = PipelineRun(run_key=run_key, input_path=input_path, status="running", state="start", started_at=utc_now())
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def create_step(db: Session, *, run_id: int, step_name: str) -> StepRun:
    step = StepRun(run_id=run_id, step_name=step_name, status="started", started_at=utc_now())
    db.add(step)
    db.commit()
    db.refresh(step)
    return step


def finish_step_success(db: Session, step: StepRun) -> None:
    finished_at = utc_now()
    step.status = "succeeded"
    step.completed_at = finished_at
    step.duration_ms = (finished_at - step.started_at).total_seconds() * 1000
    step.error = None
    db.commit()


def finish_step_failure(db: Session, step: StepRun, error: str) -> None:
    finished_at = utc_now()
    step.status = "failed"
    step.completed_at = finished_at
    step.duration_ms = (finished_at - step.started_at).total_seconds() * 1000
    step.error = error
    db.commit()


def store_rejected_reports(db: Session, *, run_id: int, rejected: list[ClassifiedReport]) -> None:
    for item in rejected:
        db.add(
            RejectedReport(
                run_id=run_id,
                path=str(item.report.path),
                outcome=item.outcome.kind.value,
                reason=item.outcome.reason,
            )
        )
    db.commit()


def mark_run_finished(db: Session, run: PipelineRun, result: PipelineResult) -> None:
    run.status = result.status.value
    run.state = result.state.value
    run.files_discovered = result.files_discovered
    run.valid_files = result.valid_files
    run.rejected_files = result.empty_files + result.malformed_files
    run.results_sent = result.results_sent
    run.warnings = result.warnings
    run.error = result.error
    run.completed_at = utc_now()
    db.commit()

from dataclasses import dataclass
from enum import Enum
import logging
import sys
from typing import Protocol, TextIO


logger = logging.getLogger(__name__)


class Checkpoint(int, Enum):
    LOCATED = 25
    VALIDATED = 40
    ASSERTED = 60
    EVALUATED = 80
    SENT = 90
    DONE = 100

    @property
    def label(self) -> str:
        return self.name.lower()


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    checkpoint: Checkpoint
    detail: dict[str, object]

    @property
    def percent(self) -> int:
        return int(self.checkpoint)


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    message: str
    path: str | None = None


class ProgressReporter(Protocol):
    def checkpoint(self, event: ProgressEvent) -> None: ...

    def diagnostic(self, event: Diagnostic) -> None: ...


class LoggingReporter:
    def checkpoint(self, event: ProgressEvent) -> None:
        logger.info(
            "pipeline checkpoint reached",
            extra={"checkpoint": event.checkpoint.label, "percent": event.percent, **event.detail},
        )

    def diagnostic(self, event: Diagnostic) -> None:
        level = logging.ERROR if event.severity is Severity.ERROR else logging.WARNING
        logger.log(level, event.message, extra={"report_path": event.path})


class AzurePipelinesReporter:
    """Render events as Azure Pipelines logging commands."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout

    def checkpoint(self, event: ProgressEvent) -> None:
        self._write(f"##vso[task.setprogress value={event.percent};]{event.checkpoint.label}")

    def diagnostic(self, event: Diagnostic) -> None:
        properties = f"type={event.severity.value};"
        if event.path:
            properties += f"sourcepath={event.path};"
        # Logging commands are line based.
        message = " ".join(event.message.splitlines())
        self._write(f"##vso[task.logissue {properties}]{message}")

    def _write(self, line: str) -> None:
        self.stream.write(line + "\n")
        self.stream.flush()


class CompositeReporter:
    def __init__(self, *reporters: ProgressReporter) -> None:
        self.reporters = reporters

    def checkpoint(self, event: ProgressEvent) -> None:
        for reporter in self.reporters:
            reporter.checkpoint(event)

    def diagnostic(self, event: Diagnostic) -> None:
        for reporter in self.reporters:
            reporter.diagnostic(event)


class ProgressTracker:
    """Per-run wrapper that keeps checkpoints ordered and isolates reporter faults."""

    def __init__(self, reporter: ProgressReporter) -> None:
        self.reporter = reporter
        self.reached: list[Checkpoint] = []
        self.warnings = 0
        self.errors = 0

    def checkpoint(self, checkpoint: Checkpoint, **detail: object) -> None:
        if self.reached and checkpoint <= self.reached[-1]:
            raise ValueError(f"checkpoint {checkpoint.label} emitted out of order")
        self.reached.append(checkpoint)
        self._deliver(self.reporter.checkpoint, ProgressEvent(checkpoint, dict(detail)))

    def warning(self, message: str, path: object | None = None) -> None:
        self.warnings += 1
        self._deliver(self.reporter.diagnostic, Diagnostic(Severity.WARNING, message, _as_path(path)))

    def error(self, message: str, path: object | None = None) -> None:
        self.errors += 1
        self._deliver(self.reporter.diagnostic, Diagnostic(Severity.ERROR, message, _as_path(path)))

    def _deliver(self, method, event) -> None:
        try:
            method(event)
        except Exception:
            # Reporting is observational and must never change the run outcome.
            logger.exception("progress reporter failed", extra={"event": repr(event)})


def _as_path(path: object | None) -> str | None:
    return None if path is None else str(path)

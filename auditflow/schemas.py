from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class OutcomeKind(str, Enum):
    VALID = "valid"
    EMPTY = "empty"
    MALFORMED = "malformed"


class RunState(str, Enum):
    START = "start"
    LOCATED = "located"
    VALIDATED = "validated"
    EVALUATED = "evaluated"
    SENT = "sent"
    EARLY_EXIT = "early_exit"
    DONE = "done"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    NO_DATA = "no_data"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self is not RunStatus.FAILED


@dataclass(frozen=True)
class ReportFile:
    path: Path
    directory: Path

    @classmethod
    def from_path(cls, path: Path) -> "ReportFile":
        resolved = path.resolve()
        return cls(path=resolved, directory=resolved.parent)


@dataclass(frozen=True)
class ValidationOutcome:
    kind: OutcomeKind
    reason: str | None = None

    @classmethod
    def valid(cls) -> "ValidationOutcome":
        return cls(OutcomeKind.VALID)

    @classmethod
    def empty(cls) -> "ValidationOutcome":
        return cls(OutcomeKind.EMPTY)

    @classmethod
    def malformed(cls, reason: str) -> "ValidationOutcome":
        return cls(OutcomeKind.MALFORMED, reason)

    @property
    def is_valid(self) -> bool:
        return self.kind is OutcomeKind.VALID


@dataclass(frozen=True)
class ClassifiedReport:
    report: ReportFile
    outcome: ValidationOutcome


@dataclass(frozen=True)
class ValidationSummary:
    classified: tuple[ClassifiedReport, ...]
    globs: tuple[str, ...]

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for item in self.classified if item.outcome.kind is kind)

    @property
    def valid_count(self) -> int:
        return self.count(OutcomeKind.VALID)

    @property
    def rejected(self) -> list[ClassifiedReport]:
        return [item for item in self.classified if not item.outcome.is_valid]


@dataclass(frozen=True)
class EvaluationOutcome:
    results: list[dict[str, object]]
    error: Exception | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None and bool(self.results)


@dataclass(frozen=True)
class PipelineResult:
    run_key: str
    input_path: str
    status: RunStatus
    state: RunState
    files_discovered: int = 0
    valid_files: int = 0
    empty_files: int = 0
    malformed_files: int = 0
    globs: tuple[str, ...] = ()
    results_sent: int = 0
    warnings: int = 0
    error: str | None = None
    run_id: int | None = None
    summary_path: str | None = None
    checkpoints: tuple[int, ...] = ()

from concurrent.futures import ThreadPoolExecutor
import glob
import json
from pathlib import Path

from auditflow.errors import InputPathNotADirectory, InputPathNotFound
from auditflow.schemas import ClassifiedReport, ReportFile, ValidationOutcome, ValidationSummary


REPORT_PATTERN = "*.json"


def locate_report_files(root: Path) -> list[ReportFile]:
    if not root.exists():
        raise InputPathNotFound(root)
    if not root.is_dir():
        raise InputPathNotADirectory(root)

    return [ReportFile.from_path(path) for path in sorted(root.rglob(REPORT_PATTERN)) if path.is_file()]


def classify_report(report: ReportFile) -> ValidationOutcome:
    try:
        # utf-8-sig tolerates the BOM PowerShell writes by default.
        content = report.path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        return ValidationOutcome.malformed(str(exc))

    if not content.strip():
        return ValidationOutcome.empty()

    try:
        json.loads(content)
    except json.JSONDecodeError as exc:
        return ValidationOutcome.malformed(str(exc))
    return ValidationOutcome.valid()


def build_evaluation_globs(classified: list[ClassifiedReport]) -> tuple[str, ...]:
    directories = {item.report.directory for item in classified if item.outcome.is_valid}
    # Directory names may contain wildcard characters such as "[" that must match literally.
    return tuple(str(Path(glob.escape(str(directory))) / REPORT_PATTERN) for directory in sorted(directories))


def validate_reports(reports: list[ReportFile], *, max_workers: int = 1) -> ValidationSummary:
    """Classify every report and derive the evaluation glob set.

    Files are independent, so they may be read on a thread pool. ``map``
    keeps results in discovery order, which keeps the summary identical
    whatever order the reads complete in.
    """
    if max_workers > 1 and len(reports) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(classify_report, reports))
    else:
        outcomes = [classify_report(report) for report in reports]

    classified = [ClassifiedReport(report, outcome) for report, outcome in zip(reports, outcomes)]
    return ValidationSummary(classified=tuple(classified), globs=build_evaluation_globs(classified))


def write_json(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        json.dump(payload, outfile, indent=2, sort_keys=True)
        outfile.write("\n")

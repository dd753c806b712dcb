import glob
from pathlib import Path

import pytest

from conftest import write_report

from auditflow.errors import InputPathNotADirectory, InputPathNotFound
from auditflow.schemas import OutcomeKind, ReportFile
from auditflow.step_logic import classify_report, locate_report_files, validate_reports


def test_locate_fails_fast_when_root_is_missing(tmp_path: Path) -> None:
    with pytest.raises(InputPathNotFound):
        locate_report_files(tmp_path / "missing")


def test_missing_root_is_also_a_file_not_found_error(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        locate_report_files(tmp_path / "missing")


def test_locate_recurses_and_only_matches_json(export_root: Path) -> None:
    write_report(export_root / "org" / "repos.json", "[]")
    write_report(export_root / "org" / "project" / "pipelines.json", "[]")
    write_report(export_root / "org" / "notes.txt", "ignored")

    reports = locate_report_files(export_root)

    names = sorted(report.path.name for report in reports)
    assert names == ["pipelines.json", "repos.json"]
    assert all(report.directory == report.path.parent for report in reports)
    assert all(report.path.is_absolute() for report in reports)


def test_locate_returns_empty_list_for_directory_without_reports(export_root: Path) -> None:
    assert locate_report_files(export_root) == []


def test_classify_valid_empty_and_malformed(export_root: Path) -> None:
    valid = ReportFile.from_path(write_report(export_root / "valid.json", '{"a": 1}'))
    empty = ReportFile.from_path(write_report(export_root / "empty.json", "  \n\t "))
    broken = ReportFile.from_path(write_report(export_root / "broken.json", '{"a": '))

    assert classify_report(valid).kind is OutcomeKind.VALID
    assert classify_report(empty).kind is OutcomeKind.EMPTY

    malformed = classify_report(broken)
    assert malformed.kind is OutcomeKind.MALFORMED
    assert malformed.reason


def test_classify_accepts_utf8_bom(export_root: Path) -> None:
    path = export_root / "bom.json"
    path.write_bytes(b"\xef\xbb\xbf" + b'{"project": "contoso"}')

    assert classify_report(ReportFile.from_path(path)).is_valid


def test_glob_set_excludes_directories_with_only_rejected_files(export_root: Path) -> None:
    write_report(export_root / "dir1" / "a.json", '{"a":1}')
    write_report(export_root / "dir2" / "empty.json", "")
    write_report(export_root / "dir3" / "broken.json", "not json")

    summary = validate_reports(locate_report_files(export_root))

    assert summary.globs == (str((export_root / "dir1").resolve() / "*.json"),)
    assert summary.valid_count == 1
    assert summary.count(OutcomeKind.EMPTY) == 1
    assert summary.count(OutcomeKind.MALFORMED) == 1
    assert len(summary.rejected) == 2


def test_glob_set_is_deduplicated_per_directory(export_root: Path) -> None:
    write_report(export_root / "dir1" / "a.json", "{}")
    write_report(export_root / "dir1" / "b.json", "[]")
    write_report(export_root / "dir1" / "c.json", "")

    summary = validate_reports(locate_report_files(export_root))

    assert len(summary.globs) == 1


def test_validation_is_idempotent_and_independent_of_worker_count(export_root: Path) -> None:
    for index in range(12):
        content = "" if index % 4 == 0 else ("{" if index % 4 == 1 else f'{{"id": {index}}}')
        write_report(export_root / f"dir{index % 5}" / f"report{index}.json", content)
    reports = locate_report_files(export_root)

    sequential = validate_reports(reports, max_workers=1)
    parallel = validate_reports(reports, max_workers=4)
    repeated = validate_reports(reports, max_workers=4)

    assert sequential == parallel == repeated


def test_locate_rejects_a_file_as_the_root(export_root: Path) -> None:
    report = write_report(export_root / "single.json", '{"a": 1}')

    with pytest.raises(InputPathNotADirectory):
        locate_report_files(report)


def test_glob_escapes_wildcard_characters_in_directory_names(export_root: Path) -> None:
    report = write_report(export_root / "proj[1]" / "repos.json", '{"a": 1}')

    summary = validate_reports(locate_report_files(export_root))

    assert len(summary.globs) == 1
    assert glob.glob(summary.globs[0]) == [str(report.resolve())]

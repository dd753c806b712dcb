from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from auditflow.config import Settings
from auditflow.database import build_session_factory
from auditflow.errors import RuleEngineError, TelemetrySendError
from auditflow.pipeline import PipelineRunner
from auditflow.progress import Diagnostic, ProgressEvent


class FakeRuleEngine:
    def __init__(
        self,
        results: list[dict[str, object]] | None = None,
        *,
        assert_error: Exception | None = None,
        evaluate_error: RuleEngineError | None = None,
    ) -> None:
        self.results = results or []
        self.assert_error = assert_error
        self.evaluate_error = evaluate_error
        self.assert_calls: list[tuple[list[str], list[str], str]] = []
        self.evaluate_calls: list[tuple[list[str], list[str], str, str]] = []

    @property
    def call_count(self) -> int:
        return len(self.assert_calls) + len(self.evaluate_calls)

    def assert_rules(self, modules: Sequence[str], globs: Sequence[str], culture: str) -> None:
        self.assert_calls.append((list(modules), list(globs), culture))
        if self.assert_error:
            raise self.assert_error

    def evaluate(
        self,
        modules: Sequence[str],
        globs: Sequence[str],
        output_format: str,
        culture: str,
    ) -> list[dict[str, object]]:
        self.evaluate_calls.append((list(modules), list(globs), output_format, culture))
        if self.evaluate_error:
            raise self.evaluate_error
        return list(self.results)


class FakeSink:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.batches: list[tuple[str, list[dict[str, object]]]] = []

    def send(self, log_type: str, records: Sequence[dict[str, object]]) -> None:
        self.batches.append((log_type, list(records)))
        if self.error:
            raise self.error


class RecordingReporter:
    def __init__(self) -> None:
        self.checkpoints: list[ProgressEvent] = []
        self.diagnostics: list[Diagnostic] = []

    @property
    def percents(self) -> list[int]:
        return [event.percent for event in self.checkpoints]

    def checkpoint(self, event: ProgressEvent) -> None:
        self.checkpoints.append(event)

    def diagnostic(self, event: Diagnostic) -> None:
        self.diagnostics.append(event)


def rule_results(count: int) -> list[dict[str, object]]:
    return [
        {"RuleName": f"Azure.DevOps.Rule{index}", "TargetName": f"target-{index}", "Outcome": "Fail"}
        for index in range(count)
    ]


def write_report(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "export").mkdir(parents=True, exist_ok=True)
    (tmp_path / "outputs").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def export_root(temp_workspace: Path) -> Path:
    return temp_workspace / "export"


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="auditflow",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        report_output_path=str(temp_workspace / "export"),
        output_dir=str(temp_workspace / "outputs"),
        rule_module="PSRule.Rules.AzureDevOps",
        evaluation_modules=("PSRule.Rules.AzureDevOps", "PSRule.Monitor"),
        output_format="Json",
        culture="en-US",
        log_type="PSRule",
        workspace_id="00000000-0000-0000-0000-000000000000",
        shared_key="c2VjcmV0LWtleQ==",
        error_action="continue",
        validation_workers=2,
        max_send_retries=0,
        retry_backoff_seconds=0,
        telemetry_timeout_seconds=5,
        pwsh_path="pwsh",
    )


@pytest.fixture()
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture()
def make_runner(test_settings: Settings, reporter: RecordingReporter) -> Callable[..., PipelineRunner]:
    session_factory = build_session_factory(test_settings.database_url)

    def factory(engine: FakeRuleEngine, sink: FakeSink, **overrides: object) -> PipelineRunner:
        settings = test_settings.with_overrides(**overrides)
        return PipelineRunner(settings, session_factory, engine=engine, sink=sink, reporter=reporter)

    return factory


@pytest.fixture()
def failing_sink() -> FakeSink:
    return FakeSink(error=TelemetrySendError("log analytics rejected batch: HTTP 403", status_code=403))

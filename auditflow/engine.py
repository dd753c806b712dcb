import json
import logging
import subprocess
from collections.abc import Sequence
from typing import Protocol

from auditflow.errors import RuleEngineError


logger = logging.getLogger(__name__)


class RuleEngine(Protocol):
    def assert_rules(self, modules: Sequence[str], globs: Sequence[str], culture: str) -> None: ...

    def evaluate(
        self,
        modules: Sequence[str],
        globs: Sequence[str],
        output_format: str,
        culture: str,
    ) -> list[dict[str, object]]: ...


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _ps_array(values: Sequence[str]) -> str:
    return "@(" + ", ".join(_ps_quote(value) for value in values) + ")"


def build_assert_script(modules: Sequence[str], globs: Sequence[str], culture: str) -> str:
    return "\n".join(
        [
            "$ErrorActionPreference = 'Stop'",
            "Import-Module PSRule",
            f"Assert-PSRule -Module {_ps_array(modules)} -InputPath {_ps_array(globs)} "
            f"-Format Detect -Culture {_ps_quote(culture)} | Out-Null",
        ]
    )


def build_evaluate_script(
    modules: Sequence[str],
    globs: Sequence[str],
    output_format: str,
    culture: str,
) -> str:
    return "\n".join(
        [
            "$ErrorActionPreference = 'Stop'",
            "Import-Module PSRule",
            f"Invoke-PSRule -Module {_ps_array(modules)} -InputPath {_ps_array(globs)} "
            f"-Format Detect -Culture {_ps_quote(culture)} -OutputFormat {output_format} -WarningAction SilentlyContinue",
        ]
    )


def parse_results(stdout: str) -> list[dict[str, object]]:
    text = stdout.strip()
    if not text:
        return []

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        # A run that dies mid-stream can leave one complete JSON document per line.
        payload = []
        for line in text.splitlines():
            try:
                payload.append(json.loads(line))
            except json.JSONDecodeError:
                continue

    if isinstance(payload, dict):
        payload = [payload]
    return [item for item in payload if isinstance(item, dict)]


class PowerShellRuleEngine:
    def __init__(self, pwsh_path: str = "pwsh") -> None:
        self.pwsh_path = pwsh_path

    def assert_rules(self, modules: Sequence[str], globs: Sequence[str], culture: str) -> None:
        completed = self._invoke(build_assert_script(modules, globs, culture))
        if completed.returncode != 0:
            raise RuleEngineError(f"assertion pass failed: {self._error_text(completed)}")

    def evaluate(
        self,
        modules: Sequence[str],
        globs: Sequence[str],
        output_format: str,
        culture: str,
    ) -> list[dict[str, object]]:
        completed = self._invoke(build_evaluate_script(modules, globs, output_format, culture))
        results = parse_results(completed.stdout)
        if completed.returncode != 0:
            raise RuleEngineError(
                f"evaluation pass failed: {self._error_text(completed)}",
                partial_results=results,
            )
        return results

    def _invoke(self, script: str) -> subprocess.CompletedProcess[str]:
        logger.debug("invoking rule engine", extra={"pwsh_path": self.pwsh_path})
        try:
            return subprocess.run(
                [self.pwsh_path, "-NoLogo", "-NoProfile", "-NonInteractive", "-Command", script],
                check=False,
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            raise RuleEngineError(f"unable to start rule engine '{self.pwsh_path}': {exc}") from exc

    @staticmethod
    def _error_text(completed: subprocess.CompletedProcess[str]) -> str:
        stderr = (completed.stderr or "").strip()
        return stderr or f"exit code {completed.returncode}"

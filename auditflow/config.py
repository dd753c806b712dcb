from dataclasses import dataclass, replace
import os

from dotenv import load_dotenv


load_dotenv()

ERROR_ACTIONS = ("continue", "stop")


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    report_output_path: str
    output_dir: str
    rule_module: str
    evaluation_modules: tuple[str, ...]
    output_format: str
    culture: str
    log_type: str
    workspace_id: str
    shared_key: str
    error_action: str
    validation_workers: int
    max_send_retries: int
    retry_backoff_seconds: float
    telemetry_timeout_seconds: float
    pwsh_path: str

    @property
    def stop_on_error(self) -> bool:
        return self.error_action == "stop"

    def with_overrides(self, **overrides: object) -> "Settings":
        changes = {key: value for key, value in overrides.items() if value is not None}
        updated = replace(self, **changes)
        if updated.error_action not in ERROR_ACTIONS:
            raise ValueError(f"error_action must be one of {ERROR_ACTIONS}: {updated.error_action!r}")
        return updated


def _split_modules(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def get_settings() -> Settings:
    error_action = os.getenv("ERROR_ACTION", "continue").strip().lower()
    if error_action not in ERROR_ACTIONS:
        raise ValueError(f"ERROR_ACTION must be one of {ERROR_ACTIONS}: {error_action!r}")

    return Settings(
        app_name=os.getenv("APP_NAME", "auditflow"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./auditflow.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        report_output_path=os.getenv("REPORT_OUTPUT_PATH", "./export"),
        output_dir=os.getenv("OUTPUT_DIR", "./outputs"),
        rule_module=os.getenv("RULE_MODULE", "PSRule.Rules.AzureDevOps"),
        evaluation_modules=_split_modules(
            os.getenv("EVALUATION_MODULES", "PSRule.Rules.AzureDevOps,PSRule.Monitor")
        ),
        output_format=os.getenv("OUTPUT_FORMAT", "Json"),
        culture=os.getenv("CULTURE", "en-US"),
        log_type=os.getenv("LOG_TYPE", "PSRule"),
        workspace_id=os.getenv("LOG_ANALYTICS_WORKSPACE_ID", ""),
        shared_key=os.getenv("LOG_ANALYTICS_SHARED_KEY", ""),
        error_action=error_action,
        validation_workers=int(os.getenv("VALIDATION_WORKERS", "4")),
        max_send_retries=int(os.getenv("MAX_SEND_RETRIES", "2")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        telemetry_timeout_seconds=float(os.getenv("TELEMETRY_TIMEOUT_SECONDS", "30")),
        pwsh_path=os.getenv("PWSH_PATH", "pwsh"),
    )

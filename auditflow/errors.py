class PipelineError(RuntimeError):
    pass


class InputPathNotFound(PipelineError, FileNotFoundError):
    def __init__(self, path) -> None:
        super().__init__(f"report output path not found: {path}")
        self.path = path


class InputPathNotADirectory(PipelineError, NotADirectoryError):
    def __init__(self, path) -> None:
        super().__init__(f"report output path is not a directory: {path}")
        self.path = path


class NoEvaluationResults(PipelineError):
    pass


class RuleEngineError(PipelineError):
    def __init__(self, message: str, *, partial_results: list[dict[str, object]] | None = None) -> None:
        super().__init__(message)
        self.partial_results = list(partial_results or [])


class TelemetrySendError(PipelineError):
    def __init__(self, message: str, *, status_code: int | None = None, transient: bool | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient

    @property
    def retryable(self) -> bool:
        if self.transient is not None:
            return self.transient
        # Transport errors carry no status code.
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

"""Error taxonomy for the question-answering pipeline.

Every stage raises its own subclass of ``PipelineError``. Only the
pipeline controller catches them, logs the detail and replaces it with
the generic user-facing message.
"""


class PipelineError(Exception):
    stage = "pipeline"


class SchemaLoadError(PipelineError):
    stage = "schema"


class ModelConfigError(PipelineError):
    stage = "model_config"


class ModelCallError(PipelineError):
    """Transport failure, non-2xx status or unexpected body from the model API."""

    stage = "model_call"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TranslationError(PipelineError):
    stage = "translate"


class SecurityValidationError(PipelineError):
    stage = "validate"


class ExecutionError(PipelineError):
    stage = "execute"


class ExecutionTimeoutError(ExecutionError):
    def __init__(self, timeout_ms: int):
        super().__init__(f"Query timeout exceeded ({timeout_ms} ms)")
        self.timeout_ms = timeout_ms


class FormattingError(PipelineError):
    stage = "format"


class MalformedResponseError(PipelineError):
    stage = "finalize"

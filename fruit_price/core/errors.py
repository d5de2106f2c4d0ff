class PipelineError(Exception):
    code = 'PIPELINE_ERROR'
    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.code = code or self.code
        self.message = message
        self.status_code = status_code or self.status_code
        self.details = details or {}


class ModelInitializationError(PipelineError):
    code = 'MODEL_INIT_FAILED'
    status_code = 503


class UnsupportedBackendError(PipelineError):
    code = 'BACKEND_UNSUPPORTED'
    status_code = 400


class OcrResourceError(PipelineError):
    code = 'OCR_RESOURCE_MISSING'
    status_code = 503


class InvalidInputError(PipelineError):
    code = 'INVALID_INPUT'
    status_code = 400


class FrameDroppedError(PipelineError):
    code = 'FRAME_DROPPED'
    status_code = 429

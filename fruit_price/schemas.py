from pydantic import BaseModel, Field

from fruit_price.core.backends import Backend, ModelVersion


class DetectionOut(BaseModel):
    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    bbox: list[float]
    source_bbox: list[float]


class TextFragmentOut(BaseModel):
    text: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    bbox: list[float] | None = None
    anchor: list[float] | None = None


class PriceAssociationOut(BaseModel):
    detection: DetectionOut
    price_text: str | None = None
    distance: float | None = None
    fragment: TextFragmentOut | None = None


class StageErrorOut(BaseModel):
    stage: str
    code: str
    message: str


class DetectResponse(BaseModel):
    ok: bool = True
    model: str | None = None
    inference_time_ms: int
    recognition_time_ms: int = 0
    frame_width: int
    frame_height: int
    rotation_degrees: int = 0
    associations: list[PriceAssociationOut]
    detections: list[DetectionOut]
    text_fragments: list[TextFragmentOut] = []
    recognized_text: str = ''
    errors: list[StageErrorOut] = []


class DetectorOptionsOut(BaseModel):
    threshold: float
    max_results: int
    num_threads: int
    backend: Backend
    model_version: ModelVersion


class DetectorConfigRequest(BaseModel):
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    max_results: int | None = Field(default=None, ge=1)
    num_threads: int | None = Field(default=None, ge=1)
    backend: Backend | None = None
    model_version: ModelVersion | None = None


class DetectorConfigResponse(BaseModel):
    ok: bool = True
    state: str
    model: str | None = None
    device: str | None = None
    options: DetectorOptionsOut
    message: str | None = None


class HealthResponse(BaseModel):
    ok: bool
    version: str
    provider: str
    detector_state: str
    model: str | None = None
    model_weights_path: str | None = None
    device: str | None = None
    detector_message: str | None = None
    options: DetectorOptionsOut
    text_recognizer: dict | None = None
    dropped_frames: int = 0
    uptime_s: float


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    message: str
    request_id: str | None = None
    details: dict | None = None

from dataclasses import dataclass, field
from enum import Enum

Box = tuple[float, float, float, float]
Point = tuple[float, float]


class LifecycleState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    READY = 'ready'
    FAILED = 'failed'


@dataclass(frozen=True)
class Detection:
    label: str
    confidence: float
    bbox: Box


@dataclass(frozen=True)
class TextFragment:
    text: str
    bbox: Box | None = None
    anchor: Point | None = None
    confidence: float | None = None

    @property
    def reference_point(self) -> Point | None:
        if self.anchor is not None:
            return (float(self.anchor[0]), float(self.anchor[1]))
        if self.bbox is not None:
            x0, y0, x1, y1 = self.bbox
            return ((x0 + x1) / 2.0, (y0 + y1) / 2.0)
        return None


@dataclass(frozen=True)
class DetectionResult:
    detections: list[Detection]
    model_id: str
    latency_ms: int
    image_size: tuple[int, int]


@dataclass(frozen=True)
class PriceAssociation:
    detection: Detection
    price_text: str | None = None
    distance: float | None = None
    fragment: TextFragment | None = None


@dataclass(frozen=True)
class StageError:
    stage: str
    code: str
    message: str


@dataclass(frozen=True)
class PipelineResult:
    associations: tuple[PriceAssociation, ...]
    inference_time_ms: int
    frame_width: int
    frame_height: int
    recognized_text: str = ''
    recognition_time_ms: int = 0
    model_id: str | None = None
    fragments: tuple[TextFragment, ...] = ()
    errors: tuple[StageError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def detections(self) -> list[Detection]:
        return [association.detection for association in self.associations]

from fruit_price.core.detector import Detector
from fruit_price.core.types import Detection

# (label, confidence, box as fractions of the frame)
_FIXTURE = (
    ('apple', 0.91, (0.05, 0.10, 0.35, 0.45)),
    ('banana', 0.74, (0.40, 0.08, 0.80, 0.40)),
    ('orange', 0.58, (0.10, 0.55, 0.40, 0.90)),
    ('lemon', 0.33, (0.55, 0.55, 0.80, 0.85)),
    ('pear', 0.21, (0.82, 0.10, 0.98, 0.50)),
)


class DummyProvider(Detector):
    def __init__(self, model_id: str = 'dummy-fruit-v1') -> None:
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def predict(self, image) -> list[Detection]:
        width, height = image.size
        return [
            Detection(
                label=label,
                confidence=confidence,
                bbox=(x0 * width, y0 * height, x1 * width, y1 * height),
            )
            for label, confidence, (x0, y0, x1, y1) in _FIXTURE
        ]

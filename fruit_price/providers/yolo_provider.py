from pathlib import Path

from fruit_price.core.detector import Detector
from fruit_price.core.errors import ModelInitializationError
from fruit_price.core.types import Detection


class YoloProvider(Detector):
    def __init__(
        self,
        weights_path: str,
        device: str = 'cpu',
        threshold: float = 0.5,
        max_results: int = 3,
        num_threads: int = 2,
    ) -> None:
        try:
            import torch
            from ultralytics import YOLO
        except ImportError as exc:
            raise ModelInitializationError('ultralytics is required for PROVIDER=yolo. Install it first.') from exc

        weights = Path(weights_path)
        if not weights.exists():
            raise ModelInitializationError(
                f'model weights not found: {weights.as_posix()}',
                details={'weights_path': weights.as_posix()},
            )
        try:
            self._model = YOLO(str(weights))
        except Exception as exc:
            raise ModelInitializationError(f'Object detector failed to load {weights.name}: {exc}') from exc

        torch.set_num_threads(int(num_threads))
        self._weights = weights
        self._device = device
        self._threshold = float(threshold)
        self._max_results = int(max_results)

    @property
    def model_id(self) -> str:
        return self._weights.stem

    @property
    def weights_path(self) -> str | None:
        return str(self._weights.resolve())

    def predict(self, image) -> list[Detection]:
        prediction = self._model(
            image.convert('RGB'),
            conf=self._threshold,
            max_det=self._max_results,
            device=self._device,
            verbose=False,
        )

        detections: list[Detection] = []
        if prediction:
            result = prediction[0]
            names = result.names
            boxes = result.boxes
            if boxes is not None:
                for cls_id, conf, xyxy in zip(boxes.cls.tolist(), boxes.conf.tolist(), boxes.xyxy.tolist()):
                    label = str(names.get(int(cls_id), int(cls_id)))
                    detections.append(
                        Detection(
                            label=label,
                            confidence=float(conf),
                            bbox=tuple(float(v) for v in xyxy),
                        )
                    )
        return detections

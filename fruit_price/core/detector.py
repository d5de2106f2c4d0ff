import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Callable

from fruit_price.core.backends import Backend, ModelVersion, coerce_model_version, model_file_for, resolve_strategy
from fruit_price.core.errors import InvalidInputError, ModelInitializationError, PipelineError
from fruit_price.core.image_region import normalize_rotation, rotate_image, validate_image
from fruit_price.core.postprocess import rank_detections
from fruit_price.core.types import Detection, DetectionResult, LifecycleState
from fruit_price.utils.timings import measure_ms

logger = logging.getLogger('fruit_price.detector')


class Detector(ABC):
    @abstractmethod
    def predict(self, image) -> list[Detection]:
        raise NotImplementedError

    @property
    @abstractmethod
    def model_id(self) -> str:
        raise NotImplementedError

    @property
    def weights_path(self) -> str | None:
        return None


@dataclass(frozen=True)
class DetectorOptions:
    threshold: float = 0.5
    max_results: int = 3
    num_threads: int = 2
    backend: Backend = Backend.CPU
    model_version: ModelVersion = ModelVersion.V1

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.threshold) <= 1.0:
            raise InvalidInputError(f'threshold must be within [0, 1], got {self.threshold!r}.')
        if int(self.max_results) < 1:
            raise InvalidInputError(f'max_results must be at least 1, got {self.max_results!r}.')
        if int(self.num_threads) < 1:
            raise InvalidInputError(f'num_threads must be at least 1, got {self.num_threads!r}.')
        try:
            backend = Backend(self.backend)
        except ValueError as exc:
            raise InvalidInputError(f'Unknown backend {self.backend!r}.') from exc
        object.__setattr__(self, 'backend', backend)
        object.__setattr__(self, 'model_version', coerce_model_version(self.model_version))

    def as_dict(self) -> dict:
        values = asdict(self)
        values['backend'] = self.backend.value
        values['model_version'] = self.model_version.value
        return values


DetectorFactory = Callable[[str, DetectorOptions, str, str], Detector]


def build_detector(provider: str, options: DetectorOptions, device: str, model_dir: str) -> Detector:
    provider = provider.strip().lower()
    if provider == 'dummy':
        from fruit_price.providers.dummy_provider import DummyProvider

        return DummyProvider(model_id=f'dummy-fruit-{options.model_version.value}')
    if provider == 'yolo':
        from fruit_price.providers.yolo_provider import YoloProvider

        return YoloProvider(
            weights_path=str(Path(model_dir) / model_file_for(options.model_version)),
            device=device,
            threshold=options.threshold,
            max_results=options.max_results,
            num_threads=options.num_threads,
        )
    raise ModelInitializationError(f'Unsupported PROVIDER={provider!r}')


class DetectorContext:
    """Owns a detector and its lifecycle: uninitialized -> ready -> failed.

    The options survive `clear()` and failed setups, so the next `detect()`
    rebuilds the model with the same threshold, result cap and backend.
    Reconfiguration and inference share one lock and never overlap.
    """

    def __init__(
        self,
        options: DetectorOptions | None = None,
        provider: str = 'dummy',
        model_dir: str = 'models',
        factory: DetectorFactory | None = None,
    ) -> None:
        self._options = options or DetectorOptions()
        self._provider = provider
        self._model_dir = model_dir
        self._factory = factory or build_detector
        self._detector: Detector | None = None
        self._state = LifecycleState.UNINITIALIZED
        self._device: str | None = None
        self._last_error: PipelineError | None = None
        self._notices: list[PipelineError] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def options(self) -> DetectorOptions:
        return self._options

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def device(self) -> str | None:
        return self._device

    @property
    def last_error(self) -> PipelineError | None:
        return self._last_error

    @property
    def model_id(self) -> str | None:
        detector = self._detector
        return detector.model_id if detector is not None else None

    @property
    def weights_path(self) -> str | None:
        detector = self._detector
        return detector.weights_path if detector is not None else None

    def take_notices(self) -> list[PipelineError]:
        with self._lock:
            notices, self._notices = self._notices, []
        return notices

    def setup(self) -> LifecycleState:
        with self._lock:
            strategy, notice = resolve_strategy(self._options.backend)
            if notice is not None:
                self._notices.append(notice)
            try:
                detector = self._factory(self._provider, self._options, strategy.device, self._model_dir)
            except ModelInitializationError as exc:
                self._fail(exc)
                return self._state
            except Exception as exc:
                logger.exception('Detector failed to load provider=%s', self._provider)
                self._fail(ModelInitializationError(f'Object detector failed to initialize: {exc}'))
                return self._state

            self._detector = detector
            self._device = strategy.device
            self._state = LifecycleState.READY
            self._last_error = None
            logger.info(
                'Detector ready provider=%s model=%s device=%s threshold=%s max_results=%s threads=%s',
                self._provider,
                detector.model_id,
                strategy.device,
                self._options.threshold,
                self._options.max_results,
                self._options.num_threads,
            )
            return self._state

    def _fail(self, error: ModelInitializationError) -> None:
        self._detector = None
        self._state = LifecycleState.FAILED
        self._last_error = error
        logger.error('Detector initialization failed provider=%s message=%s', self._provider, error.message)

    def clear(self) -> None:
        with self._lock:
            self._detector = None
            self._device = None
            self._state = LifecycleState.UNINITIALIZED

    def reconfigure(self, **changes) -> LifecycleState:
        with self._lock:
            self._options = replace(self._options, **changes)
            self.clear()
            return self.setup()

    def detect(self, image, rotation_degrees: int = 0) -> DetectionResult:
        rotation = normalize_rotation(rotation_degrees)
        validate_image(image)

        with self._lock:
            if self._state != LifecycleState.READY:
                self.setup()
            detector = self._detector
            if detector is None:
                message = self._last_error.message if self._last_error else 'Object detector is not initialized.'
                raise ModelInitializationError(message)

            options = self._options
            with measure_ms() as elapsed:
                upright = rotate_image(image, rotation)
                raw = detector.predict(upright)
                detections = rank_detections(raw, options.threshold, options.max_results, upright.size)
                latency_ms = elapsed()

        return DetectionResult(
            detections=detections,
            model_id=detector.model_id,
            latency_ms=latency_ms,
            image_size=upright.size,
        )

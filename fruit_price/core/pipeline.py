import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from fruit_price.config import Settings
from fruit_price.core.detector import DetectorContext, DetectorOptions
from fruit_price.core.errors import InvalidInputError, PipelineError
from fruit_price.core.image_region import normalize_rotation, rotate_image, rotated_size, validate_image
from fruit_price.core.language_data import LanguageDataStore
from fruit_price.core.price_associator import AssociationPolicy, PriceAssociator
from fruit_price.core.types import DetectionResult, PipelineResult, StageError, TextFragment
from fruit_price.providers.text_recognizer import TextRecognizer, create_text_recognizer
from fruit_price.utils.timings import measure_ms

logger = logging.getLogger('fruit_price.pipeline')

ErrorCallback = Callable[[str], None]
ResultsCallback = Callable[[PipelineResult], None]


class FramePipeline:
    """Run detection and OCR over one frame and attach prices to detections.

    One frame is processed at a time. `process()` waits for the previous
    frame; `submit()` drops the new frame instead, so a slow model never
    builds a backlog.
    """

    def __init__(
        self,
        detector: DetectorContext,
        recognizer: TextRecognizer | None,
        associator: PriceAssociator | None = None,
        run_concurrently: bool = True,
        on_error: ErrorCallback | None = None,
        on_results: ResultsCallback | None = None,
    ) -> None:
        self.detector = detector
        self.recognizer = recognizer
        self.associator = associator or PriceAssociator()
        self._on_error = on_error
        self._on_results = on_results
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='frame-stage') if run_concurrently else None
        self._frame_lock = threading.Lock()
        self._dropped_frames = 0
        self._counter_lock = threading.Lock()

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    @property
    def busy(self) -> bool:
        return self._frame_lock.locked()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def submit(self, image, rotation_degrees: int = 0) -> PipelineResult | None:
        if not self._frame_lock.acquire(blocking=False):
            with self._counter_lock:
                self._dropped_frames += 1
                dropped = self._dropped_frames
            logger.debug('Frame dropped, pipeline busy dropped_frames=%s', dropped)
            return None
        try:
            return self._run(image, rotation_degrees)
        finally:
            self._frame_lock.release()

    def process(self, image, rotation_degrees: int = 0) -> PipelineResult:
        with self._frame_lock:
            return self._run(image, rotation_degrees)

    def _notify_error(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)

    def _detect(self, image, rotation: int) -> DetectionResult:
        return self.detector.detect(image, rotation)

    def _recognize(self, image, rotation: int) -> tuple[list[TextFragment], int]:
        with measure_ms() as elapsed:
            fragments = self.recognizer.recognize_fragments(rotate_image(image, rotation))
            return fragments, elapsed()

    def _run(self, image, rotation_degrees: int) -> PipelineResult:
        try:
            rotation = normalize_rotation(rotation_degrees)
            validate_image(image)
        except InvalidInputError as exc:
            logger.warning('Frame rejected code=%s message=%s', exc.code, exc.message)
            self._notify_error(exc.message)
            raise

        errors: list[StageError] = []
        if self._executor is not None:
            detection_future = self._executor.submit(self._detect, image, rotation)
            recognition_future = self._executor.submit(self._recognize, image, rotation) if self.recognizer else None
            detection_outcome = _outcome(detection_future.result)
            recognition_outcome = _outcome(recognition_future.result) if recognition_future else None
        else:
            detection_outcome = _outcome(lambda: self._detect(image, rotation))
            recognition_outcome = _outcome(lambda: self._recognize(image, rotation)) if self.recognizer else None

        for notice in self.detector.take_notices():
            errors.append(StageError(stage='setup', code=notice.code, message=notice.message))

        detection, detection_error = detection_outcome
        if detection_error is not None:
            errors.append(_stage_error('detection', 'DETECTION_FAILED', detection_error))
            detections = []
            inference_time_ms = 0
            model_id = self.detector.model_id
        else:
            detections = detection.detections
            inference_time_ms = detection.latency_ms
            model_id = detection.model_id

        fragments: list[TextFragment] = []
        recognition_time_ms = 0
        if recognition_outcome is not None:
            recognized, recognition_error = recognition_outcome
            if recognition_error is not None:
                errors.append(_stage_error('recognition', 'RECOGNITION_FAILED', recognition_error))
            else:
                fragments, recognition_time_ms = recognized

        recognized_text = '\n'.join(fragment.text for fragment in fragments)
        associations = self.associator.match(detections, fragments, recognized_text)
        frame_width, frame_height = rotated_size(image.size, rotation)

        result = PipelineResult(
            associations=tuple(associations),
            inference_time_ms=inference_time_ms,
            frame_width=frame_width,
            frame_height=frame_height,
            recognized_text=recognized_text,
            recognition_time_ms=recognition_time_ms,
            model_id=model_id,
            fragments=tuple(fragments),
            errors=tuple(errors),
        )
        for error in errors:
            self._notify_error(error.message)
        if self._on_results is not None:
            self._on_results(result)
        logger.debug(
            'Frame processed detections=%s fragments=%s priced=%s inference_ms=%s recognition_ms=%s errors=%s',
            len(detections),
            len(fragments),
            sum(1 for a in associations if a.price_text is not None),
            inference_time_ms,
            recognition_time_ms,
            len(errors),
        )
        return result


def _outcome(call) -> tuple[object, Exception | None]:
    try:
        return call(), None
    except PipelineError as exc:
        return None, exc
    except Exception as exc:
        logger.exception('Pipeline stage failed')
        return None, exc


def _stage_error(stage: str, fallback_code: str, exc: Exception) -> StageError:
    if isinstance(exc, PipelineError):
        logger.warning('Stage degraded stage=%s code=%s message=%s', stage, exc.code, exc.message)
        return StageError(stage=stage, code=exc.code, message=exc.message)
    return StageError(stage=stage, code=fallback_code, message=str(exc) or exc.__class__.__name__)


def create_pipeline(
    settings: Settings,
    on_error: ErrorCallback | None = None,
    on_results: ResultsCallback | None = None,
) -> FramePipeline:
    detector = DetectorContext(
        options=DetectorOptions(
            threshold=settings.conf_threshold,
            max_results=settings.max_results,
            num_threads=settings.num_threads,
            backend=settings.backend,
            model_version=settings.model_version,
        ),
        provider=settings.provider,
        model_dir=settings.model_dir,
    )
    recognizer = None
    if settings.text_detection_enabled:
        language_data = LanguageDataStore(settings.ocr_data_dir, settings.ocr_language, settings.ocr_asset_dir)
        recognizer = create_text_recognizer(settings.text_provider, language_data, settings.ocr_min_confidence)
    associator = PriceAssociator(
        AssociationPolicy(
            max_distance=settings.price_max_distance_px,
            reference_point=settings.price_reference_point,
            price_only=settings.price_only,
        )
    )
    return FramePipeline(
        detector=detector,
        recognizer=recognizer,
        associator=associator,
        run_concurrently=settings.run_stages_concurrently,
        on_error=on_error,
        on_results=on_results,
    )

import logging
import time
import uuid

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from fruit_price.config import get_settings
from fruit_price.core.errors import FrameDroppedError, PipelineError
from fruit_price.core.image_region import rotated_size, unrotate_box
from fruit_price.core.pipeline import FramePipeline, create_pipeline
from fruit_price.core.types import Detection, PipelineResult, TextFragment
from fruit_price.logging_setup import setup_logging
from fruit_price.schemas import (
    DetectorConfigRequest,
    DetectorConfigResponse,
    DetectResponse,
    ErrorResponse,
    HealthResponse,
)
from fruit_price.utils.image_io import load_image_from_bytes

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger('fruit_price')

app = FastAPI(title='Fruit Price Detector', version=settings.version)
started_at = time.time()


def _detection_out(detection: Detection, rotation_degrees: int, source_size: tuple[int, int]) -> dict:
    return {
        'label': detection.label,
        'confidence': detection.confidence,
        'bbox': list(detection.bbox),
        'source_bbox': list(unrotate_box(detection.bbox, rotation_degrees, source_size)),
    }


def _fragment_out(fragment: TextFragment | None) -> dict | None:
    if fragment is None:
        return None
    return {
        'text': fragment.text,
        'confidence': fragment.confidence,
        'bbox': list(fragment.bbox) if fragment.bbox is not None else None,
        'anchor': list(fragment.anchor) if fragment.anchor is not None else None,
    }


def _detect_response(result: PipelineResult, rotation_degrees: int) -> DetectResponse:
    # bbox is in upright frame pixels, source_bbox in the frame as uploaded
    source_size = rotated_size((result.frame_width, result.frame_height), rotation_degrees)
    return DetectResponse(
        ok=result.ok,
        model=result.model_id,
        inference_time_ms=result.inference_time_ms,
        recognition_time_ms=result.recognition_time_ms,
        frame_width=result.frame_width,
        frame_height=result.frame_height,
        rotation_degrees=rotation_degrees,
        associations=[
            {
                'detection': _detection_out(association.detection, rotation_degrees, source_size),
                'price_text': association.price_text,
                'distance': association.distance,
                'fragment': _fragment_out(association.fragment),
            }
            for association in result.associations
        ],
        detections=[_detection_out(d, rotation_degrees, source_size) for d in result.detections],
        text_fragments=[_fragment_out(f) for f in result.fragments],
        recognized_text=result.recognized_text,
        errors=[{'stage': e.stage, 'code': e.code, 'message': e.message} for e in result.errors],
    )


def _config_response(pipeline: FramePipeline) -> DetectorConfigResponse:
    detector = pipeline.detector
    last_error = detector.last_error
    return DetectorConfigResponse(
        ok=last_error is None,
        state=detector.state.value,
        model=detector.model_id,
        device=detector.device,
        options=detector.options.as_dict(),
        message=last_error.message if last_error else None,
    )


@app.on_event('startup')
def startup_event() -> None:
    pipeline = create_pipeline(settings)
    pipeline.detector.setup()
    app.state.pipeline = pipeline
    recognizer = pipeline.recognizer
    text_status = recognizer.status() if recognizer else {'available': False, 'message': 'disabled by config'}
    logger.info(
        'Pipeline initialized provider=%s model=%s detector_state=%s text_provider=%s text_available=%s text_message=%s',
        settings.provider,
        pipeline.detector.model_id,
        pipeline.detector.state.value,
        recognizer.model_id if recognizer else None,
        text_status.get('available'),
        text_status.get('message'),
    )


@app.on_event('shutdown')
def shutdown_event() -> None:
    pipeline: FramePipeline | None = getattr(app.state, 'pipeline', None)
    if pipeline is not None:
        pipeline.close()


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    request_id = request.headers.get('x-scan-request-id') or str(uuid.uuid4())
    payload = ErrorResponse(
        error=exc.code,
        message=exc.message,
        request_id=request_id,
        details=exc.details or None,
    )
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump())


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    request_id = request.headers.get('x-scan-request-id') or str(uuid.uuid4())
    logger.exception('Unhandled exception request_id=%s', request_id)
    payload = ErrorResponse(
        error='UNEXPECTED_SERVER_ERROR',
        message='Unexpected server error.',
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=payload.model_dump())


@app.get('/health', response_model=HealthResponse)
def health():
    pipeline: FramePipeline = app.state.pipeline
    detector = pipeline.detector
    recognizer = pipeline.recognizer
    return HealthResponse(
        ok=detector.last_error is None,
        version=settings.version,
        provider=detector.provider,
        detector_state=detector.state.value,
        model=detector.model_id,
        model_weights_path=detector.weights_path,
        device=detector.device,
        detector_message=detector.last_error.message if detector.last_error else None,
        options=detector.options.as_dict(),
        text_recognizer=({'model': recognizer.model_id, **recognizer.status()} if recognizer else None),
        dropped_frames=pipeline.dropped_frames,
        uptime_s=round(time.time() - started_at, 3),
    )


@app.post('/detect', response_model=DetectResponse)
async def detect(
    request: Request,
    image: UploadFile = File(...),
    rotation_degrees: int = Form(default=0),
):
    request_id = request.headers.get('x-scan-request-id') or str(uuid.uuid4())
    image_bytes = await image.read()
    img = load_image_from_bytes(image_bytes, settings.max_image_bytes)

    pipeline: FramePipeline = app.state.pipeline
    result = await run_in_threadpool(pipeline.submit, img, rotation_degrees)
    if result is None:
        raise FrameDroppedError('A previous frame is still being processed.', details={'dropped_frames': pipeline.dropped_frames})

    response = _detect_response(result, rotation_degrees)
    logger.info(
        'detect request_id=%s bytes=%s detections=%s priced=%s fragments=%s inference_ms=%s recognition_ms=%s errors=%s',
        request_id,
        len(image_bytes),
        len(result.associations),
        sum(1 for a in result.associations if a.price_text is not None),
        len(result.fragments),
        result.inference_time_ms,
        result.recognition_time_ms,
        [e.code for e in result.errors],
    )
    return response


@app.post('/detector/config', response_model=DetectorConfigResponse)
def configure_detector(payload: DetectorConfigRequest):
    pipeline: FramePipeline = app.state.pipeline
    changes = payload.model_dump(exclude_none=True)
    if changes:
        state = pipeline.detector.reconfigure(**changes)
        logger.info('Detector reconfigured changes=%s state=%s', changes, state.value)
    return _config_response(pipeline)

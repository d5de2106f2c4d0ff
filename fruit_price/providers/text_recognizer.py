import logging
import shutil

import pytesseract
from PIL import Image, ImageOps

from fruit_price.core.errors import OcrResourceError
from fruit_price.core.image_region import crop_to_bbox
from fruit_price.core.language_data import LanguageDataStore
from fruit_price.core.price_text import normalize_ocr_text
from fruit_price.core.types import Box, TextFragment

logger = logging.getLogger('fruit_price.text_recognizer')

_MIN_CONTRAST = 12
_UPSCALE_BELOW_PX = 1000
_UPSCALE_FACTOR = 1.7


def _is_blank(image) -> bool:
    width, height = image.size
    if width <= 0 or height <= 0:
        return True
    low, high = ImageOps.grayscale(image).getextrema()
    return (high - low) < _MIN_CONTRAST


def _prepare_ocr_image(image) -> tuple[Image.Image, float]:
    gray = ImageOps.grayscale(image.convert('RGB'))
    prepared = ImageOps.autocontrast(gray, cutoff=2)

    # Price tags are small in a shelf shot; upscale so digits survive OCR.
    w, h = prepared.size
    if max(w, h) < _UPSCALE_BELOW_PX:
        scale = _UPSCALE_FACTOR
        prepared = prepared.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.BICUBIC)
        return prepared, scale
    return prepared, 1.0


def _to_frame_box(box: Box, scale: float, offset: tuple[float, float]) -> Box:
    dx, dy = offset
    x0, y0, x1, y1 = box
    return (x0 / scale + dx, y0 / scale + dy, x1 / scale + dx, y1 / scale + dy)


def _region_image(image, region: Box | None):
    if region is None:
        return image, (0.0, 0.0)
    cropped = crop_to_bbox(image, region)
    if cropped is None:
        return None, (0.0, 0.0)
    return cropped, (float(max(0, round(region[0]))), float(max(0, round(region[1]))))


def group_tesseract_lines(
    data: dict,
    scale: float = 1.0,
    offset: tuple[float, float] = (0.0, 0.0),
    min_confidence: float = 0.0,
) -> list[TextFragment]:
    """Merge tesseract word rows into one fragment per OCR line."""
    lines: dict[tuple, dict] = {}
    texts = data.get('text', [])
    for i, raw_text in enumerate(texts):
        text = (raw_text or '').strip()
        if not text:
            continue
        try:
            conf = float(data['conf'][i])
        except (KeyError, IndexError, TypeError, ValueError):
            conf = -1.0
        if conf < 0:
            continue
        left = float(data['left'][i])
        top = float(data['top'][i])
        right = left + float(data['width'][i])
        bottom = top + float(data['height'][i])
        key = tuple(data[name][i] if name in data else 0 for name in ('block_num', 'par_num', 'line_num'))
        line = lines.get(key)
        if line is None:
            lines[key] = {'words': [text], 'confs': [conf], 'box': [left, top, right, bottom]}
            continue
        line['words'].append(text)
        line['confs'].append(conf)
        box = line['box']
        line['box'] = [min(box[0], left), min(box[1], top), max(box[2], right), max(box[3], bottom)]

    fragments: list[TextFragment] = []
    for line in lines.values():
        confidence = max(0.0, min(1.0, sum(line['confs']) / len(line['confs']) / 100.0))
        if confidence < min_confidence:
            continue
        fragments.append(
            TextFragment(
                text=' '.join(line['words']),
                bbox=_to_frame_box(tuple(line['box']), scale, offset),
                confidence=confidence,
            )
        )
    return fragments


class TextRecognizer:
    def recognize(self, image) -> str:
        raise NotImplementedError

    def recognize_fragments(self, image, region: Box | None = None) -> list[TextFragment]:
        raise NotImplementedError

    @property
    def model_id(self) -> str:
        return 'text-recognizer'

    def status(self) -> dict:
        return {'available': True, 'message': None}


class TesseractTextRecognizer(TextRecognizer):
    def __init__(self, language_data: LanguageDataStore, min_confidence: float = 0.0, page_segmentation: int = 11) -> None:
        self._language_data = language_data
        self._min_confidence = float(min_confidence)
        self._page_segmentation = int(page_segmentation)
        self._binary = shutil.which('tesseract')
        self._message = None if self._binary else 'tesseract binary not found in PATH'

    @property
    def model_id(self) -> str:
        return f'tesseract-{self._language_data.language}'

    def status(self) -> dict:
        message = self._message or self._language_data.message
        return {
            'available': self._binary is not None and self._language_data.message is None,
            'message': message,
            'language': self._language_data.language,
            'language_data': self._language_data.state.value,
        }

    def _config(self) -> str:
        if self._binary is None:
            raise OcrResourceError(self._message)
        tessdata_dir = self._language_data.ensure()
        return f'--oem 3 --psm {self._page_segmentation} --tessdata-dir "{tessdata_dir.as_posix()}"'

    def recognize(self, image) -> str:
        if image is None or _is_blank(image):
            return ''

        config = self._config()
        prepared, _ = _prepare_ocr_image(image)
        try:
            text = pytesseract.image_to_string(prepared, lang=self._language_data.language, config=config)
        except pytesseract.TesseractError as exc:
            raise OcrResourceError(f'tesseract failed: {exc}') from exc
        return text.strip()

    def recognize_fragments(self, image, region: Box | None = None) -> list[TextFragment]:
        if image is None:
            return []
        source, offset = _region_image(image, region)
        if source is None or _is_blank(source):
            return []

        config = self._config()
        prepared, scale = _prepare_ocr_image(source)
        try:
            data = pytesseract.image_to_data(
                prepared,
                lang=self._language_data.language,
                config=config,
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractError as exc:
            raise OcrResourceError(f'tesseract failed: {exc}') from exc
        return group_tesseract_lines(data, scale=scale, offset=offset, min_confidence=self._min_confidence)


class PaddleTextRecognizer(TextRecognizer):
    def __init__(self, lang: str = 'latin', min_confidence: float = 0.0) -> None:
        self._engine = None
        self._message = None
        self._min_confidence = float(min_confidence)
        try:
            from paddleocr import PaddleOCR

            self._engine = PaddleOCR(use_angle_cls=True, lang=lang, show_log=False)
        except Exception as exc:
            self._message = f'paddleocr unavailable: {exc}'

    @property
    def model_id(self) -> str:
        return 'paddleocr'

    def status(self) -> dict:
        return {'available': self._engine is not None, 'message': self._message}

    def recognize(self, image) -> str:
        return '\n'.join(fragment.text for fragment in self.recognize_fragments(image))

    def recognize_fragments(self, image, region: Box | None = None) -> list[TextFragment]:
        if self._engine is None:
            raise OcrResourceError(self._message or 'paddleocr unavailable')
        if image is None:
            return []
        source, offset = _region_image(image, region)
        if source is None or _is_blank(source):
            return []
        import numpy as np

        prepared, scale = _prepare_ocr_image(source)
        result = self._engine.ocr(np.array(prepared.convert('RGB')), cls=True)
        lines = result[0] if isinstance(result, list) and result else []

        fragments: list[TextFragment] = []
        for line in lines or []:
            if not isinstance(line, (list, tuple)) or len(line) < 2:
                continue
            points, txt_meta = line[0], line[1]
            if not isinstance(txt_meta, (list, tuple)) or len(txt_meta) < 2:
                continue
            text = normalize_ocr_text(str(txt_meta[0] or ''))
            if not text:
                continue
            conf = max(0.0, min(1.0, float(txt_meta[1] or 0.0)))
            if conf < self._min_confidence:
                continue
            xs = [float(point[0]) for point in points if isinstance(point, (list, tuple)) and len(point) >= 2]
            ys = [float(point[1]) for point in points if isinstance(point, (list, tuple)) and len(point) >= 2]
            bbox = _to_frame_box((min(xs), min(ys), max(xs), max(ys)), scale, offset) if xs and ys else None
            fragments.append(TextFragment(text=text, bbox=bbox, confidence=conf))
        return fragments


def create_text_recognizer(
    name: str,
    language_data: LanguageDataStore,
    min_confidence: float = 0.0,
) -> TextRecognizer:
    provider = name.strip().lower()
    if provider == 'paddleocr':
        paddle = PaddleTextRecognizer(min_confidence=min_confidence)
        if paddle.status().get('available'):
            return paddle
        logger.warning('PaddleOCR unavailable, using tesseract message=%s', paddle.status().get('message'))
        return TesseractTextRecognizer(language_data, min_confidence=min_confidence)
    if provider == 'tesseract':
        return TesseractTextRecognizer(language_data, min_confidence=min_confidence)
    raise ValueError(f'Unsupported TEXT_PROVIDER={name!r}')

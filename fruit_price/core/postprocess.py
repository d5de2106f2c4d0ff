from fruit_price.core.image_region import clamp_box
from fruit_price.core.types import Detection


def normalize_label(label: str) -> str:
    return ' '.join((label or '').strip().lower().split())


def filter_detections(detections: list[Detection], threshold: float) -> list[Detection]:
    return [d for d in detections if d.confidence >= threshold]


def rank_detections(
    detections: list[Detection],
    threshold: float,
    max_results: int,
    image_size: tuple[int, int] | None = None,
) -> list[Detection]:
    """Keep detections above the threshold, best first, at most `max_results`.

    The sort is stable so equal confidences keep the model's output order.
    """
    kept: list[Detection] = []
    for detection in filter_detections(detections, threshold):
        label = normalize_label(detection.label)
        if not label:
            continue
        bbox = clamp_box(detection.bbox, image_size) if image_size else tuple(float(v) for v in detection.bbox)
        kept.append(Detection(label=label, confidence=float(detection.confidence), bbox=bbox))
    kept.sort(key=lambda item: item.confidence, reverse=True)
    if max_results > 0:
        kept = kept[:max_results]
    return kept

"""Assign price-tag text to detected fruit by spatial proximity.

Every detection is matched to the nearest text fragment independently of the
others (greedy nearest neighbour). Tags are not consumed by a match, so one
tag may price several fruits lying around it, which is how a single shelf
label covering a crate is handled.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from fruit_price.core.image_region import bbox_bottom_center, bbox_center, distance
from fruit_price.core.price_text import first_price, normalize_ocr_text
from fruit_price.core.types import Detection, Point, PriceAssociation, TextFragment

logger = logging.getLogger('fruit_price.price_associator')

_DISTANCE_EPSILON = 1e-9


class ReferencePoint(str, Enum):
    CENTER = 'center'
    BOTTOM_CENTER = 'bottom_center'


@dataclass(frozen=True)
class AssociationPolicy:
    max_distance: float | None = None
    reference_point: ReferencePoint = ReferencePoint.CENTER
    price_only: bool = False


class PriceAssociator:
    def __init__(self, policy: AssociationPolicy | None = None) -> None:
        self.policy = policy or AssociationPolicy()

    def detection_point(self, detection: Detection) -> Point:
        if self.policy.reference_point == ReferencePoint.BOTTOM_CENTER:
            return bbox_bottom_center(detection.bbox)
        return bbox_center(detection.bbox)

    def _price_text(self, text: str) -> str | None:
        if self.policy.price_only:
            return first_price(text)
        return normalize_ocr_text(text) or None

    def _nearest(self, point: Point, candidates: list[tuple[Point, TextFragment]]) -> tuple[TextFragment | None, float | None]:
        best_fragment: TextFragment | None = None
        best_distance: float | None = None
        best_confidence = 0.0
        for fragment_point, fragment in candidates:
            current = distance(point, fragment_point)
            confidence = fragment.confidence if fragment.confidence is not None else 0.0
            if best_distance is None or current < best_distance - _DISTANCE_EPSILON:
                best_fragment, best_distance, best_confidence = fragment, current, confidence
            elif abs(current - best_distance) <= _DISTANCE_EPSILON and confidence > best_confidence:
                best_fragment, best_distance, best_confidence = fragment, current, confidence
        return best_fragment, best_distance

    def _fallback(self, detections: Sequence[Detection], fragments: Sequence[TextFragment], recognized_text: str) -> list[PriceAssociation]:
        joined = ' '.join(normalize_ocr_text(f.text) for f in fragments if normalize_ocr_text(f.text))
        price_text = self._price_text(joined or recognized_text)
        return [PriceAssociation(detection=d, price_text=price_text) for d in detections]

    def match(
        self,
        detections: Sequence[Detection],
        fragments: Sequence[TextFragment],
        recognized_text: str = '',
    ) -> list[PriceAssociation]:
        if not detections:
            return []

        positioned = [f for f in fragments if f.reference_point is not None]
        if not positioned:
            return self._fallback(detections, fragments, recognized_text)

        candidates: list[tuple[Point, TextFragment]] = []
        for fragment in positioned:
            if self._price_text(fragment.text) is None:
                continue
            candidates.append((fragment.reference_point, fragment))

        associations: list[PriceAssociation] = []
        for detection in detections:
            fragment, best_distance = self._nearest(self.detection_point(detection), candidates)
            if fragment is None:
                associations.append(PriceAssociation(detection=detection))
                continue
            max_distance = self.policy.max_distance
            if max_distance is not None and best_distance > max_distance:
                logger.debug(
                    'Nearest tag too far label=%s distance=%.1f max_distance=%.1f',
                    detection.label,
                    best_distance,
                    max_distance,
                )
                associations.append(PriceAssociation(detection=detection))
                continue
            associations.append(
                PriceAssociation(
                    detection=detection,
                    price_text=self._price_text(fragment.text),
                    distance=best_distance,
                    fragment=fragment,
                )
            )
        return associations

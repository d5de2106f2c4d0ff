import math

from PIL import Image

from fruit_price.core.errors import InvalidInputError
from fruit_price.core.types import Box, Point

# Clockwise rotation, matching how the camera reports sensor orientation.
_TRANSPOSE_BY_ROTATION = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


def normalize_rotation(rotation_degrees) -> int:
    try:
        value = int(rotation_degrees)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f'Rotation must be an integer, got {rotation_degrees!r}.') from exc
    if value != rotation_degrees or value % 90 != 0:
        raise InvalidInputError(
            f'Rotation must be a multiple of 90 degrees, got {rotation_degrees!r}.',
            details={'rotation_degrees': rotation_degrees},
        )
    return value % 360


def validate_image(image) -> tuple[int, int]:
    if image is None:
        raise InvalidInputError('Missing image frame.')
    width, height = image.size
    if width <= 0 or height <= 0:
        raise InvalidInputError(
            f'Image frame must not be empty, got {width}x{height}.',
            details={'width': width, 'height': height},
        )
    return width, height


def rotated_size(size: tuple[int, int], rotation_degrees: int) -> tuple[int, int]:
    width, height = size
    if normalize_rotation(rotation_degrees) in (90, 270):
        return height, width
    return width, height


def rotate_image(image: Image.Image, rotation_degrees: int) -> Image.Image:
    rotation = normalize_rotation(rotation_degrees)
    if rotation == 0:
        return image
    return image.transpose(_TRANSPOSE_BY_ROTATION[rotation])


def _rotate_box_90(box: Box, size: tuple[int, int]) -> Box:
    _, height = size
    x0, y0, x1, y1 = box
    return (height - y1, x0, height - y0, x1)


def rotate_box(box: Box, rotation_degrees: int, size: tuple[int, int]) -> Box:
    """Map a box from a frame of `size` into the same frame rotated clockwise."""
    rotation = normalize_rotation(rotation_degrees)
    current = tuple(float(v) for v in box)
    width, height = size
    for _ in range(rotation // 90):
        current = _rotate_box_90(current, (width, height))
        width, height = height, width
    return current


def unrotate_box(box: Box, rotation_degrees: int, source_size: tuple[int, int]) -> Box:
    """Map a box detected on the rotated frame back to the source frame."""
    rotation = normalize_rotation(rotation_degrees)
    return rotate_box(box, (360 - rotation) % 360, rotated_size(source_size, rotation))


def bbox_center(box: Box) -> Point:
    x0, y0, x1, y1 = box
    return ((x0 + x1) / 2.0, (y0 + y1) / 2.0)


def bbox_bottom_center(box: Box) -> Point:
    x0, _, x1, y1 = box
    return ((x0 + x1) / 2.0, float(y1))


def distance(left: Point, right: Point) -> float:
    return math.hypot(left[0] - right[0], left[1] - right[1])


def clamp_box(box, image_size: tuple[int, int]) -> Box:
    width, height = image_size
    x0, y0, x1, y1 = [float(v) for v in box]
    return (
        max(0.0, min(float(width), x0)),
        max(0.0, min(float(height), y0)),
        max(0.0, min(float(width), x1)),
        max(0.0, min(float(height), y1)),
    )


def crop_to_bbox(image: Image.Image, bbox: Box | None) -> Image.Image | None:
    if not bbox or len(bbox) != 4:
        return None
    width, height = image.size
    x1, y1, x2, y2 = bbox
    left = max(0, min(int(round(x1)), width - 1))
    top = max(0, min(int(round(y1)), height - 1))
    right = max(left + 1, min(int(round(x2)), width))
    bottom = max(top + 1, min(int(round(y2)), height))
    if right <= left or bottom <= top:
        return None
    return image.crop((left, top, right, bottom))

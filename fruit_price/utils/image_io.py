from io import BytesIO

from PIL import Image

from fruit_price.core.errors import InvalidInputError


def load_image_from_bytes(image_bytes: bytes, max_bytes: int):
    if not image_bytes:
        raise InvalidInputError('Missing image upload (field name: image).', code='MISSING_IMAGE')
    if len(image_bytes) > max_bytes:
        raise InvalidInputError(f'Image too large. Max {max_bytes} bytes.', code='IMAGE_TOO_LARGE', status_code=413)

    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:
        raise InvalidInputError('Could not decode image.', code='IMAGE_DECODE_FAILED') from exc

    if image.mode != 'RGB':
        image = image.convert('RGB')
    return image

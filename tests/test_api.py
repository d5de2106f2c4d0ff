from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from fruit_price.core.image_region import rotate_box
from fruit_price.core.types import TextFragment
from fruit_price.main import app
from fruit_price.providers.text_recognizer import TextRecognizer


class ShelfRecognizer(TextRecognizer):
    def recognize_fragments(self, image, region=None):
        width, height = image.size
        return [TextFragment(text='1,99 €', anchor=(0.2 * width, 0.3 * height), confidence=0.9)]


def make_test_image_bytes(size=(120, 80)) -> bytes:
    image = Image.new('RGB', size, color='white')
    buf = BytesIO()
    image.save(buf, format='JPEG')
    return buf.getvalue()


def test_health_ok():
    with TestClient(app) as client:
        response = client.get('/health')
    assert response.status_code == 200
    body = response.json()
    assert body['ok'] is True
    assert body['detector_state'] == 'ready'
    assert body['model'] == 'dummy-fruit-v1'
    assert body['options']['backend'] == 'cpu'


def test_detect_returns_associations():
    image_bytes = make_test_image_bytes()
    with TestClient(app) as client:
        response = client.post('/detect', files={'image': ('test.jpg', image_bytes, 'image/jpeg')})
    assert response.status_code == 200
    body = response.json()
    assert isinstance(body['associations'], list)
    assert isinstance(body['detections'], list)
    assert len(body['associations']) == len(body['detections'])
    assert (body['frame_width'], body['frame_height']) == (120, 80)
    assert isinstance(body['errors'], list)
    assert body['ok'] is (not body['errors'])


def test_detect_prices_nearest_fruit():
    image_bytes = make_test_image_bytes((400, 300))
    with TestClient(app) as client:
        pipeline = app.state.pipeline
        original = pipeline.recognizer
        pipeline.recognizer = ShelfRecognizer()
        try:
            response = client.post(
                '/detect',
                files={'image': ('test.jpg', image_bytes, 'image/jpeg')},
                data={'rotation_degrees': '0'},
            )
        finally:
            pipeline.recognizer = original
    assert response.status_code == 200
    body = response.json()
    assert body['ok'] is True
    first = body['associations'][0]
    assert first['detection']['label'] == 'apple'
    assert first['price_text'] == '1.99'
    assert first['distance'] < 30
    assert body['text_fragments'][0]['text'] == '1,99 €'


def test_detect_rejects_bad_rotation():
    image_bytes = make_test_image_bytes()
    with TestClient(app) as client:
        response = client.post(
            '/detect',
            files={'image': ('test.jpg', image_bytes, 'image/jpeg')},
            data={'rotation_degrees': '45'},
        )
    assert response.status_code == 400
    assert response.json()['error'] == 'INVALID_INPUT'


def test_detect_rejects_undecodable_image():
    with TestClient(app) as client:
        response = client.post('/detect', files={'image': ('test.jpg', b'not an image', 'image/jpeg')})
    assert response.status_code == 400
    assert response.json()['error'] == 'IMAGE_DECODE_FAILED'


def test_detector_config_updates_options():
    with TestClient(app) as client:
        response = client.post('/detector/config', json={'threshold': 0.2, 'max_results': 5})
        detect_response = client.post(
            '/detect',
            files={'image': ('test.jpg', make_test_image_bytes(), 'image/jpeg')},
        )
    assert response.status_code == 200
    body = response.json()
    assert body['state'] == 'ready'
    assert body['options']['threshold'] == 0.2
    assert body['options']['max_results'] == 5
    assert len(detect_response.json()['detections']) == 5


def test_detector_config_rejects_out_of_range_threshold():
    with TestClient(app) as client:
        response = client.post('/detector/config', json={'threshold': 3})
    assert response.status_code == 422


def test_detect_reports_boxes_in_uploaded_frame():
    image_bytes = make_test_image_bytes((120, 80))
    with TestClient(app) as client:
        response = client.post(
            '/detect',
            files={'image': ('test.jpg', image_bytes, 'image/jpeg')},
            data={'rotation_degrees': '90'},
        )
    assert response.status_code == 200
    body = response.json()
    assert (body['frame_width'], body['frame_height']) == (80, 120)
    assert body['detections']
    for detection in body['detections']:
        x0, y0, x1, y1 = detection['source_bbox']
        assert 0.0 <= x0 <= x1 <= 120.0
        assert 0.0 <= y0 <= y1 <= 80.0
        upright = rotate_box(detection['source_bbox'], 90, (120, 80))
        assert list(upright) == pytest.approx(detection['bbox'])

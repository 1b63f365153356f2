import base64

import numpy as np
import pytest

pytest.importorskip("cv2")

from conftest import FRAME_H, FRAME_W, gray_frame, textured_frame
from eyecapture.capture.cropper import (
    CROP_SIZE,
    PROVENANCE_AI,
    PROVENANCE_MANUAL,
    crop_frame,
    crop_origin,
    emit_capture,
)
from eyecapture.capture.errors import FrameCaptureFailure


def test_centred_crop_origin():
    assert crop_origin((320, 240), FRAME_W, FRAME_H) == (240, 160)


@pytest.mark.parametrize(
    "center,origin",
    [
        ((0, 0), (0, 0)),
        ((5, 5), (0, 0)),
        ((FRAME_W, FRAME_H), (FRAME_W - CROP_SIZE, FRAME_H - CROP_SIZE)),
        ((-50, 600), (0, FRAME_H - CROP_SIZE)),
    ],
)
def test_crop_is_shifted_inside_frame(center, origin):
    assert crop_origin(center, FRAME_W, FRAME_H) == origin


def test_crop_is_exact_size_and_content():
    image = textured_frame()
    crop, (x, y) = crop_frame(image, (600, 20))
    assert crop.shape == (CROP_SIZE, CROP_SIZE, 3)
    assert np.array_equal(crop, image[y:y + CROP_SIZE, x:x + CROP_SIZE])


def test_frame_smaller_than_crop_fails():
    with pytest.raises(FrameCaptureFailure):
        crop_frame(gray_frame(w=100, h=100), (50, 50))


def test_missing_frame_fails():
    with pytest.raises(FrameCaptureFailure):
        crop_frame(None, (50, 50))


def test_emit_capture_produces_decodable_jpeg():
    image = emit_capture(gray_frame(128), (320, 240), PROVENANCE_AI, timestamp=12.5, metadata={"frame_index": 7})

    assert image.provenance == PROVENANCE_AI
    assert image.timestamp == 12.5
    assert image.origin == (240, 160)
    assert image.metadata == {"frame_index": 7}
    assert image.data[:2] == b"\xff\xd8"

    decoded = image.decode()
    assert decoded.shape == (CROP_SIZE, CROP_SIZE, 3)
    assert abs(int(decoded.mean()) - 128) <= 2


def test_data_url_roundtrips_payload():
    image = emit_capture(gray_frame(90), (320, 240), PROVENANCE_MANUAL)
    prefix = "data:image/jpeg;base64,"
    url = image.as_data_url()
    assert url.startswith(prefix)
    assert base64.b64decode(url[len(prefix):]) == image.data


def test_bgra_frames_are_encoded():
    bgra = np.full((FRAME_H, FRAME_W, 4), 128, dtype=np.uint8)
    image = emit_capture(bgra, (320, 240), PROVENANCE_AI)
    assert image.decode().shape == (CROP_SIZE, CROP_SIZE, 3)


def test_save_writes_bytes(tmp_path):
    image = emit_capture(gray_frame(), (320, 240), PROVENANCE_AI)
    path = image.save(tmp_path / "nested" / "eye.jpg")
    assert path.read_bytes() == image.data

import numpy as np
import pytest

pytest.importorskip("cv2")

from conftest import gray_frame, textured_frame
from eyecapture.quality.quality_gatekeeper import (
    EMPTY_READING,
    check_photometry,
    compute_channel_spread,
    compute_sharpness,
)


def test_black_and_white_frames_fail_lighting():
    assert check_photometry(gray_frame(0)).good_lighting is False
    assert check_photometry(gray_frame(255)).good_lighting is False


def test_mid_gray_frame_has_good_lighting():
    reading = check_photometry(gray_frame(128))
    assert reading.good_lighting is True
    assert reading.brightness == pytest.approx(128.0)


def test_brightness_bounds_are_exclusive():
    assert check_photometry(gray_frame(80)).good_lighting is False
    assert check_photometry(gray_frame(81)).good_lighting is True
    assert check_photometry(gray_frame(179)).good_lighting is True
    assert check_photometry(gray_frame(180)).good_lighting is False


def test_flat_frame_is_out_of_focus_textured_frame_is_sharp():
    assert check_photometry(gray_frame(128)).in_focus is False
    assert check_photometry(textured_frame()).in_focus is True


def test_sharpness_matches_hand_computed_laplacian_variance():
    gray = np.zeros((5, 5), dtype=np.float64)
    gray[2, 2] = 10.0
    # interior response: centre 40, four neighbours -10, corners 0
    expected = np.var([40, -10, -10, -10, -10, 0, 0, 0, 0])
    assert compute_sharpness(gray) == pytest.approx(expected)


def test_sharpness_of_tiny_image_is_zero():
    assert compute_sharpness(np.ones((2, 2))) == 0.0


def test_color_cast_fails_white_balance():
    img = gray_frame(100)
    img[:, :, 0] = 200  # strong blue cast
    reading = check_photometry(img)
    assert reading.white_balance_ok is False
    assert reading.channel_spread == pytest.approx(100.0)


def test_neutral_frame_passes_white_balance():
    assert check_photometry(gray_frame(128)).white_balance_ok is True
    assert compute_channel_spread(np.full((4, 4, 3), 50.0)) == 0.0


def test_alpha_channel_is_ignored():
    bgra = np.full((48, 64, 4), 128, dtype=np.uint8)
    bgra[:, :, 3] = 255
    reading = check_photometry(bgra)
    assert reading.brightness == pytest.approx(128.0)
    assert reading.white_balance_ok is True


@pytest.mark.parametrize("bad", [None, np.zeros((0, 0, 3), np.uint8), np.zeros((4, 4, 2), np.uint8)])
def test_unusable_input_yields_all_false(bad):
    assert check_photometry(bad) == EMPTY_READING


def test_repeated_calls_are_identical():
    frame = textured_frame(seed=3)
    snapshot = frame.copy()
    first = check_photometry(frame)
    for _ in range(3):
        assert check_photometry(frame) == first
    assert np.array_equal(frame, snapshot)

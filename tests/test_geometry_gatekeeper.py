import math

import numpy as np
import pytest

from conftest import FRAME_H, FRAME_W, make_face
from eyecapture.quality.geometry_gatekeeper import (
    DISTANCE_OK,
    NO_FACE,
    TOO_CLOSE,
    TOO_FAR,
    classify_distance,
    compute_ear,
    evaluate_geometry,
)
from eyecapture.types import LandmarkSet


def _circle_eye(radius, top_deg=95.0):
    """p1..p6 on a circle: corners on the horizontal, lids near the vertical."""
    def at(deg):
        rad = math.radians(deg)
        return np.array([radius * math.cos(rad), radius * math.sin(rad)])

    return [at(180), at(top_deg), at(180 - top_deg), at(0), at(top_deg - 180), at(-top_deg)]


def test_ear_of_circle_is_about_one():
    for r in (0.01, 0.05, 1.0):
        assert compute_ear(_circle_eye(r)) == pytest.approx(1.0, abs=0.01)


def test_ear_of_flattened_eye_is_zero():
    eye = [np.array(p) for p in [(0, 0), (1, 0), (2, 0), (3, 0), (2, 0), (1, 0)]]
    assert compute_ear(eye) == pytest.approx(0.0)


def test_ear_degenerate_width_is_zero():
    eye = [np.zeros(2)] * 6
    assert compute_ear(eye) == 0.0


def test_synthetic_face_ear_matches_request():
    reading = evaluate_geometry(make_face(ear=0.31), FRAME_W, FRAME_H)
    assert reading.avg_ear == pytest.approx(0.31)
    assert reading.eyelid_open is True

    closed = evaluate_geometry(make_face(ear=0.1), FRAME_W, FRAME_H)
    assert closed.eyelid_open is False


def test_distance_sweep_and_boundaries():
    for width in np.linspace(0.05, 0.6, 56):
        reading = evaluate_geometry(make_face(width=float(width)), FRAME_W, FRAME_H)
        expected = 0.15 < reading.face_width < 0.4
        assert reading.proper_distance is expected

    assert classify_distance(0.15) == TOO_FAR
    assert classify_distance(0.4) == TOO_CLOSE
    assert classify_distance(0.1500001) == DISTANCE_OK
    assert classify_distance(0.3999999) == DISTANCE_OK
    assert classify_distance(None) is None


def test_distance_verdict_names_violated_bound():
    assert evaluate_geometry(make_face(width=0.1), FRAME_W, FRAME_H).distance_verdict == TOO_FAR
    assert evaluate_geometry(make_face(width=0.5), FRAME_W, FRAME_H).distance_verdict == TOO_CLOSE


def test_no_landmarks_is_no_face():
    reading = evaluate_geometry(None, FRAME_W, FRAME_H)
    assert reading is NO_FACE
    assert reading.face_found is False
    assert reading.proper_distance is False
    assert reading.eyelid_open is False
    assert reading.eye_center_px is None


def test_eye_center_prefers_iris():
    lm = make_face(width=0.25, center=(0.5, 0.5))
    reading = evaluate_geometry(lm, FRAME_W, FRAME_H)
    iris = lm.points[468]
    assert reading.eye_center_px == pytest.approx((iris[0] * FRAME_W, iris[1] * FRAME_H))


def test_eye_center_falls_back_to_outer_corner():
    lm = make_face(iris=False)
    reading = evaluate_geometry(lm, FRAME_W, FRAME_H)
    corner = lm.points[33]
    assert reading.eye_center_px == pytest.approx((corner[0] * FRAME_W, corner[1] * FRAME_H))


def test_sparse_landmarks_use_eyelid_gap_fallback():
    # 387 belongs to the right EAR set; both eyelid pairs survive the cut
    sparse = make_face(ear=0.3, iris=False).points[:387].copy()

    reading = evaluate_geometry(LandmarkSet(sparse), FRAME_W, FRAME_H)
    assert reading.avg_ear is None
    assert reading.eyelid_open is True

    sparse[145, 1] = sparse[159, 1] + 0.001
    assert evaluate_geometry(LandmarkSet(sparse), FRAME_W, FRAME_H).eyelid_open is False


def test_landmarkset_rejects_bad_shapes():
    with pytest.raises(ValueError):
        LandmarkSet(np.zeros((5,)))
    with pytest.raises(ValueError):
        LandmarkSet(np.zeros((5, 4)))

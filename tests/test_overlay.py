import numpy as np
import pytest

pytest.importorskip("cv2")

from conftest import FRAME_H, FRAME_W, gray_frame, make_face
from eyecapture.capture.overlay import COLOR_ALIGNED, draw_checklist, render_report
from eyecapture.capture.session import SessionStatus, TickReport
from eyecapture.quality.capture_gatekeeper import GateState, GateUpdate
from eyecapture.quality.geometry_gatekeeper import evaluate_geometry
from eyecapture.quality.quality_gatekeeper import check_photometry
from eyecapture.quality.scorecard import QualityScorecard
from eyecapture.types import Frame


def report_for(gate, landmarks=None):
    image = gray_frame(90)
    geometry = evaluate_geometry(landmarks, FRAME_W, FRAME_H)
    photometric = check_photometry(image)
    return TickReport(
        frame=Frame(image, 0.0),
        landmarks=landmarks,
        photometric=photometric,
        geometry=geometry,
        scorecard=QualityScorecard.from_readings(photometric, geometry),
        guide=(320.0, 240.0),
        gate=gate,
        status=SessionStatus.RUNNING,
    )


def test_aligned_overlay_draws_border_and_guide():
    report = report_for(GateUpdate(GateState.ALIGNED_PENDING, countdown_remaining=2.0), make_face())
    canvas = report.frame.image.copy()
    render_report(canvas, report, manual=False)

    assert tuple(canvas[FRAME_H // 2, 3]) == COLOR_ALIGNED
    assert not np.array_equal(canvas, report.frame.image)


def test_manual_overlay_without_landmarks():
    report = report_for(GateUpdate(GateState.SEARCHING, manual=True))
    canvas = report.frame.image.copy()
    render_report(canvas, report, manual=True, instruction="Position your face in the camera")
    assert not np.array_equal(canvas, report.frame.image)


def test_checklist_draws_on_image():
    canvas = gray_frame(0)
    draw_checklist(canvas, QualityScorecard(True, True, True, True, True))
    assert canvas.any()

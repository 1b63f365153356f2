"""
overlay.py

Preview drawing for the capture window: eye contours, lower eyelids,
the eye-shaped guide and status text. Draws in place on a BGR image.
"""

import cv2
import numpy as np

from eyecapture.quality.capture_gatekeeper import GateState
from eyecapture.types import (
    LEFT_EYE_CONTOUR,
    LEFT_LOWER_EYELID,
    RIGHT_EYE_CONTOUR,
    RIGHT_LOWER_EYELID,
)

# =========================
# UI VISUAL CONSTANTS (BGR)
# =========================
COLOR_EYE = (0, 255, 0)
COLOR_LOWER_LID = (0, 0, 255)
COLOR_GUIDE = (255, 191, 0)
COLOR_ALIGNED = (0, 255, 0)
COLOR_WARN = (0, 102, 255)
COLOR_TEXT = (255, 255, 255)

GUIDE_W = 120
GUIDE_H = 60
DASH_DEG = 12

CHECK_PASS = "[x]"
CHECK_FAIL = "[ ]"


def _polyline(image, landmarks, indices, color, thickness, closed, markers=False):
    h, w = image.shape[:2]
    pts = []
    for idx in indices:
        p = landmarks.to_pixel(idx, w, h)
        if p is None:
            continue
        pts.append((int(p[0]), int(p[1])))

    if len(pts) < 2:
        return

    cv2.polylines(image, [np.array(pts, np.int32)], closed, color, thickness, cv2.LINE_AA)
    if markers:
        for x, y in pts:
            cv2.rectangle(image, (x - 2, y - 2), (x + 2, y + 2), color, -1)


def draw_eye_landmarks(image, landmarks):
    """Both eye rings (green) and the lower eyelids (red)."""
    if landmarks is None:
        return
    _polyline(image, landmarks, LEFT_EYE_CONTOUR, COLOR_EYE, 2, True, markers=True)
    _polyline(image, landmarks, RIGHT_EYE_CONTOUR, COLOR_EYE, 2, True, markers=True)
    _polyline(image, landmarks, LEFT_LOWER_EYELID, COLOR_LOWER_LID, 3, False)
    _polyline(image, landmarks, RIGHT_LOWER_EYELID, COLOR_LOWER_LID, 3, False)


def draw_guide(image, center, label, label_color):
    """Dashed eye-shaped ellipse with side markers."""
    cx, cy = int(center[0]), int(center[1])
    axes = (GUIDE_W // 2, GUIDE_H // 2)

    for start in range(0, 360, DASH_DEG * 2):
        cv2.ellipse(image, (cx, cy), axes, 0, start, start + DASH_DEG, COLOR_GUIDE, 4, cv2.LINE_AA)

    for mx in (cx - GUIDE_W // 2, cx + GUIDE_W // 2):
        cv2.rectangle(image, (mx - 5, cy - 3), (mx + 5, cy + 3), COLOR_GUIDE, -1)

    cv2.putText(
        image, label, (cx - 100, cy - GUIDE_H // 2 - 20),
        cv2.FONT_HERSHEY_SIMPLEX, 0.6, label_color, 2, cv2.LINE_AA
    )


def draw_checklist(image, scorecard, origin=(20, 110)):
    x, y = origin
    for _, label, ok in scorecard.as_checklist():
        mark = CHECK_PASS if ok else CHECK_FAIL
        color = COLOR_ALIGNED if ok else COLOR_TEXT
        cv2.putText(image, f"{mark} {label}", (x, y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1, cv2.LINE_AA)
        y += 22

    score = f"Quality score: {scorecard.passed_count}/5"
    cv2.putText(image, score, (x, y + 6), cv2.FONT_HERSHEY_SIMPLEX, 0.55, COLOR_TEXT, 2, cv2.LINE_AA)


def draw_status(image, text, color=COLOR_TEXT):
    cv2.putText(image, text, (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2, cv2.LINE_AA)


def render_report(image, report, manual, instruction=None):
    """Full preview overlay for one processed tick."""
    if manual:
        draw_guide(image, report.guide, "MANUAL MODE - POSITION EYE", COLOR_WARN)
    else:
        draw_eye_landmarks(image, report.landmarks)
        aligned = report.gate.state in (GateState.ALIGNED_PENDING, GateState.CAPTURED)
        draw_guide(
            image, report.guide,
            "ALIGNED" if aligned else "ALIGN YOUR EYE",
            COLOR_ALIGNED if aligned else COLOR_WARN,
        )
        if aligned:
            h, w = image.shape[:2]
            cv2.rectangle(image, (2, 2), (w - 3, h - 3), COLOR_ALIGNED, 4)

    draw_checklist(image, report.scorecard)

    if report.gate.countdown_remaining is not None and report.gate.state is GateState.ALIGNED_PENDING:
        draw_status(image, f"Capturing in {report.gate.countdown_remaining:.1f}s", COLOR_ALIGNED)
    elif instruction:
        draw_status(image, instruction)
    return image

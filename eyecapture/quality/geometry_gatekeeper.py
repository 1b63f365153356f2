"""
geometry_gatekeeper.py

LAYER 2B: Geometry Gatekeeper
-----------------------------
Derives from one landmark set:
- face distance proxy (outer eye corner spread)
- eye openness (EAR, with an eyelid-gap fallback for sparse landmarks)
- the eye centre the capture guide should follow

"No face" and "face found but misaligned" are kept distinct via
``face_found``; the capture gate relies on that.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from eyecapture.types import (
    LEFT_EYE_EAR,
    LEFT_EYE_OUTER,
    LEFT_EYELID,
    LEFT_IRIS_CENTER,
    RIGHT_EYE_EAR,
    RIGHT_EYE_OUTER,
    RIGHT_EYELID,
    LandmarkSet,
    Point,
)

# -------------------------------------------------
# Constants
# -------------------------------------------------

FACE_WIDTH_MIN = 0.15     # at or below: too far
FACE_WIDTH_MAX = 0.40     # at or above: too close

EAR_OPEN_THRESHOLD = 0.25
EYELID_GAP_THRESHOLD = 0.008

TOO_FAR = "too_far"
TOO_CLOSE = "too_close"
DISTANCE_OK = "ok"


@dataclass(frozen=True)
class GeometryReading:
    face_found: bool
    proper_distance: bool
    eyelid_open: bool
    face_width: Optional[float] = None
    distance_verdict: Optional[str] = None
    avg_ear: Optional[float] = None
    eye_center_px: Optional[Point] = None


NO_FACE = GeometryReading(face_found=False, proper_distance=False, eyelid_open=False)

# -------------------------------------------------
# Geometry helpers
# -------------------------------------------------

def dist(a, b):
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))


def compute_ear(eye_points: Sequence) -> float:
    """
    EAR = (|p2 - p6| + |p3 - p5|) / (2 * |p1 - p4|)

    ``eye_points`` is p1..p6 ordered around the eyelid contour.
    A degenerate (zero-width) eye yields 0.
    """
    if len(eye_points) < 6:
        return 0.0

    p1, p2, p3, p4, p5, p6 = eye_points[:6]

    h = dist(p1, p4)
    if h <= 1e-9:
        return 0.0

    return (dist(p2, p6) + dist(p3, p5)) / (2.0 * h)


def face_width(landmarks: LandmarkSet) -> Optional[float]:
    left = landmarks.point(LEFT_EYE_OUTER)
    right = landmarks.point(RIGHT_EYE_OUTER)
    if left is None or right is None:
        return None
    return abs(float(right[0]) - float(left[0]))


def classify_distance(width: Optional[float]) -> Optional[str]:
    if width is None:
        return None
    if width <= FACE_WIDTH_MIN:
        return TOO_FAR
    if width >= FACE_WIDTH_MAX:
        return TOO_CLOSE
    return DISTANCE_OK


def average_ear(landmarks: LandmarkSet) -> Optional[float]:
    if not landmarks.has(*LEFT_EYE_EAR, *RIGHT_EYE_EAR):
        return None

    left = compute_ear([landmarks.point(i) for i in LEFT_EYE_EAR])
    right = compute_ear([landmarks.point(i) for i in RIGHT_EYE_EAR])
    return (left + right) / 2.0


def eyelid_gaps_open(landmarks: LandmarkSet) -> bool:
    """Fallback openness: vertical lid gap on both eyes."""
    if not landmarks.has(*LEFT_EYELID, *RIGHT_EYELID):
        return False

    for top, bottom in (LEFT_EYELID, RIGHT_EYELID):
        gap = abs(float(landmarks.point(top)[1]) - float(landmarks.point(bottom)[1]))
        if gap <= EYELID_GAP_THRESHOLD:
            return False
    return True


def eye_center_px(landmarks: LandmarkSet, frame_w: int, frame_h: int) -> Optional[Point]:
    """Iris centre when the mesh is refined, else the outer eye corner."""
    index = LEFT_IRIS_CENTER if landmarks.has_iris else LEFT_EYE_OUTER
    return landmarks.to_pixel(index, frame_w, frame_h)

# -------------------------------------------------
# MAIN GEOMETRY GATEKEEPER
# -------------------------------------------------

def evaluate_geometry(landmarks: Optional[LandmarkSet], frame_w: int, frame_h: int) -> GeometryReading:
    if landmarks is None or len(landmarks) == 0:
        return NO_FACE

    width = face_width(landmarks)
    verdict = classify_distance(width)

    ear = average_ear(landmarks)
    if ear is not None:
        eyes_open = ear > EAR_OPEN_THRESHOLD
    else:
        eyes_open = eyelid_gaps_open(landmarks)

    return GeometryReading(
        face_found=True,
        proper_distance=verdict == DISTANCE_OK,
        eyelid_open=eyes_open,
        face_width=width,
        distance_verdict=verdict,
        avg_ear=ear,
        eye_center_px=eye_center_px(landmarks, frame_w, frame_h),
    )

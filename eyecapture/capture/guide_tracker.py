"""
guide_tracker.py

Keeps the on-screen capture guide on the detected eye.

smoothing = 1.0 jumps straight to the eye (no filtering). Lower values
low-pass the motion; the guide then snaps once it is within
``snap_px`` so convergence takes a bounded number of ticks.
"""

from __future__ import annotations

import math
from typing import Optional

from eyecapture.types import Point

SNAP_PX = 0.5


class GuideTracker:
    def __init__(self, frame_w: int, frame_h: int, smoothing: float = 1.0, follow: bool = True, snap_px: float = SNAP_PX):
        if not 0.0 < smoothing <= 1.0:
            raise ValueError("smoothing must be in (0, 1]")
        self.smoothing = smoothing
        self.follow = follow
        self.snap_px = snap_px
        self.resize(frame_w, frame_h)

    def resize(self, frame_w: int, frame_h: int) -> None:
        """New frame geometry: guide goes back to the centre."""
        self.frame_w = frame_w
        self.frame_h = frame_h
        self.position: Point = (frame_w / 2.0, frame_h / 2.0)

    def freeze(self) -> None:
        """Manual mode: centre-fixed guide."""
        self.follow = False
        self.position = (self.frame_w / 2.0, self.frame_h / 2.0)

    def update(self, eye_center: Optional[Point]) -> Point:
        if eye_center is None or not self.follow:
            return self.position

        x, y = self.position
        tx, ty = float(eye_center[0]), float(eye_center[1])

        nx = x + (tx - x) * self.smoothing
        ny = y + (ty - y) * self.smoothing
        if math.hypot(tx - nx, ty - ny) <= self.snap_px:
            nx, ny = tx, ty

        self.position = (nx, ny)
        return self.position

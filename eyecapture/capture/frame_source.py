"""
frame_source.py

Owns the live camera stream for one session.

One implementation serves both the AI-guided and the plain camera;
``with_landmark_guidance`` only tells the session whether to load a
landmark detector.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

import cv2

from eyecapture.capture.errors import DeviceUnavailable, StreamLost
from eyecapture.types import Frame

LOGGER = logging.getLogger(__name__)

# -------------------------------------------------
# Constants
# -------------------------------------------------

DEFAULT_WIDTH = 640
DEFAULT_HEIGHT = 480
MAX_READ_FAILURES = 5


def camera_available(index: int, capture_factory: Callable = cv2.VideoCapture) -> bool:
    cap = capture_factory(index)
    try:
        return bool(cap.isOpened())
    finally:
        cap.release()


def list_cameras(max_index: int = 4, capture_factory: Callable = cv2.VideoCapture) -> List[int]:
    """Indices of camera devices that open."""
    found = [idx for idx in range(max_index) if camera_available(idx, capture_factory)]
    LOGGER.debug("Found %d video devices", len(found))
    return found


class FrameSource:
    def __init__(
        self,
        camera_index: int = 0,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        with_landmark_guidance: bool = True,
        mirror: bool = True,
        capture_factory: Callable = cv2.VideoCapture,
        clock: Callable[[], float] = time.monotonic,
        max_read_failures: int = MAX_READ_FAILURES,
    ):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.with_landmark_guidance = with_landmark_guidance
        self.mirror = mirror
        self.capture_factory = capture_factory
        self.clock = clock
        self.max_read_failures = max_read_failures

        self._cap = None
        self._failures = 0
        self._index = 0
        self.frame_size = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    # -------------------------------------------------
    # Acquisition
    # -------------------------------------------------
    def open(self) -> "FrameSource":
        if self._cap is not None:
            return self

        LOGGER.info("Opening camera %s (%dx%d requested)", self.camera_index, self.width, self.height)
        cap = self.capture_factory(self.camera_index)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise DeviceUnavailable(f"Camera {self.camera_index} could not be opened (missing or permission denied)")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        ok, probe = cap.read()
        if not ok or probe is None:
            cap.release()
            raise DeviceUnavailable(f"Camera {self.camera_index} opened but delivered no frames")

        self._cap = cap
        self._failures = 0
        self.frame_size = (int(probe.shape[1]), int(probe.shape[0]))
        LOGGER.info("Camera ready: %dx%d", *self.frame_size)
        return self

    # -------------------------------------------------
    # Frames
    # -------------------------------------------------
    def read(self) -> Optional[Frame]:
        """
        Latest frame, or None on a transient miss.
        Raises StreamLost once the stream is gone.
        """
        if self._cap is None:
            raise StreamLost("Camera stream is not open")

        ok, image = self._cap.read()
        if not ok or image is None:
            self._failures += 1
            LOGGER.debug("Frame read failed (%d in a row)", self._failures)
            if self._failures >= self.max_read_failures or not self._cap.isOpened():
                raise StreamLost(f"Camera {self.camera_index} stopped delivering frames")
            return None

        self._failures = 0
        if self.mirror:
            image = cv2.flip(image, 1)

        self._index += 1
        return Frame(image=image, timestamp=self.clock(), index=self._index)

    # -------------------------------------------------
    # Release
    # -------------------------------------------------
    def release(self) -> None:
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        LOGGER.info("Camera %s released", self.camera_index)

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.release()
        return False

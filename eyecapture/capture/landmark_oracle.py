"""
landmark_oracle.py

Adapter around an external face landmark detector.

Contract:
- load() once; raises OracleLoadFailure if the detector is unusable
- detect(frame) -> LandmarkSet for at most one face, or None
- detect raises OracleTransientFailure for a failed call; the session
  treats that tick as "no face"
- one call in flight at a time (the session enforces this)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import cv2
import numpy as np

from eyecapture.capture.errors import OracleLoadFailure, OracleTransientFailure
from eyecapture.types import Frame, LandmarkSet

LOGGER = logging.getLogger(__name__)

MODEL_PATH = "face_landmarker.task"

MIN_DETECTION_CONFIDENCE = 0.5
MIN_TRACKING_CONFIDENCE = 0.5


class LandmarkDetector:
    """Interface for landmark oracles."""

    def load(self) -> None:
        pass

    def detect(self, frame: Frame) -> Optional[LandmarkSet]:
        raise NotImplementedError

    def close(self) -> None:
        pass


def landmarks_from_result(result) -> Optional[LandmarkSet]:
    """First face of a FaceLandmarkerResult, or None if no face."""
    faces = getattr(result, "face_landmarks", None)
    if not faces:
        return None

    face = faces[0]
    if not face:
        return None

    pts = np.array([[lm.x, lm.y, lm.z] for lm in face], dtype=np.float64)
    return LandmarkSet(pts)


class MediaPipeLandmarkDetector(LandmarkDetector):
    """
    MediaPipe Tasks FaceLandmarker, VIDEO running mode, single face.
    The refined model yields 478 points (iris included).
    """

    def __init__(self, model_path: Optional[str] = None):
        self.model_path = model_path or os.environ.get("EYECAPTURE_MODEL_PATH", MODEL_PATH)
        self._landmarker = None
        self._last_ts_ms = -1

    def load(self) -> None:
        if self._landmarker is not None:
            return

        if not os.path.exists(self.model_path):
            raise OracleLoadFailure(f"Face landmarker model not found: {self.model_path}")

        try:
            from mediapipe.tasks import python
            from mediapipe.tasks.python import vision

            options = vision.FaceLandmarkerOptions(
                base_options=python.BaseOptions(model_asset_path=self.model_path),
                running_mode=vision.RunningMode.VIDEO,
                num_faces=1,
                min_face_detection_confidence=MIN_DETECTION_CONFIDENCE,
                min_tracking_confidence=MIN_TRACKING_CONFIDENCE,
            )
            self._landmarker = vision.FaceLandmarker.create_from_options(options)
        except (ImportError, RuntimeError, ValueError) as e:
            raise OracleLoadFailure(f"Face landmarker failed to initialise: {e}") from e

        LOGGER.info("Face landmarker loaded from %s", self.model_path)

    def _timestamp_ms(self, frame: Frame) -> int:
        # VIDEO mode needs strictly increasing timestamps
        ts = int(frame.timestamp * 1000)
        if ts <= self._last_ts_ms:
            ts = self._last_ts_ms + 1
        self._last_ts_ms = ts
        return ts

    def detect(self, frame: Frame) -> Optional[LandmarkSet]:
        if self._landmarker is None:
            raise OracleTransientFailure("Face landmarker is not loaded")

        import mediapipe as mp

        try:
            rgb = cv2.cvtColor(frame.image[:, :, :3], cv2.COLOR_BGR2RGB)
            mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(rgb))
            result = self._landmarker.detect_for_video(mp_image, self._timestamp_ms(frame))
        except (RuntimeError, ValueError, cv2.error) as e:
            raise OracleTransientFailure(f"Landmark detection failed: {e}") from e

        return landmarks_from_result(result)

    def close(self) -> None:
        if self._landmarker is None:
            return
        self._landmarker.close()
        self._landmarker = None
        LOGGER.info("Face landmarker closed")

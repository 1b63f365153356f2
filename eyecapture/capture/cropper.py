"""
cropper.py

Fixed-size square crop around the guide, JPEG-encoded.

The crop window is shifted to stay inside the frame; it is never
scaled or padded. A frame smaller than the crop cannot be cropped.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

from eyecapture.capture.errors import FrameCaptureFailure

CROP_SIZE = 160
JPEG_QUALITY = 90

PROVENANCE_AI = "ai"
PROVENANCE_MANUAL = "manual"


@dataclass(frozen=True)
class CapturedImage:
    data: bytes
    timestamp: float
    provenance: str
    size: int = CROP_SIZE
    origin: Tuple[int, int] = (0, 0)
    mime_type: str = "image/jpeg"
    metadata: dict = field(default_factory=dict)

    def as_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    def decode(self) -> np.ndarray:
        return cv2.imdecode(np.frombuffer(self.data, dtype=np.uint8), cv2.IMREAD_COLOR)

    def save(self, path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


def crop_origin(center, frame_w: int, frame_h: int, size: int = CROP_SIZE) -> Tuple[int, int]:
    """Top-left corner of a size x size window centred on ``center``, clamped into the frame."""
    if frame_w < size or frame_h < size:
        raise FrameCaptureFailure(f"Frame {frame_w}x{frame_h} is smaller than the {size}px crop")

    x = int(round(center[0] - size / 2.0))
    y = int(round(center[1] - size / 2.0))

    x = min(max(x, 0), frame_w - size)
    y = min(max(y, 0), frame_h - size)
    return x, y


def crop_frame(image, center, size: int = CROP_SIZE):
    if image is None or getattr(image, "ndim", 0) < 2 or image.size == 0:
        raise FrameCaptureFailure("No frame available to crop")

    h, w = image.shape[:2]
    x, y = crop_origin(center, w, h, size)
    return image[y:y + size, x:x + size].copy(), (x, y)


def encode_jpeg(image, quality: int = JPEG_QUALITY) -> bytes:
    if image.ndim == 3 and image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise FrameCaptureFailure("JPEG encoding failed")
    return buf.tobytes()


def emit_capture(image, center, provenance: str, size: int = CROP_SIZE, quality: int = JPEG_QUALITY, timestamp=None, metadata=None) -> CapturedImage:
    crop, origin = crop_frame(image, center, size)
    try:
        data = encode_jpeg(crop, quality)
    except cv2.error as e:
        raise FrameCaptureFailure(f"JPEG encoding failed: {e}") from e

    return CapturedImage(
        data=data,
        timestamp=time.time() if timestamp is None else timestamp,
        provenance=provenance,
        size=size,
        origin=origin,
        metadata=dict(metadata or {}),
    )

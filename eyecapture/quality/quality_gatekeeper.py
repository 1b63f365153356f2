"""
quality_gatekeeper.py

LAYER 2A: Photometric Gatekeeper
--------------------------------
Purpose:
- Score a single frame for lighting, focus and white balance

Verdicts are advisory: they feed the quality checklist shown to the
user and the manual quality score. They do not gate auto-capture
unless strict photometry is switched on in the capture config.

Pure functions of the pixel buffer. Bad input never raises; it
produces an all-false reading.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

# -------------------------------------------------
# Constants
# -------------------------------------------------

BRIGHTNESS_MIN = 80.0
BRIGHTNESS_MAX = 180.0

SHARPNESS_THRESHOLD = 100.0
WHITE_BALANCE_MAX_DIFF = 30.0

LAPLACIAN_KERNEL = np.array(
    [[0, -1, 0],
     [-1, 4, -1],
     [0, -1, 0]],
    dtype=np.float64,
)

# BGR order, as delivered by OpenCV
LUMA_WEIGHTS_BGR = np.array([0.114, 0.587, 0.299], dtype=np.float64)


@dataclass(frozen=True)
class PhotometricReading:
    good_lighting: bool
    in_focus: bool
    white_balance_ok: bool
    brightness: Optional[float] = None
    sharpness: Optional[float] = None
    channel_spread: Optional[float] = None


EMPTY_READING = PhotometricReading(False, False, False)

# -------------------------------------------------
# Helpers
# -------------------------------------------------

def _color_channels(image):
    """
    Returns a float64 H x W x 3 view of the colour channels, or None
    if the buffer cannot be analysed.
    """
    if image is None:
        return None

    arr = np.asarray(image)
    if arr.size == 0:
        return None

    if arr.ndim == 2:
        arr = np.repeat(arr[:, :, None], 3, axis=2)

    if arr.ndim != 3 or arr.shape[2] < 3:
        return None

    # alpha channel (RGBA / BGRA) is ignored
    return arr[:, :, :3].astype(np.float64)


def compute_brightness(channels):
    """Mean over pixels of the per-pixel channel average (0-255)."""
    return float(channels.mean())


def to_luma(channels):
    return channels @ LUMA_WEIGHTS_BGR


def compute_sharpness(gray):
    """
    Laplacian variance over interior pixels.
    A 1-pixel border is excluded so no padding values leak in.
    """
    h, w = gray.shape[:2]
    if h < 3 or w < 3:
        return 0.0

    response = cv2.filter2D(gray, cv2.CV_64F, LAPLACIAN_KERNEL)
    return float(response[1:-1, 1:-1].var())


def compute_channel_spread(channels):
    """Largest pairwise difference between the three channel means."""
    means = channels.reshape(-1, 3).mean(axis=0)
    a, b, c = (float(m) for m in means)
    return max(abs(a - b), abs(b - c), abs(a - c))

# -------------------------------------------------
# MAIN PHOTOMETRIC GATEKEEPER
# -------------------------------------------------

def check_photometry(image) -> PhotometricReading:
    channels = _color_channels(image)
    if channels is None:
        return EMPTY_READING

    brightness = compute_brightness(channels)
    sharpness = compute_sharpness(to_luma(channels))
    spread = compute_channel_spread(channels)

    return PhotometricReading(
        good_lighting=BRIGHTNESS_MIN < brightness < BRIGHTNESS_MAX,
        in_focus=sharpness > SHARPNESS_THRESHOLD,
        white_balance_ok=spread < WHITE_BALANCE_MAX_DIFF,
        brightness=brightness,
        sharpness=sharpness,
        channel_spread=spread,
    )

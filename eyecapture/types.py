"""Common dataclasses and type aliases shared by the quality and capture layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

# Pixel coordinates (x, y) in frame space
Point = Tuple[float, float]

# -------------------------------------------------
# MediaPipe face mesh indices (478-point refined mesh)
# -------------------------------------------------

LEFT_EYE_OUTER = 33
RIGHT_EYE_OUTER = 263
LEFT_IRIS_CENTER = 468

# p1..p6 around each eyelid contour, for EAR
LEFT_EYE_EAR = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_EAR = [362, 385, 387, 263, 373, 380]

# (upper lid, lower lid)
LEFT_EYELID = (159, 145)
RIGHT_EYELID = (386, 374)

LEFT_EYE_CONTOUR = [
    33, 7, 163, 144, 145, 153, 154, 155,
    133, 173, 157, 158, 159, 160, 161, 246
]

RIGHT_EYE_CONTOUR = [
    362, 382, 381, 380, 374, 373, 390, 249,
    263, 466, 388, 387, 386, 385, 384, 398
]

LEFT_LOWER_EYELID = [145, 153, 154, 155]
RIGHT_LOWER_EYELID = [374, 373, 390, 249]

REFINED_MESH_SIZE = 478


@dataclass(frozen=True, eq=False)
class Frame:
    """One sampled video frame. ``image`` is H x W x 3 BGR (or 4-channel)."""

    image: np.ndarray
    timestamp: float
    index: int = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def center(self) -> Point:
        return self.width / 2.0, self.height / 2.0


@dataclass(frozen=True, eq=False)
class LandmarkSet:
    """Normalized face landmarks for a single face, shape (N, 2) or (N, 3)."""

    points: np.ndarray

    def __post_init__(self) -> None:
        pts = np.array(self.points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] not in (2, 3):
            raise ValueError(f"landmarks must be shape (N, 2) or (N, 3), got {pts.shape}")
        pts.setflags(write=False)
        object.__setattr__(self, "points", pts)

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def has_iris(self) -> bool:
        return len(self) >= REFINED_MESH_SIZE

    def has(self, *indices: int) -> bool:
        return all(0 <= i < len(self) for i in indices)

    def point(self, index: int) -> Optional[np.ndarray]:
        """2D normalized point, or None when the oracle did not supply it."""
        if not self.has(index):
            return None
        return self.points[index, :2]

    def to_pixel(self, index: int, width: int, height: int) -> Optional[Point]:
        p = self.point(index)
        if p is None:
            return None
        return float(p[0] * width), float(p[1] * height)

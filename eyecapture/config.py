"""Session-level configuration for the eye capture pipeline."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from eyecapture.capture.cropper import CROP_SIZE, JPEG_QUALITY
from eyecapture.capture.landmark_oracle import MODEL_PATH
from eyecapture.capture.voice import DEFAULT_RATE, DEFAULT_VOLUME
from eyecapture.quality.capture_gatekeeper import COUNTDOWN_SECONDS, GUIDE_TOLERANCE_PX


@dataclass
class CaptureConfig:
    camera_index: int = 0
    frame_width: int = 640
    frame_height: int = 480
    mirror: bool = True
    with_landmark_guidance: bool = True
    model_path: str = MODEL_PATH
    # Frame processing runs on its own timer, not the camera frame rate
    tick_interval: float = 0.1
    oracle_load_timeout: float = 10.0
    countdown_seconds: float = COUNTDOWN_SECONDS
    guide_tolerance_px: float = GUIDE_TOLERANCE_PX
    guide_smoothing: float = 1.0
    # Opt-in: also require lighting/focus/white balance before the countdown
    strict_photometry: bool = False
    crop_size: int = CROP_SIZE
    jpeg_quality: int = JPEG_QUALITY
    voice_enabled: bool = True
    speech_rate: float = DEFAULT_RATE
    speech_volume: float = DEFAULT_VOLUME

    def __post_init__(self) -> None:
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.countdown_seconds < 0:
            raise ValueError("countdown_seconds must be >= 0")
        if self.crop_size <= 0:
            raise ValueError("crop_size must be positive")
        if not 0 <= self.jpeg_quality <= 100:
            raise ValueError("jpeg_quality must be within 0-100")
        if not 0.0 < self.guide_smoothing <= 1.0:
            raise ValueError("guide_smoothing must be in (0, 1]")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CaptureConfig":
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown capture config keys: {', '.join(unknown)}")

        env_model = os.environ.get("EYECAPTURE_MODEL_PATH")
        if env_model:
            data["model_path"] = env_model
        return cls(**data)

    @classmethod
    def from_yaml(cls, path) -> "CaptureConfig":
        path = Path(path)
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        return cls.from_dict(data.get("capture", data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

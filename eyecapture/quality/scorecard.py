"""
scorecard.py

Per-tick quality checklist. Every field is rebuilt from the current
frame and landmark set; nothing carries over from an earlier tick.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Dict, List, Tuple

from eyecapture.quality.geometry_gatekeeper import GeometryReading
from eyecapture.quality.quality_gatekeeper import PhotometricReading

CHECK_LABELS = {
    "good_lighting": "Good Lighting",
    "proper_distance": "Proper Distance",
    "eyelid_open": "Eyelid Open",
    "in_focus": "In Focus",
    "white_balance_ok": "White Lighting/White Balance OK",
}


@dataclass(frozen=True)
class QualityScorecard:
    good_lighting: bool = False
    in_focus: bool = False
    white_balance_ok: bool = False
    proper_distance: bool = False
    eyelid_open: bool = False

    @classmethod
    def from_readings(cls, photometric: PhotometricReading, geometry: GeometryReading) -> "QualityScorecard":
        return cls(
            good_lighting=photometric.good_lighting,
            in_focus=photometric.in_focus,
            white_balance_ok=photometric.white_balance_ok,
            proper_distance=geometry.proper_distance,
            eyelid_open=geometry.eyelid_open,
        )

    @property
    def photometry_ok(self) -> bool:
        return self.good_lighting and self.in_focus and self.white_balance_ok

    @property
    def passed_count(self) -> int:
        return sum(1 for f in fields(self) if getattr(self, f.name))

    @property
    def all_passed(self) -> bool:
        return self.passed_count == len(fields(self))

    def quality_score(self) -> float:
        """Fraction of checks passing, 0.0 - 1.0."""
        return self.passed_count / len(fields(self))

    def with_override(self, name: str, value: bool) -> "QualityScorecard":
        """Manual toggle from the checklist UI."""
        if name not in CHECK_LABELS:
            raise KeyError(f"Unknown quality check: {name}")
        return replace(self, **{name: bool(value)})

    def as_checklist(self) -> List[Tuple[str, str, bool]]:
        return [(name, label, getattr(self, name)) for name, label in CHECK_LABELS.items()]

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)

"""
capture_gatekeeper.py

LAYER 3: Capture Gatekeeper (Temporal Trust)
--------------------------------------------
Purpose:
- Turn per-tick geometry into one decision: keep guiding, count down,
  or capture
- Speak each instruction once, on entry to a state

Gates, in order (first failure wins):
1. face found
2. proper distance (too far / too close)
3. eyelids open
4. eye centre within tolerance of the guide
5. (strict photometry only) lighting, focus, white balance

When all gates hold, a countdown starts. A gate failure cancels it.
If the gates still hold when it elapses, the emitter is called once
and the gate becomes CAPTURED until reset.

Manual mode disables all automatic transitions.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from eyecapture.capture.errors import FrameCaptureFailure
from eyecapture.quality.geometry_gatekeeper import TOO_CLOSE, TOO_FAR, GeometryReading
from eyecapture.quality.scorecard import QualityScorecard

LOGGER = logging.getLogger(__name__)

# -------------------------------------------------
# Constants
# -------------------------------------------------

COUNTDOWN_SECONDS = 3.0
GUIDE_TOLERANCE_PX = 30.0

MSG_SEARCHING = "Position your face in the camera"
MSG_MOVE_CLOSER = "Move closer to the camera"
MSG_MOVE_BACK = "Move back from the camera"
MSG_ADJUST_DISTANCE = "Adjust your distance to the camera"
MSG_OPEN_EYES = "Please open your eyes wide"
MSG_ALIGN = "Align your eye with the blue guide"
MSG_QUALITY = "Improve the lighting and hold the camera steady"
MSG_ALIGNED = "Perfect alignment! Capturing in 3 seconds"
MSG_CAPTURED = "Eye image captured successfully"
MSG_MANUAL = "AI detection is not available. You can use manual capture mode."


class GateState(enum.Enum):
    SEARCHING = "searching"
    MISALIGNED_DISTANCE = "misaligned_distance"
    MISALIGNED_EYES_CLOSED = "misaligned_eyes_closed"
    MISALIGNED_OFF_GUIDE = "misaligned_off_guide"
    MISALIGNED_QUALITY = "misaligned_quality"
    ALIGNED_PENDING = "aligned_pending"
    CAPTURED = "captured"


@dataclass(frozen=True)
class GateUpdate:
    state: GateState
    entered: bool = False
    instruction: Optional[str] = None
    capture: Optional[object] = None
    countdown_remaining: Optional[float] = None
    manual: bool = False


def guide_distance(eye_center, guide) -> float:
    return math.hypot(eye_center[0] - guide[0], eye_center[1] - guide[1])


class CaptureGatekeeper:
    def __init__(
        self,
        speech=None,
        emit: Optional[Callable[[], object]] = None,
        countdown_seconds=COUNTDOWN_SECONDS,
        guide_tolerance_px=GUIDE_TOLERANCE_PX,
        strict_photometry=False,
    ):
        self.speech = speech
        self.emit = emit
        self.countdown_seconds = countdown_seconds
        self.guide_tolerance_px = guide_tolerance_px
        self.strict_photometry = strict_photometry

        self.manual = False
        self.reset()

    # -------------------------------------------------
    # Reset logic (new capture cycle)
    # -------------------------------------------------
    def reset(self):
        self.state = GateState.SEARCHING
        self.countdown_started = None
        self.captured = None
        # (state, variant) of the last spoken instruction; None forces
        # the first tick to announce itself
        self._entry_key = None

    @property
    def done(self) -> bool:
        return self.state is GateState.CAPTURED

    # -------------------------------------------------
    # Manual fallback
    # -------------------------------------------------
    def enter_manual_mode(self, notice=True):
        """Terminal for this cycle: no automatic transitions after this."""
        if self.manual:
            return
        LOGGER.warning("Capture gate switched to manual mode")
        self.manual = True
        self.countdown_started = None
        if notice:
            self._say(MSG_MANUAL)

    # -------------------------------------------------
    # Gate evaluation
    # -------------------------------------------------
    def _classify(self, geometry: GeometryReading, guide, scorecard: Optional[QualityScorecard]):
        """Returns (state, variant, instruction) for this tick."""
        if not geometry.face_found:
            return GateState.SEARCHING, None, MSG_SEARCHING

        if not geometry.proper_distance:
            verdict = geometry.distance_verdict
            if verdict == TOO_FAR:
                return GateState.MISALIGNED_DISTANCE, TOO_FAR, MSG_MOVE_CLOSER
            if verdict == TOO_CLOSE:
                return GateState.MISALIGNED_DISTANCE, TOO_CLOSE, MSG_MOVE_BACK
            return GateState.MISALIGNED_DISTANCE, None, MSG_ADJUST_DISTANCE

        if not geometry.eyelid_open:
            return GateState.MISALIGNED_EYES_CLOSED, None, MSG_OPEN_EYES

        eye = geometry.eye_center_px
        if eye is None or guide is None or guide_distance(eye, guide) >= self.guide_tolerance_px:
            return GateState.MISALIGNED_OFF_GUIDE, None, MSG_ALIGN

        if self.strict_photometry and (scorecard is None or not scorecard.photometry_ok):
            return GateState.MISALIGNED_QUALITY, None, MSG_QUALITY

        return GateState.ALIGNED_PENDING, None, MSG_ALIGNED

    def _say(self, text):
        if self.speech is not None:
            self.speech.speak(text)

    # -------------------------------------------------
    # Main update per tick
    # -------------------------------------------------
    def update(self, geometry: GeometryReading, guide, now: float, scorecard: Optional[QualityScorecard] = None) -> GateUpdate:
        """
        Call this once per tick with a consistent snapshot.

        Raises FrameCaptureFailure if the emitter fails; the gate is
        back in SEARCHING by then so the session can keep going.
        """
        if self.manual:
            return GateUpdate(self.state, manual=True)

        if self.state is GateState.CAPTURED:
            return GateUpdate(self.state, capture=None)

        state, variant, instruction = self._classify(geometry, guide, scorecard)
        key = (state, variant)
        entered = key != self._entry_key

        if entered:
            if self.state is not state:
                LOGGER.info("Gate %s -> %s", self.state.name, state.name)
            self.state = state
            self._entry_key = key
            self._say(instruction)
        else:
            instruction = None

        if state is not GateState.ALIGNED_PENDING:
            if self.countdown_started is not None:
                LOGGER.debug("Countdown cancelled (%s)", state.name)
            self.countdown_started = None
            return GateUpdate(state, entered, instruction)

        if entered or self.countdown_started is None:
            self.countdown_started = now

        elapsed = now - self.countdown_started
        remaining = max(self.countdown_seconds - elapsed, 0.0)
        if elapsed < self.countdown_seconds:
            return GateUpdate(state, entered, instruction, countdown_remaining=remaining)

        return self._capture(entered, instruction)

    def _capture(self, entered, instruction) -> GateUpdate:
        self.state = GateState.CAPTURED
        self.countdown_started = None
        LOGGER.info("Countdown elapsed, capturing")

        image = None
        if self.emit is not None:
            try:
                image = self.emit()
            except FrameCaptureFailure:
                self.abort_capture()
                raise

        self.captured = image
        self._say(MSG_CAPTURED)
        return GateUpdate(GateState.CAPTURED, entered, instruction, capture=image, countdown_remaining=0.0)

    def abort_capture(self):
        """Crop failed: start the cycle over, session stays open."""
        LOGGER.warning("Capture aborted, gate back to SEARCHING")
        self.reset()

"""
session.py

One guided capture session.

The session owns the camera stream, the tick timer, the detection
worker, the guide tracker and the capture gate. Camera and timer are
acquired together in start() and released together on every exit path:
stop(), a fatal error, or a completed capture.

Tick model:
- the timer fires every ``tick_interval`` seconds, independent of the
  camera frame rate
- each tick reads one frame and submits one job that computes
  photometry and landmarks from that same frame
- while a job is in flight, ticks are dropped, never queued
- a job that finishes after stop() belongs to an old generation and is
  discarded
- gate state and guide position are only mutated under the session
  lock
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from eyecapture.capture.cropper import PROVENANCE_AI, PROVENANCE_MANUAL, CapturedImage, emit_capture
from eyecapture.capture.errors import (
    CaptureError,
    DeviceUnavailable,
    FrameCaptureFailure,
    OracleLoadFailure,
    OracleTransientFailure,
    StreamLost,
)
from eyecapture.capture.frame_source import FrameSource
from eyecapture.capture.guide_tracker import GuideTracker
from eyecapture.capture.landmark_oracle import LandmarkDetector, MediaPipeLandmarkDetector
from eyecapture.capture.voice import ConsoleSpeechChannel, Pyttsx3SpeechChannel, SpeechChannel
from eyecapture.config import CaptureConfig
from eyecapture.quality.capture_gatekeeper import CaptureGatekeeper, GateState, GateUpdate
from eyecapture.quality.geometry_gatekeeper import GeometryReading, evaluate_geometry
from eyecapture.quality.quality_gatekeeper import PhotometricReading, check_photometry
from eyecapture.quality.scorecard import QualityScorecard
from eyecapture.types import Frame, LandmarkSet, Point

LOGGER = logging.getLogger(__name__)

MSG_CAMERA_READY = "Camera is ready. Position your face in the camera."
MSG_ORACLE_READY = "AI face detection is ready. Position your face in the camera."


class SessionStatus(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"      # awaiting camera permission / device
    RUNNING = "running"        # AI-guided
    MANUAL = "manual"          # centre guide, capture on user action only
    CAPTURED = "captured"
    ERROR = "error"
    STOPPED = "stopped"


ACTIVE = (SessionStatus.STARTING, SessionStatus.RUNNING, SessionStatus.MANUAL)


@dataclass(frozen=True)
class Observation:
    """Photometry and landmarks computed from one frame."""

    generation: int
    frame: Frame
    photometric: PhotometricReading
    landmarks: Optional[LandmarkSet]


@dataclass(frozen=True)
class TickReport:
    frame: Frame
    landmarks: Optional[LandmarkSet]
    photometric: PhotometricReading
    geometry: GeometryReading
    scorecard: QualityScorecard
    guide: Point
    gate: GateUpdate
    status: SessionStatus


def build_speech_channel(config: CaptureConfig) -> SpeechChannel:
    if config.voice_enabled:
        return Pyttsx3SpeechChannel(rate=config.speech_rate, volume=config.speech_volume)
    return ConsoleSpeechChannel()


class CaptureSession:
    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        frame_source: Optional[FrameSource] = None,
        detector: Optional[LandmarkDetector] = None,
        speech: Optional[SpeechChannel] = None,
        on_capture: Optional[Callable[[CapturedImage], None]] = None,
        on_error: Optional[Callable[[CaptureError], None]] = None,
        on_update: Optional[Callable[[TickReport], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        detection_executor=None,
        acquisition_executor=None,
    ):
        self.config = config or CaptureConfig()
        self.frame_source = frame_source or FrameSource(
            camera_index=self.config.camera_index,
            width=self.config.frame_width,
            height=self.config.frame_height,
            with_landmark_guidance=self.config.with_landmark_guidance,
            mirror=self.config.mirror,
        )

        if self.frame_source.with_landmark_guidance:
            self.detector = detector or MediaPipeLandmarkDetector(self.config.model_path)
        else:
            self.detector = None

        self._owns_speech = speech is None
        self.speech = speech

        self.on_capture = on_capture
        self.on_error = on_error
        self.on_update = on_update
        self.clock = clock

        self._injected_detection_executor = detection_executor
        self._injected_acquisition_executor = acquisition_executor
        self._detection_executor = None
        self._acquisition_executor = None

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None

        self._generation = 0
        self._pending: Optional[Future] = None
        self._camera_future: Optional[Future] = None
        self._oracle_future: Optional[Future] = None
        self._oracle_deadline: Optional[float] = None
        # load future still running from an earlier start(); a restart adopts it
        self._loading: Optional[Future] = None

        self.status = SessionStatus.IDLE
        self.oracle_ready = False
        self.tracker: Optional[GuideTracker] = None
        self.gate: Optional[CaptureGatekeeper] = None
        self.scorecard = QualityScorecard()
        self.captured: Optional[CapturedImage] = None
        self.error: Optional[CaptureError] = None
        self.last_report: Optional[TickReport] = None
        self.ticks = 0
        self.dropped_ticks = 0

        self._last_frame: Optional[Frame] = None
        self._gate_frame: Optional[Frame] = None

    # -------------------------------------------------
    # Read-only views
    # -------------------------------------------------
    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE

    @property
    def gate_state(self) -> Optional[GateState]:
        return self.gate.state if self.gate is not None else None

    @property
    def guide(self) -> Optional[Point]:
        return self.tracker.position if self.tracker is not None else None

    # -------------------------------------------------
    # Lifecycle
    # -------------------------------------------------
    def start(self, run_timer: bool = True) -> "CaptureSession":
        """
        Begin acquiring camera and detector concurrently; returns at once
        with status STARTING. Ticks poll acquisition until the camera is up.
        """
        with self._lock:
            if self.is_active:
                return self

            self._generation += 1
            self._stop_event = threading.Event()
            self._reset_state()
            self.status = SessionStatus.STARTING

            if self.speech is None:
                self.speech = build_speech_channel(self.config)

            self._detection_executor = self._injected_detection_executor or ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="landmarks"
            )
            self._acquisition_executor = self._injected_acquisition_executor or ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="acquire"
            )

            self.gate = CaptureGatekeeper(
                speech=self.speech,
                emit=self._emit_ai_capture,
                countdown_seconds=self.config.countdown_seconds,
                guide_tolerance_px=self.config.guide_tolerance_px,
                strict_photometry=self.config.strict_photometry,
            )

            LOGGER.info("Session %d starting (guidance=%s)", self._generation, self.detector is not None)
            self._camera_future = self._acquisition_executor.submit(self.frame_source.open)
            if self.detector is not None:
                loading = self._loading
                if loading is not None and not loading.done():
                    LOGGER.info("Landmark detector still loading from the previous run, waiting on that load")
                    self._oracle_future = loading
                else:
                    self._oracle_future = self._acquisition_executor.submit(self.detector.load)
                self._loading = self._oracle_future
                self._oracle_deadline = self.clock() + self.config.oracle_load_timeout

            if run_timer:
                self._timer = threading.Thread(
                    target=self._run_timer, args=(self._stop_event,), name="capture-tick", daemon=True
                )
                self._timer.start()
        return self

    def _reset_state(self):
        self._pending = None
        self._camera_future = None
        self._oracle_future = None
        self._oracle_deadline = None
        self.oracle_ready = False
        self.tracker = None
        self.scorecard = QualityScorecard()
        self.captured = None
        self.error = None
        self.last_report = None
        self.ticks = 0
        self.dropped_ticks = 0
        self._last_frame = None
        self._gate_frame = None

    def _run_timer(self, stop_event: threading.Event):
        while not stop_event.wait(self.config.tick_interval):
            try:
                self.tick()
            except Exception:
                LOGGER.exception("Tick handler crashed")
                with self._lock:
                    if self.is_active:
                        self._fail(CaptureError(
                            "Capture pipeline stopped unexpectedly", recovery="Restart the capture session."
                        ))
                break
            if not self.is_active:
                break

    def stop(self) -> None:
        """Halt the timer, release the camera and invalidate in-flight detection."""
        self._stop_event.set()
        timer = self._timer
        if timer is not None and timer is not threading.current_thread():
            timer.join(timeout=max(2.0, self.config.tick_interval * 5))

        with self._lock:
            self._timer = None
            if self.is_active or self.status is SessionStatus.IDLE:
                self._shutdown(SessionStatus.STOPPED)
            else:
                self._shutdown(self.status)

            if self._owns_speech and self.speech is not None:
                self.speech.close()
                self.speech = None

    def restart(self, run_timer: bool = True) -> "CaptureSession":
        self.stop()
        return self.start(run_timer=run_timer)

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.stop()
        return False

    def _shutdown(self, final_status: SessionStatus) -> None:
        # must hold the lock
        self._generation += 1
        self.status = final_status
        self._stop_event.set()

        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

        self.frame_source.release()
        self._close_detector()

        if self._detection_executor is not None and self._injected_detection_executor is None:
            self._detection_executor.shutdown(wait=False, cancel_futures=True)
        if self._acquisition_executor is not None and self._injected_acquisition_executor is None:
            self._acquisition_executor.shutdown(wait=False, cancel_futures=True)
        self._detection_executor = None
        self._acquisition_executor = None

    def _close_detector(self):
        if self.detector is None:
            return
        future = self._oracle_future
        self._oracle_future = None
        self.oracle_ready = False
        if future is not None and not future.done():
            # still loading: close once the load returns, unless a later start() took it over
            generation = self._generation
            future.add_done_callback(lambda _f: self._close_after_load(generation))
            return
        self.detector.close()

    def _close_after_load(self, generation: int) -> None:
        with self._lock:
            if self._generation != generation or self.is_active:
                LOGGER.debug("Late detector load belongs to a restarted session, keeping it")
                return
            self.detector.close()

    # -------------------------------------------------
    # Errors
    # -------------------------------------------------
    def _notify_error(self, err: CaptureError) -> None:
        if self.on_error is not None:
            self.on_error(err)

    def _fail(self, err: CaptureError) -> None:
        LOGGER.error("Session failed: %s", err)
        self.error = err
        if self.speech is not None:
            self.speech.speak(err.recovery)
        self._shutdown(SessionStatus.ERROR)
        self._notify_error(err)

    def _report(self, err: CaptureError) -> None:
        LOGGER.warning("%s: %s", type(err).__name__, err)
        self.error = err
        self._notify_error(err)

    # -------------------------------------------------
    # Acquisition polling
    # -------------------------------------------------
    def _poll_camera(self) -> None:
        future = self._camera_future
        if future is None or not future.done():
            return

        self._camera_future = None
        exc = future.exception()
        if exc is not None:
            if not isinstance(exc, CaptureError):
                exc = DeviceUnavailable(f"Camera could not be started: {exc}")
            self._fail(exc)
            return

        w, h = self.frame_source.frame_size
        self.tracker = GuideTracker(w, h, smoothing=self.config.guide_smoothing, follow=self.detector is not None)
        self.status = SessionStatus.RUNNING
        self.speech.speak(MSG_CAMERA_READY)

        if self.detector is None:
            self._enter_manual(notice=False)

    def _poll_oracle(self) -> None:
        if self.status is not SessionStatus.RUNNING or self.oracle_ready:
            return

        future = self._oracle_future
        if future is None:
            return

        if future.done():
            exc = future.exception()
            if exc is not None:
                if not isinstance(exc, OracleLoadFailure):
                    exc = OracleLoadFailure(f"Landmark detector failed to load: {exc}")
                self._report(exc)
                self._enter_manual(notice=True)
                return
            self.oracle_ready = True
            LOGGER.info("Landmark detector ready")
            self.speech.speak(MSG_ORACLE_READY)
            return

        if self.clock() >= self._oracle_deadline:
            self._report(OracleLoadFailure(
                f"Landmark detector did not load within {self.config.oracle_load_timeout:.0f}s"
            ))
            self._enter_manual(notice=True)

    def _enter_manual(self, notice: bool) -> None:
        self.status = SessionStatus.MANUAL
        self.oracle_ready = False
        if self.tracker is not None:
            self.tracker.freeze()
        self.gate.enter_manual_mode(notice=notice)
        LOGGER.info("Session in manual mode")

    # -------------------------------------------------
    # Tick
    # -------------------------------------------------
    def tick(self) -> bool:
        """
        One timer tick. Returns False if the tick did no work (inactive
        session, acquisition pending, or dropped for backpressure).
        """
        with self._lock:
            if not self.is_active:
                return False
            self.ticks += 1

            if self.status is SessionStatus.STARTING:
                self._poll_camera()
                if self.status is not SessionStatus.RUNNING and self.status is not SessionStatus.MANUAL:
                    return False

            self._poll_oracle()

            if self._pending is not None:
                if not self._pending.done():
                    self.dropped_ticks += 1
                    LOGGER.debug("Detection still in flight, tick dropped")
                    return False
                self._consume(self._pending)
                if not self.is_active:
                    return True

            try:
                frame = self.frame_source.read()
            except StreamLost as e:
                self._fail(e)
                return False

            if frame is None:
                return False

            self._last_frame = frame
            if self.tracker is not None and (self.tracker.frame_w, self.tracker.frame_h) != (frame.width, frame.height):
                self.tracker.resize(frame.width, frame.height)
                if not self.tracker.follow:
                    self.tracker.freeze()

            use_oracle = self.oracle_ready and self.status is SessionStatus.RUNNING
            self._pending = self._detection_executor.submit(self._observe, frame, self._generation, use_oracle)

            # inline executors complete immediately
            if self._pending.done():
                self._consume(self._pending)
            return True

    def _observe(self, frame: Frame, generation: int, use_oracle: bool) -> Observation:
        # runs on the detection worker
        photometric = check_photometry(frame.image)

        landmarks = None
        if use_oracle:
            try:
                landmarks = self.detector.detect(frame)
            except OracleTransientFailure as e:
                LOGGER.debug("Transient detection failure, treating as no face: %s", e)

        return Observation(generation, frame, photometric, landmarks)

    def _consume(self, future: Future) -> None:
        self._pending = None
        if future.cancelled():
            return

        exc = future.exception()
        if exc is not None:
            LOGGER.warning("Detection job failed, tick skipped: %s", exc)
            return

        obs = future.result()
        if obs.generation != self._generation:
            LOGGER.debug("Discarding detection result from a stopped session")
            return

        frame = obs.frame
        geometry = evaluate_geometry(obs.landmarks, frame.width, frame.height)
        scorecard = QualityScorecard.from_readings(obs.photometric, geometry)
        self.scorecard = scorecard
        guide = self.tracker.update(geometry.eye_center_px)

        self._gate_frame = frame
        if self.status is SessionStatus.RUNNING and self.oracle_ready:
            try:
                update = self.gate.update(geometry, guide, self.clock(), scorecard)
            except FrameCaptureFailure as e:
                self._report(e)
                update = GateUpdate(self.gate.state)
        else:
            update = GateUpdate(self.gate.state, manual=self.gate.manual)

        self.last_report = TickReport(
            frame=frame,
            landmarks=obs.landmarks,
            photometric=obs.photometric,
            geometry=geometry,
            scorecard=scorecard,
            guide=self.tracker.position,
            gate=update,
            status=self.status,
        )
        if self.on_update is not None:
            self.on_update(self.last_report)

        if update.capture is not None:
            self._finish_capture(update.capture)

    # -------------------------------------------------
    # Capture
    # -------------------------------------------------
    def _crop(self, frame: Optional[Frame], provenance: str) -> CapturedImage:
        if frame is None or self.tracker is None:
            raise FrameCaptureFailure("No frame available to capture")

        return emit_capture(
            frame.image,
            self.tracker.position,
            provenance,
            size=self.config.crop_size,
            quality=self.config.jpeg_quality,
            metadata={
                "guide": [float(v) for v in self.tracker.position],
                "scorecard": self.scorecard.to_dict(),
                "quality_score": self.scorecard.quality_score(),
                "frame_index": frame.index,
            },
        )

    def _emit_ai_capture(self) -> CapturedImage:
        # called by the gate inside _consume, so _gate_frame is the frame it judged
        return self._crop(self._gate_frame, PROVENANCE_AI)

    def _finish_capture(self, image: CapturedImage) -> None:
        LOGGER.info("Captured %d-byte %s image", len(image.data), image.provenance)
        self.captured = image
        self._shutdown(SessionStatus.CAPTURED)
        if self.on_capture is not None:
            self.on_capture(image)

    def capture_manual(self) -> CapturedImage:
        """
        Explicit user capture at the current guide position.
        Raises FrameCaptureFailure if no frame can be cropped; the
        session stays open either way.
        """
        with self._lock:
            if self.status not in (SessionStatus.RUNNING, SessionStatus.MANUAL):
                raise FrameCaptureFailure(f"Cannot capture while session is {self.status.value}")

            image = self._crop(self._last_frame, PROVENANCE_MANUAL)
            LOGGER.info("Manual capture at guide %s", self.tracker.position)
            self.captured = image
            if self.on_capture is not None:
                self.on_capture(image)
            return image

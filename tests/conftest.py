from concurrent.futures import Future

import numpy as np
import pytest

from eyecapture.capture.landmark_oracle import LandmarkDetector
from eyecapture.capture.voice import SpeechChannel
from eyecapture.types import LandmarkSet

FRAME_W = 640
FRAME_H = 480


def make_face(width=0.25, center=(0.5, 0.5), ear=0.3, iris=True, n_points=478):
    """
    Synthetic face mesh. Outer eye corners are ``width`` apart around
    ``center``; both eyes get the requested EAR exactly.
    """
    cx, cy = center
    n = n_points if iris else 468
    pts = np.zeros((n, 3), dtype=np.float64)
    pts[:, 0] = cx
    pts[:, 1] = cy

    eye_w = width * 0.3
    half_gap = ear * eye_w / 2.0

    # left eye: 33 outer .. 133 inner
    x0 = cx - width / 2.0
    pts[33, :2] = (x0, cy)
    pts[133, :2] = (x0 + eye_w, cy)
    pts[160, :2] = (x0 + eye_w / 3, cy - half_gap)
    pts[144, :2] = (x0 + eye_w / 3, cy + half_gap)
    pts[158, :2] = (x0 + 2 * eye_w / 3, cy - half_gap)
    pts[153, :2] = (x0 + 2 * eye_w / 3, cy + half_gap)
    pts[159, :2] = (x0 + eye_w / 2, cy - half_gap)
    pts[145, :2] = (x0 + eye_w / 2, cy + half_gap)

    # right eye: 362 inner .. 263 outer
    x1 = cx + width / 2.0
    pts[263, :2] = (x1, cy)
    pts[362, :2] = (x1 - eye_w, cy)
    pts[385, :2] = (x1 - 2 * eye_w / 3, cy - half_gap)
    pts[380, :2] = (x1 - 2 * eye_w / 3, cy + half_gap)
    pts[387, :2] = (x1 - eye_w / 3, cy - half_gap)
    pts[373, :2] = (x1 - eye_w / 3, cy + half_gap)
    pts[386, :2] = (x1 - eye_w / 2, cy - half_gap)
    pts[374, :2] = (x1 - eye_w / 2, cy + half_gap)

    if iris:
        pts[468, :2] = (x0 + eye_w / 2, cy)

    return LandmarkSet(pts)


@pytest.fixture
def face():
    return make_face


class SpySpeech(SpeechChannel):
    def __init__(self):
        super().__init__()
        self.spoken = []
        self.closed = False

    def _deliver(self, text):
        self.spoken.append(text)

    def close(self):
        self.closed = True


@pytest.fixture
def speech():
    return SpySpeech()


class InlineExecutor:
    """Runs submitted work immediately, so ticks are deterministic."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class ManualExecutor:
    """Holds submitted work until run_next() is called."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run_next(self):
        future, fn, args, kwargs = self.jobs.pop(0)
        if not future.set_running_or_notify_cancel():
            return future
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class FakeCapture:
    """Stands in for cv2.VideoCapture."""

    def __init__(self, image=None, opened=True, frames_before_loss=None):
        self.image = image if image is not None else gray_frame()
        self.opened = opened
        self.frames_before_loss = frames_before_loss
        self.released = False
        self.reads = 0
        self.props = {}

    def isOpened(self):
        return self.opened and not self.released

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        if self.released or not self.opened:
            return False, None
        self.reads += 1
        if self.frames_before_loss is not None and self.reads > self.frames_before_loss:
            return False, None
        return True, self.image.copy()

    def release(self):
        self.released = True


class ScriptedDetector(LandmarkDetector):
    """Returns scripted landmark sets; repeats the last entry forever."""

    def __init__(self, script=None, load_error=None, detect_error=None):
        self.script = list(script or [None])
        self.load_error = load_error
        self.detect_error = detect_error
        self.loaded = False
        self.closed = False
        self.calls = 0

    def load(self):
        if self.load_error is not None:
            raise self.load_error
        self.loaded = True

    def detect(self, frame):
        self.calls += 1
        if self.detect_error is not None:
            raise self.detect_error
        if len(self.script) > 1:
            return self.script.pop(0)
        return self.script[0]

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def gray_frame(value=128, w=FRAME_W, h=FRAME_H):
    return np.full((h, w, 3), value, dtype=np.uint8)


def textured_frame(w=FRAME_W, h=FRAME_H, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(60, 200, size=(h, w, 3), dtype=np.uint8)

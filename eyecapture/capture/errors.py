"""Named failures of the capture pipeline. Each carries the next step for the user."""


class CaptureError(Exception):
    fatal = False
    recovery = "Try again."

    def __init__(self, message, recovery=None):
        super().__init__(message)
        if recovery is not None:
            self.recovery = recovery


class DeviceUnavailable(CaptureError):
    """No camera, or camera permission denied."""

    fatal = True
    recovery = "Allow camera access and retry, or upload an eye photo instead."


class OracleLoadFailure(CaptureError):
    """Landmark detector could not be loaded; session falls back to manual mode."""

    recovery = "Use manual capture: position your eye in the centre guide and press capture."


class OracleTransientFailure(CaptureError):
    """A single detection call failed; treated as no face for that tick."""

    recovery = "Hold still, detection will resume."


class FrameCaptureFailure(CaptureError):
    """Crop or encode failed; the session stays open."""

    recovery = "Press capture again."


class StreamLost(CaptureError):
    """Camera stream ended mid-session."""

    fatal = True
    recovery = "Reconnect the camera and restart the session, or switch to the simple camera."

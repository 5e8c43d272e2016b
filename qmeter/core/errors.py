"""
Error taxonomy for QuietMeter.

- MeterError: base class for handled failures
- AcquisitionError: the microphone stream could not be obtained (retryable)
  - PermissionDenied: the platform or the user refused audio access
  - DeviceUnavailable: no usable input device, or opening it failed otherwise
- TransientFrameError: one frame could not be read; the frame is skipped
"""

from __future__ import annotations

__all__ = [
    "MeterError",
    "AcquisitionError",
    "PermissionDenied",
    "DeviceUnavailable",
    "TransientFrameError",
]


class MeterError(RuntimeError):
    """
    Generic exception for recoverable/handled meter failures.
    """


class AcquisitionError(MeterError):
    """
    Raised by the sampler when no input stream could be opened.

    The session falls back to a non-active state and may be started again.
    `kind` tells consumers which guidance to show.
    """

    kind: str = "device"
    user_message: str = "The microphone could not be opened."

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.user_message)
        self.detail = detail


class PermissionDenied(AcquisitionError):
    kind = "permission"
    user_message = "Please allow microphone access to use the noise monitor."


class DeviceUnavailable(AcquisitionError):
    kind = "device"
    user_message = "No usable microphone was found. Check that an input device is connected."


class TransientFrameError(MeterError):
    """A single frame's read failed; absorbed by the frame loop."""

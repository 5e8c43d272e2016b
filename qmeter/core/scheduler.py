"""
Frame scheduling for the session tick loop.

The session controller never sleeps or spins on its own: it asks a FrameScheduler
to run its tick callback on the next frame, and cancels the pending request on stop.

- CooperativeScheduler: pending callbacks run when the owner calls run_pending()
  (console loop, tests).
- QtFrameScheduler (qmeter.ui.qt_app): single-shot QTimers on the Qt event loop.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

__all__ = ["FrameScheduler", "CooperativeScheduler"]


@runtime_checkable
class FrameScheduler(Protocol):
    """Schedules a callback for the next display frame."""

    def schedule(self, callback: Callable[[], None]) -> object:
        """Run `callback` once on the next frame; return a handle for cancel()."""
        ...

    def cancel(self, handle: object) -> None:
        """Prevent a scheduled callback from running. Unknown handles are ignored."""
        ...


class CooperativeScheduler:
    """
    Queue of next-frame callbacks, drained explicitly by run_pending().

    Callbacks scheduled while draining run on the following call, so each call
    is exactly one frame.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._pending: dict[int, Callable[[], None]] = {}
        self.frames_run = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, callback: Callable[[], None]) -> object:
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel(self, handle: object) -> None:
        self._pending.pop(handle, None)  # type: ignore[arg-type]

    def run_pending(self) -> int:
        """Run the callbacks due this frame; return how many ran."""
        due, self._pending = self._pending, {}
        for handle, callback in due.items():
            try:
                callback()
            except Exception:
                logging.exception("Frame callback %s failed", handle)
        self.frames_run += 1
        return len(due)

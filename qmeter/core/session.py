"""
Session control for QuietMeter.

SessionController is the acquisition/permission state machine:

    IDLE | STOPPED | DENIED --start()--> PERMISSION_PROMPT
    PERMISSION_PROMPT --granted--> ACTIVE        (tick loop running, listening)
    PERMISSION_PROMPT --denied/error--> DENIED   (retryable)
    ACTIVE --stop() / teardown()--> STOPPED      (stream released, level reset to 0)
    ACTIVE --permission revoked--> DENIED

It exclusively owns the sampler's stream, the scheduled tick handle and the
optional permission subscription. Each tick reads one frame, estimates it,
steps the smoothing filter and notifies subscribers with a SessionSnapshot.
No exception raised inside a tick escapes the loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from qmeter.core.errors import (
    AcquisitionError,
    DeviceUnavailable,
    PermissionDenied,
    TransientFrameError,
)
from qmeter.core.estimator import LevelEstimator
from qmeter.core.sampler import SignalSampler
from qmeter.core.scheduler import FrameScheduler
from qmeter.core.smoothing import SmoothingFilter

__all__ = [
    "SessionState",
    "PermissionState",
    "SessionSnapshot",
    "DiagnosticSample",
    "DiagnosticSink",
    "PermissionMonitor",
    "SessionController",
    "log_diagnostics",
]


class SessionState(str, Enum):
    IDLE = "idle"
    PERMISSION_PROMPT = "permission_prompt"
    ACTIVE = "active"
    DENIED = "denied"
    STOPPED = "stopped"


class PermissionState(str, Enum):
    UNKNOWN = "unknown"
    PROMPT = "prompt"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """What consumers see after every tick and state change."""

    level: float
    listening: bool
    permission_state: PermissionState
    state: SessionState
    error: AcquisitionError | None = None


@dataclass(frozen=True, slots=True)
class DiagnosticSample:
    tick: int
    raw_level: float | None
    display_level: float
    skipped_frames: int


DiagnosticSink = Callable[[DiagnosticSample], None]
SnapshotListener = Callable[[SessionSnapshot], None]


class PermissionMonitor(Protocol):
    """Platform permission-change notifications."""

    def subscribe(self, callback: Callable[[PermissionState], None]) -> Callable[[], None]:
        """Register `callback`; return a function that unregisters it."""
        ...


def log_diagnostics(sample: DiagnosticSample) -> None:
    logging.debug(
        "Level tick=%d raw=%s display=%.1f skipped=%d",
        sample.tick,
        "-" if sample.raw_level is None else f"{sample.raw_level:.1f}",
        sample.display_level,
        sample.skipped_frames,
    )


class SessionController:
    """
    Owns one audio session at a time and publishes its level and state.

    Args:
        sampler: Signal sampler (stream + analyser).
        scheduler: Frame scheduler driving the tick loop.
        estimator: Level estimator (default settings if None).
        smoothing: Smoothing filter for the display level (default settings if None).
        permission_monitor: Optional platform permission-change source.
        diagnostics: Optional sink receiving a DiagnosticSample every
            `diagnostics_interval` ticks.
    """

    def __init__(
        self,
        sampler: SignalSampler,
        scheduler: FrameScheduler,
        estimator: LevelEstimator | None = None,
        smoothing: SmoothingFilter | None = None,
        permission_monitor: PermissionMonitor | None = None,
        diagnostics: DiagnosticSink | None = None,
        diagnostics_interval: int = 30,
    ) -> None:
        self.sampler = sampler
        self.scheduler = scheduler
        self.estimator = estimator or LevelEstimator()
        self.smoothing = smoothing or SmoothingFilter()
        self.permission_monitor = permission_monitor
        self.diagnostics = diagnostics
        self.diagnostics_interval = max(1, int(diagnostics_interval))

        self._state = SessionState.IDLE
        self._permission_state = PermissionState.UNKNOWN
        self._listening = False
        self._error: AcquisitionError | None = None
        self._tick_handle: object | None = None
        self._unsubscribe_permission: Callable[[], None] | None = None
        self._listeners: list[SnapshotListener] = []
        self._ticks = 0
        self._skipped = 0
        self._last_raw: float | None = None

    # --- Read-only state ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def permission_state(self) -> PermissionState:
        return self._permission_state

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def level(self) -> float:
        return self.smoothing.current

    @property
    def raw_level(self) -> float | None:
        """Last unsmoothed estimate, None when the last tick produced none."""
        return self._last_raw

    @property
    def last_error(self) -> AcquisitionError | None:
        return self._error

    @property
    def skipped_frames(self) -> int:
        return self._skipped

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            level=self.level,
            listening=self._listening,
            permission_state=self._permission_state,
            state=self._state,
            error=self._error,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener; return a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logging.exception("Session listener failed")

    # --- Lifecycle ---

    def start(self) -> None:
        """
        Request the microphone and begin the tick loop.

        Must be called from an explicit user action. No-op while a session is
        active or being acquired.
        """
        if self._state in (SessionState.ACTIVE, SessionState.PERMISSION_PROMPT):
            logging.debug("SessionController.start ignored in state %s", self._state.value)
            return

        self._state = SessionState.PERMISSION_PROMPT
        if self._permission_state is not PermissionState.GRANTED:
            self._permission_state = PermissionState.PROMPT
        self._error = None
        self._notify()

        try:
            self.sampler.acquire()
        except AcquisitionError as e:
            self._enter_denied(e)
            return
        except Exception as e:
            logging.exception("Unexpected error while opening the microphone")
            self._enter_denied(DeviceUnavailable(str(e)))
            return

        self._state = SessionState.ACTIVE
        self._permission_state = PermissionState.GRANTED
        self._listening = True
        self._ticks = 0
        self._skipped = 0
        self._last_raw = None
        self.smoothing.reset()
        if self.permission_monitor is not None:
            try:
                self._unsubscribe_permission = self.permission_monitor.subscribe(
                    self._on_permission_change
                )
            except Exception:
                logging.exception("Permission monitor unavailable; revocation will not be detected")
                self._unsubscribe_permission = None
        logging.info("Audio monitoring started")
        self._notify()
        self._schedule_tick()

    def stop(self) -> None:
        """End the active session. No-op when not active."""
        if self._state is not SessionState.ACTIVE:
            logging.debug("SessionController.stop ignored in state %s", self._state.value)
            return
        self._release()
        self._state = SessionState.STOPPED
        logging.info("Audio monitoring stopped")
        self._notify()

    def teardown(self) -> None:
        """Consumer is going away: release everything that is still held."""
        if self._state is SessionState.ACTIVE:
            self.stop()
        else:
            self._release()
        self._listeners.clear()

    def __enter__(self) -> SessionController:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()

    def _release(self) -> None:
        if self._tick_handle is not None:
            self.scheduler.cancel(self._tick_handle)
            self._tick_handle = None
        if self._unsubscribe_permission is not None:
            try:
                self._unsubscribe_permission()
            except Exception:
                logging.debug("Permission unsubscribe failed", exc_info=True)
            self._unsubscribe_permission = None
        self.sampler.release()
        self.smoothing.reset()
        self._listening = False

    def _enter_denied(self, error: AcquisitionError) -> None:
        self._state = SessionState.DENIED
        self._permission_state = PermissionState.DENIED
        self._listening = False
        self._error = error
        logging.warning("Microphone unavailable (%s): %s", error.kind, error)
        self._notify()

    def _on_permission_change(self, permission: PermissionState) -> None:
        if permission is PermissionState.DENIED and self._state is SessionState.ACTIVE:
            self._release()
            self._enter_denied(PermissionDenied("microphone permission revoked"))
            return
        if self._state is not SessionState.ACTIVE:
            self._permission_state = permission
            self._notify()

    # --- Tick loop ---

    def _schedule_tick(self) -> None:
        self._tick_handle = self.scheduler.schedule(self._tick)

    def _tick(self) -> None:
        self._tick_handle = None
        if self._state is not SessionState.ACTIVE:
            return
        self._ticks += 1
        raw: float | None = None
        try:
            raw = self.estimator.estimate(self.sampler.next_frame())
            if raw is not None:
                self.smoothing.step(raw)
        except TransientFrameError as e:
            self._skipped += 1
            logging.debug("Frame skipped: %s", e)
        except Exception:
            self._skipped += 1
            logging.exception("Unexpected error while estimating frame")
        self._last_raw = raw

        if self.diagnostics is not None and self._ticks % self.diagnostics_interval == 0:
            try:
                self.diagnostics(
                    DiagnosticSample(self._ticks, raw, self.level, self._skipped)
                )
            except Exception:
                logging.debug("Diagnostics sink failed", exc_info=True)

        self._notify()
        # a listener may have stopped the session
        if self._state is SessionState.ACTIVE and self._tick_handle is None:
            self._schedule_tick()

from __future__ import annotations

import numpy as np
import pytest
from conftest import FakePermissionMonitor, FakeSampler, make_frame

from qmeter.core import EstimatorSettings
from qmeter.core.classifier import NoiseCategory, ThresholdSet, classify
from qmeter.core.errors import DeviceUnavailable, PermissionDenied, TransientFrameError
from qmeter.core.estimator import LevelEstimator
from qmeter.core.sampler import SignalSampler
from qmeter.core.scheduler import CooperativeScheduler
from qmeter.core.session import (
    DiagnosticSample,
    PermissionState,
    SessionController,
    SessionState,
)


def make_controller(sampler=None, **kwargs) -> tuple[SessionController, CooperativeScheduler]:
    scheduler = CooperativeScheduler()
    controller = SessionController(sampler or FakeSampler(), scheduler, **kwargs)
    return controller, scheduler


def test_initial_state() -> None:
    controller, _ = make_controller()
    snap = controller.snapshot()
    assert snap.state is SessionState.IDLE
    assert snap.permission_state is PermissionState.UNKNOWN
    assert snap.listening is False
    assert snap.level == 0.0


def test_stop_without_start_is_noop() -> None:
    sampler = FakeSampler()
    controller, _ = make_controller(sampler)
    controller.stop()
    assert controller.state is SessionState.IDLE
    assert controller.listening is False
    assert sampler.release_calls == 0


def test_double_start_acquires_once() -> None:
    sampler = FakeSampler()
    controller, scheduler = make_controller(sampler)
    controller.start()
    controller.start()
    assert sampler.acquire_calls == 1
    assert scheduler.pending == 1
    assert controller.state is SessionState.ACTIVE
    assert controller.permission_state is PermissionState.GRANTED
    assert controller.listening is True


def test_double_start_with_real_sampler(stream_factory) -> None:
    controller, scheduler = make_controller(SignalSampler(stream_factory=stream_factory))
    controller.start()
    controller.start()
    assert stream_factory.calls == 1
    assert len(stream_factory.streams) == 1
    scheduler.run_pending()
    assert scheduler.pending == 1


def test_permission_denied_then_retry() -> None:
    sampler = FakeSampler(error=PermissionDenied("user declined"))
    controller, scheduler = make_controller(sampler)
    seen = []
    controller.subscribe(lambda snap: seen.append(snap.state))

    controller.start()
    assert controller.state is SessionState.DENIED
    assert controller.permission_state is PermissionState.DENIED
    assert controller.listening is False
    assert isinstance(controller.last_error, PermissionDenied)
    assert controller.last_error.kind == "permission"
    assert scheduler.pending == 0
    assert seen == [SessionState.PERMISSION_PROMPT, SessionState.DENIED]

    sampler.error = None
    controller.start()
    assert controller.state is SessionState.ACTIVE
    assert controller.last_error is None
    assert sampler.acquire_calls == 2


def test_device_unavailable_is_distinguishable() -> None:
    controller, _ = make_controller(FakeSampler(error=DeviceUnavailable("no input device")))
    controller.start()
    assert controller.state is SessionState.DENIED
    assert isinstance(controller.last_error, DeviceUnavailable)
    assert controller.last_error.kind == "device"
    # stop in the denied state is a no-op
    controller.stop()
    assert controller.state is SessionState.DENIED


def test_stop_cancels_pending_tick_and_releases(stream_factory) -> None:
    controller, scheduler = make_controller(SignalSampler(stream_factory=stream_factory))
    controller.start()
    assert scheduler.pending == 1
    controller.stop()
    assert scheduler.pending == 0
    stream = stream_factory.streams[0]
    assert stream.stopped and stream.closed
    assert controller.state is SessionState.STOPPED
    assert controller.level == 0.0
    # restart after stop
    controller.start()
    assert controller.state is SessionState.ACTIVE
    assert stream_factory.calls == 2


def test_missing_frame_holds_level() -> None:
    sampler = FakeSampler(frames=[make_frame(0, 255), None, None])
    controller, scheduler = make_controller(sampler)
    controller.start()
    scheduler.run_pending()
    level = controller.level
    assert level > 0
    scheduler.run_pending()
    scheduler.run_pending()
    assert controller.level == level
    assert controller.raw_level is None
    assert scheduler.pending == 1


def test_transient_frame_error_is_skipped() -> None:
    sampler = FakeSampler(frames=[make_frame(0, 255), TransientFrameError("graph gone"), make_frame(0, 255)])
    controller, scheduler = make_controller(sampler)
    controller.start()
    scheduler.run_pending()
    level = controller.level
    scheduler.run_pending()
    assert controller.level == level
    assert controller.skipped_frames == 1
    scheduler.run_pending()
    assert controller.level > level
    assert controller.state is SessionState.ACTIVE


def test_unexpected_frame_exception_does_not_stop_loop() -> None:
    class BrokenEstimator(LevelEstimator):
        def estimate(self, frame):
            raise ZeroDivisionError("bad frame")

    controller, scheduler = make_controller(
        FakeSampler(frames=[make_frame(0, 255)]), estimator=BrokenEstimator()
    )
    controller.start()
    scheduler.run_pending()
    assert controller.skipped_frames == 1
    assert controller.state is SessionState.ACTIVE
    assert scheduler.pending == 1


def test_listener_errors_are_absorbed() -> None:
    controller, scheduler = make_controller(FakeSampler(frames=[make_frame(0, 255)]))

    def broken(snap) -> None:
        raise RuntimeError("ui exploded")

    seen = []
    controller.subscribe(broken)
    controller.subscribe(seen.append)
    controller.start()
    scheduler.run_pending()
    assert seen[-1].level > 0


def test_listener_may_stop_during_tick() -> None:
    sampler = FakeSampler(frames=[make_frame(0, 255)])
    controller, scheduler = make_controller(sampler)

    def stop_when_loud(snap) -> None:
        if snap.level > 50:
            controller.stop()

    controller.subscribe(stop_when_loud)
    controller.start()
    scheduler.run_pending()
    assert controller.state is SessionState.STOPPED
    assert scheduler.pending == 0
    assert sampler.release_calls == 1


def test_unsubscribe() -> None:
    controller, _ = make_controller()
    seen = []
    unsubscribe = controller.subscribe(seen.append)
    unsubscribe()
    controller.start()
    assert seen == []


def test_permission_revoked_while_active() -> None:
    monitor = FakePermissionMonitor()
    sampler = FakeSampler()
    controller, scheduler = make_controller(sampler, permission_monitor=monitor)
    controller.start()
    assert len(monitor.callbacks) == 1

    monitor.emit(PermissionState.DENIED)
    assert controller.state is SessionState.DENIED
    assert controller.permission_state is PermissionState.DENIED
    assert isinstance(controller.last_error, PermissionDenied)
    assert controller.listening is False
    assert sampler.release_calls == 1
    assert monitor.unsubscribed == 1
    assert scheduler.pending == 0


def test_permission_monitor_disposed_on_stop() -> None:
    monitor = FakePermissionMonitor()
    controller, _ = make_controller(permission_monitor=monitor)
    controller.start()
    controller.stop()
    assert monitor.callbacks == []
    assert monitor.unsubscribed == 1


def test_teardown_releases_active_session() -> None:
    sampler = FakeSampler()
    controller, scheduler = make_controller(sampler)
    with controller:
        controller.start()
        assert sampler.acquired
    assert not sampler.acquired
    assert controller.listening is False
    assert scheduler.pending == 0


def test_teardown_when_idle_is_harmless() -> None:
    controller, _ = make_controller()
    controller.teardown()
    assert controller.state is SessionState.IDLE


def test_diagnostics_sink_receives_samples() -> None:
    samples: list[DiagnosticSample] = []
    frames = [make_frame(0, 255) for _ in range(6)]
    controller, scheduler = make_controller(
        FakeSampler(frames=frames), diagnostics=samples.append, diagnostics_interval=3
    )
    controller.start()
    for _ in range(6):
        scheduler.run_pending()
    assert [s.tick for s in samples] == [3, 6]
    assert samples[-1].raw_level == 100.0
    assert samples[-1].display_level == pytest.approx(controller.level)


def test_end_to_end_quiet_to_loud_then_stop() -> None:
    thresholds = ThresholdSet(30, 60, 85)
    frames = [
        make_frame(time_value=128, freq_value=204),  # raw 40
        make_frame(time_value=0, freq_value=102),  # raw 70
        make_frame(time_value=0, freq_value=255),  # raw 100
    ]
    controller, scheduler = make_controller(
        FakeSampler(frames=frames),
        estimator=LevelEstimator(EstimatorSettings(sensitivity=1.0)),
    )
    controller.start()
    assert controller.listening is True

    levels = []
    categories = []
    for _ in range(3):
        scheduler.run_pending()
        levels.append(controller.level)
        categories.append(classify(controller.level, thresholds))

    assert levels[0] < levels[1] < levels[2]
    assert categories == [NoiseCategory.QUIET, NoiseCategory.MODERATE, NoiseCategory.LOUD]
    assert np.allclose(levels, [24.0, 51.6, 80.64])

    controller.stop()
    assert controller.level == 0.0
    assert controller.listening is False
    assert controller.snapshot().level == 0.0


def test_unexpected_acquire_error_is_retryable() -> None:
    sampler = FakeSampler(error=OSError("Invalid number of channels"))
    controller, scheduler = make_controller(sampler)
    controller.start()
    assert controller.state is SessionState.DENIED
    assert isinstance(controller.last_error, DeviceUnavailable)
    assert "Invalid number of channels" in str(controller.last_error)
    assert scheduler.pending == 0

    sampler.error = None
    controller.start()
    assert controller.state is SessionState.ACTIVE
    assert sampler.acquire_calls == 2
    assert scheduler.pending == 1


def test_failing_permission_monitor_keeps_frame_loop() -> None:
    class BrokenMonitor(FakePermissionMonitor):
        def subscribe(self, callback):
            raise RuntimeError("permissions API unavailable")

    sampler = FakeSampler(frames=[make_frame(0, 255)])
    controller, scheduler = make_controller(sampler, permission_monitor=BrokenMonitor())
    controller.start()
    assert controller.state is SessionState.ACTIVE
    assert scheduler.pending == 1
    scheduler.run_pending()
    assert controller.level > 0
    controller.stop()
    assert sampler.release_calls == 1

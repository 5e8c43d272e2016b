from __future__ import annotations

import sys

import numpy as np
import pytest

from qmeter.core import SamplerSettings
from qmeter.core import audio
from qmeter.core.audio import _map_error, open_input_stream
from qmeter.core.errors import DeviceUnavailable, PermissionDenied, TransientFrameError
from qmeter.core.sampler import Analyser, SampleFrame, SignalSampler


def _sine(freq: float, rate: int = 48_000, n: int = 1024, amp: float = 0.5) -> np.ndarray:
    t = np.arange(n) / rate
    return (amp * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def test_analyser_returns_none_before_audio() -> None:
    analyser = Analyser(SamplerSettings())
    analyser.connect()
    assert analyser.read_frame() is None


def test_analyser_ignores_writes_when_disconnected() -> None:
    analyser = Analyser(SamplerSettings())
    analyser.write(np.ones(1024, dtype=np.float32))
    analyser.connect()
    assert analyser.read_frame() is None


def test_analyser_silence() -> None:
    analyser = Analyser(SamplerSettings())
    analyser.connect()
    analyser.sample_rate = 48_000
    analyser.write(np.zeros(1024, dtype=np.float32))
    frame = analyser.read_frame()
    assert frame is not None
    assert frame.time_domain.shape == (1024,)
    assert frame.frequency.shape == (512,)
    assert np.all(frame.time_domain == 128)
    assert np.all(frame.frequency == 0)


def test_analyser_locates_tone() -> None:
    analyser = Analyser(SamplerSettings())
    analyser.connect()
    analyser.sample_rate = 48_000
    analyser.write(_sine(1000.0))
    frame = analyser.read_frame()
    assert frame is not None
    assert frame.time_domain.min() < 128 < frame.time_domain.max()
    expected_bin = 1000.0 / (48_000 / 1024)
    assert abs(int(np.argmax(frame.frequency)) - expected_bin) <= 1
    assert frame.frequency.max() > 200


def test_analyser_ring_keeps_latest_window_in_order() -> None:
    analyser = Analyser(SamplerSettings())
    analyser.connect()
    analyser.write(np.full(600, 0.1, dtype=np.float32))
    analyser.write(np.full(600, -0.1, dtype=np.float32))
    frame = analyser.read_frame()
    assert frame is not None
    assert np.all(frame.time_domain[:424] == 140)
    assert np.all(frame.time_domain[424:] == 115)


def test_sample_frame_is_read_only() -> None:
    frame = SampleFrame(
        time_domain=np.full(4, 128, dtype=np.uint8),
        frequency=np.zeros(2, dtype=np.uint8),
        sample_rate=8000,
    )
    with pytest.raises(ValueError):
        frame.time_domain[0] = 1
    assert frame.nyquist == 4000.0
    assert frame.bin_count == 2


def test_sampler_acquire_and_frames(stream_factory) -> None:
    sampler = SignalSampler(stream_factory=stream_factory)
    assert sampler.next_frame() is None

    sampler.acquire()
    assert sampler.acquired
    # connected, but nothing delivered yet
    assert sampler.next_frame() is None

    stream_factory.on_block(_sine(440.0))
    frame = sampler.next_frame()
    assert frame is not None
    assert frame.sample_rate == 48_000


def test_sampler_does_not_acquire_twice(stream_factory) -> None:
    sampler = SignalSampler(stream_factory=stream_factory)
    first = sampler.acquire()
    second = sampler.acquire()
    assert first is second
    assert stream_factory.calls == 1


def test_sampler_release_is_idempotent(stream_factory) -> None:
    sampler = SignalSampler(stream_factory=stream_factory)
    sampler.release()
    sampler.acquire()
    stream = stream_factory.streams[0]
    sampler.release()
    assert stream.stopped and stream.closed
    assert not sampler.acquired
    assert sampler.next_frame() is None
    sampler.release()


def test_sampler_reacquire_reuses_analyser(stream_factory) -> None:
    sampler = SignalSampler(stream_factory=stream_factory)
    analyser = sampler.analyser
    sampler.acquire()
    stream_factory.on_block(_sine(440.0))
    sampler.release()
    sampler.acquire()
    assert sampler.analyser is analyser
    assert stream_factory.calls == 2
    # previous session's samples are gone
    assert sampler.next_frame() is None


def test_sampler_stream_loss_is_transient(stream_factory) -> None:
    sampler = SignalSampler(stream_factory=stream_factory)
    sampler.acquire()
    stream_factory.on_block(_sine(440.0))
    stream_factory.on_finished()
    with pytest.raises(TransientFrameError):
        sampler.next_frame()


def test_sampler_acquire_failure_propagates(stream_factory) -> None:
    stream_factory.error = PermissionDenied("denied by user")
    sampler = SignalSampler(stream_factory=stream_factory)
    with pytest.raises(PermissionDenied):
        sampler.acquire()
    assert not sampler.acquired
    assert not sampler.analyser.connected


def test_invalid_fft_size_rejected() -> None:
    with pytest.raises(ValueError):
        SignalSampler(SamplerSettings(fft_size=1000))


def test_error_mapping() -> None:
    assert isinstance(_map_error(PermissionError("no")), PermissionDenied)
    assert isinstance(_map_error(Exception("Permission denied [PaErrorCode -9986]")), PermissionDenied)
    assert isinstance(_map_error(Exception("Device unavailable [PaErrorCode -9985]")), DeviceUnavailable)
    original = DeviceUnavailable("gone")
    assert _map_error(original) is original


class _FailingStartStream:
    def __init__(self, created: list, **kwargs) -> None:
        self.closed = False
        created.append(self)

    def start(self) -> None:
        raise RuntimeError("Error starting stream: Device unavailable [PaErrorCode -9985]")

    def close(self) -> None:
        self.closed = True


class _FakeSoundDevice:
    class PortAudioError(Exception):
        pass

    def __init__(self) -> None:
        self.created: list = []

    def InputStream(self, **kwargs):
        return _FailingStartStream(self.created, **kwargs)


def test_open_closes_stream_when_start_fails(monkeypatch) -> None:
    fake_sd = _FakeSoundDevice()
    monkeypatch.setattr(audio, "_import_sounddevice", lambda: fake_sd)
    with pytest.raises(DeviceUnavailable):
        open_input_stream(SamplerSettings(sample_rate=48_000), lambda block: None)
    assert len(fake_sd.created) == 1
    assert fake_sd.created[0].closed


def test_missing_sounddevice_is_device_unavailable(monkeypatch) -> None:
    monkeypatch.setitem(sys.modules, "sounddevice", None)
    with pytest.raises(DeviceUnavailable):
        open_input_stream(SamplerSettings(sample_rate=48_000), lambda block: None)

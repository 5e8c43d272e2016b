"""
Signal sampling for QuietMeter.

The Analyser plays the part of a browser AnalyserNode: the audio callback pushes
float samples into a fixed ring buffer, and each animation tick reads one
SampleFrame holding
- time-domain bytes (midpoint 128), and
- frequency-domain bytes (Blackman window, temporally smoothed, dB-mapped).

SignalSampler owns the live input stream and the analyser for one session.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from qmeter.core import BYTE_MAX, TIME_DOMAIN_MIDPOINT, SamplerSettings
from qmeter.core.audio import BlockCallback, open_input_stream
from qmeter.core.errors import TransientFrameError

__all__ = ["SampleFrame", "Analyser", "SignalSampler", "StreamFactory"]

# (settings, on_block, on_finished) -> (stream, sample_rate)
StreamFactory = Callable[
    [SamplerSettings, BlockCallback, Callable[[], None] | None], tuple[Any, int]
]

_DB_FLOOR = 1e-12


@dataclass(frozen=True, slots=True)
class SampleFrame:
    """
    Immutable snapshot of one tick's raw audio data.

    Attributes:
        time_domain: uint8 amplitudes centred on 128 (fft_size values).
        frequency: uint8 magnitudes, one per bin, ordered low -> high (fft_size // 2 values).
        sample_rate: Sampling rate of the stream in Hz.
    """

    time_domain: np.ndarray
    frequency: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        self.time_domain.setflags(write=False)
        self.frequency.setflags(write=False)

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2.0

    @property
    def bin_count(self) -> int:
        return int(self.frequency.size)


class Analyser:
    """
    Fixed-window analysis graph fed from the audio thread.

    write() is called from the PortAudio callback; read_frame() from the tick thread.
    The ring buffer is guarded by a lock; the spectral smoothing state is only
    touched by read_frame().
    """

    def __init__(self, settings: SamplerSettings) -> None:
        self.fft_size = settings.fft_size
        self.bin_count = settings.bin_count
        self.min_decibels = settings.min_decibels
        self.max_decibels = settings.max_decibels
        self.smoothing_time_constant = settings.smoothing_time_constant
        self.sample_rate: int = 0
        self._lock = threading.Lock()
        self._ring = np.zeros(self.fft_size, dtype=np.float32)
        self._write_pos = 0
        self._filled = 0
        self._connected = False
        self._window = np.blackman(self.fft_size).astype(np.float64)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float64)

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    def connect(self) -> None:
        """Clear previous content and start accepting samples."""
        with self._lock:
            self._ring.fill(0.0)
            self._write_pos = 0
            self._filled = 0
            self._connected = True
        self._smoothed.fill(0.0)

    def disconnect(self) -> None:
        with self._lock:
            self._connected = False

    def write(self, block: Any) -> None:
        samples = np.asarray(block, dtype=np.float32).ravel()
        n = self.fft_size
        with self._lock:
            if not self._connected or samples.size == 0:
                return
            if samples.size >= n:
                self._ring[:] = samples[-n:]
                self._write_pos = 0
                self._filled = n
                return
            first = min(n - self._write_pos, samples.size)
            self._ring[self._write_pos : self._write_pos + first] = samples[:first]
            rest = samples.size - first
            if rest:
                self._ring[:rest] = samples[first:]
            self._write_pos = (self._write_pos + samples.size) % n
            self._filled = min(n, self._filled + samples.size)

    def _snapshot(self) -> np.ndarray | None:
        with self._lock:
            if self._filled == 0:
                return None
            # oldest sample first
            return np.roll(self._ring, -self._write_pos).astype(np.float64)

    def time_domain_bytes(self, samples: np.ndarray) -> np.ndarray:
        scaled = np.floor(TIME_DOMAIN_MIDPOINT * (1.0 + samples))
        return np.clip(scaled, 0, BYTE_MAX).astype(np.uint8)

    def frequency_bytes(self, samples: np.ndarray) -> np.ndarray:
        spectrum = np.fft.rfft(samples * self._window)[: self.bin_count]
        magnitude = np.abs(spectrum) / self.fft_size
        tau = self.smoothing_time_constant
        self._smoothed = tau * self._smoothed + (1.0 - tau) * magnitude
        db = 20.0 * np.log10(np.maximum(self._smoothed, _DB_FLOOR))
        span = self.max_decibels - self.min_decibels
        scaled = np.floor(BYTE_MAX * (db - self.min_decibels) / span)
        return np.clip(scaled, 0, BYTE_MAX).astype(np.uint8)

    def read_frame(self) -> SampleFrame | None:
        """Return the current buffer as a SampleFrame, or None before any audio arrived."""
        samples = self._snapshot()
        if samples is None:
            return None
        return SampleFrame(
            time_domain=self.time_domain_bytes(samples),
            frequency=self.frequency_bytes(samples),
            sample_rate=self.sample_rate,
        )


class SignalSampler:
    """
    Owns the microphone stream and its analyser.

    Args:
        settings: Stream and analysis settings, fixed for the sampler's lifetime.
        stream_factory: Opens the platform stream; defaults to the sounddevice one.
    """

    def __init__(
        self,
        settings: SamplerSettings | None = None,
        stream_factory: StreamFactory | None = None,
    ) -> None:
        self.settings = settings or SamplerSettings()
        self.settings.validate()
        self._stream_factory = stream_factory or open_input_stream
        # Created once and reused by every acquisition
        self._analyser = Analyser(self.settings)
        self._stream: Any = None

    @property
    def acquired(self) -> bool:
        return self._stream is not None

    @property
    def analyser(self) -> Analyser:
        return self._analyser

    def acquire(self) -> Any:
        """
        Open the input stream and connect the analyser.

        Must only be called in response to an explicit user action.

        Raises:
            PermissionDenied, DeviceUnavailable: If no stream could be obtained.
        """
        if self._stream is not None:
            logging.debug("SignalSampler: stream already acquired")
            return self._stream
        self._analyser.connect()
        try:
            stream, sample_rate = self._stream_factory(
                self.settings, self._analyser.write, self._on_stream_finished
            )
        except Exception:
            self._analyser.disconnect()
            raise
        self._analyser.sample_rate = int(sample_rate)
        self._stream = stream
        return stream

    def _on_stream_finished(self) -> None:
        # Fires on release() as well as when the device goes away
        self._analyser.disconnect()

    def next_frame(self) -> SampleFrame | None:
        """
        Return this tick's SampleFrame, or None when nothing can be supplied yet.

        Raises:
            TransientFrameError: If the analysis graph was disconnected under a live stream.
        """
        if self._stream is None:
            return None
        if not self._analyser.connected:
            raise TransientFrameError("analysis graph disconnected")
        return self._analyser.read_frame()

    def release(self) -> None:
        """Stop all tracks and disconnect the analyser. Safe to call repeatedly."""
        stream, self._stream = self._stream, None
        self._analyser.disconnect()
        if stream is None:
            return
        try:
            stream.stop()
        except Exception:
            logging.debug("SignalSampler: stream.stop() failed", exc_info=True)
        try:
            stream.close()
        except Exception:
            logging.warning("SignalSampler: stream.close() failed", exc_info=True)
        logging.info("Input stream released")

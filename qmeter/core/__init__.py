"""
Core package for audio sampling, loudness estimation, smoothing and session control.

This module holds the shared settings dataclasses and defaults that the other core
modules (sampler, estimator, smoothing, session, config) import.

Submodules:
- audio.py: sounddevice boundary (stream opening, device listing)
- sampler.py: analyser graph and per-frame SampleFrame extraction
- estimator.py: SampleFrame -> 0..100 loudness
- smoothing.py: animated display level
- session.py: acquisition/permission state machine
- classifier.py: level + thresholds -> noise category
- config.py / user_config.py: configuration and logging
"""

from __future__ import annotations

from dataclasses import dataclass

# Defaults and shared constants
DEFAULT_FFT_SIZE: int = 1024
DEFAULT_MIN_DECIBELS: float = -90.0
DEFAULT_MAX_DECIBELS: float = -10.0
DEFAULT_SMOOTHING_TIME_CONSTANT: float = 0.3
DEFAULT_FPS: int = 60
TIME_DOMAIN_MIDPOINT: int = 128
BYTE_MAX: int = 255


@dataclass(slots=True)
class SamplerSettings:
    """Parameters for the input stream and the analysis graph."""

    # On some platforms, device can be an int index or a device name string.
    device: int | str | None = None
    # None uses the device's native rate
    sample_rate: int | None = None
    fft_size: int = DEFAULT_FFT_SIZE
    min_decibels: float = DEFAULT_MIN_DECIBELS
    max_decibels: float = DEFAULT_MAX_DECIBELS
    smoothing_time_constant: float = DEFAULT_SMOOTHING_TIME_CONSTANT
    # Capture processing requested from the host; off keeps the raw loudness.
    echo_cancellation: bool = False
    noise_suppression: bool = False
    auto_gain_control: bool = False

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def validate(self) -> None:
        if self.fft_size < 32 or self.fft_size > 32768 or self.fft_size & (self.fft_size - 1):
            raise ValueError("fft_size must be a power of two between 32 and 32768")
        if self.min_decibels >= self.max_decibels:
            raise ValueError("min_decibels must be lower than max_decibels")
        if not 0.0 <= self.smoothing_time_constant <= 1.0:
            raise ValueError("smoothing_time_constant must be within [0, 1]")
        if self.sample_rate is not None and self.sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")


@dataclass(slots=True)
class EstimatorSettings:
    """Weights and scaling of the loudness formula."""

    rms_weight: float = 0.5
    frequency_weight: float = 0.3
    peak_weight: float = 0.2
    sensitivity: float = 1.5
    # Human speech band, weighted up in the frequency average
    speech_band_low: float = 300.0
    speech_band_high: float = 3000.0
    speech_band_weight: float = 2.0

    def validate(self) -> None:
        weights = (self.rms_weight, self.frequency_weight, self.peak_weight)
        if any(w <= 0 for w in weights):
            raise ValueError("estimator weights must all be > 0")
        if abs(sum(weights) - 1.0) > 1e-6:
            raise ValueError("estimator weights must sum to 1")
        if self.sensitivity <= 0:
            raise ValueError("sensitivity must be > 0")
        if not 0 <= self.speech_band_low < self.speech_band_high:
            raise ValueError("speech band must satisfy 0 <= low < high")
        if self.speech_band_weight <= 0:
            raise ValueError("speech_band_weight must be > 0")


@dataclass(slots=True)
class SmoothingSettings:
    """Display animation constants."""

    base_rate: float = 0.3
    jump_threshold: float = 20.0
    large_jump_multiplier: float = 2.0
    snap_epsilon: float = 0.5

    def validate(self) -> None:
        if not 0 < self.base_rate <= 1:
            raise ValueError("base_rate must be within (0, 1]")
        if self.large_jump_multiplier < 1:
            raise ValueError("large_jump_multiplier must be >= 1")
        if self.jump_threshold < 0 or self.snap_epsilon <= 0:
            raise ValueError("jump_threshold must be >= 0 and snap_epsilon > 0")


__all__ = [
    "DEFAULT_FFT_SIZE",
    "DEFAULT_MIN_DECIBELS",
    "DEFAULT_MAX_DECIBELS",
    "DEFAULT_SMOOTHING_TIME_CONSTANT",
    "DEFAULT_FPS",
    "TIME_DOMAIN_MIDPOINT",
    "BYTE_MAX",
    "SamplerSettings",
    "EstimatorSettings",
    "SmoothingSettings",
]

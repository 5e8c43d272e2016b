"""
Loudness estimation: one SampleFrame -> one level on the 0..100 scale.

The level mixes three signals, each normalized to [0, 1]:
- RMS deviation of the time-domain bytes around the 128 midpoint (stable power),
- a frequency average weighting the speech band up (voices over rumble),
- the peak bin (short claps and bangs that RMS averages away).
"""

from __future__ import annotations

import numpy as np

from qmeter.core import BYTE_MAX, TIME_DOMAIN_MIDPOINT, EstimatorSettings
from qmeter.core.sampler import SampleFrame

__all__ = ["LevelEstimator", "clamp_level"]

LEVEL_SCALE: float = 100.0


def clamp_level(value: float) -> float:
    """Clamp a level value to [0.0, 100.0]."""
    return max(0.0, min(LEVEL_SCALE, float(value)))


class LevelEstimator:
    """Reduces SampleFrames to raw loudness levels."""

    def __init__(self, settings: EstimatorSettings | None = None) -> None:
        self.settings = settings or EstimatorSettings()
        self.settings.validate()
        # Weights depend only on bin count and sample rate; cached per frame shape
        self._weights_key: tuple[int, int] | None = None
        self._weights: np.ndarray | None = None

    def rms(self, time_domain: np.ndarray) -> float:
        if time_domain.size == 0:
            return 0.0
        deviation = time_domain.astype(np.float64) - TIME_DOMAIN_MIDPOINT
        value = float(np.sqrt(np.mean(deviation**2)))
        return min(1.0, value / TIME_DOMAIN_MIDPOINT)

    def band_weights(self, bin_count: int, sample_rate: int) -> np.ndarray:
        key = (bin_count, sample_rate)
        if self._weights is None or self._weights_key != key:
            nyquist = sample_rate / 2.0
            freqs = np.arange(bin_count, dtype=np.float64) * nyquist / max(bin_count, 1)
            s = self.settings
            in_band = (freqs >= s.speech_band_low) & (freqs <= s.speech_band_high)
            self._weights = np.where(in_band, s.speech_band_weight, 1.0)
            self._weights_key = key
        return self._weights

    def frequency_average(self, frequency: np.ndarray, sample_rate: int) -> float:
        if frequency.size == 0:
            return 0.0
        weights = self.band_weights(frequency.size, sample_rate)
        average = float(np.sum(frequency.astype(np.float64) * weights) / np.sum(weights))
        return average / BYTE_MAX

    def peak(self, frequency: np.ndarray) -> float:
        if frequency.size == 0:
            return 0.0
        return float(np.max(frequency)) / BYTE_MAX

    def estimate(self, frame: SampleFrame | None) -> float | None:
        """
        Return the raw loudness level of `frame`, or None when no frame is available.
        """
        if frame is None:
            return None
        s = self.settings
        combined = (
            s.rms_weight * self.rms(frame.time_domain)
            + s.frequency_weight * self.frequency_average(frame.frequency, frame.sample_rate)
            + s.peak_weight * self.peak(frame.frequency)
        )
        return clamp_level(combined * LEVEL_SCALE * s.sensitivity)

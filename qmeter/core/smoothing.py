"""Display-level smoothing: exponential approach with a faster rate for large jumps."""

from __future__ import annotations

from qmeter.core import SmoothingSettings

__all__ = ["SmoothingFilter"]


class SmoothingFilter:
    """
    Moves the display level toward each new target once per tick.

    Never overshoots: the effective rate is capped at 1. Residuals below
    snap_epsilon are closed in one step.
    """

    def __init__(self, settings: SmoothingSettings | None = None) -> None:
        self.settings = settings or SmoothingSettings()
        self.settings.validate()
        self.current: float = 0.0

    def step(self, target: float) -> float:
        s = self.settings
        delta = target - self.current
        if abs(delta) < s.snap_epsilon:
            self.current = target
            return self.current
        rate = s.base_rate
        if abs(delta) > s.jump_threshold:
            rate *= s.large_jump_multiplier
        self.current += delta * min(rate, 1.0)
        return self.current

    def reset(self) -> None:
        self.current = 0.0

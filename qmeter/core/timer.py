"""Countdown timer for quiet periods, ticked once per second by the front-end."""

from __future__ import annotations

__all__ = ["CountdownTimer", "parse_minutes"]

DEFAULT_MINUTES = 5
MIN_MINUTES = 1
MAX_MINUTES = 60


def parse_minutes(value: object, default: int = DEFAULT_MINUTES) -> int:
    """
    Parse user input into a minute count within [1, 60]; invalid input gives `default`.
    """
    try:
        minutes = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    if minutes < MIN_MINUTES:
        return default
    return min(minutes, MAX_MINUTES)


class CountdownTimer:
    def __init__(self, minutes: int = DEFAULT_MINUTES) -> None:
        self.minutes = parse_minutes(minutes)
        self.remaining = self.minutes * 60
        self.running = False

    @property
    def finished(self) -> bool:
        return self.remaining == 0

    def start(self) -> None:
        if self.remaining > 0:
            self.running = True

    def pause(self) -> None:
        self.running = False

    def reset(self) -> None:
        self.running = False
        self.remaining = self.minutes * 60

    def set_minutes(self, value: object) -> None:
        """Set a new duration; keeps the running flag as is."""
        self.minutes = parse_minutes(value)
        self.remaining = self.minutes * 60

    def tick(self) -> bool:
        """
        Advance one second. Returns True exactly once, on the tick that reaches zero.
        """
        if not self.running:
            return False
        if self.remaining > 0:
            self.remaining -= 1
        if self.remaining == 0:
            self.running = False
            return True
        return False

    def format(self) -> str:
        minutes, seconds = divmod(self.remaining, 60)
        return f"{minutes:02d}:{seconds:02d}"

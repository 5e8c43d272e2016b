"""Shared pytest configuration and fixtures for the QuietMeter test suite."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from qmeter.core import SamplerSettings  # noqa: E402
from qmeter.core import user_config  # noqa: E402
from qmeter.core.sampler import SampleFrame  # noqa: E402


# =============================================================================
# Fakes
# =============================================================================


class FakeStream:
    def __init__(self) -> None:
        self.stopped = False
        self.closed = False

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


class FakeStreamFactory:
    """Stands in for open_input_stream; keeps the callbacks it was given."""

    def __init__(self, sample_rate: int = 48_000, error: Exception | None = None) -> None:
        self.sample_rate = sample_rate
        self.error = error
        self.calls = 0
        self.streams: list[FakeStream] = []
        self.on_block = None
        self.on_finished = None

    def __call__(self, settings: SamplerSettings, on_block, on_finished):
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.on_block = on_block
        self.on_finished = on_finished
        stream = FakeStream()
        self.streams.append(stream)
        return stream, self.sample_rate


class FakeSampler:
    """
    Sampler replacement that hands out pre-built frames.

    Items in `frames` that are exceptions are raised from next_frame() instead.
    """

    def __init__(self, frames=None, error: Exception | None = None) -> None:
        self.frames = list(frames or [])
        self.error = error
        self.acquire_calls = 0
        self.release_calls = 0
        self.acquired = False

    def acquire(self):
        self.acquire_calls += 1
        if self.error is not None:
            raise self.error
        self.acquired = True
        return object()

    def next_frame(self):
        if not self.frames:
            return None
        item = self.frames.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def release(self) -> None:
        self.release_calls += 1
        self.acquired = False


class FakePermissionMonitor:
    def __init__(self) -> None:
        self.callbacks: list = []
        self.unsubscribed = 0

    def subscribe(self, callback):
        self.callbacks.append(callback)

        def unsubscribe() -> None:
            self.unsubscribed += 1
            self.callbacks.remove(callback)

        return unsubscribe

    def emit(self, state) -> None:
        for callback in list(self.callbacks):
            callback(state)


def make_frame(
    time_value: int = 128,
    freq_value: int = 0,
    size: int = 1024,
    sample_rate: int = 48_000,
) -> SampleFrame:
    """Frame with a constant time-domain byte and a constant frequency byte."""
    return SampleFrame(
        time_domain=np.full(size, time_value, dtype=np.uint8),
        frequency=np.full(size // 2, freq_value, dtype=np.uint8),
        sample_rate=sample_rate,
    )


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def stream_factory() -> FakeStreamFactory:
    return FakeStreamFactory()


@pytest.fixture
def config_dir(tmp_path, monkeypatch) -> Path:
    """Point the user config directory at a temporary path."""
    path = tmp_path / "config"
    monkeypatch.setattr(user_config, "get_user_config_dir", lambda: path)
    return path


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by Config.load()."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)

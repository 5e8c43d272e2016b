"""
QuietMeter package.

Classroom noise meter: samples the microphone, turns it into a 0..100 loudness
level and shows it as an animated meter with a noise category.

Expose package version via __version__.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("quietmeter")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__"]

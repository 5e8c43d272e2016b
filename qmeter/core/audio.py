"""
Audio platform boundary for QuietMeter.

This module provides:
- Opening a live mono float32 input stream with a per-block callback.
- Mapping PortAudio failures onto PermissionDenied / DeviceUnavailable.
- Helpers for listing/selecting audio input devices.

sounddevice is imported lazily so that the rest of the package (and the test
suite) can be used on machines without PortAudio.

Dependencies:
- sounddevice
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from qmeter.core import SamplerSettings
from qmeter.core.errors import AcquisitionError, DeviceUnavailable, PermissionDenied

__all__ = [
    "BlockCallback",
    "open_input_stream",
    "resolve_sample_rate",
    "list_input_devices",
    "default_input_device_index",
]

# Receives one block of mono float32 samples in [-1.0, 1.0].
BlockCallback = Callable[[Any], None]

_PERMISSION_MARKERS = ("permission", "not permitted", "access denied", "not authorized")


def _import_sounddevice():
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        # sounddevice or the PortAudio shared library missing
        raise DeviceUnavailable(f"PortAudio is not available: {e}") from e
    return sd


def _map_error(exc: BaseException) -> AcquisitionError:
    """
    Translate an exception raised while opening a stream into the acquisition taxonomy.
    """
    if isinstance(exc, AcquisitionError):
        return exc
    text = str(exc).lower()
    if isinstance(exc, PermissionError) or any(m in text for m in _PERMISSION_MARKERS):
        return PermissionDenied(str(exc))
    return DeviceUnavailable(str(exc))


def resolve_sample_rate(settings: SamplerSettings) -> int:
    """
    Return the configured sample rate, or the input device's native rate when unset.

    Raises:
        DeviceUnavailable: If there is no such input device.
    """
    if settings.sample_rate:
        return int(settings.sample_rate)
    sd = _import_sounddevice()
    try:
        dev_info = sd.query_devices(settings.device, "input")
    except (ValueError, sd.PortAudioError) as e:
        raise DeviceUnavailable(f"No input device available: {e}") from e
    native_rate = int(dev_info["default_samplerate"])
    if native_rate <= 0:
        raise DeviceUnavailable("Input device reports no usable sample rate")
    return native_rate


def open_input_stream(
    settings: SamplerSettings,
    on_block: BlockCallback,
    on_finished: Callable[[], None] | None = None,
) -> tuple[Any, int]:
    """
    Open and start a mono input stream on the configured (or default) device.

    Capture processing (echo cancellation, noise suppression, auto gain) is not
    something PortAudio applies, so the stream is always raw; options requested
    in the configuration are logged and otherwise ignored.

    Args:
        settings: Sampler settings (device, sample rate, capture options).
        on_block: Called from the audio thread with each block of mono samples.
        on_finished: Called from the audio thread when the stream ends.

    Returns:
        (stream, sample_rate). The stream exposes stop() and close().

    Raises:
        PermissionDenied: If the platform refuses audio access.
        DeviceUnavailable: If no device exists or opening it fails otherwise.
    """
    for option in ("echo_cancellation", "noise_suppression", "auto_gain_control"):
        if getattr(settings, option):
            logging.info("Capture option %s not supported by the host API; using raw input", option)

    def callback(indata, frames, time_info, status) -> None:
        if status:
            logging.warning("SoundDevice status: %s", status)
        on_block(indata[:, 0])

    stream = None
    try:
        sd = _import_sounddevice()
        samplerate = resolve_sample_rate(settings)
        stream = sd.InputStream(
            device=settings.device,
            channels=1,
            samplerate=samplerate,
            dtype="float32",
            callback=callback,
            finished_callback=on_finished,
        )
        stream.start()
    except Exception as e:
        if stream is not None:
            try:
                stream.close()
            except Exception:
                logging.debug("Failed to close input stream after open error", exc_info=True)
        raise _map_error(e) from e

    logging.info("Input stream opened (device=%s, %d Hz)", settings.device, samplerate)
    return stream, samplerate


def list_input_devices() -> list[dict[str, Any]]:
    """
    Return a list of available input devices with basic metadata.

    Each entry contains:
      - index: device index
      - name: device name
      - max_input_channels: maximum input channels supported
      - default_samplerate: default sample rate (may be None)
    """
    sd = _import_sounddevice()
    devices = sd.query_devices()
    results: list[dict[str, Any]] = []
    for idx, dev in enumerate(devices):
        if int(dev.get("max_input_channels", 0)) > 0:
            results.append(
                {
                    "index": idx,
                    "name": dev.get("name"),
                    "max_input_channels": dev.get("max_input_channels"),
                    "default_samplerate": dev.get("default_samplerate"),
                }
            )
    return results


def default_input_device_index() -> int | None:
    """
    Return the default input device index if available, otherwise None.
    """
    sd = _import_sounddevice()
    idx = sd.default.device[0]  # (input, output)
    if idx is None or int(idx) < 0:
        return None
    return int(idx)

"""
User configuration file management for QuietMeter.

This module provides:
- Detection of the user config/log directories using platformdirs
- Loading and saving of the TOML configuration file
- Creation of a commented example config.toml
- Persisting the threshold sliders

The user configuration is stored in the platform-specific config directory:
- Linux: ~/.config/quietmeter/
- macOS: ~/Library/Application Support/quietmeter/
- Windows: %APPDATA%/quietmeter/
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import platformdirs
import toml

from qmeter.core.classifier import ThresholdSet

__all__ = [
    "APP_NAME",
    "get_user_config_dir",
    "get_user_config_path",
    "get_user_log_dir",
    "load_user_config",
    "save_user_config",
    "init_user_config",
    "save_thresholds",
]

APP_NAME = "quietmeter"


def get_user_config_dir() -> Path:
    """
    Get the user configuration directory using platformdirs.

    Returns:
        Path: The platform-specific user configuration directory (may not exist yet).
    """
    return Path(platformdirs.user_config_dir(APP_NAME))


def get_user_config_path() -> Path:
    return get_user_config_dir() / "config.toml"


def get_user_log_dir() -> Path:
    return Path(platformdirs.user_log_dir(APP_NAME))


def load_user_config() -> dict[str, Any]:
    """
    Load the user configuration file.

    Returns an empty dict if the file does not exist or cannot be parsed.
    """
    config_path = get_user_config_path()
    if not config_path.exists():
        logging.debug("No user config file found at %s, using defaults", config_path)
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = toml.load(f)
    except Exception as e:
        logging.warning("Failed to load user config from %s: %s", config_path, e)
        return {}
    logging.debug("Loaded user config from %s", config_path)
    return data


def save_user_config(data: dict[str, Any]) -> Path:
    """
    Write `data` to the user config file, creating the directory if needed.
    """
    config_path = get_user_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_path, "w", encoding="utf-8") as f:
            toml.dump(data, f)
    except Exception as e:
        logging.error("Failed to save user config to %s: %s", config_path, e)
        raise
    logging.debug("Saved user config to %s", config_path)
    return config_path


def save_thresholds(thresholds: ThresholdSet) -> Path:
    """
    Persist the threshold values, keeping every other section of the file.
    """
    thresholds.validate()
    data = load_user_config()
    data["thresholds"] = {
        "moderate": thresholds.moderate,
        "loud": thresholds.loud,
        "excessive": thresholds.excessive,
    }
    return save_user_config(data)


EXAMPLE_CONFIG = """\
# QuietMeter - User configuration
#
# Every key is optional; missing keys use the built-in defaults.

[defaults]
# Log level: "DEBUG" | "INFO" | "WARNING" | "ERROR"
log_level = "INFO"
# true also writes logs to the platform log directory (app.log)
keep_log_files = false
# Meter refresh rate (frames per second)
fps = 60
# Default duration of the quiet-time countdown
timer_minutes = 5

[audio]
# Input device index or name; leave unset for the system default
#device = ""
# Sample rate in Hz; leave unset to use the device's native rate
#sample_rate = 48000
# Analysis window (power of two); the frequency buffer has fft_size / 2 bins
fft_size = 1024
min_decibels = -90.0
max_decibels = -10.0
# Spectral smoothing between frames (0 = none, 1 = frozen)
smoothing_time_constant = 0.3
# Capture processing; off keeps the raw loudness
echo_cancellation = false
noise_suppression = false
auto_gain_control = false

[estimator]
# Weights must be positive and sum to 1
rms_weight = 0.5
frequency_weight = 0.3
peak_weight = 0.2
sensitivity = 1.5
# Bins in this band count speech_band_weight times in the frequency average
speech_band_low = 300.0
speech_band_high = 3000.0
speech_band_weight = 2.0

[smoothing]
base_rate = 0.3
jump_threshold = 20.0
large_jump_multiplier = 2.0
snap_epsilon = 0.5

[thresholds]
# 0 <= moderate < loud < excessive <= 100
moderate = 30
loud = 60
excessive = 85
"""


def init_user_config(force: bool = False) -> Path:
    """
    Write the example config.toml if missing (or always with force=True).
    """
    config_path = get_user_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    if not config_path.exists() or force:
        config_path.write_text(EXAMPLE_CONFIG, encoding="utf-8")
        logging.info("Initialized user config at %s", config_path)
    return config_path

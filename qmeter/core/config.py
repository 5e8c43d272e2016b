"""
Core configuration utilities for QuietMeter.

- Configures logging (stdout, plus an optional app.log in the user log directory).
- Loads config.toml (see user_config.py) into typed, validated settings.

Design:
- Missing file or keys fall back to built-in defaults.
- Present but invalid values raise ValueError (fail fast at startup).

This module aims to remain small and import-safe.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from qmeter.core import (
    DEFAULT_FPS,
    EstimatorSettings,
    SamplerSettings,
    SmoothingSettings,
)
from qmeter.core.classifier import ThresholdSet
from qmeter.core.user_config import get_user_config_path, get_user_log_dir, load_user_config

__all__ = [
    "LOG_FORMAT",
    "setup_environment",
    "enable_file_logging",
    "DefaultsConfig",
    "Config",
]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _get_log_level(level: str) -> int:
    """
    Convert a string log level to logging module constant, defaulting to INFO.
    """
    value = getattr(logging, str(level).upper(), None)
    return value if isinstance(value, int) else logging.INFO


def setup_environment(log_level: str = "INFO") -> None:
    """
    Configure the root logger with a stdout handler.

    Existing handlers are removed so repeated calls do not duplicate output.
    """
    log_level_int = _get_log_level(log_level)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_int)
    while root_logger.handlers:
        root_logger.handlers.pop()
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level_int)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stream_handler)


def enable_file_logging(log_level: str, logs_dir: Path | None = None) -> Path:
    """Add an app.log FileHandler to the root logger; return the log file path."""
    logs_dir = logs_dir or get_user_log_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "app.log"
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(_get_log_level(log_level))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)
    return log_path


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _coerce_device(value: Any) -> int | str | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    return int(text) if text.isdigit() else text


@dataclass
class DefaultsConfig:
    log_level: str = "INFO"
    keep_log_files: bool = False
    fps: int = DEFAULT_FPS
    timer_minutes: int = 5


@dataclass
class Config:
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    audio: SamplerSettings = field(default_factory=SamplerSettings)
    estimator: EstimatorSettings = field(default_factory=EstimatorSettings)
    smoothing: SmoothingSettings = field(default_factory=SmoothingSettings)
    thresholds: ThresholdSet = field(default_factory=ThresholdSet)
    user_config_file: Path = field(default_factory=get_user_config_path)

    @classmethod
    def from_dict(cls, raw: dict[str, Any], log_level: str = "INFO") -> Config:
        """
        Build a validated Config from the parsed TOML document.

        Raises:
            ValueError: If a present value is invalid.
        """
        d = _section(raw, "defaults")
        defaults = DefaultsConfig(
            log_level=str(d.get("log_level", log_level)),
            keep_log_files=bool(d.get("keep_log_files", False)),
            fps=int(d.get("fps", DEFAULT_FPS)),
            timer_minutes=int(d.get("timer_minutes", 5)),
        )
        if not 1 <= defaults.fps <= 240:
            raise ValueError("fps must be between 1 and 240")

        a = _section(raw, "audio")
        base_audio = SamplerSettings()
        sample_rate = a.get("sample_rate")
        audio = SamplerSettings(
            device=_coerce_device(a.get("device")),
            sample_rate=int(sample_rate) if sample_rate else None,
            fft_size=int(a.get("fft_size", base_audio.fft_size)),
            min_decibels=float(a.get("min_decibels", base_audio.min_decibels)),
            max_decibels=float(a.get("max_decibels", base_audio.max_decibels)),
            smoothing_time_constant=float(
                a.get("smoothing_time_constant", base_audio.smoothing_time_constant)
            ),
            echo_cancellation=bool(a.get("echo_cancellation", False)),
            noise_suppression=bool(a.get("noise_suppression", False)),
            auto_gain_control=bool(a.get("auto_gain_control", False)),
        )
        audio.validate()

        e = _section(raw, "estimator")
        base_est = EstimatorSettings()
        estimator = EstimatorSettings(
            **{
                name: float(e.get(name, getattr(base_est, name)))
                for name in (
                    "rms_weight",
                    "frequency_weight",
                    "peak_weight",
                    "sensitivity",
                    "speech_band_low",
                    "speech_band_high",
                    "speech_band_weight",
                )
            }
        )
        estimator.validate()

        s = _section(raw, "smoothing")
        base_smooth = SmoothingSettings()
        smoothing = SmoothingSettings(
            **{
                name: float(s.get(name, getattr(base_smooth, name)))
                for name in ("base_rate", "jump_threshold", "large_jump_multiplier", "snap_epsilon")
            }
        )
        smoothing.validate()

        t = _section(raw, "thresholds")
        base_thr = ThresholdSet()
        thresholds = ThresholdSet(
            moderate=float(t.get("moderate", base_thr.moderate)),
            loud=float(t.get("loud", base_thr.loud)),
            excessive=float(t.get("excessive", base_thr.excessive)),
        ).validate()

        return cls(
            defaults=defaults,
            audio=audio,
            estimator=estimator,
            smoothing=smoothing,
            thresholds=thresholds,
            user_config_file=get_user_config_path(),
        )

    @classmethod
    def load(cls, log_level: str = "INFO") -> Config:
        setup_environment(log_level)
        cfg = cls.from_dict(load_user_config(), log_level=log_level)
        # Update logging level to effective (user or CLI fallback)
        logging.getLogger().setLevel(_get_log_level(cfg.defaults.log_level))
        for handler in logging.getLogger().handlers:
            handler.setLevel(_get_log_level(cfg.defaults.log_level))
        if cfg.defaults.keep_log_files:
            log_path = enable_file_logging(cfg.defaults.log_level)
            logging.info("File logging enabled: %s", log_path)
        return cfg

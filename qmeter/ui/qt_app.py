"""
PySide6 GUI for QuietMeter.

One window with:
- the animated noise meter (bar colored by category, label and rounded level),
- a Start/Stop listening button and a guidance line for permission/device problems,
- threshold sliders (saved to config.toml) and a quiet-time countdown.

Nothing touches the microphone until Start is clicked. Ticks run on the Qt event
loop through QtFrameScheduler, so snapshot listeners may update widgets directly.
Closing the window tears the session down.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from PySide6.QtCore import QObject, Qt, QTimer
from PySide6.QtGui import QColor, QFont, QFontDatabase, QPainter
from PySide6.QtWidgets import (
    QApplication,
    QGridLayout,
    QHBoxLayout,
    QLabel,
    QMessageBox,
    QPushButton,
    QSlider,
    QSpinBox,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from qmeter.core.classifier import (
    DEFAULT_THRESHOLDS,
    SILENCE_FLOOR,
    NoiseCategory,
    ThresholdSet,
    category_label,
    classify,
    slider_range,
)
from qmeter.core.config import Config
from qmeter.core.estimator import LevelEstimator
from qmeter.core.sampler import SignalSampler
from qmeter.core.session import (
    PermissionState,
    SessionController,
    SessionSnapshot,
    log_diagnostics,
)
from qmeter.core.smoothing import SmoothingFilter
from qmeter.core.timer import CountdownTimer
from qmeter.core.user_config import save_thresholds

__all__ = ["QtFrameScheduler", "MeterWidget", "NoiseMonitorWindow", "run_gui"]


DARK_MONO_STYLESHEET = """
/* Base window */
QWidget {
    background-color: #0f1113;
    color: #e6eef3;
    /* font-family set via QApplication.setFont */
    font-size: 11pt;
}

QLabel {
    color: #cfe8ff;
    padding: 4px;
}
QLabel#level_label {
    font-size: 16pt;
    font-weight: bold;
}
QLabel#guidance_label {
    color: #ffa657;
    padding: 2px 6px;
    font-size: 10pt;
}
QLabel#timer_label {
    font-size: 28pt;
}

QPushButton {
    background-color: #1e40af;
    color: #ffffff;
    border: none;
    border-radius: 2px;
    padding: 4px 8px;
    margin: 6px;
    min-width: 60px;
}
QPushButton:hover {
    background-color: #1d4ed8;
}
QPushButton#stop_btn {
    background-color: #b91c1c;
}
QPushButton#stop_btn:hover {
    background-color: #ef4444;
}
"""

CATEGORY_COLORS: dict[NoiseCategory, QColor] = {
    NoiseCategory.SILENT: QColor(34, 197, 94),
    NoiseCategory.QUIET: QColor(34, 197, 94),
    NoiseCategory.MODERATE: QColor(250, 204, 21),
    NoiseCategory.LOUD: QColor(249, 115, 22),
    NoiseCategory.EXCESSIVE: QColor(239, 68, 68),
}

# Seconds of silence while listening before troubleshooting tips are shown
NO_AUDIO_HINT_DELAY = 3.0

DENIED_HELP = (
    "Microphone access needed: allow microphone access for this application "
    "in your system privacy settings, then click Start again."
)
DEVICE_HELP = "No microphone found: connect an input device or pick one in config.toml, then retry."
NO_AUDIO_HELP = (
    "Listening, but hearing nothing. Make some noise near the device, check the "
    "microphone is not muted, or stop and restart."
)


def get_fixed_font(point_size: int = 11) -> QFont:
    """
    Return the system fixed-width font with the given point size.
    """
    f = QFontDatabase.systemFont(QFontDatabase.SystemFont.FixedFont)
    f.setPointSize(point_size)
    return f


class QtFrameScheduler:
    """FrameScheduler backed by single-shot QTimers on the GUI event loop."""

    def __init__(self, parent: QObject | None = None, interval_ms: int = 16) -> None:
        self._parent = parent
        self.interval_ms = interval_ms
        self._timers: set[QTimer] = set()

    def schedule(self, callback: Callable[[], None]) -> object:
        timer = QTimer(self._parent)
        timer.setSingleShot(True)

        def fire() -> None:
            self._timers.discard(timer)
            timer.deleteLater()
            callback()

        timer.timeout.connect(fire)
        self._timers.add(timer)
        timer.start(self.interval_ms)
        return timer

    def cancel(self, handle: object) -> None:
        if isinstance(handle, QTimer) and handle in self._timers:
            handle.stop()
            self._timers.discard(handle)
            handle.deleteLater()


class MeterWidget(QWidget):
    """Horizontal bar filled to the display level and colored by category."""

    def __init__(self, parent=None, height: int = 40) -> None:
        super().__init__(parent)
        self.setMinimumHeight(height)
        self.setMaximumHeight(height)
        self.level: float = 0.0
        self.category = NoiseCategory.SILENT

    def set_level(self, level: float, category: NoiseCategory) -> None:
        self.level = max(0.0, min(100.0, level))
        self.category = category
        self.update()

    def paintEvent(self, event) -> None:  # type: ignore[override]
        w = self.width()
        h = self.height()
        p = QPainter(self)
        p.setRenderHint(QPainter.RenderHint.Antialiasing)
        p.setPen(Qt.PenStyle.NoPen)
        p.setBrush(QColor(55, 65, 81))
        p.drawRoundedRect(0, 0, w, h, h / 2, h / 2)
        fill = int(w * self.level / 100.0)
        if fill > 0:
            p.setBrush(CATEGORY_COLORS[self.category])
            p.drawRoundedRect(0, 0, fill, h, h / 2, h / 2)
        p.end()


class ThresholdControls(QWidget):
    """Sliders for the three thresholds plus a reset button."""

    def __init__(self, thresholds: ThresholdSet, on_change: Callable[[ThresholdSet], None]) -> None:
        super().__init__()
        self.thresholds = thresholds
        self._on_change = on_change
        self._sliders: dict[str, QSlider] = {}
        self._values: dict[str, QLabel] = {}

        grid = QGridLayout(self)
        for row, name in enumerate(("moderate", "loud", "excessive")):
            low, high = slider_range(name, getattr(thresholds, name))
            slider = QSlider(Qt.Orientation.Horizontal)
            slider.setRange(low, high)
            slider.setValue(int(getattr(thresholds, name)))
            slider.valueChanged.connect(lambda value, n=name: self._on_slider(n, value))
            value_label = QLabel(str(slider.value()))
            grid.addWidget(QLabel(f"{name.capitalize()} noise"), row, 0)
            grid.addWidget(slider, row, 1)
            grid.addWidget(value_label, row, 2)
            self._sliders[name] = slider
            self._values[name] = value_label

        reset_btn = QPushButton("Reset to Default")
        reset_btn.clicked.connect(self.reset)
        grid.addWidget(reset_btn, 3, 0, 1, 3)

    def _on_slider(self, name: str, value: int) -> None:
        try:
            updated = self.thresholds.replace(name, value)
        except ValueError:
            # would break ordering: snap back
            slider = self._sliders[name]
            slider.blockSignals(True)
            slider.setValue(int(getattr(self.thresholds, name)))
            slider.blockSignals(False)
            return
        self._apply(updated)

    def _apply(self, thresholds: ThresholdSet) -> None:
        self.thresholds = thresholds
        for name, slider in self._sliders.items():
            slider.blockSignals(True)
            slider.setValue(int(getattr(thresholds, name)))
            slider.blockSignals(False)
            self._values[name].setText(str(slider.value()))
        self._on_change(thresholds)

    def reset(self) -> None:
        self._apply(DEFAULT_THRESHOLDS)


class TimerPanel(QWidget):
    """Quiet-time countdown with start/pause, reset and a minutes field."""

    def __init__(self, minutes: int = 5) -> None:
        super().__init__()
        self.timer = CountdownTimer(minutes)

        layout = QVBoxLayout(self)
        self._display = QLabel(self.timer.format())
        self._display.setObjectName("timer_label")
        self._display.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(self._display)

        buttons = QHBoxLayout()
        self._toggle_btn = QPushButton("Start")
        self._toggle_btn.clicked.connect(self._on_toggle)
        reset_btn = QPushButton("Reset")
        reset_btn.clicked.connect(self._on_reset)
        buttons.addWidget(self._toggle_btn)
        buttons.addWidget(reset_btn)
        layout.addLayout(buttons)

        minutes_row = QHBoxLayout()
        self._minutes = QSpinBox()
        self._minutes.setRange(1, 60)
        self._minutes.setValue(self.timer.minutes)
        set_btn = QPushButton("Set")
        set_btn.clicked.connect(self._on_set)
        minutes_row.addWidget(self._minutes)
        minutes_row.addWidget(set_btn)
        layout.addLayout(minutes_row)

        self._second_timer = QTimer(self)
        self._second_timer.setInterval(1000)
        self._second_timer.timeout.connect(self._on_second)

    def _refresh(self) -> None:
        self._display.setText(self.timer.format())
        self._toggle_btn.setText("Pause" if self.timer.running else "Start")

    def _on_toggle(self) -> None:
        if self.timer.running:
            self.timer.pause()
            self._second_timer.stop()
        else:
            self.timer.start()
            if self.timer.running:
                self._second_timer.start()
        self._refresh()

    def _on_reset(self) -> None:
        self._second_timer.stop()
        self.timer.reset()
        self._refresh()

    def _on_set(self) -> None:
        self.timer.set_minutes(self._minutes.value())
        self._refresh()

    def _on_second(self) -> None:
        if self.timer.tick():
            self._second_timer.stop()
            QApplication.beep()
            QMessageBox.information(self, "QuietMeter", "Timer complete! The quiet time has ended.")
        self._refresh()


class NoiseMonitorWindow(QWidget):
    """Main window: meter, Start/Stop, guidance, settings and timer tabs."""

    def __init__(self, cfg: Config, controller: SessionController | None = None) -> None:
        super().__init__()
        self.cfg = cfg
        self.thresholds = cfg.thresholds
        self._scheduler = QtFrameScheduler(self, interval_ms=max(1, 1000 // cfg.defaults.fps))
        self.controller = controller or SessionController(
            sampler=SignalSampler(cfg.audio),
            scheduler=self._scheduler,
            estimator=LevelEstimator(cfg.estimator),
            smoothing=SmoothingFilter(cfg.smoothing),
            diagnostics=log_diagnostics,
        )
        self._silent_since: float | None = None

        self.setObjectName("monitor_window")
        self.setWindowTitle("QuietMeter")
        self.setMinimumWidth(420)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(10, 10, 10, 10)

        self._level_label = QLabel()
        self._level_label.setObjectName("level_label")
        self._level_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(self._level_label)

        self._meter = MeterWidget(self)
        layout.addWidget(self._meter)

        self._toggle_btn = QPushButton("Start Listening")
        self._toggle_btn.clicked.connect(self._on_toggle)
        layout.addWidget(self._toggle_btn, 0, Qt.AlignmentFlag.AlignCenter)

        self._guidance_label = QLabel()
        self._guidance_label.setObjectName("guidance_label")
        self._guidance_label.setWordWrap(True)
        self._guidance_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(self._guidance_label)

        self._status_label = QLabel()
        self._status_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(self._status_label)

        tabs = QTabWidget()
        tabs.addTab(TimerPanel(cfg.defaults.timer_minutes), "Timer")
        tabs.addTab(ThresholdControls(self.thresholds, self._on_thresholds_changed), "Settings")
        layout.addWidget(tabs)

        self._unsubscribe = self.controller.subscribe(self._on_snapshot)
        self._on_snapshot(self.controller.snapshot())

    def _on_toggle(self) -> None:
        if self.controller.listening:
            self.controller.stop()
        else:
            self._silent_since = None
            self.controller.start()

    def _on_thresholds_changed(self, thresholds: ThresholdSet) -> None:
        self.thresholds = thresholds
        try:
            save_thresholds(thresholds)
        except Exception:
            logging.warning("Could not save thresholds", exc_info=True)
        self._on_snapshot(self.controller.snapshot())

    def _guidance(self, snap: SessionSnapshot) -> str:
        if snap.permission_state is PermissionState.DENIED:
            if snap.error is not None and snap.error.kind == "device":
                return DEVICE_HELP
            return DENIED_HELP
        if snap.listening:
            now = time.monotonic()
            if snap.level > SILENCE_FLOOR:
                self._silent_since = None
            elif self._silent_since is None:
                self._silent_since = now
            elif now - self._silent_since >= NO_AUDIO_HINT_DELAY:
                return NO_AUDIO_HELP
        return ""

    def _on_snapshot(self, snap: SessionSnapshot) -> None:
        category = classify(snap.level, self.thresholds)
        self._meter.set_level(snap.level, category)
        self._level_label.setText(f"{category_label(category)} {round(snap.level)}")
        self._guidance_label.setText(self._guidance(snap))
        if snap.listening:
            self._toggle_btn.setText("Stop Listening")
            self._toggle_btn.setObjectName("stop_btn")
            self._status_label.setText("Monitoring active - adjusting noise levels in real-time")
        else:
            self._toggle_btn.setText("Try Again" if snap.error else "Start Listening")
            self._toggle_btn.setObjectName("")
            self._status_label.setText("Click 'Start Listening' to begin tracking noise levels")
        # re-apply stylesheet after objectName change
        self._toggle_btn.style().unpolish(self._toggle_btn)
        self._toggle_btn.style().polish(self._toggle_btn)

    def closeEvent(self, event) -> None:  # type: ignore[override]
        self._unsubscribe()
        self.controller.teardown()
        super().closeEvent(event)


def run_gui(cfg: Config | None = None, log_level: str = "INFO") -> None:
    """
    Launch the PySide6 app with the noise monitor window.
    """
    if cfg is None:
        cfg = Config.load(log_level=log_level)

    app = QApplication.instance() or QApplication([])
    if isinstance(app, QApplication):
        app.setFont(get_fixed_font(11))
        existing = app.styleSheet() or ""
        app.setStyleSheet(existing + DARK_MONO_STYLESHEET)

    window = NoiseMonitorWindow(cfg=cfg)
    window.show()
    app.exec()

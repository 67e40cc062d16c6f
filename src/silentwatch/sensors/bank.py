"""Sensor bank: the fixed collection of sensors armed around one interaction.

Every call into a sensor goes through ``_guard``. A sensor that raises is
marked failed, contributes ``empty_summary()`` and leaves a silence entry;
the exception never reaches the runner.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..silence import SilenceTracker, SENSOR_FAILED, IMPACT_INCOMPLETE_CHECK
from .aria import AriaSensor
from .base import Sensor
from .console import ConsoleSensor
from .focus import FocusSensor
from .loading import LoadingSensor, DEFAULT_LOADING_TIMEOUT_MS
from .navigation import NavigationSensor
from .network import NetworkSensor
from .state import StateSensor
from .timing import TimingSensor
from .ui_signals import UISignalSensor

logger = logging.getLogger(__name__)

SENSOR_ORDER = [
    "network",
    "console",
    "ui_signals",
    "state",
    "navigation",
    "loading",
    "focus",
    "aria",
    "timing",
]


def default_sensors(loading_timeout_ms: int = DEFAULT_LOADING_TIMEOUT_MS) -> List[Sensor]:
    return [
        NetworkSensor(),
        ConsoleSensor(),
        UISignalSensor(),
        StateSensor(),
        NavigationSensor(),
        LoadingSensor(loading_timeout_ms=loading_timeout_ms),
        FocusSensor(),
        AriaSensor(),
        TimingSensor(),
    ]


class SensorBank:
    """Arms, reads and summarizes all sensors for one observation window."""

    def __init__(self, sensors: Optional[List[Sensor]] = None,
                 silence: Optional[SilenceTracker] = None,
                 trace_index: Optional[int] = None):
        self.sensors = sensors if sensors is not None else default_sensors()
        self.silence = silence if silence is not None else SilenceTracker()
        self.trace_index = trace_index
        self.failed: Dict[str, str] = {}
        self._before: Dict[str, Any] = {}
        self._window: Dict[str, Dict[str, Any]] = {}
        self._after: Dict[str, Any] = {}
        self._armed: List[str] = []

    def get(self, name: str) -> Optional[Sensor]:
        for sensor in self.sensors:
            if sensor.name == name:
                return sensor
        return None

    def _guard(self, sensor: Sensor, stage: str, fn: Callable, page) -> Any:
        if sensor.name in self.failed:
            return None
        try:
            return fn(page)
        except Exception as e:
            self.failed[sensor.name] = stage
            logger.warning(f"Sensor {sensor.name} failed during {stage}: {type(e).__name__}: {e}")
            self.silence.record(
                scope="sensor",
                reason=SENSOR_FAILED,
                description=f"{sensor.name} sensor failed during {stage}",
                impact=IMPACT_INCOMPLETE_CHECK,
                context={"sensor": sensor.name, "stage": stage, "trace_index": self.trace_index},
            )
            return None

    def capture_before(self, page) -> None:
        for sensor in self.sensors:
            self._before[sensor.name] = self._guard(sensor, "capture_before", sensor.capture_before, page)

    def before_snapshot(self, name: str) -> Any:
        return self._before.get(name)

    def start_windows(self, page) -> None:
        for sensor in self.sensors:
            self._guard(sensor, "start_window", sensor.start_window, page)
            if sensor.name not in self.failed:
                self._armed.append(sensor.name)

    def stop_windows(self, page) -> None:
        """Close every open window. Safe to call on timeout or error paths."""
        for sensor in self.sensors:
            if sensor.name not in self._armed:
                continue
            self._window[sensor.name] = self._guard(sensor, "stop_window", sensor.stop_window, page) or {}
        self._armed = []

    def capture_after(self, page) -> None:
        for sensor in self.sensors:
            self._after[sensor.name] = self._guard(sensor, "capture_after", sensor.capture_after, page)

    def summaries(self) -> Dict[str, Dict[str, Any]]:
        result = {}
        for sensor in self.sensors:
            if sensor.name in self.failed:
                result[sensor.name] = sensor.empty_summary()
                continue
            try:
                result[sensor.name] = sensor.summarize(
                    self._before.get(sensor.name),
                    self._window.get(sensor.name),
                    self._after.get(sensor.name),
                )
            except Exception as e:
                logger.warning(f"Sensor {sensor.name} failed to summarize: {type(e).__name__}: {e}")
                self.failed[sensor.name] = "summarize"
                self.silence.record(
                    scope="sensor",
                    reason=SENSOR_FAILED,
                    description=f"{sensor.name} sensor failed during summarize",
                    context={"sensor": sensor.name, "stage": "summarize", "trace_index": self.trace_index},
                )
                result[sensor.name] = sensor.empty_summary()
        return result

    def empty_summaries(self) -> Dict[str, Dict[str, Any]]:
        return {sensor.name: sensor.empty_summary() for sensor in self.sensors}

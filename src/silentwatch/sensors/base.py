"""Sensor interface shared by every member of the sensor bank."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class Sensor(ABC):
    """One independent evidence collector.

    Snapshot sensors implement ``capture_before``/``capture_after`` and ``diff``.
    Streaming sensors listen between ``start_window`` and ``stop_window``.
    ``summarize`` folds both into a summary that always carries every key of
    ``empty_summary()``.
    """

    name = "sensor"

    def capture_before(self, page) -> Any:
        return None

    def start_window(self, page) -> None:
        pass

    def stop_window(self, page) -> Dict[str, Any]:
        return {}

    def capture_after(self, page) -> Any:
        return None

    def diff(self, before: Any, after: Any) -> Dict[str, Any]:
        return {}

    @abstractmethod
    def empty_summary(self) -> Dict[str, Any]:
        """Summary used whenever the sensor could not run."""

    def summarize(self, before: Any, window: Optional[Dict[str, Any]], after: Any) -> Dict[str, Any]:
        summary = self.empty_summary()
        summary.update(window or {})
        summary.update(self.diff(before, after))
        summary["available"] = True
        return summary

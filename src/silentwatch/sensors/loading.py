"""Loading sensor: polls for busy indicators until they resolve or time out."""

import time
from typing import Any, Dict

from .base import Sensor

POLL_INTERVAL_MS = 100
DEFAULT_LOADING_TIMEOUT_MS = 5000

LOADING_SCRIPT = """() => {
  const busy = document.querySelectorAll('[aria-busy="true"], [data-loading], .spinner, .loading, [role="progressbar"]');
  const disabledSubmit = document.querySelectorAll('button[type="submit"][disabled], input[type="submit"][disabled]');
  return { indicators: busy.length, disabled_submit: disabledSubmit.length };
}"""


class LoadingSensor(Sensor):
    name = "loading"

    def __init__(self, loading_timeout_ms: int = DEFAULT_LOADING_TIMEOUT_MS,
                 poll_interval_ms: int = POLL_INTERVAL_MS, clock=time.monotonic):
        self.loading_timeout_ms = loading_timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self._clock = clock
        self._baseline = 0
        self._started = None

    def _is_busy(self, state: Dict[str, Any]) -> bool:
        return (state.get("indicators", 0) + state.get("disabled_submit", 0)) > 0

    def start_window(self, page) -> None:
        self._started = self._clock()
        state = page.evaluate(LOADING_SCRIPT) or {}
        self._baseline = state.get("indicators", 0) + state.get("disabled_submit", 0)

    def stop_window(self, page) -> Dict[str, Any]:
        """Poll until no busy indicator remains or the loading timeout passes."""
        polls = 0
        seen = False
        poll_started = self._clock()
        while True:
            state = page.evaluate(LOADING_SCRIPT) or {}
            polls += 1
            busy = self._is_busy(state)
            seen = seen or busy
            elapsed_ms = (self._clock() - poll_started) * 1000
            if not busy or elapsed_ms >= self.loading_timeout_ms:
                break
            page.wait_for_timeout(self.poll_interval_ms)

        started = self._started if self._started is not None else poll_started
        return {
            "has_loading_indicators": seen,
            "indicators_before": self._baseline,
            "resolved": not busy,
            "unresolved": busy,
            "polls": polls,
            "duration_ms": int((self._clock() - started) * 1000),
        }

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "has_loading_indicators": False,
            "indicators_before": 0,
            "resolved": True,
            "unresolved": False,
            "polls": 0,
            "duration_ms": 0,
        }

"""Timing sensor: gap between the action and the first visible feedback."""

import time
from typing import Any, Dict

from .base import Sensor

FEEDBACK_GAP_THRESHOLD_MS = 1500
FREEZE_LIKE_THRESHOLD_MS = 3000

# A MutationObserver records the first DOM mutation after the window opens.
TIMING_START_SCRIPT = """() => {
  const state = { start: performance.now(), first: null };
  window.__swTiming = state;
  const observer = new MutationObserver(() => {
    if (state.first === null) { state.first = performance.now(); observer.disconnect(); }
  });
  observer.observe(document.documentElement, { subtree: true, childList: true, attributes: true, characterData: true });
  return true;
}"""

TIMING_READ_SCRIPT = """() => {
  const state = window.__swTiming;
  if (!state) return null;
  return { first_feedback_ms: state.first === null ? null : Math.round(state.first - state.start) };
}"""


class TimingSensor(Sensor):
    name = "timing"

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._started = None

    def start_window(self, page) -> None:
        self._started = self._clock()
        page.evaluate(TIMING_START_SCRIPT)

    def stop_window(self, page) -> Dict[str, Any]:
        elapsed_ms = int((self._clock() - self._started) * 1000) if self._started is not None else 0
        reading = page.evaluate(TIMING_READ_SCRIPT)
        # None when the document was replaced by a navigation
        document_replaced = reading is None
        gap = None if document_replaced else reading.get("first_feedback_ms")

        measured = gap if gap is not None else (None if document_replaced else elapsed_ms)
        return {
            "window_ms": elapsed_ms,
            "feedback_gap_ms": gap,
            "document_replaced": document_replaced,
            "no_feedback": gap is None and not document_replaced,
            "slow_feedback": measured is not None and measured > FEEDBACK_GAP_THRESHOLD_MS,
            "freeze_like": measured is not None and measured > FREEZE_LIKE_THRESHOLD_MS,
        }

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "window_ms": 0,
            "feedback_gap_ms": None,
            "document_replaced": False,
            "no_feedback": False,
            "slow_feedback": False,
            "freeze_like": False,
        }

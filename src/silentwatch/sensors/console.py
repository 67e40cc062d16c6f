"""Console sensor: page errors, unhandled rejections and warnings."""

from typing import Any, Dict, List

from .base import Sensor

MAX_MESSAGES = 5
MAX_MESSAGE_LENGTH = 200

REJECTION_MARKERS = ("unhandled", "in promise")


class ConsoleSensor(Sensor):
    name = "console"

    def __init__(self):
        self._reset()

    def _reset(self):
        self._console_errors = 0
        self._page_errors = 0
        self._rejections = 0
        self._warnings = 0
        self._messages: List[str] = []

    def _keep(self, text: str):
        if len(self._messages) < MAX_MESSAGES:
            self._messages.append(text[:MAX_MESSAGE_LENGTH])

    def _on_console(self, message):
        kind = message.type
        if kind == "error":
            self._console_errors += 1
            text = message.text or ""
            if any(marker in text.lower() for marker in REJECTION_MARKERS):
                self._rejections += 1
            self._keep(text)
        elif kind == "warning":
            self._warnings += 1

    def _on_page_error(self, error):
        self._page_errors += 1
        text = str(error)
        if any(marker in text.lower() for marker in REJECTION_MARKERS):
            self._rejections += 1
        self._keep(text)

    def start_window(self, page) -> None:
        self._reset()
        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)

    def stop_window(self, page) -> Dict[str, Any]:
        page.remove_listener("console", self._on_console)
        page.remove_listener("pageerror", self._on_page_error)
        error_count = self._console_errors + self._page_errors
        return {
            "error_count": error_count,
            "console_errors": self._console_errors,
            "page_errors": self._page_errors,
            "unhandled_rejections": self._rejections,
            "warning_count": self._warnings,
            "has_errors": error_count > 0,
            "messages": list(self._messages),
        }

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "error_count": 0,
            "console_errors": 0,
            "page_errors": 0,
            "unhandled_rejections": 0,
            "warning_count": 0,
            "has_errors": False,
            "messages": [],
        }

"""ARIA sensor: text announced through live regions."""

from typing import Any, Dict, List

from .base import Sensor

MAX_ANNOUNCEMENTS = 5
MAX_ANNOUNCEMENT_LENGTH = 120

LIVE_REGION_SCRIPT = """() => Array.from(
  document.querySelectorAll('[aria-live]:not([aria-live="off"]), [role="status"], [role="alert"], [role="log"]')
).map((el) => (el.textContent || '').trim()).filter((text) => text.length > 0)"""


class AriaSensor(Sensor):
    name = "aria"

    def _snapshot(self, page) -> List[str]:
        return list(page.evaluate(LIVE_REGION_SCRIPT) or [])

    def capture_before(self, page) -> List[str]:
        return self._snapshot(page)

    def capture_after(self, page) -> List[str]:
        return self._snapshot(page)

    def diff(self, before, after) -> Dict[str, Any]:
        before = before or []
        after = after or []
        announcements = [text[:MAX_ANNOUNCEMENT_LENGTH] for text in after if text not in before]
        return {
            "live_regions_before": len(before),
            "live_regions_after": len(after),
            "announcements": announcements[:MAX_ANNOUNCEMENTS],
            "announcement_changed": before != after,
        }

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "live_regions_before": 0,
            "live_regions_after": 0,
            "announcements": [],
            "announcement_changed": False,
        }

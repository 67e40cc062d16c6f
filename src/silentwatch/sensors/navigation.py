"""Navigation sensor: whether and where the URL changed during a window."""

from typing import Any, Dict, List

from .base import Sensor

NAV_MESSAGE_PREFIX = "[NAV]"
MAX_HISTORY_EVENTS = 20

# Installed with page.add_init_script so SPA history changes are reported
# through the console.
NAVIGATION_TRACKING_SCRIPT = """(() => {
  if (window.__swNavTracking) return;
  window.__swNavTracking = true;
  const report = (kind) => { try { console.debug('[NAV] ' + kind + ' ' + location.href); } catch (e) {} };
  for (const method of ['pushState', 'replaceState']) {
    const original = history[method];
    history[method] = function () {
      const result = original.apply(this, arguments);
      report(method);
      return result;
    };
  }
  window.addEventListener('popstate', () => report('popstate'));
})();"""

HISTORY_LENGTH_SCRIPT = "() => window.history.length"


class NavigationSensor(Sensor):
    name = "navigation"

    def __init__(self):
        self._history_events: List[Dict[str, str]] = []
        self._frame_navigations = 0
        self._page = None
        self.blocked_navigations = 0

    def _on_console(self, message):
        text = message.text or ""
        if not text.startswith(NAV_MESSAGE_PREFIX):
            return
        parts = text[len(NAV_MESSAGE_PREFIX):].split()
        if parts and len(self._history_events) < MAX_HISTORY_EVENTS:
            self._history_events.append({"kind": parts[0], "url": parts[1] if len(parts) > 1 else ""})

    def _on_frame_navigated(self, frame):
        if self._page is not None and frame == self._page.main_frame:
            self._frame_navigations += 1

    def _snapshot(self, page) -> Dict[str, Any]:
        return {"url": page.url, "history_length": page.evaluate(HISTORY_LENGTH_SCRIPT)}

    def capture_before(self, page) -> Dict[str, Any]:
        return self._snapshot(page)

    def start_window(self, page) -> None:
        self._history_events = []
        self._frame_navigations = 0
        self.blocked_navigations = 0
        self._page = page
        page.on("console", self._on_console)
        page.on("framenavigated", self._on_frame_navigated)

    def stop_window(self, page) -> Dict[str, Any]:
        page.remove_listener("console", self._on_console)
        page.remove_listener("framenavigated", self._on_frame_navigated)
        self._page = None
        return {
            "history_changes": list(self._history_events),
            "frame_navigations": self._frame_navigations,
            "blocked_navigations": self.blocked_navigations,
        }

    def capture_after(self, page) -> Dict[str, Any]:
        return self._snapshot(page)

    def diff(self, before, after) -> Dict[str, Any]:
        before = before or {}
        after = after or {}
        before_len = before.get("history_length")
        after_len = after.get("history_length")
        delta = (after_len - before_len) if isinstance(before_len, int) and isinstance(after_len, int) else 0
        url_changed = bool(before.get("url")) and before.get("url") != after.get("url")
        return {
            "before_url": before.get("url"),
            "after_url": after.get("url"),
            "url_changed": url_changed,
            "history_length_before": before_len,
            "history_length_after": after_len,
            "history_length_delta": delta,
        }

    def summarize(self, before, window, after) -> Dict[str, Any]:
        summary = super().summarize(before, window, after)
        summary["has_navigation_activity"] = bool(
            summary["url_changed"] or summary["history_changes"] or summary["history_length_delta"]
        )
        return summary

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "before_url": None,
            "after_url": None,
            "url_changed": False,
            "history_length_before": None,
            "history_length_after": None,
            "history_length_delta": 0,
            "history_changes": [],
            "frame_navigations": 0,
            "blocked_navigations": 0,
            "has_navigation_activity": False,
        }

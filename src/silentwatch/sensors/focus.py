"""Focus sensor: focused element identity and modal focus handling."""

from typing import Any, Dict

from .base import Sensor

FOCUS_SCRIPT = """() => {
  const el = document.activeElement;
  const describe = (node) => {
    if (!node || node === document.body || node === document.documentElement) return null;
    let text = node.tagName.toLowerCase();
    if (node.id) text += '#' + node.id;
    const testId = node.getAttribute && node.getAttribute('data-testid');
    if (testId) text += '[data-testid="' + testId + '"]';
    return text;
  };
  const modal = Array.from(document.querySelectorAll('[role="dialog"], [aria-modal="true"], dialog[open]'))
    .find((node) => node.offsetParent !== null);
  return {
    focused: describe(el),
    modal_open: !!modal,
    focus_in_modal: !!(modal && el && modal.contains(el))
  };
}"""


class FocusSensor(Sensor):
    name = "focus"

    def _snapshot(self, page) -> Dict[str, Any]:
        return page.evaluate(FOCUS_SCRIPT) or {}

    def capture_before(self, page) -> Dict[str, Any]:
        return self._snapshot(page)

    def capture_after(self, page) -> Dict[str, Any]:
        return self._snapshot(page)

    def diff(self, before, after) -> Dict[str, Any]:
        before = before or {}
        after = after or {}
        return {
            "before_focus": before.get("focused"),
            "after_focus": after.get("focused"),
            "focus_changed": before.get("focused") != after.get("focused"),
            "modal_opened": bool(after.get("modal_open")) and not before.get("modal_open"),
            "modal_without_focus": bool(after.get("modal_open")) and not after.get("focus_in_modal"),
        }

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "before_focus": None,
            "after_focus": None,
            "focus_changed": False,
            "modal_opened": False,
            "modal_without_focus": False,
        }

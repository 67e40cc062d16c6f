"""UI-signal sensor: structural snapshot of user-visible feedback indicators.

Only elements with accessibility semantics or explicit attributes count;
text content is never interpreted.
"""

from typing import Any, Dict

from .base import Sensor

SNAPSHOT_SCRIPT = """() => {
  const visible = (el) => {
    const style = window.getComputedStyle(el);
    return el.offsetParent !== null && style.visibility !== 'hidden'
      && style.display !== 'none' && style.opacity !== '0';
  };
  const hasText = (el) => (el.textContent || '').trim().length > 0;
  const result = {
    has_loading_indicator: false, has_dialog: false, has_error_signal: false,
    has_status_signal: false, has_live_region: false,
    validation_feedback_detected: false, disabled_elements: 0, explanation: []
  };
  if (document.querySelector('[aria-busy="true"], [data-loading]')) {
    result.has_loading_indicator = true;
    result.explanation.push('loading indicator');
  }
  const statusRegions = Array.from(document.querySelectorAll('[role="status"], [role="alert"]')).filter(visible);
  if (statusRegions.length > 0) {
    result.has_status_signal = true;
    result.explanation.push(statusRegions.length + ' visible status/alert region(s)');
  }
  if (document.querySelectorAll('[aria-live]').length > 0) {
    result.has_live_region = true;
  }
  const dialog = document.querySelector('[role="dialog"], [aria-modal="true"], dialog[open]');
  if (dialog && visible(dialog)) {
    result.has_dialog = true;
    result.explanation.push('dialog/modal');
  }
  const errors = Array.from(document.querySelectorAll('[role="alert"], [aria-invalid="true"], .error, .invalid-feedback'))
    .filter((el) => visible(el) && (el.getAttribute('aria-invalid') === 'true' || hasText(el)));
  if (errors.length > 0) {
    result.has_error_signal = true;
    result.explanation.push(errors.length + ' visible error signal(s)');
  }
  result.disabled_elements = document.querySelectorAll('button[disabled], button[aria-busy="true"], [type="submit"][disabled]').length;
  for (const invalid of Array.from(document.querySelectorAll('[aria-invalid="true"]')).filter(visible)) {
    const describedBy = invalid.getAttribute('aria-describedby');
    const target = describedBy ? document.getElementById(describedBy) : null;
    const parent = invalid.parentElement;
    const near = parent ? Array.from(parent.querySelectorAll('[role="alert"], .error, .invalid-feedback')) : [];
    if ((target && visible(target) && hasText(target)) || near.some((el) => visible(el) && hasText(el))) {
      result.validation_feedback_detected = true;
      break;
    }
  }
  if (!result.validation_feedback_detected && statusRegions.some(hasText)) {
    result.validation_feedback_detected = true;
  }
  if (result.validation_feedback_detected) {
    result.explanation.push('validation feedback');
  }
  return result;
}"""

SIGNAL_FLAGS = {
    "loading_state_changed": "has_loading_indicator",
    "dialog_state_changed": "has_dialog",
    "error_signal_changed": "has_error_signal",
    "status_signal_changed": "has_status_signal",
    "live_region_state_changed": "has_live_region",
    "validation_feedback_changed": "validation_feedback_detected",
}


def empty_snapshot() -> Dict[str, Any]:
    return {
        "has_loading_indicator": False,
        "has_dialog": False,
        "has_error_signal": False,
        "has_status_signal": False,
        "has_live_region": False,
        "validation_feedback_detected": False,
        "disabled_elements": 0,
        "explanation": [],
    }


def diff_snapshots(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Compare two UI snapshots.

    A status signal present on both sides still counts as a change: a
    status region that stays visible after an action is feedback.
    """
    before = before or empty_snapshot()
    after = after or empty_snapshot()

    summary = {
        name: bool(before.get(flag)) != bool(after.get(flag))
        for name, flag in SIGNAL_FLAGS.items()
    }
    summary["disabled_buttons_changed"] = before.get("disabled_elements", 0) != after.get("disabled_elements", 0)
    if before.get("has_status_signal") and after.get("has_status_signal"):
        summary["status_signal_changed"] = True

    explanation = []
    for name, changed in summary.items():
        if changed:
            explanation.append(name.replace("_", " "))

    return {
        "changed": any(summary.values()),
        "explanation": " | ".join(explanation),
        "summary": summary,
    }


class UISignalSensor(Sensor):
    name = "ui_signals"

    def snapshot(self, page) -> Dict[str, Any]:
        snapshot = empty_snapshot()
        snapshot.update(page.evaluate(SNAPSHOT_SCRIPT) or {})
        return snapshot

    def capture_before(self, page) -> Dict[str, Any]:
        return self.snapshot(page)

    def capture_after(self, page) -> Dict[str, Any]:
        return self.snapshot(page)

    def diff(self, before, after) -> Dict[str, Any]:
        result = diff_snapshots(before, after)
        result["before"] = before or empty_snapshot()
        result["after"] = after or empty_snapshot()
        return result

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "changed": False,
            "explanation": "",
            "summary": {name: False for name in list(SIGNAL_FLAGS) + ["disabled_buttons_changed"]},
            "before": empty_snapshot(),
            "after": empty_snapshot(),
        }

"""App-state sensor: reports which top-level store keys changed.

Values never leave the page. Each key is reduced to a short fingerprint in
the browser and only key names are reported back.
"""

from typing import Any, Dict, List, Optional

from .base import Sensor

MAX_DIFF_KEYS = 10

# dispatch-style: Redux; store-set-style: Zustand; setter-style: plain
# state object mutated through setters
STORE_TYPES = ["redux", "zustand", "setter"]

STATE_SNAPSHOT_SCRIPT = """() => {
  let storeType = null;
  let state = null;
  if (window.__REDUX_STORE__ && typeof window.__REDUX_STORE__.getState === 'function') {
    storeType = 'redux'; state = window.__REDUX_STORE__.getState();
  } else if (window.store && typeof window.store.getState === 'function' && typeof window.store.dispatch === 'function') {
    storeType = 'redux'; state = window.store.getState();
  } else if (window.__ZUSTAND_STORE__ && typeof window.__ZUSTAND_STORE__.getState === 'function') {
    storeType = 'zustand'; state = window.__ZUSTAND_STORE__.getState();
  } else if (window.__APP_STATE__ && typeof window.__APP_STATE__ === 'object') {
    storeType = 'setter'; state = window.__APP_STATE__;
  }
  if (!storeType || !state || typeof state !== 'object') {
    return { available: false, store_type: null, keys: {} };
  }
  const fingerprint = (value) => {
    let text;
    try { text = JSON.stringify(value); } catch (e) { text = String(value); }
    if (text === undefined) text = 'undefined';
    let hash = 0;
    for (let i = 0; i < text.length; i++) { hash = ((hash << 5) - hash + text.charCodeAt(i)) | 0; }
    return text.length + ':' + hash;
  };
  const keys = {};
  for (const key of Object.keys(state)) {
    if (typeof state[key] !== 'function') keys[key] = fingerprint(state[key]);
  }
  return { available: true, store_type: storeType, keys: keys };
}"""


def compute_state_diff(before: Dict[str, str], after: Dict[str, str],
                       limit: Optional[int] = MAX_DIFF_KEYS) -> List[str]:
    """Keys whose fingerprint differs, sorted, at most ``limit`` (None for all)."""
    before = before or {}
    after = after or {}
    changed = [key for key in sorted(set(before) | set(after)) if before.get(key) != after.get(key)]
    return changed if limit is None else changed[:limit]


class StateSensor(Sensor):
    name = "state"

    def _snapshot(self, page) -> Dict[str, Any]:
        return page.evaluate(STATE_SNAPSHOT_SCRIPT) or {"available": False, "store_type": None, "keys": {}}

    def capture_before(self, page) -> Dict[str, Any]:
        return self._snapshot(page)

    def capture_after(self, page) -> Dict[str, Any]:
        return self._snapshot(page)

    def diff(self, before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        before = before or {}
        after = after or {}
        if not (before.get("available") and after.get("available")):
            return {"store_available": False, "store_type": before.get("store_type"),
                    "changed": [], "changed_all": [], "any_changed": False}
        changed_all = compute_state_diff(before.get("keys"), after.get("keys"), limit=None)
        return {
            "store_available": True,
            "store_type": after.get("store_type") or before.get("store_type"),
            "changed": changed_all[:MAX_DIFF_KEYS],
            "changed_all": changed_all,
            "any_changed": bool(changed_all),
        }

    def summarize(self, before, window, after) -> Dict[str, Any]:
        summary = super().summarize(before, window, after)
        # No store on either side means no state evidence at all
        summary["available"] = summary["store_available"]
        return summary

    def empty_summary(self) -> Dict[str, Any]:
        return {
            "available": False,
            "store_available": False,
            "store_type": None,
            "changed": [],
            "changed_all": [],
            "any_changed": False,
        }

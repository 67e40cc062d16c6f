"""Silence ledger: evidentiary gaps recorded during a scan.

Nothing that limits what the engine could observe is dropped. Each gap is a
SilenceEntry with a scope, a reason code and an impact; the tracker groups
them and turns them into a bounded confidence penalty.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import SilenceError

logger = logging.getLogger(__name__)

SILENCE_SCOPES = [
    "budget",
    "timeout",
    "safety",
    "discovery",
    "sensor",
    "expectation",
    "navigation",
    "interaction",
]

# Reason codes
SCAN_TIME_EXCEEDED = "scan_time_exceeded"
INTERACTION_LIMIT_EXCEEDED = "interaction_limit_exceeded"
PAGE_LIMIT_EXCEEDED = "page_limit_exceeded"
NAVIGATION_TIMEOUT = "navigation_timeout"
INTERACTION_TIMEOUT = "interaction_timeout"
SETTLE_TIMEOUT = "settle_timeout"
EXTERNAL_BLOCKED = "external_blocked"
SENSOR_UNAVAILABLE = "sensor_unavailable"
SENSOR_FAILED = "sensor_failed"
SELECTOR_NOT_FOUND = "selector_not_found"
AMBIGUOUS_SELECTOR = "ambiguous_selector"
INVALID_SELECTOR = "invalid_selector"
ROUTE_UNREACHABLE = "route_unreachable"
FRONTIER_CAPPED = "frontier_capped"

SILENCE_REASONS = [
    SCAN_TIME_EXCEEDED,
    INTERACTION_LIMIT_EXCEEDED,
    PAGE_LIMIT_EXCEEDED,
    NAVIGATION_TIMEOUT,
    INTERACTION_TIMEOUT,
    SETTLE_TIMEOUT,
    EXTERNAL_BLOCKED,
    SENSOR_UNAVAILABLE,
    SENSOR_FAILED,
    SELECTOR_NOT_FOUND,
    AMBIGUOUS_SELECTOR,
    INVALID_SELECTOR,
    ROUTE_UNREACHABLE,
    FRONTIER_CAPPED,
]

IMPACT_UNKNOWN_BEHAVIOR = "unknown_behavior"
IMPACT_INCOMPLETE_CHECK = "incomplete_check"
IMPACT_AFFECTS_EXPECTATIONS = "affects_expectations"

# Penalty points per entry, by scope
SCOPE_PENALTIES = {
    "budget": 5,
    "timeout": 8,
    "safety": 0,
    "discovery": 5,
    "sensor": 10,
    "expectation": 7,
    "navigation": 8,
    "interaction": 8,
}

# Total penalty never exceeds this
MAX_SILENCE_PENALTY = 40


@dataclass
class SilenceEntry:
    """One evidentiary gap."""
    scope: str
    reason: str
    description: str
    impact: str = IMPACT_INCOMPLETE_CHECK
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SilenceTracker:
    """Per-scan ledger of silence entries."""

    def __init__(self):
        self.entries: List[SilenceEntry] = []

    def record(self, scope: str, reason: str, description: str,
               impact: str = IMPACT_INCOMPLETE_CHECK,
               context: Optional[Dict[str, Any]] = None) -> SilenceEntry:
        if not scope or not reason or not description:
            raise SilenceError("Silence entry requires scope, reason and description")
        if scope not in SILENCE_SCOPES:
            raise SilenceError(f"Unknown silence scope: {scope}")

        entry = SilenceEntry(
            scope=scope,
            reason=reason,
            description=description,
            impact=impact,
            context=dict(context or {}),
        )
        self.entries.append(entry)
        logger.debug(f"Silence [{scope}] {reason}: {description}")
        return entry

    def record_batch(self, entries: List[Dict[str, Any]]) -> None:
        for entry in entries:
            self.record(
                scope=entry.get("scope"),
                reason=entry.get("reason"),
                description=entry.get("description"),
                impact=entry.get("impact", IMPACT_INCOMPLETE_CHECK),
                context=entry.get("context"),
            )

    def get_entries_by_scope(self, scope: str) -> List[SilenceEntry]:
        return [e for e in self.entries if e.scope == scope]

    def confidence_impact(self, trace_index: Optional[int] = None) -> int:
        """Total penalty points (non-positive), bounded by MAX_SILENCE_PENALTY.

        With ``trace_index`` only entries recorded for that trace count.
        """
        entries = self.entries
        if trace_index is not None:
            entries = [e for e in entries if e.context.get("trace_index") == trace_index]
        penalty = sum(SCOPE_PENALTIES.get(e.scope, 0) for e in entries)
        return -min(penalty, MAX_SILENCE_PENALTY)

    def get_summary(self) -> Dict[str, Any]:
        by_scope: Dict[str, int] = {}
        by_reason: Dict[str, int] = {}
        for entry in self.entries:
            by_scope[entry.scope] = by_scope.get(entry.scope, 0) + 1
            by_reason[entry.reason] = by_reason.get(entry.reason, 0) + 1

        return {
            "total": len(self.entries),
            "by_scope": dict(sorted(by_scope.items())),
            "by_reason": dict(sorted(by_reason.items())),
            "confidence_impact": self.confidence_impact(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.get_summary(),
            "entries": [e.to_dict() for e in self.entries],
        }

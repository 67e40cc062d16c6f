"""Confidence engine: deterministic scoring of how strongly evidence supports a finding.

Scoring is table-driven. ``DEFAULT_POLICY`` holds the base score per finding
type and an ordered list of additive/subtractive rules keyed on boolean
evidence signals. Changing a constant means changing the policy table and
bumping ``CONFIDENCE_POLICY_VERSION``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..models import ConfidenceLevel, Strength

CONFIDENCE_POLICY_VERSION = "1.0"

HIGH_THRESHOLD = 80
MEDIUM_THRESHOLD = 60
MAX_REASONS = 6

# Finding types
NETWORK_SILENT_FAILURE = "network_silent_failure"
MISSING_NETWORK_ACTION = "missing_network_action"
NAVIGATION_SILENT_FAILURE = "navigation_silent_failure"
PARTIAL_NAVIGATION_FAILURE = "partial_navigation_failure"
VALIDATION_SILENT_FAILURE = "validation_silent_failure"
MISSING_STATE_ACTION = "missing_state_action"
OBSERVED_BREAK = "observed_break"

BASE_SCORES = {
    NAVIGATION_SILENT_FAILURE: 75,
    NETWORK_SILENT_FAILURE: 70,
    MISSING_NETWORK_ACTION: 65,
    PARTIAL_NAVIGATION_FAILURE: 65,
    VALIDATION_SILENT_FAILURE: 60,
    MISSING_STATE_ACTION: 60,
    OBSERVED_BREAK: 50,
}
DEFAULT_BASE_SCORE = 50

# Sensor summary each finding type cannot be judged without
REQUIRED_SENSOR_BY_TYPE = {
    NETWORK_SILENT_FAILURE: "network",
    MISSING_NETWORK_ACTION: "network",
    NAVIGATION_SILENT_FAILURE: "navigation",
    PARTIAL_NAVIGATION_FAILURE: "navigation",
    VALIDATION_SILENT_FAILURE: "ui_signals",
    MISSING_STATE_ACTION: "state",
    OBSERVED_BREAK: "ui_signals",
}

CORE_SENSORS = ("network", "console", "ui_signals")

# Score ceilings applied after the rules
UNPROVEN_CAP = HIGH_THRESHOLD - 1
UNCONFIRMED_OBSERVED_CAP = MEDIUM_THRESHOLD - 11


@dataclass(frozen=True)
class ConfidenceRule:
    """One additive or subtractive adjustment."""
    id: str
    signal: str
    delta: int
    reason: str
    finding_types: Tuple[str, ...] = ()  # empty: every type

    def applies_to(self, finding_type: str) -> bool:
        return not self.finding_types or finding_type in self.finding_types


_NAV_TYPES = (NAVIGATION_SILENT_FAILURE, PARTIAL_NAVIGATION_FAILURE)

DEFAULT_RULES = (
    # network_silent_failure
    ConfidenceRule("net_failed", "network_failed", 10, "Request failed", (NETWORK_SILENT_FAILURE,)),
    ConfidenceRule("net_server_error", "server_error", 10, "Server error response (5xx)", (NETWORK_SILENT_FAILURE,)),
    ConfidenceRule("net_console", "console_errors", 8, "JavaScript errors logged", (NETWORK_SILENT_FAILURE,)),
    ConfidenceRule("net_failed_silent", "failed_without_feedback", 6, "Failure produced no visible feedback", (NETWORK_SILENT_FAILURE,)),
    ConfidenceRule("net_ui_feedback", "ui_feedback", -10, "Visible UI change after action", (NETWORK_SILENT_FAILURE,)),
    ConfidenceRule("net_error_feedback", "error_feedback", -8, "Visible error feedback shown", (NETWORK_SILENT_FAILURE,)),
    # missing_network_action
    ConfidenceRule("mna_proven", "proven", 10, "Request proven in source", (MISSING_NETWORK_ACTION,)),
    ConfidenceRule("mna_no_activity", "no_network_activity", 8, "No network activity at all", (MISSING_NETWORK_ACTION,)),
    ConfidenceRule("mna_console", "console_errors", 6, "JavaScript errors logged", (MISSING_NETWORK_ACTION,)),
    ConfidenceRule("mna_other_requests", "has_network_activity", -15, "Other requests fired", (MISSING_NETWORK_ACTION,)),
    ConfidenceRule("mna_ui_feedback", "ui_feedback", -10, "Visible UI change after action", (MISSING_NETWORK_ACTION,)),
    # navigation
    ConfidenceRule("nav_url_unchanged", "url_unchanged", 10, "URL did not change", _NAV_TYPES),
    ConfidenceRule("nav_no_feedback", "no_ui_feedback", 8, "No visible UI feedback", _NAV_TYPES),
    ConfidenceRule("nav_console", "console_errors", 6, "JavaScript errors logged", _NAV_TYPES),
    ConfidenceRule("nav_ui_feedback", "ui_feedback", -10, "Visible UI change after action", _NAV_TYPES),
    ConfidenceRule("nav_url_changed", "url_changed", -5, "URL changed", _NAV_TYPES),
    # validation
    ConfidenceRule("val_console", "console_errors", 10, "JavaScript errors logged", (VALIDATION_SILENT_FAILURE,)),
    ConfidenceRule("val_errors_silent", "errors_without_feedback", 8, "Errors produced no visible feedback", (VALIDATION_SILENT_FAILURE,)),
    ConfidenceRule("val_ui_feedback", "ui_feedback", -10, "Visible UI change after action", (VALIDATION_SILENT_FAILURE,)),
    # state
    ConfidenceRule("state_proven", "proven", 10, "State mutation proven in source", (MISSING_STATE_ACTION,)),
    ConfidenceRule("state_dom_unchanged", "dom_unchanged", 8, "DOM did not change", (MISSING_STATE_ACTION,)),
    ConfidenceRule("state_network", "has_network_activity", -10, "Network activity observed", (MISSING_STATE_ACTION,)),
    ConfidenceRule("state_ui_feedback", "ui_feedback", -8, "Visible UI change after action", (MISSING_STATE_ACTION,)),
    # observed
    ConfidenceRule("obs_console", "console_errors", 8, "JavaScript errors logged", (OBSERVED_BREAK,)),
    ConfidenceRule("obs_dom_unchanged", "dom_unchanged", 6, "DOM did not change", (OBSERVED_BREAK,)),
    ConfidenceRule("obs_ui_feedback", "ui_feedback", -10, "Visible UI change after action", (OBSERVED_BREAK,)),
    # every type
    ConfidenceRule("loading_indicator", "loading_indicator", -6, "Loading indicator was shown"),
    ConfidenceRule("missing_sensor_data", "missing_sensor_data", -15, "Sensor data incomplete"),
    ConfidenceRule("not_proven", "not_proven", -10, "Expectation not proven in source"),
)


@dataclass(frozen=True)
class ConfidencePolicy:
    version: str = CONFIDENCE_POLICY_VERSION
    base_scores: Dict[str, int] = field(default_factory=lambda: dict(BASE_SCORES))
    rules: Tuple[ConfidenceRule, ...] = DEFAULT_RULES
    high_threshold: int = HIGH_THRESHOLD
    medium_threshold: int = MEDIUM_THRESHOLD
    max_reasons: int = MAX_REASONS

    def base_for(self, finding_type: str) -> int:
        return self.base_scores.get(finding_type, DEFAULT_BASE_SCORE)


DEFAULT_POLICY = ConfidencePolicy()


@dataclass
class ConfidenceResult:
    score: int
    level: ConfidenceLevel
    breakdown: List[Dict[str, Any]]
    reasons: List[str]
    policy_version: str = CONFIDENCE_POLICY_VERSION
    evidence_complete: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "breakdown": self.breakdown,
            "reasons": self.reasons,
            "policy_version": self.policy_version,
            "evidence_complete": self.evidence_complete,
        }


def level_for_score(score: int, policy: ConfidencePolicy = DEFAULT_POLICY) -> ConfidenceLevel:
    if score >= policy.high_threshold:
        return ConfidenceLevel.HIGH
    if score >= policy.medium_threshold:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def extract_signals(expectation_strength: str, sensor_summaries: Dict[str, Dict[str, Any]],
                    comparisons: Dict[str, Any]) -> Dict[str, bool]:
    """Boolean evidence signals the rule table is keyed on."""
    network = sensor_summaries.get("network", {})
    console = sensor_summaries.get("console", {})
    ui = sensor_summaries.get("ui_signals", {})
    aria = sensor_summaries.get("aria", {})
    loading = sensor_summaries.get("loading", {})
    navigation = sensor_summaries.get("navigation", {})

    network_failed = network.get("failed_requests", 0) > 0
    server_error = any(str(bucket).startswith("5") for bucket in (network.get("failures_by_status") or {}))
    console_errors = console.get("error_count", 0) > 0
    ui_feedback = bool(ui.get("changed")) or bool(aria.get("announcement_changed"))
    has_activity = network.get("total_requests", 0) > 0
    url_changed = bool(comparisons.get("url_changed")) or bool(navigation.get("url_changed"))
    dom_changed = bool(comparisons.get("dom_changed"))
    proven = expectation_strength == Strength.PROVEN.value

    return {
        "network_failed": network_failed,
        "server_error": server_error,
        "console_errors": console_errors,
        "ui_feedback": ui_feedback,
        "no_ui_feedback": not ui_feedback,
        "error_feedback": bool((ui.get("after") or {}).get("has_error_signal")),
        "loading_indicator": bool(loading.get("has_loading_indicators")),
        "has_network_activity": has_activity,
        "no_network_activity": not has_activity,
        "url_changed": url_changed,
        "url_unchanged": not url_changed,
        "dom_changed": dom_changed,
        "dom_unchanged": not dom_changed,
        "failed_without_feedback": network_failed and not ui_feedback,
        "errors_without_feedback": console_errors and not ui_feedback,
        "proven": proven,
        "not_proven": not proven,
        "missing_sensor_data": any(not sensor_summaries.get(name, {}).get("available") for name in CORE_SENSORS),
    }


def check_evidence(finding_type: str, evidence: Optional[Dict[str, Any]]) -> List[str]:
    """Names of required evidence fields that are structurally missing."""
    if evidence is None:
        return ["evidence"]
    missing = []
    for side in ("before", "after"):
        snapshot = evidence.get(side) or {}
        for key in ("url", "screenshot"):
            if not snapshot.get(key):
                missing.append(f"{side}.{key}")
    required = REQUIRED_SENSOR_BY_TYPE.get(finding_type)
    if required and not (evidence.get("sensors") or {}).get(required, {}).get("available"):
        missing.append(f"sensors.{required}")
    return missing


def compute_confidence(finding_type: str, expectation_strength: str,
                       sensor_summaries: Dict[str, Dict[str, Any]],
                       comparisons: Dict[str, Any],
                       evidence: Optional[Dict[str, Any]] = None,
                       silence_penalty: int = 0,
                       policy: ConfidencePolicy = DEFAULT_POLICY) -> ConfidenceResult:
    """
    Score a candidate finding.

    Args:
        finding_type: One of the finding type constants
        expectation_strength: "PROVEN" or "OBSERVED"
        sensor_summaries: Trace sensor summaries keyed by sensor name
        comparisons: url_changed, dom_changed and repeat_confirmed flags
        evidence: Evidence block checked by the evidence law; when None only
            the numeric score is computed
        silence_penalty: Non-positive penalty from silences on this trace
        policy: Scoring table

    Returns:
        ConfidenceResult with score in [0, 100] and at most max_reasons reasons
    """
    signals = extract_signals(expectation_strength, sensor_summaries, comparisons)
    base = policy.base_for(finding_type)
    score = base
    breakdown: List[Dict[str, Any]] = [{"rule": "base", "delta": base, "reason": f"Base score for {finding_type}"}]
    boosts: List[str] = []
    penalties: List[str] = []

    for rule in policy.rules:
        if rule.applies_to(finding_type) and signals.get(rule.signal):
            score += rule.delta
            breakdown.append({"rule": rule.id, "delta": rule.delta, "reason": rule.reason})
            (boosts if rule.delta > 0 else penalties).append(rule.reason)

    if silence_penalty:
        score += silence_penalty
        breakdown.append({"rule": "silence_ledger", "delta": silence_penalty, "reason": "Evidence gaps recorded"})
        penalties.append("Evidence gaps recorded")

    score = max(0, min(100, score))
    caps: List[str] = []

    if expectation_strength != Strength.PROVEN.value and score > UNPROVEN_CAP:
        breakdown.append({"rule": "cap_unproven", "delta": UNPROVEN_CAP - score, "reason": "Unproven expectation capped below HIGH"})
        score = UNPROVEN_CAP
        caps.append("Unproven expectation capped below HIGH")
    if (expectation_strength == Strength.OBSERVED.value and not comparisons.get("repeat_confirmed")
            and score > UNCONFIRMED_OBSERVED_CAP):
        breakdown.append({"rule": "cap_unconfirmed", "delta": UNCONFIRMED_OBSERVED_CAP - score, "reason": "Observed behavior not confirmed by repeat"})
        score = UNCONFIRMED_OBSERVED_CAP
        caps.append("Observed behavior not confirmed by repeat")

    evidence_complete = True
    if evidence is not None:
        missing = check_evidence(finding_type, evidence)
        if missing:
            evidence_complete = False
            level = level_for_score(score, policy)
            ceiling = {
                ConfidenceLevel.HIGH: policy.high_threshold - 1,
                ConfidenceLevel.MEDIUM: policy.medium_threshold - 1,
                ConfidenceLevel.LOW: policy.medium_threshold - 1,
            }[level]
            if score > ceiling:
                breakdown.append({"rule": "evidence_law", "delta": ceiling - score, "reason": "Evidence incomplete"})
                score = ceiling
            caps.insert(0, f"Evidence incomplete: {', '.join(missing)}")

    level = level_for_score(score, policy)
    reasons = (caps + penalties + boosts)[:policy.max_reasons]

    return ConfidenceResult(
        score=score,
        level=level,
        breakdown=breakdown,
        reasons=reasons,
        policy_version=policy.version,
        evidence_complete=evidence_complete,
    )

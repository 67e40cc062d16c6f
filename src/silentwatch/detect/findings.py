"""Turn OBSERVED_BREAK outcomes into scored findings."""

import hashlib
from typing import Any, Dict, Optional

from ..models import Expectation, Finding, Strength, Trace
from .confidence import (
    MISSING_NETWORK_ACTION,
    MISSING_STATE_ACTION,
    NAVIGATION_SILENT_FAILURE,
    NETWORK_SILENT_FAILURE,
    OBSERVED_BREAK,
    PARTIAL_NAVIGATION_FAILURE,
    REQUIRED_SENSOR_BY_TYPE,
    VALIDATION_SILENT_FAILURE,
    compute_confidence,
)

FINDING_TYPE_BY_REASON = {
    "navigation_not_observed": NAVIGATION_SILENT_FAILURE,
    "navigation_target_mismatch": PARTIAL_NAVIGATION_FAILURE,
    "network_request_missing": MISSING_NETWORK_ACTION,
    "network_request_url_mismatch": NETWORK_SILENT_FAILURE,
    "validation_feedback_missing": VALIDATION_SILENT_FAILURE,
    "validation_not_blocked": VALIDATION_SILENT_FAILURE,
    "state_not_changed": MISSING_STATE_ACTION,
}


def finding_type_for(expectation: Expectation, reason: str) -> str:
    if expectation.strength == Strength.OBSERVED:
        return OBSERVED_BREAK
    return FINDING_TYPE_BY_REASON.get(reason, OBSERVED_BREAK)


def build_evidence(trace: Trace, finding_type: str) -> Dict[str, Any]:
    required = REQUIRED_SENSOR_BY_TYPE.get(finding_type)
    sensors = {name: trace.sensors[name] for name in ("network", "console", "ui_signals") if name in trace.sensors}
    if required and required in trace.sensors:
        sensors[required] = trace.sensors[required]
    return {
        "trace_index": trace.index,
        "before": trace.before.to_dict(),
        "after": trace.after.to_dict(),
        "sensors": sensors,
        "policy": dict(trace.policy),
        "dom_changed_during_settle": trace.dom.get("settle", {}).get("dom_changed_during_settle", False),
        "http_status": trace.http_status,
    }


def build_finding(expectation: Expectation, reason: str, trace: Trace,
                  repeat_confirmed: Optional[bool] = None,
                  silence_penalty: int = 0) -> Finding:
    """Create a finding for an OBSERVED_BREAK outcome on ``trace``."""
    finding_type = finding_type_for(expectation, reason)
    evidence = build_evidence(trace, finding_type)
    confidence = compute_confidence(
        finding_type=finding_type,
        expectation_strength=expectation.strength.value,
        sensor_summaries=trace.sensors,
        comparisons={
            "url_changed": trace.url_changed,
            "dom_changed": trace.dom_changed,
            "repeat_confirmed": bool(repeat_confirmed),
        },
        evidence=evidence,
        silence_penalty=silence_penalty,
    )
    digest = hashlib.sha256(f"{expectation.id}|{trace.interaction.selector}".encode("utf-8")).hexdigest()[:12]
    return Finding(
        id=f"finding-{digest}",
        type=finding_type,
        expectation_id=expectation.id,
        strength=expectation.strength.value,
        reason=reason,
        interaction=trace.interaction.to_dict(),
        confidence=confidence.to_dict(),
        evidence=evidence,
        source_ref=expectation.source,
    )

"""Truth classifier: one run-level verdict from the run's statistics.

Precedence, first match wins:

1. any finding                      -> FINDINGS / HIGH
2. infrastructure failure           -> INCOMPLETE / LOW
3. budget exceeded or low coverage  -> INCOMPLETE / MEDIUM
4. no expectations at all           -> SUCCESS / HIGH
5. coverage at or above threshold   -> SUCCESS / HIGH
6. anything else                    -> INCOMPLETE / LOW

A run never reports SUCCESS with coverage below the threshold or with the
budget exceeded.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

from ..models import ConfidenceLevel, RunTruth, TruthState

DEFAULT_COVERAGE_THRESHOLD = 0.90

REASON_FINDINGS = "findings_present"
REASON_INFRA_FAILURE = "infra_failure"
REASON_BUDGET_EXCEEDED = "budget_exceeded"
REASON_LOW_COVERAGE = "coverage_below_threshold"
REASON_NO_EXPECTATIONS = "no_expectations"
REASON_COVERAGE_MET = "coverage_met"
REASON_UNCLASSIFIED = "unclassified"

EXPLANATIONS = {
    REASON_FINDINGS: (
        "At least one proven or observed effect did not happen when the interaction ran.",
        "Review and fix the findings, then re-run to confirm.",
    ),
    REASON_INFRA_FAILURE: (
        "The browser session failed, so the run cannot vouch for anything.",
        "Check that the site is reachable and the browser can start, then re-run.",
    ),
    REASON_BUDGET_EXCEEDED: (
        "The scan stopped early; some expectations were never attempted.",
        "Raise max_scan_duration_ms or narrow the scan, then re-run.",
    ),
    REASON_LOW_COVERAGE: (
        "Too few expectations were attempted to call the run safe.",
        "Inspect coverage gaps (missing selectors, unreachable routes) and re-run.",
    ),
    REASON_NO_EXPECTATIONS: (
        "There was nothing to verify, so nothing could fail.",
        "No action needed.",
    ),
    REASON_COVERAGE_MET: (
        "Every attempted expectation behaved as proven.",
        "No action needed.",
    ),
    REASON_UNCLASSIFIED: (
        "The run statistics did not match a known pattern.",
        "Re-run with -v and review the logs.",
    ),
}


@dataclass
class RunStats:
    """Per-run statistics the verdict is computed from."""
    findings_count: int = 0
    expectations_total: int = 0
    attempted: int = 0
    verified: int = 0
    observed_breaks: int = 0
    infra_failure: bool = False
    budget_exceeded: bool = False
    unattempted_breakdown: Dict[str, int] = field(default_factory=dict)

    @property
    def coverage_ratio(self) -> float:
        if self.expectations_total == 0:
            return 1.0
        return self.attempted / self.expectations_total

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["coverage_ratio"] = self.coverage_ratio
        return d


def is_incomplete(stats: RunStats, threshold: float = DEFAULT_COVERAGE_THRESHOLD) -> bool:
    return stats.budget_exceeded or stats.coverage_ratio < threshold


def classify_run(stats: RunStats, threshold: float = DEFAULT_COVERAGE_THRESHOLD) -> RunTruth:
    """Evaluate the verdict precedence over ``stats``."""
    if stats.findings_count > 0:
        return RunTruth(TruthState.FINDINGS, ConfidenceLevel.HIGH, REASON_FINDINGS)
    if stats.infra_failure:
        return RunTruth(TruthState.INCOMPLETE, ConfidenceLevel.LOW, REASON_INFRA_FAILURE)
    if is_incomplete(stats, threshold):
        reason = REASON_BUDGET_EXCEEDED if stats.budget_exceeded else REASON_LOW_COVERAGE
        return RunTruth(TruthState.INCOMPLETE, ConfidenceLevel.MEDIUM, reason)
    if stats.expectations_total == 0:
        return RunTruth(TruthState.SUCCESS, ConfidenceLevel.HIGH, REASON_NO_EXPECTATIONS)
    if stats.coverage_ratio >= threshold:
        return RunTruth(TruthState.SUCCESS, ConfidenceLevel.HIGH, REASON_COVERAGE_MET)
    return RunTruth(TruthState.INCOMPLETE, ConfidenceLevel.LOW, REASON_UNCLASSIFIED)


def build_truth_block(stats: RunStats, threshold: float = DEFAULT_COVERAGE_THRESHOLD,
                      silence_summary: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Verdict plus coverage summary and plain-language guidance."""
    truth = classify_run(stats, threshold)
    what_this_means, recommended_action = EXPLANATIONS[truth.reason]
    block = truth.to_dict()
    block.update({
        "what_this_means": what_this_means,
        "recommended_action": recommended_action,
        "coverage_summary": {
            "expectations_total": stats.expectations_total,
            "attempted": stats.attempted,
            "verified": stats.verified,
            "observed_breaks": stats.observed_breaks,
            "coverage_ratio": round(stats.coverage_ratio, 4),
            "threshold": threshold,
            "unattempted_count": stats.expectations_total - stats.attempted,
            "unattempted_breakdown": dict(sorted(stats.unattempted_breakdown.items())),
        },
    })
    if silence_summary is not None:
        block["silence_impact"] = silence_summary.get("confidence_impact", 0)
    return block

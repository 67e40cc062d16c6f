"""
Tests for the run-level verdict.

Precedence: findings, infra failure, budget/coverage, empty expectation set,
coverage met.
"""

import pytest

from silentwatch.detect.truth import (
    REASON_BUDGET_EXCEEDED,
    REASON_COVERAGE_MET,
    REASON_FINDINGS,
    REASON_INFRA_FAILURE,
    REASON_LOW_COVERAGE,
    REASON_NO_EXPECTATIONS,
    RunStats,
    build_truth_block,
    classify_run,
    is_incomplete,
)
from silentwatch.models import ConfidenceLevel, TruthState


def make_stats(**overrides):
    fields = {"expectations_total": 10, "attempted": 10, "verified": 10}
    fields.update(overrides)
    return RunStats(**fields)


class TestClassifyRun:
    """Tests for verdict precedence."""

    def test_findings_win(self):
        """Any finding gives FINDINGS/HIGH even with low coverage."""
        truth = classify_run(make_stats(findings_count=1, attempted=2, budget_exceeded=True))

        assert truth.truth_state == TruthState.FINDINGS
        assert truth.confidence == ConfidenceLevel.HIGH
        assert truth.reason == REASON_FINDINGS

    def test_infra_failure(self):
        """Infrastructure failure without findings is INCOMPLETE/LOW."""
        truth = classify_run(make_stats(infra_failure=True))

        assert truth.truth_state == TruthState.INCOMPLETE
        assert truth.confidence == ConfidenceLevel.LOW
        assert truth.reason == REASON_INFRA_FAILURE

    def test_budget_exceeded(self):
        """A budget-exhausted run is INCOMPLETE/MEDIUM."""
        truth = classify_run(make_stats(budget_exceeded=True))

        assert truth.truth_state == TruthState.INCOMPLETE
        assert truth.confidence == ConfidenceLevel.MEDIUM
        assert truth.reason == REASON_BUDGET_EXCEEDED

    def test_coverage_just_below_threshold(self):
        """89% coverage is INCOMPLETE."""
        truth = classify_run(make_stats(expectations_total=100, attempted=89, verified=89))

        assert truth.truth_state == TruthState.INCOMPLETE
        assert truth.reason == REASON_LOW_COVERAGE

    def test_coverage_at_threshold(self):
        """90% coverage with no findings is SUCCESS."""
        truth = classify_run(make_stats(expectations_total=10, attempted=9, verified=9))

        assert truth.truth_state == TruthState.SUCCESS
        assert truth.reason == REASON_COVERAGE_MET

    def test_no_expectations(self):
        """An empty PROVEN set with no findings is SUCCESS."""
        truth = classify_run(RunStats())

        assert truth.truth_state == TruthState.SUCCESS
        assert truth.reason == REASON_NO_EXPECTATIONS

    def test_custom_threshold(self):
        """A stricter threshold turns 90% into INCOMPLETE."""
        stats = make_stats(expectations_total=10, attempted=9)

        assert is_incomplete(stats, threshold=0.95)
        assert classify_run(stats, threshold=0.95).truth_state == TruthState.INCOMPLETE


class TestTruthBlock:
    """Tests for the explained truth block."""

    def test_block_fields(self):
        """The block carries coverage, explanation and next step."""
        stats = make_stats(expectations_total=4, attempted=3, verified=3,
                           unattempted_breakdown={"selector_not_found": 1})

        block = build_truth_block(stats, 0.90, {"confidence_impact": -5})

        assert block["truth_state"] == "INCOMPLETE"
        assert block["coverage_summary"]["coverage_ratio"] == pytest.approx(0.75)
        assert block["coverage_summary"]["unattempted_count"] == 1
        assert block["coverage_summary"]["unattempted_breakdown"] == {"selector_not_found": 1}
        assert block["what_this_means"]
        assert block["recommended_action"]
        assert block["silence_impact"] == -5

    def test_stats_to_dict(self):
        """Serialized stats include the ratio."""
        data = make_stats(expectations_total=4, attempted=2).to_dict()

        assert data["coverage_ratio"] == pytest.approx(0.5)

"""Scan coordinator: drives the runner across pages under the scan budget.

One coordinator owns one page and one ScanContext. Nothing is shared
between scans; every cache lives on the context.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from playwright.sync_api import Error as PlaywrightError

from ..detect.findings import build_finding
from ..detect.matcher import bind_expectation, classify_trace, expectation_applies_to_page
from ..detect.observed import derive_observed_expectation, should_repeat
from ..detect.truth import DEFAULT_COVERAGE_THRESHOLD, RunStats, build_truth_block
from ..errors import InfraFailure
from ..models import (
    CoverageGap,
    Expectation,
    ExpectationOutcome,
    Finding,
    Interaction,
    OutcomeStatus,
    Strength,
    Trace,
)
from ..ordering import canonical_sort
from ..sensors.navigation import NAVIGATION_TRACKING_SCRIPT
from ..silence import (
    SilenceTracker,
    AMBIGUOUS_SELECTOR,
    INVALID_SELECTOR,
    FRONTIER_CAPPED,
    INTERACTION_LIMIT_EXCEEDED,
    NAVIGATION_TIMEOUT,
    ROUTE_UNREACHABLE,
    SCAN_TIME_EXCEEDED,
    SELECTOR_NOT_FOUND,
    IMPACT_AFFECTS_EXPECTATIONS,
    IMPACT_INCOMPLETE_CHECK,
)
from .budget import Budget, BudgetClock
from .discovery import discover_interactions, internal_page_links, is_external_url, select_interactions
from .frontier import PageFrontier, normalize_path, normalize_url
from .retry import RetryPolicy
from .runner import InteractionRunner, is_infra_error

logger = logging.getLogger(__name__)

BUDGET_EXCEEDED = "budget_exceeded"

WARNING_INTERACTIONS_CAPPED = "INTERACTIONS_CAPPED"
WARNING_PAGES_CAPPED = "PAGES_CAPPED"
WARNING_BUDGET_EXCEEDED = "SCAN_BUDGET_EXCEEDED"
WARNING_INFRA_FAILURE = "INFRA_FAILURE"


@dataclass
class ScanContext:
    """Everything one scan owns. Never shared across scans."""
    budget: Budget
    base_url: str
    silence: SilenceTracker = field(default_factory=SilenceTracker)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    screenshots_dir: str = "screenshots"
    coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD
    clock: Optional[BudgetClock] = None
    cache: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.clock is None:
            self.clock = BudgetClock(self.budget)


@dataclass
class ScanResult:
    """Everything a scan emits, canonically ordered."""
    traces: List[Trace]
    findings: List[Finding]
    truth: Dict[str, Any]
    coverage: Dict[str, Any]
    silence: Dict[str, Any]
    warnings: List[Dict[str, Any]]
    outcomes: List[ExpectationOutcome]
    gaps: List[CoverageGap]
    retries: Dict[str, Any]
    stats: RunStats

    @property
    def truth_state(self) -> str:
        return self.truth["truth_state"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "truth": self.truth,
            "coverage": self.coverage,
            "silence": self.silence,
            "warnings": self.warnings,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "gaps": [g.to_dict() for g in self.gaps],
            "retries": self.retries,
            "stats": self.stats.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
            "traces": [t.to_dict() for t in self.traces],
        }


class ScanCoordinator:
    """Runs one scan: frontier -> runner -> matcher -> findings -> verdict."""

    def __init__(self, context: ScanContext, expectations: List[Expectation],
                 runner: Optional[InteractionRunner] = None):
        self.context = context
        self.budget = context.budget
        self.expectations = canonical_sort(expectations)
        self.runner = runner if runner is not None else InteractionRunner(
            budget=context.budget,
            base_url=context.base_url,
            silence=context.silence,
            retry=context.retry,
            screenshots_dir=context.screenshots_dir,
        )
        self.frontier = PageFrontier(context.base_url, self.budget.max_unique_urls)

        self.traces: List[Trace] = []
        self.findings: List[Finding] = []
        self.outcomes: List[ExpectationOutcome] = []
        self.gaps: List[CoverageGap] = []
        self.warnings: List[Dict[str, Any]] = []
        self.executed = 0
        self.candidates_discovered = 0
        self.candidates_selected = 0
        self.interactions_capped = False
        self.budget_exceeded = False
        self.infra_failure = False
        self.skipped_interactions = 0

        # PROVEN expectations not yet bound to an interaction
        self._pending: Dict[str, Expectation] = {
            e.id: e for e in self.expectations if e.strength == Strength.PROVEN
        }
        self._page_gap_reasons: Dict[str, str] = {}
        self._unreachable_paths: Set[str] = set()

    # -------------------------------------------------------------------------
    # Bookkeeping helpers
    # -------------------------------------------------------------------------

    def _warn(self, code: str, message: str, **details) -> None:
        logger.warning(f"{code}: {message}")
        self.warnings.append({"code": code, "message": message, "details": details})

    def _mark_budget_exceeded(self) -> None:
        if self.budget_exceeded:
            return
        self.budget_exceeded = True
        self.context.silence.record(
            scope="budget",
            reason=SCAN_TIME_EXCEEDED,
            description=f"Scan exceeded {self.budget.max_scan_duration_ms}ms; no further interactions started",
            impact=IMPACT_AFFECTS_EXPECTATIONS,
            context={"elapsed_ms": self.context.clock.elapsed_ms()},
        )
        self._warn(WARNING_BUDGET_EXCEEDED, "Scan duration budget exhausted",
                   max_scan_duration_ms=self.budget.max_scan_duration_ms)

    def _skip(self, interactions: List[Interaction], reason: str) -> None:
        for interaction in interactions:
            self.skipped_interactions += 1
            self.gaps.append(CoverageGap(reason=reason, selector=interaction.selector, page_url=interaction.page_url))

    def _goto(self, page, url: str) -> bool:
        """Navigate to ``url``. Returns False when the page cannot be reached."""
        try:
            result = self.context.retry.run(
                lambda: page.goto(url, timeout=self.budget.navigation_timeout_ms, wait_until="domcontentloaded"),
                label=f"goto {url}",
            )
        except PlaywrightError as e:
            if is_infra_error(e):
                raise InfraFailure("browser session lost during page navigation", e)
            reason = NAVIGATION_TIMEOUT if "timeout" in str(e).lower() else ROUTE_UNREACHABLE
            self.context.silence.record(
                scope="navigation",
                reason=reason,
                description=f"Could not load {url}",
                impact=IMPACT_AFFECTS_EXPECTATIONS,
                context={"url": url},
            )
            self._unreachable_paths.add(normalize_path(url))
            return False

        response = result.value
        if response is not None and response.status >= 400:
            self.context.silence.record(
                scope="navigation",
                reason=ROUTE_UNREACHABLE,
                description=f"{url} returned HTTP {response.status}",
                impact=IMPACT_AFFECTS_EXPECTATIONS,
                context={"url": url, "status": response.status},
            )
            self._unreachable_paths.add(normalize_path(url))
            return False
        return True

    def _ensure_on_page(self, page, page_url: str) -> bool:
        if normalize_url(page.url) == page_url:
            return True
        return self._goto(page, page_url)

    # -------------------------------------------------------------------------
    # Binding and classification
    # -------------------------------------------------------------------------

    def _bind_proven(self, page, page_url: str,
                     candidates: List[Interaction]) -> Dict[str, Tuple[Interaction, List[Expectation]]]:
        bound: Dict[str, Tuple[Interaction, List[Expectation]]] = {}
        for expectation in list(self._pending.values()):
            if not expectation_applies_to_page(expectation, page_url):
                continue
            interaction, gap_reason = bind_expectation(expectation, candidates, page)
            if interaction is None:
                # Page claims and unusable selectors make this miss final
                if expectation.from_path or gap_reason in (AMBIGUOUS_SELECTOR, INVALID_SELECTOR):
                    self._page_gap_reasons[expectation.id] = gap_reason
                continue
            if interaction.page_url is None:
                interaction.page_url = page.url
            href = interaction.href or interaction.data_href
            interaction.is_external = is_external_url(href, self.context.base_url)
            del self._pending[expectation.id]
            entry = bound.setdefault(interaction.key, (interaction, []))
            entry[1].append(expectation)
        return bound

    def _record_outcome(self, expectation: Expectation, status: OutcomeStatus, reason: Optional[str],
                        trace: Optional[Trace], repeat_status: Optional[str] = None) -> None:
        self.outcomes.append(ExpectationOutcome(
            expectation_id=expectation.id,
            expectation_type=expectation.type.value,
            strength=expectation.strength.value,
            status=status,
            reason=reason,
            trace_index=trace.index if trace is not None else None,
            repeat_status=repeat_status,
            source_ref=expectation.source,
        ))
        if status == OutcomeStatus.COVERAGE_GAP and expectation.strength == Strength.PROVEN:
            self.gaps.append(CoverageGap(
                reason=reason or SELECTOR_NOT_FOUND,
                expectation_id=expectation.id,
                page_url=trace.before.url if trace is not None else None,
                source_ref=expectation.source,
            ))

    def _add_finding(self, expectation: Expectation, reason: str, trace: Trace,
                     repeat_confirmed: Optional[bool] = None) -> None:
        finding = build_finding(
            expectation, reason, trace,
            repeat_confirmed=repeat_confirmed,
            silence_penalty=self.context.silence.confidence_impact(trace_index=trace.index),
        )
        logger.info(f"Finding {finding.type} ({finding.level} {finding.score}) for {expectation.id}")
        self.findings.append(finding)

    def _handle_proven(self, expectations: List[Expectation], trace: Trace) -> None:
        for expectation in expectations:
            status, reason = classify_trace(expectation, trace)
            self._record_outcome(expectation, status, reason, trace)
            if status == OutcomeStatus.OBSERVED_BREAK:
                self._add_finding(expectation, reason, trace)

    def _can_start_interaction(self) -> bool:
        if self.context.clock.is_time_exceeded():
            self._mark_budget_exceeded()
            return False
        return self.executed < self.budget.max_total_interactions

    def _handle_observed(self, page, page_url: str, interaction: Interaction, trace: Trace) -> None:
        expectation = derive_observed_expectation(interaction, trace, self.context.base_url)
        if expectation is None:
            return
        status, reason = classify_trace(expectation, trace)

        if status == OutcomeStatus.OBSERVED_BREAK:
            self._record_outcome(expectation, status, reason, trace)
            self._add_finding(expectation, reason, trace, repeat_confirmed=False)
            return
        if not should_repeat(expectation, status.value, trace, already_repeated=trace.repeat):
            self._record_outcome(expectation, status, reason, trace)
            return
        if not self._can_start_interaction() or not self._ensure_on_page(page, page_url):
            self._record_outcome(expectation, status, reason, trace, repeat_status="skipped")
            return

        repeat_trace = self.runner.run(page, interaction, index=len(self.traces), repeat=True)
        self.traces.append(repeat_trace)
        self.executed += 1
        repeat_status, repeat_reason = classify_trace(expectation, repeat_trace)
        self._record_outcome(expectation, status, reason, trace, repeat_status=repeat_status.value)
        if repeat_status == OutcomeStatus.OBSERVED_BREAK:
            # Verified once, so the derived expectation is confirmed; the repeat broke it
            self._add_finding(expectation, repeat_reason, repeat_trace, repeat_confirmed=True)

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def _scan_page(self, page, page_url: str) -> None:
        try:
            candidates = discover_interactions(page, self.context.base_url)
        except PlaywrightError as e:
            if is_infra_error(e):
                raise InfraFailure("browser session lost during discovery", e)
            self.context.silence.record(
                scope="discovery",
                reason=SELECTOR_NOT_FOUND,
                description=f"Interaction discovery failed on {page_url}",
                impact=IMPACT_INCOMPLETE_CHECK,
                context={"url": page_url},
            )
            return

        for link in internal_page_links(candidates, page.url):
            self.frontier.add(link)

        bound = self._bind_proven(page, page_url, candidates)

        cap = max(0, min(self.budget.max_interactions_per_page,
                         self.budget.max_total_interactions - self.executed))
        selected, page_coverage = select_interactions(candidates, cap)
        self.candidates_discovered += page_coverage["candidates_discovered"]
        self.candidates_selected += page_coverage["candidates_selected"]
        if page_coverage["capped"]:
            self.interactions_capped = True
            self.context.silence.record(
                scope="budget",
                reason=INTERACTION_LIMIT_EXCEEDED,
                description=f"{page_coverage['candidates_discovered']} candidates on {page_url}, {cap} selected",
                impact=IMPACT_INCOMPLETE_CHECK,
                context={"url": page_url, **page_coverage},
            )
            self._warn(WARNING_INTERACTIONS_CAPPED,
                       f"Selected {page_coverage['candidates_selected']} of "
                       f"{page_coverage['candidates_discovered']} interactions on {page_url}",
                       url=page_url, **page_coverage)

        selected_keys = {c.key for c in selected}
        run_list = list(selected) + [i for i, _ in bound.values() if i.key not in selected_keys]

        for position, interaction in enumerate(run_list):
            if self.context.clock.is_time_exceeded():
                self._mark_budget_exceeded()
                self._skip(run_list[position:], BUDGET_EXCEEDED)
                self._gap_bound(bound, run_list[position:], BUDGET_EXCEEDED)
                return
            if self.executed >= self.budget.max_total_interactions:
                self._skip([interaction], INTERACTION_LIMIT_EXCEEDED)
                self._gap_bound(bound, [interaction], INTERACTION_LIMIT_EXCEEDED)
                continue
            if not self._ensure_on_page(page, page_url):
                self._skip(run_list[position:], ROUTE_UNREACHABLE)
                self._gap_bound(bound, run_list[position:], ROUTE_UNREACHABLE)
                return

            trace = self.runner.run(page, interaction, index=len(self.traces))
            self.traces.append(trace)
            self.executed += 1

            if interaction.key in bound:
                self._handle_proven(bound[interaction.key][1], trace)
            else:
                self._handle_observed(page, page_url, interaction, trace)

    def _gap_bound(self, bound, interactions: List[Interaction], reason: str) -> None:
        for interaction in interactions:
            if interaction.key in bound:
                for expectation in bound[interaction.key][1]:
                    self._record_outcome(expectation, OutcomeStatus.COVERAGE_GAP, reason, None)

    def _run(self, page) -> None:
        try:
            page.add_init_script(NAVIGATION_TRACKING_SCRIPT)
        except PlaywrightError as e:
            raise InfraFailure("could not install navigation tracking", e)

        first = True
        while self.frontier.has_next():
            if self.context.clock.is_time_exceeded():
                self._mark_budget_exceeded()
                break
            page_url = self.frontier.next_url()
            logger.info(f"Scanning page {page_url}")
            if not self._goto(page, page_url):
                if first:
                    raise InfraFailure(f"start URL unreachable: {page_url}")
                continue
            first = False
            self._scan_page(page, page_url)

    def _finalize_pending(self) -> None:
        visited_paths = {normalize_path(url) for url in self.frontier.visited}
        dropped_paths = {normalize_path(url) for url in self.frontier.dropped}
        for expectation in list(self._pending.values()):
            claimed = normalize_path(expectation.from_path) if expectation.from_path else None
            if expectation.id in self._page_gap_reasons:
                reason = self._page_gap_reasons[expectation.id]
            elif claimed and claimed in self._unreachable_paths:
                reason = ROUTE_UNREACHABLE
            elif claimed and claimed in dropped_paths:
                reason = FRONTIER_CAPPED
            elif self.budget_exceeded or self.infra_failure:
                reason = BUDGET_EXCEEDED if self.budget_exceeded else "not_attempted"
            elif claimed and claimed not in visited_paths:
                reason = ROUTE_UNREACHABLE
            else:
                reason = SELECTOR_NOT_FOUND
            self._record_outcome(expectation, OutcomeStatus.COVERAGE_GAP, reason, None)
        self._pending = {}

        if self.frontier.capped:
            self.context.silence.record(
                scope="discovery",
                reason=FRONTIER_CAPPED,
                description=f"{len(self.frontier.dropped)} URL(s) beyond max_unique_urls={self.budget.max_unique_urls}",
                impact=IMPACT_INCOMPLETE_CHECK,
                context={"dropped": len(self.frontier.dropped)},
            )
            self._warn(WARNING_PAGES_CAPPED, f"Page discovery capped at {self.budget.max_unique_urls} URLs",
                       dropped=len(self.frontier.dropped))
            for url in self.frontier.dropped:
                self.gaps.append(CoverageGap(reason=FRONTIER_CAPPED, page_url=url))

    def _stats(self) -> RunStats:
        proven = [o for o in self.outcomes if o.strength == Strength.PROVEN.value]
        unattempted: Dict[str, int] = {}
        for outcome in proven:
            if outcome.status == OutcomeStatus.COVERAGE_GAP:
                key = (outcome.reason or "unknown").split(":", 1)[0]
                unattempted[key] = unattempted.get(key, 0) + 1
        return RunStats(
            findings_count=len(self.findings),
            expectations_total=sum(1 for e in self.expectations if e.strength == Strength.PROVEN),
            attempted=sum(1 for o in proven if o.status != OutcomeStatus.COVERAGE_GAP),
            verified=sum(1 for o in proven if o.status == OutcomeStatus.VERIFIED),
            observed_breaks=sum(1 for o in proven if o.status == OutcomeStatus.OBSERVED_BREAK),
            infra_failure=self.infra_failure,
            budget_exceeded=self.budget_exceeded,
            unattempted_breakdown=unattempted,
        )

    def run(self, page) -> ScanResult:
        """Run the scan on ``page``. InfraFailure is absorbed into an INCOMPLETE verdict."""
        try:
            self._run(page)
        except InfraFailure as e:
            self.infra_failure = True
            logger.error(f"Scan aborted: {e.message}")
            self._warn(WARNING_INFRA_FAILURE, e.message)

        self._finalize_pending()
        stats = self._stats()
        silence_summary = self.context.silence.get_summary()
        truth = build_truth_block(stats, self.context.coverage_threshold, silence_summary)

        frontier_summary = self.frontier.get_summary()
        coverage = {
            "candidates_discovered": self.candidates_discovered,
            "candidates_selected": self.candidates_selected,
            "cap": self.budget.max_total_interactions,
            "capped": self.interactions_capped,
            "pages_visited": frontier_summary["pages_visited"],
            "pages_discovered": frontier_summary["pages_discovered"],
            "frontier_capped": frontier_summary["frontier_capped"],
            "interactions_executed": self.executed,
            "skipped_interactions": self.skipped_interactions,
        }

        logger.info(
            f"Scan complete: {truth['truth_state']} ({truth['reason']}), "
            f"{len(self.findings)} finding(s), {self.executed} interaction(s), "
            f"coverage {stats.coverage_ratio:.2f}"
        )

        return ScanResult(
            traces=canonical_sort(self.traces),
            findings=canonical_sort(self.findings),
            truth=truth,
            coverage=coverage,
            silence=self.context.silence.to_dict(),
            warnings=self.warnings,
            outcomes=canonical_sort(self.outcomes),
            gaps=canonical_sort(self.gaps),
            retries=self.context.retry.to_dict(),
            stats=stats,
        )


def run_scan(page, start_url: str, expectations: List[Expectation], budget: Optional[Budget] = None,
             coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD,
             retry: Optional[RetryPolicy] = None,
             screenshots_dir: str = "screenshots") -> ScanResult:
    """Convenience wrapper: build a fresh context and run one scan."""
    context = ScanContext(
        budget=budget or Budget(),
        base_url=start_url,
        retry=retry or RetryPolicy(),
        screenshots_dir=screenshots_dir,
        coverage_threshold=coverage_threshold,
    )
    return ScanCoordinator(context, expectations).run(page)

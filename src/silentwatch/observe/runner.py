"""Interaction runner: executes one interaction inside a bounded observation window.

State machine per interaction::

    INIT -> BEFORE_CAPTURE -> (EXTERNAL_BLOCKED)
         -> SENSORS_ARMED -> EXECUTING -> (TIMEOUT | ERROR)
         -> AFTER_CAPTURE -> ASSEMBLED

The execution step returns an Outcome (Success, Timeout or ExecutionError)
instead of raising. Only InfraFailure escapes ``run``.
"""

import hashlib
import logging
import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..errors import InfraFailure
from ..models import (
    ExecutionError,
    Interaction,
    Outcome,
    PageSnapshot,
    Success,
    Timeout,
    Trace,
    default_policy,
)
from ..sensors.bank import SensorBank, default_sensors
from ..silence import (
    SilenceTracker,
    EXTERNAL_BLOCKED,
    INTERACTION_TIMEOUT,
    NAVIGATION_TIMEOUT,
    SETTLE_TIMEOUT,
    IMPACT_UNKNOWN_BEHAVIOR,
)
from .budget import Budget
from .discovery import NON_NAVIGABLE_SCHEMES, origin_of
from .retry import RetryPolicy, match_transient_signature

logger = logging.getLogger(__name__)

# Browser/session faults: the page is gone, nothing more can be observed
INFRA_ERROR_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser has disconnected",
)

TIMEOUT_REASONS = {
    "click": INTERACTION_TIMEOUT,
    "navigation": NAVIGATION_TIMEOUT,
    "settle": SETTLE_TIMEOUT,
}

FORM_FILL_SCRIPT = """(selector) => {
  const form = document.querySelector(selector);
  if (!form) return [];
  const values = { email: 'user@example.com', number: '1', tel: '5550100', url: 'https://example.com', password: 'Passw0rd!' };
  const filled = [];
  for (const input of form.querySelectorAll('input, textarea')) {
    const type = (input.getAttribute('type') || 'text').toLowerCase();
    if (['hidden', 'submit', 'button', 'checkbox', 'radio', 'file'].includes(type) || input.disabled || input.readOnly) continue;
    input.value = values[type] || 'test';
    input.dispatchEvent(new Event('input', { bubbles: true }));
    input.dispatchEvent(new Event('change', { bubbles: true }));
    filled.push(input.name || input.id || type);
  }
  return filled;
}"""

FORM_SUBMIT_SCRIPT = """(selector) => {
  const form = document.querySelector(selector);
  if (!form) return false;
  if (typeof form.requestSubmit === 'function') form.requestSubmit(); else form.submit();
  return true;
}"""


class RunnerState(str, Enum):
    INIT = "INIT"
    BEFORE_CAPTURE = "BEFORE_CAPTURE"
    EXTERNAL_BLOCKED = "EXTERNAL_BLOCKED"
    SENSORS_ARMED = "SENSORS_ARMED"
    EXECUTING = "EXECUTING"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"
    AFTER_CAPTURE = "AFTER_CAPTURE"
    ASSEMBLED = "ASSEMBLED"


def compute_dom_hash(html: str) -> str:
    return hashlib.sha256(html.encode("utf-8")).hexdigest()[:16]


def is_infra_error(error: BaseException) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in INFRA_ERROR_MARKERS)


def classify_error(error: BaseException) -> str:
    """Short reason code for a failed action. Never a stack trace."""
    signature = match_transient_signature(error)
    if signature:
        return signature
    message = str(error).lower()
    if "not visible" in message:
        return "element_not_visible"
    if "no element" in message or "waiting for selector" in message or "failed to find" in message:
        return "element_not_found"
    if "is disabled" in message or "not enabled" in message:
        return "element_disabled"
    return "action_failed"


def expects_navigation(interaction: Interaction) -> bool:
    """Links with a real href and forms with an action wait for a page transition."""
    if interaction.type == "link":
        href = interaction.href or ""
        return bool(href) and not href.startswith("#") and not href.startswith(NON_NAVIGABLE_SCHEMES)
    if interaction.type == "form":
        return bool(interaction.form_action)
    return False


def infer_http_status(network: Dict[str, Any], navigation: Dict[str, Any]) -> Optional[int]:
    """HTTP status of the page after the window, when the evidence supports one."""
    if network.get("last_document_status") is not None:
        return network["last_document_status"]
    if network.get("total_requests", 0) > 0 and network.get("failed_requests", 0) == 0:
        return 200
    if navigation.get("url_changed") and not navigation.get("blocked_navigations"):
        return 200
    return None


class InteractionRunner:
    """Runs single interactions against one shared page, sequentially."""

    def __init__(self, budget: Budget, base_url: str,
                 silence: Optional[SilenceTracker] = None,
                 retry: Optional[RetryPolicy] = None,
                 screenshots_dir: str = "screenshots",
                 sensor_factory: Callable[..., List] = default_sensors,
                 clock: Callable[[], float] = time.monotonic):
        self.budget = budget
        self.base_url = base_url
        self.base_origin = origin_of(base_url)
        self.silence = silence if silence is not None else SilenceTracker()
        self.retry = retry if retry is not None else RetryPolicy()
        self.screenshots_dir = screenshots_dir
        self.sensor_factory = sensor_factory
        self._clock = clock
        self._run_stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        self.state = RunnerState.INIT
        self.transitions: List[RunnerState] = []
        os.makedirs(screenshots_dir, exist_ok=True)

    def _enter(self, state: RunnerState) -> None:
        self.state = state
        self.transitions.append(state)

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def _screenshot_path(self, side: str, index: int, repeat: bool) -> str:
        suffix = "-repeat" if repeat else ""
        return os.path.join(self.screenshots_dir, f"{side}-{self._run_stamp}-{index}{suffix}.png")

    def _dom_hash(self, page) -> str:
        return compute_dom_hash(page.content())

    def _capture_before(self, page, index: int, repeat: bool) -> PageSnapshot:
        path = self._screenshot_path("before", index, repeat)
        try:
            page.screenshot(path=path)
            return PageSnapshot(url=page.url, screenshot=path, dom_hash=self._dom_hash(page), title=page.title())
        except PlaywrightError as e:
            raise InfraFailure("before-capture failed; page unavailable", e)

    def _capture_after(self, page, index: int, repeat: bool) -> PageSnapshot:
        """Best-effort after capture. Missing parts stay empty and are logged."""
        path = self._screenshot_path("after", index, repeat)
        snapshot = PageSnapshot(url=page.url, screenshot=path)
        try:
            page.screenshot(path=path)
        except PlaywrightError as e:
            if is_infra_error(e):
                raise InfraFailure("after-capture failed; page closed", e)
            logger.warning(f"After screenshot failed for interaction {index}: {type(e).__name__}")
            snapshot.screenshot = ""
        try:
            snapshot.dom_hash = self._dom_hash(page)
            snapshot.title = page.title()
        except PlaywrightError as e:
            if is_infra_error(e):
                raise InfraFailure("after-capture failed; page closed", e)
            logger.warning(f"After DOM capture failed for interaction {index}: {type(e).__name__}")
        return snapshot

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _perform_action(self, page, interaction: Interaction) -> None:
        timeout = self.budget.interaction_timeout_ms
        if interaction.type == "form":
            page.evaluate(FORM_FILL_SCRIPT, interaction.selector)
            submit_selector = f"{interaction.selector} [type=submit]"
            if page.query_selector(submit_selector) is not None:
                page.click(submit_selector, timeout=timeout)
            else:
                page.evaluate(FORM_SUBMIT_SCRIPT, interaction.selector)
        else:
            page.click(interaction.selector, timeout=timeout)

    def _execute(self, page, interaction: Interaction, trace: Trace) -> Outcome:
        before_url = page.url
        label = f"{interaction.type} {interaction.selector}"
        try:
            result = self.retry.run(lambda: self._perform_action(page, interaction), label)
            trace.retries.extend(e.to_dict() for e in result.events)
        except PlaywrightTimeoutError:
            return Timeout(phase="click", reason=INTERACTION_TIMEOUT)
        except PlaywrightError as e:
            if is_infra_error(e):
                raise InfraFailure("browser session lost during interaction", e)
            return ExecutionError(reason=classify_error(e))

        if not expects_navigation(interaction):
            return Success(navigated=page.url != before_url)

        try:
            page.wait_for_url(lambda url: url != before_url,
                              timeout=self.budget.navigation_timeout_ms,
                              wait_until="domcontentloaded")
        except PlaywrightTimeoutError:
            return Timeout(phase="navigation", reason=NAVIGATION_TIMEOUT)
        except PlaywrightError as e:
            if is_infra_error(e):
                raise InfraFailure("browser session lost during navigation", e)
            return ExecutionError(reason=classify_error(e))
        return Success(navigated=True)

    def _settle(self, page) -> Tuple[List[str], Optional[Timeout]]:
        """Three DOM samples (0, mid, end) and a short network-quiet wait."""
        started = self._clock()
        samples = [self._dom_hash(page)]
        page.wait_for_timeout(self.budget.settle_mid_ms)
        samples.append(self._dom_hash(page))
        page.wait_for_timeout(max(0, self.budget.settle_end_ms - self.budget.settle_mid_ms))
        samples.append(self._dom_hash(page))

        try:
            page.wait_for_load_state("networkidle", timeout=self.budget.settle_network_wait_ms)
        except PlaywrightTimeoutError:
            logger.debug("Network still active after settle wait")

        if (self._clock() - started) * 1000 > self.budget.settle_timeout_ms:
            return samples, Timeout(phase="settle", reason=SETTLE_TIMEOUT)
        return samples, None

    def _reverse_external_navigation(self, page, before_url: str, trace: Trace) -> None:
        """Return to ``before_url`` after an in-window off-origin navigation."""
        blocked_url = page.url
        try:
            page.go_back(timeout=self.budget.navigation_timeout_ms, wait_until="domcontentloaded")
        except PlaywrightError as e:
            if is_infra_error(e):
                raise InfraFailure("browser session lost while reversing navigation", e)
            logger.warning(f"go_back failed, reloading {before_url}")
        if origin_of(page.url) != self.base_origin:
            try:
                page.goto(before_url, timeout=self.budget.navigation_timeout_ms, wait_until="domcontentloaded")
            except PlaywrightError as e:
                raise InfraFailure("could not return from off-origin navigation", e)

        trace.policy["external_navigation_blocked"] = True
        trace.policy["blocked_url"] = blocked_url
        self.silence.record(
            scope="safety",
            reason=EXTERNAL_BLOCKED,
            description=f"Off-origin navigation reversed: {blocked_url}",
            impact=IMPACT_UNKNOWN_BEHAVIOR,
            context={"trace_index": trace.index},
        )

    def _guard_origin(self, page, before_url: str, trace: Trace, bank: SensorBank) -> None:
        """Reverse any off-origin navigation before the window closes, whatever the outcome."""
        if origin_of(page.url) == self.base_origin:
            return
        self._reverse_external_navigation(page, before_url, trace)
        nav = bank.get("navigation")
        if nav is not None:
            nav.blocked_navigations += 1

    def _record_policy(self, trace: Trace, outcome: Outcome) -> RunnerState:
        """Apply the outcome to the trace policy. Returns the terminal state it implies."""
        if isinstance(outcome, Success):
            return RunnerState.ASSEMBLED
        if isinstance(outcome, Timeout):
            trace.policy["timeout"] = True
            trace.policy["reason"] = outcome.reason
            trace.policy["phase"] = outcome.phase
            self.silence.record(
                scope="interaction",
                reason=TIMEOUT_REASONS.get(outcome.phase, INTERACTION_TIMEOUT),
                description=f"{outcome.phase} timed out for {trace.interaction.selector}",
                impact=IMPACT_UNKNOWN_BEHAVIOR,
                context={"trace_index": trace.index, "phase": outcome.phase},
            )
            return RunnerState.TIMEOUT
        if isinstance(outcome, ExecutionError):
            trace.policy["execution_error"] = True
            trace.policy["reason"] = outcome.reason
            trace.policy["phase"] = "click"
            return RunnerState.ERROR
        raise TypeError(f"Unknown outcome: {outcome!r}")

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def run(self, page, interaction: Interaction, index: int, repeat: bool = False) -> Trace:
        """
        Execute one interaction and return its Trace.

        Raises:
            InfraFailure: if the browser session is lost
        """
        self.transitions = []
        self._enter(RunnerState.INIT)
        bank = SensorBank(self.sensor_factory(), silence=self.silence, trace_index=index)

        self._enter(RunnerState.BEFORE_CAPTURE)
        before = self._capture_before(page, index, repeat)
        bank.capture_before(page)

        trace = Trace(index=index, interaction=interaction, before=before,
                      after=PageSnapshot(url=before.url, screenshot=""),
                      policy=default_policy(), repeat=repeat)

        target = interaction.href or interaction.data_href
        if interaction.is_external and target:
            self._enter(RunnerState.EXTERNAL_BLOCKED)
            blocked_url = urljoin(before.url, target)
            trace.policy["external_navigation_blocked"] = True
            trace.policy["blocked_url"] = blocked_url
            self.silence.record(
                scope="safety",
                reason=EXTERNAL_BLOCKED,
                description=f"External navigation not performed: {blocked_url}",
                impact=IMPACT_UNKNOWN_BEHAVIOR,
                context={"trace_index": index},
            )
            trace.after = self._capture_after(page, index, repeat)
            trace.sensors = bank.empty_summaries()
            trace.final_state = RunnerState.EXTERNAL_BLOCKED.value
            logger.info(f"[{index}] {interaction.selector}: external navigation blocked")
            return trace

        self._enter(RunnerState.SENSORS_ARMED)
        bank.start_windows(page)

        self._enter(RunnerState.EXECUTING)
        outcome = self._execute(page, interaction, trace)
        self._guard_origin(page, before.url, trace, bank)

        samples: List[str] = []
        if isinstance(outcome, Success):
            try:
                samples, settle_timeout = self._settle(page)
            except PlaywrightError as e:
                if is_infra_error(e):
                    raise InfraFailure("browser session lost while settling", e)
                settle_timeout = Timeout(phase="settle", reason=SETTLE_TIMEOUT)
            if settle_timeout is not None:
                outcome = settle_timeout
            # Script navigations can land during the settle samples
            self._guard_origin(page, before.url, trace, bank)

        terminal = self._record_policy(trace, outcome)
        if terminal != RunnerState.ASSEMBLED:
            self._enter(terminal)

        bank.stop_windows(page)
        self._enter(RunnerState.AFTER_CAPTURE)
        bank.capture_after(page)
        trace.after = self._capture_after(page, index, repeat)
        trace.sensors = bank.summaries()
        trace.dom = {
            "settle": {
                "samples": samples,
                "dom_changed_during_settle": len(samples) >= 2 and samples[-1] != samples[0],
            }
        }
        trace.http_status = infer_http_status(trace.sensors.get("network", {}), trace.sensors.get("navigation", {}))

        if terminal == RunnerState.ASSEMBLED:
            self._enter(RunnerState.ASSEMBLED)
        trace.final_state = terminal.value

        logger.info(
            f"[{index}] {interaction.type} {interaction.selector}: {trace.final_state}"
            f"{' (' + trace.policy['reason'] + ')' if trace.policy.get('reason') else ''}"
        )
        return trace

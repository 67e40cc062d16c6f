"""Expectation matcher: binds expectations to interactions and classifies traces."""

import logging
from typing import List, Optional, Tuple
from urllib.parse import urljoin

from playwright.sync_api import Error as PlaywrightError

from ..errors import InfraFailure
from ..models import (
    Expectation,
    ExpectationType,
    Interaction,
    OutcomeStatus,
    Trace,
)
from ..observe.frontier import normalize_path
from ..observe.runner import is_infra_error
from ..silence import (
    AMBIGUOUS_SELECTOR,
    INVALID_SELECTOR,
    EXTERNAL_BLOCKED,
    SELECTOR_NOT_FOUND,
    SENSOR_UNAVAILABLE,
)

logger = logging.getLogger(__name__)

# Sensor whose summary a classification depends on
REQUIRED_SENSOR = {
    ExpectationType.NAVIGATION: "navigation",
    ExpectationType.NETWORK_ACTION: "network",
    ExpectationType.VALIDATION_BLOCK: "ui_signals",
    ExpectationType.STATE_ACTION: "state",
}

ELEMENT_TAG_SCRIPT = "(el) => el.tagName.toLowerCase()"


def evaluate_expectation(expectation: Expectation, trace: Trace) -> Tuple[OutcomeStatus, Optional[str]]:
    """
    Apply the outcome rule for the expectation type to one trace.

    Returns:
        Tuple of (status, reason). reason is None when VERIFIED.
    """
    sensors = trace.sensors
    before_path = normalize_path(trace.before.url)
    after_path = normalize_path(trace.after.url)

    if expectation.type == ExpectationType.NAVIGATION:
        target_path = normalize_path(urljoin(trace.before.url, expectation.target_path or ""))
        if after_path == target_path:
            return OutcomeStatus.VERIFIED, None
        url_changed = trace.url_changed or bool(sensors.get("navigation", {}).get("url_changed"))
        if url_changed:
            return OutcomeStatus.OBSERVED_BREAK, "navigation_target_mismatch"
        return OutcomeStatus.OBSERVED_BREAK, "navigation_not_observed"

    if expectation.type == ExpectationType.NETWORK_ACTION:
        network = sensors.get("network", {})
        urls = list(network.get("observed_request_urls") or [])
        if network.get("first_request_url"):
            urls.append(network["first_request_url"])
        # Substring match, not equality
        if expectation.url and any(expectation.url in url for url in urls):
            return OutcomeStatus.VERIFIED, None
        if network.get("total_requests", 0) > 0:
            return OutcomeStatus.OBSERVED_BREAK, "network_request_url_mismatch"
        return OutcomeStatus.OBSERVED_BREAK, "network_request_missing"

    if expectation.type == ExpectationType.VALIDATION_BLOCK:
        feedback = bool(sensors.get("ui_signals", {}).get("after", {}).get("validation_feedback_detected"))
        blocked = before_path == after_path and not trace.url_changed and sensors.get("network", {}).get("total_requests", 0) == 0
        if feedback and blocked:
            return OutcomeStatus.VERIFIED, None
        if not feedback:
            return OutcomeStatus.OBSERVED_BREAK, "validation_feedback_missing"
        return OutcomeStatus.OBSERVED_BREAK, "validation_not_blocked"

    if expectation.type == ExpectationType.STATE_ACTION:
        state = sensors.get("state", {})
        # The reported list is capped; membership is checked on the full diff
        changed = state.get("changed_all") or state.get("changed") or []
        if expectation.state_key in changed:
            return OutcomeStatus.VERIFIED, None
        return OutcomeStatus.OBSERVED_BREAK, "state_not_changed"

    raise ValueError(f"Unknown expectation type: {expectation.type}")


def classify_trace(expectation: Expectation, trace: Trace) -> Tuple[OutcomeStatus, Optional[str]]:
    """Outcome for an expectation, turning policy decisions into coverage gaps.

    A blocked navigation, a click that never happened, or a missing sensor
    summary gives no evidence either way, so no break is claimed.
    """
    policy = trace.policy
    if policy.get("external_navigation_blocked") and trace.final_state == "EXTERNAL_BLOCKED":
        return OutcomeStatus.COVERAGE_GAP, EXTERNAL_BLOCKED
    if policy.get("execution_error"):
        return OutcomeStatus.COVERAGE_GAP, f"execution_error:{policy.get('reason')}"
    if policy.get("timeout") and policy.get("phase") == "click":
        return OutcomeStatus.COVERAGE_GAP, policy.get("reason")

    required = REQUIRED_SENSOR[expectation.type]
    if not trace.sensors.get(required, {}).get("available"):
        return OutcomeStatus.COVERAGE_GAP, SENSOR_UNAVAILABLE

    return evaluate_expectation(expectation, trace)


def _navigation_targets(interaction: Interaction) -> List[str]:
    base = interaction.page_url or ""
    return [normalize_path(urljoin(base, target))
            for target in (interaction.data_href, interaction.href, interaction.form_action)
            if target and not target.startswith("#")]


def expectation_applies_to_page(expectation: Expectation, page_url: str) -> bool:
    if not expectation.from_path:
        return True
    return normalize_path(expectation.from_path) == normalize_path(page_url)


def bind_expectation(expectation: Expectation, candidates: List[Interaction],
                     page=None) -> Tuple[Optional[Interaction], Optional[str]]:
    """
    Locate the interaction an expectation claims.

    Returns:
        Tuple of (interaction, gap_reason). Exactly one of the two is set.
    """
    if expectation.selector_hint:
        matches = [c for c in candidates if c.selector == expectation.selector_hint]
        if len(matches) == 1:
            return matches[0], None
        if len(matches) > 1:
            return None, AMBIGUOUS_SELECTOR
        if page is None:
            return None, SELECTOR_NOT_FOUND
        return _bind_from_page(expectation, page)

    if expectation.type == ExpectationType.NAVIGATION:
        target = normalize_path(expectation.target_path)
        matches = [c for c in candidates if target in _navigation_targets(c) and not c.is_external]
        if len(matches) == 1:
            return matches[0], None
        if len(matches) > 1:
            return None, AMBIGUOUS_SELECTOR

    return None, SELECTOR_NOT_FOUND


def _bind_from_page(expectation: Expectation, page) -> Tuple[Optional[Interaction], Optional[str]]:
    """Resolve a selector hint that discovery did not produce verbatim.

    Playwright rejects selectors it cannot parse (``button:contains(Save)``)
    with an Error; that is a gap for this expectation, not a scan failure.
    """
    try:
        handles = page.query_selector_all(expectation.selector_hint)
    except PlaywrightError as e:
        if is_infra_error(e):
            raise InfraFailure(f"Browser lost while resolving {expectation.selector_hint!r}", e)
        logger.warning(f"Expectation {expectation.id}: selector {expectation.selector_hint!r} rejected: {e}")
        return None, INVALID_SELECTOR
    if not handles:
        return None, SELECTOR_NOT_FOUND
    if len(handles) > 1:
        return None, AMBIGUOUS_SELECTOR

    handle = handles[0]
    try:
        tag = handle.evaluate(ELEMENT_TAG_SCRIPT)
        kind = {"a": "link", "form": "form", "button": "button"}.get(tag, "other")
        href = handle.get_attribute("href") if kind == "link" else None
        form_action = handle.get_attribute("action") if kind == "form" else None
        data_href = handle.get_attribute("data-href")
    except PlaywrightError as e:
        if is_infra_error(e):
            raise InfraFailure(f"Browser lost while resolving {expectation.selector_hint!r}", e)
        # Detached between query and read
        return None, SELECTOR_NOT_FOUND

    interaction = Interaction(
        type=kind,
        selector=expectation.selector_hint,
        href=href,
        data_href=data_href,
        form_action=form_action,
        page_url=page.url,
    )
    return interaction, None

"""Derive weak OBSERVED expectations from traces that no PROVEN expectation covers.

An observed expectation is built from what the trace itself shows
(attributes, URL changes, requests, validation feedback, state keys). It is
never upgraded to PROVEN and earns at most one confirmation repeat.
"""

import hashlib
import re
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlparse

from ..models import Expectation, ExpectationType, Interaction, Strength, Trace
from ..observe.discovery import NON_NAVIGABLE_SCHEMES, is_external_url
from ..observe.frontier import normalize_path

TEMPLATE_CHARS = re.compile(r"[{}`*\[\]]")
TEMPLATE_PARAM = re.compile(r":\w+")


def has_template_token(url: str) -> bool:
    path = urlparse(url).path if "://" in url else url
    return bool(TEMPLATE_CHARS.search(path) or TEMPLATE_PARAM.search(path))


def _observed_id(kind: str, interaction: Interaction, target: str) -> str:
    digest = hashlib.sha256(f"{interaction.key}|{kind}|{target}".encode("utf-8")).hexdigest()[:12]
    return f"obs-{kind}-{digest}"


def _observed(kind: ExpectationType, interaction: Interaction, trace: Trace, target: str,
              attribute_source: str, **target_fields) -> Expectation:
    return Expectation(
        id=_observed_id(kind.value, interaction, target),
        type=kind,
        strength=Strength.OBSERVED,
        evidence={
            "attribute_source": attribute_source,
            "selector": interaction.selector,
            "source_page": trace.before.url,
            "trace_index": trace.index,
        },
        selector_hint=interaction.selector,
        from_path=normalize_path(trace.before.url),
        **target_fields,
    )


def _resolve_internal_path(target: Optional[str], trace: Trace, base_url: str) -> Optional[str]:
    if not target or target.startswith(NON_NAVIGABLE_SCHEMES) or target.startswith("#"):
        return None
    if is_external_url(target, base_url):
        return None
    return normalize_path(urljoin(trace.before.url, target))


def build_navigation_expectation(interaction: Interaction, trace: Trace, base_url: str) -> Optional[Expectation]:
    for attribute_source, target in (("data-href", interaction.data_href),
                                     ("href", interaction.href),
                                     ("action", interaction.form_action)):
        if target:
            path = _resolve_internal_path(target, trace, base_url)
            if path:
                return _observed(ExpectationType.NAVIGATION, interaction, trace, path,
                                 attribute_source, target_path=path)
            break

    navigation = trace.sensors.get("navigation", {})
    if navigation.get("url_changed") and navigation.get("after_url"):
        path = _resolve_internal_path(navigation["after_url"], trace, base_url)
        if path:
            return _observed(ExpectationType.NAVIGATION, interaction, trace, path,
                             "navigation_event", target_path=path)
    return None


def build_network_expectation(interaction: Interaction, trace: Trace, base_url: str) -> Optional[Expectation]:
    network = trace.sensors.get("network", {})
    if network.get("total_requests", 0) <= 0:
        return None
    observed_urls = network.get("observed_request_urls") or []
    url = network.get("first_request_url") or (observed_urls[0] if observed_urls else None)
    if not url or has_template_token(url):
        return None
    return _observed(ExpectationType.NETWORK_ACTION, interaction, trace, url, "network_request", url=url)


def build_validation_expectation(interaction: Interaction, trace: Trace, base_url: str) -> Optional[Expectation]:
    ui_after = trace.sensors.get("ui_signals", {}).get("after", {})
    if not ui_after.get("validation_feedback_detected"):
        return None
    if trace.sensors.get("network", {}).get("total_requests", 0) > 0 or trace.url_changed:
        return None
    path = normalize_path(trace.before.url)
    return _observed(ExpectationType.VALIDATION_BLOCK, interaction, trace, path,
                     "validation_feedback", target_path=path)


def build_state_expectation(interaction: Interaction, trace: Trace, base_url: str) -> Optional[Expectation]:
    changed = trace.sensors.get("state", {}).get("changed") or []
    if not changed:
        return None
    key = changed[0]
    return _observed(ExpectationType.STATE_ACTION, interaction, trace, key, "state_change", state_key=key)


BUILDERS: List[Callable[[Interaction, Trace, str], Optional[Expectation]]] = [
    build_navigation_expectation,
    build_network_expectation,
    build_validation_expectation,
    build_state_expectation,
]


def derive_observed_expectation(interaction: Interaction, trace: Trace, base_url: str) -> Optional[Expectation]:
    """First expectation any builder can derive from the trace, in builder order."""
    if trace.policy.get("external_navigation_blocked") or trace.policy.get("execution_error"):
        return None
    if trace.policy.get("timeout") and trace.policy.get("phase") == "click":
        return None
    for build in BUILDERS:
        expectation = build(interaction, trace, base_url)
        if expectation is not None:
            return expectation
    return None


def should_repeat(expectation: Expectation, outcome_status: str, trace: Trace, already_repeated: bool) -> bool:
    """One confirmation repeat: VERIFIED, same page, non-navigation, not yet repeated."""
    if already_repeated or outcome_status != "VERIFIED":
        return False
    if expectation.type == ExpectationType.NAVIGATION:
        return False
    return normalize_path(trace.before.url) == normalize_path(trace.after.url)

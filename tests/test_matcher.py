"""
Tests for expectation binding, trace classification and observed
expectation derivation.
"""

import pytest
from playwright.sync_api import Error as PlaywrightError

from silentwatch.detect.matcher import (
    bind_expectation,
    classify_trace,
    evaluate_expectation,
    expectation_applies_to_page,
)
from silentwatch.detect.observed import (
    derive_observed_expectation,
    has_template_token,
    should_repeat,
)
from silentwatch.errors import ExpectationError, InfraFailure
from silentwatch.models import (
    Expectation,
    ExpectationType,
    Interaction,
    OutcomeStatus,
    PageSnapshot,
    Strength,
    Trace,
)
from silentwatch.sensors import default_sensors
from silentwatch.silence import (
    AMBIGUOUS_SELECTOR,
    EXTERNAL_BLOCKED,
    INVALID_SELECTOR,
    SELECTOR_NOT_FOUND,
    SENSOR_UNAVAILABLE,
)

from fakes import FakeElementHandle, FakePage

BASE = "http://localhost:3000/"


def make_sensors(**overrides):
    sensors = {}
    for sensor in default_sensors():
        summary = sensor.empty_summary()
        summary["available"] = True
        sensors[sensor.name] = summary
    for name, values in overrides.items():
        sensors[name].update(values)
    return sensors


def make_trace(before_url=BASE, after_url=BASE, interaction=None, **sensor_overrides):
    return Trace(
        index=0,
        interaction=interaction or Interaction(type="button", selector="#submit", page_url=before_url),
        before=PageSnapshot(url=before_url, screenshot="before.png", dom_hash="aaaa"),
        after=PageSnapshot(url=after_url, screenshot="after.png", dom_hash="aaaa"),
        sensors=make_sensors(**sensor_overrides),
    )


def make_expectation(exp_type=ExpectationType.NETWORK_ACTION, strength=Strength.PROVEN, **fields):
    defaults = {
        "id": "exp-1",
        "source_ref": "src/app/page.tsx:10:3",
    }
    if exp_type == ExpectationType.NETWORK_ACTION:
        defaults["url"] = "/api/submit"
    elif exp_type == ExpectationType.NAVIGATION:
        defaults["target_path"] = "/dashboard"
    elif exp_type == ExpectationType.STATE_ACTION:
        defaults["state_key"] = "cart"
    defaults.update(fields)
    return Expectation(type=exp_type, strength=strength, **defaults)


# =============================================================================
# Expectation model
# =============================================================================

class TestExpectationModel:
    """Tests for expectation construction rules."""

    def test_proven_requires_source(self):
        """PROVEN without sourceRef or evidence.source is rejected."""
        with pytest.raises(ExpectationError):
            make_expectation(source_ref=None)

    def test_evidence_source_accepted(self):
        """evidence.source satisfies the source requirement."""
        exp = make_expectation(source_ref=None, evidence={"source": "src/a.js:1:1"})

        assert exp.source == "src/a.js:1:1"

    def test_from_dict_camel_case(self):
        """camelCase keys from extractors are accepted."""
        exp = Expectation.from_dict({
            "id": "nav-1",
            "type": "navigation",
            "strength": "PROVEN",
            "targetPath": "/about",
            "sourceRef": "src/nav.tsx:4:2",
            "selectorHint": "#about",
        })

        assert exp.target == "/about"
        assert exp.selector_hint == "#about"

    def test_from_dict_missing_strength(self):
        """strength is required."""
        with pytest.raises(ExpectationError):
            Expectation.from_dict({"id": "x", "type": "navigation", "targetPath": "/a"})


# =============================================================================
# Outcome rules
# =============================================================================

class TestNetworkActionRule:
    """A button firing fetch('/api/submit') with no DOM change."""

    def test_verified_when_request_observed(self):
        """The request is seen: VERIFIED."""
        trace = make_trace(network={
            "total_requests": 1,
            "first_request_url": "http://localhost:3000/api/submit",
            "observed_request_urls": ["http://localhost:3000/api/submit"],
        })

        assert evaluate_expectation(make_expectation(), trace) == (OutcomeStatus.VERIFIED, None)

    def test_missing_when_no_request(self):
        """No request at all: network_request_missing."""
        trace = make_trace()

        assert evaluate_expectation(make_expectation(), trace) == (
            OutcomeStatus.OBSERVED_BREAK, "network_request_missing")

    def test_mismatch_when_other_request(self):
        """A different request: network_request_url_mismatch."""
        trace = make_trace(network={
            "total_requests": 1,
            "first_request_url": "http://localhost:3000/api/other",
            "observed_request_urls": ["http://localhost:3000/api/other"],
        })

        assert evaluate_expectation(make_expectation(), trace) == (
            OutcomeStatus.OBSERVED_BREAK, "network_request_url_mismatch")


class TestNavigationRule:
    """Tests for navigation outcomes."""

    def test_verified_on_target(self):
        """After-path equal to the target path is VERIFIED."""
        trace = make_trace(after_url=BASE + "dashboard/")

        status, _ = evaluate_expectation(make_expectation(ExpectationType.NAVIGATION), trace)

        assert status == OutcomeStatus.VERIFIED

    def test_target_mismatch(self):
        """URL changed elsewhere: navigation_target_mismatch."""
        trace = make_trace(after_url=BASE + "login")

        assert evaluate_expectation(make_expectation(ExpectationType.NAVIGATION), trace) == (
            OutcomeStatus.OBSERVED_BREAK, "navigation_target_mismatch")

    def test_not_observed(self):
        """URL unchanged: navigation_not_observed."""
        trace = make_trace()

        assert evaluate_expectation(make_expectation(ExpectationType.NAVIGATION), trace) == (
            OutcomeStatus.OBSERVED_BREAK, "navigation_not_observed")


class TestValidationAndStateRules:
    """Tests for validation_block and state_action outcomes."""

    def test_validation_verified(self):
        """Feedback, same URL and zero requests is VERIFIED."""
        trace = make_trace(ui_signals={"after": {"validation_feedback_detected": True}})
        exp = make_expectation(ExpectationType.VALIDATION_BLOCK)

        assert evaluate_expectation(exp, trace)[0] == OutcomeStatus.VERIFIED

    def test_validation_not_blocked(self):
        """Feedback shown but a request fired anyway is a break."""
        trace = make_trace(ui_signals={"after": {"validation_feedback_detected": True}},
                           network={"total_requests": 1})
        exp = make_expectation(ExpectationType.VALIDATION_BLOCK)

        assert evaluate_expectation(exp, trace) == (OutcomeStatus.OBSERVED_BREAK, "validation_not_blocked")

    def test_state_changed(self):
        """The expected key among changed keys is VERIFIED."""
        trace = make_trace(state={"changed": ["cart", "user"]})
        exp = make_expectation(ExpectationType.STATE_ACTION)

        assert evaluate_expectation(exp, trace)[0] == OutcomeStatus.VERIFIED

    def test_state_not_changed(self):
        """The key absent is state_not_changed."""
        trace = make_trace(state={"changed": ["user"]})
        exp = make_expectation(ExpectationType.STATE_ACTION)

        assert evaluate_expectation(exp, trace) == (OutcomeStatus.OBSERVED_BREAK, "state_not_changed")

    def test_state_key_beyond_reported_cap(self):
        """The expected key is found in the full diff even past the ten reported keys."""
        keys = list("abcdefghijk")
        trace = make_trace(state={"changed": keys[:10], "changed_all": keys})
        exp = make_expectation(ExpectationType.STATE_ACTION, state_key="k")

        assert evaluate_expectation(exp, trace) == (OutcomeStatus.VERIFIED, None)


class TestClassifyTrace:
    """Tests for policy-driven coverage gaps."""

    def test_external_blocked_is_gap(self):
        """Blocked external navigation gives no evidence."""
        trace = make_trace()
        trace.policy["external_navigation_blocked"] = True
        trace.final_state = "EXTERNAL_BLOCKED"

        assert classify_trace(make_expectation(), trace) == (OutcomeStatus.COVERAGE_GAP, EXTERNAL_BLOCKED)

    def test_execution_error_is_gap(self):
        """A click that failed is a gap, not a break."""
        trace = make_trace()
        trace.policy.update(execution_error=True, reason="element_not_visible")

        status, reason = classify_trace(make_expectation(), trace)

        assert status == OutcomeStatus.COVERAGE_GAP
        assert reason == "execution_error:element_not_visible"

    def test_missing_required_sensor_is_gap(self):
        """Without the network summary no network claim is made."""
        trace = make_trace(network={"available": False})

        assert classify_trace(make_expectation(), trace) == (OutcomeStatus.COVERAGE_GAP, SENSOR_UNAVAILABLE)

    def test_navigation_timeout_still_evaluated(self):
        """A navigation timeout is evidence the navigation did not happen."""
        trace = make_trace()
        trace.policy.update(timeout=True, phase="navigation", reason="navigation_timeout")

        status, reason = classify_trace(make_expectation(ExpectationType.NAVIGATION), trace)

        assert status == OutcomeStatus.OBSERVED_BREAK
        assert reason == "navigation_not_observed"


# =============================================================================
# Binding
# =============================================================================

class TestBindExpectation:
    """Tests for locating an expectation's interaction."""

    def test_bind_by_selector_hint(self):
        """A unique selector hint binds directly."""
        candidates = [Interaction(type="button", selector="#submit"), Interaction(type="button", selector="#x")]
        exp = make_expectation(selector_hint="#submit")

        interaction, gap = bind_expectation(exp, candidates)

        assert interaction.selector == "#submit"
        assert gap is None

    def test_hint_not_found_without_page(self):
        """An unknown hint without a page is selector_not_found."""
        exp = make_expectation(selector_hint="#missing")

        assert bind_expectation(exp, []) == (None, SELECTOR_NOT_FOUND)

    def test_hint_ambiguous_on_page(self):
        """A hint matching several elements is ambiguous."""
        page = FakePage(BASE)
        page.selector_matches[".btn"] = [FakeElementHandle(), FakeElementHandle()]
        exp = make_expectation(selector_hint=".btn")

        assert bind_expectation(exp, [], page) == (None, AMBIGUOUS_SELECTOR)

    def test_hint_resolved_from_page(self):
        """A hint discovery missed is resolved through the page."""
        page = FakePage(BASE)
        page.selector_matches["form.login"] = [FakeElementHandle("form", {"action": "/login"})]
        exp = make_expectation(selector_hint="form.login")

        interaction, gap = bind_expectation(exp, [], page)

        assert gap is None
        assert interaction.type == "form"
        assert interaction.form_action == "/login"

    def test_unparseable_hint_is_invalid_selector(self):
        """A selector Playwright rejects is a gap for that expectation only."""
        page = FakePage(BASE)
        page.selector_errors["button:contains(Save)"] = PlaywrightError(
            'Unexpected token "(" while parsing selector "button:contains(Save)"')
        exp = make_expectation(selector_hint="button:contains(Save)")

        assert bind_expectation(exp, [], page) == (None, INVALID_SELECTOR)

    def test_closed_browser_while_resolving_is_infra(self):
        """Losing the browser while resolving a hint is an infra failure."""
        page = FakePage(BASE)
        page.selector_errors["#save"] = PlaywrightError("Target page, context or browser has been closed")
        exp = make_expectation(selector_hint="#save")

        with pytest.raises(InfraFailure):
            bind_expectation(exp, [], page)

    def test_navigation_by_target_path(self):
        """Navigation expectations bind to the single link to their target."""
        candidates = [
            Interaction(type="link", selector="#a", href="/about", page_url=BASE),
            Interaction(type="link", selector="#d", href="/dashboard", page_url=BASE),
        ]

        interaction, _ = bind_expectation(make_expectation(ExpectationType.NAVIGATION), candidates)

        assert interaction.selector == "#d"

    def test_navigation_ambiguous(self):
        """Two links to the target are ambiguous."""
        candidates = [
            Interaction(type="link", selector="#d1", href="/dashboard", page_url=BASE),
            Interaction(type="link", selector="#d2", href="/dashboard/", page_url=BASE),
        ]

        assert bind_expectation(make_expectation(ExpectationType.NAVIGATION), candidates) == (
            None, AMBIGUOUS_SELECTOR)

    def test_page_claim(self):
        """from_path restricts which page an expectation binds on."""
        exp = make_expectation(from_path="/cart")

        assert expectation_applies_to_page(exp, BASE + "cart/")
        assert not expectation_applies_to_page(exp, BASE)


# =============================================================================
# Observed expectations
# =============================================================================

class TestObservedDerivation:
    """Tests for post-hoc OBSERVED expectations."""

    def test_navigation_from_href(self):
        """A link's href yields an OBSERVED navigation expectation."""
        interaction = Interaction(type="link", selector="#about", href="/about", page_url=BASE)
        trace = make_trace(interaction=interaction)

        exp = derive_observed_expectation(interaction, trace, BASE)

        assert exp.type == ExpectationType.NAVIGATION
        assert exp.strength == Strength.OBSERVED
        assert exp.target_path == "/about"
        assert exp.evidence["attribute_source"] == "href"

    def test_data_href_preferred(self):
        """data-href wins over href."""
        interaction = Interaction(type="link", selector="#x", href="/a", data_href="/b", page_url=BASE)

        exp = derive_observed_expectation(interaction, make_trace(interaction=interaction), BASE)

        assert exp.target_path == "/b"

    def test_network_from_first_request(self):
        """The first observed request becomes a network expectation."""
        interaction = Interaction(type="button", selector="#save", page_url=BASE)
        trace = make_trace(interaction=interaction, network={
            "total_requests": 2,
            "first_request_url": "http://localhost:3000/api/save",
            "observed_request_urls": ["http://localhost:3000/api/save", "http://localhost:3000/api/log"],
        })

        exp = derive_observed_expectation(interaction, trace, BASE)

        assert exp.type == ExpectationType.NETWORK_ACTION
        assert exp.url == "http://localhost:3000/api/save"

    def test_templated_url_skipped(self):
        """URLs with template tokens are not expectations."""
        assert has_template_token("/api/users/:id")
        assert has_template_token("/api/${id}")
        assert not has_template_token("http://localhost:3000/api/users/7")

    def test_validation_requires_no_requests(self):
        """Validation feedback with traffic is not a validation expectation."""
        interaction = Interaction(type="form", selector="form", page_url=BASE)
        trace = make_trace(interaction=interaction,
                           ui_signals={"after": {"validation_feedback_detected": True}},
                           network={"total_requests": 0})

        exp = derive_observed_expectation(interaction, trace, BASE)

        assert exp.type == ExpectationType.VALIDATION_BLOCK

    def test_state_from_first_changed_key(self):
        """The first changed state key is the state target."""
        interaction = Interaction(type="button", selector="#add", page_url=BASE)
        trace = make_trace(interaction=interaction, state={"changed": ["cart", "user"]})

        exp = derive_observed_expectation(interaction, trace, BASE)

        assert exp.state_key == "cart"

    def test_nothing_observed(self):
        """A trace with no effect derives nothing."""
        interaction = Interaction(type="button", selector="#noop", page_url=BASE)

        assert derive_observed_expectation(interaction, make_trace(interaction=interaction), BASE) is None

    def test_blocked_trace_derives_nothing(self):
        """Blocked or failed traces are not evidence."""
        interaction = Interaction(type="link", selector="#ext", href="/a", page_url=BASE)
        trace = make_trace(interaction=interaction)
        trace.policy["external_navigation_blocked"] = True

        assert derive_observed_expectation(interaction, trace, BASE) is None


class TestShouldRepeat:
    """Tests for the bounded confirmation repeat."""

    def test_repeat_verified_same_page(self):
        """A verified non-navigation expectation on the same page repeats once."""
        exp = make_expectation(strength=Strength.OBSERVED, source_ref=None, url="/api/save")

        assert should_repeat(exp, "VERIFIED", make_trace(), already_repeated=False)
        assert not should_repeat(exp, "VERIFIED", make_trace(), already_repeated=True)

    def test_no_repeat_after_page_change(self):
        """An interaction that left the page is not repeated."""
        exp = make_expectation(strength=Strength.OBSERVED, source_ref=None, url="/api/save")

        assert not should_repeat(exp, "VERIFIED", make_trace(after_url=BASE + "other"), already_repeated=False)

    def test_no_repeat_for_navigation(self):
        """Navigation expectations never repeat."""
        exp = make_expectation(ExpectationType.NAVIGATION, strength=Strength.OBSERVED, source_ref=None)

        assert not should_repeat(exp, "VERIFIED", make_trace(), already_repeated=False)

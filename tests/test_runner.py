"""
Tests for the interaction runner's observation window.

Whatever happens during execution, the runner returns a Trace of the same
shape: before/after set, every sensor key present, policy flags explaining
any non-success outcome.
"""

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from silentwatch.errors import InfraFailure
from silentwatch.models import Interaction
from silentwatch.observe.budget import Budget
from silentwatch.observe.retry import RetryPolicy
from silentwatch.observe.runner import (
    InteractionRunner,
    RunnerState,
    classify_error,
    expects_navigation,
    infer_http_status,
)
from silentwatch.sensors import SENSOR_ORDER, default_sensors
from silentwatch.silence import EXTERNAL_BLOCKED, INTERACTION_TIMEOUT, NAVIGATION_TIMEOUT, SilenceTracker

from fakes import FakePage

BASE = "http://localhost:3000/"


def make_runner(tmp_path, silence=None, budget=None, retry=None):
    return InteractionRunner(
        budget=budget or Budget(),
        base_url=BASE,
        silence=silence or SilenceTracker(),
        retry=retry or RetryPolicy(backoff_ms=0, sleep=lambda s: None),
        screenshots_dir=str(tmp_path / "shots"),
        sensor_factory=lambda: default_sensors(loading_timeout_ms=0),
    )


def assert_uniform(trace):
    assert trace.before.url
    assert trace.after.url
    assert list(trace.sensors) == SENSOR_ORDER
    assert all("available" in s for s in trace.sensors.values())
    assert set(trace.policy) == {"timeout", "external_navigation_blocked", "blocked_url",
                                 "execution_error", "reason", "phase"}
    assert "dom_changed_during_settle" in trace.dom["settle"]


# =============================================================================
# Helpers
# =============================================================================

class TestRunnerHelpers:
    """Tests for small runner helpers."""

    def test_expects_navigation(self):
        """Only real links and forms with an action wait for navigation."""
        assert expects_navigation(Interaction(type="link", selector="a", href="/next"))
        assert not expects_navigation(Interaction(type="link", selector="a", href="#top"))
        assert not expects_navigation(Interaction(type="link", selector="a", href="javascript:void(0)"))
        assert expects_navigation(Interaction(type="form", selector="f", form_action="/submit"))
        assert not expects_navigation(Interaction(type="button", selector="b"))

    def test_classify_error_short_codes(self):
        """Error reasons are short codes, never stack traces."""
        assert classify_error(PlaywrightError("Element is not visible")) == "element_not_visible"
        assert classify_error(PlaywrightError("Element is disabled")) == "element_disabled"
        assert classify_error(PlaywrightError("weird")) == "action_failed"

    def test_infer_http_status(self):
        """Document status wins; quiet successful traffic implies 200."""
        assert infer_http_status({"last_document_status": 404}, {}) == 404
        assert infer_http_status({"total_requests": 2, "failed_requests": 0}, {}) == 200
        assert infer_http_status({"total_requests": 0}, {}) is None


# =============================================================================
# Runner outcomes
# =============================================================================

class TestRunnerSuccess:
    """Tests for interactions that complete."""

    def test_button_with_request(self, tmp_path):
        """A click that fires a request is ASSEMBLED with the request counted."""
        page = FakePage(BASE)
        page.click_effects["#save"] = lambda p: p.fire_request(BASE + "api/submit")
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="button", selector="#save", page_url=BASE), index=0)

        assert_uniform(trace)
        assert trace.final_state == "ASSEMBLED"
        assert trace.sensors["network"]["total_requests"] == 1
        assert trace.http_status == 200
        assert runner.transitions[-1] == RunnerState.ASSEMBLED

    def test_link_navigates(self, tmp_path):
        """A link that changes the URL produces a navigated trace."""
        page = FakePage(BASE)
        page.click_effects["#about"] = lambda p: p.navigate_to(BASE + "about")
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="link", selector="#about", href="/about", page_url=BASE), index=1)

        assert_uniform(trace)
        assert trace.url_changed
        assert trace.after.url == BASE + "about"
        assert trace.sensors["navigation"]["url_changed"] is True

    def test_dom_change_during_settle(self, tmp_path):
        """A DOM that changes while settling is flagged."""
        page = FakePage(BASE)
        contents = iter(["<a>", "<a>", "<a>", "<b>", "<b>", "<b>"])
        page.content = lambda: next(contents, "<b>")
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="button", selector="#x", page_url=BASE), index=0)

        assert trace.dom["settle"]["dom_changed_during_settle"] is True

    def test_transient_click_retried(self, tmp_path):
        """A detached element is retried once and recorded on the trace."""
        page = FakePage(BASE)
        page.click_errors["#save"] = [PlaywrightError("Element is not attached to the DOM")]
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="button", selector="#save", page_url=BASE), index=0)

        assert trace.final_state == "ASSEMBLED"
        assert page.clicks == ["#save", "#save"]
        assert len(trace.retries) == 1
        assert trace.retries[0]["signature"] == "element_detached"


class TestRunnerNonSuccess:
    """Tests for timeouts, errors and blocked navigation."""

    def test_click_timeout(self, tmp_path):
        """A click timeout sets policy.timeout with phase click."""
        page = FakePage(BASE)
        page.click_errors["#slow"] = [PlaywrightTimeoutError("Timeout 10000ms exceeded.")]
        silence = SilenceTracker()
        runner = make_runner(tmp_path, silence=silence)

        trace = runner.run(page, Interaction(type="button", selector="#slow", page_url=BASE), index=2)

        assert_uniform(trace)
        assert trace.final_state == "TIMEOUT"
        assert trace.policy["timeout"] is True
        assert trace.policy["phase"] == "click"
        assert trace.policy["reason"] == INTERACTION_TIMEOUT
        assert silence.entries[-1].context["trace_index"] == 2

    def test_navigation_timeout(self, tmp_path):
        """A link whose click never navigates times out in the navigation phase."""
        page = FakePage(BASE)
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="link", selector="#dead", href="/next", page_url=BASE), index=0)

        assert_uniform(trace)
        assert trace.final_state == "TIMEOUT"
        assert trace.policy["phase"] == "navigation"
        assert trace.policy["reason"] == NAVIGATION_TIMEOUT
        assert trace.sensors["network"]["available"] is True

    def test_execution_error(self, tmp_path):
        """Non-timeout failures become execution_error with a short reason."""
        page = FakePage(BASE)
        page.click_errors["#gone"] = [PlaywrightError("Element is not visible")]
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="button", selector="#gone", page_url=BASE), index=0)

        assert_uniform(trace)
        assert trace.final_state == "ERROR"
        assert trace.policy["execution_error"] is True
        assert trace.policy["reason"] == "element_not_visible"

    def test_external_link_blocked(self, tmp_path):
        """Known external links are never clicked."""
        page = FakePage(BASE)
        silence = SilenceTracker()
        runner = make_runner(tmp_path, silence=silence)
        interaction = Interaction(type="link", selector="#ext", href="https://other.example.com/x",
                                  is_external=True, page_url=BASE)

        trace = runner.run(page, interaction, index=0)

        assert_uniform(trace)
        assert page.clicks == []
        assert trace.final_state == "EXTERNAL_BLOCKED"
        assert trace.policy["external_navigation_blocked"] is True
        assert trace.policy["blocked_url"] == "https://other.example.com/x"
        assert all(s["available"] is False for s in trace.sensors.values())
        assert silence.entries[0].reason == EXTERNAL_BLOCKED

    def test_cross_origin_navigation_reversed(self, tmp_path):
        """A button that lands off-origin is sent back and flagged."""
        page = FakePage(BASE)
        page.click_effects["#leave"] = lambda p: p.navigate_to("https://evil.example.com/")
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="button", selector="#leave", page_url=BASE), index=0)

        assert_uniform(trace)
        assert page.url == BASE
        assert trace.policy["external_navigation_blocked"] is True
        assert trace.policy["blocked_url"] == "https://evil.example.com/"
        assert trace.sensors["navigation"]["blocked_navigations"] == 1

    def test_navigation_during_settle_reversed(self, tmp_path):
        """A script navigation that lands while settling is still sent back."""
        page = FakePage(BASE)
        page.timeout_effects.append(lambda p: p.navigate_to("https://evil.example.com/landing"))
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="button", selector="#go", page_url=BASE), index=0)

        assert_uniform(trace)
        assert page.url == BASE
        assert trace.after.url == BASE
        assert trace.policy["external_navigation_blocked"] is True
        assert trace.policy["blocked_url"] == "https://evil.example.com/landing"

    def test_off_origin_navigation_timeout_reversed(self, tmp_path):
        """A link that leaves the origin and never finishes loading is sent back too."""
        page = FakePage(BASE)
        page.click_effects["#out"] = lambda p: p.navigate_to("https://slow.example.com/")

        def never_loads(predicate, timeout=None, **kwargs):
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")

        page.wait_for_url = never_loads
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="link", selector="#out", href="/next", page_url=BASE), index=0)

        assert_uniform(trace)
        assert page.url == BASE
        assert trace.policy["timeout"] is True
        assert trace.policy["phase"] == "navigation"
        assert trace.policy["external_navigation_blocked"] is True
        assert trace.policy["blocked_url"] == "https://slow.example.com/"

    def test_closed_page_is_infra_failure(self, tmp_path):
        """Losing the page before capture escapes as InfraFailure."""
        page = FakePage(BASE)
        page.closed = True
        runner = make_runner(tmp_path)

        with pytest.raises(InfraFailure):
            runner.run(page, Interaction(type="button", selector="#x", page_url=BASE), index=0)

    def test_after_screenshot_failure_leaves_empty_path(self, tmp_path):
        """A failed after screenshot keeps the trace with an empty screenshot."""
        page = FakePage(BASE)

        def break_screenshots(p):
            p.screenshot_error = PlaywrightError("screenshot failed")

        page.click_effects["#x"] = break_screenshots
        runner = make_runner(tmp_path)

        trace = runner.run(page, Interaction(type="button", selector="#x", page_url=BASE), index=0)

        assert trace.before.screenshot
        assert trace.after.screenshot == ""

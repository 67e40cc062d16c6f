"""
Tests for bounded retries of transient browser errors.
"""

import pytest

from silentwatch.observe.retry import RetryPolicy, match_transient_signature


class Flaky:
    """Raises the given errors in order, then returns a value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def make_policy(max_retries=2):
    return RetryPolicy(max_retries=max_retries, backoff_ms=0, sleep=lambda seconds: None)


class TestSignatures:
    """Tests for transient error classification."""

    def test_detached_element(self):
        """Detached element messages are transient."""
        error = RuntimeError("Element is not attached to the DOM")
        assert match_transient_signature(error) == "element_detached"

    def test_network_timeout(self):
        """Chromium network timeouts are transient."""
        error = RuntimeError("page.goto: net::ERR_TIMED_OUT at http://x")
        assert match_transient_signature(error) == "network_timeout"

    def test_other_errors_not_transient(self):
        """Unrelated errors have no signature."""
        assert match_transient_signature(ValueError("boom")) is None


class TestRetryPolicy:
    """Tests for RetryPolicy.run."""

    def test_detached_once_then_success(self):
        """One transient failure costs exactly one retry and one event."""
        policy = make_policy()
        operation = Flaky([RuntimeError("element is detached from the DOM")])

        result = policy.run(operation, "button #save")

        assert result.value == "ok"
        assert result.retries_used == 1
        assert operation.calls == 2
        assert len(policy.events) == 1
        assert policy.events[0].signature == "element_detached"
        assert policy.events[0].label == "button #save"

    def test_non_transient_raises_immediately(self):
        """Errors outside the signature set are not retried."""
        policy = make_policy()
        operation = Flaky([ValueError("bad selector")])

        with pytest.raises(ValueError):
            policy.run(operation, "x")

        assert operation.calls == 1
        assert policy.events == []

    def test_exhausted_raises_last_error(self):
        """After max_retries extra attempts the error propagates."""
        policy = make_policy(max_retries=2)
        operation = Flaky([RuntimeError("element is not attached")] * 3)

        with pytest.raises(RuntimeError):
            policy.run(operation, "x")

        assert operation.calls == 3
        assert len(policy.events) == 2

    def test_zero_retries(self):
        """With max_retries=0 the first transient failure propagates."""
        policy = make_policy(max_retries=0)
        operation = Flaky([RuntimeError("element is not attached")])

        with pytest.raises(RuntimeError):
            policy.run(operation, "x")

        assert operation.calls == 1

    def test_retry_logged(self, caplog):
        """Every retry leaves a progress note."""
        policy = make_policy()

        with caplog.at_level("WARNING"):
            policy.run(Flaky([RuntimeError("element is not attached")]), "link a")

        assert "Retry 1/2 for link a: element_detached" in caplog.text

    def test_to_dict(self):
        """Run metadata carries every retry event."""
        policy = make_policy()
        policy.run(Flaky([RuntimeError("intercepts pointer events")]), "x")

        data = policy.to_dict()

        assert data["total_retries"] == 1
        assert data["events"][0]["signature"] == "element_not_clickable"

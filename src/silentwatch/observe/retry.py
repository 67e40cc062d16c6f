"""Bounded retries for a closed set of transient browser errors.

Every retry is recorded as a RetryEvent and logged; retries never happen
silently. Errors outside TRANSIENT_ERROR_SIGNATURES propagate on the first
attempt.
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Extra attempts after the first one
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_MS = 250

# signature name -> lowercase message fragments
TRANSIENT_ERROR_SIGNATURES = {
    "element_detached": ("element is not attached", "element is detached", "detached from the dom", "not attached to the dom"),
    "element_not_clickable": ("is not clickable", "intercepts pointer events", "element is not stable"),
    "navigation_timeout": ("navigation timeout", "page.goto: timeout", "waiting for navigation"),
    "network_timeout": ("net::err_timed_out", "net::err_connection_timed_out", "net::err_network_changed"),
}


def match_transient_signature(error: BaseException) -> Optional[str]:
    """Name of the transient signature matching ``error``, or None."""
    message = str(error).lower()
    for signature, fragments in TRANSIENT_ERROR_SIGNATURES.items():
        if any(fragment in message for fragment in fragments):
            return signature
    return None


@dataclass
class RetryEvent:
    """One retry, recorded in run metadata."""
    label: str
    attempt: int
    max_attempts: int
    signature: str
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RetryResult:
    value: Any
    retries_used: int
    events: List[RetryEvent] = field(default_factory=list)


class RetryPolicy:
    """Runs operations with at most ``max_retries`` extra attempts."""

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES,
                 backoff_ms: int = DEFAULT_BACKOFF_MS,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_retries = max_retries
        self.backoff_ms = backoff_ms
        self._sleep = sleep
        self.events: List[RetryEvent] = []

    def run(self, operation: Callable[[], Any], label: str) -> RetryResult:
        """
        Call ``operation`` until it succeeds or retries run out.

        Args:
            operation: Zero-argument callable
            label: Short description used in events and progress notes

        Returns:
            RetryResult with the operation's value and retries used

        Raises:
            Whatever ``operation`` raised, if the error is not transient or
            every attempt failed
        """
        max_attempts = self.max_retries + 1
        call_events: List[RetryEvent] = []

        for attempt in range(1, max_attempts + 1):
            try:
                value = operation()
                return RetryResult(value=value, retries_used=attempt - 1, events=call_events)
            except Exception as e:
                signature = match_transient_signature(e)
                if signature is None or attempt == max_attempts:
                    if signature is not None:
                        logger.error(f"Failed after {max_attempts} attempts for {label}: {signature}")
                    raise

                event = RetryEvent(
                    label=label,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    signature=signature,
                    message=str(e).splitlines()[0][:200] if str(e) else signature,
                )
                call_events.append(event)
                self.events.append(event)
                logger.warning(f"Retry {attempt}/{self.max_retries} for {label}: {signature}")
                self._sleep(self.backoff_ms * attempt / 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "total_retries": len(self.events),
            "events": [e.to_dict() for e in self.events],
        }

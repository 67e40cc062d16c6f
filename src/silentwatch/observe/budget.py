"""Scan budget: immutable caps for one scan plus the elapsed-time check."""

import time
from dataclasses import dataclass, asdict, fields
from typing import Any, Callable, Dict, Optional

from ..errors import ConfigError

# Defaults (can be overridden by the budget: section of config/silentwatch.yaml)
DEFAULT_MAX_SCAN_DURATION_MS = 300_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 15_000
DEFAULT_INTERACTION_TIMEOUT_MS = 10_000
DEFAULT_SETTLE_TIMEOUT_MS = 5_000
DEFAULT_MAX_TOTAL_INTERACTIONS = 50
DEFAULT_MAX_UNIQUE_URLS = 20
DEFAULT_MAX_INTERACTIONS_PER_PAGE = 30
DEFAULT_STABILIZATION_SAMPLE_MID_MS = 300
DEFAULT_STABILIZATION_SAMPLE_END_MS = 900
DEFAULT_NETWORK_WAIT_MS = 400

# Upper bounds for settle sampling regardless of configuration
MAX_SETTLE_MID_MS = 300
MAX_SETTLE_END_MS = 900
MAX_NETWORK_WAIT_MS = 400


@dataclass(frozen=True)
class Budget:
    """Numeric caps for one scan. Never mutated after creation."""
    max_scan_duration_ms: int = DEFAULT_MAX_SCAN_DURATION_MS
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    interaction_timeout_ms: int = DEFAULT_INTERACTION_TIMEOUT_MS
    settle_timeout_ms: int = DEFAULT_SETTLE_TIMEOUT_MS
    max_total_interactions: int = DEFAULT_MAX_TOTAL_INTERACTIONS
    max_unique_urls: int = DEFAULT_MAX_UNIQUE_URLS
    max_interactions_per_page: int = DEFAULT_MAX_INTERACTIONS_PER_PAGE
    stabilization_sample_mid_ms: int = DEFAULT_STABILIZATION_SAMPLE_MID_MS
    stabilization_sample_end_ms: int = DEFAULT_STABILIZATION_SAMPLE_END_MS
    network_wait_ms: int = DEFAULT_NETWORK_WAIT_MS

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"Budget field {f.name} must be a non-negative integer, got {value!r}")
        if self.stabilization_sample_end_ms < self.stabilization_sample_mid_ms:
            raise ConfigError("stabilization_sample_end_ms must not be before stabilization_sample_mid_ms")

    @property
    def settle_mid_ms(self) -> int:
        return min(MAX_SETTLE_MID_MS, self.stabilization_sample_mid_ms)

    @property
    def settle_end_ms(self) -> int:
        return min(MAX_SETTLE_END_MS, self.stabilization_sample_end_ms)

    @property
    def settle_network_wait_ms(self) -> int:
        return min(MAX_NETWORK_WAIT_MS, self.network_wait_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, overrides: Optional[Dict[str, Any]] = None) -> "Budget":
        """Build a budget from defaults plus overrides. Unknown keys are rejected."""
        overrides = dict(overrides or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"Unknown budget keys: {', '.join(unknown)}")
        return cls(**overrides)


class BudgetClock:
    """Tracks elapsed scan time against ``max_scan_duration_ms``."""

    def __init__(self, budget: Budget, clock: Callable[[], float] = time.monotonic):
        self.budget = budget
        self._clock = clock
        self._started = clock()

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def is_time_exceeded(self) -> bool:
        return self.elapsed_ms() >= self.budget.max_scan_duration_ms

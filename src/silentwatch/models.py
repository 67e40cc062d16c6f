"""Core data model: expectations, interactions, traces, findings and verdicts.

Every record serializes through ``to_dict()`` so the artifact writer never
needs to know about dataclasses. Expectations are frozen once created.
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ExpectationError


class ExpectationType(str, Enum):
    NAVIGATION = "navigation"
    NETWORK_ACTION = "network_action"
    VALIDATION_BLOCK = "validation_block"
    STATE_ACTION = "state_action"


class Strength(str, Enum):
    """Evidentiary strength of an expectation."""
    PROVEN = "PROVEN"
    OBSERVED = "OBSERVED"


class OutcomeStatus(str, Enum):
    """Per-expectation classification."""
    VERIFIED = "VERIFIED"
    OBSERVED_BREAK = "OBSERVED_BREAK"
    COVERAGE_GAP = "COVERAGE_GAP"


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TruthState(str, Enum):
    SUCCESS = "SUCCESS"
    FINDINGS = "FINDINGS"
    INCOMPLETE = "INCOMPLETE"


# "src/app/page.tsx:12:5" -> file, line, column
SOURCE_REF_PATTERN = re.compile(r"^(?P<file>.*?)(?::(?P<line>\d+))?(?::(?P<column>\d+))?$")

# camelCase keys accepted from upstream extractors
_EXPECTATION_KEY_ALIASES = {
    "sourceRef": "source_ref",
    "selectorHint": "selector_hint",
    "targetPath": "target_path",
    "stateKey": "state_key",
    "fromPath": "from_path",
}


def parse_source_ref(source_ref: Optional[str]) -> Tuple[str, int, int]:
    """Split a ``file:line:column`` reference. Missing parts become 0."""
    if not source_ref:
        return "", 0, 0
    match = SOURCE_REF_PATTERN.match(str(source_ref))
    file_part = match.group("file") or ""
    line = int(match.group("line")) if match.group("line") else 0
    column = int(match.group("column")) if match.group("column") else 0
    return file_part, line, column


@dataclass(frozen=True)
class Expectation:
    """A claim that an interaction should produce a specific effect."""
    id: str
    type: ExpectationType
    strength: Strength
    target_path: Optional[str] = None
    url: Optional[str] = None
    state_key: Optional[str] = None
    source_ref: Optional[str] = None
    evidence: Dict[str, Any] = field(default_factory=dict)
    selector_hint: Optional[str] = None
    from_path: Optional[str] = None

    def __post_init__(self):
        if self.strength == Strength.PROVEN and not self.source:
            raise ExpectationError(self.id, "PROVEN expectation requires sourceRef or evidence.source")
        if self.target is None and self.type != ExpectationType.VALIDATION_BLOCK:
            raise ExpectationError(self.id, f"{self.type.value} expectation has no target")

    @property
    def source(self) -> Optional[str]:
        return self.source_ref or self.evidence.get("source")

    @property
    def target(self) -> Optional[str]:
        if self.type == ExpectationType.NAVIGATION:
            return self.target_path
        if self.type == ExpectationType.NETWORK_ACTION:
            return self.url
        if self.type == ExpectationType.STATE_ACTION:
            return self.state_key
        return self.target_path

    def canonical_fields(self) -> Tuple[str, int, int, str, str]:
        file_part, line, column = parse_source_ref(self.source)
        return file_part, line, column, self.type.value, self.id

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        d["strength"] = self.strength.value
        return {k: v for k, v in d.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Expectation":
        normalized = {_EXPECTATION_KEY_ALIASES.get(k, k): v for k, v in data.items()}
        exp_id = str(normalized.get("id", ""))
        try:
            exp_type = ExpectationType(normalized["type"])
            strength = Strength(normalized["strength"])
        except (KeyError, ValueError) as e:
            raise ExpectationError(exp_id, f"invalid type or strength: {e}")
        return cls(
            id=exp_id,
            type=exp_type,
            strength=strength,
            target_path=normalized.get("target_path"),
            url=normalized.get("url"),
            state_key=normalized.get("state_key"),
            source_ref=normalized.get("source_ref"),
            evidence=dict(normalized.get("evidence") or {}),
            selector_hint=normalized.get("selector_hint"),
            from_path=normalized.get("from_path"),
        )


@dataclass
class Interaction:
    """An actionable element discovered on a page."""
    type: str  # link, button, form, role_button, other
    selector: str
    label: str = ""
    href: Optional[str] = None
    data_href: Optional[str] = None
    form_action: Optional[str] = None
    dom_index: int = 0
    above_fold: bool = True
    in_footer: bool = False
    has_id: bool = False
    has_test_id: bool = False
    is_external: bool = False
    page_url: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.page_url or ''}|{self.selector}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interaction":
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class PageSnapshot:
    """Page state captured on one side of an observation window."""
    url: str
    screenshot: str
    dom_hash: Optional[str] = None
    title: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.url) and bool(self.screenshot)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Execution outcome
# =============================================================================

@dataclass(frozen=True)
class Success:
    """Action completed inside its deadlines."""
    navigated: bool = False


@dataclass(frozen=True)
class Timeout:
    """A deadline expired. ``phase`` is click, navigation or settle."""
    phase: str
    reason: str


@dataclass(frozen=True)
class ExecutionError:
    """Action failed for a non-timeout reason. ``reason`` is a short code."""
    reason: str


Outcome = Union[Success, Timeout, ExecutionError]


def default_policy() -> Dict[str, Any]:
    return {
        "timeout": False,
        "external_navigation_blocked": False,
        "blocked_url": None,
        "execution_error": False,
        "reason": None,
        "phase": None,
    }


@dataclass
class Trace:
    """Full record of one interaction execution.

    The shape is identical whichever terminal state the runner reached:
    ``before``/``after`` are always set and every sensor key is present.
    """
    index: int
    interaction: Interaction
    before: PageSnapshot
    after: PageSnapshot
    sensors: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    policy: Dict[str, Any] = field(default_factory=default_policy)
    dom: Dict[str, Any] = field(default_factory=lambda: {"settle": {"samples": [], "dom_changed_during_settle": False}})
    http_status: Optional[int] = None
    final_state: str = "ASSEMBLED"
    retries: List[Dict[str, Any]] = field(default_factory=list)
    repeat: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def url_changed(self) -> bool:
        return self.before.url != self.after.url

    @property
    def dom_changed(self) -> bool:
        if self.before.dom_hash is None or self.after.dom_hash is None:
            return False
        return self.before.dom_hash != self.after.dom_hash or bool(
            self.dom.get("settle", {}).get("dom_changed_during_settle"))

    def canonical_fields(self) -> Tuple[str, int, int, str, str]:
        return (self.before.url, 0, 0, self.interaction.type,
                f"{self.interaction.selector}#{self.index:05d}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "interaction": self.interaction.to_dict(),
            "before": self.before.to_dict(),
            "after": self.after.to_dict(),
            "sensors": self.sensors,
            "policy": self.policy,
            "dom": self.dom,
            "http_status": self.http_status,
            "final_state": self.final_state,
            "retries": self.retries,
            "repeat": self.repeat,
            "timestamp": self.timestamp,
        }


@dataclass
class ExpectationOutcome:
    """Classification of one expectation against one trace (or a gap)."""
    expectation_id: str
    expectation_type: str
    strength: str
    status: OutcomeStatus
    reason: Optional[str] = None
    trace_index: Optional[int] = None
    repeat_status: Optional[str] = None
    source_ref: Optional[str] = None

    def canonical_fields(self) -> Tuple[str, int, int, str, str]:
        file_part, line, column = parse_source_ref(self.source_ref)
        return file_part, line, column, self.expectation_type, self.expectation_id

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return {k: v for k, v in d.items() if v is not None}


@dataclass
class CoverageGap:
    """Something that could not be attempted."""
    reason: str
    expectation_id: Optional[str] = None
    selector: Optional[str] = None
    page_url: Optional[str] = None
    source_ref: Optional[str] = None

    def canonical_fields(self) -> Tuple[str, int, int, str, str]:
        file_part, line, column = parse_source_ref(self.source_ref)
        if not file_part:
            file_part = self.page_url or ""
        return file_part, line, column, self.reason, self.expectation_id or self.selector or ""

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Finding:
    """A classified silent failure with its confidence breakdown."""
    id: str
    type: str
    expectation_id: str
    strength: str
    reason: str
    interaction: Dict[str, Any]
    confidence: Dict[str, Any]
    evidence: Dict[str, Any] = field(default_factory=dict)
    source_ref: Optional[str] = None

    @property
    def score(self) -> int:
        return self.confidence["score"]

    @property
    def level(self) -> str:
        return self.confidence["level"]

    def canonical_fields(self) -> Tuple[str, int, int, str, str]:
        file_part, line, column = parse_source_ref(self.source_ref)
        return file_part, line, column, self.type, self.id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunTruth:
    """Run-level verdict."""
    truth_state: TruthState
    confidence: ConfidenceLevel
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "truth_state": self.truth_state.value,
            "confidence": self.confidence.value,
            "reason": self.reason,
        }

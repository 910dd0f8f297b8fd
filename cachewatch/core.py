"""
cachewatch - Core data model
Result types shared by the probes, the orchestrator and the scheduler
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union


# Execution order of the probes within one model run
PROBE_NAMES = ("basic", "prompt_sizes", "partial_cache", "persistence", "ttl")

POLLUTION_WARNING ="Warning: First request shows cached tokens - possible cache pollution from previous runs"
ISOLATION_ENABLED_NOTE = "Cache isolation enabled via unique test run ID"


class ErrorKind(Enum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    API_ERROR = "api_error"
    SERVER_ERROR = "server_error"
    CONSECUTIVE_FAILURE = "consecutive_failure"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.SERVER_ERROR)


class CachewatchError(Exception):
    """Base class for all cachewatch errors"""


class ConfigError(CachewatchError):
    """Invalid or missing configuration; fatal at startup"""


class CallError(CachewatchError):
    """A classified failure of one outbound API call"""

    def __init__(self, message: str, kind: ErrorKind, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


@dataclass(frozen=True)
class Model:
    """A remote model as returned by the models listing"""
    id: str
    display_name: str
    type: str = "text"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Model':
        spec = data.get("model_spec")
        if not isinstance(spec, dict):
            spec = {}
        return cls(
            id=data["id"],
            display_name=spec.get("name") or data.get("name") or data["id"],
            type=data.get("type", "text"),
        )


@dataclass
class UsageSample:
    """Token accounting parsed from one API response"""
    prompt_tokens: int = 0
    cached_tokens: int = 0
    completion_tokens: int = 0
    balance: Optional[float] = None

    @property
    def has_tokens(self) -> bool:
        return self.prompt_tokens > 0 or self.completion_tokens > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "cached_tokens": self.cached_tokens,
            "completion_tokens": self.completion_tokens,
            "balance": self.balance,
        }


def cache_hit_rate(usage: UsageSample) -> float:
    """Percentage of prompt tokens served from cache"""
    if usage.prompt_tokens <= 0:
        return 0.0
    return usage.cached_tokens / usage.prompt_tokens * 100


@dataclass
class CallOutcome:
    """Outcome of one resilient API call, successful or not"""
    payload: Dict[str, Any]
    usage: UsageSample = field(default_factory=UsageSample)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    attempt: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "payload": self.payload,
            "usage": self.usage.to_dict(),
        }
        if self.attempt is not None:
            result["attempt"] = self.attempt
        if self.error is not None:
            result["error"] = self.error
            result["error_kind"] = self.error_kind.value if self.error_kind else None
            result["failed"] = True
        return result


# Per-probe details. Each variant knows where its calls live.

@dataclass
class BasicDetails:
    """Two-call probes: basic and partial_cache"""
    first_request: Optional[CallOutcome] = None
    second_request: Optional[CallOutcome] = None
    note: Optional[str] = None
    kind: str = "basic"

    def iter_requests(self) -> Iterator[CallOutcome]:
        for request in (self.first_request, self.second_request):
            if request is not None:
                yield request

    def representative_request(self) -> Optional[CallOutcome]:
        return self.second_request or self.first_request

    def to_dict(self) -> Dict[str, Any]:
        result = {"kind": self.kind}
        if self.first_request is not None:
            result["first_request"] = self.first_request.to_dict()
        if self.second_request is not None:
            result["second_request"] = self.second_request.to_dict()
        if self.note:
            result["note"] = self.note
        return result


@dataclass
class PairEntry:
    """One request pair inside a multi-pair probe (one prompt size or one TTL delay)"""
    first_request: CallOutcome
    second_request: Optional[CallOutcome] = None
    tokens: int = 0
    cached: int = 0
    rate: Optional[float] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def iter_requests(self) -> Iterator[CallOutcome]:
        yield self.first_request
        if self.second_request is not None:
            yield self.second_request

    def to_dict(self) -> Dict[str, Any]:
        result = {"first_request": self.first_request.to_dict()}
        if self.second_request is not None:
            result["second_request"] = self.second_request.to_dict()
        if self.failed:
            result["failed"] = True
            result["error"] = self.error
        else:
            result["tokens"] = self.tokens
            result["cached"] = self.cached
            result["rate"] = f"{self.rate:.1f}%"
        return result


@dataclass
class SizesDetails:
    sizes: Dict[str, PairEntry] = field(default_factory=dict)
    kind: str = "prompt_sizes"

    # Largest prompt shows cache behaviour most clearly
    _preference = ("xlarge", "large", "medium", "small")

    def iter_requests(self) -> Iterator[CallOutcome]:
        for entry in self.sizes.values():
            yield from entry.iter_requests()

    def representative_request(self) -> Optional[CallOutcome]:
        for size in self._preference:
            entry = self.sizes.get(size)
            if entry is not None:
                return entry.second_request or entry.first_request
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "sizes": {k: v.to_dict() for k, v in self.sizes.items()}}


@dataclass
class PersistenceDetails:
    requests: List[CallOutcome] = field(default_factory=list)
    kind: str = "persistence"

    def iter_requests(self) -> Iterator[CallOutcome]:
        return iter(self.requests)

    def representative_request(self) -> Optional[CallOutcome]:
        return self.requests[-1] if self.requests else None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "requests": [r.to_dict() for r in self.requests]}


@dataclass
class TTLDetails:
    delays: Dict[str, PairEntry] = field(default_factory=dict)
    kind: str = "ttl"

    def iter_requests(self) -> Iterator[CallOutcome]:
        for entry in self.delays.values():
            yield from entry.iter_requests()

    def representative_request(self) -> Optional[CallOutcome]:
        if not self.delays:
            return None
        last = list(self.delays.values())[-1]
        return last.second_request or last.first_request

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "delays": {k: v.to_dict() for k, v in self.delays.items()}}


ProbeDetails = Union[BasicDetails, SizesDetails, PersistenceDetails, TTLDetails]


@dataclass
class ProbeResult:
    """Result of one probe against one model"""
    probe_name: str
    model_id: str
    success: bool = False
    caching_observed: bool = False
    cache_hit_rate: Optional[float] = None
    details: Optional[ProbeDetails] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    isolation_token: Optional[str] = None
    isolation_note: Optional[str] = None
    attempted_count: Optional[int] = None
    failed_count: Optional[int] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    duration: Optional[float] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()

    def record_call_error(self, attempt: Union[str, int], outcome: CallOutcome):
        """Remember a failed call inside a multi-call probe"""
        self.errors.append({
            "attempt": attempt,
            "error": outcome.error,
            "error_kind": outcome.error_kind.value if outcome.error_kind else None,
        })
        if self.error_kind is None:
            self.error_kind = outcome.error_kind

    def iter_usage(self) -> Iterator[UsageSample]:
        if self.details is None:
            return
        for request in self.details.iter_requests():
            yield request.usage

    def latest_balance(self) -> Optional[float]:
        """Most recent balance reading carried by any call of this probe"""
        balance = None
        for usage in self.iter_usage():
            if usage.balance is not None:
                balance = usage.balance
        return balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probe_name": self.probe_name,
            "model_id": self.model_id,
            "success": self.success,
            "caching_observed": self.caching_observed,
            "cache_hit_rate": self.cache_hit_rate,
            "details": self.details.to_dict() if self.details is not None else {},
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "isolation_token": self.isolation_token,
            "isolation_note": self.isolation_note,
            "attempted_count": self.attempted_count,
            "failed_count": self.failed_count,
            "errors": list(self.errors),
            "duration": self.duration,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ModelRunSummary:
    """All probe results of one full pass over a model"""
    model_id: str
    display_name: str
    probe_results: List[ProbeResult] = field(default_factory=list)
    overall_support: bool = False
    best_rate: float = 0.0
    reliability_score: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.probe_results if r.success)

    @property
    def all_failed(self) -> bool:
        return bool(self.probe_results) and self.success_count == 0

    def get(self, probe_name: str) -> Optional[ProbeResult]:
        for result in self.probe_results:
            if result.probe_name == probe_name:
                return result
        return None

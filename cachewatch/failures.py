"""
cachewatch - Per-model failure and cooldown tracking
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .core import ErrorKind

logger = logging.getLogger(__name__)


class Gate(Enum):
    READY = "ready"
    COOLING = "cooling"


@dataclass
class FailureRecord:
    """Failure history of one model, created on its first failed cycle"""
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    total_failures: int = 0
    last_error: Optional[str] = None
    last_error_kind: Optional[ErrorKind] = None
    last_error_time: Optional[float] = None
    cooldown_until: Optional[float] = None
    last_activity: float = 0.0

    def in_cooldown(self, now: float) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "total_failures": self.total_failures,
            "last_error": self.last_error,
            "last_error_kind": self.last_error_kind.value if self.last_error_kind else None,
            "last_error_time": self.last_error_time,
            "cooldown_until": self.cooldown_until,
            "last_activity": self.last_activity,
        }


class FailureTracker:
    """Turns repeated failed model cycles into a cooldown.

    A model reaching max_consecutive_failures is skipped until its cooldown
    passes; reset_threshold consecutive successes forget the model entirely.
    """

    def __init__(self, max_consecutive_failures: int = 3, cooldown_duration: float = 7200.0,
                 reset_threshold: int = 2, retention: float = 7 * 24 * 3600.0,
                 max_records: int = 100, warning_threshold: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        self.max_consecutive_failures = max_consecutive_failures
        self.cooldown_duration = cooldown_duration
        self.reset_threshold = reset_threshold
        self.retention = retention
        self.max_records = max_records
        self.warning_threshold = warning_threshold or max_consecutive_failures
        self.clock = clock
        self.records: Dict[str, FailureRecord] = {}

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = time.time) -> 'FailureTracker':
        return cls(
            max_consecutive_failures=config.max_consecutive_failures,
            cooldown_duration=config.cooldown_duration,
            reset_threshold=config.failure_reset_threshold,
            retention=config.failure_retention,
            max_records=config.max_failure_records,
            clock=clock,
        )

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def get(self, model_id: str) -> Optional[FailureRecord]:
        return self.records.get(model_id)

    def record_failure(self, model_id: str, error: str, kind: ErrorKind = ErrorKind.CONSECUTIVE_FAILURE,
                       now: Optional[float] = None) -> FailureRecord:
        now = self._now(now)
        record = self.records.setdefault(model_id, FailureRecord())
        record.consecutive_failures += 1
        record.consecutive_successes = 0
        record.total_failures += 1
        record.last_error = error
        record.last_error_kind = kind
        record.last_error_time = now
        record.last_activity = now

        if record.consecutive_failures == self.warning_threshold:
            logger.warning("%s has failed %d cycles in a row: %s", model_id, record.consecutive_failures, error)
        if record.consecutive_failures >= self.max_consecutive_failures:
            record.cooldown_until = now + self.cooldown_duration
            logger.warning(
                "%s: cooling down for %.0f minutes after %d consecutive failures",
                model_id, self.cooldown_duration / 60, record.consecutive_failures,
            )
        return record

    def record_success(self, model_id: str, now: Optional[float] = None):
        record = self.records.get(model_id)
        if record is None:
            return
        record.consecutive_successes += 1
        record.last_activity = self._now(now)
        if record.consecutive_successes >= self.reset_threshold:
            logger.info("%s recovered after %d successful cycles", model_id, record.consecutive_successes)
            del self.records[model_id]

    def check(self, model_id: str, now: Optional[float] = None) -> Gate:
        """Whether the model may be tested now; clears an expired cooldown"""
        record = self.records.get(model_id)
        if record is None or record.cooldown_until is None:
            return Gate.READY
        now = self._now(now)
        if record.cooldown_until > now:
            return Gate.COOLING
        logger.info("%s: cooldown expired, allowing another attempt", model_id)
        record.cooldown_until = None
        return Gate.READY

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop idle records, then cap the map size. Returns how many were removed."""
        now = self._now(now)
        before = len(self.records)
        for model_id in [m for m, r in self.records.items()
                         if now - r.last_activity > self.retention]:
            del self.records[model_id]

        overflow = len(self.records) - self.max_records
        if overflow > 0:
            oldest = sorted(self.records, key=lambda m: self.records[m].last_error_time or 0.0)
            for model_id in oldest[:overflow]:
                del self.records[model_id]

        removed = before - len(self.records)
        if removed:
            logger.info("Failure sweep removed %d records, %d remain", removed, len(self.records))
        return removed

    def failed_count(self) -> int:
        return sum(1 for r in self.records.values() if r.consecutive_failures > 0)

    def cooling_count(self, now: Optional[float] = None) -> int:
        now = self._now(now)
        return sum(1 for r in self.records.values() if r.in_cooldown(now))

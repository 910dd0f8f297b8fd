"""
cachewatch - Operational telemetry
In-process counters and duration summaries for the probe loop
"""
import logging
import time
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Union

from .core import ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class DurationSummary:
    """Running count/sum/min/max of a duration in seconds"""
    count: int = 0
    total: float = 0.0
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def add(self, seconds: float):
        self.count += 1
        self.total += seconds
        self.minimum = seconds if self.minimum is None else min(self.minimum, seconds)
        self.maximum = seconds if self.maximum is None else max(self.maximum, seconds)

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": round(self.average, 3),
            "min": round(self.minimum, 3) if self.minimum is not None else None,
            "max": round(self.maximum, 3) if self.maximum is not None else None,
        }


class TelemetryCollector:
    """Counters fed by the API client, the orchestrator and the scheduler"""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self.started_at = clock()
        self.reset()

    def reset(self):
        self.test_durations: Dict[str, DurationSummary] = defaultdict(DurationSummary)
        self.api_response_times: Dict[str, DurationSummary] = defaultdict(DurationSummary)
        self.errors: Counter = Counter()
        self.errors_by_model: Dict[str, Counter] = defaultdict(Counter)
        self.test_results: Counter = Counter()
        self.cycle_durations = DurationSummary()
        self.active_tests: Set[str] = set()

    def record_test_duration(self, probe_name: str, seconds: float):
        self.test_durations[probe_name].add(seconds)

    def record_api_response(self, endpoint: str, seconds: float, status_code: int):
        self.api_response_times[f"{endpoint}:{status_code}"].add(seconds)

    def record_error(self, kind: Union[ErrorKind, str], model_id: Optional[str] = None):
        name = kind.value if isinstance(kind, ErrorKind) else str(kind)
        self.errors[name] += 1
        if model_id:
            self.errors_by_model[model_id][name] += 1

    def record_test_result(self, probe_name: str, success: bool):
        self.test_results[f"{probe_name}:{'success' if success else 'failure'}"] += 1

    def record_cycle_duration(self, seconds: float):
        self.cycle_durations.add(seconds)

    def test_started(self, model_id: str):
        self.active_tests.add(model_id)

    def test_finished(self, model_id: str):
        self.active_tests.discard(model_id)

    def error_counts(self) -> Dict[str, int]:
        return dict(self.errors)

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict view for status pages and logs"""
        return {
            "uptime_seconds": round(self._clock() - self.started_at, 1),
            "active_tests": sorted(self.active_tests),
            "test_duration": {k: v.to_dict() for k, v in self.test_durations.items()},
            "api_response_time": {k: v.to_dict() for k, v in self.api_response_times.items()},
            "errors": dict(self.errors),
            "errors_by_model": {k: dict(v) for k, v in self.errors_by_model.items()},
            "test_results": dict(self.test_results),
            "scheduler_cycle_duration": self.cycle_durations.to_dict(),
        }

    def log_report(self):
        """Periodic error-type summary"""
        if not self.errors:
            logger.info("Error report: no API errors recorded")
            return
        parts = ", ".join(f"{kind}={count}" for kind, count in self.errors.most_common())
        logger.info("Error report: %s (total %d)", parts, sum(self.errors.values()))

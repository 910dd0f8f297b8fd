"""
cachewatch - Caching metrics
Turns one model run's probe results into a support verdict and a 0-100 score
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from .config import Thresholds
from .core import ProbeResult


@dataclass
class CachingMetrics:
    overall_support: bool
    best_rate: float
    reliability_score: int
    success_rate: float = 0.0
    caching_rate: float = 0.0
    avg_good_hit_rate: float = 0.0
    good_caching_count: int = 0
    effective_min_tests: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_support": self.overall_support,
            "best_rate": self.best_rate,
            "reliability_score": self.reliability_score,
            "success_rate": self.success_rate,
            "caching_rate": self.caching_rate,
            "avg_good_hit_rate": self.avg_good_hit_rate,
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_caching_metrics(results: Sequence[ProbeResult], thresholds: Thresholds) -> CachingMetrics:
    """Aggregate the results of every probe that ran for one model.

    Probes without a hit rate count as failed in the success rate and are
    left out of the rate averages.
    """
    ran = list(results)
    successful = [r for r in ran if r.success and r.cache_hit_rate is not None]
    good = [
        r for r in successful
        if r.caching_observed and r.cache_hit_rate is not None
        and r.cache_hit_rate >= thresholds.min_cache_hit_rate
    ]

    success_rate = len(successful) / len(ran) * 100 if ran else 0.0
    caching_rate = len(good) / len(successful) * 100 if successful else 0.0
    avg_good = sum(r.cache_hit_rate for r in good) / len(good) if good else 0.0

    effective_min_tests = min(thresholds.min_tests_with_caching, len(ran))
    overall_support = len(good) >= effective_min_tests and success_rate >= thresholds.min_success_rate

    score = round_half_up(success_rate * 0.4 + caching_rate * 0.3 + avg_good * 0.3)
    rates = [r.cache_hit_rate for r in ran if r.cache_hit_rate is not None]

    return CachingMetrics(
        overall_support=overall_support,
        best_rate=max(rates, default=0.0),
        reliability_score=score,
        success_rate=success_rate,
        caching_rate=caching_rate,
        avg_good_hit_rate=avg_good,
        good_caching_count=len(good),
        effective_min_tests=effective_min_tests,
    )

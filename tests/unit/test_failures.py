"""
Tests for per-model failure records and cooldowns.
"""

from cachewatch.core import ErrorKind
from cachewatch.failures import FailureTracker, Gate

HOUR = 3600.0


def tracker(**kwargs):
    values = dict(max_consecutive_failures=3, cooldown_duration=2 * HOUR, reset_threshold=2)
    values.update(kwargs)
    return FailureTracker(clock=lambda: 0.0, **values)


class TestCooldown:

    def test_cooldown_after_max_failures(self):
        t = tracker()
        for i in range(2):
            t.record_failure("m", "boom", now=100.0 + i)
            assert t.check("m", now=100.0 + i) == Gate.READY

        record = t.record_failure("m", "boom", ErrorKind.TIMEOUT, now=200.0)
        assert record.cooldown_until == 200.0 + 2 * HOUR
        assert record.last_error_kind == ErrorKind.TIMEOUT
        assert t.check("m", now=201.0) == Gate.COOLING
        assert t.cooling_count(now=201.0) == 1

    def test_expired_cooldown_grants_one_attempt(self):
        t = tracker()
        for _ in range(3):
            t.record_failure("m", "boom", now=0.0)

        assert t.check("m", now=2 * HOUR + 1) == Gate.READY
        assert t.get("m").cooldown_until is None
        # one more failure goes straight back into cooldown
        t.record_failure("m", "boom", now=2 * HOUR + 2)
        assert t.check("m", now=2 * HOUR + 3) == Gate.COOLING

    def test_unknown_model_is_ready(self):
        assert tracker().check("never-failed") == Gate.READY


class TestRecovery:

    def test_reset_threshold_successes_forget_the_model(self):
        t = tracker()
        for _ in range(3):
            t.record_failure("m", "boom", now=0.0)
        t.check("m", now=3 * HOUR)

        t.record_success("m", now=3 * HOUR)
        assert t.get("m") is not None
        assert t.get("m").consecutive_successes == 1

        t.record_success("m", now=3 * HOUR + 1)
        assert t.get("m") is None
        assert t.failed_count() == 0

    def test_failure_resets_success_streak(self):
        t = tracker()
        t.record_failure("m", "a", now=0.0)
        t.record_success("m", now=1.0)
        t.record_failure("m", "b", now=2.0)

        record = t.get("m")
        assert record.consecutive_successes == 0
        assert record.consecutive_failures == 2
        assert record.total_failures == 2
        assert record.last_error == "b"

    def test_success_without_record_is_noop(self):
        t = tracker()
        t.record_success("m")
        assert t.records == {}


class TestSweep:

    def test_drops_idle_records(self):
        t = tracker(retention=7 * 24 * HOUR)
        t.record_failure("old", "x", now=0.0)
        t.record_failure("fresh", "x", now=6 * 24 * HOUR)

        assert t.sweep(now=7 * 24 * HOUR + 1) == 1
        assert set(t.records) == {"fresh"}

    def test_caps_record_count_by_oldest_error(self):
        t = tracker(max_records=2)
        t.record_failure("a", "x", now=10.0)
        t.record_failure("b", "x", now=30.0)
        t.record_failure("c", "x", now=20.0)

        assert t.sweep(now=40.0) == 1
        assert set(t.records) == {"b", "c"}


def test_from_config(config):
    config.max_consecutive_failures = 5
    t = FailureTracker.from_config(config)
    assert t.max_consecutive_failures == 5
    assert t.cooldown_duration == config.cooldown_duration
    assert t.reset_threshold == config.failure_reset_threshold

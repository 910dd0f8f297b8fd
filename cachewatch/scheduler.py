"""
cachewatch - Model rotation scheduler

Tests one model at a time from a FIFO rotation queue, forever. Every popped
model goes back to the tail whatever happened to it; models that keep
failing are held back by the failure tracker, and a low account balance
stops the rotation until the balance recovers.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from .breaker import BalanceCircuitBreaker
from .config import MonitorConfig
from .core import CachewatchError, ErrorKind, Model, ModelRunSummary
from .failures import FailureTracker, Gate
from .timers import TimerGroup

logger = logging.getLogger(__name__)


class Scheduler:
    """Owns the rotation queue, the failure records and the balance breaker"""

    def __init__(self, config: MonitorConfig, api, orchestrator, store=None,
                 failures: Optional[FailureTracker] = None, telemetry=None,
                 invalidate_read_cache: Optional[Callable[[], Any]] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.api = api
        self.orchestrator = orchestrator
        self.store = store
        self.telemetry = telemetry
        self.invalidate_read_cache = invalidate_read_cache
        self.clock = clock
        self.failures = failures or FailureTracker.from_config(config, clock=clock)
        self.breaker = BalanceCircuitBreaker(
            get_balance=api.get_balance,
            on_trip=self._on_balance_trip,
            on_recover=self.start,
            min_balance=config.min_balance,
            recovery_interval=config.balance_recovery_interval,
        )
        self.queue: Deque[Model] = deque()
        self.timers = TimerGroup("scheduler")
        self.enabled = False
        self.stopped_due_to_balance = False
        self._current: Optional[Model] = None
        self._processing = False
        self._skipped = False
        self._worker: Optional[asyncio.Task] = None
        self._cleaned_on_start = False
        self._shutdown: Optional[asyncio.Event] = None

    # lifecycle

    async def start(self):
        """Start (or restart) the rotation. Safe to call repeatedly."""
        self.timers.cancel_all()
        self.stopped_due_to_balance = False
        self.breaker.reset()
        self.enabled = True
        if self._worker is None or self._worker.done():
            self._processing = False

        self.timers.call_every(self.config.refresh_interval, self.refresh_models, name="model-refresh")
        self.timers.call_every(self.config.failure_sweep_interval, self.failures.sweep, name="failure-sweep")
        if self.telemetry is not None:
            self.timers.call_every(self.config.telemetry_report_interval, self.telemetry.log_report,
                                   name="telemetry-report")
        if self.store is not None:
            self.timers.call_every(24 * 3600, self.run_cleanup, name="store-cleanup")
            if not self._cleaned_on_start:
                self._cleaned_on_start = True
                self.timers.call_later(0, self.run_cleanup, name="store-cleanup-initial")

        logger.info("Scheduler started: cycling through models")
        await self.refresh_models()

    def stop(self):
        """Cancel all timers. A model test already in flight still completes and is recorded."""
        self.timers.cancel_all()
        if self.enabled:
            self.enabled = False
            logger.info("Scheduler stopped")

    def _on_balance_trip(self):
        self.stopped_due_to_balance = True
        self.stop()

    async def run_forever(self):
        """Start and keep the process alive until shutdown() is called"""
        self._shutdown = asyncio.Event()
        await self.start()
        await self._shutdown.wait()

    def shutdown(self):
        self.stop()
        self.breaker.reset()
        if self._shutdown is not None:
            self._shutdown.set()

    # queue

    async def refresh_models(self):
        try:
            models = await self.api.list_models("text")
        except CachewatchError as e:
            logger.error("Failed to fetch models: %s", e)
            return
        except Exception:
            logger.exception("Unexpected error while fetching models")
            return

        if self.config.selected_models:
            wanted = set(self.config.selected_models)
            models = [m for m in models if m.id in wanted]

        known = {m.id for m in self.queue}
        if self._current is not None:
            known.add(self._current.id)
        added = 0
        for model in models:
            if model.id not in known:
                self.queue.append(model)
                known.add(model.id)
                added += 1
        logger.info("Model queue: %d models (%d new)", len(self.queue), added)
        self._kick()

    async def trigger_manual_run(self):
        """Refresh the model list now instead of waiting for the timer"""
        logger.info("Manual run requested")
        await self.refresh_models()

    def _requeue(self, model: Model):
        if all(m.id != model.id for m in self.queue):
            self.queue.append(model)

    # loop

    def _kick(self):
        if self._processing or not self.enabled or not self.queue:
            return
        self._processing = True
        self._worker = asyncio.get_running_loop().create_task(self._process_next())

    def _resume(self):
        self._processing = False
        self._kick()

    async def _process_next(self):
        self._skipped = False
        try:
            await self.step()
        except Exception:
            logger.exception("Unexpected error in scheduler step")

        if not (self.enabled and self.queue):
            self._processing = False
        elif self._skipped:
            # no request went out, nothing to isolate from
            self.timers.call_later(0, self._resume, name="next-model")
        else:
            logger.info("Waiting %.0fs for cache isolation...", self.config.isolation_delay)
            self.timers.call_later(self.config.isolation_delay, self._resume, name="next-model")

    async def step(self) -> Optional[ModelRunSummary]:
        """One rotation step: pop, gate, test, record, re-enqueue"""
        if not self.queue:
            return None
        model = self.queue.popleft()
        self._current = model
        started = time.monotonic()
        try:
            if self.failures.check(model.id, self.clock()) == Gate.COOLING:
                record = self.failures.get(model.id)
                logger.info("Skipping %s: cooling down for another %.0f minutes",
                            model.display_name, (record.cooldown_until - self.clock()) / 60)
                self._skipped = True
                return None

            try:
                summary = await self.orchestrator.test_model(model)
            except Exception as e:
                logger.exception("Failed testing %s", model.id)
                self.failures.record_failure(model.id, str(e) or type(e).__name__,
                                             ErrorKind.CONSECUTIVE_FAILURE, now=self.clock())
                return None

            await self._record(model, summary)
            self._update_failures(model, summary)
            self._observe_balance(summary)
            return summary
        finally:
            self._current = None
            self._requeue(model)
            if self.telemetry is not None:
                self.telemetry.record_cycle_duration(time.monotonic() - started)

    async def _record(self, model: Model, summary: ModelRunSummary):
        if self.store is not None:
            for result in summary.probe_results:
                await self.store.persist(result, model.display_name)
                for usage in result.iter_usage():
                    if usage.has_tokens:
                        await self.store.record_usage(model.id, usage)
        if self.invalidate_read_cache is not None:
            try:
                self.invalidate_read_cache()
            except Exception:
                logger.exception("Read cache invalidation failed")

    def _update_failures(self, model: Model, summary: ModelRunSummary):
        now = self.clock()
        if not summary.all_failed:
            self.failures.record_success(model.id, now=now)
            return
        first = summary.probe_results[0]
        error = f"All {len(summary.probe_results)} probes failed: {first.error or 'unknown error'}"
        kind = first.error_kind or ErrorKind.CONSECUTIVE_FAILURE
        self.failures.record_failure(model.id, error, kind, now=now)

    def _observe_balance(self, summary: ModelRunSummary):
        balance = None
        for result in summary.probe_results:
            reading = result.latest_balance()
            if reading is not None:
                balance = reading
        self.breaker.observe(balance)

    async def run_cleanup(self):
        try:
            await asyncio.to_thread(self.store.cleanup, self.config.data_retention_days)
        except OSError as e:
            logger.error("Data cleanup failed: %s", e)

    # status

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "queue_length": len(self.queue),
            "stopped_due_to_balance": self.stopped_due_to_balance,
            "failed_model_count": self.failures.failed_count(),
            "skipped_model_count": self.failures.cooling_count(self.clock()),
            "last_known_balance": self.breaker.state.last_known_balance,
            "refresh_interval": self.config.refresh_interval,
        }

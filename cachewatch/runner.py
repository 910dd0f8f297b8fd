"""
cachewatch - Model test orchestration
Runs the enabled probes against one model, and drives single passes over
many models for the command line
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from .config import MonitorConfig
from .core import ErrorKind, Model, ModelRunSummary, ProbeResult
from .events import EventBus, EventStatus, ProbeEvent
from .logging_config import bind_isolation_token
from .metrics import calculate_caching_metrics
from .probes import BaseProbe, ProbeContext, get_probes

logger = logging.getLogger(__name__)


def result_log_line(display_name: str, result: ProbeResult) -> str:
    """One-line verdict: "<name> | <probe> | CACHE|NO_CACHE|ERROR | <rate>%" """
    if not result.success:
        verdict = "ERROR"
    elif result.caching_observed:
        verdict = "CACHE"
    else:
        verdict = "NO_CACHE"
    rate = f"{result.cache_hit_rate:.1f}" if result.cache_hit_rate is not None else "-"
    return f"{display_name} | {result.probe_name} | {verdict} | {rate}%"


class ModelTestOrchestrator:
    """Runs the probe set against one model and scores the outcome"""

    def __init__(self, config: MonitorConfig, caller, events: Optional[EventBus] = None,
                 telemetry=None, probes: Optional[Sequence[BaseProbe]] = None,
                 sleep=asyncio.sleep, token_factory: Callable[[], str] = lambda: str(uuid.uuid4())):
        self.config = config
        self.caller = caller
        self.events = events or EventBus()
        self.telemetry = telemetry
        self.probes = list(probes) if probes is not None else get_probes(config.probes)
        self.sleep = sleep
        self.token_factory = token_factory

    def _emit(self, model: Model, probe_name: str, status: EventStatus, progress: float,
              result: Optional[ProbeResult] = None, error_message: Optional[str] = None):
        event = ProbeEvent(
            model_id=model.id,
            display_name=model.display_name,
            probe_name=probe_name,
            status=status,
            progress=progress,
            result=result,
            error_message=error_message,
        )
        if result is not None and result.details is not None:
            request = result.details.representative_request()
            if request is not None:
                event.request_payload = request.payload
                event.response_usage = request.usage
                if request.error:
                    event.error_message = request.error
        if event.error_message is None and result is not None:
            event.error_message = result.error
        self.events.publish(event)

    async def _run_probe(self, probe: BaseProbe, ctx: ProbeContext) -> ProbeResult:
        started = time.monotonic()
        try:
            result = await probe.run(ctx)
        except Exception as e:
            logger.exception("%s: probe %s raised", ctx.model_id, probe.name)
            result = ProbeResult(
                probe_name=probe.name,
                model_id=ctx.model_id,
                error=str(e) or type(e).__name__,
                error_kind=ErrorKind.API_ERROR,
                isolation_token=ctx.isolation_token,
            )
            if self.telemetry is not None:
                self.telemetry.record_error("test_error", ctx.model_id)
        result.duration = time.monotonic() - started
        if self.telemetry is not None:
            self.telemetry.record_test_duration(probe.name, result.duration)
            self.telemetry.record_test_result(probe.name, result.success)
        return result

    async def test_model(self, model: Model) -> ModelRunSummary:
        """Run every enabled probe in order; never raises for probe failures"""
        token = self.token_factory()
        ctx = ProbeContext.from_config(self.config, model.id, self.caller, isolation_token=token, sleep=self.sleep)
        summary = ModelRunSummary(model_id=model.id, display_name=model.display_name)
        total = len(self.probes)

        if self.telemetry is not None:
            self.telemetry.test_started(model.id)
        try:
            with bind_isolation_token(token):
                logger.info("Testing %s (%s), %d probes", model.display_name, model.id, total)
                for index, probe in enumerate(self.probes):
                    self._emit(model, probe.name, EventStatus.STARTED, index / total)
                    result = await self._run_probe(probe, ctx)
                    summary.probe_results.append(result)
                    status = EventStatus.COMPLETED if result.success else EventStatus.FAILED
                    self._emit(model, probe.name, status, (index + 1) / total, result=result)
                    logger.info(result_log_line(model.display_name, result))

                metrics = calculate_caching_metrics(summary.probe_results, self.config.thresholds)
                summary.overall_support = metrics.overall_support
                summary.best_rate = metrics.best_rate
                summary.reliability_score = metrics.reliability_score
                summary.completed_at = datetime.now()
                logger.info(
                    "%s: support=%s best=%.1f%% reliability=%d",
                    model.display_name, "yes" if summary.overall_support else "no",
                    summary.best_rate, summary.reliability_score,
                )
        finally:
            if self.telemetry is not None:
                self.telemetry.test_finished(model.id)
        return summary


def select_models(models: Sequence[Model], selected: Sequence[str] = (), max_models: int = 0) -> List[Model]:
    """Apply an explicit allow-list, or else a count limit"""
    if selected:
        wanted = set(selected)
        return [m for m in models if m.id in wanted]
    if max_models > 0:
        return list(models[:max_models])
    return list(models)


async def run_single_pass(api, orchestrator: ModelTestOrchestrator, selected_models: Sequence[str] = (),
                          max_models: int = 0, delay_between_models: float = 0.0,
                          sleep=asyncio.sleep) -> List[ModelRunSummary]:
    """Test each text model once, in listing order"""
    models = select_models(await api.list_models("text"), selected_models, max_models)
    summaries = []
    for index, model in enumerate(models):
        summaries.append(await orchestrator.test_model(model))
        if index < len(models) - 1 and delay_between_models > 0:
            await sleep(delay_between_models)
    return summaries


def _cell(result: Optional[ProbeResult]) -> str:
    if result is None:
        return "[dim]N/A[/]"
    if not result.success:
        return "[red]ERR[/]"
    if result.caching_observed:
        return f"[green]{result.cache_hit_rate or 0:.0f}% ✅[/]"
    return "[yellow]0% ❌[/]"


def render_results_table(summaries: Sequence[ModelRunSummary]) -> Table:
    table = Table(title="Prompt caching results", box=box.ROUNDED)
    table.add_column("Model", style="cyan", no_wrap=True)
    for title in ("Basic", "Sizes", "Partial", "Persist", "TTL"):
        table.add_column(title, justify="center")
    table.add_column("Reliability", justify="right")
    table.add_column("Overall", justify="center")

    for summary in summaries:
        table.add_row(
            summary.display_name,
            _cell(summary.get("basic")),
            _cell(summary.get("prompt_sizes")),
            _cell(summary.get("partial_cache")),
            _cell(summary.get("persistence")),
            _cell(summary.get("ttl")),
            f"{summary.reliability_score}%",
            "[green]YES[/]" if summary.overall_support else "[red]NO[/]",
        )
    return table


def print_results(summaries: Sequence[ModelRunSummary], console: Optional[Console] = None):
    console = console or Console()
    console.print(render_results_table(summaries))
    supported = sum(1 for s in summaries if s.overall_support)
    console.print(f"[bold]{supported}[/] of [bold]{len(summaries)}[/] models support prompt caching")

"""
cachewatch - Command line interface
"""
import asyncio
import logging
import signal
import sys
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .api import ApiClient
from .config import MonitorConfig
from .core import CachewatchError, ConfigError
from .events import EventBus, EventStatus, ProbeEvent
from .logging_config import configure_from_config
from .report import analyze_results, display_analysis
from .retry import ResilientCaller
from .runner import ModelTestOrchestrator, print_results, run_single_pass
from .scheduler import Scheduler
from .store import JsonlResultStore
from .telemetry import TelemetryCollector

console = Console()
logger = logging.getLogger(__name__)


def load_config(env_file: Optional[str]) -> MonitorConfig:
    try:
        config = MonitorConfig.from_env(env_file)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(1)
    config.ensure_dirs()
    configure_from_config(config, console=console)
    return config


def build_orchestrator(config: MonitorConfig, api: ApiClient, telemetry: TelemetryCollector,
                       events: Optional[EventBus] = None) -> ModelTestOrchestrator:
    caller = ResilientCaller(
        api,
        max_retries=config.max_retries,
        initial_delay=config.retry_delay,
        telemetry=telemetry,
    )
    return ModelTestOrchestrator(config, caller, events=events, telemetry=telemetry)


def print_startup(config: MonitorConfig, mode: str):
    console.print(Panel.fit(
        f"[bold cyan]cachewatch {__version__}[/]\n\n"
        f"[green]Mode:[/] {mode}\n"
        f"[blue]Endpoint:[/] {config.base_url}\n"
        f"[yellow]Probes:[/] {', '.join(config.probes)}\n"
        f"[magenta]Cache control on:[/] {config.cache_control_placement}\n"
        f"[cyan]Isolation token:[/] {'on' if config.inject_isolation_token else 'off'}",
        title="Prompt caching monitor",
        border_style="cyan",
    ))


def progress_printer(event: ProbeEvent):
    if event.status == EventStatus.STARTED:
        console.print(f"  [dim]… {event.display_name}: {event.probe_name}[/]")
    elif event.status == EventStatus.COMPLETED:
        rate = event.result.cache_hit_rate if event.result else None
        shown = f"{rate:.1f}%" if rate is not None else "-"
        console.print(f"  [green]✓[/] {event.display_name}: {event.probe_name} ({shown})")
    else:
        console.print(f"  [red]✗[/] {event.display_name}: {event.probe_name} {event.error_message or ''}")


@click.group()
@click.version_option(version=__version__, prog_name="cachewatch")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Load settings from this .env file")
@click.pass_context
def cli(ctx, env_file):
    """Continuous prompt caching probes for OpenAI-compatible APIs."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


@cli.command()
@click.pass_context
def run(ctx):
    """Rotate through all models until interrupted."""
    config = load_config(ctx.obj["env_file"])
    print_startup(config, "continuous rotation")
    asyncio.run(_run_scheduler(config))


async def _run_scheduler(config: MonitorConfig):
    telemetry = TelemetryCollector()
    store = JsonlResultStore(config.data_dir, store_timeout=config.store_timeout)
    async with ApiClient(config, telemetry=telemetry) as api:
        scheduler = Scheduler(config, api, build_orchestrator(config, api, telemetry), store=store,
                              telemetry=telemetry)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.shutdown)
            except NotImplementedError:
                pass
        try:
            await scheduler.run_forever()
        finally:
            scheduler.shutdown()
            logger.info("Final status: %s", scheduler.get_status())


@cli.command()
@click.option("--model", "models", multiple=True, help="Test only this model id (repeatable)")
@click.option("--max-models", type=int, default=0, show_default=True, help="Test at most this many models (0 = all)")
@click.option("--delay", type=float, default=None, help="Seconds between models (default: ISOLATION_DELAY)")
@click.pass_context
def once(ctx, models: Tuple[str, ...], max_models: int, delay: Optional[float]):
    """Test each model once and print a results table."""
    config = load_config(ctx.obj["env_file"])
    print_startup(config, "single pass")
    selected = list(models) or config.selected_models
    summaries = asyncio.run(_run_once(config, selected, max_models,
                                      config.isolation_delay if delay is None else delay))
    print_results(summaries, console)
    if summaries and not any(s.success_count for s in summaries):
        sys.exit(1)


async def _run_once(config: MonitorConfig, selected, max_models: int, delay: float):
    telemetry = TelemetryCollector()
    events = EventBus()
    events.subscribe(progress_printer)
    store = JsonlResultStore(config.data_dir, store_timeout=config.store_timeout)
    async with ApiClient(config, telemetry=telemetry) as api:
        orchestrator = build_orchestrator(config, api, telemetry, events)
        summaries = await run_single_pass(api, orchestrator, selected_models=selected,
                                          max_models=max_models, delay_between_models=delay)
    for summary in summaries:
        for result in summary.probe_results:
            await store.persist(result, summary.display_name)
    return summaries


@cli.command()
@click.pass_context
def models(ctx):
    """List text models offered by the API."""
    config = load_config(ctx.obj["env_file"])

    async def fetch():
        async with ApiClient(config) as api:
            return await api.list_models("text")

    try:
        found = asyncio.run(fetch())
    except CachewatchError as e:
        console.print(f"[red]Failed to fetch models:[/] {e}")
        sys.exit(1)

    table = Table(title=f"Text models ({len(found)})")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    for model in found:
        table.add_row(model.id, model.display_name)
    console.print(table)


@cli.command()
@click.pass_context
def balance(ctx):
    """Show the current account balance."""
    config = load_config(ctx.obj["env_file"])

    async def fetch():
        async with ApiClient(config) as api:
            return await api.get_balance()

    value = asyncio.run(fetch())
    if value is None:
        console.print(f"[yellow]Balance unavailable[/] (header {config.balance_header} missing or request failed)")
        sys.exit(1)
    color = "red" if value < config.min_balance else "green"
    console.print(f"Balance: [{color}]{value:.6f}[/] (stop threshold {config.min_balance:g})")


@cli.command()
@click.option("--model", "model_id", default=None, help="Only this model id")
@click.pass_context
def report(ctx, model_id: Optional[str]):
    """Summarise stored results."""
    config = load_config(ctx.obj["env_file"])
    store = JsonlResultStore(config.data_dir)
    display_analysis(analyze_results(store.load_results(), model_id), console)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()

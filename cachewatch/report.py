"""
cachewatch - Stored results report
Summarises the JSON lines store per model and per probe
"""
from collections import defaultdict
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .core import PROBE_NAMES


def analyze_results(rows: List[Dict[str, Any]], model_id: Optional[str] = None) -> Dict[str, Any]:
    """Aggregate stored probe results"""
    analysis = {
        "total_results": 0,
        "models": {},
        "probes": defaultdict(lambda: {"runs": 0, "successes": 0, "cached": 0}),
        "isolation_warnings": 0,
        "first_timestamp": None,
        "last_timestamp": None,
    }
    per_model: Dict[str, Dict[str, Any]] = {}

    for row in rows:
        mid = row.get("model_id", "unknown")
        if model_id and mid != model_id:
            continue
        analysis["total_results"] += 1
        probe = row.get("probe_name", "unknown")
        stamp = row.get("timestamp")
        if stamp:
            if analysis["first_timestamp"] is None or stamp < analysis["first_timestamp"]:
                analysis["first_timestamp"] = stamp
            if analysis["last_timestamp"] is None or stamp > analysis["last_timestamp"]:
                analysis["last_timestamp"] = stamp

        model = per_model.setdefault(mid, {
            "display_name": row.get("display_name") or mid,
            "runs": 0,
            "successes": 0,
            "cached": 0,
            "rates": [],
            "last_seen": None,
            "latest": {},
        })
        model["runs"] += 1
        if row.get("success"):
            model["successes"] += 1
        if row.get("caching_observed"):
            model["cached"] += 1
        if row.get("cache_hit_rate") is not None:
            model["rates"].append(row["cache_hit_rate"])
        if stamp and (model["last_seen"] is None or stamp > model["last_seen"]):
            model["last_seen"] = stamp
        model["latest"][probe] = row

        stats = analysis["probes"][probe]
        stats["runs"] += 1
        stats["successes"] += 1 if row.get("success") else 0
        stats["cached"] += 1 if row.get("caching_observed") else 0

        note = row.get("isolation_note") or ""
        if note.startswith("Warning"):
            analysis["isolation_warnings"] += 1

    for model in per_model.values():
        rates = model.pop("rates")
        model["avg_rate"] = sum(rates) / len(rates) if rates else None
        model["best_rate"] = max(rates) if rates else None
        model["success_rate"] = model["successes"] / model["runs"] * 100 if model["runs"] else 0.0

    analysis["models"] = per_model
    analysis["probes"] = dict(analysis["probes"])
    return analysis


def _latest_cell(row: Optional[Dict[str, Any]]) -> str:
    if row is None:
        return "[dim]-[/]"
    if not row.get("success"):
        return "[red]ERR[/]"
    if row.get("caching_observed"):
        return f"[green]{row.get('cache_hit_rate') or 0:.0f}%[/]"
    return "[yellow]0%[/]"


def display_analysis(analysis: Dict[str, Any], console: Optional[Console] = None):
    console = console or Console()
    console.print(Panel.fit(
        f"[bold cyan]Stored prompt caching results[/]\n\n"
        f"[green]Results:[/] {analysis['total_results']}\n"
        f"[blue]Models:[/] {len(analysis['models'])}\n"
        f"[yellow]Period:[/] {analysis['first_timestamp'] or '-'} .. {analysis['last_timestamp'] or '-'}\n"
        f"[magenta]Pollution warnings:[/] {analysis['isolation_warnings']}",
        title="Summary",
        border_style="cyan",
    ))

    if not analysis["models"]:
        console.print("[yellow]No stored results yet[/]")
        return

    models_table = Table(title="Per model", box=box.ROUNDED)
    models_table.add_column("Model", style="cyan")
    models_table.add_column("Runs", justify="right")
    models_table.add_column("Success", justify="right")
    models_table.add_column("Avg hit", justify="right")
    models_table.add_column("Best hit", justify="right")
    for name in PROBE_NAMES:
        models_table.add_column(name, justify="center")

    ordered = sorted(analysis["models"].items(), key=lambda item: -(item[1]["avg_rate"] or 0))
    for mid, model in ordered:
        avg = f"{model['avg_rate']:.1f}%" if model["avg_rate"] is not None else "-"
        best = f"{model['best_rate']:.1f}%" if model["best_rate"] is not None else "-"
        models_table.add_row(
            model["display_name"],
            str(model["runs"]),
            f"{model['success_rate']:.0f}%",
            avg,
            best,
            *[_latest_cell(model["latest"].get(name)) for name in PROBE_NAMES],
        )
    console.print(models_table)

    probes_table = Table(title="Per probe", box=box.SIMPLE)
    probes_table.add_column("Probe", style="cyan")
    probes_table.add_column("Runs", justify="right")
    probes_table.add_column("Succeeded", justify="right")
    probes_table.add_column("Cache observed", justify="right")
    for name, stats in analysis["probes"].items():
        probes_table.add_row(name, str(stats["runs"]), str(stats["successes"]), str(stats["cached"]))
    console.print(probes_table)

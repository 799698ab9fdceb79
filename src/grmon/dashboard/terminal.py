"""Terminal output using Rich: sample tables, a live watch view, and JSON lines."""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import IO, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from grmon import __version__
from grmon.collector import ScraperRegistry
from grmon.metrics import ValueKind
from grmon.orchestrator import Orchestrator, ScrapeReport

log = logging.getLogger(__name__)

# Give up watching after this many cycles in a row with the server down
MAX_CONSECUTIVE_DOWN = 5


def _format_labels(labels: dict) -> str:
    if not labels:
        return ""
    return ", ".join(f'{k}="{v}"' for k, v in labels.items())


def _format_value(value: float) -> str:
    if value.is_integer():
        return f"{value:.0f}"
    return f"{value:.4f}"


def build_samples_table(report: ScrapeReport) -> Table:
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric")
    table.add_column("Type", width=8)
    table.add_column("Labels", style="dim")
    table.add_column("Value", justify="right")

    for sample in report.samples:
        kind_color = "magenta" if sample.kind is ValueKind.COUNTER else "green"
        table.add_row(
            sample.name,
            f"[{kind_color}]{sample.kind.value}[/{kind_color}]",
            _format_labels(sample.labels),
            _format_value(sample.value),
        )
    return table


def build_display(report: ScrapeReport, source_name: str) -> Group:
    if report.up:
        status = Text(f"  UP  server {report.version:.1f}", style="bold green")
    else:
        status = Text("  DOWN", style="bold red")

    header = Text(f"  grmon v{__version__}  |  {source_name}", style="bold white on blue")
    header.append(f"\n  {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}  ", style="dim")
    header.append(f"  scrape took {report.duration_seconds * 1000:.1f}ms", style="dim")

    parts = [Panel(Group(header, status), border_style="blue")]
    parts.append(Panel(build_samples_table(report), title="Samples", border_style="cyan"))

    if report.failures or report.skipped:
        problems = Table(show_header=False, expand=True, padding=(0, 1))
        problems.add_column("kind", width=8)
        problems.add_column("detail")
        for failure in report.failures:
            problems.add_row("[bold red]ERROR[/bold red]", str(failure))
        for name in report.skipped:
            problems.add_row("[dim]SKIP[/dim]", f"{name} (server version too old)")
        parts.append(Panel(problems, title="Scrapers", border_style="red" if report.failures else "dim"))

    return Group(*parts)


def print_report(report: ScrapeReport, source_name: str, console: Optional[Console] = None):
    console = console or Console()
    console.print(build_display(report, source_name))


def build_scrapers_table(scrapers: ScraperRegistry) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Min version", justify="right")
    table.add_column("Metrics")
    table.add_column("Help", style="dim")
    for scraper in scrapers:
        metrics = ", ".join(d.name for d in scrapers.descriptors_for(scraper.name()))
        table.add_row(scraper.name(), f"{scraper.minimum_source_version():.1f}", metrics, scraper.help())
    return table


def report_records(report: ScrapeReport) -> list:
    """One JSON-ready dict per sample, stamped with the scrape time."""
    timestamp = datetime.now(timezone.utc).isoformat()
    records = []
    for sample in report.samples:
        record = sample.summary()
        record["timestamp"] = timestamp
        records.append(record)
    for failure in report.failures:
        records.append({
            "timestamp": timestamp,
            "error": str(failure.error),
            "scraper": failure.name,
        })
    return records


def write_jsonl(report: ScrapeReport, stream: Optional[IO[str]] = None):
    stream = stream or sys.stdout
    for record in report_records(report):
        stream.write(json.dumps(record) + "\n")
    stream.flush()


def run_dashboard(orchestrator: Orchestrator, source_name: str, refresh_interval: float = 5.0):
    console = Console()
    log.info("Starting watch: source=%s, refresh=%.1fs", source_name, refresh_interval)

    consecutive_down = 0

    with Live(console=console, refresh_per_second=1, screen=True) as live:
        try:
            while True:
                report = orchestrator.run_once()
                if report.up:
                    consecutive_down = 0
                else:
                    consecutive_down += 1
                    log.warning("Server down (attempt %d/%d)", consecutive_down, MAX_CONSECUTIVE_DOWN)
                    if consecutive_down >= MAX_CONSECUTIVE_DOWN:
                        log.error("Lost connection after %d attempts, exiting", MAX_CONSECUTIVE_DOWN)
                        break
                live.update(build_display(report, source_name))
                time.sleep(refresh_interval)
        except KeyboardInterrupt:
            pass

    if consecutive_down >= MAX_CONSECUTIVE_DOWN:
        console.print(f"\n[bold red]Lost connection after {MAX_CONSECUTIVE_DOWN} attempts[/bold red]")
    else:
        console.print("\n[dim]Watch stopped.[/dim]")


def run_jsonl(orchestrator: Orchestrator, refresh_interval: float = 5.0):
    """Non-interactive watch: one JSON object per sample per line.

    For Docker, CI pipelines, and log aggregators where a Rich view isn't
    available.
    """
    consecutive_down = 0

    try:
        while True:
            report = orchestrator.run_once()
            if report.up:
                consecutive_down = 0
            else:
                consecutive_down += 1
                log.warning("Server down (attempt %d/%d)", consecutive_down, MAX_CONSECUTIVE_DOWN)
                if consecutive_down >= MAX_CONSECUTIVE_DOWN:
                    log.error("Lost connection after %d attempts, exiting", MAX_CONSECUTIVE_DOWN)
                    break
            write_jsonl(report)
            time.sleep(refresh_interval)
    except KeyboardInterrupt:
        pass

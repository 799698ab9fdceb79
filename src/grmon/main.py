"""
grmon entry point.

Usage:
    grmon --dsn mysql+pymysql://exporter:pw@db:3306/ list
    grmon --dsn ... scrape                 One cycle, print samples
    grmon --dsn ... scrape --output jsonl  Same, as JSON lines
    grmon --dsn ... watch --refresh 5      Keep scraping
"""

from __future__ import annotations

import logging

import click
from rich.console import Console
from sqlalchemy.exc import ArgumentError

from grmon import __version__
from grmon.collector import build_descriptors, build_scrapers
from grmon.dashboard.terminal import (
    build_scrapers_table,
    print_report,
    run_dashboard,
    run_jsonl,
    write_jsonl,
)
from grmon.metrics import ValueKind
from grmon.orchestrator import DEFAULT_TIMEOUT_SECONDS, DEFAULT_WORKERS, Orchestrator
from grmon.source import SQLDataSource

log = logging.getLogger("grmon")


def _masked(dsn: str) -> str:
    """Hide the password part of a DSN for display."""
    if "@" not in dsn or "://" not in dsn:
        return dsn
    scheme, rest = dsn.split("://", 1)
    creds, host = rest.rsplit("@", 1)
    user = creds.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def _build_registry(ctx):
    descriptors = build_descriptors()
    kind = ValueKind.COUNTER if ctx.obj["primary_as_counter"] else ValueKind.GAUGE
    scrapers = build_scrapers(descriptors, primary_kind=kind)
    try:
        return scrapers.select(
            enabled=ctx.obj["collect"] or None,
            disabled=ctx.obj["no_collect"],
        )
    except KeyError as e:
        raise click.BadParameter(
            f"{e.args[0]} Known scrapers: {', '.join(scrapers.names())}",
            param_hint="--collect/--no-collect",
        ) from e


def _build_orchestrator(ctx) -> Orchestrator:
    dsn = ctx.obj["dsn"]
    if not dsn:
        click.echo("Please specify a data source: --dsn <url> or GRMON_DSN")
        raise SystemExit(1)
    scrapers = _build_registry(ctx)
    try:
        source = SQLDataSource.from_url(dsn, pool_size=ctx.obj["pool_size"])
    except ArgumentError as e:
        raise click.BadParameter(f"{_masked(dsn)}: {e}", param_hint="--dsn") from e
    return Orchestrator(
        source,
        scrapers,
        timeout_seconds=ctx.obj["timeout"],
        max_workers=ctx.obj["workers"],
    )


@click.group()
@click.version_option(version=__version__, prog_name="grmon")
@click.option("--dsn", envvar="GRMON_DSN", default=None,
              help="SQLAlchemy database URL (e.g. mysql+pymysql://user:pw@host:3306/)")
@click.option("--timeout", default=DEFAULT_TIMEOUT_SECONDS, type=float,
              help="Per-cycle scrape deadline in seconds")
@click.option("--pool-size", default=DEFAULT_WORKERS, type=int, help="Database connection pool size")
@click.option("--workers", default=DEFAULT_WORKERS, type=int, help="Scrapers run concurrently")
@click.option("--collect", "-c", multiple=True, help="Only run this scraper (repeatable)")
@click.option("--no-collect", multiple=True, help="Don't run this scraper (repeatable)")
@click.option("--primary-as-counter", is_flag=True, default=False,
              help="Expose the primary count as a counter, like older exporters did")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx, dsn, timeout, pool_size, workers, collect, no_collect, primary_as_counter, verbose):
    """grmon - MySQL group replication metrics scrapers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.ensure_object(dict)
    ctx.obj["dsn"] = dsn
    ctx.obj["timeout"] = timeout
    ctx.obj["pool_size"] = pool_size
    ctx.obj["workers"] = workers
    ctx.obj["collect"] = list(collect)
    ctx.obj["no_collect"] = list(no_collect)
    ctx.obj["primary_as_counter"] = primary_as_counter


@cli.command("list")
@click.pass_context
def list_scrapers(ctx):
    """Show the scrapers that would run."""
    Console().print(build_scrapers_table(_build_registry(ctx)))


@cli.command()
@click.option("--output", type=click.Choice(["table", "jsonl"]), default="table",
              help="Output mode: table (Rich) or jsonl (one JSON line per sample)")
@click.pass_context
def scrape(ctx, output: str):
    """Run one scrape cycle and print the samples."""
    orchestrator = _build_orchestrator(ctx)
    try:
        report = orchestrator.run_once()
    finally:
        orchestrator.close()
        orchestrator.source.close()

    if output == "jsonl":
        write_jsonl(report)
    else:
        print_report(report, _masked(ctx.obj["dsn"]))

    if not report.ok:
        raise SystemExit(1)


@cli.command()
@click.option("--refresh", default=5.0, help="Seconds between scrape cycles")
@click.option("--output", type=click.Choice(["tui", "jsonl"]), default="tui",
              help="Output mode: tui (Rich live view) or jsonl")
@click.pass_context
def watch(ctx, refresh: float, output: str):
    """Scrape repeatedly until interrupted."""
    orchestrator = _build_orchestrator(ctx)
    try:
        if output == "jsonl":
            run_jsonl(orchestrator, refresh_interval=refresh)
        else:
            run_dashboard(orchestrator, _masked(ctx.obj["dsn"]), refresh_interval=refresh)
    finally:
        orchestrator.close()
        orchestrator.source.close()


if __name__ == "__main__":
    cli()

"""Diagnostics CLI for the freshness layer.

Commands:
    - cache show: Table of mirrored entries with age and freshness
    - cache clear: Purge the durable cache mirror
    - cache check KEY: Validity and refresh decision for one entry
    - probe URL: Run one health probe

Public API:
    main: Click group for 'pinnity-freshness'
"""

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Any, NoReturn

import click
from rich.console import Console
from rich.table import Table

from pinnity_freshness import __version__
from pinnity_freshness.cache.persistence import JsonFileStore
from pinnity_freshness.cache.query_cache import CacheEntry, QueryCache
from pinnity_freshness.cache.staleness import StalenessThresholds
from pinnity_freshness.cache.status import CacheStatus
from pinnity_freshness.config import FreshnessConfig
from pinnity_freshness.errors import CacheCorruptError, ConfigError, ProbeError
from pinnity_freshness.health_probe import HealthProbe

logger = logging.getLogger(__name__)

__all__ = ["main"]


def _format_age(age: float | None) -> str:
    if age is None:
        return "unknown"
    if age < 60:
        return f"{age:.0f}s"
    if age < 3600:
        return f"{age / 60:.0f}m"
    return f"{age / 3600:.1f}h"


def _freshness_label(status: CacheStatus, thresholds: StalenessThresholds, now: float) -> str:
    """Rich-markup freshness label for one entry."""
    if not thresholds.is_valid(status, now):
        return "[red]expired[/red]"
    if thresholds.should_refresh(status, now):
        return "[yellow]refresh[/yellow]"
    return "[green]fresh[/green]"


def _exit_corrupt(error: CacheCorruptError) -> NoReturn:
    click.echo(f"Error: {error}", err=True)
    click.echo("Run 'pinnity-freshness cache clear' to reset the cache.", err=True)
    sys.exit(1)


def _load_records(store: JsonFileStore) -> dict[str, dict[str, Any]]:
    try:
        return {key: record for key in store.keys() if (record := store.get(key)) is not None}
    except CacheCorruptError as e:
        _exit_corrupt(e)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: str | None) -> None:
    """pinnity-freshness - inspect the client cache and connectivity checks.

    \b
    Examples:
        pinnity-freshness cache show
        pinnity-freshness cache check deals/42
        pinnity-freshness probe https://api.example.com/api/health
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")

    try:
        ctx.obj = FreshnessConfig.load(Path(config_path) if config_path else None)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.group()
def cache() -> None:
    """Inspect or reset the durable cache mirror."""


@cache.command(name="show")
@click.pass_obj
def cache_show(config: FreshnessConfig) -> None:
    """Show mirrored cache entries."""
    store = JsonFileStore(config.cache_path)
    records = _load_records(store)

    if not records:
        click.echo(f"No cached entries in {store.path}")
        return

    thresholds = StalenessThresholds(config.max_age)
    now = time.time()

    table = Table(title=f"Query Cache ({store.path})", show_header=True, header_style="bold")
    table.add_column("Key", style="cyan")
    table.add_column("Cached", justify="center")
    table.add_column("Age", justify="right")
    table.add_column("Freshness")

    for key in sorted(records):
        try:
            status = CacheEntry.from_dict(key, records[key]).status
        except CacheCorruptError:
            table.add_row(key, "-", "-", "[red]unreadable[/red]")
            continue
        table.add_row(
            key,
            "yes" if status.is_cached else "no",
            _format_age(status.age(now)),
            _freshness_label(status, thresholds, now),
        )

    console = Console()
    console.print(table)
    console.print(f"[dim]{len(records)} entries, max age {_format_age(config.max_age)}[/dim]")


@cache.command(name="clear")
@click.confirmation_option(prompt="Remove all cached query data?")
@click.pass_obj
def cache_clear(config: FreshnessConfig) -> None:
    """Purge the durable cache mirror."""
    query_cache = QueryCache(mirror=JsonFileStore(config.cache_path))
    if asyncio.run(query_cache.clear()):
        click.echo(click.style("Cache cleared", fg="green"))
    else:
        click.echo("Error: cache mirror could not be purged", err=True)
        sys.exit(1)


@cache.command(name="check")
@click.argument("key")
@click.pass_obj
def cache_check(config: FreshnessConfig, key: str) -> None:
    """Report validity and refresh decision for KEY."""
    store = JsonFileStore(config.cache_path)
    try:
        record = store.get(key)
    except CacheCorruptError as e:
        _exit_corrupt(e)

    if record is None:
        click.echo(f"'{key}' is not cached (refresh needed)")
        sys.exit(1)

    try:
        status = CacheEntry.from_dict(key, record).status
    except CacheCorruptError as e:
        _exit_corrupt(e)

    thresholds = StalenessThresholds(config.max_age)
    now = time.time()

    click.echo(f"Key:      {key}")
    click.echo(f"Cached:   {'yes' if status.is_cached else 'no'}")
    click.echo(f"Age:      {_format_age(status.age(now))}")
    click.echo(f"Valid:    {'yes' if thresholds.is_valid(status, now) else 'no'}")
    click.echo(f"Refresh:  {'yes' if thresholds.should_refresh(status, now) else 'no'}")


@main.command()
@click.argument("url", required=False)
@click.option("--timeout", type=float, help="Probe timeout in seconds")
@click.pass_obj
def probe(config: FreshnessConfig, url: str | None, timeout: float | None) -> None:
    """Probe a health endpoint (default: configured probe_url)."""
    url = url or config.probe_url
    if not url:
        click.echo("Error: No URL given and no probe_url configured.", err=True)
        sys.exit(1)

    try:
        health_probe = HealthProbe(url, timeout or config.probe_timeout)
    except ProbeError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    result = health_probe.check()
    if result.reachable:
        click.echo(
            click.style("online", fg="green")
            + f"  {url} -> {result.status_code} in {result.elapsed * 1000:.0f}ms"
        )
        return

    detail = result.error or f"HTTP {result.status_code}"
    click.echo(click.style("offline", fg="red") + f"  {url}: {detail}")
    sys.exit(1)


if __name__ == "__main__":
    main()

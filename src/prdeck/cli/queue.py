from __future__ import annotations

import asyncio

import click

from prdeck.cli.utils import _load_config, build_aggregator, format_item, run
from prdeck.config import Config
from prdeck.grouping import GROUP_LABELS, group_and_sort, get_summary
from prdeck.models import GROUPS, RefreshResult, Summary
from prdeck.scheduler import (
    Disconnected,
    Failed,
    Idle,
    IndicatorScheduler,
    Loaded,
    Loading,
    SchedulerState,
)
from prdeck.services.github import CliConnectivityProbe


def _report_degraded(result: RefreshResult) -> None:
    for err in result.degraded:
        click.echo(f"Warning: {err}", err=True)


def _refresh(force: bool, search: str | None) -> tuple[Config, RefreshResult]:
    config = _load_config()
    aggregator = build_aggregator(config)
    result = run(aggregator.refresh(force=force, search=search))
    if result.error is not None:
        raise click.ClickException(f"Failed to load pull requests: {result.error}")
    _report_degraded(result)
    return config, result


def format_summary(summary: Summary) -> str:
    if summary.total_count == 0:
        return "Nothing needs your attention."
    parts = [f"{GROUP_LABELS[g]}: {n}" for g, n in summary.groups_with_counts if n]
    text = f"{summary.total_count} pull request(s) need your attention"
    if parts:
        text += f" ({', '.join(parts)})"
    if summary.top_item is not None:
        text += f"\nTop: {summary.top_item.label} {summary.top_label}"
    return text


@click.command("list")
@click.option("--force", is_flag=True, help="Ignore cached data.")
@click.option("--search", default=None, help="Look up a single pull request by URL or text.")
@click.option(
    "--group",
    "group_filter",
    type=click.Choice(GROUPS),
    default=None,
    help="Only show one group.",
)
def list_cmd(force: bool, search: str | None, group_filter: str | None) -> None:
    """List pull requests grouped by what they need."""
    _, result = _refresh(force, search)
    if not result.items:
        click.echo("No pull requests found.")
        return

    grouped = group_and_sort(result.items)
    for group in GROUPS:
        if group_filter is not None and group != group_filter:
            continue
        members = grouped[group]
        if not members:
            continue
        click.echo(f"{GROUP_LABELS[group]} ({len(members)})")
        for item in members:
            click.echo(f"  {format_item(item)}")
        click.echo()


@click.command()
@click.option("--force", is_flag=True, help="Ignore cached data.")
def summary(force: bool) -> None:
    """Print counts of the priority groups and the most urgent pull request."""
    config, result = _refresh(force, None)
    grouped = group_and_sort(result.items)
    click.echo(format_summary(get_summary(grouped, config.indicator_groups)))


def describe_state(state: SchedulerState, config: Config) -> str:
    if isinstance(state, Idle):
        return "Polling is disabled."
    if isinstance(state, Disconnected):
        return "No provider connected. Run `gh auth login` to connect GitHub."
    if isinstance(state, Loading):
        return "Loading pull requests..."
    if isinstance(state, Failed):
        return f"Refresh failed: {state.error}"
    if isinstance(state, Loaded):
        grouped = group_and_sort(state.items)
        return format_summary(get_summary(grouped, config.indicator_groups))
    raise ValueError(f"Unknown indicator state: {state!r}")


async def _watch(config: Config) -> None:
    aggregator = build_aggregator(config)
    requests: asyncio.Queue = asyncio.Queue()
    scheduler = IndicatorScheduler(
        requests,
        CliConnectivityProbe(),
        polling_enabled=config.polling_enabled,
        interval=config.polling_interval_minutes * 60,
        startup_grace=config.startup_grace_seconds,
    )
    states = scheduler.subscribe()
    tasks = [
        asyncio.create_task(aggregator.serve(requests)),
        asyncio.create_task(scheduler.listen(aggregator.subscribe())),
    ]
    try:
        await scheduler.start()
        while True:
            state = await states.get()
            click.echo(describe_state(state, config))
            if isinstance(state, (Idle, Disconnected)):
                return
            if isinstance(state, Failed):
                # No focus events in a terminal; try again after one interval
                scheduler.retry()
    finally:
        scheduler.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


@click.command()
def watch() -> None:
    """Poll for pull requests and print each indicator update."""
    config = _load_config()
    try:
        run(_watch(config))
    except KeyboardInterrupt:
        pass

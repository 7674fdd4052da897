from __future__ import annotations

from datetime import datetime, timedelta, timezone

import click

from prdeck.cli.utils import _load_config, build_aggregator, run
from prdeck.errors import UnsupportedProviderError
from prdeck.models import CategorizedItem
from prdeck.services.aggregator import Aggregator


async def _find_item(aggregator: Aggregator, ref: str) -> CategorizedItem:
    """Resolve a pull request URL or uuid to a queue entry.

    Items outside the queue are looked up with a search.
    """
    ref = ref.strip()
    result = await aggregator.refresh()
    if result.error is None:
        for item in result.items:
            if ref in (item.uuid, item.work_item.url):
                return item

    result = await aggregator.refresh(search=ref)
    if result.error is not None:
        raise click.ClickException(f"Failed to look up '{ref}': {result.error}")
    if not result.items:
        raise click.ClickException(f"No pull request matches '{ref}'.")
    return result.items[0]


async def _pin(ref: str) -> str:
    aggregator = build_aggregator(_load_config())
    item = await _find_item(aggregator, ref)
    if item.is_pinned:
        return f"{item.label} is already pinned."
    await aggregator.pin(item)
    return f"Pinned {item.label}."


async def _unpin(ref: str) -> str:
    aggregator = build_aggregator(_load_config())
    item = await _find_item(aggregator, ref)
    if not await aggregator.unpin(item):
        return f"{item.label} is not pinned."
    return f"Unpinned {item.label}."


async def _snooze(ref: str, days: int | None) -> str:
    aggregator = build_aggregator(_load_config())
    item = await _find_item(aggregator, ref)
    until = datetime.now(timezone.utc) + timedelta(days=days) if days else None
    await aggregator.snooze(item, until)
    if until is not None:
        return f"Snoozed {item.label} until {until:%Y-%m-%d %H:%M} UTC."
    return f"Snoozed {item.label}."


async def _unsnooze(ref: str) -> str:
    aggregator = build_aggregator(_load_config())
    item = await _find_item(aggregator, ref)
    if not await aggregator.unsnooze(item):
        return f"{item.label} is not snoozed."
    return f"Unsnoozed {item.label}."


@click.command()
@click.argument("ref")
def pin(ref: str) -> None:
    """Pin a pull request (URL or id) to the top of the queue."""
    try:
        click.echo(run(_pin(ref)))
    except UnsupportedProviderError as e:
        raise click.ClickException(str(e))


@click.command()
@click.argument("ref")
def unpin(ref: str) -> None:
    """Remove a pin."""
    click.echo(run(_unpin(ref)))


@click.command()
@click.argument("ref")
@click.option(
    "--days",
    type=click.IntRange(min=1),
    default=None,
    help="Snooze for this many days instead of indefinitely.",
)
def snooze(ref: str, days: int | None) -> None:
    """Hide a pull request in the snoozed group."""
    try:
        click.echo(run(_snooze(ref, days)))
    except UnsupportedProviderError as e:
        raise click.ClickException(str(e))


@click.command()
@click.argument("ref")
def unsnooze(ref: str) -> None:
    """Bring a snoozed pull request back into the queue."""
    click.echo(run(_unsnooze(ref)))

from __future__ import annotations

import click

from prdeck.cli.admin import config
from prdeck.cli.annotations import pin, snooze, unpin, unsnooze
from prdeck.cli.queue import list_cmd, summary, watch


@click.group()
def cli() -> None:
    """prdeck: a pull request queue sorted by what needs your attention."""


# Register queue commands
cli.add_command(list_cmd)
cli.add_command(summary)
cli.add_command(watch)

# Register annotation commands
cli.add_command(pin)
cli.add_command(unpin)
cli.add_command(snooze)
cli.add_command(unsnooze)

# Register admin commands
cli.add_command(config)

__all__ = ["cli"]

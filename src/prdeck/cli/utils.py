from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click

from prdeck.config import Config, get_config
from prdeck.db import SqliteAnnotationSource
from prdeck.models import CategorizedItem
from prdeck.services.aggregator import Aggregator
from prdeck.services.github import GitHubSource, GitHubSuggestionCounts
from prdeck.worktree import GitRepositoryMatcher, get_current_repo

T = TypeVar("T")


def _load_config() -> Config:
    """Load configuration, turning validation errors into CLI errors."""
    try:
        return get_config()
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")


def _repository_paths(config: Config) -> list[Path]:
    paths = list(config.repositories)
    current = get_current_repo()
    if current is not None:
        current_path = Path(current[1])
        if current_path not in paths:
            paths.insert(0, current_path)
    return paths


def build_aggregator(config: Config) -> Aggregator:
    config.base_dir.mkdir(parents=True, exist_ok=True)
    return Aggregator(
        GitHubSource(),
        SqliteAnnotationSource(config.base_dir / "prdeck.db"),
        GitHubSuggestionCounts(),
        GitRepositoryMatcher(_repository_paths(config)),
        config,
    )


def run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def format_item(item: CategorizedItem) -> str:
    """One-line rendering of a queue entry."""
    marker = "*" if item.is_new else " "
    flags = []
    if item.is_draft:
        flags.append("draft")
    if item.suggestion_count:
        flags.append(f"{item.suggestion_count} suggestion(s)")
    if item.local is not None and item.local.branch:
        flags.append(f"local:{item.local.branch}")
    suffix = f"  ({', '.join(flags)})" if flags else ""
    return (
        f"{marker} {item.label:<30}  {item.category:<22}  "
        f"{item.work_item.title[:50]}{suffix}"
    )

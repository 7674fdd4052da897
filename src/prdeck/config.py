from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from prdeck.models import GROUPS, PRIORITY_GROUPS

CONFIG_DIR = Path.home() / ".config" / "prdeck"
CONFIG_FILE = CONFIG_DIR / "config.toml"

DEFAULT_BASE_DIR = Path.home() / ".local" / "share" / "prdeck"

DEFAULT_CONFIG = """\
[launchpad]
# Pull requests not updated for this many days are moved to "other".
# stale_threshold_days = 30
# Repositories ("owner/name") and organizations to leave out of the queue.
ignored_repositories = []
ignored_organizations = []
# How long fetched data is reused before hitting the providers again.
cache_ttl_minutes = 30
# Fetches slower than this are reported in the log.
slow_threshold_seconds = 30

[indicator]
# Groups that count towards the summary, in priority order.
groups = ["mergeable", "blocked", "follow-up", "needs-review"]

[indicator.polling]
enabled = true
interval_minutes = 30
# Delay before the first fetch after startup.
startup_grace_seconds = 5

[repositories]
# Local clones used to detect checked-out pull request branches.
# paths = ["~/code/my-project"]
paths = []

[storage]
base_dir = "~/.local/share/prdeck"
"""


@dataclass
class Config:
    base_dir: Path = DEFAULT_BASE_DIR
    stale_threshold_days: int | None = None
    ignored_repositories: frozenset[str] = frozenset()  # lowercase owner/name
    ignored_organizations: frozenset[str] = frozenset()  # lowercase owner
    cache_ttl_minutes: float = 30
    slow_threshold_seconds: float = 30
    indicator_groups: tuple[str, ...] = PRIORITY_GROUPS
    polling_enabled: bool = True
    polling_interval_minutes: float = 30
    startup_grace_seconds: float = 5
    repositories: list[Path] = field(default_factory=list)

    @classmethod
    def load(cls) -> Config:
        if CONFIG_FILE.exists():
            with open(CONFIG_FILE, "rb") as f:
                data = tomllib.load(f)
        else:
            data = {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        launchpad = data.get("launchpad", {})
        indicator = data.get("indicator", {})
        polling = indicator.get("polling", {})
        repositories = data.get("repositories", {})
        storage = data.get("storage", {})

        config = cls(
            base_dir=Path(storage.get("base_dir", str(DEFAULT_BASE_DIR))).expanduser(),
            stale_threshold_days=launchpad.get("stale_threshold_days"),
            ignored_repositories=frozenset(
                r.lower() for r in launchpad.get("ignored_repositories", [])
            ),
            ignored_organizations=frozenset(
                o.lower() for o in launchpad.get("ignored_organizations", [])
            ),
            cache_ttl_minutes=launchpad.get("cache_ttl_minutes", 30),
            slow_threshold_seconds=launchpad.get("slow_threshold_seconds", 30),
            indicator_groups=tuple(indicator.get("groups", PRIORITY_GROUPS)),
            polling_enabled=polling.get("enabled", True),
            polling_interval_minutes=polling.get("interval_minutes", 30),
            startup_grace_seconds=polling.get("startup_grace_seconds", 5),
            repositories=[Path(p).expanduser() for p in repositories.get("paths", [])],
        )
        _validate_config(config)
        return config


def _validate_config(config: Config) -> None:
    """Raise ValueError on out-of-range or unknown values."""
    if config.stale_threshold_days is not None and config.stale_threshold_days < 1:
        raise ValueError("launchpad.stale_threshold_days must be at least 1.")
    if config.cache_ttl_minutes <= 0:
        raise ValueError("launchpad.cache_ttl_minutes must be positive.")
    if config.slow_threshold_seconds <= 0:
        raise ValueError("launchpad.slow_threshold_seconds must be positive.")
    if config.polling_interval_minutes < 0:
        raise ValueError("indicator.polling.interval_minutes cannot be negative.")
    if config.startup_grace_seconds < 0:
        raise ValueError("indicator.polling.startup_grace_seconds cannot be negative.")
    for repo in config.ignored_repositories:
        if repo.count("/") != 1:
            raise ValueError(
                f"Ignored repository '{repo}' must be in 'owner/name' form."
            )
    unknown = [g for g in config.indicator_groups if g not in GROUPS]
    if unknown:
        raise ValueError(f"Unknown indicator group(s): {', '.join(unknown)}.")


def get_config() -> Config:
    return Config.load()


def ensure_config() -> Path:
    """Create default config file if it doesn't exist. Returns config path."""
    if not CONFIG_FILE.exists():
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        CONFIG_FILE.write_text(DEFAULT_CONFIG)
    return CONFIG_FILE

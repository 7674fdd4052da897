"""
Structured diagnostics for the refresh pipeline.

Nothing is sent anywhere: events go to the log and counters stay in memory so
tests can assert on instrumentation.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("prdeck.telemetry")

_COUNTERS: dict[str, int] = {}


def log_event(event_name: str, **fields: Any) -> None:
    """Emit a structured event at info level and bump its counter."""
    counter(event_name)
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    value = _COUNTERS.get(name, 0) + increment
    _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def reset_counters() -> None:
    """Clear all counters (useful for tests)."""
    _COUNTERS.clear()

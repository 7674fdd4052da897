"""Error kinds raised across the refresh pipeline."""

from __future__ import annotations


class FetchFailedError(Exception):
    """Raised when the primary work-item fetch fails for a refresh cycle."""

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__(
            f"Failed to fetch pull requests: {reason}"
            if reason
            else "Failed to fetch pull requests."
        )


class DegradedSourceError(Exception):
    """A secondary source (annotations, suggestion counts) failed.

    Never raised out of the aggregator; it is logged and attached to the
    refresh result for diagnostics.
    """

    def __init__(self, source: str, cause: BaseException) -> None:
        self.source = source
        self.cause = cause
        super().__init__(f"{source} unavailable: {cause}")


class RefreshCancelledError(Exception):
    """Raised when a refresh is cancelled before it completes."""

    def __init__(self) -> None:
        super().__init__("Refresh cancelled.")


class UnsupportedProviderError(Exception):
    """Raised when an action targets an item from an unsupported provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}' is not supported.")

"""Error taxonomy for `now-logs`.

Configuration errors (`InvalidDateFormat`, `InvalidTarget`, `MissingToken`) are
raised before the engine starts. `SourceFetchFailure` is fatal to a run.
`SubscriptionError` is informational: the live source reports it and then
reconnects on its own.
"""

from __future__ import annotations


class NowLogsError(RuntimeError):
    """Base class for errors surfaced to the CLI user."""


class InvalidDateFormat(NowLogsError, ValueError):
    """Raised when a `--since`/`--until` value is not a parseable date."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid date string: {value}")
        self.value = value


class InvalidTarget(NowLogsError, ValueError):
    """Raised when a URL-style target carries a path component."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid deployment url: can't include path ({value})")
        self.value = value


class MissingToken(NowLogsError):
    """Raised when no API token was passed and none is configured."""


class SourceFetchFailure(NowLogsError):
    """Raised when the historical logs query fails (network, auth, not found)."""


class SubscriptionError(NowLogsError):
    """Transport-level error reported by the live subscription."""

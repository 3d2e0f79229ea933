"""Tail a deployment's logs in order, exactly once.

This package prints the logs of a single deployment. Without `--follow` it
issues one historical query and prints the sorted result. With `--follow` it
also subscribes to the live log feed and reconciles the two:

- Every time the subscription becomes ready (first connect and each
  reconnect) a backfill query runs from the last printed serial, closing any
  gap left by the disconnect.
- Backfill results and buffered live records are merged by identity, so an
  entry seen both ways prints once.
- Live records wait in a short reorder buffer (`REORDER_DELAY_SECONDS`) so
  small-scale out-of-order delivery is corrected before printing.

Design notes / boundaries:
- Nothing is persisted; a restart re-reads from `--since`.
- One deployment per run. Run parameters travel in an explicit `RunConfig`.
- Serials are assumed monotonic with wall-clock order and identities stable;
  both are preconditions on the remote services.

Implementation note:
- Internal logic is split across `nowlogs.*` submodules.
"""

from __future__ import annotations

from .cli import build_run_config, main, run
from .config import RunConfig, Settings
from .engine import ReconciliationEngine
from .errors import (
    InvalidDateFormat,
    InvalidTarget,
    MissingToken,
    NowLogsError,
    SourceFetchFailure,
    SubscriptionError,
)
from .historical import HistoricalSource, NowLogsApi
from .live import (
    Authenticating,
    Connected,
    Disconnected,
    Entry,
    LiveEvent,
    LiveSource,
    Ready,
    SocketIOLiveSource,
    SubscriptionFailed,
)
from .record import DEFAULT_TYPES, LogRecord, compare, deserialize, sort_records
from .reorder import REORDER_DELAY_SECONDS, ReorderBuffer
from .serial import LogSerial, parse_instant, parse_since
from .sink import ConsoleSink, Sink, format_payload, format_record
from .target import Target, maybe_url, normalize_url, parse_instance_url, parse_target

__all__ = [
    "DEFAULT_TYPES",
    "REORDER_DELAY_SECONDS",
    "Authenticating",
    "Connected",
    "ConsoleSink",
    "Disconnected",
    "Entry",
    "HistoricalSource",
    "InvalidDateFormat",
    "InvalidTarget",
    "LiveEvent",
    "LiveSource",
    "LogRecord",
    "LogSerial",
    "MissingToken",
    "NowLogsApi",
    "NowLogsError",
    "Ready",
    "ReconciliationEngine",
    "ReorderBuffer",
    "RunConfig",
    "Settings",
    "Sink",
    "SocketIOLiveSource",
    "SourceFetchFailure",
    "SubscriptionError",
    "SubscriptionFailed",
    "Target",
    "build_run_config",
    "compare",
    "deserialize",
    "format_payload",
    "format_record",
    "main",
    "maybe_url",
    "normalize_url",
    "parse_instance_url",
    "parse_instant",
    "parse_since",
    "parse_target",
    "run",
    "sort_records",
]

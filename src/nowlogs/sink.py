"""Record rendering.

`format_record()` turns a record into display lines; `ConsoleSink` prints
them with rich, dimming the date prefix. Access-log categories get a compact
one-line form; everything else prints its structured payload as indented
JSON or its text with one trailing newline stripped.
"""

from __future__ import annotations

import datetime
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from rich.console import Console
from rich.markup import escape

from .record import LogRecord

logger = logging.getLogger(__name__)

_DATE_FORMAT = "%m/%d %I:%M %p"


class Sink(Protocol):
    def render(self, record: LogRecord) -> None: ...


def _field(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    return "" if value is None else str(value)


def format_payload(record: LogRecord) -> str:
    payload = record.payload
    if isinstance(payload, str):
        return payload[:-1] if payload.endswith("\n") else payload
    if record.category == "request":
        return (
            f'REQ "{_field(payload, "method")} {_field(payload, "uri")}'
            f' {_field(payload, "protocol")}"'
            f' {_field(payload, "remoteAddr")} - {_field(payload, "remoteUser")}'
            f' "{_field(payload, "referer")}" "{_field(payload, "userAgent")}"'
        )
    if record.category == "response":
        return (
            f'RES "{_field(payload, "method")} {_field(payload, "uri")}'
            f' {_field(payload, "protocol")}"'
            f' {_field(payload, "status")} {_field(payload, "bodyBytesSent")}'
        )
    return json.dumps(payload, indent=2, ensure_ascii=False)


def format_date(record: LogRecord, *, tz: datetime.tzinfo | None = None) -> str:
    return record.timestamp.astimezone(tz).strftime(_DATE_FORMAT)


def format_record(
    record: LogRecord, *, tz: datetime.tzinfo | None = None
) -> list[tuple[str, str]]:
    """Return `(prefix, line)` pairs; continuation lines get a blank prefix."""

    date = format_date(record, tz=tz)
    pad = " " * len(date)
    return [
        (date if i == 0 else pad, line)
        for i, line in enumerate(format_payload(record).split("\n"))
    ]


@dataclass(slots=True)
class ConsoleSink:
    """Print records to the terminal.

    Rendering failures are logged and never propagate to the engine.
    """

    console: Console = field(default_factory=lambda: Console(highlight=False))
    tz: datetime.tzinfo | None = None

    def render(self, record: LogRecord) -> None:
        try:
            for prefix, line in format_record(record, tz=self.tz):
                self.console.print(f"[dim]{prefix}[/dim]  {escape(line)}", soft_wrap=True)
        except Exception:
            logger.exception("failed to render record id=%s", record.identity)

"""Pydantic entities for decoded deployment log records.

Raw entries arrive as JSON objects from both the historical API and the live
subscription. Field names on the wire are kept as aliases:

- `id` -> `identity` (stable across the deployment's history)
- `serial` -> `serial` (`LogSerial`, the sort key)
- `date` -> `timestamp` (falls back to the serial's millis prefix)
- `type` -> `category` (unknown types collapse to `"other"`)
- `object` / `text` -> structured or free-text payload

Ordering contract:
    `sort_key()` orders by serial, then by `created` (legacy logs may share a
    serial), then by identity. Every set of records therefore has exactly one
    sorted order.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Final, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .serial import LogSerial

type Category = Literal[
    "command", "stdout", "stderr", "exit", "request", "response", "other"
]

CATEGORIES: Final[frozenset[str]] = frozenset(get_args(Category.__value__))
DEFAULT_TYPES: Final[tuple[str, ...]] = ("command", "stdout", "stderr", "exit")

_MIN_DATETIME: Final[datetime] = datetime.min.replace(tzinfo=UTC)


class LogRecord(BaseModel):
    """One decoded, immutable log entry."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    identity: str = Field(alias="id", min_length=1)
    serial: LogSerial
    timestamp: datetime = Field(alias="date")
    category: Category = Field(default="other", alias="type")
    object_: dict[str, Any] | None = Field(default=None, alias="object")
    text: str | None = None
    created: datetime | None = None
    instance_id: str | None = Field(default=None, alias="instanceId")

    @field_validator("identity", mode="before")
    @classmethod
    def _coerce_identity(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("serial", mode="before")
    @classmethod
    def _parse_serial(cls, value: Any) -> LogSerial:
        if isinstance(value, LogSerial):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        return LogSerial(value)

    @field_validator("category", mode="before")
    @classmethod
    def _collapse_unknown_category(cls, value: Any) -> Any:
        if value is None:
            return "other"
        return value if value in CATEGORIES else "other"

    @field_validator("timestamp", "created")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @model_validator(mode="before")
    @classmethod
    def _default_timestamp_from_serial(cls, data: Any) -> Any:
        """Derive `date` from the serial when the entry does not carry one."""

        if not isinstance(data, dict):
            return data
        if data.get("date") is not None or data.get("timestamp") is not None:
            return data
        raw_serial = data.get("serial")
        try:
            serial = (
                raw_serial
                if isinstance(raw_serial, LogSerial)
                else LogSerial(str(raw_serial))
            )
        except ValueError:
            # Left for the field validator to report.
            return data
        if serial.instant is None:
            return data
        return {**data, "date": serial.instant}

    @property
    def payload(self) -> dict[str, Any] | str:
        if self.object_ is not None:
            return self.object_
        return self.text or ""

    def sort_key(self) -> tuple[tuple[int, str], datetime, str]:
        return (self.serial.sort_key, self.created or _MIN_DATETIME, self.identity)


def deserialize(raw: dict[str, Any]) -> LogRecord:
    """Decode a raw wire entry.

    Raises:
        pydantic.ValidationError: If the entry lacks an id, a valid serial, or
            any usable timestamp.
    """

    return LogRecord.model_validate(raw)


def compare(a: LogRecord, b: LogRecord) -> int:
    """Return -1, 0 or 1 following the ordering contract."""

    ka, kb = a.sort_key(), b.sort_key()
    return (ka > kb) - (ka < kb)


def sort_records(records: list[LogRecord] | tuple[LogRecord, ...]) -> list[LogRecord]:
    return sorted(records, key=LogRecord.sort_key)

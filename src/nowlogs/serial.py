"""Log serials: the ordering key for deployment log records.

A serial is a decimal string laid out as::

    <epoch millis><19-digit pid><19-digit sequence>

Serials compare numerically, so a serial built from an instant (the millis
followed by zeros in the pid/sequence slots) sorts at or before every real
serial produced at or after that instant. That is what makes it usable as a
`since`/`until` probe.

Invariant:
    Equality and hashing follow the numeric value, so `"007"` and `"7"` are the
    same serial. Two records with equal serials are simultaneous for ordering
    purposes only; identity still distinguishes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from functools import total_ordering
from typing import Final

from .errors import InvalidDateFormat

PID_LEN: Final[int] = 19
SEQ_LEN: Final[int] = 19
_SUFFIX_LEN: Final[int] = PID_LEN + SEQ_LEN

_EPOCH_UTC = datetime(1970, 1, 1, tzinfo=UTC)


def _datetime_to_posix_millis(value: datetime) -> int:
    """Return integer POSIX milliseconds for `value`.

    Naive datetimes are interpreted in the system local timezone.
    """

    if value.tzinfo is None:
        value = value.astimezone()
    delta = value.astimezone(UTC) - _EPOCH_UTC
    return delta.days * 86_400_000 + delta.seconds * 1000 + (delta.microseconds // 1000)


@total_ordering
@dataclass(frozen=True, slots=True, eq=False)
class LogSerial:
    """Totally-ordered sequencing key for log records."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not (
            self.value.isascii() and self.value.isdigit()
        ):
            raise ValueError(f"Invalid log serial: {self.value!r}")

    @classmethod
    def from_instant(cls, instant: datetime) -> LogSerial:
        """Build the lowest serial that can be produced at `instant`."""

        millis = _datetime_to_posix_millis(instant)
        if millis < 0:
            raise ValueError(f"Instant before epoch: {instant.isoformat()}")
        return cls(f"{millis}{'0' * _SUFFIX_LEN}")

    @property
    def sort_key(self) -> tuple[int, str]:
        digits = self.value.lstrip("0") or "0"
        return (len(digits), digits)

    @property
    def instant(self) -> datetime | None:
        """Best-effort creation instant encoded in the millis prefix."""

        prefix = self.value[:-_SUFFIX_LEN]
        if len(self.value) <= _SUFFIX_LEN or not prefix:
            return None
        return _EPOCH_UTC + timedelta(milliseconds=int(prefix))

    def compare(self, other: LogSerial) -> int:
        """Return -1, 0 or 1 as `self` sorts before, with, or after `other`."""

        a, b = self.sort_key, other.sort_key
        return (a > b) - (a < b)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LogSerial):
            return NotImplemented
        return self.sort_key == other.sort_key

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, LogSerial):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __hash__(self) -> int:
        return hash(self.sort_key)

    def __str__(self) -> str:
        return self.value


def parse_instant(value: str) -> datetime:
    """Parse an ISO 8601 date or datetime string.

    Date-only values are taken as UTC midnight; datetimes without an offset
    are local time. `Z` is accepted as a UTC designator.

    Raises:
        InvalidDateFormat: If `value` is not a parseable date.
    """

    raw = value.strip()
    if not raw:
        raise InvalidDateFormat(value)
    if raw[-1:] in {"Z", "z"}:
        raw = raw[:-1] + "+00:00"

    try:
        day = date.fromisoformat(raw)
    except ValueError:
        pass
    else:
        return datetime(day.year, day.month, day.day, tzinfo=UTC)

    try:
        return datetime.fromisoformat(raw)
    except ValueError as e:
        raise InvalidDateFormat(value) from e


def parse_since(value: str | None) -> LogSerial | None:
    """Turn an optional user-supplied date string into a serial bound."""

    if value is None or value == "":
        return None
    instant = parse_instant(value)
    try:
        return LogSerial.from_instant(instant)
    except ValueError as e:
        raise InvalidDateFormat(value) from e

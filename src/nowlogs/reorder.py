"""Bounded-delay reorder buffer for live log records.

Live delivery is not order-preserving. Each pushed record may arm a drain
check that fires `delay_seconds` after insertion. When the check for record
`r` fires, the buffered set is sorted and everything up to and including `r`
is released in order; records released this way have their own checks
cancelled. Anything later than `r` keeps waiting on its own check.

A check firing means no correction for anything at or before `r` arrived
within the grace window, so releasing that prefix is safe.

Concurrency:
    Timers run as tasks in the owner's task group, but they never release
    records themselves. They call `notify(identity)`, and the owner calls
    `release_through()` from its own event loop. All state changes therefore
    happen on the owner's single control flow.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Final

import anyio
from anyio.abc import TaskGroup

from .record import LogRecord

REORDER_DELAY_SECONDS: Final[float] = 0.3


@dataclass(slots=True)
class _Entry:
    record: LogRecord
    scope: anyio.CancelScope | None = None


@dataclass(slots=True)
class ReorderBuffer:
    """Hold live records briefly so small-scale reordering can be corrected.

    Invariant:
        Records are keyed by identity; a second push of a held identity is
        ignored. Every held record leaves the buffer exactly once, through
        `release_through()`, `release_all()` or `discard()`.
    """

    delay_seconds: float = REORDER_DELAY_SECONDS
    task_group: TaskGroup | None = None
    notify: Callable[[str], None] | None = None

    _entries: dict[str, _Entry] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        if self.delay_seconds <= 0:
            raise ValueError(f"delay_seconds must be > 0; got {self.delay_seconds}")
        if (self.task_group is None) != (self.notify is None):
            raise ValueError("task_group and notify must be set together")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    @property
    def armed(self) -> int:
        """Number of records with a pending drain check."""

        return sum(1 for entry in self._entries.values() if entry.scope is not None)

    def push(self, record: LogRecord, *, arm: bool = True) -> bool:
        """Insert `record`; return False if its identity is already held.

        When `arm` is true and timers are available, a drain check is
        scheduled `delay_seconds` from now.
        """

        if record.identity in self._entries:
            return False
        entry = _Entry(record=record)
        self._entries[record.identity] = entry
        if arm:
            self._arm(entry)
        return True

    def hold(self) -> int:
        """Cancel every pending check but keep all records buffered."""

        cancelled = 0
        for entry in self._entries.values():
            if self._disarm(entry):
                cancelled += 1
        return cancelled

    def release_through(self, identity: str) -> list[LogRecord]:
        """Release, in sorted order, every record not later than `identity`.

        Returns an empty list when `identity` is no longer held (for example
        because a backfill merge already emitted it).
        """

        target = self._entries.get(identity)
        if target is None:
            return []
        bound = target.record.sort_key()
        ready = sorted(
            (e for e in self._entries.values() if e.record.sort_key() <= bound),
            key=lambda e: e.record.sort_key(),
        )
        for entry in ready:
            self._disarm(entry)
            del self._entries[entry.record.identity]
        return [entry.record for entry in ready]

    def release_all(self) -> list[LogRecord]:
        """Flush everything in sorted order, cancelling all checks."""

        entries = sorted(self._entries.values(), key=lambda e: e.record.sort_key())
        for entry in entries:
            self._disarm(entry)
        self._entries.clear()
        return [entry.record for entry in entries]

    def discard(self, identities: Iterable[str]) -> int:
        """Drop the given identities without releasing them."""

        dropped = 0
        for identity in identities:
            entry = self._entries.pop(identity, None)
            if entry is None:
                continue
            self._disarm(entry)
            dropped += 1
        return dropped

    def _arm(self, entry: _Entry) -> None:
        if self.task_group is None or self.notify is None:
            return
        entry.scope = anyio.CancelScope()
        self.task_group.start_soon(
            self._wait_then_notify,
            entry.record.identity,
            entry.scope,
            name=f"reorder-check:{entry.record.identity}",
        )

    @staticmethod
    def _disarm(entry: _Entry) -> bool:
        if entry.scope is None:
            return False
        entry.scope.cancel()
        entry.scope = None
        return True

    async def _wait_then_notify(self, identity: str, scope: anyio.CancelScope) -> None:
        with scope:
            await anyio.sleep(self.delay_seconds)
            if self.notify is not None:
                self.notify(identity)

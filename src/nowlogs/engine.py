"""Streaming reconciliation engine.

Merges a historical backfill with a live, possibly reordered and duplicated
push feed into one gap-free, duplicate-free, time-ordered output.

Modes:
- One-shot (`follow=False`): a single historical query over `[since, until]`,
  sorted and emitted once. No subscription is opened.
- Follow (`follow=True`): a live subscription is opened. Every `Ready` starts a
  backfill from the last emitted serial (or `since`). When it returns, its
  records are merged with everything held in the reorder buffer,
  de-duplicated by identity, sorted, and emitted at once. After that, live
  records drain through the reorder buffer's grace delay.

Design notes / invariants:
- All wake-ups (live events, backfill completion, reorder checks) are posted
  to a single memory stream and handled one at a time by `_dispatch()`. Only
  that loop mutates the buffer, `last_emitted_serial` and the emitted
  identity window.
- Reorder checks are armed only while the feed is known contiguous: after a
  backfill merge and before the next `Disconnected`/`Ready`. Outside that
  window live records are held unarmed and go out with the next merge.
- A backfill that started before a disconnect still emits its own records
  (they are contiguous from the last emission), but held live records wait
  for the next backfill because the feed may have skipped some in between.
- A newer `Ready` supersedes an in-flight backfill; the stale one is
  cancelled and its result ignored.
- Backfill failures are fatal. Already-emitted output stays emitted.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectSendStream
from pydantic import ValidationError

from .config import RunConfig
from .errors import NowLogsError, SourceFetchFailure, SubscriptionError
from .historical import HistoricalSource
from .live import (
    Authenticating,
    Connected,
    Disconnected,
    Entry,
    LiveEvent,
    LiveSource,
    Ready,
    SubscriptionFailed,
)
from .record import LogRecord, deserialize, sort_records
from .reorder import REORDER_DELAY_SECONDS, ReorderBuffer
from .serial import LogSerial
from .sink import Sink

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _DrainDue:
    identity: str


@dataclass(frozen=True, slots=True)
class _BackfillDone:
    generation: int
    records: list[LogRecord]


@dataclass(frozen=True, slots=True)
class _BackfillFailed:
    generation: int
    error: SourceFetchFailure


@dataclass(frozen=True, slots=True)
class _LiveClosed:
    error: SubscriptionError | None = None


type _Signal = LiveEvent | _DrainDue | _BackfillDone | _BackfillFailed | _LiveClosed


class ReconciliationEngine:
    """Tail one deployment's logs into a `Sink`, in order and exactly once."""

    def __init__(
        self,
        run: RunConfig,
        *,
        historical: HistoricalSource,
        sink: Sink,
        token: str = "",
        reorder_delay_seconds: float = REORDER_DELAY_SECONDS,
        dedupe_window: int = 10_000,
    ) -> None:
        if dedupe_window <= 0:
            raise ValueError(f"dedupe_window must be > 0; got {dedupe_window}")
        self.run_config = run
        self.historical = historical
        self.sink = sink
        self._token = token
        self.reorder_delay_seconds = reorder_delay_seconds

        self._last_emitted: LogRecord | None = None
        self._emitted_order: deque[str] = deque(maxlen=dedupe_window)
        self._emitted_ids: set[str] = set()
        self._buffer = ReorderBuffer(delay_seconds=reorder_delay_seconds)

        self.live = False
        self._subscribed = False
        self._synced = False
        self._backfill_generation = 0
        self._backfill_scope: anyio.CancelScope | None = None
        self.backfill_count = 0
        self.emitted_count = 0

    @property
    def last_emitted_serial(self) -> LogSerial | None:
        return self._last_emitted.serial if self._last_emitted is not None else None

    @property
    def backfill_in_flight(self) -> bool:
        return self._backfill_scope is not None

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    async def run(self, live: LiveSource | None = None) -> None:
        """Run in the mode selected by `RunConfig.follow`."""

        if not self.run_config.follow:
            await self.run_once()
            return
        if live is None:
            raise ValueError("follow mode requires a live source")
        await self.follow(live)

    async def run_once(self) -> int:
        """Fetch `[since, until]` once, emit it sorted, and return the count."""

        records = await self._fetch_records(
            since=self.run_config.since, until=self.run_config.until
        )
        return self._emit_batch(records)

    async def follow(self, live: LiveSource) -> None:
        """Stream until the live source closes, a backfill fails, or cancelled."""

        send, receive = anyio.create_memory_object_stream[_Signal](
            max_buffer_size=math.inf
        )
        failure: NowLogsError | None = None
        self.live = True
        try:
            async with send, receive, anyio.create_task_group() as tg:
                self._buffer = ReorderBuffer(
                    delay_seconds=self.reorder_delay_seconds,
                    task_group=tg,
                    notify=lambda identity: self._post(send, _DrainDue(identity)),
                )
                tg.start_soon(self._pump_live, live, send.clone(), name="live-pump")
                try:
                    async for signal in receive:
                        failure = self._dispatch(signal, tg, send)
                        if failure is not None or isinstance(signal, _LiveClosed):
                            break
                finally:
                    self._drain_all()
                    tg.cancel_scope.cancel()
        finally:
            self.live = False
            self._subscribed = False
            self._synced = False
            self._backfill_scope = None
        if failure is not None:
            raise failure

    def _authenticate(self) -> str:
        logger.debug("Socket authenticate")
        return self._token

    @staticmethod
    def _post(send: MemoryObjectSendStream[_Signal], signal: _Signal) -> None:
        try:
            send.send_nowait(signal)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("signal after shutdown: %r", signal)

    async def _pump_live(
        self, live: LiveSource, send: MemoryObjectSendStream[_Signal]
    ) -> None:
        async with send:
            try:
                async with live.open(authenticate=self._authenticate) as events:
                    async for event in events:
                        self._post(send, event)
            except Exception as e:
                error = SubscriptionError(f"Live subscription failed: {e}")
                error.__cause__ = e
                self._post(send, _LiveClosed(error=error))
            else:
                self._post(send, _LiveClosed())

    def _dispatch(
        self,
        signal: _Signal,
        tg: TaskGroup,
        send: MemoryObjectSendStream[_Signal],
    ) -> NowLogsError | None:
        match signal:
            case Entry(raw=raw):
                self._on_entry(raw)
            case _DrainDue(identity=identity):
                if self._synced:
                    self._emit_all(self._buffer.release_through(identity))
            case Ready():
                logger.debug("Socket ready")
                self._subscribed = True
                self._start_backfill(tg, send)
            case _BackfillDone(generation=generation, records=records):
                if generation == self._backfill_generation:
                    self._finish_backfill(records)
            case _BackfillFailed(generation=generation, error=error):
                if generation == self._backfill_generation:
                    self._backfill_scope = None
                    return error
            case Disconnected(reason=reason):
                logger.debug("Socket disconnect (%s)", reason or "no reason")
                self._subscribed = False
                self._synced = False
                self._buffer.hold()
            case Connected():
                logger.debug("Socket connected")
            case Authenticating():
                pass
            case SubscriptionFailed(error=error_text):
                logger.debug("Socket error: %s", error_text)
            case _LiveClosed(error=close_error):
                logger.debug("live subscription closed")
                return close_error
        return None

    def _on_entry(self, raw: dict[str, Any]) -> None:
        try:
            record = deserialize(raw)
        except ValidationError as e:
            logger.warning("skipping malformed live entry: %s", e.errors()[:1])
            return
        if record.identity in self._emitted_ids:
            logger.debug("dropping already-emitted record id=%s", record.identity)
            return
        if not self._buffer.push(record, arm=self._synced):
            logger.debug("dropping duplicate buffered record id=%s", record.identity)

    def _start_backfill(
        self, tg: TaskGroup, send: MemoryObjectSendStream[_Signal]
    ) -> None:
        if self._backfill_scope is not None:
            logger.debug("superseding in-flight backfill")
            self._backfill_scope.cancel()
        self._synced = False
        self._buffer.hold()

        self._backfill_generation += 1
        since = self.last_emitted_serial or self.run_config.since
        scope = anyio.CancelScope()
        self._backfill_scope = scope
        logger.debug(
            "backfill #%s since=%s", self._backfill_generation, since or "beginning"
        )
        tg.start_soon(
            self._backfill,
            self._backfill_generation,
            since,
            scope,
            send,
            name=f"backfill-{self._backfill_generation}",
        )

    async def _backfill(
        self,
        generation: int,
        since: LogSerial | None,
        scope: anyio.CancelScope,
        send: MemoryObjectSendStream[_Signal],
    ) -> None:
        with scope:
            try:
                records = await self._fetch_records(since=since, until=None)
            except SourceFetchFailure as e:
                self._post(send, _BackfillFailed(generation, e))
                return
            self._post(send, _BackfillDone(generation, records))

    def _finish_backfill(self, fetched: list[LogRecord]) -> None:
        self._backfill_scope = None
        self.backfill_count += 1

        held = self._buffer.release_all() if self._subscribed else []
        merged: dict[str, LogRecord] = {}
        for record in (*fetched, *held):
            merged.setdefault(record.identity, record)
        emitted = self._emit_batch(merged.values())
        # Drop held copies of anything the batch just emitted.
        self._buffer.discard(r.identity for r in fetched)

        # While subscribed the buffer is now empty; later pushes arm themselves.
        self._synced = self._subscribed
        logger.debug(
            "backfill done fetched=%s held=%s emitted=%s",
            len(fetched),
            len(held),
            emitted,
        )

    async def _fetch_records(
        self, *, since: LogSerial | None, until: LogSerial | None
    ) -> list[LogRecord]:
        run = self.run_config
        raw_entries = await self.historical.fetch(
            target=run.target,
            instance_id=run.instance_id,
            types=run.types,
            query=run.query,
            since=since,
            until=until,
            limit=run.limit,
        )
        try:
            return [deserialize(raw) for raw in raw_entries]
        except ValidationError as e:
            raise SourceFetchFailure(f"Logs request returned a malformed entry: {e}") from e

    def _emit_batch(self, records: Iterable[LogRecord]) -> int:
        return self._emit_all(sort_records(list(records)))

    def _emit_all(self, records: list[LogRecord]) -> int:
        emitted = 0
        for record in records:
            if self._emit(record):
                emitted += 1
        return emitted

    def _emit(self, record: LogRecord) -> bool:
        if record.identity in self._emitted_ids:
            return False
        last = self._last_emitted
        if last is not None and record.sort_key() < last.sort_key():
            logger.debug(
                "late record id=%s serial=%s behind last serial=%s",
                record.identity,
                record.serial,
                last.serial,
            )
        else:
            self._last_emitted = record
        self._remember(record.identity)
        self.emitted_count += 1
        self.sink.render(record)
        return True

    def _remember(self, identity: str) -> None:
        if len(self._emitted_order) == self._emitted_order.maxlen:
            self._emitted_ids.discard(self._emitted_order[0])
        self._emitted_order.append(identity)
        self._emitted_ids.add(identity)

    def _drain_all(self) -> None:
        remaining = self._buffer.release_all()
        if remaining:
            logger.debug("draining %s buffered record(s) on shutdown", len(remaining))
        self._emit_all(remaining)

"""Live (push-model) log source.

A live source yields an unordered, at-least-once stream of raw entries
interleaved with lifecycle signals:

    Connected -> Authenticating -> Ready -> Disconnected -> Connected -> ...

`Ready` recurs after every reconnect. `SubscriptionFailed` may appear in any
state and does not end the stream. Entries may arrive in any state; consumers
must not drop them.

Authentication is answered synchronously: the source calls the consumer's
`authenticate()` callback and hands the returned token to the transport.
"""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlencode

import anyio
import socketio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Connected:
    pass


@dataclass(frozen=True, slots=True)
class Authenticating:
    pass


@dataclass(frozen=True, slots=True)
class Ready:
    pass


@dataclass(frozen=True, slots=True)
class Disconnected:
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class SubscriptionFailed:
    error: str


@dataclass(frozen=True, slots=True)
class Entry:
    raw: dict[str, Any]


type LiveEvent = (
    Connected | Authenticating | Ready | Disconnected | SubscriptionFailed | Entry
)


class LiveSource(Protocol):
    def open(
        self, *, authenticate: Callable[[], str]
    ) -> AbstractAsyncContextManager[AsyncIterator[LiveEvent]]:
        """Open the subscription; closing the context closes the transport."""
        ...


@dataclass(slots=True)
class SocketIOLiveSource:
    """Socket.IO subscription to the log-io service.

    Reconnects are delegated to the Socket.IO client; each successful
    reconnect produces another `auth` request and another `ready` event.
    """

    url: str
    target: str
    is_url: bool = False
    instance_id: str | None = None
    types: Sequence[str] = ()
    query: str = ""

    def subscription_url(self) -> str:
        q = urlencode(
            {
                "deploymentId": "" if self.is_url else self.target,
                "host": self.target if self.is_url else "",
                "instanceId": self.instance_id or "",
                "types": ",".join(self.types),
                "query": self.query,
            }
        )
        return f"{self.url}?{q}"

    def _register_handlers(
        self,
        client: socketio.AsyncClient,
        send: MemoryObjectSendStream[LiveEvent],
        authenticate: Callable[[], str],
    ) -> None:
        def post(event: LiveEvent) -> None:
            try:
                send.send_nowait(event)
            except anyio.ClosedResourceError:
                logger.debug("live event after close: %r", event)

        async def on_connect() -> None:
            post(Connected())

        async def on_auth(*_args: Any) -> str:
            post(Authenticating())
            # The return value is sent back as the acknowledgement.
            return authenticate()

        async def on_ready(*_args: Any) -> None:
            post(Ready())

        async def on_logs(entry: Any) -> None:
            if isinstance(entry, dict):
                post(Entry(raw=entry))
            else:
                logger.warning("ignoring non-object live entry: %r", type(entry).__name__)

        async def on_disconnect(*args: Any) -> None:
            post(Disconnected(reason=str(args[0]) if args else None))

        async def on_connect_error(data: Any = None) -> None:
            post(SubscriptionFailed(error=str(data)))

        client.on("connect", on_connect)
        client.on("auth", on_auth)
        client.on("ready", on_ready)
        client.on("logs", on_logs)
        client.on("disconnect", on_disconnect)
        client.on("connect_error", on_connect_error)

    @asynccontextmanager
    async def open(
        self, *, authenticate: Callable[[], str]
    ) -> AsyncIterator[MemoryObjectReceiveStream[LiveEvent]]:
        send, receive = anyio.create_memory_object_stream[LiveEvent](
            max_buffer_size=math.inf
        )
        client = socketio.AsyncClient(reconnection=True)
        self._register_handlers(client, send, authenticate)

        async with send, receive:
            await client.connect(self.subscription_url(), retry=True)
            try:
                yield receive
            finally:
                with anyio.CancelScope(shield=True):
                    await client.disconnect()

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from fitcoach_voice.domain.errors import ConnectError, ConnectionLost, NotConnected, ProtocolError
from fitcoach_voice.domain.events import ConnectionState, Direction
from fitcoach_voice.domain.protocol import WireMessage, decode_message, encode_message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[WireMessage], "Awaitable[None] | None"]
CloseHandler = Callable[[BaseException], None]

_STOP = object()


class ClientTransport(Protocol):
    on_message: MessageHandler | None
    on_close: CloseHandler | None

    @property
    def state(self) -> ConnectionState: ...

    async def connect(self) -> None: ...
    def send(self, message: WireMessage) -> None: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class WebSocketTransport:
    """One persistent websocket per session.

    ``send`` only enqueues; a writer task drains the queue in order. Inbound
    frames are decoded and handed to ``on_message`` one at a time in arrival
    order. ``on_close`` fires once if the connection ends without ``close()``.
    """

    url: str
    legacy_audio_tag: bool = False
    open_timeout_s: float = 10.0
    ping_interval_s: float | None = 20.0
    on_message: MessageHandler | None = None
    on_close: CloseHandler | None = None

    _ws: Any = field(init=False, default=None, repr=False)
    _state: ConnectionState = field(init=False, default=ConnectionState.CLOSED)
    _outbox: asyncio.Queue[object] = field(init=False, repr=False)
    _send_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _recv_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        if self.open_timeout_s <= 0:
            raise ValueError("open_timeout_s must be > 0")
        self._outbox = asyncio.Queue()

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def connect(self) -> None:
        if self._state == ConnectionState.OPEN:
            return
        if self._state != ConnectionState.CLOSED:
            raise ConnectError(f"cannot connect while {self._state.value}")

        self._state = ConnectionState.CONNECTING
        logger.info(f"[Transport] Connecting to {self.url}")
        try:
            ws = await connect(
                self.url,
                open_timeout=self.open_timeout_s,
                ping_interval=self.ping_interval_s,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            if self._state == ConnectionState.CONNECTING:
                self._state = ConnectionState.CLOSED
            logger.error(f"[Transport] Connect failed: {exc}")
            raise ConnectError(f"could not connect to {self.url}: {exc}") from exc

        if self._state != ConnectionState.CONNECTING:
            # close() ran while the handshake was in flight
            await ws.close()
            logger.info("[Transport] Connect abandoned after close")
            raise ConnectError("transport was closed while connecting")

        self._ws = ws
        self._outbox = asyncio.Queue()
        self._state = ConnectionState.OPEN
        self._send_task = asyncio.create_task(self._send_loop())
        self._recv_task = asyncio.create_task(self._recv_loop())
        logger.info("[Transport] Open")

    def send(self, message: WireMessage) -> None:
        if self._state != ConnectionState.OPEN:
            raise NotConnected(f"transport is {self._state.value}")
        self._outbox.put_nowait(message)

    async def close(self) -> None:
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        self._state = ConnectionState.CLOSING

        self._outbox.put_nowait(_STOP)
        await self._teardown()
        self._state = ConnectionState.CLOSED
        logger.info("[Transport] Closed")

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in (self._send_task, self._recv_task) if t is not None and t is not current]
        self._send_task = None
        self._recv_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        ws = self._ws
        self._ws = None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

    async def _send_loop(self) -> None:
        try:
            while True:
                item = await self._outbox.get()
                if item is _STOP:
                    return
                await self._ws.send(encode_message(item, legacy_audio_tag=self.legacy_audio_tag))
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            await self._lost(ConnectionLost(f"connection closed while sending: {exc}"))
        except Exception as exc:
            logger.exception("[Transport] Send loop error")
            await self._lost(ConnectionLost(f"send failed: {exc}"))

    async def _recv_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = decode_message(raw, direction=Direction.DOWNSTREAM)
                except ProtocolError as exc:
                    logger.warning(f"[Transport] Dropping malformed message: {exc}")
                    continue
                await self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            await self._lost(ConnectionLost(f"connection dropped: {exc}"))
            return
        await self._lost(ConnectionLost("server closed the connection"))

    async def _dispatch(self, message: WireMessage) -> None:
        handler = self.on_message
        if handler is None:
            return
        try:
            result = handler(message)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[Transport] Message handler failed")

    async def _lost(self, exc: ConnectionLost) -> None:
        if self._state != ConnectionState.OPEN:
            return
        logger.warning(f"[Transport] {exc}")
        self._state = ConnectionState.CLOSING
        await self._teardown()
        self._state = ConnectionState.CLOSED
        if self.on_close is not None:
            self.on_close(exc)

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import parse_qs, urlsplit
from uuid import uuid4

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from fitcoach_voice.core.pipeline.orchestrator import Emit, PipelineOrchestrator
from fitcoach_voice.domain.errors import ConnectionLost, ProtocolError
from fitcoach_voice.domain.events import Direction
from fitcoach_voice.domain.protocol import AudioIn, WireMessage, decode_message, encode_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConnectionInfo:
    connection_id: str
    path: str
    query: dict[str, str]


OrchestratorFactory = Callable[[Emit, ConnectionInfo], PipelineOrchestrator]


@dataclass(slots=True)
class VoiceServer:
    """Websocket front end: one PipelineOrchestrator per connection.

    Connections are independent. When a client goes away its orchestrator is
    closed; a stage still in flight finishes, finds the connection gone and
    drops its output.
    """

    orchestrator_factory: OrchestratorFactory
    host: str = "127.0.0.1"
    port: int = 8080
    path: str | None = "/voice-chat"
    legacy_audio_tag: bool = False

    _server: Server | None = field(init=False, default=None, repr=False)
    _orchestrators: dict[str, PipelineOrchestrator] = field(init=False, default_factory=dict)
    _abandoned: set[asyncio.Task[None]] = field(init=False, default_factory=set, repr=False)

    @property
    def bound_port(self) -> int:
        if self._server is None:
            raise RuntimeError("server is not running")
        sockets = list(self._server.sockets)
        return int(sockets[0].getsockname()[1])

    @property
    def active_connections(self) -> int:
        return len(self._orchestrators)

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await serve(self._handle, self.host, self.port)
        logger.info(f"[Server] Listening on ws://{self.host}:{self.bound_port}{self.path or ''}")

    async def stop(self) -> None:
        server = self._server
        if server is None:
            return
        self._server = None
        server.close()
        await server.wait_closed()

        for task in list(self._abandoned):
            task.cancel()
        await asyncio.gather(*self._abandoned, return_exceptions=True)
        self._abandoned.clear()
        logger.info("[Server] Stopped")

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Future()
        finally:
            await self.stop()

    async def _handle(self, websocket: ServerConnection) -> None:
        request = websocket.request
        parts = urlsplit(request.path if request is not None else "/")
        if self.path and parts.path.rstrip("/") != self.path.rstrip("/"):
            logger.warning(f"[Server] Rejecting connection to unknown path {parts.path}")
            await websocket.close(code=1008, reason="unknown path")
            return

        info = ConnectionInfo(
            connection_id=uuid4().hex[:8],
            path=parts.path,
            query={k: v[-1] for k, v in parse_qs(parts.query).items()},
        )
        try:
            orchestrator = self.orchestrator_factory(self._make_emit(websocket), info)
        except Exception:
            logger.exception(f"[Server] Connection {info.connection_id}: could not set up pipeline")
            await websocket.close(code=1011, reason="pipeline unavailable")
            return
        self._orchestrators[info.connection_id] = orchestrator
        logger.info(f"[Server] Connection {info.connection_id} opened (query={info.query})")

        try:
            async for raw in websocket:
                try:
                    message = decode_message(raw, direction=Direction.UPSTREAM)
                except ProtocolError as exc:
                    logger.warning(f"[Server] Connection {info.connection_id}: dropping malformed message: {exc}")
                    continue
                if isinstance(message, AudioIn):
                    orchestrator.submit(message.audio)
        except ConnectionClosed as exc:
            logger.info(f"[Server] Connection {info.connection_id} dropped: {exc}")
        finally:
            self._orchestrators.pop(info.connection_id, None)
            orchestrator.close()
            self._track_abandoned(orchestrator)
            logger.info(f"[Server] Connection {info.connection_id} closed")

    def _make_emit(self, websocket: ServerConnection) -> Emit:
        legacy = self.legacy_audio_tag

        async def emit(message: WireMessage) -> None:
            try:
                await websocket.send(encode_message(message, legacy_audio_tag=legacy))
            except ConnectionClosed as exc:
                raise ConnectionLost(str(exc)) from exc

        return emit

    def _track_abandoned(self, orchestrator: PipelineOrchestrator) -> None:
        worker: Any = orchestrator.worker
        if worker is None or worker.done():
            return
        self._abandoned.add(worker)
        worker.add_done_callback(self._abandoned.discard)

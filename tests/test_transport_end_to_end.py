from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass, field

import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from fitcoach_voice.core.pipeline.orchestrator import Emit, PipelineOrchestrator
from fitcoach_voice.core.pipeline.stages import PipelineStages
from fitcoach_voice.core.transport.client import WebSocketTransport
from fitcoach_voice.core.transport.server import ConnectionInfo, VoiceServer
from fitcoach_voice.domain.errors import ConnectError, ConnectionLost, NotConnected
from fitcoach_voice.domain.events import ConnectionState
from fitcoach_voice.domain.protocol import (
    AssistantText,
    AudioIn,
    AudioOut,
    Transcript,
    WireMessage,
)


@dataclass(slots=True)
class EchoTranscriber:
    gate: asyncio.Event | None = None

    async def transcribe(self, audio: bytes, *, mimetype: str) -> str:
        if self.gate is not None:
            await self.gate.wait()
        return audio.decode()

    async def close(self) -> None:
        pass


@dataclass(slots=True)
class CannedGenerator:
    async def generate(self, *, text, system_prompt, history=()) -> str:
        return f"reply to {text}"

    async def close(self) -> None:
        pass


@dataclass(slots=True)
class CannedSynthesizer:
    async def synthesize(self, text: str, *, voice: str | None = None) -> bytes:
        return b"RIFF-speech"

    async def close(self) -> None:
        pass


@dataclass(slots=True)
class Factory:
    transcriber: EchoTranscriber = field(default_factory=EchoTranscriber)
    infos: list[ConnectionInfo] = field(default_factory=list)
    orchestrators: list[PipelineOrchestrator] = field(default_factory=list)

    def __call__(self, emit: Emit, info: ConnectionInfo) -> PipelineOrchestrator:
        orch = PipelineOrchestrator(
            stages=PipelineStages(
                transcriber=self.transcriber,
                generator=CannedGenerator(),
                synthesizer=CannedSynthesizer(),
            ),
            emit=emit,
            connection_id=info.connection_id,
        )
        self.infos.append(info)
        self.orchestrators.append(orch)
        return orch


async def _wait_for(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _url(server: VoiceServer, suffix: str = "/voice-chat") -> str:
    return f"ws://127.0.0.1:{server.bound_port}{suffix}"


def test_round_trip_over_websocket_preserves_order_and_query():
    async def run():
        factory = Factory()
        server = VoiceServer(orchestrator_factory=factory, port=0)
        await server.start()
        received: list[WireMessage] = []
        client = WebSocketTransport(url=_url(server, "/voice-chat?tts=elevenlabs"), on_message=received.append)
        try:
            await client.connect()
            assert client.state == ConnectionState.OPEN
            client.send(AudioIn(audio=b"what's a good warmup"))
            await _wait_for(lambda: len(received) >= 3)
        finally:
            await client.close()
            await server.stop()
        return factory, received, client

    factory, received, client = asyncio.run(run())

    assert received == [
        Transcript(text="what's a good warmup"),
        AssistantText(text="reply to what's a good warmup"),
        AudioOut(audio=b"RIFF-speech"),
    ]
    assert factory.infos[0].query == {"tts": "elevenlabs"}
    assert client.state == ConnectionState.CLOSED


def test_malformed_frames_are_dropped_without_closing():
    async def run():
        server = VoiceServer(orchestrator_factory=Factory(), port=0)
        await server.start()
        try:
            async with connect(_url(server)) as ws:
                await ws.send("not json at all")
                await ws.send(json.dumps({"type": "transcript", "text": "clients cannot send this"}))
                await ws.send(json.dumps({"type": "audio", "audio": base64.b64encode(b"legacy").decode()}))
                first = json.loads(await asyncio.wait_for(ws.recv(), timeout=3.0))
        finally:
            await server.stop()
        return first

    assert asyncio.run(run()) == {"type": "transcript", "text": "legacy"}


def test_legacy_server_emits_shared_audio_tag():
    async def run():
        server = VoiceServer(orchestrator_factory=Factory(), port=0, legacy_audio_tag=True)
        await server.start()
        try:
            async with connect(_url(server)) as ws:
                await ws.send(json.dumps({"type": "audio_in", "audio": base64.b64encode(b"hi").decode()}))
                frames = [json.loads(await asyncio.wait_for(ws.recv(), timeout=3.0)) for _ in range(3)]
        finally:
            await server.stop()
        return frames

    frames = asyncio.run(run())
    assert [f["type"] for f in frames] == ["transcript", "response", "audio"]
    assert base64.b64decode(frames[2]["audio"]) == b"RIFF-speech"


def test_client_disconnect_mid_stage_discards_output():
    async def run():
        gate = asyncio.Event()
        factory = Factory(transcriber=EchoTranscriber(gate=gate))
        server = VoiceServer(orchestrator_factory=factory, port=0)
        await server.start()
        try:
            client = WebSocketTransport(url=_url(server))
            await client.connect()
            client.send(AudioIn(audio=b"hello"))
            await _wait_for(lambda: factory.orchestrators and factory.orchestrators[0].busy)
            await client.close()
            await _wait_for(lambda: server.active_connections == 0)

            orch = factory.orchestrators[0]
            gate.set()
            await orch.wait_idle()
        finally:
            await server.stop()
        return orch

    orch = asyncio.run(run())
    assert orch.closed
    assert not orch.busy
    assert orch.completed_utterances == 0


def test_unknown_path_is_rejected_and_reported_as_lost():
    async def run():
        server = VoiceServer(orchestrator_factory=Factory(), port=0)
        await server.start()
        lost: list[BaseException] = []
        client = WebSocketTransport(url=_url(server, "/elsewhere"), on_close=lost.append)
        try:
            await client.connect()
            await _wait_for(lambda: bool(lost))
        finally:
            await client.close()
            await server.stop()
        return lost, client

    lost, client = asyncio.run(run())
    assert len(lost) == 1
    assert isinstance(lost[0], ConnectionLost)
    assert client.state == ConnectionState.CLOSED


def test_server_shutdown_notifies_client_once():
    async def run():
        server = VoiceServer(orchestrator_factory=Factory(), port=0)
        await server.start()
        lost: list[BaseException] = []
        client = WebSocketTransport(url=_url(server), on_close=lost.append)
        await client.connect()
        await server.stop()
        await _wait_for(lambda: bool(lost))
        await client.close()
        return lost, client

    lost, client = asyncio.run(run())
    assert len(lost) == 1
    assert client.state == ConnectionState.CLOSED


def test_connect_to_closed_port_raises_connect_error():
    async def run():
        server = VoiceServer(orchestrator_factory=Factory(), port=0)
        await server.start()
        url = _url(server)
        await server.stop()

        client = WebSocketTransport(url=url, open_timeout_s=2.0)
        with pytest.raises(ConnectError):
            await client.connect()
        return client

    client = asyncio.run(run())
    assert client.state == ConnectionState.CLOSED


def test_send_requires_open_connection():
    async def run():
        client = WebSocketTransport(url="ws://127.0.0.1:9/voice-chat")
        with pytest.raises(NotConnected):
            client.send(AudioIn(audio=b"x"))
        await client.close()

    asyncio.run(run())


def test_close_while_connecting_leaves_transport_closed():
    async def run():
        server = VoiceServer(orchestrator_factory=Factory(), port=0)
        await server.start()
        client = WebSocketTransport(url=_url(server))
        try:
            connecting = asyncio.create_task(client.connect())
            await asyncio.sleep(0)
            assert client.state == ConnectionState.CONNECTING
            await client.close()
            with pytest.raises(ConnectError):
                await connecting
            await _wait_for(lambda: server.active_connections == 0)
            with pytest.raises(NotConnected):
                client.send(AudioIn(audio=b"late"))
        finally:
            await server.stop()
        return client

    client = asyncio.run(run())
    assert client.state == ConnectionState.CLOSED


def test_pipeline_setup_failure_closes_connection_with_internal_error():
    def broken_factory(emit: Emit, info: ConnectionInfo) -> PipelineOrchestrator:
        raise ValueError("Missing secret: google_api_key")

    async def run():
        server = VoiceServer(orchestrator_factory=broken_factory, port=0)
        await server.start()
        try:
            async with connect(_url(server)) as ws:
                with pytest.raises(ConnectionClosed):
                    await asyncio.wait_for(ws.recv(), timeout=3.0)
                code = ws.close_code
            active = server.active_connections
        finally:
            await server.stop()
        return code, active

    code, active = asyncio.run(run())
    assert code == 1011
    assert active == 0

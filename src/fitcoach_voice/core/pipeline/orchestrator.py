from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from fitcoach_voice.core.clock import Clock, SystemClock
from fitcoach_voice.core.pipeline.stages import PipelineStages
from fitcoach_voice.domain.errors import (
    GenerationError,
    StageError,
    SynthesisError,
    TranscriptionError,
    TransportError,
)
from fitcoach_voice.domain.events import PipelineState
from fitcoach_voice.domain.models import ConversationTurn
from fitcoach_voice.domain.protocol import (
    AssistantText,
    AudioOut,
    ErrorMessage,
    Transcript,
    WireMessage,
)

logger = logging.getLogger(__name__)

Emit = Callable[[WireMessage], Awaitable[None]]

_STAGE_FAILURE_MESSAGES = {
    TranscriptionError: "Failed to transcribe audio",
    GenerationError: "Failed to get AI response",
    SynthesisError: "Failed to synthesize speech",
}


@dataclass(slots=True)
class PipelineOrchestrator:
    """Per-connection transcribe -> generate -> synthesize loop.

    One utterance runs at a time. A segment submitted while busy becomes the
    single pending segment, replacing any older one. Each stage outcome is
    emitted as soon as it is known, so downstream order is always
    Transcript, AssistantText, AudioOut. A failed stage emits one ErrorMessage
    and the orchestrator returns to IDLE. Once closed, nothing more is written
    and in-flight work is discarded when its stage returns.
    """

    stages: PipelineStages
    emit: Emit
    system_prompt: str = ""
    voice: str | None = None
    mimetype: str = "audio/wav"
    clock: Clock = field(default_factory=SystemClock)
    context_max_entries: int = 3
    context_time_window_s: float = 120.0
    connection_id: str = "-"

    dropped_segments: int = field(init=False, default=0)
    completed_utterances: int = field(init=False, default=0)

    _state: PipelineState = field(init=False, default=PipelineState.IDLE)
    _pending: bytes | None = field(init=False, default=None, repr=False)
    _worker: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _closed: bool = field(init=False, default=False)
    _history: list[ConversationTurn] = field(init=False, default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if self.context_max_entries < 0:
            raise ValueError("context_max_entries must be >= 0")
        if self.context_time_window_s <= 0:
            raise ValueError("context_time_window_s must be > 0")

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._worker is not None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def worker(self) -> asyncio.Task[None] | None:
        return self._worker

    def submit(self, audio: bytes) -> None:
        if self._closed:
            logger.debug(f"[Pipeline {self.connection_id}] Ignoring segment after close")
            return

        if self._worker is None:
            self._worker = asyncio.create_task(self._run(audio))
            return

        if self._pending is not None:
            self.dropped_segments += 1
            logger.info(
                f"[Pipeline {self.connection_id}] Busy ({self._state.name}); "
                f"replacing pending segment (dropped={self.dropped_segments})"
            )
        self._pending = audio

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pending is not None:
            self.dropped_segments += 1
        self._pending = None
        logger.info(f"[Pipeline {self.connection_id}] Closed (state={self._state.name})")

    async def wait_idle(self) -> None:
        worker = self._worker
        if worker is not None:
            await asyncio.gather(worker, return_exceptions=True)

    def clear_context(self) -> None:
        self._history.clear()

    async def _run(self, audio: bytes) -> None:
        try:
            current: bytes | None = audio
            while current is not None and not self._closed:
                await self._process(current)
                current, self._pending = self._pending, None
        finally:
            self._state = PipelineState.IDLE
            self._worker = None

    async def _process(self, audio: bytes) -> None:
        started = self.clock.now()
        try:
            self._state = PipelineState.TRANSCRIBING
            text = (await self._transcribe(audio)).strip()
            if not text:
                logger.debug(f"[Pipeline {self.connection_id}] Empty transcript; skipping")
                return
            if not await self._send(Transcript(text=text)):
                return

            self._state = PipelineState.GENERATING
            reply = (await self._generate(text)).strip()
            if not await self._send(AssistantText(text=reply)):
                return

            self._state = PipelineState.SYNTHESIZING
            speech = await self._synthesize(reply)
            if not await self._send(AudioOut(audio=speech)):
                return
        except StageError as exc:
            logger.error(f"[Pipeline {self.connection_id}] {exc.stage} stage failed: {exc}")
            await self._send(
                ErrorMessage(message=_STAGE_FAILURE_MESSAGES.get(type(exc), str(exc)), detail=str(exc))
            )
            return
        finally:
            self._state = PipelineState.IDLE

        self._remember(text, reply)
        self.completed_utterances += 1
        elapsed = self.clock.now() - started
        logger.info(f"[Pipeline {self.connection_id}] Utterance done in {elapsed:.2f}s: '{text[:50]}'")

    async def _transcribe(self, audio: bytes) -> str:
        try:
            return await self.stages.transcriber.transcribe(audio, mimetype=self.mimetype)
        except (asyncio.CancelledError, TranscriptionError):
            raise
        except Exception as exc:
            raise TranscriptionError(str(exc) or type(exc).__name__) from exc

    async def _generate(self, text: str) -> str:
        try:
            reply = await self.stages.generator.generate(
                text=text,
                system_prompt=self.system_prompt,
                history=self._valid_context(),
            )
        except (asyncio.CancelledError, GenerationError):
            raise
        except Exception as exc:
            raise GenerationError(str(exc) or type(exc).__name__) from exc
        if not reply or not reply.strip():
            raise GenerationError("generator returned an empty reply")
        return reply

    async def _synthesize(self, text: str) -> bytes:
        try:
            speech = await self.stages.synthesizer.synthesize(text, voice=self.voice)
        except (asyncio.CancelledError, SynthesisError):
            raise
        except Exception as exc:
            raise SynthesisError(str(exc) or type(exc).__name__) from exc
        if not speech:
            raise SynthesisError("synthesizer returned no audio")
        return speech

    async def _send(self, message: WireMessage) -> bool:
        if self._closed:
            logger.info(f"[Pipeline {self.connection_id}] Connection gone; discarding {type(message).__name__}")
            return False
        try:
            await self.emit(message)
        except TransportError as exc:
            logger.info(f"[Pipeline {self.connection_id}] Write failed ({exc}); abandoning utterance")
            self.close()
            return False
        return True

    def _valid_context(self) -> list[ConversationTurn]:
        if self.context_max_entries == 0:
            return []
        now = self.clock.now()
        return [
            turn
            for turn in self._history[-self.context_max_entries :]
            if (now - turn.timestamp) < self.context_time_window_s
        ]

    def _remember(self, user_text: str, assistant_text: str) -> None:
        if self.context_max_entries == 0:
            return
        self._history.append(
            ConversationTurn(user_text=user_text, assistant_text=assistant_text, timestamp=self.clock.now())
        )
        if len(self._history) > self.context_max_entries:
            self._history.pop(0)

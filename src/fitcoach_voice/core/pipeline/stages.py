from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, Sequence

from fitcoach_voice.domain.models import ConversationTurn


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, *, mimetype: str) -> str: ...
    async def close(self) -> None: ...


class ReplyGenerator(Protocol):
    async def generate(
        self,
        *,
        text: str,
        system_prompt: str,
        history: Sequence[ConversationTurn] = (),
    ) -> str: ...

    async def close(self) -> None: ...


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, *, voice: str | None = None) -> bytes:
        """Return 16-bit PCM WAV bytes."""

    async def close(self) -> None: ...


@dataclass(frozen=True, slots=True)
class PipelineStages:
    transcriber: Transcriber
    generator: ReplyGenerator
    synthesizer: SpeechSynthesizer


@dataclass(slots=True)
class SemaphoreReplyGenerator:
    """Caps concurrent generation calls across all connections."""

    inner: ReplyGenerator
    semaphore: asyncio.Semaphore

    async def generate(
        self,
        *,
        text: str,
        system_prompt: str,
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        async with self.semaphore:
            return await self.inner.generate(text=text, system_prompt=system_prompt, history=history)

    async def close(self) -> None:
        await self.inner.close()

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from fitcoach_voice.domain.models import ConversationTurn

logger = logging.getLogger(__name__)


class GeminiClient(Protocol):
    async def generate(
        self,
        *,
        text: str,
        system_prompt: str,
        history: Sequence[ConversationTurn] = (),
    ) -> str: ...

    async def close(self) -> None: ...


@dataclass(slots=True)
class GeminiReplyGenerator:
    api_key: str
    model: str = "gemini-2.5-flash"
    max_output_tokens: int = 256
    client: GeminiClient | None = None
    _internal_client: GeminiClient | None = field(init=False, default=None, repr=False)

    def _get_client(self) -> GeminiClient:
        if self.client is not None:
            return self.client
        if self._internal_client is None:
            self._internal_client = GoogleGenaiGeminiClient(
                api_key=self.api_key, model=self.model, max_output_tokens=self.max_output_tokens
            )
        return self._internal_client

    async def generate(
        self,
        *,
        text: str,
        system_prompt: str,
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        return await self._get_client().generate(text=text, system_prompt=system_prompt, history=history)

    async def close(self) -> None:
        if self._internal_client is not None:
            await self._internal_client.close()
            self._internal_client = None


@dataclass(slots=True)
class GoogleGenaiGeminiClient:
    api_key: str
    model: str
    max_output_tokens: int = 256
    _client: Any = field(init=False, default=None, repr=False)

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai  # type: ignore

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        *,
        text: str,
        system_prompt: str,
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        from google.genai import types  # type: ignore

        contents = []
        for turn in history:
            contents.append(types.Content(role="user", parts=[types.Part(text=turn.user_text)]))
            contents.append(types.Content(role="model", parts=[types.Part(text=turn.assistant_text)]))
        contents.append(types.Content(role="user", parts=[types.Part(text=text)]))

        logger.info(f"[LLM] Request: '{text}' (history={len(history)})")
        response = await self._get_client().aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt or None,
                max_output_tokens=self.max_output_tokens,
            ),
        )
        if getattr(response, "text", None):
            result = str(response.text).strip()
            logger.info(f"[LLM] Response: '{result}'")
            return result
        logger.error("[LLM] No text in response")
        raise RuntimeError("Gemini response did not contain text")

    async def close(self) -> None:
        self._client = None

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from fitcoach_voice.domain.models import ConversationTurn

logger = logging.getLogger(__name__)


class QwenClient(Protocol):
    async def chat(self, *, messages: list[dict[str, str]]) -> str: ...


def build_messages(
    *, text: str, system_prompt: str, history: Sequence[ConversationTurn] = ()
) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in history:
        messages.append({"role": "user", "content": turn.user_text})
        messages.append({"role": "assistant", "content": turn.assistant_text})
    messages.append({"role": "user", "content": text})
    return messages


@dataclass(slots=True)
class QwenReplyGenerator:
    api_key: str
    base_url: str = "https://dashscope-intl.aliyuncs.com/api/v1"
    model: str = "qwen-plus"
    client: QwenClient | None = None

    async def generate(
        self,
        *,
        text: str,
        system_prompt: str,
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        client = self.client or DashScopeQwenClient(
            api_key=self.api_key, model=self.model, base_url=self.base_url
        )
        messages = build_messages(text=text, system_prompt=system_prompt, history=history)
        return await client.chat(messages=messages)

    async def close(self) -> None:
        pass


@dataclass(slots=True)
class DashScopeQwenClient:
    api_key: str
    model: str
    base_url: str = "https://dashscope-intl.aliyuncs.com/api/v1"

    async def chat(self, *, messages: list[dict[str, str]]) -> str:
        import dashscope  # type: ignore

        logger.info(f"[LLM] Request: '{messages[-1]['content']}'")

        def _call() -> str:
            dashscope.api_key = self.api_key
            dashscope.base_http_api_url = self.base_url
            response = dashscope.Generation.call(
                model=self.model,
                messages=messages,
                result_format="message",
            )
            if getattr(response, "status_code", 200) != 200:
                raise RuntimeError(
                    f"DashScope request failed: {response.status_code} {getattr(response, 'message', '')}"
                )
            output = getattr(response, "output", None)
            if not output:
                raise RuntimeError("DashScope response did not contain output")
            choice = output.get("choices", [{}])[0]
            content = choice.get("message", {}).get("content")
            if not content:
                raise RuntimeError("DashScope response did not contain message content")
            result = str(content).strip()
            logger.info(f"[LLM] Response: '{result}'")
            return result

        return await asyncio.to_thread(_call)

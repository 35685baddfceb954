"""Critique adapter over an OpenAI-compatible chat completions endpoint."""
from __future__ import annotations

from typing import Any

from adapters.llm.base import CriticClient
from constants import CRITIC_MAX_TOKENS


class ChatCompletionCriticClient(CriticClient):
    """
    Single-shot critic call.

    client:
        openai.AsyncOpenAI (or any object exposing chat.completions.create).
        The provider (OpenAI, Anthropic compatibility endpoint, Groq) is
        chosen when the client is built, see server.app.build_llm_client.
    """

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        max_tokens: int = CRITIC_MAX_TOKENS,
    ) -> None:
        self._client = client
        self._model = model
        self._max_tokens = max_tokens

    async def complete(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            max_tokens=self._max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

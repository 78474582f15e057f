from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from openai import AsyncOpenAI, OpenAIError

from groupflow.schemas.messages import GenerateReplyOptions
from groupflow.utils.streaming import MessageStream

logger = logging.getLogger(__name__)


class LLMClientError(Exception):
    """Backend call failed; agents turn this into BackendError."""


class LLMClient(ABC):
    """Lightweight interface so agents can swap between real and stub models."""

    @abstractmethod
    async def complete(self, prompt: str, options: GenerateReplyOptions | None = None) -> str:
        """Return a model completion for a fully rendered prompt."""

    async def stream(
        self,
        prompt: str,
        sink: MessageStream[str],
        options: GenerateReplyOptions | None = None,
    ) -> None:
        """Push completion chunks into ``sink`` and close it.

        The default pushes the whole completion as one chunk.
        """
        try:
            await sink.put(await self.complete(prompt, options))
        except Exception as exc:
            await sink.fail(exc)
            return
        await sink.close()


class EchoLLMClient(LLMClient):
    """Fallback implementation used for local tests without external APIs."""

    def __init__(self, reply: str | None = None, chunk_size: int = 16) -> None:
        self.reply = reply
        self.chunk_size = chunk_size
        self.prompts: list[str] = []

    async def complete(self, prompt: str, options: GenerateReplyOptions | None = None) -> str:
        self.prompts.append(prompt)
        return prompt if self.reply is None else self.reply

    async def stream(
        self,
        prompt: str,
        sink: MessageStream[str],
        options: GenerateReplyOptions | None = None,
    ) -> None:
        text = await self.complete(prompt, options)
        for start in range(0, len(text), self.chunk_size):
            await sink.put(text[start : start + self.chunk_size])
        await sink.close()


class OpenAIClient(LLMClient):
    """Raw-prompt completions against any OpenAI compatible endpoint (vLLM, Ollama, ...)."""

    def __init__(
        self,
        model: str,
        temperature: float = 0.0,
        client: AsyncOpenAI | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 2,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self._client = client or AsyncOpenAI(
            base_url=base_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
        )

    def _request(self, prompt: str, options: GenerateReplyOptions | None) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "temperature": self.temperature,
        }
        if options is not None:
            if options.temperature is not None:
                request["temperature"] = options.temperature
            if options.max_tokens is not None:
                request["max_tokens"] = options.max_tokens
            if options.stop_sequences:
                request["stop"] = list(options.stop_sequences)
        return request

    async def complete(self, prompt: str, options: GenerateReplyOptions | None = None) -> str:
        try:
            response = await self._client.completions.create(**self._request(prompt, options))
        except OpenAIError as exc:
            logger.error("Completion request to %s failed: %s", self.model, exc)
            raise LLMClientError(str(exc)) from exc
        if not response.choices:
            raise LLMClientError("completion response has no choices")
        return response.choices[0].text or ""

    async def stream(
        self,
        prompt: str,
        sink: MessageStream[str],
        options: GenerateReplyOptions | None = None,
    ) -> None:
        try:
            chunks = await self._client.completions.create(
                **self._request(prompt, options), stream=True
            )
            async for chunk in chunks:
                if chunk.choices and chunk.choices[0].text:
                    await sink.put(chunk.choices[0].text)
        except OpenAIError as exc:
            logger.error("Streaming completion from %s failed: %s", self.model, exc)
            await sink.fail(LLMClientError(str(exc)))
            return
        await sink.close()

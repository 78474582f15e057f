from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import AsyncIterator, List, Sequence

from groupflow.agents.base import StreamingAgent
from groupflow.agents.prompts import build_llama3_prompt, extract_function_calls
from groupflow.errors import BackendError
from groupflow.schemas.messages import (
    GenerateReplyOptions,
    Message,
    MessageUpdate,
    Role,
    TextMessage,
    TextMessageUpdate,
    ToolCallMessage,
)
from groupflow.utils.llm_clients import LLMClient, LLMClientError
from groupflow.utils.streaming import MessageStream, to_updates

logger = logging.getLogger(__name__)


class ModelAgent(StreamingAgent):
    """Language-model backed participant.

    Renders the history into a single Llama-3 style prompt, sends it through
    ``llm_client`` and turns fenced function blocks in the answer into a
    ``ToolCallMessage`` when the caller allowed functions.
    """

    def __init__(
        self,
        name: str,
        llm_client: LLMClient,
        system_message: str = "You are a helpful assistant.",
        temperature: float | None = None,
        description: str = "",
    ) -> None:
        super().__init__(name=name, description=description)
        self.llm_client = llm_client
        self.system_message = system_message
        self.temperature = temperature

    def _options(self, options: GenerateReplyOptions | None) -> GenerateReplyOptions:
        options = options or GenerateReplyOptions()
        if options.temperature is None and self.temperature is not None:
            options = replace(options, temperature=self.temperature)
        return options

    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        options = self._options(options)
        prompt = build_llama3_prompt(messages, self.system_message, options.functions)
        try:
            text = await self.llm_client.complete(prompt, options)
        except LLMClientError as exc:
            raise BackendError(self.name, str(exc)) from exc
        return self._to_message(text, options)

    def _to_message(self, text: str, options: GenerateReplyOptions) -> Message:
        if options.functions:
            calls = extract_function_calls(text, options.functions)
            if calls:
                logger.debug("%s requested %d function call(s)", self.name, len(calls))
                return ToolCallMessage(from_=self.name, calls=tuple(calls))
        return TextMessage(role=Role.ASSISTANT, content=text, from_=self.name)

    async def _produce(
        self,
        prompt: str,
        sink: MessageStream[str],
        options: GenerateReplyOptions,
    ) -> None:
        try:
            await self.llm_client.stream(prompt, sink, options)
        except Exception as exc:
            await sink.fail(exc)
        # no-op when the client already closed the stream
        await sink.close()

    async def generate_streaming_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> AsyncIterator[MessageUpdate]:
        """Yield text chunks as they arrive.

        When functions are allowed the answer is buffered instead, so a
        fenced function block comes out as tool-call fragments exactly as
        ``generate_reply`` would have returned it.
        """
        options = self._options(options)
        prompt = build_llama3_prompt(messages, self.system_message, options.functions)
        sink: MessageStream[str] = MessageStream()
        producer = asyncio.ensure_future(self._produce(prompt, sink, options))
        chunks: List[str] = []
        try:
            async for chunk in sink:
                if options.functions:
                    chunks.append(chunk)
                else:
                    yield TextMessageUpdate(role=Role.ASSISTANT, content=chunk, from_=self.name)
        except LLMClientError as exc:
            raise BackendError(self.name, str(exc)) from exc
        except BaseException:
            producer.cancel()
            raise
        await producer
        if options.functions:
            for update in to_updates(self._to_message("".join(chunks), options)):
                yield update
            return
        yield TextMessageUpdate(role=Role.ASSISTANT, content="", from_=self.name, is_final=True)

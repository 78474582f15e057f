from __future__ import annotations

import logging
import sys
from dataclasses import replace
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Sequence, TextIO

from groupflow.agents.base import Agent, StreamingAgent
from groupflow.schemas.messages import (
    AggregateMessage,
    GenerateReplyOptions,
    Message,
    MessageUpdate,
    Role,
    TextMessageUpdate,
    ToolCallMessage,
    ToolCallResult,
    ToolCallResultMessage,
    format_message,
)
from groupflow.tools.base import Tool
from groupflow.utils.streaming import assemble, to_updates

logger = logging.getLogger(__name__)

Middleware = Callable[
    [Sequence[Message], "GenerateReplyOptions | None", Agent],
    Awaitable[Message],
]


class MiddlewareAgent(StreamingAgent):
    """Decorates an agent with a chain of middlewares without changing its interface.

    Each middleware receives ``(messages, options, next_agent)`` and may call
    ``next_agent.generate_reply``; the first registered middleware is the
    outermost one.

    Streaming calls reach the inner agent's stream when it streams and every
    middleware is marked ``passthrough`` (it observes the reply but never
    changes it or the options). The chain then runs over the assembled reply
    before the final fragment is released. Otherwise the middleware-processed
    reply is yielded as whole fragments.
    """

    def __init__(self, inner: Agent, middlewares: Iterable[Middleware] = ()) -> None:
        super().__init__(name=inner.name, description=inner.description)
        self.inner = inner
        self.middlewares: List[Middleware] = list(middlewares)

    def use(self, middleware: Middleware) -> "MiddlewareAgent":
        self.middlewares.append(middleware)
        return self

    def _chain(self, innermost: Agent) -> Agent:
        agent = innermost
        for middleware in reversed(self.middlewares):
            agent = _Link(middleware, agent)
        return agent

    def _streams(self) -> bool:
        return isinstance(self.inner, StreamingAgent) and all(
            getattr(m, "passthrough", False) for m in self.middlewares
        )

    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        return await self._chain(self.inner).generate_reply(messages, options)

    async def generate_streaming_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> AsyncIterator[MessageUpdate]:
        if not self._streams():
            reply = await self.generate_reply(messages, options)
            for update in to_updates(reply):
                yield update
            return

        collected: List[MessageUpdate] = []
        final: MessageUpdate | None = None
        async for update in self.inner.generate_streaming_reply(messages, options):
            collected.append(update)
            if update.is_final:
                final = update
                break
            yield update
        if self.middlewares:
            reply = assemble(collected, self.name)
            await self._chain(_Replay(self.inner, reply)).generate_reply(messages, options)
        yield final or TextMessageUpdate(Role.ASSISTANT, "", self.name, is_final=True)


class _Link(Agent):
    def __init__(self, middleware: Middleware, next_agent: Agent) -> None:
        super().__init__(name=next_agent.name, description=next_agent.description)
        self._middleware = middleware
        self._next = next_agent

    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        return await self._middleware(messages, options, self._next)


class _Replay(Agent):
    """Stands in for a streamed agent and hands back its assembled reply."""

    def __init__(self, agent: Agent, reply: Message) -> None:
        super().__init__(name=agent.name, description=agent.description)
        self._reply = reply

    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        return self._reply


def register_middleware(agent: Agent, middleware: Middleware) -> MiddlewareAgent:
    """Wrap ``agent`` (or extend an existing wrapper) with ``middleware``."""
    if isinstance(agent, MiddlewareAgent):
        return agent.use(middleware)
    return MiddlewareAgent(agent, [middleware])


class PrintMessageMiddleware:
    """Prints every reply in a readable block."""

    passthrough = True

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    async def __call__(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None,
        agent: Agent,
    ) -> Message:
        reply = await agent.generate_reply(messages, options)
        out = self.stream or sys.stdout
        out.write(f"{format_message(reply)}\n{'-' * 60}\n")
        out.flush()
        return reply


def register_print_message(agent: Agent, stream: TextIO | None = None) -> MiddlewareAgent:
    return register_middleware(agent, PrintMessageMiddleware(stream))


class LoggingMiddleware:
    """Logs each call at debug level and each failure with its traceback."""

    passthrough = True

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    async def __call__(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None,
        agent: Agent,
    ) -> Message:
        self.log.debug("%s <- %d message(s)", agent.name, len(messages))
        try:
            reply = await agent.generate_reply(messages, options)
        except Exception:
            self.log.exception("%s failed to reply", agent.name)
            raise
        self.log.debug("%s -> %s", agent.name, type(reply).__name__)
        return reply


class FunctionCallMiddleware:
    """Runs the tool calls an agent asks for and answers with call + result.

    The advertised functions are merged into the call options so the inner
    agent knows what it may call. Calls to unknown functions or failing tools
    produce an error string as their result instead of raising.
    """

    def __init__(self, tools: Iterable[Tool]) -> None:
        self.tools = {tool.name: tool for tool in tools}

    def _with_functions(self, options: GenerateReplyOptions | None) -> GenerateReplyOptions:
        options = options or GenerateReplyOptions()
        known = {f.name for f in options.functions or ()}
        extra = tuple(t.contract() for name, t in self.tools.items() if name not in known)
        return replace(options, functions=tuple(options.functions or ()) + extra)

    async def __call__(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None,
        agent: Agent,
    ) -> Message:
        reply = await agent.generate_reply(messages, self._with_functions(options))
        if not isinstance(reply, ToolCallMessage):
            return reply
        results = tuple(
            ToolCallResult(function_name=call.function_name, result=self._run(call.function_name, call.arguments_json))
            for call in reply.calls
        )
        return AggregateMessage(call=reply, result=ToolCallResultMessage(from_=reply.from_, results=results))

    def _run(self, name: str, arguments_json: str) -> str:
        tool = self.tools.get(name)
        if tool is None:
            return f"Error: function {name} is not available."
        try:
            return tool.invoke(arguments_json)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return f"Error: {exc}"

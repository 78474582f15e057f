import io
import logging

import pytest

from groupflow.agents.base import Agent
from groupflow.agents.default_reply import DefaultReplyAgent
from groupflow.agents.middleware import (
    FunctionCallMiddleware,
    LoggingMiddleware,
    MiddlewareAgent,
    register_middleware,
    register_print_message,
)
from groupflow.agents.model import ModelAgent
from groupflow.schemas.messages import (
    AggregateMessage,
    Role,
    TextMessage,
    ToolCall,
    ToolCallMessage,
)
from groupflow.tools.base import FunctionTool
from groupflow.utils.llm_clients import EchoLLMClient
from groupflow.workflows.group_chat import GroupChat
from groupflow.workflows.manager import ChatState, GroupChatManager


class CallingAgent(Agent):
    """Records the offered functions and asks for add plus an unknown one."""

    def __init__(self) -> None:
        super().__init__(name="coder")
        self.offered = []

    async def generate_reply(self, messages, options=None):
        self.offered = [f.name for f in (options.functions or ())]
        return ToolCallMessage(
            from_=self.name,
            calls=[ToolCall("add", '{"a": 2, "b": 3}'), ToolCall("missing", "{}")],
        )


def add(a: int, b: int) -> int:
    """Add two numbers."""
    return a + b


@pytest.mark.asyncio
async def test_middlewares_run_outermost_first():
    order = []

    def tagging(tag):
        async def middleware(messages, options, agent):
            order.append(tag)
            reply = await agent.generate_reply(messages, options)
            return TextMessage(reply.role, f"{reply.content}+{tag}", reply.from_)

        return middleware

    agent = register_middleware(DefaultReplyAgent("a", "base"), tagging("outer"))
    agent = register_middleware(agent, tagging("inner"))

    reply = await agent.send("hi")
    assert isinstance(agent, MiddlewareAgent)
    assert agent.name == "a"
    assert order == ["outer", "inner"]
    assert reply.content == "base+inner+outer"


@pytest.mark.asyncio
async def test_print_message_middleware_writes_reply():
    out = io.StringIO()
    agent = register_print_message(DefaultReplyAgent("a", "Hello"), stream=out)
    await agent.send("hi")
    assert "from: a\nHello" in out.getvalue()


@pytest.mark.asyncio
async def test_logging_middleware_logs_failures(caplog):
    class Broken(Agent):
        async def generate_reply(self, messages, options=None):
            raise RuntimeError("boom")

    agent = register_middleware(Broken("broken"), LoggingMiddleware())
    with caplog.at_level(logging.ERROR), pytest.raises(RuntimeError):
        await agent.send("hi")
    assert "broken failed to reply" in caplog.text


@pytest.mark.asyncio
async def test_function_call_middleware_executes_tools():
    inner = CallingAgent()
    agent = register_middleware(inner, FunctionCallMiddleware([FunctionTool(add)]))

    reply = await agent.send("add please")

    assert inner.offered == ["add"]
    assert isinstance(reply, AggregateMessage)
    results = [(r.function_name, r.result) for r in reply.result.results]
    assert results[0] == ("add", "5")
    assert results[1][0] == "missing"
    assert results[1][1].startswith("Error")


@pytest.mark.asyncio
async def test_streaming_passes_through_when_no_middleware():
    wrapped = MiddlewareAgent(ModelAgent("writer", EchoLLMClient(reply="abcdef", chunk_size=2)))
    updates = [u async for u in wrapped.generate_streaming_reply([TextMessage(Role.USER, "hi", "user")])]
    assert [u.content for u in updates] == ["ab", "cd", "ef", ""]


@pytest.mark.asyncio
async def test_streaming_with_middleware_yields_single_final_fragment():
    agent = register_print_message(DefaultReplyAgent("a", "Hello"), stream=io.StringIO())
    updates = [u async for u in agent.generate_streaming_reply([])]
    assert len(updates) == 1
    assert updates[0].is_final
    assert updates[0].content == "Hello"


class CountingModel(ModelAgent):
    def __init__(self, name, reply):
        super().__init__(name, EchoLLMClient(reply=reply, chunk_size=2))
        self.streamed = 0

    async def generate_streaming_reply(self, messages, options=None):
        self.streamed += 1
        async for update in super().generate_streaming_reply(messages, options):
            yield update


@pytest.mark.asyncio
async def test_observing_middlewares_keep_the_inner_stream():
    out = io.StringIO()
    model = CountingModel("writer", "abcdef")
    agent = register_print_message(register_middleware(model, LoggingMiddleware()), stream=out)

    updates = [u async for u in agent.generate_streaming_reply([TextMessage(Role.USER, "hi", "user")])]

    assert model.streamed == 1
    assert [u.content for u in updates] == ["ab", "cd", "ef", ""]
    assert updates[-1].is_final
    assert "from: writer\nabcdef" in out.getvalue()


@pytest.mark.asyncio
async def test_manager_streams_through_logging_middleware():
    model = CountingModel("writer", "done, TERMINATE")
    agent = register_middleware(model, LoggingMiddleware())
    manager = GroupChatManager(GroupChat([agent]), max_round=3, stream=True)

    result = await manager.send("go", to="writer")

    assert model.streamed == 1
    assert result.state is ChatState.TERMINATED_BY_KEYWORD
    assert result.last_message == TextMessage(Role.ASSISTANT, "done, TERMINATE", "writer")


@pytest.mark.asyncio
async def test_rewriting_middleware_falls_back_to_whole_reply():
    model = CountingModel("coder", "no tools needed")
    agent = register_middleware(model, FunctionCallMiddleware([FunctionTool(add)]))

    updates = [u async for u in agent.generate_streaming_reply([TextMessage(Role.USER, "hi", "user")])]

    assert model.streamed == 0
    assert len(updates) == 1 and updates[0].content == "no tools needed"

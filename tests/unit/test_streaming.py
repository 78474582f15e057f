import asyncio

import pytest

from groupflow.errors import RunCancelled
from groupflow.schemas.messages import (
    Role,
    TextMessage,
    TextMessageUpdate,
    ToolCallMessage,
    ToolCallMessageUpdate,
)
from groupflow.utils.cancellation import CancellationToken
from groupflow.utils.streaming import MessageStream, assemble, drain


async def fragments(*parts, final=True):
    for part in parts:
        yield TextMessageUpdate(Role.ASSISTANT, part, "writer")
    if final:
        yield TextMessageUpdate(Role.ASSISTANT, "", "writer", is_final=True)


@pytest.mark.asyncio
async def test_message_stream_delivers_until_closed():
    stream: MessageStream[str] = MessageStream()

    async def produce():
        for chunk in ("a", "b", "c"):
            await stream.put(chunk)
        await stream.close()

    producer = asyncio.create_task(produce())
    received = [chunk async for chunk in stream]
    await producer
    assert received == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_message_stream_reraises_producer_failure():
    stream: MessageStream[str] = MessageStream()
    await stream.put("partial")
    await stream.fail(ValueError("boom"))

    received = []
    with pytest.raises(ValueError, match="boom"):
        async for chunk in stream:
            received.append(chunk)
    assert received == ["partial"]


@pytest.mark.asyncio
async def test_message_stream_rejects_put_after_close():
    stream: MessageStream[str] = MessageStream()
    await stream.close()
    with pytest.raises(RuntimeError):
        await stream.put("late")


def test_assemble_text_fragments():
    updates = [
        TextMessageUpdate(Role.ASSISTANT, "Hel", "writer"),
        TextMessageUpdate(Role.ASSISTANT, "lo", "writer", is_final=True),
    ]
    message = assemble(updates, "writer")
    assert message == TextMessage(Role.ASSISTANT, "Hello", "writer")


def test_assemble_tool_call_fragments():
    updates = [
        ToolCallMessageUpdate("add", '{"a": ', "coder"),
        ToolCallMessageUpdate("", "1}", "coder"),
        ToolCallMessageUpdate("echo", "{}", "coder", is_final=True),
    ]
    message = assemble(updates, "coder")
    assert isinstance(message, ToolCallMessage)
    assert [(c.function_name, c.arguments_json) for c in message.calls] == [
        ("add", '{"a": 1}'),
        ("echo", "{}"),
    ]


@pytest.mark.asyncio
async def test_drain_builds_one_message():
    message = await drain(fragments("TERM", "INATE"), "writer")
    assert message.content == "TERMINATE"


@pytest.mark.asyncio
async def test_drain_stops_when_cancelled():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(RunCancelled):
        await drain(fragments("x"), "writer", token)

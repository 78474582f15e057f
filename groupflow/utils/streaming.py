from __future__ import annotations

import asyncio
from typing import AsyncIterable, AsyncIterator, Generic, List, TypeVar

from groupflow.schemas.messages import (
    Message,
    MessageUpdate,
    Role,
    TextMessage,
    TextMessageUpdate,
    ToolCall,
    ToolCallMessage,
    ToolCallMessageUpdate,
    get_content,
)
from groupflow.utils.cancellation import CancellationToken, check

T = TypeVar("T")

_END = object()


class _Failure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


class MessageStream(Generic[T]):
    """Channel that turns a push-style producer into an async iterator.

    Producers call ``put`` for each chunk and finish with ``close`` (or
    ``fail``); the consumer iterates with ``async for``. ``maxsize=0`` keeps
    the queue unbounded, otherwise ``put`` waits for the consumer.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def put(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("stream already closed")
        await self._queue.put(item)

    def put_nowait(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("stream already closed")
        self._queue.put_nowait(item)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(_END)

    async def fail(self, error: BaseException) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(_Failure(error))

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item


def assemble(updates: List[MessageUpdate], from_: str) -> Message:
    """Rebuild one logical message out of its fragments."""
    calls: List[List[str]] = []
    text: List[str] = []
    role = Role.ASSISTANT
    for update in updates:
        if isinstance(update, TextMessageUpdate):
            role = update.role
            text.append(update.content)
        elif isinstance(update, ToolCallMessageUpdate):
            # an empty function name continues the previous call
            if update.function_name or not calls:
                calls.append([update.function_name, ""])
            calls[-1][1] += update.arguments_update
    if calls:
        return ToolCallMessage(
            from_=from_,
            calls=tuple(ToolCall(function_name=n, arguments_json=a) for n, a in calls),
        )
    return TextMessage(role=role, content="".join(text), from_=from_)


async def drain(
    updates: AsyncIterable[MessageUpdate],
    from_: str,
    cancellation: CancellationToken | None = None,
) -> Message:
    """Consume a whole fragment stream before anything inspects the reply."""
    collected: List[MessageUpdate] = []
    check(cancellation)
    async for update in updates:
        check(cancellation)
        collected.append(update)
        if getattr(update, "is_final", False):
            break
    return assemble(collected, from_)


def to_updates(message: Message) -> List[MessageUpdate]:
    """Split a whole reply into fragments that ``assemble`` turns back into it."""
    if isinstance(message, ToolCallMessage) and message.calls:
        updates: List[MessageUpdate] = [
            ToolCallMessageUpdate(c.function_name, c.arguments_json, message.from_) for c in message.calls
        ]
        last = updates[-1]
        updates[-1] = ToolCallMessageUpdate(last.function_name, last.arguments_update, last.from_, is_final=True)
        return updates
    role = message.role if isinstance(message, TextMessage) else Role.ASSISTANT
    return [TextMessageUpdate(role, get_content(message) or "", message.from_, is_final=True)]

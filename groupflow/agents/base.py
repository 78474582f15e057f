from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Iterable, Sequence, Union

from groupflow.schemas.messages import (
    GenerateReplyOptions,
    Message,
    MessageUpdate,
    Role,
    TextMessage,
)


class Agent(ABC):
    """Base contract for every participant of a group chat.

    Agents are identified by ``name`` only; a name is the key used by
    transitions, speaker selection and termination checks.
    """

    name: str

    def __init__(self, name: str, description: str = "") -> None:
        if not name:
            raise ValueError("agent name must not be empty")
        self.name = name
        self.description = description

    @abstractmethod
    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        """Produce the next message given the conversation so far.

        Implementations raise ``BackendError`` when their backend fails and
        must not mutate ``messages``.
        """

    async def send(
        self,
        message: Union[str, Message],
        history: Iterable[Message] = (),
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        if isinstance(message, str):
            message = TextMessage(role=Role.USER, content=message, from_="user")
        return await self.generate_reply((*history, message), options)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class StreamingAgent(Agent):
    """Agent that can also deliver its reply as a finite stream of fragments."""

    @abstractmethod
    def generate_streaming_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> AsyncIterator[MessageUpdate]:
        """Yield fragments; the last one carries ``is_final=True``."""

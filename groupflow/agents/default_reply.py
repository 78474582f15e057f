from __future__ import annotations

from typing import Sequence

from groupflow.agents.base import Agent
from groupflow.schemas.messages import GenerateReplyOptions, Message, Role, TextMessage


class DefaultReplyAgent(Agent):
    """Always answers with the same text."""

    def __init__(self, name: str, default_reply: str, description: str = "") -> None:
        super().__init__(name=name, description=description)
        self.default_reply = default_reply

    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        return TextMessage(role=Role.ASSISTANT, content=self.default_reply, from_=self.name)

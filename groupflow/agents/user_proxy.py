from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Sequence

from groupflow.agents.base import Agent
from groupflow.errors import BackendError
from groupflow.schemas.messages import (
    GenerateReplyOptions,
    Message,
    Role,
    TextMessage,
    format_message,
    get_content,
)

logger = logging.getLogger(__name__)

InputFunc = Callable[[str], Any]


class HumanInputMode(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    AUTO = "auto"


class UserProxyAgent(Agent):
    """Stands in for a human participant.

    ALWAYS asks for input on every turn, NEVER answers with ``default_reply``
    without blocking, AUTO asks only when the last message carries the
    termination keyword so a human can confirm or override the stop.
    Empty input falls back to ``default_reply``.
    """

    def __init__(
        self,
        name: str = "user",
        human_input_mode: HumanInputMode = HumanInputMode.ALWAYS,
        default_reply: str = "",
        input_func: InputFunc | None = None,
        termination_keyword: str = "TERMINATE",
        description: str = "A human participant.",
    ) -> None:
        super().__init__(name=name, description=description)
        self.human_input_mode = HumanInputMode(human_input_mode)
        self.default_reply = default_reply
        self.termination_keyword = termination_keyword
        self._input_func: InputFunc = input_func or input

    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        content = self.default_reply
        if self._should_ask(messages):
            answer = await self._ask(self._prompt(messages))
            if answer.strip():
                content = answer
        return TextMessage(role=Role.USER, content=content, from_=self.name)

    def _should_ask(self, messages: Sequence[Message]) -> bool:
        if self.human_input_mode is HumanInputMode.ALWAYS:
            return True
        if self.human_input_mode is HumanInputMode.NEVER or not messages:
            return False
        last = get_content(messages[-1]) or ""
        return self.termination_keyword in last

    def _prompt(self, messages: Sequence[Message]) -> str:
        if not messages:
            return f"[{self.name}] > "
        return f"{format_message(messages[-1])}\n[{self.name}] > "

    async def _ask(self, prompt: str) -> str:
        try:
            if inspect.iscoroutinefunction(self._input_func):
                answer = await self._input_func(prompt)
            else:
                answer = await asyncio.to_thread(self._input_func, prompt)
        except (EOFError, OSError) as exc:
            logger.error("Human input unavailable for %s: %s", self.name, exc)
            raise BackendError(self.name, f"human input unavailable: {exc}") from exc
        return str(answer or "")

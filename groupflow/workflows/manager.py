from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from groupflow.agents.base import Agent, StreamingAgent
from groupflow.errors import (
    BackendError,
    ConfigurationError,
    GroupFlowError,
    NoCandidateError,
    PredicateError,
    RunCancelled,
)
from groupflow.schemas.messages import (
    GenerateReplyOptions,
    Message,
    Role,
    TextMessage,
    get_content,
)
from groupflow.utils.cancellation import CancellationToken, check
from groupflow.utils.streaming import drain
from groupflow.workflows.group_chat import GroupChat, Selection

logger = logging.getLogger(__name__)

DEFAULT_TERMINATION_KEYWORD = "TERMINATE"


class ChatState(str, Enum):
    RUNNING = "running"
    TERMINATED_BY_KEYWORD = "terminated_by_keyword"
    TERMINATED_BY_ROUND_LIMIT = "terminated_by_round_limit"
    TERMINATED_BY_NO_CANDIDATE = "terminated_by_no_candidate"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class GroupChatResult:
    """Terminal state of a run together with the history it produced."""

    state: ChatState
    history: Tuple[Message, ...]
    rounds: int
    speakers: Tuple[str, ...]
    reason: str = ""
    error: Optional[GroupFlowError] = None

    @property
    def last_message(self) -> Optional[Message]:
        return self.history[-1] if self.history else None

    def raise_for_state(self) -> "GroupChatResult":
        if self.state is ChatState.FAILED and self.error is not None:
            raise self.error
        if self.state is ChatState.TERMINATED_BY_NO_CANDIDATE:
            raise NoCandidateError(self.reason)
        return self


class GroupChatManager:
    """Drives the turn-taking loop of a group chat.

    Each round invokes exactly one agent with the full history and appends
    its reply. The run stops when a message carries the termination keyword,
    when ``max_round`` agent invocations have happened, when nobody may
    speak next, when an agent or predicate fails, or when cancelled. Loop
    state lives inside ``run``. A chat serves one run at a time, even when
    several managers share it.
    """

    def __init__(
        self,
        chat: GroupChat,
        max_round: int = 10,
        termination_keyword: str = DEFAULT_TERMINATION_KEYWORD,
        stream: bool = False,
        reply_options: GenerateReplyOptions | None = None,
    ) -> None:
        if chat is None:
            raise ConfigurationError("a manager needs a group chat")
        if max_round < 1:
            raise ConfigurationError(f"max_round must be at least 1, got {max_round}")
        if not termination_keyword:
            raise ConfigurationError("termination keyword must not be empty")
        self.chat = chat
        self.max_round = max_round
        self.termination_keyword = termination_keyword
        self.stream = stream
        self.reply_options = reply_options

    async def send(
        self,
        content: str,
        from_: str = "user",
        to: Union[Agent, str, None] = None,
        cancellation: CancellationToken | None = None,
    ) -> GroupChatResult:
        """Open the conversation with a plain user message."""
        sent_to = to if isinstance(to, str) or to is None else to.name
        message = TextMessage(role=Role.USER, content=content, from_=from_, sent_to=sent_to)
        return await self.run(message, starting_agent=to, cancellation=cancellation)

    async def run(
        self,
        message: Message,
        starting_agent: Union[Agent, str, None] = None,
        cancellation: CancellationToken | None = None,
    ) -> GroupChatResult:
        start = self._resolve_start(starting_agent)
        if self.chat.running:
            raise ConfigurationError("this group chat is already running a conversation")
        self.chat.running = True
        try:
            return await self._loop(message, start, cancellation)
        finally:
            self.chat.running = False

    def _resolve_start(self, starting_agent: Union[Agent, str, None]) -> Optional[Agent]:
        if starting_agent is None:
            return None
        name = starting_agent if isinstance(starting_agent, str) else starting_agent.name
        member = self.chat.member(name)
        if member is None:
            raise ConfigurationError(f"starting agent {name} is not a member of the chat")
        return member

    def is_termination(self, message: Message) -> bool:
        content = get_content(message)
        return content is not None and self.termination_keyword in content

    async def _loop(
        self,
        message: Message,
        start: Optional[Agent],
        cancellation: CancellationToken | None,
    ) -> GroupChatResult:
        history = self.chat.reset([message])
        speakers: list[str] = []
        speaker: Optional[Agent] = None
        last = message

        def finish(state: ChatState, reason: str, error: GroupFlowError | None = None) -> GroupChatResult:
            log = logger.error if state is ChatState.FAILED else logger.info
            log("Group chat ended after %d round(s): %s (%s)", len(speakers), state.value, reason)
            return GroupChatResult(
                state=state,
                history=history.view(),
                rounds=len(speakers),
                speakers=tuple(speakers),
                reason=reason,
                error=error,
            )

        try:
            while True:
                if self.is_termination(last):
                    return finish(ChatState.TERMINATED_BY_KEYWORD, f"{last.from_} said {self.termination_keyword}")
                if len(speakers) >= self.max_round:
                    return finish(ChatState.TERMINATED_BY_ROUND_LIMIT, f"reached max_round={self.max_round}")

                check(cancellation)
                selection = await self._select(speaker, start, message, history.view(), cancellation)
                if selection.speaker is None:
                    return finish(ChatState.TERMINATED_BY_NO_CANDIDATE, selection.reason)
                speaker = selection.speaker
                logger.info("Round %d: %s speaks (%s)", len(speakers) + 1, speaker.name, selection.reason)

                last = await self._invoke(speaker, history.view(), cancellation)
                history.append(last)
                speakers.append(speaker.name)
        except RunCancelled as exc:
            return finish(ChatState.CANCELLED, str(exc))
        except PredicateError as exc:
            return finish(ChatState.FAILED, str(exc), exc)
        except BackendError as exc:
            return finish(ChatState.FAILED, str(exc), exc)

    async def _select(
        self,
        current: Optional[Agent],
        start: Optional[Agent],
        opening: Message,
        history: Tuple[Message, ...],
        cancellation: CancellationToken | None,
    ) -> Selection:
        if current is not None:
            return await self.chat.select_next_speaker(current, history, cancellation)
        if start is not None:
            return Selection(start, (start.name,), "starting agent")
        return await self.chat.select_initial_speaker(opening, cancellation)

    async def _invoke(
        self,
        speaker: Agent,
        history: Tuple[Message, ...],
        cancellation: CancellationToken | None,
    ) -> Message:
        check(cancellation)
        if self.stream and isinstance(speaker, StreamingAgent):
            work = drain(
                speaker.generate_streaming_reply(history, self.reply_options),
                speaker.name,
                cancellation,
            )
        else:
            work = speaker.generate_reply(history, self.reply_options)
        try:
            reply = await (cancellation.race(work) if cancellation is not None else work)
        except (BackendError, RunCancelled):
            raise
        except Exception as exc:
            logger.exception("%s raised while replying", speaker.name)
            raise BackendError(speaker.name, f"agent call failed: {exc!r}") from exc
        if reply is None or not getattr(reply, "from_", None):
            raise BackendError(speaker.name, "agent returned no message")
        return reply

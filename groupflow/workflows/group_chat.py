from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from groupflow.agents.base import Agent
from groupflow.errors import BackendError, ConfigurationError, RunCancelled
from groupflow.memory.transcript import Transcript
from groupflow.schemas.messages import Message, Role, TextMessage, get_content
from groupflow.utils.cancellation import CancellationToken, check
from groupflow.workflows.graph import Graph

logger = logging.getLogger(__name__)

SELECTION_PROMPT = """You are in a role play game. The following roles are available:
{roles}

Read the following conversation, then select the next role from [{candidates}] to play.
Only return the role name, nothing else.

Conversation:
{conversation}"""


@dataclass(frozen=True)
class Selection:
    """Outcome of one next-speaker resolution."""

    speaker: Optional[Agent]
    candidates: Tuple[str, ...]
    reason: str


class GroupChat:
    """Members, optional workflow graph and optional admin of one conversation.

    Without a graph every other member is a candidate, starting right after
    the current speaker (round robin). With a graph only the legal targets of
    the current speaker are; a speaker without outgoing transitions is a sink
    and ends the conversation.
    """

    def __init__(
        self,
        members: Iterable[Agent],
        graph: Graph | None = None,
        admin: Agent | None = None,
        admin_history_window: int = 10,
    ) -> None:
        self.members: Tuple[Agent, ...] = tuple(members)
        if not self.members:
            raise ConfigurationError("a group chat needs at least one member")
        self._by_name: Dict[str, Agent] = {}
        for member in self.members:
            if not isinstance(member, Agent):
                raise ConfigurationError(f"member {member!r} is not an Agent")
            if member.name in self._by_name:
                raise ConfigurationError(f"duplicate member name: {member.name}")
            self._by_name[member.name] = member
        if admin is not None and not isinstance(admin, Agent):
            raise ConfigurationError(f"admin {admin!r} is not an Agent")
        self.graph = graph
        self.admin = admin
        self.admin_history_window = admin_history_window
        self.history = Transcript()
        self.running = False
        if graph is not None:
            strangers = [name for name in graph.agents if name not in self._by_name]
            if strangers:
                logger.warning("Graph references agents outside the chat: %s", ", ".join(strangers))

    def reset(self, initial: Iterable[Message] = ()) -> Transcript:
        """Start a fresh history; only the orchestration loop writes to it."""
        self.history = Transcript(initial)
        return self.history

    def member(self, name: str) -> Optional[Agent]:
        return self._by_name.get(name)

    @property
    def member_names(self) -> Tuple[str, ...]:
        return tuple(self._by_name)

    def _round_robin(self, current: Optional[str]) -> List[str]:
        names = list(self._by_name)
        if current not in self._by_name:
            return names
        idx = names.index(current)
        return names[idx + 1 :] + names[:idx]

    async def select_next_speaker(
        self,
        current: Agent | str,
        history: Sequence[Message],
        cancellation: CancellationToken | None = None,
    ) -> Selection:
        current_name = current if isinstance(current, str) else current.name
        if self.graph is None:
            return await self._choose(self._round_robin(current_name), history, "round robin", cancellation)

        legal = await self.graph.transit_from(current_name, history, cancellation)
        if legal is None:
            return Selection(None, (), f"{current_name} has no outgoing transitions")
        candidates = [name for name in legal if name in self._by_name]
        if not candidates:
            return Selection(None, (), f"all transitions from {current_name} are blocked")
        return await self._choose(candidates, history, "workflow", cancellation)

    async def select_initial_speaker(
        self,
        message: Message,
        cancellation: CancellationToken | None = None,
    ) -> Selection:
        """First speaker for a conversation opened by ``message``."""
        sent_to = message.sent_to if isinstance(message, TextMessage) else None
        if sent_to and sent_to in self._by_name:
            return Selection(self._by_name[sent_to], (sent_to,), "addressed")
        if message.from_ in self._by_name:
            return await self.select_next_speaker(message.from_, (message,), cancellation)
        candidates = list(self._by_name)
        if self.graph is not None:
            sources = [name for name in candidates if self.graph.has_outgoing(name)]
            candidates = sources or candidates
        return await self._choose(candidates, (message,), "opening", cancellation)

    async def _choose(
        self,
        candidates: List[str],
        history: Sequence[Message],
        reason: str,
        cancellation: CancellationToken | None,
    ) -> Selection:
        if not candidates:
            return Selection(None, (), f"{reason}: no candidates")
        if len(candidates) == 1:
            return Selection(self._by_name[candidates[0]], tuple(candidates), reason)
        if self.admin is not None:
            check(cancellation)
            chosen = await self._ask_admin(self.admin, candidates, history, cancellation)
            if chosen is not None:
                return Selection(self._by_name[chosen], tuple(candidates), f"{reason}, chosen by admin")
        return Selection(self._by_name[candidates[0]], tuple(candidates), f"{reason}, first candidate")

    def selection_prompt(self, candidates: Sequence[str], history: Sequence[Message]) -> str:
        roles = "\n".join(f"{m.name}: {m.description}" if m.description else m.name for m in self.members)
        window = list(history)[-self.admin_history_window :] if self.admin_history_window > 0 else []
        conversation = "\n".join(f"{m.from_}: {get_content(m) or ''}" for m in window)
        return SELECTION_PROMPT.format(
            roles=roles,
            candidates=", ".join(candidates),
            conversation=conversation,
        )

    async def _ask_admin(
        self,
        admin: Agent,
        candidates: List[str],
        history: Sequence[Message],
        cancellation: CancellationToken | None = None,
    ) -> Optional[str]:
        request = TextMessage(
            role=Role.USER,
            content=self.selection_prompt(candidates, history),
            from_="group_chat",
            sent_to=admin.name,
        )
        try:
            work = admin.generate_reply((request,))
            reply = await (cancellation.race(work) if cancellation is not None else work)
        except RunCancelled:
            raise
        except BackendError as exc:
            logger.warning("Admin %s failed to pick a speaker: %s", admin.name, exc)
            return None
        except Exception:
            logger.exception("Admin %s raised while picking a speaker", admin.name)
            return None
        if reply is None:
            return None
        return parse_speaker(get_content(reply) or "", candidates)


def parse_speaker(reply: str, candidates: Sequence[str]) -> Optional[str]:
    """Candidate named by ``reply``: an exact answer first, then the first substring match."""
    answer = reply.strip()
    if answer in candidates:
        return answer
    for name in candidates:
        if name in answer:
            return name
    logger.debug("Admin reply %r names none of %s", reply, list(candidates))
    return None

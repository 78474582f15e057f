from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from groupflow.errors import ConfigurationError
from groupflow.schemas.messages import Message
from groupflow.utils.cancellation import CancellationToken, check
from groupflow.workflows.transition import Endpoint, Transition, endpoint_name

logger = logging.getLogger(__name__)


class Graph:
    """Set of transitions governing who may follow whom.

    Outgoing transitions are kept per source in insertion order; that order
    is the tie-break when several targets are legal. Duplicate edges are
    allowed so a guarded rule can be followed by an unconditional fallback.
    """

    def __init__(self, transitions: Iterable[Transition] = ()) -> None:
        self._transitions: List[Transition] = []
        self._outgoing: Dict[str, List[Transition]] = {}
        for transition in transitions:
            self.add_transition(transition)

    def add_transition(self, transition: Transition) -> None:
        if not isinstance(transition, Transition):
            raise ConfigurationError(f"expected a Transition, got {type(transition).__name__}")
        self._transitions.append(transition)
        self._outgoing.setdefault(transition.from_name, []).append(transition)

    @property
    def transitions(self) -> Tuple[Transition, ...]:
        return tuple(self._transitions)

    @property
    def agents(self) -> Tuple[str, ...]:
        """Every endpoint name, in first-seen order."""
        seen: Dict[str, None] = {}
        for t in self._transitions:
            seen.setdefault(t.from_name, None)
            seen.setdefault(t.to_name, None)
        return tuple(seen)

    def has_outgoing(self, agent: Endpoint) -> bool:
        return endpoint_name(agent) in self._outgoing

    def outgoing(self, agent: Endpoint) -> Tuple[Transition, ...]:
        return tuple(self._outgoing.get(endpoint_name(agent), ()))

    async def transit_from(
        self,
        agent: Endpoint,
        history: Sequence[Message],
        cancellation: Optional[CancellationToken] = None,
    ) -> Optional[List[str]]:
        """Names that may speak after ``agent``, in insertion order.

        Returns ``None`` when ``agent`` has no outgoing transition at all
        (unconstrained) and an empty list when every transition is blocked.
        Every outgoing predicate runs, one at a time, even for duplicate
        targets; a failing predicate raises PredicateError.
        """
        name = endpoint_name(agent)
        transitions = self._outgoing.get(name)
        if not transitions:
            return None
        view = tuple(history)
        allowed: List[str] = []
        for transition in transitions:
            check(cancellation)
            if await transition.can_transit(view) and transition.to_name not in allowed:
                allowed.append(transition.to_name)
        logger.debug("Transitions from %s allow %s", name, allowed)
        return allowed

    def __len__(self) -> int:
        return len(self._transitions)

    def __repr__(self) -> str:
        return f"Graph({len(self._transitions)} transitions)"

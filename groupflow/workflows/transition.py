from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from groupflow.agents.base import Agent
from groupflow.errors import ConfigurationError, PredicateError
from groupflow.schemas.messages import Message

Endpoint = Union[Agent, str]

# Predicates may be sync or async and are not assumed to be side-effect free:
# each one runs at most once per selection and is never retried.
Predicate = Callable[[Endpoint, Endpoint, Sequence[Message]], Union[bool, Awaitable[bool]]]


def endpoint_name(endpoint: Endpoint) -> str:
    return endpoint if isinstance(endpoint, str) else endpoint.name


@dataclass(frozen=True)
class Transition:
    """Directed edge saying ``to_agent`` may speak right after ``from_agent``.

    The predicate receives the endpoints exactly as they were passed to
    ``create`` plus a read-only view of the history.
    """

    from_agent: Endpoint
    to_agent: Endpoint
    predicate: Optional[Predicate] = None

    @classmethod
    def create(
        cls,
        from_agent: Endpoint,
        to_agent: Endpoint,
        predicate: Optional[Predicate] = None,
    ) -> "Transition":
        if from_agent is None or to_agent is None:
            raise ConfigurationError("a transition needs both endpoints")
        if predicate is not None and not callable(predicate):
            raise ConfigurationError("transition predicate must be callable")
        return cls(from_agent=from_agent, to_agent=to_agent, predicate=predicate)

    @property
    def from_name(self) -> str:
        return endpoint_name(self.from_agent)

    @property
    def to_name(self) -> str:
        return endpoint_name(self.to_agent)

    async def can_transit(self, history: Sequence[Message]) -> bool:
        if self.predicate is None:
            return True
        try:
            outcome: Any = self.predicate(self.from_agent, self.to_agent, tuple(history))
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            raise PredicateError(self.from_name, self.to_name, exc) from exc
        return bool(outcome)

    def __repr__(self) -> str:
        guard = "" if self.predicate is None else " (guarded)"
        return f"Transition({self.from_name} -> {self.to_name}{guard})"


def max_messages(limit: int) -> Predicate:
    """Guard that passes while the history holds at most ``limit`` messages."""

    def predicate(from_agent: Endpoint, to_agent: Endpoint, history: Sequence[Message]) -> bool:
        return len(history) <= limit

    return predicate


def min_messages(limit: int) -> Predicate:
    """Guard that passes once the history holds more than ``limit`` messages."""

    def predicate(from_agent: Endpoint, to_agent: Endpoint, history: Sequence[Message]) -> bool:
        return len(history) > limit

    return predicate

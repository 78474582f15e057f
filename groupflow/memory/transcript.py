from __future__ import annotations

from typing import Iterable, List, Tuple

from groupflow.schemas.messages import Message


class Transcript:
    """Append-only conversation log owned by a single orchestration loop."""

    def __init__(self, initial: Iterable[Message] | None = None) -> None:
        self._turns: List[Message] = list(initial or [])

    def append(self, message: Message) -> None:
        self._turns.append(message)

    def last(self, k: int = 1) -> Tuple[Message, ...]:
        if k <= 0:
            return ()
        return tuple(self._turns[-k:])

    def view(self) -> Tuple[Message, ...]:
        """Read-only snapshot handed to agents, predicates and selection logic."""
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(tuple(self._turns))

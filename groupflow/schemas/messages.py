from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def _require_sender(from_: str) -> None:
    if not from_:
        raise ValueError("every message needs a sender")


@dataclass(frozen=True)
class TextMessage:
    """Plain text turn of the conversation."""

    role: Role
    content: str
    from_: str
    sent_to: Optional[str] = None

    def __post_init__(self) -> None:
        _require_sender(self.from_)


@dataclass(frozen=True)
class ToolCall:
    function_name: str
    arguments_json: str


@dataclass(frozen=True)
class ToolCallMessage:
    """Request from an agent to run one or more functions."""

    from_: str
    calls: Tuple[ToolCall, ...]

    def __post_init__(self) -> None:
        _require_sender(self.from_)
        object.__setattr__(self, "calls", tuple(self.calls))


@dataclass(frozen=True)
class ToolCallResult:
    function_name: str
    result: str


@dataclass(frozen=True)
class ToolCallResultMessage:
    from_: str
    results: Tuple[ToolCallResult, ...]

    def __post_init__(self) -> None:
        _require_sender(self.from_)
        object.__setattr__(self, "results", tuple(self.results))


@dataclass(frozen=True)
class AggregateMessage:
    """A tool call paired with its resolution."""

    call: ToolCallMessage
    result: ToolCallResultMessage

    @property
    def from_(self) -> str:
        return self.call.from_


Message = Union[TextMessage, ToolCallMessage, ToolCallResultMessage, AggregateMessage]


@dataclass(frozen=True)
class TextMessageUpdate:
    """One incremental text fragment. Never appended to history on its own."""

    role: Role
    content: str
    from_: str
    is_final: bool = False


@dataclass(frozen=True)
class ToolCallMessageUpdate:
    function_name: str
    arguments_update: str
    from_: str
    is_final: bool = False


MessageUpdate = Union[TextMessageUpdate, ToolCallMessageUpdate]


@dataclass(frozen=True)
class FunctionContract:
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerateReplyOptions:
    """Per-call knobs forwarded to an agent's backend.

    ``functions`` lists the functions the agent may call; ``stop_sequences``
    are termination hints a backend may use to cut generation short.
    """

    functions: Optional[Tuple[FunctionContract, ...]] = None
    stop_sequences: Optional[Tuple[str, ...]] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


def get_content(message: Message) -> Optional[str]:
    """Text used for prompts and termination checks, or None for a bare tool call."""
    if isinstance(message, TextMessage):
        return message.content
    if isinstance(message, ToolCallResultMessage):
        return "\n".join(r.result for r in message.results)
    if isinstance(message, AggregateMessage):
        return get_content(message.result)
    return None


def format_message(message: Message) -> str:
    if isinstance(message, TextMessage):
        header = f"from: {message.from_}"
        if message.sent_to:
            header += f" -> {message.sent_to}"
        return f"{header}\n{message.content}"
    if isinstance(message, ToolCallMessage):
        lines = [f"from: {message.from_}"]
        lines.extend(f"call {c.function_name}({c.arguments_json})" for c in message.calls)
        return "\n".join(lines)
    if isinstance(message, ToolCallResultMessage):
        lines = [f"from: {message.from_}"]
        lines.extend(f"result {r.function_name}: {r.result}" for r in message.results)
        return "\n".join(lines)
    return f"{format_message(message.call)}\n{format_message(message.result)}"

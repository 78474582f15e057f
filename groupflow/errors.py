from __future__ import annotations


class GroupFlowError(Exception):
    """Base class for every error raised by groupflow."""


class ConfigurationError(GroupFlowError):
    """Invalid construction input: missing dependency, duplicate names, bad limits."""


class PredicateError(GroupFlowError):
    """A transition predicate raised while being evaluated."""

    def __init__(self, from_agent: str, to_agent: str, cause: BaseException) -> None:
        super().__init__(f"Predicate for transition {from_agent} -> {to_agent} failed: {cause!r}")
        self.from_agent = from_agent
        self.to_agent = to_agent


class BackendError(GroupFlowError):
    """An agent's underlying call failed (network, exhausted retries, timeout)."""

    def __init__(self, agent_name: str, message: str) -> None:
        super().__init__(f"[{agent_name}] {message}")
        self.agent_name = agent_name


class MalformedResponseError(BackendError):
    """A backend answered with content that could not be parsed."""


class NoCandidateError(GroupFlowError):
    """No agent may speak next. Only raised on request by GroupChatResult.raise_for_state."""


class RunCancelled(GroupFlowError):
    """Raised inside the loop when its cancellation token fires."""

import pytest

from groupflow.agents.default_reply import DefaultReplyAgent
from groupflow.errors import ConfigurationError, PredicateError
from groupflow.schemas.messages import Role, TextMessage
from groupflow.workflows.transition import Transition, max_messages, min_messages


def history_of(n: int):
    return tuple(TextMessage(Role.USER, f"m{i}", "user") for i in range(n))


@pytest.mark.asyncio
async def test_unguarded_transition_always_passes():
    transition = Transition.create("a", "b")
    assert await transition.can_transit(()) is True


@pytest.mark.asyncio
async def test_async_predicate_receives_endpoints_and_history():
    a = DefaultReplyAgent("a", "x")
    b = DefaultReplyAgent("b", "y")
    seen = []

    async def predicate(from_agent, to_agent, history):
        seen.append((from_agent, to_agent, len(history)))
        return False

    transition = Transition.create(a, b, predicate)
    assert transition.from_name == "a"
    assert transition.to_name == "b"
    assert await transition.can_transit(history_of(2)) is False
    assert seen == [(a, b, 2)]


@pytest.mark.asyncio
async def test_sync_predicate_is_accepted():
    transition = Transition.create("a", "b", lambda f, t, h: len(h) > 1)
    assert await transition.can_transit(history_of(1)) is False
    assert await transition.can_transit(history_of(2)) is True


@pytest.mark.asyncio
async def test_failing_predicate_raises_predicate_error():
    def predicate(from_agent, to_agent, history):
        raise KeyError("missing")

    transition = Transition.create("a", "b", predicate)
    with pytest.raises(PredicateError) as info:
        await transition.can_transit(())
    assert isinstance(info.value.__cause__, KeyError)
    assert info.value.from_agent == "a"


def test_create_rejects_missing_endpoint():
    with pytest.raises(ConfigurationError):
        Transition.create(None, "b")
    with pytest.raises(ConfigurationError):
        Transition.create("a", "b", predicate="not callable")


@pytest.mark.asyncio
async def test_message_count_guards():
    upper = Transition.create("a", "b", max_messages(5))
    lower = Transition.create("a", "b", min_messages(5))
    assert await upper.can_transit(history_of(5)) is True
    assert await upper.can_transit(history_of(6)) is False
    assert await lower.can_transit(history_of(5)) is False
    assert await lower.can_transit(history_of(6)) is True

import pytest

from groupflow.errors import ConfigurationError, PredicateError, RunCancelled
from groupflow.utils.cancellation import CancellationToken
from groupflow.workflows.graph import Graph
from groupflow.workflows.transition import Transition


def never(f, t, h):
    return False


@pytest.mark.asyncio
async def test_transit_from_keeps_insertion_order():
    graph = Graph(
        [
            Transition.create("a", "c"),
            Transition.create("a", "b"),
            Transition.create("b", "a"),
        ]
    )
    assert await graph.transit_from("a", ()) == ["c", "b"]
    assert graph.agents == ("a", "c", "b")


@pytest.mark.asyncio
async def test_unconstrained_and_blocked_are_distinct():
    graph = Graph([Transition.create("a", "b", never)])
    assert await graph.transit_from("a", ()) == []
    assert await graph.transit_from("b", ()) is None
    assert graph.has_outgoing("a")
    assert not graph.has_outgoing("b")


@pytest.mark.asyncio
async def test_duplicate_edges_evaluate_every_predicate():
    calls = []

    def guarded(f, t, h):
        calls.append("guarded")
        return False

    def fallback(f, t, h):
        calls.append("fallback")
        return True

    graph = Graph(
        [
            Transition.create("a", "b", guarded),
            Transition.create("a", "b", fallback),
            Transition.create("a", "b"),
        ]
    )
    assert await graph.transit_from("a", ()) == ["b"]
    assert calls == ["guarded", "fallback"]


@pytest.mark.asyncio
async def test_predicate_error_propagates():
    def broken(f, t, h):
        raise RuntimeError("bad predicate")

    graph = Graph([Transition.create("a", "b", broken)])
    with pytest.raises(PredicateError):
        await graph.transit_from("a", ())


@pytest.mark.asyncio
async def test_cancellation_checked_before_predicates():
    token = CancellationToken()
    token.cancel()
    graph = Graph([Transition.create("a", "b")])
    with pytest.raises(RunCancelled):
        await graph.transit_from("a", (), token)


def test_add_transition_rejects_other_types():
    graph = Graph()
    with pytest.raises(ConfigurationError):
        graph.add_transition(("a", "b"))
    assert len(graph) == 0

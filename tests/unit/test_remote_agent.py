import json

import httpx
import pytest

from groupflow.agents.remote import FAILED_RETRIEVAL, RemoteAgent, RemoteAgentDescriptor
from groupflow.errors import BackendError
from groupflow.schemas.messages import Role, TextMessage


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="http://agent.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_posts_history_and_parses_reply():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"Role": "assistant", "Content": "pong", "From": "server"})

    async with client_for(handler) as client:
        agent = RemoteAgent("Agent 1", client)
        reply = await agent.generate_reply([TextMessage(Role.USER, "ping", "user", sent_to="Agent 1")])

    assert seen["url"] == "http://agent.test/chat"
    assert seen["body"] == {
        "Messages": [{"Role": "user", "Content": "ping", "From": "user", "SentTo": "Agent 1"}]
    }
    assert reply == TextMessage(Role.ASSISTANT, "pong", "Agent 1")


@pytest.mark.asyncio
async def test_custom_endpoint_and_descriptor():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/talk"
        return httpx.Response(200, json={"Content": "ok"})

    async with client_for(handler) as client:
        descriptor = RemoteAgentDescriptor("planner", "Plans the work.")
        agent = RemoteAgent.from_descriptor(descriptor, client, chat_endpoint="v2/talk")
        reply = await agent.generate_reply([])

    assert agent.description == "Plans the work."
    assert reply.content == "ok"


@pytest.mark.asyncio
async def test_error_status_is_backend_error():
    async with client_for(lambda request: httpx.Response(503)) as client:
        agent = RemoteAgent("Agent 1", client)
        with pytest.raises(BackendError, match="503"):
            await agent.generate_reply([])


@pytest.mark.asyncio
async def test_transport_failure_is_backend_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async with client_for(handler) as client:
        agent = RemoteAgent("Agent 1", client)
        with pytest.raises(BackendError):
            await agent.generate_reply([])


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"", b"null", b"not json", b'{"Role": "assistant"}'])
async def test_malformed_body_degrades_to_placeholder(body):
    async with client_for(lambda request: httpx.Response(200, content=body)) as client:
        agent = RemoteAgent("Agent 1", client)
        reply = await agent.generate_reply([])

    assert reply == TextMessage(Role.ASSISTANT, FAILED_RETRIEVAL, "Agent 1")


@pytest.mark.asyncio
async def test_bare_host_base_url_gets_path_separator():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"Content": "hi"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(base_url="http://localhost:5001", transport=transport) as client:
        agent = RemoteAgent("Agent 1", client)
        reply = await agent.generate_reply([])

    assert agent.url == "http://localhost:5001/chat"
    assert seen["url"] == "http://localhost:5001/chat"
    assert reply.content == "hi"


@pytest.mark.asyncio
async def test_base_url_path_is_kept():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/agents/planner/chat"
        return httpx.Response(200, json={"Content": "ok"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(base_url="http://agent.test/agents/planner", transport=transport) as client:
        reply = await RemoteAgent("planner", client, chat_endpoint="/chat").generate_reply([])

    assert reply.content == "ok"


@pytest.mark.asyncio
async def test_invalid_url_is_backend_error():
    async with client_for(lambda request: httpx.Response(200)) as client:
        agent = RemoteAgent("Agent 1", client, chat_endpoint="http://localhost:not-a-port/chat")
        with pytest.raises(BackendError):
            await agent.generate_reply([])

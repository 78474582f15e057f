from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from groupflow.agents.base import Agent
from groupflow.errors import BackendError, MalformedResponseError
from groupflow.schemas.messages import (
    GenerateReplyOptions,
    Message,
    Role,
    TextMessage,
    get_content,
)

logger = logging.getLogger(__name__)

FAILED_RETRIEVAL = "Failed to retrieve the response from the remote agent."


@dataclass(frozen=True)
class RemoteAgentDescriptor:
    """Name and purpose of a remote agent, used in admin selection prompts."""

    name: str
    description: str


class WireTextMessage(BaseModel):
    """Text message as exchanged with remote agents (PascalCase keys)."""

    model_config = ConfigDict(populate_by_name=True)

    role: str = Field(default="assistant", alias="Role")
    content: str = Field(alias="Content")
    from_: Optional[str] = Field(default=None, alias="From")
    sent_to: Optional[str] = Field(default=None, alias="SentTo")


def _to_wire(message: Message) -> Dict[str, Any]:
    role = message.role.value if isinstance(message, TextMessage) else Role.ASSISTANT.value
    sent_to = message.sent_to if isinstance(message, TextMessage) else None
    payload = WireTextMessage(
        role=role,
        content=get_content(message) or "",
        from_=message.from_,
        sent_to=sent_to,
    )
    return payload.model_dump(by_alias=True, exclude_none=True)


class RemoteAgent(Agent):
    """Agent served by an HTTP endpoint.

    POSTs ``{"Messages": [...]}`` to ``chat_endpoint`` under the client
    base_url and expects one text message back. The ``httpx.AsyncClient``
    is owned by the caller so that agents share its connection pool, base
    URL, headers and timeout.
    """

    def __init__(
        self,
        name: str,
        http_client: httpx.AsyncClient,
        chat_endpoint: str = "chat",
        description: str = "",
    ) -> None:
        super().__init__(name=name, description=description)
        if http_client is None:
            raise ValueError("http_client is required")
        self.http_client = http_client
        self.chat_endpoint = chat_endpoint

    @classmethod
    def from_descriptor(
        cls,
        descriptor: RemoteAgentDescriptor,
        http_client: httpx.AsyncClient,
        chat_endpoint: str = "chat",
    ) -> "RemoteAgent":
        return cls(
            name=descriptor.name,
            http_client=http_client,
            chat_endpoint=chat_endpoint,
            description=descriptor.description,
        )

    @property
    def url(self) -> str:
        base = str(self.http_client.base_url).rstrip("/")
        return f"{base}/{self.chat_endpoint.lstrip('/')}"

    async def generate_reply(
        self,
        messages: Sequence[Message],
        options: GenerateReplyOptions | None = None,
    ) -> Message:
        body: Dict[str, List[Dict[str, Any]]] = {"Messages": [_to_wire(m) for m in messages]}
        try:
            # relative path, so httpx merges it under the base_url path
            response = await self.http_client.post(self.chat_endpoint.lstrip("/"), json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("%s answered %s for %s", self.name, exc.response.status_code, self.url)
            raise BackendError(
                self.name, f"remote agent returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("Request to %s failed: %s", self.url, exc)
            raise BackendError(self.name, f"request to remote agent failed: {exc}") from exc

        try:
            return self._parse(response.text)
        except MalformedResponseError as exc:
            logger.warning("%s", exc)
            return TextMessage(role=Role.ASSISTANT, content=FAILED_RETRIEVAL, from_=self.name)

    def _parse(self, text: str) -> TextMessage:
        if not text.strip() or text.strip() == "null":
            raise MalformedResponseError(self.name, "remote agent returned an empty body")
        try:
            wire = WireTextMessage.model_validate_json(text)
        except ValidationError as exc:
            raise MalformedResponseError(self.name, f"unparseable response: {exc.error_count()} error(s)") from exc
        try:
            role = Role(wire.role.lower())
        except ValueError:
            role = Role.ASSISTANT
        # the speaker identity is ours whatever the server put in "From"
        return TextMessage(role=role, content=wire.content, from_=self.name, sent_to=wire.sent_to)

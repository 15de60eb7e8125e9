"""Relay endpoint: POST /api/chat streams a normalized completion."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from starlette.background import BackgroundTask

from chatrelay.auth import CurrentIdentity
from chatrelay.auth.dependencies import request_settings
from chatrelay.core import InvalidInputError, NotFoundError
from chatrelay.providers import AttachmentRef, ChatMessage, ProviderRegistry, Role
from chatrelay.services import RelayService

router = APIRouter(tags=["chat"])


class AttachmentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    content_type: str | None = Field(None, alias="contentType")
    url: str | None = None


class MessageIn(BaseModel):
    role: Role
    content: str
    attachments: list[AttachmentIn] = Field(default_factory=list)

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: Any) -> Any:
        """Accept the persistence layer's upper-case role tags (USER, ASSISTANT)."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class ChatRelayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[MessageIn]
    provider: str = "openrouter"
    model: str = Field(..., min_length=1)
    is_guest_request: bool = Field(False, alias="isGuestRequest")
    max_tokens: int | None = Field(None, alias="maxTokens", gt=0)

    def to_messages(self) -> list[ChatMessage]:
        return [
            ChatMessage(
                role=message.role,
                content=message.content,
                attachments=tuple(
                    AttachmentRef(name=a.name, content_type=a.content_type, url=a.url)
                    for a in message.attachments
                ),
            )
            for message in self.messages
        ]


class ChatCancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stream_id: str = Field(..., alias="streamId")


def get_relay_service(request: Request) -> RelayService:
    service = getattr(request.app.state, "relay_service", None)
    if service:
        return service
    settings = request_settings(request)
    registry = getattr(request.app.state, "provider_registry", None)
    if registry is None:
        registry = ProviderRegistry(settings)
        request.app.state.provider_registry = registry
    service = RelayService(registry, settings)
    request.app.state.relay_service = service
    return service


async def _read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = json.loads(await request.body() or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidInputError("Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return payload


@router.post("/api/chat")
async def relay_chat_route(
    request: Request,
    identity: CurrentIdentity,
    relay: RelayService = Depends(get_relay_service),
) -> StreamingResponse:
    # Identity is checked before the body shape so anonymous callers get 401.
    payload = await _read_json_object(request)
    caller = relay.authenticate(identity, guest_requested=payload.get("isGuestRequest") is True)

    try:
        body = ChatRelayRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInputError(
            "Invalid request body",
            details={
                "errors": [
                    {"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()
                ]
            },
        ) from exc

    session = await relay.open(
        identity=caller,
        messages=body.to_messages(),
        provider_id=body.provider,
        model=body.model,
        max_tokens=body.max_tokens,
    )
    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
        "X-Stream-ID": session.stream_id,
    }
    return StreamingResponse(
        session.sse(),
        media_type="text/event-stream",
        headers=headers,
        background=BackgroundTask(session.aclose),
    )


@router.post("/api/chat/cancel")
async def chat_cancel_route(
    identity: CurrentIdentity,
    body: ChatCancelRequest = Body(...),
    relay: RelayService = Depends(get_relay_service),
) -> dict[str, Any]:
    canceled = await relay.cancel_stream(body.stream_id, identity)
    if not canceled:
        raise NotFoundError("Stream not found")
    return {"status": "cancelled", "streamId": body.stream_id}

"""Chat send endpoint, buffered JSON or server-sent event stream."""

import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chatsync.application.chat.service import ChatService, ChatTurnRequest
from chatsync.core.log_sanitizer import get_current_user, sanitize_for_logging
from chatsync.domain.messages.models import ActionType
from chatsync.domain.stream_events import StreamEvent, encode_event

from .dependencies import get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    action_type: str = Field(default=ActionType.GENERAL_CHAT.value, alias="actionType")
    client_id: Optional[str] = Field(default=None, alias="clientId", max_length=64)
    skip_user_message: bool = Field(default=False, alias="skipUserMessage")
    model: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    stream: bool = False


def _wants_stream(request: Request, body: ChatRequest) -> bool:
    return body.stream or EVENT_STREAM_MEDIA_TYPE in request.headers.get("accept", "")


async def _encode_events(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield encode_event(event)


@router.post("/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    current_user: str = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and get the assistant reply.

    With ``Accept: text/event-stream`` (or ``"stream": true``) the reply is
    streamed as ``data: <json>`` events; otherwise one JSON object is
    returned once the assistant turn is stored.
    """
    streaming = _wants_stream(request, body)
    logger.info(
        "Chat request from %s: session=%s action=%s streaming=%s skip_user=%s",
        sanitize_for_logging(current_user),
        sanitize_for_logging(body.session_id or "<new>"),
        sanitize_for_logging(body.action_type),
        streaming,
        body.skip_user_message,
    )

    turn = service.prepare_turn(
        ChatTurnRequest(
            message=body.message,
            session_id=body.session_id,
            action_type=body.action_type,
            client_id=body.client_id,
            skip_user_message=body.skip_user_message,
            model=body.model,
            metadata=body.metadata,
        ),
        current_user,
    )

    if streaming:
        return StreamingResponse(
            _encode_events(service.stream_turn(turn)),
            media_type=EVENT_STREAM_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    reply = await service.complete_turn(turn)
    return reply.to_dict()

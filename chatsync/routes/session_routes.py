"""REST API routes for conversation sessions and their messages."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from chatsync.core.log_sanitizer import get_current_user, sanitize_for_logging
from chatsync.core.metrics_logger import log_metric
from chatsync.domain.errors import MessageNotFoundError, SessionNotFoundError, ValidationError
from chatsync.domain.messages.models import MessageRole
from chatsync.modules.chat_history import MessageLog, SessionRepository

from .dependencies import get_message_log, get_session_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=500)


class UpdateTitleRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)


class UpdateMessageRequest(BaseModel):
    content: str = Field(min_length=1)


def _require_session(repo: SessionRepository, session_id: str, user: str) -> dict:
    session = repo.get(session_id, user)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found", code="session_not_found")
    return session


@router.post("", status_code=201)
async def create_session(
    body: CreateSessionRequest,
    current_user: str = Depends(get_current_user),
    repo: SessionRepository = Depends(get_session_repository),
):
    session = repo.create(current_user, body.title)
    log_metric("session_created", current_user)
    return session


@router.get("")
async def list_sessions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    current_user: str = Depends(get_current_user),
    repo: SessionRepository = Depends(get_session_repository),
):
    """Active sessions for the authenticated user, most recent first."""
    return {"sessions": repo.list_active(current_user, limit=limit, offset=offset)}


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    current_user: str = Depends(get_current_user),
    repo: SessionRepository = Depends(get_session_repository),
    message_log: MessageLog = Depends(get_message_log),
):
    """A session together with all of its messages, oldest first."""
    session = _require_session(repo, session_id, current_user)
    return {"session": session, "messages": message_log.list_messages(session_id, current_user)}


@router.patch("/{session_id}")
async def rename_session(
    session_id: str,
    body: UpdateTitleRequest,
    current_user: str = Depends(get_current_user),
    repo: SessionRepository = Depends(get_session_repository),
):
    session = repo.rename(session_id, current_user, body.title)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found", code="session_not_found")
    return session


@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    current_user: str = Depends(get_current_user),
    repo: SessionRepository = Depends(get_session_repository),
):
    """Soft-delete: the session disappears from listings but rows are kept."""
    if not repo.soft_delete(session_id, current_user):
        raise SessionNotFoundError(f"Session {session_id} not found", code="session_not_found")
    log_metric("session_deleted", current_user)
    return {"deleted": True, "id": session_id}


@router.patch("/{session_id}/messages/{message_id}")
async def update_message(
    session_id: str,
    message_id: str,
    body: UpdateMessageRequest,
    current_user: str = Depends(get_current_user),
    repo: SessionRepository = Depends(get_session_repository),
    message_log: MessageLog = Depends(get_message_log),
):
    """Edit a user turn in place. Its id and timestamp are kept."""
    _require_session(repo, session_id, current_user)
    message = message_log.get_message(message_id, current_user)
    if message is None or message["sessionId"] != session_id:
        raise MessageNotFoundError(f"Message {message_id} not found", code="message_not_found")
    if message["role"] != MessageRole.USER.value:
        raise ValidationError("Only user messages can be edited", code="not_editable")
    return message_log.update_content(message_id, current_user, body.content.strip())


@router.delete("/{session_id}/messages")
async def truncate_messages(
    session_id: str,
    after: str = Query(..., min_length=1, description="Delete every message stored after this one"),
    current_user: str = Depends(get_current_user),
    repo: SessionRepository = Depends(get_session_repository),
    message_log: MessageLog = Depends(get_message_log),
):
    _require_session(repo, session_id, current_user)
    deleted = message_log.truncate_after(session_id, current_user, after)
    repo.touch(session_id, message_log.count_messages(session_id))
    logger.info(
        "Truncated session %s after %s for %s",
        sanitize_for_logging(session_id),
        sanitize_for_logging(after),
        sanitize_for_logging(current_user),
    )
    return {"deleted": deleted}

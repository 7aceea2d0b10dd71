"""Append log for conversation messages.

This is the only write path into ``conversation_messages``. User turns are
idempotent on ``client_id``: the unique constraint on that column decides
which of two racing submissions wins, and the loser gets the stored row
back instead of an error.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.errors import MessageNotFoundError, PersistenceConflict, ValidationError
from chatsync.domain.messages.models import ActionType, MessageRole

from .database import as_utc
from .models import MessageRecord, _now_utc

logger = logging.getLogger(__name__)


@dataclass
class AppendResult:
    """Outcome of ``append_user_message``.

    ``duplicate`` is True when the client id was already stored and
    ``message`` is the earlier row.
    """
    message: Dict[str, Any]
    duplicate: bool = False


def message_to_dict(record: MessageRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "sessionId": record.session_id,
        "role": record.role,
        "content": record.content,
        "actionType": record.action_type,
        "clientId": record.client_id,
        "model": record.model,
        "createdAt": as_utc(record.created_at).isoformat(),
        "metadata": json.loads(record.metadata_json) if record.metadata_json else {},
    }


class MessageLog:
    """Idempotent append log plus the edit operations used by regenerate."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _get_session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _next_created_at(session: Session, session_id: str) -> datetime:
        """Timestamp for a new row, strictly after every row already in the session."""
        latest = as_utc(
            session.query(func.max(MessageRecord.created_at))
            .filter(MessageRecord.session_id == session_id)
            .scalar()
        )
        now = _now_utc()
        if latest is not None and now <= latest:
            return latest + timedelta(microseconds=1)
        return now

    def _insert(self, **fields: Any) -> Dict[str, Any]:
        with self._get_session() as session:
            record = MessageRecord(
                created_at=self._next_created_at(session, fields["session_id"]),
                **fields,
            )
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise PersistenceConflict(fields.get("client_id") or "") from exc
            return message_to_dict(record)

    def append_user_message(
        self,
        session_id: str,
        user_id: str,
        content: str,
        client_id: Optional[str],
        action_type: str = ActionType.GENERAL_CHAT.value,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AppendResult:
        """Store a user turn, or return the stored one for a repeated client id."""
        try:
            message = self._insert(
                session_id=session_id,
                user_id=user_id,
                role=MessageRole.USER.value,
                content=content,
                action_type=action_type,
                client_id=client_id,
                metadata_json=json.dumps(metadata) if metadata else None,
            )
            return AppendResult(message=message)
        except PersistenceConflict:
            with self._get_session() as session:
                existing = session.query(MessageRecord).filter(
                    MessageRecord.client_id == client_id
                ).first()
            if existing is None:
                raise
            if existing.user_id != user_id or existing.session_id != session_id:
                logger.warning(
                    "Client id %s reused across sessions or users",
                    sanitize_for_logging(client_id),
                )
                raise ValidationError("Client id is already used by another message", code="client_id_conflict")
            logger.info(
                "Duplicate submission for client id %s in session %s",
                sanitize_for_logging(client_id),
                sanitize_for_logging(session_id),
            )
            return AppendResult(message=message_to_dict(existing), duplicate=True)

    def append_assistant_message(
        self,
        session_id: str,
        user_id: str,
        content: str,
        model: Optional[str] = None,
        action_type: str = ActionType.GENERAL_CHAT.value,
        metadata: Optional[Dict[str, Any]] = None,
        raw_response: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store an assistant turn after everything already in the session.

        Regenerated replies carry the client id of the request so a repeated
        request finds them; other replies get a fresh one.
        """
        return self._insert(
            session_id=session_id,
            user_id=user_id,
            role=MessageRole.ASSISTANT.value,
            content=content,
            action_type=action_type,
            client_id=client_id or str(uuid.uuid4()),
            model=model,
            metadata_json=json.dumps(metadata) if metadata else None,
            raw_response=json.dumps(raw_response, default=str) if raw_response else None,
        )

    def get_message(self, message_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with self._get_session() as session:
            record = session.query(MessageRecord).filter(
                MessageRecord.id == message_id,
                MessageRecord.user_id == user_id,
            ).first()
            return message_to_dict(record) if record else None

    def get_by_client_id(self, client_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with self._get_session() as session:
            record = session.query(MessageRecord).filter(
                MessageRecord.client_id == client_id,
                MessageRecord.user_id == user_id,
            ).first()
            return message_to_dict(record) if record else None

    def find_reply_after(self, message_id: str) -> Optional[Dict[str, Any]]:
        """First assistant turn stored after ``message_id`` in the same session."""
        with self._get_session() as session:
            anchor = session.get(MessageRecord, message_id)
            if anchor is None:
                return None
            reply = (
                session.query(MessageRecord)
                .filter(
                    MessageRecord.session_id == anchor.session_id,
                    MessageRecord.role == MessageRole.ASSISTANT.value,
                    MessageRecord.created_at > anchor.created_at,
                )
                .order_by(MessageRecord.created_at.asc())
                .first()
            )
            return message_to_dict(reply) if reply else None

    def latest_user_message(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with self._get_session() as session:
            record = (
                session.query(MessageRecord)
                .filter(
                    MessageRecord.session_id == session_id,
                    MessageRecord.user_id == user_id,
                    MessageRecord.role == MessageRole.USER.value,
                )
                .order_by(MessageRecord.created_at.desc())
                .first()
            )
            return message_to_dict(record) if record else None

    def list_messages(self, session_id: str, user_id: str) -> List[Dict[str, Any]]:
        """All turns of a session, oldest first."""
        with self._get_session() as session:
            records = (
                session.query(MessageRecord)
                .filter(
                    MessageRecord.session_id == session_id,
                    MessageRecord.user_id == user_id,
                )
                .order_by(MessageRecord.created_at.asc())
                .all()
            )
            return [message_to_dict(r) for r in records]

    def count_messages(self, session_id: str) -> int:
        with self._get_session() as session:
            return session.query(func.count(MessageRecord.id)).filter(
                MessageRecord.session_id == session_id
            ).scalar() or 0

    def update_content(self, message_id: str, user_id: str, content: str) -> Dict[str, Any]:
        """Replace a turn's text in place, keeping its id and timestamp."""
        with self._get_session() as session:
            record = session.query(MessageRecord).filter(
                MessageRecord.id == message_id,
                MessageRecord.user_id == user_id,
            ).first()
            if record is None:
                raise MessageNotFoundError(f"Message {message_id} not found")
            record.content = content
            session.commit()
            return message_to_dict(record)

    def truncate_after(self, session_id: str, user_id: str, message_id: str) -> int:
        """Delete every turn in the session stored after ``message_id``."""
        with self._get_session() as session:
            anchor = session.query(MessageRecord).filter(
                MessageRecord.id == message_id,
                MessageRecord.session_id == session_id,
                MessageRecord.user_id == user_id,
            ).first()
            if anchor is None:
                raise MessageNotFoundError(f"Message {message_id} not found in session {session_id}")
            result = session.execute(
                delete(MessageRecord).where(
                    MessageRecord.session_id == session_id,
                    MessageRecord.created_at > anchor.created_at,
                )
            )
            session.commit()
            deleted = result.rowcount or 0
            logger.info(
                "Truncated %d messages after %s in session %s",
                deleted,
                sanitize_for_logging(message_id),
                sanitize_for_logging(session_id),
            )
            return deleted

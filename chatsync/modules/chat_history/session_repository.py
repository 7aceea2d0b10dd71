"""Repository for conversation sessions.

Sessions are soft-deleted: deleting marks the row inactive and stamps
``deleted_at``. Rows are only removed by ``purge_deleted`` once they have
been inactive longer than the retention period.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.sessions.models import DEFAULT_SESSION_TITLE

from .database import as_utc
from .models import MessageRecord, SessionRecord, _now_utc

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    """Result of a retention purge run."""
    sessions_found: int = 0
    sessions_deleted: int = 0
    messages_deleted: int = 0
    dry_run: bool = False
    session_ids: List[str] = field(default_factory=list)


def session_to_dict(record: SessionRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "userId": record.user_id,
        "title": record.title,
        "messageCount": record.message_count,
        "lastMessageAt": as_utc(record.last_message_at).isoformat() if record.last_message_at else None,
        "isActive": record.is_active,
        "createdAt": as_utc(record.created_at).isoformat(),
    }


class SessionRepository:
    """CRUD for conversation sessions scoped to their owner."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _get_session(self) -> Session:
        return self._session_factory()

    def _active_record(self, session: Session, session_id: str, user_id: str) -> Optional[SessionRecord]:
        return session.query(SessionRecord).filter(
            SessionRecord.id == session_id,
            SessionRecord.user_id == user_id,
            SessionRecord.is_active.is_(True),
        ).first()

    def create(self, user_id: str, title: Optional[str] = None) -> Dict[str, Any]:
        with self._get_session() as session:
            record = SessionRecord(
                user_id=user_id,
                title=(title or "").strip() or DEFAULT_SESSION_TITLE,
                message_count=0,
                is_active=True,
            )
            session.add(record)
            session.commit()
            logger.info("Created session %s", record.id)
            return session_to_dict(record)

    def get(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with self._get_session() as session:
            record = self._active_record(session, session_id, user_id)
            return session_to_dict(record) if record else None

    def list_active(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Active sessions for a user, most recently used first."""
        with self._get_session() as session:
            records = (
                session.query(SessionRecord)
                .filter(
                    SessionRecord.user_id == user_id,
                    SessionRecord.is_active.is_(True),
                )
                .order_by(SessionRecord.last_message_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [session_to_dict(r) for r in records]

    def rename(self, session_id: str, user_id: str, title: str) -> Optional[Dict[str, Any]]:
        with self._get_session() as session:
            record = self._active_record(session, session_id, user_id)
            if record is None:
                return None
            record.title = title.strip() or DEFAULT_SESSION_TITLE
            session.commit()
            return session_to_dict(record)

    def soft_delete(self, session_id: str, user_id: str) -> bool:
        with self._get_session() as session:
            record = self._active_record(session, session_id, user_id)
            if record is None:
                return False
            record.is_active = False
            record.deleted_at = _now_utc()
            session.commit()
            logger.info("Soft-deleted session %s", sanitize_for_logging(session_id))
            return True

    def touch(self, session_id: str, message_count: int) -> None:
        """Record activity on a session after a turn."""
        with self._get_session() as session:
            record = session.get(SessionRecord, session_id)
            if record is None:
                logger.warning("Cannot touch missing session %s", sanitize_for_logging(session_id))
                return
            record.last_message_at = _now_utc()
            record.message_count = message_count
            session.commit()

    def purge_deleted(
        self,
        older_than_days: int = 30,
        batch_size: int = 100,
        dry_run: bool = False,
    ) -> PurgeReport:
        """Hard-delete sessions soft-deleted more than ``older_than_days`` ago.

        Messages of a purged session are removed in the same transaction as
        the session row. Work proceeds in batches of ``batch_size`` sessions.
        With ``dry_run`` nothing is deleted and the report lists what would be.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        cutoff = _now_utc() - timedelta(days=older_than_days)
        report = PurgeReport(dry_run=dry_run)

        with self._get_session() as session:
            candidates = [
                row.id for row in session.query(SessionRecord.id).filter(
                    SessionRecord.is_active.is_(False),
                    SessionRecord.deleted_at.isnot(None),
                    SessionRecord.deleted_at < cutoff,
                ).all()
            ]
        report.sessions_found = len(candidates)
        report.session_ids = candidates

        if dry_run or not candidates:
            logger.info("Purge found %d sessions (dry_run=%s)", len(candidates), dry_run)
            return report

        for start in range(0, len(candidates), batch_size):
            batch = candidates[start:start + batch_size]
            with self._get_session() as session:
                messages = session.execute(
                    delete(MessageRecord).where(MessageRecord.session_id.in_(batch))
                )
                sessions = session.execute(
                    delete(SessionRecord).where(SessionRecord.id.in_(batch))
                )
                session.commit()
            report.messages_deleted += messages.rowcount or 0
            report.sessions_deleted += sessions.rowcount or 0
            logger.info("Purged batch of %d sessions", len(batch))

        logger.info(
            "Purge complete: %d sessions, %d messages",
            report.sessions_deleted, report.messages_deleted,
        )
        return report

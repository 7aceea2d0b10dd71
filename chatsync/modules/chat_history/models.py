"""SQLAlchemy models for conversation sessions and messages.

Uses String(36) UUIDs and Text for JSON. There are no database-level
foreign keys; referential integrity between messages and sessions is
enforced in the repository layer.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _uuid_default():
    return str(uuid.uuid4())


def _now_utc():
    return datetime.now(timezone.utc)


class SessionRecord(Base):
    """A conversation thread owned by one user."""

    __tablename__ = "conversation_sessions"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    user_id = Column(String(255), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    message_count = Column(Integer, default=0, nullable=False)
    last_message_at = Column(DateTime(timezone=True), default=_now_utc, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now_utc, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now_utc, onupdate=_now_utc, nullable=False)

    __table_args__ = (
        Index("ix_sessions_user_active_last", "user_id", "is_active", "last_message_at"),
        Index("ix_sessions_deleted_at", "deleted_at"),
    )


class MessageRecord(Base):
    """A single persisted turn. ``client_id`` is the idempotency key."""

    __tablename__ = "conversation_messages"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    session_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    action_type = Column(String(50), nullable=False, default="general_chat")
    created_at = Column(DateTime(timezone=True), default=_now_utc, nullable=False)
    client_id = Column(String(64), nullable=True, unique=True)
    model = Column(String(255), nullable=True)
    metadata_json = Column(Text, nullable=True)
    raw_response = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_messages_session_created", "session_id", "created_at"),
        Index("ix_messages_session_action", "session_id", "action_type"),
    )

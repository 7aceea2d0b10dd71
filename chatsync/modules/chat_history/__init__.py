"""Conversation persistence using SQLAlchemy with SQLite/PostgreSQL."""

from .context_assembler import AssembledContext, ContextAssembler
from .database import get_engine, get_session_factory, init_database, reset_engine
from .message_log import AppendResult, MessageLog
from .models import Base, MessageRecord, SessionRecord
from .session_repository import PurgeReport, SessionRepository

__all__ = [
    "AppendResult",
    "AssembledContext",
    "Base",
    "ContextAssembler",
    "MessageLog",
    "MessageRecord",
    "PurgeReport",
    "SessionRecord",
    "SessionRepository",
    "get_engine",
    "get_session_factory",
    "init_database",
    "reset_engine",
]

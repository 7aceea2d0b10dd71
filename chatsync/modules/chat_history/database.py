"""Engines and session factories for the conversation tables.

SQLite serves local runs and tests, PostgreSQL serves deployments. One
engine is kept per database URL for the life of the process.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite:///data/chatsync.db"

# chatsync/modules/chat_history/database.py -> repository root
_PROJECT_ROOT = Path(__file__).resolve().parents[3]

_engines: Dict[str, Engine] = {}
_session_factories: Dict[int, sessionmaker] = {}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def normalize_db_url(db_url: str) -> str:
    """Anchor relative SQLite files at the repository root and create their folder."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return db_url

    path = Path(url.database)
    if not path.is_absolute():
        path = _PROJECT_ROOT / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return str(url.set(database=str(path)))


def _build_engine(db_url: str) -> Engine:
    backend = make_url(db_url).get_backend_name()
    if backend == "sqlite":
        # Route handlers run in a threadpool
        return create_engine(db_url, connect_args={"check_same_thread": False})
    if backend == "postgresql":
        return create_engine(db_url, pool_size=5, max_overflow=10, pool_pre_ping=True)
    return create_engine(db_url)


def get_engine(db_url: Optional[str] = None) -> Engine:
    """Return the engine for ``db_url``, creating it on first use.

    Without a URL the ``CHAT_HISTORY_DB_URL`` variable is used, then the
    SQLite default.
    """
    url = normalize_db_url(db_url or os.environ.get("CHAT_HISTORY_DB_URL") or DEFAULT_DB_URL)
    engine = _engines.get(url)
    if engine is None:
        engine = _engines[url] = _build_engine(url)
        logger.info("Created conversation engine for %s", make_url(url).render_as_string(hide_password=True))
    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    engine = engine or get_engine()
    factory = _session_factories.get(id(engine))
    if factory is None:
        factory = _session_factories[id(engine)] = sessionmaker(bind=engine, expire_on_commit=False)
    return factory


def init_database(db_url: Optional[str] = None) -> Engine:
    """Create the conversation tables that do not exist yet."""
    engine = get_engine(db_url)
    Base.metadata.create_all(engine)
    logger.info("Conversation tables ready")
    return engine


def reset_engine() -> None:
    """Dispose every cached engine; tests call this between cases."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _session_factories.clear()

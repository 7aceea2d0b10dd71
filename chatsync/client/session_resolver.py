"""Lazily create the server session a conversation sends into."""

import asyncio
import logging
from typing import Optional

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.errors import AuthenticationError, DomainError, SessionCreateFailed
from chatsync.domain.sessions.models import derive_session_title

logger = logging.getLogger(__name__)


class SessionResolver:
    """Return the conversation's session id, creating the session on first use.

    Concurrent callers share one creation request.
    """

    def __init__(self, api, session_id: Optional[str] = None, title_max_length: int = 50):
        self.api = api
        self.title_max_length = title_max_length
        self._session_id = session_id
        self._lock = asyncio.Lock()

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    async def ensure_session(self, first_message: str = "", existing_id: Optional[str] = None) -> str:
        if existing_id:
            self._session_id = existing_id
        if self._session_id:
            return self._session_id

        async with self._lock:
            if self._session_id:
                return self._session_id
            title = derive_session_title(first_message, self.title_max_length)
            try:
                session = await self.api.create_session(title)
            except AuthenticationError:
                raise
            except DomainError as exc:
                logger.error("Failed to create session: %s", sanitize_for_logging(exc.message))
                raise SessionCreateFailed(f"Failed to create session: {exc.message}", code="session_create_failed") from exc
            self._session_id = session["id"]
            logger.info("Created session %s", sanitize_for_logging(self._session_id))
            return self._session_id

    def adopt(self, session_id: str) -> None:
        """Record a session the server created on our behalf."""
        self._session_id = session_id

    def reset(self, session_id: Optional[str] = None) -> None:
        self._session_id = session_id

"""Builds the ordered turn list sent to the model for one request.

Two streams are read from the message table and merged by ``created_at``:

1. every file-analysis turn of the session, so uploaded material stays
   referenceable however old it is;
2. the most recent ``window_size`` turns that are not file analyses.

The new user message always comes last.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from chatsync.domain.messages.models import FILE_ANALYSIS_ACTION_TYPES, MessageRole

from .message_log import message_to_dict
from .models import MessageRecord

logger = logging.getLogger(__name__)

FILE_CONTEXT_ADDENDUM = (
    "\n\nFILE CONTEXT AWARENESS: This conversation includes {count} analyzed "
    "file(s). Their analyses appear earlier in the conversation. When the user "
    "refers to a file, an upload, an image or a document, use those analyses "
    "to answer, and say which file you are drawing on."
)


@dataclass
class AssembledContext:
    """Prior turns for one request, oldest first, plus the new message."""
    turns: List[Dict[str, Any]] = field(default_factory=list)
    new_message: str = ""
    file_count: int = 0

    def to_llm_messages(self, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": MessageRole.SYSTEM.value, "content": system_prompt})
        messages.extend({"role": t["role"], "content": t["content"]} for t in self.turns)
        messages.append({"role": MessageRole.USER.value, "content": self.new_message})
        return messages


class ContextAssembler:
    """Reads prior turns for a session and assembles the model context."""

    def __init__(self, session_factory: sessionmaker, window_size: int = 10):
        self._session_factory = session_factory
        self.window_size = window_size

    def _get_session(self) -> Session:
        return self._session_factory()

    def build_context(
        self,
        session_id: str,
        user_id: str,
        new_message: str,
        exclude_message_id: Optional[str] = None,
    ) -> AssembledContext:
        """Prior turns for ``new_message``.

        ``exclude_message_id`` is the stored turn being answered. It and
        every turn stored after it are left out, so a regenerated reply never
        sees the reply it replaces.
        """
        file_types = list(FILE_ANALYSIS_ACTION_TYPES)
        with self._get_session() as session:
            base = session.query(MessageRecord).filter(
                MessageRecord.session_id == session_id,
                MessageRecord.user_id == user_id,
            )
            if exclude_message_id:
                base = base.filter(MessageRecord.id != exclude_message_id)
                anchor = session.get(MessageRecord, exclude_message_id)
                if anchor is not None:
                    base = base.filter(MessageRecord.created_at < anchor.created_at)

            file_turns = (
                base.filter(MessageRecord.action_type.in_(file_types))
                .order_by(MessageRecord.created_at.asc())
                .all()
            )
            recent_turns: List[MessageRecord] = []
            if self.window_size > 0:
                recent_turns = (
                    base.filter(MessageRecord.action_type.notin_(file_types))
                    .order_by(MessageRecord.created_at.desc())
                    .limit(self.window_size)
                    .all()
                )

        merged = sorted(file_turns + recent_turns, key=lambda r: r.created_at)
        logger.debug(
            "Context for session %s: %d file turns, %d recent turns",
            session_id, len(file_turns), len(recent_turns),
        )
        return AssembledContext(
            turns=[message_to_dict(r) for r in merged],
            new_message=new_message,
            file_count=len(file_turns),
        )

    @staticmethod
    def system_prompt(base_prompt: str, file_count: int) -> str:
        """Base system prompt, extended when the session holds file analyses."""
        if file_count > 0:
            return base_prompt + FILE_CONTEXT_ADDENDUM.format(count=file_count)
        return base_prompt

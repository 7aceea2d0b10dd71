"""Domain models for conversation sessions."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_SESSION_TITLE = "New Conversation"

_WHITESPACE_RE = re.compile(r"\s+")


def derive_session_title(text: str, max_length: int = 50) -> str:
    """Build a session title from the first message of a conversation.

    Newlines and runs of whitespace collapse to single spaces; anything past
    ``max_length`` characters is cut and marked with an ellipsis.
    """
    title = _WHITESPACE_RE.sub(" ", (text or "").replace("\n", " ")).strip()
    if not title:
        return DEFAULT_SESSION_TITLE
    if len(title) > max_length:
        return title[:max_length] + "..."
    return title


def _parse_optional_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class Session:
    """A single conversation thread."""
    id: str
    user_id: str
    title: str = DEFAULT_SESSION_TITLE
    message_count: int = 0
    last_message_at: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "messageCount": self.message_count,
            "lastMessageAt": self.last_message_at.isoformat() if self.last_message_at else None,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            user_id=data.get("userId", ""),
            title=data.get("title") or DEFAULT_SESSION_TITLE,
            message_count=data.get("messageCount", 0),
            last_message_at=_parse_optional_timestamp(data.get("lastMessageAt")),
            is_active=data.get("isActive", True),
            created_at=_parse_optional_timestamp(data.get("createdAt")) or datetime.now(timezone.utc),
        )

"""Domain models for messages."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class MessageRole(Enum):
    """Message role enumeration."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ActionType(Enum):
    """Discriminator stored with every turn.

    ``FILE_RESPONSE`` marks a file-analysis turn: those are always carried in
    full into the model context. ``REGENERATE_RESPONSE`` asks the server to
    answer again without storing a new user turn.
    """
    GENERAL_CHAT = "general_chat"
    FILE_UPLOAD = "file_upload"
    FILE_RESPONSE = "file_response"
    DOCUMENT_QUERY = "document_query"
    REGENERATE_RESPONSE = "regenerate_response"


FILE_ANALYSIS_ACTION_TYPES = frozenset({ActionType.FILE_RESPONSE.value})


class MessageStatus(Enum):
    """Client-side delivery state. Never persisted."""
    PENDING = "pending"
    STREAMING = "streaming"
    SENT = "sent"
    FAILED = "failed"


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """Domain model for a conversation turn as seen by the client."""
    id: str
    role: MessageRole = MessageRole.USER
    content: str = ""
    session_id: Optional[str] = None
    client_id: Optional[str] = None
    action_type: str = ActionType.GENERAL_CHAT.value
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: MessageStatus = MessageStatus.SENT
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "clientId": self.client_id,
            "sessionId": self.session_id,
            "role": self.role.value,
            "content": self.content,
            "actionType": self.action_type,
            "createdAt": self.created_at.isoformat(),
            "status": self.status.value,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create from a server row or a ``to_dict`` payload."""
        return cls(
            id=data["id"],
            role=MessageRole(data.get("role", "user")),
            content=data.get("content") or "",
            session_id=data.get("sessionId"),
            client_id=data.get("clientId"),
            action_type=data.get("actionType") or ActionType.GENERAL_CHAT.value,
            created_at=parse_timestamp(data.get("createdAt")),
            status=MessageStatus(data.get("status", MessageStatus.SENT.value)),
            metadata=data.get("metadata") or {},
        )

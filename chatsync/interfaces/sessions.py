"""Storage ports used by the chat service."""

from typing import Any, Dict, List, Optional, Protocol


class SessionRepositoryProtocol(Protocol):
    """
    Port for conversation session storage.

    Sessions are soft-deleted; ``get`` and ``list_active`` only ever return
    sessions that are still active.
    """

    def create(self, user_id: str, title: Optional[str] = None) -> Dict[str, Any]:
        ...

    def get(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    def list_active(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        ...

    def rename(self, session_id: str, user_id: str, title: str) -> Optional[Dict[str, Any]]:
        ...

    def soft_delete(self, session_id: str, user_id: str) -> bool:
        ...

    def touch(self, session_id: str, message_count: int) -> None:
        ...


class MessageLogProtocol(Protocol):
    """
    Port for the append-only write path of conversation messages.

    ``append_user_message`` must be idempotent on ``client_id``.
    """

    def append_user_message(
        self,
        session_id: str,
        user_id: str,
        content: str,
        client_id: Optional[str],
        action_type: str = "general_chat",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any:
        ...

    def append_assistant_message(
        self,
        session_id: str,
        user_id: str,
        content: str,
        model: Optional[str] = None,
        action_type: str = "general_chat",
        metadata: Optional[Dict[str, Any]] = None,
        raw_response: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...

    def find_reply_after(self, message_id: str) -> Optional[Dict[str, Any]]:
        ...

    def list_messages(self, session_id: str, user_id: str) -> List[Dict[str, Any]]:
        ...

    def get_by_client_id(self, client_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    def latest_user_message(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    def count_messages(self, session_id: str) -> int:
        ...

"""Client-side message state for one conversation.

Messages are keyed by id; the list a UI renders is a projection in
insertion order. Optimistic entries use their client id as a temporary id
and are swapped in place for the server row once it is known.
"""

import itertools
import logging
import uuid
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set

from chatsync.domain.errors import DuplicateSuppressed
from chatsync.domain.messages.models import ActionType, Message, MessageRole, MessageStatus

from .fingerprint import PLACEHOLDER_SESSION_ID

logger = logging.getLogger(__name__)


class PendingRegistry:
    """Fingerprints of sends that are still in flight for one conversation."""

    def __init__(self):
        self._fingerprints: Set[str] = set()

    def claim(self, fingerprint: str) -> None:
        if fingerprint in self._fingerprints:
            raise DuplicateSuppressed(fingerprint)
        self._fingerprints.add(fingerprint)

    def release(self, fingerprint: str) -> None:
        self._fingerprints.discard(fingerprint)

    def clear(self) -> None:
        self._fingerprints.clear()

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._fingerprints

    def __len__(self) -> int:
        return len(self._fingerprints)


class MessageStore:
    """Keyed id -> Message map with an ordered view."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        self.pending = PendingRegistry()
        self._messages: Dict[str, Message] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()

    @property
    def messages(self) -> List[Message]:
        return sorted(self._messages.values(), key=lambda m: self._order[m.id])

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._messages

    def get(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    def find_by_client_id(self, client_id: Optional[str]) -> Optional[Message]:
        if not client_id:
            return None
        for message in self._messages.values():
            if message.client_id == client_id:
                return message
        return None

    def _insert(self, message: Message, order: Optional[int] = None) -> Message:
        self._messages[message.id] = message
        self._order[message.id] = next(self._seq) if order is None else order
        return message

    def add_optimistic(
        self,
        content: str,
        client_id: str,
        action_type: str = ActionType.GENERAL_CHAT.value,
    ) -> Message:
        """Show a user send immediately, keyed by its client id."""
        message = Message(
            id=client_id,
            role=MessageRole.USER,
            content=content,
            session_id=self.session_id or PLACEHOLDER_SESSION_ID,
            client_id=client_id,
            action_type=action_type,
            status=MessageStatus.PENDING,
        )
        return self._insert(message)

    def add_streaming_placeholder(self) -> Message:
        message = Message(
            id=f"stream-{uuid.uuid4()}",
            role=MessageRole.ASSISTANT,
            session_id=self.session_id or PLACEHOLDER_SESSION_ID,
            status=MessageStatus.STREAMING,
        )
        return self._insert(message)

    def set_content(self, message_id: str, content: str) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is not None:
            message.content = content
        return message

    def reconcile(self, temp_id: str, canonical: Message) -> Message:
        """Replace a temporary entry by its server row, keeping its position.

        If the canonical id is already present (a reload got there first) the
        temporary entry is dropped and the existing one updated, so the id
        appears exactly once.
        """
        canonical = replace(canonical, status=MessageStatus.SENT)
        temp = self._messages.pop(temp_id, None)
        temp_order = self._order.pop(temp_id, None)
        if temp is not None and not canonical.client_id:
            canonical.client_id = temp.client_id

        existing = self._messages.get(canonical.id)
        if existing is not None:
            canonical.client_id = canonical.client_id or existing.client_id
            order = self._order[canonical.id]
            if temp_order is not None:
                order = min(order, temp_order)
            return self._insert(canonical, order)
        return self._insert(canonical, temp_order)

    def upsert(self, message: Message) -> Message:
        """Add a server row unless it is already present.

        A row carrying the client id of an optimistic entry reconciles that
        entry instead of adding a second copy.
        """
        if message.id in self._messages:
            return self.reconcile(message.id, message)
        temp = self.find_by_client_id(message.client_id)
        if temp is not None:
            return self.reconcile(temp.id, message)
        return self._insert(replace(message, status=MessageStatus.SENT))

    def remove(self, message_id: str) -> Optional[Message]:
        self._order.pop(message_id, None)
        return self._messages.pop(message_id, None)

    def fail(self, message_id: str) -> Optional[Message]:
        """Drop a send that did not go through."""
        message = self.remove(message_id)
        if message is not None:
            message.status = MessageStatus.FAILED
            logger.debug("Removed failed message %s", message_id)
        return message

    def remove_from(self, message_id: str, inclusive: bool = True) -> List[Message]:
        """Remove ``message_id`` (optionally) and everything shown after it."""
        if message_id not in self._order:
            return []
        anchor = self._order[message_id]
        doomed = [
            mid for mid, order in self._order.items()
            if order > anchor or (inclusive and order == anchor)
        ]
        return [self.remove(mid) for mid in doomed]

    def load(self, messages: Iterable[Message]) -> None:
        """Replace the contents with rows fetched from the server."""
        self._messages.clear()
        self._order.clear()
        for message in messages:
            self.upsert(message)

    def assign_session(self, session_id: str) -> None:
        self.session_id = session_id
        for message in self._messages.values():
            if message.session_id in (None, PLACEHOLDER_SESSION_ID):
                message.session_id = session_id

    def last_user_message(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.role == MessageRole.USER:
                return message
        return None

    def clear(self) -> None:
        self._messages.clear()
        self._order.clear()
        self.pending.clear()

"""Turn a chat event stream into store updates.

``DisplayPacer`` decides how much of the received text to show so the
reply grows at sentence boundaries instead of flickering per token.
``StreamIngestionPipeline`` reads ``data:`` lines, applies each event to a
``MessageStore`` and finishes on ``stream_complete``.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.errors import LLMServiceError, StreamParseError, StreamTransportError
from chatsync.domain.messages.models import Message, MessageRole, MessageStatus, parse_timestamp
from chatsync.domain.stream_events import (
    SessionCreated,
    StreamComplete,
    StreamError,
    StreamEvent,
    StreamStart,
    Token,
    UserMessageStored,
    parse_stream_line,
)

from .cancellation import CancellationToken
from .message_store import MessageStore

logger = logging.getLogger(__name__)

BREAK_POINTS = ("\n\n", ". ", "? ", "! ", ": ", "; ")
IGNORED_TOKENS = frozenset({"", "[loading…]", "[loading...]"})


class DisplayPacer:
    """Throttle visible text to one update per ``interval`` seconds."""

    def __init__(
        self,
        interval: float = 0.15,
        chunk_threshold: int = 10,
        chunk_size: int = 15,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.chunk_threshold = chunk_threshold
        self.chunk_size = chunk_size
        self._clock = clock
        self.reset()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "DisplayPacer":
        return cls(
            interval=settings.stream_update_interval_ms / 1000.0,
            chunk_threshold=settings.stream_chunk_threshold,
            chunk_size=settings.stream_chunk_size,
            **kwargs,
        )

    def reset(self) -> None:
        self.accumulated = ""
        self.displayed = ""
        self._last_update = -math.inf

    def next_display_length(self) -> int:
        """Furthest break point past the shown text, else a fixed-size chunk."""
        shown = len(self.displayed)
        best = shown
        for point in BREAK_POINTS:
            idx = self.accumulated.rfind(point)
            if idx != -1:
                best = max(best, idx + len(point))
        if best > shown:
            return best
        gap = len(self.accumulated) - shown
        if gap > self.chunk_threshold:
            return shown + min(self.chunk_size, gap)
        return shown

    def push(self, token: str) -> Optional[str]:
        """Add a token; return the new visible text if it changed."""
        self.accumulated += token
        now = self._clock()
        if now - self._last_update < self.interval:
            return None
        end = self.next_display_length()
        if end <= len(self.displayed):
            return None
        self.displayed = self.accumulated[:end]
        self._last_update = now
        return self.displayed

    def flush(self, final_text: Optional[str] = None) -> str:
        if final_text is not None:
            self.accumulated = final_text
        self.displayed = self.accumulated
        return self.displayed


@dataclass
class StreamOutcome:
    assistant: Message
    session_id: Optional[str] = None
    session_created: bool = False
    user_message_id: Optional[str] = None
    user_timestamp: Optional[str] = None
    model: Optional[str] = None
    is_duplicate: bool = False


class StreamIngestionPipeline:
    """Apply one streamed reply to ``store``.

    The user turn identified by ``user_temp_id`` is reconciled when the
    server confirms it. The assistant turn is a streaming placeholder until
    ``stream_complete`` swaps it for the stored row. If the stream ends any
    other way the placeholder is removed.
    """

    def __init__(
        self,
        store: MessageStore,
        user_temp_id: Optional[str] = None,
        pacer: Optional[DisplayPacer] = None,
        on_update: Optional[Callable[[Message], None]] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.store = store
        self.user_temp_id = user_temp_id
        self.pacer = pacer or DisplayPacer()
        self.on_update = on_update
        self.token = token or CancellationToken()
        self._placeholder: Optional[Message] = None
        self._outcome: Optional[StreamOutcome] = None
        self._session_id: Optional[str] = None
        self._session_created = False
        self._user_message_id: Optional[str] = None
        self._user_timestamp: Optional[str] = None

    async def run(self, lines: AsyncIterator[str]) -> StreamOutcome:
        try:
            async for line in lines:
                self.token.raise_if_cancelled()
                try:
                    event = parse_stream_line(line)
                except StreamParseError as exc:
                    logger.warning("Skipping malformed stream line: %s", sanitize_for_logging(exc.message))
                    continue
                if event is None:
                    continue
                self.handle(event)
                if self._outcome is not None:
                    return self._outcome
            self.token.raise_if_cancelled()
            raise StreamTransportError("Stream ended before the reply was complete", code="stream_incomplete")
        finally:
            if self._outcome is None:
                self._discard_placeholder()

    def handle(self, event: StreamEvent) -> None:
        if isinstance(event, SessionCreated):
            self._session_id = event.session_id
            self._session_created = True
            self.store.assign_session(event.session_id)
        elif isinstance(event, UserMessageStored):
            self._on_user_stored(event)
        elif isinstance(event, StreamStart):
            self.pacer.reset()
            self._ensure_placeholder()
        elif isinstance(event, Token):
            self._on_token(event.content)
        elif isinstance(event, StreamComplete):
            self._on_complete(event)
        elif isinstance(event, StreamError):
            self._discard_placeholder()
            raise LLMServiceError(event.message, code="stream_error")

    def _ensure_placeholder(self) -> Message:
        if self._placeholder is None:
            self._placeholder = self.store.add_streaming_placeholder()
        return self._placeholder

    def _discard_placeholder(self) -> None:
        if self._placeholder is not None:
            self.store.remove(self._placeholder.id)
            self._placeholder = None

    def _notify(self, message: Message) -> None:
        if self.on_update is not None:
            self.on_update(message)

    def _on_user_stored(self, event: UserMessageStored) -> None:
        self._session_id = self._session_id or event.session_id
        self._user_message_id = event.message_id
        self._user_timestamp = event.timestamp
        temp = self.store.get(self.user_temp_id) if self.user_temp_id else None
        if temp is None:
            return
        canonical = Message(
            id=event.message_id,
            role=MessageRole.USER,
            content=temp.content,
            session_id=event.session_id,
            client_id=event.client_id or temp.client_id,
            action_type=temp.action_type,
            created_at=parse_timestamp(event.timestamp) if event.timestamp else temp.created_at,
            metadata=temp.metadata,
        )
        self.user_temp_id = event.message_id
        self._notify(self.store.reconcile(temp.id, canonical))

    def _on_token(self, content: str) -> None:
        if content in IGNORED_TOKENS:
            return
        placeholder = self._ensure_placeholder()
        visible = self.pacer.push(content)
        if visible is not None:
            self.store.set_content(placeholder.id, visible)
            self._notify(placeholder)

    def _on_complete(self, event: StreamComplete) -> None:
        placeholder = self._ensure_placeholder()
        final_text = self.pacer.flush(event.full_message or None)
        assistant = Message(
            id=event.message_id,
            role=MessageRole.ASSISTANT,
            content=final_text,
            session_id=event.session_id,
            created_at=parse_timestamp(event.timestamp),
            status=MessageStatus.SENT,
            metadata={"model": event.model} if event.model else {},
        )
        assistant = self.store.reconcile(placeholder.id, assistant)
        self._placeholder = None
        self._notify(assistant)
        self._outcome = StreamOutcome(
            assistant=assistant,
            session_id=self._session_id or event.session_id,
            session_created=self._session_created,
            user_message_id=self._user_message_id,
            user_timestamp=self._user_timestamp,
            model=event.model,
            is_duplicate=event.is_duplicate,
        )

"""Streaming and buffered send strategies plus the fallback policy.

Both strategies send the same ``clientId``. A buffered retry after a broken
stream therefore either returns the reply the server already stored or
generates it once; the user turn is never stored twice.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.errors import DomainError, LLMError, StreamTransportError, TransportError
from chatsync.domain.messages.models import ActionType, Message, MessageRole, parse_timestamp

from .api_client import ChatApiClient
from .cancellation import CancellationToken
from .message_store import MessageStore
from .stream_pipeline import DisplayPacer, StreamIngestionPipeline

logger = logging.getLogger(__name__)

# Errors after which the next strategy is tried. Anything else (auth, missing
# session, cancellation) ends the attempt.
FALLBACK_ERRORS = (StreamTransportError, LLMError)


@dataclass(frozen=True)
class SendRequest:
    content: str
    session_id: str
    client_id: str
    action_type: str = ActionType.GENERAL_CHAT.value
    skip_user_message: bool = False
    model: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "message": self.content,
            "sessionId": self.session_id,
            "clientId": self.client_id,
            "actionType": self.action_type,
            "skipUserMessage": self.skip_user_message,
        }
        if self.model:
            payload["model"] = self.model
        return payload


@dataclass
class SendResult:
    message: Optional[Message] = None
    session_id: Optional[str] = None
    user_message_id: Optional[str] = None
    user_timestamp: Optional[str] = None
    is_duplicate: bool = False
    strategy: Optional[str] = None
    error: Optional[DomainError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.message is not None


class StreamingStrategy:
    """Send over the event stream and render the reply as it arrives."""

    name = "streaming"

    def __init__(
        self,
        api: ChatApiClient,
        store: MessageStore,
        user_temp_id: Optional[str] = None,
        pacer_factory: Callable[[], DisplayPacer] = DisplayPacer,
        on_update: Optional[Callable[[Message], None]] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.api = api
        self.store = store
        self.user_temp_id = user_temp_id
        self.pacer_factory = pacer_factory
        self.on_update = on_update
        self.token = token or CancellationToken()

    async def __call__(self, request: SendRequest) -> SendResult:
        self.token.raise_if_cancelled()
        pipeline = StreamIngestionPipeline(
            self.store,
            user_temp_id=self.user_temp_id,
            pacer=self.pacer_factory(),
            on_update=self.on_update,
            token=self.token,
        )
        async with self.api.open_stream(request.to_payload()) as lines:
            outcome = await pipeline.run(lines)
        # The user turn may have been reconciled mid-stream.
        self.user_temp_id = pipeline.user_temp_id
        return SendResult(
            message=outcome.assistant,
            session_id=outcome.session_id,
            user_message_id=outcome.user_message_id,
            user_timestamp=outcome.user_timestamp,
            is_duplicate=outcome.is_duplicate,
        )


class BufferedStrategy:
    """Send with one request and wait for the stored reply."""

    name = "buffered"

    def __init__(self, api: ChatApiClient, token: Optional[CancellationToken] = None):
        self.api = api
        self.token = token or CancellationToken()

    async def __call__(self, request: SendRequest) -> SendResult:
        self.token.raise_if_cancelled()
        body = await self.api.send_message(request.to_payload())
        self.token.raise_if_cancelled()
        if not isinstance(body, dict) or not body.get("id"):
            raise TransportError("Chat API reply has no message id", code="invalid_response")
        message = Message(
            id=body["id"],
            role=MessageRole.ASSISTANT,
            content=body.get("message") or "",
            session_id=body.get("sessionId") or request.session_id,
            created_at=parse_timestamp(body.get("timestamp")),
            metadata={"model": body["model"]} if body.get("model") else {},
        )
        return SendResult(
            message=message,
            session_id=message.session_id,
            user_message_id=body.get("userMessageId"),
            user_timestamp=body.get("userTimestamp"),
            is_duplicate=bool(body.get("isDuplicate", False)),
        )


async def attempt_strategies(strategies: Sequence, request: SendRequest) -> SendResult:
    """Try each strategy in order until one succeeds.

    A strategy failing with one of ``FALLBACK_ERRORS`` hands over to the next
    one. Any other domain error is returned immediately. The result carries
    the last error when every strategy failed.
    """
    last_error: Optional[DomainError] = None
    for strategy in strategies:
        try:
            result = await strategy(request)
        except FALLBACK_ERRORS as exc:
            logger.warning(
                "Send via %s failed (%s), trying next strategy",
                strategy.name,
                sanitize_for_logging(exc.message),
            )
            last_error = exc
            continue
        except DomainError as exc:
            return SendResult(error=exc, strategy=strategy.name)
        result.strategy = strategy.name
        return result
    if last_error is None:
        last_error = DomainError("No send strategy available", code="no_strategy")
    return SendResult(error=last_error)

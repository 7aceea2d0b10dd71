"""Chat service - orchestrates one chat turn on the server.

A turn is split in two so the HTTP layer can report bootstrap errors
(unknown session, bad request) before a streaming response starts:

- ``prepare_turn`` resolves or creates the session, appends the user turn
  through the idempotent message log, detects replays and assembles the
  model context;
- ``complete_turn`` (buffered) or ``stream_turn`` (event stream) runs the
  model and persists the assistant turn.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.core.metrics_logger import log_metric
from chatsync.domain.errors import (
    ConfigurationError,
    SessionCreateFailed,
    SessionNotFoundError,
    ValidationError,
)
from chatsync.domain.messages.models import ActionType, MessageRole
from chatsync.domain.sessions.models import derive_session_title
from chatsync.domain.stream_events import (
    SessionCreated,
    StreamComplete,
    StreamError,
    StreamEvent,
    StreamStart,
    Token,
    UserMessageStored,
)
from chatsync.interfaces.llm import LLMProtocol
from chatsync.interfaces.sessions import MessageLogProtocol, SessionRepositoryProtocol
from chatsync.modules.chat_history.context_assembler import AssembledContext, ContextAssembler
from chatsync.modules.config import ConfigManager

from .utilities.error_handler import safe_llm_call, to_llm_error

logger = logging.getLogger(__name__)


@dataclass
class ChatTurnRequest:
    """One send from a client, buffered or streaming."""
    message: str
    session_id: Optional[str] = None
    action_type: str = ActionType.GENERAL_CHAT.value
    client_id: Optional[str] = None
    skip_user_message: bool = False
    model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def regenerate(self) -> bool:
        return self.skip_user_message or self.action_type == ActionType.REGENERATE_RESPONSE.value


@dataclass
class PreparedTurn:
    """Everything known about a turn before the model is called."""
    request: ChatTurnRequest
    user_id: str
    session_id: str
    model: str
    session_created: bool = False
    user_message: Optional[Dict[str, Any]] = None
    replay: Optional[Dict[str, Any]] = None
    context: Optional[AssembledContext] = None


@dataclass
class ChatReply:
    """Buffered response body for a completed turn."""
    id: str
    message: str
    timestamp: str
    session_id: str
    model: Optional[str]
    tokens_used: int = 0
    is_duplicate: bool = False
    user_message_id: Optional[str] = None
    user_timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "id": self.id,
            "message": self.message,
            "timestamp": self.timestamp,
            "sessionId": self.session_id,
            "model": self.model,
            "usage": {"tokensUsed": self.tokens_used},
            "userMessageId": self.user_message_id,
            "userTimestamp": self.user_timestamp,
        }
        if self.is_duplicate:
            body["isDuplicate"] = True
        return body


class ChatService:
    """
    Core chat service: session bootstrap, idempotent append, context
    assembly, model call and assistant persistence.
    """

    def __init__(
        self,
        llm: LLMProtocol,
        message_log: MessageLogProtocol,
        session_repository: SessionRepositoryProtocol,
        context_assembler: ContextAssembler,
        config_manager: ConfigManager,
    ):
        self.llm = llm
        self.message_log = message_log
        self.session_repository = session_repository
        self.context_assembler = context_assembler
        self.config_manager = config_manager

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------
    def _resolve_model(self, requested: Optional[str]) -> str:
        models = self.config_manager.llm_config.models
        if requested:
            if requested not in models:
                raise ValidationError(f"Unknown model: {requested}", code="unknown_model")
            return requested
        model = self.config_manager.default_model
        if not model:
            raise ConfigurationError("No language model is configured", code="no_model")
        return model

    def _bootstrap_session(self, user_id: str, message: str) -> Dict[str, Any]:
        title = derive_session_title(message, self.config_manager.app_settings.session_title_max_length)
        try:
            session = self.session_repository.create(user_id, title)
        except SQLAlchemyError as exc:
            logger.error("Failed to create session: %s", exc, exc_info=True)
            raise SessionCreateFailed("Could not create a conversation session", code="session_create_failed") from exc
        log_metric("session_created", user_id)
        return session

    def prepare_turn(self, request: ChatTurnRequest, user_id: str) -> PreparedTurn:
        message = (request.message or "").strip()
        if not message:
            raise ValidationError("Message is required", code="empty_message")
        model = self._resolve_model(request.model)

        session_id = request.session_id
        if not session_id and request.client_id and not request.regenerate:
            # A retry of a send that already bootstrapped a session
            existing = self.message_log.get_by_client_id(request.client_id, user_id)
            if existing:
                session_id = existing["sessionId"]

        session_created = False
        if session_id:
            if self.session_repository.get(session_id, user_id) is None:
                raise SessionNotFoundError(f"Session {session_id} not found", code="session_not_found")
        else:
            if request.regenerate:
                raise ValidationError("sessionId is required to regenerate a response", code="session_required")
            session_id = self._bootstrap_session(user_id, message)["id"]
            session_created = True

        prepared = PreparedTurn(
            request=request,
            user_id=user_id,
            session_id=session_id,
            model=model,
            session_created=session_created,
        )

        exclude_message_id = None
        if request.regenerate:
            latest = self.message_log.latest_user_message(session_id, user_id)
            if latest and latest["content"].strip() == message:
                prepared.user_message = latest
                exclude_message_id = latest["id"]
            if request.client_id:
                prepared.replay = self._stored_regeneration(request.client_id, user_id, session_id)
        else:
            result = self.message_log.append_user_message(
                session_id=session_id,
                user_id=user_id,
                content=message,
                client_id=request.client_id,
                action_type=request.action_type,
                metadata=request.metadata or None,
            )
            prepared.user_message = result.message
            exclude_message_id = result.message["id"]
            if result.duplicate:
                message = result.message["content"]
                prepared.replay = self.message_log.find_reply_after(result.message["id"])
                if prepared.replay is None:
                    logger.info(
                        "Stored user turn %s has no reply yet, generating one",
                        sanitize_for_logging(result.message["id"]),
                    )

        if prepared.replay is None:
            prepared.context = self.context_assembler.build_context(
                session_id, user_id, message, exclude_message_id=exclude_message_id
            )
        return prepared

    def _stored_regeneration(self, client_id: str, user_id: str, session_id: str) -> Optional[Dict[str, Any]]:
        """Reply already stored for a repeated regenerate request, if any."""
        existing = self.message_log.get_by_client_id(client_id, user_id)
        if existing is None:
            return None
        if existing["role"] != MessageRole.ASSISTANT.value or existing["sessionId"] != session_id:
            raise ValidationError("Client id is already used by another message", code="client_id_conflict")
        logger.info("Repeated regenerate request %s, replaying stored reply", sanitize_for_logging(client_id))
        return existing

    def _llm_messages(self, context: AssembledContext) -> List[Dict[str, str]]:
        prompt = self.context_assembler.system_prompt(
            self.config_manager.app_settings.system_prompt, context.file_count
        )
        return context.to_llm_messages(prompt)

    def _assistant_action_type(self, request: ChatTurnRequest) -> str:
        if request.skip_user_message and request.action_type == ActionType.GENERAL_CHAT.value:
            return ActionType.REGENERATE_RESPONSE.value
        return request.action_type

    @staticmethod
    def _assistant_client_id(request: ChatTurnRequest) -> Optional[str]:
        return request.client_id if request.regenerate else None

    def _record_turn(self, prepared: PreparedTurn, streamed: bool) -> None:
        self.session_repository.touch(
            prepared.session_id, self.message_log.count_messages(prepared.session_id)
        )
        log_metric(
            "chat_turn",
            prepared.user_id,
            streamed=streamed,
            regenerate=prepared.request.regenerate,
            file_turns=prepared.context.file_count if prepared.context else 0,
        )

    def _replay_reply(self, prepared: PreparedTurn) -> ChatReply:
        replay = prepared.replay
        log_metric("duplicate_replay", prepared.user_id)
        return ChatReply(
            id=replay["id"],
            message=replay["content"],
            timestamp=replay["createdAt"],
            session_id=prepared.session_id,
            model=replay.get("model"),
            tokens_used=0,
            is_duplicate=True,
            user_message_id=prepared.user_message["id"] if prepared.user_message else None,
            user_timestamp=prepared.user_message["createdAt"] if prepared.user_message else None,
        )

    # ------------------------------------------------------------------
    # Buffered
    # ------------------------------------------------------------------
    async def complete_turn(self, prepared: PreparedTurn) -> ChatReply:
        """Run the model once and return the stored assistant turn."""
        if prepared.replay is not None:
            return self._replay_reply(prepared)

        response = await safe_llm_call(
            self.llm.call_plain,
            prepared.model,
            self._llm_messages(prepared.context),
            user_email=prepared.user_id,
        )
        assistant = self.message_log.append_assistant_message(
            session_id=prepared.session_id,
            user_id=prepared.user_id,
            content=response.content,
            model=prepared.model,
            action_type=self._assistant_action_type(prepared.request),
            metadata={"tokensUsed": response.tokens_used},
            raw_response=response.raw,
            client_id=self._assistant_client_id(prepared.request),
        )
        self._record_turn(prepared, streamed=False)
        return ChatReply(
            id=assistant["id"],
            message=assistant["content"],
            timestamp=assistant["createdAt"],
            session_id=prepared.session_id,
            model=prepared.model,
            tokens_used=response.tokens_used,
            user_message_id=prepared.user_message["id"] if prepared.user_message else None,
            user_timestamp=prepared.user_message["createdAt"] if prepared.user_message else None,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    async def stream_turn(self, prepared: PreparedTurn) -> AsyncIterator[StreamEvent]:
        """Yield the event sequence for a turn.

        Model failures end the stream with a single ``StreamError`` and leave
        no assistant turn behind.
        """
        if prepared.session_created:
            yield SessionCreated(session_id=prepared.session_id)
        if prepared.user_message:
            yield UserMessageStored(
                message_id=prepared.user_message["id"],
                session_id=prepared.session_id,
                client_id=prepared.user_message.get("clientId"),
                timestamp=prepared.user_message["createdAt"],
            )
        yield StreamStart()

        if prepared.replay is not None:
            reply = self._replay_reply(prepared)
            yield Token(content=reply.message)
            yield StreamComplete(
                message_id=reply.id,
                session_id=reply.session_id,
                full_message=reply.message,
                timestamp=reply.timestamp,
                model=reply.model,
                is_duplicate=True,
            )
            return

        messages = self._llm_messages(prepared.context)
        chunks: List[str] = []
        try:
            async for token in self.llm.stream_plain(prepared.model, messages, user_email=prepared.user_id):
                if token:
                    chunks.append(token)
                    yield Token(content=token)
            if not chunks:
                logger.info("Stream yielded no content, falling back to a buffered call")
                response = await self.llm.call_plain(prepared.model, messages, user_email=prepared.user_id)
                if response.content:
                    chunks.append(response.content)
                    yield Token(content=response.content)
        except Exception as exc:
            error = to_llm_error(exc, prepared.user_id)
            yield StreamError(message=error.message)
            return

        full_message = "".join(chunks)
        assistant = self.message_log.append_assistant_message(
            session_id=prepared.session_id,
            user_id=prepared.user_id,
            content=full_message,
            model=prepared.model,
            action_type=self._assistant_action_type(prepared.request),
            metadata={"streamed": True},
            client_id=self._assistant_client_id(prepared.request),
        )
        self._record_turn(prepared, streamed=True)
        yield StreamComplete(
            message_id=assistant["id"],
            session_id=prepared.session_id,
            full_message=full_message,
            timestamp=assistant["createdAt"],
            model=prepared.model,
        )

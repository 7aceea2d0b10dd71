"""
Conversation controller: optimistic sends, fallback, edit and regenerate.

One ``Conversation`` owns one ``MessageStore`` and at most one in-flight
send. Starting a new send cancels the previous one.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, List, Optional, Tuple

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.errors import CancelledByUser, DomainError, DuplicateSuppressed, ValidationError
from chatsync.domain.messages.models import ActionType, Message, MessageRole, MessageStatus, parse_timestamp
from chatsync.domain.sessions.models import Session

from .api_client import ChatApiClient
from .cancellation import CancellationToken
from .fingerprint import fingerprint, new_client_id
from .message_store import MessageStore
from .send_strategies import BufferedStrategy, SendRequest, SendResult, StreamingStrategy, attempt_strategies
from .session_resolver import SessionResolver
from .stream_pipeline import DisplayPacer

logger = logging.getLogger(__name__)


class Conversation:
    """Client-side state and send flow for one chat session."""

    def __init__(
        self,
        api: ChatApiClient,
        session_id: Optional[str] = None,
        prefer_streaming: bool = True,
        pacer_factory: Callable[[], DisplayPacer] = DisplayPacer,
        on_update: Optional[Callable[[Message], None]] = None,
        title_max_length: int = 50,
        timeout: Optional[float] = None,
    ):
        self.api = api
        self.prefer_streaming = prefer_streaming
        self.pacer_factory = pacer_factory
        self.on_update = on_update
        self.timeout = timeout
        self.store = MessageStore(session_id)
        self.resolver = SessionResolver(api, session_id, title_max_length=title_max_length)
        self.session: Optional[Session] = None
        self.last_error: Optional[str] = None
        self._last_failed: Optional[Tuple[str, str, str]] = None
        self._inflight_token: Optional[CancellationToken] = None
        self._inflight_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, api: ChatApiClient, settings, session_id: Optional[str] = None) -> "Conversation":
        return cls(
            api,
            session_id=session_id,
            prefer_streaming=settings.prefer_streaming,
            pacer_factory=lambda: DisplayPacer.from_settings(settings),
        )

    @property
    def session_id(self) -> Optional[str]:
        return self.resolver.session_id

    @property
    def messages(self) -> List[Message]:
        return self.store.messages

    @property
    def is_sending(self) -> bool:
        return self._inflight_task is not None and not self._inflight_task.done()

    # In-flight bookkeeping

    def cancel(self) -> None:
        """Abort the send in flight, if any."""
        if self._inflight_token is not None:
            self._inflight_token.cancel()
        if self._inflight_task is not None and not self._inflight_task.done():
            self._inflight_task.cancel()

    async def _run_exclusive(self, work: Callable[[CancellationToken], Awaitable]):
        self.cancel()
        token = CancellationToken(timeout=self.timeout)
        task = asyncio.ensure_future(work(token))
        self._inflight_token, self._inflight_task = token, task
        try:
            return await task
        except asyncio.CancelledError:
            if token.cancelled:
                raise CancelledByUser(token.reason or "Request cancelled")
            raise
        finally:
            if self._inflight_task is task:
                self._inflight_token, self._inflight_task = None, None

    def _strategies(self, token: CancellationToken, user_temp_id: Optional[str]) -> list:
        buffered = BufferedStrategy(self.api, token=token)
        if not self.prefer_streaming:
            return [buffered]
        streaming = StreamingStrategy(
            self.api,
            self.store,
            user_temp_id=user_temp_id,
            pacer_factory=self.pacer_factory,
            on_update=self.on_update,
            token=token,
        )
        return [streaming, buffered]

    def _apply_result(self, result: SendResult, client_id: Optional[str]) -> Message:
        if result.session_id and result.session_id != self.resolver.session_id:
            self.resolver.adopt(result.session_id)
            self.store.assign_session(result.session_id)

        user = self.store.find_by_client_id(client_id)
        if user is not None:
            if result.user_message_id:
                created_at = parse_timestamp(result.user_timestamp) if result.user_timestamp else user.created_at
                self.store.reconcile(
                    user.id,
                    replace(user, id=result.user_message_id, session_id=result.session_id or user.session_id,
                            created_at=created_at),
                )
            else:
                user.status = MessageStatus.SENT

        assistant = self.store.upsert(result.message)
        if self.on_update is not None:
            self.on_update(assistant)
        return assistant

    def _rollback(self, client_id: Optional[str]) -> None:
        user = self.store.find_by_client_id(client_id)
        if user is not None:
            self.store.fail(user.id)

    # Operations

    async def send(
        self,
        content: str,
        action_type: str = ActionType.GENERAL_CHAT.value,
        client_id: Optional[str] = None,
    ) -> Optional[Message]:
        """Send a user message and return the stored assistant reply.

        Returns None when the text is empty, when the same text is already
        being sent, or when the send was cancelled. Other failures remove the
        optimistic message, set ``last_error`` and raise.
        """
        text = content.strip()
        if not text:
            return None

        key = fingerprint(text, self.session_id)
        try:
            self.store.pending.claim(key)
        except DuplicateSuppressed:
            logger.debug("Suppressed duplicate send %s", key)
            return None

        client_id = client_id or new_client_id()
        self.last_error = None
        self.store.add_optimistic(text, client_id, action_type)

        async def work(token: CancellationToken) -> Message:
            session_id = await self.resolver.ensure_session(text)
            self.store.assign_session(session_id)
            request = SendRequest(
                content=text,
                session_id=session_id,
                client_id=client_id,
                action_type=action_type,
            )
            result = await attempt_strategies(self._strategies(token, client_id), request)
            if result.error is not None:
                raise result.error
            return self._apply_result(result, client_id)

        try:
            return await self._run_exclusive(work)
        except CancelledByUser as exc:
            logger.info("Send cancelled: %s", sanitize_for_logging(exc.message))
            self._rollback(client_id)
            return None
        except DomainError as exc:
            self._rollback(client_id)
            self.last_error = exc.message
            self._last_failed = (text, action_type, client_id)
            raise
        except asyncio.CancelledError:
            self._rollback(client_id)
            raise
        except Exception as exc:
            logger.error("Send failed unexpectedly: %s", sanitize_for_logging(str(exc)), exc_info=True)
            self._rollback(client_id)
            self.last_error = str(exc)
            self._last_failed = (text, action_type, client_id)
            raise
        finally:
            self.store.pending.release(key)

    async def _request_reply(self, anchor: Message) -> Optional[Message]:
        """Ask for a new reply to the stored user turn ``anchor``."""

        async def work(token: CancellationToken) -> Message:
            request = SendRequest(
                content=anchor.content,
                session_id=self.session_id,
                client_id=new_client_id(),
                action_type=ActionType.REGENERATE_RESPONSE.value,
                skip_user_message=True,
            )
            result = await attempt_strategies(self._strategies(token, None), request)
            if result.error is not None:
                raise result.error
            return self._apply_result(result, None)

        try:
            return await self._run_exclusive(work)
        except CancelledByUser:
            return None
        except DomainError as exc:
            self.last_error = exc.message
            raise

    async def _truncate_after(self, message_id: str) -> None:
        """Delete every turn after ``message_id`` on the server, then locally."""
        self.cancel()
        await self.api.truncate_after(self.session_id, message_id)
        self.store.remove_from(message_id, inclusive=False)

    async def regenerate(self) -> Optional[Message]:
        """Replace the reply to the last user message.

        The old reply is deleted on the server first, so the new one takes
        its place and the model never sees it.
        """
        last = self.store.last_user_message()
        if last is None or not self.session_id or last.status != MessageStatus.SENT:
            raise ValidationError("Nothing to regenerate", code="nothing_to_regenerate")
        self.last_error = None
        try:
            await self._truncate_after(last.id)
        except DomainError as exc:
            self.last_error = exc.message
            raise
        return await self._request_reply(last)

    async def edit_message(self, message_id: str, content: str) -> Optional[Message]:
        """Rewrite a stored user message and regenerate from it.

        Everything after the edited message is deleted on the server and
        locally before the new reply is requested.
        """
        text = content.strip()
        message = self.store.get(message_id)
        if message is None or message.role != MessageRole.USER:
            raise ValidationError("Only stored user messages can be edited", code="not_editable")
        if not text:
            raise ValidationError("Message content cannot be empty", code="empty_message")
        if not self.session_id or message.status != MessageStatus.SENT:
            raise ValidationError("Message has not been stored yet", code="not_editable")

        self.last_error = None
        try:
            await self._truncate_after(message_id)
            updated = await self.api.update_message(self.session_id, message_id, text)
        except DomainError as exc:
            self.last_error = exc.message
            raise
        edited = self.store.upsert(Message.from_dict(updated))
        return await self._request_reply(edited)

    async def retry_last(self) -> Optional[Message]:
        """Send the last failed message again with its original client id.

        If the server stored the user turn before failing it is not stored a
        second time, and a reply that did get stored is returned as is.
        """
        if self._last_failed is None:
            return None
        text, action_type, client_id = self._last_failed
        self._last_failed = None
        return await self.send(text, action_type, client_id=client_id)

    async def open_session(self, session_id: str) -> List[Message]:
        """Switch to an existing session and load its messages."""
        self.cancel()
        body = await self.api.get_session(session_id)
        self.session = Session.from_dict(body["session"])
        self.store = MessageStore(session_id)
        self.store.load(Message.from_dict(m) for m in body.get("messages", []))
        self.resolver.reset(session_id)
        return self.store.messages

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> List[Session]:
        """The user's active sessions, most recent first."""
        rows = await self.api.list_sessions(limit=limit, offset=offset)
        return [Session.from_dict(row) for row in rows]

    async def refresh(self) -> List[Message]:
        """Merge the server's copy of the session into the local store."""
        if not self.session_id:
            return self.store.messages
        body = await self.api.get_session(self.session_id)
        for row in body.get("messages", []):
            self.store.upsert(Message.from_dict(row))
        return self.store.messages

    def new_conversation(self) -> None:
        self.cancel()
        self.store = MessageStore()
        self.session = None
        self.resolver.reset()
        self.last_error = None
        self._last_failed = None

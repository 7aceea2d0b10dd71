"""ChatService turn handling: bootstrap, idempotent replay, regenerate, streaming."""

import pytest

from chatsync.application.chat.service import ChatTurnRequest
from chatsync.domain.errors import (
    RateLimitError,
    SessionNotFoundError,
    ValidationError,
)
from chatsync.domain.stream_events import (
    SessionCreated,
    StreamComplete,
    StreamError,
    StreamStart,
    Token,
    UserMessageStored,
)

from conftest import FakeLLM

USER = "user@test.com"


async def _collect(events):
    return [event async for event in events]


class TestPrepareTurn:
    def test_bootstraps_session_titled_from_message(self, chat_service, session_repo):
        turn = chat_service.prepare_turn(ChatTurnRequest(message="Plan a trip\nto Rome"), USER)
        assert turn.session_created is True
        assert session_repo.get(turn.session_id, USER)["title"] == "Plan a trip to Rome"
        assert turn.user_message["content"] == "Plan a trip\nto Rome"

    def test_empty_message_rejected(self, chat_service):
        with pytest.raises(ValidationError):
            chat_service.prepare_turn(ChatTurnRequest(message="   "), USER)

    def test_unknown_session_rejected(self, chat_service):
        with pytest.raises(SessionNotFoundError):
            chat_service.prepare_turn(ChatTurnRequest(message="hi", session_id="missing"), USER)

    def test_other_users_session_rejected(self, chat_service, session_repo):
        sid = session_repo.create("other@test.com", "theirs")["id"]
        with pytest.raises(SessionNotFoundError):
            chat_service.prepare_turn(ChatTurnRequest(message="hi", session_id=sid), USER)

    def test_unknown_model_rejected(self, chat_service):
        with pytest.raises(ValidationError):
            chat_service.prepare_turn(ChatTurnRequest(message="hi", model="nope"), USER)

    def test_retry_without_session_reuses_bootstrapped_session(self, chat_service, session_repo):
        first = chat_service.prepare_turn(ChatTurnRequest(message="hi", client_id="c1"), USER)
        retry = chat_service.prepare_turn(ChatTurnRequest(message="hi", client_id="c1"), USER)
        assert retry.session_id == first.session_id
        assert retry.session_created is False
        assert len(session_repo.list_active(USER)) == 1

    def test_regenerate_requires_session(self, chat_service):
        with pytest.raises(ValidationError):
            chat_service.prepare_turn(ChatTurnRequest(message="hi", skip_user_message=True), USER)


class TestBufferedTurn:
    @pytest.mark.asyncio
    async def test_stores_both_turns(self, chat_service, message_log, session_repo):
        turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        reply = await chat_service.complete_turn(turn)

        assert reply.message == "Hello there."
        assert reply.tokens_used == 7
        assert reply.user_message_id == turn.user_message["id"]
        rows = message_log.list_messages(turn.session_id, USER)
        assert [(r["role"], r["content"]) for r in rows] == [("user", "Hello"), ("assistant", "Hello there.")]
        assert session_repo.get(turn.session_id, USER)["messageCount"] == 2

    @pytest.mark.asyncio
    async def test_duplicate_submission_replays_stored_reply(self, chat_service, fake_llm, message_log):
        first_turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        first = await chat_service.complete_turn(first_turn)

        again = chat_service.prepare_turn(
            ChatTurnRequest(message="Hello", session_id=first.session_id, client_id="c1"), USER
        )
        second = await chat_service.complete_turn(again)

        assert second.is_duplicate is True
        assert second.id == first.id
        assert second.to_dict()["isDuplicate"] is True
        assert len(fake_llm.calls) == 1
        assert message_log.count_messages(first.session_id) == 2

    @pytest.mark.asyncio
    async def test_duplicate_without_reply_generates_one(self, chat_service, message_log):
        first_turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        # The first attempt died before the model answered
        again = chat_service.prepare_turn(
            ChatTurnRequest(message="Hello", session_id=first_turn.session_id, client_id="c1"), USER
        )
        assert again.replay is None
        reply = await chat_service.complete_turn(again)
        assert reply.is_duplicate is False
        assert message_log.count_messages(first_turn.session_id) == 2

    @pytest.mark.asyncio
    async def test_context_contains_prior_turns_once(self, chat_service, fake_llm):
        first = await chat_service.complete_turn(
            chat_service.prepare_turn(ChatTurnRequest(message="one", client_id="c1"), USER)
        )
        await chat_service.complete_turn(
            chat_service.prepare_turn(ChatTurnRequest(message="two", session_id=first.session_id, client_id="c2"), USER)
        )
        _, _, messages = fake_llm.calls[-1]
        assert [m["content"] for m in messages[1:]] == ["one", "Hello there.", "two"]
        assert messages[0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_llm_failure_raises_and_stores_no_reply(self, message_log, session_repo, context_assembler, config_manager):
        from chatsync.application.chat.service import ChatService
        service = ChatService(
            llm=FakeLLM(call_error=RuntimeError("rate limit exceeded")),
            message_log=message_log,
            session_repository=session_repo,
            context_assembler=context_assembler,
            config_manager=config_manager,
        )
        turn = service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        with pytest.raises(RateLimitError) as exc_info:
            await service.complete_turn(turn)
        assert "rate limit exceeded" not in exc_info.value.message
        assert message_log.count_messages(turn.session_id) == 1

    @pytest.mark.asyncio
    async def test_regenerate_does_not_store_user_turn(self, chat_service, fake_llm, message_log):
        first = await chat_service.complete_turn(
            chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        )
        rows = message_log.list_messages(first.session_id, USER)
        message_log.truncate_after(first.session_id, USER, rows[0]["id"])

        turn = chat_service.prepare_turn(
            ChatTurnRequest(
                message="Hello",
                session_id=first.session_id,
                skip_user_message=True,
                action_type="regenerate_response",
            ),
            USER,
        )
        reply = await chat_service.complete_turn(turn)

        rows = message_log.list_messages(first.session_id, USER)
        assert [r["role"] for r in rows] == ["user", "assistant"]
        assert rows[1]["id"] == reply.id
        assert rows[1]["actionType"] == "regenerate_response"
        _, _, messages = fake_llm.calls[-1]
        assert [m["content"] for m in messages if m["role"] == "user"] == ["Hello"]

    @pytest.mark.asyncio
    async def test_regenerate_context_stops_at_user_turn(self, chat_service, fake_llm, message_log):
        first = await chat_service.complete_turn(
            chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        )

        turn = chat_service.prepare_turn(
            ChatTurnRequest(
                message="Hello",
                session_id=first.session_id,
                skip_user_message=True,
                action_type="regenerate_response",
            ),
            USER,
        )
        await chat_service.complete_turn(turn)

        _, _, messages = fake_llm.calls[-1]
        assert [(m["role"], m["content"]) for m in messages if m["role"] != "system"] == [("user", "Hello")]

    @pytest.mark.asyncio
    async def test_repeated_regenerate_replays_stored_reply(self, chat_service, fake_llm, message_log):
        first = await chat_service.complete_turn(
            chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        )
        rows = message_log.list_messages(first.session_id, USER)
        message_log.truncate_after(first.session_id, USER, rows[0]["id"])

        request = ChatTurnRequest(
            message="Hello",
            session_id=first.session_id,
            client_id="r1",
            skip_user_message=True,
            action_type="regenerate_response",
        )
        reply = await chat_service.complete_turn(chat_service.prepare_turn(request, USER))
        calls = len(fake_llm.calls)
        again = await chat_service.complete_turn(chat_service.prepare_turn(request, USER))

        assert again.is_duplicate
        assert again.id == reply.id
        assert len(fake_llm.calls) == calls
        rows = message_log.list_messages(first.session_id, USER)
        assert [r["role"] for r in rows] == ["user", "assistant"]

    def test_regenerate_rejects_client_id_of_user_turn(self, chat_service):
        turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        with pytest.raises(ValidationError) as exc_info:
            chat_service.prepare_turn(
                ChatTurnRequest(
                    message="Hello",
                    session_id=turn.session_id,
                    client_id="c1",
                    skip_user_message=True,
                    action_type="regenerate_response",
                ),
                USER,
            )
        assert exc_info.value.code == "client_id_conflict"


class TestStreamingTurn:
    @pytest.mark.asyncio
    async def test_event_sequence(self, chat_service, message_log):
        turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        events = await _collect(chat_service.stream_turn(turn))

        assert isinstance(events[0], SessionCreated)
        assert isinstance(events[1], UserMessageStored)
        assert events[1].client_id == "c1"
        assert isinstance(events[2], StreamStart)
        assert [e.content for e in events if isinstance(e, Token)] == ["Hello", " there", "."]
        complete = events[-1]
        assert isinstance(complete, StreamComplete)
        assert complete.full_message == "Hello there."
        stored = message_log.list_messages(turn.session_id, USER)
        assert stored[-1]["id"] == complete.message_id

    @pytest.mark.asyncio
    async def test_streaming_and_buffered_store_same_shape(self, chat_service, message_log):
        streamed_turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="s1"), USER)
        await _collect(chat_service.stream_turn(streamed_turn))
        buffered_turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="b1"), USER)
        await chat_service.complete_turn(buffered_turn)

        def shape(session_id):
            return [(r["role"], r["content"]) for r in message_log.list_messages(session_id, USER)]

        assert shape(streamed_turn.session_id) == shape(buffered_turn.session_id)

    @pytest.mark.asyncio
    async def test_existing_session_has_no_session_created(self, chat_service, session_repo):
        sid = session_repo.create(USER, "t")["id"]
        turn = chat_service.prepare_turn(ChatTurnRequest(message="Hello", session_id=sid, client_id="c1"), USER)
        events = await _collect(chat_service.stream_turn(turn))
        assert not any(isinstance(e, SessionCreated) for e in events)

    @pytest.mark.asyncio
    async def test_duplicate_replays_as_single_token(self, chat_service, fake_llm):
        first = await chat_service.complete_turn(
            chat_service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        )
        turn = chat_service.prepare_turn(
            ChatTurnRequest(message="Hello", session_id=first.session_id, client_id="c1"), USER
        )
        events = await _collect(chat_service.stream_turn(turn))
        tokens = [e for e in events if isinstance(e, Token)]
        assert len(tokens) == 1
        assert events[-1].is_duplicate is True
        assert events[-1].message_id == first.id
        assert len(fake_llm.calls) == 1

    @pytest.mark.asyncio
    async def test_model_error_ends_with_error_event(self, message_log, session_repo, context_assembler, config_manager):
        from chatsync.application.chat.service import ChatService
        service = ChatService(
            llm=FakeLLM(tokens=["par"], stream_error=RuntimeError("connection reset")),
            message_log=message_log,
            session_repository=session_repo,
            context_assembler=context_assembler,
            config_manager=config_manager,
        )
        turn = service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        events = await _collect(service.stream_turn(turn))
        assert isinstance(events[-1], StreamError)
        assert not any(isinstance(e, StreamComplete) for e in events)
        assert message_log.count_messages(turn.session_id) == 1

    @pytest.mark.asyncio
    async def test_empty_stream_falls_back_to_buffered_call(self, message_log, session_repo, context_assembler, config_manager):
        from chatsync.application.chat.service import ChatService
        llm = FakeLLM(tokens=[], reply="Buffered answer")
        service = ChatService(
            llm=llm,
            message_log=message_log,
            session_repository=session_repo,
            context_assembler=context_assembler,
            config_manager=config_manager,
        )
        turn = service.prepare_turn(ChatTurnRequest(message="Hello", client_id="c1"), USER)
        events = await _collect(service.stream_turn(turn))
        assert events[-1].full_message == "Buffered answer"
        assert [c[0] for c in llm.calls] == ["stream", "call"]

"""Client and server together over httpx.ASGITransport.

These exercise the whole send path: optimistic insert, session bootstrap,
streaming with buffered fallback, reconciliation, edit and regenerate.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from chatsync.client import ChatApiClient, Conversation
from chatsync.domain.errors import AuthenticationError, LLMError, TransportError, ValidationError
from chatsync.domain.messages.models import MessageRole, MessageStatus
from chatsync.modules.config import ClientSettings

from conftest import TEST_USER

BASE_URL = "http://testserver"


@pytest_asyncio.fixture
async def api(asgi_transport):
    client = ChatApiClient(BASE_URL, user_email=TEST_USER, transport=asgi_transport)
    yield client
    await client.aclose()


def _shape(messages):
    return [(m.role.value, m.content) for m in messages]


async def _server_rows(api, session_id):
    body = await api.get_session(session_id)
    return body["messages"]


@pytest.mark.asyncio
@pytest.mark.parametrize("prefer_streaming", [True, False])
async def test_send_reconciles_with_server_rows(api, prefer_streaming):
    conversation = Conversation(api, prefer_streaming=prefer_streaming)

    reply = await conversation.send("Hello")

    assert reply.content == "Hello there."
    rows = await _server_rows(api, conversation.session_id)
    assert [m.id for m in conversation.messages] == [r["id"] for r in rows]
    assert _shape(conversation.messages) == [("user", "Hello"), ("assistant", "Hello there.")]
    assert all(m.status == MessageStatus.SENT for m in conversation.messages)
    assert len(conversation.store.pending) == 0


@pytest.mark.asyncio
async def test_streaming_and_buffered_produce_same_history(api):
    streamed = Conversation(api, prefer_streaming=True)
    buffered = Conversation(api, prefer_streaming=False)
    for text in ("one", "two"):
        await streamed.send(text)
        await buffered.send(text)

    streamed_rows = await _server_rows(api, streamed.session_id)
    buffered_rows = await _server_rows(api, buffered.session_id)
    assert [(r["role"], r["content"]) for r in streamed_rows] == [(r["role"], r["content"]) for r in buffered_rows]
    assert _shape(streamed.messages) == _shape(buffered.messages)


@pytest.mark.asyncio
async def test_session_created_with_title_from_first_message(api):
    conversation = Conversation(api)
    await conversation.send("Plan a weekend in Lisbon")
    session = (await api.get_session(conversation.session_id))["session"]
    assert session["title"] == "Plan a weekend in Lisbon"
    assert session["messageCount"] == 2


@pytest.mark.asyncio
async def test_stream_failure_falls_back_without_duplicate_user_turn(api, fake_llm):
    fake_llm.stream_error = RuntimeError("connection reset")
    fake_llm.tokens = ["Hel"]
    fake_llm.reply = "Buffered reply."
    conversation = Conversation(api)

    reply = await conversation.send("Hello")

    assert reply.content == "Buffered reply."
    rows = await _server_rows(api, conversation.session_id)
    assert [(r["role"], r["content"]) for r in rows] == [("user", "Hello"), ("assistant", "Buffered reply.")]
    assert [m.id for m in conversation.messages] == [r["id"] for r in rows]


@pytest.mark.asyncio
async def test_failure_removes_optimistic_message_and_retry_is_idempotent(api, fake_llm):
    fake_llm.stream_error = RuntimeError("upstream down")
    fake_llm.tokens = []
    fake_llm.call_error = RuntimeError("upstream down")
    conversation = Conversation(api)

    with pytest.raises(LLMError):
        await conversation.send("Hello")
    assert conversation.messages == []
    assert conversation.last_error

    fake_llm.stream_error = None
    fake_llm.call_error = None
    fake_llm.tokens = ["Recovered."]
    reply = await conversation.retry_last()

    assert reply.content == "Recovered."
    rows = await _server_rows(api, conversation.session_id)
    assert [r["role"] for r in rows] == ["user", "assistant"]
    assert conversation.last_error is None


@pytest.mark.asyncio
async def test_duplicate_send_suppressed_while_pending(api):
    conversation = Conversation(api)

    first, second = await asyncio.gather(conversation.send("Hello"), conversation.send("  hello "))

    assert first is not None
    assert second is None
    rows = await _server_rows(api, conversation.session_id)
    assert [r["role"] for r in rows] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_same_text_can_be_sent_again_after_completion(api):
    conversation = Conversation(api)
    await conversation.send("Hello")
    await conversation.send("Hello")
    assert [m.role for m in conversation.messages] == [MessageRole.USER, MessageRole.ASSISTANT] * 2


@pytest.mark.asyncio
async def test_new_send_cancels_previous(api):
    conversation = Conversation(api)

    first, second = await asyncio.gather(conversation.send("first"), conversation.send("second"))

    assert first is None
    assert second is not None
    assert [m.content for m in conversation.messages if m.role == MessageRole.USER] == ["second"]


@pytest.mark.asyncio
async def test_edit_truncates_and_regenerates(api, fake_llm):
    conversation = Conversation(api)
    await conversation.send("u1")
    await conversation.send("u2")
    first_user = conversation.messages[0]

    fake_llm.tokens = ["Fresh answer."]
    reply = await conversation.edit_message(first_user.id, "u1 edited")

    assert _shape(conversation.messages) == [("user", "u1 edited"), ("assistant", "Fresh answer.")]
    assert conversation.messages[0].id == first_user.id
    rows = await _server_rows(api, conversation.session_id)
    assert [r["id"] for r in rows] == [m.id for m in conversation.messages]
    assert rows[1]["id"] == reply.id
    _, _, sent = fake_llm.calls[-1]
    assert [m["content"] for m in sent if m["role"] == "user"] == ["u1 edited"]


@pytest.mark.asyncio
async def test_refresh_does_not_duplicate(api):
    conversation = Conversation(api)
    await conversation.send("Hello")
    before = [m.id for m in conversation.messages]
    await conversation.refresh()
    assert [m.id for m in conversation.messages] == before


@pytest.mark.asyncio
async def test_open_session_and_new_conversation(api):
    writer = Conversation(api)
    await writer.send("Hello")

    reader = Conversation(api)
    loaded = await reader.open_session(writer.session_id)
    assert _shape(loaded) == _shape(writer.messages)
    assert reader.session_id == writer.session_id
    assert reader.session.id == writer.session_id
    assert reader.session.title == "Hello"
    assert [s.id for s in await reader.list_sessions()] == [writer.session_id]

    reader.new_conversation()
    assert reader.session_id is None
    assert reader.session is None
    assert reader.messages == []


@pytest.mark.asyncio
async def test_unauthenticated_send_raises(asgi_transport):
    async with ChatApiClient(BASE_URL, transport=asgi_transport) as anonymous:
        conversation = Conversation(anonymous)
        with pytest.raises(AuthenticationError):
            await conversation.send("Hello")
        assert conversation.messages == []


@pytest.mark.asyncio
async def test_empty_message_ignored(api):
    conversation = Conversation(api)
    assert await conversation.send("   ") is None
    assert conversation.session_id is None


@pytest.mark.asyncio
async def test_from_settings_applies_client_settings(api):
    settings = ClientSettings(prefer_streaming=False, stream_chunk_size=5)
    conversation = Conversation.from_settings(api, settings)

    assert conversation.prefer_streaming is False
    assert conversation.pacer_factory().chunk_size == 5
    reply = await conversation.send("Hello")
    assert reply.content == "Hello there."


@pytest.mark.asyncio
@pytest.mark.parametrize("prefer_streaming", [True, False])
async def test_regenerate_replaces_reply_on_server(api, fake_llm, prefer_streaming):
    conversation = Conversation(api, prefer_streaming=prefer_streaming)
    await conversation.send("u1")

    fake_llm.tokens = ["Second answer."]
    fake_llm.reply = "Second answer."
    reply = await conversation.regenerate()

    assert _shape(conversation.messages) == [("user", "u1"), ("assistant", "Second answer.")]
    rows = await _server_rows(api, conversation.session_id)
    assert [r["id"] for r in rows] == [m.id for m in conversation.messages]
    assert rows[1]["id"] == reply.id
    _, _, sent = fake_llm.calls[-1]
    assert [(m["role"], m["content"]) for m in sent if m["role"] != "system"] == [("user", "u1")]

    await conversation.refresh()
    assert _shape(conversation.messages) == [("user", "u1"), ("assistant", "Second answer.")]


@pytest.mark.asyncio
async def test_regenerate_needs_a_stored_user_turn(api):
    conversation = Conversation(api)
    with pytest.raises(ValidationError):
        await conversation.regenerate()


@pytest.mark.asyncio
async def test_failed_edit_leaves_client_matching_server(api, monkeypatch):
    conversation = Conversation(api)
    await conversation.send("u1")
    await conversation.send("u2")
    first_user = conversation.messages[0]

    async def unreachable(*args, **kwargs):
        raise TransportError("Could not reach chat API", code="network_error")

    monkeypatch.setattr(api, "update_message", unreachable)
    with pytest.raises(TransportError):
        await conversation.edit_message(first_user.id, "u1 edited")

    rows = await _server_rows(api, conversation.session_id)
    assert [r["id"] for r in rows] == [m.id for m in conversation.messages] == [first_user.id]
    assert conversation.last_error == "Could not reach chat API"


@pytest.mark.asyncio
async def test_malformed_reply_rolls_back_optimistic_message():
    def handler(request):
        if request.url.path == "/api/sessions":
            return httpx.Response(201, json={"id": "s1", "title": "Hello"})
        return httpx.Response(200, json={})

    transport = httpx.MockTransport(handler)
    async with ChatApiClient(BASE_URL, user_email=TEST_USER, transport=transport) as broken:
        conversation = Conversation(broken, prefer_streaming=False)
        with pytest.raises(TransportError):
            await conversation.send("Hello")

    assert conversation.messages == []
    assert len(conversation.store.pending) == 0
    assert conversation.last_error

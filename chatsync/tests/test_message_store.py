"""MessageStore: optimistic inserts, reconciliation and the pending registry."""

import pytest

from chatsync.client.message_store import MessageStore, PendingRegistry
from chatsync.domain.errors import DuplicateSuppressed
from chatsync.domain.messages.models import Message, MessageRole, MessageStatus


def _server_row(message_id, content="hi", role=MessageRole.USER, client_id=None):
    return Message(id=message_id, role=role, content=content, session_id="s1", client_id=client_id)


class TestPendingRegistry:
    def test_claim_twice_is_suppressed(self):
        registry = PendingRegistry()
        registry.claim("temp_abc")
        with pytest.raises(DuplicateSuppressed):
            registry.claim("temp_abc")

    def test_release_allows_claim_again(self):
        registry = PendingRegistry()
        registry.claim("fp")
        registry.release("fp")
        registry.claim("fp")
        assert "fp" in registry
        assert len(registry) == 1


class TestOptimisticAndReconcile:
    def test_optimistic_message_uses_client_id(self):
        store = MessageStore()
        msg = store.add_optimistic("hello", "c1")
        assert msg.id == "c1"
        assert msg.status == MessageStatus.PENDING
        assert msg.session_id == "temp"

    def test_reconcile_keeps_position(self):
        store = MessageStore("s1")
        store.upsert(_server_row("m0", "earlier"))
        store.add_optimistic("hello", "c1")
        store.upsert(_server_row("m2", "later", role=MessageRole.ASSISTANT))

        store.reconcile("c1", _server_row("m1", "hello"))

        assert [m.id for m in store.messages] == ["m0", "m1", "m2"]
        assert store.get("m1").status == MessageStatus.SENT
        assert store.get("m1").client_id == "c1"
        assert "c1" not in store

    def test_reconcile_when_canonical_already_loaded(self):
        store = MessageStore("s1")
        store.add_optimistic("hello", "c1")
        store.upsert(_server_row("m1", "hello", client_id="c1"))
        # The reload above already reconciled by client id
        assert [m.id for m in store.messages] == ["m1"]

        store.reconcile("c1", _server_row("m1", "hello"))
        assert [m.id for m in store.messages] == ["m1"]

    def test_reconcile_merges_duplicate_entries(self):
        store = MessageStore("s1")
        store.add_optimistic("hello", "c1")
        store.upsert(_server_row("m1", "hello"))
        store.reconcile("c1", _server_row("m1", "hello"))
        assert [m.id for m in store.messages] == ["m1"]

    def test_upsert_same_id_does_not_duplicate(self):
        store = MessageStore("s1")
        store.upsert(_server_row("m1", "v1"))
        store.upsert(_server_row("m1", "v2"))
        assert len(store) == 1
        assert store.get("m1").content == "v2"


class TestRemoval:
    def test_fail_removes_and_marks(self):
        store = MessageStore()
        store.add_optimistic("hello", "c1")
        failed = store.fail("c1")
        assert failed.status == MessageStatus.FAILED
        assert len(store) == 0

    def test_remove_from_exclusive(self):
        store = MessageStore("s1")
        for mid in ("u1", "a1", "u2", "a2"):
            store.upsert(_server_row(mid))
        removed = store.remove_from("a1", inclusive=False)
        assert [m.id for m in removed] == ["u2", "a2"]
        assert [m.id for m in store.messages] == ["u1", "a1"]

    def test_remove_from_inclusive(self):
        store = MessageStore("s1")
        for mid in ("u1", "a1", "u2"):
            store.upsert(_server_row(mid))
        store.remove_from("a1")
        assert [m.id for m in store.messages] == ["u1"]

    def test_remove_from_unknown_id(self):
        assert MessageStore().remove_from("nope") == []


def test_assign_session_updates_placeholders():
    store = MessageStore()
    store.add_optimistic("hello", "c1")
    store.assign_session("s9")
    assert store.session_id == "s9"
    assert store.get("c1").session_id == "s9"


def test_last_user_message():
    store = MessageStore("s1")
    store.upsert(_server_row("u1"))
    store.upsert(_server_row("a1", role=MessageRole.ASSISTANT))
    assert store.last_user_message().id == "u1"


def test_load_replaces_contents():
    store = MessageStore("s1")
    store.add_optimistic("stale", "c0")
    store.load([_server_row("m1"), _server_row("m2")])
    assert [m.id for m in store.messages] == ["m1", "m2"]

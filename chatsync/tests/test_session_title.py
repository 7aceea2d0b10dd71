from chatsync.domain.sessions.models import DEFAULT_SESSION_TITLE, Session, derive_session_title


def test_short_text_kept():
    assert derive_session_title("Hello world") == "Hello world"


def test_whitespace_collapsed():
    assert derive_session_title("  line one\n\nline   two  ") == "line one line two"


def test_long_text_truncated_with_ellipsis():
    title = derive_session_title("x" * 80)
    assert title == "x" * 50 + "..."


def test_custom_max_length():
    assert derive_session_title("abcdefghij", max_length=4) == "abcd..."


def test_empty_falls_back_to_default():
    assert derive_session_title("") == DEFAULT_SESSION_TITLE
    assert derive_session_title("   \n ") == DEFAULT_SESSION_TITLE


def test_session_dict_uses_camel_case():
    session = Session.from_dict({
        "id": "s1",
        "userId": "u@test.com",
        "title": "Hi",
        "messageCount": 2,
        "lastMessageAt": "2024-05-01T10:00:00+00:00",
        "isActive": True,
        "createdAt": "2024-05-01T09:00:00Z",
    })
    assert session.message_count == 2
    data = session.to_dict()
    assert data["userId"] == "u@test.com"
    assert data["lastMessageAt"].startswith("2024-05-01T10:00:00")

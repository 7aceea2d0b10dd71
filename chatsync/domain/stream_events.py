"""Typed events carried by the streaming chat transport.

Each event travels as one ``data: <json>`` line followed by a blank line.
The set of events is closed: ``parse_stream_line`` rejects unknown types
and ``event_to_payload`` refuses anything that is not a ``StreamEvent``.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from chatsync.domain.errors import StreamParseError

DATA_PREFIX = "data:"


@dataclass(frozen=True)
class SessionCreated:
    session_id: str


@dataclass(frozen=True)
class UserMessageStored:
    message_id: str
    session_id: str
    client_id: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class StreamStart:
    pass


@dataclass(frozen=True)
class Token:
    content: str


@dataclass(frozen=True)
class StreamComplete:
    message_id: str
    session_id: str
    full_message: str
    timestamp: Optional[str] = None
    model: Optional[str] = None
    is_duplicate: bool = False


@dataclass(frozen=True)
class StreamError:
    message: str


StreamEvent = Union[SessionCreated, UserMessageStored, StreamStart, Token, StreamComplete, StreamError]


def event_to_payload(event: StreamEvent) -> Dict[str, Any]:
    """Convert an event to its wire dictionary."""
    if isinstance(event, SessionCreated):
        return {"type": "session_created", "sessionId": event.session_id}
    if isinstance(event, UserMessageStored):
        return {
            "type": "user_message_stored",
            "messageId": event.message_id,
            "sessionId": event.session_id,
            "clientId": event.client_id,
            "timestamp": event.timestamp,
        }
    if isinstance(event, StreamStart):
        return {"type": "stream_start"}
    if isinstance(event, Token):
        return {"type": "token", "content": event.content}
    if isinstance(event, StreamComplete):
        payload = {
            "type": "stream_complete",
            "messageId": event.message_id,
            "sessionId": event.session_id,
            "fullMessage": event.full_message,
            "timestamp": event.timestamp,
            "model": event.model,
        }
        if event.is_duplicate:
            payload["isDuplicate"] = True
        return payload
    if isinstance(event, StreamError):
        return {"type": "error", "message": event.message}
    raise TypeError(f"Unsupported stream event: {type(event).__name__}")


def encode_event(event: StreamEvent) -> str:
    """Encode an event as a server-sent ``data:`` frame."""
    return f"{DATA_PREFIX} {json.dumps(event_to_payload(event))}\n\n"


def payload_to_event(payload: Dict[str, Any]) -> StreamEvent:
    """Build a typed event from a decoded wire dictionary."""
    event_type = payload.get("type")
    try:
        if event_type == "session_created":
            return SessionCreated(session_id=payload["sessionId"])
        if event_type == "user_message_stored":
            return UserMessageStored(
                message_id=payload["messageId"],
                session_id=payload["sessionId"],
                client_id=payload.get("clientId"),
                timestamp=payload.get("timestamp"),
            )
        if event_type == "stream_start":
            return StreamStart()
        if event_type == "token":
            return Token(content=payload.get("content") or "")
        if event_type == "stream_complete":
            return StreamComplete(
                message_id=payload["messageId"],
                session_id=payload["sessionId"],
                full_message=payload.get("fullMessage") or "",
                timestamp=payload.get("timestamp"),
                model=payload.get("model"),
                is_duplicate=bool(payload.get("isDuplicate", False)),
            )
        if event_type == "error":
            return StreamError(message=payload.get("message") or "Stream error")
    except KeyError as exc:
        raise StreamParseError(f"Event '{event_type}' is missing field {exc}") from exc
    raise StreamParseError(f"Unknown stream event type: {event_type!r}")


def parse_stream_line(line: str) -> Optional[StreamEvent]:
    """Parse one transport line.

    Blank lines and lines that are not ``data:`` frames return None. A
    ``data:`` frame whose body is not a JSON event raises StreamParseError.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    body = line[len(DATA_PREFIX):].strip()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise StreamParseError(f"Malformed stream event: {exc}") from exc
    if not isinstance(payload, dict):
        raise StreamParseError("Stream event is not a JSON object")
    return payload_to_event(payload)

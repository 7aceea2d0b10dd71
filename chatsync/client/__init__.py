"""Async client for the chatsync API.

``Conversation`` is the entry point: it shows sends optimistically in a
``MessageStore``, streams replies when it can and falls back to a buffered
request with the same client id when it cannot.

Example:
    async with ChatApiClient("http://127.0.0.1:8000", user_email="me@example.com") as api:
        conversation = Conversation(api)
        reply = await conversation.send("Summarise my last upload")
        print(reply.content)
"""

from .api_client import ChatApiClient
from .cancellation import CancellationToken
from .conversation import Conversation
from .fingerprint import fingerprint, new_client_id
from .message_store import MessageStore, PendingRegistry
from .session_resolver import SessionResolver
from .stream_pipeline import DisplayPacer, StreamIngestionPipeline

__all__ = [
    "CancellationToken",
    "ChatApiClient",
    "Conversation",
    "DisplayPacer",
    "MessageStore",
    "PendingRegistry",
    "SessionResolver",
    "StreamIngestionPipeline",
    "fingerprint",
    "new_client_id",
]

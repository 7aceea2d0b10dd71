"""Deduplication keys for client sends.

``fingerprint`` guards against rapid repeat taps within one conversation.
It is a 32-bit rolling hash, so two different texts can collide; a
collision only suppresses a send while the first one is still pending.
``new_client_id`` is the per-attempt idempotency key sent to the server.
"""

import uuid
from typing import Optional

PLACEHOLDER_SESSION_ID = "temp"


def _rolling_hash(text: str) -> int:
    """Signed 32-bit ``h * 31 + unit`` over the UTF-16 code units of ``text``."""
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def fingerprint(content: str, session_id: Optional[str] = None) -> str:
    normalized = content.strip().lower()
    return f"{session_id or PLACEHOLDER_SESSION_ID}_{abs(_rolling_hash(normalized)):x}"


def new_client_id() -> str:
    return str(uuid.uuid4())

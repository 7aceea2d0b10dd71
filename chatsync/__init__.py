"""
chatsync - conversation synchronization and streaming engine.

The package ships both halves of the exchange:

- a FastAPI backend with an idempotent message log, session storage and
  context assembly in front of a LiteLLM-backed model;
- an async client (``chatsync.client``) with an optimistic message store,
  streaming ingestion and streaming-to-buffered fallback.

CLI tools (after pip install):
    chatsync-server --port 8000
    chatsync-maintenance purge --days 30 --dry-run
"""

from chatsync.version import VERSION

__version__ = VERSION
__all__ = [
    "VERSION",
    "__version__",
]

"""Chat application layer: server-side turn orchestration."""

from .service import ChatReply, ChatService, ChatTurnRequest, PreparedTurn

__all__ = ["ChatReply", "ChatService", "ChatTurnRequest", "PreparedTurn"]

from .models import ActionType, Message, MessageRole, MessageStatus

__all__ = ["ActionType", "Message", "MessageRole", "MessageStatus"]

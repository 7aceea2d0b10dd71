"""FastAPI dependency providers backed by the app factory."""

from chatsync.application.chat.service import ChatService
from chatsync.modules.chat_history import MessageLog, SessionRepository


def get_chat_service() -> ChatService:
    from chatsync.infrastructure.app_factory import app_factory
    return app_factory.create_chat_service()


def get_session_repository() -> SessionRepository:
    from chatsync.infrastructure.app_factory import app_factory
    return app_factory.get_session_repository()


def get_message_log() -> MessageLog:
    from chatsync.infrastructure.app_factory import app_factory
    return app_factory.get_message_log()

"""Application factory for dependency injection and wiring."""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from chatsync.application.chat.service import ChatService
from chatsync.interfaces.llm import LLMProtocol
from chatsync.modules.chat_history import (
    ContextAssembler,
    MessageLog,
    SessionRepository,
    get_session_factory,
    init_database,
)
from chatsync.modules.config import ConfigManager
from chatsync.modules.llm.litellm_caller import LiteLLMCaller

logger = logging.getLogger(__name__)


class AppFactory:
    """Application factory that wires dependencies (simple in-memory DI).

    Storage is created on first use so importing the app does not touch the
    database.
    """

    def __init__(self) -> None:
        self.config_manager = ConfigManager()

        self.llm_caller: LLMProtocol = LiteLLMCaller(
            self.config_manager.llm_config,
            debug_mode=self.config_manager.app_settings.debug_mode,
        )

        self._session_factory: Optional[sessionmaker] = None
        self._session_repository: Optional[SessionRepository] = None
        self._message_log: Optional[MessageLog] = None
        self._context_assembler: Optional[ContextAssembler] = None

        logger.info("AppFactory initialized")

    def _ensure_storage(self) -> sessionmaker:
        if self._session_factory is None:
            engine = init_database(self.config_manager.chat_history_db_url)
            self.use_session_factory(get_session_factory(engine))
        return self._session_factory

    def use_session_factory(self, session_factory: sessionmaker) -> None:
        """Bind all repositories to ``session_factory``."""
        self._session_factory = session_factory
        self._session_repository = SessionRepository(session_factory)
        self._message_log = MessageLog(session_factory)
        self._context_assembler = ContextAssembler(
            session_factory,
            window_size=self.config_manager.app_settings.chat_context_window,
        )

    def reset_storage(self) -> None:
        self._session_factory = None
        self._session_repository = None
        self._message_log = None
        self._context_assembler = None

    def create_chat_service(self) -> ChatService:
        self._ensure_storage()
        return ChatService(
            llm=self.llm_caller,
            message_log=self._message_log,
            session_repository=self._session_repository,
            context_assembler=self._context_assembler,
            config_manager=self.config_manager,
        )

    # Accessors
    def get_config_manager(self) -> ConfigManager:  # noqa: D401
        return self.config_manager

    def get_llm_caller(self) -> LLMProtocol:  # noqa: D401
        return self.llm_caller

    def get_session_repository(self) -> SessionRepository:  # noqa: D401
        self._ensure_storage()
        return self._session_repository

    def get_message_log(self) -> MessageLog:  # noqa: D401
        self._ensure_storage()
        return self._message_log


# Global instance used by routes and entry points
app_factory = AppFactory()

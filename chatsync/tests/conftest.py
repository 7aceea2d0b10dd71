"""Shared fixtures: a temp SQLite database, a scripted LLM and the app wired to both."""

from typing import List, Optional

import httpx
import pytest

from chatsync.application.chat.service import ChatService
from chatsync.modules.chat_history import (
    ContextAssembler,
    MessageLog,
    SessionRepository,
    get_session_factory,
    init_database,
    reset_engine,
)
from chatsync.modules.config import AppSettings, ConfigManager, LLMConfig, ModelConfig
from chatsync.modules.llm.models import LLMResponse

TEST_USER = "user@test.com"
AUTH_HEADERS = {"X-User-Email": TEST_USER}


class FakeLLM:
    """Scripted stand-in for LiteLLMCaller.

    ``tokens`` are streamed by ``stream_plain``; ``reply`` is returned by
    ``call_plain``. Either side can be made to fail.
    """

    def __init__(
        self,
        tokens: Optional[List[str]] = None,
        reply: str = "Hello there.",
        stream_error: Optional[Exception] = None,
        call_error: Optional[Exception] = None,
    ):
        self.tokens = ["Hello", " there", "."] if tokens is None else tokens
        self.reply = reply
        self.stream_error = stream_error
        self.call_error = call_error
        self.calls = []

    async def call_plain(self, model_name, messages, temperature=None, user_email=None):
        self.calls.append(("call", model_name, messages))
        if self.call_error is not None:
            raise self.call_error
        return LLMResponse(content=self.reply, model_used=model_name, tokens_used=7)

    async def stream_plain(self, model_name, messages, temperature=None, user_email=None):
        self.calls.append(("stream", model_name, messages))
        for token in self.tokens:
            yield token
        if self.stream_error is not None:
            raise self.stream_error


@pytest.fixture(autouse=True)
def _clean_engine():
    """Reset the global engine before and after each test."""
    reset_engine()
    yield
    reset_engine()


@pytest.fixture
def session_factory(tmp_path):
    engine = init_database(f"sqlite:///{tmp_path / 'chatsync_test.db'}")
    return get_session_factory(engine)


@pytest.fixture
def session_repo(session_factory):
    return SessionRepository(session_factory)


@pytest.fixture
def message_log(session_factory):
    return MessageLog(session_factory)


@pytest.fixture
def context_assembler(session_factory):
    return ContextAssembler(session_factory, window_size=10)


@pytest.fixture
def config_manager(tmp_path):
    manager = ConfigManager()
    manager._app_settings = AppSettings(
        debug_mode=False,
        default_model="test-model",
        chat_context_window=10,
        chat_history_db_url=f"sqlite:///{tmp_path / 'unused.db'}",
    )
    manager._llm_config = LLMConfig(models={
        "test-model": ModelConfig(model_name="gpt-4o-mini", model_url="https://api.openai.com/v1"),
        "other-model": ModelConfig(model_name="gpt-4o", model_url="https://api.openai.com/v1"),
    })
    return manager


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def chat_service(fake_llm, message_log, session_repo, context_assembler, config_manager):
    return ChatService(
        llm=fake_llm,
        message_log=message_log,
        session_repository=session_repo,
        context_assembler=context_assembler,
        config_manager=config_manager,
    )


@pytest.fixture
def app(chat_service, session_repo, message_log):
    """The real FastAPI app with storage and the model swapped for test doubles."""
    from chatsync.main import app as fastapi_app
    from chatsync.routes.dependencies import get_chat_service, get_message_log, get_session_repository

    fastapi_app.dependency_overrides[get_chat_service] = lambda: chat_service
    fastapi_app.dependency_overrides[get_session_repository] = lambda: session_repo
    fastapi_app.dependency_overrides[get_message_log] = lambda: message_log
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from starlette.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def asgi_transport(app):
    return httpx.ASGITransport(app=app)

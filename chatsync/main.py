"""
chatsync backend: FastAPI app for synchronized, streamable conversations.
"""

# Suppress LiteLLM verbose logging BEFORE any transitive import of litellm.
# litellm._logging reads LITELLM_LOG at import time and defaults to DEBUG.
import os
from pathlib import Path as _Path

from dotenv import dotenv_values as _dotenv_values

_env_path = _Path.cwd() / ".env"
_env_values = _dotenv_values(_env_path) if _env_path.exists() else {}
_suppress_litellm = (
    os.environ.get("FEATURE_SUPPRESS_LITELLM_LOGGING")
    or _env_values.get("FEATURE_SUPPRESS_LITELLM_LOGGING")
    or "true"
).lower() in ("true", "1", "yes")

if _suppress_litellm and "LITELLM_LOG" not in os.environ:
    os.environ["LITELLM_LOG"] = "ERROR"

del _Path, _dotenv_values, _env_path, _env_values, _suppress_litellm

# ruff: noqa: E402
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from chatsync.core.exception_handlers import register_exception_handlers
from chatsync.core.middleware import AuthMiddleware
from chatsync.core.otel_config import setup_opentelemetry
from chatsync.infrastructure.app_factory import app_factory
from chatsync.routes.chat_routes import router as chat_router
from chatsync.routes.health_routes import router as health_router
from chatsync.routes.session_routes import router as session_router
from chatsync.version import VERSION

load_dotenv()

otel_config = setup_opentelemetry("chatsync", VERSION)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting chatsync backend")
    config = app_factory.get_config_manager()
    logger.info(f"Backend initialized with {len(config.llm_config.models)} LLM models")
    if not config.default_model:
        logger.warning("No default model configured; chat requests must name a model")

    # Create tables before the first request
    app_factory.get_session_repository()

    yield

    logger.info("Shutting down chatsync backend")


app = FastAPI(
    title="chatsync",
    description="Idempotent, streamable chat message log with optimistic-client support",
    version=VERSION,
    lifespan=lifespan,
)

config = app_factory.get_config_manager()

app.add_middleware(
    AuthMiddleware,
    debug_mode=config.app_settings.debug_mode,
    auth_header_name=config.app_settings.auth_user_header,
    test_user=config.app_settings.test_user,
)
register_exception_handlers(app)

app.include_router(health_router)
app.include_router(session_router)
app.include_router(chat_router)

otel_config.instrument_fastapi(app)
# LiteLLM talks to providers over httpx
otel_config.instrument_httpx()

"""
LiteLLM-based LLM calling interface.

Provides buffered calls here and streaming calls through
``LiteLLMStreamingMixin``. LiteLLM gives unified access to the providers
listed in ``llmconfig.yml``.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import litellm
from litellm import acompletion

from chatsync.core.metrics_logger import log_metric
from chatsync.domain.errors import LLMServiceError
from chatsync.modules.config.config_manager import ModelConfig, resolve_env_var

from .litellm_streaming import LiteLLMStreamingMixin
from .models import LLMResponse

logger = logging.getLogger(__name__)

# Drop unsupported params instead of erroring
litellm.drop_params = True

# Provider detection by URL. Order matters: groq serves an /openai/ path.
_PROVIDER_PREFIXES = (
    ("openrouter", "openrouter", "OPENROUTER_API_KEY"),
    ("groq", "openai", "GROQ_API_KEY"),
    ("openai", "openai", "OPENAI_API_KEY"),
    ("anthropic", "anthropic", "ANTHROPIC_API_KEY"),
    ("google", "google", "GOOGLE_API_KEY"),
)


class LiteLLMCaller(LiteLLMStreamingMixin):
    """Buffered and streaming chat completions through LiteLLM."""

    def __init__(self, llm_config=None, debug_mode: bool = False):
        if llm_config is None:
            from chatsync.modules.config import config_manager
            self.llm_config = config_manager.llm_config
        else:
            self.llm_config = llm_config

        from chatsync.modules.config.config_manager import get_app_settings
        if get_app_settings().feature_suppress_litellm_logging:
            litellm.set_verbose = False
        else:
            litellm.set_verbose = debug_mode

    def has_model(self, model_name: str) -> bool:
        return model_name in self.llm_config.models

    def _model_entry(self, model_name: str) -> ModelConfig:
        try:
            return self.llm_config.models[model_name]
        except KeyError:
            raise ValueError(f"Unknown model '{model_name}'") from None

    def _get_litellm_model_name(self, model_name: str) -> str:
        """Catalogue name to the provider-prefixed id LiteLLM routes on."""
        model_config = self._model_entry(model_name)
        for marker, prefix, _ in _PROVIDER_PREFIXES:
            if marker in model_config.model_url:
                return f"{prefix}/{model_config.model_name}"
        # Custom endpoints use the model id directly
        return model_config.model_name

    def _get_model_kwargs(self, model_name: str, temperature: Optional[float] = None) -> Dict[str, Any]:
        """Sampling, credentials and endpoint arguments for one catalogue model."""
        model_config = self._model_entry(model_name)
        kwargs: Dict[str, Any] = {
            "max_tokens": model_config.max_tokens or 1000,
            "temperature": temperature if temperature is not None else (model_config.temperature or 0.7),
        }

        try:
            api_key = resolve_env_var(model_config.api_key)
        except ValueError as e:
            logger.error(f"Failed to resolve API key for model {model_name}: {e}")
            raise

        if api_key:
            kwargs["api_key"] = api_key
            # LiteLLM's provider detection also reads these variables
            env_key = next(
                (key for marker, _, key in _PROVIDER_PREFIXES if marker in model_config.model_url),
                "OPENAI_API_KEY",
            )
            if os.environ.get(env_key) not in (None, api_key):
                logger.warning("Overwriting existing environment variable %s for model %s", env_key, model_name)
            os.environ[env_key] = api_key

        if not any(marker in model_config.model_url for marker, _, _ in _PROVIDER_PREFIXES):
            kwargs["api_base"] = model_config.model_url
        elif "groq" in model_config.model_url:
            kwargs["api_base"] = model_config.model_url.split("/chat/completions")[0]

        if model_config.extra_headers:
            kwargs["extra_headers"] = model_config.extra_headers

        return kwargs

    async def call_plain(
        self,
        model_name: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        user_email: Optional[str] = None,
    ) -> LLMResponse:
        """One buffered completion for ``messages``.

        ``model_name`` is a key of the model catalogue. The raw provider
        payload is kept on the response so it can be stored with the turn.
        Any provider failure is raised as ``LLMServiceError``.
        """
        request = {
            "model": self._get_litellm_model_name(model_name),
            "messages": messages,
            **self._get_model_kwargs(model_name, temperature),
        }
        logger.info("LLM call to %s with %d messages", model_name, len(messages))

        try:
            completion = await acompletion(**request)
        except Exception as exc:
            logger.error("LLM call to %s failed: %s", model_name, exc, exc_info=True)
            raise LLMServiceError(f"Failed to call LLM: {exc}") from exc

        reply = completion.choices[0].message.content or ""
        usage = getattr(completion, "usage", None)
        tokens_used = getattr(usage, "total_tokens", 0) or 0
        logger.debug("LLM reply from %s: %d chars, %d tokens", model_name, len(reply), tokens_used)
        log_metric("llm_call", user_email, model=model_name, message_count=len(messages), tokens=tokens_used)

        return LLMResponse(
            content=reply,
            model_used=model_name,
            tokens_used=tokens_used,
            raw=completion.model_dump() if hasattr(completion, "model_dump") else None,
        )

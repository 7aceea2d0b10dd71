"""Streamed completions for LiteLLMCaller."""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from litellm import acompletion

from chatsync.core.metrics_logger import log_metric
from chatsync.domain.errors import LLMError, LLMServiceError

logger = logging.getLogger(__name__)

# Hand the loop back every N deltas so a fast provider cannot starve the
# response writer.
_YIELD_EVERY = 50


def _delta_text(chunk: Any) -> Optional[str]:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    return getattr(delta, "content", None) or None


class LiteLLMStreamingMixin:
    """Adds ``stream_plain`` to a caller that resolves models and kwargs.

    The host class provides ``_get_litellm_model_name`` and
    ``_get_model_kwargs``.
    """

    async def _stream_deltas(self, model_name: str, messages: List[Dict[str, str]],
                             temperature: Optional[float]) -> AsyncIterator[str]:
        response = await acompletion(
            model=self._get_litellm_model_name(model_name),
            messages=messages,
            stream=True,
            **self._get_model_kwargs(model_name, temperature),
        )
        async for chunk in response:
            text = _delta_text(chunk)
            if text:
                yield text

    async def stream_plain(
        self,
        model_name: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        user_email: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Yield reply text deltas as the provider sends them.

        Empty deltas and role-only chunks are dropped. Provider failures,
        including ones that happen mid-stream, surface as ``LLMServiceError``.
        """
        logger.info("Streaming LLM call to %s with %d messages", model_name, len(messages))
        tokens = 0
        chars = 0
        try:
            async for text in self._stream_deltas(model_name, messages, temperature):
                tokens += 1
                chars += len(text)
                yield text
                if tokens % _YIELD_EVERY == 0:
                    await asyncio.sleep(0)
        except LLMError:
            raise
        except Exception as exc:
            logger.error("Streaming LLM call failed after %d deltas: %s", tokens, exc, exc_info=True)
            raise LLMServiceError(f"Failed to stream LLM: {exc}") from exc

        if tokens == 0:
            logger.warning("Stream from %s ended without any text", model_name)
        log_metric("llm_call", user_email, model=model_name, message_count=len(messages),
                   streamed=True, deltas=tokens, chars=chars)

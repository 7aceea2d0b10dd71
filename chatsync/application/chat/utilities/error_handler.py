"""
Error handling utilities - pure functions for model failure handling.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from chatsync.core.metrics_logger import log_metric
from chatsync.domain.errors import (
    LLMAuthenticationError,
    LLMError,
    LLMServiceError,
    LLMTimeoutError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def classify_llm_error(error: Exception) -> Tuple[type, str, str]:
    """
    Classify LLM errors and return appropriate error type, user message, and log message.

    Returns:
        Tuple of (error_class, user_message, log_message).

    NOTE: user_message MUST NOT contain raw exception details or sensitive data.
    """
    error_str = str(error)
    error_type_name = type(error).__name__
    lowered = error_str.lower()

    if "RateLimitError" in error_type_name or "rate limit" in lowered or "ratelimit" in lowered:
        user_msg = "The AI service is experiencing high traffic. Please try again in a moment."
        return (RateLimitError, user_msg, f"Rate limit error: {error_str}")

    if "timeout" in lowered or "timed out" in lowered:
        user_msg = "The AI service request timed out. Please try again."
        return (LLMTimeoutError, user_msg, f"Timeout error: {error_str}")

    if any(keyword in lowered for keyword in ["unauthorized", "authentication", "invalid api key", "invalid_api_key", "api key"]):
        user_msg = "There was an authentication issue with the AI service. Please contact your administrator."
        return (LLMAuthenticationError, user_msg, f"Authentication error: {error_str}")

    user_msg = "The AI service encountered an error. Please try again or contact support if the issue persists."
    return (LLMServiceError, user_msg, f"LLM error: {error_str}")


def to_llm_error(error: Exception, user_email: Optional[str] = None) -> LLMError:
    """Log a model failure and convert it to the matching ``LLMError``."""
    error_class, user_msg, log_msg = classify_llm_error(error)
    logger.error(log_msg, exc_info=error)
    log_metric("error", user_email, error_type=error_class.__name__)
    return error_class(user_msg, code="llm_error")


async def safe_llm_call(
    llm_call_func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Execute an LLM call, raising a classified ``LLMError`` on failure.

    A ``user_email`` keyword is forwarded to the call and used for metrics.
    """
    try:
        return await llm_call_func(*args, **kwargs)
    except Exception as e:
        raise to_llm_error(e, kwargs.get("user_email")) from e

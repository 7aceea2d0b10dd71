"""
Metrics logging utility for tracking user activity without capturing content.

Lines use the [METRIC] prefix for easy filtering, include the user, and only
ever carry metadata (counts, ids, flags), never message text.

Usage:
    from chatsync.core.metrics_logger import log_metric

    log_metric("chat_turn", user_email, streamed=True, duplicate=False)
    log_metric("session_deleted", user_email)
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def log_metric(
    event_type: str,
    user_email: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Log a metric event.

    Respects FEATURE_METRICS_LOGGING_ENABLED; when disabled nothing is logged.

    Args:
        event_type: Type of event (e.g., "chat_turn", "llm_call", "error")
        user_email: User's email address (will be sanitized)
        **kwargs: Additional non-sensitive metadata
    """
    # Import here to avoid circular dependencies
    from chatsync.core.log_sanitizer import sanitize_for_logging
    from chatsync.modules.config import config_manager

    if not config_manager.app_settings.feature_metrics_logging_enabled:
        return

    sanitized_user = sanitize_for_logging(user_email) if user_email else "unknown"

    parts = [f"[METRIC] [{sanitized_user}] {event_type}"]
    if kwargs:
        parts.append(" ".join(
            f"{key}={sanitize_for_logging(value)}" for key, value in kwargs.items()
        ))

    logger.info(" ".join(parts))

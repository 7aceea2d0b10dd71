"""Authentication helpers for the trusted reverse-proxy header."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


def get_user_from_header(x_email_header: Optional[str]) -> Optional[str]:
    """Extract user email from authentication header value."""
    if not x_email_header:
        return None
    user = x_email_header.strip()
    return user or None

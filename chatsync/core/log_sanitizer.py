"""
Log sanitization and request user helpers.
"""

import re
from typing import Any

from fastapi import Request

from chatsync.domain.errors import AuthenticationError

_CONTROL_CHARS_RE = re.compile(r'[\x00-\x1f\x7f-\x9f]')
# Unicode LINE SEPARATOR and PARAGRAPH SEPARATOR
_UNICODE_NEWLINES_RE = re.compile(r'[\u2028\u2029]')


def sanitize_for_logging(value: Any) -> str:
    """
    Sanitize a value for safe logging by removing newlines and control characters.

    Defends against log injection: CR/LF in any combination, ASCII C0/C1
    control characters and Unicode line/paragraph separators are stripped.

    Examples:
        >>> sanitize_for_logging("Hello\\nWorld")
        'HelloWorld'
        >>> sanitize_for_logging("Fake\\u2028Log")
        'FakeLog'
        >>> sanitize_for_logging(123)
        '123'
    """
    if value is None:
        return ''
    if not isinstance(value, str):
        value = str(value)
    value = _CONTROL_CHARS_RE.sub('', value)
    return _UNICODE_NEWLINES_RE.sub('', value)


async def get_current_user(request: Request) -> str:
    """Get current user from request state (set by AuthMiddleware)."""
    user_email = getattr(request.state, 'user_email', None)
    if not user_email:
        raise AuthenticationError("Authentication required", code="auth_required")
    return user_email

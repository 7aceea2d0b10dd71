"""FastAPI middleware for authentication."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from chatsync.core.auth import get_user_from_header
from chatsync.core.log_sanitizer import sanitize_for_logging

logger = logging.getLogger(__name__)

_PUBLIC_PATHS = frozenset({"/api/health", "/api/heartbeat"})


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolve the calling user from the proxy-provided header.

    The app must only be reachable through a reverse proxy that validates
    the user and strips client-supplied copies of the header. In debug mode
    a missing header falls back to ``test_user``.
    """

    def __init__(
        self,
        app,
        debug_mode: bool = False,
        auth_header_name: str = "X-User-Email",
        test_user: str = "test@test.com",
    ):
        super().__init__(app)
        self.debug_mode = debug_mode
        self.auth_header_name = auth_header_name
        self.test_user = test_user

    async def dispatch(self, request: Request, call_next) -> Response:
        logger.debug("Request: %s %s", request.method, request.url.path)

        if request.url.path in _PUBLIC_PATHS:
            return await call_next(request)

        user_email = get_user_from_header(request.headers.get(self.auth_header_name))
        if not user_email and self.debug_mode:
            user_email = self.test_user

        if not user_email:
            logger.warning(
                "Missing %s for %s",
                sanitize_for_logging(self.auth_header_name),
                sanitize_for_logging(request.url.path),
            )
            return JSONResponse(
                status_code=401,
                content={"error": "Authentication required", "code": "auth_required"},
            )

        request.state.user_email = user_email
        return await call_next(request)

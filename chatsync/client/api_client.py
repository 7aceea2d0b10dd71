"""HTTP client for the chatsync REST and streaming endpoints."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chatsync.core.log_sanitizer import sanitize_for_logging
from chatsync.domain.errors import (
    AuthenticationError,
    DomainError,
    LLMServiceError,
    LLMTimeoutError,
    MessageNotFoundError,
    RateLimitError,
    SessionCreateFailed,
    SessionNotFoundError,
    StreamTransportError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"error": response.text or response.reason_phrase}
    if not isinstance(body, dict):
        return {"error": str(body)}
    if "error" not in body and "detail" in body:
        body["error"] = str(body["detail"])
    return body


def error_from_response(response: httpx.Response) -> DomainError:
    """Map an error response to the matching domain error."""
    body = _error_body(response)
    message = body.get("error") or f"HTTP {response.status_code}"
    code = body.get("code")
    status = response.status_code

    if status == 401:
        return AuthenticationError(message, code=code or "auth_required")
    if status == 404:
        if code == "message_not_found":
            return MessageNotFoundError(message, code=code)
        return SessionNotFoundError(message, code=code or "session_not_found")
    if status in (400, 422):
        return ValidationError(message, code=code or "validation_error")
    if status == 429:
        return RateLimitError(message, code=code)
    if status == 504:
        return LLMTimeoutError(message, code=code)
    if status == 502 or code == "llm_error":
        return LLMServiceError(message, code=code)
    if code == "session_create_failed":
        return SessionCreateFailed(message, code=code)
    return DomainError(message, code=code or f"http_{status}")


class ChatApiClient:
    """Async client for ``/api/sessions`` and ``/api/chat``.

    The user identity travels in ``auth_header`` the same way the reverse
    proxy in front of the server would set it. Pass ``transport`` (for
    example ``httpx.ASGITransport(app=app)``) to talk to an in-process app.
    """

    def __init__(
        self,
        base_url: str,
        user_email: Optional[str] = None,
        auth_header: str = "X-User-Email",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if user_email:
            headers[auth_header] = user_email
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ChatApiClient":
        return cls(
            settings.base_url,
            user_email=settings.user_email,
            auth_header=settings.auth_user_header,
            timeout=settings.request_timeout,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            logger.error("Request error for %s %s: %s", method, path, sanitize_for_logging(str(exc)))
            raise TransportError(f"Could not reach chat API: {exc}", code="network_error") from exc
        if response.status_code >= 400:
            error = error_from_response(response)
            logger.warning(
                "%s %s failed with status %d: %s",
                method, path, response.status_code, sanitize_for_logging(error.message),
            )
            raise error
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError("Chat API returned a non-JSON body", code="invalid_response") from exc

    # Sessions

    async def create_session(self, title: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("POST", "/api/sessions", json={"title": title})

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/api/sessions", params={"limit": limit, "offset": offset})
        return body.get("sessions", [])

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        """Return ``{"session": ..., "messages": [...]}``."""
        return await self._request("GET", f"/api/sessions/{session_id}")

    async def rename_session(self, session_id: str, title: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/api/sessions/{session_id}", json={"title": title})

    async def delete_session(self, session_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/api/sessions/{session_id}")

    # Messages

    async def update_message(self, session_id: str, message_id: str, content: str) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/api/sessions/{session_id}/messages/{message_id}", json={"content": content}
        )

    async def truncate_after(self, session_id: str, message_id: str) -> int:
        body = await self._request(
            "DELETE", f"/api/sessions/{session_id}/messages", params={"after": message_id}
        )
        return int(body.get("deleted", 0))

    # Chat

    async def send_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Buffered send: one JSON reply once the assistant turn is stored."""
        return await self._request("POST", "/api/chat", json=payload)

    @asynccontextmanager
    async def open_stream(self, payload: Dict[str, Any]) -> AsyncIterator[AsyncIterator[str]]:
        """Streamed send, yielding an iterator over the response lines.

        Raises StreamTransportError when the response is not an event stream
        or the connection drops while reading.
        """
        try:
            async with self._client.stream(
                "POST", "/api/chat", json=payload, headers={"Accept": EVENT_STREAM_MEDIA_TYPE}
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise error_from_response(response)
                content_type = response.headers.get("content-type", "")
                if not content_type.startswith(EVENT_STREAM_MEDIA_TYPE):
                    raise StreamTransportError(
                        f"Expected an event stream, got '{content_type or 'no content type'}'",
                        code="not_a_stream",
                    )
                yield self._iter_lines(response)
        except httpx.RequestError as exc:
            logger.warning("Stream transport failed: %s", sanitize_for_logging(str(exc)))
            raise StreamTransportError(f"Stream transport failed: {exc}", code="stream_transport") from exc

    @staticmethod
    async def _iter_lines(response: httpx.Response) -> AsyncIterator[str]:
        async for line in response.aiter_lines():
            yield line

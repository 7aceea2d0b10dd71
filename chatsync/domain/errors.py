"""Domain-level errors and exceptions."""

from typing import Optional


class DomainError(Exception):
    """Base domain error."""
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(DomainError):
    """Validation error."""
    pass


class SessionError(DomainError):
    """Session-related error."""
    pass


class MessageError(DomainError):
    """Message-related error."""
    pass


class AuthenticationError(DomainError):
    """Raised when a request carries no valid credential."""
    pass


class ConfigurationError(DomainError):
    """Configuration error."""
    pass


class SessionNotFoundError(SessionError):
    """Raised when a session cannot be found or is no longer active."""
    pass


class SessionCreateFailed(SessionError):
    """Raised when a session could not be bootstrapped before a send."""
    pass


class MessageNotFoundError(MessageError):
    """Raised when a message cannot be found."""
    pass


class DuplicateSuppressed(MessageError):
    """Raised client-side when the same text is already being sent."""

    def __init__(self, fingerprint: str):
        super().__init__("Duplicate submission suppressed", code="duplicate_suppressed")
        self.fingerprint = fingerprint


class PersistenceConflict(MessageError):
    """Raised inside the message log when a client id is already stored."""

    def __init__(self, client_id: str):
        super().__init__(f"Message with client id {client_id} already exists", code="persistence_conflict")
        self.client_id = client_id


class TransportError(DomainError):
    """Raised when the chat API cannot be reached or returns an unreadable body."""
    pass


class StreamTransportError(TransportError):
    """Raised when a streaming response cannot be read as an event stream."""
    pass


class StreamParseError(DomainError):
    """Raised for a single malformed stream event line."""
    pass


class CancelledByUser(DomainError):
    """Raised when an in-flight send is aborted."""

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message, code="cancelled")


class LLMError(DomainError):
    """LLM-related error."""
    pass


class LLMServiceError(LLMError):
    """Raised when the upstream model call fails for any other reason."""
    pass


class RateLimitError(LLMError):
    """Raised when the model provider rate-limits the request."""
    pass


class LLMTimeoutError(LLMError):
    """Raised when the model call times out."""
    pass


class LLMAuthenticationError(LLMError):
    """Raised when the provider rejects the configured credentials."""
    pass

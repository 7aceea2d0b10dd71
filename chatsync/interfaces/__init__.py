"""Interfaces layer - protocols and contracts."""

from .llm import LLMProtocol, LLMResponse
from .sessions import MessageLogProtocol, SessionRepositoryProtocol

__all__ = [
    "LLMProtocol",
    "LLMResponse",
    "MessageLogProtocol",
    "SessionRepositoryProtocol",
]

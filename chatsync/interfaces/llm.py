"""LLM interface protocols."""

from typing import AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

from chatsync.modules.llm.models import LLMResponse as LLMResponse


@runtime_checkable
class LLMProtocol(Protocol):
    """Protocol for LLM interactions."""

    async def call_plain(
        self,
        model_name: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        user_email: Optional[str] = None,
    ) -> LLMResponse:
        """Plain buffered LLM call."""
        ...

    def stream_plain(
        self,
        model_name: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        user_email: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Stream text deltas as they arrive from the provider."""
        ...

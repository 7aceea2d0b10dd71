"""
Data models for LLM responses and related structures.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class LLMResponse:
    """Response from LLM call with metadata."""
    content: str
    model_used: str = ""
    tokens_used: int = 0
    raw: Optional[Any] = None

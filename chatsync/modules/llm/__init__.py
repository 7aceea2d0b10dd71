"""LLM module: LiteLLM-backed buffered and streaming calls."""

from .litellm_caller import LiteLLMCaller
from .models import LLMResponse

__all__ = ["LiteLLMCaller", "LLMResponse"]

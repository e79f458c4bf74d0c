"""
LLM Provider Abstraction Layer for Avatar Chat

This package provides a unified interface for generating replies with
different LLM providers (Google Gemini, local OpenAI-compatible servers).
"""

from avatar_chat.llm.base import LLMProvider
from avatar_chat.llm.factory import DEFAULT_MODELS, LLMProviderFactory
from avatar_chat.llm.types import (
    LLMMessage,
    LLMRequest,
    LLMError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMConnectionError,
    LLMAuthenticationError,
)

__all__ = [
    "LLMProvider",
    "LLMProviderFactory",
    "DEFAULT_MODELS",
    "LLMMessage",
    "LLMRequest",
    "LLMError",
    "LLMTimeoutError",
    "LLMRateLimitError",
    "LLMConnectionError",
    "LLMAuthenticationError",
]

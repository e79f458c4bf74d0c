"""
Abstract base class for LLM providers.
"""

from abc import ABC, abstractmethod
from typing import Optional
from avatar_chat.llm.types import LLMRequest


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    All LLM providers must implement single-shot generation and health checks.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        """
        Initialize LLM provider.

        Args:
            api_key: API key for authentication (if required)
            base_url: Base URL for API endpoint (for local/custom deployments)
        """
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def generate(self, request: LLMRequest) -> str:
        """
        Generate a complete reply from the LLM.

        A single bounded request/response call; no streaming.

        Args:
            request: LLMRequest with messages, temperature, model, etc.

        Returns:
            str: Reply text

        Raises:
            LLMTimeoutError: Request timeout
            LLMRateLimitError: Rate limit exceeded
            LLMConnectionError: Network/connection error
            LLMAuthenticationError: Authentication failure
            LLMError: Other LLM errors (including an empty reply)
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if provider is available and responding.

        This should be a lightweight check (e.g., list models).

        Returns:
            bool: True if provider is healthy, False otherwise
        """
        pass

    async def close(self) -> None:
        """Release network resources held by the provider."""
        return None

    @property
    def provider_name(self) -> str:
        """Return provider name (for logging)."""
        return self.__class__.__name__.replace("Provider", "").lower()

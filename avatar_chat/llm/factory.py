"""
Factory for creating LLM provider instances.

Supports dynamic provider selection based on configuration or runtime parameters.
"""

import logging
import os
from typing import Optional

from avatar_chat.llm.base import LLMProvider
from avatar_chat.llm.gemini import GeminiProvider
from avatar_chat.llm.local_llm import LocalLLMProvider

logger = logging.getLogger(__name__)

# Used when LLM_MODEL is unset
DEFAULT_MODELS = {
    "gemini": "gemini-2.0-flash",
    "local": "llama3.2",
}


class LLMProviderFactory:
    """
    Factory for creating LLM provider instances.

    Supports:
    - 'gemini': Google Gemini (requires GOOGLE_API_KEY)
    - 'local': Local OpenAI-compatible LLM (LOCAL_LLM_BASE_URL)
    """

    @staticmethod
    def create_provider(
        provider_name: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> LLMProvider:
        """
        Create LLM provider instance.

        Args:
            provider_name: Provider name ('gemini' or 'local')
            api_key: API key (or None to read from environment)
            base_url: Base URL (for local LLM or custom Gemini endpoint)

        Returns:
            LLMProvider: Initialized provider instance

        Raises:
            ValueError: Invalid provider name or missing configuration
        """
        provider_name = provider_name.lower().strip()

        if provider_name == "gemini":
            api_key = api_key or os.getenv("GOOGLE_API_KEY")
            if not api_key:
                raise ValueError(
                    "Google API key not found. "
                    "Set GOOGLE_API_KEY environment variable or pass api_key parameter."
                )

            logger.info("🤖 LLM Factory: Creating Gemini provider")
            return GeminiProvider(api_key=api_key, base_url=base_url)

        elif provider_name == "local":
            base_url = base_url or os.getenv("LOCAL_LLM_BASE_URL")
            if not base_url:
                # Default to Ollama's standard endpoint
                base_url = "http://localhost:11434/v1"
                logger.warning(
                    f"🤖 LLM Factory: LOCAL_LLM_BASE_URL not set, using default: {base_url}"
                )

            logger.info(f"🤖 LLM Factory: Creating Local LLM provider (base_url={base_url})")
            return LocalLLMProvider(base_url=base_url, api_key=api_key)

        else:
            raise ValueError(
                f"Unknown LLM provider: '{provider_name}'. "
                f"Supported providers: 'gemini', 'local'"
            )

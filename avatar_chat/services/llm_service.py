"""
LLM Service Layer - persona prompt and provider routing

Builds the avatar persona prompt from the user's text and the recent
conversation history, and sends it to the configured LLM provider.

Design Patterns:
- Factory pattern: LLMProviderFactory for provider instantiation
- Adapter pattern: Implements the ReplyService contract
- Singleton-like: One shared provider instance per service instance
"""

import logging
import os
from typing import Optional, Sequence

from avatar_chat.llm import (
    LLMProvider,
    LLMProviderFactory,
    DEFAULT_MODELS,
    LLMMessage,
    LLMRequest,
    LLMError,
)

logger = logging.getLogger(__name__)

PERSONA_PROMPT = (
    "You are a friendly AI avatar assistant. Respond naturally and conversationally. "
    "Keep responses brief (2-3 sentences)."
)


def build_prompt(text: str, recent_history: Sequence[str]) -> str:
    """
    Render the persona prompt for one turn.

    Args:
        text: The user's text for this turn
        recent_history: Rendered history lines ("User: ...", "AI: ..."), oldest first
    """
    context = ""
    if recent_history:
        context = f" Previous conversation context: {'. '.join(recent_history)}"
    return f"{PERSONA_PROMPT}{context}\n\nUser: {text}\n\nAI Assistant:"


class LLMService:
    """
    Reply generation service.

    Environment Variables:
    - LLM_PROVIDER: 'gemini' (default) or 'local'
    - LLM_MODEL: Model identifier (default: gemini-2.0-flash for gemini, llama3.2 for local)
    - LLM_TEMPERATURE: Sampling temperature (default: 0.7)
    - GOOGLE_API_KEY: Gemini API key
    - LOCAL_LLM_BASE_URL: Local OpenAI-compatible endpoint
    """

    def __init__(
        self,
        provider_name: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        provider: Optional[LLMProvider] = None,
    ):
        """
        Initialize LLM service.

        Args:
            provider_name: Provider to create on first use (None = read from env)
            model: Model identifier (None = read from env)
            temperature: Sampling temperature (None = read from env)
            provider: Pre-built provider instance (skips the factory)
        """
        self.provider_name = (provider_name or os.getenv("LLM_PROVIDER", "gemini")).lower()
        self.model = model or os.getenv("LLM_MODEL") or DEFAULT_MODELS.get(self.provider_name, "")
        self.temperature = temperature if temperature is not None else float(os.getenv("LLM_TEMPERATURE", "0.7"))

        # Provider (lazy initialized)
        self._provider: Optional[LLMProvider] = provider

        logger.info(f"🤖 LLM Service: Initialized (provider={self.provider_name}, model={self.model})")

    def _get_provider(self) -> LLMProvider:
        if self._provider is None:
            try:
                self._provider = LLMProviderFactory.create_provider(self.provider_name)
            except ValueError as e:
                raise LLMError(f"LLM provider not configured: {e}") from e
        return self._provider

    async def generate_reply(self, text: str, recent_history: Sequence[str]) -> str:
        """
        Generate the avatar's reply to a user turn.

        Args:
            text: The user's text
            recent_history: Bounded recent history, chronological

        Returns:
            str: Reply text (never empty)

        Raises:
            LLMError: Provider failure, misconfiguration or empty reply
        """
        prompt = build_prompt(text, recent_history)
        request = LLMRequest(
            messages=[LLMMessage(role="user", content=prompt)],
            temperature=self.temperature,
            model=self.model,
        )

        logger.debug(f"🤖 LLM Service: Prompt with {len(recent_history)} history entries")
        reply = await self._get_provider().generate(request)
        if not reply or not reply.strip():
            raise LLMError("LLM returned an empty reply")
        return reply.strip()

    async def health_check(self) -> bool:
        try:
            return await self._get_provider().health_check()
        except LLMError as e:
            logger.warning(f"🤖 LLM Service: Health check failed - {e}")
            return False

    async def close(self):
        """Close provider connections."""
        if self._provider is not None:
            await self._provider.close()
            self._provider = None
            logger.info("🤖 LLM Service: Closed provider connections")

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


# Singleton instance
_llm_service_instance: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    """
    Get singleton LLM service instance.

    This ensures provider connections are reused across sessions.

    Returns:
        LLMService: Shared service instance
    """
    global _llm_service_instance

    if _llm_service_instance is None:
        _llm_service_instance = LLMService()
        logger.info("🤖 LLM Service: Created singleton instance")

    return _llm_service_instance

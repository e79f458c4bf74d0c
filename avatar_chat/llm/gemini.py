"""
Google Gemini LLM provider implementation.

Talks to the Generative Language REST API (`models/{model}:generateContent`)
with an API key.
"""

import logging
from typing import Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from avatar_chat.llm.base import LLMProvider
from avatar_chat.llm.types import (
    LLMRequest,
    LLMError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMConnectionError,
    LLMAuthenticationError,
)

logger = logging.getLogger(__name__)


class GeminiProvider(LLMProvider):
    """
    Google Gemini LLM provider.

    System messages are sent as `systemInstruction`; user/assistant messages
    become `contents` with roles `user`/`model`.
    """

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"
    TIMEOUT_READ = 30.0  # seconds

    def __init__(self, api_key: str, base_url: Optional[str] = None):
        """
        Initialize Gemini provider.

        Args:
            api_key: Google API key
            base_url: Override API base URL (for testing)
        """
        super().__init__(api_key=api_key, base_url=base_url or self.API_BASE)

        if not self.api_key:
            raise ValueError("Google API key is required")

        self.base_url = self.base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=10.0,
                read=self.TIMEOUT_READ,
                write=10.0,
                pool=10.0,
            ),
            follow_redirects=True,
        )

        logger.info(f"🤖 LLM [gemini]: Initialized with base URL {self.base_url}")

    def _build_payload(self, request: LLMRequest) -> dict:
        system_parts = [{"text": m.content} for m in request.messages if m.role == "system"]
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in request.messages
            if m.role != "system"
        ]

        generation_config = {"temperature": request.temperature}
        if request.max_tokens:
            generation_config["maxOutputTokens"] = request.max_tokens

        payload = {"contents": contents, "generationConfig": generation_config}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    async def generate(self, request: LLMRequest) -> str:
        """
        Generate a reply from Gemini.

        Raises:
            LLMTimeoutError: Request timeout
            LLMRateLimitError: Rate limit (429 status)
            LLMAuthenticationError: Invalid API key (401/403)
            LLMConnectionError: Network error
            LLMError: Other errors, blocked or empty candidates
        """
        url = f"{self.base_url}/models/{request.model}:generateContent"
        payload = self._build_payload(request)

        logger.info(f"🤖 LLM [gemini]: Request to model '{request.model}' ({len(request.messages)} messages)")

        try:
            response = await self._post_with_retry(url, payload)
            body = response.json()

        except httpx.TimeoutException as e:
            logger.error(f"🤖 LLM [gemini]: Timeout - {e}")
            raise LLMTimeoutError(f"Gemini request timeout: {e}") from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                logger.error("🤖 LLM [gemini]: Rate limit exceeded")
                raise LLMRateLimitError("Gemini rate limit exceeded") from e
            elif status in (401, 403):
                logger.error(f"🤖 LLM [gemini]: Authentication failed (status {status})")
                raise LLMAuthenticationError("Invalid Google API key") from e
            else:
                logger.error(f"🤖 LLM [gemini]: HTTP error {status}")
                raise LLMError(f"Gemini HTTP error: {status}") from e

        except httpx.RequestError as e:
            logger.error(f"🤖 LLM [gemini]: Connection error - {e}")
            raise LLMConnectionError(f"Gemini connection error: {e}") from e

        except ValueError as e:
            logger.error(f"🤖 LLM [gemini]: Invalid JSON response - {e}")
            raise LLMError(f"Gemini returned invalid JSON: {e}") from e

        text = self._extract_text(body)
        logger.info(f"🤖 LLM [gemini]: Reply received ({len(text)} chars)")
        return text

    @staticmethod
    def _extract_text(body: dict) -> str:
        candidates = body.get("candidates") or []
        if not candidates:
            reason = (body.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise LLMError(f"Gemini returned no reply ({reason})")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts).strip()
        if not text:
            finish_reason = candidates[0].get("finishReason", "unknown")
            raise LLMError(f"Gemini returned an empty reply (finishReason={finish_reason})")
        return text

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _post_with_retry(self, url: str, payload: dict) -> httpx.Response:
        """
        POST with retry logic for transient network errors.

        Raises:
            httpx.HTTPStatusError: Non-2xx status code
            httpx.TimeoutException: Timeout
            httpx.RequestError: Connection error
        """
        response = await self.client.post(
            url,
            params={"key": self.api_key},
            json=payload,
        )
        response.raise_for_status()
        return response

    async def health_check(self) -> bool:
        """List models as a lightweight availability check."""
        try:
            response = await self.client.get(
                f"{self.base_url}/models",
                params={"key": self.api_key, "pageSize": 1},
                timeout=10.0,
            )
            response.raise_for_status()
            logger.info("🤖 LLM [gemini]: Health check passed")
            return True
        except Exception as e:
            logger.warning(f"🤖 LLM [gemini]: Health check failed - {e}")
            return False

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

"""
Local LLM provider implementation for OpenAI-compatible endpoints.

Supports any LLM service that implements the OpenAI Chat Completions API:
- Ollama (http://localhost:11434/v1)
- vLLM (http://localhost:8000/v1)
- LM Studio (http://localhost:1234/v1)
- LocalAI (http://localhost:8080/v1)
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
    LLMConnectionError,
)

logger = logging.getLogger(__name__)


class LocalLLMProvider(LLMProvider):
    """
    Local LLM provider for OpenAI-compatible endpoints.

    Uses non-streaming chat completions; one request per reply.
    """

    TIMEOUT_READ = 120.0  # seconds (local models may be slower)

    def __init__(self, base_url: str, api_key: Optional[str] = None):
        """
        Initialize Local LLM provider.

        Args:
            base_url: Base URL for OpenAI-compatible API (e.g., http://localhost:11434/v1)
            api_key: Optional API key (not required for most local deployments)
        """
        super().__init__(api_key=api_key, base_url=base_url)

        if not self.base_url:
            raise ValueError("Base URL is required for local LLM provider")

        # Ensure base_url ends without trailing slash for consistent URL construction
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

        logger.info(f"🤖 LLM [local]: Initialized with base URL {self.base_url}")

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(self, request: LLMRequest) -> str:
        """
        Generate a reply from the local LLM.

        Raises:
            LLMTimeoutError: Request timeout
            LLMConnectionError: Network/connection error
            LLMError: Other errors, including an empty reply
        """
        url = f"{self.base_url}/chat/completions"

        payload = {
            "model": request.model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "temperature": request.temperature,
            "stream": False,
        }

        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens

        logger.info(f"🤖 LLM [local]: Request to model '{request.model}' at {self.base_url}")

        try:
            response = await self._make_request_with_retry(url, self._headers(), payload)
            body = response.json()

        except httpx.TimeoutException as e:
            logger.error(f"🤖 LLM [local]: Timeout - {e}")
            raise LLMTimeoutError(f"Local LLM request timeout: {e}") from e

        except httpx.HTTPStatusError as e:
            logger.error(f"🤖 LLM [local]: HTTP error {e.response.status_code}")
            raise LLMError(f"Local LLM HTTP error: {e.response.status_code}") from e

        except httpx.RequestError as e:
            logger.error(f"🤖 LLM [local]: Connection error - {e}")
            raise LLMConnectionError(f"Local LLM connection error: {e}") from e

        except ValueError as e:
            logger.error(f"🤖 LLM [local]: Invalid JSON response - {e}")
            raise LLMError(f"Local LLM returned invalid JSON: {e}") from e

        choices = body.get("choices") or []
        content = ((choices[0].get("message") or {}).get("content") or "").strip() if choices else ""
        if not content:
            raise LLMError("Local LLM returned an empty reply")

        logger.info(f"🤖 LLM [local]: Reply received ({len(content)} chars)")
        return content

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _make_request_with_retry(
        self,
        url: str,
        headers: dict,
        payload: dict,
    ) -> httpx.Response:
        """
        Make POST request with retry logic for transient errors.

        Raises:
            httpx.HTTPStatusError: Non-2xx status code
            httpx.TimeoutException: Timeout
            httpx.RequestError: Connection error
        """
        response = await self.client.post(
            url,
            headers=headers,
            json=payload,
        )
        response.raise_for_status()
        return response

    async def health_check(self) -> bool:
        """
        Check if local LLM endpoint is available.

        Returns:
            bool: True if endpoint is healthy, False otherwise
        """
        try:
            response = await self.client.get(f"{self.base_url}/models", headers=self._headers(), timeout=10.0)
            response.raise_for_status()
            logger.info("🤖 LLM [local]: Health check passed")
            return True
        except Exception as e:
            logger.warning(f"🤖 LLM [local]: Health check failed - {e}")
            return False

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

"""
Avatar Chat - STTService

Purpose: Speech-to-Text adapter for Google Cloud Speech-to-Text (REST).
Turns one complete recorded clip into a transcript; no streaming recognition.

Key Features:
- Declared container format resolved to a recognition encoding
- Single bounded request per clip (speech:recognize)
- Lazy HTTP client with connection pooling
- Retry on transient network errors (tenacity)
- Empty transcript ("") means no speech was detected

Design Patterns:
- Adapter Pattern: Implements the TranscriptionService contract
- Connection Pool Pattern: Single HTTP client for all sessions
"""

import os
import base64
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from avatar_chat.config.logging_config import get_logger

logger = get_logger(__name__)

# Configuration from environment variables
GOOGLE_API_KEY = os.getenv('GOOGLE_API_KEY', '')
STT_API_URL = os.getenv('STT_API_URL', 'https://speech.googleapis.com/v1/speech:recognize')
STT_LANGUAGE_CODE = os.getenv('STT_LANGUAGE_CODE', 'en-US')
STT_MODEL = os.getenv('STT_MODEL', 'latest_short')
STT_HTTP_TIMEOUT_S = float(os.getenv('STT_HTTP_TIMEOUT_S', '30'))


class STTError(Exception):
    """Speech-to-Text request failed."""
    pass


@dataclass(frozen=True)
class RecognitionConfig:
    """Recognition encoding and sample rate for one container format."""
    encoding: str
    sample_rate_hertz: int


FORMAT_CONFIG: Dict[str, RecognitionConfig] = {
    'webm': RecognitionConfig('WEBM_OPUS', 48000),
    'wav': RecognitionConfig('LINEAR16', 44100),
    'mp3': RecognitionConfig('MP3', 44100),
    'ogg': RecognitionConfig('OGG_OPUS', 48000),
}

DEFAULT_FORMAT = 'wav'


def resolve_format(format_hint: Optional[str]) -> RecognitionConfig:
    """Map a declared container format to its recognition config (unknown → wav)."""
    key = (format_hint or '').strip().lower()
    if key not in FORMAT_CONFIG:
        logger.debug(f"🎙️ Unknown audio format '{format_hint}', falling back to {DEFAULT_FORMAT}")
        key = DEFAULT_FORMAT
    return FORMAT_CONFIG[key]


class STTService:
    """
    Speech-to-Text service for Google Cloud Speech-to-Text.

    Usage:
        stt_service = STTService()
        transcript = await stt_service.transcribe(audio_bytes, "webm")
        if not transcript:
            ...  # no speech detected

    Configuration:
        - GOOGLE_API_KEY: API key for Google Cloud
        - STT_API_URL: Recognize endpoint (default: speech.googleapis.com v1)
        - STT_LANGUAGE_CODE: Recognition language (default: en-US)
        - STT_MODEL: Recognition model (default: latest_short)
        - STT_HTTP_TIMEOUT_S: HTTP timeout (default: 30)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        language_code: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else GOOGLE_API_KEY
        self.api_url = api_url or STT_API_URL
        self.language_code = language_code or STT_LANGUAGE_CODE
        self.model = model or STT_MODEL
        self.timeout = timeout_s or STT_HTTP_TIMEOUT_S

        # HTTP client (lazy initialized)
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(f"🎙️ STTService initialized (model={self.model}, language={self.language_code})")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    def build_request(self, audio: bytes, format_hint: str) -> dict:
        """Build the speech:recognize request body for one clip."""
        config = resolve_format(format_hint)
        return {
            'audio': {'content': base64.b64encode(audio).decode('ascii')},
            'config': {
                'encoding': config.encoding,
                'sampleRateHertz': config.sample_rate_hertz,
                'languageCode': self.language_code,
                'enableAutomaticPunctuation': True,
                'model': self.model,
            },
        }

    async def transcribe(self, audio: bytes, format_hint: str) -> str:
        """
        Transcribe a complete audio clip.

        Args:
            audio: Encoded audio clip
            format_hint: Declared container format (webm, wav, mp3, ogg)

        Returns:
            str: Transcript, or "" when no speech was recognized

        Raises:
            STTError: Request failed or response could not be parsed
        """
        if not self.api_key:
            raise STTError("GOOGLE_API_KEY is not configured")

        body = self.build_request(audio, format_hint)
        logger.debug(
            f"🎙️ STT request: {len(audio)} bytes, "
            f"encoding={body['config']['encoding']}, rate={body['config']['sampleRateHertz']}"
        )

        try:
            response = await self._post_with_retry(body)
            result = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ STT HTTP error {e.response.status_code}: {e.response.text[:200]}")
            raise STTError(f"Speech-to-Text HTTP error: {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            logger.error(f"❌ STT request timeout: {e}")
            raise STTError(f"Speech-to-Text timeout: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"❌ STT connection error: {e}")
            raise STTError(f"Speech-to-Text connection error: {e}") from e
        except ValueError as e:
            raise STTError(f"Speech-to-Text returned invalid JSON: {e}") from e

        transcript = self.parse_transcript(result)
        logger.info(f"🎙️ Transcription: \"{transcript[:80]}\" ({len(transcript)} chars)")
        return transcript

    @staticmethod
    def parse_transcript(result: dict) -> str:
        """Join the top alternative of each result with newlines."""
        lines = []
        for item in result.get('results') or []:
            alternatives = item.get('alternatives') or []
            if alternatives:
                lines.append(alternatives[0].get('transcript', ''))
        return '\n'.join(lines).strip()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _post_with_retry(self, body: dict) -> httpx.Response:
        client = await self._get_client()
        response = await client.post(self.api_url, params={'key': self.api_key}, json=body)
        response.raise_for_status()
        return response

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("🔌 STTService HTTP client closed")


# Singleton instance
_stt_service_instance: Optional[STTService] = None


def get_stt_service() -> STTService:
    """Get singleton STT service instance."""
    global _stt_service_instance

    if _stt_service_instance is None:
        _stt_service_instance = STTService()

    return _stt_service_instance

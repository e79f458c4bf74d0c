"""
Avatar Chat - TTSService

Purpose: Text-to-Speech adapter for Google Cloud Text-to-Speech (REST).
Synthesizes one complete reply into an MP3 clip.

Key Features:
- Fixed neural voice with per-call prosody (speaking rate, pitch)
- Lazy HTTP client with connection pooling
- Retry on transient network errors (tenacity)
- Voice catalogue lookup for the admin surface

Design Patterns:
- Adapter Pattern: Implements the SpeechSynthesisService contract
- Connection Pool Pattern: Single HTTP client for all sessions
"""

import os
import base64
import binascii
from typing import Any, Dict, List, Optional

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
TTS_API_BASE = os.getenv('TTS_API_BASE', 'https://texttospeech.googleapis.com/v1')
TTS_LANGUAGE_CODE = os.getenv('TTS_LANGUAGE_CODE', 'en-US')
TTS_VOICE_NAME = os.getenv('TTS_VOICE_NAME', 'en-US-Neural2-F')
TTS_VOICE_GENDER = os.getenv('TTS_VOICE_GENDER', 'FEMALE')
TTS_HTTP_TIMEOUT_S = float(os.getenv('TTS_HTTP_TIMEOUT_S', '30'))


class TTSError(Exception):
    """Text-to-Speech request failed."""
    pass


class TTSService:
    """
    Text-to-Speech service for Google Cloud Text-to-Speech.

    Usage:
        tts_service = TTSService()
        mp3_bytes = await tts_service.synthesize("Hello!", speaking_rate=1.1, pitch=2.0)

    Configuration:
        - GOOGLE_API_KEY: API key for Google Cloud
        - TTS_API_BASE: API base URL (default: texttospeech.googleapis.com/v1)
        - TTS_LANGUAGE_CODE: Voice language (default: en-US)
        - TTS_VOICE_NAME: Voice name (default: en-US-Neural2-F)
        - TTS_VOICE_GENDER: SSML gender (default: FEMALE)
        - TTS_HTTP_TIMEOUT_S: HTTP timeout (default: 30)
    """

    audio_format = 'mp3'

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        voice_name: Optional[str] = None,
        language_code: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else GOOGLE_API_KEY
        self.api_base = (api_base or TTS_API_BASE).rstrip('/')
        self.voice_name = voice_name or TTS_VOICE_NAME
        self.language_code = language_code or TTS_LANGUAGE_CODE
        self.voice_gender = TTS_VOICE_GENDER
        self.timeout = timeout_s or TTS_HTTP_TIMEOUT_S

        # HTTP client (lazy initialized)
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(f"🔊 TTSService initialized (voice={self.voice_name}, language={self.language_code})")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    def build_request(self, text: str, speaking_rate: float, pitch: float) -> dict:
        return {
            'input': {'text': text},
            'voice': {
                'languageCode': self.language_code,
                'name': self.voice_name,
                'ssmlGender': self.voice_gender,
            },
            'audioConfig': {
                'audioEncoding': 'MP3',
                'speakingRate': speaking_rate,
                'pitch': pitch,
                'volumeGainDb': 0.0,
            },
        }

    async def synthesize(self, text: str, *, speaking_rate: float = 1.0, pitch: float = 0.0) -> bytes:
        """
        Synthesize speech for a reply.

        Args:
            text: Text to speak
            speaking_rate: Playback speed multiplier
            pitch: Pitch shift in semitones

        Returns:
            bytes: MP3 audio

        Raises:
            TTSError: Request failed or returned no audio
        """
        if not self.api_key:
            raise TTSError("GOOGLE_API_KEY is not configured")

        logger.info(
            f"🔊 TTS request: text=\"{text[:50]}...\", voice={self.voice_name}, "
            f"rate={speaking_rate}, pitch={pitch}"
        )

        body = self.build_request(text, speaking_rate, pitch)
        try:
            response = await self._request_with_retry('POST', f"{self.api_base}/text:synthesize", json=body)
            result = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ TTS HTTP error {e.response.status_code}: {e.response.text[:200]}")
            raise TTSError(f"Text-to-Speech HTTP error: {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            logger.error(f"❌ TTS request timeout: {e}")
            raise TTSError(f"Text-to-Speech timeout: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"❌ TTS connection error: {e}")
            raise TTSError(f"Text-to-Speech connection error: {e}") from e
        except ValueError as e:
            raise TTSError(f"Text-to-Speech returned invalid JSON: {e}") from e

        content = result.get('audioContent')
        if not content:
            raise TTSError("Text-to-Speech returned no audio content")

        try:
            audio = base64.b64decode(content)
        except (binascii.Error, ValueError) as e:
            raise TTSError(f"Text-to-Speech returned invalid audio content: {e}") from e

        logger.info(f"✅ TTS complete: {len(audio)} bytes")
        return audio

    async def list_voices(self, language_code: str = 'en-US') -> List[Dict[str, Any]]:
        """
        List available voices for a language.

        Returns:
            List of voice dicts, or [] on failure (graceful degradation)
        """
        if not self.api_key:
            logger.warning("⚠️ GOOGLE_API_KEY is not configured, no voices available")
            return []

        try:
            response = await self._request_with_retry(
                'GET', f"{self.api_base}/voices", params={'languageCode': language_code}
            )
            voices = response.json().get('voices') or []
            logger.debug(f"🔊 Found {len(voices)} voices for {language_code}")
            return voices
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️ Failed to list TTS voices: {e}")
            return []

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        params = dict(kwargs.pop('params', None) or {})
        params['key'] = self.api_key
        response = await client.request(method, url, params=params, **kwargs)
        response.raise_for_status()
        return response

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("🔌 TTSService HTTP client closed")


# Singleton instance
_tts_service_instance: Optional[TTSService] = None


def get_tts_service() -> TTSService:
    """Get singleton TTS service instance."""
    global _tts_service_instance

    if _tts_service_instance is None:
        _tts_service_instance = TTSService()

    return _tts_service_instance

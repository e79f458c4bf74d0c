"""
Microphone capture for the terminal client.

Owns at most one sounddevice input stream and at most one recording. Frames
arrive on the PortAudio callback thread and are buffered under a lock; stop()
turns the buffer into an immutable WAV clip.
"""

import io
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import numpy as np
import soundfile as sf

from avatar_chat.config.logging_config import get_logger
from avatar_chat.types.error_events import TurnErrorKind

logger = get_logger(__name__)


class CaptureError(Exception):
    """Microphone could not be acquired."""

    def __init__(self, kind: TurnErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class AudioClip:
    """A finished recording"""
    data: bytes
    format: str
    sample_rate: int
    duration_s: float


def detect_audio_format(data: bytes) -> str:
    """Identify the container from its leading bytes (unknown → wav)."""
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    if data[:4] == b"OggS":
        return "ogg"
    if data[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    if data[:3] == b"ID3" or (len(data) > 1 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0):
        return "mp3"
    if data[:4] == b"fLaC":
        return "flac"
    return "wav"


def _default_input_stream() -> Callable[..., Any]:
    import sounddevice as sd
    return sd.InputStream


def _classify_device_error(error: Exception) -> TurnErrorKind:
    text = str(error).lower()
    if isinstance(error, PermissionError) or "permission" in text or "denied" in text:
        return TurnErrorKind.PERMISSION_DENIED
    return TurnErrorKind.DEVICE_UNAVAILABLE


class AudioCaptureManager:
    """
    Exclusive owner of the microphone stream.

    Usage:
        with AudioCaptureManager() as capture:
            capture.start()
            ...
            clip = capture.stop()
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 1,
        device: Optional[Any] = None,
        stream_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            sample_rate: Capture rate in Hz
            channels: 1 (mono) or 2 (stereo)
            device: sounddevice input device (None = system default)
            stream_factory: Builds the input stream; sounddevice.InputStream by default
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device
        self._stream_factory = stream_factory

        self.stream = None
        self._frames: List[np.ndarray] = []
        self._recording = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self.stream is not None

    @property
    def is_recording(self) -> bool:
        return self._recording

    def _audio_cb(self, indata, frames, time_info, status):
        if status:
            logger.warning(f"⚠️ Capture stream status: {status}")
        with self._lock:
            if self._recording:
                self._frames.append(indata.copy())

    def open(self) -> None:
        """
        Acquire the microphone stream; no-op when already open.

        Raises:
            CaptureError: permission_denied or device_unavailable
        """
        if self.stream is not None:
            return

        try:
            factory = self._stream_factory or _default_input_stream()
            stream = factory(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                callback=self._audio_cb,
            )
        except Exception as e:
            # sounddevice.PortAudioError, or OSError when PortAudio itself is missing
            raise self._open_failed(e) from e

        try:
            stream.start()
        except Exception as e:
            try:
                stream.close()
            except Exception as close_error:
                logger.debug(f"Could not close unstarted microphone stream: {close_error}")
            raise self._open_failed(e) from e

        self.stream = stream
        logger.info(f"🎤 Microphone open @ {self.sample_rate} Hz, {self.channels} channel(s)")

    def _open_failed(self, error: Exception) -> CaptureError:
        kind = _classify_device_error(error)
        logger.error(f"❌ Could not open microphone ({kind.value}): {error}")
        return CaptureError(kind, f"Could not open microphone: {error}")

    def start(self) -> None:
        """Begin a recording, opening the stream if needed."""
        if self._recording:
            logger.warning("⚠️ Recording already in progress")
            return

        self.open()
        with self._lock:
            self._frames = []
            self._recording = True
        logger.info("🔴 Recording started")

    def stop(self) -> Optional[AudioClip]:
        """Finish the recording; returns None when nothing was recording."""
        with self._lock:
            if not self._recording:
                return None
            self._recording = False
            frames, self._frames = self._frames, []

        if frames:
            samples = np.concatenate(frames, axis=0)
        else:
            samples = np.zeros((0, self.channels), dtype=np.int16)

        buffer = io.BytesIO()
        sf.write(buffer, samples, self.sample_rate, format="WAV", subtype="PCM_16")
        data = buffer.getvalue()

        clip = AudioClip(
            data=data,
            format=detect_audio_format(data),
            sample_rate=self.sample_rate,
            duration_s=len(samples) / float(self.sample_rate),
        )
        logger.info(f"⏹️ Recording stopped: {clip.duration_s:.2f}s, {len(data)} bytes ({clip.format})")
        return clip

    def close(self) -> None:
        """Stop any recording and release the stream; safe to call repeatedly."""
        with self._lock:
            self._recording = False
            self._frames = []

        stream, self.stream = self.stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.debug(f"Microphone stream already closed: {e}")
            logger.info("🎤 Microphone released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

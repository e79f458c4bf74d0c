"""
Reply audio playback for the terminal client.

One playback at a time: play() first stops and releases the current handle.
Audio is decoded with PyAV in a worker thread and written to an AudioSink
(sounddevice OutputStream by default), also in a worker thread.

Signal contract:
- playback_started fires once per play() call, before decoding
- playback_ended fires exactly once per play() call: natural end, stop(),
  or any decode/output failure
"""

import asyncio
import itertools
import threading
from io import BytesIO
from typing import Any, Callable, Optional, Protocol, Set, Tuple

import av
import numpy as np

from avatar_chat.client.events import EventBus
from avatar_chat.config.logging_config import get_logger

logger = get_logger(__name__)

PLAYBACK_STARTED = "playback_started"
PLAYBACK_ENDED = "playback_ended"

Decoder = Callable[[bytes, str], Tuple[np.ndarray, int]]


def decode_audio_bytes(data: bytes, format: str = "mp3") -> Tuple[np.ndarray, int]:
    """
    Decode an encoded clip to interleaved float32 PCM.

    Returns:
        (samples shaped (frames, channels), sample_rate)

    Raises:
        ValueError: Empty input or no audio stream
        av.error.FFmpegError: Undecodable data
    """
    if not data:
        raise ValueError("No audio data to decode")

    container = av.open(BytesIO(data), 'r')
    try:
        if not container.streams.audio:
            raise ValueError(f"No audio stream in {format} data")
        stream = container.streams.audio[0]
        channels = 2 if stream.channels >= 2 else 1
        resampler = av.AudioResampler(
            format="flt",
            layout="stereo" if channels == 2 else "mono",
            rate=stream.rate,
        )

        chunks = []
        for frame in container.decode(stream):
            for out in resampler.resample(frame):
                chunks.append(out.to_ndarray().reshape(-1, channels))
        for out in resampler.resample(None):
            chunks.append(out.to_ndarray().reshape(-1, channels))
        sample_rate = stream.rate
    finally:
        container.close()

    if not chunks:
        raise ValueError(f"No audio frames in {format} data")

    samples = np.concatenate(chunks, axis=0).astype(np.float32)
    logger.debug(f"🔊 Decoded {format}: {len(samples)} frames @ {sample_rate} Hz, {channels} channel(s)")
    return samples, sample_rate


class AudioSink(Protocol):
    def play(self, samples: np.ndarray, sample_rate: int, stop_event: threading.Event) -> None:
        """Blocking write of all samples; returns early once stop_event is set."""
        ...


class SoundDeviceSink:
    """
    Speaker output through a sounddevice OutputStream.

    Writes in small blocks so a stop request takes effect quickly.
    """

    block_size = 1024

    def __init__(self, device: Optional[Any] = None):
        self.device = device

    def play(self, samples: np.ndarray, sample_rate: int, stop_event: threading.Event) -> None:
        import sounddevice as sd

        if samples.size == 0:
            return

        with sd.OutputStream(
            samplerate=sample_rate,
            channels=samples.shape[1],
            dtype="float32",
            device=self.device,
        ) as stream:
            for start in range(0, len(samples), self.block_size):
                if stop_event.is_set():
                    break
                stream.write(np.ascontiguousarray(samples[start:start + self.block_size]))


class PlaybackHandle:
    """One play() call; ends exactly once."""

    def __init__(self, playback_id: int, format: str):
        self.id = playback_id
        self.format = format
        self.error: Optional[Exception] = None
        self.stop_event = threading.Event()
        self._done = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    async def wait(self) -> None:
        """Wait until this playback has ended."""
        await self._done.wait()

    def __repr__(self) -> str:
        return f"PlaybackHandle(id={self.id}, format={self.format!r}, done={self.is_done})"


class PlaybackManager:
    """
    Exclusive owner of the playback resource.

    Usage:
        playback = PlaybackManager()
        playback.on_playback_start(lambda handle: ...)
        playback.on_playback_end(lambda handle: ...)
        handle = await playback.play(mp3_bytes, "mp3")
        await handle.wait()
    """

    def __init__(self, sink: Optional[AudioSink] = None, decoder: Optional[Decoder] = None):
        self.sink = sink or SoundDeviceSink()
        self._decoder = decoder or decode_audio_bytes
        self._bus = EventBus()
        self._current: Optional[PlaybackHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._ids = itertools.count(1)

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    def on_playback_start(self, callback: Callable[[PlaybackHandle], Any]) -> None:
        self._bus.on(PLAYBACK_STARTED, callback)

    def on_playback_end(self, callback: Callable[[PlaybackHandle], Any]) -> None:
        self._bus.on(PLAYBACK_ENDED, callback)

    async def play(self, data: bytes, format: str = "mp3") -> PlaybackHandle:
        """
        Play a clip, replacing whatever is currently playing.

        Never raises for bad audio; failures end the handle and are logged.
        """
        await self.stop()

        handle = PlaybackHandle(next(self._ids), format)
        self._current = handle
        logger.info(f"🔊 Playback #{handle.id} started ({len(data)} bytes, {format})")
        await self._bus.emit(PLAYBACK_STARTED, handle)

        task = asyncio.create_task(self._run(handle, data, format))
        handle._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def _run(self, handle: PlaybackHandle, data: bytes, format: str) -> None:
        try:
            samples, sample_rate = await asyncio.to_thread(self._decoder, data, format)
            if not handle.stopped:
                await asyncio.to_thread(self.sink.play, samples, sample_rate, handle.stop_event)
        except Exception as e:
            handle.error = e
            logger.error(f"❌ Playback #{handle.id} failed: {e}")
        finally:
            await self._finish(handle)

    async def _finish(self, handle: PlaybackHandle) -> None:
        if handle.is_done:
            return
        handle._done.set()
        if self._current is handle:
            self._current = None
        logger.debug(f"🔇 Playback #{handle.id} ended")
        await self._bus.emit(PLAYBACK_ENDED, handle)

    async def stop(self) -> None:
        """
        Stop the current playback; no-op when idle.

        Returns once the sink has let go of the output device, so the next
        play() never overlaps it. playback_ended fires after that release.
        """
        handle = self._current
        if handle is None:
            return
        handle.stop_event.set()
        task = handle._task
        if task is not None and task is not asyncio.current_task():
            # a cancelled caller must not cancel the worker
            await asyncio.wait({task})
        await self._finish(handle)

    async def close(self) -> None:
        """Stop playback and wait for worker threads to wind down."""
        await self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

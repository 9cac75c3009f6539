"""Render targets and remote audio playback.

The visual layer is opaque to the session core: anything implementing
RenderTarget can receive a video track. FrameCallbackRenderTarget is a
minimal implementation that hands decoded frames to a callback.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any, Protocol

import numpy as np
from livekit import rtc

logger = logging.getLogger(__name__)


class RenderTarget(Protocol):
    """Something a video track can be drawn into."""

    async def attach(self, track: Any) -> None: ...

    async def detach(self) -> None: ...


class AudioPlayback(Protocol):
    """Plays remote audio tracks, one per participant."""

    def play(self, participant_id: str, track: Any) -> None: ...

    async def stop(self, participant_id: str) -> None: ...

    async def stop_all(self) -> None: ...


def _log_task_failure(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    if (error := task.exception()) is not None:
        logger.error("Media pump failed", extra={"task": task.get_name(), "error": str(error)})


class FrameCallbackRenderTarget:
    """Pumps frames of the attached video track into ``on_frame``."""

    def __init__(self, on_frame: Callable[[rtc.VideoFrame], None]) -> None:
        self._on_frame = on_frame
        self._stream: rtc.VideoStream | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_attached(self) -> bool:
        return self._task is not None

    async def attach(self, track: Any) -> None:
        await self.detach()
        self._stream = rtc.VideoStream(track)
        self._task = asyncio.create_task(self._pump(self._stream), name="render-target")
        self._task.add_done_callback(_log_task_failure)

    async def detach(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._stream is not None:
            stream, self._stream = self._stream, None
            await stream.aclose()

    async def _pump(self, stream: rtc.VideoStream) -> None:
        async for event in stream:
            self._on_frame(event.frame)


class RemoteAudioPlayer:
    """Plays remote audio through the default PortAudio output device."""

    def __init__(self, sample_rate: int = 48000, num_channels: int = 1) -> None:
        self.sample_rate = sample_rate
        self.num_channels = num_channels
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def playing(self) -> set[str]:
        return set(self._tasks)

    def play(self, participant_id: str, track: Any) -> None:
        """Start playing ``track``; replaces any playback for the same participant."""
        previous = self._tasks.pop(participant_id, None)
        if previous is not None:
            previous.cancel()

        task = asyncio.create_task(self._pump(track), name=f"audio-{participant_id}")
        task.add_done_callback(_log_task_failure)
        self._tasks[participant_id] = task

    async def stop(self, participant_id: str) -> None:
        task = self._tasks.pop(participant_id, None)
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def stop_all(self) -> None:
        for participant_id in list(self._tasks):
            await self.stop(participant_id)

    async def _pump(self, track: Any) -> None:
        import sounddevice as sd

        stream = rtc.AudioStream(
            track, sample_rate=self.sample_rate, num_channels=self.num_channels
        )
        output = sd.OutputStream(
            samplerate=self.sample_rate, channels=self.num_channels, dtype="int16"
        )
        output.start()
        try:
            async for event in stream:
                samples = np.frombuffer(event.frame.data, dtype=np.int16)
                await asyncio.to_thread(output.write, samples.reshape(-1, self.num_channels))
        finally:
            output.stop()
            output.close()
            await stream.aclose()

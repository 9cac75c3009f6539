"""Local capture tracks and the track factory.

A LocalTrack couples a capture device with a LiveKit source/track pair:
microphones are read through a PortAudio input stream (sounddevice),
cameras through OpenCV. Each track is released exactly once, by the session
teardown path.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import numpy as np
from livekit import rtc

from videocall.config import MediaConfig, RetryConfig
from videocall.engine import MediaKind
from videocall.retry import backoff_from_config, create_with_retry

logger = logging.getLogger(__name__)

# PortAudio delivers 10ms blocks; frames beyond this backlog are dropped
AUDIO_QUEUE_SIZE = 50


class LocalTrack(ABC):
    """Capture handle for one local audio or video stream."""

    kind: MediaKind

    def __init__(self, name: str, rtc_track: Any) -> None:
        self.name = name
        self.rtc_track = rtc_track
        self._pump_task: asyncio.Task[None] | None = None
        self._released = False

    @property
    def is_released(self) -> bool:
        return self._released

    @abstractmethod
    def publish_options(self) -> rtc.TrackPublishOptions:
        """Options used when publishing this track."""

    @abstractmethod
    async def _stop_capture(self) -> None:
        """Stop and release the underlying capture device."""

    @abstractmethod
    async def _close_source(self) -> None:
        """Close the engine source."""

    async def stop(self) -> None:
        """Halt capture; the track stops producing frames."""
        if self._pump_task is not None:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
            self._pump_task = None
        await self._stop_capture()

    async def close(self) -> None:
        """Release the engine source."""
        await self._close_source()

    async def release(self) -> None:
        """Stop and close the track. Only the first call has any effect.

        Raises:
            Exception: Whatever stop() or close() raised; close() still runs
                when stop() fails
        """
        if self._released:
            return
        self._released = True

        try:
            await self.stop()
        finally:
            await self.close()

        logger.debug("Local track released", extra={"track": self.name})


class MicrophoneTrack(LocalTrack):
    """Microphone capture pushed into an rtc.AudioSource."""

    kind = MediaKind.AUDIO

    def __init__(self, config: MediaConfig) -> None:
        self.config = config
        self._source = rtc.AudioSource(config.audio_sample_rate, num_channels=config.audio_channels)
        super().__init__(
            "microphone",
            rtc.LocalAudioTrack.create_audio_track("microphone", self._source),
        )
        self._stream: Any = None
        self._queue: asyncio.Queue[np.ndarray] = asyncio.Queue(maxsize=AUDIO_QUEUE_SIZE)

    @classmethod
    async def open(cls, config: MediaConfig) -> "MicrophoneTrack":
        """Create the track and start capturing from the default input device."""
        track = cls(config)
        try:
            track.start()
        except BaseException:
            await track.close()
            raise
        return track

    def publish_options(self) -> rtc.TrackPublishOptions:
        return rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)

    def start(self) -> None:
        import sounddevice as sd

        loop = asyncio.get_running_loop()

        def on_block(indata: Any, frames: int, time_info: Any, status: Any) -> None:
            # PortAudio thread
            loop.call_soon_threadsafe(self._enqueue, indata.copy())

        self._stream = sd.InputStream(
            samplerate=self.config.audio_sample_rate,
            channels=self.config.audio_channels,
            dtype="int16",
            blocksize=self.config.audio_sample_rate // 100,
            callback=on_block,
        )
        self._stream.start()
        self._pump_task = asyncio.create_task(self._pump())

        logger.info(
            "Microphone capture started",
            extra={"sample_rate": self.config.audio_sample_rate},
        )

    def _enqueue(self, block: np.ndarray) -> None:
        try:
            self._queue.put_nowait(block)
        except asyncio.QueueFull:
            logger.debug("Microphone backlog full, dropping block")

    async def _pump(self) -> None:
        while True:
            block = await self._queue.get()
            frame = rtc.AudioFrame(
                block.tobytes(),
                self.config.audio_sample_rate,
                self.config.audio_channels,
                block.shape[0],
            )
            await self._source.capture_frame(frame)

    async def _stop_capture(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.stop()
        finally:
            stream.close()

    async def _close_source(self) -> None:
        await self._source.aclose()


class CameraTrack(LocalTrack):
    """Camera capture pushed into an rtc.VideoSource."""

    kind = MediaKind.VIDEO

    def __init__(self, config: MediaConfig, capture: Any) -> None:
        self.config = config
        self._capture = capture
        self._source = rtc.VideoSource(config.video_width, config.video_height)
        super().__init__(
            "camera",
            rtc.LocalVideoTrack.create_video_track("camera", self._source),
        )

    @classmethod
    async def open(cls, config: MediaConfig) -> "CameraTrack":
        """Open the configured camera and start capturing.

        Raises:
            RuntimeError: If OpenCV cannot open the camera index
        """
        import cv2

        capture = await asyncio.to_thread(cv2.VideoCapture, config.camera_index)
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Camera {config.camera_index} could not be opened")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, config.video_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, config.video_height)
        capture.set(cv2.CAP_PROP_FPS, config.video_fps)

        try:
            track = cls(config, capture)
        except BaseException:
            capture.release()
            raise
        track.start()
        return track

    def publish_options(self) -> rtc.TrackPublishOptions:
        return rtc.TrackPublishOptions(
            source=rtc.TrackSource.SOURCE_CAMERA,
            video_encoding=rtc.VideoEncoding(
                max_framerate=self.config.video_fps,
                max_bitrate=self.config.video_max_bitrate,
            ),
        )

    def start(self) -> None:
        self._pump_task = asyncio.create_task(self._pump())
        logger.info(
            "Camera capture started",
            extra={
                "camera_index": self.config.camera_index,
                "width": self.config.video_width,
                "height": self.config.video_height,
            },
        )

    async def _pump(self) -> None:
        import cv2

        width, height = self.config.video_width, self.config.video_height
        interval = 1.0 / self.config.video_fps

        while True:
            ok, image = await asyncio.to_thread(self._capture.read)
            if not ok:
                await asyncio.sleep(interval)
                continue

            if image.shape[1] != width or image.shape[0] != height:
                image = cv2.resize(image, (width, height))

            rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
            self._source.capture_frame(
                rtc.VideoFrame(width, height, rtc.VideoBufferType.RGBA, rgba.tobytes())
            )

    async def _stop_capture(self) -> None:
        await asyncio.to_thread(self._capture.release)

    async def _close_source(self) -> None:
        await self._source.aclose()


TrackOpener = Callable[[MediaConfig], Awaitable[LocalTrack]]


class TrackFactory:
    """Creates local audio/video tracks with bounded retry.

    Audio and video are created independently; the caller decides whether
    a partial set is enough to continue.
    """

    def __init__(
        self,
        media: MediaConfig | None = None,
        retry: RetryConfig | None = None,
        microphone_opener: TrackOpener = MicrophoneTrack.open,
        camera_opener: TrackOpener = CameraTrack.open,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.media = media or MediaConfig()
        self.retry = retry or RetryConfig()
        self._backoff = backoff_from_config(self.retry)
        self._microphone_opener = microphone_opener
        self._camera_opener = camera_opener
        self._sleep = sleep

    async def create_microphone_track(self) -> LocalTrack:
        """Create the microphone track.

        Raises:
            MediaError: If every attempt failed
        """
        return await create_with_retry(
            lambda: self._microphone_opener(self.media),
            max_attempts=self.retry.max_attempts,
            backoff=self._backoff,
            sleep=self._sleep,
            label="microphone",
        )

    async def create_camera_track(self) -> LocalTrack:
        """Create the camera track.

        Raises:
            MediaError: If every attempt failed
        """
        return await create_with_retry(
            lambda: self._camera_opener(self.media),
            max_attempts=self.retry.max_attempts,
            backoff=self._backoff,
            sleep=self._sleep,
            label="camera",
        )

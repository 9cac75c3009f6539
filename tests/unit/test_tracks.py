"""Unit tests for local tracks and the track factory.

LiveKit sources and the capture libraries are mocked; only the track
lifecycle and retry wiring are exercised.
"""

import asyncio
import sys
from collections.abc import Iterator
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pytest

from tests.helpers.fakes import FakeTrack
from videocall.config import MediaConfig, RetryConfig
from videocall.engine import MediaKind
from videocall.errors import MediaError
from videocall.tracks import CameraTrack, MicrophoneTrack, TrackFactory


@pytest.fixture
def mock_rtc() -> Iterator[Mock]:
    """Patch the livekit.rtc module as seen by videocall.tracks."""
    with patch("videocall.tracks.rtc") as rtc:
        rtc.AudioSource.return_value.aclose = AsyncMock()
        rtc.VideoSource.return_value.aclose = AsyncMock()
        yield rtc


def make_cv2(opened: bool = True, frames: list | None = None) -> Mock:
    cv2 = Mock()
    capture = Mock()
    capture.isOpened.return_value = opened
    queued = list(frames or [])

    def read() -> tuple:
        return queued.pop(0) if queued else (False, None)

    capture.read.side_effect = read
    cv2.VideoCapture.return_value = capture
    cv2.resize.side_effect = lambda image, size: np.zeros((size[1], size[0], 3), dtype=np.uint8)
    cv2.cvtColor.side_effect = lambda image, code: np.zeros(
        (image.shape[0], image.shape[1], 4), dtype=np.uint8
    )
    return cv2


async def test_release_is_idempotent() -> None:
    """Test release stops and closes exactly once."""
    track = FakeTrack(MediaKind.AUDIO)

    await track.release()
    await track.release()

    assert track.is_released
    assert track.stop_count == 1
    assert track.close_count == 1


async def test_release_closes_even_when_stop_fails() -> None:
    """Test close still runs when stopping capture raises."""
    track = FakeTrack(MediaKind.VIDEO)

    async def failing_stop() -> None:
        raise RuntimeError("stream already gone")

    track._stop_capture = failing_stop  # type: ignore[method-assign]

    with pytest.raises(RuntimeError):
        await track.release()

    assert track.close_count == 1
    assert track.is_released


async def test_factory_retries_then_succeeds() -> None:
    """Test one failed attempt is followed by a successful retry."""
    track = FakeTrack(MediaKind.AUDIO)
    opener = AsyncMock(side_effect=[RuntimeError("device busy"), track])
    sleep = AsyncMock()

    factory = TrackFactory(microphone_opener=opener, sleep=sleep)
    result = await factory.create_microphone_track()

    assert result is track
    assert opener.await_count == 2
    sleep.assert_awaited_once_with(1.0)


async def test_factory_gives_up_after_max_attempts() -> None:
    """Test MediaError after the configured attempts."""
    opener = AsyncMock(side_effect=RuntimeError("no camera"))
    sleep = AsyncMock()

    factory = TrackFactory(
        retry=RetryConfig(max_attempts=3, delay_s=0.5),
        camera_opener=opener,
        sleep=sleep,
    )
    with pytest.raises(MediaError, match="camera"):
        await factory.create_camera_track()

    assert opener.await_count == 3
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 0.5]


async def test_factory_passes_media_config() -> None:
    """Test openers receive the factory's media configuration."""
    media = MediaConfig(video_width=640, video_height=480)
    opener = AsyncMock(return_value=FakeTrack(MediaKind.VIDEO))

    await TrackFactory(media=media, camera_opener=opener).create_camera_track()

    opener.assert_awaited_once_with(media)


async def test_microphone_open_failure_closes_source(mock_rtc: Mock) -> None:
    """Test the engine source is closed when the input stream cannot start."""
    sd = Mock()
    sd.InputStream.side_effect = OSError("Invalid input device")

    with patch.dict(sys.modules, {"sounddevice": sd}):
        with pytest.raises(OSError):
            await MicrophoneTrack.open(MediaConfig())

    mock_rtc.AudioSource.return_value.aclose.assert_awaited_once()


async def test_microphone_capture_lifecycle(mock_rtc: Mock) -> None:
    """Test captured blocks reach the source and release stops the stream."""
    sd = Mock()
    stream = sd.InputStream.return_value
    mock_rtc.AudioSource.return_value.capture_frame = AsyncMock()

    with patch.dict(sys.modules, {"sounddevice": sd}):
        track = await MicrophoneTrack.open(MediaConfig(audio_sample_rate=16000))

    kwargs = sd.InputStream.call_args.kwargs
    assert kwargs["samplerate"] == 16000
    assert kwargs["blocksize"] == 160
    stream.start.assert_called_once()

    # Simulate one PortAudio block arriving
    kwargs["callback"](np.zeros((160, 1), dtype=np.int16), 160, None, None)
    for _ in range(50):
        if mock_rtc.AudioSource.return_value.capture_frame.await_count:
            break
        await asyncio.sleep(0.01)

    mock_rtc.AudioSource.return_value.capture_frame.assert_awaited_once()
    frame_args = mock_rtc.AudioFrame.call_args.args
    assert frame_args[1:] == (16000, 1, 160)

    await track.release()
    stream.stop.assert_called_once()
    stream.close.assert_called_once()
    mock_rtc.AudioSource.return_value.aclose.assert_awaited_once()


async def test_camera_open_failure_releases_capture(mock_rtc: Mock) -> None:
    """Test an unopenable camera index raises and releases the capture."""
    cv2 = make_cv2(opened=False)

    with patch.dict(sys.modules, {"cv2": cv2}):
        with pytest.raises(RuntimeError, match="could not be opened"):
            await CameraTrack.open(MediaConfig())

    cv2.VideoCapture.return_value.release.assert_called_once()
    mock_rtc.VideoSource.assert_not_called()


async def test_camera_capture_lifecycle(mock_rtc: Mock) -> None:
    """Test frames are resized, converted and pushed; release frees the camera."""
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    cv2 = make_cv2(frames=[(True, image)])
    config = MediaConfig(video_width=320, video_height=240, video_fps=60)

    with patch.dict(sys.modules, {"cv2": cv2}):
        track = await CameraTrack.open(config)
        source = mock_rtc.VideoSource.return_value
        for _ in range(50):
            if source.capture_frame.called:
                break
            await asyncio.sleep(0.01)

        await track.release()

    source.capture_frame.assert_called_once()
    cv2.resize.assert_called_once()
    assert mock_rtc.VideoFrame.call_args.args[:2] == (320, 240)
    cv2.VideoCapture.return_value.release.assert_called_once()
    source.aclose.assert_awaited_once()


def test_camera_publish_options(mock_rtc: Mock) -> None:
    """Test camera publish options carry the encoder profile."""
    config = MediaConfig()
    track = CameraTrack(config, Mock())

    track.publish_options()

    mock_rtc.VideoEncoding.assert_called_once_with(max_framerate=15, max_bitrate=1_130_000)


async def test_camera_stop_frees_device_before_close(mock_rtc: Mock) -> None:
    """Test stop() releases the camera while the engine source stays open."""
    cv2 = make_cv2()

    with patch.dict(sys.modules, {"cv2": cv2}):
        track = await CameraTrack.open(MediaConfig())
        await track.stop()

    cv2.VideoCapture.return_value.release.assert_called_once()
    mock_rtc.VideoSource.return_value.aclose.assert_not_awaited()

    await track.close()
    mock_rtc.VideoSource.return_value.aclose.assert_awaited_once()

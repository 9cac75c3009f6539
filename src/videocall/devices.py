"""Capture device discovery.

Microphones are enumerated through PortAudio (sounddevice) and cameras by
opening OpenCV capture indices. A failed query is reported exactly like an
absent device.
"""

import asyncio
import logging
from dataclasses import dataclass

from videocall.config import MediaConfig
from videocall.engine import MediaKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    """A single capture device."""

    index: int
    name: str
    kind: MediaKind


@dataclass(frozen=True)
class DeviceAvailability:
    """Result of a device probe."""

    has_camera: bool = False
    has_microphone: bool = False

    @property
    def any(self) -> bool:
        return self.has_camera or self.has_microphone


class DeviceProber:
    """Queries the local environment for cameras and microphones."""

    def __init__(self, config: MediaConfig | None = None) -> None:
        self.config = config or MediaConfig()

    async def list_microphones(self) -> list[DeviceInfo]:
        """Return input-capable audio devices."""
        return await asyncio.to_thread(self._query_microphones)

    async def list_cameras(self) -> list[DeviceInfo]:
        """Return camera indices that OpenCV can open."""
        return await asyncio.to_thread(self._query_cameras)

    async def probe(self) -> DeviceAvailability:
        """Report camera/microphone presence.

        Returns:
            DeviceAvailability; both flags False if either query fails
        """
        try:
            cameras, microphones = await asyncio.gather(
                self.list_cameras(),
                self.list_microphones(),
            )
        except Exception as e:
            logger.error("Device probe failed", extra={"error": str(e)})
            return DeviceAvailability()

        result = DeviceAvailability(
            has_camera=len(cameras) > 0,
            has_microphone=len(microphones) > 0,
        )
        logger.info(
            "Device probe complete",
            extra={"cameras": len(cameras), "microphones": len(microphones)},
        )
        return result

    def _query_microphones(self) -> list[DeviceInfo]:
        import sounddevice as sd

        return [
            DeviceInfo(index=index, name=str(device["name"]), kind=MediaKind.AUDIO)
            for index, device in enumerate(sd.query_devices())
            if device["max_input_channels"] > 0
        ]

    def _query_cameras(self) -> list[DeviceInfo]:
        import cv2

        cameras: list[DeviceInfo] = []
        for index in range(self.config.max_camera_index):
            capture = cv2.VideoCapture(index)
            try:
                if capture.isOpened():
                    cameras.append(
                        DeviceInfo(index=index, name=f"camera-{index}", kind=MediaKind.VIDEO)
                    )
            finally:
                capture.release()
        return cameras

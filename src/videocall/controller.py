"""Call view controller.

Drives the session manager from room-identifier changes and the end-call
action, and folds session and remote-participant updates into a single
CallViewState for the rendering layer.

An in-flight start is owned as a task. A room change, end-call or close
cancels and awaits it before tearing the session down, and a generation
counter discards results from starts that were superseded anyway.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

from videocall.devices import DeviceAvailability
from videocall.engine import ConnectionStatus
from videocall.errors import SupersededError
from videocall.playback import RenderTarget
from videocall.reactor import RemoteViewState
from videocall.session import SessionManager
from videocall.tracks import LocalTrack

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallViewState:
    """Everything the call view renders."""

    is_initializing: bool = False
    has_local_video: bool = False
    has_local_audio: bool = False
    has_remote_video: bool = False
    has_remote_audio: bool = False
    remote_user_id: str | None = None
    connection_status: ConnectionStatus | None = None
    error: str | None = None
    devices: DeviceAvailability = field(default_factory=DeviceAvailability)

    @property
    def can_end_call(self) -> bool:
        return not self.is_initializing


class CallController:
    """Lifecycle object for the call view of one room at a time."""

    def __init__(
        self,
        session_manager: SessionManager,
        local_render_target: RenderTarget | None = None,
        on_end_call: Callable[[], Awaitable[Any] | Any] | None = None,
        on_change: Callable[[CallViewState], None] | None = None,
    ) -> None:
        self.session_manager = session_manager
        self.reactor = session_manager.reactor
        self.local_render_target = local_render_target
        self.on_end_call = on_end_call
        self.on_change = on_change

        self.state = CallViewState()
        self.room_id: str | None = None

        self._local_tracks: list[LocalTrack] = []
        self._start_task: asyncio.Task[None] | None = None
        self._generation = 0

        if self.reactor is not None:
            self.reactor.on_change = self._apply_remote_view

    @property
    def local_tracks(self) -> list[LocalTrack]:
        return list(self._local_tracks)

    async def check_devices(self) -> DeviceAvailability:
        """Probe capture devices and record the result in the view state."""
        devices = await self.session_manager.prober.probe()
        self._update(devices=devices)
        return devices

    async def set_room(self, room_id: str | None) -> None:
        """Switch the view to ``room_id``, tearing down the previous call first.

        Re-selecting the current room while its start is in flight or its
        session is active is a no-op.
        """
        if room_id == self.room_id and (
            self.state.is_initializing or self.session_manager.is_active
        ):
            logger.debug("Room unchanged, start already in progress", extra={"room": room_id})
            return

        await self._teardown()
        self.room_id = room_id
        if not room_id:
            return

        self._generation += 1
        task = asyncio.create_task(self._start_call(room_id, self._generation))
        self._start_task = task

        # wait() instead of await: a superseding set_room cancels this task
        await asyncio.wait([task])

    async def end_call(self) -> None:
        """User intent to hang up: tear down, then hand over to navigation."""
        await self._teardown()
        self.room_id = None

        if self.on_end_call is not None:
            result = self.on_end_call()
            if inspect.isawaitable(result):
                await result

    async def close(self) -> None:
        """Tear down on unmount."""
        await self._teardown()
        self.room_id = None

    async def _start_call(self, room_id: str, generation: int) -> None:
        self._update(is_initializing=True, error=None)

        await self._release_local_views()

        try:
            handle = await self.session_manager.start(room_id)
        except SupersededError:
            logger.info("Call setup superseded", extra={"room": room_id})
            if generation == self._generation:
                # Stopped outside this controller; nothing newer will reset the view
                self._update(is_initializing=False)
            return
        except asyncio.CancelledError:
            self._update(is_initializing=False)
            raise
        except Exception as e:
            logger.error("Call setup failed", extra={"room": room_id, "error": str(e)})
            if generation == self._generation:
                self._update(is_initializing=False, error=str(e))
            return

        if generation != self._generation:
            return

        self._local_tracks = [t for t in (handle.audio_track, handle.video_track) if t is not None]
        self._update(
            is_initializing=False,
            has_local_video=handle.has_video,
            has_local_audio=handle.has_audio,
        )

        if handle.video_track is not None and self.local_render_target is not None:
            try:
                await self.local_render_target.attach(handle.video_track.rtc_track)
            except Exception as e:
                logger.error("Local video play failed", extra={"error": str(e)})
                self._update(has_local_video=False)

    async def _teardown(self) -> None:
        """Unsubscribe remote media, drop local views, stop the session. Never raises."""
        self._generation += 1

        task, self._start_task = self._start_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        if self.reactor is not None:
            await self.reactor.unsubscribe_all()

        await self._release_local_views()
        await self.session_manager.stop()

        self._update(
            is_initializing=False,
            has_local_video=False,
            has_local_audio=False,
            has_remote_video=False,
            has_remote_audio=False,
            remote_user_id=None,
        )

    async def _release_local_views(self) -> None:
        """Stop local previews and drop track references; the session manager releases devices."""
        if self._local_tracks and self.local_render_target is not None:
            try:
                await self.local_render_target.detach()
            except Exception as e:
                logger.warning("Local preview cleanup error", extra={"error": str(e)})
        self._local_tracks = []

    def _apply_remote_view(self, view: RemoteViewState) -> None:
        changes: dict[str, Any] = {
            "has_remote_video": view.has_remote_video,
            "has_remote_audio": view.has_remote_audio,
            "remote_user_id": view.remote_user_id,
            "connection_status": view.connection_status,
        }
        if view.error is not None:
            changes["error"] = str(view.error)
        self._update(**changes)

    def _update(self, **changes: Any) -> None:
        self.state = replace(self.state, **changes)
        if self.on_change is not None:
            try:
                self.on_change(self.state)
            except Exception as e:
                logger.error("View update callback failed", extra={"error": str(e)})

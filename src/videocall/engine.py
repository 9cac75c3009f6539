"""Real-time engine client abstraction.

Defines the per-session client interface the session core drives (join,
publish, subscribe, leave, event registration) and its LiveKit
implementation. Engine notifications are delivered through explicit
registrations that return cancellable Subscription handles.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from livekit import rtc

if TYPE_CHECKING:
    from videocall.tracks import LocalTrack

logger = logging.getLogger(__name__)


class MediaKind(Enum):
    """Kind of media carried by a track."""

    AUDIO = "audio"
    VIDEO = "video"


class ConnectionStatus(Enum):
    """Engine connection status as observed by the session."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


class EngineEvent(Enum):
    """Engine notifications the session core listens to.

    Handler signatures:
    - USER_PUBLISHED / USER_UNPUBLISHED: (participant_id: str, kind: MediaKind)
    - USER_LEFT: (participant_id: str)
    - CONNECTION_STATE_CHANGED: (status: ConnectionStatus)
    """

    USER_PUBLISHED = "user-published"
    USER_UNPUBLISHED = "user-unpublished"
    USER_LEFT = "user-left"
    CONNECTION_STATE_CHANGED = "connection-state-change"


class Subscription:
    """Handle for a registered engine listener."""

    def __init__(self, event: EngineEvent, cancel: Callable[[], None]) -> None:
        self.event = event
        self._cancel: Callable[[], None] | None = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def cancel(self) -> None:
        """Detach the listener. Safe to call more than once."""
        if self._cancel is None:
            return
        cancel, self._cancel = self._cancel, None
        cancel()


class EngineClient(ABC):
    """Per-session connection to the real-time engine."""

    @abstractmethod
    async def join(self, url: str, token: str) -> str:
        """Join the room the token grants access to.

        Returns:
            Participant identifier assigned to the local participant
        """

    @abstractmethod
    async def publish(self, tracks: list["LocalTrack"]) -> None:
        """Publish local tracks as one batch."""

    @abstractmethod
    async def unpublish(self, tracks: list["LocalTrack"]) -> None:
        """Withdraw previously published local tracks."""

    @abstractmethod
    async def leave(self) -> None:
        """Leave the room."""

    @abstractmethod
    async def subscribe(self, participant_id: str, kind: MediaKind) -> Any:
        """Subscribe to a remote participant's track of the given kind.

        Returns:
            The remote track handle
        """

    @abstractmethod
    async def unsubscribe(self, participant_id: str, kind: MediaKind | None = None) -> None:
        """Stop consuming a remote participant's tracks (all kinds when ``kind`` is None)."""

    @abstractmethod
    def on(self, event: EngineEvent, handler: Callable[..., None]) -> Subscription:
        """Register a synchronous listener for an engine notification."""

    @abstractmethod
    def existing_publications(self) -> list[tuple[str, MediaKind]]:
        """Remote (participant, kind) pairs already published when the room was joined."""

    @property
    @abstractmethod
    def connection_status(self) -> ConnectionStatus:
        """Current connection status."""


def media_kind_from_livekit(kind: "rtc.TrackKind.ValueType") -> MediaKind | None:
    if kind == rtc.TrackKind.KIND_AUDIO:
        return MediaKind.AUDIO
    if kind == rtc.TrackKind.KIND_VIDEO:
        return MediaKind.VIDEO
    return None


def connection_status_from_livekit(state: "rtc.ConnectionState.ValueType") -> ConnectionStatus:
    if state == rtc.ConnectionState.CONN_CONNECTED:
        return ConnectionStatus.CONNECTED
    if state == rtc.ConnectionState.CONN_RECONNECTING:
        return ConnectionStatus.RECONNECTING
    return ConnectionStatus.DISCONNECTED


class LiveKitClient(EngineClient):
    """EngineClient backed by a livekit.rtc.Room.

    Rooms are joined with auto-subscribe disabled so that remote media is
    only consumed through explicit subscribe() calls.
    """

    def __init__(self, join_timeout_s: float = 15.0, subscribe_timeout_s: float = 10.0) -> None:
        self._room = rtc.Room()
        self._join_timeout_s = join_timeout_s
        self._subscribe_timeout_s = subscribe_timeout_s

        # Publication sid -> future resolved by track_subscribed
        self._pending: dict[str, asyncio.Future[rtc.Track]] = {}

        self._room.on("track_subscribed", self._on_track_subscribed)
        self._room.on("track_subscription_failed", self._on_track_subscription_failed)

    @property
    def room(self) -> rtc.Room:
        return self._room

    @property
    def connection_status(self) -> ConnectionStatus:
        return connection_status_from_livekit(self._room.connection_state)

    async def join(self, url: str, token: str) -> str:
        await asyncio.wait_for(
            self._room.connect(url, token, options=rtc.RoomOptions(auto_subscribe=False)),
            timeout=self._join_timeout_s,
        )

        identity = self._room.local_participant.identity
        logger.info(
            "Joined room",
            extra={"room": self._room.name, "participant": identity},
        )
        return identity

    async def publish(self, tracks: list["LocalTrack"]) -> None:
        for track in tracks:
            await self._room.local_participant.publish_track(
                track.rtc_track, track.publish_options()
            )
            logger.debug(
                "Track published",
                extra={"track": track.name, "kind": track.kind.value},
            )

    async def unpublish(self, tracks: list["LocalTrack"]) -> None:
        first_error: Exception | None = None
        for track in tracks:
            try:
                await self._room.local_participant.unpublish_track(track.rtc_track.sid)
            except Exception as e:
                logger.warning(
                    "Failed to unpublish track",
                    extra={"track": track.name, "error": str(e)},
                )
                first_error = first_error or e
        if first_error is not None:
            raise first_error

    async def leave(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

        await self._room.disconnect()

    async def subscribe(self, participant_id: str, kind: MediaKind) -> rtc.Track:
        publication = self._find_publication(participant_id, kind)
        if publication is None:
            raise LookupError(f"No {kind.value} publication for participant '{participant_id}'")

        if publication.subscribed and publication.track is not None:
            return publication.track

        future: asyncio.Future[rtc.Track] = asyncio.get_running_loop().create_future()
        self._pending[publication.sid] = future
        publication.set_subscribed(True)
        try:
            return await asyncio.wait_for(future, timeout=self._subscribe_timeout_s)
        finally:
            self._pending.pop(publication.sid, None)

    async def unsubscribe(self, participant_id: str, kind: MediaKind | None = None) -> None:
        participant = self._room.remote_participants.get(participant_id)
        if participant is None:
            return
        for publication in participant.track_publications.values():
            if kind is None or media_kind_from_livekit(publication.kind) == kind:
                publication.set_subscribed(False)

    def on(self, event: EngineEvent, handler: Callable[..., None]) -> Subscription:
        if event in (EngineEvent.USER_PUBLISHED, EngineEvent.USER_UNPUBLISHED):
            name = (
                "track_published" if event == EngineEvent.USER_PUBLISHED else "track_unpublished"
            )

            def on_publication(
                publication: rtc.RemoteTrackPublication,
                participant: rtc.RemoteParticipant,
            ) -> None:
                kind = media_kind_from_livekit(publication.kind)
                if kind is not None:
                    handler(participant.identity, kind)

            callback: Callable[..., None] = on_publication

        elif event == EngineEvent.USER_LEFT:
            name = "participant_disconnected"

            def on_participant(participant: rtc.RemoteParticipant) -> None:
                handler(participant.identity)

            callback = on_participant

        else:
            name = "connection_state_changed"

            def on_state(state: "rtc.ConnectionState.ValueType") -> None:
                handler(connection_status_from_livekit(state))

            callback = on_state

        self._room.on(name, callback)
        return Subscription(event, lambda: self._room.off(name, callback))

    def existing_publications(self) -> list[tuple[str, MediaKind]]:
        found: list[tuple[str, MediaKind]] = []
        for identity, participant in self._room.remote_participants.items():
            for publication in participant.track_publications.values():
                kind = media_kind_from_livekit(publication.kind)
                if kind is not None:
                    found.append((identity, kind))
        return found

    def _find_publication(
        self, participant_id: str, kind: MediaKind
    ) -> rtc.RemoteTrackPublication | None:
        participant = self._room.remote_participants.get(participant_id)
        if participant is None:
            return None
        for publication in participant.track_publications.values():
            if media_kind_from_livekit(publication.kind) == kind:
                return publication
        return None

    def _on_track_subscribed(
        self,
        track: rtc.Track,
        publication: rtc.RemoteTrackPublication,
        participant: rtc.RemoteParticipant,
    ) -> None:
        future = self._pending.get(publication.sid)
        if future is not None and not future.done():
            future.set_result(track)

    def _on_track_subscription_failed(
        self, participant: rtc.RemoteParticipant, track_sid: str, error: str
    ) -> None:
        future = self._pending.get(track_sid)
        if future is not None and not future.done():
            future.set_exception(
                RuntimeError(f"Subscription to {track_sid} from {participant.identity} failed: {error}")
            )

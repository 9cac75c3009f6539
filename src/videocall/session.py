"""Session lifecycle management.

Owns the single active call session: device probe, credential fetch, room
join, local track creation and publishing on start; unpublish, leave and
local track release on stop. At most one session is ACTIVE per manager, and
starting a new one fully tears down the previous one first.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from videocall.config import CallConfig
from videocall.credentials import Credential, CredentialClient
from videocall.devices import DeviceAvailability, DeviceProber
from videocall.engine import EngineClient, LiveKitClient
from videocall.errors import (
    DeviceError,
    MediaError,
    RoomConnectionError,
    SupersededError,
    ValidationError,
)
from videocall.reactor import RoomEventReactor
from videocall.tracks import LocalTrack, TrackFactory

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session state machine states.

    State Transitions:
    - IDLE → INITIALIZING (on start)
    - INITIALIZING → ACTIVE (all steps succeeded)
    - INITIALIZING → ERROR (a step failed, cleanup pending)
    - INITIALIZING → IDLE (stopped while starting)
    - ACTIVE → IDLE (on stop)
    - ERROR → IDLE (cleanup finished)
    """

    IDLE = "idle"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    ERROR = "error"


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.INITIALIZING},
    SessionState.INITIALIZING: {SessionState.ACTIVE, SessionState.ERROR, SessionState.IDLE},
    SessionState.ACTIVE: {SessionState.IDLE},
    SessionState.ERROR: {SessionState.IDLE},
}


@dataclass
class Session:
    """Resources held by one call attempt."""

    state: SessionState = SessionState.IDLE
    room_id: str | None = None
    client: EngineClient | None = None
    participant_id: str | None = None
    credential: Credential | None = None
    audio_track: LocalTrack | None = None
    video_track: LocalTrack | None = None
    published: list[LocalTrack] = field(default_factory=list)
    last_error: BaseException | None = None

    @property
    def local_tracks(self) -> list[LocalTrack]:
        return [t for t in (self.audio_track, self.video_track) if t is not None]

    @property
    def holds_resources(self) -> bool:
        return self.client is not None or bool(self.local_tracks)

    def transition(self, new_state: SessionState) -> None:
        """Transition to a new state with validation.

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise ValueError(f"Invalid state transition: {self.state.value} → {new_state.value}")

        old_state = self.state
        self.state = new_state

        logger.info(
            "Session state transition",
            extra={
                "room": self.room_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

    def clear(self) -> None:
        """Drop every resource reference and return to IDLE."""
        self.client = None
        self.participant_id = None
        self.credential = None
        self.audio_track = None
        self.video_track = None
        self.published = []
        if self.state != SessionState.IDLE:
            self.transition(SessionState.IDLE)


@dataclass(frozen=True)
class SessionHandle:
    """Public view of a started session."""

    client: EngineClient
    room_id: str
    participant_id: str
    audio_track: LocalTrack | None
    video_track: LocalTrack | None

    @property
    def has_audio(self) -> bool:
        return self.audio_track is not None

    @property
    def has_video(self) -> bool:
        return self.video_track is not None


class SessionManager:
    """Starts and stops the one call session this manager owns."""

    def __init__(
        self,
        config: CallConfig | None = None,
        credential_client: CredentialClient | None = None,
        prober: DeviceProber | None = None,
        track_factory: TrackFactory | None = None,
        client_factory: Callable[[], EngineClient] | None = None,
        reactor: RoomEventReactor | None = None,
    ) -> None:
        self.config = config or CallConfig()
        self.credential_client = credential_client or CredentialClient(self.config.token_service)
        self.prober = prober or DeviceProber(self.config.media)
        self.track_factory = track_factory or TrackFactory(self.config.media, self.config.retry)
        self.reactor = reactor
        self._client_factory = client_factory or (
            lambda: LiveKitClient(
                join_timeout_s=self.config.session.join_timeout_s,
                subscribe_timeout_s=self.config.session.subscribe_timeout_s,
            )
        )
        self._session = Session()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_active(self) -> bool:
        return self._session.state == SessionState.ACTIVE

    def credential_expires_in(self) -> float | None:
        """Seconds until the active credential expires, None without a session."""
        credential = self._session.credential
        return credential.seconds_remaining() if credential is not None else None

    async def start(self, room_id: str) -> SessionHandle:
        """Start a session in ``room_id``, replacing any existing one.

        Returns:
            Handle carrying the engine client and the local tracks

        Raises:
            ValidationError: If room_id is empty
            DeviceError: If neither camera nor microphone is present
            NetworkError: If the credential fetch failed
            RoomConnectionError: If joining the room failed
            MediaError: If no track could be created or publishing failed
            SupersededError: If stop() or another start() overtook this one
        """
        if not room_id:
            raise ValidationError("Room identifier is required")

        previous = self._session
        try:
            devices = self._with_held_devices(await self.prober.probe(), previous)
            if not devices.any:
                raise DeviceError("No media devices available")

            credential = await self.credential_client.fetch(room_id)
        except Exception as e:
            logger.error(
                "Session start failed",
                extra={"room": room_id, "error": str(e) or type(e).__name__},
            )
            if self._session is previous:
                await self.stop()
            raise

        # Another start may have completed while this one was fetching
        previous = self._session
        if previous.state != SessionState.IDLE or previous.holds_resources:
            logger.info("Stopping previous session", extra={"room": previous.room_id})
            await self._teardown(previous)

        session = Session(room_id=room_id, credential=credential)
        self._session = session
        session.transition(SessionState.INITIALIZING)

        client: EngineClient | None = None
        try:
            client = self._client_factory()
            session.client = client

            try:
                participant_id = await client.join(self.config.livekit.url, credential.token)
            except Exception as e:
                raise RoomConnectionError(f"Failed to join room '{room_id}': {e}") from e
            self._ensure_current(session)
            session.participant_id = participant_id

            if devices.has_microphone:
                try:
                    session.audio_track = await self.track_factory.create_microphone_track()
                except Exception as e:
                    logger.warning("Audio track creation failed", extra={"error": str(e)})
                self._ensure_current(session)

            if devices.has_camera:
                try:
                    session.video_track = await self.track_factory.create_camera_track()
                except Exception as e:
                    logger.warning("Video track creation failed", extra={"error": str(e)})
                self._ensure_current(session)

            tracks = session.local_tracks
            if not tracks:
                raise MediaError("Could not initialize any media tracks")

            session.published = list(tracks)
            try:
                await client.publish(tracks)
            except Exception as e:
                raise MediaError(f"Failed to publish local tracks: {e}", cause=e) from e
            self._ensure_current(session)

            if self.reactor is not None:
                self.reactor.attach(client)

            session.transition(SessionState.ACTIVE)

        except BaseException as e:
            session.last_error = e
            if client is not None and session.client is None:
                # Stopped mid-start; the client may still have joined
                session.client = client
            if session.state == SessionState.INITIALIZING:
                session.transition(SessionState.ERROR)
            logger.error(
                "Session start failed",
                extra={"room": room_id, "error": str(e) or type(e).__name__},
            )
            await self._teardown(session)
            raise

        logger.info(
            "Session active",
            extra={
                "room": room_id,
                "participant": participant_id,
                "tracks": len(tracks),
            },
        )
        return SessionHandle(
            client=client,
            room_id=room_id,
            participant_id=participant_id,
            audio_track=session.audio_track,
            video_track=session.video_track,
        )

    async def stop(self) -> None:
        """Tear down the current session. A no-op when nothing is held; never raises."""
        session = self._session
        if session.state == SessionState.IDLE and not session.holds_resources:
            return
        await self._teardown(session)

    @staticmethod
    def _with_held_devices(devices: DeviceAvailability, session: Session) -> DeviceAvailability:
        """Count devices captured by ``session`` as present; a busy camera can probe as absent."""
        return DeviceAvailability(
            has_camera=devices.has_camera or session.video_track is not None,
            has_microphone=devices.has_microphone or session.audio_track is not None,
        )

    def _ensure_current(self, session: Session) -> None:
        if self._session is not session or session.state != SessionState.INITIALIZING:
            raise SupersededError(f"Start of room '{session.room_id}' was superseded")

    async def _teardown(self, session: Session) -> None:
        """Unpublish, leave, release local tracks; every step is best-effort."""
        client = session.client
        tracks = session.local_tracks
        published = session.published

        try:
            if self.reactor is not None and client is not None and self.reactor.client is client:
                try:
                    await self.reactor.detach()
                except Exception as e:
                    logger.warning("Reactor detach error", extra={"error": str(e)})

            if client is not None and published:
                try:
                    await client.unpublish(published)
                except Exception as e:
                    logger.warning("Unpublish error", extra={"error": str(e)})

            if client is not None:
                try:
                    await client.leave()
                except Exception as e:
                    logger.warning("Leave error", extra={"error": str(e)})

            for track in tracks:
                try:
                    await track.release()
                except Exception as e:
                    logger.warning(
                        "Track cleanup error",
                        extra={"track": track.name, "error": str(e)},
                    )
        finally:
            session.clear()
            logger.info("Session resources cleaned up", extra={"room": session.room_id})

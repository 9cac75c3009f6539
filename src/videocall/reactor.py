"""Room event reactor.

Consumes engine notifications for the active session and maintains the
remote-participant view state of a two-party call:

- user published   → subscribe, then render video / play audio
- user unpublished → clear the corresponding flag
- user left        → forget the participant
- connection state → track status; DISCONNECTED surfaces an error and clears
  the remote flags without tearing the session down

The reactor never releases local tracks; that belongs to session teardown.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from videocall.engine import (
    ConnectionStatus,
    EngineClient,
    EngineEvent,
    MediaKind,
    Subscription,
)
from videocall.errors import CallError, RoomConnectionError
from videocall.playback import AudioPlayback, RenderTarget

logger = logging.getLogger(__name__)


class SubscriptionState(Enum):
    """Per (participant, kind) subscription progress."""

    NOT_SUBSCRIBED = "not_subscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"


@dataclass
class RemoteParticipant:
    """A remote room member and the media currently received from them."""

    id: str
    has_video: bool = False
    has_audio: bool = False


@dataclass
class RemoteViewState:
    """Remote side of the call as the view sees it."""

    remote_user_id: str | None = None
    has_remote_video: bool = False
    has_remote_audio: bool = False
    connection_status: ConnectionStatus | None = None
    error: CallError | None = None


class RoomEventReactor:
    """Reacts to engine events for whichever client it is attached to."""

    def __init__(
        self,
        render_target: RenderTarget | None = None,
        audio_playback: AudioPlayback | None = None,
        on_change: Callable[[RemoteViewState], None] | None = None,
    ) -> None:
        self._render_target = render_target
        self._audio_playback = audio_playback
        self.on_change = on_change

        self._client: EngineClient | None = None
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task[None]] = set()

        self.participants: dict[str, RemoteParticipant] = {}
        self._states: dict[tuple[str, MediaKind], SubscriptionState] = {}
        self.view = RemoteViewState()

    @property
    def client(self) -> EngineClient | None:
        return self._client

    @property
    def is_attached(self) -> bool:
        return self._client is not None

    def subscription_state(self, participant_id: str, kind: MediaKind) -> SubscriptionState:
        return self._states.get((participant_id, kind), SubscriptionState.NOT_SUBSCRIBED)

    def attach(self, client: EngineClient) -> None:
        """Register listeners on ``client`` and replay publications that predate the join.

        Raises:
            RuntimeError: If already attached to a client
        """
        if self._client is not None:
            raise RuntimeError("Reactor is already attached to a client")

        self._client = client
        self.participants.clear()
        self._states.clear()
        self.view = RemoteViewState(connection_status=client.connection_status)

        self._subscriptions = [
            client.on(EngineEvent.USER_PUBLISHED, self._on_user_published),
            client.on(EngineEvent.USER_UNPUBLISHED, self._on_user_unpublished),
            client.on(EngineEvent.USER_LEFT, self._on_user_left),
            client.on(EngineEvent.CONNECTION_STATE_CHANGED, self._on_connection_state_changed),
        ]

        for participant_id, kind in client.existing_publications():
            self._on_user_published(participant_id, kind)

        logger.debug("Reactor attached", extra={"listeners": len(self._subscriptions)})
        self._notify()

    async def detach(self) -> None:
        """Cancel listeners and in-flight subscriptions, stop remote media, reset view state."""
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []

        await self._cancel_tasks()
        await self._stop_remote_media()

        self._client = None
        self.participants.clear()
        self._states.clear()
        self.view = RemoteViewState()
        self._notify()

    async def drain(self) -> None:
        """Wait for in-flight event handling to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def unsubscribe_all(self) -> None:
        """Unsubscribe from every remote participant. Failures are logged, never raised."""
        client = self._client
        if client is not None:
            for participant_id in list(self.participants):
                try:
                    await client.unsubscribe(participant_id)
                except Exception as e:
                    logger.warning(
                        "Unsubscribe error",
                        extra={"participant": participant_id, "error": str(e)},
                    )

        await self._cancel_tasks()
        await self._stop_remote_media()
        self._states.clear()

    async def handle_user_published(self, participant_id: str, kind: MediaKind) -> None:
        """Subscribe to a newly published remote track and present it."""
        client = self._client
        if client is None:
            return

        key = (participant_id, kind)
        self._states[key] = SubscriptionState.SUBSCRIBING
        self.participants.setdefault(participant_id, RemoteParticipant(participant_id))

        try:
            track = await client.subscribe(participant_id, kind)
        except asyncio.CancelledError:
            self._states.pop(key, None)
            raise
        except Exception as e:
            logger.error(
                "Subscription error",
                extra={"participant": participant_id, "kind": kind.value, "error": str(e)},
            )
            self._states.pop(key, None)
            return

        # Unpublished or detached while the subscribe was pending
        if self._states.get(key) is not SubscriptionState.SUBSCRIBING or self._client is not client:
            return

        self._states[key] = SubscriptionState.SUBSCRIBED
        participant = self.participants.setdefault(participant_id, RemoteParticipant(participant_id))

        if kind == MediaKind.VIDEO:
            if self._render_target is not None:
                try:
                    await self._render_target.attach(track)
                except Exception as e:
                    logger.error(
                        "Remote video play failed",
                        extra={"participant": participant_id, "error": str(e)},
                    )
            participant.has_video = True
            self.view.has_remote_video = True
            self.view.remote_user_id = participant_id
        else:
            if self._audio_playback is not None:
                try:
                    self._audio_playback.play(participant_id, track)
                except Exception as e:
                    logger.error(
                        "Remote audio play failed",
                        extra={"participant": participant_id, "error": str(e)},
                    )
            participant.has_audio = True
            self.view.has_remote_audio = True

        logger.info(
            "Subscribed to remote track",
            extra={"participant": participant_id, "kind": kind.value},
        )
        self._notify()

    def _on_user_published(self, participant_id: str, kind: MediaKind) -> None:
        if self.subscription_state(participant_id, kind) is not SubscriptionState.NOT_SUBSCRIBED:
            logger.debug(
                "Ignoring duplicate publish",
                extra={"participant": participant_id, "kind": kind.value},
            )
            return

        self._states[(participant_id, kind)] = SubscriptionState.SUBSCRIBING
        self._spawn(self.handle_user_published(participant_id, kind))

    def _on_user_unpublished(self, participant_id: str, kind: MediaKind) -> None:
        self._states.pop((participant_id, kind), None)

        participant = self.participants.get(participant_id)
        if kind == MediaKind.VIDEO:
            if participant is not None:
                participant.has_video = False
            if self.view.remote_user_id in (participant_id, None):
                self.view.has_remote_video = False
                self.view.remote_user_id = None
                if self._render_target is not None:
                    self._spawn(self._render_target.detach())
        else:
            if participant is not None:
                participant.has_audio = False
            self.view.has_remote_audio = any(p.has_audio for p in self.participants.values())
            if self._audio_playback is not None:
                self._spawn(self._audio_playback.stop(participant_id))

        logger.info(
            "Remote track unpublished",
            extra={"participant": participant_id, "kind": kind.value},
        )
        self._notify()

    def _on_user_left(self, participant_id: str) -> None:
        participant = self.participants.pop(participant_id, None)
        for kind in MediaKind:
            self._states.pop((participant_id, kind), None)

        if participant is None:
            return

        if self.view.remote_user_id == participant_id:
            self.view.has_remote_video = False
            self.view.remote_user_id = None
            if self._render_target is not None:
                self._spawn(self._render_target.detach())

        self.view.has_remote_audio = any(p.has_audio for p in self.participants.values())
        if self._audio_playback is not None:
            self._spawn(self._audio_playback.stop(participant_id))

        logger.info("Remote participant left", extra={"participant": participant_id})
        self._notify()

    def _on_connection_state_changed(self, status: ConnectionStatus) -> None:
        self.view.connection_status = status

        if status == ConnectionStatus.DISCONNECTED:
            logger.warning("Connection lost")
            self.view.error = RoomConnectionError("Connection lost")
            self.view.has_remote_video = False
            self.view.has_remote_audio = False
        else:
            logger.info("Connection state changed", extra={"status": status.value})

        self._notify()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and (error := task.exception()) is not None:
            logger.error("Room event handling failed", extra={"error": str(error)})

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _stop_remote_media(self) -> None:
        if self._audio_playback is not None:
            try:
                await self._audio_playback.stop_all()
            except Exception as e:
                logger.warning("Remote audio stop error", extra={"error": str(e)})

        if self._render_target is not None:
            try:
                await self._render_target.detach()
            except Exception as e:
                logger.warning("Remote video detach error", extra={"error": str(e)})

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(replace(self.view))
        except Exception as e:
            logger.error("View update callback failed", extra={"error": str(e)})

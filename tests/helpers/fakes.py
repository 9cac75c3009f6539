"""Fakes standing in for the engine client and local capture tracks."""

from collections.abc import Callable
from typing import Any
from unittest.mock import Mock

from livekit import rtc

from videocall.engine import (
    ConnectionStatus,
    EngineClient,
    EngineEvent,
    MediaKind,
    Subscription,
)
from videocall.tracks import LocalTrack


class FakeTrack(LocalTrack):
    """LocalTrack without a device behind it."""

    def __init__(
        self,
        kind: MediaKind,
        log: list[str] | None = None,
        fail_close: bool = False,
    ) -> None:
        super().__init__(kind.value, Mock(sid=f"TR_{kind.value}"))
        self.kind = kind
        self.log = log if log is not None else []
        self.fail_close = fail_close
        self.stop_count = 0
        self.close_count = 0

    def publish_options(self) -> rtc.TrackPublishOptions:
        return rtc.TrackPublishOptions()

    async def _stop_capture(self) -> None:
        self.stop_count += 1
        self.log.append(f"stop:{self.name}")

    async def _close_source(self) -> None:
        self.close_count += 1
        self.log.append(f"close:{self.name}")
        if self.fail_close:
            raise RuntimeError(f"{self.name} close failed")


class FakeEngineClient(EngineClient):
    """In-memory engine client."""

    def __init__(self, log: list[str] | None = None, name: str = "client") -> None:
        self.name = name
        self.log = log if log is not None else []
        self.participant_id = f"{name}-local"
        self.join_error: Exception | None = None
        self.publish_error: Exception | None = None
        self.unpublish_error: Exception | None = None
        self.leave_error: Exception | None = None
        self.subscribe_errors: dict[tuple[str, MediaKind], Exception] = {}
        self.published: list[LocalTrack] = []
        self.joined = False
        self.existing: list[tuple[str, MediaKind]] = []
        self.status = ConnectionStatus.CONNECTED
        self.handlers: dict[EngineEvent, list[Callable[..., None]]] = {}
        self.unsubscribed: list[tuple[str, MediaKind | None]] = []

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.status

    async def join(self, url: str, token: str) -> str:
        self.log.append(f"join:{self.name}")
        if self.join_error is not None:
            raise self.join_error
        self.joined = True
        return self.participant_id

    async def publish(self, tracks: list[LocalTrack]) -> None:
        self.log.append(f"publish:{self.name}:{len(tracks)}")
        if self.publish_error is not None:
            raise self.publish_error
        self.published.extend(tracks)

    async def unpublish(self, tracks: list[LocalTrack]) -> None:
        self.log.append(f"unpublish:{self.name}")
        if self.unpublish_error is not None:
            raise self.unpublish_error
        self.published = [t for t in self.published if t not in tracks]

    async def leave(self) -> None:
        self.log.append(f"leave:{self.name}")
        self.joined = False
        if self.leave_error is not None:
            raise self.leave_error

    async def subscribe(self, participant_id: str, kind: MediaKind) -> Any:
        self.log.append(f"subscribe:{participant_id}:{kind.value}")
        error = self.subscribe_errors.get((participant_id, kind))
        if error is not None:
            raise error
        return f"remote-{kind.value}-{participant_id}"

    async def unsubscribe(self, participant_id: str, kind: MediaKind | None = None) -> None:
        self.log.append(f"unsubscribe:{participant_id}")
        self.unsubscribed.append((participant_id, kind))

    def on(self, event: EngineEvent, handler: Callable[..., None]) -> Subscription:
        self.handlers.setdefault(event, []).append(handler)
        return Subscription(event, lambda: self.handlers[event].remove(handler))

    def existing_publications(self) -> list[tuple[str, MediaKind]]:
        return list(self.existing)

    def emit(self, event: EngineEvent, *args: Any) -> None:
        for handler in list(self.handlers.get(event, [])):
            handler(*args)

    def listener_count(self) -> int:
        return sum(len(handlers) for handlers in self.handlers.values())

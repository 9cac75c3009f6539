"""Shared fixtures for unit tests.

The fake engine client and fake tracks all append to one call log so tests
can assert operation ordering across sessions.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from tests.helpers.fakes import FakeEngineClient, FakeTrack
from videocall.config import CallConfig
from videocall.credentials import Credential, CredentialClient
from videocall.devices import DeviceAvailability, DeviceProber
from videocall.engine import MediaKind
from videocall.reactor import RoomEventReactor
from videocall.session import SessionManager
from videocall.tracks import TrackFactory


@pytest.fixture
def call_log() -> list[str]:
    """Operation log shared by fake clients and tracks."""
    return []


@pytest.fixture
def engine(call_log: list[str]) -> FakeEngineClient:
    return FakeEngineClient(call_log)


@pytest.fixture
def credential() -> Credential:
    return Credential(
        token="token-abc",
        issued_at=1_700_000_000,
        expires_at=1_700_003_600,
        room_id="room-1",
    )


@pytest.fixture
def prober() -> Mock:
    """Prober reporting both a camera and a microphone."""
    prober = Mock(spec=DeviceProber)
    prober.probe = AsyncMock(
        return_value=DeviceAvailability(has_camera=True, has_microphone=True)
    )
    return prober


@pytest.fixture
def credential_client(credential: Credential) -> Mock:
    client = Mock(spec=CredentialClient)
    client.fetch = AsyncMock(return_value=credential)
    return client


@pytest.fixture
def track_factory(call_log: list[str]) -> Mock:
    """Track factory handing out fresh FakeTracks."""
    factory = Mock(spec=TrackFactory)
    factory.create_microphone_track = AsyncMock(
        side_effect=lambda: FakeTrack(MediaKind.AUDIO, call_log)
    )
    factory.create_camera_track = AsyncMock(
        side_effect=lambda: FakeTrack(MediaKind.VIDEO, call_log)
    )
    return factory


@pytest.fixture
def reactor() -> RoomEventReactor:
    return RoomEventReactor()


@pytest.fixture
def session_manager(
    engine: FakeEngineClient,
    prober: Mock,
    credential_client: Mock,
    track_factory: Mock,
    reactor: RoomEventReactor,
) -> SessionManager:
    return SessionManager(
        config=CallConfig(),
        credential_client=credential_client,
        prober=prober,
        track_factory=track_factory,
        client_factory=lambda: engine,
        reactor=reactor,
    )

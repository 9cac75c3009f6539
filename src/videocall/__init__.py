"""Two-party real-time video call core on LiveKit.

Session lifecycle (device probe, credential, join, track creation with
retry, publish), room event handling, and the call view controller.
"""

from videocall.config import CallConfig
from videocall.controller import CallController, CallViewState
from videocall.credentials import Credential, CredentialClient
from videocall.devices import DeviceAvailability, DeviceProber
from videocall.engine import ConnectionStatus, EngineClient, LiveKitClient, MediaKind
from videocall.errors import (
    CallError,
    DeviceError,
    MediaError,
    NetworkError,
    RoomConnectionError,
    ValidationError,
)
from videocall.reactor import RemoteParticipant, RoomEventReactor
from videocall.retry import ConstantBackoff, ExponentialBackoff, create_with_retry
from videocall.session import SessionHandle, SessionManager, SessionState
from videocall.tracks import LocalTrack, TrackFactory

__all__ = [
    "CallConfig",
    "CallController",
    "CallError",
    "CallViewState",
    "ConnectionStatus",
    "ConstantBackoff",
    "Credential",
    "CredentialClient",
    "DeviceAvailability",
    "DeviceError",
    "DeviceProber",
    "EngineClient",
    "ExponentialBackoff",
    "LiveKitClient",
    "LocalTrack",
    "MediaError",
    "MediaKind",
    "NetworkError",
    "RemoteParticipant",
    "RoomConnectionError",
    "RoomEventReactor",
    "SessionHandle",
    "SessionManager",
    "SessionState",
    "TrackFactory",
    "ValidationError",
    "create_with_retry",
]

__version__ = "0.1.0"

"""Error taxonomy for the call lifecycle.

Every failure surfaced by the session core derives from CallError so that
boundary code (the view controller, HTTP handlers) can catch a single type
and turn it into user-visible state.
"""


class CallError(Exception):
    """Base class for call lifecycle failures."""


class ValidationError(CallError):
    """Missing or invalid room identifier."""


class DeviceError(CallError):
    """No capture devices are available at all."""


class NetworkError(CallError):
    """Credential fetch failed (non-success response or transport failure)."""


class MediaError(CallError):
    """Local media could not be created or published.

    Raised when every track creation attempt is exhausted or when there are
    zero tracks to publish. The underlying failure, when there is one, is
    chained and also kept on ``cause``.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RoomConnectionError(CallError, ConnectionError):
    """The engine could not join the room or reported a disconnection."""


class SupersededError(CallError):
    """A session start was overtaken by a stop() or a newer start()."""

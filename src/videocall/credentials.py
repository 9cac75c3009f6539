"""Session credential model and token service client.

Credentials are fetched fresh for every session start and are valid for a
fixed window of TOKEN_TTL_SECONDS from issuance. They are never renewed.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import aiohttp

from videocall.config import TokenServiceConfig
from videocall.errors import NetworkError, ValidationError

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 3600

# Participant identifier meaning "let the service assign one"
UNASSIGNED_PARTICIPANT = 0


@dataclass(frozen=True)
class Credential:
    """Signed, time-bounded proof of authorization to join one room."""

    token: str
    issued_at: int
    expires_at: int
    room_id: str
    participant_id: int = UNASSIGNED_PARTICIPANT

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at

    def seconds_remaining(self, now: float | None = None) -> float:
        return max(0.0, self.expires_at - (time.time() if now is None else now))


class CredentialClient:
    """Fetches credentials from the HTTP token service.

    The aiohttp session is created lazily and owned by this client unless
    one is passed in.
    """

    def __init__(
        self,
        config: TokenServiceConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or TokenServiceConfig()
        self._session = session
        self._owns_session = session is None
        self._clock = clock

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, room_id: str, participant_id: int | None = None) -> Credential:
        """Fetch a credential for ``room_id``.

        Args:
            room_id: Room the credential grants access to
            participant_id: Requested participant identifier; omitted or 0
                leaves assignment to the service

        Returns:
            Credential valid for TOKEN_TTL_SECONDS

        Raises:
            ValidationError: If room_id is empty
            NetworkError: On transport failure, timeout, non-success status,
                or a malformed response body
        """
        if not room_id:
            raise ValidationError("Room identifier is required")

        params = {"channelName": room_id}
        if participant_id:
            params["uid"] = str(participant_id)

        url = f"{self.config.base_url.rstrip('/')}/token"
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_s)

        try:
            session = self._ensure_session()
            async with session.get(url, params=params, timeout=timeout) as response:
                status = response.status
                payload = await response.json() if status == 200 else None
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.error(
                "Token request failed",
                extra={"room": room_id, "url": url, "error": str(e)},
            )
            raise NetworkError(f"Failed to fetch token: {e}") from e

        if status != 200:
            logger.error("Token service rejected request", extra={"room": room_id, "status": status})
            raise NetworkError(f"Failed to fetch token: HTTP {status}")

        token = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise NetworkError("Failed to fetch token: response has no token")

        issued_at = payload.get("issuedAt")
        if not isinstance(issued_at, int):
            issued_at = int(self._clock())

        credential = Credential(
            token=token,
            issued_at=issued_at,
            expires_at=issued_at + TOKEN_TTL_SECONDS,
            room_id=room_id,
            participant_id=participant_id or UNASSIGNED_PARTICIPANT,
        )
        logger.info(
            "Credential fetched",
            extra={"room": room_id, "expires_at": credential.expires_at},
        )
        return credential

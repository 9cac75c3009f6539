"""Token HTTP service.

Issues LiveKit access tokens for a named room:

    GET /token?channelName=<room>&uid=<optional int>

The token grants the publisher role (join, publish, subscribe) for that room
and expires TOKEN_TTL_SECONDS after issuance.
"""

import argparse
import asyncio
import logging
import secrets
import time
from datetime import timedelta
from pathlib import Path

from aiohttp import web
from livekit.api import AccessToken, VideoGrants

from videocall.config import CallConfig, LiveKitConfig
from videocall.credentials import TOKEN_TTL_SECONDS, UNASSIGNED_PARTICIPANT
from videocall.utils.logging import setup_logging

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class TokenIssuer:
    """Signs room access tokens with the LiveKit API key/secret."""

    def __init__(self, config: LiveKitConfig) -> None:
        self.config = config

    def issue(self, room_id: str, participant_id: int, issued_at: int) -> str:
        """Build a publisher token for ``room_id``.

        Args:
            room_id: Room the token is bound to
            participant_id: Participant identifier, 0 when unassigned
            issued_at: Issuance time (UNIX seconds)

        Returns:
            Signed JWT
        """
        if participant_id == UNASSIGNED_PARTICIPANT:
            identity = f"participant-{secrets.token_hex(4)}"
        else:
            identity = str(participant_id)

        token = AccessToken(self.config.api_key, self.config.api_secret)
        token.with_identity(identity)
        token.with_name(identity)
        token.with_grants(
            VideoGrants(
                room_join=True,
                room=room_id,
                can_publish=True,
                can_subscribe=True,
            )
        )
        token.with_ttl(timedelta(seconds=TOKEN_TTL_SECONDS))

        logger.debug(
            "Token issued",
            extra={"room": room_id, "identity": identity, "issued_at": issued_at},
        )
        return token.to_jwt()


class TokenHandler:
    """aiohttp handlers for the token service."""

    def __init__(self, issuer: TokenIssuer) -> None:
        self.issuer = issuer

    async def token(self, request: web.Request) -> web.Response:
        """Issue a token.

        Returns:
            200 {"token", "issuedAt", "expiresAt", "channelName", "uid"}
            400 {"error"} if channelName is missing or uid is not an integer
        """
        if request.method == "OPTIONS":
            return web.Response(status=204, headers=CORS_HEADERS)

        channel_name = request.query.get("channelName")
        if not channel_name:
            return web.json_response(
                {"error": "channelName is required"}, status=400, headers=CORS_HEADERS
            )

        raw_uid = request.query.get("uid")
        try:
            uid = int(raw_uid) if raw_uid else UNASSIGNED_PARTICIPANT
        except ValueError:
            return web.json_response(
                {"error": "uid must be an integer"}, status=400, headers=CORS_HEADERS
            )

        issued_at = int(time.time())
        token = self.issuer.issue(channel_name, uid, issued_at)

        logger.info("Token generated", extra={"room": channel_name, "uid": uid})

        return web.json_response(
            {
                "token": token,
                "issuedAt": issued_at,
                "expiresAt": issued_at + TOKEN_TTL_SECONDS,
                "channelName": channel_name,
                "uid": uid,
            },
            headers=CORS_HEADERS,
        )

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"}, headers=CORS_HEADERS)


def create_app(config: CallConfig) -> web.Application:
    """Build the token service application."""
    handler = TokenHandler(TokenIssuer(config.livekit))

    app = web.Application()
    app.router.add_route("*", "/token", handler.token)
    app.router.add_get("/health", handler.health)
    return app


async def run_token_server(config: CallConfig) -> None:
    """Serve the token endpoint until cancelled."""
    runner = web.AppRunner(create_app(config))
    await runner.setup()

    site = web.TCPSite(runner, config.token_service.host, config.token_service.port)
    await site.start()

    logger.info(
        "Token service started",
        extra={"host": config.token_service.host, "port": config.token_service.port},
    )

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        logger.info("Token service stopped")


def main() -> None:
    """Entry point for the token service."""
    parser = argparse.ArgumentParser(description="Room token service")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--host", type=str, default=None, help="Override bind host")
    parser.add_argument("--port", type=int, default=None, help="Override bind port")
    parser.add_argument("--log-level", type=str, default=None, help="Override log level")
    args = parser.parse_args()

    config = CallConfig.from_yaml_with_defaults(args.config)
    if args.host is not None:
        config.token_service.host = args.host
    if args.port is not None:
        config.token_service.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level.upper()

    setup_logging(config.log_level)

    try:
        asyncio.run(run_token_server(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()

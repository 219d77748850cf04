"""Reconnecting client for the push gateway.

States: DISCONNECTED -> AUTHENTICATING -> CONNECTED, and STOPPED once stop() is
called. Every close, error, token failure or auth error returns to
DISCONNECTED and waits retry_delay seconds before a fresh attempt; each attempt
fetches a new session token.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import websockets

from cashwatch.errors import AuthError, TransportError
from cashwatch.logging_config import get_logger
from cashwatch.schemas.push import AuthFrame, PushFrame, SessionTokenResponse, parse_outbound

logger = get_logger("push_client")

INIT_DATA_HEADER = "X-Telegram-Init-Data"

EventCallback = Callable[[PushFrame], Awaitable[None]]
TokenFetcher = Callable[[], Awaitable[str]]
Connector = Callable[[str], Any]


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    STOPPED = "stopped"


def http_token_fetcher(base_url: str, init_data: str, timeout: float = 10.0) -> TokenFetcher:
    """Fetch a session token from GET /api/auth/session-token using Telegram initData."""

    async def fetch() -> str:
        try:
            async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
                response = await client.get("/api/auth/session-token", headers={INIT_DATA_HEADER: init_data})
        except httpx.HTTPError as e:
            raise TransportError(f"Session token request failed: {e}")
        if response.status_code == 401:
            raise AuthError("Session token request rejected")
        if response.status_code != 200:
            raise TransportError(f"Session token request failed: status={response.status_code}")
        return SessionTokenResponse.model_validate(response.json()).session_token

    return fetch


class PushClient:
    def __init__(
        self,
        ws_url: str,
        fetch_token: TokenFetcher,
        retry_delay: float = 3.0,
        connect: Connector = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ws_url = ws_url
        self.fetch_token = fetch_token
        self.retry_delay = retry_delay
        self.state = ClientState.DISCONNECTED
        self._connect = connect
        self._sleep = sleep
        self._handlers: dict[str, list[EventCallback]] = {}
        self._socket = None
        self._stopping = False

    def on(self, event_type: str, handler: EventCallback) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    async def run(self) -> None:
        """Keep a live authenticated connection until stop() is called."""
        while not self._stopping:
            try:
                await self._connect_once()
            except asyncio.CancelledError:
                self.state = ClientState.STOPPED
                raise
            except Exception as e:
                logger.warning(f"Push connection lost: {e!r}", extra={"context": {"url": self.ws_url}})

            if self._stopping:
                break
            self.state = ClientState.DISCONNECTED
            logger.info(f"Reconnecting in {self.retry_delay}s")
            await self._sleep(self.retry_delay)

        self.state = ClientState.STOPPED

    async def stop(self) -> None:
        self._stopping = True
        self.state = ClientState.STOPPED
        if self._socket is not None:
            await self._socket.close()

    async def _connect_once(self) -> None:
        self.state = ClientState.AUTHENTICATING
        token = await self.fetch_token()

        async with self._connect(self.ws_url) as socket:
            self._socket = socket
            try:
                await socket.send(AuthFrame(session_token=token).model_dump_json(by_alias=True))
                async for raw in socket:
                    await self._handle_frame(raw)
            finally:
                self._socket = None

    async def _handle_frame(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Skipping malformed push frame")
            return
        if not isinstance(data, dict):
            logger.warning("Skipping malformed push frame")
            return

        frame = parse_outbound(data)
        if frame is None:
            logger.debug("Ignoring unknown push frame", extra={"context": {"type": data.get("type")}})
            return

        if frame.type == "connected":
            self.state = ClientState.CONNECTED
            logger.info("Push channel connected")

        for handler in self._handlers.get(frame.type, []):
            try:
                await handler(frame)
            except Exception as e:
                logger.error(f"Push handler failed: {e}", exc_info=True, extra={"context": {"type": frame.type}})

        if frame.type == "auth_error":
            raise AuthError(frame.message)

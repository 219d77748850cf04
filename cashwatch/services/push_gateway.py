"""Authenticated WebSocket push gateway.

Connection protocol:

1. client connects
2. first frame must be {"type": "auth", "sessionToken": ...} within the auth timeout
3. server redeems the single-use token, registers the connection and sends "connected"
4. "ping" frames get "pong"; account events are pushed as they happen

Each connection owns a bounded outbound queue drained by its own sender task, so
one stalled client never blocks delivery to the others.
"""

import asyncio
import json
import uuid
from enum import Enum
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from cashwatch.errors import AuthError
from cashwatch.logging_config import bind, get_logger
from cashwatch.schemas.push import AuthErrorFrame, AuthFrame, Connected, Pong, PushFrame
from cashwatch.services.web_app_auth import SessionTokenIssuer

logger = get_logger("push_gateway")

AUTH_FAILED_CLOSE_CODE = 4001
SLOW_CONSUMER_CLOSE_CODE = 1013
GOING_AWAY_CLOSE_CODE = 1001


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class PushConnection:
    def __init__(self, websocket: WebSocket, queue_size: int = 100, send_timeout: float = 5.0):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.state = ConnectionState.UNAUTHENTICATED
        self.user_id: Optional[str] = None
        self.send_timeout = send_timeout
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._sender: Optional[asyncio.Task] = None
        self.log = bind(logger, connection_id=self.id)

    def authenticate(self, user_id: str) -> None:
        self.user_id = user_id
        self.state = ConnectionState.AUTHENTICATED
        self.log = bind(logger, connection_id=self.id, user_id=user_id)
        self._sender = asyncio.create_task(self._drain())

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED

    def enqueue(self, frame: PushFrame) -> bool:
        """Queue a frame for delivery; False when closed or the queue is full."""
        if not self.is_open:
            return False
        try:
            self._queue.put_nowait(frame.to_json())
        except asyncio.QueueFull:
            return False
        return True

    async def send_now(self, frame: PushFrame) -> None:
        await asyncio.wait_for(self.websocket.send_text(frame.to_json()), timeout=self.send_timeout)

    async def _drain(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await asyncio.wait_for(self.websocket.send_text(text), timeout=self.send_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.log.warning(f"Push send failed, closing connection: {e!r}")
                await self.close(SLOW_CONSUMER_CLOSE_CODE)
                return

    async def close(self, code: int = 1000) -> None:
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        if self._sender is not None and self._sender is not asyncio.current_task():
            self._sender.cancel()
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            self.log.debug(f"Socket already closed: {e!r}")


class PushGateway:
    def __init__(
        self,
        tokens: SessionTokenIssuer,
        auth_timeout: float = 30.0,
        send_timeout: float = 5.0,
        queue_size: int = 100,
    ):
        self.tokens = tokens
        self.auth_timeout = auth_timeout
        self.send_timeout = send_timeout
        self.queue_size = queue_size
        self._connections: dict[str, set[PushConnection]] = {}
        self._lock = asyncio.Lock()

    async def serve(self, websocket: WebSocket) -> None:
        """Run one accepted WebSocket until it disconnects."""
        connection = PushConnection(websocket, queue_size=self.queue_size, send_timeout=self.send_timeout)
        try:
            if not await self._authenticate(connection):
                return
            await self._register(connection)
            connection.enqueue(Connected())
            connection.log.info("Push connection authenticated")
            await self._receive_loop(connection)
        except WebSocketDisconnect:
            connection.log.info("Push connection closed by client")
        except Exception as e:
            if connection.state != ConnectionState.CLOSED:
                logger.error(f"Push connection error: {e}", exc_info=True)
        finally:
            await self._unregister(connection)
            await connection.close()

    async def _authenticate(self, connection: PushConnection) -> bool:
        try:
            raw = await asyncio.wait_for(connection.websocket.receive_text(), timeout=self.auth_timeout)
        except asyncio.TimeoutError:
            connection.log.warning("Push auth timeout")
            await self._reject(connection, "Authentication timeout")
            return False

        try:
            frame = AuthFrame.model_validate_json(raw)
            user_id = self.tokens.redeem(frame.session_token)
        except ValidationError:
            await self._reject(connection, "First message must be auth")
            return False
        except AuthError as e:
            await self._reject(connection, e.message)
            return False

        connection.authenticate(user_id)
        return True

    async def _reject(self, connection: PushConnection, message: str) -> None:
        try:
            await connection.send_now(AuthErrorFrame(message=message))
        except Exception as e:
            logger.debug(f"Could not send auth_error: {e!r}")
        await connection.close(AUTH_FAILED_CLOSE_CODE)

    async def _receive_loop(self, connection: PushConnection) -> None:
        while connection.is_open:
            raw = await connection.websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                connection.log.info("Ignoring malformed push frame")
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                connection.enqueue(Pong())

    async def _register(self, connection: PushConnection) -> None:
        async with self._lock:
            self._connections.setdefault(connection.user_id, set()).add(connection)

    async def _unregister(self, connection: PushConnection) -> None:
        if connection.user_id is None:
            return
        async with self._lock:
            connections = self._connections.get(connection.user_id)
            if connections is None:
                return
            connections.discard(connection)
            if not connections:
                del self._connections[connection.user_id]

    async def deliver(self, user_id: Optional[str], event: PushFrame) -> int:
        """Queue event for every live connection of user_id, or for all connections when None."""
        async with self._lock:
            if user_id is None:
                targets = [conn for connections in self._connections.values() for conn in connections]
            else:
                targets = list(self._connections.get(str(user_id), ()))

        delivered = 0
        for connection in targets:
            if connection.enqueue(event):
                delivered += 1
                continue
            connection.log.warning("Dropping slow push connection")
            await self._unregister(connection)
            try:
                await asyncio.wait_for(connection.close(SLOW_CONSUMER_CLOSE_CODE), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                connection.log.warning("Timed out closing slow push connection")
        return delivered

    async def handle_event(self, user_id: Optional[str], event: PushFrame) -> None:
        await self.deliver(user_id, event)

    def connection_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._connections.get(str(user_id), ()))
        return sum(len(connections) for connections in self._connections.values())

    async def shutdown(self) -> None:
        async with self._lock:
            connections = [conn for group in self._connections.values() for conn in group]
            self._connections.clear()
        for connection in connections:
            await connection.close(GOING_AWAY_CLOSE_CODE)

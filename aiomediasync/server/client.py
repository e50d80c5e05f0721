"""Represents a single browser client connected to the server."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, cast

from aiohttp import WSCloseCode, WSMsgType, web

from aiomediasync.models.client import (
    HelloMessage,
    IdentityUpdateMessage,
    PongMessage,
    VideoStateMessage,
)
from aiomediasync.models.types import ClientMessage
from aiomediasync.models.video import HelloAckMessage, PingMessage

from .connections import Connection

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import MediaSyncServer


class VideoClient(Connection):
    """
    A browser client connected through ``/ws/video``.

    The token and identity hints are taken from the query string. Outgoing
    messages are written by a dedicated writer task; a heartbeat task sends a
    PING at a fixed interval.
    """

    _server: MediaSyncServer
    """Reference to the MediaSyncServer instance this client belongs to."""
    _wsock: web.WebSocketResponse
    _request: web.Request
    _writer_task: asyncio.Task[None] | None = None
    """Task responsible for sending JSON messages."""
    _message_loop_task: asyncio.Task[None] | None = None
    """Task responsible for receiving and processing messages."""
    _heartbeat_task: asyncio.Task[None] | None = None
    """Task sending PING messages."""
    _registered: bool = False
    """Whether the server registered this connection after token validation."""
    _disconnecting: bool = False
    """Flag to prevent multiple concurrent disconnect tasks."""

    def __init__(self, server: MediaSyncServer, request: web.Request) -> None:
        """
        DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY.

        Use MediaSyncServer.on_client_connect instead.
        """
        super().__init__(
            request.query.get("token", ""),
            player_uuid=request.query.get("playerUuid") or None,
            player_name=request.query.get("playerName") or None,
        )
        self._server = server
        self._request = request
        self._wsock = web.WebSocketResponse(heartbeat=55)
        self._registered = False
        self._disconnecting = False
        self._logger = logger.getChild(f"unknown-{request.remote}")

    @property
    def websocket_connection(self) -> web.WebSocketResponse:
        """Returns the WebSocket connection of this client."""
        return self._wsock

    @property
    def connected(self) -> bool:
        """Whether messages can still be delivered to this client."""
        return super().connected and not self._wsock.closed

    async def disconnect(self) -> None:
        """Disconnect this client from the server."""
        if self._disconnecting:
            return
        self._disconnecting = True
        self.mark_closed()
        self._logger.debug("Disconnecting client")

        for task in (self._heartbeat_task, self._writer_task, self._message_loop_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

        if not self._wsock.closed:
            await self._wsock.close()

        if self._registered:
            self._server._handle_client_disconnect(self)  # noqa: SLF001

        self._logger.info("Client disconnected")

    def _handle_queue_full(self) -> None:
        # Only trigger disconnect once, even if queue fills repeatedly
        if not self._disconnecting:
            self._logger.error("Message queue full, client too slow - disconnecting")
            task = self._server.loop.create_task(self.disconnect())
            task.add_done_callback(lambda t: t.exception() if not t.cancelled() else None)

    async def _setup_connection(self) -> bool:
        """Prepare the WebSocket and validate the token; returns False if refused."""
        try:
            async with asyncio.timeout(10):
                await self._wsock.prepare(self._request)
        except TimeoutError:
            self._logger.warning("Timeout preparing request")
            raise

        validation = await self._server.validate_token(self.token)
        if not validation.ok:
            self._logger.info("Refusing connection with invalid token")
            await self._wsock.close(code=WSCloseCode.POLICY_VIOLATION, message=b"invalid token")
            return False

        self._logger = logger.getChild(self.token)
        self.player_id = (
            validation.player_id
            or self.player_uuid
            or self.player_name
            or f"player-{self.token[:6]}"
        )
        now = self._server.clock()
        self.connected_at = now
        self.last_seen = now
        self._logger.info("Connection established for player %s", self.player_id)

        self._writer_task = self._server.loop.create_task(self._writer())
        self.send_message(
            HelloAckMessage(
                server_epoch_ms=now,
                player_id=self.player_id,
                player_name=self.player_name,
                player_uuid=self.player_uuid,
            )
        )
        await self._server._handle_client_connect(self)  # noqa: SLF001
        self._registered = True
        self._heartbeat_task = self._server.loop.create_task(self._heartbeat())
        return True

    async def _run_message_loop(self) -> None:
        """Run the main message processing loop."""
        try:
            async for msg in self._wsock:
                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    message = ClientMessage.from_json(cast("str", msg.data))
                except Exception:  # noqa: BLE001
                    # Unknown types and malformed JSON are dropped, the socket stays open
                    self._logger.debug("Dropping unparsable message: %.200s", msg.data)
                    continue

                try:
                    self._handle_message(message)
                except Exception:
                    self._logger.exception("Error handling message")
            self._logger.debug("wsock was closed")

        except asyncio.CancelledError:
            self._logger.debug("Message loop cancelled")
        except Exception:
            self._logger.exception("Unexpected error inside websocket API")
        finally:
            # Cancel the writer when message loop exits
            if self._writer_task and not self._writer_task.done():
                self._logger.debug("Message loop finished, cancelling writer")
                self._writer_task.cancel()

    async def _handle_client(self) -> None:
        """
        Handle the complete websocket connection lifecycle.

        This method is private and should only be called by MediaSyncServer
        during client connection handling.
        """
        try:
            if not await self._setup_connection():
                return

            # Run the main message loop as a task so writer can cancel it
            self._message_loop_task = self._server.loop.create_task(self._run_message_loop())
            try:
                await self._message_loop_task
            except asyncio.CancelledError:
                self._logger.debug("Message loop task was cancelled")
        finally:
            await self.disconnect()

    def _handle_message(self, message: ClientMessage) -> None:
        """Handle incoming messages from the client."""
        self.touch(self._server.clock())
        match message:
            case PongMessage():
                pass
            case VideoStateMessage():
                self._server.autoclose.handle_client_video_state(self.token, message)
            case HelloMessage() | IdentityUpdateMessage():
                self._logger.debug("Received identity %s", message.type)
                self._server.dispatcher.update_client_identity(
                    self.token,
                    player_id=message.player_id,
                    player_uuid=message.player_uuid,
                    player_name=message.player_name,
                    public_server_key=message.public_server_key,
                    scope=message.scope,
                )

    async def _heartbeat(self) -> None:
        """Send a PING at the configured interval for liveness."""
        interval = self._server.settings.heartbeat_interval
        while not self._wsock.closed:
            await asyncio.sleep(interval)
            self.send_message(PingMessage(t=self._server.clock()))

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        # Exceptions if socket disconnected or cancelled by connection handler
        wsock = self._wsock
        try:
            while not wsock.closed:
                item = await self._to_write.get()
                try:
                    await wsock.send_str(item.to_json())
                except ConnectionError:
                    self._logger.warning("Connection error sending JSON data, ending writer task")
                    break
            self._logger.debug("WebSocket Connection was closed for the client, ending writer task")
        except Exception:
            self._logger.exception("Error in writer task for client")
        finally:
            # Cancel the message loop when writer exits
            if self._message_loop_task and not self._message_loop_task.done():
                self._logger.debug("Writer finished, cancelling message loop")
                self._message_loop_task.cancel()

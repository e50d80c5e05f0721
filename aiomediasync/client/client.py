"""Plugin client to drive a MediaSync server over its plugin bridge."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import orjson
from aiohttp import ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

from aiomediasync.models.plugin import (
    PluginHelloMessage,
    PluginPongMessage,
    PluginResponseMessage,
)
from aiomediasync.models.types import ServerMessage

logger = logging.getLogger(__name__)

# Callback invoked with the greeting the server sends after connecting.
HelloCallback = Callable[[PluginHelloMessage], None]

# Callback invoked when the client disconnects from the server.
DisconnectCallback = Callable[[], None]


class PluginClient:
    """
    Async client for the ``/ws/plugin`` endpoint of a MediaSync server.

    Requests are matched to their responses by a per-client correlation id, so
    several requests may be in flight at once.
    """

    _session: ClientSession | None
    """Optional aiohttp ClientSession for WebSocket connection."""
    _owns_session: bool
    """Whether this client owns and should close the session."""
    _loop: asyncio.AbstractEventLoop
    _ws: ClientWebSocketResponse | None = None
    """WebSocket connection to the server."""
    _connected: bool = False
    _hello: PluginHelloMessage | None = None
    """Latest greeting received from the server."""
    _hello_event: asyncio.Event | None = None
    """Event signaled when the greeting is received."""
    _reader_task: asyncio.Task[None] | None = None
    """Background task reading messages from server."""
    _send_lock: asyncio.Lock
    """Lock for serializing WebSocket message sends."""
    _pending: dict[int, asyncio.Future[ServerMessage]]
    """Requests waiting for a response, by correlation id."""
    _hello_callbacks: list[HelloCallback]
    _disconnect_callbacks: list[DisconnectCallback]

    def __init__(self, *, session: ClientSession | None = None) -> None:
        """
        Create a new plugin client.

        Args:
            session: Optional aiohttp ClientSession. If None, a session is created
                and managed by this client.
        """
        self._session = session
        self._owns_session = session is None
        self._loop = asyncio.get_running_loop()
        self._send_lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._pending = {}
        self._hello_callbacks = []
        self._disconnect_callbacks = []

    @property
    def connected(self) -> bool:
        """Return True if the client currently has an active connection."""
        return self._connected and self._ws is not None and not self._ws.closed

    @property
    def hello(self) -> PluginHelloMessage | None:
        """Return the greeting of the connected server, if received."""
        return self._hello

    async def connect(self, url: str, *, token: str | None = None) -> None:
        """Connect to the plugin bridge and wait for the greeting."""
        if self.connected:
            logger.debug("Already connected")
            return

        if self._session is None:
            self._session = ClientSession()

        logger.info("Connecting to MediaSync plugin bridge at %s", url)
        params = {"token": token} if token else None
        self._ws = await self._session.ws_connect(url, params=params, heartbeat=30)
        self._connected = True
        self._hello_event = asyncio.Event()
        self._reader_task = self._loop.create_task(self._reader_loop())

        try:
            await asyncio.wait_for(self._hello_event.wait(), timeout=10)
        except TimeoutError as err:
            await self.disconnect()
            raise TimeoutError("Timed out waiting for PLUGIN_HELLO") from err
        logger.info("Plugin bridge handshake complete")

    async def disconnect(self) -> None:
        """Disconnect from the server and release resources."""
        self._connected = False
        current_task = asyncio.current_task(loop=self._loop)

        if self._reader_task is not None:
            if self._reader_task is not current_task:
                self._reader_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._reader_task
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError("Plugin bridge disconnected"))
        self._pending.clear()
        self._hello = None
        self._hello_event = None

        for callback in list(self._disconnect_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Error in disconnect callback %s", callback)

    async def request(
        self, message_type: str, body: dict[str, Any] | None = None, *, timeout: float = 10
    ) -> PluginResponseMessage:
        """
        Send an admin request and wait for its response.

        Args:
            message_type: Operation name, for example ``VIDEO_PLAY`` or ``SET_REGION``.
            body: Request fields, as they would be posted to the HTTP route.
            timeout: Seconds to wait for the response.
        """
        response = await self._roundtrip({**(body or {}), "type": message_type}, timeout)
        if not isinstance(response, PluginResponseMessage):
            raise TypeError(f"Unexpected response {type(response).__name__}")
        return response

    async def ping(self, *, timeout: float = 10) -> PluginPongMessage:
        """Ping the bridge; the pong carries the server clock."""
        response = await self._roundtrip({"type": "PING"}, timeout)
        if not isinstance(response, PluginPongMessage):
            raise TypeError(f"Unexpected response {type(response).__name__}")
        return response

    def add_hello_listener(self, callback: HelloCallback) -> Callable[[], None]:
        """Add a listener for greetings from the server.

        Returns:
            A function that removes this listener when called.
        """
        self._hello_callbacks.append(callback)
        return lambda: (
            self._hello_callbacks.remove(callback) if callback in self._hello_callbacks else None
        )

    def add_disconnect_listener(self, callback: DisconnectCallback) -> Callable[[], None]:
        """Add a listener for disconnect events.

        Returns:
            A function that removes this listener when called.
        """
        self._disconnect_callbacks.append(callback)
        return lambda: (
            self._disconnect_callbacks.remove(callback)
            if callback in self._disconnect_callbacks
            else None
        )

    async def _roundtrip(self, payload: dict[str, Any], timeout: float) -> ServerMessage:
        if not self.connected or self._ws is None:
            raise RuntimeError("Client is not connected")
        correlation_id = next(self._ids)
        future: asyncio.Future[ServerMessage] = self._loop.create_future()
        self._pending[correlation_id] = future
        try:
            async with self._send_lock:
                await self._ws.send_str(orjson.dumps({**payload, "id": correlation_id}).decode())
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending.pop(correlation_id, None)

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                await self._handle_ws_message(msg)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("WebSocket reader encountered an error")
        finally:
            if self._connected:
                await self.disconnect()

    async def _handle_ws_message(self, msg: WSMessage) -> None:
        if msg.type is WSMsgType.TEXT:
            self._handle_json_message(msg.data)
        elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
            logger.info("WebSocket closed by server")
            await self.disconnect()
        elif msg.type is WSMsgType.ERROR:
            logger.error("WebSocket error: %s", self._ws.exception() if self._ws else "unknown")
            await self.disconnect()

    def _handle_json_message(self, data: str) -> None:
        try:
            message = ServerMessage.from_json(data)
        except Exception:
            logger.exception("Failed to parse server message: %s", data)
            return

        match message:
            case PluginHelloMessage():
                self._handle_hello(message)
            case PluginResponseMessage() | PluginPongMessage():
                self._resolve(message.correlation_id, message)
            case _:
                logger.debug("Unhandled server message type: %s", type(message).__name__)

    def _handle_hello(self, message: PluginHelloMessage) -> None:
        self._hello = message
        if self._hello_event:
            self._hello_event.set()
        logger.info("Plugin bridge reports %d connections", len(message.connections))
        for callback in list(self._hello_callbacks):
            try:
                callback(message)
            except Exception:
                logger.exception("Error in hello callback %s", callback)

    def _resolve(self, correlation_id: Any, message: ServerMessage) -> None:
        future = self._pending.get(correlation_id) if isinstance(correlation_id, int) else None
        if future is None or future.done():
            logger.debug("Dropping response for unknown request %r", correlation_id)
            return
        future.set_result(message)

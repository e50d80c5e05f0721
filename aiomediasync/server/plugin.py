"""WebSocket bridge that lets game-server plugins issue admin requests."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any

import orjson
from aiohttp import WSMsgType, web

from aiomediasync.models.plugin import (
    PluginHelloMessage,
    PluginPongMessage,
    PluginResponseMessage,
)
from aiomediasync.models.types import ServerMessage
from aiomediasync.util import Clock, now_ms

from .connections import ConnectionRegistry
from .handlers import AdminHandlers, Handler, error_result

logger = logging.getLogger(__name__)


class PluginBridge:
    """
    Serves ``/ws/plugin``.

    Every text frame is one JSON request ``{"type": ..., "id": ..., **body}``,
    answered with a ``PLUGIN_RESPONSE`` mirroring what the HTTP route returns.
    """

    _sockets: set[web.WebSocketResponse]
    _routes: dict[str, Handler]

    def __init__(
        self,
        handlers: AdminHandlers,
        connections: ConnectionRegistry,
        *,
        plugin_token: str | None = None,
        clock: Clock = now_ms,
    ) -> None:
        """
        Initialize the bridge.

        Args:
            handlers: Admin handlers requests are routed to.
            connections: Live browser connections, reported in the greeting.
            plugin_token: Shared secret plugins must present; None disables the check.
            clock: Wall clock in ms since epoch.
        """
        self._handlers = handlers
        self._connections = connections
        self._plugin_token = plugin_token
        self._clock = clock
        self._sockets = set()
        self._routes = {
            "SET_REGION": handlers.handle_set_region,
            "VIDEO_INIT": handlers.handle_video_init,
            "VIDEO_PLAY": handlers.handle_video_play,
            "VIDEO_PAUSE": handlers.handle_video_pause,
            "VIDEO_SEEK": handlers.handle_video_seek,
            "VIDEO_CLOSE": handlers.handle_video_close,
            "VIDEO_PLAY_INSTANT": handlers.handle_video_play_instant,
            "VIDEO_PRELOAD": handlers.handle_video_preload,
            "VIDEO_PLAYLIST_INIT": handlers.handle_video_initialize_playlist,
            "VIDEO_INITIALIZE_PLAYLIST": handlers.handle_video_initialize_playlist,
        }

    def is_authorized(self, request: web.Request) -> bool:
        """Check the shared secret passed as ``token``, ``key`` or ``auth`` query parameter."""
        if not self._plugin_token:
            return True
        query = request.query
        provided = query.get("token") or query.get("key") or query.get("auth")
        return provided == self._plugin_token

    async def on_plugin_connect(self, request: web.Request) -> web.StreamResponse:
        """Handle an incoming WebSocket connection from a plugin."""
        if not self.is_authorized(request):
            logger.warning("Rejected plugin connection from %s", request.remote)
            return web.json_response({"error": "unauthorized"}, status=401)

        wsock = web.WebSocketResponse(heartbeat=55)
        await wsock.prepare(request)
        self._sockets.add(wsock)
        logger.info("Plugin connected from %s", request.remote)
        try:
            await self._send(wsock, self.build_hello())
            async for msg in wsock:
                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break
                if msg.type != WSMsgType.TEXT:
                    continue
                if not await self._send(wsock, self.handle_message(msg.data)):
                    break
        except asyncio.CancelledError:
            logger.debug("Plugin connection cancelled")
        finally:
            self._sockets.discard(wsock)
            logger.info("Plugin disconnected")
        return wsock

    async def _send(self, wsock: web.WebSocketResponse, message: ServerMessage) -> bool:
        try:
            await wsock.send_str(message.to_json())
        except ConnectionError:
            logger.warning("Connection error sending to plugin")
            return False
        return True

    def build_hello(self) -> PluginHelloMessage:
        """Build the greeting with a snapshot of every live connection."""
        return PluginHelloMessage(
            server_epoch_ms=self._clock(),
            connections=[
                self._handlers.snapshot_client_for_plugin(token)
                for token in self._connections.tokens()
            ],
        )

    def handle_message(self, raw: str | bytes) -> ServerMessage:
        """Handle one plugin request and return the reply."""
        try:
            data: Any = orjson.loads(raw)
        except orjson.JSONDecodeError:
            return PluginResponseMessage.from_result(None, 400, {"error": "invalid_json"})

        if not isinstance(data, dict):
            return PluginResponseMessage.from_result(None, 400, {"error": "invalid_payload"})

        correlation_id = data.get("id")
        if correlation_id is None:
            correlation_id = data.get("correlationId")
        raw_type = data.get("type")
        if not isinstance(raw_type, str) or not raw_type:
            return PluginResponseMessage.from_result(
                correlation_id, 400, {"error": "type_required"}
            )

        message_type = raw_type.upper()
        if message_type == "PING":
            return PluginPongMessage(server_epoch_ms=self._clock(), correlation_id=correlation_id)

        handler = self._routes.get(message_type)
        if handler is None:
            status, body = error_result(400, f"unsupported type {raw_type}")
        else:
            status, body = handler(data)
        logger.debug("Plugin request %s answered with %d", message_type, status)
        return PluginResponseMessage.from_result(correlation_id, status, body)

    async def close(self) -> None:
        """Close every plugin connection."""
        for wsock in list(self._sockets):
            with suppress(TimeoutError):
                async with asyncio.timeout(1.0):
                    await wsock.close()
        self._sockets.clear()

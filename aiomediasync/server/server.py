"""MediaSync server: relays playback commands to many browser clients."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import orjson
from aiohttp import web

from aiomediasync.config import ServerSettings
from aiomediasync.util import Clock, now_ms

from .autoclose import AutocloseCascade
from .client import VideoClient
from .connections import Connection, ConnectionRegistry
from .dispatch import MediaDispatcher
from .handlers import AdminHandlers, Handler, HandlerResult
from .media import MediaRegistrar, MediaStore
from .plugin import PluginBridge
from .regions import RegionIndex

logger = logging.getLogger(__name__)

ADMIN_KEY_HEADER = "x-admin-key"


@dataclass(frozen=True)
class TokenValidation:
    """Result of validating a client token."""

    ok: bool
    player_id: str | None = None
    """Identity behind the token, if the validator knows it."""


TokenValidator = Callable[[str], Awaitable[TokenValidation]]


class MediaSyncEvent:
    """Base event type used by MediaSyncServer.add_event_listener()."""


@dataclass
class ConnectionAddedEvent(MediaSyncEvent):
    """A client connected and was registered."""

    token: str


@dataclass
class ConnectionRemovedEvent(MediaSyncEvent):
    """A client disconnected from the server."""

    token: str


class MediaSyncServer:
    """
    Relays playback commands from the admin surface and plugins to browser clients.

    Owns every store (connections, token and region media, region membership)
    and wires the registrar, dispatcher and autoclose cascade on top of them.
    """

    VIDEO_PATH = "/ws/video"
    PLUGIN_PATH = "/ws/plugin"

    _loop: asyncio.AbstractEventLoop
    _settings: ServerSettings
    _clock: Clock
    _token_validator: TokenValidator
    _connections: ConnectionRegistry
    _pending_clients: set[VideoClient]
    """Clients that have connected but were not registered yet."""
    _event_cbs: list[Callable[[MediaSyncServer, MediaSyncEvent], None]]
    _app: web.Application | None
    """Web application serving the WebSocket and admin routes."""
    _app_runner: web.AppRunner | None
    """App runner for the web application."""
    _tcp_site: web.TCPSite | None
    """TCP site for the web application."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        settings: ServerSettings | None = None,
        *,
        token_validator: TokenValidator | None = None,
        clock: Clock = now_ms,
    ) -> None:
        """
        Initialize a new MediaSync server.

        Args:
            loop: The asyncio event loop to use for asynchronous operations.
            settings: Server settings; read from the environment when omitted.
            token_validator: Async callable checking client tokens. Defaults to
                accepting every token of at least ``settings.min_token_length``.
            clock: Wall clock in ms since epoch, injectable for tests.
        """
        self._loop = loop
        self._settings = settings if settings is not None else ServerSettings()
        self._clock = clock
        self._token_validator = token_validator or self._default_token_validator
        self._connections = ConnectionRegistry()
        self._token_media = MediaStore("token")
        self._region_media = MediaStore("region")
        self._registrar = MediaRegistrar(
            self._token_media, self._region_media, ttl_ms=self._settings.media_ttl_ms, clock=clock
        )
        self._regions = RegionIndex(self._connections)
        self._dispatcher = MediaDispatcher(
            self._connections, self._regions, self._registrar, clock=clock
        )
        self._autoclose = AutocloseCascade(
            self._registrar, self._regions, self._dispatcher, clock=clock
        )
        self._handlers = AdminHandlers(
            self._connections, self._regions, self._registrar, self._dispatcher, clock=clock
        )
        self._plugin_bridge = PluginBridge(
            self._handlers,
            self._connections,
            plugin_token=self._settings.plugin_token,
            clock=clock,
        )
        self._pending_clients = set()
        self._event_cbs = []
        self._app = None
        self._app_runner = None
        self._tcp_site = None
        logger.debug("MediaSyncServer initialized")

    def _create_web_application(self) -> web.Application:
        """
        Create and configure the aiohttp web application.

        Returns:
            Configured aiohttp web.Application instance.
        """
        app = web.Application(middlewares=[self._admin_auth_middleware])
        app.router.add_get(self.VIDEO_PATH, self.on_client_connect)
        app.router.add_get(self.PLUGIN_PATH, self._plugin_bridge.on_plugin_connect)
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_post("/set-region", self._json_route(self._handlers.handle_set_region))
        for name, handler in (
            ("init", self._handlers.handle_video_init),
            ("play", self._handlers.handle_video_play),
            ("pause", self._handlers.handle_video_pause),
            ("seek", self._handlers.handle_video_seek),
            ("close", self._handlers.handle_video_close),
            ("play-instant", self._handlers.handle_video_play_instant),
            ("preload", self._handlers.handle_video_preload),
            ("initialize-playlist", self._handlers.handle_video_initialize_playlist),
        ):
            app.router.add_post(f"/admin/video/{name}", self._json_route(handler))
        app.router.add_get(
            "/admin/video/connections", self._snapshot_route(self._handlers.connections_snapshot)
        )
        app.router.add_get(
            "/admin/video/regions", self._snapshot_route(self._handlers.regions_snapshot)
        )
        return app

    @web.middleware
    async def _admin_auth_middleware(
        self,
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        """Require the admin key header on admin routes when a key is configured."""
        admin_key = self._settings.admin_key
        if (
            admin_key
            and request.path.startswith("/admin/")
            and request.headers.get(ADMIN_KEY_HEADER) != admin_key
        ):
            logger.warning("Unauthorized admin request to %s", request.path)
            return _json_response(401, {"error": "unauthorized"})
        return await handler(request)

    def _json_route(self, handler: Handler) -> Callable[[web.Request], Awaitable[web.Response]]:
        async def _route(request: web.Request) -> web.Response:
            try:
                body: Any = orjson.loads(await request.read() or b"{}")
            except orjson.JSONDecodeError:
                return _json_response(400, {"error": "invalid_json"})
            status, payload = handler(body)
            return _json_response(status, payload)

        return _route

    def _snapshot_route(
        self, snapshot: Callable[[], HandlerResult]
    ) -> Callable[[web.Request], Awaitable[web.Response]]:
        async def _route(_request: web.Request) -> web.Response:
            status, payload = snapshot()
            return _json_response(status, payload)

        return _route

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return _json_response(200, {"ok": True})

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Read-only access to the event loop used by this server."""
        return self._loop

    @property
    def settings(self) -> ServerSettings:
        """Settings this server was created with."""
        return self._settings

    @property
    def clock(self) -> Clock:
        """Wall clock in ms since epoch used for all media state."""
        return self._clock

    @property
    def connections(self) -> ConnectionRegistry:
        """Live browser connections."""
        return self._connections

    @property
    def token_media(self) -> MediaStore:
        """Media state records keyed by connection token."""
        return self._token_media

    @property
    def region_media(self) -> MediaStore:
        """Media state records keyed by canonical region id."""
        return self._region_media

    @property
    def regions(self) -> RegionIndex:
        """Region membership index."""
        return self._regions

    @property
    def registrar(self) -> MediaRegistrar:
        """Command registrar applying playback commands to the stores."""
        return self._registrar

    @property
    def dispatcher(self) -> MediaDispatcher:
        """Dispatcher delivering commands to tokens, players and regions."""
        return self._dispatcher

    @property
    def autoclose(self) -> AutocloseCascade:
        """Autoclose handling of client reported playback states."""
        return self._autoclose

    @property
    def handlers(self) -> AdminHandlers:
        """Admin request handlers, shared by HTTP routes and the plugin bridge."""
        return self._handlers

    @property
    def plugin_bridge(self) -> PluginBridge:
        """Plugin bridge serving the plugin WebSocket."""
        return self._plugin_bridge

    async def validate_token(self, token: str) -> TokenValidation:
        """Validate a client token with the configured validator."""
        return await self._token_validator(token)

    async def _default_token_validator(self, token: str) -> TokenValidation:
        if not token or len(token) < self._settings.min_token_length:
            return TokenValidation(ok=False)
        return TokenValidation(ok=True, player_id=f"player-{token[:6]}")

    async def on_client_connect(self, request: web.Request) -> web.StreamResponse:
        """Handle an incoming WebSocket connection from a browser client."""
        logger.debug("Incoming client connection from %s", request.remote)

        client = VideoClient(self, request)
        self._pending_clients.add(client)
        try:
            await client._handle_client()  # noqa: SLF001  # pyright: ignore[reportPrivateUsage]
        finally:
            self._pending_clients.discard(client)
        return client.websocket_connection

    def add_event_listener(
        self, callback: Callable[[MediaSyncServer, MediaSyncEvent], None]
    ) -> Callable[[], None]:
        """
        Register a callback to listen for connections being added or removed.

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._event_cbs.remove(callback)

        return _remove

    def _signal_event(self, event: MediaSyncEvent) -> None:
        """Signal an event to all registered listeners."""
        for cb in self._event_cbs:
            try:
                cb(self, event)
            except Exception:
                logger.exception("Error in event listener")

    async def _handle_client_connect(self, client: VideoClient) -> None:
        """
        Register a client whose token was accepted and bring it up to date.

        A previous connection with the same token is closed. The client then
        gets its own pending media replayed and joins the region it belongs in.
        """
        previous = self._connections.add(client)
        self._pending_clients.discard(client)
        if previous is not None:
            logger.info("Token %s reconnected, closing previous connection", client.token)
            self._signal_event(ConnectionRemovedEvent(client.token))
            if isinstance(previous, VideoClient):
                try:
                    await previous.disconnect()
                except Exception:
                    logger.exception("Error disconnecting replaced client %s", client.token)
            else:
                previous.mark_closed()
        logger.debug("Adding client %s (%s) to server", client.token, client.player_id)
        self._dispatcher.resume_token_media(client)
        self._dispatcher.apply_region_for_client(client.token)
        self._signal_event(ConnectionAddedEvent(client.token))

    def _handle_client_disconnect(self, client: Connection) -> None:
        """Unregister a client; its token media is kept until it expires."""
        if not self._connections.remove(client):
            return
        logger.debug("Removing client %s from server", client.token)
        self._regions.assign_region_for_token(client.token, None)
        self._signal_event(ConnectionRemovedEvent(client.token))

    def reset(self) -> None:
        """Forget all connections, media state and region membership."""
        self._connections.clear()
        self._token_media.clear()
        self._region_media.clear()
        self._regions.clear()

    async def start_server(self, port: int | None = None, host: str | None = None) -> None:
        """Start the HTTP server; defaults come from the settings."""
        if self._app is not None:
            logger.warning("Server is already running")
            return

        port = self._settings.port if port is None else port
        host = self._settings.host if host is None else host
        logger.info("Starting MediaSync server on port %d", port)
        self._app = self._create_web_application()
        self._app_runner = web.AppRunner(self._app)
        await self._app_runner.setup()

        try:
            self._tcp_site = web.TCPSite(
                self._app_runner,
                host=host if host != "0.0.0.0" else None,
                port=port,
            )
            await self._tcp_site.start()
            logger.info("MediaSync server started successfully on %s:%d", host, port)
        except OSError as e:
            logger.error("Failed to start server on %s:%d: %s", host, port, e)
            if self._app_runner:
                await self._app_runner.cleanup()
                self._app_runner = None
            if self._app:
                await self._app.shutdown()
                self._app = None
            raise

    async def stop_server(self) -> None:
        """Stop the HTTP server."""
        if self._tcp_site:
            await self._tcp_site.stop()
            self._tcp_site = None
            logger.debug("TCP site stopped")

        if self._app_runner:
            await self._app_runner.cleanup()
            self._app_runner = None
            logger.debug("App runner cleaned up")

        if self._app:
            await self._app.shutdown()
            self._app = None

    async def close(self) -> None:
        """Close the server and cleanup resources."""
        # Close websockets of clients still validating their token
        for client in list(self._pending_clients):
            wsock = client.websocket_connection
            if not wsock.closed:
                logger.debug("Closing pending client connection")
                try:
                    async with asyncio.timeout(1.0):
                        await wsock.close()
                except TimeoutError:
                    logger.debug("Timeout closing pending client websocket")

        # Disconnect all clients before stopping the server
        clients = [client for client in self._connections if isinstance(client, VideoClient)]
        results = await asyncio.gather(
            *(client.disconnect() for client in clients), return_exceptions=True
        )
        for client, result in zip(clients, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Error disconnecting client %s: %s", client.token, result)

        await self._plugin_bridge.close()
        await self.stop_server()


def _json_response(status: int, body: Any) -> web.Response:
    return web.Response(
        body=orjson.dumps(body), status=status, content_type="application/json"
    )

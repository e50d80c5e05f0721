"""Live connections of browser clients, keyed by their token."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from typing import Any

from aiomediasync.models.types import ServerMessage

MAX_PENDING_MSG = 1024

logger = logging.getLogger(__name__)


class Connection:
    """
    One live client session and the identity behind it.

    Outgoing messages are queued; the transport that owns the connection drains
    the queue (see VideoClient). The base class is transport agnostic, which also
    lets tests inspect what a client would have received.
    """

    token: str
    player_id: str | None
    """Derived identity: explicit id, else uuid, else name."""
    player_uuid: str | None
    player_name: str | None
    public_server_key: str | None
    scope: Any
    region: str | None
    """Canonical region id, maintained by the RegionIndex."""
    region_display_name: str | None
    connected_at: float
    last_seen: float
    """Wall clock of the last inbound message."""
    _to_write: asyncio.Queue[ServerMessage]
    _closed: bool
    _logger: logging.Logger

    def __init__(
        self,
        token: str,
        *,
        player_id: str | None = None,
        player_uuid: str | None = None,
        player_name: str | None = None,
        connected_at: float = 0,
    ) -> None:
        """Initialize a connection for a validated token."""
        self.token = token
        self.player_id = player_id
        self.player_uuid = player_uuid
        self.player_name = player_name
        self.public_server_key = None
        self.scope = None
        self.region = None
        self.region_display_name = None
        self.connected_at = connected_at
        self.last_seen = connected_at
        self._to_write = asyncio.Queue(maxsize=MAX_PENDING_MSG)
        self._closed = False
        self._logger = logger.getChild(token)

    @property
    def connected(self) -> bool:
        """Whether messages can still be delivered to this connection."""
        return not self._closed

    def mark_closed(self) -> None:
        """Stop accepting messages for delivery."""
        self._closed = True

    def send_message(self, message: ServerMessage) -> bool:
        """
        Enqueue a message for delivery.

        Returns False if the connection is closed or its queue is full.
        """
        if not self.connected:
            return False
        try:
            self._to_write.put_nowait(message)
        except asyncio.QueueFull:
            self._handle_queue_full()
            return False
        if message.is_media_command:
            self._logger.debug("Enqueueing message: %s", type(message).__name__)
        return True

    def _handle_queue_full(self) -> None:
        self._logger.error("Message queue full, client too slow")

    def pending_messages(self) -> list[ServerMessage]:
        """Remove and return every queued message."""
        messages: list[ServerMessage] = []
        while not self._to_write.empty():
            messages.append(self._to_write.get_nowait())
        return messages

    def touch(self, now_ms: float) -> None:
        """Record inbound activity."""
        self.last_seen = now_ms

    def update_identity(
        self,
        *,
        player_id: str | None = None,
        player_uuid: str | None = None,
        player_name: str | None = None,
        public_server_key: str | None = None,
        scope: Any = None,
    ) -> None:
        """
        Merge an identity update; blank or missing values keep the current ones.

        The player id is re-derived from the update as id, else uuid, else name.
        """
        if isinstance(player_name, str) and player_name:
            self.player_name = player_name
        if isinstance(player_uuid, str) and player_uuid:
            self.player_uuid = player_uuid
        if isinstance(public_server_key, str) and public_server_key:
            self.public_server_key = public_server_key
        if scope is not None:
            self.scope = scope
        for derived in (player_id, player_uuid, player_name):
            if isinstance(derived, str) and derived:
                self.player_id = derived
                break

    def matches_player(self, reference: str) -> bool:
        """
        Return True if ``reference`` identifies this connection's player.

        The player id must match exactly, uuid and name case-insensitively; as a
        last resort the reference may be the token itself.
        """
        if self.player_id and self.player_id == reference:
            return True
        lowered = reference.lower()
        if self.player_uuid and self.player_uuid.lower() == lowered:
            return True
        if self.player_name and self.player_name.lower() == lowered:
            return True
        return self.token == reference

    def snapshot(self) -> dict[str, Any]:
        """Return the identity and region of this connection, JSON-ready."""
        return {
            "token": self.token,
            "playerId": self.player_id,
            "playerUuid": self.player_uuid,
            "playerName": self.player_name,
            "regionId": self.region,
            "regionDisplayName": self.region_display_name if self.region else None,
            "connectedAt": self.connected_at or None,
            "lastSeen": self.last_seen or None,
        }


class ConnectionRegistry:
    """The set of live connections; at most one per token."""

    _connections: dict[str, Connection]

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._connections = {}

    def add(self, connection: Connection) -> Connection | None:
        """Register a connection and return the one it replaced, if any."""
        previous = self._connections.get(connection.token)
        self._connections[connection.token] = connection
        if previous is connection:
            return None
        return previous

    def remove(self, connection: Connection) -> bool:
        """
        Unregister a connection.

        Nothing happens if another connection has taken over the token since,
        so a replaced socket closing late cannot evict its successor.
        """
        if self._connections.get(connection.token) is not connection:
            return False
        del self._connections[connection.token]
        return True

    def get(self, token: str) -> Connection | None:
        """Return the live connection of a token."""
        return self._connections.get(token)

    def tokens(self) -> list[str]:
        """Return all tokens in connection order."""
        return list(self._connections)

    def clear(self) -> None:
        """Forget all connections."""
        self._connections.clear()

    def __contains__(self, token: object) -> bool:
        return token in self._connections

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)

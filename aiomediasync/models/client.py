"""
Messages sent from browser clients to the server.

Clients report what their player is doing (``VIDEO_STATE``), announce or refresh
the player identity behind their token (``HELLO``/``IDENTITY_UPDATE``) and answer
heartbeats (``PONG``). Unknown keys are ignored so that clients may send more
than the server understands.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal

from mashumaro.types import Alias

from .types import ClientMessage


# Client -> Server: VIDEO_STATE
@dataclass
class VideoStateMessage(ClientMessage):
    """Playback status observed by the client."""

    state: str | None = None
    """One of idle, ready, playing, paused or ended."""
    position_ms: Annotated[float | None, Alias("positionMs")] = None
    """Position the client is currently at."""
    buffered_ms: Annotated[float | None, Alias("bufferedMs")] = None
    """Amount of media buffered ahead of the position."""
    type: Literal["VIDEO_STATE"] = "VIDEO_STATE"


# Client -> Server: HELLO
@dataclass
class HelloMessage(ClientMessage):
    """Identity announced by the client right after connecting."""

    player_id: Annotated[str | None, Alias("playerId")] = None
    player_uuid: Annotated[str | None, Alias("playerUuid")] = None
    player_name: Annotated[str | None, Alias("playerName")] = None
    public_server_key: Annotated[str | None, Alias("publicServerKey")] = None
    scope: Any = None
    type: Literal["HELLO"] = "HELLO"


# Client -> Server: IDENTITY_UPDATE
@dataclass
class IdentityUpdateMessage(ClientMessage):
    """Identity change of an already connected client."""

    player_id: Annotated[str | None, Alias("playerId")] = None
    player_uuid: Annotated[str | None, Alias("playerUuid")] = None
    player_name: Annotated[str | None, Alias("playerName")] = None
    public_server_key: Annotated[str | None, Alias("publicServerKey")] = None
    scope: Any = None
    type: Literal["IDENTITY_UPDATE"] = "IDENTITY_UPDATE"


# Client -> Server: PONG
@dataclass
class PongMessage(ClientMessage):
    """Answer to a server PING."""

    t: float | None = None
    type: Literal["PONG"] = "PONG"

"""
Playback messages sent from the server to browser clients.

These are the commands the embedded player widget acts on. Every message is a
flat JSON object with a ``type`` field and camelCase keys, for example::

    {"type": "VIDEO_PLAY", "serverEpochMs": 1700000000000, "atMs": 3000}

Fields that are ``None`` are omitted from the wire representation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from .types import ServerMessage


@dataclass
class PlaylistItem(DataClassORJSONMixin):
    """One queued source of a playlist."""

    url: str
    """Source URL of this entry."""
    volume: float | None = None
    """Volume for this entry, range 0.0-1.0."""
    muted: bool | None = None
    """Mute state for this entry."""
    autoclose: bool | None = None
    """Close the player once this entry finished."""
    at_ms: Annotated[float | None, Alias("atMs")] = None
    """Offset into this entry to start at."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if not isinstance(self.url, str) or not self.url:
            raise ValueError("playlist item url must be a non-empty string")

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


# Server -> Client: VIDEO_INIT
@dataclass
class VideoInitMessage(ServerMessage):
    """Load a source, optionally scheduled to start at an epoch instant."""

    url: str | None = None
    """Source URL."""
    start_at_epoch_ms: Annotated[float | None, Alias("startAtEpochMs")] = None
    """Wall-clock instant (ms since epoch) that corresponds to position 0."""
    muted: bool | None = None
    volume: float | None = None
    autoclose: bool | None = None
    """Close the player once playback ends."""
    resume: bool | None = None
    """Set when replaying state to a (re)connecting client, not a fresh start."""
    type: Literal["VIDEO_INIT"] = "VIDEO_INIT"


# Server -> Client: VIDEO_PLAY
@dataclass
class VideoPlayMessage(ServerMessage):
    """Start or resume playback."""

    server_epoch_ms: Annotated[float | None, Alias("serverEpochMs")] = None
    """Server wall clock at the time the command was issued."""
    at_ms: Annotated[float | None, Alias("atMs")] = None
    """Position within the media at serverEpochMs."""
    start_at_epoch_ms: Annotated[float | None, Alias("startAtEpochMs")] = None
    """Epoch anchor: position = now - startAtEpochMs."""
    volume: float | None = None
    muted: bool | None = None
    autoclose: bool | None = None
    type: Literal["VIDEO_PLAY"] = "VIDEO_PLAY"


# Server -> Client: VIDEO_PAUSE
@dataclass
class VideoPauseMessage(ServerMessage):
    """Pause playback at a frozen offset."""

    at_ms: Annotated[float | None, Alias("atMs")] = None
    """Position within the media to hold at."""
    volume: float | None = None
    muted: bool | None = None
    autoclose: bool | None = None
    type: Literal["VIDEO_PAUSE"] = "VIDEO_PAUSE"


# Server -> Client: VIDEO_SEEK
@dataclass
class VideoSeekMessage(ServerMessage):
    """Jump to a position; a seek always resumes playback."""

    to_ms: Annotated[float | None, Alias("toMs")] = None
    """Target position within the media."""
    volume: float | None = None
    muted: bool | None = None
    autoclose: bool | None = None
    type: Literal["VIDEO_SEEK"] = "VIDEO_SEEK"


# Server -> Client: VIDEO_CLOSE
@dataclass
class VideoCloseMessage(ServerMessage):
    """Tear down the player."""

    type: Literal["VIDEO_CLOSE"] = "VIDEO_CLOSE"


# Server -> Client: VIDEO_PRELOAD
@dataclass
class VideoPreloadMessage(ServerMessage):
    """Hint the client to pre-fetch a source it will likely play next."""

    url: str | None = None
    volume: float | None = None
    muted: bool | None = None
    type: Literal["VIDEO_PRELOAD"] = "VIDEO_PRELOAD"


# Server -> Client: VIDEO_PLAYLIST_INIT
@dataclass
class VideoPlaylistInitMessage(ServerMessage):
    """Queue a sequence of sources for sequential playback."""

    items: list[PlaylistItem] = field(default_factory=list)
    type: Literal["VIDEO_PLAYLIST_INIT"] = "VIDEO_PLAYLIST_INIT"


# Server -> Client: HELLO_ACK
@dataclass
class HelloAckMessage(ServerMessage):
    """Greeting sent once the token of a new connection was accepted."""

    server_epoch_ms: Annotated[float, Alias("serverEpochMs")]
    player_id: Annotated[str | None, Alias("playerId")] = None
    player_name: Annotated[str | None, Alias("playerName")] = None
    player_uuid: Annotated[str | None, Alias("playerUuid")] = None
    type: Literal["HELLO_ACK"] = "HELLO_ACK"


# Server -> Client: PING
@dataclass
class PingMessage(ServerMessage):
    """Liveness ping, answered by the client with PONG."""

    t: float
    """Server wall clock in ms since epoch."""
    type: Literal["PING"] = "PING"

"""
Media state records tracked per connection token and per region.

A record never stores an elapsed-time counter: while playing, the position is
always ``now - started_at_epoch_ms``, so it can be derived at any instant
without a background timer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from .types import MediaStatus, ServerMessage
from .video import PlaylistItem, VideoInitMessage


@dataclass
class MediaState(DataClassORJSONMixin):
    """Derived playback status of one target."""

    status: MediaStatus = MediaStatus.IDLE
    started_at_epoch_ms: Annotated[float | None, Alias("startedAtEpochMs")] = None
    """Epoch anchor while ready or playing."""
    paused_at_ms: Annotated[float | None, Alias("pausedAtMs")] = None
    """Frozen position while paused."""
    muted: bool | None = None
    volume: float | None = None
    url: str | None = None
    autoclose: bool | None = None
    reported_position_ms: Annotated[float | None, Alias("reportedPositionMs")] = None
    """Last position reported by the client itself, informational only."""

    def position_ms(self, now_ms: float) -> float | None:
        """Return the position within the media at the given instant, if known."""
        if self.status == MediaStatus.PAUSED:
            return self.paused_at_ms
        if self.status == MediaStatus.PLAYING and self.started_at_epoch_ms is not None:
            return max(now_ms - self.started_at_epoch_ms, 0)
        return None

    class Config(BaseConfig):
        """Config for snapshot serialization."""

        serialize_by_alias = True
        omit_none = True


@dataclass
class MediaPreload(DataClassORJSONMixin):
    """Source the client was asked to pre-fetch."""

    url: str | None
    requested_at: Annotated[float, Alias("requestedAt")]

    class Config(BaseConfig):
        """Config for snapshot serialization."""

        serialize_by_alias = True


@dataclass
class MediaPlaylist(DataClassORJSONMixin):
    """Queued sources for sequential playback."""

    items: list[PlaylistItem]
    created_at: Annotated[float, Alias("createdAt")]

    class Config(BaseConfig):
        """Config for snapshot serialization."""

        serialize_by_alias = True


@dataclass
class MediaRecord:
    """Versioned playback snapshot of one token or region."""

    init: VideoInitMessage | None = None
    """Last full initialization payload."""
    state: MediaState = field(default_factory=MediaState)
    session_id: Any = None
    """Opaque correlation id supplied by the caller."""
    last_command: ServerMessage | None = None
    """Last applied command, normalized."""
    last_update: float = 0
    """Wall clock of the last mutation, used for TTL pruning."""
    preload: MediaPreload | None = None
    playlist: MediaPlaylist | None = None

    @property
    def is_active(self) -> bool:
        """Whether anything is loaded for this target."""
        return self.state.status != MediaStatus.IDLE

    @property
    def autoclose(self) -> bool:
        """Autoclose flag of the current state, falling back to the init payload."""
        if self.state.autoclose is not None:
            return self.state.autoclose
        if self.init is not None and self.init.autoclose is not None:
            return self.init.autoclose
        return False

    def to_snapshot(self, *, full: bool = False) -> dict[str, Any]:
        """Return a JSON-ready view of this record for the admin endpoints."""
        snapshot: dict[str, Any] = {
            "sessionId": self.session_id,
            "init": self.init.to_dict() if self.init else None,
            "state": self.state.to_dict(),
            "lastUpdate": self.last_update,
        }
        if full:
            snapshot["preload"] = self.preload.to_dict() if self.preload else None
            snapshot["playlist"] = self.playlist.to_dict() if self.playlist else None
            snapshot["lastCommand"] = self.last_command.to_dict() if self.last_command else None
        return snapshot

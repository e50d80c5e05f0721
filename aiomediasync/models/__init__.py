"""Models for the MediaSync protocol and admin requests."""

from __future__ import annotations

__all__ = [
    "MEDIA_COMMAND_PREFIX",
    "ClientMessage",
    "MediaPlaylist",
    "MediaPreload",
    "MediaRecord",
    "MediaState",
    "MediaStatus",
    "PlayerSource",
    "PlaylistItem",
    "ServerMessage",
    "Target",
    "TargetKind",
    "TargetSelector",
    "admin",
    "client",
    "plugin",
    "state",
    "types",
    "video",
]

from . import admin, client, plugin, state, types, video
from .admin import Target, TargetSelector
from .state import MediaPlaylist, MediaPreload, MediaRecord, MediaState
from .types import (
    MEDIA_COMMAND_PREFIX,
    ClientMessage,
    MediaStatus,
    PlayerSource,
    ServerMessage,
    TargetKind,
)
from .video import PlaylistItem

"""Models for enum types used by the media sync protocol."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator

MEDIA_COMMAND_PREFIX = "VIDEO_"
"""Every message type starting with this prefix is a playback command."""


# Base message classes
@dataclass
class ClientMessage(DataClassORJSONMixin):
    """Base class for messages sent by browser clients."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)
        serialize_by_alias = True
        omit_none = True


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for messages sent by the server."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)
        serialize_by_alias = True
        omit_none = True

    @property
    def is_media_command(self) -> bool:
        """Return True if this message mutates playback state on the receiver."""
        message_type: str = getattr(self, "type", "")
        return message_type.startswith(MEDIA_COMMAND_PREFIX)


# Enums


class MediaStatus(Enum):
    """Playback status of a media state record."""

    IDLE = "idle"
    """Nothing loaded."""
    READY = "ready"
    """A source was initialized but playback has not been started."""
    PLAYING = "playing"
    """Playing; the position is derived from the epoch anchor."""
    PAUSED = "paused"
    """Paused at a frozen offset."""
    ENDED = "ended"
    """Reported by a client once the source finished playing."""

    @property
    def is_terminal(self) -> bool:
        """Whether this status counts as finished for autoclose decisions."""
        return self in (MediaStatus.IDLE, MediaStatus.ENDED)


class TargetKind(Enum):
    """How a command is routed to connections."""

    TOKEN = "token"
    """A single connection, by its token."""
    PLAYER = "player"
    """The first live connection matching a player identity."""
    REGION = "region"
    """Every member of a region."""


class PlayerSource(Enum):
    """The request field a player identity was taken from."""

    TOKEN = "token"
    PLAYER_ID = "playerId"
    PLAYER_UUID = "playerUuid"
    PLAYER_NAME = "playerName"

    @property
    def key_kind(self) -> str:
        """Prefix used for canonical player keys of this source."""
        if self is PlayerSource.PLAYER_UUID:
            return "uuid"
        if self is PlayerSource.PLAYER_NAME:
            return "name"
        return "id"

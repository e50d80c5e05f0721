"""
Request bodies accepted by the admin HTTP surface and the plugin bridge.

Every request carries a target selector (``token``, ``playerId``/``playerUuid``/
``playerName`` or ``regionId``) plus command specific fields. Validation errors
raise ValueError, which the HTTP and plugin boundaries report as status 400.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any, ClassVar

from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from aiomediasync.util import (
    collect_player_keys,
    is_finite_number,
    normalize_region_id,
)

from .types import PlayerSource, TargetKind
from .video import (
    PlaylistItem,
    VideoCloseMessage,
    VideoInitMessage,
    VideoPauseMessage,
    VideoPlaylistInitMessage,
    VideoPlayMessage,
    VideoPreloadMessage,
    VideoSeekMessage,
)

TARGET_REQUIRED = "token, playerId, playerUuid, playerName, or regionId required"
PLAYER_REQUIRED = "token, playerId, playerUuid, or playerName required"


def _check_str(name: str, value: Any) -> None:
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{name} must be a string or null")


def _check_bool(name: str, value: Any) -> None:
    if value is not None and not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean")


def _check_number(name: str, value: Any) -> None:
    if value is not None and not is_finite_number(value):
        raise ValueError(f"{name} must be a finite number")


FieldCheck = tuple[str, Callable[[str, Any], None]]

_SELECTOR_CHECKS: tuple[FieldCheck, ...] = (
    ("token", _check_str),
    ("playerId", _check_str),
    ("playerUuid", _check_str),
    ("playerName", _check_str),
    ("regionId", _check_str),
    ("regionDisplayName", _check_str),
    ("regionName", _check_str),
    ("regionLabel", _check_str),
)

_PLAYBACK_CHECKS: tuple[FieldCheck, ...] = (
    ("volume", _check_number),
    ("muted", _check_bool),
    ("autoclose", _check_bool),
)


def _first_text(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class Target:
    """Resolved destination of a command."""

    kind: TargetKind
    value: str
    """Token, player identity value or canonical region id, depending on kind."""
    source: PlayerSource | None = None
    """For token and player targets, the request field the value was taken from."""


@dataclass
class TargetSelector(DataClassORJSONMixin):
    """Fields shared by every request that addresses connections."""

    token: str | None = None
    player_id: Annotated[str | None, Alias("playerId")] = None
    player_uuid: Annotated[str | None, Alias("playerUuid")] = None
    player_name: Annotated[str | None, Alias("playerName")] = None
    region_id: Annotated[str | None, Alias("regionId")] = None
    region_display_name: Annotated[str | None, Alias("regionDisplayName")] = None
    region_name: Annotated[str | None, Alias("regionName")] = None
    region_label: Annotated[str | None, Alias("regionLabel")] = None
    session_id: Annotated[Any, Alias("sessionId")] = None
    """Opaque correlation id stored alongside the resulting media state."""

    field_checks: ClassVar[tuple[FieldCheck, ...]] = ()
    """Raw type checks of the command fields, keyed by their JSON names."""

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """
        Validate the raw JSON values before they are converted to field types.

        Selector fields are checked first, then the target is required, then the
        command fields, so an empty body reports the missing target.
        """
        if not isinstance(d, dict):
            return d
        for key, check in _SELECTOR_CHECKS:
            check(key, d.get(key))
        cls.check_selector(
            TargetSelector(
                token=d.get("token"),
                player_id=d.get("playerId"),
                player_uuid=d.get("playerUuid"),
                player_name=d.get("playerName"),
                region_id=d.get("regionId"),
            )
        )
        for key, check in cls.field_checks:
            check(key, d.get(key))
        return d

    @classmethod
    def check_selector(cls, selector: TargetSelector) -> None:
        """Raise ValueError if the selector addresses nothing this request accepts."""
        selector.require_target()

    @property
    def display_name(self) -> str | None:
        """Human readable region name supplied with the request."""
        return _first_text(
            self.region_display_name, self.region_name, self.region_label, self.region_id
        )

    def resolve_target(self) -> Target | None:
        """
        Resolve the selector to a single target.

        An explicit region wins over a token, which wins over player identity
        fields (checked id, uuid, name). Returns None if nothing identifies a target.
        """
        if (region_id := normalize_region_id(self.region_id)) is not None:
            return Target(TargetKind.REGION, region_id)
        if self.token:
            return Target(TargetKind.TOKEN, self.token, PlayerSource.TOKEN)
        if self.player_id:
            return Target(TargetKind.PLAYER, self.player_id, PlayerSource.PLAYER_ID)
        if self.player_uuid:
            return Target(TargetKind.PLAYER, self.player_uuid, PlayerSource.PLAYER_UUID)
        if self.player_name:
            return Target(TargetKind.PLAYER, self.player_name, PlayerSource.PLAYER_NAME)
        return None

    def require_target(self) -> Target:
        """Resolve the target or raise ValueError."""
        target = self.resolve_target()
        if target is None:
            raise ValueError(TARGET_REQUIRED)
        return target

    def resolve_player_reference(self) -> Target | None:
        """Resolve a token or player identity, ignoring any region selector."""
        if self.token:
            return Target(TargetKind.TOKEN, self.token, PlayerSource.TOKEN)
        if self.player_id and self.player_id.strip():
            return Target(TargetKind.PLAYER, self.player_id, PlayerSource.PLAYER_ID)
        if self.player_uuid and self.player_uuid.strip():
            return Target(TargetKind.PLAYER, self.player_uuid, PlayerSource.PLAYER_UUID)
        if self.player_name and self.player_name.strip():
            return Target(TargetKind.PLAYER, self.player_name, PlayerSource.PLAYER_NAME)
        return None

    def player_keys(self) -> list[str]:
        """Canonical identity keys for every player field present in the request."""
        return collect_player_keys(self.player_id, self.player_uuid, self.player_name)


@dataclass
class VideoInitRequest(TargetSelector):
    """Body of /admin/video/init."""

    url: str | None = None
    start_at_epoch_ms: Annotated[float | None, Alias("startAtEpochMs")] = None
    muted: bool = False
    volume: float = 1.0
    autoclose: Any = False

    field_checks: ClassVar[tuple[FieldCheck, ...]] = (
        ("url", _check_str),
        ("startAtEpochMs", _check_number),
        ("muted", _check_bool),
        ("volume", _check_number),
    )

    def __post_init__(self) -> None:
        """Require a source url."""
        if not self.url:
            raise ValueError("url required")

    def to_message(self) -> VideoInitMessage:
        """Build the wire command."""
        return VideoInitMessage(
            url=self.url,
            start_at_epoch_ms=self.start_at_epoch_ms,
            muted=self.muted,
            volume=self.volume,
            autoclose=bool(self.autoclose),
        )


@dataclass
class _PlaybackOptionsRequest(TargetSelector):
    """Optional volume, mute and autoclose overrides of a playback command."""

    volume: float | None = None
    muted: bool | None = None
    autoclose: bool | None = None

    field_checks: ClassVar[tuple[FieldCheck, ...]] = _PLAYBACK_CHECKS


@dataclass
class VideoPlayRequest(_PlaybackOptionsRequest):
    """Body of /admin/video/play."""

    at_ms: Annotated[float | None, Alias("atMs")] = None

    field_checks: ClassVar[tuple[FieldCheck, ...]] = (*_PLAYBACK_CHECKS, ("atMs", _check_number))

    def to_message(self, server_epoch_ms: float) -> VideoPlayMessage:
        """Build the wire command."""
        return VideoPlayMessage(
            server_epoch_ms=server_epoch_ms,
            at_ms=self.at_ms,
            volume=self.volume,
            muted=self.muted,
            autoclose=self.autoclose,
        )


@dataclass
class VideoPauseRequest(_PlaybackOptionsRequest):
    """Body of /admin/video/pause."""

    at_ms: Annotated[float | None, Alias("atMs")] = None

    field_checks: ClassVar[tuple[FieldCheck, ...]] = (*_PLAYBACK_CHECKS, ("atMs", _check_number))

    def to_message(self) -> VideoPauseMessage:
        """Build the wire command."""
        return VideoPauseMessage(
            at_ms=self.at_ms,
            volume=self.volume,
            muted=self.muted,
            autoclose=self.autoclose,
        )


@dataclass
class VideoSeekRequest(_PlaybackOptionsRequest):
    """Body of /admin/video/seek."""

    to_ms: Annotated[float | None, Alias("toMs")] = None

    field_checks: ClassVar[tuple[FieldCheck, ...]] = (*_PLAYBACK_CHECKS, ("toMs", _check_number))

    def to_message(self) -> VideoSeekMessage:
        """Build the wire command."""
        return VideoSeekMessage(
            to_ms=self.to_ms,
            volume=self.volume,
            muted=self.muted,
            autoclose=self.autoclose,
        )


@dataclass
class VideoCloseRequest(TargetSelector):
    """Body of /admin/video/close."""

    def to_message(self) -> VideoCloseMessage:
        """Build the wire command."""
        return VideoCloseMessage()


@dataclass
class VideoPlayInstantRequest(TargetSelector):
    """Body of /admin/video/play-instant: an init immediately followed by play."""

    url: str | None = None
    start_at_epoch_ms: Annotated[float | None, Alias("startAtEpochMs")] = None
    start_offset_ms: Annotated[float, Alias("startOffsetMs")] = 0
    muted: bool = False
    volume: float = 1.0
    autoclose: bool | None = None

    field_checks: ClassVar[tuple[FieldCheck, ...]] = (
        ("url", _check_str),
        ("startAtEpochMs", _check_number),
        ("startOffsetMs", _check_number),
        ("muted", _check_bool),
        ("volume", _check_number),
        ("autoclose", _check_bool),
    )

    def __post_init__(self) -> None:
        """Require a source url."""
        if not self.url:
            raise ValueError("url required")

    def start_anchor(self, now_ms: float) -> float:
        """Return the scheduled start: startAtEpochMs (or now) plus the offset."""
        base = self.start_at_epoch_ms if self.start_at_epoch_ms is not None else now_ms
        return base + (self.start_offset_ms or 0)

    def to_init_message(self, start_at_epoch_ms: float) -> VideoInitMessage:
        """Build the init command, scheduled at the given start anchor."""
        return VideoInitMessage(
            url=self.url,
            start_at_epoch_ms=start_at_epoch_ms,
            muted=self.muted,
            volume=self.volume,
            autoclose=bool(self.autoclose),
        )

    def to_play_message(self, now_ms: float, start_at_epoch_ms: float) -> VideoPlayMessage:
        """Build the play command that starts the source from its beginning at the anchor."""
        return VideoPlayMessage(
            server_epoch_ms=now_ms,
            at_ms=0,
            start_at_epoch_ms=start_at_epoch_ms,
            muted=self.muted,
            volume=self.volume,
            autoclose=self.autoclose,
        )


@dataclass
class VideoPreloadRequest(TargetSelector):
    """Body of /admin/video/preload."""

    url: str | None = None
    volume: float | None = None
    muted: bool | None = None

    field_checks: ClassVar[tuple[FieldCheck, ...]] = (
        ("url", _check_str),
        ("volume", _check_number),
        ("muted", _check_bool),
    )

    def __post_init__(self) -> None:
        """Require a source url."""
        if not self.url:
            raise ValueError("url required")

    def to_message(self) -> VideoPreloadMessage:
        """Build the wire command."""
        return VideoPreloadMessage(url=self.url, volume=self.volume, muted=self.muted)


@dataclass
class VideoPlaylistRequest(TargetSelector):
    """Body of /admin/video/initialize-playlist."""

    items: Any = None
    """Raw entries; entries that are not objects with a url are skipped."""

    def __post_init__(self) -> None:
        """Validate that at least one usable entry is present."""
        if not self.playlist_items():
            raise ValueError("items array with at least one entry required")

    def playlist_items(self) -> list[PlaylistItem]:
        """Return the usable entries, keeping only well-typed optional fields."""
        if not isinstance(self.items, list):
            return []
        result: list[PlaylistItem] = []
        for raw in self.items:
            if not isinstance(raw, dict) or not isinstance(raw.get("url"), str) or not raw["url"]:
                continue
            volume = raw.get("volume")
            muted = raw.get("muted")
            autoclose = raw.get("autoclose")
            at_ms = raw.get("atMs")
            result.append(
                PlaylistItem(
                    url=raw["url"],
                    volume=volume if is_finite_number(volume) else None,
                    muted=muted if isinstance(muted, bool) else None,
                    autoclose=autoclose if isinstance(autoclose, bool) else None,
                    at_ms=at_ms if is_finite_number(at_ms) else None,
                )
            )
        return result

    def to_message(self) -> VideoPlaylistInitMessage:
        """Build the wire command."""
        return VideoPlaylistInitMessage(items=self.playlist_items())


@dataclass
class SetRegionRequest(TargetSelector):
    """
    Body of /set-region.

    Either ``region`` or ``regionId`` must be present; a null or blank value
    removes the target from its region.
    """

    region: Any = None
    region_key: str | None = None
    """Which key carried the region ("region" wins over "regionId"), set while parsing."""

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Remember which region key was present, since null is a meaningful value."""
        d = super().__pre_deserialize__(d)
        if isinstance(d, dict):
            d = dict(d)
            if "region" in d:
                d["region_key"] = "region"
            elif "regionId" in d:
                d["region_key"] = "regionId"
            else:
                d["region_key"] = None
        return d

    @classmethod
    def check_selector(cls, selector: TargetSelector) -> None:
        """Require a token or player reference; the region is not a selector here."""
        if selector.resolve_player_reference() is None:
            raise ValueError(PLAYER_REQUIRED)

    def require_target(self) -> Target:
        """Resolve the player reference or raise ValueError."""
        target = self.resolve_player_reference()
        if target is None:
            raise ValueError(PLAYER_REQUIRED)
        return target

    def __post_init__(self) -> None:
        """Validate the region fields."""
        if self.region_key is None:
            raise ValueError("region or regionId required")
        value = self.requested_region
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{self.region_key} must be a string or null")

    @property
    def requested_region(self) -> Any:
        """The raw region value from whichever key was supplied."""
        return self.region if self.region_key == "region" else self.region_id

    @property
    def display_name(self) -> str | None:
        """Display name for the requested region, defaulting to the raw value."""
        return _first_text(
            self.region_display_name, self.region_name, self.region_label, self.requested_region
        )

"""
Command registrar: the single place where playback commands mutate media state.

Two stores of identical shape exist, one keyed by connection token and one keyed
by canonical region id. Every playback command delivered to a target is applied
here before it goes out on the wire, so the stores always describe what the
clients were last told to do.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, replace

from aiomediasync.models.state import MediaPlaylist, MediaPreload, MediaRecord, MediaState
from aiomediasync.models.types import MediaStatus, ServerMessage
from aiomediasync.models.video import (
    VideoCloseMessage,
    VideoInitMessage,
    VideoPauseMessage,
    VideoPlaylistInitMessage,
    VideoPlayMessage,
    VideoPreloadMessage,
    VideoSeekMessage,
)
from aiomediasync.util import Clock, is_finite_number, now_ms

from .clock import (
    position_at,
    resolve_pause_offset,
    resolve_play_anchor,
    resolve_seek_anchor,
)

DEFAULT_MEDIA_TTL_MS = 15 * 60 * 1000
"""Records untouched for this long are pruned."""

DEFAULT_VOLUME = 1.0

logger = logging.getLogger(__name__)


class MediaStore:
    """Media state records of one kind of target (tokens or regions)."""

    _records: dict[str, MediaRecord]

    def __init__(self, name: str) -> None:
        """
        Initialize an empty store.

        Args:
            name: Label used in log messages, e.g. "token" or "region".
        """
        self.name = name
        self._records = {}

    def get(self, key: str) -> MediaRecord | None:
        """Return the record for a key, if any."""
        return self._records.get(key)

    def ensure(self, key: str) -> MediaRecord:
        """Return the record for a key, creating an idle one if needed."""
        record = self._records.get(key)
        if record is None:
            record = MediaRecord()
            self._records[key] = record
        return record

    def delete(self, key: str) -> bool:
        """Delete the record for a key; returns False if there was none."""
        return self._records.pop(key, None) is not None

    def prune(self, cutoff_ms: float) -> list[str]:
        """Delete every record last updated before ``cutoff_ms`` and return their keys."""
        stale = [key for key, record in self._records.items() if record.last_update < cutoff_ms]
        for key in stale:
            del self._records[key]
        return stale

    def items(self) -> list[tuple[str, MediaRecord]]:
        """Return a copy of all (key, record) pairs."""
        return list(self._records.items())

    def keys(self) -> list[str]:
        """Return a copy of all keys."""
        return list(self._records)

    def clear(self) -> None:
        """Delete all records."""
        self._records.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))


@dataclass(frozen=True)
class CommandContext:
    """Per-dispatch inputs shared by every record a command is applied to."""

    session_id: object = None
    """Opaque correlation id stored on the record when given."""
    now_ms: float | None = None
    """Wall clock to apply the command at; captured once so region members stay in lockstep."""


@dataclass(frozen=True)
class PlaybackOptions:
    """Resolved volume, mute and autoclose of a playback command."""

    volume: float
    muted: bool
    autoclose: bool


def resolve_playback_options(
    command: VideoPlayMessage | VideoPauseMessage | VideoSeekMessage, record: MediaRecord
) -> PlaybackOptions:
    """
    Resolve playback options: the command wins, then the current state, then the init payload.

    Missing values end up as full volume, unmuted and no autoclose.
    """
    state = record.state
    init = record.init

    volume: float = DEFAULT_VOLUME
    for candidate in (command.volume, state.volume, init.volume if init else None):
        if is_finite_number(candidate):
            volume = candidate
            break

    muted = False
    for flag in (command.muted, state.muted, init.muted if init else None):
        if flag is not None:
            muted = bool(flag)
            break

    autoclose = False
    for flag in (command.autoclose, state.autoclose, init.autoclose if init else None):
        if flag is not None:
            autoclose = bool(flag)
            break

    return PlaybackOptions(volume=volume, muted=muted, autoclose=autoclose)


class MediaRegistrar:
    """Applies playback commands to the token and region stores."""

    def __init__(
        self,
        token_store: MediaStore,
        region_store: MediaStore,
        *,
        ttl_ms: float = DEFAULT_MEDIA_TTL_MS,
        clock: Clock = now_ms,
    ) -> None:
        """
        Initialize the registrar.

        Args:
            token_store: Records keyed by connection token.
            region_store: Records keyed by canonical region id.
            ttl_ms: Idle time after which records are pruned.
            clock: Wall clock in ms since epoch.
        """
        self.token_store = token_store
        self.region_store = region_store
        self.ttl_ms = ttl_ms
        self._clock = clock

    def apply_command(
        self,
        store: MediaStore,
        key: str,
        command: ServerMessage,
        context: CommandContext | None = None,
    ) -> ServerMessage:
        """
        Apply a command to the record of ``key`` and return its normalized form.

        The normalized command carries every resolved value (anchor, position,
        volume, mute, autoclose), so sending it to several clients keeps them in
        lockstep. Commands that are not playback commands are returned unchanged
        and leave the store untouched.
        """
        if not command.is_media_command:
            return command
        context = context or CommandContext()
        now = context.now_ms if context.now_ms is not None else self._clock()

        if isinstance(command, VideoCloseMessage):
            if store.delete(key):
                logger.debug("Closed media of %s %s", store.name, key)
            self.prune(now)
            return command

        record = store.ensure(key)
        match command:
            case VideoInitMessage():
                normalized = self._apply_init(record, command, now)
            case VideoPlayMessage():
                normalized = self._apply_play(record, command, now)
            case VideoPauseMessage():
                normalized = self._apply_pause(record, command, now)
            case VideoSeekMessage():
                normalized = self._apply_seek(record, command, now)
            case VideoPreloadMessage():
                record.preload = MediaPreload(url=command.url, requested_at=now)
                record.last_command = command
                normalized = command
            case VideoPlaylistInitMessage():
                record.playlist = MediaPlaylist(items=list(command.items), created_at=now)
                record.preload = None
                record.last_command = command
                normalized = command
            case _:
                record.last_command = command
                normalized = command

        record.last_update = now
        if context.session_id is not None:
            record.session_id = context.session_id
        self.prune(now)
        return normalized

    def _apply_init(
        self, record: MediaRecord, command: VideoInitMessage, now: float
    ) -> VideoInitMessage:
        anchor = command.start_at_epoch_ms if is_finite_number(command.start_at_epoch_ms) else now
        init = replace(
            command, start_at_epoch_ms=anchor, autoclose=bool(command.autoclose), resume=None
        )
        state = MediaState(
            status=MediaStatus.READY,
            started_at_epoch_ms=anchor,
            muted=init.muted if init.muted is not None else False,
            volume=init.volume if is_finite_number(init.volume) else DEFAULT_VOLUME,
            url=init.url,
            autoclose=init.autoclose,
        )
        record.init = init
        record.state = state
        record.preload = None
        record.playlist = None
        record.last_command = init
        return replace(init, resume=command.resume)

    def _apply_play(
        self, record: MediaRecord, command: VideoPlayMessage, now: float
    ) -> VideoPlayMessage:
        anchor = resolve_play_anchor(
            now,
            start_at_epoch_ms=command.start_at_epoch_ms,
            at_ms=command.at_ms,
            state=record.state,
            init_anchor_ms=record.init.start_at_epoch_ms if record.init else None,
        )
        options = resolve_playback_options(command, record)
        state = replace(
            record.state,
            status=MediaStatus.PLAYING,
            started_at_epoch_ms=anchor,
            paused_at_ms=None,
            volume=options.volume,
            muted=options.muted,
            autoclose=options.autoclose,
            url=record.state.url or (record.init.url if record.init else None),
        )
        normalized = VideoPlayMessage(
            server_epoch_ms=now,
            at_ms=position_at(anchor, now),
            start_at_epoch_ms=anchor,
            volume=options.volume,
            muted=options.muted,
            autoclose=options.autoclose,
        )
        record.state = state
        record.last_command = normalized
        return normalized

    def _apply_pause(
        self, record: MediaRecord, command: VideoPauseMessage, now: float
    ) -> VideoPauseMessage:
        offset = resolve_pause_offset(now, at_ms=command.at_ms, state=record.state)
        options = resolve_playback_options(command, record)
        state = replace(
            record.state,
            status=MediaStatus.PAUSED,
            paused_at_ms=offset,
            volume=options.volume,
            muted=options.muted,
            autoclose=options.autoclose,
        )
        normalized = VideoPauseMessage(
            at_ms=offset,
            volume=options.volume,
            muted=options.muted,
            autoclose=options.autoclose,
        )
        record.state = state
        record.last_command = normalized
        return normalized

    def _apply_seek(
        self, record: MediaRecord, command: VideoSeekMessage, now: float
    ) -> VideoSeekMessage:
        anchor = resolve_seek_anchor(now, command.to_ms)
        to_ms = now - anchor
        options = resolve_playback_options(command, record)
        state = replace(
            record.state,
            status=MediaStatus.PLAYING,
            started_at_epoch_ms=anchor,
            paused_at_ms=None,
            volume=options.volume,
            muted=options.muted,
            autoclose=options.autoclose,
        )
        record.state = state
        # Stored as the equivalent play so a replay needs no seek semantics.
        record.last_command = VideoPlayMessage(
            server_epoch_ms=now,
            at_ms=to_ms,
            start_at_epoch_ms=anchor,
            volume=options.volume,
            muted=options.muted,
            autoclose=options.autoclose,
        )
        return VideoSeekMessage(
            to_ms=to_ms,
            volume=options.volume,
            muted=options.muted,
            autoclose=options.autoclose,
        )

    def prune(self, now: float | None = None) -> None:
        """Delete records of both stores that were not updated within the TTL."""
        cutoff = (now if now is not None else self._clock()) - self.ttl_ms
        for store in (self.token_store, self.region_store):
            if stale := store.prune(cutoff):
                logger.debug("Pruned stale %s media: %s", store.name, ", ".join(stale))


def build_resume_messages(record: MediaRecord, now: float) -> list[ServerMessage]:
    """
    Return the messages that bring a (re)connecting client to the state of ``record``.

    That is the init payload flagged as a resume, followed by a play at the
    derived position or a pause at the frozen offset. Returns an empty list if
    the record has no init payload.
    """
    if record.init is None:
        return []
    messages: list[ServerMessage] = [replace(record.init, resume=True)]
    state = record.state
    autoclose = record.autoclose
    position = state.position_ms(now)
    if state.status == MediaStatus.PLAYING:
        anchor = state.started_at_epoch_ms if state.started_at_epoch_ms is not None else now
        messages.append(
            VideoPlayMessage(
                server_epoch_ms=now,
                at_ms=position if position is not None else 0,
                start_at_epoch_ms=anchor,
                volume=state.volume,
                muted=state.muted,
                autoclose=autoclose,
            )
        )
    elif state.status == MediaStatus.PAUSED:
        messages.append(
            VideoPauseMessage(
                at_ms=position if position is not None else 0,
                volume=state.volume,
                muted=state.muted,
                autoclose=autoclose,
            )
        )
    return messages

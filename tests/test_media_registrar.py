from __future__ import annotations

import pytest

from aiomediasync.models.state import MediaState
from aiomediasync.models.types import MediaStatus
from aiomediasync.models.video import (
    PingMessage,
    PlaylistItem,
    VideoCloseMessage,
    VideoInitMessage,
    VideoPauseMessage,
    VideoPlaylistInitMessage,
    VideoPlayMessage,
    VideoPreloadMessage,
    VideoSeekMessage,
)
from aiomediasync.server.media import (
    CommandContext,
    MediaRegistrar,
    MediaStore,
    build_resume_messages,
)

from .conftest import T0, FakeClock

URL = "https://cdn.example/intro.mp4"


@pytest.fixture
def store() -> MediaStore:
    return MediaStore("token")


@pytest.fixture
def registrar(store: MediaStore, clock: FakeClock) -> MediaRegistrar:
    return MediaRegistrar(store, MediaStore("region"), ttl_ms=60_000, clock=clock)


def test_init_anchors_at_now_and_resets_extras(
    registrar: MediaRegistrar, store: MediaStore
) -> None:
    registrar.apply_command(store, "tok", VideoPreloadMessage(url="https://cdn.example/next.mp4"))
    sent = registrar.apply_command(store, "tok", VideoInitMessage(url=URL, resume=True))

    record = store.get("tok")
    assert record is not None
    assert isinstance(sent, VideoInitMessage)
    assert sent.start_at_epoch_ms == T0
    assert sent.resume is True
    assert sent.autoclose is False
    assert record.init is not None
    assert record.init.resume is None
    assert record.state.status == MediaStatus.READY
    assert record.state.started_at_epoch_ms == T0
    assert record.state.url == URL
    assert record.preload is None
    assert record.last_update == T0


def test_play_after_init_derives_position_from_init_anchor(
    registrar: MediaRegistrar, store: MediaStore, clock: FakeClock
) -> None:
    registrar.apply_command(store, "tok", VideoInitMessage(url=URL))
    clock.advance(2000)
    sent = registrar.apply_command(store, "tok", VideoPlayMessage())

    assert sent == VideoPlayMessage(
        server_epoch_ms=T0 + 2000,
        at_ms=2000,
        start_at_epoch_ms=T0,
        volume=1.0,
        muted=False,
        autoclose=False,
    )
    assert store.get("tok").state.status == MediaStatus.PLAYING


def test_pause_then_play_resumes_at_frozen_offset(
    registrar: MediaRegistrar, store: MediaStore, clock: FakeClock
) -> None:
    registrar.apply_command(store, "tok", VideoInitMessage(url=URL))
    registrar.apply_command(store, "tok", VideoPlayMessage())
    clock.advance(2000)
    paused = registrar.apply_command(store, "tok", VideoPauseMessage())
    assert isinstance(paused, VideoPauseMessage)
    assert paused.at_ms == 2000

    clock.advance(5000)
    resumed = registrar.apply_command(store, "tok", VideoPlayMessage())
    assert isinstance(resumed, VideoPlayMessage)
    assert resumed.at_ms == 2000
    assert resumed.start_at_epoch_ms == clock.now - 2000
    assert store.get("tok").state.paused_at_ms is None


def test_pause_of_paused_media_keeps_offset(
    registrar: MediaRegistrar, store: MediaStore, clock: FakeClock
) -> None:
    registrar.apply_command(store, "tok", VideoInitMessage(url=URL))
    registrar.apply_command(store, "tok", VideoPauseMessage(at_ms=1500))
    clock.advance(10_000)
    again = registrar.apply_command(store, "tok", VideoPauseMessage())
    assert again.at_ms == 1500


def test_seek_resumes_and_records_equivalent_play(
    registrar: MediaRegistrar, store: MediaStore
) -> None:
    registrar.apply_command(store, "tok", VideoInitMessage(url=URL))
    registrar.apply_command(store, "tok", VideoPauseMessage(at_ms=100))
    sent = registrar.apply_command(store, "tok", VideoSeekMessage(to_ms=10_000))

    record = store.get("tok")
    assert isinstance(sent, VideoSeekMessage)
    assert sent.to_ms == 10_000
    assert record.state.status == MediaStatus.PLAYING
    assert record.state.started_at_epoch_ms == T0 - 10_000
    assert isinstance(record.last_command, VideoPlayMessage)
    assert record.last_command.at_ms == 10_000


def test_options_fall_back_to_state_then_init(
    registrar: MediaRegistrar, store: MediaStore
) -> None:
    registrar.apply_command(
        store, "tok", VideoInitMessage(url=URL, volume=0.5, muted=True, autoclose=True)
    )
    sent = registrar.apply_command(store, "tok", VideoPlayMessage())
    assert (sent.volume, sent.muted, sent.autoclose) == (0.5, True, True)

    sent = registrar.apply_command(store, "tok", VideoPauseMessage(volume=0.2, muted=False))
    assert (sent.volume, sent.muted, sent.autoclose) == (0.2, False, True)


def test_close_is_idempotent(registrar: MediaRegistrar, store: MediaStore) -> None:
    registrar.apply_command(store, "tok", VideoInitMessage(url=URL))
    assert registrar.apply_command(store, "tok", VideoCloseMessage()) == VideoCloseMessage()
    assert "tok" not in store
    assert registrar.apply_command(store, "tok", VideoCloseMessage()) == VideoCloseMessage()
    assert len(store) == 0


def test_non_media_messages_leave_store_untouched(
    registrar: MediaRegistrar, store: MediaStore
) -> None:
    ping = PingMessage(t=1)
    assert registrar.apply_command(store, "tok", ping) is ping
    assert len(store) == 0


def test_preload_and_playlist_are_tracked(
    registrar: MediaRegistrar, store: MediaStore, clock: FakeClock
) -> None:
    registrar.apply_command(store, "tok", VideoPreloadMessage(url="https://cdn.example/a.mp4"))
    record = store.get("tok")
    assert record.preload.url == "https://cdn.example/a.mp4"
    assert record.preload.requested_at == T0

    clock.advance(10)
    items = [PlaylistItem(url="https://cdn.example/a.mp4"), PlaylistItem(url="https://cdn.example/b.mp4")]
    registrar.apply_command(store, "tok", VideoPlaylistInitMessage(items=items))
    assert record.preload is None
    assert record.playlist.items == items
    assert record.playlist.created_at == T0 + 10
    assert not record.is_active


def test_session_id_is_stored(registrar: MediaRegistrar, store: MediaStore) -> None:
    registrar.apply_command(
        store, "tok", VideoInitMessage(url=URL), CommandContext(session_id="show-1")
    )
    assert store.get("tok").session_id == "show-1"


def test_stale_records_are_pruned_on_mutation(
    registrar: MediaRegistrar, store: MediaStore, clock: FakeClock
) -> None:
    registrar.apply_command(store, "old", VideoInitMessage(url=URL))
    clock.advance(60_001)
    registrar.apply_command(store, "new", VideoInitMessage(url=URL))
    assert "old" not in store
    assert "new" in store


def test_resume_messages_for_playing_record(
    registrar: MediaRegistrar, store: MediaStore
) -> None:
    registrar.apply_command(store, "tok", VideoInitMessage(url=URL, volume=0.8))
    registrar.apply_command(store, "tok", VideoPlayMessage(at_ms=1000))
    record = store.get("tok")

    init, play = build_resume_messages(record, T0 + 3000)
    assert isinstance(init, VideoInitMessage)
    assert init.resume is True
    assert init.url == URL
    assert play == VideoPlayMessage(
        server_epoch_ms=T0 + 3000,
        at_ms=4000,
        start_at_epoch_ms=T0 - 1000,
        volume=0.8,
        muted=False,
        autoclose=False,
    )


def test_resume_messages_for_paused_and_ready_records(
    registrar: MediaRegistrar, store: MediaStore
) -> None:
    registrar.apply_command(store, "ready", VideoInitMessage(url=URL))
    registrar.apply_command(store, "paused", VideoInitMessage(url=URL))
    registrar.apply_command(store, "paused", VideoPauseMessage(at_ms=750))

    assert [type(m) for m in build_resume_messages(store.get("ready"), T0)] == [VideoInitMessage]
    _, pause = build_resume_messages(store.get("paused"), T0 + 5000)
    assert isinstance(pause, VideoPauseMessage)
    assert pause.at_ms == 750


def test_resume_messages_without_init(registrar: MediaRegistrar, store: MediaStore) -> None:
    registrar.apply_command(store, "tok", VideoPreloadMessage(url=URL))
    assert build_resume_messages(store.get("tok"), T0) == []


def test_resume_before_scheduled_start_holds_at_zero(
    registrar: MediaRegistrar, store: MediaStore
) -> None:
    registrar.apply_command(store, "tok", VideoInitMessage(url=URL, start_at_epoch_ms=T0 + 5000))
    registrar.apply_command(store, "tok", VideoPlayMessage(at_ms=0, start_at_epoch_ms=T0 + 5000))

    _, play = build_resume_messages(store.get("tok"), T0 + 1000)
    assert play.at_ms == 0
    assert play.start_at_epoch_ms == T0 + 5000


@pytest.mark.parametrize(
    ("state", "expected"),
    [
        (MediaState(status=MediaStatus.PLAYING, started_at_epoch_ms=T0 - 2500), 2500),
        (MediaState(status=MediaStatus.PLAYING, started_at_epoch_ms=T0 + 100), 0),
        (MediaState(status=MediaStatus.PAUSED, paused_at_ms=42), 42),
        (MediaState(status=MediaStatus.READY, started_at_epoch_ms=T0), None),
        (MediaState(), None),
    ],
)
def test_state_position(state: MediaState, expected: float | None) -> None:
    assert state.position_ms(T0) == expected

from __future__ import annotations

import pytest

from aiomediasync.models.admin import TARGET_REQUIRED
from aiomediasync.models.video import (
    VideoCloseMessage,
    VideoInitMessage,
    VideoPlaylistInitMessage,
    VideoPlayMessage,
    VideoSeekMessage,
)
from aiomediasync.server.server import MediaSyncServer

from .conftest import T0, FakeClock

URL = "https://cdn.example/show.mp4"


def test_body_must_be_an_object(server: MediaSyncServer) -> None:
    status, body = server.handlers.handle_video_init(["not", "an", "object"])
    assert status == 400
    assert "error" in body


def test_missing_target_is_400(server: MediaSyncServer) -> None:
    assert server.handlers.handle_video_play({}) == (400, {"error": TARGET_REQUIRED})


def test_invalid_field_is_400(server: MediaSyncServer) -> None:
    status, body = server.handlers.handle_video_seek({"token": "a", "toMs": "later"})
    assert status == 400
    assert body == {"error": "toMs must be a finite number"}


@pytest.mark.parametrize(
    ("handler", "body", "error"),
    [
        ("handle_video_play", {"token": ["x"]}, "token must be a string or null"),
        ("handle_video_play", {"token": 5}, "token must be a string or null"),
        ("handle_video_play", {"token": "a", "atMs": "5"}, "atMs must be a finite number"),
        ("handle_video_play", {"token": "a", "atMs": True}, "atMs must be a finite number"),
        ("handle_video_play", {"token": "a", "volume": "0.5"}, "volume must be a finite number"),
        ("handle_video_play", {"token": "a", "autoclose": "yes"}, "autoclose must be a boolean"),
        ("handle_video_pause", {"token": "a", "muted": 1}, "muted must be a boolean"),
        ("handle_video_init", {"token": "a", "url": ["u"]}, "url must be a string or null"),
        ("handle_video_init", {"regionId": 7, "url": URL}, "regionId must be a string or null"),
        ("handle_video_play_instant", {"token": "a", "url": URL, "startOffsetMs": "1"}, "startOffsetMs must be a finite number"),
        ("handle_video_preload", {"token": "a", "url": URL, "muted": "no"}, "muted must be a boolean"),
        ("handle_set_region", {"token": True, "region": "x"}, "token must be a string or null"),
    ],
)
def test_mistyped_fields_are_rejected_without_state_change(
    server: MediaSyncServer, attach, handler: str, body: dict, error: str
) -> None:
    attach("a")
    tokens_before = server.token_media.keys()
    status, response = getattr(server.handlers, handler)(body)
    assert (status, response) == (400, {"error": error})
    assert server.token_media.keys() == tokens_before
    assert server.region_media.keys() == []
    assert server.regions.members("x") == []


def test_init_to_region_reports_display_name(server: MediaSyncServer, attach) -> None:
    connection = attach("a")
    server.regions.assign_region_for_token("a", "lobby")

    status, body = server.handlers.handle_video_init(
        {"regionId": "Lobby", "regionDisplayName": "The Lobby", "url": URL, "sessionId": 7}
    )
    assert status == 200
    assert body == {
        "delivered": True,
        "target": "region",
        "regionId": "lobby",
        "regionDisplayName": "The Lobby",
    }
    assert server.region_media.get("lobby").session_id == 7
    assert isinstance(connection.pending_messages()[-1], VideoInitMessage)


def test_seek_is_delivered_with_resolved_position(
    server: MediaSyncServer, clock: FakeClock, attach
) -> None:
    connection = attach("a")
    server.handlers.handle_video_init({"token": "a", "url": URL})
    clock.advance(100)
    status, body = server.handlers.handle_video_seek({"token": "a", "toMs": 42_000})

    assert (status, body) == (200, {"delivered": True, "target": "token"})
    seek = connection.pending_messages()[-1]
    assert isinstance(seek, VideoSeekMessage)
    assert seek.to_ms == 42_000
    assert server.token_media.get("a").state.started_at_epoch_ms == T0 + 100 - 42_000


def test_close_removes_media(server: MediaSyncServer, attach) -> None:
    connection = attach("a")
    server.handlers.handle_video_init({"token": "a", "url": URL})
    status, body = server.handlers.handle_video_close({"token": "a"})
    assert (status, body) == (200, {"delivered": True, "target": "token"})
    assert connection.pending_messages()[-1] == VideoCloseMessage()
    assert "a" not in server.token_media


def test_playlist_reports_count(server: MediaSyncServer, attach) -> None:
    connection = attach("a")
    status, body = server.handlers.handle_video_initialize_playlist(
        {"token": "a", "items": [{"url": URL}, {"url": "https://cdn.example/two.mp4"}, {}]}
    )
    assert (status, body) == (200, {"delivered": True, "target": "token", "count": 2})
    message = connection.pending_messages()[-1]
    assert isinstance(message, VideoPlaylistInitMessage)
    assert len(server.token_media.get("a").playlist.items) == 2


def test_preload_is_tracked(server: MediaSyncServer, attach) -> None:
    attach("a")
    status, _ = server.handlers.handle_video_preload({"token": "a", "url": URL})
    assert status == 200
    assert server.token_media.get("a").preload.url == URL


def test_play_instant_on_disconnected_token_stops_at_init(server: MediaSyncServer) -> None:
    status, body = server.handlers.handle_video_play_instant({"token": "gone", "url": URL})
    assert (status, body) == (200, {"delivered": False, "stage": "init", "target": "token"})
    assert server.token_media.get("gone").init.url == URL


def test_play_instant_to_region(server: MediaSyncServer, attach) -> None:
    connection = attach("a")
    server.regions.assign_region_for_token("a", "stage")

    status, body = server.handlers.handle_video_play_instant(
        {"regionId": "stage", "url": URL, "startOffsetMs": 250}
    )
    assert status == 200
    assert body == {
        "delivered": True,
        "stage": "play",
        "target": "region",
        "regionId": "stage",
        "regionDisplayName": "stage",
        "initDelivered": True,
        "playDelivered": True,
    }
    init, play = connection.pending_messages()
    assert isinstance(init, VideoInitMessage)
    assert init.start_at_epoch_ms == T0 + 250
    assert isinstance(play, VideoPlayMessage)
    assert play.at_ms == 0
    assert play.start_at_epoch_ms == T0 + 250
    assert server.region_media.get("stage").state.started_at_epoch_ms == T0 + 250


def test_play_instant_schedule_reaches_late_joiners(
    server: MediaSyncServer, clock: FakeClock, attach
) -> None:
    server.handlers.handle_video_play_instant(
        {"regionId": "stage", "url": URL, "startOffsetMs": 5000}
    )
    clock.advance(1000)
    late = attach("late")
    server.handlers.handle_set_region({"token": "late", "region": "stage"})

    init, play = late.pending_messages()
    assert isinstance(init, VideoInitMessage)
    assert init.resume is True
    assert isinstance(play, VideoPlayMessage)
    assert play.start_at_epoch_ms == T0 + 5000
    assert play.at_ms == 0


def test_play_instant_to_empty_region_still_records(server: MediaSyncServer) -> None:
    status, body = server.handlers.handle_video_play_instant({"regionId": "void", "url": URL})
    assert status == 200
    assert body["stage"] == "play"
    assert body["initDelivered"] is False
    assert body["playDelivered"] is False
    assert server.region_media.get("void").state.started_at_epoch_ms == T0


def test_set_region_by_token_pins_identity(server: MediaSyncServer, attach) -> None:
    attach("a", player_uuid="UUID-1")

    status, body = server.handlers.handle_set_region(
        {"token": "a", "region": "Lobby", "regionDisplayName": "Main Lobby"}
    )
    assert status == 200
    assert body == {
        "ok": True,
        "target": "token",
        "changed": True,
        "previousRegionId": None,
        "regionId": "lobby",
        "regionDisplayName": "Main Lobby",
    }
    assert server.regions.player_overrides() == {"uuid:uuid-1": "lobby"}


def test_set_region_by_player_moves_every_connection(server: MediaSyncServer, attach) -> None:
    attach("a", player_uuid="UUID-1")
    attach("b", player_uuid="uuid-1")
    attach("c", player_uuid="someone-else")

    status, body = server.handlers.handle_set_region({"playerUuid": "uuid-1", "region": "Stage"})
    assert status == 200
    assert body["target"] == "player"
    assert body["regionId"] == "stage"
    assert body["regionDisplayName"] == "Stage"
    assert [entry["token"] for entry in body["affectedTokens"]] == ["a", "b"]
    assert all(entry["changed"] for entry in body["affectedTokens"])
    assert server.regions.members("stage") == ["a", "b"]
    assert server.regions.player_overrides() == {"uuid:uuid-1": "stage"}


def test_set_region_override_applies_on_reconnect(server: MediaSyncServer, attach) -> None:
    server.handlers.handle_set_region({"playerName": "Steve", "regionId": "arena"})
    connection = attach("fresh-token", player_name="steve")
    assert connection.region == "arena"


def test_set_region_null_clears_override(server: MediaSyncServer) -> None:
    server.handlers.handle_set_region({"playerId": "p-1", "region": "arena"})
    server.handlers.handle_set_region({"playerId": "p-1", "region": None})
    assert server.regions.player_overrides() == {}


def test_connections_snapshot(server: MediaSyncServer, clock: FakeClock, attach) -> None:
    attach("a", player_name="Alex")
    attach("b")
    server.handlers.handle_video_init({"token": "a", "url": URL})
    clock.advance(500)

    status, body = server.handlers.connections_snapshot()
    assert status == 200
    assert body["ok"] is True
    by_token = {entry["token"]: entry for entry in body["connections"]}
    assert by_token["a"]["playerName"] == "Alex"
    assert by_token["a"]["idleMs"] == 500
    assert by_token["a"]["activeMedia"]["init"]["url"] == URL
    assert by_token["b"]["activeMedia"] is None


def test_regions_snapshot(server: MediaSyncServer, attach) -> None:
    attach("a")
    server.handlers.handle_set_region({"token": "a", "region": "Lobby"})
    server.handlers.handle_video_init({"regionId": "Lobby", "url": URL})
    server.handlers.handle_video_preload({"regionId": "Lobby", "url": URL})
    server.handlers.handle_video_init({"regionId": "empty-room", "url": URL})

    status, body = server.handlers.regions_snapshot()
    assert status == 200
    by_id = {entry["regionId"]: entry for entry in body["regions"]}
    lobby = by_id["lobby"]
    assert lobby["displayName"] == "Lobby"
    assert lobby["memberCount"] == 1
    assert lobby["members"][0]["token"] == "a"
    assert lobby["activeMedia"]["preload"]["url"] == URL
    assert by_id["empty-room"]["memberCount"] == 0


def test_reset_clears_all_state(server: MediaSyncServer, attach) -> None:
    attach("a")
    server.handlers.handle_set_region({"token": "a", "region": "lobby"})
    server.handlers.handle_video_init({"regionId": "lobby", "url": URL})

    server.reset()
    assert len(server.connections) == 0
    assert len(server.token_media) == 0
    assert len(server.region_media) == 0
    assert server.regions.region_ids() == []

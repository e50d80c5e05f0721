"""
Request handlers shared by the admin HTTP routes and the plugin bridge.

Handlers take the decoded JSON body and return ``(status, body)``; they never
raise for bad input, validation errors become a 400 response.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from aiomediasync.models.admin import (
    SetRegionRequest,
    TargetSelector,
    VideoCloseRequest,
    VideoInitRequest,
    VideoPauseRequest,
    VideoPlayInstantRequest,
    VideoPlaylistRequest,
    VideoPlayRequest,
    VideoPreloadRequest,
    VideoSeekRequest,
)
from aiomediasync.models.types import MediaStatus, TargetKind
from aiomediasync.models.video import VideoCloseMessage
from aiomediasync.util import Clock, canonicalize_player_key, collect_player_keys, now_ms

from .connections import ConnectionRegistry
from .dispatch import MediaDispatcher
from .media import CommandContext, MediaRegistrar
from .regions import RegionIndex

logger = logging.getLogger(__name__)

HandlerResult = tuple[int, dict[str, Any]]
Handler = Callable[[Any], HandlerResult]

_RequestT = TypeVar("_RequestT", bound=TargetSelector)


def error_result(status: int, message: str) -> HandlerResult:
    """Build an error response."""
    return status, {"error": message}


def _parse(request_cls: type[_RequestT], body: Any) -> _RequestT:
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    return request_cls.from_dict(body)


class AdminHandlers:
    """Implements every admin operation on top of the shared stores."""

    def __init__(
        self,
        connections: ConnectionRegistry,
        regions: RegionIndex,
        registrar: MediaRegistrar,
        dispatcher: MediaDispatcher,
        *,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the handlers."""
        self._connections = connections
        self._regions = regions
        self._registrar = registrar
        self._dispatcher = dispatcher
        self._clock = clock

    def _handle(
        self,
        request_cls: type[_RequestT],
        body: Any,
        handler: Callable[[_RequestT], HandlerResult],
    ) -> HandlerResult:
        try:
            request = _parse(request_cls, body)
        except ValueError as err:
            logger.debug("Rejected %s: %s", request_cls.__name__, err)
            return error_result(400, str(err))
        return handler(request)

    # Video commands

    def handle_video_init(self, body: Any) -> HandlerResult:
        """Load a source on the target."""
        return self._handle(VideoInitRequest, body, self._video_init)

    def _video_init(self, request: VideoInitRequest) -> HandlerResult:
        result = self._dispatcher.deliver_payload_to_target(
            request.resolve_target(),
            request.to_message(),
            CommandContext(session_id=request.session_id),
            display_name=request.display_name,
        )
        return 200, result.response

    def handle_video_play(self, body: Any) -> HandlerResult:
        """Start or resume playback on the target."""
        return self._handle(VideoPlayRequest, body, self._video_play)

    def _video_play(self, request: VideoPlayRequest) -> HandlerResult:
        now = self._clock()
        result = self._dispatcher.deliver_payload_to_target(
            request.resolve_target(),
            request.to_message(now),
            CommandContext(now_ms=now),
            display_name=request.display_name,
        )
        return 200, result.response

    def handle_video_pause(self, body: Any) -> HandlerResult:
        """Pause playback on the target."""
        return self._handle(VideoPauseRequest, body, self._video_pause)

    def _video_pause(self, request: VideoPauseRequest) -> HandlerResult:
        result = self._dispatcher.deliver_payload_to_target(
            request.resolve_target(), request.to_message(), display_name=request.display_name
        )
        return 200, result.response

    def handle_video_seek(self, body: Any) -> HandlerResult:
        """Seek (and resume) playback on the target."""
        return self._handle(VideoSeekRequest, body, self._video_seek)

    def _video_seek(self, request: VideoSeekRequest) -> HandlerResult:
        result = self._dispatcher.deliver_payload_to_target(
            request.resolve_target(), request.to_message(), display_name=request.display_name
        )
        return 200, result.response

    def handle_video_close(self, body: Any) -> HandlerResult:
        """Close the player of the target."""
        return self._handle(VideoCloseRequest, body, self._video_close)

    def _video_close(self, request: VideoCloseRequest) -> HandlerResult:
        result = self._dispatcher.deliver_payload_to_target(
            request.resolve_target(), request.to_message(), display_name=request.display_name
        )
        return 200, result.response

    def handle_video_play_instant(self, body: Any) -> HandlerResult:
        """Load a source and immediately start it from the beginning."""
        return self._handle(VideoPlayInstantRequest, body, self._video_play_instant)

    def _video_play_instant(self, request: VideoPlayInstantRequest) -> HandlerResult:
        target = request.resolve_target()
        assert target is not None
        display_name = request.display_name
        is_region = target.kind == TargetKind.REGION

        now = self._clock()
        anchor = request.start_anchor(now)
        init_result = self._dispatcher.deliver_payload_to_target(
            target,
            request.to_init_message(anchor),
            CommandContext(now_ms=now, session_id=request.session_id),
            display_name=display_name,
        )
        init_delivered = init_result.delivered
        # Regions still get the play so the region record starts even without members.
        if not init_delivered and not is_region:
            return 200, {"delivered": False, "stage": "init", "target": target.kind.value}

        play_result = self._dispatcher.deliver_payload_to_target(
            target,
            request.to_play_message(now, anchor),
            CommandContext(now_ms=now),
            display_name=display_name,
        )
        play_delivered = play_result.delivered
        response: dict[str, Any] = {
            "delivered": init_delivered and play_delivered,
            "stage": "play" if play_delivered or not init_delivered else "init",
            "target": target.kind.value,
        }
        if is_region:
            response["regionId"] = target.value
            response["regionDisplayName"] = self._regions.display_name(target.value)
            response["initDelivered"] = init_delivered
            response["playDelivered"] = play_delivered
        return 200, response

    def handle_video_preload(self, body: Any) -> HandlerResult:
        """Ask the target to pre-fetch a source."""
        return self._handle(VideoPreloadRequest, body, self._video_preload)

    def _video_preload(self, request: VideoPreloadRequest) -> HandlerResult:
        result = self._dispatcher.deliver_payload_to_target(
            request.resolve_target(),
            request.to_message(),
            CommandContext(session_id=request.session_id),
            display_name=request.display_name,
        )
        return 200, result.response

    def handle_video_initialize_playlist(self, body: Any) -> HandlerResult:
        """Queue a playlist on the target."""
        return self._handle(VideoPlaylistRequest, body, self._video_initialize_playlist)

    def _video_initialize_playlist(self, request: VideoPlaylistRequest) -> HandlerResult:
        message = request.to_message()
        result = self._dispatcher.deliver_payload_to_target(
            request.resolve_target(),
            message,
            CommandContext(session_id=request.session_id),
            display_name=request.display_name,
            extras={"count": len(message.items)},
        )
        return 200, result.response

    # Regions

    def handle_set_region(self, body: Any) -> HandlerResult:
        """Move a token or every connection of a player into a region (or out of any)."""
        return self._handle(SetRegionRequest, body, self._set_region)

    def _set_region(self, request: SetRegionRequest) -> HandlerResult:
        target = request.require_target()
        display_name = request.display_name
        desired = self._regions.canonicalize(request.requested_region, display_name)
        response: dict[str, Any] = {"ok": True, "target": target.kind.value}

        if target.kind == TargetKind.TOKEN:
            token = target.value
            assignment = self._regions.assign_region_for_token(
                token, desired, display_name=display_name
            )
            response["changed"] = assignment.changed
            response["previousRegionId"] = assignment.previous
            if (connection := self._connections.get(token)) is not None:
                # Pin the identity so a reconnect with another token lands here too.
                self._regions.assign_region_for_player_keys(
                    collect_player_keys(
                        connection.player_id, connection.player_uuid, connection.player_name
                    ),
                    assignment.region_id,
                )
                self._reconcile(token, assignment.changed, assignment.region_id, assignment.previous)
        else:
            assert target.source is not None
            canonical_key = canonicalize_player_key(target.source.key_kind, target.value)
            if canonical_key is None:
                return error_result(400, f"invalid {target.source.value}")
            self._regions.assign_region_for_player_key(canonical_key, desired)
            self._regions.assign_region_for_player_keys(
                [key for key in request.player_keys() if key != canonical_key], desired
            )
            affected: list[dict[str, Any]] = []
            for token in self._dispatcher.collect_tokens_for_player(target.value, target.source):
                assignment = self._regions.assign_region_for_token(
                    token, desired, display_name=display_name
                )
                affected.append(
                    {
                        "token": token,
                        "changed": assignment.changed,
                        "regionId": assignment.region_id,
                        "previousRegionId": assignment.previous,
                    }
                )
                self._reconcile(token, assignment.changed, assignment.region_id, assignment.previous)
            response["affectedTokens"] = affected

        response["regionId"] = desired
        response["regionDisplayName"] = self._regions.display_name(desired)
        return 200, response

    def _reconcile(
        self, token: str, changed: bool, region_id: str | None, previous: str | None
    ) -> None:
        if not changed:
            return
        if region_id is not None:
            self._dispatcher.sync_region_media_to_token(token, region_id)
        elif previous is not None:
            self._dispatcher.send_to_token(token, VideoCloseMessage())

    # Snapshots

    def snapshot_client_for_plugin(self, token: str) -> dict[str, Any]:
        """Return the identity and region of a connection as reported to plugins."""
        connection = self._connections.get(token)
        if connection is None:
            return {"token": token}
        return connection.snapshot()

    def connections_snapshot(self) -> HandlerResult:
        """Return every live connection joined with its token media."""
        now = self._clock()
        connections = []
        for connection in self._connections:
            record = self._registrar.token_store.get(connection.token)
            active = (
                record.to_snapshot()
                if record is not None and record.state.status != MediaStatus.IDLE
                else None
            )
            connections.append(
                {
                    "token": connection.token,
                    "playerId": connection.player_id,
                    "playerUuid": connection.player_uuid,
                    "playerName": connection.player_name,
                    "publicServerKey": connection.public_server_key,
                    "scope": connection.scope,
                    "region": connection.region,
                    "regionDisplayName": self._regions.display_name(connection.region),
                    "connectedAt": connection.connected_at,
                    "lastSeen": connection.last_seen,
                    "connected": connection.connected,
                    "idleMs": now - connection.last_seen if connection.last_seen else None,
                    "activeMedia": active,
                }
            )
        return 200, {"ok": True, "connections": connections}

    def regions_snapshot(self) -> HandlerResult:
        """Return every region with members or media, joined with its region media."""
        region_ids = list(
            dict.fromkeys([*self._regions.region_ids(), *self._registrar.region_store.keys()])
        )
        regions = []
        for region_id in region_ids:
            members = []
            for token in self._regions.members(region_id):
                connection = self._connections.get(token)
                members.append(
                    {
                        "token": token,
                        "playerId": connection.player_id if connection else None,
                        "playerUuid": connection.player_uuid if connection else None,
                        "playerName": connection.player_name if connection else None,
                        "connected": bool(connection and connection.connected),
                        "lastSeen": connection.last_seen if connection else None,
                    }
                )
            record = self._registrar.region_store.get(region_id)
            active = (
                record.to_snapshot(full=True)
                if record is not None and record.state.status != MediaStatus.IDLE
                else None
            )
            regions.append(
                {
                    "regionId": region_id,
                    "displayName": self._regions.display_name(region_id),
                    "memberCount": len(members),
                    "members": members,
                    "activeMedia": active,
                    "lastUpdate": record.last_update if record else None,
                }
            )
        return 200, {"ok": True, "regions": regions}

"""Routing of playback commands to tokens, players and regions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from aiomediasync.models.admin import Target
from aiomediasync.models.types import PlayerSource, ServerMessage, TargetKind
from aiomediasync.models.video import VideoCloseMessage
from aiomediasync.util import Clock, now_ms

from .connections import Connection, ConnectionRegistry
from .media import CommandContext, MediaRegistrar, build_resume_messages
from .regions import RegionIndex

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of delivering a command to a target."""

    delivered: bool
    response: dict[str, Any] = field(default_factory=dict)
    """JSON-ready body reported back to the caller."""


class MediaDispatcher:
    """
    Delivers commands to live connections and keeps the media stores current.

    Every playback command passes through the registrar before it is sent: token
    deliveries update the token store, region deliveries update the region store
    once and then every member's token store with the same normalized command.
    """

    def __init__(
        self,
        connections: ConnectionRegistry,
        regions: RegionIndex,
        registrar: MediaRegistrar,
        *,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the dispatcher on top of the shared stores."""
        self._connections = connections
        self._regions = regions
        self._registrar = registrar
        self._clock = clock

    def _context(self, context: CommandContext | None) -> CommandContext:
        """Return ``context`` with the wall clock pinned, capturing it now if needed."""
        if context is None:
            return CommandContext(now_ms=self._clock())
        if context.now_ms is None:
            return CommandContext(session_id=context.session_id, now_ms=self._clock())
        return context

    def send_to_token(
        self, token: str, message: ServerMessage, context: CommandContext | None = None
    ) -> bool:
        """
        Send a message to the connection of ``token``.

        Playback commands are recorded for the token even when it is not
        connected, so they are replayed once it (re)connects.
        """
        if message.is_media_command:
            message = self._registrar.apply_command(
                self._registrar.token_store, token, message, self._context(context)
            )
        connection = self._connections.get(token)
        if connection is None or not connection.connected:
            return False
        return connection.send_message(message)

    def send_to_player(
        self, reference: str, message: ServerMessage, context: CommandContext | None = None
    ) -> bool:
        """Send a message to the first live connection whose player matches ``reference``."""
        for connection in self._connections:
            if connection.connected and connection.matches_player(reference):
                return self.send_to_token(connection.token, message, context)
        logger.debug("No live connection for player %s", reference)
        return False

    def send_to_region(
        self,
        region_id: str,
        message: ServerMessage,
        context: CommandContext | None = None,
        *,
        display_name: str | None = None,
    ) -> bool:
        """
        Send a message to every member of a region.

        The command is applied once to the region record and the resulting
        normalized command goes to each member unchanged, so members share one
        anchor. Returns True if at least one member received it.
        """
        canonical = self._regions.canonicalize(region_id, display_name)
        if canonical is None:
            return False
        context = self._context(context)
        if message.is_media_command:
            message = self._registrar.apply_command(
                self._registrar.region_store, canonical, message, context
            )
        delivered = False
        for token in self._regions.members(canonical):
            delivered = self.send_to_token(token, message, context) or delivered
        return delivered

    def deliver_payload_to_target(
        self,
        target: Target | None,
        message: ServerMessage,
        context: CommandContext | None = None,
        *,
        display_name: str | None = None,
        extras: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        """Deliver a message to a resolved target and build the response body."""
        if target is None:
            return DeliveryResult(False, {"delivered": False, "target": None})

        match target.kind:
            case TargetKind.TOKEN:
                delivered = self.send_to_token(target.value, message, context)
            case TargetKind.PLAYER:
                delivered = self.send_to_player(target.value, message, context)
            case TargetKind.REGION:
                delivered = self.send_to_region(
                    target.value, message, context, display_name=display_name
                )

        response: dict[str, Any] = {"delivered": delivered, "target": target.kind.value}
        if extras:
            response.update(extras)
        if target.kind == TargetKind.REGION:
            response["regionId"] = target.value
            response["regionDisplayName"] = self._regions.display_name(target.value)
        return DeliveryResult(delivered, response)

    def collect_tokens_for_player(self, reference: str, source: PlayerSource) -> list[str]:
        """
        Return every connected token of a player, matched on the field ``source`` names.

        Ids match exactly, uuids and names case-insensitively, and a reference
        equal to a token always matches that token.
        """
        lowered = reference.lower()
        tokens: list[str] = []
        for connection in self._connections:
            match source:
                case PlayerSource.PLAYER_ID:
                    matched = connection.player_id == reference
                case PlayerSource.PLAYER_UUID:
                    matched = bool(connection.player_uuid) and (
                        connection.player_uuid.lower() == lowered
                    )
                case PlayerSource.PLAYER_NAME:
                    matched = bool(connection.player_name) and (
                        connection.player_name.lower() == lowered
                    )
                case _:
                    matched = False
            if matched or connection.token == reference:
                tokens.append(connection.token)
        return tokens

    def sync_region_media_to_token(self, token: str, region_id: str | None) -> bool:
        """
        Bring a token that just joined a region up to the region's playback.

        Sends the region's init flagged as a resume followed by a play at the
        derived position (or a pause at the frozen offset). A region without an
        init gets the token's player closed instead. Returns True if media was
        replayed.
        """
        if not region_id:
            return False
        record = self._registrar.region_store.get(region_id)
        if record is None or record.init is None:
            self.send_to_token(token, VideoCloseMessage())
            return False
        context = self._context(CommandContext(session_id=record.session_id))
        for message in build_resume_messages(record, context.now_ms):
            self.send_to_token(token, message, context)
        logger.debug("Synced token %s to media of region %s", token, region_id)
        return True

    def resume_token_media(self, connection: Connection) -> bool:
        """
        Replay the pending media of a (re)connecting token straight to its connection.

        The token record is left untouched, it already describes this media.
        """
        record = self._registrar.token_store.get(connection.token)
        if record is None:
            return False
        messages = build_resume_messages(record, self._clock())
        for message in messages:
            connection.send_message(message)
        return bool(messages)

    def apply_region_for_client(self, token: str) -> str | None:
        """
        Re-derive the region of a connection and reconcile its playback.

        Leaving every region closes the player; entering a region syncs it to
        the region's media. Returns the resulting region id.
        """
        connection = self._connections.get(token)
        region_id = self._regions.get_region_for_client(token, connection)
        result = self._regions.assign_region_for_token(token, region_id)
        if not result.changed:
            return result.region_id
        if result.region_id is None:
            if result.previous is not None:
                self.send_to_token(token, VideoCloseMessage())
            return None
        self.sync_region_media_to_token(token, result.region_id)
        return result.region_id

    def update_client_identity(
        self,
        token: str,
        *,
        player_id: str | None = None,
        player_uuid: str | None = None,
        player_name: str | None = None,
        public_server_key: str | None = None,
        scope: Any = None,
    ) -> None:
        """Merge an identity update into a connection and re-resolve its region."""
        connection = self._connections.get(token)
        if connection is None:
            return
        connection.update_identity(
            player_id=player_id,
            player_uuid=player_uuid,
            player_name=player_name,
            public_server_key=public_server_key,
            scope=scope,
        )
        connection.touch(self._clock())
        self.apply_region_for_client(token)

"""Tear down players once their media finished, region-wide when every member is done."""

from __future__ import annotations

import logging

from aiomediasync.models.client import VideoStateMessage
from aiomediasync.models.types import MediaStatus
from aiomediasync.models.video import VideoCloseMessage
from aiomediasync.util import Clock, is_finite_number, now_ms

from .dispatch import MediaDispatcher
from .media import MediaRegistrar
from .regions import RegionIndex

logger = logging.getLogger(__name__)


def _parse_status(value: str | None) -> MediaStatus | None:
    if value is None:
        return None
    try:
        return MediaStatus(value)
    except ValueError:
        return None


class AutocloseCascade:
    """Reacts to playback states reported by clients."""

    def __init__(
        self,
        registrar: MediaRegistrar,
        regions: RegionIndex,
        dispatcher: MediaDispatcher,
        *,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the cascade on top of the shared stores."""
        self._registrar = registrar
        self._regions = regions
        self._dispatcher = dispatcher
        self._clock = clock

    def handle_client_video_state(self, token: str, message: VideoStateMessage) -> None:
        """
        Record a client's reported playback state and apply autoclose.

        When media with autoclose reports ``ended`` or ``idle``, the token's own
        record is closed. If the token's region also has autoclose and no other
        member is still active, the region is closed for every member. Reports
        for tokens without a record are ignored, so a repeated ``ended`` cannot
        close a region twice.
        """
        record = self._registrar.token_store.get(token)
        if record is None:
            return

        status = _parse_status(message.state)
        if message.state is not None and status is None:
            logger.debug("Ignoring unknown state %r reported by %s", message.state, token)
        record.last_update = self._clock()
        if status is not None:
            record.state.status = status
        if is_finite_number(message.position_ms):
            record.state.reported_position_ms = message.position_ms

        if status is None or not status.is_terminal or not record.autoclose:
            return

        self._registrar.apply_command(self._registrar.token_store, token, VideoCloseMessage())
        logger.debug("Autoclosed media of token %s", token)

        region_id = self._regions.region_for_token(token)
        if region_id is None:
            return
        region_record = self._registrar.region_store.get(region_id)
        if region_record is None or not region_record.autoclose:
            return
        if self._has_active_sibling(region_id, token):
            logger.debug("Region %s stays open, other members are still playing", region_id)
            return
        logger.info("Last member of region %s finished, closing region", region_id)
        self._dispatcher.send_to_region(region_id, VideoCloseMessage())

    def _has_active_sibling(self, region_id: str, token: str) -> bool:
        for member in self._regions.members(region_id):
            if member == token:
                continue
            member_record = self._registrar.token_store.get(member)
            if member_record is not None and not member_record.state.status.is_terminal:
                return True
        return False

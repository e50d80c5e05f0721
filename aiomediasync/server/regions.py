"""Region membership index: which connection tokens belong to which region."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from aiomediasync.util import collect_player_keys, normalize_region_id

if TYPE_CHECKING:
    from .connections import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionAssignment:
    """Outcome of assigning a token to a region."""

    changed: bool
    previous: str | None
    """Canonical region id the token belonged to before."""
    region_id: str | None
    """Canonical region id the token belongs to now."""


class RegionIndex:
    """
    Bidirectional token <-> region mapping plus player identity overrides.

    ``_tokens_by_region`` and ``_region_by_token`` always mirror each other and a
    region without members has no entry. Overrides map canonical player keys
    (``id:<x>``, ``uuid:<x>``, ``name:<x>``) to a region, so that a player ends
    up in the same region regardless of the token it connects with.
    """

    _tokens_by_region: dict[str, set[str]]
    _region_by_token: dict[str, str]
    _region_by_player_key: dict[str, str]
    """Canonical player key -> canonical region id."""
    _display_names: dict[str, str]
    """Canonical region id -> last supplied display name."""

    def __init__(self, connections: ConnectionRegistry) -> None:
        """
        Initialize an empty index.

        Args:
            connections: Registry whose connections cache their region.
        """
        self._connections = connections
        self._tokens_by_region = {}
        self._region_by_token = {}
        self._region_by_player_key = {}
        self._display_names = {}

    def canonicalize(self, value: Any, display_name: str | None = None) -> str | None:
        """
        Return the canonical id for ``value`` and remember its display name.

        Without an explicit display name, the casing of ``value`` becomes the
        display name of a region seen for the first time.
        """
        region_id = normalize_region_id(value)
        if region_id is None:
            return None
        if display_name:
            self.remember_display_name(region_id, display_name)
        elif region_id not in self._display_names:
            self.remember_display_name(region_id, value)
        return region_id

    def remember_display_name(self, region_id: str, display_name: Any) -> None:
        """Set the display name of a region; the latest non-blank name wins."""
        if not region_id or not isinstance(display_name, str):
            return
        if trimmed := display_name.strip():
            self._display_names[region_id] = trimmed

    def display_name(self, region_id: str | None) -> str | None:
        """Return the display name of a region, falling back to its id."""
        if not region_id:
            return None
        return self._display_names.get(region_id, region_id)

    def assign_region_for_token(
        self, token: str, region_id: str | None, *, display_name: str | None = None
    ) -> RegionAssignment:
        """
        Move ``token`` into ``region_id`` (a canonical id) or out of any region when None.

        The token is removed from its previous region first, and the previous
        region's member set is dropped once empty.
        """
        previous = self._region_by_token.get(token)
        if region_id is not None and display_name:
            self.remember_display_name(region_id, display_name)

        if previous == region_id:
            self._update_connection(token, region_id)
            return RegionAssignment(changed=False, previous=previous, region_id=region_id)

        if previous is not None:
            members = self._tokens_by_region.get(previous)
            if members is not None:
                members.discard(token)
                if not members:
                    del self._tokens_by_region[previous]
            del self._region_by_token[token]

        if region_id is not None:
            self._tokens_by_region.setdefault(region_id, set()).add(token)
            self._region_by_token[token] = region_id

        self._update_connection(token, region_id)
        logger.debug("Token %s moved from region %s to %s", token, previous, region_id)
        return RegionAssignment(changed=True, previous=previous, region_id=region_id)

    def _update_connection(self, token: str, region_id: str | None) -> None:
        if (connection := self._connections.get(token)) is not None:
            connection.region = region_id
            connection.region_display_name = self.display_name(region_id)

    def assign_region_for_player_key(self, player_key: str, region_id: str | None) -> None:
        """
        Pin a player identity to a region; None removes the override.

        Only the override table changes; callers re-resolve live tokens themselves.
        """
        if not player_key:
            return
        if region_id is None:
            self._region_by_player_key.pop(player_key, None)
        else:
            self._region_by_player_key[player_key] = region_id

    def assign_region_for_player_keys(
        self, player_keys: Iterable[str], region_id: str | None
    ) -> None:
        """Pin several identity keys of one player to a region."""
        for player_key in player_keys:
            self.assign_region_for_player_key(player_key, region_id)

    def get_region_for_client(self, token: str, connection: Connection | None) -> str | None:
        """
        Return the region a connection belongs in.

        Identity overrides are checked by id, uuid and name, in that order. Without
        an override the token keeps its currently recorded region.
        """
        if connection is not None:
            for player_key in collect_player_keys(
                connection.player_id, connection.player_uuid, connection.player_name
            ):
                if (region_id := self._region_by_player_key.get(player_key)) is not None:
                    return region_id
        return self._region_by_token.get(token)

    def region_for_token(self, token: str) -> str | None:
        """Return the region a token currently belongs to."""
        return self._region_by_token.get(token)

    def members(self, region_id: str) -> list[str]:
        """Return the member tokens of a region, sorted for stable delivery order."""
        return sorted(self._tokens_by_region.get(region_id, ()))

    def region_ids(self) -> list[str]:
        """Return every region that has members."""
        return list(self._tokens_by_region)

    def player_overrides(self) -> dict[str, str]:
        """Return a copy of the identity override table."""
        return dict(self._region_by_player_key)

    def clear(self) -> None:
        """Forget all memberships, overrides and display names."""
        self._tokens_by_region.clear()
        self._region_by_token.clear()
        self._region_by_player_key.clear()
        self._display_names.clear()

"""Utility functions for aiomediasync."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from typing import Any

Clock = Callable[[], float]
"""Callable returning the current wall clock in milliseconds since the epoch."""


def now_ms() -> float:
    """Return the current wall clock in whole milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def is_finite_number(value: Any) -> bool:
    """Return True for int/float values that are neither NaN nor infinite (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def normalize_region_id(value: Any) -> str | None:
    """
    Return the canonical (trimmed, lower-cased) form of a region id.

    Returns None for anything that is not a non-blank string.
    """
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed.lower()


def canonicalize_player_key(kind: str, value: Any) -> str | None:
    """Build the canonical lookup key for a player identity, e.g. ``uuid:1234-abcd``."""
    if not kind or not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return f"{kind}:{trimmed.lower()}"


def collect_player_keys(
    player_id: str | None, player_uuid: str | None, player_name: str | None
) -> list[str]:
    """Return the canonical keys for an identity, ordered id, uuid, name, without duplicates."""
    keys: list[str] = []
    for kind, value in (("id", player_id), ("uuid", player_uuid), ("name", player_name)):
        key = canonicalize_player_key(kind, value)
        if key is not None and key not in keys:
            keys.append(key)
    return keys

"""
Conversion between positions within a media source and wall-clock epoch anchors.

An anchor is the wall-clock instant (ms since epoch) that corresponds to position
0 of the source, so ``position = now - anchor``. Storing anchors instead of
elapsed counters lets the position be derived at any later instant without a
timer. All functions here are pure: equal inputs give equal outputs.
"""

from __future__ import annotations

from aiomediasync.models.state import MediaState
from aiomediasync.models.types import MediaStatus
from aiomediasync.util import is_finite_number


def position_at(anchor_ms: float, now_ms: float) -> float:
    """Return the position reached at ``now_ms`` for media anchored at ``anchor_ms``."""
    return max(now_ms - anchor_ms, 0)


def anchor_for_position(position_ms: float, now_ms: float) -> float:
    """Return the anchor under which ``position_ms`` is reached at ``now_ms``."""
    return now_ms - position_ms


def resolve_play_anchor(
    now_ms: float,
    *,
    start_at_epoch_ms: float | None = None,
    at_ms: float | None = None,
    state: MediaState | None = None,
    init_anchor_ms: float | None = None,
) -> float:
    """
    Resolve the anchor a play command starts from.

    In order of preference: an explicit anchor, the requested position, the
    frozen offset of paused media (resume where it stopped), the current anchor,
    the anchor of the init payload, and finally ``now`` (start from 0).
    """
    if is_finite_number(start_at_epoch_ms):
        return start_at_epoch_ms
    if is_finite_number(at_ms):
        return anchor_for_position(at_ms, now_ms)
    if state is not None:
        if state.status == MediaStatus.PAUSED and is_finite_number(state.paused_at_ms):
            return anchor_for_position(state.paused_at_ms, now_ms)
        if is_finite_number(state.started_at_epoch_ms):
            return state.started_at_epoch_ms
    if is_finite_number(init_anchor_ms):
        return init_anchor_ms
    return now_ms


def resolve_pause_offset(
    now_ms: float, *, at_ms: float | None = None, state: MediaState | None = None
) -> float:
    """
    Resolve the frozen offset a pause command holds at.

    An explicit position wins; pausing paused media keeps its offset; otherwise
    the position is derived from the current anchor (0 when there is none).
    """
    if is_finite_number(at_ms):
        return at_ms
    if state is not None:
        if state.status == MediaStatus.PAUSED and is_finite_number(state.paused_at_ms):
            return state.paused_at_ms
        if is_finite_number(state.started_at_epoch_ms):
            return position_at(state.started_at_epoch_ms, now_ms)
    return 0


def resolve_seek_anchor(now_ms: float, to_ms: float | None) -> float:
    """Return the anchor for a seek; a missing target position seeks to 0."""
    return anchor_for_position(to_ms if is_finite_number(to_ms) else 0, now_ms)

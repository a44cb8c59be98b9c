"""Ordering of match listings by a user-selected key."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config import DEFAULT_SORT_KEY
from ..models import MatchListing

_LOG = logging.getLogger(__name__)

# Sentinel bucket placed after every item that has a value.
_MISSING = (1, 0.0)


def _present(value: Optional[float], *, descending: bool = False) -> Tuple[int, float]:
    if value is None:
        return _MISSING
    return (0, -float(value) if descending else float(value))


def _heart_rate(item: MatchListing) -> Optional[float]:
    if item.segment_metrics is not None and item.segment_metrics.avg_hr is not None:
        return item.segment_metrics.avg_hr
    return item.activity.average_heartrate


def _speed(item: MatchListing) -> Optional[float]:
    if item.segment_metrics is not None and item.segment_metrics.avg_speed is not None:
        return item.segment_metrics.avg_speed
    return item.activity.average_speed


def _by_distance(item: MatchListing) -> Tuple[int, float]:
    return (0, item.match.min_distance_m)


def _by_avg_hr(item: MatchListing) -> Tuple[int, float]:
    return _present(_heart_rate(item), descending=True)


def _by_avg_speed(item: MatchListing) -> Tuple[int, float]:
    return _present(_speed(item), descending=True)


def _by_total_time(item: MatchListing) -> Tuple[int, float]:
    return (0, -float(item.activity.elapsed_time_s))


def _by_date(item: MatchListing) -> Tuple[int, float]:
    return (0, -item.activity.start_date.timestamp())


SORT_KEYS: Dict[str, Callable[[MatchListing], Tuple[int, float]]] = {
    "distance": _by_distance,
    "avg_hr": _by_avg_hr,
    "avg_speed": _by_avg_speed,
    "total_time": _by_total_time,
    "date": _by_date,
}


def _tie_break(item: MatchListing) -> Tuple[float, float, float, int]:
    return (
        item.match.min_distance_m,
        -item.match.overlap_percentage,
        -item.activity.start_date.timestamp(),
        item.activity_id,
    )


def rank(listings: Sequence[MatchListing], key: Optional[str] = None) -> List[MatchListing]:
    """Return ``listings`` ordered by ``key``.

    ``distance`` sorts by ``min_distance_m`` ascending (tightest fit first);
    ``avg_hr``, ``avg_speed``, ``total_time`` and ``date`` sort descending.
    Heart rate and speed use the segment-scoped value when one is cached and
    fall back to the whole-activity average; items with neither sort last.
    Every key breaks ties on distance, overlap, date and activity id so the
    order is total.
    """

    name = key or DEFAULT_SORT_KEY
    primary = SORT_KEYS.get(name)
    if primary is None:
        _LOG.warning("Unknown sort key %r; falling back to distance", name)
        primary = _by_distance
    return sorted(listings, key=lambda item: (primary(item), _tie_break(item)))


__all__ = ["SORT_KEYS", "rank"]

"""Polyline-level matching of athlete routes against a favourite segment."""

from __future__ import annotations

import logging
from threading import RLock
from typing import Hashable, List, Optional, Tuple

import numpy as np
from cachetools import LRUCache

from ..config import SEGMENT_GEOMETRY_CACHE_SIZE
from ..geometry import BoundingBox, LatLon, ProjectedPolyline
from ..models import Match, Route, Segment
from ..store.base import RouteStore

_GeometryKey = Tuple[int, Tuple[LatLon, ...]]


def check_tolerance(tolerance_m: float) -> float:
    """Return ``tolerance_m`` as a float, rejecting negative or non-finite values."""

    value = float(tolerance_m)
    if not np.isfinite(value) or value < 0.0:
        raise ValueError(f"tolerance_m must be a non-negative number, got {tolerance_m!r}")
    return value


def overlap_percentage(overlap_length_m: float, segment_length_m: float) -> float:
    """Return the overlap as a percentage of the segment, clamped to [0, 100]."""

    if segment_length_m <= 0.0:
        return 0.0
    ratio = overlap_length_m / segment_length_m * 100.0
    return float(min(max(ratio, 0.0), 100.0))


def evaluate_route(
    segment: Segment,
    prepared_segment: ProjectedPolyline,
    route: Route,
    tolerance_m: float,
) -> Optional[Match]:
    """Return the match of ``route`` against ``segment`` or ``None``.

    Every segment vertex must lie within ``tolerance_m`` of the route; the
    route may wander anywhere else. ``min_distance_m`` is the worst vertex
    distance, so a single far vertex disqualifies the route.
    """

    points = route.located_points()
    if not points:
        return None
    route_line = prepared_segment.reproject(points)
    vertex_distances = prepared_segment.vertex_distances_to(route_line)
    if vertex_distances.size == 0:
        return None
    worst = float(np.max(vertex_distances))
    if not np.isfinite(worst) or worst > tolerance_m:
        return None

    overlap_m = prepared_segment.intersection_length(route_line.buffered(tolerance_m))
    if overlap_m <= 0.0:
        return None
    return Match(
        segment_id=segment.segment_id,
        activity_id=route.activity_id,
        tolerance_m=tolerance_m,
        min_distance_m=worst,
        overlap_length_m=overlap_m,
        overlap_percentage=overlap_percentage(overlap_m, segment.length_m),
    )


class GeometricMatcher:
    """Find the athlete's routes that fully cover a segment within a tolerance."""

    def __init__(
        self,
        store: RouteStore,
        *,
        geometry_cache_size: int = SEGMENT_GEOMETRY_CACHE_SIZE,
    ) -> None:
        self._store = store
        self._log = logging.getLogger(self.__class__.__name__)
        self._geometry_cache: LRUCache[Hashable, ProjectedPolyline] = LRUCache(
            maxsize=max(1, geometry_cache_size)
        )
        self._geometry_lock = RLock()

    def prepared_segment(self, segment: Segment) -> ProjectedPolyline:
        """Return the projected segment polyline, reusing a cached projection."""

        key: _GeometryKey = (segment.segment_id, segment.points)
        with self._geometry_lock:
            cached = self._geometry_cache.get(key)
        if cached is not None:
            return cached
        prepared = ProjectedPolyline(segment.points)
        with self._geometry_lock:
            self._geometry_cache[key] = prepared
        return prepared

    def evict(self, segment_id: int) -> None:
        """Drop every cached projection of ``segment_id``."""

        with self._geometry_lock:
            stale = [key for key in self._geometry_cache if key[0] == segment_id]
            for key in stale:
                self._geometry_cache.pop(key, None)

    def find_matches(self, segment: Segment, tolerance_m: float) -> List[Match]:
        """Evaluate the segment owner's candidate routes and return the matches.

        Candidates come from a bounding-box pre-filter on the store; only those
        are evaluated exactly. Results are ordered by ``min_distance_m``
        ascending, then ``overlap_percentage`` descending, then activity id.
        """

        tolerance = check_tolerance(tolerance_m)
        prepared = self.prepared_segment(segment)
        bbox = BoundingBox.of(segment.points).expand(tolerance)
        candidate_ids = self._store.list_candidate_routes(segment.athlete_id, bbox)
        self._log.debug(
            "Evaluating %d candidate routes for segment=%s tolerance=%.1f",
            len(candidate_ids),
            segment.segment_id,
            tolerance,
        )

        matches: List[Match] = []
        for activity_id in candidate_ids:
            route = self._store.get_route(segment.athlete_id, activity_id)
            match = evaluate_route(segment, prepared, route, tolerance)
            if match is not None:
                matches.append(match)

        matches.sort(
            key=lambda m: (m.min_distance_m, -m.overlap_percentage, m.activity_id)
        )
        self._log.debug(
            "Segment=%s matched %d/%d candidates",
            segment.segment_id,
            len(matches),
            len(candidate_ids),
        )
        return matches


__all__ = [
    "GeometricMatcher",
    "check_tolerance",
    "evaluate_route",
    "overlap_percentage",
]

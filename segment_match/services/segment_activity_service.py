"""Segment/activity matching service (application layer).

Orchestrates the store, match cache, geometric matcher, index resolver,
metrics aggregator and ranking so callers (CLI, web handlers) depend on a
stable service API rather than on the individual components.
"""

from __future__ import annotations

from functools import partial
import logging
from typing import Callable, Hashable, List, Optional, Sequence, Tuple, TypeVar

from ..config import DEFAULT_SORT_KEY, DEFAULT_TOLERANCE_M
from ..errors import DegenerateGeometryError, OwnershipError, RangeNotFoundError
from ..geometry import LatLon
from ..locks import Generations, KeyedLocks
from ..matching import (
    GeometricMatcher,
    aggregate,
    check_tolerance,
    elevation_gain,
    find_activities_intersecting,
    find_activities_near,
    rank,
    resolve_range,
)
from ..models import (
    ActivitySummary,
    CacheEntry,
    GraphData,
    GraphPoint,
    LineIntersection,
    Match,
    MatchListing,
    NearbyActivity,
    PointSample,
    ResolvedRange,
    Route,
    Segment,
    SegmentMetrics,
)
from ..store import MatchCache, SqlRouteStore

# (min, max) heart rate bounds, inclusive; a negative max is open-ended.
HeartRateZone = Tuple[float, float]

T = TypeVar("T")

# Generation keys. Any route change bumps ``_ROUTES`` because a re-ingested
# route can enter or leave every match list of its athlete.
_ROUTES: Hashable = ("routes",)


def _segment_key(segment_id: int) -> Hashable:
    return ("segment", segment_id)


def _activity_key(activity_id: int) -> Hashable:
    return ("activity", activity_id)


# Graph series name -> PointSample attribute.
GRAPH_SERIES = {
    "speed": "speed",
    "heartrate": "heart_rate",
    "height": "altitude",
    "cadence": "cadence",
}


def heart_rate_zone(value: float, zones: Sequence[HeartRateZone]) -> Optional[int]:
    """Return the 1-based zone containing ``value``.

    Values below the first zone map to zone 1 and values above every zone map
    to the last one.
    """

    if not zones:
        return None
    if value < zones[0][0]:
        return 1
    for position, (low, high) in enumerate(zones, start=1):
        if value >= low and (high < 0 or value <= high):
            return position
    return len(zones)


def _check_graph_metrics(metrics: Sequence[str]) -> None:
    unknown = sorted(set(metrics) - set(GRAPH_SERIES))
    if unknown:
        raise ValueError(f"Unsupported graph metrics: {', '.join(unknown)}")


def _graph_data(
    samples: Sequence[PointSample],
    metrics: Sequence[str],
    hr_zones: Optional[Sequence[HeartRateZone]],
) -> GraphData:
    _check_graph_metrics(metrics)
    data = GraphData()
    for name in dict.fromkeys(metrics):
        series: List[GraphPoint] = getattr(data, name)
        attribute = GRAPH_SERIES[name]
        for sample in samples:
            value = getattr(sample, attribute)
            if value is None:
                continue
            zone = None
            if name == "heartrate" and hr_zones:
                zone = heart_rate_zone(value, hr_zones)
            series.append(
                GraphPoint(
                    time=sample.timestamp,
                    value=float(value),
                    distance_m=sample.cumulative_distance,
                    zone=zone,
                )
            )
    return data


class SegmentActivityService:
    """Answer segment/activity questions for an athlete, caching what is costly.

    Match lists, index ranges and metrics are read through the match cache
    and recomputed on a miss. Store writes that change geometry reach this
    service through the store's listeners and evict the affected cache rows.

    Each cache write is tied to the generation of the segment and routes it
    was computed from. Invalidation advances those generations, so a
    computation that loaded geometry before an edit never stores its result
    after the edit's eviction. Its caller still receives the result.
    """

    def __init__(
        self,
        store: SqlRouteStore,
        cache: MatchCache,
        matcher: Optional[GeometricMatcher] = None,
        *,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._matcher = matcher or GeometricMatcher(store)
        self._locks = locks or KeyedLocks()
        self._generations = Generations(self._locks)
        self._log = logging.getLogger(self.__class__.__name__)
        store.subscribe(
            on_segment_changed=self.invalidate_segment,
            on_activity_changed=self.invalidate_activity,
        )

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------
    def _owned_segment(self, athlete_id: int, segment_id: int) -> Segment:
        segment = self._store.get_segment(segment_id)
        if segment.athlete_id != athlete_id:
            raise OwnershipError(
                f"Segment {segment_id} does not belong to athlete {athlete_id}"
            )
        return segment

    def _owned_activity(self, athlete_id: int, activity_id: int) -> ActivitySummary:
        summary = self._store.get_activity_summary(activity_id)
        if summary.athlete_id != athlete_id:
            raise OwnershipError(
                f"Activity {activity_id} does not belong to athlete {athlete_id}"
            )
        return summary

    def _store_if_current(
        self,
        sources: Sequence[Hashable],
        seen: Tuple[int, ...],
        write: Callable[[], T],
    ) -> Optional[T]:
        """Run ``write`` unless one of ``sources`` was invalidated since ``seen``.

        Returns what ``write`` returned, or ``None`` when it was skipped.
        """

        with self._generations.unchanged(sources, seen) as current:
            if current:
                return write()
        self._log.debug("Sources %s changed mid-computation; result not cached", sources)
        return None

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------
    def list_matches(
        self,
        athlete_id: int,
        segment_id: int,
        tolerance_m: float = DEFAULT_TOLERANCE_M,
        sort_key: Optional[str] = DEFAULT_SORT_KEY,
        force_refresh: bool = False,
    ) -> List[MatchListing]:
        """Return the athlete's activities that pass through the segment, ranked.

        A fresh cached list is served as-is; otherwise (or with
        ``force_refresh``) the matcher re-evaluates every candidate route and
        the result replaces the cached list. Cached segment-scoped metrics are
        attached to each listing when present.
        """

        tolerance = check_tolerance(tolerance_m)
        sources = (_segment_key(segment_id), _ROUTES)
        seen = self._generations.snapshot(sources)
        segment = self._owned_segment(athlete_id, segment_id)
        with self._locks.hold(("list", segment_id, tolerance)):
            entries = None if force_refresh else self._cache.fresh_entries(segment_id, tolerance)
            if entries is None:
                self._log.debug(
                    "Recomputing matches segment=%s tol=%s (forced=%s)",
                    segment_id,
                    tolerance,
                    force_refresh,
                )
                matches = self._matcher.find_matches(segment, tolerance)
                entries = self._store_if_current(
                    sources,
                    seen,
                    partial(self._store_list, segment_id, tolerance, matches),
                )
                if entries is None:
                    entries = [
                        CacheEntry(segment_id, match.activity_id, tolerance, match=match)
                        for match in matches
                    ]

        summaries = self._store.get_activity_summaries(
            athlete_id, [entry.activity_id for entry in entries]
        )
        listings = [
            MatchListing(
                match=entry.match,
                activity=summaries[entry.activity_id],
                segment_metrics=entry.metrics,
            )
            for entry in entries
            if entry.match is not None and entry.activity_id in summaries
        ]
        return rank(listings, sort_key)

    def _store_list(
        self, segment_id: int, tolerance: float, matches: Sequence[Match]
    ) -> List[CacheEntry]:
        self._cache.store_matches(segment_id, tolerance, matches)
        return self._cache.matched_entries(segment_id, tolerance)

    def _resolve_locked(
        self,
        segment: Segment,
        route: Route,
        tolerance: float,
        sources: Sequence[Hashable],
        seen: Tuple[int, ...],
    ) -> Optional[ResolvedRange]:
        resolved = resolve_range(
            segment,
            route,
            tolerance,
            prepared_segment=self._matcher.prepared_segment(segment),
        )
        if resolved is not None:
            self._store_if_current(
                sources,
                seen,
                partial(
                    self._cache.store_range,
                    segment.segment_id,
                    route.activity_id,
                    tolerance,
                    resolved,
                ),
            )
        return resolved

    def resolve_indices(
        self,
        athlete_id: int,
        segment_id: int,
        activity_id: int,
        tolerance_m: float = DEFAULT_TOLERANCE_M,
    ) -> ResolvedRange:
        """Return the sample-index span of the activity lying on the segment.

        Raises ``RangeNotFoundError`` when no sample is within tolerance.
        """

        tolerance = check_tolerance(tolerance_m)
        sources = (_segment_key(segment_id), _activity_key(activity_id))
        seen = self._generations.snapshot(sources)
        segment = self._owned_segment(athlete_id, segment_id)
        self._owned_activity(athlete_id, activity_id)
        with self._locks.hold(("entry", segment_id, activity_id, tolerance)):
            entry = self._cache.get_entry(segment_id, activity_id, tolerance)
            if entry is not None and entry.resolved_range is not None:
                self._log.debug(
                    "Range hit segment=%s activity=%s tol=%s",
                    segment_id,
                    activity_id,
                    tolerance,
                )
                return entry.resolved_range
            route = self._store.get_route(athlete_id, activity_id)
            resolved = self._resolve_locked(segment, route, tolerance, sources, seen)
        if resolved is None:
            raise RangeNotFoundError(
                f"No sample of activity {activity_id} within {tolerance} m "
                f"of segment {segment_id}"
            )
        return resolved

    def get_segment_activity_metrics(
        self,
        athlete_id: int,
        segment_id: int,
        activity_id: int,
        tolerance_m: float = DEFAULT_TOLERANCE_M,
    ) -> SegmentMetrics:
        """Return performance metrics of the activity over the segment.

        Cached metrics are returned without recomputation; a cached range
        without metrics only runs the aggregator. When the activity never
        comes within tolerance the result is all zeros and nothing is cached.
        """

        tolerance = check_tolerance(tolerance_m)
        sources = (_segment_key(segment_id), _activity_key(activity_id))
        seen = self._generations.snapshot(sources)
        segment = self._owned_segment(athlete_id, segment_id)
        self._owned_activity(athlete_id, activity_id)
        with self._locks.hold(("entry", segment_id, activity_id, tolerance)):
            entry = self._cache.get_entry(segment_id, activity_id, tolerance)
            if entry is not None and entry.metrics is not None:
                self._log.debug(
                    "Metrics hit segment=%s activity=%s tol=%s",
                    segment_id,
                    activity_id,
                    tolerance,
                )
                return entry.metrics

            route = self._store.get_route(athlete_id, activity_id)
            resolved = entry.resolved_range if entry is not None else None
            if resolved is None:
                resolved = self._resolve_locked(segment, route, tolerance, sources, seen)
            if resolved is None:
                self._log.debug(
                    "No range segment=%s activity=%s tol=%s; returning zeros",
                    segment_id,
                    activity_id,
                    tolerance,
                )
                return SegmentMetrics.zero()

            metrics = aggregate(route, resolved)
            self._store_if_current(
                sources,
                seen,
                partial(self._cache.store_metrics, segment_id, activity_id, tolerance, metrics),
            )
        return metrics

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------
    def invalidate_segment(self, segment_id: int) -> int:
        with self._generations.bump(_segment_key(segment_id)):
            removed = self._cache.invalidate_segment(segment_id)
            self._matcher.evict(segment_id)
        return removed

    def invalidate_activity(self, activity_id: int) -> int:
        with self._generations.bump(_ROUTES, _activity_key(activity_id)):
            return self._cache.invalidate_activity(activity_id)

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------
    def list_segments(self, athlete_id: int) -> List[Segment]:
        return self._store.list_segments(athlete_id)

    def get_segment_by_name(self, athlete_id: int, name: str) -> Segment:
        return self._store.get_segment_by_name(athlete_id, name)

    def list_matches_by_name(
        self,
        athlete_id: int,
        name: str,
        tolerance_m: float = DEFAULT_TOLERANCE_M,
        sort_key: Optional[str] = DEFAULT_SORT_KEY,
        force_refresh: bool = False,
    ) -> List[MatchListing]:
        """``list_matches`` for the athlete's segment called ``name``."""

        segment = self._store.get_segment_by_name(athlete_id, name)
        return self.list_matches(
            athlete_id, segment.segment_id, tolerance_m, sort_key, force_refresh
        )

    def create_segment(
        self,
        athlete_id: int,
        name: str,
        points: Sequence[LatLon],
        description: Optional[str] = None,
    ) -> Segment:
        return self._store.create_segment(athlete_id, name, points, description=description)

    def create_segment_from_activity(
        self,
        athlete_id: int,
        activity_id: int,
        name: str,
        start_index: int,
        end_index: int,
        description: Optional[str] = None,
    ) -> Segment:
        """Cut a segment from ``[start_index, end_index)`` of one of the athlete's routes.

        Elevation gain is taken from the sliced samples and stored only when
        positive.
        """

        route = self._store.get_route(athlete_id, activity_id)
        if not 0 <= start_index < end_index <= len(route):
            raise ValueError(
                f"Invalid slice [{start_index}, {end_index}) for activity "
                f"{activity_id} of {len(route)} samples"
            )
        window = route.samples[start_index:end_index]
        points = [sample.location for sample in window if sample.location is not None]
        if len(points) < 2:
            raise DegenerateGeometryError(
                "Selected range has fewer than two located samples"
            )
        return self._store.create_segment(
            athlete_id,
            name,
            points,  # type: ignore[arg-type]
            description=description,
            elevation_gain_m=elevation_gain(window),
        )

    def update_segment(
        self,
        athlete_id: int,
        segment_id: int,
        name: str,
        points: Sequence[LatLon],
        description: Optional[str] = None,
    ) -> Segment:
        self._owned_segment(athlete_id, segment_id)
        return self._store.update_segment(segment_id, name, points, description=description)

    def delete_segment(self, athlete_id: int, segment_id: int) -> None:
        self._owned_segment(athlete_id, segment_id)
        self._store.delete_segment(segment_id)

    def get_segment_summary(self, athlete_id: int, segment_id: int) -> Tuple[float, float]:
        """Return ``(length_m, elevation_gain_m)``; an unknown gain is 0."""

        segment = self._owned_segment(athlete_id, segment_id)
        return segment.length_m, segment.elevation_gain_m or 0.0

    # ------------------------------------------------------------------
    # Graphs
    # ------------------------------------------------------------------
    def get_segment_graph_data(
        self,
        athlete_id: int,
        segment_id: int,
        activity_id: int,
        metrics: Sequence[str],
        tolerance_m: float = DEFAULT_TOLERANCE_M,
        hr_zones: Optional[Sequence[HeartRateZone]] = None,
    ) -> GraphData:
        """Return per-sample series for the part of the activity on the segment."""

        _check_graph_metrics(metrics)
        resolved = self.resolve_indices(athlete_id, segment_id, activity_id, tolerance_m)
        route = self._store.get_route(athlete_id, activity_id)
        window = route.samples[resolved.start_index : resolved.end_index + 1]
        return _graph_data(window, metrics, hr_zones)

    def get_activity_graph_data(
        self,
        athlete_id: int,
        activity_id: int,
        metrics: Sequence[str],
        hr_zones: Optional[Sequence[HeartRateZone]] = None,
    ) -> GraphData:
        """Return per-sample series over the whole activity."""

        route = self._store.get_route(athlete_id, activity_id)
        return _graph_data(route.samples, metrics, hr_zones)

    # ------------------------------------------------------------------
    # Spatial search
    # ------------------------------------------------------------------
    def find_activities_near(
        self, athlete_id: int, point: LatLon, radius_m: float
    ) -> List[NearbyActivity]:
        return find_activities_near(self._store, athlete_id, point, radius_m)

    def find_activities_intersecting(
        self,
        athlete_id: int,
        line: Sequence[LatLon],
        tolerance_m: float = DEFAULT_TOLERANCE_M,
    ) -> List[LineIntersection]:
        return find_activities_intersecting(self._store, athlete_id, line, tolerance_m)

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def ingest_activity(
        self, summary: ActivitySummary, samples: Sequence[PointSample]
    ) -> Route:
        return self._store.ingest_activity(summary, samples)

    def delete_activity(self, athlete_id: int, activity_id: int) -> None:
        self._owned_activity(athlete_id, activity_id)
        self._store.delete_activity(activity_id)


__all__ = ["GRAPH_SERIES", "HeartRateZone", "SegmentActivityService", "heart_rate_zone"]

"""Ad-hoc spatial searches over an athlete's routes.

Both searches share the matcher's two-stage shape: a bounding-box pre-filter
on the store, then exact distances in a local projection centred on the
query geometry.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from ..geometry import BoundingBox, LatLon, ProjectedPolyline
from ..models import LineIntersection, NearbyActivity
from ..store.base import RouteStore
from .matcher import check_tolerance

_log = logging.getLogger(__name__)


def find_activities_near(
    store: RouteStore,
    athlete_id: int,
    point: LatLon,
    radius_m: float,
) -> List[NearbyActivity]:
    """Return the athlete's routes passing within ``radius_m`` of ``point``.

    Results are ordered by distance, then activity id.
    """

    radius = check_tolerance(radius_m)
    anchor = ProjectedPolyline([point])
    candidate_ids = store.list_candidate_routes(
        athlete_id, BoundingBox.of([point]).expand(radius)
    )
    results: List[NearbyActivity] = []
    for activity_id in candidate_ids:
        located = store.get_route(athlete_id, activity_id).located_points()
        if not located:
            continue
        distance = anchor.reproject(located).distance_to(point)
        if distance <= radius:
            results.append(NearbyActivity(activity_id=activity_id, min_distance_m=distance))
    results.sort(key=lambda r: (r.min_distance_m, r.activity_id))
    _log.debug(
        "Near search athlete=%s radius=%.1f: %d/%d candidates",
        athlete_id,
        radius,
        len(results),
        len(candidate_ids),
    )
    return results


def find_activities_intersecting(
    store: RouteStore,
    athlete_id: int,
    line: Sequence[LatLon],
    tolerance_m: float,
) -> List[LineIntersection]:
    """Return the athlete's routes coming within ``tolerance_m`` of ``line``.

    Unlike segment matching nothing has to be fully covered: any approach
    within tolerance counts, and ``overlap_length_m`` reports how much of the
    line lies inside the route's corridor.
    """

    tolerance = check_tolerance(tolerance_m)
    prepared = ProjectedPolyline(line)
    candidate_ids = store.list_candidate_routes(
        athlete_id, BoundingBox.of(prepared.latlon).expand(tolerance)
    )
    results: List[LineIntersection] = []
    for activity_id in candidate_ids:
        located = store.get_route(athlete_id, activity_id).located_points()
        if not located:
            continue
        route_line = prepared.reproject(located)
        distance = float(route_line.geometry.distance(prepared.geometry))
        if distance > tolerance:
            continue
        results.append(
            LineIntersection(
                activity_id=activity_id,
                min_distance_m=distance,
                overlap_length_m=prepared.intersection_length(route_line.buffered(tolerance)),
            )
        )
    results.sort(key=lambda r: (r.min_distance_m, r.activity_id))
    return results


__all__ = ["find_activities_intersecting", "find_activities_near"]

"""Geodesic and buffered-polyline primitives used by the matching engine.

Point-to-point and path lengths are true geodesic distances on the WGS84
ellipsoid. Point-to-polyline distances and buffered intersections are computed
in a UTM zone centred on the reference polyline, which keeps the error within
the zone's scale factor (well under 0.1 %) for segment-sized geometry.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Optional, Sequence

import numpy as np
import shapely
from pyproj import Geod
from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry

from .projection import LatLon, LocalProjection, MetricArray

_GEOD = Geod(ellps="WGS84")
_METERS_PER_DEGREE_LAT = 111_320.0


def geodesic_distance(a: LatLon, b: LatLon) -> float:
    """Return the geodesic distance in metres between two lat/lon pairs."""

    _, _, distance = _GEOD.inv(a[1], a[0], b[1], b[0])
    return float(distance)


def polyline_length(points: Sequence[LatLon]) -> float:
    """Return the sum of consecutive geodesic distances along ``points``."""

    if len(points) < 2:
        return 0.0
    lats = [pt[0] for pt in points]
    lons = [pt[1] for pt in points]
    return float(_GEOD.line_length(lons, lats))


def cumulative_distances(points: Sequence[Optional[LatLon]]) -> list[float]:
    """Return the running geodesic path length for each entry of ``points``.

    ``None`` entries (samples without a fix) keep the previous running total
    and do not break the chain: the next located point is measured from the
    last known location.
    """

    running = 0.0
    last: Optional[LatLon] = None
    totals: list[float] = []
    for point in points:
        if point is not None:
            if last is not None:
                running += geodesic_distance(last, point)
            last = point
        totals.append(running)
    return totals


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned lat/lon envelope used for cheap candidate filtering."""

    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    @classmethod
    def of(cls, points: Sequence[LatLon]) -> "BoundingBox":
        if not points:
            raise ValueError("Cannot compute the bounding box of no points")
        lats = [pt[0] for pt in points]
        lons = [pt[1] for pt in points]
        return cls(min(lats), min(lons), max(lats), max(lons))

    def expand(self, meters: float) -> "BoundingBox":
        """Grow the box by ``meters`` on every side."""

        if meters <= 0:
            return self
        dlat = meters / _METERS_PER_DEGREE_LAT
        widest_lat = min(max(abs(self.min_lat), abs(self.max_lat)), 89.9)
        dlon = meters / (_METERS_PER_DEGREE_LAT * math.cos(math.radians(widest_lat)))
        return BoundingBox(
            max(self.min_lat - dlat, -90.0),
            max(self.min_lon - dlon, -180.0),
            min(self.max_lat + dlat, 90.0),
            min(self.max_lon + dlon, 180.0),
        )

    def intersects(self, other: "BoundingBox") -> bool:
        return not (
            other.min_lat > self.max_lat
            or other.max_lat < self.min_lat
            or other.min_lon > self.max_lon
            or other.max_lon < self.min_lon
        )


class ProjectedPolyline:
    """A lat/lon polyline prepared for repeated distance and overlap queries.

    Instances own a :class:`LocalProjection`; other geometry is projected
    through the same transformer so distances stay comparable. A polyline of a
    single point degrades to a point geometry.
    """

    def __init__(
        self,
        points: Sequence[LatLon],
        projection: Optional[LocalProjection] = None,
    ) -> None:
        if not points:
            raise ValueError("A polyline needs at least one point")
        self.latlon: tuple[LatLon, ...] = tuple(
            (float(lat), float(lon)) for lat, lon in points
        )
        self.projection = projection or LocalProjection.around(self.latlon)
        self.metric: MetricArray = self.projection.project(self.latlon)
        self.geometry: BaseGeometry = _as_geometry(self.metric)
        shapely.prepare(self.geometry)

    def reproject(self, points: Sequence[LatLon]) -> "ProjectedPolyline":
        """Return ``points`` as a polyline sharing this polyline's projection."""

        return ProjectedPolyline(points, projection=self.projection)

    def distance_to(self, point: LatLon) -> float:
        """Return the distance in metres from ``point`` to the nearest point on the line."""

        metric = self.projection.project([point])
        return float(self.geometry.distance(Point(metric[0])))

    def distances_to(self, points: Sequence[Optional[LatLon]]) -> MetricArray:
        """Vectorised :meth:`distance_to`; ``None`` entries yield ``nan``."""

        result = np.full(len(points), np.nan, dtype=float)
        located = [idx for idx, pt in enumerate(points) if pt is not None]
        if not located:
            return result
        metric = self.projection.project([points[idx] for idx in located])
        result[located] = shapely.distance(shapely.points(metric), self.geometry)
        return result

    def within_tolerance(self, point: LatLon, tolerance_m: float) -> bool:
        return self.distance_to(point) <= tolerance_m

    def vertex_distances_to(self, other: "ProjectedPolyline") -> MetricArray:
        """Return the distance from each of this line's vertices to ``other``."""

        metric = other.projection.project(self.latlon)
        return np.asarray(
            shapely.distance(shapely.points(metric), other.geometry), dtype=float
        )

    def buffered(self, tolerance_m: float) -> BaseGeometry:
        """Return the corridor of width ``tolerance_m`` around this line."""

        return self.geometry.buffer(max(tolerance_m, 0.0))

    def intersection_length(self, corridor: BaseGeometry) -> float:
        """Return the length of this line lying inside ``corridor``."""

        if corridor.is_empty:
            return 0.0
        return float(self.geometry.intersection(corridor).length)


def _as_geometry(metric: MetricArray) -> BaseGeometry:
    if metric.shape[0] == 1:
        return Point(metric[0])
    return LineString(metric)


__all__ = [
    "BoundingBox",
    "ProjectedPolyline",
    "cumulative_distances",
    "geodesic_distance",
    "polyline_length",
]

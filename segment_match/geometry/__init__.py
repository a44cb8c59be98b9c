"""Geospatial primitives: geodesic lengths, local projections and corridors."""

from .primitives import (
    BoundingBox,
    ProjectedPolyline,
    cumulative_distances,
    geodesic_distance,
    polyline_length,
)
from .projection import LatLon, LocalProjection

__all__ = [
    "BoundingBox",
    "LatLon",
    "LocalProjection",
    "ProjectedPolyline",
    "cumulative_distances",
    "geodesic_distance",
    "polyline_length",
]

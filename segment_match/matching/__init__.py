"""Segment matching: polyline fit, index resolution, metrics and ranking."""

from .matcher import GeometricMatcher, check_tolerance, evaluate_route, overlap_percentage
from .metrics import aggregate, elevation_gain
from .proximity import find_activities_intersecting, find_activities_near
from .ranking import SORT_KEYS, rank
from .resolver import resolve_range

__all__ = [
    "GeometricMatcher",
    "SORT_KEYS",
    "aggregate",
    "check_tolerance",
    "elevation_gain",
    "evaluate_route",
    "find_activities_intersecting",
    "find_activities_near",
    "overlap_percentage",
    "rank",
    "resolve_range",
]

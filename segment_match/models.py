"""Domain dataclasses shared by the matcher, resolver, aggregator and cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import DegenerateGeometryError
from .geometry import LatLon, polyline_length


@dataclass(slots=True)
class PointSample:
    """One entry of an activity's sensor stream.

    Optional sensor fields are ``None`` when the source stream had no value at
    this index. They must be excluded from aggregates, never read as zero.
    """

    index: int
    timestamp: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    heart_rate: Optional[float] = None
    speed: Optional[float] = None
    cadence: Optional[float] = None
    watts: Optional[float] = None
    grade: Optional[float] = None
    moving: Optional[bool] = None
    cumulative_distance: float = 0.0

    @property
    def location(self) -> Optional[LatLon]:
        if self.latitude is None or self.longitude is None:
            return None
        return self.latitude, self.longitude


@dataclass(slots=True)
class Route:
    """Ordered, index-addressed point stream of one activity."""

    activity_id: int
    athlete_id: int
    samples: Tuple[PointSample, ...]

    def __post_init__(self) -> None:
        self.samples = tuple(self.samples)
        for position, sample in enumerate(self.samples):
            if sample.index != position:
                raise ValueError(
                    f"Route {self.activity_id} sample indices must be contiguous "
                    f"from 0 (position {position} has index {sample.index})"
                )

    def __len__(self) -> int:
        return len(self.samples)

    def locations(self) -> List[Optional[LatLon]]:
        return [sample.location for sample in self.samples]

    def located_points(self) -> List[LatLon]:
        return [loc for loc in self.locations() if loc is not None]


@dataclass(slots=True)
class ActivitySummary:
    """Whole-activity facts used for ranking and display."""

    activity_id: int
    athlete_id: int
    name: str
    start_date: datetime
    elapsed_time_s: float = 0.0
    moving_time_s: float = 0.0
    distance_m: float = 0.0
    average_heartrate: Optional[float] = None
    average_speed: Optional[float] = None
    sport_type: Optional[str] = None


@dataclass(slots=True)
class Segment:
    """Athlete-owned polyline of interest."""

    segment_id: int
    athlete_id: int
    name: str
    points: Tuple[LatLon, ...]
    length_m: float
    description: Optional[str] = None
    elevation_gain_m: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def build(
        cls,
        segment_id: int,
        athlete_id: int,
        name: str,
        points: Sequence[LatLon],
        **kwargs: Any,
    ) -> "Segment":
        """Validate ``points`` and derive the geodesic length."""

        vertices = validate_segment_points(points)
        return cls(
            segment_id=segment_id,
            athlete_id=athlete_id,
            name=name,
            points=vertices,
            length_m=polyline_length(vertices),
            **kwargs,
        )


def validate_segment_points(points: Sequence[Sequence[float]]) -> Tuple[LatLon, ...]:
    """Return normalised segment vertices or raise ``DegenerateGeometryError``."""

    vertices = tuple((float(pt[0]), float(pt[1])) for pt in points)
    if len(vertices) < 2:
        raise DegenerateGeometryError("A segment needs at least two points")
    if polyline_length(vertices) <= 0.0:
        raise DegenerateGeometryError("A segment must have a non-zero length")
    return vertices


@dataclass(frozen=True, slots=True)
class Match:
    """Polyline-level fit of one route against one segment at a tolerance."""

    segment_id: int
    activity_id: int
    tolerance_m: float
    min_distance_m: float
    overlap_length_m: float
    overlap_percentage: float


@dataclass(frozen=True, slots=True)
class NearbyActivity:
    """A route passing within a radius of a point."""

    activity_id: int
    min_distance_m: float


@dataclass(frozen=True, slots=True)
class LineIntersection:
    """A route running within tolerance of an arbitrary line."""

    activity_id: int
    min_distance_m: float
    overlap_length_m: float


@dataclass(frozen=True, slots=True)
class ResolvedRange:
    """Inclusive sample-index span of a route covering a segment."""

    start_index: int
    end_index: int

    def __post_init__(self) -> None:
        if self.start_index < 0 or self.end_index < self.start_index:
            raise ValueError(
                f"Invalid range start={self.start_index} end={self.end_index}"
            )


@dataclass(frozen=True, slots=True)
class SegmentMetrics:
    """Performance summary over a resolved range."""

    avg_hr: Optional[float]
    avg_speed: Optional[float]
    distance_m: float
    elevation_gain_m: float

    @classmethod
    def zero(cls) -> "SegmentMetrics":
        return cls(avg_hr=0.0, avg_speed=0.0, distance_m=0.0, elevation_gain_m=0.0)

    def as_dict(self) -> Dict[str, Optional[float]]:
        return {
            "avg_hr": self.avg_hr,
            "avg_speed": self.avg_speed,
            "distance_m": self.distance_m,
            "elevation_gain_m": self.elevation_gain_m,
        }


@dataclass(slots=True)
class CacheEntry:
    """One persisted row of the segment/activity match cache."""

    segment_id: int
    activity_id: int
    tolerance_m: float
    match: Optional[Match] = None
    resolved_range: Optional[ResolvedRange] = None
    metrics: Optional[SegmentMetrics] = None
    cached_at: Optional[datetime] = None
    metrics_cached_at: Optional[datetime] = None


@dataclass(slots=True)
class MatchListing:
    """A matched activity as returned by ``list_matches``."""

    match: Match
    activity: ActivitySummary
    segment_metrics: Optional[SegmentMetrics] = None

    @property
    def activity_id(self) -> int:
        return self.match.activity_id

    def as_dict(self) -> Dict[str, Any]:
        metrics = self.segment_metrics
        return {
            "activity_id": self.match.activity_id,
            "name": self.activity.name,
            "start_date": self.activity.start_date.isoformat(),
            "min_distance_m": self.match.min_distance_m,
            "overlap_length_m": self.match.overlap_length_m,
            "overlap_percentage": self.match.overlap_percentage,
            "segment_avg_hr": metrics.avg_hr if metrics else None,
            "segment_avg_speed": metrics.avg_speed if metrics else None,
            "segment_distance_m": metrics.distance_m if metrics else None,
            "segment_elevation_gain_m": metrics.elevation_gain_m if metrics else None,
        }


@dataclass(slots=True)
class GraphPoint:
    """Single value of a per-sample series within a segment portion."""

    time: datetime
    value: float
    distance_m: float
    zone: Optional[int] = None


@dataclass(slots=True)
class GraphData:
    """Per-metric series over a resolved range."""

    speed: List[GraphPoint] = field(default_factory=list)
    heartrate: List[GraphPoint] = field(default_factory=list)
    height: List[GraphPoint] = field(default_factory=list)
    cadence: List[GraphPoint] = field(default_factory=list)


__all__ = [
    "ActivitySummary",
    "CacheEntry",
    "GraphData",
    "GraphPoint",
    "LineIntersection",
    "Match",
    "MatchListing",
    "NearbyActivity",
    "PointSample",
    "ResolvedRange",
    "Route",
    "Segment",
    "SegmentMetrics",
    "validate_segment_points",
]

"""Performance aggregation over a resolved range of a route."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from ..geometry import LatLon, geodesic_distance
from ..models import PointSample, ResolvedRange, Route, SegmentMetrics


def aggregate(route: Route, rng: ResolvedRange) -> SegmentMetrics:
    """Summarise the samples of ``route`` in ``[rng.start_index, rng.end_index]``.

    Missing sensor values are excluded from both numerator and denominator;
    an average with no contributing sample is ``None``. Distance is chained
    over located samples only, and elevation gain accumulates positive
    altitude deltas between adjacent samples where both altitudes exist.
    """

    if rng.end_index >= len(route):
        raise ValueError(
            f"Range end {rng.end_index} outside route {route.activity_id} "
            f"of {len(route)} samples"
        )
    window = route.samples[rng.start_index : rng.end_index + 1]
    return SegmentMetrics(
        avg_hr=_mean(sample.heart_rate for sample in window),
        avg_speed=_mean(sample.speed for sample in window),
        distance_m=_chained_distance(window),
        elevation_gain_m=_elevation_gain(window),
    )


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    total = 0.0
    count = 0
    for value in values:
        if value is None:
            continue
        total += float(value)
        count += 1
    if count == 0:
        return None
    return total / count


def _chained_distance(window: Sequence[PointSample]) -> float:
    distance = 0.0
    last: Optional[LatLon] = None
    for sample in window:
        location = sample.location
        if location is None:
            continue
        if last is not None:
            distance += geodesic_distance(last, location)
        last = location
    return distance


def _elevation_gain(window: Sequence[PointSample]) -> float:
    gain = 0.0
    for previous, current in zip(window, window[1:]):
        if previous.altitude is None or current.altitude is None:
            continue
        gain += max(0.0, current.altitude - previous.altitude)
    return gain


def elevation_gain(samples: Sequence[PointSample]) -> Optional[float]:
    """Return the positive altitude gain of ``samples``, or ``None`` when flat or unknown."""

    gain = _elevation_gain(samples)
    return gain if gain > 0.0 else None


__all__ = ["aggregate", "elevation_gain"]

"""Global pytest fixtures & helpers.

Adds project root to path and provides geometry factories plus an in-memory
SQLite store, match cache and service shared across test files.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Sequence

import pytest
from pyproj import Geod

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from segment_match.geometry import LatLon
from segment_match.models import ActivitySummary, PointSample
from segment_match.services import SegmentActivityService
from segment_match.store import (
    MatchCache,
    SqlRouteStore,
    build_engine,
    build_session_factory,
    init_db,
)

GEOD = Geod(ellps="WGS84")
ORIGIN: LatLon = (51.5000, -0.1200)
T0 = datetime(2025, 5, 1, 7, 0, tzinfo=timezone.utc)


# --- Factory helpers -------------------------------------------------
def offset(point: LatLon, north_m: float, east_m: float = 0.0) -> LatLon:
    """Return ``point`` moved ``north_m`` north then ``east_m`` east."""

    lat, lon = point
    lon, lat, _ = GEOD.fwd(lon, lat, 0.0 if north_m >= 0 else 180.0, abs(north_m))
    if east_m:
        lon, lat, _ = GEOD.fwd(lon, lat, 90.0 if east_m >= 0 else 270.0, abs(east_m))
    return (lat, lon)


def northward(
    start_m: float,
    end_m: float,
    step_m: float,
    *,
    east_m: float = 0.0,
    origin: LatLon = ORIGIN,
) -> List[LatLon]:
    """Points due north of ``origin`` from ``start_m`` to ``end_m`` inclusive."""

    count = int(round((end_m - start_m) / step_m)) + 1
    return [offset(origin, start_m + i * step_m, east_m) for i in range(count)]


def make_samples(
    points: Sequence[Optional[LatLon]],
    *,
    heart_rate: Optional[float] = 150.0,
    speed: Optional[float] = 3.0,
    altitudes: Optional[Sequence[Optional[float]]] = None,
    start: datetime = T0,
) -> List[PointSample]:
    samples: List[PointSample] = []
    for idx, point in enumerate(points):
        samples.append(
            PointSample(
                index=idx,
                timestamp=start + timedelta(seconds=idx),
                latitude=point[0] if point else None,
                longitude=point[1] if point else None,
                altitude=altitudes[idx] if altitudes is not None else None,
                heart_rate=heart_rate,
                speed=speed,
                cadence=85.0,
            )
        )
    return samples


def make_summary(
    activity_id: int,
    athlete_id: int = 1,
    *,
    start_date: datetime = T0,
    elapsed_time_s: float = 1800.0,
    average_heartrate: Optional[float] = None,
    average_speed: Optional[float] = None,
) -> ActivitySummary:
    return ActivitySummary(
        activity_id=activity_id,
        athlete_id=athlete_id,
        name=f"Run {activity_id}",
        start_date=start_date,
        elapsed_time_s=elapsed_time_s,
        moving_time_s=elapsed_time_s,
        distance_m=5000.0,
        average_heartrate=average_heartrate,
        average_speed=average_speed,
    )


class FakeClock:
    """Deterministic clock for TTL tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0 + timedelta(days=1))


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory, clock) -> SqlRouteStore:
    return SqlRouteStore(session_factory, clock=clock)


@pytest.fixture
def cache(session_factory, clock) -> MatchCache:
    return MatchCache(session_factory, ttl_seconds=3600, clock=clock)


@pytest.fixture
def service(store, cache) -> Iterator[SegmentActivityService]:
    yield SegmentActivityService(store, cache)

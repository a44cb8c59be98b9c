"""Tests for the polyline-level geometric matcher."""

from __future__ import annotations

from typing import Dict, List, Sequence

import pytest

from segment_match.errors import ActivityNotFoundError
from segment_match.geometry import BoundingBox
from segment_match.matching import GeometricMatcher, evaluate_route, overlap_percentage
from segment_match.models import ActivitySummary, Route, Segment

from conftest import ORIGIN, make_samples, make_summary, northward, offset


class InMemoryRouteStore:
    """Minimal route store recording which routes were loaded."""

    def __init__(self) -> None:
        self.routes: Dict[int, Route] = {}
        self.loaded: List[int] = []

    def add(self, activity_id: int, points, athlete_id: int = 1) -> None:
        self.routes[activity_id] = Route(
            activity_id=activity_id,
            athlete_id=athlete_id,
            samples=tuple(make_samples(points)),
        )

    def get_route(self, athlete_id: int, activity_id: int) -> Route:
        self.loaded.append(activity_id)
        try:
            return self.routes[activity_id]
        except KeyError as exc:
            raise ActivityNotFoundError(str(activity_id)) from exc

    def get_segment(self, segment_id: int) -> Segment:
        raise NotImplementedError

    def list_candidate_routes(self, athlete_id: int, bbox: BoundingBox) -> List[int]:
        ids = []
        for activity_id, route in sorted(self.routes.items()):
            located = route.located_points()
            if route.athlete_id != athlete_id or not located:
                continue
            if BoundingBox.of(located).intersects(bbox):
                ids.append(activity_id)
        return ids

    def get_activity_summary(self, activity_id: int) -> ActivitySummary:
        return make_summary(activity_id)

    def get_activity_summaries(
        self, athlete_id: int, activity_ids: Sequence[int]
    ) -> Dict[int, ActivitySummary]:
        return {aid: make_summary(aid, athlete_id) for aid in activity_ids}


@pytest.fixture
def segment() -> Segment:
    """A 1 km three-vertex segment running due north."""

    return Segment.build(1, 1, "Straight", northward(0.0, 1000.0, 500.0))


@pytest.fixture
def route_store() -> InMemoryRouteStore:
    return InMemoryRouteStore()


def test_exact_retrace_matches_fully(segment, route_store) -> None:
    route_store.add(10, northward(-200.0, 1200.0, 20.0))
    matches = GeometricMatcher(route_store).find_matches(segment, 15.0)

    assert len(matches) == 1
    match = matches[0]
    assert match.activity_id == 10
    assert match.tolerance_m == 15.0
    assert match.min_distance_m == pytest.approx(0.0, abs=0.05)
    assert match.overlap_percentage == pytest.approx(100.0, abs=0.5)
    assert match.overlap_length_m == pytest.approx(1000.0, rel=0.005)


def test_single_far_vertex_rejects_route(segment, route_store) -> None:
    # Runs ~10 m east of both end vertices and swings 50 m east at the middle one.
    detour = [offset(ORIGIN, 0.0, 10.0), offset(ORIGIN, 500.0, 50.0), offset(ORIGIN, 1000.0, 10.0)]
    route_store.add(11, detour)
    matcher = GeometricMatcher(route_store)
    prepared = matcher.prepared_segment(segment)

    distances = prepared.vertex_distances_to(prepared.reproject(detour))
    assert distances[0] == pytest.approx(10.0, abs=0.5)
    assert distances[2] == pytest.approx(10.0, abs=0.5)
    assert distances[1] == pytest.approx(50.0, abs=0.5)

    assert matcher.find_matches(segment, 15.0) == []
    assert evaluate_route(segment, prepared, route_store.routes[11], 60.0) is not None


def test_parallel_route_within_tolerance_reports_offset(segment, route_store) -> None:
    route_store.add(12, northward(0.0, 1000.0, 25.0, east_m=10.0))
    matches = GeometricMatcher(route_store).find_matches(segment, 15.0)

    assert [m.activity_id for m in matches] == [12]
    assert matches[0].min_distance_m == pytest.approx(10.0, abs=0.1)
    assert matches[0].min_distance_m <= 15.0


def test_partial_route_is_rejected(segment, route_store) -> None:
    route_store.add(13, northward(0.0, 600.0, 20.0))
    assert GeometricMatcher(route_store).find_matches(segment, 15.0) == []


def test_far_routes_are_not_loaded(segment, route_store) -> None:
    route_store.add(14, northward(0.0, 1000.0, 50.0, east_m=5000.0))
    route_store.add(15, northward(0.0, 1000.0, 50.0))

    matches = GeometricMatcher(route_store).find_matches(segment, 15.0)

    assert [m.activity_id for m in matches] == [15]
    assert route_store.loaded == [15]


def test_other_athletes_routes_are_ignored(segment, route_store) -> None:
    route_store.add(16, northward(0.0, 1000.0, 50.0), athlete_id=2)
    assert GeometricMatcher(route_store).find_matches(segment, 15.0) == []


def test_matches_ordered_by_fit(segment, route_store) -> None:
    route_store.add(20, northward(0.0, 1000.0, 25.0, east_m=10.0))
    route_store.add(21, northward(0.0, 1000.0, 25.0))
    route_store.add(22, northward(0.0, 1000.0, 25.0, east_m=-5.0))

    matches = GeometricMatcher(route_store).find_matches(segment, 15.0)

    assert [m.activity_id for m in matches] == [21, 22, 20]


def test_route_without_locations_is_skipped(segment, route_store) -> None:
    route_store.add(30, [None, None, None])
    matcher = GeometricMatcher(route_store)
    prepared = matcher.prepared_segment(segment)
    assert evaluate_route(segment, prepared, route_store.routes[30], 15.0) is None


@pytest.mark.parametrize("tolerance", [-1.0, float("nan"), float("inf")])
def test_invalid_tolerance_raises(segment, route_store, tolerance) -> None:
    with pytest.raises(ValueError):
        GeometricMatcher(route_store).find_matches(segment, tolerance)


def test_geometry_cache_reuse_and_evict(segment, route_store) -> None:
    matcher = GeometricMatcher(route_store, geometry_cache_size=4)
    first = matcher.prepared_segment(segment)
    assert matcher.prepared_segment(segment) is first

    matcher.evict(segment.segment_id)
    assert matcher.prepared_segment(segment) is not first


def test_overlap_percentage_is_clamped() -> None:
    assert overlap_percentage(1005.0, 1000.0) == 100.0
    assert overlap_percentage(-1.0, 1000.0) == 0.0
    assert overlap_percentage(250.0, 1000.0) == pytest.approx(25.0)
    assert overlap_percentage(10.0, 0.0) == 0.0

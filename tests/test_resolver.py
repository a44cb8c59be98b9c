"""Tests for resolving the on-segment sample index range."""

from __future__ import annotations

import pytest

from segment_match.matching import resolve_range
from segment_match.models import ResolvedRange, Route, Segment

from conftest import make_samples, northward


@pytest.fixture
def segment() -> Segment:
    return Segment.build(1, 1, "Straight", northward(0.0, 1000.0, 500.0))


def _route(points) -> Route:
    return Route(activity_id=5, athlete_id=1, samples=tuple(make_samples(points)))


def _approach_and_exit():
    before = northward(-200.0, -20.0, 20.0)  # 10 samples, 20+ m short of the start
    on = northward(0.0, 1000.0, 50.0)  # 21 samples on the segment
    after = northward(1020.0, 1200.0, 20.0)  # 10 samples past the end
    return before + on + after


def test_range_spans_first_to_last_hit(segment) -> None:
    route = _route(_approach_and_exit())
    resolved = resolve_range(segment, route, 15.0)
    assert resolved == ResolvedRange(start_index=10, end_index=30)


def test_range_invariants_hold(segment) -> None:
    route = _route(_approach_and_exit())
    resolved = resolve_range(segment, route, 15.0)
    assert resolved is not None
    assert 0 <= resolved.start_index <= resolved.end_index < len(route)


def test_gps_dropout_inside_range_is_kept(segment) -> None:
    points = _approach_and_exit()
    for idx in range(15, 20):
        points[idx] = None
    resolved = resolve_range(segment, _route(points), 15.0)
    assert resolved == ResolvedRange(start_index=10, end_index=30)


def test_unlocated_edges_are_not_hits(segment) -> None:
    points = [None, None] + northward(0.0, 1000.0, 100.0) + [None]
    resolved = resolve_range(segment, _route(points), 15.0)
    assert resolved == ResolvedRange(start_index=2, end_index=12)


def test_wider_tolerance_widens_range(segment) -> None:
    route = _route(_approach_and_exit())
    resolved = resolve_range(segment, route, 45.0)
    assert resolved == ResolvedRange(start_index=8, end_index=32)


def test_no_sample_within_tolerance(segment) -> None:
    route = _route(northward(0.0, 1000.0, 50.0, east_m=200.0))
    assert resolve_range(segment, route, 15.0) is None


def test_empty_route_has_no_range(segment) -> None:
    assert resolve_range(segment, _route([]), 15.0) is None


def test_resolved_range_rejects_inverted_bounds() -> None:
    with pytest.raises(ValueError):
        ResolvedRange(start_index=5, end_index=3)
    with pytest.raises(ValueError):
        ResolvedRange(start_index=-1, end_index=3)

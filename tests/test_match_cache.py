"""Tests for the persisted match cache: TTL, upserts and invalidation."""

from __future__ import annotations

import pytest

from segment_match.models import Match, ResolvedRange, SegmentMetrics

from conftest import make_samples, make_summary, northward

TOL = 15.0


@pytest.fixture
def segment_id(store) -> int:
    segment = store.create_segment(1, "Straight", northward(0.0, 1000.0, 500.0))
    for activity_id in (101, 102, 103):
        store.ingest_activity(make_summary(activity_id), make_samples(northward(0.0, 1000.0, 100.0)))
    return segment.segment_id


def _match(segment_id: int, activity_id: int, min_distance: float = 1.0) -> Match:
    return Match(
        segment_id=segment_id,
        activity_id=activity_id,
        tolerance_m=TOL,
        min_distance_m=min_distance,
        overlap_length_m=990.0,
        overlap_percentage=99.0,
    )


METRICS = SegmentMetrics(avg_hr=150.0, avg_speed=3.2, distance_m=1000.0, elevation_gain_m=12.0)


def test_empty_cache_is_a_miss(cache, segment_id) -> None:
    assert cache.fresh_matches(segment_id, TOL) is None
    assert cache.get_entry(segment_id, 101, TOL) is None


def test_match_list_expires_after_ttl(cache, clock, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101), _match(segment_id, 102)])

    fresh = cache.fresh_matches(segment_id, TOL)
    assert [m.activity_id for m in fresh] == [101, 102]

    clock.advance(3599)
    assert cache.fresh_matches(segment_id, TOL) is not None
    clock.advance(1)
    assert cache.fresh_matches(segment_id, TOL) is None


def test_metrics_write_does_not_extend_list_freshness(cache, clock, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101)])
    clock.advance(3000)
    cache.store_metrics(segment_id, 101, TOL, METRICS)
    clock.advance(700)

    assert cache.fresh_matches(segment_id, TOL) is None
    # Metrics themselves never expire.
    assert cache.get_entry(segment_id, 101, TOL).metrics == METRICS


def test_range_before_match_creates_unlisted_row(cache, segment_id) -> None:
    cache.store_range(segment_id, 101, TOL, ResolvedRange(3, 7))

    entry = cache.get_entry(segment_id, 101, TOL)
    assert entry.match is None
    assert entry.resolved_range == ResolvedRange(3, 7)
    assert entry.metrics is None
    assert cache.matched_entries(segment_id, TOL) == []
    assert cache.fresh_entries(segment_id, TOL) is None


def test_recompute_preserves_range_and_metrics(cache, segment_id) -> None:
    cache.store_range(segment_id, 101, TOL, ResolvedRange(3, 7))
    cache.store_metrics(segment_id, 101, TOL, METRICS)
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101, min_distance=2.5)])

    entry = cache.get_entry(segment_id, 101, TOL)
    assert entry.match.min_distance_m == 2.5
    assert entry.resolved_range == ResolvedRange(3, 7)
    assert entry.metrics == METRICS
    assert entry.cached_at is not None
    assert entry.metrics_cached_at is not None


def test_upsert_replaces_existing_match(cache, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101, min_distance=4.0)])
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101, min_distance=1.5)])

    entries = cache.matched_entries(segment_id, TOL)
    assert len(entries) == 1
    assert entries[0].match.min_distance_m == 1.5


def test_recompute_clears_matches_that_no_longer_hold(cache, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101), _match(segment_id, 102)])
    cache.store_metrics(segment_id, 102, TOL, METRICS)

    cache.store_matches(segment_id, TOL, [_match(segment_id, 101)])

    assert [e.activity_id for e in cache.matched_entries(segment_id, TOL)] == [101]
    stale = cache.get_entry(segment_id, 102, TOL)
    assert stale.match is None
    assert stale.metrics == METRICS


def test_tolerances_are_cached_independently(cache, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101)])
    assert cache.fresh_matches(segment_id, 30.0) is None
    assert cache.get_entry(segment_id, 101, 30.0) is None


def test_invalidate_segment_removes_all_rows(cache, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101), _match(segment_id, 102)])
    cache.store_range(segment_id, 103, 30.0, ResolvedRange(0, 4))

    assert cache.invalidate_segment(segment_id) == 3
    assert cache.get_entry(segment_id, 103, 30.0) is None
    assert cache.fresh_matches(segment_id, TOL) is None
    assert cache.invalidate_segment(segment_id) == 0


def test_invalidate_activity_removes_only_its_rows(cache, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101), _match(segment_id, 102)])

    assert cache.invalidate_activity(101) == 1
    assert [e.activity_id for e in cache.matched_entries(segment_id, TOL)] == [102]


def test_deleting_segment_cascades_to_cache_rows(cache, store, segment_id) -> None:
    cache.store_matches(segment_id, TOL, [_match(segment_id, 101)])
    store.delete_segment(segment_id)
    assert cache.get_entry(segment_id, 101, TOL) is None

"""Persisted segment/activity match cache.

One row per ``(segment_id, activity_id, tolerance_meters)`` holds the
polyline match, the resolved index range and the range metrics. The parts are
written independently: a row may carry a range and metrics before any list
computation has produced its match, and a list recompute leaves the range and
metrics untouched.

Expiry is asymmetric. A segment's match list is fresh while the newest match
write for that segment and tolerance is younger than the TTL; ranges and
metrics never expire and are only removed by invalidation.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import MATCH_CACHE_TTL_SECONDS
from ..errors import StoreError
from ..models import CacheEntry, Match, ResolvedRange, SegmentMetrics
from ..utils import as_utc, utc_now
from .tables import SegmentActivityMatchRow

Row = SegmentActivityMatchRow

_KEY_COLUMNS = ("segment_id", "activity_id", "tolerance_meters")
_MATCH_COLUMNS = ("min_distance_m", "overlap_length_m", "overlap_percentage", "cached_at")
_RANGE_COLUMNS = ("start_index", "end_index")
_METRIC_COLUMNS = (
    "avg_hr",
    "avg_speed",
    "distance_m",
    "elevation_gain_m",
    "metrics_cached_at",
)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def _entry_from_row(row: Row) -> CacheEntry:
    match = None
    if row.min_distance_m is not None:
        match = Match(
            segment_id=row.segment_id,
            activity_id=row.activity_id,
            tolerance_m=row.tolerance_meters,
            min_distance_m=row.min_distance_m,
            overlap_length_m=row.overlap_length_m or 0.0,
            overlap_percentage=row.overlap_percentage or 0.0,
        )
    resolved = None
    if row.start_index is not None and row.end_index is not None:
        resolved = ResolvedRange(start_index=row.start_index, end_index=row.end_index)
    metrics = None
    if row.distance_m is not None and row.elevation_gain_m is not None:
        metrics = SegmentMetrics(
            avg_hr=row.avg_hr,
            avg_speed=row.avg_speed,
            distance_m=row.distance_m,
            elevation_gain_m=row.elevation_gain_m,
        )
    return CacheEntry(
        segment_id=row.segment_id,
        activity_id=row.activity_id,
        tolerance_m=row.tolerance_meters,
        match=match,
        resolved_range=resolved,
        metrics=metrics,
        cached_at=as_utc(row.cached_at),
        metrics_cached_at=as_utc(row.metrics_cached_at),
    )


class MatchCache:
    """Read/write access to the ``segment_activity_matches`` table."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        ttl_seconds: float = MATCH_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._log = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(f"Match cache operation failed: {exc}") from exc
        finally:
            session.close()

    def _upsert(
        self,
        session: Session,
        values: Dict[str, Any],
        update_columns: Sequence[str],
    ) -> None:
        """Insert ``values`` or update ``update_columns`` of the existing row."""

        dialect = session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is not None:
            stmt = insert(Row).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(_KEY_COLUMNS),
                set_={column: stmt.excluded[column] for column in update_columns},
            )
            session.execute(stmt)
            return
        # Other dialects: same-key writers are serialised by the caller's lock.
        key = tuple(values[column] for column in _KEY_COLUMNS)
        row = session.get(Row, key)
        if row is None:
            session.add(Row(**values))
            return
        for column in update_columns:
            setattr(row, column, values[column])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_entry(
        self, segment_id: int, activity_id: int, tolerance_m: float
    ) -> Optional[CacheEntry]:
        with self._session() as session:
            row = session.get(Row, (segment_id, activity_id, tolerance_m))
            return _entry_from_row(row) if row is not None else None

    def matched_entries(self, segment_id: int, tolerance_m: float) -> List[CacheEntry]:
        """Return every entry of the segment/tolerance that carries a match."""

        with self._session() as session:
            rows = session.scalars(
                select(Row)
                .where(
                    Row.segment_id == segment_id,
                    Row.tolerance_meters == tolerance_m,
                    Row.min_distance_m.is_not(None),
                )
                .order_by(Row.activity_id)
            ).all()
            return [_entry_from_row(row) for row in rows]

    def fresh_entries(
        self, segment_id: int, tolerance_m: float
    ) -> Optional[List[CacheEntry]]:
        """Return the matched entries when the list is fresh, else ``None``."""

        entries = self.matched_entries(segment_id, tolerance_m)
        if not entries:
            self._log.debug("List miss segment=%s tol=%s (empty)", segment_id, tolerance_m)
            return None
        stamps = [entry.cached_at for entry in entries if entry.cached_at is not None]
        if not stamps:
            return None
        age = self._clock() - max(stamps)
        if age >= self._ttl:
            self._log.debug(
                "List miss segment=%s tol=%s (age %.0fs)",
                segment_id,
                tolerance_m,
                age.total_seconds(),
            )
            return None
        self._log.debug(
            "List hit segment=%s tol=%s (%d matches)", segment_id, tolerance_m, len(entries)
        )
        return entries

    def fresh_matches(self, segment_id: int, tolerance_m: float) -> Optional[List[Match]]:
        entries = self.fresh_entries(segment_id, tolerance_m)
        if entries is None:
            return None
        return [entry.match for entry in entries if entry.match is not None]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def store_matches(
        self, segment_id: int, tolerance_m: float, matches: Sequence[Match]
    ) -> None:
        """Persist a recomputed match list for one segment and tolerance.

        Range and metric columns of existing rows are preserved. Rows that no
        longer match lose their match columns.
        """

        now = self._clock()
        matched_ids = [match.activity_id for match in matches]
        with self._session() as session:
            for match in matches:
                self._upsert(
                    session,
                    {
                        "segment_id": segment_id,
                        "activity_id": match.activity_id,
                        "tolerance_meters": tolerance_m,
                        "min_distance_m": match.min_distance_m,
                        "overlap_length_m": match.overlap_length_m,
                        "overlap_percentage": match.overlap_percentage,
                        "cached_at": now,
                    },
                    _MATCH_COLUMNS,
                )
            stale = update(Row).where(
                Row.segment_id == segment_id,
                Row.tolerance_meters == tolerance_m,
                Row.min_distance_m.is_not(None),
            )
            if matched_ids:
                stale = stale.where(Row.activity_id.not_in(matched_ids))
            session.execute(
                stale.values(
                    min_distance_m=None,
                    overlap_length_m=None,
                    overlap_percentage=None,
                    cached_at=None,
                ).execution_options(synchronize_session=False)
            )
        self._log.debug(
            "Stored %d matches for segment=%s tol=%s", len(matches), segment_id, tolerance_m
        )

    def store_range(
        self,
        segment_id: int,
        activity_id: int,
        tolerance_m: float,
        resolved: ResolvedRange,
    ) -> None:
        with self._session() as session:
            self._upsert(
                session,
                {
                    "segment_id": segment_id,
                    "activity_id": activity_id,
                    "tolerance_meters": tolerance_m,
                    "start_index": resolved.start_index,
                    "end_index": resolved.end_index,
                },
                _RANGE_COLUMNS,
            )

    def store_metrics(
        self,
        segment_id: int,
        activity_id: int,
        tolerance_m: float,
        metrics: SegmentMetrics,
    ) -> None:
        with self._session() as session:
            self._upsert(
                session,
                {
                    "segment_id": segment_id,
                    "activity_id": activity_id,
                    "tolerance_meters": tolerance_m,
                    "avg_hr": metrics.avg_hr,
                    "avg_speed": metrics.avg_speed,
                    "distance_m": metrics.distance_m,
                    "elevation_gain_m": metrics.elevation_gain_m,
                    "metrics_cached_at": self._clock(),
                },
                _METRIC_COLUMNS,
            )

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------
    def invalidate_segment(self, segment_id: int) -> int:
        with self._session() as session:
            result = session.execute(delete(Row).where(Row.segment_id == segment_id))
            removed = result.rowcount or 0
        self._log.info("Invalidated %d cache entries for segment %s", removed, segment_id)
        return removed

    def invalidate_activity(self, activity_id: int) -> int:
        with self._session() as session:
            result = session.execute(delete(Row).where(Row.activity_id == activity_id))
            removed = result.rowcount or 0
        self._log.info("Invalidated %d cache entries for activity %s", removed, activity_id)
        return removed


__all__ = ["MatchCache"]

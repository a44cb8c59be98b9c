"""SQLAlchemy implementation of the route/segment store."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
import json
import logging
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import (
    ActivityNotFoundError,
    OwnershipError,
    SegmentNotFoundError,
    StoreError,
)
from ..geometry import BoundingBox, LatLon, cumulative_distances, polyline_length
from ..models import (
    ActivitySummary,
    PointSample,
    Route,
    Segment,
    validate_segment_points,
)
from ..utils import as_utc, utc_now
from .tables import ActivityRow, PointRow, SegmentRow

Listener = Callable[[int], object]


def _segment_from_row(row: SegmentRow) -> Segment:
    points: Tuple[LatLon, ...] = tuple(
        (float(lat), float(lon)) for lat, lon in json.loads(row.points_json)
    )
    return Segment(
        segment_id=row.id,
        athlete_id=row.athlete_id,
        name=row.name,
        points=points,
        length_m=row.length_m,
        description=row.description,
        elevation_gain_m=row.elevation_gain_m,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _summary_from_row(row: ActivityRow) -> ActivitySummary:
    return ActivitySummary(
        activity_id=row.id,
        athlete_id=row.athlete_id,
        name=row.name,
        start_date=as_utc(row.start_date),  # type: ignore[arg-type]
        elapsed_time_s=row.elapsed_time_s or 0.0,
        moving_time_s=row.moving_time_s or 0.0,
        distance_m=row.distance_m or 0.0,
        average_heartrate=row.average_heartrate,
        average_speed=row.average_speed,
        sport_type=row.sport_type,
    )


def _sample_from_row(row: PointRow) -> PointSample:
    return PointSample(
        index=row.point_index,
        timestamp=as_utc(row.timestamp),  # type: ignore[arg-type]
        latitude=row.latitude,
        longitude=row.longitude,
        altitude=row.altitude,
        heart_rate=row.heart_rate,
        speed=row.speed,
        cadence=row.cadence,
        watts=row.watts,
        grade=row.grade,
        moving=row.moving,
        cumulative_distance=row.cumulative_distance or 0.0,
    )


def _with_cumulative_distance(samples: Sequence[PointSample]) -> List[PointSample]:
    """Fill ``cumulative_distance`` when the caller supplied none."""

    if any(sample.cumulative_distance for sample in samples):
        return list(samples)
    totals = cumulative_distances([sample.location for sample in samples])
    return [
        replace(sample, cumulative_distance=total)
        for sample, total in zip(samples, totals)
    ]


class SqlRouteStore:
    """Routes, segments and summaries persisted through SQLAlchemy.

    Geometry-changing writes (segment edit/delete, route re-ingest/delete)
    notify the registered listeners so dependent cache entries are evicted.
    Listener failures propagate to the caller.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._log = logging.getLogger(self.__class__.__name__)
        self._segment_listeners: List[Listener] = []
        self._activity_listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(f"Store operation failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def subscribe(
        self,
        *,
        on_segment_changed: Optional[Listener] = None,
        on_activity_changed: Optional[Listener] = None,
    ) -> None:
        if on_segment_changed is not None:
            self._segment_listeners.append(on_segment_changed)
        if on_activity_changed is not None:
            self._activity_listeners.append(on_activity_changed)

    def _notify_segment(self, segment_id: int) -> None:
        for listener in self._segment_listeners:
            listener(segment_id)

    def _notify_activity(self, activity_id: int) -> None:
        for listener in self._activity_listeners:
            listener(activity_id)

    # ------------------------------------------------------------------
    # RouteStore
    # ------------------------------------------------------------------
    def get_route(self, athlete_id: int, activity_id: int) -> Route:
        with self.session() as session:
            activity = session.get(ActivityRow, activity_id)
            if activity is None:
                raise ActivityNotFoundError(f"Activity {activity_id} not found")
            if activity.athlete_id != athlete_id:
                raise OwnershipError(
                    f"Activity {activity_id} does not belong to athlete {athlete_id}"
                )
            rows = session.scalars(
                select(PointRow)
                .where(PointRow.activity_id == activity_id)
                .order_by(PointRow.point_index)
            ).all()
            samples = [_sample_from_row(row) for row in rows]
        return Route(activity_id=activity_id, athlete_id=athlete_id, samples=tuple(samples))

    def get_segment(self, segment_id: int) -> Segment:
        with self.session() as session:
            row = session.get(SegmentRow, segment_id)
            if row is None:
                raise SegmentNotFoundError(f"Segment {segment_id} not found")
            return _segment_from_row(row)

    def get_segment_by_name(self, athlete_id: int, name: str) -> Segment:
        """Return the athlete's segment called ``name``; the oldest wins on duplicates."""

        with self.session() as session:
            row = session.scalars(
                select(SegmentRow)
                .where(SegmentRow.athlete_id == athlete_id, SegmentRow.name == name)
                .order_by(SegmentRow.id)
                .limit(1)
            ).first()
            if row is None:
                raise SegmentNotFoundError(f"Segment with name '{name}' not found")
            return _segment_from_row(row)

    def list_candidate_routes(self, athlete_id: int, bbox: BoundingBox) -> List[int]:
        with self.session() as session:
            ids = session.scalars(
                select(ActivityRow.id)
                .where(
                    and_(
                        ActivityRow.athlete_id == athlete_id,
                        ActivityRow.min_lat.is_not(None),
                        ActivityRow.min_lat <= bbox.max_lat,
                        ActivityRow.max_lat >= bbox.min_lat,
                        ActivityRow.min_lon <= bbox.max_lon,
                        ActivityRow.max_lon >= bbox.min_lon,
                    )
                )
                .order_by(ActivityRow.id)
            ).all()
        return list(ids)

    def get_activity_summary(self, activity_id: int) -> ActivitySummary:
        with self.session() as session:
            row = session.get(ActivityRow, activity_id)
            if row is None:
                raise ActivityNotFoundError(f"Activity {activity_id} not found")
            return _summary_from_row(row)

    def get_activity_summaries(
        self, athlete_id: int, activity_ids: Sequence[int]
    ) -> Dict[int, ActivitySummary]:
        if not activity_ids:
            return {}
        with self.session() as session:
            rows = session.scalars(
                select(ActivityRow).where(
                    ActivityRow.athlete_id == athlete_id,
                    ActivityRow.id.in_(list(activity_ids)),
                )
            ).all()
            return {row.id: _summary_from_row(row) for row in rows}

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def ingest_activity(
        self, summary: ActivitySummary, samples: Sequence[PointSample]
    ) -> Route:
        """Insert or wholesale-replace an activity and its point stream."""

        route = Route(
            activity_id=summary.activity_id,
            athlete_id=summary.athlete_id,
            samples=tuple(_with_cumulative_distance(samples)),
        )
        located = route.located_points()
        bbox = BoundingBox.of(located) if located else None
        replaced = False
        with self.session() as session:
            row = session.get(ActivityRow, summary.activity_id)
            if row is not None:
                if row.athlete_id != summary.athlete_id:
                    raise OwnershipError(
                        f"Activity {summary.activity_id} belongs to another athlete"
                    )
                replaced = True
                session.execute(
                    delete(PointRow).where(PointRow.activity_id == summary.activity_id)
                )
            else:
                row = ActivityRow(id=summary.activity_id, athlete_id=summary.athlete_id)
                session.add(row)
            row.name = summary.name
            row.start_date = summary.start_date
            row.elapsed_time_s = summary.elapsed_time_s
            row.moving_time_s = summary.moving_time_s
            row.distance_m = summary.distance_m
            row.average_heartrate = summary.average_heartrate
            row.average_speed = summary.average_speed
            row.sport_type = summary.sport_type
            row.min_lat = bbox.min_lat if bbox else None
            row.min_lon = bbox.min_lon if bbox else None
            row.max_lat = bbox.max_lat if bbox else None
            row.max_lon = bbox.max_lon if bbox else None
            session.flush()
            session.add_all(
                PointRow(
                    activity_id=summary.activity_id,
                    point_index=sample.index,
                    timestamp=sample.timestamp,
                    latitude=sample.latitude,
                    longitude=sample.longitude,
                    altitude=sample.altitude,
                    heart_rate=sample.heart_rate,
                    speed=sample.speed,
                    cadence=sample.cadence,
                    watts=sample.watts,
                    grade=sample.grade,
                    moving=sample.moving,
                    cumulative_distance=sample.cumulative_distance,
                )
                for sample in route.samples
            )
        self._log.info(
            "%s activity %s (%d samples)",
            "Replaced" if replaced else "Ingested",
            summary.activity_id,
            len(route),
        )
        if replaced:
            self._notify_activity(summary.activity_id)
        return route

    def delete_activity(self, activity_id: int) -> None:
        self.get_activity_summary(activity_id)
        self._notify_activity(activity_id)
        with self.session() as session:
            row = session.get(ActivityRow, activity_id)
            if row is None:
                raise ActivityNotFoundError(f"Activity {activity_id} not found")
            session.delete(row)
        self._log.info("Deleted activity %s", activity_id)

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------
    def create_segment(
        self,
        athlete_id: int,
        name: str,
        points: Sequence[LatLon],
        *,
        description: Optional[str] = None,
        elevation_gain_m: Optional[float] = None,
    ) -> Segment:
        vertices = validate_segment_points(points)
        now = self._clock()
        with self.session() as session:
            row = SegmentRow(
                athlete_id=athlete_id,
                name=name,
                description=description,
                points_json=json.dumps([list(pt) for pt in vertices]),
                length_m=polyline_length(vertices),
                elevation_gain_m=elevation_gain_m,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            segment = _segment_from_row(row)
        self._log.info(
            "Created segment %s '%s' (%.1f m)", segment.segment_id, name, segment.length_m
        )
        return segment

    def update_segment(
        self,
        segment_id: int,
        name: str,
        points: Sequence[LatLon],
        *,
        description: Optional[str] = None,
    ) -> Segment:
        """Replace a segment's name, description and geometry."""

        vertices = validate_segment_points(points)
        with self.session() as session:
            row = session.get(SegmentRow, segment_id)
            if row is None:
                raise SegmentNotFoundError(f"Segment {segment_id} not found")
            geometry_changed = json.loads(row.points_json) != [list(pt) for pt in vertices]
            row.name = name
            row.description = description
            row.points_json = json.dumps([list(pt) for pt in vertices])
            row.length_m = polyline_length(vertices)
            if geometry_changed:
                # Gain was derived from the old geometry's samples.
                row.elevation_gain_m = None
            row.updated_at = self._clock()
            session.flush()
            segment = _segment_from_row(row)
        self._notify_segment(segment_id)
        return segment

    def delete_segment(self, segment_id: int) -> None:
        self.get_segment(segment_id)
        self._notify_segment(segment_id)
        with self.session() as session:
            row = session.get(SegmentRow, segment_id)
            if row is None:
                raise SegmentNotFoundError(f"Segment {segment_id} not found")
            session.delete(row)
        self._log.info("Deleted segment %s", segment_id)

    def list_segments(self, athlete_id: int) -> List[Segment]:
        with self.session() as session:
            rows = session.scalars(
                select(SegmentRow)
                .where(SegmentRow.athlete_id == athlete_id)
                .order_by(SegmentRow.name, SegmentRow.id)
            ).all()
            return [_segment_from_row(row) for row in rows]


__all__ = ["SqlRouteStore"]

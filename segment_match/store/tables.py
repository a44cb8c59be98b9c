"""SQLAlchemy table mappings for segments, routes and the match cache."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SegmentRow(Base):
    __tablename__ = "segments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    athlete_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # JSON array of [lat, lon] pairs.
    points_json: Mapped[str] = mapped_column(Text)
    length_m: Mapped[float] = mapped_column(Float)
    elevation_gain_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class ActivityRow(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    athlete_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(255))
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    elapsed_time_s: Mapped[float] = mapped_column(Float, default=0.0)
    moving_time_s: Mapped[float] = mapped_column(Float, default=0.0)
    distance_m: Mapped[float] = mapped_column(Float, default=0.0)
    average_heartrate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    average_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sport_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # Envelope of the located samples; null when the stream has no fix.
    min_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    min_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class PointRow(Base):
    __tablename__ = "activity_points"

    activity_id: Mapped[int] = mapped_column(
        ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True
    )
    point_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    altitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    heart_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cadence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    watts: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    grade: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    moving: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    cumulative_distance: Mapped[float] = mapped_column(Float, default=0.0)


class SegmentActivityMatchRow(Base):
    """One cache entry per (segment, activity, tolerance).

    Match columns are null for rows created by a range or metrics write before
    any list computation; such rows are invisible to list reads.
    """

    __tablename__ = "segment_activity_matches"
    __table_args__ = (
        Index("ix_segment_activity_matches_segment_tol", "segment_id", "tolerance_meters"),
        Index("ix_segment_activity_matches_activity", "activity_id"),
    )

    segment_id: Mapped[int] = mapped_column(
        ForeignKey("segments.id", ondelete="CASCADE"), primary_key=True
    )
    activity_id: Mapped[int] = mapped_column(
        ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True
    )
    tolerance_meters: Mapped[float] = mapped_column(Float, primary_key=True)

    min_distance_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    overlap_length_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    overlap_percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    start_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    end_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    avg_hr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    distance_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    elevation_gain_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Bumped only by match writes; drives list freshness.
    cached_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    metrics_cached_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


__all__ = [
    "ActivityRow",
    "Base",
    "PointRow",
    "SegmentActivityMatchRow",
    "SegmentRow",
]

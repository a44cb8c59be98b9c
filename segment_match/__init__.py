"""Segment-activity matching and metrics cache package."""

from .errors import (
    NotFoundError,
    OwnershipError,
    RangeNotFoundError,
    SegmentMatchError,
    StoreError,
)
from .models import (
    ActivitySummary,
    Match,
    MatchListing,
    PointSample,
    ResolvedRange,
    Route,
    Segment,
    SegmentMetrics,
)
from .services import SegmentActivityService

__all__ = [
    "ActivitySummary",
    "Match",
    "MatchListing",
    "NotFoundError",
    "OwnershipError",
    "PointSample",
    "RangeNotFoundError",
    "ResolvedRange",
    "Route",
    "Segment",
    "SegmentActivityService",
    "SegmentMatchError",
    "SegmentMetrics",
    "StoreError",
]

"""Central error types used across the application."""

from __future__ import annotations


class SegmentMatchError(RuntimeError):
    """Base error for matching, resolving and caching failures."""


class NotFoundError(SegmentMatchError):
    """Raised when a requested resource does not exist."""


class SegmentNotFoundError(NotFoundError):
    """Raised when a favourite segment does not exist."""


class ActivityNotFoundError(NotFoundError):
    """Raised when an activity (summary or route) does not exist."""


class RangeNotFoundError(NotFoundError):
    """Raised when no route sample lies within tolerance of a segment."""


class OwnershipError(SegmentMatchError):
    """Raised when a segment or activity belongs to another athlete."""


class StoreError(SegmentMatchError):
    """Raised when the underlying storage fails; callers may retry."""


class DegenerateGeometryError(ValueError):
    """Raised when a segment has fewer than two vertices or zero length."""


__all__ = [
    "SegmentMatchError",
    "NotFoundError",
    "SegmentNotFoundError",
    "ActivityNotFoundError",
    "RangeNotFoundError",
    "OwnershipError",
    "StoreError",
    "DegenerateGeometryError",
]

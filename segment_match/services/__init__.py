"""Application services."""

from .segment_activity_service import SegmentActivityService

__all__ = ["SegmentActivityService"]

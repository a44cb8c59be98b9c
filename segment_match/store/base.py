"""Read contract the matching pipeline needs from a route/segment store."""

from __future__ import annotations

from typing import Dict, List, Protocol, Sequence

from ..geometry import BoundingBox
from ..models import ActivitySummary, Route, Segment


class RouteStore(Protocol):
    """Source of routes, segments and activity summaries.

    Implementations raise ``SegmentNotFoundError`` / ``ActivityNotFoundError``
    for unknown ids and ``OwnershipError`` when a route belongs to another
    athlete. Storage failures surface as ``StoreError``.
    """

    def get_route(self, athlete_id: int, activity_id: int) -> Route:
        ...

    def get_segment(self, segment_id: int) -> Segment:
        ...

    def list_candidate_routes(self, athlete_id: int, bbox: BoundingBox) -> List[int]:
        """Return ids of the athlete's routes whose envelope intersects ``bbox``."""
        ...

    def get_activity_summary(self, activity_id: int) -> ActivitySummary:
        ...

    def get_activity_summaries(
        self, athlete_id: int, activity_ids: Sequence[int]
    ) -> Dict[int, ActivitySummary]:
        ...


__all__ = ["RouteStore"]

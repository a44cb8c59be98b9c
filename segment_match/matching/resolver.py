"""Resolve the sample-index span of a route that lies on a segment."""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..geometry import ProjectedPolyline
from ..models import ResolvedRange, Route, Segment


def resolve_range(
    segment: Segment,
    route: Route,
    tolerance_m: float,
    *,
    prepared_segment: Optional[ProjectedPolyline] = None,
) -> Optional[ResolvedRange]:
    """Return the first/last on-segment sample indices, or ``None``.

    A sample is on-segment when its location lies within ``tolerance_m`` of
    the segment polyline. Samples between the first and last hit stay inside
    the range even when they miss (GPS dropouts, momentary drift), so the span
    is contiguous by index rather than by membership.

    ``None`` is returned when no sample is within tolerance. This can happen
    for a polyline-level match on a sparse stream, so callers must treat it
    independently of the matcher's verdict.
    """

    if len(route) == 0:
        return None
    prepared = prepared_segment or ProjectedPolyline(segment.points)
    distances = prepared.distances_to(route.locations())
    hits = np.nonzero(np.isfinite(distances) & (distances <= tolerance_m))[0]
    if hits.size == 0:
        return None
    return ResolvedRange(
        start_index=route.samples[int(hits[0])].index,
        end_index=route.samples[int(hits[-1])].index,
    )


__all__ = ["resolve_range"]

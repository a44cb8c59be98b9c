"""Local metric projections for lat/lon geometry."""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

LatLon = Tuple[float, float]
MetricArray = NDArray[np.float64]


class LocalProjection:
    """Project WGS84 lat/lon pairs into a UTM zone centred on a geometry."""

    __slots__ = ("transformer", "epsg")

    def __init__(self, transformer: Transformer, epsg: int) -> None:
        self.transformer = transformer
        self.epsg = epsg

    @classmethod
    def around(cls, points: Sequence[LatLon]) -> "LocalProjection":
        """Return a projection centred on the mean of ``points``."""

        if not points:
            raise ValueError("Cannot build a projection for an empty point collection")
        transformer, epsg = _build_local_transformer(points)
        return cls(transformer, epsg)

    def project(self, points: Sequence[LatLon]) -> MetricArray:
        """Project lat/lon pairs into metric (x, y) coordinates."""

        if not points:
            return np.empty((0, 2), dtype=float)
        lats = np.asarray([pt[0] for pt in points], dtype=float)
        lons = np.asarray([pt[1] for pt in points], dtype=float)
        xs, ys = self.transformer.transform(lons, lats)
        return np.column_stack((xs, ys)).astype(float, copy=False)


def _build_local_transformer(points: Sequence[LatLon]) -> Tuple[Transformer, int]:
    """Build a local UTM transformer centred on the provided coordinates."""

    lats = [pt[0] for pt in points]
    lons = [pt[1] for pt in points]
    mean_lat = float(np.mean(lats))
    mean_lon = float(np.mean(lons))
    zone = int((mean_lon + 180.0) // 6.0) + 1
    zone = max(1, min(zone, 60))
    if mean_lat >= 0:
        epsg = 32600 + zone
    else:
        epsg = 32700 + zone
    try:
        target_crs = CRS.from_epsg(epsg)
    except CRSError:
        epsg = 3857
        target_crs = CRS.from_epsg(epsg)
    transformer = Transformer.from_crs(CRS.from_epsg(4326), target_crs, always_xy=True)
    return transformer, epsg


__all__ = ["LatLon", "LocalProjection", "MetricArray"]

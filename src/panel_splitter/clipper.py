"""Boolean geometry capability used by the tile clipper.

The tiler only talks to the ``GeometryClipper`` protocol, so the Shapely
implementation can be swapped for a fake in tests (for example one that
fails on purpose to exercise the unsafe-fallback path).
"""

from __future__ import annotations

import logging
from typing import Protocol

from shapely import make_valid
from shapely.errors import GEOSException
from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPolygon,
    Polygon,
    box,
)
from shapely.geometry.base import BaseGeometry

from panel_splitter.contracts import ClipError, Rect

logger = logging.getLogger(__name__)


class GeometryClipper(Protocol):
    def intersect(self, geometry: BaseGeometry, rect: Rect) -> BaseGeometry:
        """Part of *geometry* inside *rect*; raise on failure."""
        ...

    def simplify(self, geometry: BaseGeometry, tolerance: float) -> BaseGeometry:
        ...

    def expand_stroke(self, geometry: BaseGeometry, width: float) -> BaseGeometry:
        ...


def _same_dimension(result: BaseGeometry, source: BaseGeometry) -> BaseGeometry:
    """Drop lower-dimensional debris (points, edge touches) from an intersection."""
    if source.geom_type in ("Polygon", "MultiPolygon"):
        kinds, multi = (Polygon, MultiPolygon), MultiPolygon
    else:
        kinds, multi = (LineString, MultiLineString), MultiLineString
    if isinstance(result, kinds):
        return result
    parts = []
    for part in getattr(result, "geoms", ()):
        if isinstance(part, multi):
            parts.extend(part.geoms)
        elif isinstance(part, kinds):
            parts.append(part)
    return parts[0] if len(parts) == 1 else multi(parts)


class ShapelyClipper:
    """GEOS-backed implementation of ``GeometryClipper``."""

    def intersect(self, geometry: BaseGeometry, rect: Rect) -> BaseGeometry:
        clip = box(*rect)
        source = geometry
        if not source.is_valid:
            logger.debug("Repairing invalid %s before clipping", source.geom_type)
            source = make_valid(source)
        try:
            result = source.intersection(clip)
        except GEOSException as exc:
            raise ClipError(str(exc)) from exc
        return _same_dimension(result, geometry)

    def simplify(self, geometry: BaseGeometry, tolerance: float) -> BaseGeometry:
        if tolerance <= 0:
            return geometry
        simplified = geometry.simplify(tolerance, preserve_topology=True)
        if simplified.is_empty:
            return geometry
        return simplified

    def expand_stroke(self, geometry: BaseGeometry, width: float) -> BaseGeometry:
        """Outline of the stroke of *geometry* as a filled area."""
        if width <= 0:
            return geometry
        half = width / 2.0
        if geometry.geom_type in ("Polygon", "MultiPolygon"):
            outline = geometry.boundary
        else:
            outline = geometry
        return outline.buffer(half, join_style="mitre", cap_style="flat")

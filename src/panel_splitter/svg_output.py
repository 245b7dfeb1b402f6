"""
SVG writing helpers shared by tile output and the assembly map.

Documents are built with svgwrite in millimeter user units
(``width="300mm"`` with a matching viewBox).
"""

import copy
from typing import Iterable, Optional, Tuple
from xml.etree.ElementTree import Element

import svgwrite
from shapely.geometry.base import BaseGeometry

from panel_splitter.contracts import PassthroughElement, SourceShape

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8" ?>\n'

# SVG styling
STYLES = {
    "label": {
        "fill": "#0000ff",  # blue, engrave layer
        "font_family": "Arial, sans-serif",
    },
    "boundary": {
        "stroke": "#00a0ff",
        "stroke_width": "0.2",
        "fill": "none",
    },
    "guide": {
        "stroke": "#00a0ff",
        "stroke_width": "0.15",
        "stroke_dasharray": "2,1",
        "fill": "none",
    },
    "mark": {
        "stroke": "#0000ff",
        "fill": "none",
    },
    "mark_cut": {
        "stroke": "#ff0000",  # red: pinholes are cut through
        "fill": "none",
    },
}

LABEL_FONT_SIZE_MM = 4.0


def fmt(value: float) -> str:
    """Compact, stable number formatting for SVG attributes."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _ring_to_d(coords: Iterable[Tuple[float, float]], close: bool) -> str:
    points = list(coords)
    if close and len(points) > 1 and points[0] == points[-1]:
        points = points[:-1]
    if not points:
        return ""
    head = f"M{fmt(points[0][0])},{fmt(points[0][1])}"
    tail = "".join(f" L{fmt(x)},{fmt(y)}" for x, y in points[1:])
    return head + tail + (" Z" if close else "")


def geometry_to_pathd(geometry: BaseGeometry) -> str:
    """Serialize polygons and lines to SVG path data."""
    if geometry is None or geometry.is_empty:
        return ""
    kind = geometry.geom_type
    if kind == "Polygon":
        parts = [_ring_to_d(geometry.exterior.coords, True)]
        parts.extend(_ring_to_d(ring.coords, True) for ring in geometry.interiors)
        return " ".join(p for p in parts if p)
    if kind == "LineString":
        return _ring_to_d(geometry.coords, False)
    if kind == "LinearRing":
        return _ring_to_d(geometry.coords, True)
    if hasattr(geometry, "geoms"):
        return " ".join(d for d in (geometry_to_pathd(g) for g in geometry.geoms) if d)
    return ""  # points carry no cut geometry


def new_drawing(width_mm: float, height_mm: float) -> svgwrite.Drawing:
    return svgwrite.Drawing(
        size=(f"{fmt(width_mm)}mm", f"{fmt(height_mm)}mm"),
        viewBox=f"0 0 {fmt(width_mm)} {fmt(height_mm)}",
        debug=False,
    )


def to_svg_string(dwg: svgwrite.Drawing) -> str:
    return XML_DECLARATION + dwg.tostring()


class RawElement:
    """Adapter letting svgwrite containers hold a pre-built XML element."""

    def __init__(self, element: Element, transform: Optional[str] = None):
        self.elementname = element.tag
        self._element = element
        self._transform = transform

    def get_xml(self) -> Element:
        element = copy.deepcopy(self._element)
        if self._transform is None:
            return element
        wrapper = Element("g", {"transform": self._transform})
        wrapper.append(element)
        return wrapper


def passthrough_element(item: PassthroughElement) -> RawElement:
    transform = None
    if item.matrix is not None:
        # Scale terms can be tiny (px -> mm), so keep significant digits.
        transform = "matrix(" + " ".join(f"{v:.8g}" for v in item.matrix) + ")"
    return RawElement(item.element, transform)


def shape_path(
    dwg: svgwrite.Drawing,
    shape: SourceShape,
    geometry: BaseGeometry,
    expanded: bool = False,
):
    """Path element for (a clipped piece of) *shape*, keeping its style."""
    d = geometry_to_pathd(geometry)
    if expanded:
        fill = shape.stroke if shape.stroke not in (None, "none") else (shape.fill or "#000000")
        return dwg.path(
            d=d, fill=fill, stroke="none", fill_rule="evenodd", id=f"{shape.shape_id}-stroke"
        )
    attrs = {
        "fill": shape.fill or "none",
        "stroke": shape.stroke or "none",
        "fill_rule": "evenodd",
        "id": shape.shape_id,
    }
    if not shape.closed:
        attrs["fill"] = "none"
    if shape.stroke not in (None, "none"):
        attrs["stroke_width"] = fmt(shape.stroke_width_mm)
    return dwg.path(d=d, **attrs)

"""SVG document parsing and unit normalization.

Resolves the physical size of an uploaded SVG in millimeters and flattens
its drawable elements into Shapely geometry expressed in document mm (origin
at the top-left corner of the document viewport).

Size precedence, per axis:

1. a declared width/height with a physical unit (mm, cm, q, in, pt, pc);
2. a unitless or ``px`` declaration, resolved with the active units-per-inch
   (with ``UnitlessPolicy.PREFER_VIEWBOX`` a disagreeing viewBox wins here);
3. the viewBox aspect ratio, when only the other axis is declared;
4. the viewBox dimension in pixels.

A document with none of these is rejected.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
from xml.etree.ElementTree import Element, ParseError

import defusedxml.ElementTree as ElementTree
from defusedxml import EntitiesForbidden
from fontTools.misc.bezierTools import (
    calcCubicArcLength,
    calcQuadraticArcLength,
    splitCubicAtT,
    splitQuadraticAtT,
)
from fontTools.misc.transform import Identity
from fontTools.pens.recordingPen import RecordingPen
from fontTools.svgLib.path import parse_path
import numpy as np
from shapely import affinity
from shapely import make_valid
from shapely.geometry import LineString, MultiLineString, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from panel_splitter.contracts import (
    NormalizedDocument,
    PassthroughElement,
    SourceShape,
    SVGParseError,
    UnitlessPolicy,
    UnitMode,
    UnsupportedFileError,
    ViewBox,
)
from panel_splitter.units import (
    MM_PER_INCH,
    PHYSICAL_UNITS,
    is_physical,
    is_pixel,
    parse_length,
    pixels_to_mm,
    to_mm,
    units_per_inch,
)

logger = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"

FLATTEN_TOLERANCE_MM = 0.1

_CONTAINER_TAGS = {"svg", "g", "a", "switch"}
_SHAPE_TAGS = {"path", "rect", "circle", "ellipse", "line", "polyline", "polygon"}
_NON_RENDERED_TAGS = {"defs", "style"}
_USE_GROUP_TAGS = {"g", "symbol"}
_IGNORED_TAGS = {
    "title", "desc", "metadata", "clipPath", "mask", "symbol", "marker",
    "pattern", "linearGradient", "radialGradient", "filter", "script",
}
_INHERITED_STYLE = ("fill", "stroke", "stroke-width", "display", "font-size", "text-anchor")

# Text footprint estimate: average glyph advance and descent per font size.
DEFAULT_FONT_SIZE = 16.0
_GLYPH_ADVANCE = 0.6
_GLYPH_DESCENT = 0.25

_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_DOCTYPE_RE = re.compile(r"<!DOCTYPE[^\[>]*(\[.*?\])?\s*>", re.DOTALL)
_ENTITY_RE = re.compile(r"<!ENTITY\s+([\w.-]+)\s+\"([^\"]*)\"\s*>")
_TRANSFORM_RE = re.compile(r"(matrix|translate|scale|rotate|skewX|skewY)\s*\(([^)]*)\)")


# ---------------------------------------------------------------------------
# XML helpers
# ---------------------------------------------------------------------------

def _local_name(tag) -> str:
    if not isinstance(tag, str):
        return ""  # comments and processing instructions
    return tag.rsplit("}", 1)[-1]


def _inline_simple_entities(content: str) -> str:
    """Drop the DOCTYPE and substitute its literal internal entities.

    Illustrator exports declare namespace URIs as entities. Only plain
    literal values are inlined, one level deep, so no expansion can grow.
    """
    match = _DOCTYPE_RE.search(content)
    if not match:
        return content
    subset = match.group(1) or ""
    entities = {
        name: value
        for name, value in _ENTITY_RE.findall(subset)
        if "&" not in value and "<" not in value
    }
    body = content[: match.start()] + content[match.end():]
    for name, value in entities.items():
        body = body.replace(f"&{name};", value)
    return body


def _parse_xml(content: str) -> Element:
    try:
        return ElementTree.fromstring(content)
    except EntitiesForbidden:
        logger.debug("Inlining DOCTYPE entities before parsing")
    except ParseError as exc:
        raise SVGParseError(f"Not a valid SVG document: {exc}") from exc
    try:
        return ElementTree.fromstring(_inline_simple_entities(content))
    except (ParseError, EntitiesForbidden) as exc:
        raise SVGParseError(f"Not a valid SVG document: {exc}") from exc


def _strip_namespaces(element: Element) -> Element:
    """Copy *element* with SVG tags un-prefixed and foreign namespaces dropped."""
    clean = Element(_local_name(element.tag))
    for key, value in element.attrib.items():
        if key.startswith("{"):
            ns, _, name = key[1:].partition("}")
            if ns == XLINK_NS:
                clean.set(f"xlink:{name}", value)
            continue
        clean.set(key, value)
    clean.text = element.text
    clean.tail = None
    for child in element:
        if not isinstance(child.tag, str):
            continue
        if child.tag.startswith("{") and not child.tag.startswith("{" + SVG_NS):
            continue
        stripped = _strip_namespaces(child)
        stripped.tail = child.tail
        clean.append(stripped)
    return clean


def _parse_style(element: Element, inherited: Dict[str, str]) -> Dict[str, str]:
    style = {k: v for k, v in inherited.items() if k != "display"}
    for name in _INHERITED_STYLE:
        value = element.get(name)
        if value is not None:
            style[name] = value.strip()
    for declaration in (element.get("style") or "").split(";"):
        name, sep, value = declaration.partition(":")
        if sep and name.strip() in _INHERITED_STYLE:
            style[name.strip()] = value.strip()
    return style


# ---------------------------------------------------------------------------
# Size resolution
# ---------------------------------------------------------------------------

def _parse_view_box(value: Optional[str]) -> Optional[ViewBox]:
    if not value:
        return None
    numbers = _NUMBER_RE.findall(value)
    if len(numbers) != 4:
        logger.warning("Ignoring malformed viewBox %r", value)
        return None
    x, y, w, h = (float(n) for n in numbers)
    if w <= 0 or h <= 0:
        logger.warning("Ignoring viewBox with non-positive size %r", value)
        return None
    return ViewBox(x, y, w, h)


def _declared_mm(
    declared: Optional[Tuple[float, str]],
    view_box_dim: Optional[float],
    dpi: float,
    policy: UnitlessPolicy,
) -> Optional[float]:
    if declared is None:
        return None
    value, unit = declared
    if is_physical(unit):
        return to_mm(value, unit, dpi)
    mm = to_mm(value, unit, dpi)
    if mm is None:
        return None  # %, em, ex: no intrinsic size
    if (
        policy is UnitlessPolicy.PREFER_VIEWBOX
        and view_box_dim is not None
        and not math.isclose(value, view_box_dim)
    ):
        return pixels_to_mm(view_box_dim, dpi)
    return mm


def resolve_size(
    width_attr: Optional[str],
    height_attr: Optional[str],
    view_box: Optional[ViewBox],
    dpi: float,
    policy: UnitlessPolicy = UnitlessPolicy.PREFER_DIMENSIONS,
) -> Tuple[float, float]:
    """Return the document size in mm, or raise SVGParseError."""
    width_mm = _declared_mm(
        parse_length(width_attr), view_box.width if view_box else None, dpi, policy
    )
    height_mm = _declared_mm(
        parse_length(height_attr), view_box.height if view_box else None, dpi, policy
    )

    if view_box is not None:
        aspect = view_box.width / view_box.height
        if width_mm is not None and height_mm is None:
            height_mm = width_mm / aspect
        elif height_mm is not None and width_mm is None:
            width_mm = height_mm * aspect
        elif width_mm is None and height_mm is None:
            width_mm = pixels_to_mm(view_box.width, dpi)
            height_mm = pixels_to_mm(view_box.height, dpi)

    if width_mm is None or height_mm is None:
        raise SVGParseError(
            "SVG declares no usable size: add width/height attributes or a viewBox"
        )
    if not (math.isfinite(width_mm) and math.isfinite(height_mm)):
        raise SVGParseError("SVG size is not a finite number")
    if width_mm <= 0 or height_mm <= 0:
        raise SVGParseError(
            f"SVG size must be positive, got {width_mm:g} x {height_mm:g} mm"
        )
    return width_mm, height_mm


def _root_matrix(
    width_mm: float,
    height_mm: float,
    view_box: Optional[ViewBox],
    preserve_aspect_ratio: Optional[str],
    dpi: float,
) -> np.ndarray:
    """Matrix mapping root user units to document mm."""
    if view_box is None:
        s = pixels_to_mm(1.0, dpi)
        return np.array([[s, 0.0, 0.0], [0.0, s, 0.0], [0.0, 0.0, 1.0]])

    sx = width_mm / view_box.width
    sy = height_mm / view_box.height
    par = (preserve_aspect_ratio or "xMidYMid meet").split()
    align = par[0] if par else "xMidYMid"
    if align == "none":
        return np.array([
            [sx, 0.0, -view_box.x * sx],
            [0.0, sy, -view_box.y * sy],
            [0.0, 0.0, 1.0],
        ])

    slice_mode = len(par) > 1 and par[1] == "slice"
    s = max(sx, sy) if slice_mode else min(sx, sy)
    fractions = {"Min": 0.0, "Mid": 0.5, "Max": 1.0}
    ax = fractions.get(align[1:4], 0.5)
    ay = fractions.get(align[5:8], 0.5)
    tx = -view_box.x * s + (width_mm - view_box.width * s) * ax
    ty = -view_box.y * s + (height_mm - view_box.height * s) * ay
    return np.array([[s, 0.0, tx], [0.0, s, ty], [0.0, 0.0, 1.0]])


# ---------------------------------------------------------------------------
# Geometry extraction
# ---------------------------------------------------------------------------

def _num(element: Element, name: str, default: float = 0.0) -> float:
    parsed = parse_length(element.get(name))
    return parsed[0] if parsed else default


def _shape_to_pathd(tag: str, element: Element) -> Optional[str]:
    """Path data for a basic shape element, or ``None`` if degenerate."""
    if tag == "path":
        return element.get("d") or None
    if tag == "rect":
        x, y = _num(element, "x"), _num(element, "y")
        w, h = _num(element, "width"), _num(element, "height")
        if w <= 0 or h <= 0:
            return None
        rx = element.get("rx")
        ry = element.get("ry")
        rx_v = _num(element, "rx") if rx is not None else None
        ry_v = _num(element, "ry") if ry is not None else None
        if rx_v is None:
            rx_v = ry_v or 0.0
        if ry_v is None:
            ry_v = rx_v
        rx_v = min(max(rx_v, 0.0), w / 2.0)
        ry_v = min(max(ry_v, 0.0), h / 2.0)
        if rx_v == 0 or ry_v == 0:
            return f"M{x},{y} H{x + w} V{y + h} H{x} Z"
        return (
            f"M{x + rx_v},{y} H{x + w - rx_v} "
            f"A{rx_v},{ry_v} 0 0 1 {x + w},{y + ry_v} V{y + h - ry_v} "
            f"A{rx_v},{ry_v} 0 0 1 {x + w - rx_v},{y + h} H{x + rx_v} "
            f"A{rx_v},{ry_v} 0 0 1 {x},{y + h - ry_v} V{y + ry_v} "
            f"A{rx_v},{ry_v} 0 0 1 {x + rx_v},{y} Z"
        )
    if tag in ("circle", "ellipse"):
        cx, cy = _num(element, "cx"), _num(element, "cy")
        if tag == "circle":
            rx = ry = _num(element, "r")
        else:
            rx, ry = _num(element, "rx"), _num(element, "ry")
        if rx <= 0 or ry <= 0:
            return None
        return (
            f"M{cx - rx},{cy} A{rx},{ry} 0 1 0 {cx + rx},{cy} "
            f"A{rx},{ry} 0 1 0 {cx - rx},{cy} Z"
        )
    if tag == "line":
        return (
            f"M{_num(element, 'x1')},{_num(element, 'y1')} "
            f"L{_num(element, 'x2')},{_num(element, 'y2')}"
        )
    if tag in ("polyline", "polygon"):
        numbers = [float(n) for n in _NUMBER_RE.findall(element.get("points") or "")]
        if len(numbers) < 4:
            return None
        pairs = [f"{numbers[i]},{numbers[i + 1]}" for i in range(0, len(numbers) - 1, 2)]
        d = "M" + " L".join(pairs)
        return d + " Z" if tag == "polygon" else d
    return None


def _parse_transform(value: str) -> np.ndarray:
    """SVG ``transform`` attribute as a 3x3 matrix; raises ValueError if malformed."""
    t = Identity
    matched = False
    for name, raw_args in _TRANSFORM_RE.findall(value):
        matched = True
        args = [float(n) for n in _NUMBER_RE.findall(raw_args)]
        if name == "matrix" and len(args) == 6:
            t = t.transform(args)
        elif name == "translate" and len(args) in (1, 2):
            t = t.translate(args[0], args[1] if len(args) == 2 else 0.0)
        elif name == "scale" and len(args) in (1, 2):
            t = t.scale(args[0], args[1] if len(args) == 2 else None)
        elif name == "rotate" and len(args) in (1, 3):
            angle = math.radians(args[0])
            if len(args) == 3:
                t = t.translate(args[1], args[2]).rotate(angle).translate(-args[1], -args[2])
            else:
                t = t.rotate(angle)
        elif name == "skewX" and len(args) == 1:
            t = t.skew(math.radians(args[0]), 0)
        elif name == "skewY" and len(args) == 1:
            t = t.skew(0, math.radians(args[0]))
        else:
            raise ValueError(f"bad arguments for {name}(): {raw_args!r}")
    if not matched and value.strip():
        raise ValueError(f"unrecognised transform {value!r}")
    return np.array([
        [t.xx, t.yx, t.dx],
        [t.xy, t.yy, t.dy],
        [0.0, 0.0, 1.0],
    ])


def _curve_points(start, controls, tolerance: float) -> List[Tuple[float, float]]:
    """Sample a quadratic or cubic Bezier (excluding *start*) at ~*tolerance* spacing."""
    if len(controls) == 3:
        length_fn, split_fn = calcCubicArcLength, splitCubicAtT
    else:
        length_fn, split_fn = calcQuadraticArcLength, splitQuadraticAtT
    try:
        length = float(length_fn(start, *controls))
    except (ArithmeticError, ValueError):
        length = 0.0
    steps = max(int(math.ceil(length / tolerance)), 4)
    segments = split_fn(start, *controls, *(i / steps for i in range(1, steps)))
    return [tuple(map(float, segment[-1])) for segment in segments]


def _flatten_path(d: str, tolerance: float) -> List[Tuple[List[Tuple[float, float]], bool]]:
    """Flatten path data into ``(points, closed)`` subpaths in user units."""
    pen = RecordingPen()
    parse_path(d, pen)
    subpaths: List[Tuple[List[Tuple[float, float]], bool]] = []
    points: List[Tuple[float, float]] = []
    for operator, operands in pen.value:
        if operator == "moveTo":
            points = [tuple(map(float, operands[0]))]
        elif operator == "lineTo":
            points.append(tuple(map(float, operands[0])))
        elif operator in ("curveTo", "qCurveTo"):
            points.extend(_curve_points(points[-1], operands, tolerance))
        elif operator in ("closePath", "endPath"):
            if points:
                subpaths.append((points, operator == "closePath"))
            points = []
    return subpaths


def _apply_matrix(points: List[Tuple[float, float]], matrix: np.ndarray) -> List[Tuple[float, float]]:
    arr = np.asarray(points, dtype=float)
    out = arr @ matrix[:2, :2].T + matrix[:2, 2]
    return [(float(x), float(y)) for x, y in out]


def _matrix_scale(matrix: np.ndarray) -> float:
    return math.sqrt(abs(float(np.linalg.det(matrix[:2, :2])))) or 1.0


def _polygonal(geom: BaseGeometry) -> Optional[BaseGeometry]:
    """Keep only the polygon parts of a repaired geometry."""
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom if not geom.is_empty else None
    parts = [g for g in getattr(geom, "geoms", []) if isinstance(g, (Polygon, MultiPolygon))]
    if not parts:
        return None
    return unary_union(parts)


def _pathd_to_geometry(
    d: str, matrix: np.ndarray
) -> Tuple[Optional[BaseGeometry], Optional[BaseGeometry]]:
    """Return ``(area_geometry, line_geometry)`` in document mm."""
    tolerance = FLATTEN_TOLERANCE_MM / _matrix_scale(matrix)
    rings: List[Polygon] = []
    lines: List[LineString] = []
    for raw_points, closed in _flatten_path(d, tolerance):
        if len(raw_points) < 2:
            continue
        points = _apply_matrix(raw_points, matrix)
        if closed and len(points) >= 3:
            ring = Polygon(points)
            if ring.area > 0:
                if not ring.is_valid:
                    ring = _polygonal(make_valid(ring))
                if ring is not None:
                    rings.append(ring)
                    continue
        if len(points) >= 2:
            lines.append(LineString(points))

    area = None
    if rings:
        area = rings[0]
        for ring in rings[1:]:
            area = area.symmetric_difference(ring)  # even-odd fill
    line = None
    if len(lines) == 1:
        line = lines[0]
    elif lines:
        line = MultiLineString(lines)
    return area, line


def _stroke_width_mm(style: Dict[str, str], matrix: np.ndarray) -> float:
    stroke = style.get("stroke")
    if not stroke or stroke == "none":
        return 0.0
    parsed = parse_length(style.get("stroke-width", "1"))
    width = parsed[0] if parsed else 1.0
    return max(width, 0.0) * _matrix_scale(matrix)


class _Collector:
    def __init__(
        self,
        ids: Optional[Dict[str, Element]] = None,
        reserved_ids: Optional[Set[str]] = None,
    ) -> None:
        self.shapes: List[SourceShape] = []
        self.passthrough: List[PassthroughElement] = []
        self.ids: Dict[str, Element] = ids or {}
        self.resolving: Set[str] = set()
        # ids already present in tile output through copied <defs>
        self.used_ids: Set[str] = set(reserved_ids or ())
        self.counter = 0
        self.skipped = 0

    def next_id(self, element: Element, tag: str) -> str:
        self.counter += 1
        shape_id = element.get("id") or f"{tag}-{self.counter}"
        if shape_id in self.used_ids:
            # reused through <use>, or already carried in <defs>
            shape_id = f"{shape_id}-{self.counter}"
        self.used_ids.add(shape_id)
        return shape_id


def _element_matrix(element: Element, matrix: np.ndarray) -> np.ndarray:
    transform = element.get("transform")
    if not transform:
        return matrix
    try:
        return matrix @ _parse_transform(transform)
    except ValueError as exc:
        logger.warning("Ignoring bad transform %r: %s", transform, exc)
        return matrix


def _translation(x: float, y: float) -> np.ndarray:
    return np.array([[1.0, 0.0, x], [0.0, 1.0, y], [0.0, 0.0, 1.0]])


def _is_foreign(tag) -> bool:
    """True for elements of editor namespaces (sodipodi, inkscape, ...)."""
    return isinstance(tag, str) and tag.startswith("{") and not tag.startswith("{" + SVG_NS)


def _href(element: Element) -> str:
    return element.get("href") or element.get(f"{{{XLINK_NS}}}href") or ""


def _walk(element: Element, matrix: np.ndarray, style: Dict[str, str], out: _Collector) -> None:
    for child in element:
        tag = _local_name(child.tag)
        if not tag or _is_foreign(child.tag):
            continue
        if tag in _IGNORED_TAGS:
            continue
        if tag in _NON_RENDERED_TAGS:
            out.passthrough.append(
                PassthroughElement(tag=tag, element=_strip_namespaces(child))
            )
            continue

        child_style = _parse_style(child, style)
        if child_style.get("display") == "none":
            continue

        child_matrix = _element_matrix(child, matrix)
        if tag == "svg":
            child_matrix = child_matrix @ _translation(_num(child, "x"), _num(child, "y"))

        if tag in _CONTAINER_TAGS:
            _walk(child, child_matrix, child_style, out)
        elif tag in _SHAPE_TAGS:
            _collect_shape(tag, child, child_matrix, child_style, out)
        elif tag == "use" and _expand_use(child, child_matrix, child_style, out):
            continue
        else:
            _collect_passthrough(tag, child, child_matrix, child_style, out)


def _expand_use(use: Element, matrix: np.ndarray, style: Dict[str, str], out: _Collector) -> bool:
    """Instantiate a ``<use>`` of a local shape, group or symbol as shapes.

    Returns False when the reference cannot be turned into geometry (an
    external file, a missing id, text or an image); the caller then keeps the
    ``<use>`` as passthrough content.
    """
    href = _href(use)
    target = out.ids.get(href[1:]) if href.startswith("#") else None
    if target is None:
        return False
    tag = _local_name(target.tag)
    if tag not in _SHAPE_TAGS and tag not in _USE_GROUP_TAGS:
        return False
    if href in out.resolving:
        out.skipped += 1
        logger.warning("Skipping recursive <use> of %s", href)
        return True

    target_style = _parse_style(target, style)
    if target_style.get("display") == "none":
        return True
    target_matrix = _element_matrix(target, matrix @ _translation(_num(use, "x"), _num(use, "y")))
    out.resolving.add(href)
    try:
        if tag in _SHAPE_TAGS:
            id_source = use if use.get("id") else target
            _collect_shape(tag, target, target_matrix, target_style, out, id_source=id_source)
        else:
            if tag == "symbol":
                target_matrix = target_matrix @ _symbol_matrix(use, target)
            _walk(target, target_matrix, target_style, out)
    finally:
        out.resolving.discard(href)
    return True


def _symbol_matrix(use: Element, symbol: Element) -> np.ndarray:
    """Viewport mapping of a symbol's viewBox onto the use's width/height."""
    view_box = _parse_view_box(symbol.get("viewBox"))
    width, height = _num(use, "width"), _num(use, "height")
    if view_box is None or width <= 0 or height <= 0:
        return np.identity(3)
    return _root_matrix(width, height, view_box, symbol.get("preserveAspectRatio"), 96.0)


def _font_size(style: Dict[str, str]) -> float:
    parsed = parse_length(style.get("font-size"))
    if not parsed or parsed[0] <= 0:
        return DEFAULT_FONT_SIZE
    value, unit = parsed
    if is_pixel(unit):
        return value
    if is_physical(unit):
        return value * PHYSICAL_UNITS[unit] * 96.0 / MM_PER_INCH
    if unit == "%":
        return value / 100.0 * DEFAULT_FONT_SIZE
    return value * DEFAULT_FONT_SIZE  # em, ex and other relative units


def _first_number(element: Element, name: str) -> Optional[float]:
    numbers = _NUMBER_RE.findall(element.get(name) or "")
    return float(numbers[0]) if numbers else None


def _text_bounds(element: Element, style: Dict[str, str]) -> Tuple[float, float, float, float]:
    """Rough box of a text run: one line at the first glyph position."""
    x = _first_number(element, "x")
    y = _first_number(element, "y")
    for span in element.iter():
        if x is not None and y is not None:
            break
        if x is None:
            x = _first_number(span, "x")
        if y is None:
            y = _first_number(span, "y")
    x = x or 0.0
    y = y or 0.0
    size = _font_size(style)
    width = len(" ".join("".join(element.itertext()).split())) * size * _GLYPH_ADVANCE
    anchor = style.get("text-anchor")
    if anchor == "middle":
        x -= width / 2.0
    elif anchor == "end":
        x -= width
    return x, y - size, x + width, y + size * _GLYPH_DESCENT


def _local_bounds(
    tag: str, element: Element, style: Dict[str, str], out: _Collector
) -> Optional[Tuple[float, float, float, float]]:
    """Footprint of a non-geometric element in its own user units."""
    if tag == "text":
        return _text_bounds(element, style)
    x, y = _num(element, "x"), _num(element, "y")
    width, height = _num(element, "width"), _num(element, "height")
    if width > 0 and height > 0:
        return x, y, x + width, y + height
    if tag != "use":
        return None
    href = _href(element)
    target = out.ids.get(href[1:]) if href.startswith("#") else None
    if target is None or href in out.resolving:
        return None
    out.resolving.add(href)
    try:
        target_tag = _local_name(target.tag)
        inner = _local_bounds(target_tag, target, _parse_style(target, style), out)
    finally:
        out.resolving.discard(href)
    if inner is None:
        return None
    local = _element_matrix(target, _translation(x, y))
    return _matrix_bounds(inner, local)


def _matrix_bounds(
    bounds: Tuple[float, float, float, float], matrix: np.ndarray
) -> Tuple[float, float, float, float]:
    minx, miny, maxx, maxy = bounds
    corners = _apply_matrix([(minx, miny), (maxx, miny), (maxx, maxy), (minx, maxy)], matrix)
    xs = [p[0] for p in corners]
    ys = [p[1] for p in corners]
    return min(xs), min(ys), max(xs), max(ys)


def _collect_passthrough(
    tag: str, element: Element, matrix: np.ndarray, style: Dict[str, str], out: _Collector
) -> None:
    element_id = element.get("id") or f"{tag}-{len(out.passthrough) + 1}"
    local = _local_bounds(tag, element, style, out)
    bounds = _matrix_bounds(local, matrix) if local is not None else None
    if bounds is None:
        logger.warning(
            "Cannot place <%s id=%s>; it is copied into every exported tile", tag, element_id
        )
    m = matrix
    out.passthrough.append(
        PassthroughElement(
            tag=tag,
            element=_strip_namespaces(element),
            matrix=(m[0, 0], m[1, 0], m[0, 1], m[1, 1], m[0, 2], m[1, 2]),
            bounds=bounds,
            element_id=element_id,
        )
    )


def _collect_shape(
    tag: str,
    element: Element,
    matrix: np.ndarray,
    style: Dict[str, str],
    out: _Collector,
    id_source: Optional[Element] = None,
) -> None:
    shape_id = out.next_id(element if id_source is None else id_source, tag)
    d = _shape_to_pathd(tag, element)
    if d is None:
        return
    try:
        area, line = _pathd_to_geometry(d, matrix)
    except (ValueError, IndexError) as exc:
        out.skipped += 1
        logger.warning("Skipping <%s id=%s>: unreadable path data (%s)", tag, shape_id, exc)
        return

    fill = style.get("fill", "#000000")
    stroke = style.get("stroke")
    width_mm = _stroke_width_mm(style, matrix)
    if area is not None and not area.is_empty:
        out.shapes.append(
            SourceShape(
                shape_id=shape_id,
                geometry=area,
                closed=True,
                stroke=stroke,
                fill=fill,
                stroke_width_mm=width_mm,
            )
        )
    if line is not None and not line.is_empty:
        out.shapes.append(
            SourceShape(
                shape_id=shape_id if area is None else f"{shape_id}-open",
                geometry=line,
                closed=False,
                stroke=stroke or "#000000",
                fill="none",
                stroke_width_mm=width_mm or 0.1,
            )
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_svg(
    content: str,
    file_name: str = "design.svg",
    unit_mode: UnitMode = UnitMode.AUTO,
    unitless_policy: UnitlessPolicy = UnitlessPolicy.PREFER_DIMENSIONS,
) -> NormalizedDocument:
    """Parse raw SVG text into a NormalizedDocument.

    Each call returns an independent document; *content* is kept verbatim
    so the same text can be re-parsed under another unit mode.
    """
    if not content or not content.strip():
        raise SVGParseError("SVG document is empty")
    root = _parse_xml(content)
    if _local_name(root.tag) != "svg":
        raise SVGParseError(
            f"Missing <svg> root element (found <{_local_name(root.tag) or '?'}>)"
        )

    dpi = units_per_inch(unit_mode, content)
    view_box = _parse_view_box(root.get("viewBox"))
    width_mm, height_mm = resolve_size(
        root.get("width"), root.get("height"), view_box, dpi, unitless_policy
    )
    declared_w = parse_length(root.get("width"))
    declared_h = parse_length(root.get("height"))

    matrix = _root_matrix(width_mm, height_mm, view_box, root.get("preserveAspectRatio"), dpi)
    ids = {el.get("id"): el for el in root.iter() if el.get("id") and not _is_foreign(el.tag)}
    reserved = {
        el.get("id")
        for defs in root.iter()
        if _local_name(defs.tag) in _NON_RENDERED_TAGS
        for el in defs.iter()
        if el.get("id")
    }
    collector = _Collector(ids, reserved)
    _walk(root, matrix, _parse_style(root, {}), collector)

    document = NormalizedDocument(
        file_name=file_name,
        original_content=content,
        width_mm=width_mm,
        height_mm=height_mm,
        unit_mode=unit_mode,
        view_box=view_box,
        declared_width=declared_w[0] if declared_w else None,
        width_unit=declared_w[1] if declared_w else None,
        declared_height=declared_h[0] if declared_h else None,
        height_unit=declared_h[1] if declared_h else None,
        units_per_inch=dpi,
        shapes=tuple(collector.shapes),
        passthrough=tuple(collector.passthrough),
    )
    logger.info(
        "Parsed %s: %.2f x %.2f mm, %d shapes, %d passthrough elements (%g units/in)",
        file_name, width_mm, height_mm, len(collector.shapes),
        len(collector.passthrough), dpi,
    )
    return document


def load_svg_file(
    path: str | Path,
    unit_mode: UnitMode = UnitMode.AUTO,
    unitless_policy: UnitlessPolicy = UnitlessPolicy.PREFER_DIMENSIONS,
) -> NormalizedDocument:
    path = Path(path)
    if path.suffix.lower() != ".svg":
        raise UnsupportedFileError(f"Only .svg files are supported: {path.name}")
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise SVGParseError(f"{path.name} is not UTF-8 text") from exc
    return parse_svg(content, path.name, unit_mode, unitless_policy)


def scale_document(
    document: NormalizedDocument,
    width_mm: Optional[float] = None,
    height_mm: Optional[float] = None,
    lock_aspect: bool = True,
) -> NormalizedDocument:
    """Return a copy of *document* resized to a new physical size.

    With *lock_aspect* the given dimension drives the other one (width wins
    when both are given).
    """
    if width_mm is None and height_mm is None:
        return document
    aspect = document.width_mm / document.height_mm
    if lock_aspect:
        if width_mm is not None:
            height_mm = width_mm / aspect
        else:
            width_mm = height_mm * aspect
    width_mm = document.width_mm if width_mm is None else width_mm
    height_mm = document.height_mm if height_mm is None else height_mm
    if width_mm <= 0 or height_mm <= 0:
        raise ValueError("output size must be positive")

    fx = width_mm / document.width_mm
    fy = height_mm / document.height_mm
    stroke_factor = math.sqrt(fx * fy)
    shapes = tuple(
        replace(
            shape,
            geometry=affinity.scale(shape.geometry, xfact=fx, yfact=fy, origin=(0, 0)),
            stroke_width_mm=shape.stroke_width_mm * stroke_factor,
        )
        for shape in document.shapes
    )
    passthrough = tuple(
        item if item.matrix is None else replace(
            item,
            matrix=(
                item.matrix[0] * fx, item.matrix[1] * fy,
                item.matrix[2] * fx, item.matrix[3] * fy,
                item.matrix[4] * fx, item.matrix[5] * fy,
            ),
            bounds=None if item.bounds is None else (
                item.bounds[0] * fx, item.bounds[1] * fy,
                item.bounds[2] * fx, item.bounds[3] * fy,
            ),
        )
        for item in document.passthrough
    )
    return replace(
        document, width_mm=width_mm, height_mm=height_mm, shapes=shapes, passthrough=passthrough
    )

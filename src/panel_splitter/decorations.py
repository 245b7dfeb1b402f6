"""
Decoration layer for tile SVGs.

Everything here lives in its own ``<g id="decorations">`` group in tile-local
millimeters and never touches the clipped design geometry.
"""

from typing import List, Tuple

import svgwrite

from panel_splitter.config import RegistrationMarkSettings, Settings
from panel_splitter.contracts import Grid, MarkPlacement, MarkType, Tile
from panel_splitter.svg_output import LABEL_FONT_SIZE_MM, STYLES, fmt

LABEL_PADDING_MM = 2.0


def mark_centers(tile: Tile, settings: Settings) -> List[Tuple[float, float, int, int]]:
    """Corner mark centers as ``(x, y, dir_x, dir_y)`` in tile-local mm.

    ``dir_x``/``dir_y`` point from the corner toward the tile interior.
    """
    marks = settings.registration_marks
    if marks.placement is MarkPlacement.OVERLAP and settings.overlap > 0:
        inset = settings.overlap / 2.0
    else:
        inset = marks.size
    w, h = tile.width, tile.height
    return [
        (inset, inset, 1, 1),
        (w - inset, inset, -1, 1),
        (inset, h - inset, 1, -1),
        (w - inset, h - inset, -1, -1),
    ]


def _crosshair(dwg: svgwrite.Drawing, group, cx: float, cy: float, marks: RegistrationMarkSettings):
    half = marks.size / 2.0
    style = dict(STYLES["mark"], stroke_width=fmt(marks.stroke_width))
    group.add(dwg.line(start=(fmt(cx - half), fmt(cy)), end=(fmt(cx + half), fmt(cy)), **style))
    group.add(dwg.line(start=(fmt(cx), fmt(cy - half)), end=(fmt(cx), fmt(cy + half)), **style))


def _pinhole(dwg: svgwrite.Drawing, group, cx: float, cy: float, marks: RegistrationMarkSettings):
    style = dict(STYLES["mark_cut"], stroke_width=fmt(marks.stroke_width))
    group.add(dwg.circle(center=(fmt(cx), fmt(cy)), r=fmt(marks.hole_diameter / 2.0), **style))
    _crosshair(dwg, group, cx, cy, marks)


def _lmark(dwg: svgwrite.Drawing, group, cx: float, cy: float, dx: int, dy: int, marks: RegistrationMarkSettings):
    style = dict(STYLES["mark"], stroke_width=fmt(marks.stroke_width))
    points = [
        (fmt(cx), fmt(cy + dy * marks.size)),
        (fmt(cx), fmt(cy)),
        (fmt(cx + dx * marks.size), fmt(cy)),
    ]
    group.add(dwg.polyline(points, **style))


def _guides(dwg: svgwrite.Drawing, group, tile: Tile, grid: Grid, overlap: float):
    """Dashed lines where the neighbouring tile's edge falls on this one."""
    w, h = tile.width, tile.height
    style = STYLES["guide"]
    if tile.col > 0:
        group.add(dwg.line(start=(fmt(overlap), 0), end=(fmt(overlap), fmt(h)), class_="guide guide-left", **style))
    if tile.col < grid.cols - 1:
        x = w - overlap
        group.add(dwg.line(start=(fmt(x), 0), end=(fmt(x), fmt(h)), class_="guide guide-right", **style))
    if tile.row > 0:
        group.add(dwg.line(start=(0, fmt(overlap)), end=(fmt(w), fmt(overlap)), class_="guide guide-top", **style))
    if tile.row < grid.rows - 1:
        y = h - overlap
        group.add(dwg.line(start=(0, fmt(y)), end=(fmt(w), fmt(y)), class_="guide guide-bottom", **style))


def decorate_tile(dwg: svgwrite.Drawing, tile: Tile, grid: Grid, settings: Settings):
    """Add label, boundary, guides and registration marks to *dwg*.

    Returns the decoration group (already added to the drawing).
    """
    group = dwg.g(id="decorations")

    if settings.boundary_rect_enabled:
        group.add(dwg.rect(
            insert=(0, 0),
            size=(fmt(tile.width), fmt(tile.height)),
            class_="tile-boundary",
            **STYLES["boundary"],
        ))

    if settings.guides_enabled:
        _guides(dwg, group, tile, grid, settings.overlap)

    marks = settings.registration_marks
    if marks.enabled:
        mark_group = dwg.g(class_=f"registration-marks {marks.type.value}")
        for cx, cy, dx, dy in mark_centers(tile, settings):
            if marks.type is MarkType.PINHOLE:
                _pinhole(dwg, mark_group, cx, cy, marks)
            elif marks.type is MarkType.LMARK:
                _lmark(dwg, mark_group, cx, cy, dx, dy, marks)
            else:
                _crosshair(dwg, mark_group, cx, cy, marks)
        group.add(mark_group)

    if settings.numbering_enabled:
        font_size = min(LABEL_FONT_SIZE_MM, tile.height / 4.0)
        group.add(dwg.text(
            tile.label,
            insert=(fmt(LABEL_PADDING_MM), fmt(LABEL_PADDING_MM + font_size)),
            font_size=fmt(font_size),
            class_="tile-label",
            **STYLES["label"],
        ))

    dwg.add(group)
    return group

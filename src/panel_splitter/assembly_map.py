"""
Assembly map: a scaled overview of the design with every tile drawn at its
true origin, for reassembling the cut panels.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from panel_splitter.config import Settings
from panel_splitter.contracts import Grid, NormalizedDocument, ProcessedTile, Tile, UnitSystem
from panel_splitter.svg_output import fmt, geometry_to_pathd, new_drawing, to_svg_string
from panel_splitter.units import mm_to_display

logger = logging.getLogger(__name__)

MAP_MAX_WIDTH = 400.0
MAP_MAX_HEIGHT = 300.0
MAP_PADDING = 20.0
LEGEND_LINE_HEIGHT = 12.0
MIN_LEGEND_HEIGHT = 80.0
LABEL_FONT_SIZE = 10.0

MAP_CSS = """
    .tile-rect { fill: #f0f9ff; fill-opacity: 0.6; stroke: #0ea5e9; stroke-width: 0.5; }
    .tile-rect-empty { fill: #f5f5f5; fill-opacity: 0.6; stroke: #d4d4d4; stroke-width: 0.5; }
    .tile-rect-unsafe { fill: #fef2f2; fill-opacity: 0.6; stroke: #ef4444; stroke-width: 0.8; }
    .tile-rect-pending { fill: none; stroke: #cbd5e1; stroke-width: 0.5; stroke-dasharray: 1,1; }
    .tile-label { font-family: sans-serif; font-size: %spx; text-anchor: middle; fill: #1e40af; }
    .tile-thumb { fill: none; stroke: #334155; }
    .design-border { fill: none; stroke: #64748b; stroke-width: 1; stroke-dasharray: 2,2; }
    .legend-text { font-family: sans-serif; font-size: 8px; fill: #475569; }
    .title-text { font-family: sans-serif; font-size: 12px; font-weight: bold; fill: #1e293b; }
""" % fmt(LABEL_FONT_SIZE)


def map_scale(width_mm: float, height_mm: float) -> float:
    """Uniform scale fitting the design into the map area, never enlarging."""
    return min(MAP_MAX_WIDTH / width_mm, MAP_MAX_HEIGHT / height_mm, 1.0)


def tile_class(tile: Optional[ProcessedTile]) -> str:
    if tile is None:
        return "tile-rect-pending"
    if tile.has_unsafe_fallback:
        return "tile-rect-unsafe"
    if tile.is_empty:
        return "tile-rect-empty"
    return "tile-rect"


def legend_lines(
    document: NormalizedDocument,
    settings: Settings,
    grid: Grid,
    tiles: Sequence[ProcessedTile],
    generated_at: datetime,
) -> List[str]:
    with_content = sum(1 for tile in tiles if not tile.is_empty)
    lines = [
        f"Design Size: {document.width_mm:.1f} × {document.height_mm:.1f} mm",
        f"Bed Size: {settings.bed_width:g} × {settings.bed_height:g} mm",
        f"Margin: {settings.margin:g} mm | Overlap: {settings.overlap:g} mm",
        f"Grid: {grid.cols} × {grid.rows} ({len(grid.tiles)} tiles, {with_content} with content)",
        f"Numbering: {settings.numbering_format}",
        f"Generated: {generated_at.date().isoformat()}",
    ]
    if settings.unit_system is UnitSystem.IN:
        lines[0] += (
            f" ({mm_to_display(document.width_mm, UnitSystem.IN):.2f}"
            f" × {mm_to_display(document.height_mm, UnitSystem.IN):.2f} in)"
        )
    unsafe = [tile.label for tile in tiles if tile.has_unsafe_fallback]
    if unsafe:
        lines.append(f"Unsafe fallback: {', '.join(unsafe)}")
    return lines


def _thumbnail(dwg, tile: ProcessedTile, scale: float):
    clip_id = f"clip-{tile.id}"
    clip = dwg.clipPath(id=clip_id)
    clip.add(dwg.rect(insert=(0, 0), size=(fmt(tile.width), fmt(tile.height))))
    dwg.defs.add(clip)
    group = dwg.g(
        class_="tile-thumb",
        clip_path=f"url(#{clip_id})",
        transform=f"translate({fmt(tile.x * scale)} {fmt(tile.y * scale)}) scale({scale:.6g})",
        stroke_width=fmt(0.5 / scale),
    )
    for geometry in tile.geometry:
        d = geometry_to_pathd(geometry)
        if d:
            group.add(dwg.path(d=d))
    return group


def generate_assembly_map(
    document: NormalizedDocument,
    settings: Settings,
    grid: Grid,
    tiles: Sequence[ProcessedTile],
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the assembly map SVG.

    Tiles missing from *tiles* (for example after a cancelled run) are drawn
    as pending outlines.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    scale = map_scale(document.width_mm, document.height_mm)
    scaled_w = document.width_mm * scale
    scaled_h = document.height_mm * scale

    lines = legend_lines(document, settings, grid, tiles, generated_at)
    legend_height = max(MIN_LEGEND_HEIGHT, LEGEND_LINE_HEIGHT * len(lines) + 20)
    svg_w = scaled_w + MAP_PADDING * 2
    svg_h = scaled_h + MAP_PADDING * 2 + legend_height

    dwg = new_drawing(svg_w, svg_h)
    dwg.defs.add(dwg.style(MAP_CSS))
    dwg.add(dwg.rect(insert=(0, 0), size=(fmt(svg_w), fmt(svg_h)), fill="white"))
    dwg.add(dwg.text(
        f"Assembly Map - {document.file_name}",
        insert=(fmt(svg_w / 2), 12),
        class_="title-text",
        text_anchor="middle",
    ))

    design = dwg.g(transform=f"translate({fmt(MAP_PADDING)} {fmt(MAP_PADDING + 5)})")
    design.add(dwg.rect(insert=(0, 0), size=(fmt(scaled_w), fmt(scaled_h)), class_="design-border"))

    by_id: Dict[str, ProcessedTile] = {tile.id: tile for tile in tiles}
    include_thumbs = settings.assembly_map.include_thumbnails
    for tile in grid.tiles:
        processed = by_id.get(tile.id)
        x, y = tile.x * scale, tile.y * scale
        w, h = tile.width * scale, tile.height * scale
        if include_thumbs and processed is not None and processed.geometry:
            design.add(_thumbnail(dwg, processed, scale))
        design.add(dwg.rect(
            insert=(fmt(x), fmt(y)),
            size=(fmt(w), fmt(h)),
            class_=tile_class(processed),
            id=f"map-{tile.id}",
        ))
        if settings.assembly_map.include_labels:
            design.add(dwg.text(
                tile.label,
                insert=(fmt(x + w / 2), fmt(y + h / 2 + LABEL_FONT_SIZE / 3)),
                class_="tile-label",
            ))
    dwg.add(design)

    legend_y = scaled_h + MAP_PADDING * 2 + 10
    legend = dwg.g(transform=f"translate({fmt(MAP_PADDING)} {fmt(legend_y)})")
    for number, line in enumerate(lines):
        legend.add(dwg.text(line, insert=(0, fmt(number * LEGEND_LINE_HEIGHT)), class_="legend-text"))
    dwg.add(legend)

    first: Tile = grid.tiles[0]
    order = dwg.g(transform=f"translate({fmt(max(svg_w - 60, MAP_PADDING))} {fmt(legend_y)})")
    order_lines = [
        "Assembly Order:",
        "→ Left to Right",
        "↓ Top to Bottom",
        f"Start: {first.label}",
    ]
    for number, line in enumerate(order_lines):
        text = dwg.text(line, insert=(0, fmt(number * LEGEND_LINE_HEIGHT)), class_="legend-text")
        if number == 0:
            text["font-weight"] = "bold"
        order.add(text)
    dwg.add(order)

    logger.debug("Assembly map %s x %s mm at scale %.4f", fmt(svg_w), fmt(svg_h), scale)
    return to_svg_string(dwg)

"""
Tile clipper: cut the normalized document into per-tile SVG output.

``iter_tiles`` is the cooperative core: a generator that yields a
``TileProgress`` after every tile and checks the cancellation predicate at
each tile boundary. ``process_tiles`` drives it and owns the run state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from shapely import affinity
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from panel_splitter.clipper import GeometryClipper, ShapelyClipper
from panel_splitter.config import Settings
from panel_splitter.contracts import (
    ExportMode,
    Grid,
    NormalizedDocument,
    PassthroughElement,
    Phase,
    ProcessedTile,
    ProcessingState,
    Rect,
    SourceShape,
    Tile,
    TileProgress,
    TilingCancelled,
    TilingResult,
)
from panel_splitter.decorations import decorate_tile
from panel_splitter.svg_output import (
    fmt,
    new_drawing,
    passthrough_element,
    shape_path,
    to_svg_string,
)

logger = logging.getLogger(__name__)

CLIP_ID = "tile-clip"

ProgressCallback = Callable[[TileProgress], None]
CancelPredicate = Callable[[], bool]


class CancelToken:
    """Cooperative cancellation flag, polled between tiles."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __call__(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class PreparedShape:
    """A source shape after optional simplification / stroke expansion."""

    shape: SourceShape
    geometry: BaseGeometry
    expanded: bool = False


def prepare_shapes(
    document: NormalizedDocument,
    settings: Settings,
    clipper: GeometryClipper,
) -> List[PreparedShape]:
    prepared: List[PreparedShape] = []
    for shape in document.shapes:
        geometry = shape.geometry
        if settings.simplify_tolerance > 0:
            geometry = clipper.simplify(geometry, settings.simplify_tolerance)
        has_stroke = shape.stroke not in (None, "none") and shape.stroke_width_mm > 0
        if settings.expand_strokes and has_stroke:
            if shape.closed and shape.fill not in (None, "none"):
                prepared.append(PreparedShape(shape, geometry))
            outline = clipper.expand_stroke(geometry, shape.stroke_width_mm)
            prepared.append(PreparedShape(shape, outline, expanded=True))
        else:
            prepared.append(PreparedShape(shape, geometry))
    return prepared


def _bounds_overlap(bounds: Rect, rect: Rect) -> bool:
    minx, miny, maxx, maxy = bounds
    return minx <= rect[2] and maxx >= rect[0] and miny <= rect[3] and maxy >= rect[1]


def _merge_bounds(current: Optional[Rect], bounds: Rect) -> Rect:
    if current is None:
        return bounds
    return (
        min(current[0], bounds[0]),
        min(current[1], bounds[1]),
        max(current[2], bounds[2]),
        max(current[3], bounds[3]),
    )


def _local_extent(bounds: Rect, rect: Rect, tile: Tile) -> Rect:
    """*bounds* cut to *rect*, in tile coordinates."""
    return (
        max(bounds[0], rect[0]) - tile.x,
        max(bounds[1], rect[1]) - tile.y,
        min(bounds[2], rect[2]) - tile.x,
        min(bounds[3], rect[3]) - tile.y,
    )


def _to_local(geometry: BaseGeometry, tile: Tile) -> BaseGeometry:
    return affinity.translate(geometry, xoff=-tile.x, yoff=-tile.y)


def _passthrough_for(
    document: NormalizedDocument, rect: Rect
) -> Tuple[List[PassthroughElement], List[PassthroughElement]]:
    """Rendered passthrough to draw on the tile at *rect*, and the part of it that is content.

    An element whose footprint overlaps the tile interior counts as content.
    Elements without a known footprint are drawn on every tile but never make
    a tile non-empty.
    """
    drawn: List[PassthroughElement] = []
    content: List[PassthroughElement] = []
    for item in document.passthrough:
        if item.matrix is None:
            continue
        if item.bounds is None:
            drawn.append(item)
            continue
        minx, miny, maxx, maxy = item.bounds
        if minx < rect[2] and maxx > rect[0] and miny < rect[3] and maxy > rect[1]:
            drawn.append(item)
            content.append(item)
    return drawn, content


def _clip_group(dwg, tile: Tile):
    """Group clipped to the tile rectangle whose children use document mm."""
    clip = dwg.clipPath(id=CLIP_ID)
    clip.add(dwg.rect(insert=(0, 0), size=(fmt(tile.width), fmt(tile.height))))
    dwg.defs.add(clip)
    outer = dwg.g(id="design", clip_path=f"url(#{CLIP_ID})")
    inner = dwg.g(transform=f"translate({fmt(-tile.x)} {fmt(-tile.y)})")
    outer.add(inner)
    dwg.add(outer)
    return inner


def _add_passthrough(dwg, document: NormalizedDocument, drawn, target) -> None:
    for item in document.passthrough:
        if item.matrix is None:
            dwg.add(passthrough_element(item))
    for item in drawn:
        target.add(passthrough_element(item))


def _laser_safe_tile(
    tile: Tile,
    document: NormalizedDocument,
    prepared: Sequence[PreparedShape],
    settings: Settings,
    grid: Grid,
    clipper: GeometryClipper,
) -> ProcessedTile:
    rect = tile.rect()
    pieces: List[Tuple[PreparedShape, BaseGeometry]] = []
    fallbacks: List[str] = []
    for item in prepared:
        if item.geometry.is_empty or not _bounds_overlap(item.geometry.bounds, rect):
            continue
        try:
            clipped = clipper.intersect(item.geometry, rect)
        except Exception as exc:  # any clipper failure degrades to the raw geometry
            logger.warning(
                "Clip failed for %s on %s, using unclipped geometry: %s",
                item.shape.shape_id, tile.id, exc,
            )
            fallbacks.append(item.shape.shape_id)
            pieces.append((item, _to_local(item.geometry, tile)))
            continue
        if clipped is None or clipped.is_empty:
            continue
        pieces.append((item, _to_local(clipped, tile)))

    drawn, overlapping = _passthrough_for(document, rect)
    untrimmed = [item.element_id for item in overlapping]
    if untrimmed:
        logger.warning(
            "%s carries untrimmed elements behind a clip path: %s", tile.id, ", ".join(untrimmed)
        )

    extents: Optional[Rect] = None
    for _, geometry in pieces:
        extents = _merge_bounds(extents, geometry.bounds)
    for item in overlapping:
        extents = _merge_bounds(extents, _local_extent(item.bounds, rect, tile))
    is_empty = not pieces and not overlapping

    content = None
    if not is_empty or settings.export_empty_tiles:
        dwg = new_drawing(tile.width, tile.height)
        _add_passthrough(dwg, document, drawn, _clip_group(dwg, tile) if drawn else None)
        design = dwg.g(id="design-geometry")
        for item, geometry in pieces:
            design.add(shape_path(dwg, item.shape, geometry, expanded=item.expanded))
        dwg.add(design)
        decorate_tile(dwg, tile, grid, settings)
        content = to_svg_string(dwg)

    return _processed(
        tile, content, is_empty, extents, [g for _, g in pieces], fallbacks, untrimmed
    )


def _fast_clip_tile(
    tile: Tile,
    document: NormalizedDocument,
    prepared: Sequence[PreparedShape],
    settings: Settings,
    grid: Grid,
) -> ProcessedTile:
    rect = tile.rect()
    tile_box = box(*rect)
    hits: List[BaseGeometry] = []
    extents: Optional[Rect] = None
    for item in prepared:
        if item.geometry.is_empty or not _bounds_overlap(item.geometry.bounds, rect):
            continue
        if not item.geometry.intersects(tile_box) or item.geometry.touches(tile_box):
            continue
        extents = _merge_bounds(extents, _local_extent(item.geometry.bounds, rect, tile))
        hits.append(_to_local(item.geometry, tile))
    drawn, overlapping = _passthrough_for(document, rect)
    for item in overlapping:
        extents = _merge_bounds(extents, _local_extent(item.bounds, rect, tile))
    is_empty = not hits and not overlapping

    content = None
    if not is_empty or settings.export_empty_tiles:
        dwg = new_drawing(tile.width, tile.height)
        target = _clip_group(dwg, tile)
        for item in prepared:
            target.add(shape_path(dwg, item.shape, item.geometry, expanded=item.expanded))
        _add_passthrough(dwg, document, drawn, target)
        decorate_tile(dwg, tile, grid, settings)
        content = to_svg_string(dwg)

    return _processed(tile, content, is_empty, extents, hits, [], [])


def _processed(
    tile: Tile,
    content: Optional[str],
    is_empty: bool,
    extents: Optional[Rect],
    geometry: Sequence[BaseGeometry],
    fallbacks: Sequence[str],
    untrimmed: Sequence[str],
) -> ProcessedTile:
    return ProcessedTile(
        id=tile.id,
        row=tile.row,
        col=tile.col,
        index=tile.index,
        x=tile.x,
        y=tile.y,
        width=tile.width,
        height=tile.height,
        label=tile.label,
        content=content,
        is_empty=is_empty,
        has_unsafe_fallback=bool(fallbacks) or bool(untrimmed),
        extents=extents,
        geometry=tuple(geometry),
        fallback_shape_ids=tuple(fallbacks),
        untrimmed_ids=tuple(untrimmed),
    )


def process_tile(
    tile: Tile,
    document: NormalizedDocument,
    prepared: Sequence[PreparedShape],
    settings: Settings,
    grid: Grid,
    clipper: GeometryClipper,
) -> ProcessedTile:
    if settings.export_mode is ExportMode.FAST_CLIP:
        return _fast_clip_tile(tile, document, prepared, settings, grid)
    return _laser_safe_tile(tile, document, prepared, settings, grid, clipper)


def iter_tiles(
    document: NormalizedDocument,
    grid: Grid,
    settings: Settings,
    clipper: Optional[GeometryClipper] = None,
    cancel: Optional[CancelPredicate] = None,
) -> Iterator[TileProgress]:
    """Yield one ``TileProgress`` per tile in index order.

    Raises ``TilingCancelled`` right after the progress event of the tile at
    which *cancel* first returns true. A request made after the last tile
    is ignored.
    """
    clipper = clipper or ShapelyClipper()
    prepared = prepare_shapes(document, settings, clipper)
    total = len(grid.tiles)
    for position, tile in enumerate(grid.tiles, start=1):
        processed = process_tile(tile, document, prepared, settings, grid, clipper)
        logger.debug(
            "Tile %s (%d/%d): empty=%s fallback=%s",
            tile.id, position, total, processed.is_empty, processed.has_unsafe_fallback,
        )
        yield TileProgress(current=position, total=total, tile=processed)
        if position < total and cancel is not None and cancel():
            raise TilingCancelled(f"cancelled after tile {position} of {total}")


def process_tiles(
    document: NormalizedDocument,
    grid: Grid,
    settings: Settings,
    on_progress: Optional[ProgressCallback] = None,
    should_cancel: Optional[CancelPredicate] = None,
    clipper: Optional[GeometryClipper] = None,
) -> TilingResult:
    """Run the tile clipper over *grid* and return its tiles and final state.

    Cancellation keeps the tiles finished so far and ends in phase
    ``cancelled``. Any other exception aborts the run: no tiles, phase
    ``idle`` and the message in ``state.error``.
    """
    state = ProcessingState()
    buffer: List[ProcessedTile] = []
    state.advance(Phase.PREPARING)
    state.total = len(grid.tiles)
    try:
        tiles = iter_tiles(document, grid, settings, clipper=clipper, cancel=should_cancel)
        state.advance(Phase.TILING)
        for progress in tiles:
            buffer.append(progress.tile)
            state.current = progress.current
            if on_progress is not None:
                on_progress(progress)
    except TilingCancelled as exc:
        logger.info("Tiling %s", exc)
        state.advance(Phase.CANCELLED)
        return TilingResult(tiles=buffer, state=state)
    except Exception as exc:
        logger.error("Tiling run failed: %s", exc)
        state.reset(error=str(exc) or type(exc).__name__)
        return TilingResult(tiles=[], state=state)

    state.advance(Phase.DONE)
    unsafe = sum(1 for tile in buffer if tile.has_unsafe_fallback)
    empty = sum(1 for tile in buffer if tile.is_empty)
    logger.info(
        "Tiled %s into %d tiles (%d empty, %d unsafe fallback)",
        document.file_name, len(buffer), empty, unsafe,
    )
    return TilingResult(tiles=buffer, state=state)

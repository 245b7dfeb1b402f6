"""Grid planning: validate settings and lay out tiles over the design."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

from panel_splitter.config import MIN_BED_SIZE_MM, Settings
from panel_splitter.contracts import (
    Grid,
    GridResult,
    NormalizedDocument,
    Tile,
    ValidationIssue,
)

logger = logging.getLogger(__name__)

HEAVY_JOB_TILE_COUNT = 100

# Guards ceil() against float noise on exact multiples (e.g. 0.6 / 0.2).
_CEIL_DIGITS = 9


def format_label(template: str, row: int, col: int, index: int, start_at_one: bool = True) -> str:
    """Render a tile label from a ``{row}``/``{col}``/``{index}`` template.

    *row*, *col* and *index* are 0-based; *start_at_one* shifts all three.
    """
    base = 1 if start_at_one else 0
    return template.format(row=row + base, col=col + base, index=index + base)


def validate_settings(settings: Settings) -> List[ValidationIssue]:
    """Return every invariant violation; an empty list means the grid can be computed."""
    errors: List[ValidationIssue] = []

    numeric = {
        "bedWidth": settings.bed_width,
        "bedHeight": settings.bed_height,
        "margin": settings.margin,
        "overlap": settings.overlap,
        "tileOffsetX": settings.tile_offset_x,
        "tileOffsetY": settings.tile_offset_y,
        "simplifyTolerance": settings.simplify_tolerance,
    }
    non_finite = [name for name, value in numeric.items() if not math.isfinite(value)]
    for name in non_finite:
        errors.append(ValidationIssue(name, "Value must be a finite number"))
    if non_finite:
        return errors

    if settings.bed_width < MIN_BED_SIZE_MM:
        errors.append(ValidationIssue("bedWidth", f"Bed width must be at least {MIN_BED_SIZE_MM:g}mm"))
    if settings.bed_height < MIN_BED_SIZE_MM:
        errors.append(ValidationIssue("bedHeight", f"Bed height must be at least {MIN_BED_SIZE_MM:g}mm"))
    if settings.margin < 0:
        errors.append(ValidationIssue("margin", "Margin cannot be negative"))
    if settings.overlap < 0:
        errors.append(ValidationIssue("overlap", "Overlap cannot be negative"))

    eff_w = settings.effective_tile_width
    eff_h = settings.effective_tile_height
    if eff_w <= 0:
        errors.append(ValidationIssue("margin", "Margin too large for bed width"))
    if eff_h <= 0:
        errors.append(ValidationIssue("margin", "Margin too large for bed height"))
    if settings.overlap >= eff_w:
        errors.append(ValidationIssue("overlap", "Overlap must be less than effective tile width"))
    if settings.overlap >= eff_h:
        errors.append(ValidationIssue("overlap", "Overlap must be less than effective tile height"))

    step_x = eff_w - settings.overlap
    step_y = eff_h - settings.overlap
    if step_x > 0 and not abs(settings.tile_offset_x) < step_x:
        errors.append(ValidationIssue(
            "tileOffsetX",
            f"Horizontal tile offset must be between -{step_x:g}mm and {step_x:g}mm (exclusive)",
        ))
    if step_y > 0 and not abs(settings.tile_offset_y) < step_y:
        errors.append(ValidationIssue(
            "tileOffsetY",
            f"Vertical tile offset must be between -{step_y:g}mm and {step_y:g}mm (exclusive)",
        ))

    if settings.simplify_tolerance < 0:
        errors.append(ValidationIssue("simplifyTolerance", "Simplification tolerance cannot be negative"))

    try:
        format_label(settings.numbering_template, 0, 0, 0, settings.start_index_at_one)
    except (KeyError, IndexError, ValueError) as exc:
        errors.append(ValidationIssue(
            "numberingFormat",
            f"Numbering format must use {{row}}, {{col}} or {{index}} placeholders ({exc})",
        ))

    marks = settings.registration_marks
    if marks.enabled:
        if marks.size <= 0 or marks.stroke_width <= 0:
            errors.append(ValidationIssue(
                "registrationMarks", "Mark size and stroke width must be positive"
            ))
        if marks.hole_diameter <= 0:
            errors.append(ValidationIssue(
                "registrationMarks", "Pinhole diameter must be positive"
            ))
    return errors


def _ceil_ratio(length: float, step: float) -> int:
    return int(math.ceil(round(length / step, _CEIL_DIGITS)))


def _grid_origin(offset: float, step: float) -> float:
    """First tile position on an axis; a positive offset gains a leading tile."""
    return offset - step if offset > 0 else offset


def _axis_count(length: float, step: float, tile_size: float, origin: float) -> int:
    count = max(1, _ceil_ratio(length, step))
    # An origin before 0 pulls the grid back; add tiles until the far edge is covered.
    while round((count - 1) * step + origin + tile_size - length, _CEIL_DIGITS) < 0:
        count += 1
    return count


def compute_grid(width_mm: float, height_mm: float, settings: Settings) -> GridResult:
    """Plan the tile grid for a design of *width_mm* x *height_mm*.

    Pure: the same inputs always produce an identical grid.
    """
    errors = validate_settings(settings)
    if errors:
        logger.debug("Grid blocked by %d validation issue(s)", len(errors))
        return GridResult(grid=None, errors=tuple(errors))

    eff_w = settings.effective_tile_width
    eff_h = settings.effective_tile_height
    step_x = eff_w - settings.overlap
    step_y = eff_h - settings.overlap
    origin_x = _grid_origin(settings.tile_offset_x, step_x)
    origin_y = _grid_origin(settings.tile_offset_y, step_y)
    cols = _axis_count(width_mm, step_x, eff_w, origin_x)
    rows = _axis_count(height_mm, step_y, eff_h, origin_y)

    template = settings.numbering_template
    tiles: List[Tile] = []
    for row in range(rows):
        for col in range(cols):
            index = row * cols + col
            tiles.append(
                Tile(
                    id=f"tile-r{row + 1}-c{col + 1}",
                    row=row,
                    col=col,
                    index=index,
                    x=col * step_x + origin_x,
                    y=row * step_y + origin_y,
                    width=eff_w,
                    height=eff_h,
                    label=format_label(template, row, col, index, settings.start_index_at_one),
                )
            )

    grid = Grid(
        rows=rows,
        cols=cols,
        effective_tile_width=eff_w,
        effective_tile_height=eff_h,
        step_x=step_x,
        step_y=step_y,
        tiles=tuple(tiles),
    )
    logger.info(
        "Grid %d cols x %d rows (%d tiles) for %.1f x %.1f mm, tile %.1f x %.1f mm",
        cols, rows, len(tiles), width_mm, height_mm, eff_w, eff_h,
    )
    return GridResult(grid=grid)


def compute_grid_for(document: NormalizedDocument, settings: Settings) -> GridResult:
    return compute_grid(document.width_mm, document.height_mm, settings)


def planning_warnings(
    document_size: Optional[Tuple[float, float]],
    settings: Settings,
    grid: Optional[Grid],
) -> List[str]:
    """Advisory messages shown next to a valid grid."""
    warnings: List[str] = []
    if grid is not None:
        if len(grid.tiles) > HEAVY_JOB_TILE_COUNT:
            warnings.append(f"More than {HEAVY_JOB_TILE_COUNT} tiles generated - heavy job")
        if settings.overlap > settings.margin:
            warnings.append("Overlap larger than margin may duplicate cuts")
    if document_size is not None:
        width_mm, height_mm = document_size
        if settings.bed_width < width_mm and settings.bed_height < height_mm:
            warnings.append("Source SVG exceeds laser bed size")
    return warnings

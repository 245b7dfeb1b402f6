"""
Packaging of processed tiles into a single zip archive.

Layout inside the archive::

    panel-splitter/tile-r{row}-c{col}.svg   (one per exported tile, 1-indexed)
    panel-splitter/README.txt
    panel-splitter/assembly_map.svg         (when the assembly map is enabled)

Entries are written in that order with a fixed timestamp, so two exports of
the same tiles differ only in the README/map date lines.
"""

from __future__ import annotations

import io
import logging
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from panel_splitter.assembly_map import generate_assembly_map
from panel_splitter.config import Settings
from panel_splitter.contracts import (
    ExportArchive,
    ExportMode,
    Grid,
    MarkType,
    NormalizedDocument,
    ProcessedTile,
    TilingCancelled,
    UnitSystem,
)
from panel_splitter.units import mm_to_display

logger = logging.getLogger(__name__)

ARCHIVE_FOLDER = "panel-splitter"
README_NAME = "README.txt"
ASSEMBLY_MAP_NAME = "assembly_map.svg"
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)
RULE = "=" * 40

ArchiveProgress = Callable[[int, int], None]


def tile_file_name(tile: ProcessedTile) -> str:
    return f"tile-r{tile.row + 1}-c{tile.col + 1}.svg"


def with_metadata(tile: ProcessedTile) -> str:
    """Tile content with a row/column comment placed before the root element."""
    comment = f"<!-- Panel Splitter: row {tile.row + 1} / col {tile.col + 1} -->\n"
    return tile.content.replace("<svg", comment + "<svg", 1)


def exported_tiles(tiles: Sequence[ProcessedTile]) -> List[ProcessedTile]:
    """Tiles that produce a file: those with content (empty ones only when kept)."""
    return [tile for tile in tiles if tile.content is not None]


def archive_name(grid: Grid, settings: Settings) -> str:
    return (
        f"panel-splitter-{grid.cols}x{grid.rows}-"
        f"{settings.bed_width:g}x{settings.bed_height:g}.zip"
    )


def _unsafe_detail(tile: ProcessedTile) -> str:
    parts = []
    if tile.fallback_shape_ids:
        parts.append("unclipped shapes: " + ", ".join(tile.fallback_shape_ids))
    if tile.untrimmed_ids:
        parts.append("untrimmed elements: " + ", ".join(tile.untrimmed_ids))
    return f" ({'; '.join(parts)})" if parts else ""


def generate_readme(
    document: NormalizedDocument,
    settings: Settings,
    grid: Grid,
    tiles: Sequence[ProcessedTile],
    generated_at: Optional[datetime] = None,
) -> str:
    """Plain-text export summary; the ``Date:`` line is the only time-dependent line."""
    generated_at = generated_at or datetime.now(timezone.utc)
    non_empty = [tile for tile in tiles if not tile.is_empty]
    unsafe = [tile for tile in tiles if tile.has_unsafe_fallback]
    mode = "Laser-Safe Trim" if settings.export_mode is ExportMode.LASER_SAFE else "Fast Clip"

    lines = [
        RULE,
        "Panel Splitter - Export Summary",
        RULE,
        "",
        "INPUT DESIGN",
        f"  File: {document.file_name}",
        f"  Size: {document.width_mm:.2f} x {document.height_mm:.2f} mm",
    ]
    if settings.unit_system is UnitSystem.IN:
        lines.append(
            f"  Size: {mm_to_display(document.width_mm, UnitSystem.IN):.2f}"
            f" x {mm_to_display(document.height_mm, UnitSystem.IN):.2f} in"
        )
    lines += [
        "",
        "BED SETTINGS",
        f"  Bed Size: {settings.bed_width:g} x {settings.bed_height:g} mm",
        f"  Margin: {settings.margin:g} mm",
        f"  Overlap: {settings.overlap:g} mm",
        f"  Export Mode: {mode}",
        "",
        "GRID LAYOUT",
        f"  Rows: {grid.rows}",
        f"  Columns: {grid.cols}",
        f"  Total Tiles: {len(tiles)}",
        f"  Non-Empty Tiles: {len(non_empty)}",
        f"  Effective Tile Area: {grid.effective_tile_width:.2f} x {grid.effective_tile_height:.2f} mm",
        "",
        "NUMBERING",
        f"  Format: {settings.numbering_format}",
        f"  Enabled: {'Yes' if settings.numbering_enabled else 'No'}",
        "",
        "TILE LIST",
    ]
    for tile in tiles:
        if tile.is_empty:
            status = " (EMPTY)"
        elif tile.has_unsafe_fallback:
            status = " (UNSAFE FALLBACK)"
        else:
            status = ""
        lines.append(f"  {tile.label}: Row {tile.row + 1}, Col {tile.col + 1}{status}")

    if unsafe:
        lines += [
            "",
            "WARNING: UNSAFE FALLBACK TILES",
            "The following tiles contain content that was not trimmed to the tile edge.",
            "Shapes whose boolean clip failed were included without clipping; text,",
            "images and references cannot be trimmed and are only masked by a clip path.",
            "Please verify these tiles manually in your laser software:",
        ]
        lines += [f"  - {tile.label}{_unsafe_detail(tile)}" for tile in unsafe]

    if settings.export_mode is ExportMode.FAST_CLIP:
        lines += [
            "",
            "WARNING: FAST CLIP MODE",
            "Tiles were exported using clipPath, not real geometry trimming.",
            "Some laser software (e.g., older LightBurn versions) may ignore clip paths.",
            "If you see artifacts, re-export using Laser-Safe Trim mode.",
        ]

    marks = settings.registration_marks
    if marks.enabled:
        lines += [
            "",
            "REGISTRATION MARKS",
            f"  Type: {marks.type.value}",
            f"  Placement: {marks.placement.value}",
            f"  Size: {marks.size:g} mm",
            f"  Stroke Width: {marks.stroke_width:g} mm",
        ]
        if marks.type is MarkType.PINHOLE:
            lines.append(f"  Hole Diameter: {marks.hole_diameter:g} mm")

    first_label = grid.tiles[0].label
    lines += [
        "",
        "ASSEMBLY TIPS",
        f"1. Start with tile {first_label} (top-left corner)",
        "2. Work left-to-right, then top-to-bottom",
        "3. If overlap is set, align overlapping edges carefully",
        "4. Use registration marks if guides were enabled",
        "",
        "Generated by Panel Splitter",
        f"Date: {generated_at.isoformat(timespec='seconds')}",
    ]
    return "\n".join(lines)


def _write_entry(archive: zipfile.ZipFile, name: str, text: str) -> None:
    info = zipfile.ZipInfo(name, date_time=ZIP_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    archive.writestr(info, text.encode("utf-8"))


def build_archive(
    document: NormalizedDocument,
    settings: Settings,
    grid: Grid,
    tiles: Sequence[ProcessedTile],
    generated_at: Optional[datetime] = None,
    on_progress: Optional[ArchiveProgress] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> ExportArchive:
    """Bundle *tiles*, the README and the optional assembly map into a zip.

    *on_progress* receives ``(current, total)`` after each entry;
    *should_cancel* is polled after each tile file and raises
    ``TilingCancelled`` when it returns true.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    to_export = exported_tiles(tiles)
    with_map = settings.assembly_map.enabled
    total = len(to_export) + 1 + (1 if with_map else 0)

    texts: Dict[str, str] = {}
    for tile in to_export:
        texts[f"{ARCHIVE_FOLDER}/{tile_file_name(tile)}"] = with_metadata(tile)
    texts[f"{ARCHIVE_FOLDER}/{README_NAME}"] = generate_readme(
        document, settings, grid, tiles, generated_at
    )
    if with_map:
        texts[f"{ARCHIVE_FOLDER}/{ASSEMBLY_MAP_NAME}"] = generate_assembly_map(
            document, settings, grid, tiles, generated_at
        )

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for current, (name, text) in enumerate(texts.items(), start=1):
            _write_entry(archive, name, text)
            if on_progress is not None:
                on_progress(current, total)
            if current <= len(to_export) and should_cancel is not None and should_cancel():
                raise TilingCancelled(f"export cancelled after {current} of {total} entries")

    file_name = archive_name(grid, settings)
    logger.info("Built %s with %d entries", file_name, len(texts))
    return ExportArchive(
        file_name=file_name,
        data=buffer.getvalue(),
        entries=tuple(texts),
        texts=texts,
    )


def write_archive(archive: ExportArchive, directory: str | Path) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / archive.file_name
    path.write_bytes(archive.data)
    logger.info("Wrote %s (%d bytes)", path, len(archive.data))
    return path

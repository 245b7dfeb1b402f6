#!/usr/bin/env python3
"""Split an oversized SVG into laser-bed sized tiles and package them as a zip."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from panel_splitter import (
    ExportMode,
    PanelSplitterError,
    Settings,
    SplitterSession,
    UnitMode,
    load_settings,
    write_archive,
)

logger = logging.getLogger("split_svg")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Split an SVG design into tiles that fit a laser cutting bed"
    )
    parser.add_argument("svg", help="Path to the input .svg file")
    parser.add_argument("--settings", default=None, help="JSON settings file")
    parser.add_argument("--out-dir", default=".", help="Directory for the zip archive")
    parser.add_argument("--bed-width", type=float, default=None, help="Bed width in mm")
    parser.add_argument("--bed-height", type=float, default=None, help="Bed height in mm")
    parser.add_argument("--margin", type=float, default=None, help="Margin per side in mm")
    parser.add_argument("--overlap", type=float, default=None, help="Tile overlap in mm")
    parser.add_argument(
        "--unit-mode",
        choices=[mode.value for mode in UnitMode],
        default=None,
        help="Units per inch for unitless sizes (auto detects Illustrator files)",
    )
    parser.add_argument(
        "--export-mode",
        choices=[mode.value for mode in ExportMode],
        default=None,
        help="laser-safe trims geometry; fast-clip wraps it in a clip path",
    )
    parser.add_argument("--width-mm", type=float, default=None, help="Scale design to this width")
    parser.add_argument("--height-mm", type=float, default=None, help="Scale design to this height")
    parser.add_argument(
        "--no-lock-aspect", action="store_true", help="Scale width and height independently"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.settings) if args.settings else Settings()
    overrides = {
        "bed_width": args.bed_width,
        "bed_height": args.bed_height,
        "margin": args.margin,
        "overlap": args.overlap,
        "unit_mode": UnitMode(args.unit_mode) if args.unit_mode else None,
        "export_mode": ExportMode(args.export_mode) if args.export_mode else None,
    }
    return replace(settings, **{k: v for k, v in overrides.items() if v is not None})


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        session = SplitterSession(settings_from_args(args))
        session.load_file(args.svg)
        if args.width_mm is not None or args.height_mm is not None:
            session.resize(args.width_mm, args.height_mm, lock_aspect=not args.no_lock_aspect)
    except (PanelSplitterError, OSError) as exc:
        logger.error("%s", exc)
        return 1

    if session.grid is None:
        for issue in session.grid_result.errors:
            logger.error("%s: %s", issue.field, issue.message)
        return 2
    for warning in session.warnings:
        logger.warning("%s", warning)

    result = session.generate(
        on_progress=lambda p: logger.debug("Tile %d/%d %s", p.current, p.total, p.tile.id)
    )
    if result.state.error:
        logger.error("Tiling failed: %s", result.state.error)
        return 1
    for tile in result.unsafe_tiles:
        logger.warning(
            "Tile %s is not fully trimmed: %s",
            tile.label,
            ", ".join(tile.fallback_shape_ids + tile.untrimmed_ids),
        )

    archive = session.export()
    if archive is None:
        logger.error("Export failed: %s", session.state.error)
        return 1
    path = write_archive(archive, args.out_dir)
    print(f"{path} ({len(archive.entries)} files, grid {session.grid.cols}x{session.grid.rows})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

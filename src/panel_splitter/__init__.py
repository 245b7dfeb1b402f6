"""Public API for the SVG panel splitter."""

from panel_splitter.assembly_map import generate_assembly_map
from panel_splitter.clipper import GeometryClipper, ShapelyClipper
from panel_splitter.config import (
    AssemblyMapSettings,
    RegistrationMarkSettings,
    Settings,
    load_settings,
    settings_from_dict,
)
from panel_splitter.contracts import (
    ExportArchive,
    ExportMode,
    Grid,
    GridResult,
    MarkPlacement,
    MarkType,
    NormalizedDocument,
    PanelSplitterError,
    Phase,
    ProcessedTile,
    SettingsError,
    SVGParseError,
    Tile,
    TilingResult,
    UnitlessPolicy,
    UnitMode,
    UnitSystem,
    UnsupportedFileError,
)
from panel_splitter.grid import compute_grid, compute_grid_for, planning_warnings, validate_settings
from panel_splitter.packager import archive_name, build_archive, generate_readme, write_archive
from panel_splitter.parser import load_svg_file, parse_svg, scale_document
from panel_splitter.session import SplitterSession
from panel_splitter.tiler import CancelToken, iter_tiles, process_tiles

__all__ = [
    "AssemblyMapSettings",
    "CancelToken",
    "ExportArchive",
    "ExportMode",
    "GeometryClipper",
    "Grid",
    "GridResult",
    "MarkPlacement",
    "MarkType",
    "NormalizedDocument",
    "PanelSplitterError",
    "Phase",
    "ProcessedTile",
    "RegistrationMarkSettings",
    "SVGParseError",
    "Settings",
    "SettingsError",
    "ShapelyClipper",
    "SplitterSession",
    "Tile",
    "TilingResult",
    "UnitMode",
    "UnitSystem",
    "UnitlessPolicy",
    "UnsupportedFileError",
    "archive_name",
    "build_archive",
    "compute_grid",
    "compute_grid_for",
    "generate_assembly_map",
    "generate_readme",
    "iter_tiles",
    "load_settings",
    "load_svg_file",
    "parse_svg",
    "planning_warnings",
    "process_tiles",
    "scale_document",
    "settings_from_dict",
    "validate_settings",
    "write_archive",
]

"""Contracts for the panel splitter engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
from xml.etree.ElementTree import Element

from shapely.geometry.base import BaseGeometry

Rect = Tuple[float, float, float, float]  # (minx, miny, maxx, maxy)


class PanelSplitterError(Exception):
    """Base class for engine errors."""


class SVGParseError(PanelSplitterError):
    """The input could not be read as an SVG document with a usable size."""


class UnsupportedFileError(PanelSplitterError):
    """The input file is not an SVG."""


class SettingsError(PanelSplitterError, ValueError):
    """A settings mapping could not be turned into Settings."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field = field_name


class ClipError(PanelSplitterError):
    """Boolean intersection could not be computed for a shape."""


class TilingCancelled(PanelSplitterError):
    """Raised inside a run when cancellation was requested."""


class UnitMode(str, Enum):
    AUTO = "auto"
    PX96 = "96"
    PX72 = "72"


class UnitlessPolicy(str, Enum):
    """Which declaration wins when unitless width/height and viewBox disagree."""

    PREFER_DIMENSIONS = "prefer_dimensions"
    PREFER_VIEWBOX = "prefer_viewbox"


class UnitSystem(str, Enum):
    MM = "mm"
    IN = "in"


class ExportMode(str, Enum):
    LASER_SAFE = "laser-safe"
    FAST_CLIP = "fast-clip"


class MarkType(str, Enum):
    CROSSHAIR = "crosshair"
    PINHOLE = "pinhole"
    LMARK = "lmark"


class MarkPlacement(str, Enum):
    INSIDE = "inside"
    OVERLAP = "overlap"


class Phase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    TILING = "tiling"
    EXPORTING = "exporting"
    DONE = "done"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    Phase.IDLE: {Phase.PREPARING, Phase.EXPORTING},
    Phase.PREPARING: {Phase.TILING, Phase.CANCELLED},
    Phase.TILING: {Phase.DONE, Phase.CANCELLED},
    Phase.EXPORTING: {Phase.DONE, Phase.CANCELLED},
    Phase.DONE: {Phase.PREPARING, Phase.EXPORTING},
    Phase.CANCELLED: {Phase.PREPARING, Phase.EXPORTING},
}


@dataclass(frozen=True)
class ViewBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class SourceShape:
    """One drawable element of the source document, in document mm."""

    shape_id: str
    geometry: BaseGeometry
    closed: bool
    stroke: Optional[str] = None
    fill: Optional[str] = None
    stroke_width_mm: float = 0.0


@dataclass(frozen=True)
class PassthroughElement:
    """An element carried verbatim into tile output.

    ``element`` is a namespace-free copy in source user units and is never
    mutated; ``matrix`` is the SVG ``matrix(a b c d e f)`` mapping it into
    document mm, or ``None`` for non-rendered content (``defs``, ``style``).
    ``bounds`` is the estimated footprint in document mm; it is ``None`` when
    the extent cannot be derived from the element.
    """

    tag: str
    element: Element = field(compare=False)
    matrix: Optional[Tuple[float, float, float, float, float, float]] = None
    bounds: Optional[Rect] = None
    element_id: str = ""


@dataclass(frozen=True)
class NormalizedDocument:
    file_name: str
    original_content: str
    width_mm: float
    height_mm: float
    unit_mode: UnitMode = UnitMode.AUTO
    view_box: Optional[ViewBox] = None
    declared_width: Optional[float] = None
    width_unit: Optional[str] = None
    declared_height: Optional[float] = None
    height_unit: Optional[str] = None
    units_per_inch: float = 96.0
    shapes: Tuple[SourceShape, ...] = ()
    passthrough: Tuple[PassthroughElement, ...] = ()


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str


@dataclass(frozen=True)
class Tile:
    id: str
    row: int
    col: int
    index: int
    x: float
    y: float
    width: float
    height: float
    label: str

    def rect(self) -> Rect:
        return self.x, self.y, self.x + self.width, self.y + self.height


@dataclass(frozen=True)
class ProcessedTile(Tile):
    content: Optional[str] = None
    is_empty: bool = False
    has_unsafe_fallback: bool = False
    extents: Optional[Rect] = None
    geometry: Tuple[BaseGeometry, ...] = ()
    fallback_shape_ids: Tuple[str, ...] = ()
    untrimmed_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Grid:
    rows: int
    cols: int
    effective_tile_width: float
    effective_tile_height: float
    step_x: float
    step_y: float
    tiles: Tuple[Tile, ...]


@dataclass(frozen=True)
class GridResult:
    """Either a grid or the validation issues that blocked it, never both."""

    grid: Optional[Grid] = None
    errors: Tuple[ValidationIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return self.grid is not None

    def errors_for(self, field_name: str) -> List[ValidationIssue]:
        return [issue for issue in self.errors if issue.field == field_name]


@dataclass
class ProcessingState:
    """Phase and progress of one generate/export run."""

    phase: Phase = Phase.IDLE
    current: int = 0
    total: int = 0
    error: Optional[str] = None

    def advance(self, phase: Phase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise ValueError(f"cannot move from {self.phase.value} to {phase.value}")
        self.phase = phase

    def reset(self, error: Optional[str] = None) -> None:
        self.phase = Phase.IDLE
        self.current = 0
        self.total = 0
        self.error = error


@dataclass(frozen=True)
class TileProgress:
    current: int
    total: int
    tile: ProcessedTile


@dataclass
class TilingResult:
    tiles: List[ProcessedTile] = field(default_factory=list)
    state: ProcessingState = field(default_factory=ProcessingState)

    @property
    def cancelled(self) -> bool:
        return self.state.phase is Phase.CANCELLED

    @property
    def unsafe_tiles(self) -> List[ProcessedTile]:
        return [tile for tile in self.tiles if tile.has_unsafe_fallback]


@dataclass(frozen=True)
class ExportArchive:
    file_name: str
    data: bytes
    entries: Tuple[str, ...]
    texts: Dict[str, str] = field(default_factory=dict, compare=False)

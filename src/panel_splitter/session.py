"""
Explicit state machine tying a document, settings, grid and runs together.

Every input change (``load``, ``set_unit_mode``, ``update_settings``,
``resize``) recomputes the grid right away and discards processed tiles;
nothing is recomputed behind the caller's back.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from panel_splitter.clipper import GeometryClipper
from panel_splitter.config import Settings
from panel_splitter.contracts import (
    ExportArchive,
    Grid,
    GridResult,
    NormalizedDocument,
    PanelSplitterError,
    Phase,
    ProcessedTile,
    ProcessingState,
    TileProgress,
    TilingCancelled,
    TilingResult,
    UnitlessPolicy,
    UnitMode,
    UnsupportedFileError,
)
from panel_splitter.grid import compute_grid_for, planning_warnings
from panel_splitter.packager import build_archive
from panel_splitter.parser import parse_svg, scale_document
from panel_splitter.tiler import CancelToken, process_tiles

logger = logging.getLogger(__name__)


class SplitterSession:
    """One design being split: holds the current document, grid and tiles."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        unitless_policy: UnitlessPolicy = UnitlessPolicy.PREFER_DIMENSIONS,
        clipper: Optional[GeometryClipper] = None,
    ):
        self.settings = settings or Settings()
        self.unitless_policy = unitless_policy
        self.clipper = clipper
        self.source: Optional[NormalizedDocument] = None
        self.document: Optional[NormalizedDocument] = None
        self.grid_result: Optional[GridResult] = None
        self.tiles: List[ProcessedTile] = []
        self.state = ProcessingState()
        self._cancel: Optional[CancelToken] = None

    # -- inputs -------------------------------------------------------------

    def load(self, content: str, file_name: str = "design.svg") -> NormalizedDocument:
        """Parse *content* and make it the current design.

        On a parse error the previous document, grid and tiles stay as they were.
        """
        if not file_name.lower().endswith(".svg"):
            raise UnsupportedFileError(f"Only .svg files are supported: {file_name}")
        document = parse_svg(
            content, file_name, self.settings.unit_mode, self.unitless_policy
        )
        self.source = document
        self.document = document
        self._recompute()
        return document

    def load_file(self, path: str | Path) -> NormalizedDocument:
        path = Path(path)
        if path.suffix.lower() != ".svg":
            raise UnsupportedFileError(f"Only .svg files are supported: {path.name}")
        return self.load(path.read_text(encoding="utf-8"), path.name)

    def set_unit_mode(self, mode: UnitMode) -> Optional[NormalizedDocument]:
        """Re-parse the original text under *mode*; any resize is dropped."""
        self.settings = replace(self.settings, unit_mode=UnitMode(mode))
        if self.source is None:
            return None
        document = parse_svg(
            self.source.original_content,
            self.source.file_name,
            self.settings.unit_mode,
            self.unitless_policy,
        )
        self.source = document
        self.document = document
        self._recompute()
        return document

    def update_settings(self, settings: Settings) -> Optional[GridResult]:
        previous_mode = self.settings.unit_mode
        self.settings = settings
        if self.source is not None and settings.unit_mode != previous_mode:
            self.set_unit_mode(settings.unit_mode)
        else:
            self._recompute()
        return self.grid_result

    def resize(
        self,
        width_mm: Optional[float] = None,
        height_mm: Optional[float] = None,
        lock_aspect: bool = True,
    ) -> NormalizedDocument:
        """Scale the design to a new output size, starting from the parsed size."""
        if self.source is None:
            raise PanelSplitterError("No design loaded")
        self.document = scale_document(self.source, width_mm, height_mm, lock_aspect)
        self._recompute()
        return self.document

    def _recompute(self) -> None:
        self.tiles = []
        self.state.reset()
        if self.document is None:
            self.grid_result = None
            return
        self.grid_result = compute_grid_for(self.document, self.settings)
        for issue in self.grid_result.errors:
            logger.debug("Invalid setting %s: %s", issue.field, issue.message)

    # -- derived ------------------------------------------------------------

    @property
    def grid(self) -> Optional[Grid]:
        return self.grid_result.grid if self.grid_result is not None else None

    @property
    def warnings(self) -> List[str]:
        size = None
        if self.document is not None:
            size = (self.document.width_mm, self.document.height_mm)
        return planning_warnings(size, self.settings, self.grid)

    # -- runs ---------------------------------------------------------------

    def _require_grid(self) -> Grid:
        if self.document is None:
            raise PanelSplitterError("No design loaded")
        if self.grid is None:
            raise PanelSplitterError("Settings are invalid; fix them before generating tiles")
        return self.grid

    def generate(
        self, on_progress: Optional[Callable[[TileProgress], None]] = None
    ) -> TilingResult:
        grid = self._require_grid()
        self._cancel = CancelToken()
        result = process_tiles(
            self.document,
            grid,
            self.settings,
            on_progress=on_progress,
            should_cancel=self._cancel,
            clipper=self.clipper,
        )
        self.tiles = list(result.tiles)
        self.state = result.state
        self._cancel = None
        return result

    def export(
        self,
        on_progress: Optional[Callable[[int, int], None]] = None,
        generated_at: Optional[datetime] = None,
    ) -> Optional[ExportArchive]:
        """Package the processed tiles.

        Returns ``None`` when the export was cancelled or failed; the reason
        is in ``state`` (phase ``cancelled``, or ``idle`` with ``error`` set).
        """
        grid = self._require_grid()
        if not self.tiles:
            raise PanelSplitterError("No processed tiles to export; generate tiles first")
        self._cancel = CancelToken()
        self.state.error = None
        self.state.advance(Phase.EXPORTING)
        try:
            archive = build_archive(
                self.document,
                self.settings,
                grid,
                self.tiles,
                generated_at=generated_at,
                on_progress=on_progress,
                should_cancel=self._cancel,
            )
        except TilingCancelled as exc:
            logger.info("Export %s", exc)
            self.state.advance(Phase.CANCELLED)
            return None
        except Exception as exc:
            logger.error("Export failed: %s", exc)
            self.state.reset(error=str(exc) or type(exc).__name__)
            return None
        finally:
            self._cancel = None
        self.state.advance(Phase.DONE)
        return archive

    def cancel(self) -> None:
        """Request cancellation of the current run at the next tile boundary."""
        if self._cancel is not None:
            self._cancel.cancel()

    def reset(self) -> None:
        """Back to idle defaults: no design, default settings."""
        if self._cancel is not None:
            self._cancel.cancel()
        self.settings = Settings()
        self.source = None
        self.document = None
        self.grid_result = None
        self.tiles = []
        self.state = ProcessingState()
        self._cancel = None

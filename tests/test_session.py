"""Tests for the splitter session state machine."""
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from conftest import make_svg
from panel_splitter.config import Settings
from panel_splitter.contracts import (
    PanelSplitterError,
    Phase,
    SVGParseError,
    UnitMode,
    UnsupportedFileError,
)
from panel_splitter.session import SplitterSession

GENERATED_AT = datetime(2024, 1, 2, tzinfo=timezone.utc)


@pytest.fixture
def session(wide_svg):
    session = SplitterSession()
    session.load(wide_svg, "wide.svg")
    return session


class TestInputs:
    """Every input change recomputes the grid and clears tiles."""

    def test_load_computes_grid(self, session):
        assert session.document.width_mm == pytest.approx(620.0)
        assert (session.grid.cols, session.grid.rows) == (3, 1)
        assert session.state.phase is Phase.IDLE

    def test_rejects_non_svg(self):
        with pytest.raises(UnsupportedFileError):
            SplitterSession().load("<svg/>", "drawing.pdf")

    def test_parse_error_keeps_previous_design(self, session):
        with pytest.raises(SVGParseError):
            session.load("<svg", "broken.svg")
        assert session.document.file_name == "wide.svg"
        assert session.grid is not None

    def test_load_file(self, tmp_path, corner_svg):
        path = tmp_path / "corner.svg"
        path.write_text(corner_svg, encoding="utf-8")
        session = SplitterSession()
        session.load_file(path)
        assert session.document.file_name == "corner.svg"
        assert len(session.grid.tiles) == 4

    def test_invalid_settings_block_grid(self, session):
        result = session.update_settings(Settings(margin=150.0))
        assert session.grid is None
        assert result.errors_for("margin")
        with pytest.raises(PanelSplitterError):
            session.generate()

    def test_settings_change_discards_tiles(self, session):
        session.generate()
        assert session.tiles
        session.update_settings(Settings(overlap=10.0))
        assert session.tiles == []
        assert session.state.phase is Phase.IDLE
        assert session.grid.step_x == 280.0

    def test_unit_mode_reparses_original_text(self):
        session = SplitterSession()
        session.load(make_svg("96", "96", '<rect width="96" height="96"/>'), "px.svg")
        assert session.document.width_mm == pytest.approx(25.4)

        session.set_unit_mode(UnitMode.PX72)
        assert session.settings.unit_mode is UnitMode.PX72
        assert session.document.width_mm == pytest.approx(96 * 25.4 / 72)
        assert session.document.shapes[0].geometry.bounds[2] == pytest.approx(96 * 25.4 / 72)

    def test_unit_mode_via_settings(self):
        session = SplitterSession()
        session.load(make_svg("96", "96"), "px.svg")
        session.update_settings(replace(session.settings, unit_mode=UnitMode.PX72))
        assert session.document.width_mm == pytest.approx(96 * 25.4 / 72)

    def test_resize(self, session):
        session.resize(width_mm=310.0)
        assert session.document.height_mm == pytest.approx(75.0)
        assert session.source.width_mm == pytest.approx(620.0)
        assert session.grid.cols == 2

    def test_resize_requires_design(self):
        with pytest.raises(PanelSplitterError):
            SplitterSession().resize(width_mm=100.0)

    def test_unit_mode_change_drops_resize(self, session):
        session.resize(width_mm=310.0)
        session.set_unit_mode(UnitMode.PX96)
        assert session.document.width_mm == pytest.approx(620.0)

    def test_warnings(self, corner_svg):
        session = SplitterSession(Settings(overlap=10.0))
        session.load(corner_svg, "corner.svg")
        assert "Source SVG exceeds laser bed size" in session.warnings
        assert "Overlap larger than margin may duplicate cuts" in session.warnings


class TestRuns:
    def test_generate_and_export(self, session):
        result = session.generate()
        assert result.state.phase is Phase.DONE
        assert len(session.tiles) == 3

        progress = []
        archive = session.export(on_progress=lambda c, t: progress.append(c), generated_at=GENERATED_AT)
        assert archive is not None
        assert session.state.phase is Phase.DONE
        assert progress == [1, 2, 3, 4, 5]
        assert archive.file_name == "panel-splitter-3x1-300x200.zip"

    def test_export_requires_tiles(self, session):
        with pytest.raises(PanelSplitterError):
            session.export()

    def test_cancel_generate(self, session):
        def on_progress(event):
            if event.current == 1:
                session.cancel()

        result = session.generate(on_progress=on_progress)
        assert result.cancelled
        assert session.state.phase is Phase.CANCELLED
        assert [t.id for t in session.tiles] == ["tile-r1-c1"]

    def test_cancelled_tiles_can_still_be_exported(self, session):
        session.generate(on_progress=lambda event: session.cancel())
        archive = session.export(generated_at=GENERATED_AT)
        assert archive is not None
        assert "panel-splitter/tile-r1-c1.svg" in archive.entries
        assert "panel-splitter/tile-r1-c2.svg" not in archive.entries

    def test_cancel_export(self, session):
        session.generate()
        archive = session.export(on_progress=lambda c, t: session.cancel())
        assert archive is None
        assert session.state.phase is Phase.CANCELLED
        assert session.state.error is None

    def test_export_failure_resets_to_idle(self, session):
        session.generate()

        def on_progress(current, total):
            raise OSError("disk full")

        assert session.export(on_progress=on_progress) is None
        assert session.state.phase is Phase.IDLE
        assert session.state.error == "disk full"

    def test_cancel_without_run_is_noop(self, session):
        session.cancel()
        assert session.generate().state.phase is Phase.DONE

    def test_reset(self, session):
        session.generate()
        session.reset()
        assert session.document is None
        assert session.grid is None
        assert session.tiles == []
        assert session.settings == Settings()
        assert session.state.phase is Phase.IDLE

"""
Shared test fixtures for panel splitter tests.
"""
import sys
from pathlib import Path

import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from panel_splitter.config import Settings
from panel_splitter.parser import parse_svg


def make_svg(width: str, height: str, body: str = "", view_box: str | None = None, extra: str = "") -> str:
    """Build a minimal SVG document string."""
    vb = f' viewBox="{view_box}"' if view_box else ""
    size = ""
    if width:
        size += f' width="{width}"'
    if height:
        size += f' height="{height}"'
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<svg xmlns="http://www.w3.org/2000/svg"{size}{vb}{extra}>{body}</svg>'
    )


@pytest.fixture
def default_settings():
    """Bed 300x200mm, margin 5mm, no overlap."""
    return Settings()


@pytest.fixture
def wide_svg():
    """A 620x150mm design with a filled bar across most of its width."""
    return make_svg(
        "620mm",
        "150mm",
        '<rect id="bar" x="10" y="20" width="600" height="100" fill="#000" stroke="#ff0000" stroke-width="0.5"/>',
        view_box="0 0 620 150",
    )


@pytest.fixture
def wide_document(wide_svg):
    return parse_svg(wide_svg, "wide.svg")


@pytest.fixture
def corner_svg():
    """A 400x300mm design with a single square in the top-left corner only."""
    return make_svg(
        "400mm",
        "300mm",
        '<rect id="corner" x="10" y="10" width="50" height="50" fill="#000"/>',
        view_box="0 0 400 300",
    )


@pytest.fixture
def corner_document(corner_svg):
    return parse_svg(corner_svg, "corner.svg")

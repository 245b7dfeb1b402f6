"""Length parsing and conversion to millimeters."""

from __future__ import annotations

import re
from typing import Optional, Tuple

from panel_splitter.contracts import UnitMode, UnitSystem

MM_PER_INCH = 25.4

# Absolute units, expressed in mm per unit.
PHYSICAL_UNITS = {
    "mm": 1.0,
    "cm": 10.0,
    "q": 0.25,
    "in": MM_PER_INCH,
    "pt": MM_PER_INCH / 72.0,
    "pc": MM_PER_INCH / 6.0,
}

# Units that resolve through the active units-per-inch setting.
PIXEL_UNITS = ("", "px")

_LENGTH_RE = re.compile(
    r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*([a-zA-Z%]*)\s*$"
)

_ILLUSTRATOR_MARKERS = ("Generator: Adobe Illustrator", "&ns_ai;", "ns.adobe.com/AdobeIllustrator")


def parse_length(value: Optional[str]) -> Optional[Tuple[float, str]]:
    """Split an SVG length such as ``"210mm"`` into ``(210.0, "mm")``.

    Returns ``None`` for missing or malformed values. Units are lower-cased;
    unitless values carry an empty unit.
    """
    if value is None:
        return None
    match = _LENGTH_RE.match(value)
    if not match:
        return None
    return float(match.group(1)), match.group(2).lower()


def is_physical(unit: Optional[str]) -> bool:
    return unit is not None and unit in PHYSICAL_UNITS


def is_pixel(unit: Optional[str]) -> bool:
    return unit is not None and unit in PIXEL_UNITS


def units_per_inch(mode: UnitMode, content: str = "") -> float:
    """Resolve a unit mode to units per inch.

    ``AUTO`` means the CSS reference of 96, except for Illustrator exports,
    whose user unit is one point.
    """
    if mode is UnitMode.PX72:
        return 72.0
    if mode is UnitMode.PX96:
        return 96.0
    head = content[:4096]
    if any(marker in head for marker in _ILLUSTRATOR_MARKERS):
        return 72.0
    return 96.0


def pixels_to_mm(value: float, dpi: float) -> float:
    return value * MM_PER_INCH / dpi


def to_mm(value: float, unit: str, dpi: float) -> Optional[float]:
    """Convert a parsed length to mm. Relative units (%, em, ex) give ``None``."""
    if unit in PHYSICAL_UNITS:
        return value * PHYSICAL_UNITS[unit]
    if unit in PIXEL_UNITS:
        return pixels_to_mm(value, dpi)
    return None


def mm_to_display(value_mm: float, unit_system: UnitSystem) -> float:
    """Convert mm to the display unit system."""
    if unit_system is UnitSystem.IN:
        return value_mm / MM_PER_INCH
    return value_mm

"""Settings for the panel splitter and their external (JSON) form."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Type

from panel_splitter.contracts import (
    ExportMode,
    MarkPlacement,
    MarkType,
    SettingsError,
    UnitMode,
    UnitSystem,
)

logger = logging.getLogger(__name__)

MIN_BED_SIZE_MM = 10.0

# Named numbering presets, mapped to format templates.
NUMBERING_PRESETS: Dict[str, str] = {
    "panel_{row}{col}": "panel_{row}{col}",
    "R01C01": "R{row:02d}C{col:02d}",
    "01-01": "{row:02d}-{col:02d}",
    "Tile_001": "Tile_{index:03d}",
}


@dataclass(frozen=True)
class RegistrationMarkSettings:
    enabled: bool = False
    type: MarkType = MarkType.CROSSHAIR
    placement: MarkPlacement = MarkPlacement.INSIDE
    size: float = 6.0  # mm
    stroke_width: float = 0.2  # mm
    hole_diameter: float = 2.0  # mm, pinhole only


@dataclass(frozen=True)
class AssemblyMapSettings:
    enabled: bool = True
    include_labels: bool = True
    include_thumbnails: bool = False


@dataclass(frozen=True)
class Settings:
    """Tiling configuration. All lengths are millimeters."""

    bed_width: float = 300.0
    bed_height: float = 200.0
    margin: float = 5.0
    overlap: float = 0.0
    tile_offset_x: float = 0.0
    tile_offset_y: float = 0.0
    unit_system: UnitSystem = UnitSystem.MM  # inch sizes in README and map when IN
    unit_mode: UnitMode = UnitMode.AUTO
    export_mode: ExportMode = ExportMode.LASER_SAFE
    numbering_enabled: bool = True
    numbering_format: str = "panel_{row}{col}"
    start_index_at_one: bool = True
    guides_enabled: bool = False
    boundary_rect_enabled: bool = False
    expand_strokes: bool = False
    export_empty_tiles: bool = False
    simplify_tolerance: float = 0.0
    registration_marks: RegistrationMarkSettings = field(
        default_factory=RegistrationMarkSettings
    )
    assembly_map: AssemblyMapSettings = field(default_factory=AssemblyMapSettings)

    @property
    def effective_tile_width(self) -> float:
        return self.bed_width - 2.0 * self.margin

    @property
    def effective_tile_height(self) -> float:
        return self.bed_height - 2.0 * self.margin

    @property
    def numbering_template(self) -> str:
        return NUMBERING_PRESETS.get(self.numbering_format, self.numbering_format)

    def to_dict(self) -> Dict[str, Any]:
        return _dataclass_to_dict(self)


def _camel_to_snake(key: str) -> str:
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")


def _dataclass_to_dict(obj) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif hasattr(value, "__dataclass_fields__"):
            value = _dataclass_to_dict(value)
        payload[f.name] = value
    return payload


def _coerce(cls: Type, data: Mapping[str, Any], prefix: str = ""):
    known = {f.name: f for f in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for raw_key, value in data.items():
        key = _camel_to_snake(raw_key)
        if key not in known:
            raise SettingsError(prefix + raw_key, "unknown setting")
        f = known[key]
        default = getattr(cls(), key)
        name = prefix + raw_key
        if isinstance(default, Enum):
            if isinstance(value, int) and not isinstance(value, bool):
                value = str(value)  # unit mode given as a bare number
            try:
                value = type(default)(value)
            except ValueError:
                allowed = ", ".join(m.value for m in type(default))
                raise SettingsError(name, f"expected one of {allowed}, got {value!r}") from None
        elif isinstance(default, bool):
            if not isinstance(value, bool):
                raise SettingsError(name, f"expected a boolean, got {value!r}")
        elif isinstance(default, float):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SettingsError(name, f"expected a number, got {value!r}")
            value = float(value)
            if math.isnan(value):
                raise SettingsError(name, "must not be NaN")
        elif hasattr(default, "__dataclass_fields__"):
            if not isinstance(value, Mapping):
                raise SettingsError(name, "expected an object")
            value = _coerce(type(default), value, prefix=name + ".")
        elif isinstance(default, str):
            if not isinstance(value, str):
                raise SettingsError(name, f"expected a string, got {value!r}")
        kwargs[key] = value
    return cls(**kwargs)


def settings_from_dict(data: Mapping[str, Any]) -> Settings:
    """Build Settings from a mapping with snake_case or camelCase keys.

    Missing keys take their defaults. Range invariants are not checked here;
    that is the grid planner's job (see ``grid.validate_settings``).
    """
    return _coerce(Settings, data)


def load_settings(path: str | Path) -> Settings:
    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise SettingsError("<root>", "settings file must contain a JSON object")
    settings = settings_from_dict(payload)
    logger.info("Loaded settings from %s", path)
    return settings

"""Tests for SVG parsing and unit normalization."""
import math

import pytest
from shapely.geometry import LineString

from conftest import make_svg
from panel_splitter.contracts import (
    SVGParseError,
    UnitlessPolicy,
    UnitMode,
    UnsupportedFileError,
)
from panel_splitter.parser import (
    load_svg_file,
    parse_svg,
    resolve_size,
    scale_document,
)


class TestSizeResolution:
    """Physical size detection from width/height/viewBox."""

    def test_a4_mm_and_px_are_equivalent(self):
        """210x297mm and its 96-dpi pixel size normalize to the same mm size."""
        mm_doc = parse_svg(make_svg("210mm", "297mm"), "a4.svg")
        px_doc = parse_svg(make_svg("793.7px", "1122.5px"), "a4px.svg", UnitMode.PX96)

        assert mm_doc.width_mm == pytest.approx(210.0)
        assert mm_doc.height_mm == pytest.approx(297.0)
        assert px_doc.width_mm == pytest.approx(mm_doc.width_mm, abs=0.05)
        assert px_doc.height_mm == pytest.approx(mm_doc.height_mm, abs=0.05)

    def test_unitless_uses_active_resolution(self):
        doc96 = parse_svg(make_svg("96", "48"), unit_mode=UnitMode.PX96)
        doc72 = parse_svg(make_svg("72", "36"), unit_mode=UnitMode.PX72)

        assert doc96.width_mm == pytest.approx(25.4)
        assert doc96.height_mm == pytest.approx(12.7)
        assert doc72.width_mm == pytest.approx(25.4)
        assert doc72.height_mm == pytest.approx(12.7)

    def test_physical_units_win_over_viewbox(self):
        doc = parse_svg(make_svg("100mm", "50mm", view_box="0 0 1000 500"))
        assert (doc.width_mm, doc.height_mm) == pytest.approx((100.0, 50.0))

    @pytest.mark.parametrize(
        "width, height, expected",
        [
            ("1in", "2in", (25.4, 50.8)),
            ("10cm", "5cm", (100.0, 50.0)),
            ("72pt", "6pc", (25.4, 25.4)),
            ("40q", "4Q", (10.0, 1.0)),
        ],
    )
    def test_other_physical_units(self, width, height, expected):
        doc = parse_svg(make_svg(width, height))
        assert (doc.width_mm, doc.height_mm) == pytest.approx(expected)

    def test_viewbox_only_uses_pixels(self):
        doc = parse_svg(make_svg("", "", view_box="0 0 96 192"), unit_mode=UnitMode.PX96)
        assert (doc.width_mm, doc.height_mm) == pytest.approx((25.4, 50.8))

    def test_single_axis_follows_viewbox_aspect(self):
        doc = parse_svg(make_svg("100mm", "", view_box="0 0 200 100"))
        assert (doc.width_mm, doc.height_mm) == pytest.approx((100.0, 50.0))

    def test_percent_size_is_treated_as_undeclared(self):
        doc = parse_svg(make_svg("100%", "100%", view_box="0 0 96 48"), unit_mode=UnitMode.PX96)
        assert (doc.width_mm, doc.height_mm) == pytest.approx((25.4, 12.7))

    def test_no_size_raises(self):
        with pytest.raises(SVGParseError):
            parse_svg(make_svg("", ""))

    def test_zero_size_raises(self):
        with pytest.raises(SVGParseError):
            parse_svg(make_svg("0mm", "10mm"))

    def test_unitless_tie_break_is_configurable(self):
        content = make_svg("100", "100", view_box="0 0 200 200")
        prefer_dims = parse_svg(content, unit_mode=UnitMode.PX96)
        prefer_vb = parse_svg(
            content, unit_mode=UnitMode.PX96, unitless_policy=UnitlessPolicy.PREFER_VIEWBOX
        )

        assert prefer_dims.width_mm == pytest.approx(100 * 25.4 / 96)
        assert prefer_vb.width_mm == pytest.approx(200 * 25.4 / 96)

    def test_resolve_size_direct(self):
        assert resolve_size("50mm", "20mm", None, 96.0) == pytest.approx((50.0, 20.0))


class TestUnitModeDetection:
    """AUTO resolution and re-parsing under another mode."""

    def test_auto_defaults_to_96(self):
        doc = parse_svg(make_svg("96", "96"))
        assert doc.units_per_inch == 96.0
        assert doc.width_mm == pytest.approx(25.4)

    def test_auto_detects_illustrator(self):
        content = (
            '<?xml version="1.0" encoding="utf-8"?>\n'
            "<!-- Generator: Adobe Illustrator 27.0.0, SVG Export Plug-In -->\n"
            '<svg xmlns="http://www.w3.org/2000/svg" width="72px" height="144px" viewBox="0 0 72 144"/>'
        )
        doc = parse_svg(content, "ai.svg")
        assert doc.units_per_inch == 72.0
        assert (doc.width_mm, doc.height_mm) == pytest.approx((25.4, 50.8))

    def test_illustrator_entities_are_inlined(self):
        content = (
            '<?xml version="1.0" encoding="utf-8"?>\n'
            '<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" '
            '"http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd" [\n'
            '  <!ENTITY ns_svg "http://www.w3.org/2000/svg">\n'
            "]>\n"
            '<svg xmlns="&ns_svg;" width="10mm" height="20mm">'
            '<rect x="0" y="0" width="5" height="5"/></svg>'
        )
        doc = parse_svg(content)
        assert (doc.width_mm, doc.height_mm) == pytest.approx((10.0, 20.0))
        assert len(doc.shapes) == 1

    def test_reparse_returns_independent_document(self):
        content = make_svg("96", "96", '<rect width="48" height="48"/>')
        doc96 = parse_svg(content, unit_mode=UnitMode.PX96)
        doc72 = parse_svg(content, unit_mode=UnitMode.PX72)

        assert doc96.original_content == doc72.original_content == content
        assert doc96.width_mm == pytest.approx(25.4)
        assert doc72.width_mm == pytest.approx(96 * 25.4 / 72)
        assert doc96.shapes[0].geometry.bounds[2] == pytest.approx(12.7)
        assert doc72.shapes[0].geometry.bounds[2] == pytest.approx(48 * 25.4 / 72)


class TestParseErrors:
    """Input errors are reported as SVGParseError / UnsupportedFileError."""

    def test_empty_content(self):
        with pytest.raises(SVGParseError):
            parse_svg("   ")

    def test_not_xml(self):
        with pytest.raises(SVGParseError):
            parse_svg("this is not an svg")

    def test_wrong_root(self):
        with pytest.raises(SVGParseError, match="<svg>"):
            parse_svg("<html><body/></html>")

    def test_load_rejects_non_svg(self, tmp_path):
        path = tmp_path / "design.png"
        path.write_text("x", encoding="utf-8")
        with pytest.raises(UnsupportedFileError):
            load_svg_file(path)

    def test_load_svg_file(self, tmp_path, wide_svg):
        path = tmp_path / "wide.SVG"
        path.write_text(wide_svg, encoding="utf-8")
        doc = load_svg_file(path)
        assert doc.file_name == "wide.SVG"
        assert doc.width_mm == pytest.approx(620.0)


class TestGeometryExtraction:
    """Elements become shapes in document mm."""

    def test_rect_bounds_and_style(self, wide_document):
        assert len(wide_document.shapes) == 1
        shape = wide_document.shapes[0]
        assert shape.shape_id == "bar"
        assert shape.closed
        assert shape.stroke == "#ff0000"
        assert shape.stroke_width_mm == pytest.approx(0.5)
        assert shape.geometry.bounds == pytest.approx((10.0, 20.0, 610.0, 120.0))

    def test_group_transform_is_applied(self):
        body = '<g transform="translate(10,5)"><rect width="10" height="10"/></g>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        assert doc.shapes[0].geometry.bounds == pytest.approx((10.0, 5.0, 20.0, 15.0))

    def test_chained_transforms(self):
        body = '<rect width="10" height="10" transform="translate(20 0) scale(2)"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        assert doc.shapes[0].geometry.bounds == pytest.approx((20.0, 0.0, 40.0, 20.0))

    def test_rotate_about_point(self):
        body = '<rect x="0" y="0" width="10" height="2" transform="rotate(90 0 0)"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        assert doc.shapes[0].geometry.bounds == pytest.approx((-2.0, 0.0, 0.0, 10.0), abs=1e-9)

    def test_viewbox_scaling(self):
        body = '<rect width="50" height="50"/>'
        doc = parse_svg(make_svg("200mm", "200mm", body, view_box="0 0 100 100"))
        assert doc.shapes[0].geometry.bounds == pytest.approx((0.0, 0.0, 100.0, 100.0))

    def test_preserve_aspect_ratio_meet_centers(self):
        body = '<rect width="100" height="100"/>'
        doc = parse_svg(make_svg("200mm", "100mm", body, view_box="0 0 100 100"))
        assert doc.shapes[0].geometry.bounds == pytest.approx((50.0, 0.0, 150.0, 100.0))

    def test_preserve_aspect_ratio_none_stretches(self):
        body = '<rect width="100" height="100"/>'
        content = make_svg(
            "200mm", "100mm", body, view_box="0 0 100 100", extra=' preserveAspectRatio="none"'
        )
        doc = parse_svg(content)
        assert doc.shapes[0].geometry.bounds == pytest.approx((0.0, 0.0, 200.0, 100.0))

    def test_circle_is_flattened(self):
        body = '<circle cx="50" cy="50" r="10"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        area = doc.shapes[0].geometry.area
        assert area == pytest.approx(math.pi * 100, rel=0.01)

    def test_cubic_path_is_flattened(self):
        body = '<path d="M0,0 C0,50 100,50 100,0 Z"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        geometry = doc.shapes[0].geometry
        assert geometry.bounds[3] == pytest.approx(37.5, abs=0.1)
        assert len(geometry.exterior.coords) > 10

    def test_hole_uses_even_odd(self):
        body = '<path d="M0,0 H40 V40 H0 Z M10,10 H30 V30 H10 Z"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        assert doc.shapes[0].geometry.area == pytest.approx(1600 - 400)

    def test_line_becomes_open_shape(self):
        body = '<line x1="0" y1="0" x2="10" y2="0" stroke="#000"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        shape = doc.shapes[0]
        assert not shape.closed
        assert isinstance(shape.geometry, LineString)
        assert shape.geometry.length == pytest.approx(10.0)

    def test_display_none_is_skipped(self):
        body = '<rect id="hidden" style="display:none" width="5" height="5"/><rect id="shown" width="5" height="5"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        assert [s.shape_id for s in doc.shapes] == ["shown"]

    def test_bad_path_data_is_skipped(self):
        body = '<path id="bad" d="M 0 0 L 10"/><rect id="ok" width="5" height="5"/>'
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        assert [s.shape_id for s in doc.shapes] == ["ok"]

    def test_opaque_elements_are_passed_through(self):
        body = (
            '<defs><linearGradient id="g"/></defs>'
            '<g transform="translate(5,5)"><text x="1" y="2">Hello</text></g>'
        )
        doc = parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100"))
        tags = {item.tag: item for item in doc.passthrough}
        assert set(tags) == {"defs", "text"}
        assert tags["defs"].matrix is None
        assert tags["text"].matrix == pytest.approx((1.0, 0.0, 0.0, 1.0, 5.0, 5.0))
        assert tags["text"].element.text == "Hello"


XLINK = ' xmlns:xlink="http://www.w3.org/1999/xlink"'


def _mm_doc(body: str, extra: str = ""):
    return parse_svg(make_svg("100mm", "100mm", body, view_box="0 0 100 100", extra=extra))


class TestReferencesAndFootprints:
    """<use> instancing and the placement of non-geometric content."""

    def test_use_of_defs_path_becomes_shapes(self):
        doc = _mm_doc(
            '<defs><path id="p" d="M0,0 H10 V10 H0 Z"/></defs>'
            '<use href="#p" x="20" y="5"/>'
            '<use xlink:href="#p" x="40" y="5" transform="scale(2)"/>'
            '<use id="third" href="#p"/>',
            extra=XLINK,
        )

        assert [shape.shape_id for shape in doc.shapes] == ["p-1", "p-2", "third"]
        assert doc.shapes[0].geometry.bounds == pytest.approx((20.0, 5.0, 30.0, 15.0))
        assert doc.shapes[1].geometry.bounds == pytest.approx((80.0, 10.0, 100.0, 30.0))
        assert doc.shapes[2].geometry.bounds == pytest.approx((0.0, 0.0, 10.0, 10.0))
        assert [item.tag for item in doc.passthrough] == ["defs"]

    def test_use_of_group_inherits_style(self):
        doc = _mm_doc(
            '<defs><g id="grp"><rect width="10" height="10"/></g></defs>'
            '<use href="#grp" x="50" y="50" fill="#00ff00"/>'
        )

        assert len(doc.shapes) == 1
        assert doc.shapes[0].fill == "#00ff00"
        assert doc.shapes[0].geometry.bounds == pytest.approx((50.0, 50.0, 60.0, 60.0))

    def test_recursive_use_terminates(self):
        doc = _mm_doc(
            '<defs><g id="loop"><rect width="5" height="5"/>'
            '<use href="#loop" x="10"/></g></defs>'
            '<use href="#loop"/>'
        )

        assert len(doc.shapes) == 1
        assert doc.shapes[0].geometry.bounds == pytest.approx((0.0, 0.0, 5.0, 5.0))

    def test_unresolved_use_is_passthrough(self):
        doc = _mm_doc(
            '<use id="ext" href="parts.svg#a" x="5" y="5" width="10" height="10"/>'
            '<use id="gone" href="#missing"/>'
        )

        assert doc.shapes == ()
        by_id = {item.element_id: item for item in doc.passthrough}
        assert by_id["ext"].bounds == pytest.approx((5.0, 5.0, 15.0, 15.0))
        assert by_id["gone"].bounds is None

    def test_text_footprint(self):
        doc = _mm_doc(
            '<text id="left" x="10" y="50" font-size="10">Name</text>'
            '<text id="mid" x="10" y="50" font-size="10" text-anchor="middle">Name</text>'
        )

        by_id = {item.element_id: item for item in doc.passthrough}
        assert by_id["left"].bounds == pytest.approx((10.0, 40.0, 34.0, 52.5))
        assert by_id["mid"].bounds == pytest.approx((-2.0, 40.0, 22.0, 52.5))

    def test_image_footprint(self):
        doc = _mm_doc('<image x="10" y="20" width="30" height="40" href="photo.png"/>')

        assert len(doc.passthrough) == 1
        item = doc.passthrough[0]
        assert item.element_id == "image-1"
        assert item.bounds == pytest.approx((10.0, 20.0, 40.0, 60.0))

    def test_editor_elements_are_skipped(self):
        sodipodi = ' xmlns:sodipodi="http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd"'
        doc = _mm_doc(
            '<sodipodi:namedview id="base" pagecolor="#ffffff"/>'
            '<rect id="r" width="10" height="10"/>',
            extra=sodipodi,
        )

        assert doc.passthrough == ()
        assert [shape.shape_id for shape in doc.shapes] == ["r"]


class TestScaleDocument:
    """Output-size scaling of a parsed document."""

    def test_scales_passthrough_footprint(self):
        doc = _mm_doc('<image x="10" y="20" width="30" height="40" href="photo.png"/>')
        scaled = scale_document(doc, 50.0, 200.0, lock_aspect=False)

        assert scaled.passthrough[0].bounds == pytest.approx((5.0, 40.0, 20.0, 120.0))

    def test_lock_aspect(self, wide_document):
        scaled = scale_document(wide_document, width_mm=310.0)
        assert (scaled.width_mm, scaled.height_mm) == pytest.approx((310.0, 75.0))
        assert scaled.shapes[0].geometry.bounds == pytest.approx((5.0, 10.0, 305.0, 60.0))
        assert wide_document.width_mm == pytest.approx(620.0)

    def test_free_aspect(self, wide_document):
        scaled = scale_document(wide_document, 620.0, 300.0, lock_aspect=False)
        assert (scaled.width_mm, scaled.height_mm) == pytest.approx((620.0, 300.0))
        assert scaled.shapes[0].geometry.bounds == pytest.approx((10.0, 40.0, 610.0, 240.0))

    def test_rejects_non_positive(self, wide_document):
        with pytest.raises(ValueError):
            scale_document(wide_document, 0.0, 10.0, lock_aspect=False)

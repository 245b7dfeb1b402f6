"""Tests for the Shapely-backed geometry clipper."""
import pytest
from shapely.geometry import LineString, Polygon, box

from panel_splitter.clipper import ShapelyClipper


@pytest.fixture
def clipper():
    return ShapelyClipper()


class TestIntersect:
    def test_polygon_is_trimmed(self, clipper):
        result = clipper.intersect(box(10, 20, 610, 120), (0, 0, 290, 190))
        assert result.bounds == pytest.approx((10, 20, 290, 120))

    def test_line_is_trimmed(self, clipper):
        result = clipper.intersect(LineString([(0, 5), (100, 5)]), (20, 0, 50, 10))
        assert result.geom_type == "LineString"
        assert result.length == pytest.approx(30.0)

    def test_edge_touch_leaves_no_debris(self, clipper):
        result = clipper.intersect(box(0, 0, 10, 10), (10, 0, 20, 10))
        assert result.is_empty

    def test_split_polygon_stays_polygonal(self, clipper):
        u_shape = Polygon([(0, 0), (30, 0), (30, 30), (20, 30), (20, 10), (10, 10), (10, 30), (0, 30)])
        result = clipper.intersect(u_shape, (0, 20, 30, 40))
        assert result.geom_type == "MultiPolygon"
        assert result.area == pytest.approx(200.0)

    def test_invalid_polygon_is_repaired(self, clipper):
        bowtie = Polygon([(0, 0), (10, 10), (10, 0), (0, 10)])
        result = clipper.intersect(bowtie, (0, 0, 10, 10))
        assert result.area == pytest.approx(50.0)
        assert result.geom_type in ("Polygon", "MultiPolygon")


class TestSimplifyAndExpand:
    def test_simplify_zero_is_identity(self, clipper):
        geometry = box(0, 0, 1, 1)
        assert clipper.simplify(geometry, 0.0) is geometry

    def test_simplify_drops_near_collinear_points(self, clipper):
        wobbly = LineString([(0, 0), (5, 0.01), (10, 0)])
        assert len(clipper.simplify(wobbly, 0.1).coords) == 2

    def test_expand_line(self, clipper):
        outline = clipper.expand_stroke(LineString([(0, 0), (10, 0)]), 2.0)
        assert outline.area == pytest.approx(20.0)

    def test_expand_polygon_outlines_its_boundary(self, clipper):
        outline = clipper.expand_stroke(box(0, 0, 10, 10), 1.0)
        assert outline.area == pytest.approx(11 * 11 - 9 * 9)
        assert not outline.contains(box(4, 4, 6, 6))

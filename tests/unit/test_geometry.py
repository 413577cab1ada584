"""Unit tests for the geometry module."""

import pytest

from sankeyroute.geometry import (
    chord_normal,
    curvature_from_control_points,
    detect_collisions,
    distance_point_to_segment,
    evaluate_bezier,
    sample_bezier,
    sample_segments,
    samples_bounds,
    segment_intersection,
)
from sankeyroute.models import Bounds, Point, SamplePoint

CURVE = [Point(0.1, 0.2), Point(0.4, 0.9), Point(0.6, -0.3), Point(0.9, 0.7)]


class TestEvaluateBezier:
    """Tests for cubic evaluation."""

    def test_endpoints(self):
        """B(0) is P0 and B(1) is P3."""
        start = evaluate_bezier(*CURVE, 0)
        end = evaluate_bezier(*CURVE, 1)
        assert (start.x, start.y) == pytest.approx((0.1, 0.2), abs=1e-6)
        assert (end.x, end.y) == pytest.approx((0.9, 0.7), abs=1e-6)

    def test_midpoint(self):
        """Symmetric arch peaks at three quarters of the handle height."""
        point = evaluate_bezier(Point(0, 0), Point(0, 1), Point(1, 1), Point(1, 0), 0.5)
        assert point.x == pytest.approx(0.5)
        assert point.y == pytest.approx(0.75)

    def test_clamps_parameter(self):
        """Parameters outside [0, 1] return the endpoints."""
        assert evaluate_bezier(*CURVE, -0.5) == CURVE[0]
        assert evaluate_bezier(*CURVE, 2.0) == CURVE[3]


class TestSampling:
    """Tests for curve sampling."""

    def test_sample_count_and_parameters(self):
        """N intervals give N+1 evenly spaced samples."""
        samples = sample_bezier(CURVE, 20)
        assert len(samples) == 21
        assert samples[0].t == 0
        assert samples[10].t == pytest.approx(0.5)
        assert samples[-1].t == 1

    def test_samples_include_endpoints(self):
        """First and last samples sit on the attachment points."""
        samples = sample_bezier(CURVE, 5)
        assert (samples[0].x, samples[0].y) == (0.1, 0.2)
        assert (samples[-1].x, samples[-1].y) == (0.9, 0.7)

    def test_two_segments(self):
        """Multi-segment sampling shares the junction and uses a global t."""
        first = [Point(0, 0), Point(0.1, 0), Point(0.4, 0.5), Point(0.5, 0.5)]
        second = [Point(0.5, 0.5), Point(0.6, 0.5), Point(0.9, 1), Point(1, 1)]
        samples = sample_segments([first, second], 20)
        assert len(samples) == 21
        junction = samples[10]
        assert junction.t == pytest.approx(0.5)
        assert (junction.x, junction.y) == (0.5, 0.5)
        assert samples[-1].t == pytest.approx(1.0)

    def test_no_segments(self):
        """An empty path has no samples."""
        assert sample_segments([], 10) == []

    def test_samples_bounds(self):
        """Extent of a sample set."""
        box = samples_bounds([SamplePoint(0.1, 0.5, 0), SamplePoint(0.3, 0.2, 1)])
        assert box == Bounds(left=0.1, right=0.3, top=0.2, bottom=0.5)
        assert samples_bounds([]) is None


class TestDetectCollisions:
    """Tests for collision detection."""

    def test_sample_inside_box(self, blocking_box):
        """The sample at the box centre is reported."""
        sample = SamplePoint(0.5, 0.4, 0.5)
        assert detect_collisions([sample], blocking_box) == [sample]

    def test_only_inside_samples_reported(self, blocking_box):
        """Samples outside or on the edge are ignored."""
        samples = [
            SamplePoint(0.3, 0.4, 0.0),
            SamplePoint(0.48, 0.4, 0.25),
            SamplePoint(0.5, 0.4, 0.5),
            SamplePoint(0.7, 0.4, 1.0),
        ]
        assert detect_collisions(samples, blocking_box) == [samples[2]]

    def test_margin(self, blocking_box):
        """A margin widens the box."""
        sample = SamplePoint(0.475, 0.4, 0.3)
        assert detect_collisions([sample], blocking_box) == []
        assert detect_collisions([sample], blocking_box, margin=0.01) == [sample]


class TestCurveMeasures:
    """Tests for distance, curvature and normal helpers."""

    def test_distance_to_segment(self):
        """Distances to the interior and past the ends."""
        start, end = Point(0, 0), Point(1, 0)
        assert distance_point_to_segment(Point(0.5, 0.3), start, end) == pytest.approx(0.3)
        assert distance_point_to_segment(Point(2, 0), start, end) == pytest.approx(1.0)
        assert distance_point_to_segment(Point(0, 1), start, start) == pytest.approx(1.0)

    def test_straight_curve_has_no_curvature(self):
        """Control points on the chord give zero curvature."""
        points = [Point(0, 0), Point(0.3, 0), Point(0.6, 0), Point(1, 0)]
        assert curvature_from_control_points(points) == 0

    def test_curvature_relative_to_chord(self):
        """Deviation is measured against chord length."""
        points = [Point(0, 0), Point(0.3, 0.2), Point(0.6, 0), Point(1, 0)]
        assert curvature_from_control_points(points) == pytest.approx(0.2)

    def test_degenerate_chord(self):
        """A zero-length chord has zero curvature."""
        points = [Point(0.5, 0.5), Point(0.6, 0.1), Point(0.4, 0.1), Point(0.5, 0.5)]
        assert curvature_from_control_points(points) == 0

    def test_chord_normal(self):
        """The normal of a rightward chord points down the y axis."""
        assert chord_normal(Point(0, 0), Point(1, 0)) == pytest.approx((0, 1))
        assert chord_normal(Point(0, 0), Point(0, 1)) == pytest.approx((-1, 0))
        assert chord_normal(Point(0.3, 0.3), Point(0.3, 0.3)) == (0.0, 1.0)


class TestSegmentIntersection:
    """Tests for segment intersection."""

    def test_crossing_segments(self):
        """Diagonals of the unit square meet in the middle."""
        hit = segment_intersection(
            SamplePoint(0, 0, 0), SamplePoint(1, 1, 1), SamplePoint(0, 1, 0), SamplePoint(1, 0, 1)
        )
        assert hit == pytest.approx((0.5, 0.5, 0.5, 0.5))

    def test_parallel_segments(self):
        """Parallel segments never intersect."""
        hit = segment_intersection(
            SamplePoint(0, 0, 0), SamplePoint(1, 0, 1), SamplePoint(0, 1, 0), SamplePoint(1, 1, 1)
        )
        assert hit is None

    def test_disjoint_segments(self):
        """Lines that would meet outside the segments do not intersect."""
        hit = segment_intersection(
            SamplePoint(0, 0, 0), SamplePoint(0.2, 0.2, 1), SamplePoint(0, 1, 0), SamplePoint(1, 0, 1)
        )
        assert hit is None

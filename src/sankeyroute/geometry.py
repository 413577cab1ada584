"""
Curve geometry for link routing.

Pure functions over Points and Bounds:
- Cubic Bézier evaluation and sampling (single and multi-segment paths)
- Collision detection between sampled curves and node boxes
- Curvature estimation from control points
- Segment intersection
"""

import math
from typing import List, Optional, Sequence, Tuple

from .models import Bounds, Point, SamplePoint


def evaluate_bezier(p0: Point, p1: Point, p2: Point, p3: Point, t: float) -> Point:
    """
    Evaluate a cubic Bézier curve at parameter t.

    B(t) = (1-t)^3 P0 + 3(1-t)^2 t P1 + 3(1-t) t^2 P2 + t^3 P3

    Args:
        p0, p1, p2, p3: Control points.
        t: Curve parameter in [0, 1].

    Returns:
        The point on the curve. B(0) is P0 and B(1) is P3 exactly.
    """
    if t <= 0.0:
        return Point(p0.x, p0.y)
    if t >= 1.0:
        return Point(p3.x, p3.y)

    u = 1.0 - t
    uu = u * u
    tt = t * t
    a = uu * u
    b = 3 * uu * t
    c = 3 * u * tt
    d = tt * t
    return Point(
        a * p0.x + b * p1.x + c * p2.x + d * p3.x,
        a * p0.y + b * p1.y + c * p2.y + d * p3.y,
    )


def sample_bezier(control_points: Sequence[Point], num_samples: int) -> List[SamplePoint]:
    """
    Sample a cubic Bézier curve at evenly spaced t values.

    Args:
        control_points: [P0, P1, P2, P3].
        num_samples: Number of intervals; num_samples + 1 points are returned.

    Returns:
        Sample points from t=0 to t=1 inclusive.
    """
    p0, p1, p2, p3 = control_points
    num_samples = max(1, num_samples)
    samples = []
    for i in range(num_samples + 1):
        t = i / num_samples
        point = evaluate_bezier(p0, p1, p2, p3, t)
        samples.append(SamplePoint(point.x, point.y, t))
    return samples


def sample_segments(
    segments: Sequence[Sequence[Point]], num_samples: int
) -> List[SamplePoint]:
    """
    Sample a path made of joined cubic segments.

    Each sample's t is global over the whole path, so a two-segment path has
    its junction at t=0.5.

    Args:
        segments: List of [P0, P1, P2, P3] cubic segments, end-to-start joined.
        num_samples: Total number of intervals over the whole path.

    Returns:
        Sample points, without duplicates at segment junctions.
    """
    if not segments:
        return []
    if len(segments) == 1:
        return sample_bezier(segments[0], num_samples)

    count = len(segments)
    per_segment = max(1, math.ceil(num_samples / count))
    samples: List[SamplePoint] = []
    for seg_idx, segment in enumerate(segments):
        local = sample_bezier(segment, per_segment)
        if seg_idx > 0:
            local = local[1:]  # Junction already emitted by previous segment
        for sample in local:
            samples.append(
                SamplePoint(sample.x, sample.y, (seg_idx + sample.t) / count)
            )
    return samples


def detect_collisions(
    samples: Sequence[SamplePoint], bounds: Bounds, margin: float = 0.0
) -> List[SamplePoint]:
    """
    Return every sample strictly inside ``bounds`` grown by ``margin``.

    Args:
        samples: Sampled curve points.
        bounds: Obstacle box.
        margin: Extra clearance around the box.

    Returns:
        Colliding samples in curve order.
    """
    box = bounds.expanded(margin) if margin else bounds
    return [sample for sample in samples if box.contains(sample.x, sample.y)]


def distance_point_to_segment(point: Point, start: Point, end: Point) -> float:
    """Distance from ``point`` to the segment [start, end]."""
    ax = point.x - start.x
    ay = point.y - start.y
    cx = end.x - start.x
    cy = end.y - start.y

    length_sq = cx * cx + cy * cy
    if length_sq == 0:
        return math.hypot(ax, ay)

    param = (ax * cx + ay * cy) / length_sq
    if param < 0:
        nearest_x, nearest_y = start.x, start.y
    elif param > 1:
        nearest_x, nearest_y = end.x, end.y
    else:
        nearest_x = start.x + param * cx
        nearest_y = start.y + param * cy

    return math.hypot(point.x - nearest_x, point.y - nearest_y)


def curvature_from_control_points(control_points: Sequence[Point]) -> float:
    """
    Relative curvature of a cubic: max control-point deviation over chord length.

    Returns 0 for a degenerate (zero-length) chord.
    """
    p0, p1, p2, p3 = control_points
    chord = math.hypot(p3.x - p0.x, p3.y - p0.y)
    if chord == 0:
        return 0.0
    deviation = max(
        distance_point_to_segment(p1, p0, p3),
        distance_point_to_segment(p2, p0, p3),
    )
    return deviation / chord


def chord_normal(start: Point, end: Point) -> Tuple[float, float]:
    """
    Unit vector perpendicular to the chord start -> end.

    Falls back to straight down (0, 1) for a zero-length chord.
    """
    dx = end.x - start.x
    dy = end.y - start.y
    length = math.hypot(dx, dy)
    if length == 0:
        return (0.0, 1.0)
    return (-dy / length, dx / length)


def samples_bounds(samples: Sequence[SamplePoint]) -> Optional[Bounds]:
    """Bounding box of a sample sequence, or None if empty."""
    if not samples:
        return None
    xs = [s.x for s in samples]
    ys = [s.y for s in samples]
    return Bounds(left=min(xs), right=max(xs), top=min(ys), bottom=max(ys))


def segment_intersection(
    p1: SamplePoint, p2: SamplePoint, p3: SamplePoint, p4: SamplePoint
) -> Optional[Tuple[float, float, float, float]]:
    """
    Intersect segments [p1, p2] and [p3, p4].

    Returns:
        (x, y, t1, t2) where t1/t2 are the local parameters on each segment,
        or None if the segments are parallel or do not meet.
    """
    denom = (p1.x - p2.x) * (p3.y - p4.y) - (p1.y - p2.y) * (p3.x - p4.x)
    if abs(denom) < 1e-10:
        return None

    t = ((p1.x - p3.x) * (p3.y - p4.y) - (p1.y - p3.y) * (p3.x - p4.x)) / denom
    u = -((p1.x - p2.x) * (p1.y - p3.y) - (p1.y - p2.y) * (p1.x - p3.x)) / denom

    if 0 <= t <= 1 and 0 <= u <= 1:
        return (p1.x + t * (p2.x - p1.x), p1.y + t * (p2.y - p1.y), t, u)
    return None


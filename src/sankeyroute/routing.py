"""
Route calculation for Sankey links.

Computes one curved path per link:
- Attachment points on the right edge of the source box and the left edge of
  the target box
- Cubic Bézier control points scaled by curvature and node roles
- Iterative collision resolution against unrelated node boxes
- SVG path commands and a dense polyline for the rendering surface

Strategies form a closed set selected by RoutingAlgorithm.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import RoutingAlgorithm, RoutingConfig
from .errors import UnknownAlgorithmError
from .geometry import (
    curvature_from_control_points,
    detect_collisions,
    sample_bezier,
    sample_segments,
    samples_bounds,
)
from .hierarchy import classify_flow, extract_flow_value, flow_priority
from .models import (
    Bounds,
    HierarchyEntry,
    Link,
    Node,
    PathDescriptor,
    Point,
    RenderPath,
    Route,
    RoutingDescriptor,
    SamplePoint,
    as_link,
    as_node,
)

logger = logging.getLogger(__name__)

# =============================================================================
# ROUTING CONFIGURATION - Adjust these values to tune curve shapes
# =============================================================================

# --- Control point placement (normalized diagram units) ---

# Smallest horizontal span used to place control points, so vertical or
# backward links still bulge out of their nodes
MIN_HORIZONTAL_SPAN = 0.05

# Links with a chord shorter than this are flattened
SHORT_HOP_DISTANCE = 0.15
SHORT_HOP_FACTOR = 0.7

# --- Curvature multipliers by node role ---

HUB_CURVATURE = 1.3
TRANSFORMATION_TO_DISTRIBUTION_CURVATURE = 1.2
SOURCE_TO_TRANSFORMATION_CURVATURE = 0.7
INTO_TRANSFORMATION_CURVATURE = 0.9

# Arc routes use a fraction of the configured curvature
ARC_CURVATURE_FACTOR = 0.6

# --- Collision resolution ---

# Hard cap on resolution iterations regardless of max_iterations
MAX_COLLISION_CHECKS = 100

# Clearance around node boxes during resolution
NODE_MARGIN = 0.01

# Fraction of the obstacle height a control point moves per iteration
AVOIDANCE_PUSH_FACTOR = 0.8

# --- Rendering ---

RENDERER_CONFIG: Dict[str, Any] = {
    "type": "scatter",
    "mode": "lines",
    "line": {"shape": "spline", "smoothing": 1.3},
    "hoverinfo": "none",
    "showlegend": False,
}


def role_multiplier(source_role: str, target_role: str) -> float:
    """Curvature multiplier for a link between nodes of the given roles."""
    if source_role == "hub" or target_role == "hub":
        return HUB_CURVATURE
    if source_role == "transformation" and target_role == "distribution":
        return TRANSFORMATION_TO_DISTRIBUTION_CURVATURE
    if source_role == "source" and target_role == "transformation":
        return SOURCE_TO_TRANSFORMATION_CURVATURE
    if target_role == "transformation":
        return INTO_TRANSFORMATION_CURVATURE
    return 1.0


def horizontal_control_points(start: Point, end: Point, fraction: float) -> List[Point]:
    """
    Control points leaving ``start`` rightwards and entering ``end`` from the left.

    The handles extend ``fraction`` of the horizontal span.
    """
    span = max(abs(end.x - start.x), MIN_HORIZONTAL_SPAN)
    offset = span * fraction
    return [
        Point(start.x, start.y),
        Point(start.x + offset, start.y),
        Point(end.x - offset, end.y),
        Point(end.x, end.y),
    ]


def curvature_fraction(
    start: Point,
    end: Point,
    source_role: str,
    target_role: str,
    config: RoutingConfig,
) -> float:
    """Curvature fraction of a link after role and distance adjustments."""
    fraction = config.curvature * role_multiplier(source_role, target_role)
    if math.hypot(end.x - start.x, end.y - start.y) < SHORT_HOP_DISTANCE:
        fraction *= SHORT_HOP_FACTOR
    if config.adaptive_curvature:
        fraction = min(max(fraction, config.min_curvature), config.max_curvature)
    return fraction


def push_direction(hits: Sequence[SamplePoint], box: Bounds) -> int:
    """-1 to move up (curve crosses the upper half of ``box``), else 1."""
    mean_y = sum(hit.y for hit in hits) / len(hits)
    return -1 if mean_y <= box.center_y else 1


@dataclass
class RouteContext:
    """Everything a strategy needs to shape one link."""

    start: Point
    end: Point
    source_role: str = "unknown"
    target_role: str = "unknown"
    obstacles: List[Bounds] = field(default_factory=list)
    config: RoutingConfig = field(default_factory=RoutingConfig)

    @property
    def resolution_limit(self) -> int:
        return min(self.config.max_iterations, MAX_COLLISION_CHECKS)


class RoutingStrategy:
    """Base class for routing strategies."""

    algorithm: RoutingAlgorithm
    path_type = "bezier"

    def build(self, context: RouteContext) -> PathDescriptor:
        raise NotImplementedError


class BezierStrategy(RoutingStrategy):
    """Single cubic with role-aware curvature and collision resolution."""

    algorithm = RoutingAlgorithm.BEZIER_OPTIMIZED
    path_type = "bezier"

    def build(self, context: RouteContext) -> PathDescriptor:
        fraction = curvature_fraction(
            context.start, context.end, context.source_role, context.target_role, context.config
        )
        points = horizontal_control_points(context.start, context.end, fraction)
        if context.config.smart_avoidance and context.obstacles:
            points = self.resolve_collisions(points, context)
        return PathDescriptor(
            type=self.path_type,
            control_points=points,
            curvature=curvature_from_control_points(points),
            segments=[points],
        )

    def resolve_collisions(self, points: List[Point], context: RouteContext) -> List[Point]:
        """
        Push the interior control points away from obstacles the curve crosses.

        Each iteration moves P1 and P2 away from the first obstacle hit, by a
        push that decays with avoidance_decay. Stops when the curve is clear.
        """
        config = context.config
        p0, p1, p2, p3 = points
        for iteration in range(context.resolution_limit):
            samples = sample_bezier([p0, p1, p2, p3], config.sample_points)
            moved = False
            for box in context.obstacles:
                hits = detect_collisions(samples, box, NODE_MARGIN)
                if not hits:
                    continue
                push = (
                    (box.height + 2 * NODE_MARGIN)
                    * AVOIDANCE_PUSH_FACTOR
                    * config.avoidance_strength
                    * config.avoidance_decay ** iteration
                )
                if push <= 0:
                    continue
                dy = push_direction(hits, box) * push
                p1 = Point(p1.x, p1.y + dy)
                p2 = Point(p2.x, p2.y + dy)
                moved = True
                break
            if not moved:
                break
        return [p0, p1, p2, p3]


class SplineStrategy(RoutingStrategy):
    """
    Two cubic segments joined with C1 continuity at the chord midpoint.

    Each half spans half the horizontal distance, so individual segments bend
    less than the single-cubic route.
    """

    algorithm = RoutingAlgorithm.SPLINE_SMOOTH
    path_type = "spline"

    def build(self, context: RouteContext) -> PathDescriptor:
        start, end = context.start, context.end
        fraction = curvature_fraction(
            start, end, context.source_role, context.target_role, context.config
        )
        middle = Point((start.x + end.x) / 2, (start.y + end.y) / 2)
        first = horizontal_control_points(start, middle, fraction)
        second = horizontal_control_points(middle, end, fraction)

        if context.config.smart_avoidance and context.obstacles:
            first, second = self.resolve_collisions(first, second, context)

        control_points = [first[0], first[1], second[2], second[3]]
        return PathDescriptor(
            type=self.path_type,
            control_points=control_points,
            curvature=max(
                curvature_from_control_points(first),
                curvature_from_control_points(second),
            ),
            segments=[first, second],
        )

    def resolve_collisions(self, first, second, context: RouteContext):
        """Move the junction and both of its handles together, keeping C1."""
        config = context.config
        for iteration in range(context.resolution_limit):
            samples = sample_segments([first, second], config.sample_points)
            dy = 0.0
            for box in context.obstacles:
                hits = detect_collisions(samples, box, NODE_MARGIN)
                if hits:
                    dy = (
                        push_direction(hits, box)
                        * (box.height + 2 * NODE_MARGIN)
                        * AVOIDANCE_PUSH_FACTOR
                        * config.avoidance_strength
                        * config.avoidance_decay ** iteration
                    )
                    if dy:
                        break
            if not dy:
                break
            first = first[:2] + [Point(p.x, p.y + dy) for p in first[2:]]
            second = [Point(p.x, p.y + dy) for p in second[:2]] + second[2:]
        return first, second


class ArcStrategy(RoutingStrategy):
    """Gentle single cubic without collision work."""

    algorithm = RoutingAlgorithm.ARC_MINIMAL
    path_type = "arc"

    def build(self, context: RouteContext) -> PathDescriptor:
        config = context.config
        fraction = max(config.curvature * ARC_CURVATURE_FACTOR, config.min_curvature)
        points = horizontal_control_points(context.start, context.end, fraction)
        return PathDescriptor(
            type=self.path_type,
            control_points=points,
            curvature=curvature_from_control_points(points),
            segments=[points],
        )


class StraightStrategy(RoutingStrategy):
    """Control points on the chord; used for default routes."""

    algorithm = RoutingAlgorithm.STRAIGHT
    path_type = "line"

    def build(self, context: RouteContext) -> PathDescriptor:
        start, end = context.start, context.end
        dx = end.x - start.x
        dy = end.y - start.y
        points = [
            Point(start.x, start.y),
            Point(start.x + dx / 3, start.y + dy / 3),
            Point(start.x + 2 * dx / 3, start.y + 2 * dy / 3),
            Point(end.x, end.y),
        ]
        return PathDescriptor(
            type=self.path_type, control_points=points, curvature=0.0, segments=[points]
        )


STRATEGIES: Dict[RoutingAlgorithm, type] = {
    RoutingAlgorithm.BEZIER_OPTIMIZED: BezierStrategy,
    RoutingAlgorithm.SPLINE_SMOOTH: SplineStrategy,
    RoutingAlgorithm.ARC_MINIMAL: ArcStrategy,
    RoutingAlgorithm.STRAIGHT: StraightStrategy,
}


def offset_path(
    path: PathDescriptor,
    first_offset: Tuple[float, float],
    second_offset: Tuple[float, float],
) -> PathDescriptor:
    """
    Copy of ``path`` with P1 and P2 moved by (dx, dy) offsets.

    For multi-segment paths P1 is the first handle of the first segment and P2
    the last handle of the last segment. Attachment points never move.
    """

    def moved(point: Point, offset: Tuple[float, float]) -> Point:
        return Point(point.x + offset[0], point.y + offset[1])

    control_points = list(path.control_points)
    control_points[1] = moved(control_points[1], first_offset)
    control_points[2] = moved(control_points[2], second_offset)

    segments = [list(segment) for segment in (path.segments or [path.control_points])]
    segments[0][1] = moved(segments[0][1], first_offset)
    segments[-1][2] = moved(segments[-1][2], second_offset)

    return PathDescriptor(
        type=path.type,
        control_points=control_points,
        curvature=max(curvature_from_control_points(s) for s in segments),
        segments=segments,
    )


def format_svg_path(segments: Sequence[Sequence[Point]]) -> str:
    """SVG path commands: one move followed by one cubic command per segment."""
    if not segments:
        return ""
    start = segments[0][0]
    commands = [f"M {start.x:.4f} {start.y:.4f}"]
    for _, c1, c2, end in segments:
        commands.append(
            f"C {c1.x:.4f} {c1.y:.4f} {c2.x:.4f} {c2.y:.4f} {end.x:.4f} {end.y:.4f}"
        )
    return " ".join(commands)


class RouteCalculator:
    """
    Computes routes for individual links.

    Example:
        >>> calculator = RouteCalculator()
        >>> route = calculator.calculate_route(link, source, target, hierarchy, 0)
        >>> route.render.svg_path
        'M 0.2150 0.3000 C ...'
    """

    def __init__(self, config: Optional[RoutingConfig] = None):
        """
        Initialize the calculator.

        Args:
            config: Default configuration; a pass may override it per call.
        """
        self.config = config or RoutingConfig()
        self.strategies: Dict[RoutingAlgorithm, RoutingStrategy] = {
            algorithm: strategy_cls() for algorithm, strategy_cls in STRATEGIES.items()
        }

    def get_strategy(self, algorithm: Union[str, RoutingAlgorithm]) -> RoutingStrategy:
        """
        Look up the strategy for ``algorithm``.

        Raises:
            UnknownAlgorithmError: If the name is not a RoutingAlgorithm value.
        """
        if isinstance(algorithm, RoutingAlgorithm):
            return self.strategies[algorithm]
        try:
            return self.strategies[RoutingAlgorithm(algorithm)]
        except ValueError:
            raise UnknownAlgorithmError(algorithm, RoutingAlgorithm.names()) from None

    def select_algorithm(
        self, config: Optional[RoutingConfig] = None
    ) -> Union[str, RoutingAlgorithm]:
        """Strategy of a call without override: arcs in fast mode, else the configured one."""
        config = config or self.config
        if config.performance_mode == "fast":
            return RoutingAlgorithm.ARC_MINIMAL
        return config.routing_algorithm

    def calculate_control_points(
        self,
        start: Point,
        end: Point,
        source_role: str = "unknown",
        target_role: str = "unknown",
        config: Optional[RoutingConfig] = None,
    ) -> List[Point]:
        """
        Control points of the unobstructed cubic between two attachment points.

        Args:
            start: Source attachment point (P0).
            end: Target attachment point (P3).
            source_role: Role of the source node.
            target_role: Role of the target node.
            config: Configuration; defaults to the calculator's.

        Returns:
            [P0, P1, P2, P3] with P0 == start and P3 == end.
        """
        config = config or self.config
        fraction = curvature_fraction(start, end, source_role, target_role, config)
        return horizontal_control_points(start, end, fraction)

    def build_render_path(
        self, path: PathDescriptor, config: Optional[RoutingConfig] = None
    ) -> RenderPath:
        """Turn a path into SVG commands, a dense polyline and renderer settings."""
        config = config or self.config
        segments = path.segments or [path.control_points]
        samples = sample_segments(segments, config.render_samples)
        renderer_config = dict(RENDERER_CONFIG)
        renderer_config["line"] = dict(RENDERER_CONFIG["line"])
        return RenderPath(
            svg_path=format_svg_path(segments),
            x=[s.x for s in samples],
            y=[s.y for s in samples],
            renderer_config=renderer_config,
        )

    def reshape_route(
        self, route: Route, path: PathDescriptor, config: Optional[RoutingConfig] = None
    ) -> Route:
        """Copy of ``route`` carrying ``path`` and a render payload rebuilt for it."""
        return replace(route, path=path, render=self.build_render_path(path, config))

    def calculate_route(
        self,
        link: Any,
        source_node: Any,
        target_node: Any,
        hierarchy: Optional[Dict[int, HierarchyEntry]],
        link_index: int,
        algorithm: Optional[Union[str, RoutingAlgorithm]] = None,
        config: Optional[RoutingConfig] = None,
        fallback: bool = False,
    ) -> Route:
        """
        Route one link.

        Args:
            link: Link or link dict.
            source_node: Source Node or dict.
            target_node: Target Node or dict.
            hierarchy: Hierarchy from NodeHierarchyMapper, may be empty.
            link_index: Position of the link in its pass; part of the route id.
            algorithm: Strategy override; defaults to select_algorithm(config).
            config: Configuration override for this call.
            fallback: Mark the route as a fallback substitute.

        Returns:
            The computed Route.

        Raises:
            UnknownAlgorithmError: If ``algorithm`` names no known strategy.
        """
        config = config or self.config
        strategy = self.get_strategy(algorithm or self.select_algorithm(config))
        link = as_link(link)
        source_node = as_node(source_node)
        target_node = as_node(target_node)
        hierarchy = hierarchy or {}

        source_entry = hierarchy.get(link.source)
        target_entry = hierarchy.get(link.target)
        if hierarchy and (source_entry is None or target_entry is None):
            logger.warning(
                "Missing hierarchy data for link %d (%s -> %s); using defaults",
                link_index,
                link.source,
                link.target,
            )

        context = RouteContext(
            start=self._attachment(source_node, source_entry, side="right"),
            end=self._attachment(target_node, target_entry, side="left"),
            source_role=source_entry.role if source_entry else "unknown",
            target_role=target_entry.role if target_entry else "unknown",
            obstacles=[
                entry.bounds
                for index, entry in hierarchy.items()
                if index not in (link.source, link.target) and entry.bounds is not None
            ],
            config=config,
        )
        path = strategy.build(context)
        return self.assemble_route(link, link_index, path, context, strategy, fallback)

    def assemble_route(
        self,
        link: Link,
        link_index: int,
        path: PathDescriptor,
        context: RouteContext,
        strategy: RoutingStrategy,
        fallback: bool = False,
    ) -> Route:
        """Attach routing metadata and the render payload to a computed path."""
        config = context.config
        samples = sample_segments(path.segments or [path.control_points], config.sample_points)
        collisions = sum(
            len(detect_collisions(samples, box)) for box in context.obstacles
        )

        zones: List[Bounds] = []
        extent = samples_bounds(samples)
        if extent is not None:
            reach = extent.expanded(config.avoidance_radius)
            zones = [box for box in context.obstacles if reach.intersects(box)]

        value = extract_flow_value(link)
        return Route(
            id=f"link_{link_index}_{link.source}_{link.target}",
            source_index=link.source,
            target_index=link.target,
            path=path,
            render=self.build_render_path(path, config),
            routing=RoutingDescriptor(
                priority=flow_priority(value, config.flow_priorities),
                flow_type=classify_flow(value),
                avoidance_zones=zones,
                collisions=collisions,
                algorithm=strategy.algorithm.value,
                fallback=fallback,
            ),
            value=value,
            color=link.color,
            customdata=link.customdata,
        )

    def calculate_routes(
        self,
        links: Sequence[Any],
        nodes: Sequence[Any],
        hierarchy: Optional[Dict[int, HierarchyEntry]],
        algorithm: Optional[Union[str, RoutingAlgorithm]] = None,
        config: Optional[RoutingConfig] = None,
    ) -> List[Route]:
        """Route every link in input order."""
        node_list = [as_node(node) for node in nodes or []]
        routes = []
        for link_index, link in enumerate(links or []):
            link = as_link(link)
            routes.append(
                self.calculate_route(
                    link,
                    self.node_at(node_list, link.source),
                    self.node_at(node_list, link.target),
                    hierarchy,
                    link_index,
                    algorithm=algorithm,
                    config=config,
                )
            )
        return routes

    def default_route(
        self,
        link: Any,
        source_node: Any,
        target_node: Any,
        hierarchy: Optional[Dict[int, HierarchyEntry]],
        link_index: int,
        config: Optional[RoutingConfig] = None,
        fallback: bool = True,
    ) -> Route:
        """Straight route used when routing is disabled or a link fails."""
        return self.calculate_route(
            link,
            source_node,
            target_node,
            hierarchy,
            link_index,
            algorithm=RoutingAlgorithm.STRAIGHT,
            config=config,
            fallback=fallback,
        )

    @staticmethod
    def node_at(nodes: Sequence[Node], index: int) -> Node:
        """Node at ``index``, or a placeholder at the origin."""
        if 0 <= index < len(nodes):
            return nodes[index]
        return Node(index=index)

    @staticmethod
    def _attachment(node: Node, entry: Optional[HierarchyEntry], side: str) -> Point:
        bounds = entry.bounds if entry and entry.bounds else node.get_bounds()
        y = entry.position.y if entry else node.y
        return Point(bounds.right if side == "right" else bounds.left, y)


def create_calculator(
    config: Optional[RoutingConfig] = None,
    algorithm: Optional[Union[str, RoutingAlgorithm]] = None,
) -> RouteCalculator:
    """
    Factory function to create a route calculator.

    Args:
        config: Configuration; defaults to RoutingConfig().
        algorithm: Default strategy; validated immediately.

    Returns:
        Configured RouteCalculator.

    Raises:
        UnknownAlgorithmError: If ``algorithm`` is not a known strategy.
    """
    config = config or RoutingConfig()
    if algorithm is not None:
        if not isinstance(algorithm, RoutingAlgorithm):
            try:
                algorithm = RoutingAlgorithm(algorithm)
            except ValueError:
                raise UnknownAlgorithmError(algorithm, RoutingAlgorithm.names()) from None
        config = config.with_values({"routing_algorithm": algorithm.value})
    return RouteCalculator(config)

"""
Data models for link routing.

This module contains the dataclasses shared by the hierarchy mapper, the route
calculator and the routing manager. Input models (Node, Link) describe what an
external layout stage hands over; derived models (HierarchyEntry, Route)
describe what this package computes for a single render pass.

All coordinates are normalized to the diagram area, so node positions and
bounds fall in [0, 1] on both axes.

Classes:
    Point: A 2D point.
    SamplePoint: A point sampled on a curve, carrying its curve parameter t.
    Bounds: Axis-aligned bounding box of a node.
    Node: A positioned diagram node.
    Link: A directed flow between two nodes.
    FlowDescriptor: Classified flow leaving or entering a node.
    Centrality: Centrality scores of a node.
    HierarchyEntry: Structural analysis of a single node.
    PathDescriptor: Geometric description of a routed path.
    RenderPath: Render-ready payload of a routed path.
    RoutingDescriptor: Routing metadata (priority, flow type, avoidance zones).
    Route: A routed link.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Node size estimate used when the layout stage supplies no bounds
BASE_NODE_WIDTH = 0.03
BASE_NODE_HEIGHT = 0.05

# Stroke widths handed to the rendering surface, scaled by route priority
MIN_STROKE_WIDTH = 1.0
MAX_STROKE_WIDTH = 6.0

DEFAULT_LINK_COLOR = "rgba(128, 128, 128, 0.5)"


@dataclass
class Point:
    """A point in normalized diagram coordinates."""

    x: float
    y: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass
class SamplePoint:
    """A point sampled from a curve at parameter t."""

    x: float
    y: float
    t: float


@dataclass
class Bounds:
    """
    Axis-aligned bounding box.

    The y axis grows downwards, so ``top`` is the smaller y value.
    """

    left: float
    right: float
    top: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_x(self) -> float:
        return (self.left + self.right) / 2

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2

    def contains(self, x: float, y: float) -> bool:
        """Return True if (x, y) lies strictly inside the box."""
        return self.left < x < self.right and self.top < y < self.bottom

    def expanded(self, margin: float) -> "Bounds":
        """Return a copy grown by ``margin`` on every side."""
        return Bounds(
            left=self.left - margin,
            right=self.right + margin,
            top=self.top - margin,
            bottom=self.bottom + margin,
        )

    def intersects(self, other: "Bounds") -> bool:
        """Return True if the two boxes overlap (touching edges do not count)."""
        return not (
            other.left >= self.right
            or other.right <= self.left
            or other.top >= self.bottom
            or other.bottom <= self.top
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "left": self.left,
            "right": self.right,
            "top": self.top,
            "bottom": self.bottom,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Bounds":
        return cls(
            left=float(data["left"]),
            right=float(data["right"]),
            top=float(data["top"]),
            bottom=float(data["bottom"]),
        )

    @classmethod
    def around(cls, x: float, y: float, width: float, height: float) -> "Bounds":
        """Build a box of the given size centred on (x, y)."""
        return cls(
            left=x - width / 2,
            right=x + width / 2,
            top=y - height / 2,
            bottom=y + height / 2,
        )


def estimate_node_bounds(x: float, y: float, value: float = 0.0) -> Bounds:
    """
    Estimate a node's box when the layout stage did not supply one.

    Larger nodes (by value) get a wider and taller box, capped at three times
    the base growth.

    Args:
        x: Node centre x.
        y: Node centre y.
        value: Node magnitude, if known.

    Returns:
        Estimated Bounds centred on (x, y).
    """
    width_multiplier = 1.0
    height_multiplier = 1.0
    if value and value > 0:
        normalized = min(value / 1000, 3)
        width_multiplier = 1 + normalized * 0.5
        height_multiplier = 1 + normalized * 0.3

    return Bounds.around(
        x, y, BASE_NODE_WIDTH * width_multiplier, BASE_NODE_HEIGHT * height_multiplier
    )


@dataclass
class Node:
    """
    A positioned node supplied by the layout stage.

    Attributes:
        index: Position of the node in the node list (None if not supplied).
        name: Display label, possibly with markup and a magnitude suffix.
        x: Normalized x coordinate of the node centre.
        y: Normalized y coordinate of the node centre.
        bounds: Rendered bounding box, if the layout stage knows it.
        value: Node magnitude, used to estimate bounds.
    """

    index: Optional[int] = None
    name: Optional[str] = None
    x: float = 0.0
    y: float = 0.0
    bounds: Optional[Bounds] = None
    value: float = 0.0

    def get_bounds(self) -> Bounds:
        """Return the supplied bounds, or an estimate."""
        if self.bounds is not None:
            return self.bounds
        return estimate_node_bounds(self.x, self.y, self.value)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        """
        Build a Node from a loosely-typed mapping.

        Missing or null coordinates default to 0; a missing index stays None so
        the caller can fall back to the node's list position.
        """
        bounds = data.get("bounds")
        index = data.get("index")
        return cls(
            index=int(index) if index is not None else None,
            name=data.get("name"),
            x=float(data.get("x") or 0.0),
            y=float(data.get("y") or 0.0),
            bounds=Bounds.from_dict(bounds) if bounds else None,
            value=float(data.get("value") or 0.0),
        )


@dataclass
class Link:
    """
    A directed flow between two nodes.

    Attributes:
        source: Index of the source node.
        target: Index of the target node.
        value: Flow magnitude (may be scaled for display).
        color: Optional display color.
        customdata: Optional annotation, e.g. "Petróleo: 1.234,5 PJ".
    """

    source: int
    target: int
    value: float = 0.0
    color: Optional[str] = None
    customdata: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Link":
        return cls(
            source=int(data["source"]),
            target=int(data["target"]),
            value=float(data.get("value") or 0.0),
            color=data.get("color"),
            customdata=data.get("customdata"),
        )


def as_node(item: Any) -> Node:
    """Accept either a Node or a mapping."""
    if isinstance(item, Node):
        return item
    if item is None:
        return Node()
    return Node.from_dict(item)


def as_link(item: Any) -> Link:
    """Accept either a Link or a mapping."""
    if isinstance(item, Link):
        return item
    return Link.from_dict(item)


@dataclass
class FlowDescriptor:
    """
    A classified flow attached to a hierarchy entry.

    For outgoing flows ``node_index`` is the target; for incoming flows it is
    the source.
    """

    node_index: int
    type: str
    value: float
    priority: float
    color: Optional[str] = None

    @property
    def target_index(self) -> int:
        return self.node_index


@dataclass
class Centrality:
    """Centrality scores of a node, each in [0, 1]."""

    degree: float = 0.0
    flow: float = 0.0
    betweenness: float = 0.0

    @property
    def overall(self) -> float:
        return (self.degree + self.flow + self.betweenness) / 3


@dataclass
class HierarchyEntry:
    """
    Structural analysis of one node.

    Attributes:
        index: Node index.
        name: Cleaned name used for classification.
        original_name: Name as supplied (or the synthesized placeholder).
        role: One of source, hub, transformation, consumption, distribution,
            unknown.
        parents: Distinct source indices of incoming links, in link order.
        children: Distinct target indices of outgoing links, in link order.
        outgoing_flows: Classified outgoing flows, highest priority first.
        incoming_flows: Classified incoming flows, highest priority first.
        centrality: Centrality scores.
        column: Logical column, floor(x * 5).
        position: Node centre.
        bounds: Node box (supplied or estimated).
        total_flow: Sum of incident link magnitudes.
        bottleneck_score: Heuristic bottleneck score in [0, 1].
    """

    index: int
    name: str
    original_name: str
    role: str = "unknown"
    parents: List[int] = field(default_factory=list)
    children: List[int] = field(default_factory=list)
    outgoing_flows: List[FlowDescriptor] = field(default_factory=list)
    incoming_flows: List[FlowDescriptor] = field(default_factory=list)
    centrality: Centrality = field(default_factory=Centrality)
    column: int = 0
    position: Point = field(default_factory=lambda: Point(0.0, 0.0))
    bounds: Optional[Bounds] = None
    total_flow: float = 0.0
    bottleneck_score: float = 0.0

    @property
    def in_degree(self) -> int:
        return len(self.incoming_flows)

    @property
    def out_degree(self) -> int:
        return len(self.outgoing_flows)

    @property
    def is_bottleneck(self) -> bool:
        return self.bottleneck_score > 0.7

    def flow_to(self, target_index: int) -> Optional[FlowDescriptor]:
        """Return the highest-priority outgoing flow towards ``target_index``."""
        for flow in self.outgoing_flows:
            if flow.node_index == target_index:
                return flow
        return None


@dataclass
class PathDescriptor:
    """
    Geometry of a routed path.

    Attributes:
        type: bezier, spline, arc or line.
        control_points: The four cubic control points [P0, P1, P2, P3].
            P0 and P3 are the attachment points.
        curvature: Maximum deviation of P1/P2 from the chord, relative to the
            chord length.
        segments: Cubic segments actually drawn. A single-segment path has
            ``segments == [control_points]``.
    """

    type: str
    control_points: List[Point]
    curvature: float = 0.0
    segments: List[List[Point]] = field(default_factory=list)


@dataclass
class RenderPath:
    """Render-ready payload: path commands plus a discretized polyline."""

    svg_path: str
    x: List[float] = field(default_factory=list)
    y: List[float] = field(default_factory=list)
    renderer_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RoutingDescriptor:
    """
    Routing metadata of a route.

    Attributes:
        priority: Routing priority in [0, 1].
        flow_type: primary, secondary, transformation or distribution.
        avoidance_zones: Obstacle boxes the path was asked to avoid.
        collisions: Sample points still inside an obstacle after resolution.
        algorithm: Name of the strategy that produced the route.
        fallback: True if the route was substituted by the fallback path.
    """

    priority: float = 0.5
    flow_type: str = "distribution"
    avoidance_zones: List[Bounds] = field(default_factory=list)
    collisions: int = 0
    algorithm: str = ""
    fallback: bool = False


@dataclass
class Route:
    """A routed link for one render pass."""

    id: str
    source_index: int
    target_index: int
    path: PathDescriptor
    render: RenderPath
    routing: RoutingDescriptor
    value: float = 0.0
    color: Optional[str] = None
    customdata: Optional[str] = None

    @property
    def stroke_width(self) -> float:
        """Stroke width derived from routing priority."""
        priority = max(0.0, min(self.routing.priority, 1.0))
        return MIN_STROKE_WIDTH + priority * (MAX_STROKE_WIDTH - MIN_STROKE_WIDTH)

    def to_surface(self) -> Dict[str, Any]:
        """
        Build the object handed to the rendering surface.

        Returns:
            Dict with svgPath, x, y, rendererConfig, color and width.
        """
        renderer_config = dict(self.render.renderer_config)
        line = dict(renderer_config.get("line", {}))
        line["width"] = self.stroke_width
        line["color"] = self.color or DEFAULT_LINK_COLOR
        renderer_config["line"] = line

        return {
            "id": self.id,
            "svgPath": self.render.svg_path,
            "x": list(self.render.x),
            "y": list(self.render.y),
            "rendererConfig": renderer_config,
            "color": self.color or DEFAULT_LINK_COLOR,
            "width": self.stroke_width,
            "flowType": self.routing.flow_type,
            "priority": self.routing.priority,
        }

"""
sankeyroute - Curved link routing for Sankey energy-flow diagrams

Computes smooth, collision-aware paths for the links of a Sankey diagram whose
nodes are already laid out in columns, and classifies nodes and flows to drive
styling and routing priority.

Example:
    >>> import asyncio
    >>> from sankeyroute import LinkRoutingManager
    >>> manager = LinkRoutingManager()
    >>> routes = asyncio.run(manager.calculate_routes(links, nodes))
    >>> routes[0].to_surface()["svgPath"]
    'M 0.2150 0.3000 C ...'

Debug Mode Example:
    >>> routes = asyncio.run(manager.calculate_routes(links, nodes, debug=True))
    >>> print(manager.get_trace().summary())
"""

import logging

from .config import (
    FIELD_SPECS,
    VISUAL_QUALITY_PRESETS,
    ConfigUpdateResult,
    RoutingAlgorithm,
    RoutingConfig,
    validate_config,
)
from .crossings import Crossing, detect_crossings, resolve_crossings
from .errors import RoutingError, UnknownAlgorithmError
from .geometry import detect_collisions, evaluate_bezier, sample_bezier
from .graph import FlowGraph, create_graph
from .hierarchy import (
    HierarchyCache,
    NodeHierarchyMapper,
    classify_flow,
    clean_node_name,
    extract_flow_value,
    flow_priority,
)
from .manager import LinkRoutingManager, PerformanceMetrics
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
)
from .routing import RouteCalculator, create_calculator
from .tracer import LinkDecision, PipelineStage, RoutingTrace

__version__ = "1.0.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Main API
    "LinkRoutingManager",
    "NodeHierarchyMapper",
    "RouteCalculator",
    "create_calculator",
    # Configuration
    "RoutingConfig",
    "RoutingAlgorithm",
    "ConfigUpdateResult",
    "FIELD_SPECS",
    "VISUAL_QUALITY_PRESETS",
    "validate_config",
    # Models
    "Point",
    "SamplePoint",
    "Bounds",
    "Node",
    "Link",
    "HierarchyEntry",
    "PathDescriptor",
    "RenderPath",
    "RoutingDescriptor",
    "Route",
    # Hierarchy helpers
    "HierarchyCache",
    "clean_node_name",
    "extract_flow_value",
    "classify_flow",
    "flow_priority",
    # Geometry
    "evaluate_bezier",
    "sample_bezier",
    "detect_collisions",
    # Graph
    "FlowGraph",
    "create_graph",
    # Crossings
    "Crossing",
    "detect_crossings",
    "resolve_crossings",
    # Errors
    "RoutingError",
    "UnknownAlgorithmError",
    # Monitoring and tracing
    "PerformanceMetrics",
    "RoutingTrace",
    "PipelineStage",
    "LinkDecision",
]

"""
Routing manager.

Orchestrates a routing pass over a whole diagram:
- Hierarchy mapping (cached by the mapper)
- Base route per link, with a time budget that switches the remaining links
  to cheap fallback routes
- Separation of links sharing a source or target
- Crossing resolution in quality mode
- Performance monitoring, recommendations and automatic optimization

Also owns the runtime configuration surface (validated partial updates,
presets, import/export).
"""

import asyncio
import logging
import math
import time
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import (
    VISUAL_QUALITY_PRESETS,
    ConfigUpdateResult,
    RoutingAlgorithm,
    RoutingConfig,
    normalize_for_mode,
    split_config,
)
from .config import validate_config as validate_partial_config
from .crossings import crossing_counts, resolve_crossings
from .errors import UnknownAlgorithmError
from .geometry import chord_normal
from .hierarchy import NodeHierarchyMapper
from .models import HierarchyEntry, Link, Node, Route, as_link, as_node
from .routing import RouteCalculator, offset_path
from .tracer import RoutingTrace

logger = logging.getLogger(__name__)

# Inputs with more links than this yield to the event loop once per pass
YIELD_THRESHOLD = 50

# Consecutive fast passes before auto-optimization is undone
RESTORE_WINDOW = 5

# Number of pass durations kept for percentiles
HISTORY_SIZE = 100

# Smoothing factor of the average pass duration
EMA_ALPHA = 0.2

# Auto-optimization never lowers max_iterations below this
MIN_AUTO_ITERATIONS = 10

# Fraction of passes using fallback above which configuration is unstable
FALLBACK_RATIO_LIMIT = 0.2

EXPORT_FORMAT_VERSION = "1.0"


@dataclass
class PerformanceMetrics:
    """
    Timing statistics of published passes, in milliseconds.

    Attributes:
        total_calculations: Number of published passes
        last_calculation_time: Duration of the latest pass
        average_calculation_time: Exponential moving average of durations
        min_calculation_time: Shortest pass, None before the first pass
        max_calculation_time: Longest pass
        history: Last HISTORY_SIZE durations
        fallback_usage: Passes in which the time budget forced fallback routes
        last_fallback_reason: Reason of the latest fallback
        failed_routes: Links whose route computation raised
        auto_optimizations: Number of automatic configuration downgrades
    """

    total_calculations: int = 0
    last_calculation_time: float = 0.0
    average_calculation_time: float = 0.0
    min_calculation_time: Optional[float] = None
    max_calculation_time: float = 0.0
    history: Deque[float] = field(default_factory=lambda: deque(maxlen=HISTORY_SIZE))
    fallback_usage: int = 0
    last_fallback_reason: Optional[str] = None
    failed_routes: int = 0
    auto_optimizations: int = 0

    def record(self, duration: float) -> None:
        """Add the duration of one pass."""
        if self.total_calculations == 0:
            self.average_calculation_time = duration
        else:
            self.average_calculation_time = (
                EMA_ALPHA * duration + (1 - EMA_ALPHA) * self.average_calculation_time
            )
        self.total_calculations += 1
        self.last_calculation_time = duration
        if self.min_calculation_time is None or duration < self.min_calculation_time:
            self.min_calculation_time = duration
        self.max_calculation_time = max(self.max_calculation_time, duration)
        self.history.append(duration)

    def percentile(self, percent: float) -> float:
        """Nearest-rank percentile of the recorded history."""
        if not self.history:
            return 0.0
        ordered = sorted(self.history)
        rank = max(1, math.ceil(percent / 100 * len(ordered)))
        return ordered[rank - 1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calculations": self.total_calculations,
            "last_calculation_time": self.last_calculation_time,
            "average_calculation_time": self.average_calculation_time,
            "min_calculation_time": self.min_calculation_time,
            "max_calculation_time": self.max_calculation_time,
            "percentiles": {
                "p50": self.percentile(50),
                "p75": self.percentile(75),
                "p90": self.percentile(90),
                "p95": self.percentile(95),
            },
            "fallback_usage": self.fallback_usage,
            "last_fallback_reason": self.last_fallback_reason,
            "failed_routes": self.failed_routes,
            "auto_optimizations": self.auto_optimizations,
        }


class LinkRoutingManager:
    """
    Routes every link of a diagram and manages routing configuration.

    Example:
        >>> manager = LinkRoutingManager()
        >>> routes = asyncio.run(manager.calculate_routes(links, nodes))
        >>> [route.to_surface() for route in routes]
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        mapper: Optional[NodeHierarchyMapper] = None,
        calculator: Optional[RouteCalculator] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the manager.

        Args:
            config: RoutingConfig, or a partial mapping validated over defaults.
            mapper: Hierarchy mapper; a fresh NodeHierarchyMapper by default.
            calculator: Route calculator; built from the config by default.
            clock: Monotonic clock in seconds; time.perf_counter by default.
        """
        if isinstance(config, RoutingConfig):
            self.config = config.copy()
        else:
            self.config = normalize_for_mode(
                RoutingConfig().with_values(validate_partial_config(config))
            )
        self.mapper = mapper or NodeHierarchyMapper()
        self.calculator = calculator or RouteCalculator(self.config)
        self.calculator.config = self.config
        self.clock = clock or time.perf_counter

        self.current_routes: List[Route] = []
        self.last_hierarchy: Dict[int, HierarchyEntry] = {}
        self.metrics = PerformanceMetrics()

        self._pass_counter = 0
        self._latest_pass = 0
        self._trace: Optional[RoutingTrace] = None
        self._last_pass_overran = False
        self._iterations_before_optimization: Optional[int] = None
        self._fast_passes = 0

    # ------------------------------------------------------------------
    # Routing pass
    # ------------------------------------------------------------------

    async def calculate_routes(
        self, links: Sequence[Any], nodes: Sequence[Any], debug: bool = False
    ) -> List[Route]:
        """
        Route every link of a diagram.

        Args:
            links: Links (Link objects or dicts).
            nodes: Nodes (Node objects or dicts) in index order.
            debug: Record a RoutingTrace, readable with get_trace().

        Returns:
            One Route per input link, in input order. Only the most recent
            call publishes its routes to ``current_routes``.

        Raises:
            UnknownAlgorithmError: If the configured algorithm is unknown.
        """
        self._pass_counter += 1
        pass_id = self._pass_counter
        self._latest_pass = pass_id
        config = self.config.copy()
        start = self.clock()

        link_list = [as_link(link) for link in links or []]
        node_list = [as_node(node) for node in nodes or []]
        trace = RoutingTrace(pass_id, len(link_list), len(node_list)) if debug else None
        if trace:
            trace.add_stage("config", config.to_dict())

        if not config.enable_routing:
            routes = self._default_routes(link_list, node_list, config, trace)
            self._publish(pass_id, routes, {}, trace)
            return routes

        hierarchy = await self.mapper.map_hierarchy(
            node_list, link_list, config.flow_priorities
        )
        if trace:
            trace.add_stage(
                "hierarchy",
                {
                    "nodes": len(hierarchy),
                    "roles": dict(Counter(entry.role for entry in hierarchy.values())),
                },
            )
        if len(link_list) > YIELD_THRESHOLD:
            await asyncio.sleep(0)

        routes, fallback_reason = self._route_links(
            link_list, node_list, hierarchy, config, start, self.clock(), trace
        )
        if trace:
            trace.add_stage(
                "base_routes",
                {"routes": len(routes), "fallback_reason": fallback_reason},
            )

        routes = self.apply_separation(routes, config, trace)

        if config.performance_mode == "quality":
            if fallback_reason is None:
                routes, iterations = resolve_crossings(
                    routes,
                    self.calculator,
                    config,
                    deadline=start + config.max_calculation_time / 1000,
                    clock=self.clock,
                )
                if trace:
                    trace.add_stage("crossings", {"iterations": iterations})
            elif trace:
                trace.add_stage("crossings", {"iterations": 0, "skipped": "time_budget"})

        elapsed = (self.clock() - start) * 1000
        if pass_id != self._latest_pass:
            logger.debug(
                "Pass %d superseded by pass %d; routes not published",
                pass_id,
                self._latest_pass,
            )
            return routes

        self._record_pass(elapsed, fallback_reason, config)
        if trace:
            trace.add_stage("metrics", {"elapsed_ms": elapsed, **self.metrics.to_dict()})
        self._publish(pass_id, routes, hierarchy, trace)
        logger.debug("Pass %d routed %d links in %.1f ms", pass_id, len(routes), elapsed)
        return routes

    def _publish(
        self,
        pass_id: int,
        routes: List[Route],
        hierarchy: Dict[int, HierarchyEntry],
        trace: Optional[RoutingTrace],
    ) -> None:
        if pass_id != self._latest_pass:
            return
        self.current_routes = routes
        self.last_hierarchy = hierarchy
        if trace is not None:
            trace.decisions.sort(key=lambda d: d.link_index)
            self._trace = trace

    def _default_routes(
        self,
        links: List[Link],
        nodes: List[Node],
        config: RoutingConfig,
        trace: Optional[RoutingTrace],
    ) -> List[Route]:
        routes = []
        for link_index, link in enumerate(links):
            route = self.calculator.default_route(
                link,
                RouteCalculator.node_at(nodes, link.source),
                RouteCalculator.node_at(nodes, link.target),
                {},
                link_index,
                config=config,
                fallback=False,
            )
            routes.append(route)
            if trace:
                trace.add_decision(
                    link_index, route.id, route.routing.algorithm, False, "routing_disabled"
                )
        return routes

    def _route_links(
        self,
        links: List[Link],
        nodes: List[Node],
        hierarchy: Dict[int, HierarchyEntry],
        config: RoutingConfig,
        start: float,
        loop_start: float,
        trace: Optional[RoutingTrace],
    ) -> Tuple[List[Route], Optional[str]]:
        """
        Base route per link; returns (routes, fallback reason or None).

        The pass is projected from the elapsed time plus the average cost of
        the links routed so far, measured from ``loop_start``.
        """
        routes: List[Route] = []
        fallback_reason: Optional[str] = None
        budget = config.max_calculation_time

        for link_index, link in enumerate(links):
            source = RouteCalculator.node_at(nodes, link.source)
            target = RouteCalculator.node_at(nodes, link.target)

            if fallback_reason is None:
                now = self.clock()
                elapsed = (now - start) * 1000
                projected = elapsed
                if link_index:
                    per_link = (now - loop_start) * 1000 / link_index
                    projected += per_link * (len(links) - link_index)
                if elapsed > budget or projected > budget:
                    fallback_reason = (
                        f"time budget of {budget:g} ms exceeded "
                        f"(elapsed {elapsed:.1f} ms, projected {projected:.1f} ms)"
                    )
                    logger.warning(
                        "Routing %d remaining links with fallback routes: %s",
                        len(links) - link_index,
                        fallback_reason,
                    )

            if fallback_reason is not None:
                route = self.calculator.calculate_route(
                    link,
                    source,
                    target,
                    hierarchy,
                    link_index,
                    algorithm=RoutingAlgorithm.ARC_MINIMAL,
                    config=config,
                    fallback=True,
                )
                reason = "time_budget"
            else:
                try:
                    route = self.calculator.calculate_route(
                        link, source, target, hierarchy, link_index, config=config
                    )
                    reason = "computed"
                except UnknownAlgorithmError:
                    raise
                except Exception as exc:
                    logger.warning(
                        "Route for link %d failed (%s); using a straight route",
                        link_index,
                        exc,
                    )
                    self.metrics.failed_routes += 1
                    route = self.calculator.default_route(
                        link, source, target, hierarchy, link_index, config=config
                    )
                    reason = f"error: {exc}"

            routes.append(route)
            if trace:
                trace.add_decision(
                    link_index,
                    route.id,
                    route.routing.algorithm,
                    route.routing.fallback,
                    reason,
                    route.routing.collisions,
                )

        return routes, fallback_reason

    def apply_separation(
        self,
        routes: List[Route],
        config: Optional[RoutingConfig] = None,
        trace: Optional[RoutingTrace] = None,
    ) -> List[Route]:
        """
        Spread links that share a source or a target.

        P1 moves perpendicular to the chord according to the link's rank in
        its source group (ordered by target y), P2 according to its rank in
        its target group (ordered by source y). Links with a parallel sibling
        (same source and target) are spread further by group_separation.

        Returns:
            New list of routes; attachment points are unchanged.
        """
        config = config or self.config
        by_source: Dict[int, List[int]] = defaultdict(list)
        by_target: Dict[int, List[int]] = defaultdict(list)
        pair_counts: Counter = Counter()
        for position, route in enumerate(routes):
            by_source[route.source_index].append(position)
            by_target[route.target_index].append(position)
            pair_counts[(route.source_index, route.target_index)] += 1

        for group in by_source.values():
            group.sort(key=lambda p: (routes[p].path.control_points[3].y, p))
        for group in by_target.values():
            group.sort(key=lambda p: (routes[p].path.control_points[0].y, p))

        separated = list(routes)
        for position, route in enumerate(routes):
            spread = config.link_separation * config.separation_multiplier
            if pair_counts[(route.source_index, route.target_index)] > 1:
                spread *= 1 + config.group_separation

            source_group = by_source[route.source_index]
            target_group = by_target[route.target_index]
            first = spread * (source_group.index(position) - (len(source_group) - 1) / 2)
            second = spread * (target_group.index(position) - (len(target_group) - 1) / 2)
            if first == 0 and second == 0:
                continue

            nx, ny = chord_normal(route.path.control_points[0], route.path.control_points[3])
            path = offset_path(route.path, (nx * first, ny * first), (nx * second, ny * second))
            separated[position] = self.calculator.reshape_route(route, path, config)
            if trace:
                trace.record_offset(position, first, second)

        if trace:
            trace.add_stage(
                "separation",
                {
                    "source_groups": sum(1 for g in by_source.values() if len(g) > 1),
                    "target_groups": sum(1 for g in by_target.values() if len(g) > 1),
                },
            )
        return separated

    # ------------------------------------------------------------------
    # Monitoring and auto-optimization
    # ------------------------------------------------------------------

    def _record_pass(
        self, elapsed: float, fallback_reason: Optional[str], config: RoutingConfig
    ) -> None:
        self.metrics.record(elapsed)
        if fallback_reason is not None:
            self.metrics.fallback_usage += 1
            self.metrics.last_fallback_reason = fallback_reason
        self._last_pass_overran = (
            fallback_reason is not None or elapsed > config.max_calculation_time
        )
        if self.config.auto_optimization:
            self._auto_optimize(elapsed)

    def _auto_optimize(self, elapsed: float) -> None:
        threshold = self.config.fallback_threshold
        current = self.config.max_iterations

        if elapsed > 0.8 * threshold:
            self._fast_passes = 0
            if self._iterations_before_optimization is None:
                self._iterations_before_optimization = current

            severity = elapsed / threshold
            floor = min(current, MIN_AUTO_ITERATIONS)
            if severity > 1.5:
                updates = {"performance_mode": "fast", "max_iterations": max(floor, current // 2)}
            elif severity > 1.2:
                config = self.config
                # One curvature step down, never below min_curvature
                floor_curvature = min(config.curvature, config.min_curvature)
                updates = {
                    "adaptive_curvature": False,
                    "curvature": max(floor_curvature, config.curvature - config.curvature_step),
                    "max_iterations": max(floor, int(current * 0.75)),
                }
            else:
                updates = {"max_iterations": max(floor, current - 5)}

            self._set_config(normalize_for_mode(self.config.with_values(updates)))
            self.metrics.auto_optimizations += 1
            logger.warning(
                "Pass took %.1f ms (severity %.2f); auto-optimized configuration: %s",
                elapsed,
                severity,
                updates,
            )
            return

        restorable = (
            self._iterations_before_optimization is not None
            and self.config.performance_mode in ("balanced", "quality")
        )
        if restorable and elapsed < 0.25 * threshold:
            self._fast_passes += 1
            if self._fast_passes >= RESTORE_WINDOW:
                restored = self._iterations_before_optimization
                self._set_config(
                    normalize_for_mode(self.config.with_values({"max_iterations": restored}))
                )
                self._iterations_before_optimization = None
                self._fast_passes = 0
                logger.info("Restored max_iterations to %d", restored)
        else:
            self._fast_passes = 0

    def get_recommendations(self) -> List[str]:
        """Configuration advice derived from recent passes."""
        metrics = self.metrics
        if metrics.total_calculations == 0:
            return []

        recommendations = []
        limit = 0.8 * self.config.fallback_threshold
        if (
            metrics.last_calculation_time > limit
            or metrics.average_calculation_time > limit
        ):
            recommendations.append(
                "Routing time is close to the fallback threshold: "
                "reduce visual quality or max_iterations"
            )
        if metrics.fallback_usage / metrics.total_calculations > FALLBACK_RATIO_LIMIT:
            recommendations.append(
                "Fallback routes are used frequently: stabilise the configuration "
                "or raise max_calculation_time"
            )
        if self._last_pass_overran:
            recommendations.append(
                "The last pass overran max_calculation_time: switch to fast performance mode"
            )
        return recommendations

    def get_performance_metrics(self) -> Dict[str, Any]:
        """Timing statistics plus recommendations."""
        metrics = self.metrics.to_dict()
        metrics["recommendations"] = self.get_recommendations()
        return metrics

    def get_hierarchy_stats(self) -> Dict[str, Any]:
        return self.mapper.get_hierarchy_stats()

    def get_routing_quality_metrics(self) -> Dict[str, Any]:
        """Shape statistics of the currently published routes."""
        routes = self.current_routes
        if not routes:
            return {
                "route_count": 0,
                "average_curvature": 0.0,
                "max_curvature": 0.0,
                "total_collisions": 0,
                "routes_with_collisions": 0,
                "fallback_routes": 0,
                "crossings": 0,
                "routes_with_crossings": 0,
                "algorithms": {},
            }

        curvatures = [route.path.curvature for route in routes]
        metrics = {
            "route_count": len(routes),
            "average_curvature": sum(curvatures) / len(curvatures),
            "max_curvature": max(curvatures),
            "total_collisions": sum(route.routing.collisions for route in routes),
            "routes_with_collisions": sum(1 for r in routes if r.routing.collisions),
            "fallback_routes": sum(1 for r in routes if r.routing.fallback),
            "algorithms": dict(Counter(r.routing.algorithm for r in routes)),
        }
        metrics.update(crossing_counts(routes, self.config.sample_points))
        return metrics

    def get_trace(self) -> Optional[RoutingTrace]:
        """Trace of the latest published debug pass, if any."""
        return self._trace

    # ------------------------------------------------------------------
    # Configuration surface
    # ------------------------------------------------------------------

    def _set_config(self, config: RoutingConfig) -> None:
        self.config = config
        self.calculator.config = config

    def validate_config(self, partial: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Valid fields of ``partial`` with snake_case keys; nothing is applied."""
        return validate_partial_config(partial)

    def update_config(self, partial: Optional[Mapping[str, Any]]) -> ConfigUpdateResult:
        """
        Apply the valid fields of a partial configuration.

        Invalid fields are dropped and reported; valid ones are applied
        together. Changing performance_mode also bounds max_iterations and
        max_calculation_time.
        """
        accepted, rejected = split_config(partial)
        if rejected:
            logger.warning("Rejected configuration values: %s", ", ".join(rejected))

        config = self.config.with_values(accepted)
        if "performance_mode" in accepted:
            config = normalize_for_mode(config)
        updated = config != self.config
        self._set_config(config)
        return ConfigUpdateResult(updated=updated, accepted=accepted, rejected=rejected)

    def update_multiple_config_params(
        self, partial: Optional[Mapping[str, Any]]
    ) -> ConfigUpdateResult:
        return self.update_config(partial)

    def update_curvature(
        self,
        curvature: float,
        min_curvature: Optional[float] = None,
        max_curvature: Optional[float] = None,
        curvature_step: Optional[float] = None,
    ) -> ConfigUpdateResult:
        return self.update_config(
            _present(
                curvature=curvature,
                min_curvature=min_curvature,
                max_curvature=max_curvature,
                curvature_step=curvature_step,
            )
        )

    def update_separation(
        self,
        link_separation: float,
        group_separation: Optional[float] = None,
        separation_multiplier: Optional[float] = None,
    ) -> ConfigUpdateResult:
        return self.update_config(
            _present(
                link_separation=link_separation,
                group_separation=group_separation,
                separation_multiplier=separation_multiplier,
            )
        )

    def update_avoidance(
        self,
        avoidance_radius: float,
        avoidance_strength: Optional[float] = None,
        avoidance_decay: Optional[float] = None,
    ) -> ConfigUpdateResult:
        return self.update_config(
            _present(
                avoidance_radius=avoidance_radius,
                avoidance_strength=avoidance_strength,
                avoidance_decay=avoidance_decay,
            )
        )

    def set_visual_quality(self, level: str) -> ConfigUpdateResult:
        """Apply one of VISUAL_QUALITY_PRESETS (fast, balanced, high)."""
        preset = VISUAL_QUALITY_PRESETS.get(level)
        if preset is None:
            logger.warning("Unknown visual quality level: %r", level)
            return ConfigUpdateResult(updated=False, rejected=["visual_quality"])
        return self.update_config(preset)

    def set_adaptive_features(self, enabled: bool) -> ConfigUpdateResult:
        return self.update_config(
            {
                "adaptive_curvature": enabled,
                "smart_avoidance": enabled,
                "auto_optimization": enabled,
            }
        )

    def set_performance_quality_balance(self, ratio: float) -> ConfigUpdateResult:
        """
        Interpolate settings between speed (0) and quality (1).

        Ratios outside [0, 1] change nothing.
        """
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)) or not 0 <= ratio <= 1:
            logger.warning("Performance/quality balance must be in [0, 1], got %r", ratio)
            return ConfigUpdateResult(updated=False, rejected=["balance"])
        return self.update_config(
            {
                "max_iterations": int(20 + ratio * 80),
                "max_calculation_time": 200 + ratio * 800,
                "sample_points": int(10 + ratio * 30),
                "adaptive_curvature": ratio > 0.3,
                "smart_avoidance": ratio > 0.5,
            }
        )

    def reset_to_defaults(self) -> ConfigUpdateResult:
        """Restore the default configuration and drop cached hierarchies."""
        defaults = RoutingConfig()
        updated = defaults != self.config
        self._set_config(defaults)
        self._iterations_before_optimization = None
        self._fast_passes = 0
        self.mapper.clear_cache()
        return ConfigUpdateResult(updated=updated, accepted=defaults.to_dict())

    def export_configuration(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "metrics": self.get_performance_metrics(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": EXPORT_FORMAT_VERSION,
        }

    def import_configuration(self, data: Mapping[str, Any]) -> ConfigUpdateResult:
        """Apply an exported configuration (or a bare config mapping)."""
        config = data.get("config", data) if isinstance(data, Mapping) else None
        if not isinstance(config, Mapping):
            logger.warning("Ignoring configuration import without a config mapping")
            return ConfigUpdateResult(updated=False, rejected=["config"])
        return self.update_config(config)

    def clear_cache(self) -> None:
        self.mapper.clear_cache()

    def reset(self) -> None:
        """Forget routes, metrics, traces and cached hierarchies; keep config."""
        self.mapper.clear_cache()
        self.current_routes = []
        self.last_hierarchy = {}
        self.metrics = PerformanceMetrics()
        self._trace = None
        self._last_pass_overran = False
        self._iterations_before_optimization = None
        self._fast_passes = 0


def _present(**values: Any) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}

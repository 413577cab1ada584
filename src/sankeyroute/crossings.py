"""
Crossing detection and resolution between routed links.

Routes are compared as sampled polylines. Routes sharing a node meet at that
node's attachment point, so those pairs are never counted as crossing.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import RoutingConfig
from .geometry import sample_segments, samples_bounds, segment_intersection
from .models import Bounds, Route, SamplePoint
from .routing import RouteCalculator, offset_path

logger = logging.getLogger(__name__)


@dataclass
class Crossing:
    """First intersection found between two routes (by position in the pass)."""

    first: int
    second: int
    x: float
    y: float


def route_samples(route: Route, num_samples: int) -> List[SamplePoint]:
    return sample_segments(route.path.segments or [route.path.control_points], num_samples)


def _overlap(a: Optional[Bounds], b: Optional[Bounds]) -> bool:
    if a is None or b is None:
        return False
    return a.left <= b.right and b.left <= a.right and a.top <= b.bottom and b.top <= a.bottom


def _shares_node(a: Route, b: Route) -> bool:
    return bool({a.source_index, a.target_index} & {b.source_index, b.target_index})


def _first_intersection(
    first: Sequence[SamplePoint], second: Sequence[SamplePoint]
) -> Optional[Tuple[float, float]]:
    for i in range(len(first) - 1):
        for j in range(len(second) - 1):
            hit = segment_intersection(first[i], first[i + 1], second[j], second[j + 1])
            if hit is not None:
                return hit[0], hit[1]
    return None


class CrossingIndex:
    """Cached samples and extents of a list of routes."""

    def __init__(self, routes: Sequence[Route], num_samples: int):
        self.routes = list(routes)
        self.num_samples = num_samples
        self.samples = [route_samples(route, num_samples) for route in self.routes]
        self.extents = [samples_bounds(samples) for samples in self.samples]

    def replace(self, index: int, route: Route) -> None:
        self.routes[index] = route
        self.samples[index] = route_samples(route, self.num_samples)
        self.extents[index] = samples_bounds(self.samples[index])

    def crossing(self, i: int, j: int) -> Optional[Crossing]:
        if _shares_node(self.routes[i], self.routes[j]):
            return None
        if not _overlap(self.extents[i], self.extents[j]):
            return None
        hit = _first_intersection(self.samples[i], self.samples[j])
        if hit is None:
            return None
        return Crossing(min(i, j), max(i, j), hit[0], hit[1])

    def crossings_of(self, index: int) -> int:
        return sum(
            1
            for other in range(len(self.routes))
            if other != index and self.crossing(index, other) is not None
        )

    def all_crossings(self) -> List[Crossing]:
        found = []
        for i in range(len(self.routes)):
            for j in range(i + 1, len(self.routes)):
                crossing = self.crossing(i, j)
                if crossing is not None:
                    found.append(crossing)
        return found


def detect_crossings(routes: Sequence[Route], num_samples: int = 20) -> List[Crossing]:
    """
    Find every pair of routes that cross.

    Args:
        routes: Routes of one pass.
        num_samples: Sampling intervals per route.

    Returns:
        One Crossing per crossing pair, ordered by (first, second).
    """
    return CrossingIndex(routes, num_samples).all_crossings()


def resolve_crossings(
    routes: Sequence[Route],
    calculator: RouteCalculator,
    config: RoutingConfig,
    max_iterations: Optional[int] = None,
    deadline: Optional[float] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Tuple[List[Route], int]:
    """
    Iteratively nudge routes to reduce crossings.

    Each iteration takes the crossings of the current layout and tries moving
    the lower-priority route of each pair up or down by link_separation,
    keeping the first move that lowers the crossing count. Stops when no move
    helps, no crossings remain, after max_iterations, or once ``clock()``
    reaches ``deadline``.

    Args:
        routes: Routes of one pass.
        calculator: Used to rebuild render payloads of moved routes.
        config: Pass configuration.
        max_iterations: Iteration bound; defaults to config.max_iterations.
        deadline: Clock reading after which no new iteration starts.
        clock: Clock in seconds; time.perf_counter by default.

    Returns:
        (routes, iterations performed)
    """
    if len(routes) < 2:
        return list(routes), 0

    max_iterations = config.max_iterations if max_iterations is None else max_iterations
    index = CrossingIndex(routes, config.sample_points)
    remaining = len(index.all_crossings())
    iterations = 0
    clock = clock or time.perf_counter

    for _ in range(max_iterations):
        if remaining == 0:
            break
        if deadline is not None and clock() >= deadline:
            logger.debug("Crossing resolution stopped at its deadline")
            break
        iterations += 1
        improved = False

        for crossing in index.all_crossings():
            first = index.routes[crossing.first]
            second = index.routes[crossing.second]
            target = (
                crossing.first
                if first.routing.priority <= second.routing.priority
                else crossing.second
            )
            original = index.routes[target]
            before = index.crossings_of(target)

            for direction in (-1, 1):
                step = direction * config.link_separation
                candidate = calculator.reshape_route(
                    original, offset_path(original.path, (0.0, step), (0.0, step)), config
                )
                index.replace(target, candidate)
                after = index.crossings_of(target)
                if after < before:
                    remaining += after - before
                    improved = True
                    break
                index.replace(target, original)

            if improved:
                break

        if not improved:
            break

    logger.debug(
        "Crossing resolution: %d crossings left after %d iterations", remaining, iterations
    )
    return index.routes, iterations


def crossing_counts(routes: Sequence[Route], num_samples: int = 20) -> Dict[str, int]:
    """Crossing totals for quality reporting."""
    crossings = detect_crossings(routes, num_samples)
    involved = {c.first for c in crossings} | {c.second for c in crossings}
    return {"crossings": len(crossings), "routes_with_crossings": len(involved)}

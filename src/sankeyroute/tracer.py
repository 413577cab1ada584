"""
Debug tracing for routing passes.

When a pass runs with ``debug=True`` the manager records every pipeline stage
and one decision per link: which strategy produced it, whether it fell back,
how many collisions remain and how far separation moved it.

Usage:
    >>> manager = LinkRoutingManager()
    >>> routes = asyncio.run(manager.calculate_routes(links, nodes, debug=True))
    >>> trace = manager.get_trace()
    >>> print(trace.summary())
    >>> trace.dump_to_file("routing_trace.txt")

The trace captures:
- Pipeline stages (config, hierarchy, base_routes, separation, crossings,
  metrics)
- Per-link routing decisions with the reason for any fallback
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LinkDecision:
    """
    Record of how one link was routed.

    Attributes:
        link_index: Position of the link in the pass input
        route_id: Id of the produced route
        algorithm: Strategy that produced the route
        fallback: True if the route is a fallback substitute
        reason: Why this route was produced (e.g., "computed",
                "time_budget", "error: ...", "routing_disabled")
        collisions: Sample points left inside obstacles
        separation_offset: Perpendicular offsets applied to (P1, P2)
    """

    link_index: int
    route_id: str
    algorithm: str
    fallback: bool
    reason: str
    collisions: int = 0
    separation_offset: Optional[List[float]] = None

    def __str__(self) -> str:
        flag = " [fallback]" if self.fallback else ""
        text = f"#{self.link_index} {self.route_id}: {self.algorithm}{flag} ({self.reason})"
        if self.collisions:
            text += f", {self.collisions} collisions"
        if self.separation_offset:
            first, second = self.separation_offset
            text += f", offset P1={first:+.4f} P2={second:+.4f}"
        return text


@dataclass
class PipelineStage:
    """
    Snapshot of state at a pipeline stage.

    Attributes:
        name: Name of this pipeline stage
        data: Dictionary of relevant data at this stage
    """

    name: str
    data: Dict[str, Any]

    def __str__(self) -> str:
        lines = [f"=== Stage: {self.name} ==="]
        for key, value in self.data.items():
            # Truncate long values
            str_val = str(value)
            if len(str_val) > 100:
                str_val = str_val[:100] + "..."
            lines.append(f"  {key}: {str_val}")
        return "\n".join(lines)


@dataclass
class RoutingTrace:
    """
    Complete trace of one routing pass.

    Attributes:
        pass_id: Id of the traced pass
        link_count: Number of input links
        node_count: Number of input nodes
        stages: Pipeline stages in execution order
        decisions: Per-link decisions, in link order once the pass ends
    """

    pass_id: int = 0
    link_count: int = 0
    node_count: int = 0
    stages: List[PipelineStage] = field(default_factory=list)
    decisions: List[LinkDecision] = field(default_factory=list)
    _by_link: Dict[int, LinkDecision] = field(default_factory=dict, repr=False, compare=False)

    def add_stage(self, name: str, data: Dict[str, Any]) -> None:
        """
        Add a pipeline stage snapshot.

        Args:
            name: Name of the stage (e.g., "hierarchy")
            data: Dictionary of relevant data at this stage
        """
        self.stages.append(PipelineStage(name, data.copy()))

    def add_decision(
        self,
        link_index: int,
        route_id: str,
        algorithm: str,
        fallback: bool,
        reason: str,
        collisions: int = 0,
    ) -> None:
        """Record how a link was routed."""
        decision = LinkDecision(link_index, route_id, algorithm, fallback, reason, collisions)
        self.decisions.append(decision)
        self._by_link.setdefault(link_index, decision)

    def record_offset(self, link_index: int, first: float, second: float) -> None:
        """Attach separation offsets to an already recorded decision."""
        decision = self.get_decision(link_index)
        if decision is not None:
            decision.separation_offset = [first, second]

    def get_stage(self, name: str) -> Optional[PipelineStage]:
        """Get a specific pipeline stage by name."""
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def get_decision(self, link_index: int) -> Optional[LinkDecision]:
        return self._by_link.get(link_index)

    def get_fallbacks(self) -> List[LinkDecision]:
        """Decisions for links that received a fallback route."""
        return [d for d in self.decisions if d.fallback]

    def get_decisions_by_reason(self, reason_substring: str) -> List[LinkDecision]:
        """Get all decisions with a specific reason (partial match)."""
        return [d for d in self.decisions if reason_substring in d.reason]

    def summary(self) -> str:
        """
        Generate a human-readable summary of the trace.

        Returns a string with:
        - Input size
        - Pipeline stages overview
        - Decision statistics
        """
        lines = [
            "=" * 60,
            "ROUTING TRACE SUMMARY",
            "=" * 60,
            "",
            f"Pass: {self.pass_id}",
            f"Input: {self.node_count} nodes, {self.link_count} links",
            "",
            f"Pipeline stages: {len(self.stages)}",
        ]
        for stage in self.stages:
            lines.append(f"  {stage.name}")

        lines.extend(
            [
                "",
                f"Routed links: {len(self.decisions)}",
                f"Fallback routes: {len(self.get_fallbacks())}",
                "",
            ]
        )

        # Count by algorithm
        algorithm_counts: Dict[str, int] = {}
        for d in self.decisions:
            algorithm_counts[d.algorithm] = algorithm_counts.get(d.algorithm, 0) + 1

        lines.append("Routes by algorithm:")
        for algorithm, count in sorted(algorithm_counts.items(), key=lambda x: -x[1]):
            lines.append(f"  {algorithm}: {count}")

        return "\n".join(lines)

    def dump(self) -> str:
        """
        Generate a complete human-readable dump of the trace.

        Includes all stages with their full data and every link decision.
        """
        lines = [self.summary(), "", "=" * 60, "DETAILED TRACE", "=" * 60, ""]

        lines.append("PIPELINE STAGES:")
        lines.append("-" * 40)
        for stage in self.stages:
            lines.append(str(stage))
            lines.append("")

        lines.append("LINK DECISIONS:")
        lines.append("-" * 40)
        for d in self.decisions:
            lines.append(str(d))

        return "\n".join(lines)

    def dump_to_file(self, filename: str) -> None:
        """Write the complete trace dump to a file."""
        with open(filename, "w", encoding="utf-8") as f:
            f.write(self.dump())

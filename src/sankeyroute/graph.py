"""
Graph module for link routing.

Provides the directed flow graph behind the hierarchy mapper. Uses networkx for:
- Multigraph representation (several links may join the same node pair)
- Degree counting and neighbourhood queries
- Cycle detection
"""

from typing import Callable, Iterable, List, Optional, Tuple

import networkx as nx

from .models import Link


class FlowGraph:
    """
    Directed multigraph of a flow network.

    Nodes are node indices; every link becomes one edge carrying its magnitude
    as the ``weight`` attribute and its position in the link list as ``key``.
    """

    def __init__(self, node_count: int = 0):
        self.graph: nx.MultiDiGraph = nx.MultiDiGraph()
        self.graph.add_nodes_from(range(node_count))

    def add_link(self, link_index: int, source: int, target: int, weight: float = 0.0):
        """Add a directed edge for the link at ``link_index``."""
        self.graph.add_edge(source, target, key=link_index, weight=weight)

    def get_successors(self, node: int) -> List[int]:
        """Distinct targets of ``node``, in first-link order."""
        if node not in self.graph:
            return []
        return list(self.graph.successors(node))

    def get_predecessors(self, node: int) -> List[int]:
        """Distinct sources of ``node``, in first-link order."""
        if node not in self.graph:
            return []
        return list(self.graph.predecessors(node))

    def in_degree(self, node: int) -> int:
        """Number of incoming links (parallel links counted separately)."""
        return self.graph.in_degree(node) if node in self.graph else 0

    def out_degree(self, node: int) -> int:
        """Number of outgoing links (parallel links counted separately)."""
        return self.graph.out_degree(node) if node in self.graph else 0

    def incident_flow(self, node: int) -> float:
        """Sum of magnitudes of every link touching ``node``."""
        if node not in self.graph:
            return 0.0
        incoming = sum(w for _, _, w in self.graph.in_edges(node, data="weight"))
        outgoing = sum(w for _, _, w in self.graph.out_edges(node, data="weight"))
        return incoming + outgoing

    def through_pairs(self, node: int) -> int:
        """
        Count distinct (parent, child) pairs that pass through ``node``.

        Pairs where parent and child are the same node are not counted.
        """
        parents = self.get_predecessors(node)
        children = self.get_successors(node)
        return sum(1 for p in parents for c in children if p != c and p != node)

    def get_roots(self) -> List[int]:
        """Get nodes with no incoming edges."""
        return [n for n in self.graph.nodes() if self.graph.in_degree(n) == 0]

    def get_leaves(self) -> List[int]:
        """Get nodes with no outgoing edges."""
        return [n for n in self.graph.nodes() if self.graph.out_degree(n) == 0]

    def has_cycle(self) -> bool:
        """Check if the flow network contains a cycle."""
        return not nx.is_directed_acyclic_graph(self.graph)


def create_graph(
    links: Iterable[Link],
    node_count: Optional[int] = None,
    weight_of: Optional[Callable[[Link], float]] = None,
) -> Tuple[FlowGraph, List[int]]:
    """
    Create a FlowGraph from a list of links.

    Links whose endpoints fall outside ``range(node_count)`` are skipped.

    Args:
        links: Links in input order.
        node_count: Number of nodes; None accepts any non-negative index.
        weight_of: Magnitude of a link; defaults to the raw link value.

    Returns:
        (graph, skipped) where skipped lists the indices of rejected links.
    """
    graph = FlowGraph(node_count or 0)
    skipped: List[int] = []

    for link_index, link in enumerate(links):
        valid = link.source >= 0 and link.target >= 0
        if node_count is not None:
            valid = valid and link.source < node_count and link.target < node_count
        if not valid:
            skipped.append(link_index)
            continue
        weight = weight_of(link) if weight_of else link.value
        graph.add_link(link_index, link.source, link.target, weight)

    return graph, skipped

"""
Node hierarchy mapping for link routing.

Analyses a positioned flow network before routing:
- Cleans node labels into canonical names
- Infers each node's structural role (source, hub, transformation, ...)
- Classifies every link's flow type and routing priority by magnitude
- Computes relative centrality scores

Results are cached per input signature in a HierarchyCache owned by the
mapper instance.
"""

import hashlib
import json
import logging
import math
import re
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence

from .graph import FlowGraph, create_graph
from .models import (
    Centrality,
    FlowDescriptor,
    HierarchyEntry,
    Link,
    Node,
    Point,
    as_link,
    as_node,
)

logger = logging.getLogger(__name__)

# Role vocabularies, checked in this order against the cleaned node name.
# Terms come from national energy balances (Spanish and English labels).
NODE_ROLE_PATTERNS: Dict[str, List[str]] = {
    "source": ["Producción", "Importación", "Production", "Import"],
    "hub": ["Oferta Interna Bruta", "Oferta Total", "Total Supply"],
    "transformation": [
        "Transformación",
        "Refinación",
        "Generación",
        "Centrales Eléctricas",
        "Refinerías",
        "Coquizadoras",
        "Transformation",
        "Refinery",
        "Power Plant",
    ],
    "distribution": ["Distribución", "Transporte", "Distribution", "Transmission"],
    "consumption": [
        "Consumo",
        "Usos Finales",
        "Exportación",
        "Energía No Aprovechada",
        "Consumption",
        "Final Use",
        "Export",
        "Losses",
    ],
}

ROLES = ("source", "hub", "transformation", "consumption", "distribution", "unknown")

# Flow magnitude bands, in PJ, highest first
FLOW_THRESHOLDS: Dict[str, float] = {
    "primary": 500,
    "secondary": 100,
    "transformation": 50,
    "distribution": 10,
}

# Routing weight per flow type
FLOW_TYPE_WEIGHTS: Dict[str, float] = {
    "primary": 1.0,
    "secondary": 0.8,
    "transformation": 0.6,
    "distribution": 0.4,
}

# Largest flow magnitude expected in a national balance, in PJ
MAX_EXPECTED_FLOW = 3000.0

ENERGY_UNITS = r"(?:PJ|TJ|GJ|TWh|GWh|MWh|ktep|Mtoe)"

_TAG_PATTERN = re.compile(r"<[^>]+>")
_NAME_MAGNITUDE_PATTERN = re.compile(r"\s*\d+(?:[.,]\d+)*\s*" + ENERGY_UNITS + r"\s*$")
_FLOW_VALUE_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)\s*" + ENERGY_UNITS)


def clean_node_name(node: Any, index: Optional[int] = None) -> str:
    """
    Reduce a node label to the canonical name used for classification.

    Keeps the first line of the label (before ``<br>``), strips markup and a
    trailing magnitude such as "1.234,5 PJ". Nodes without a usable label get
    a ``node_<index>`` placeholder.

    Args:
        node: Node, mapping, or None.
        index: Fallback index when the node carries none.

    Returns:
        Cleaned node name.
    """
    if node is None:
        return f"node_{index or 0}"

    node = as_node(node)
    node_index = node.index if node.index is not None else (index or 0)
    label = node.name if isinstance(node.name, str) else ""

    name = re.split(r"<br\s*/?>", label, maxsplit=1, flags=re.IGNORECASE)[0]
    name = _TAG_PATTERN.sub("", name)
    name = _NAME_MAGNITUDE_PATTERN.sub("", name).strip()

    return name or f"node_{node_index}"


def extract_flow_value(link: Any) -> float:
    """
    Real magnitude of a link.

    Link values may be rescaled for display, so a magnitude written in the
    annotation ("Flujo: 1500,75 PJ") wins over ``link.value``. Both "." and ","
    are accepted as the decimal separator.
    """
    link = as_link(link)
    if isinstance(link.customdata, str):
        match = _FLOW_VALUE_PATTERN.search(link.customdata)
        if match:
            return float(match.group(1).replace(",", "."))
    return float(link.value or 0)


def classify_flow(value: float) -> str:
    """Map a flow magnitude to its flow type band."""
    if value >= FLOW_THRESHOLDS["primary"]:
        return "primary"
    if value >= FLOW_THRESHOLDS["secondary"]:
        return "secondary"
    if value >= FLOW_THRESHOLDS["transformation"]:
        return "transformation"
    return "distribution"


def flow_priority(value: float, weights: Optional[Dict[str, float]] = None) -> float:
    """
    Routing priority of a flow, in [0, 1].

    Larger flows rank higher: the normalized magnitude is multiplied by the
    weight of the flow's type band, and band weights grow with magnitude.
    """
    weights = weights or FLOW_TYPE_WEIGHTS
    magnitude = min(max(value, 0.0) / MAX_EXPECTED_FLOW, 1.0)
    return min(magnitude * weights.get(classify_flow(value), 0.5), 1.0)


def match_role_pattern(name: str) -> Optional[str]:
    """Role whose vocabulary matches ``name``, if any."""
    lowered = name.lower()
    for role, patterns in NODE_ROLE_PATTERNS.items():
        if any(pattern.lower() in lowered for pattern in patterns):
            return role
    return None


def infer_role_from_connectivity(parents: Sequence[int], children: Sequence[int]) -> str:
    """Role of an unnamed node from its distinct parents and children."""
    if len(children) >= 2 and len(parents) >= 1:
        return "transformation"
    if parents and not children:
        return "consumption"
    if children and not parents:
        return "source"
    return "unknown"


class HierarchyCache:
    """
    Hierarchies keyed by a deterministic signature of their input.

    Entries are kept in insertion order; ``max_entries`` bounds the cache by
    evicting the oldest signature.
    """

    def __init__(self, max_entries: int = 64):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Dict[int, HierarchyEntry]]" = OrderedDict()

    @staticmethod
    def signature(
        nodes: Sequence[Node],
        links: Sequence[Link],
        weights: Optional[Dict[str, float]] = None,
    ) -> str:
        """
        Order-sensitive SHA-256 over node and link content and flow weights.
        """
        payload = {
            "nodes": [
                [
                    node.index,
                    node.name,
                    node.x,
                    node.y,
                    node.bounds.to_dict() if node.bounds else None,
                    node.value,
                ]
                for node in nodes
            ],
            "links": [
                [link.source, link.target, link.value, link.customdata]
                for link in links
            ],
            "weights": dict(weights) if weights else None,
        }
        encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[Dict[int, HierarchyEntry]]:
        return self._entries.get(key)

    def put(self, key: str, hierarchy: Dict[int, HierarchyEntry]) -> None:
        self._entries[key] = hierarchy
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size(self) -> int:
        return len(self._entries)


class NodeHierarchyMapper:
    """
    Builds and caches the structural hierarchy of a flow network.

    Example:
        >>> mapper = NodeHierarchyMapper()
        >>> hierarchy = asyncio.run(mapper.map_hierarchy(nodes, links))
        >>> hierarchy[0].role
        'source'
    """

    def __init__(
        self,
        cache: Optional[HierarchyCache] = None,
        flow_weights: Optional[Dict[str, float]] = None,
    ):
        """
        Initialize the mapper.

        Args:
            cache: Cache to use; a fresh HierarchyCache by default.
            flow_weights: Per-flow-type priority weights.
        """
        self.hierarchy_cache = cache if cache is not None else HierarchyCache()
        self.flow_weights = dict(flow_weights or FLOW_TYPE_WEIGHTS)
        self.node_type_patterns = NODE_ROLE_PATTERNS
        self.flow_thresholds = FLOW_THRESHOLDS

    async def map_hierarchy(
        self,
        nodes: Sequence[Any],
        links: Sequence[Any],
        flow_weights: Optional[Dict[str, float]] = None,
    ) -> Dict[int, HierarchyEntry]:
        """
        Map the hierarchy of a flow network.

        Args:
            nodes: Nodes (Node objects or dicts) in index order.
            links: Links (Link objects or dicts).
            flow_weights: Per-flow-type weights for this call; defaults to the
                mapper's own.

        Returns:
            Dict from node index to HierarchyEntry. Identical input returns the
            identical cached dict.
        """
        return self.build_hierarchy(nodes, links, flow_weights)

    def build_hierarchy(
        self,
        nodes: Sequence[Any],
        links: Sequence[Any],
        flow_weights: Optional[Dict[str, float]] = None,
    ) -> Dict[int, HierarchyEntry]:
        """Synchronous body of map_hierarchy."""
        node_list = [as_node(node) for node in nodes or []]
        link_list = [as_link(link) for link in links or []]
        weights = dict(flow_weights) if flow_weights else self.flow_weights

        key = HierarchyCache.signature(node_list, link_list, weights)
        cached = self.hierarchy_cache.get(key)
        if cached is not None:
            logger.debug("Hierarchy cache hit (%d nodes)", len(cached))
            return cached

        hierarchy = self._analyze(node_list, link_list, weights)
        self.hierarchy_cache.put(key, hierarchy)
        logger.debug("Hierarchy computed for %d nodes", len(hierarchy))
        return hierarchy

    def _analyze(
        self, nodes: List[Node], links: List[Link], weights: Dict[str, float]
    ) -> Dict[int, HierarchyEntry]:
        if not nodes:
            return {}

        graph, skipped = create_graph(links, len(nodes), weight_of=extract_flow_value)
        for link_index in skipped:
            link = links[link_index]
            logger.warning(
                "Link %d references unknown node (source=%s, target=%s); skipped",
                link_index,
                link.source,
                link.target,
            )

        skipped_set = set(skipped)
        valid_links = [link for i, link in enumerate(links) if i not in skipped_set]

        hierarchy: Dict[int, HierarchyEntry] = {}
        for index, node in enumerate(nodes):
            hierarchy[index] = self._analyze_node(index, node, graph)

        for link in valid_links:
            value = extract_flow_value(link)
            flow_type = classify_flow(value)
            priority = flow_priority(value, weights)
            hierarchy[link.source].outgoing_flows.append(
                FlowDescriptor(link.target, flow_type, value, priority, link.color)
            )
            hierarchy[link.target].incoming_flows.append(
                FlowDescriptor(link.source, flow_type, value, priority, link.color)
            )

        for entry in hierarchy.values():
            entry.outgoing_flows.sort(key=lambda f: f.priority, reverse=True)
            entry.incoming_flows.sort(key=lambda f: f.priority, reverse=True)

        self._calculate_centrality(hierarchy, graph)
        self._validate(hierarchy, graph)
        return hierarchy

    def _analyze_node(self, index: int, node: Node, graph: FlowGraph) -> HierarchyEntry:
        name = clean_node_name(node, index)
        parents = graph.get_predecessors(index)
        children = graph.get_successors(index)

        role = match_role_pattern(name)
        if role is None:
            role = infer_role_from_connectivity(parents, children)

        return HierarchyEntry(
            index=index,
            name=name,
            original_name=node.name if isinstance(node.name, str) and node.name else name,
            role=role,
            parents=parents,
            children=children,
            column=int(math.floor(node.x * 5)),
            position=Point(node.x, node.y),
            bounds=node.get_bounds(),
            total_flow=graph.incident_flow(index),
        )

    def _calculate_centrality(
        self, hierarchy: Dict[int, HierarchyEntry], graph: FlowGraph
    ) -> None:
        degrees = {i: graph.in_degree(i) + graph.out_degree(i) for i in hierarchy}
        pairs = {i: graph.through_pairs(i) for i in hierarchy}
        # Lying on a single parent -> child path does not make a node central
        pairs = {i: (count if count > 1 else 0) for i, count in pairs.items()}

        max_degree = max(degrees.values(), default=0)
        max_flow = max((e.total_flow for e in hierarchy.values()), default=0.0)
        max_pairs = max(pairs.values(), default=0)

        for index, entry in hierarchy.items():
            entry.centrality = Centrality(
                degree=degrees[index] / max_degree if max_degree else 0.0,
                flow=entry.total_flow / max_flow if max_flow else 0.0,
                betweenness=pairs[index] / max_pairs if max_pairs else 0.0,
            )
            flow_per_link = entry.total_flow / max(degrees[index], 1)
            entry.bottleneck_score = (
                entry.centrality.overall + min(flow_per_link / 1000, 1.0)
            ) / 2

    def _validate(self, hierarchy: Dict[int, HierarchyEntry], graph: FlowGraph) -> None:
        warnings = 0
        if graph.has_cycle():
            logger.warning("Flow network contains a cycle; roles may be ambiguous")
            warnings += 1
        logger.debug(
            "Flow network has %d roots and %d leaves",
            len(graph.get_roots()),
            len(graph.get_leaves()),
        )
        for index, entry in hierarchy.items():
            for parent in entry.parents:
                if index not in hierarchy[parent].children:
                    logger.warning("Node %d lists %d as parent inconsistently", index, parent)
                    warnings += 1
            for child in entry.children:
                if index not in hierarchy[child].parents:
                    logger.warning("Node %d lists %d as child inconsistently", index, child)
                    warnings += 1
        if warnings:
            logger.warning("Hierarchy validated with %d warnings", warnings)

    def clear_cache(self) -> None:
        """Drop every cached hierarchy."""
        self.hierarchy_cache.clear()
        logger.debug("Hierarchy cache cleared")

    def get_hierarchy_stats(self) -> Dict[str, Any]:
        """Cache size, number of role vocabularies and flow thresholds."""
        return {
            "cache_size": self.hierarchy_cache.size,
            "node_type_patterns": len(self.node_type_patterns),
            "flow_thresholds": dict(self.flow_thresholds),
        }

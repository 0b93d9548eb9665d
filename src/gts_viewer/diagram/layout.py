from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

import networkx as nx

from ..layout.types import Point
from .edges import DEFAULT_EDGE_PRIORITIES, SchemaEdgeModel, get_edge_priority
from .nodes import SchemaNodeModel

SIDES = ("left", "right", "top", "bottom")
HANDLE_SLOTS = 3
_ORDERING_SWEEPS = 4


@dataclass(frozen=True)
class DiagramConfig:
    node_width: float = 400
    node_height: float = 300
    nodesep: float = 250
    ranksep: float = 170
    edge_priorities: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_EDGE_PRIORITIES))


DEFAULT_DIAGRAM_CONFIG = DiagramConfig()


def _break_cycles(graph: nx.DiGraph) -> nx.DiGraph:
    dag = graph.copy()
    while True:
        try:
            cycle = nx.find_cycle(dag)
        except nx.NetworkXNoCycle:
            return dag
        u, v = cycle[-1][:2]
        dag.remove_edge(u, v)


def _rank_nodes(dag: nx.DiGraph) -> Dict[str, int]:
    """Longest-path layering: every node sits one rank right of its furthest predecessor."""
    ranks: Dict[str, int] = {}
    for node in nx.topological_sort(dag):
        ranks[node] = max((ranks[p] + 1 for p in dag.predecessors(node)), default=0)
    return ranks


def _order_layers(dag: nx.DiGraph, layers: List[List[str]]) -> List[List[str]]:
    """Barycenter heuristic: alternate down/up sweeps to reduce crossings."""
    index: Dict[str, int] = {}

    def _reindex() -> None:
        for layer in layers:
            for i, node in enumerate(layer):
                index[node] = i

    def _sweep(rank_order: Iterable[int], neighbors: Callable[[str], Iterable[str]]) -> None:
        for r in rank_order:
            layer = layers[r]

            def _barycenter(node: str) -> float:
                adjacent = [index[n] for n in neighbors(node)]
                if not adjacent:
                    return float(index[node])
                return sum(adjacent) / len(adjacent)

            layers[r] = sorted(layer, key=_barycenter)
            _reindex()

    _reindex()
    for _ in range(_ORDERING_SWEEPS):
        _sweep(range(1, len(layers)), dag.predecessors)
        _sweep(range(len(layers) - 2, -1, -1), dag.successors)
    return layers


def layered_layout(
    node_ids: Sequence[str],
    edges: Iterable[Tuple[str, str]],
    config: DiagramConfig = DEFAULT_DIAGRAM_CONFIG,
) -> Dict[str, Point]:
    """
    Left-to-right layered layout. Returns node centers; rank ``r`` sits at
    ``x = r * (width + ranksep)`` and each layer is centered vertically.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(node_ids)
    for source, target in edges:
        if source != target and source in graph and target in graph:
            graph.add_edge(source, target)
    if graph.number_of_nodes() == 0:
        return {}

    dag = _break_cycles(graph)
    ranks = _rank_nodes(dag)
    layers: List[List[str]] = [[] for _ in range(max(ranks.values()) + 1)]
    for node in node_ids:
        if node in ranks:
            layers[ranks[node]].append(node)
    layers = _order_layers(dag, layers)

    step_x = config.node_width + config.ranksep
    step_y = config.node_height + config.nodesep
    tallest = max(len(layer) for layer in layers) * step_y - config.nodesep
    centers: Dict[str, Point] = {}
    for rank, layer in enumerate(layers):
        height = len(layer) * step_y - config.nodesep
        top = (tallest - height) / 2
        for i, node in enumerate(layer):
            centers[node] = Point(
                x=rank * step_x + config.node_width / 2,
                y=top + i * step_y + config.node_height / 2,
            )
    return centers


def decide_side(ax: float, ay: float, bx: float, by: float) -> str:
    """Face of node A that an edge toward B leaves from. Horizontal wins ties."""
    dx = bx - ax
    dy = by - ay
    if abs(dx) >= abs(dy):
        return "right" if dx >= 0 else "left"
    return "bottom" if dy >= 0 else "top"


def indices_for_count(count: int) -> List[int]:
    if count <= 0:
        return []
    if count == 1:
        return [2]
    if count == 2:
        return [1, 3]
    return [(i % HANDLE_SLOTS) + 1 for i in range(count)]


def choose_edges(
    edges: Iterable[SchemaEdgeModel],
    priorities: Mapping[str, int] = DEFAULT_EDGE_PRIORITIES,
) -> List[SchemaEdgeModel]:
    """One edge per ordered (source, target) pair; the highest-priority kind wins, first seen on ties."""
    chosen: Dict[Tuple[str, str], Tuple[SchemaEdgeModel, int]] = {}
    for edge in edges:
        pair = (edge.source_id, edge.target_id)
        priority = get_edge_priority(edge.kind, priorities)
        existing = chosen.get(pair)
        if existing is None or priority > existing[1]:
            chosen[pair] = (edge, priority)
    return [edge for edge, _ in chosen.values()]


CenterFn = Callable[[SchemaNodeModel], Tuple[float, float]]
Buckets = Dict[str, Dict[str, List[Tuple[SchemaEdgeModel, SchemaNodeModel]]]]


def _assign(buckets: Buckets, center_of: CenterFn, is_source: bool) -> None:
    for sides in buckets.values():
        for side in SIDES:
            bucket = sides.get(side)
            if not bucket:
                continue
            axis = 1 if side in ("left", "right") else 0
            bucket = sorted(bucket, key=lambda item: center_of(item[1])[axis])
            indices = indices_for_count(len(bucket))
            for i, (edge, _) in enumerate(bucket):
                slot = indices[i] if i < len(indices) else 2
                edge.set_distributed_handle(f"{side}-{slot}", is_source=is_source)


def distribute_handles(edges: Sequence[SchemaEdgeModel], center_of: CenterFn) -> None:
    """
    Spread edges over each face's three slots. Source-side and target-side
    buckets are kept apart, so an edge's two ends are placed independently.
    """
    source_sides: Buckets = defaultdict(lambda: defaultdict(list))
    target_sides: Buckets = defaultdict(lambda: defaultdict(list))
    for edge in edges:
        sx, sy = center_of(edge.source)
        tx, ty = center_of(edge.target)
        source_sides[edge.source_id][decide_side(sx, sy, tx, ty)].append((edge, edge.target))
        target_sides[edge.target_id][decide_side(tx, ty, sx, sy)].append((edge, edge.source))
    _assign(source_sides, center_of, True)
    _assign(target_sides, center_of, False)

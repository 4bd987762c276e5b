"""Route required net outflows over a chosen set of transfer edges."""

from dataclasses import dataclass, field

import networkx as nx
from networkx.algorithms.flow import dinitz


@dataclass(frozen=True)
class Routing:
    """Outcome of routing net balances over a set of transfer edges."""

    feasible: bool
    flows: dict[tuple[int, int], int] = field(default_factory=dict)
    # Source side of a minimum cut when infeasible; only edges leaving it help
    source_side: frozenset[int] = frozenset()


def route(
    size: int,
    edges: list[tuple[int, int]],
    bounds: list[tuple[int, int]],
    capacity: int,
) -> Routing:
    """
    Find transfers on ``edges`` giving every person a net outflow in bounds.

    A hub node supplies each person's net outflow on an edge with lower
    bound ``low`` and upper bound ``high``; lower bounds are removed the
    usual way, by pre-committing them and balancing the excess from a super
    source and into a super sink.

    Args:
        size: Number of people, numbered 0 to size - 1
        edges: Allowed (payer, payee) pairs, each carrying at most ``capacity``
        bounds: Per-person (low, high) range of paid minus received
        capacity: Per-transfer cap

    Returns:
        Routing with positive flows per edge, or the blocking cut
    """
    hub, source, sink = size, size + 1, size + 2
    graph = nx.DiGraph()
    graph.add_nodes_from(range(size + 3))
    graph.add_edges_from(edges, capacity=capacity)

    excess = [0] * (size + 1)
    for person, (low, high) in enumerate(bounds):
        if low > high:
            return Routing(feasible=False)
        graph.add_edge(hub, person, capacity=high - low)
        excess[person] += low
        excess[hub] -= low

    required = 0
    for node, amount in enumerate(excess):
        if amount > 0:
            graph.add_edge(source, node, capacity=amount)
            required += amount
        elif amount < 0:
            graph.add_edge(node, sink, capacity=-amount)

    if required == 0:
        return Routing(feasible=True)

    residual = dinitz(graph, source, sink, cutoff=required)
    if residual.graph["flow_value"] < required:
        return Routing(feasible=False, source_side=_source_side(residual, source))

    # Flows on antiparallel pairs are netted in the residual network
    flows = {}
    for payer, payee in edges:
        amount = residual[payer][payee]["flow"]
        if amount > 0:
            flows[(payer, payee)] = amount
    return Routing(feasible=True, flows=flows)


def _source_side(residual: nx.DiGraph, source: int) -> frozenset[int]:
    """Nodes still reachable from the source through unsaturated edges."""
    open_edges = nx.DiGraph()
    open_edges.add_node(source)
    open_edges.add_edges_from(
        (u, v)
        for u, v, attr in residual.edges(data=True)
        if attr["flow"] < attr["capacity"]
    )
    return frozenset(nx.descendants(open_edges, source) | {source})

"""Kahn topological sort over segment nodes."""
import heapq
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from layerseg.types import EdgeType


@dataclass
class Edge:
    """Directed occlusion edge: target lies in front of source."""
    source: int
    target: int
    type: EdgeType = EdgeType.DEFAULT


@dataclass
class Node:
    """Segment node with its outgoing edges and sort bookkeeping."""
    edges_out: List[Edge] = field(default_factory=list)
    incoming_edges: int = 0
    depth: int = 0
    edges_used: bool = False

    def find_edge(self, target: int):
        for edge in self.edges_out:
            if edge.target == target:
                return edge
        return None


def topological_sort(
    nodes: Dict[int, Node],
    roots: Iterable[int]
) -> Tuple[List[int], bool]:
    """
    Order nodes so that every edge points forward.

    Roots are consumed smallest id first, which makes the order
    deterministic. The in-degree counters and used flags of the nodes are
    consumed by the sort; the caller restores them afterwards.

    Args:
        nodes: Mapping of id to Node
        roots: Ids with no incoming edges

    Returns:
        Tuple of (order, success). success is False when a cycle leaves
        some node unvisited.
    """
    heap = sorted(set(roots))
    heapq.heapify(heap)
    order = []

    while heap:
        current = heapq.heappop(heap)
        order.append(current)
        node = nodes[current]
        if node.edges_used:
            continue
        for edge in node.edges_out:
            target = nodes[edge.target]
            target.incoming_edges -= 1
            if target.incoming_edges == 0:
                heapq.heappush(heap, edge.target)
        node.edges_used = True

    success = all(node.edges_used for node in nodes.values())
    return order, success

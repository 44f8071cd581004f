"""Occlusion DAG between segments with depth computation."""
import logging
from typing import Dict, Iterator, List, Optional, Sequence, Set

import numpy as np

from layerseg.topological_sort import Edge, Node, topological_sort
from layerseg.types import (
    BACKGROUND,
    MAX_SEGMENTS,
    MAX_SEGMENTS_PER_KIND,
    EdgeType,
)

logger = logging.getLogger(__name__)


class OcclusionGraph:
    """
    Directed acyclic graph of "is occluded by" relations.

    An edge source -> target means target lies in front of source. Edges
    that would close a cycle are rejected, so the graph always admits a
    topological order, and after compute_depths() depth(target) is at least
    depth(source) + 1 for every edge.
    """

    def __init__(self, counts: Sequence[int] = (1, 0)):
        self.nodes: Dict[int, Node] = {}
        self.roots: Set[int] = set()
        self.order: List[int] = []
        self.reset(counts)

    def reset(self, counts: Sequence[int]) -> None:
        """Drop all edges and register ids for the given [hard, soft] counts."""
        self.nodes = {}
        self.roots = set()
        self.order = []
        hard, soft = counts
        for segment_id in range(hard):
            self._add_root(segment_id)
        for segment_id in range(MAX_SEGMENTS_PER_KIND, MAX_SEGMENTS_PER_KIND + soft):
            self._add_root(segment_id)

    def update(self, segment_id: int) -> None:
        """
        Register a newly allocated segment id as an isolated root.

        Once edges exist the committed order is rebuilt so the new id is
        part of it.
        """
        if segment_id in self.nodes:
            return
        self._add_root(segment_id)
        if self.order:
            self.recount()
            self.order, _ = topological_sort(self.nodes, self.roots)
            self.recount()
            self.compute_depths()

    def _add_root(self, segment_id: int) -> None:
        self.nodes[segment_id] = Node()
        self.roots.add(segment_id)

    def recount(self) -> None:
        """Rebuild in-degrees, used flags and roots from the edge lists."""
        for node in self.nodes.values():
            node.incoming_edges = 0
            node.edges_used = False
        for node in self.nodes.values():
            for edge in node.edges_out:
                self.nodes[edge.target].incoming_edges += 1
        self.roots = {
            segment_id for segment_id, node in self.nodes.items()
            if node.incoming_edges == 0
        }

    def add_edge(
        self,
        source: int,
        target: int,
        edge_type: EdgeType = EdgeType.DEFAULT
    ) -> bool:
        """
        Record that target occludes source.

        Args:
            source: Id of the occluded (deeper) segment
            target: Id of the occluding segment
            edge_type: Contour override between the two segments

        Returns:
            True if the edge is stored (or its type updated), False if it is
            invalid or would create a cycle. A rejected edge leaves the graph
            unchanged.
        """
        source, target = int(source), int(target)
        if source == target or BACKGROUND in (source, target):
            return False
        if not (0 <= source < MAX_SEGMENTS and 0 <= target < MAX_SEGMENTS):
            return False
        edge_type = EdgeType(edge_type)

        for segment_id in (source, target):
            if segment_id not in self.nodes:
                self.nodes[segment_id] = Node()

        existing = self.nodes[source].find_edge(target)
        if existing is not None:
            existing.type = edge_type
            return True

        self.nodes[source].edges_out.append(Edge(source, target, edge_type))
        self.recount()
        order, success = topological_sort(self.nodes, self.roots)

        if not success:
            self.nodes[source].edges_out.pop()
            self.recount()
            logger.info(f"Rejected edge {source}->{target}: would create a cycle")
            return False

        self.order = order
        self.recount()
        self.compute_depths()
        logger.debug(f"Added edge {source}->{target} ({edge_type.name})")
        return True

    def compute_depths(self) -> None:
        """Longest-path depth from the roots, following the committed order."""
        for node in self.nodes.values():
            node.depth = 0
        for segment_id in self.order:
            node = self.nodes[segment_id]
            for edge in node.edges_out:
                target = self.nodes[edge.target]
                target.depth = max(target.depth, node.depth + 1)

    def depth_of(self, segment_id: int) -> int:
        node = self.nodes.get(int(segment_id))
        return node.depth if node is not None else 0

    def edge_type(self, source: int, target: int) -> Optional[EdgeType]:
        node = self.nodes.get(int(source))
        if node is None:
            return None
        edge = node.find_edge(int(target))
        return edge.type if edge is not None else None

    def edges(self) -> Iterator[Edge]:
        for node in self.nodes.values():
            yield from node.edges_out

    def max_depth(self) -> int:
        return max((node.depth for node in self.nodes.values()), default=0)

    def depth_map(self, color_map) -> np.ndarray:
        """
        Render segment depths as a grayscale preview.

        Background pixels are 0; a segment pixel is (50 + step * depth) / 255
        with step = 200 // max_depth.

        Args:
            color_map: ColorMap holding the segment raster

        Returns:
            (H, W) float array, all zeros when there is nothing to show
        """
        mask = color_map.mask
        image = np.zeros(mask.shape, dtype=np.float32)
        self.compute_depths()
        max_depth = self.max_depth()
        if not self.order or max_depth == 0:
            return image

        step = 200 // max_depth
        lut = np.zeros(MAX_SEGMENTS, dtype=np.float32)
        for segment_id, node in self.nodes.items():
            lut[segment_id] = (50 + step * node.depth) / 255.0

        drawn = mask > BACKGROUND
        image[drawn] = lut[mask[drawn]]
        return image

"""Adjacency analysis between segments of a label map."""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

import numpy as np
from scipy import ndimage

from layerseg.types import BACKGROUND, BlockFlag

logger = logging.getLogger(__name__)

# Box as (y0, y1, x0, x1) with exclusive upper ends
Box = Tuple[int, int, int, int]


@dataclass
class BorderAnalysis:
    """Per-segment neighborhood facts needed before shape reconstruction."""
    borders: np.ndarray
    boxes: Dict[int, Box] = field(default_factory=dict)
    alone: Set[int] = field(default_factory=set)
    neighbor_higher: Set[int] = field(default_factory=set)
    incidences: Dict[int, List[int]] = field(default_factory=dict)
    windows: Dict[int, Box] = field(default_factory=dict)


def neighbor_pairs(label_map: np.ndarray) -> Tuple[np.ndarray, ...]:
    """
    Every 4-connected pixel pair whose labels differ, in both directions.

    Returns:
        Tuple of (ys, xs, nys, nxs) arrays. (ys, xs) is the pixel and
        (nys, nxs) the neighbor with a different label.
    """
    h, w = label_map.shape
    pairs = []
    for dy, dx in ((0, -1), (0, 1), (-1, 0), (1, 0)):
        ys, xs = np.mgrid[max(0, -dy):h - max(0, dy), max(0, -dx):w - max(0, dx)]
        ys, xs = ys.ravel(), xs.ravel()
        nys, nxs = ys + dy, xs + dx
        differ = label_map[ys, xs] != label_map[nys, nxs]
        pairs.append((ys[differ], xs[differ], nys[differ], nxs[differ]))
    return tuple(np.concatenate(part) for part in zip(*pairs))


def segment_boxes(label_map: np.ndarray) -> Dict[int, Box]:
    """Bounding boxes of every drawn non-background segment."""
    labels = np.where(label_map < 0, BACKGROUND, label_map).astype(np.int32)
    boxes = {}
    for index, bounds in enumerate(ndimage.find_objects(labels), start=1):
        if bounds is None:
            continue
        rows, cols = bounds
        boxes[index] = (rows.start, rows.stop, cols.start, cols.stop)
    return boxes


def analyze_borders(
    label_map: np.ndarray,
    graph,
    line_image: np.ndarray,
    block: np.ndarray
) -> BorderAnalysis:
    """
    Find which segments need a hidden-shape reconstruction and where.

    A segment stays "alone" (nothing to reconstruct) while all of its
    border pixels face a single neighbor that is not in front of it, no
    contour is open towards that neighbor and no force-merge pixel lies
    inside it.

    Args:
        label_map: (H, W) segment ids
        graph: OcclusionGraph with up to date depths
        line_image: (H, W) preprocessed intensity, 0 on drawn lines
        block: (H, W) BlockFlag values

    Returns:
        BorderAnalysis with borders, boxes, alone ids, incidences and the
        working window of every segment with incidences
    """
    h, w = label_map.shape
    analysis = BorderAnalysis(borders=np.zeros((h, w), dtype=bool))
    analysis.boxes = segment_boxes(label_map)

    ys, xs, nys, nxs = neighbor_pairs(label_map)
    own = label_map[ys, xs].astype(np.int64)
    other = label_map[nys, nxs].astype(np.int64)
    keep = own != BACKGROUND
    ys, xs, own, other = ys[keep], xs[keep], own[keep], other[keep]
    open_pair = (line_image[ys, xs] != 0) & (line_image[nys[keep], nxs[keep]] != 0)
    analysis.borders[ys, xs] = True

    neighbors: Dict[int, Set[int]] = defaultdict(set)
    not_alone: Set[int] = set()
    for seg, nbr, is_open in zip(own.tolist(), other.tolist(), open_pair.tolist()):
        neighbors[seg].add(nbr)
        if graph.depth_of(seg) < graph.depth_of(nbr):
            analysis.neighbor_higher.add(seg)
            not_alone.add(seg)
        if is_open:
            not_alone.add(seg)

    forced = np.unique(label_map[block == BlockFlag.FORCE])
    not_alone.update(int(i) for i in forced if i != BACKGROUND)

    for seg in analysis.boxes:
        if seg not in not_alone and len(neighbors.get(seg, ())) <= 1:
            analysis.alone.add(seg)

    order = list(graph.order)
    for index, seg in enumerate(order):
        if seg not in analysis.neighbor_higher:
            continue
        depth = graph.depth_of(seg)
        analysis.incidences[seg] = [
            later for later in order[index + 1:] if graph.depth_of(later) > depth
        ]

    for seg, incident in analysis.incidences.items():
        if not incident or seg not in analysis.boxes:
            continue
        y0, y1, x0, x1 = analysis.boxes[seg]
        for nbr in incident:
            if nbr not in analysis.boxes:
                continue
            ny0, ny1, nx0, nx1 = analysis.boxes[nbr]
            y0, x0 = max(min(y0, ny0 - 1), 0), max(min(x0, nx0 - 1), 0)
            y1, x1 = min(max(y1, ny1 + 1), h), min(max(x1, nx1 + 1), w)
        analysis.windows[seg] = (y0, y1, x0, x1)

    logger.debug(f"Border analysis: {len(analysis.boxes)} segments, "
                 f"{len(analysis.alone)} alone, "
                 f"{sum(1 for v in analysis.incidences.values() if v)} occluded")
    return analysis

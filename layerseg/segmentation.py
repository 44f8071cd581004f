"""Multilabel scribble segmentation from repeated binary min-cuts."""
import logging
from typing import List, Optional, Set, Tuple

import maxflow
import numpy as np
from scipy import ndimage

from layerseg.color_map import ColorMap
from layerseg.types import (
    BACKGROUND,
    MAX_SEGMENTS,
    SOFT_BIT,
    UNASSIGNED,
    SegmentationConfig,
    SegmentationError,
)

logger = logging.getLogger(__name__)

# Box as (y0, y1, x0, x1) with exclusive upper ends
Box = Tuple[int, int, int, int]

RIGHT = np.array([[0, 0, 0],
                  [0, 0, 1],
                  [0, 0, 0]])
DOWN = np.array([[0, 0, 0],
                 [0, 0, 0],
                 [0, 1, 0]])


def background_frame(width: int, height: int, radius: int = 3) -> np.ndarray:
    """
    Scribble raster with a background band along the image border.

    Args:
        width: Image width
        height: Image height
        radius: Band width is 2 * radius + 1 pixels

    Returns:
        (height, width) int16 raster, 0 on the band and -1 elsewhere
    """
    scribbles = np.full((height, width), UNASSIGNED, dtype=np.int16)
    band = 2 * radius + 1
    scribbles[:band, :] = BACKGROUND
    scribbles[-band:, :] = BACKGROUND
    scribbles[:, :band] = BACKGROUND
    scribbles[:, -band:] = BACKGROUND
    return scribbles


def scribble_ids(scribbles: np.ndarray) -> List[int]:
    """Distinct ids present in a scribble raster, ascending."""
    return [int(i) for i in np.unique(scribbles) if i >= 0]


def edge_weights(
    intensity: np.ndarray,
    k_param: float,
    exponent: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pairwise capacities towards the right and lower neighbor of each pixel.

    The capacity is int(1 + k_param * min(a, b) ** exponent), so cuts are
    cheap across dark line pixels and expensive through bright areas. The
    last column of the right weights and the last row of the down weights
    have no neighbor and are left at zero.
    """
    right = np.zeros(intensity.shape, dtype=np.float64)
    down = np.zeros(intensity.shape, dtype=np.float64)
    right[:, :-1] = np.floor(
        1 + k_param * np.minimum(intensity[:, :-1], intensity[:, 1:]) ** exponent
    )
    down[:-1, :] = np.floor(
        1 + k_param * np.minimum(intensity[:-1, :], intensity[1:, :]) ** exponent
    )
    return right, down


def _union(box: Optional[Box], other: Box) -> Box:
    if box is None:
        return other
    return (min(box[0], other[0]), max(box[1], other[1]),
            min(box[2], other[2]), max(box[3], other[3]))


class SegmentationEngine:
    """
    Assigns every pixel to a scribbled segment.

    Labels are processed in ascending id order. Each binary cut pulls the
    current label towards its own scribbles and away from every scribble
    with a larger id, and only still-unassigned pixels take the label, so a
    pixel is never reassigned within one run.
    """

    def __init__(self, config: Optional[SegmentationConfig] = None):
        self.config = config or SegmentationConfig()

    def segment(
        self,
        intensity: np.ndarray,
        scribbles: np.ndarray,
        color_map: ColorMap
    ) -> np.ndarray:
        """
        Recompute the segment raster of a ColorMap from scribbles.

        Args:
            intensity: (H, W) float image in [0, 1]
            scribbles: (H, W) int raster, -1 where nothing is drawn
            color_map: ColorMap whose mask is overwritten

        Returns:
            The updated mask array (same object as color_map.mask)

        Raises:
            SegmentationError: If the inputs are malformed
        """
        intensity, scribbles = self._validate(intensity, np.asarray(scribbles), color_map)
        color_map.new_computation()
        mask = color_map.mask

        height, width = intensity.shape
        right, down = edge_weights(intensity, self.config.k_param, self.config.exponent)
        capacity = np.where(
            (scribbles >= 0) & ((scribbles & SOFT_BIT) != 0),
            self.config.soft_capacity,
            self.config.hard_capacity,
        )
        full = (0, height, 0, width)

        label = BACKGROUND
        self._cut(scribbles, capacity, right, down, color_map, label, full)

        if self.config.shrink_region:
            box = full
            while True:
                remaining, box = self._resolve_areas(scribbles, mask, label, box)
                if not remaining:
                    break
                label = min(remaining)
                self._cut(scribbles, capacity, right, down, color_map, label, box)
        else:
            for label in [i for i in scribble_ids(scribbles) if i > BACKGROUND]:
                self._cut(scribbles, capacity, right, down, color_map, label, full)

        leftover = mask == UNASSIGNED
        if leftover.any():
            logger.debug(f"Assigning {int(leftover.sum())} leftover pixels to {label}")
            mask[leftover] = label

        logger.info(f"Segmented {width}x{height} image into "
                    f"{len(np.unique(mask))} segments")
        return mask

    def _validate(self, intensity, scribbles, color_map) -> Tuple[np.ndarray, np.ndarray]:
        intensity = np.asarray(intensity, dtype=np.float64)
        if intensity.ndim != 2:
            raise SegmentationError(f"Expected 2D intensity, got {intensity.ndim}D")
        if np.shape(scribbles) != intensity.shape:
            raise SegmentationError(
                f"Scribble shape {np.shape(scribbles)} does not match "
                f"intensity shape {intensity.shape}"
            )
        if color_map.shape != intensity.shape:
            raise SegmentationError(
                f"ColorMap shape {color_map.shape} does not match "
                f"intensity shape {intensity.shape}"
            )
        if scribbles.dtype.kind not in 'iu':
            if scribbles.dtype.kind != 'f' or not np.all(np.mod(scribbles, 1) == 0):
                raise SegmentationError(
                    f"Scribble ids must be integers, got dtype {scribbles.dtype}"
                )
        if np.any(scribbles < UNASSIGNED) or np.any(scribbles >= MAX_SEGMENTS):
            raise SegmentationError("Scribble ids must lie in {-1, 0..255}")
        return intensity, scribbles.astype(np.int16)

    def _cut(self, scribbles, capacity, right, down, color_map, label, box) -> None:
        """
        Binary min-cut of label against all larger ids inside a box.

        Only still-unassigned pixels are linked into the graph, so every
        unassigned area is cut on its own and the result does not depend
        on the size of the box. A pixel carrying a hard scribble with a
        larger id never takes label.
        """
        y0, y1, x0, x1 = box
        window = (slice(y0, y1), slice(x0, x1))
        scrib = scribbles[window]
        cap = capacity[window]
        mask = color_map.mask[window]
        free = mask == UNASSIGNED

        right_w = np.zeros(scrib.shape)
        right_w[:, :-1] = right[window][:, :-1] * (free[:, :-1] & free[:, 1:])
        down_w = np.zeros(scrib.shape)
        down_w[:-1, :] = down[window][:-1, :] * (free[:-1, :] & free[1:, :])

        graph = maxflow.Graph[float]()
        nodes = graph.add_grid_nodes(scrib.shape)
        graph.add_grid_edges(nodes, weights=right_w, structure=RIGHT, symmetric=True)
        graph.add_grid_edges(nodes, weights=down_w, structure=DOWN, symmetric=True)
        graph.add_grid_tedges(
            nodes,
            np.where(free & (scrib == label), cap, 0.0),
            np.where(free & (scrib > label), cap, 0.0),
        )
        flow = graph.maxflow()
        sink = graph.get_grid_segments(nodes)

        hard_higher = (scrib > label) & ((scrib & SOFT_BIT) == 0)
        take = ~sink & free & ~hard_higher
        color_map.active = label
        mask[take] = label
        logger.debug(f"Cut for id {label} in box {box}: flow={flow}, "
                     f"assigned {int(take.sum())} pixels")

    def _resolve_areas(
        self,
        scribbles: np.ndarray,
        mask: np.ndarray,
        label: int,
        box: Box
    ) -> Tuple[Set[int], Optional[Box]]:
        """
        Settle unassigned areas that need no further cut.

        Each 4-connected unassigned area inside the box is checked for
        scribble ids larger than label. An area with none takes label, an
        area with exactly one takes that id, and an area with several stays
        unassigned.

        Returns:
            Tuple of (candidate ids of ambiguous areas, union box of those
            areas or None when there are none)
        """
        y0, y1, x0, x1 = box
        window = (slice(y0, y1), slice(x0, x1))
        scrib = scribbles[window]
        sub_mask = mask[window]

        areas, count = ndimage.label(sub_mask == UNASSIGNED)
        remaining: Set[int] = set()
        new_box: Optional[Box] = None

        for index, bounds in enumerate(ndimage.find_objects(areas), start=1):
            if bounds is None:
                continue
            area = areas[bounds] == index
            ids = np.unique(scrib[bounds][area])
            ids = [int(i) for i in ids if i > label]

            if len(ids) <= 1:
                target = ids[0] if ids else label
                sub_mask[bounds][area] = target
                continue

            remaining.update(ids)
            rows, cols = bounds
            new_box = _union(new_box, (y0 + rows.start, y0 + rows.stop,
                                       x0 + cols.start, x0 + cols.stop))

        logger.debug(f"After id {label}: {count} open areas, ambiguous ids {sorted(remaining)}")
        return remaining, new_box


def segment(
    intensity: np.ndarray,
    scribbles: np.ndarray,
    color_map: ColorMap,
    config: Optional[SegmentationConfig] = None
) -> np.ndarray:
    """Segment with a default engine. See SegmentationEngine.segment."""
    return SegmentationEngine(config).segment(intensity, scribbles, color_map)

"""Segment-id raster with its palette and id allocation."""
import logging
from typing import Dict, Iterable, List, Tuple

import numpy as np

from layerseg.types import (
    BACKGROUND,
    MAX_SEGMENTS,
    MAX_SEGMENTS_PER_KIND,
    SOFT_BIT,
    UNASSIGNED,
)

logger = logging.getLogger(__name__)

DEFAULT_COLOR = (1.0, 1.0, 1.0)

HARD = 0
SOFT = 1


class ColorMap:
    """
    Per-pixel segment ids plus the color of every allocated segment.

    Ids 0..127 are hard segments with 0 reserved for background, ids
    128..255 are soft segments. Unassigned pixels hold -1.
    """

    def __init__(self, width: int, height: int):
        self.width = int(width)
        self.height = int(height)
        self.mask = np.full((self.height, self.width), UNASSIGNED, dtype=np.int16)
        self.palette = np.zeros((MAX_SEGMENTS, 3), dtype=np.float32)
        self.palette[BACKGROUND] = DEFAULT_COLOR
        self.counts = [1, 0]
        self.active = BACKGROUND

    @classmethod
    def like(cls, image: np.ndarray) -> "ColorMap":
        """Create an empty map matching the shape of an image."""
        height, width = image.shape[:2]
        return cls(width, height)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def new_segment(self, color: Iterable[float], soft: bool = False) -> bool:
        """
        Allocate the next id of the requested kind and make it active.

        Args:
            color: RGB triple in [0, 1]
            soft: Allocate from the soft range

        Returns:
            False if that kind already holds 128 segments; nothing changes.
        """
        kind = SOFT if soft else HARD
        if self.counts[kind] >= MAX_SEGMENTS_PER_KIND:
            logger.warning(f"Segment capacity reached for {'soft' if soft else 'hard'} ids")
            return False

        self.active = MAX_SEGMENTS_PER_KIND * kind + self.counts[kind]
        self.palette[self.active] = tuple(color)
        self.counts[kind] += 1
        return True

    def reset(self) -> None:
        self.mask.fill(UNASSIGNED)
        self.palette[1:] = 0.0
        self.counts = [1, 0]
        self.active = BACKGROUND

    def new_computation(self) -> None:
        """Clear the mask but keep ids and colors."""
        self.mask.fill(UNASSIGNED)

    def mask_at(self, x: int, y: int) -> int:
        if x < 0 or x >= self.width or y < 0 or y >= self.height:
            return BACKGROUND
        return int(self.mask[y, x])

    def color_at(self, x: int, y: int) -> Tuple[float, float, float]:
        segment_id = self.mask_at(x, y)
        if x < 0 or x >= self.width or y < 0 or y >= self.height or segment_id == UNASSIGNED:
            return DEFAULT_COLOR
        return tuple(float(c) for c in self.palette[segment_id])

    def set_color(self, segment_id: int, color: Iterable[float]) -> None:
        self.palette[segment_id] = tuple(color)

    def segment_ids(self) -> List[int]:
        """All allocated ids in ascending order, background included."""
        hard = list(range(self.counts[HARD]))
        soft = list(range(MAX_SEGMENTS_PER_KIND, MAX_SEGMENTS_PER_KIND + self.counts[SOFT]))
        return hard + soft

    def render(self) -> np.ndarray:
        """RGB image of the mask, unassigned pixels in the default color."""
        image = np.empty(self.mask.shape + (3,), dtype=np.float32)
        image[...] = DEFAULT_COLOR
        assigned = self.mask != UNASSIGNED
        image[assigned] = self.palette[self.mask[assigned]]
        return image

    def consolidate(self, found: Iterable[int], kind: int) -> Dict[int, int]:
        """
        Renumber the used ids of one kind so they are contiguous again.

        The highest used id is moved into each gap, carrying its color along.
        The mask is cleared since its ids are stale afterwards.

        Args:
            found: Ids of this kind still referenced by scribbles
            kind: 0 for hard ids, 1 for soft ids

        Returns:
            Mapping of old id to new id for every moved segment
        """
        remaining = sorted(set(int(i) for i in found))
        changes = {}
        self.counts[kind] = len(remaining)

        start = kind * MAX_SEGMENTS_PER_KIND
        for slot in range(start, start + len(remaining)):
            if slot == remaining[0]:
                remaining.pop(0)
            else:
                moved = remaining.pop()
                self.palette[slot] = self.palette[moved]
                changes[moved] = slot

        self.mask.fill(UNASSIGNED)
        if start <= self.active < start + MAX_SEGMENTS_PER_KIND:
            self.active = start + max(self.counts[kind] - 1, 0)
        logger.debug(f"Consolidated {'soft' if kind else 'hard'} ids: {changes}")
        return changes


def consolidate_scribbles(color_map: ColorMap, graph, scribbles: np.ndarray) -> Dict[int, int]:
    """
    Drop ids that no scribble references any more.

    Each kind whose used-id count differs from the allocated count is
    renumbered; the scribble raster is rewritten in place and the occlusion
    graph is reset to the new counts, losing its edges.

    Args:
        color_map: ColorMap owning the id counts
        graph: OcclusionGraph to reset
        scribbles: (H, W) int scribble raster, -1 where empty

    Returns:
        Mapping of old id to new id for every moved segment. It is empty
        when nothing moved, even if a trailing id was dropped.
    """
    used = np.unique(scribbles[scribbles >= 0])
    # Background keeps id 0 whether or not it is scribbled
    marks = [
        sorted({BACKGROUND} | {int(i) for i in used if not int(i) & SOFT_BIT}),
        sorted(int(i) for i in used if int(i) & SOFT_BIT),
    ]

    changes = {}
    renumbered = False
    for kind in (HARD, SOFT):
        if len(marks[kind]) != color_map.counts[kind]:
            changes.update(color_map.consolidate(marks[kind], kind))
            renumbered = True

    if renumbered:
        graph.reset(color_map.counts)
        if changes:
            lut = np.arange(-1, MAX_SEGMENTS, dtype=scribbles.dtype)
            for old, new in changes.items():
                lut[old + 1] = new
            scribbles[...] = lut[scribbles + 1]
        logger.info(f"Renumbered segments, counts now {color_map.counts}")
    return changes

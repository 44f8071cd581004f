"""Reconstruction of the hidden parts of occluded segments."""
import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage

from layerseg.boundary_extraction import BorderAnalysis, analyze_borders
from layerseg.color_map import ColorMap
from layerseg.distance_field import relaxation_distances
from layerseg.laplace_solver import EXCLUDED, UNKNOWN, solve_laplace, unknown_ids
from layerseg.occlusion_graph import OcclusionGraph
from layerseg.types import (
    BACKGROUND,
    BlockFlag,
    EdgeType,
    ShapeFillConfig,
    Silhouette,
    SolverError,
)

logger = logging.getLogger(__name__)

INSIDE = 1.0
HARD_CUT = 0.0
MERGE = 0.25

SQUARE = np.ones((3, 3), dtype=bool)


def preprocess_intensity(intensity: np.ndarray, config: ShapeFillConfig) -> np.ndarray:
    """
    Turn a grayscale drawing into a binary line image.

    Gamma correction pushes everything but paper white towards black, the
    blur closes small gaps in strokes and the threshold keeps 1 for paper
    and 0 for lines.
    """
    sigma = config.blur_sigma
    radius = int(6 * sigma + 1)
    corrected = np.asarray(intensity, dtype=np.float64) ** config.gamma
    blurred = ndimage.gaussian_filter(corrected, sigma, mode='nearest', truncate=radius / sigma)
    return (blurred > config.blur_threshold).astype(np.float64)


def _neighbor_stack(image: np.ndarray, fill: float) -> np.ndarray:
    """Up, left, down and right neighbors of every pixel, padded with fill."""
    padded = np.pad(image, 1, mode='constant', constant_values=fill)
    return np.stack([
        padded[:-2, 1:-1],
        padded[1:-1, :-2],
        padded[2:, 1:-1],
        padded[1:-1, 2:],
    ])


def find_border(src: np.ndarray) -> Tuple[np.ndarray, np.ndarray, int]:
    """
    Boundary conditions for the pixels covered by occluders.

    Only occluder pixels (value 0) take part. One next to the segment
    (value 1) becomes known foreground, one next to free space (value 0.5)
    becomes known background and any other becomes unknown. Every pixel
    that is not an occluder is excluded.

    Args:
        src: Working image with 1 segment, 0 occluder and 0.5 elsewhere

    Returns:
        Tuple of (field, ids, n) where ids numbers the unknowns in raster
        order and n is their count
    """
    neighbors = _neighbor_stack(src, EXCLUDED)
    occluder = src == 0
    dst = np.full(src.shape, EXCLUDED)
    dst[occluder] = UNKNOWN
    dst[occluder & (neighbors == UNKNOWN).any(axis=0)] = 0.0
    dst[occluder & (neighbors == 1.0).any(axis=0)] = 1.0
    ids, n = unknown_ids(dst)
    return dst, ids, n


def scale_down(image: np.ndarray, scale: int) -> np.ndarray:
    """
    Majority-vote block reduction of a working image.

    The result has ceil(dim / scale) + 1 cells per axis; the extra padding
    row and column stay unknown. Unknown pixels do not vote, and a block
    with no votes or fewer votes than half of its in-image area is unknown.
    Ties go to foreground.
    """
    h, w = image.shape
    new_h, new_w = math.ceil(h / scale) + 1, math.ceil(w / scale) + 1

    padded = np.full((new_h * scale, new_w * scale), UNKNOWN)
    padded[:h, :w] = image
    inside = np.zeros(padded.shape, dtype=bool)
    inside[:h, :w] = True

    def block_sum(values):
        return values.reshape(new_h, scale, new_w, scale).sum(axis=(1, 3))

    ones = block_sum(padded == 1.0)
    zeros = block_sum(padded == 0.0)
    area = block_sum(inside)

    votes = ones + zeros
    result = np.where(zeros > ones, 0.0, 1.0)
    result[(votes == 0) | (votes < area // 2)] = UNKNOWN
    return result


def scale_up(coarse: np.ndarray, shape: Tuple[int, int], scale: int) -> np.ndarray:
    """
    Bilinear interpolation of a coarse estimate back to full resolution.

    Negative coarse values count as 0. Sample indices are clamped to the
    blocks that overlap the image, so the padding cells of scale_down never
    leak in.
    """
    h, w = shape
    last_y = math.ceil(h / scale) - 1
    last_x = math.ceil(w / scale) - 1
    values = np.clip(coarse, 0.0, None)

    ys, xs = np.arange(h), np.arange(w)
    y0, x0 = ys // scale, xs // scale
    y1, x1 = np.minimum(y0 + 1, last_y), np.minimum(x0 + 1, last_x)
    fy = ((ys % scale) / scale)[:, None]
    fx = ((xs % scale) / scale)[None, :]

    return (
        values[np.ix_(y0, x0)] * (1 - fx) * (1 - fy)
        + values[np.ix_(y0, x1)] * fx * (1 - fy)
        + values[np.ix_(y1, x0)] * (1 - fx) * fy
        + values[np.ix_(y1, x1)] * fx * fy
    )


def relax(
    estimate: np.ndarray,
    distances: np.ndarray,
    max_iterations: int = 20,
    tolerance: float = 1e-5
) -> int:
    """
    Variable-kernel Gauss-Seidel smoothing of an estimate, in place.

    Every pixel with a positive distance that is not excluded becomes the
    mean of the four samples found at an offset of max(1, distance * f).
    f is 1 for the first half of the iterations and then shrinks linearly
    towards 0. Excluded samples enter the mean with their value of -1.

    Returns:
        Number of iterations run
    """
    h, w = estimate.shape
    ys, xs = np.nonzero((distances > 0) & (estimate != EXCLUDED))
    pixels = list(zip(ys.tolist(), xs.tolist(), distances[ys, xs].tolist()))

    iteration = 0
    while iteration < max_iterations:
        iteration += 1
        factor = 1.0
        if iteration >= max_iterations / 2:
            factor = 1.0 - iteration / max_iterations

        change = 0.0
        for y, x, dist in pixels:
            offset = int(max(dist * factor, 1.0))
            total = 0.0
            count = 0
            for sy, sx in ((y - offset, x), (y + offset, x), (y, x - offset), (y, x + offset)):
                if 0 <= sy < h and 0 <= sx < w:
                    total += estimate[sy, sx]
                    count += 1
            value = total / count
            change = max(change, abs(value - estimate[y, x]))
            estimate[y, x] = value

        if change <= tolerance:
            break
    return iteration


def threshold(
    estimate: np.ndarray,
    label_window: np.ndarray,
    segment_id: int,
    incidences: Sequence[int]
) -> np.ndarray:
    """Binary shape: own pixels plus occluder pixels estimated >= 0.5."""
    covered = (estimate >= 0.5) & np.isin(label_window, list(incidences))
    return np.where((label_window == segment_id) | covered, 1.0, 0.0)


def bold_border(boundary: np.ndarray) -> np.ndarray:
    """Thicken contour pixels by one pixel; hard cuts win over merge markers."""
    bold = np.full(boundary.shape, INSIDE)
    bold[ndimage.binary_dilation(boundary == MERGE, structure=SQUARE)] = MERGE
    bold[ndimage.binary_dilation(boundary == HARD_CUT, structure=SQUARE)] = HARD_CUT
    return bold


class ShapeFill:
    """
    Reconstructs the silhouettes of segments hidden behind nearer ones.

    Segments are visited by increasing depth. A segment with nearer
    neighbors gets its hidden part estimated with a coarse Laplace solve
    refined by distance-weighted relaxation. Every other segment is
    exported from its visible outline.
    """

    def __init__(self, config: Optional[ShapeFillConfig] = None):
        self.config = config or ShapeFillConfig()

    def reconstruct(
        self,
        color_map: ColorMap,
        graph: OcclusionGraph,
        intensity: np.ndarray,
        block_mask: Optional[np.ndarray] = None
    ) -> List[Silhouette]:
        """
        Build one silhouette per segment that is not isolated.

        Args:
            color_map: ColorMap holding a complete segment raster
            graph: OcclusionGraph with the occlusion edges
            intensity: (H, W) grayscale drawing in [0, 1]
            block_mask: Optional (H, W) BlockFlag raster

        Returns:
            Silhouettes in export order
        """
        if not graph.order:
            logger.info("Occlusion order is empty, nothing to reconstruct")
            return []

        labels = color_map.mask
        if block_mask is None:
            block_mask = np.zeros(labels.shape, dtype=np.uint8)
        graph.compute_depths()
        line_image = preprocess_intensity(intensity, self.config)
        analysis = analyze_borders(labels, graph, line_image, block_mask)

        silhouettes = []
        for segment_id in self.processing_order(graph):
            if segment_id == BACKGROUND or segment_id in analysis.alone:
                continue
            if segment_id not in analysis.boxes:
                continue

            index = len(silhouettes)
            if not analysis.incidences.get(segment_id):
                silhouettes.append(self.export_outline(
                    segment_id, index, labels, graph, line_image, block_mask, analysis
                ))
                continue

            try:
                silhouettes.append(self.fill_segment(
                    segment_id, index, labels, graph, line_image, block_mask, analysis
                ))
            except SolverError as e:
                logger.warning(f"Skipping segment {segment_id}: {e}")

        logger.info(f"Reconstructed {len(silhouettes)} silhouettes")
        return silhouettes

    def processing_order(self, graph: OcclusionGraph) -> List[int]:
        """Topological order stably sorted by depth."""
        return sorted(graph.order, key=graph.depth_of)

    def fill_segment(
        self,
        segment_id: int,
        index: int,
        labels: np.ndarray,
        graph: OcclusionGraph,
        line_image: np.ndarray,
        block_mask: np.ndarray,
        analysis: BorderAnalysis
    ) -> Silhouette:
        """Estimate the hidden part of one segment inside its window."""
        y0, y1, x0, x1 = analysis.windows[segment_id]
        window = (slice(y0, y1), slice(x0, x1))
        label_window = labels[window]
        incidences = analysis.incidences[segment_id]
        scale = self.config.scale

        work = np.full(label_window.shape, UNKNOWN)
        work[np.isin(label_window, incidences)] = 0.0
        work[label_window == segment_id] = 1.0

        border, _, _ = find_border(work)

        coarse, ids, n = find_border(scale_down(work, scale))
        coarse = solve_laplace(coarse, ids, n)

        estimate = scale_up(coarse, work.shape, scale)
        estimate[work != 0.0] = EXCLUDED
        known = (border == 0.0) | (border == 1.0)
        estimate[known] = border[known]

        iterations = relax(
            estimate,
            relaxation_distances(border),
            self.config.max_iterations,
            self.config.tolerance,
        )
        shape = threshold(estimate, label_window, segment_id, incidences)
        logger.debug(f"Segment {segment_id}: window {analysis.windows[segment_id]}, "
                     f"{n} coarse unknowns, {iterations} relaxation passes")

        mask = np.zeros(labels.shape)
        mask[window] = shape
        boundary = self.classify_boundary(
            shape, (y0, x0), segment_id, labels, graph, line_image, block_mask
        )
        return Silhouette(segment_id, index, mask, bold_border(boundary), True)

    def classify_boundary(
        self,
        shape: np.ndarray,
        origin: Tuple[int, int],
        segment_id: int,
        labels: np.ndarray,
        graph: OcclusionGraph,
        line_image: np.ndarray,
        block_mask: np.ndarray
    ) -> np.ndarray:
        """
        Classify every contour pixel of a thresholded shape.

        Contour pixels lie on the window edge or next to a 0 pixel of the
        shape. Each becomes a hard cut (0.0) or a merge marker (0.25); all
        other pixels are 1.0.

        Args:
            shape: Binary shape inside the window
            origin: (y, x) of the window in the image
            segment_id: Segment being reconstructed
            labels: Full segment raster
            graph: OcclusionGraph for edge types and depths
            line_image: Preprocessed intensity, 0 on lines
            block_mask: BlockFlag raster

        Returns:
            Full-image float raster
        """
        boundary = np.full(labels.shape, INSIDE)
        filled = shape != 0.0
        # Window edges count as contour
        outside = ~_neighbor_stack(filled.astype(np.float64), 0.0).astype(bool)
        contour = filled & outside.any(axis=0)

        oy, ox = origin
        for y, x in zip(*np.nonzero(contour)):
            boundary[oy + y, ox + x] = self._classify_pixel(
                oy + y, ox + x, segment_id, labels, graph, line_image, block_mask
            )
        return boundary

    def _classify_pixel(self, y, x, segment_id, labels, graph, line_image, block_mask) -> float:
        h, w = labels.shape
        config = self.config
        if block_mask[y, x] == BlockFlag.FORBID:
            return HARD_CUT
        if y == 0 or x == 0 or y == h - 1 or x == w - 1:
            return HARD_CUT

        around = [(y - 1, x), (y, x - 1), (y, x + 1), (y + 1, x)]
        neighbor_ids = [int(labels[p]) for p in around]
        enclosed = BACKGROUND not in neighbor_ids

        if block_mask[y, x] == BlockFlag.FORCE and enclosed:
            return MERGE

        own = int(labels[y, x]) == segment_id
        if own and any(line_image[p] < config.white_threshold for p in around):
            return HARD_CUT

        if not enclosed:
            return HARD_CUT

        types = [graph.edge_type(segment_id, nbr) for nbr in set(neighbor_ids) - {segment_id}]
        if EdgeType.FORCED_SPLIT in types:
            return HARD_CUT
        if EdgeType.FORCED_MERGE in types:
            return MERGE

        depth = graph.depth_of(segment_id)
        neighbor_depths = [graph.depth_of(nbr) for nbr in neighbor_ids]
        if any(d - depth == config.merge_depth_gap for d in neighbor_depths):
            return MERGE

        # Open contour: the segment covers shallower neighbors across paper white
        if (own and line_image[y, x] >= config.white_threshold
                and any(d < depth for d in neighbor_depths)):
            return MERGE

        return HARD_CUT

    def export_outline(
        self,
        segment_id: int,
        index: int,
        labels: np.ndarray,
        graph: OcclusionGraph,
        line_image: np.ndarray,
        block_mask: np.ndarray,
        analysis: BorderAnalysis
    ) -> Silhouette:
        """Silhouette of a segment nothing covers, taken from its own outline."""
        h, w = labels.shape
        own = labels == segment_id
        boundary = np.full(labels.shape, INSIDE)
        white = self.config.white_threshold

        for y, x in zip(*np.nonzero(analysis.borders & own)):
            if y == 0 or x == 0 or y == h - 1 or x == w - 1 or block_mask[y, x] == BlockFlag.FORBID:
                boundary[y, x] = HARD_CUT
                continue
            around = [(y, x), (y - 1, x), (y + 1, x), (y, x - 1), (y, x + 1)]
            enclosed = all(labels[p] != BACKGROUND for p in around[1:])
            paper = all(line_image[p] >= white for p in around)
            if enclosed and (block_mask[y, x] == BlockFlag.FORCE or paper):
                boundary[y, x] = MERGE
            else:
                boundary[y, x] = HARD_CUT

        logger.debug(f"Segment {segment_id}: exported from outline")
        return Silhouette(segment_id, index, own.astype(np.float64), bold_border(boundary), False)


def reconstruct(
    color_map: ColorMap,
    graph: OcclusionGraph,
    intensity: np.ndarray,
    block_mask: Optional[np.ndarray] = None,
    config: Optional[ShapeFillConfig] = None
) -> List[Silhouette]:
    """Reconstruct with a default engine. See ShapeFill.reconstruct."""
    return ShapeFill(config).reconstruct(color_map, graph, intensity, block_mask)

"""Core types for layered scribble segmentation."""
from dataclasses import dataclass
from enum import IntEnum
import numpy as np


# Ids 0..127 are hard segments (0 is background), 128..255 are soft segments.
MAX_SEGMENTS_PER_KIND = 128
MAX_SEGMENTS = 2 * MAX_SEGMENTS_PER_KIND
SOFT_BIT = 0x80

UNASSIGNED = -1
BACKGROUND = 0


class EdgeType(IntEnum):
    """Relation between two segments across their shared contour."""
    DEFAULT = 0
    FORCED_MERGE = 1
    FORCED_SPLIT = 2


class BlockFlag(IntEnum):
    """Per-pixel user override of contour classification."""
    NONE = 0
    FORBID = 1  # never merge here
    FORCE = 2   # always merge here


@dataclass
class SegmentationConfig:
    """Configuration for the multilabel min-cut segmentation."""
    # Scribble capacity; soft scribbles are weakened by soft_parameter
    k_param: float = 4000.0
    soft_parameter: float = 16.0

    # Pairwise weight is int(1 + k_param * min(a, b) ** exponent)
    exponent: float = 2.0

    # Restrict later cuts to ambiguous areas only
    shrink_region: bool = True

    def __post_init__(self):
        if self.k_param <= 0:
            raise ValueError(f"k_param must be positive, got {self.k_param}")
        if self.soft_parameter < 1:
            raise ValueError(f"soft_parameter must be >= 1, got {self.soft_parameter}")
        if self.exponent <= 0:
            raise ValueError(f"exponent must be positive, got {self.exponent}")

    @property
    def hard_capacity(self) -> float:
        return self.k_param

    @property
    def soft_capacity(self) -> float:
        return self.k_param / self.soft_parameter


@dataclass
class ShapeFillConfig:
    """Configuration for occluded shape reconstruction."""
    # Coarse solve
    scale: int = 2

    # Gauss-Seidel relaxation
    max_iterations: int = 20
    tolerance: float = 1e-5

    # Contour heuristics
    white_threshold: float = 0.985
    merge_depth_gap: int = 1

    # Line image preprocessing
    gamma: float = 9.0
    variance_base: float = 0.5
    blur_level: float = 1.5
    blur_threshold: float = 0.65

    def __post_init__(self):
        if self.scale < 1:
            raise ValueError(f"scale must be >= 1, got {self.scale}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {self.tolerance}")
        if not 0.0 <= self.blur_threshold <= 1.0:
            raise ValueError(f"blur_threshold must be in [0, 1], got {self.blur_threshold}")

    @property
    def blur_sigma(self) -> float:
        return 1.0 + self.variance_base * self.blur_level


@dataclass
class Silhouette:
    """Reconstructed shape of one segment."""
    segment_id: int
    index: int
    mask: np.ndarray      # (H, W) float, 1 inside the shape
    boundary: np.ndarray  # (H, W) float in {0.0, 0.25, 1.0}
    reconstructed: bool = True

    @property
    def hard_contour(self) -> np.ndarray:
        return self.boundary == 0.0

    @property
    def merge_contour(self) -> np.ndarray:
        return self.boundary == 0.25


def is_soft(segment_id: int) -> bool:
    """True for ids in the soft range."""
    return bool(segment_id & SOFT_BIT)


class LayerSegError(Exception):
    """Base exception for layered segmentation errors."""
    pass


class SegmentationError(LayerSegError):
    """Invalid input to the segmentation engine."""
    pass


class SolverError(LayerSegError):
    """Sparse linear solve failed or produced non-finite values."""
    pass


class IngestError(LayerSegError):
    """Image could not be loaded."""
    pass

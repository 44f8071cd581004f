"""Layered scribble segmentation and occluded shape reconstruction."""
from layerseg.types import (
    EdgeType,
    BlockFlag,
    SegmentationConfig,
    ShapeFillConfig,
    Silhouette,
    LayerSegError,
    SegmentationError,
    SolverError,
    IngestError,
)
from layerseg.color_map import ColorMap, consolidate_scribbles
from layerseg.occlusion_graph import OcclusionGraph
from layerseg.segmentation import SegmentationEngine, segment, background_frame
from layerseg.shape_fill import ShapeFill, reconstruct

__all__ = [
    "EdgeType",
    "BlockFlag",
    "SegmentationConfig",
    "ShapeFillConfig",
    "Silhouette",
    "LayerSegError",
    "SegmentationError",
    "SolverError",
    "IngestError",
    "ColorMap",
    "consolidate_scribbles",
    "OcclusionGraph",
    "SegmentationEngine",
    "segment",
    "background_frame",
    "ShapeFill",
    "reconstruct",
]

"""Pytest configuration and fixtures."""

import numpy as np
import pytest

from layerseg.color_map import ColorMap
from layerseg.occlusion_graph import OcclusionGraph
from layerseg.segmentation import background_frame


def compartment_image(walls=(7, 12), height=14, width=20):
    """White page with a dark rectangle split into compartments by vertical walls."""
    intensity = np.ones((height, width))
    intensity[1, 1:width - 1] = 0.0
    intensity[height - 2, 1:width - 1] = 0.0
    intensity[1:height - 1, 1] = 0.0
    intensity[1:height - 1, width - 2] = 0.0
    for col in walls:
        intensity[1:height - 1, col] = 0.0
    return intensity


@pytest.fixture
def bisector_case():
    """Uniform 10x10 image with two vertical scribbles inside a background frame."""
    intensity = np.full((10, 10), 0.5)
    scribbles = background_frame(10, 10, radius=0)
    scribbles[3:7, 3] = 1
    scribbles[3:7, 6] = 2
    color_map = ColorMap(10, 10)
    color_map.new_segment((1, 0, 0))
    color_map.new_segment((0, 1, 0))
    return intensity, scribbles, color_map


@pytest.fixture
def compartments():
    """Three walled compartments, each with one scribble."""
    intensity = compartment_image()
    scribbles = background_frame(20, 14, radius=0)
    scribbles[5:8, 4] = 1
    scribbles[5:8, 9] = 2
    scribbles[5:8, 15] = 3
    return intensity, scribbles


@pytest.fixture
def occluded_square():
    """Segment 1 partly covered by segment 2, which sticks out into the background."""
    mask = np.zeros((20, 20), dtype=np.int16)
    mask[4:16, 4:16] = 1
    mask[8:12, 10:18] = 2
    color_map = ColorMap(20, 20)
    color_map.new_segment((1, 0, 0))
    color_map.new_segment((0, 0, 1))
    color_map.mask[...] = mask
    graph = OcclusionGraph(color_map.counts)
    assert graph.add_edge(1, 2)
    return color_map, graph, np.ones((20, 20))

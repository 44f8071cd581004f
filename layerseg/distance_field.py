"""Euclidean distance to the nearest boundary pixel."""
import numpy as np
from scipy import ndimage

# Squared distance reported when an image has no boundary pixel at all
HIGH_CONSTANT = 1e9


def distance_field(boundary: np.ndarray) -> np.ndarray:
    """
    Exact Euclidean distance from every pixel to the closest boundary pixel.

    Args:
        boundary: 2D boolean array, True on boundary pixels

    Returns:
        Float array of distances, 0 on the boundary itself
    """
    boundary = np.asarray(boundary, dtype=bool)
    if not boundary.any():
        return np.full(boundary.shape, np.sqrt(HIGH_CONSTANT))
    return ndimage.distance_transform_edt(~boundary)


def relaxation_distances(field: np.ndarray) -> np.ndarray:
    """Distance of each unknown (0.5) pixel to the nearest settled pixel."""
    return distance_field(field != 0.5)

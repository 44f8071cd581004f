"""Sparse Laplace solve over the unknown pixels of a ternary field."""
import logging
import warnings
from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sparse
from scipy.sparse.linalg import MatrixRankWarning, spsolve

from layerseg.types import SolverError

logger = logging.getLogger(__name__)

UNKNOWN = 0.5
EXCLUDED = -1.0

OFFSETS = ((0, -1), (0, 1), (-1, 0), (1, 0))


def unknown_ids(field: np.ndarray) -> Tuple[np.ndarray, int]:
    """Sequential raster-order ids for unknown pixels, -1 elsewhere."""
    unknown = field == UNKNOWN
    ids = np.full(field.shape, -1, dtype=np.int64)
    n = int(unknown.sum())
    ids[unknown] = np.arange(n)
    return ids, n


def build_system(
    field: np.ndarray,
    ids: Optional[np.ndarray] = None,
    n: Optional[int] = None
) -> Tuple[sparse.csc_matrix, np.ndarray]:
    """
    Assemble the discrete Laplace system A x = b for the unknown pixels.

    Each row belongs to one unknown pixel. An unknown 4-neighbor adds a
    coefficient of 1, a known neighbor moves its value to the right-hand
    side, and an excluded or out-of-bounds neighbor only lowers the
    neighbor count. The diagonal is minus that count.

    Args:
        field: 2D float array with -1 excluded, 0.5 unknown, other values known
        ids: Optional precomputed row index per unknown pixel
        n: Number of unknowns when ids is given

    Returns:
        Tuple of (A, b)
    """
    if ids is None or n is None:
        ids, n = unknown_ids(field)

    height, width = field.shape
    ys, xs = np.nonzero(field == UNKNOWN)
    rows = ids[ys, xs]

    diag = np.full(len(rows), 4.0)
    b = np.zeros(n, dtype=np.float64)
    coef_rows = []
    coef_cols = []

    for dy, dx in OFFSETS:
        ny, nx = ys + dy, xs + dx
        inside = (ny >= 0) & (ny < height) & (nx >= 0) & (nx < width)
        values = np.full(len(rows), EXCLUDED)
        values[inside] = field[ny[inside], nx[inside]]

        missing = values == EXCLUDED
        diag[missing] -= 1.0

        unknown = values == UNKNOWN
        coef_rows.append(rows[unknown])
        coef_cols.append(ids[ny[unknown], nx[unknown]])

        known = ~missing & ~unknown
        np.subtract.at(b, rows[known], values[known])

    coef_rows.append(rows)
    coef_cols.append(rows)
    data = np.concatenate(
        [np.ones(sum(len(r) for r in coef_rows[:-1])), -diag]
    )
    matrix = sparse.coo_matrix(
        (data, (np.concatenate(coef_rows), np.concatenate(coef_cols))),
        shape=(n, n),
    )
    return matrix.tocsc(), b


def solve_laplace(
    field: np.ndarray,
    ids: Optional[np.ndarray] = None,
    n: Optional[int] = None
) -> np.ndarray:
    """
    Replace the unknown entries of a ternary field by their harmonic fill.

    Known and excluded entries are left untouched.

    Args:
        field: 2D float array with -1 excluded, 0.5 unknown, other values known
        ids: Optional precomputed row index per unknown pixel
        n: Number of unknowns when ids is given

    Returns:
        New array with the unknown entries solved

    Raises:
        SolverError: If the system is singular or the solution is not finite
    """
    field = np.asarray(field, dtype=np.float64)
    if ids is None or n is None:
        ids, n = unknown_ids(field)

    result = field.copy()
    if n == 0:
        return result

    matrix, b = build_system(field, ids, n)

    # -A is symmetric positive definite whenever every unknown component
    # touches a known pixel
    with warnings.catch_warnings():
        warnings.simplefilter("error", MatrixRankWarning)
        try:
            x = spsolve(-matrix, -b)
        except (MatrixRankWarning, RuntimeError) as e:
            raise SolverError(f"Laplace system with {n} unknowns is singular: {e}")

    x = np.atleast_1d(x)
    if not np.all(np.isfinite(x)):
        raise SolverError(f"Laplace solve produced non-finite values for {n} unknowns")

    unknown = field == UNKNOWN
    result[unknown] = x[ids[unknown]]
    logger.debug(f"Solved Laplace system with {n} unknowns")
    return result

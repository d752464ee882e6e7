"""Distances between embedded points in Euclidean or hyperbolic space, and the reverse.

Points for ``n`` taxa in ``d`` dimensions are stored as one flat vector of
length ``n*d``, with the coordinates of taxon ``i`` at ``i*d .. i*d + d - 1``.
Distance matrices are ``n x n`` and upper triangular with a zero diagonal.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

__all__ = [
    "POINTSPAN_EUC",
    "POINTSPAN_HYP",
    "check_distance_matrix",
    "compute_pointscale",
    "double_center",
    "estimate_points_euclidean",
    "estimate_points_hyperbolic",
    "median_upper_triangle",
    "points_to_distances",
    "points_to_distances_euclidean",
    "points_to_distances_hyperbolic",
]

# Typical spread of the embedded points, relative to the median distance.
POINTSPAN_EUC = 5.0
POINTSPAN_HYP = 2.0

DiameterPair = Tuple[int, int]


def _as_points(points, n: int) -> np.ndarray:
    arr = np.asarray(points, dtype=float).ravel()
    if n <= 0 or arr.size == 0 or arr.size % n != 0:
        raise ValueError(f"cannot split {arr.size} coordinates into {n} points")
    return arr.reshape(n, arr.size // n)


def _square(dist) -> np.ndarray:
    mat = np.asarray(dist, dtype=float)
    if mat.ndim != 2 or mat.shape[0] != mat.shape[1]:
        raise ValueError("distance matrix must be square")
    return mat


def _upper_with_diameter(full: np.ndarray) -> Tuple[np.ndarray, DiameterPair]:
    upper = np.triu(full, 1)
    if upper.size == 0 or upper.max() <= 0.0:
        return upper, (-1, -1)
    i, j = np.unravel_index(int(np.argmax(upper)), upper.shape)
    return upper, (int(i), int(j))


def points_to_distances_euclidean(points, n: int,
                                  pointscale: float) -> Tuple[np.ndarray, DiameterPair]:
    """Euclidean distances divided by ``pointscale``.

    Returns the upper-triangular distance matrix and the pair of taxa at the
    largest distance (``(-1, -1)`` if every distance is zero).
    """
    x = _as_points(points, n)
    diff = x[:, None, :] - x[None, :, :]
    full = np.sqrt(np.sum(diff * diff, axis=2)) / pointscale
    return _upper_with_diameter(full)


def points_to_distances_hyperbolic(points, n: int, pointscale: float,
                                   negcurvature: float) -> Tuple[np.ndarray, DiameterPair]:
    """Distances on the hyperboloid of curvature ``-negcurvature``.

    Each point's leading coordinate is implied by the others so that it lies on
    the hyperboloid.  Returns the distance matrix and the diameter pair.
    """
    if negcurvature <= 0:
        raise ValueError("negcurvature must be positive")
    x = _as_points(points, n)
    alpha = 1.0 / math.sqrt(negcurvature)
    x0 = np.sqrt(1.0 + np.sum(x * x, axis=1))
    u = np.outer(x0, x0) - x @ x.T
    full = (alpha / pointscale) * np.arccosh(np.maximum(u, 1.0))
    if not np.all(np.isfinite(full)):
        raise FloatingPointError("non-finite hyperbolic distance")
    return _upper_with_diameter(full)


def points_to_distances(points, n: int, pointscale: float, hyperbolic: bool,
                        negcurvature: float) -> Tuple[np.ndarray, DiameterPair]:
    """Distances in the chosen geometry."""
    if hyperbolic:
        return points_to_distances_hyperbolic(points, n, pointscale, negcurvature)
    return points_to_distances_euclidean(points, n, pointscale)


def check_distance_matrix(dist) -> None:
    """Raise ValueError unless ``dist`` is square, strictly upper triangular,
    non-negative and finite."""
    mat = _square(dist)
    if np.any(np.tril(mat) != 0):
        raise ValueError("distance matrix must be upper triangular "
                         "and have zeroes on main diagonal")
    if np.any(~np.isfinite(mat)) or np.any(mat < 0):
        raise ValueError("entries in distance matrix must be nonnegative and finite")


def median_upper_triangle(dist) -> float:
    """Median of the entries above the main diagonal (NaN if there are none)."""
    mat = _square(dist)
    values = mat[np.triu_indices(mat.shape[0], 1)]
    if values.size == 0:
        return float("nan")
    return float(np.median(values))


def compute_pointscale(dist, hyperbolic: bool, negcurvature: float) -> float:
    """Scale factor that puts the median distance at a fixed span of the embedding."""
    median = median_upper_triangle(dist)
    if not math.isfinite(median) or median <= 0.0:
        return 1.0
    if hyperbolic:
        return POINTSPAN_HYP / (median * math.sqrt(negcurvature))
    return POINTSPAN_EUC / median


def double_center(matrix, negate: bool) -> np.ndarray:
    """Return ``J M J / 2`` with ``J`` the centring matrix, negated if ``negate``."""
    mat = _square(matrix)
    n = mat.shape[0]
    center = np.eye(n) - np.full((n, n), 1.0 / n)
    result = 0.5 * (center @ mat @ center)
    return -result if negate else result


def _check_dim(mat: np.ndarray, dim: int) -> None:
    if not 1 <= dim <= mat.shape[0]:
        raise ValueError(f"dimension {dim} invalid for {mat.shape[0]} taxa")


def _symmetric(mat: np.ndarray) -> np.ndarray:
    upper = np.triu(mat, 1)
    return upper + upper.T


def estimate_points_euclidean(dist, dim: int, pointscale: float) -> np.ndarray:
    """Embed taxa in ``dim`` Euclidean dimensions by classical multidimensional
    scaling; returns the flat point vector, multiplied by ``pointscale``."""
    mat = _square(dist)
    _check_dim(mat, dim)
    n = mat.shape[0]
    gram = double_center(_symmetric(mat) ** 2, True)
    evals, evecs = np.linalg.eigh(gram)
    points = np.empty((n, dim))
    for d in range(dim):
        col = n - 1 - d
        points[:, d] = math.sqrt(max(float(evals[col]), 0.0)) * evecs[:, col]
    return (points * pointscale).ravel()


def estimate_points_hyperbolic(dist, dim: int, pointscale: float,
                               negcurvature: float) -> np.ndarray:
    """Embed taxa in ``dim`` hyperbolic dimensions by the hydra method; returns the
    flat point vector."""
    if negcurvature <= 0:
        raise ValueError("negcurvature must be positive")
    mat = _square(dist)
    _check_dim(mat, dim)
    n = mat.shape[0]
    a = np.cosh(math.sqrt(negcurvature) * _symmetric(mat) * pointscale)
    np.fill_diagonal(a, 1.0)
    evals, evecs = np.linalg.eigh(a)
    points = np.empty((n, dim))
    for d in range(dim):
        ev = -float(evals[d])
        if not math.isfinite(ev):
            raise FloatingPointError("non-finite eigenvalue")
        if ev < 0:
            ev = 1e-6
        points[:, d] = math.sqrt(ev) * evecs[:, d]
    if not np.all(np.isfinite(points)):
        raise FloatingPointError("non-finite embedded coordinate")
    return points.ravel()
"""Parameterisations of the covariance of the embedding distribution."""

from __future__ import annotations

import math
from enum import Enum
from typing import Optional, TextIO, Tuple

import numpy as np

from vinephylo.geometry import compute_pointscale, double_center

__all__ = ["LAMBDA_INIT", "VARFLOOR", "CovarData", "CovarType", "laplacian_pinv"]

VARFLOOR = 1e-5
LAMBDA_INIT = 0.1


class CovarType(Enum):
    """How the covariance matrix is parameterised."""

    CONST = "const"
    DIAG = "diag"
    DIST = "dist"
    LOWR = "lowr"


def laplacian_pinv(dist, nseqs: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Laplacian pseudoinverse built from an upper-triangular distance matrix.

    The double-centred distance matrix is shifted to be positive definite and
    rescaled so that its trace equals ``nseqs``.  Returns the matrix with its
    eigenvalues (ascending) and eigenvectors.
    """
    mat = np.asarray(dist, dtype=float)
    upper = np.triu(mat, 1)
    lapl = double_center(upper + upper.T, True)
    evals, evecs = np.linalg.eigh(lapl)
    min_eval = float(evals[0])
    if min_eval < 0:
        epsilon = -min_eval + 1e-6
        lapl = lapl + epsilon * np.eye(lapl.shape[0])
        evals = evals + epsilon
    trace = float(np.sum(evals))
    return lapl * (nseqs / trace), evals * (nseqs / trace), evecs


def _format_matrix(mat: np.ndarray) -> str:
    return "".join(" ".join(f"{v:f}" for v in row) + "\n" for row in np.atleast_2d(mat))


def _format_vector(vec: np.ndarray) -> str:
    return " ".join(f"{v:f}" for v in vec) + "\n"


class CovarData:
    """Free parameters and auxiliary data defining the covariance matrix."""

    def __init__(self, covar_type, dist, dim: int, rank: int = 0, var_reg: float = 0.0,
                 hyperbolic: bool = False, negcurvature: float = 1.0,
                 rng: Optional[np.random.Generator] = None) -> None:
        self.type = CovarType(covar_type)
        mat = np.array(dist, dtype=float)
        if mat.ndim != 2 or mat.shape[0] != mat.shape[1]:
            raise ValueError("distance matrix must be square")
        if dim <= 0:
            raise ValueError("dim must be positive")
        self.dist = mat
        self.nseqs = mat.shape[0]
        self.dim = dim
        self.var_reg = var_reg
        self.hyperbolic = hyperbolic
        self.negcurvature = negcurvature
        self.lambda_ = LAMBDA_INIT
        self.lowrank = -1
        self.R: Optional[np.ndarray] = None
        self.lapl_pinv: Optional[np.ndarray] = None
        self.lapl_pinv_evals: Optional[np.ndarray] = None
        self.lapl_pinv_evecs: Optional[np.ndarray] = None
        self.sigma_evals: Optional[np.ndarray] = None
        self.sigma_evecs: Optional[np.ndarray] = None
        self.tree_diam_leaves = (-1, -1)
        self.pointscale = compute_pointscale(mat, hyperbolic, negcurvature)

        init = math.log(max(self.lambda_ - VARFLOOR, VARFLOOR))
        if self.type is CovarType.CONST:
            self.params = np.array([init])
        elif self.type is CovarType.DIAG:
            self.params = np.full(self.dim * self.nseqs, init)
        elif self.type is CovarType.DIST:
            self.params = np.array([init])
            self.lapl_pinv, self.lapl_pinv_evals, self.lapl_pinv_evecs = \
                laplacian_pinv(mat, self.nseqs)
        else:
            if rank <= 0:
                raise ValueError("rank must be positive for the low-rank parameterisation")
            self.lowrank = rank
            generator = rng if rng is not None else np.random.default_rng()
            # expected variances of LAMBDA_INIT and expected covariances of zero
            sdev = math.sqrt(LAMBDA_INIT / rank)
            self.R = generator.normal(0.0, sdev, size=(self.nseqs, rank))
            self.params = self.R.ravel().copy()

    def covariance(self) -> np.ndarray:
        """Rebuild the covariance matrix from the current parameters.

        Variance parameters are log values and are floored at ``VARFLOOR``; a
        floored parameter is reset so it cannot run away.
        """
        floor_log = math.log(VARFLOOR)
        if self.type is CovarType.CONST:
            with np.errstate(over="ignore"):
                lam = float(np.exp(self.params[0]))
            if not math.isfinite(lam) or lam < VARFLOOR:
                lam = VARFLOOR
                self.params[0] = floor_log
            self.lambda_ = lam
            return lam * np.eye(self.nseqs * self.dim)

        if self.type is CovarType.DIAG:
            with np.errstate(over="ignore"):
                lams = np.exp(self.params)
            low = lams < VARFLOOR
            lams[low] = VARFLOOR
            self.params[low] = floor_log
            return np.diag(lams)

        if self.type is CovarType.DIST:
            with np.errstate(over="ignore"):
                self.lambda_ = VARFLOOR + float(np.exp(self.params[0]))
            self.sigma_evecs = self.lapl_pinv_evecs.copy()
            self.sigma_evals = self.lapl_pinv_evals * self.lambda_
            return self.lapl_pinv * self.lambda_

        self.R = self.params.reshape(self.nseqs, self.lowrank).copy()
        sigma = self.R @ self.R.T
        self.sigma_evals, self.sigma_evecs = np.linalg.eigh(sigma)
        return sigma

    def dump(self, stream: TextIO) -> None:
        """Write a readable description of the data."""
        stream.write(f"CovarData\nnseqs: {self.nseqs}\ndim: {self.dim}\n"
                     f"lambda: {self.lambda_:f}\n")
        stream.write("distance matrix:\n")
        stream.write(_format_matrix(self.dist))
        stream.write("Free parameters: ")
        stream.write(_format_vector(self.params))
        if self.type is CovarType.DIST:
            stream.write("Laplacian pseudoinverse:\n")
            stream.write(_format_matrix(self.lapl_pinv))
            stream.write("Eigenvalues:\n")
            stream.write(_format_vector(self.lapl_pinv_evals))
            stream.write("Eigenvectors:\n")
            stream.write(_format_matrix(self.lapl_pinv_evecs))
        elif self.type is CovarType.LOWR:
            stream.write(f"Low-rank matrix R (rank {self.lowrank}):\n")
            stream.write(_format_matrix(self.R))
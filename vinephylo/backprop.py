"""Jacobians of neighbour-joining branch lengths with respect to input distances.

Distances between nodes are indexed densely by pair: for ``n`` items the pair
``(i, j)`` with ``i < j`` maps to a unique index in ``[0, n*(n-1)/2)``.  During
neighbour joining, ``Jk[ij, ab]`` holds the derivative of the current distance
between nodes ``i`` and ``j`` with respect to the original leaf distance
between ``a`` and ``b``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Sequence, Tuple

import numpy as np

__all__ = [
    "SparseJacobian",
    "backprop_init",
    "backprop_step",
    "dist_to_i_j",
    "i_j_to_dist",
    "set_dt_dD",
]


def i_j_to_dist(i: int, j: int, n: int) -> int:
    """Map the unordered pair (i, j) of ``n`` items to its dense pair index."""
    if i == j:
        raise ValueError("a pair needs two distinct indices")
    lo, hi = (i, j) if i < j else (j, i)
    if lo < 0 or hi >= n:
        raise ValueError(f"pair ({i}, {j}) out of range for {n} items")
    return (2 * n - lo - 1) * lo // 2 + (hi - lo - 1)


def dist_to_i_j(pwidx: int, n: int) -> Tuple[int, int]:
    """Inverse of :func:`i_j_to_dist`; returns ``(i, j)`` with ``i < j``."""
    if not 0 <= pwidx < n * (n - 1) // 2:
        raise ValueError(f"pair index {pwidx} out of range for {n} items")
    i = 0
    while pwidx >= (2 * n - i - 1) * i // 2 + (n - i - 1):
        i += 1
    rowstart = (2 * n - i - 1) * i // 2
    return i, i + 1 + (pwidx - rowstart)


def _sizes(n: int) -> Tuple[int, int, int]:
    total_nodes = 2 * n - 2
    return total_nodes, total_nodes * (total_nodes - 1) // 2, n * (n - 1) // 2


def _active_others(active: Sequence, total_nodes: int, *exclude: int) -> Iterator[int]:
    for node in range(total_nodes):
        if active[node] and node not in exclude:
            yield node


def _check_dense(jk: np.ndarray, n: int) -> None:
    _, npairs_large, npairs_small = _sizes(n)
    if jk.shape != (npairs_large, npairs_small):
        raise ValueError(
            f"Jacobian must have shape ({npairs_large}, {npairs_small}), got {jk.shape}"
        )


def _check_dt_dD(dt_dD: np.ndarray, n: int, *branches: int) -> None:
    n_ab = n * (n - 1) // 2
    if dt_dD.ndim != 2 or dt_dD.shape[1] != n_ab:
        raise ValueError(f"dt_dD must have {n_ab} columns")
    for b in branches:
        if not 0 <= b < dt_dD.shape[0]:
            raise IndexError(f"branch index {b} out of range")


def backprop_init(n: int) -> np.ndarray:
    """Dense Jacobian at the start of neighbour joining for ``n`` leaves."""
    total_nodes, npairs_large, npairs_small = _sizes(n)
    jk = np.zeros((npairs_large, npairs_small))
    for i in range(n):
        for j in range(i + 1, n):
            jk[i_j_to_dist(i, j, total_nodes), i_j_to_dist(i, j, n)] = 1.0
    return jk


def backprop_step(jk: np.ndarray, n: int, f: int, g: int, u: int,
                  active: Sequence) -> np.ndarray:
    """Return the Jacobian after joining ``f`` and ``g`` into new node ``u``."""
    _check_dense(jk, n)
    total_nodes = 2 * n - 2
    jnext = jk.copy()
    idx_fg = i_j_to_dist(f, g, total_nodes)
    for i in _active_others(active, total_nodes, f, g, u):
        idx_ui = i_j_to_dist(u, i, total_nodes)
        idx_fi = i_j_to_dist(f, i, total_nodes)
        idx_gi = i_j_to_dist(g, i, total_nodes)
        jnext[idx_ui] = 0.5 * (jk[idx_fi] + jk[idx_gi] - jk[idx_fg])
    return jnext


def set_dt_dD(jk: np.ndarray, dt_dD: np.ndarray, n: int, f: int, g: int,
              branch_idx_f: int, branch_idx_g: int, active: Sequence) -> None:
    """Fill the rows of ``dt_dD`` for the branches created by joining f and g."""
    _check_dense(jk, n)
    _check_dt_dD(dt_dD, n, branch_idx_f, branch_idx_g)
    total_nodes = 2 * n - 2
    idx_fg = i_j_to_dist(f, g, total_nodes)
    nk = int(np.count_nonzero(active))

    if nk == 2:
        # the last branch of the unrooted tree is split in half
        dt_dD[branch_idx_f] = 0.5 * jk[idx_fg]
        return

    sum_diff = np.zeros(jk.shape[1])
    for m in _active_others(active, total_nodes, f, g):
        sum_diff += jk[i_j_to_dist(f, m, total_nodes)] - jk[i_j_to_dist(g, m, total_nodes)]

    row_f = 0.5 * jk[idx_fg] + (0.5 / (nk - 2)) * sum_diff
    if not np.all(np.isfinite(row_f)):
        raise FloatingPointError("non-finite branch-length derivative")
    dt_dD[branch_idx_f] = row_f
    dt_dD[branch_idx_g] = jk[idx_fg] - row_f


class SparseJacobian:
    """Row-sparse Jacobian whose unchanged rows are shared between steps."""

    def __init__(self, nrows: int, ncols: int) -> None:
        if nrows < 0 or ncols < 0:
            raise ValueError("dimensions must be non-negative")
        self.nrows = nrows
        self.ncols = ncols
        self._rows: List[Dict[int, float]] = [{} for _ in range(nrows)]

    @classmethod
    def initial(cls, n: int) -> "SparseJacobian":
        """Sparse Jacobian at the start of neighbour joining for ``n`` leaves."""
        total_nodes, npairs_large, npairs_small = _sizes(n)
        jac = cls(npairs_large, npairs_small)
        for i in range(n):
            for j in range(i + 1, n):
                jac._rows[i_j_to_dist(i, j, total_nodes)] = {i_j_to_dist(i, j, n): 1.0}
        return jac

    def row(self, r: int) -> Mapping[int, float]:
        """Read-only view of the non-zero entries of row ``r``."""
        return MappingProxyType(self._rows[r])

    def to_dense(self) -> np.ndarray:
        dense = np.zeros((self.nrows, self.ncols))
        for r, entries in enumerate(self._rows):
            for c, v in entries.items():
                dense[r, c] = v
        return dense

    def _check(self, n: int) -> None:
        _, npairs_large, npairs_small = _sizes(n)
        if (self.nrows, self.ncols) != (npairs_large, npairs_small):
            raise ValueError(f"Jacobian dimensions do not match {n} leaves")

    def step(self, n: int, f: int, g: int, u: int, active: Sequence) -> "SparseJacobian":
        """Return the Jacobian after joining ``f`` and ``g`` into new node ``u``."""
        self._check(n)
        total_nodes = 2 * n - 2
        idx_fg = i_j_to_dist(f, g, total_nodes)
        nxt = SparseJacobian(0, self.ncols)
        nxt.nrows = self.nrows
        nxt._rows = list(self._rows)  # rows are never mutated, so sharing is safe
        row_fg = self._rows[idx_fg]
        for i in _active_others(active, total_nodes, f, g, u):
            row_fi = self._rows[i_j_to_dist(f, i, total_nodes)]
            row_gi = self._rows[i_j_to_dist(g, i, total_nodes)]
            combined: Dict[int, float] = {}
            for c in sorted(row_fi.keys() | row_gi.keys() | row_fg.keys()):
                v = 0.5 * (row_fi.get(c, 0.0) + row_gi.get(c, 0.0) - row_fg.get(c, 0.0))
                if v != 0.0:
                    combined[c] = v
            nxt._rows[i_j_to_dist(u, i, total_nodes)] = combined
        return nxt

    def set_dt_dD(self, dt_dD: np.ndarray, n: int, f: int, g: int,
                  branch_idx_f: int, branch_idx_g: int, active: Sequence) -> None:
        """Fill the rows of ``dt_dD`` for the branches created by joining f and g."""
        self._check(n)
        _check_dt_dD(dt_dD, n, branch_idx_f, branch_idx_g)
        total_nodes = 2 * n - 2
        row_fg = self._rows[i_j_to_dist(f, g, total_nodes)]
        nk = int(np.count_nonzero(active))

        if nk == 2:
            dt_dD[branch_idx_f] = 0.0
            for c, v in row_fg.items():
                dt_dD[branch_idx_f, c] = 0.5 * v
            return

        sum_diff = np.zeros(self.ncols)
        for m in _active_others(active, total_nodes, f, g):
            for c, v in self._rows[i_j_to_dist(f, m, total_nodes)].items():
                sum_diff[c] += v
            for c, v in self._rows[i_j_to_dist(g, m, total_nodes)].items():
                sum_diff[c] -= v

        dt_dD[branch_idx_f] = (0.5 / (nk - 2)) * sum_diff
        for c, v in row_fg.items():
            dt_dD[branch_idx_f, c] += 0.5 * v
        dt_dD[branch_idx_g] = -dt_dD[branch_idx_f]
        for c, v in row_fg.items():
            dt_dD[branch_idx_g, c] += v
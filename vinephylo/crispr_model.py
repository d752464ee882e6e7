"""Likelihood of a tree under the irreversible CRISPR edit model.

A pruning algorithm restricted to the ancestral states that are possible
under irreversible editing.  With a gradient request it also runs an
"outside" pass and returns derivatives with respect to each branch length,
the leading branch above the root and the silencing rate.
"""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, TextIO

import numpy as np

from vinephylo.crispr_subst import (
    StateSets,
    Tree,
    TreeNode,
    branch_grad,
    branch_matrix,
    silent_rate_grad,
)
from vinephylo.crispr_table import SILENT, MutationTable, MutRatesType

__all__ = [
    "LEADING_T_INIT",
    "SIL_RATE_INIT",
    "CrisprModel",
    "LikelihoodResult",
    "ModelType",
    "build_seq_index",
]

SIL_RATE_INIT = 0.1
LEADING_T_INIT = 0.05

_SCALING_THRESHOLD = sys.float_info.min * 1.0e10
_LOG_SCALING_THRESHOLD = math.log(_SCALING_THRESHOLD)
_EXPON_MAX = 700.0
_EXPON_MIN = -745.0


class ModelType(Enum):
    """Whether edit states and rates are shared across sites or kept per site."""

    GLOBAL = "global"
    SITEWISE = "sitewise"


@dataclass
class LikelihoodResult:
    """Log likelihood and, when requested, its derivatives.

    ``branch_grad`` has one entry per non-root node: entry ``k`` belongs to
    the branch above the node with id ``k + 1``.  The branch to the right
    child of the root is left at zero, since the tree is treated as unrooted.
    """

    log_likelihood: float
    branch_grad: Optional[np.ndarray] = None
    deriv_leading_t: float = 0.0
    deriv_sil: float = 0.0


def build_seq_index(tree: Tree, table: MutationTable) -> List[int]:
    """Map each node id to the table row of the cell with the leaf's name, or -1."""
    rows = {name: idx for idx, name in reversed(list(enumerate(table.cellnames)))}
    index = [-1] * tree.nnodes
    for node in tree.nodes:
        if node.is_leaf() and node.name is not None:
            index[node.id] = rows.get(node.name, -1)
    return index


def _combine_types(left: int, right: int) -> int:
    """Node type of a parent given the node types of its two children."""
    free = StateSets.NORESTRICT
    if left == 0 or right == 0:
        return 0
    if left != free and right != free and left != right:
        return 0
    if left == right and left != free:
        return left
    if left != free and right == free:
        return left
    if right != free and left == free:
        return right
    return free


def _clamp(expon: float) -> float:
    return max(_EXPON_MIN, min(_EXPON_MAX, expon))


def _format_matrix(mat: np.ndarray) -> str:
    return "".join(" ".join(f"{v:f}" for v in row) + "\n" for row in mat)


class CrisprModel:
    """Edit model tying a mutation table to a tree."""

    def __init__(self, table: MutationTable, tree: Tree,
                 model_type: ModelType = ModelType.GLOBAL,
                 rates_type: MutRatesType = MutRatesType.EMPIRICAL) -> None:
        self.model_type = ModelType(model_type)
        self.rates_type = MutRatesType(rates_type)
        self.table = table
        self.tree = tree
        self.nsites = table.nsites
        self.ncells = table.ncells
        self.nstates = table.nstates
        self.sil_rate = SIL_RATE_INIT
        self.leading_t = LEADING_T_INIT
        self.mutrates: Optional[np.ndarray] = None
        self.sitewise_mutrates: Optional[List[np.ndarray]] = None
        self.pt: Optional[List[List[np.ndarray]]] = None
        self.seq_idx: Optional[List[int]] = None
        self.deriv_leading_t = 0.0
        self.deriv_sil = 0.0
        self._sets = StateSets()

    def prepare(self) -> None:
        """Estimate mutation rates and build the transition matrices once."""
        if self.model_type is ModelType.SITEWISE:
            self.table = self.table.sitewise_table()
            self.sitewise_mutrates = self.table.estimate_sitewise_mutrates(self.rates_type)
            self.mutrates = None
        else:
            self.mutrates = self.table.estimate_mutrates(self.rates_type)
            self.sitewise_mutrates = [self.mutrates] * self.nsites
        self.seq_idx = None
        self.update()

    def update(self) -> None:
        """Recompute the transition matrices for the current branch lengths."""
        if self.sitewise_mutrates is None:
            raise RuntimeError("model has not been prepared")
        nodes = self.tree.nodes
        if self.model_type is ModelType.SITEWISE:
            self.pt = [[branch_matrix(node.dparent, self.sil_rate, rates) for node in nodes]
                       for rates in self.sitewise_mutrates]
        else:
            shared = [branch_matrix(node.dparent, self.sil_rate, self.mutrates)
                      for node in nodes]
            self.pt = [shared] * self.nsites

    def _site_nstates(self, site: int) -> int:
        if self.model_type is ModelType.SITEWISE:
            return self.table.sitewise_nstates[site]
        return self.table.nstates

    def log_likelihood(self, with_gradient: bool = False) -> LikelihoodResult:
        """Log likelihood of the table given the tree, optionally with derivatives.

        Returns ``-inf`` when the data are impossible under the current tree.
        """
        if self.sitewise_mutrates is None:
            raise RuntimeError("model has not been prepared")
        tree = self.tree
        root = tree.root
        nnodes = tree.nnodes

        root.dparent = self.leading_t
        self.update()
        if self.seq_idx is None:
            self.seq_idx = build_seq_index(tree, self.table)

        branchgrad: Optional[np.ndarray] = None
        if with_gradient:
            branchgrad = np.zeros(nnodes - 1)
            self.deriv_leading_t = 0.0
            self.deriv_sil = 0.0

        postorder = tree.postorder()
        preorder = tree.preorder() if with_gradient else []
        ll = 0.0

        for site in range(self.nsites):
            nstates = self._site_nstates(site) + 1
            silst = nstates - 1
            pt = self.pt[site]
            rates = self.sitewise_mutrates[site]
            pl = np.zeros((nstates, nnodes))
            lscale = np.zeros(nnodes)
            nodetypes = [StateSets.NORESTRICT] * nnodes
            root_eq = pt[root.id][0]

            def states(node: TreeNode, nstates: int = nstates,
                       nodetypes: List[int] = nodetypes) -> Sequence[int]:
                return self._sets.get(nodetypes[node.id], node.is_leaf(), nstates)

            for node in postorder:
                if node.is_leaf():
                    cell = self.seq_idx[node.id]
                    if cell == -1:
                        raise ValueError(
                            f"leaf '{node.name}' not found in mutation table")
                    mut = self.table.get(cell, site)
                    state = silst if mut == SILENT else mut
                    if not 0 <= state <= silst:
                        raise ValueError(f"state {mut} out of range at site {site}")
                    pl[state, node.id] = 1.0
                    nodetypes[node.id] = state if state < silst else StateSets.NORESTRICT
                    continue

                left, right = node.lchild, node.rchild
                nodetypes[node.id] = _combine_types(nodetypes[left.id], nodetypes[right.id])
                lmat, rmat = pt[left.id], pt[right.id]
                lstates, rstates = states(left), states(right)
                par_states = states(node)
                max_p = 0.0
                for p in par_states:
                    totl = sum(pl[c, left.id] * lmat[p, c] for c in lstates)
                    totr = sum(pl[c, right.id] * rmat[p, c] for c in rstates)
                    pl[p, node.id] = totl * totr
                    max_p = max(max_p, pl[p, node.id])
                lscale[node.id] = lscale[left.id] + lscale[right.id]
                if 0.0 < max_p < _SCALING_THRESHOLD:
                    lscale[node.id] += _LOG_SCALING_THRESHOLD
                    for p in par_states:
                        pl[p, node.id] /= _SCALING_THRESHOLD

            total_prob = sum(root_eq[s] * pl[s, root.id] for s in states(root))
            ll += (math.log(total_prob) if total_prob > 0 else -math.inf) + lscale[root.id]
            if not math.isfinite(ll):
                break

            if with_gradient:
                self._accumulate_gradient(preorder, pt, rates, pl, lscale, states,
                                          nstates, root_eq, total_prob, branchgrad)

        return LikelihoodResult(
            log_likelihood=ll,
            branch_grad=branchgrad,
            deriv_leading_t=self.deriv_leading_t if with_gradient else 0.0,
            deriv_sil=self.deriv_sil if with_gradient else 0.0,
        )

    def _accumulate_gradient(self, preorder, pt, rates, pl, lscale, states, nstates,
                             root_eq, total_prob, branchgrad) -> None:
        tree = self.tree
        root = tree.root
        nnodes = tree.nnodes
        plbar = np.zeros((nstates, nnodes))
        lscale_o = np.zeros(nnodes)

        for node in preorder:
            if node.parent is None:
                for p in states(node):
                    plbar[p, node.id] = root_eq[p]
                continue
            par = node.parent
            sib = node.sibling
            par_mat, sib_mat = pt[node.id], pt[sib.id]
            par_states, child_states, sib_states = states(par), states(node), states(sib)
            tmp = {p: sum(plbar[p, par.id] * pl[s, sib.id] * sib_mat[p, s]
                          for s in sib_states)
                   for p in par_states}
            max_p = 0.0
            for c in child_states:
                plbar[c, node.id] = sum(tmp[p] * par_mat[p, c] for p in par_states)
                max_p = max(max_p, plbar[c, node.id])
            lscale_o[node.id] = lscale_o[par.id] + lscale[sib.id]
            if 0.0 < max_p < _SCALING_THRESHOLD:
                lscale_o[node.id] += _LOG_SCALING_THRESHOLD
                for c in child_states:
                    plbar[c, node.id] /= _SCALING_THRESHOLD

        log_total = math.log(total_prob)
        for node in tree.nodes:
            par = node.parent
            if par is None:
                continue
            sib = node.sibling
            sib_mat = pt[sib.id]
            par_states, child_states, sib_states = states(par), states(node), states(sib)
            tmp = {p: sum(pl[s, sib.id] * sib_mat[p, s] for s in sib_states)
                   for p in par_states}
            expon = _clamp(-lscale[root.id] + lscale[sib.id] + lscale_o[par.id]
                           + lscale[node.id] - log_total)
            scale = math.exp(expon)

            def contraction(grad: np.ndarray) -> float:
                return sum(tmp[p] * plbar[p, par.id] * pl[c, node.id] * grad[p, c]
                           for p in par_states for c in child_states)

            if node is not root.rchild:
                deriv = contraction(branch_grad(node.dparent, self.sil_rate, rates)) * scale
                if not math.isfinite(deriv):
                    raise FloatingPointError("non-finite branch derivative")
                branchgrad[node.id - 1] += deriv

            self.deriv_sil += contraction(
                silent_rate_grad(node.dparent, self.sil_rate, rates)) * scale

        root_states = states(root)
        scale = math.exp(_clamp(-log_total))
        grad = branch_grad(root.dparent, self.sil_rate, rates)
        self.deriv_leading_t += scale * sum(pl[c, root.id] * grad[0, c] for c in root_states)
        grad = silent_rate_grad(root.dparent, self.sil_rate, rates)
        self.deriv_sil += scale * sum(pl[c, root.id] * grad[0, c] for c in root_states)

    def dump(self, stream: TextIO) -> None:
        """Write a readable description of the model and its matrices."""
        stream.write(
            f"CrisprMutModel:\nmodel_type = "
            f"{'SITEWISE' if self.model_type is ModelType.SITEWISE else 'GLOBAL'}\n"
            f"nsites = {self.nsites}\nncells = {self.ncells}\nnstates = {self.nstates}\n"
            f"silencing_rate = {self.sil_rate:f}\n")
        if self.pt is None or self.sitewise_mutrates is None:
            return
        for site in range(self.nsites):
            stream.write(f"Model for site {site}:\n")
            stream.write("Mutation rates:\n")
            stream.write(" ".join(f"{v:f}" for v in self.sitewise_mutrates[site]) + "\n")
            for node in self.tree.nodes:
                stream.write(f"Node {node.id} (dparent {node.dparent:f}):\nPt:\n")
                stream.write(_format_matrix(self.pt[site][node.id]))
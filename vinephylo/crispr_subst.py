"""Trees, transition probabilities and ancestral state sets for the CRISPR edit model.

Edit states at a site are numbered ``0`` (unedited), ``1 .. k`` (distinct
edits) and ``k + 1`` (silent, absorbing).  Edits are irreversible: an edited
site can only stay as it is or become silent.
"""

from __future__ import annotations

import math
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

__all__ = [
    "StateSets",
    "Tree",
    "TreeNode",
    "branch_grad",
    "branch_matrix",
    "silent_rate_grad",
]


class TreeNode:
    """A node of a rooted binary tree; the length of its parent branch is ``dparent``."""

    def __init__(self, name: Optional[str] = None, dparent: float = 0.0,
                 lchild: Optional["TreeNode"] = None,
                 rchild: Optional["TreeNode"] = None) -> None:
        if (lchild is None) != (rchild is None):
            raise ValueError("a node must have either two children or none")
        self.name = name
        self.dparent = float(dparent)
        self.lchild = lchild
        self.rchild = rchild
        self.parent: Optional[TreeNode] = None
        self.id = -1
        for child in (lchild, rchild):
            if child is not None:
                if child.parent is not None:
                    raise ValueError("node already has a parent")
                child.parent = self

    def is_leaf(self) -> bool:
        return self.lchild is None

    @property
    def sibling(self) -> Optional["TreeNode"]:
        """The other child of this node's parent, or None at the root."""
        if self.parent is None:
            return None
        return self.parent.rchild if self is self.parent.lchild else self.parent.lchild

    def __repr__(self) -> str:
        return f"TreeNode(id={self.id}, name={self.name!r}, dparent={self.dparent})"


class Tree:
    """A rooted binary tree whose node ids follow a preorder walk from the root."""

    def __init__(self, root: TreeNode) -> None:
        if root.parent is not None:
            raise ValueError("root must not have a parent")
        self.root = root
        self.nodes: List[TreeNode] = list(self._walk_preorder())
        for idx, node in enumerate(self.nodes):
            node.id = idx

    @property
    def nnodes(self) -> int:
        return len(self.nodes)

    @property
    def leaves(self) -> List[TreeNode]:
        return [node for node in self.nodes if node.is_leaf()]

    def _walk_preorder(self) -> Iterator[TreeNode]:
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            if not node.is_leaf():
                stack.append(node.rchild)
                stack.append(node.lchild)

    def preorder(self) -> List[TreeNode]:
        """Nodes with every parent before its children, left subtree first."""
        return list(self._walk_preorder())

    def postorder(self) -> List[TreeNode]:
        """Nodes with every child before its parent, left subtree first."""
        order: List[TreeNode] = []
        stack: List[Tuple[TreeNode, bool]] = [(self.root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded or node.is_leaf():
                order.append(node)
                continue
            stack.append((node, True))
            stack.append((node.rchild, False))
            stack.append((node.lchild, False))
        return order


def _rates(mutrates: Sequence[float]) -> np.ndarray:
    rates = np.asarray(mutrates, dtype=float).ravel()
    if rates.size == 0:
        raise ValueError("mutation rate vector must not be empty")
    return rates


def branch_matrix(t: float, silent_rate: float, mutrates: Sequence[float]) -> np.ndarray:
    """Transition probabilities ``exp(Qt)`` along a branch of length ``t``.

    The matrix has one more state than ``mutrates``; the extra, last state is
    the absorbing silent state.
    """
    rates = _rates(mutrates)
    size = rates.size + 1
    silst = size - 1
    exp_t_sil = math.exp(-t * silent_rate)
    edit = exp_t_sil * (1.0 - math.exp(-t))
    p = np.zeros((size, size))
    p[0, 1:silst] = rates[1:silst] * edit
    p[0, 0] = math.exp(-t * (1.0 + silent_rate))
    for j in range(1, silst):
        p[j, j] = exp_t_sil
    p[:silst, silst] = 1.0 - exp_t_sil
    p[silst, silst] = 1.0
    return p


def branch_grad(t: float, silent_rate: float, mutrates: Sequence[float]) -> np.ndarray:
    """Derivative of :func:`branch_matrix` with respect to the branch length."""
    rates = _rates(mutrates)
    size = rates.size + 1
    silst = size - 1
    a = (-silent_rate * math.exp(-t * silent_rate) * (1.0 - math.exp(-t))
         + math.exp(-t * (1.0 + silent_rate)))
    b = silent_rate * math.exp(-t * silent_rate)
    grad = np.zeros((size, size))
    grad[0, 1:silst] = rates[1:silst] * a
    grad[0, 0] = -(1.0 + silent_rate) * math.exp(-t * (1.0 + silent_rate))
    for j in range(1, silst):
        grad[j, j] = -b
    grad[:silst, silst] = b
    return grad


def silent_rate_grad(t: float, silent_rate: float, mutrates: Sequence[float]) -> np.ndarray:
    """Derivative of :func:`branch_matrix` with respect to the silencing rate."""
    rates = _rates(mutrates)
    size = rates.size + 1
    silst = size - 1
    es = -t * math.exp(-silent_rate * t)
    a = es * (1.0 - math.exp(-t))
    grad = np.zeros((size, size))
    grad[0, 1:silst] = rates[1:silst] * a
    grad[0, 0] = -t * math.exp(-t * (1.0 + silent_rate))
    for j in range(1, silst):
        grad[j, j] = es
    grad[:silst, silst] = -es
    return grad


class StateSets:
    """Cached sets of ancestral states a node may take, given its node type.

    A node type of ``NORESTRICT`` allows every state; any other value ``k``
    restricts the node to the unedited state and edit ``k`` (only the unedited
    state when ``k`` is 0).  A leaf without restriction was observed silent,
    so only the silent state is possible.
    """

    NORESTRICT = -1

    def __init__(self) -> None:
        self._unrestricted: Dict[int, Tuple[int, ...]] = {}
        self._restricted: Dict[int, Tuple[int, ...]] = {}
        self._silent: Dict[int, Tuple[int, ...]] = {}

    def get(self, nodetype: int, is_leaf: bool, nstates: int) -> Tuple[int, ...]:
        """States allowed for a node of the given type among ``nstates`` states."""
        if nodetype == self.NORESTRICT:
            if is_leaf:
                if nstates <= 1:
                    raise ValueError("a silent leaf needs at least two states")
                cached = self._silent.get(nstates)
                if cached is None:
                    cached = self._silent[nstates] = (nstates - 1,)
                return cached
            if nstates <= 0:
                raise ValueError("number of states must be positive")
            cached = self._unrestricted.get(nstates)
            if cached is None:
                cached = self._unrestricted[nstates] = tuple(range(nstates))
            return cached
        if nodetype < 0:
            raise ValueError(f"invalid node type {nodetype}")
        cached = self._restricted.get(nodetype)
        if cached is None:
            cached = (0,) if nodetype == 0 else (0, nodetype)
            self._restricted[nodetype] = cached
        return cached
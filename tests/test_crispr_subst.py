import numpy as np
import pytest

from vinephylo.crispr_subst import (
    StateSets,
    Tree,
    TreeNode,
    branch_grad,
    branch_matrix,
    silent_rate_grad,
)

RATES = [0.0, 0.25, 0.75]


def _make_tree():
    a = TreeNode("a", 0.1)
    b = TreeNode("b", 0.2)
    c = TreeNode("c", 0.3)
    ab = TreeNode(None, 0.4, a, b)
    root = TreeNode(None, 0.05, ab, c)
    return Tree(root), a, b, c, ab, root


def test_tree_ids_follow_preorder():
    tree, a, b, c, ab, root = _make_tree()
    assert tree.nodes == [root, ab, a, b, c]
    assert [n.id for n in tree.nodes] == list(range(5))
    assert tree.nnodes == 5


def test_preorder_and_postorder():
    tree, a, b, c, ab, root = _make_tree()
    assert tree.preorder() == [root, ab, a, b, c]
    assert tree.postorder() == [a, b, ab, c, root]


def test_parent_and_sibling_links():
    tree, a, b, c, ab, root = _make_tree()
    assert a.parent is ab and ab.parent is root and root.parent is None
    assert a.sibling is b and c.sibling is ab and root.sibling is None
    assert a.is_leaf() and not ab.is_leaf()
    assert tree.leaves == [a, b, c]


def test_node_with_one_child_rejected():
    with pytest.raises(ValueError):
        TreeNode("x", 0.1, TreeNode("y"), None)


def test_child_reused_rejected():
    leaf = TreeNode("a")
    TreeNode(None, 0.0, leaf, TreeNode("b"))
    with pytest.raises(ValueError):
        TreeNode(None, 0.0, leaf, TreeNode("c"))


def test_branch_matrix_is_identity_at_zero_length():
    p = branch_matrix(0.0, 0.1, RATES)
    assert np.allclose(p, np.eye(4))


@pytest.mark.parametrize("t", [0.01, 0.5, 2.0])
def test_branch_matrix_rows_sum_to_one(t):
    p = branch_matrix(t, 0.1, RATES)
    assert p.shape == (4, 4)
    assert np.allclose(p.sum(axis=1), 1.0)
    assert np.all(p >= 0.0)


def test_branch_matrix_is_irreversible():
    p = branch_matrix(0.7, 0.2, RATES)
    assert p[1, 0] == 0.0 and p[2, 0] == 0.0
    assert p[1, 2] == 0.0 and p[2, 1] == 0.0
    assert p[3, 3] == 1.0


@pytest.mark.parametrize("t", [0.05, 0.8])
def test_branch_grad_rows_sum_to_zero(t):
    assert np.allclose(branch_grad(t, 0.1, RATES).sum(axis=1), 0.0)
    assert np.allclose(silent_rate_grad(t, 0.1, RATES).sum(axis=1), 0.0)


def test_branch_grad_matches_finite_difference():
    t, s, h = 0.6, 0.15, 1e-6
    numeric = (branch_matrix(t + h, s, RATES) - branch_matrix(t - h, s, RATES)) / (2 * h)
    assert np.allclose(branch_grad(t, s, RATES), numeric, atol=1e-7)


def test_silent_rate_grad_matches_finite_difference():
    t, s, h = 0.6, 0.15, 1e-6
    numeric = (branch_matrix(t, s + h, RATES) - branch_matrix(t, s - h, RATES)) / (2 * h)
    assert np.allclose(silent_rate_grad(t, s, RATES), numeric, atol=1e-7)


def test_empty_rates_rejected():
    with pytest.raises(ValueError):
        branch_matrix(0.1, 0.1, [])


def test_state_sets_unrestricted():
    sets = StateSets()
    assert sets.get(StateSets.NORESTRICT, False, 4) == (0, 1, 2, 3)


def test_state_sets_silent_leaf():
    sets = StateSets()
    assert sets.get(StateSets.NORESTRICT, True, 4) == (3,)
    with pytest.raises(ValueError):
        sets.get(StateSets.NORESTRICT, True, 1)


def test_state_sets_restricted():
    sets = StateSets()
    assert sets.get(0, False, 4) == (0,)
    assert sets.get(2, True, 4) == (0, 2)
    assert sets.get(2, False, 4) is sets.get(2, False, 4)


def test_state_sets_bad_type():
    with pytest.raises(ValueError):
        StateSets().get(-5, False, 3)
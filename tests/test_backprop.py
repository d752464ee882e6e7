import numpy as np
import pytest

from vinephylo.backprop import (
    SparseJacobian,
    backprop_init,
    backprop_step,
    dist_to_i_j,
    i_j_to_dist,
    set_dt_dD,
)


@pytest.mark.parametrize("n", [2, 3, 5, 8])
def test_pair_index_is_dense_bijection(n):
    indices = sorted(i_j_to_dist(i, j, n) for i in range(n) for j in range(i + 1, n))
    assert indices == list(range(n * (n - 1) // 2))


@pytest.mark.parametrize("n", [2, 4, 7])
def test_pair_index_round_trip(n):
    for i in range(n):
        for j in range(i + 1, n):
            assert dist_to_i_j(i_j_to_dist(i, j, n), n) == (i, j)


def test_pair_index_symmetric_and_ends():
    n = 6
    assert i_j_to_dist(4, 2, n) == i_j_to_dist(2, 4, n)
    assert i_j_to_dist(0, 1, n) == 0
    assert i_j_to_dist(n - 2, n - 1, n) == n * (n - 1) // 2 - 1


def test_pair_index_errors():
    with pytest.raises(ValueError):
        i_j_to_dist(2, 2, 5)
    with pytest.raises(ValueError):
        i_j_to_dist(0, 5, 5)
    with pytest.raises(ValueError):
        dist_to_i_j(10, 5)


def test_backprop_init_identity_block():
    n = 4
    jk = backprop_init(n)
    total = 2 * n - 2
    assert jk.shape == (total * (total - 1) // 2, n * (n - 1) // 2)
    assert jk.sum() == n * (n - 1) // 2
    for i in range(n):
        for j in range(i + 1, n):
            assert jk[i_j_to_dist(i, j, total), i_j_to_dist(i, j, n)] == 1.0


def _initial_active(n):
    active = [False] * (2 * n - 2)
    for i in range(n):
        active[i] = True
    return active


def test_sparse_initial_matches_dense():
    for n in (3, 5):
        assert np.array_equal(SparseJacobian.initial(n).to_dense(), backprop_init(n))


def test_step_update_rule():
    n = 4
    total = 2 * n - 2
    jk = backprop_init(n)
    active = _initial_active(n)
    f, g, u = 0, 1, n
    active[u] = True
    jnext = backprop_step(jk, n, f, g, u, active)
    for i in (2, 3):
        expected = 0.5 * (jk[i_j_to_dist(f, i, total)] + jk[i_j_to_dist(g, i, total)]
                          - jk[i_j_to_dist(f, g, total)])
        assert np.allclose(jnext[i_j_to_dist(u, i, total)], expected)
    # untouched rows are preserved and the input is not modified
    assert np.array_equal(jnext[i_j_to_dist(2, 3, total)], jk[i_j_to_dist(2, 3, total)])
    assert np.array_equal(jk, backprop_init(n))


def test_step_rejects_bad_shape():
    with pytest.raises(ValueError):
        backprop_step(np.zeros((3, 3)), 4, 0, 1, 4, _initial_active(4))


def _run_joins(n, joins):
    """Run a sequence of joins with both representations, checking equality."""
    dense = backprop_init(n)
    sparse = SparseJacobian.initial(n)
    active = _initial_active(n)
    nbranches = 2 * n - 2
    dt_dense = np.zeros((nbranches, n * (n - 1) // 2))
    dt_sparse = np.zeros_like(dt_dense)
    for f, g, u in joins:
        set_dt_dD(dense, dt_dense, n, f, g, f, g, active)
        sparse.set_dt_dD(dt_sparse, n, f, g, f, g, active)
        if sum(active) == 2:
            break
        active[f] = active[g] = False
        active[u] = True
        dense = backprop_step(dense, n, f, g, u, active)
        sparse = sparse.step(n, f, g, u, active)
        assert np.allclose(sparse.to_dense(), dense)
    return dt_dense, dt_sparse


def test_sparse_and_dense_agree_over_full_run():
    n = 5
    joins = [(0, 1, 5), (2, 5, 6), (3, 4, 7), (6, 7, 0)]
    dt_dense, dt_sparse = _run_joins(n, joins)
    assert np.allclose(dt_dense, dt_sparse)
    assert np.any(dt_dense != 0)


def test_sparse_step_shares_untouched_rows():
    n = 4
    total = 2 * n - 2
    jac = SparseJacobian.initial(n)
    active = _initial_active(n)
    active[0] = active[1] = False
    active[4] = True
    nxt = jac.step(n, 0, 1, 4, active)
    r = i_j_to_dist(2, 3, total)
    assert dict(nxt.row(r)) == dict(jac.row(r))
    assert dict(jac.row(i_j_to_dist(4, 2, total))) == {}
    assert len(nxt.row(i_j_to_dist(4, 2, total))) > 0


def test_set_dt_dD_first_join_values():
    n = 4
    jk = backprop_init(n)
    dt = np.zeros((2 * n - 2, n * (n - 1) // 2))
    set_dt_dD(jk, dt, n, 0, 1, 0, 1, _initial_active(n))
    assert dt[0, i_j_to_dist(0, 1, n)] == pytest.approx(0.5)
    assert dt[0, i_j_to_dist(0, 2, n)] == pytest.approx(0.25)
    assert dt[0, i_j_to_dist(1, 2, n)] == pytest.approx(-0.25)
    # the two new branches add up to the joined distance
    assert np.allclose(dt[0] + dt[1], jk[i_j_to_dist(0, 1, 2 * n - 2)])


def test_set_dt_dD_final_join_halves_distance():
    n = 3
    total = 2 * n - 2
    jk = backprop_init(n)
    active = [True, True, False, False]
    dt = np.full((total, 3), 7.0)
    sparse_dt = np.full((total, 3), 7.0)
    set_dt_dD(jk, dt, n, 0, 1, 2, 3, active)
    SparseJacobian.initial(n).set_dt_dD(sparse_dt, n, 0, 1, 2, 3, active)
    assert np.allclose(dt[2], 0.5 * jk[i_j_to_dist(0, 1, total)])
    assert np.allclose(sparse_dt[2], dt[2])
    # the other branch row is left alone
    assert np.all(dt[3] == 7.0)


def test_set_dt_dD_bad_branch_index():
    n = 4
    dt = np.zeros((2, n * (n - 1) // 2))
    with pytest.raises(IndexError):
        set_dt_dD(backprop_init(n), dt, n, 0, 1, 0, 5, _initial_active(n))


def test_sparse_dimension_mismatch():
    jac = SparseJacobian(3, 3)
    with pytest.raises(ValueError):
        jac.step(4, 0, 1, 4, _initial_active(4))
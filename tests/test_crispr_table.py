import io
import math

import numpy as np
import pytest

from vinephylo.crispr_table import MAX_DISTANCE, MutRatesType, MutationTable

TEXT = (
    "cell\ts1\ts2\ts3\n"
    "c1\t0\t5\t-1\n"
    "c2\t7\t5\t0\n"
    "c3\t7\t0\t9\n"
)


@pytest.fixture
def table():
    return MutationTable.read(io.StringIO(TEXT))


def test_read_shapes_and_states(table):
    assert table.sitenames == ["s1", "s2", "s3"]
    assert table.cellnames == ["c1", "c2", "c3"]
    assert table.nsites == 3 and table.ncells == 3
    assert table.nstates == 10
    assert table.get(0, 2) == -1
    assert table.get(2, 2) == 9


def test_write_round_trip(table):
    out = io.StringIO()
    table.write(out)
    assert out.getvalue() == TEXT
    again = MutationTable.read(io.StringIO(out.getvalue()))
    assert again.cellmuts == table.cellmuts


def test_read_bad_row_reports_line():
    with pytest.raises(ValueError, match="line 2"):
        MutationTable.read(io.StringIO("cell\ta\tb\nx\t0\t1\ny\t0\n"))


def test_read_empty_stream():
    with pytest.raises(ValueError):
        MutationTable.read(io.StringIO(""))


def test_get_set_range_errors(table):
    with pytest.raises(IndexError):
        table.get(3, 0)
    with pytest.raises(IndexError):
        table.set(0, 3, 1)
    with pytest.raises(ValueError):
        table.set(0, 0, table.nstates)
    table.set(0, 0, 5)
    assert table.get(0, 0) == 5


def test_copy_is_independent(table):
    dup = table.copy()
    dup.set(0, 0, 9)
    assert table.get(0, 0) == 0
    assert dup.nstates == table.nstates


def test_renumber_states_dense(table):
    before = [row[:] for row in table.cellmuts]
    table.renumber_states()
    edits = {v for row in table.cellmuts for v in row if v > 0}
    assert edits == set(range(1, table.nstates))
    for old_row, new_row in zip(before, table.cellmuts):
        for old, new in zip(old_row, new_row):
            assert (old in (-1, 0)) == (new in (-1, 0))
            if old in (-1, 0):
                assert old == new


def test_pairwise_distance_cases():
    t = MutationTable(["a", "b"], ["x", "y", "z", "w"],
                      [[0, 1], [0, 2], [0, 1], [-1, -1]])
    assert t.pairwise_distance(0, 2) == 0.0
    assert t.pairwise_distance(0, 1) == pytest.approx(-math.log(0.5))
    assert t.pairwise_distance(0, 3) == MAX_DISTANCE
    t2 = MutationTable(["a"], ["x", "y"], [[1], [2]])
    assert t2.pairwise_distance(0, 1) == MAX_DISTANCE


def test_distance_matrix_upper_triangular(table):
    d = table.distance_matrix()
    assert d.shape == (3, 3)
    assert np.all(np.tril(d) == 0)
    for i in range(3):
        for j in range(i + 1, 3):
            assert d[i, j] == table.pairwise_distance(i, j)
            assert 0.0 <= d[i, j] <= MAX_DISTANCE


def test_uniform_mutrates(table):
    rates = table.estimate_mutrates(MutRatesType.UNIF)
    assert rates.shape == (table.nstates,)
    assert rates[0] == 0.0
    assert rates.sum() == pytest.approx(1.0)
    assert np.allclose(rates[1:], rates[1])


def test_empirical_mutrates():
    t = MutationTable(["a", "b"], ["x", "y"], [[1, 2], [1, 0]])
    rates = t.estimate_mutrates(MutRatesType.EMPIRICAL)
    assert rates == pytest.approx([0.0, 2 / 3, 1 / 3])


def test_empirical_mutrates_without_edits():
    t = MutationTable(["a"], ["x"], [[0]])
    with pytest.raises(ValueError):
        t.estimate_mutrates(MutRatesType.EMPIRICAL)


def test_sitewise_table(table):
    sw = table.sitewise_table()
    assert table.sitewise_nstates is None
    assert table.get(2, 2) == 9
    assert len(sw.sitewise_nstates) == table.nsites
    for site, nstates in enumerate(sw.sitewise_nstates):
        column = [sw.get(c, site) for c in range(sw.ncells)]
        edits = {v for v in column if v > 0}
        assert edits == set(range(1, nstates))
        original = [table.get(c, site) for c in range(table.ncells)]
        assert [v <= 0 for v in column] == [v <= 0 for v in original]


def test_sitewise_mutrates(table):
    sw = table.sitewise_table()
    for kind in MutRatesType:
        rates = sw.estimate_sitewise_mutrates(kind)
        assert len(rates) == sw.nsites
        for vec, nstates in zip(rates, sw.sitewise_nstates):
            assert vec.shape == (nstates,)
            assert vec[0] == 0.0
            assert vec.sum() == pytest.approx(1.0)


def test_sitewise_mutrates_requires_sitewise_table(table):
    with pytest.raises(ValueError):
        table.estimate_sitewise_mutrates(MutRatesType.UNIF)


def test_constructor_rejects_ragged_rows():
    with pytest.raises(ValueError):
        MutationTable(["a", "b"], ["x"], [[0]])
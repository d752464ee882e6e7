# vinephylo

Components for variational phylogenetic inference in which each taxon is
placed as a point in Euclidean or hyperbolic space and trees are built
from pairwise distances. The package also includes a likelihood model for
CRISPR lineage-tracing data, with gradients for branch lengths and the
silencing rate.

## Installation

```
pip install .
```

The test suite uses pytest:

```
pip install ".[test]"
pytest
```

## Modules

- `vinephylo.scheduler`: a learning-rate and mini-batch scheduler for
  stochastic gradient ascent. `Scheduler` holds the configuration,
  `Scheduler.new_state()` gives a `SchedState`, and `Scheduler.step(state,
  metrics)` takes the `SchedMetrics` of the previous step (or `None`) and
  returns `SchedDirectives`: learning rate, subsample size, clipping
  threshold, whether to resample sites and whether to compute a full
  gradient. The subsample grows every `inc_every` steps; once it covers
  `tau_full` of the sites the schedule switches to full-batch mode.
- `vinephylo.bitset`: `BitSet`, a fixed-width bit set with `|`, `&`,
  `flip()`, `to_indices()` and an FNV-1a `hash64()`, and `BitSetMap`, an
  open-addressing map keyed by bit sets (`get`, `put`, `len`).
- `vinephylo.heap`: a pairing min-heap. `PairingHeap` offers `push`,
  `peek`, `pop` and `dump`; `meld` and `meld_two_pass` work on `HeapNode`
  chains directly.
- `vinephylo.backprop`: Jacobians of neighbour-joining branch lengths with
  respect to the input distances. `i_j_to_dist` and `dist_to_i_j` map
  between node pairs and dense pair indices; `backprop_init`,
  `backprop_step` and `set_dt_dD` work on dense numpy arrays, and
  `SparseJacobian` does the same with row-sparse storage that shares
  unchanged rows between steps.
- `vinephylo.geometry`: distances between embedded points under Euclidean
  or hyperboloid geometry (`points_to_distances` and its two variants,
  which also return the pair of taxa at the largest distance), checks on
  distance matrices, the point scale derived from the median distance,
  double centring, and initial embeddings from a distance matrix by
  classical multidimensional scaling (`estimate_points_euclidean`) or the
  hydra method (`estimate_points_hyperbolic`).
- `vinephylo.covariance`: covariance parameterisations of the embedding
  distribution (`CovarType`: `CONST`, `DIAG`, `DIST`, `LOWR`). `CovarData`
  holds the free parameters and rebuilds the covariance matrix with
  `covariance()`; `laplacian_pinv` builds the matrix used by the `DIST`
  parameterisation.
- `vinephylo.crispr_table`: `MutationTable`, a table of edit states per
  cell and site (0 unedited, -1 silent, positive values distinct edits).
  It reads and writes whitespace/tab-delimited text, renumbers states,
  computes Poisson-type pairwise distances (capped at 3) and estimates
  relative mutation rates, uniformly or empirically (`MutRatesType`),
  globally or per site.
- `vinephylo.crispr_subst`: `TreeNode` and `Tree` (rooted binary trees with
  preorder and postorder walks), the transition matrix of the irreversible
  edit-and-silencing model (`branch_matrix`) and its derivatives with
  respect to branch length and silencing rate, and `StateSets`, the cached
  sets of ancestral states a node may take.
- `vinephylo.crispr_model`: `CrisprModel`, which ties a mutation table to a
  tree. After `prepare()`, `log_likelihood(with_gradient)` returns a
  `LikelihoodResult` with the log likelihood and, if asked, the derivatives
  for each branch, the leading branch above the root and the silencing
  rate. `ModelType` chooses between rates shared across sites and rates
  per site.

## Examples

```python
import io
from vinephylo.crispr_table import MutationTable

table = MutationTable.read(io.StringIO(
    "cell\ts1\ts2\n"
    "a\t0\t1\n"
    "b\t2\t1\n"
    "c\t0\t-1\n"
))
print(table.distance_matrix())
```

```python
from vinephylo.crispr_subst import Tree, TreeNode
from vinephylo.crispr_model import CrisprModel

root = TreeNode(
    lchild=TreeNode(lchild=TreeNode("a", 0.1), rchild=TreeNode("b", 0.2), dparent=0.1),
    rchild=TreeNode("c", 0.3),
)
model = CrisprModel(table, Tree(root))
model.prepare()
result = model.log_likelihood(with_gradient=True)
print(result.log_likelihood, result.branch_grad, result.deriv_sil)
```

```python
from vinephylo.scheduler import Scheduler

sched = Scheduler(n_sites=1000, init_subsample=64, inc_every=10,
                  target_lr=0.05, persist_k=3, fullgrad_every=0,
                  clip_warmup=5)
state = sched.new_state()
directives = sched.step(state, None)
print(directives.lr, directives.m, directives.clip_norm)
```

## What is not included

This package is a library of components. It has no command-line program
and no optimisation loop that ties the pieces together. It does not build
neighbour-joining trees itself (`vinephylo.backprop` only supplies the
Jacobian updates for each join), and it has no likelihood for nucleotide
alignments: the only likelihood model is the CRISPR edit model.
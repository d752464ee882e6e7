"""Components for variational phylogenetic inference with node embeddings:
a training scheduler, bit sets, a pairing heap, neighbour-joining Jacobians,
embedding geometry, covariance parameterisations and a CRISPR edit-model
likelihood."""

__version__ = "0.1.0"
# -*- coding: utf-8 -*-
"""
mpiforest.forest
================

Random forest whose trees are spread over the ranks of an MPI communicator.

Tree ``i`` of a forest of ``n_estimators`` trees is built and kept by exactly
one rank (see :func:`mpiforest.parallel.tree_range`).  Training agrees on one
seed per build round through a broadcast from rank 0; prediction sums the
per-rank vote tallies with one ``allreduce`` so every rank ends up with the
same majority label.

The module also exposes :class:`DistributedRandomForestClassifier`, a
scikit‑learn style wrapper around the same training and prediction routines.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, fields

import numpy as np
from sklearn.base import BaseEstimator, ClassifierMixin

from .exceptions import ConfigurationError, LabelError
from .parallel import ROOT, n_rounds, tree_range, world
from .tree import TreeBuilder, TreeNode, format_tree, predict_tree, release_tree

logger = logging.getLogger(__name__)

# Round seeds are drawn below this bound so ``seed + tree_id`` stays a valid
# 32-bit seed for reasonable forest sizes.
_SEED_BOUND = 2**31 - 1


# -----------------------------------------------------------------------------
# Configuration records
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class RandomForestParameters:
    """Hyperparameters shared read-only by every tree of a forest."""
    n_estimators: int = 20
    max_depth: int = 7
    min_samples_leaf: int = 3
    max_features: int = 20

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
                raise ConfigurationError(f"{f.name} must be a positive integer, got {value!r}")

    def describe(self) -> str:
        return ("using RandomForestParameters:\n"
                f"  n_estimators: {self.n_estimators}\n"
                f"  max_depth: {self.max_depth}\n"
                f"  min_samples_leaf: {self.min_samples_leaf}\n"
                f"  max_features: {self.max_features}")


@dataclass(frozen=True)
class ModelContext:
    """Which contiguous block of rows is held out in one fold."""
    fold_index: int
    rows_per_fold: int

    @property
    def test_start(self) -> int:
        return self.fold_index * self.rows_per_fold

    @property
    def test_stop(self) -> int:
        return self.test_start + self.rows_per_fold

    def test_rows(self) -> np.ndarray:
        return np.arange(self.test_start, self.test_stop)

    def train_rows(self, n_rows: int) -> np.ndarray:
        """Every row index of an ``n_rows`` table outside the test block."""
        return np.concatenate((np.arange(0, self.test_start),
                               np.arange(self.test_stop, n_rows)))


@dataclass
class Forest:
    """Trees built by the calling rank.

    ``trees[i]`` is global tree ``tree_ids[i]`` of a forest of
    ``n_estimators`` trees.
    """
    trees: list
    tree_ids: range
    n_estimators: int

    def __len__(self) -> int:
        return len(self.trees)

    def release(self, verbose: int = 0, rank: int = 0) -> int:
        """Tear down every local tree; returns the number of nodes released."""
        released = sum(release_tree(root) for root in self.trees)
        self.trees = []
        if verbose > 2:
            logger.info("Rank %d: total DecisionTreeNode free: %d", rank, released)
        return released


# -----------------------------------------------------------------------------
# Training
# -----------------------------------------------------------------------------
def train_model(data: np.ndarray, params: RandomForestParameters, comm,
                rng: np.random.Generator, ctx: ModelContext | None = None,
                verbose: int = 0) -> Forest:
    """
    Build this rank's share of a forest on ``data``.

    Trees are built in rounds.  In every round rank 0 draws a round seed from
    ``rng`` and broadcasts it; a rank holding a tree for that round seeds the
    tree's generator with ``round_seed + tree_id``.  All ranks join every
    round, including ranks whose share is already built, so the broadcasts
    always match.

    Parameters
    ----------
    data : ndarray of shape (n_rows, n_cols)
        Training table; last column is the 0/1 label.
    params : RandomForestParameters
        Forest hyperparameters.
    comm : communicator
        Process group (mpi4py API).
    rng : numpy.random.Generator
        Top-level generator.  Only rank 0 draws from it.
    ctx : ModelContext, optional
        Fold being trained, used in diagnostics only.
    verbose : int, default=0
        Diagnostic level.

    Returns
    -------
    Forest
        The trees assigned to the calling rank, in global index order.
    """
    rank, size = comm.Get_rank(), comm.Get_size()
    ids = tree_range(rank, size, params.n_estimators)
    if verbose > 1:
        fold = "" if ctx is None else f" (fold {ctx.fold_index})"
        logger.info("Rank %d: building trees [%d, %d) (%d trees)%s",
                    rank, ids.start, ids.stop, len(ids), fold)

    node_ids = itertools.count()
    trees: list[TreeNode] = []
    for i in range(n_rounds(size, params.n_estimators)):
        round_seed = int(rng.integers(_SEED_BOUND)) if rank == ROOT else None
        round_seed = comm.bcast(round_seed, root=ROOT)
        if i >= len(ids):
            continue
        tree_id = ids[i]
        if verbose > 2:
            logger.info("Rank %d: building global tree %d (local %d)", rank, tree_id, i)
        builder = TreeBuilder(max_depth=params.max_depth,
                              min_samples_leaf=params.min_samples_leaf,
                              max_features=params.max_features,
                              rng=np.random.default_rng(round_seed + tree_id),
                              node_ids=node_ids,
                              verbose=verbose)
        root = builder.build(data)
        if verbose > 2:
            logger.info("Rank %d: tree %d\n%s", rank, tree_id, format_tree(root))
        trees.append(root)

    if verbose > 1:
        logger.info("Rank %d: completed construction of %d trees", rank, len(trees))
    return Forest(trees=trees, tree_ids=ids, n_estimators=params.n_estimators)


# -----------------------------------------------------------------------------
# Prediction
# -----------------------------------------------------------------------------
def local_votes(forest: Forest, row) -> np.ndarray:
    """``[zeros, ones]`` vote counts of the calling rank's trees for ``row``."""
    tally = np.zeros(2, dtype=np.int64)
    for root in forest.trees:
        tally[predict_tree(root, row)] += 1
    return tally


def predict_model(forest: Forest, row, comm) -> int:
    """
    Majority label of the whole forest for one row.

    Collective: each rank votes with its own trees and the tallies are summed
    over the group.  Label 1 needs strictly more votes than label 0.

    Local failures (a share of the wrong size, a non-binary leaf) travel in
    the same reduction, so every rank raises together instead of leaving the
    others blocked in the collective.
    """
    expected = tree_range(comm.Get_rank(), comm.Get_size(), forest.n_estimators)
    # [zeros, ones, ranks with a wrong share, ranks with a non-binary leaf]
    tally = np.zeros(4, dtype=np.int64)
    if len(expected) != len(forest.trees):
        tally[2] = 1
    else:
        try:
            tally[:2] = local_votes(forest, row)
        except LabelError:
            tally[3] = 1
    zeros, ones, wrong_share, bad_leaf = comm.allreduce(tally)
    if wrong_share:
        raise ConfigurationError(
            f"{wrong_share} rank(s) hold the wrong number of trees for a forest "
            f"of {forest.n_estimators}")
    if bad_leaf:
        raise LabelError(f"{bad_leaf} rank(s) hold a leaf label outside {{0, 1}}")
    return 1 if ones > zeros else 0


def predict_rows(forest: Forest, rows, comm) -> np.ndarray:
    """Apply :func:`predict_model` to every row of a 2-D array."""
    return np.array([predict_model(forest, row, comm) for row in rows], dtype=int)


# -----------------------------------------------------------------------------
# Estimator
# -----------------------------------------------------------------------------
class DistributedRandomForestClassifier(ClassifierMixin, BaseEstimator):
    """
    Binary random forest classifier trained across an MPI process group.

    ``fit`` and ``predict`` are collective calls: every rank of ``comm`` must
    call them with the same data.  Each rank keeps only its share of the
    trees; predictions are identical on every rank.

    Parameters
    ----------
    n_estimators : int, default=20
        Number of trees in the whole forest.
    max_depth : int, default=7
        Maximum tree depth (the root is depth 1).
    min_samples_leaf : int, default=3
        Minimum rows on each side of a split.
    max_features : int, default=20
        Candidate features sampled per split (capped at the feature count).
    random_state : int, numpy.random.Generator or None, default=None
        Seed of rank 0's round-seed generator.
    comm : communicator or None, default=None
        Process group; ``MPI.COMM_WORLD`` when ``None``.
    verbose : int, default=0
        Diagnostic level.  Never changes results.

    Notes
    -----
    Only labels 0 and 1 are supported; other labels raise ``LabelError``.
    """

    def __init__(self, *, n_estimators: int = 20, max_depth: int = 7,
                 min_samples_leaf: int = 3, max_features: int = 20,
                 random_state=None, comm=None, verbose: int = 0):
        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.max_features = max_features
        self.random_state = random_state
        self.comm = comm
        self.verbose = verbose

    def _comm(self):
        return self.comm if self.comm is not None else world()

    def fit(self, X, y):
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        if X.ndim != 2 or len(X) != len(y):
            raise ValueError("X must be 2-D with one row per label in y")
        if not np.isin(y, (0.0, 1.0)).all():
            raise LabelError("only binary classification is supported (labels 0/1)")
        params = RandomForestParameters(n_estimators=self.n_estimators,
                                        max_depth=self.max_depth,
                                        min_samples_leaf=self.min_samples_leaf,
                                        max_features=self.max_features)
        self.classes_ = np.array([0, 1])
        self.n_features_in_ = X.shape[1]
        self.forest_ = train_model(np.column_stack((X, y)), params, self._comm(),
                                   np.random.default_rng(self.random_state),
                                   verbose=self.verbose)
        return self

    def predict(self, X):
        """
        Predict class labels for the provided samples.

        Returns
        -------
        ndarray of shape (n_samples,)
            Majority-vote labels, the same on every rank.

        Raises
        ------
        ValueError
            If the estimator has not been fitted.
        """
        if getattr(self, "forest_", None) is None:
            raise ValueError("Estimator not fitted. Call fit(...) first.")
        X = np.asarray(X, dtype=float)
        return predict_rows(self.forest_, X, self._comm())

# -*- coding: utf-8 -*-
"""
mpiforest.tree
==============

Binary decision trees grown with the Gini criterion on a dense numeric table
whose last column holds a 0/1 label.

Each tree is grown from a subset of row indices into the table.  At every
node a handful of candidate features is sampled with the tree's own random
generator, every distinct value of those features among the node's rows is
tried as a threshold, and the partition with the lowest size-weighted Gini
impurity is kept.  Growth stops at ``max_depth``, when a side would hold
fewer than ``min_samples_leaf`` rows, or when no two-sided partition exists.

The module also contains the ``TreeNode`` class which holds the data
structure for each node in the tree (internal or leaf), the prediction
routine used by the forest, and helpers for rendering and releasing trees.
"""

# -----------------------------------------------------------------------------

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from .exceptions import LabelError

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _impurity_mass(size, ones):
    # size * gini(group); zero for empty groups
    size = np.asarray(size, dtype=float)
    ones = np.asarray(ones, dtype=float)
    zeros = size - ones
    safe = np.where(size > 0, size, 1.0)
    return np.where(size > 0, size - (ones * ones + zeros * zeros) / safe, 0.0)


def _gini_index(groups) -> float:
    """
    Size-weighted Gini impurity of a partition.

    Parameters
    ----------
    groups : iterable of array-like
        Label arrays (values in {0, 1}), one per group.

    Returns
    -------
    float
        ``sum(|g| / n * (1 - p0**2 - p1**2))`` over the non-empty groups,
        where ``n`` is the total number of labels.
    """
    groups = [np.asarray(g, dtype=float) for g in groups]
    n = sum(g.size for g in groups)
    if n == 0:
        return 0.0
    mass = sum(float(_impurity_mass(g.size, (g == 1.0).sum())) for g in groups)
    return mass / n


def majority_label(labels) -> int:
    """Most frequent label in ``labels``; ties resolve to 0."""
    labels = np.asarray(labels)
    ones = int(np.count_nonzero(labels == 1))
    zeros = int(np.count_nonzero(labels == 0))
    return 1 if ones > zeros else 0


# -----------------------------------------------------------------------------
# Node and split
# -----------------------------------------------------------------------------
class TreeNode:
    """Internal representation of a single node in a decision tree.

    Parameters
    ----------
    node_id : int
        Identifier handed out by the builder's id generator.  Ids grow
        strictly within one training run of a process.

    Attributes
    ----------
    is_leaf : bool
        True if this node is terminal.
    feature_index : int or None
        Column used for the split at this node; ``None`` for leaves.
    threshold : float or None
        Rows with ``row[feature_index] < threshold`` go left, the others
        right; ``None`` for leaves.
    children : dict
        Mapping ``{"left": TreeNode, "right": TreeNode}`` for internal nodes,
        empty for leaves.
    predicted_class : int or None
        Majority label (0 or 1) stored at a leaf.
    n_samples : int
        Number of training rows that reached the node.
    """

    def __init__(self, node_id: int):
        self.node_id: int = int(node_id)
        self.is_leaf: bool = False
        self.feature_index: int | None = None
        self.threshold: float | None = None
        self.children: dict = {}
        self.predicted_class: int | None = None
        self.n_samples: int = 0

    def __repr__(self) -> str:
        if self.is_leaf:
            return f"TreeNode(id={self.node_id}, leaf={self.predicted_class})"
        return (f"TreeNode(id={self.node_id}, feature={self.feature_index}, "
                f"threshold={self.threshold})")

    def iter_nodes(self) -> Iterator["TreeNode"]:
        """Yield the subtree in pre-order (node, left subtree, right subtree)."""
        yield self
        if not self.is_leaf:
            yield from self.children["left"].iter_nodes()
            yield from self.children["right"].iter_nodes()

    @property
    def depth(self) -> int:
        if self.is_leaf:
            return 1
        return 1 + max(ch.depth for ch in self.children.values())


@dataclass(frozen=True)
class DecisionTreeDataSplit:
    """Outcome of one split search over a set of rows.

    ``left`` and ``right`` are disjoint arrays of row indices into the table.
    An invalid split (no two-sided partition found) has ``feature_index``
    set to ``None`` and every row in ``left``.
    """
    left: np.ndarray
    right: np.ndarray
    gini: float
    feature_index: int | None
    threshold: float | None

    @property
    def is_valid(self) -> bool:
        return (self.feature_index is not None
                and self.left.size > 0 and self.right.size > 0)


def best_split(data: np.ndarray, rows: np.ndarray, max_features: int,
               rng: np.random.Generator) -> DecisionTreeDataSplit:
    """
    Find the (feature, threshold) pair with the lowest weighted Gini score.

    ``min(max_features, n_features)`` distinct feature columns are drawn from
    ``rng``.  Each distinct value of a drawn column among ``rows`` is a
    candidate threshold; a row goes left when its value is strictly below the
    threshold.  Candidates that leave a side empty are skipped.  The first
    candidate reaching the minimum wins, scanning features in draw order and
    thresholds in order of first appearance among ``rows``.

    Parameters
    ----------
    data : ndarray of shape (n_rows, n_cols)
        Table whose last column is the 0/1 label.
    rows : ndarray of int
        Row indices of the node, in ascending table order.
    max_features : int
        Number of candidate features to sample.
    rng : numpy.random.Generator
        Source of the feature sample.

    Returns
    -------
    DecisionTreeDataSplit
        The winning partition, or an invalid split when none exists.
    """
    rows = np.asarray(rows, dtype=np.intp)
    n_features = data.shape[1] - 1
    n = rows.size
    no_split = DecisionTreeDataSplit(rows, rows[:0], float("inf"), None, None)
    if n < 2 or n_features < 1:
        return no_split

    k = min(int(max_features), n_features)
    features = rng.choice(n_features, size=k, replace=False)

    y = data[rows, -1]
    is_one = (y == 1.0).astype(float)
    total_ones = float(is_one.sum())
    best_score, best_feat, best_thr = float("inf"), None, None

    for feat in features:
        col = data[rows, feat]
        values, first_seen, inverse = np.unique(col, return_index=True,
                                                return_inverse=True)
        if values.size < 2:
            continue
        n_per = np.bincount(inverse, minlength=values.size)
        ones_per = np.bincount(inverse, weights=is_one, minlength=values.size)
        # rows strictly below values[i] form the left side of threshold i
        n_left = np.concatenate(([0], np.cumsum(n_per)[:-1]))
        ones_left = np.concatenate(([0.0], np.cumsum(ones_per)[:-1]))
        scores = (_impurity_mass(n_left, ones_left)
                  + _impurity_mass(n - n_left, total_ones - ones_left)) / n
        scores[n_left == 0] = np.inf

        low = scores.min()
        if low < best_score:
            tied = np.flatnonzero(scores == low)
            pick = tied[np.argmin(first_seen[tied])]
            best_score, best_feat, best_thr = float(low), int(feat), float(values[pick])

    if best_feat is None:
        return no_split
    mask = data[rows, best_feat] < best_thr
    return DecisionTreeDataSplit(rows[mask], rows[~mask], best_score,
                                 best_feat, best_thr)


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------
class TreeBuilder:
    """
    Grow one decision tree at a time from rows of a table.

    Parameters
    ----------
    max_depth : int
        Nodes at this depth (the root is depth 1) become leaves.
    min_samples_leaf : int
        A split is kept only if both sides hold at least this many rows.
    max_features : int
        Candidate features sampled per split.
    rng : numpy.random.Generator
        Generator for feature sampling.  The forest gives each tree its own.
    node_ids : iterator of int, optional
        Shared id generator.  Pass the same iterator to every builder of one
        training run so ids never repeat; a fresh ``itertools.count()`` is
        used when omitted.
    verbose : int, default=0
        Diagnostic level; the root split statistics are logged when above 1.
    """

    def __init__(self, *, max_depth: int, min_samples_leaf: int,
                 max_features: int, rng: np.random.Generator,
                 node_ids: Iterator[int] | None = None, verbose: int = 0):
        self.max_depth = int(max_depth)
        self.min_samples_leaf = int(min_samples_leaf)
        self.max_features = int(max_features)
        self.rng = rng
        self.node_ids = node_ids if node_ids is not None else itertools.count()
        self.verbose = int(verbose)

    def build(self, data: np.ndarray, rows=None) -> TreeNode:
        """Grow a tree over ``rows`` of ``data`` (all rows when omitted)."""
        if rows is None:
            rows = np.arange(data.shape[0])
        root = TreeNode(next(self.node_ids))
        self._grow(root, data, np.asarray(rows, dtype=np.intp), depth=1)
        return root

    def _grow(self, node: TreeNode, data: np.ndarray, rows: np.ndarray, depth: int):
        node.n_samples = int(rows.size)
        split = best_split(data, rows, self.max_features, self.rng)
        if depth == 1 and self.verbose > 1:
            logger.info("root split: left=%d right=%d gini=%f value=%s feature=%s",
                        split.left.size, split.right.size, split.gini,
                        split.threshold, split.feature_index)

        if (not split.is_valid
                or depth >= self.max_depth
                or split.left.size < self.min_samples_leaf
                or split.right.size < self.min_samples_leaf):
            self._make_leaf(node, data[rows, -1])
            return

        node.feature_index = split.feature_index
        node.threshold = split.threshold
        left = TreeNode(next(self.node_ids))
        right = TreeNode(next(self.node_ids))
        node.children = {"left": left, "right": right}
        self._grow(left, data, split.left, depth + 1)
        self._grow(right, data, split.right, depth + 1)

    @staticmethod
    def _make_leaf(node: TreeNode, labels):
        node.is_leaf = True
        node.feature_index = None
        node.threshold = None
        node.children = {}
        node.predicted_class = majority_label(labels)


# -----------------------------------------------------------------------------
# Prediction, release, rendering
# -----------------------------------------------------------------------------
def predict_tree(node: TreeNode, row) -> int:
    """Descend ``node`` for one row and return the leaf label (0 or 1)."""
    while not node.is_leaf:
        if row[node.feature_index] < node.threshold:
            node = node.children["left"]
        else:
            node = node.children["right"]
    if node.predicted_class not in (0, 1):
        raise LabelError(
            "only binary classification is supported (labels 0/1), "
            f"got leaf label {node.predicted_class!r}")
    return node.predicted_class


def release_tree(node: TreeNode) -> int:
    """Detach every node of the tree bottom-up and return how many there were."""
    released = 0
    for child in node.children.values():
        released += release_tree(child)
    node.children = {}
    return released + 1


def format_tree(node: TreeNode, feature_names=None) -> str:
    """Render a tree as indented ``if``/``else`` text."""
    lines: list[str] = []
    _format_node(node, "", feature_names, lines)
    return "\n".join(lines)


def _format_node(node: TreeNode, indent, fn, lines):
    if node.is_leaf:
        lines.append(f"{indent}[{node.node_id}] predict {node.predicted_class} "
                     f"(n={node.n_samples})")
        return
    name = (fn[node.feature_index] if (fn is not None and 0 <= node.feature_index < len(fn))
            else f"X[{node.feature_index}]")
    lines.append(f"{indent}[{node.node_id}] if {name} < {node.threshold:.4f}:")
    _format_node(node.children["left"], indent + "  ", fn, lines)
    lines.append(f"{indent}else:")
    _format_node(node.children["right"], indent + "  ", fn, lines)

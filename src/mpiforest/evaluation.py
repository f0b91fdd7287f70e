"""K-fold cross-validation and grid search for the distributed forest.

Both entry points are collective: every rank calls them with its own copy of
the same table and the same arguments.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
from sklearn.metrics import accuracy_score

from .exceptions import ConfigurationError, LabelError
from .forest import ModelContext, RandomForestParameters, predict_model, train_model

logger = logging.getLogger(__name__)

SEARCH_N_ESTIMATORS = (10, 50, 100)
SEARCH_MAX_DEPTHS = (3, 7, 10)
SEARCH_MIN_SAMPLES_LEAF = 2
SEARCH_MAX_FEATURES = 3
SEARCH_K_FOLDS = 5


def fold_contexts(n_rows: int, k_folds: int) -> List[ModelContext]:
    """
    One :class:`ModelContext` per fold.

    Folds are contiguous blocks of ``n_rows // k_folds`` rows; the
    ``n_rows % k_folds`` trailing rows belong to no fold.
    """
    if k_folds < 2:
        raise ConfigurationError(f"k_folds must be at least 2, got {k_folds}")
    rows_per_fold = n_rows // k_folds
    if rows_per_fold == 0:
        raise ConfigurationError(f"{n_rows} rows cannot be split into {k_folds} folds")
    return [ModelContext(fold_index=f, rows_per_fold=rows_per_fold) for f in range(k_folds)]


def eval_model(forest, data: np.ndarray, ctx: ModelContext, comm,
               verbose: int = 0) -> float:
    """Accuracy of ``forest`` on the test block of ``ctx`` (collective)."""
    test = data[ctx.test_start:ctx.test_stop]
    truth = test[:, -1]
    if not np.isin(truth, (0.0, 1.0)).all():
        raise LabelError("only binary classification is supported (labels 0/1)")
    predictions = np.empty(len(test), dtype=int)
    for i, row in enumerate(test):
        predictions[i] = predict_model(forest, row, comm)
        if verbose > 1 and comm.Get_rank() == 0:
            logger.info("majority vote: %d | ground truth: %d", predictions[i], int(truth[i]))
    return float(accuracy_score(truth.astype(int), predictions))


def cross_validate_folds(data: np.ndarray, params: RandomForestParameters,
                         k_folds: int, comm, random_state=None,
                         verbose: int = 0) -> List[float]:
    """
    Per-fold accuracies of k-fold cross-validation.

    For fold ``f`` a fresh forest is trained on a copy of every row outside
    block ``f`` and scored on block ``f`` only.  The forest and the training
    copy are dropped before the next fold starts.

    Parameters
    ----------
    data : ndarray of shape (n_rows, n_cols)
        Full table; last column is the 0/1 label.  Not modified.
    params : RandomForestParameters
        Forest hyperparameters.
    k_folds : int
        Number of folds (at least 2).
    comm : communicator
        Process group (mpi4py API).
    random_state : int, numpy.random.Generator or None
        Seed of rank 0's round-seed generator, shared by all folds.
    verbose : int, default=0
        Diagnostic level.

    Returns
    -------
    list of float
        Accuracy of each fold, in fold order.
    """
    rng = np.random.default_rng(random_state)
    rank = comm.Get_rank()
    accuracies = []
    for ctx in fold_contexts(data.shape[0], k_folds):
        train = data[ctx.train_rows(data.shape[0])]
        forest = train_model(train, params, comm, rng, ctx=ctx, verbose=verbose)
        accuracies.append(eval_model(forest, data, ctx, comm, verbose=verbose))
        forest.release(verbose=verbose, rank=rank)
        del forest, train
        if verbose > 1 and rank == 0:
            logger.info("fold %d/%d accuracy: %f", ctx.fold_index + 1, k_folds, accuracies[-1])
    return accuracies


def cross_validate(data: np.ndarray, params: RandomForestParameters, k_folds: int,
                   comm, random_state=None, verbose: int = 0) -> float:
    """Mean accuracy over the ``k_folds`` folds; see :func:`cross_validate_folds`."""
    accuracies = cross_validate_folds(data, params, k_folds, comm,
                                      random_state=random_state, verbose=verbose)
    return float(np.mean(accuracies))


@dataclass
class SearchResult:
    """Outcome of :func:`hyperparameter_search`."""
    best_accuracy: float
    best_n_estimators: int
    best_max_depth: int
    results: List[Tuple[RandomForestParameters, float]] = field(default_factory=list)


def search_grid() -> List[RandomForestParameters]:
    """Grid configurations in evaluation order (tree count outer, depth inner)."""
    return [RandomForestParameters(n_estimators=n, max_depth=d,
                                   min_samples_leaf=SEARCH_MIN_SAMPLES_LEAF,
                                   max_features=SEARCH_MAX_FEATURES)
            for n in SEARCH_N_ESTIMATORS for d in SEARCH_MAX_DEPTHS]


def hyperparameter_search(data: np.ndarray, comm, random_state=None,
                          k_folds: int = SEARCH_K_FOLDS, grid=None,
                          verbose: int = 0) -> SearchResult:
    """
    Cross-validate every grid configuration and keep the most accurate.

    Ties keep the configuration evaluated first.  Each configuration starts
    from a generator seeded with ``random_state``.
    """
    grid = search_grid() if grid is None else list(grid)
    root = comm.Get_rank() == 0
    best = None
    results = []
    for params in grid:
        if verbose > 0 and root:
            logger.info("[hyperparameter search] testing params:\n%s", params.describe())
        accuracy = cross_validate(data, params, k_folds, comm,
                                  random_state=random_state, verbose=verbose)
        if verbose > 0 and root:
            logger.info("[hyperparameter search] cross validation accuracy: %f%% (%d%%)",
                        accuracy * 100, int(accuracy * 100))
        results.append((params, accuracy))
        if best is None or accuracy > best[1]:
            best = (params, accuracy)
    if best is None:
        raise ConfigurationError("hyperparameter grid is empty")
    return SearchResult(best_accuracy=best[1],
                        best_n_estimators=best[0].n_estimators,
                        best_max_depth=best[0].max_depth,
                        results=results)

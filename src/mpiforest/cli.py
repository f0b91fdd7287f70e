"""Command-line run: cross-validate a forest on a CSV table under MPI.

Launch every rank with the same arguments, e.g.::

    mpiexec -n 4 python -m mpiforest data.csv --seed 7 --log_level 2

Rank 0 parses the arguments and reads the table, then broadcasts the seed,
the log level, the dimensions and the table to the other ranks.
"""
from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass

from .data import Dimensions, checksum, load_csv, parse_csv_dims, validate_labels
from .evaluation import cross_validate, hyperparameter_search
from .exceptions import ForestError
from .forest import RandomForestParameters
from .parallel import ROOT, broadcast_seed, broadcast_table, broadcast_value, world

logger = logging.getLogger(__name__)

DEFAULT_PARAMS = RandomForestParameters(n_estimators=20, max_depth=7,
                                        min_samples_leaf=3, max_features=20)
DEFAULT_K_FOLDS = 20


@dataclass(frozen=True)
class RunConfig:
    csv_file: str
    rows: int = 0
    cols: int = 0
    log_level: int = 1
    seed: int | None = None
    search: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mpiforest",
        description="Cross-validate a random forest distributed over MPI ranks")
    parser.add_argument("csv_file", help="CSV file with a header row; last column is the 0/1 label")
    parser.add_argument("--num_rows", type=int, default=0,
                        help="number of data rows (skips dimension detection with --num_cols)")
    parser.add_argument("--num_cols", type=int, default=0,
                        help="number of columns including the label")
    parser.add_argument("--log_level", type=int, default=1, help="verbosity, higher is chattier")
    parser.add_argument("--seed", type=int, default=None, help="random seed (default: current time)")
    parser.add_argument("--search", action="store_true",
                        help="run the hyperparameter grid search instead of a single cross-validation")
    return parser


def parse_args(argv=None) -> RunConfig:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.seed is not None and args.seed < 0:
        parser.error("--seed must be non-negative")
    return RunConfig(csv_file=args.csv_file, rows=args.num_rows, cols=args.num_cols,
                     log_level=args.log_level, seed=args.seed, search=args.search)


def configure_logging(rank: int) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format=f"%(asctime)s | rank {rank} | %(levelname)s | %(message)s")


def _load(config: RunConfig):
    if config.rows and config.cols:
        dims = Dimensions(rows=config.rows, cols=config.cols)
    else:
        dims = parse_csv_dims(config.csv_file)
    try:
        data = load_csv(config.csv_file, dims)
    except MemoryError as e:
        raise MemoryError(
            f"failed to allocate table of {dims.rows} x {dims.cols} float64 values "
            f"({dims.rows * dims.cols * 8} bytes)") from e
    validate_labels(data)
    return dims, data


def main(argv=None, comm=None) -> int:
    comm = world() if comm is None else comm
    rank = comm.Get_rank()
    configure_logging(rank)

    config = data = None
    if rank == ROOT:
        try:
            config = parse_args(argv)
            dims, data = _load(config)
        except SystemExit as e:
            comm.Abort(e.code if isinstance(e.code, int) else 1)
            return 1
        except (ForestError, MemoryError) as e:
            logger.error("Error: %s", e)
            comm.Abort(1)
            return 1

    seed = broadcast_seed(comm, config.seed if rank == ROOT else None)
    log_level = broadcast_value(comm, config.log_level if rank == ROOT else None)
    search = broadcast_value(comm, config.search if rank == ROOT else None)
    if rank == ROOT and log_level > 0:
        logger.info("using:\n  seed: %d\n  verbose log level: %d\n  rows: %d, cols: %d\n"
                    "reading from csv file:\n  \"%s\"",
                    seed, log_level, dims.rows, dims.cols, config.csv_file)
    data = broadcast_table(comm, data)
    if log_level > 1:
        logger.info("data checksum = %f", checksum(data))

    if search:
        result = hyperparameter_search(data, comm, random_state=seed, verbose=log_level)
        if rank == ROOT:
            print("[hyperparameter search] run complete\n"
                  f"  best_accuracy: {result.best_accuracy:f}\n"
                  f"  best_n_estimators (trees): {result.best_n_estimators}")
        return 0

    if rank == ROOT and log_level > 0:
        logger.info("using:\n  k_folds: %d", DEFAULT_K_FOLDS)
        logger.info(DEFAULT_PARAMS.describe())

    t0 = time.perf_counter()
    accuracy = cross_validate(data, DEFAULT_PARAMS, DEFAULT_K_FOLDS, comm,
                              random_state=seed, verbose=log_level)
    if rank == ROOT:
        print(f"cross validation accuracy: {accuracy * 100:f}% ({int(accuracy * 100)}%)")
        print(f"(time taken: {time.perf_counter() - t0:f}s)")
    return 0

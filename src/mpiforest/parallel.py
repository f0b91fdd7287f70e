"""Process-group helpers built on mpi4py.

Every function here that touches ``comm`` is a collective: all ranks of the
group must call it, in the same order, or the job hangs.  Components accept
any communicator exposing the mpi4py API used below (``Get_rank``,
``Get_size``, ``bcast``, ``Bcast``, ``allreduce``).
"""
from __future__ import annotations

import logging
import time

import numpy as np

logger = logging.getLogger(__name__)

ROOT = 0


def world():
    """Return ``MPI.COMM_WORLD``."""
    from mpi4py import MPI
    return MPI.COMM_WORLD


def tree_range(rank: int, size: int, n_estimators: int) -> range:
    """
    Global tree indices built by ``rank`` in a group of ``size`` processes.

    Every rank gets ``n_estimators // size`` consecutive indices and the first
    ``n_estimators % size`` ranks one more.  No communication is needed: each
    rank derives the same boundaries from its own arguments.
    """
    if size < 1 or not 0 <= rank < size:
        raise ValueError(f"invalid rank {rank} for group of size {size}")
    per_rank, remainder = divmod(int(n_estimators), size)
    start = rank * per_rank + min(rank, remainder)
    stop = start + per_rank + (1 if rank < remainder else 0)
    return range(start, stop)


def n_rounds(size: int, n_estimators: int) -> int:
    """Number of build rounds, i.e. the largest per-rank share."""
    return -(-int(n_estimators) // size)


def broadcast_seed(comm, seed: int | None = None) -> int:
    """Agree on the top-level seed; rank 0 falls back to the clock."""
    if comm.Get_rank() == ROOT and seed is None:
        seed = int(time.time())
    return comm.bcast(seed if comm.Get_rank() == ROOT else None, root=ROOT)


def broadcast_value(comm, value):
    """Broadcast a small picklable value from rank 0."""
    return comm.bcast(value if comm.Get_rank() == ROOT else None, root=ROOT)


def broadcast_table(comm, data: np.ndarray | None) -> np.ndarray:
    """
    Give every rank its own copy of rank 0's table.

    Dimensions travel first so the other ranks can allocate the receive
    buffer, then the contents go out as one ``Bcast`` of float64 values.
    """
    rank = comm.Get_rank()
    shape = comm.bcast(data.shape if rank == ROOT else None, root=ROOT)
    if rank == ROOT:
        buf = np.ascontiguousarray(data, dtype=np.float64)
    else:
        buf = np.empty(shape, dtype=np.float64)
    comm.Bcast(buf, root=ROOT)
    return buf

import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest


class _Shared:
    def __init__(self, size):
        self.size = size
        self.barrier = threading.Barrier(size, timeout=60)
        self.slots = [None] * size


class LocalComm:
    """In-process stand-in for an mpi4py communicator; one instance per rank."""

    def __init__(self, shared, rank):
        self._shared = shared
        self._rank = rank
        self.calls = []

    def Get_rank(self):
        return self._rank

    def Get_size(self):
        return self._shared.size

    def bcast(self, obj, root=0):
        self.calls.append("bcast")
        if self._rank == root:
            self._shared.slots[root] = obj
        self._shared.barrier.wait()
        value = self._shared.slots[root]
        self._shared.barrier.wait()
        return value

    def Bcast(self, buf, root=0):
        value = self.bcast(np.array(buf, copy=True) if self._rank == root else None, root=root)
        self.calls[-1] = "Bcast"
        buf[...] = value

    def allreduce(self, obj):
        self.calls.append("allreduce")
        self._shared.slots[self._rank] = obj
        self._shared.barrier.wait()
        total = self._shared.slots[0]
        for other in self._shared.slots[1:]:
            total = total + other
        self._shared.barrier.wait()
        return total

    def Abort(self, errorcode=0):
        raise SystemExit(errorcode)


def run_group(size, fn, *args, **kwargs):
    """Run ``fn(comm, *args, **kwargs)`` on ``size`` ranks; results in rank order."""
    shared = _Shared(size)
    comms = [LocalComm(shared, r) for r in range(size)]
    with ThreadPoolExecutor(max_workers=size) as pool:
        futures = [pool.submit(fn, comm, *args, **kwargs) for comm in comms]
        return [f.result(timeout=120) for f in futures]


@pytest.fixture
def group():
    return run_group


@pytest.fixture
def solo():
    return LocalComm(_Shared(1), 0)


def make_table(n_rows=100, n_features=2, seed=0):
    """Two informative features with a noisy linear boundary; label last."""
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n_rows, n_features))
    y = (X[:, 0] + 0.5 * X[:, -1] + rng.normal(scale=0.3, size=n_rows) > 0).astype(float)
    return np.column_stack((X, y))


@pytest.fixture
def table():
    return make_table()


@pytest.fixture
def table_factory():
    return make_table

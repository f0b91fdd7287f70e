"""Cross-validate a distributed forest on a synthetic binary problem.

Run with ``mpiexec -n 4 python examples/synthetic_quickstart.py``.
"""
import logging
from time import perf_counter

import numpy as np
from sklearn.datasets import make_classification

from mpiforest import DistributedRandomForestClassifier, RandomForestParameters, cross_validate
from mpiforest.parallel import world

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

comm = world()
X, y = make_classification(n_samples=600, n_features=8, n_informative=4, random_state=0)
data = np.column_stack((X, y)).astype(float)

params = RandomForestParameters(n_estimators=24, max_depth=6, min_samples_leaf=3, max_features=3)
t0 = perf_counter()
acc = cross_validate(data, params, k_folds=5, comm=comm, random_state=42, verbose=1)
if comm.Get_rank() == 0:
    print(f"cv accuracy: {acc:.3f}  ({perf_counter() - t0:.2f} s)")

clf = DistributedRandomForestClassifier(n_estimators=24, max_depth=6, max_features=3,
                                        random_state=42, comm=comm)
clf.fit(X[:500], y[:500])
score = clf.score(X[500:], y[500:])
if comm.Get_rank() == 0:
    print(f"hold-out accuracy: {score:.3f}")

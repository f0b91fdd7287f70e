# mpiforest/__init__.py
"""
mpiforest: binary random forests trained across MPI ranks.

Exports:
    - DistributedRandomForestClassifier
    - RandomForestParameters
    - cross_validate
    - hyperparameter_search
"""
from .evaluation import cross_validate, hyperparameter_search
from .forest import DistributedRandomForestClassifier, RandomForestParameters

__all__ = ["DistributedRandomForestClassifier", "RandomForestParameters",
           "cross_validate", "hyperparameter_search"]
__version__ = "0.1.0"

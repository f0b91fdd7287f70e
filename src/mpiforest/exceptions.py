"""Exceptions raised by mpiforest."""


class ForestError(Exception):
    """Base class for errors raised by mpiforest."""


class ConfigurationError(ForestError, ValueError):
    """Invalid run options, parameters or table shape."""


class LabelError(ForestError, ValueError):
    """A label outside {0, 1}; only binary classification is supported."""

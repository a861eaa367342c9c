"""
Exception types raised by pipegraph operators, graphs and learners.
"""


class PipegraphError(Exception):
    """Base class for all pipegraph errors."""


class SchemaMismatchError(PipegraphError, ValueError):
    """A dataset lacks an expected column or a column has an incompatible type."""

    def __init__(self, message: str, column: str = None):
        super().__init__(message)
        self.column = column


class UnseenLevelError(SchemaMismatchError):
    """A categorical level was not observed at fit time and the policy is 'error'."""


class UntrainedError(PipegraphError, RuntimeError):
    """apply/predict was called before fit/train."""


class GraphStructureError(PipegraphError, ValueError):
    """Invalid graph wiring: unknown node, duplicate id, cycle or bad fan-in."""

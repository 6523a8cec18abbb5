"""Exceptions raised by the eigenvalue solvers."""
from __future__ import annotations


class EigenSolverError(RuntimeError):
    """Base class for eigen-analysis failures."""


class FactorizationError(EigenSolverError):
    """The stiffness operator could not be factorized (singular or indefinite)."""


class ConvergenceError(EigenSolverError):
    """A dense or sparse eigen-decomposition failed to converge."""


class UnsupportedOperationError(EigenSolverError):
    """The requested strategy is not available in this installation."""

"""Linear buckling analysis.

Given the linear stiffness ``A``, a reference load ``r`` scaled by ``s`` and
the nonlinear (tangent) stiffness functional ``N``, the reference state and
the geometric stiffness are

    x0 = A^-1 (s r)
    C  = N(x0) - A

and the buckling load factors ``lambda`` solve ``A x = lambda C x``.  The
critical load is ``lambda * s * r``; the associated eigenvector is the
buckling mode shape.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from structural_stability.core.logger import StructuredLogger
from structural_stability.eigen.config import EigenOptions
from structural_stability.eigen.errors import FactorizationError
from structural_stability.eigen.factorization import as_csr, factorize
from structural_stability.eigen.solver_interface import EigenProblemBase

logger = logging.getLogger(__name__)

NonlinearFunctional = Callable[[NDArray[np.float64]], object]


class BucklingSolver(EigenProblemBase):
    """Buckling eigenproblem built from a reference linear solve.

    Parameters
    ----------
    linear : sparse matrix or ndarray
        Linear stiffness operator ``A`` (symmetric).  Not modified.
    rhs : ndarray
        Reference load vector ``r``.
    nonlinear_fun : callable
        ``N(x) -> matrix``; tangent stiffness at displacement ``x``.  Called
        once per :meth:`initialize_matrix`.
    scaling : float
        Load scale factor ``s``.
    options : EigenOptions, optional
    structured_logger : StructuredLogger, optional

    Examples
    --------
    >>> solver = BucklingSolver(K, f, lambda u: assembler.tangent(u), scaling=1.0)
    >>> solver.initialize_matrix()
    >>> solver.compute_sparse(shift=0.0, number=5)
    >>> critical = solver.value(0)
    """

    problem_name = "buckling"

    def __init__(
        self,
        linear,
        rhs: NDArray[np.float64],
        nonlinear_fun: NonlinearFunctional,
        scaling: float = 1.0,
        options: Optional[EigenOptions] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ):
        super().__init__(options=options, structured_logger=structured_logger)
        self._linear = as_csr(linear, "linear")
        self._rhs = np.asarray(rhs, dtype=np.float64).ravel()
        if self._rhs.shape[0] != self._linear.shape[0]:
            raise ValueError(
                f"rhs has {self._rhs.shape[0]} entries but the stiffness operator "
                f"is {self._linear.shape[0]}x{self._linear.shape[0]}"
            )
        if not callable(nonlinear_fun):
            raise TypeError("nonlinear_fun must be callable")
        self._nonlinear_fun = nonlinear_fun
        self._scaling = float(scaling)
        self._solution: Optional[NDArray[np.float64]] = None

    @classmethod
    def from_matrices(
        cls,
        linear,
        nonlinear,
        options: Optional[EigenOptions] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ) -> "BucklingSolver":
        """Build a solver from an already evaluated nonlinear stiffness matrix.

        ``C = nonlinear - linear`` is formed immediately, so no reference solve
        is needed before calling a strategy.
        """
        A = as_csr(linear, "linear")
        N = as_csr(nonlinear, "nonlinear")
        n = A.shape[0]
        solver = cls(
            A,
            np.zeros(n),
            _fixed_matrix(N),
            options=options,
            structured_logger=structured_logger,
        )
        solver.set_operators(A, N - A)
        return solver

    # ------------------------------------------------------------------
    # Linear solve / operator setup
    # ------------------------------------------------------------------
    def initialize_matrix(self) -> None:
        """Solve for the reference state and form ``C = N(x0) - A``.

        Raises
        ------
        FactorizationError
            If ``A`` cannot be factorized.  ``x0`` and ``C`` keep their
            previous values.
        """
        method = self._options.factorization
        self._progress(
            "Computing matrices: factorizing %dx%d stiffness (%s)",
            self._linear.shape[0],
            self._linear.shape[1],
            method,
        )
        try:
            solver = factorize(self._linear, method=method)
            solution = solver.solve(self._scaling * self._rhs)
        except FactorizationError as exc:
            self._log_failure("initialize_matrix", exc)
            raise
        self._progress("Reference solution computed (|x0| = %.6e)", np.linalg.norm(solution))

        nonlinear = as_csr(self._nonlinear_fun(solution), "N(x0)")
        if nonlinear.shape != self._linear.shape:
            raise ValueError(
                f"N(x0) has shape {nonlinear.shape}, expected {self._linear.shape}"
            )
        geometric = sp.csr_matrix(nonlinear - self._linear)

        self._solution = solution
        self._A, self._C = self._linear, geometric
        self._progress("Finished computing matrices (nnz(C)=%d)", geometric.nnz)

    @property
    def linear(self) -> sp.csr_matrix:
        return self._linear

    @property
    def scaling(self) -> float:
        return self._scaling

    @property
    def reference_solution(self) -> Optional[NDArray[np.float64]]:
        """Reference displacement ``x0`` from the last :meth:`initialize_matrix`."""
        return self._solution

    @property
    def geometric_stiffness(self) -> Optional[sp.csr_matrix]:
        """``C = N(x0) - A``; ``None`` until operators are available."""
        return self._C

    def critical_loads(self) -> NDArray[np.float64]:
        """Critical load vectors ``lambda_k * s * r`` as columns."""
        return np.outer(self._scaling * self._rhs, self.values())


def _fixed_matrix(matrix: sp.csr_matrix) -> NonlinearFunctional:
    def nonlinear_fun(_x):
        return matrix

    return nonlinear_fun

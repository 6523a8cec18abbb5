"""Abstract base for generalized symmetric eigenproblems.

A concrete problem supplies the operator pair ``(A, C)`` through
:meth:`EigenProblemBase.initialize_matrix`; the base class provides every
solution strategy on top of that pair:

- :meth:`~EigenProblemBase.compute` -- dense ``scipy.linalg.eigh`` on the
  shifted pencil ``(A - s C, C)``.
- :meth:`~EigenProblemBase.compute_sparse` -- ARPACK with one of five
  spectral transformations (see :mod:`.spectral_transforms`).
- :meth:`~EigenProblemBase.compute_power` -- power iteration on
  ``D = A^-1 C`` for the dominant pair.

Results of the last successful solve are read back through
:meth:`values`, :meth:`value`, :meth:`vectors`, :meth:`vector` and
:meth:`mode`.  A failed solve leaves the previous result untouched.
"""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import scipy.linalg as la
import scipy.sparse as sp
from numpy.typing import NDArray

from structural_stability.core.logger import StructuredLogger
from structural_stability.eigen.config import EigenOptions
from structural_stability.eigen.errors import (
    ConvergenceError,
    EigenSolverError,
    FactorizationError,
)
from structural_stability.eigen.factorization import as_csr
from structural_stability.eigen.results import EigenResult, Mode
from structural_stability.eigen import spectral_transforms

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Power iteration constants
# ---------------------------------------------------------------------------
_POWER_TOL = 1e-5
_POWER_MAX_ITER = 100


class EigenProblemBase(ABC):
    """Generalized eigenproblem ``A x = lambda C x`` with pluggable strategies.

    Parameters
    ----------
    options : EigenOptions, optional
        Option set; defaults to ``EigenOptions()``.
    structured_logger : StructuredLogger, optional
        When given, every successful solve is appended to ``solves.jsonl``.
    """

    problem_name = "eigen"

    def __init__(
        self,
        options: Optional[EigenOptions] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ):
        self._options = options or EigenOptions()
        self._structured_logger = structured_logger
        self._A: Optional[sp.csr_matrix] = None
        self._C: Optional[sp.csr_matrix] = None
        self._result = EigenResult.empty()

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------
    @property
    def options(self) -> EigenOptions:
        return self._options

    def set_options(self, options: EigenOptions) -> None:
        """Replace the option set as a whole."""
        if not isinstance(options, EigenOptions):
            raise TypeError(f"options must be EigenOptions, got {type(options).__name__}")
        self._options = options

    @property
    def supports_sparse(self) -> bool:
        return spectral_transforms.sparse_available()

    def _progress(self, msg: str, *args) -> None:
        level = logging.INFO if self._options.verbose else logging.DEBUG
        logger.log(level, msg, *args)

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------
    @abstractmethod
    def initialize_matrix(self) -> None:
        """Build the operator pair ``(A, C)``."""
        ...

    def set_operators(self, A, C) -> None:
        """Install ``A`` and ``C`` directly, bypassing :meth:`initialize_matrix`."""
        A_csr = as_csr(A, "A")
        C_csr = as_csr(C, "C")
        if A_csr.shape != C_csr.shape:
            raise ValueError(
                f"A and C must have the same shape, got {A_csr.shape} and {C_csr.shape}"
            )
        self._A, self._C = A_csr, C_csr

    @property
    def operator_a(self) -> Optional[sp.csr_matrix]:
        return self._A

    @property
    def operator_c(self) -> Optional[sp.csr_matrix]:
        return self._C

    def _require_operators(self) -> tuple[sp.csr_matrix, sp.csr_matrix]:
        if self._A is None or self._C is None:
            raise RuntimeError(
                f"{type(self).__name__}: operators are not set; "
                "call initialize_matrix() or set_operators() first"
            )
        return self._A, self._C

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------
    def compute(self, shift: float = 0.0) -> EigenResult:
        """Dense generalized symmetric eigendecomposition of ``(A - shift C, C)``.

        The shift is added back, so reported eigenvalues always belong to
        ``A x = lambda C x``.  Eigenvectors are C-orthonormal.

        Raises
        ------
        ConvergenceError
            If LAPACK fails (e.g. ``C`` is not positive definite).
        """
        A, C = self._require_operators()
        shift = float(shift)
        self._progress("Solving dense eigenvalue problem (n=%d, shift=%g)", A.shape[0], shift)
        t_start = time.perf_counter()

        a = A.toarray()
        b = C.toarray()
        if shift != 0.0:
            a = a - shift * b
        try:
            values, vectors = la.eigh(a, b)
        except la.LinAlgError as exc:
            failure = ConvergenceError(f"Dense generalized eigendecomposition failed: {exc}")
            self._log_failure("dense", failure)
            raise failure from exc

        result = EigenResult(
            values=values + shift,
            vectors=vectors,
            strategy="dense",
            shift=shift,
            solve_time_s=time.perf_counter() - t_start,
        )
        return self._store(result)

    def compute_sparse(self, shift: float = 0.0, number: int = 10) -> EigenResult:
        """Compute ``number`` eigenpairs with ARPACK.

        The spectral transformation is chosen by ``options.solver``.  The
        Krylov subspace holds ``options.ncv_fac * number`` vectors.

        Raises
        ------
        UnsupportedOperationError
            If sparse solving is not available in this installation.
        ConvergenceError
            If ARPACK does not converge; no retry is attempted.
        """
        A, C = self._require_operators()
        shift = float(shift)
        transform = spectral_transforms.get_transform(self._options.solver)
        self._progress(
            "Solving sparse eigenvalue problem (n=%d, mode=%s, number=%d, shift=%g)",
            A.shape[0],
            transform.name,
            number,
            shift,
        )
        t_start = time.perf_counter()
        try:
            values, vectors, ncv = spectral_transforms.solve_sparse(
                A, C, shift, number, self._options, transform=transform
            )
        except EigenSolverError as exc:
            self._log_failure(transform.name, exc)
            raise

        result = EigenResult(
            values=values,
            vectors=vectors,
            strategy=transform.name,
            shift=shift,
            solve_time_s=time.perf_counter() - t_start,
            metadata={"ncv": ncv, "number": int(number)},
        )
        return self._store(result)

    def compute_power(self) -> EigenResult:
        """Dominant eigenpair of ``D = A^-1 C`` by power iteration.

        ``D`` is formed densely, so this is meant for small systems.  The
        reported eigenvalue is the Rayleigh quotient ``(v.v) / (v.D v)``,
        i.e. the eigenvalue of ``A x = lambda C x`` with the smallest
        magnitude.  Reaching the iteration cap is not an error: the last
        iterate is returned with ``converged=False``.

        Raises
        ------
        FactorizationError
            If ``A`` is singular.
        """
        A, C = self._require_operators()
        self._progress("Solving eigenvalue problem by power iteration (n=%d)", A.shape[0])
        t_start = time.perf_counter()

        try:
            A_inv = np.linalg.inv(A.toarray())
        except np.linalg.LinAlgError as exc:
            failure = FactorizationError(f"Cannot invert A for power iteration: {exc}")
            self._log_failure("power", failure)
            raise failure from exc
        D = A_inv @ C.toarray()

        n = D.shape[0]
        v = np.ones(n, dtype=np.float64) / np.sqrt(n)
        v_old = np.zeros(n, dtype=np.float64)
        converged = False
        n_iter = 0
        error = np.inf
        for n_iter in range(1, _POWER_MAX_ITER + 1):
            v = D @ v
            norm = np.linalg.norm(v)
            if norm == 0.0:
                break
            v = v / norm
            error = np.linalg.norm(v - v_old)
            if error < _POWER_TOL:
                converged = True
                break
            v_old = v

        if not converged:
            logger.warning(
                "Power iteration stopped after %d iterations (residual %.3e > %.1e); "
                "returning best estimate",
                n_iter,
                error,
                _POWER_TOL,
            )

        denom = v @ (D @ v)
        value = (v @ v) / denom if denom != 0.0 else np.inf

        result = EigenResult(
            values=np.array([value], dtype=np.float64),
            vectors=v.reshape(n, 1),
            strategy="power",
            solve_time_s=time.perf_counter() - t_start,
            converged=converged,
            n_iterations=n_iter,
            metadata={"residual": float(error)},
        )
        return self._store(result)

    def _store(self, result: EigenResult) -> EigenResult:
        self._result = result
        self._progress(
            "Finished %s solve: %d eigenpair(s) in %.3f s",
            result.strategy,
            result.n_modes,
            result.solve_time_s,
        )
        if self._structured_logger is not None:
            self._structured_logger.log_solve(
                problem=self.problem_name,
                strategy=result.strategy,
                inputs={"shift": result.shift, **result.metadata},
                outputs={"values": result.values},
                metadata={
                    "solve_time_s": result.solve_time_s,
                    "converged": result.converged,
                    "n_iterations": result.n_iterations,
                },
            )
        return result

    def _log_failure(self, strategy: str, exc: BaseException) -> None:
        if self._structured_logger is not None:
            self._structured_logger.log_failure(self.problem_name, strategy, exc)

    # ------------------------------------------------------------------
    # Mode query
    # ------------------------------------------------------------------
    @property
    def result(self) -> EigenResult:
        return self._result

    @property
    def n_modes(self) -> int:
        return self._result.n_modes

    def _check_index(self, k: int) -> int:
        k = int(k)
        if not 0 <= k < self.n_modes:
            raise IndexError(
                f"mode index {k} out of range for {self.n_modes} computed eigenpair(s)"
            )
        return k

    def values(self) -> NDArray[np.float64]:
        return self._result.values

    def value(self, k: int) -> float:
        return float(self._result.values[self._check_index(k)])

    def vectors(self) -> NDArray[np.float64]:
        return self._result.vectors

    def vector(self, k: int) -> NDArray[np.float64]:
        return self._result.vectors[:, self._check_index(k)]

    def mode(self, k: int) -> Mode:
        """Return ``Mode(value(k), vector(k))``."""
        return Mode(self.value(k), self.vector(k))

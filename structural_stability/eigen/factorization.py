"""Sparse direct factorizations for the reference (linear) solve.

Two factorizations are offered:

- ``"lu"``: SuperLU with COLAMD ordering (``scipy.sparse.linalg.splu``).
  Works for any non-singular matrix.
- ``"ldlt"``: SuperLU restricted to natural ordering and diagonal pivoting,
  which for a symmetric matrix yields ``A = L D L^T``.  Every pivot ``D_ii``
  must be positive, so the factorization doubles as a positive-definiteness
  check and provides the Cholesky factor ``L sqrt(D)`` used by the Cholesky
  spectral mode.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from numpy.typing import NDArray

from structural_stability.eigen.errors import FactorizationError

logger = logging.getLogger(__name__)


def as_csr(matrix, name: str = "matrix") -> sp.csr_matrix:
    """Return ``matrix`` as a square float64 CSR matrix."""
    if sp.issparse(matrix):
        out = sp.csr_matrix(matrix, dtype=np.float64)
    else:
        arr = np.asarray(matrix, dtype=np.float64)
        if arr.ndim != 2:
            raise ValueError(f"{name} must be 2-D, got shape {arr.shape}")
        out = sp.csr_matrix(arr)
    if out.shape[0] != out.shape[1]:
        raise ValueError(f"{name} must be square, got shape {out.shape}")
    return out


class SparseFactorization:
    """A factorized sparse matrix that can repeatedly solve ``A x = b``.

    Parameters
    ----------
    matrix : sparse matrix or ndarray
        Square matrix to factorize.
    method : str
        ``"lu"`` or ``"ldlt"``.

    Raises
    ------
    FactorizationError
        If the matrix is singular, or (for ``"ldlt"``) not positive definite.
    """

    def __init__(self, matrix, method: str = "lu"):
        self.method = method.lower().strip()
        A = as_csr(matrix).tocsc()
        self.n = A.shape[0]
        self._cholesky: Optional[sp.csr_matrix] = None

        if self.method == "lu":
            try:
                self._lu = spla.splu(A)
            except RuntimeError as exc:
                raise FactorizationError(
                    f"LU factorization of {self.n}x{self.n} matrix failed: {exc}"
                ) from exc
        elif self.method == "ldlt":
            self._lu = self._factorize_ldlt(A)
        else:
            raise ValueError(
                f"Unsupported factorization: {method!r}. Must be 'lu' or 'ldlt'."
            )

        logger.debug(
            "Factorized %dx%d matrix (%s, nnz(L)=%d, nnz(U)=%d)",
            self.n,
            self.n,
            self.method,
            self._lu.L.nnz,
            self._lu.U.nnz,
        )

    def _factorize_ldlt(self, A: sp.csc_matrix):
        try:
            lu = spla.splu(
                A,
                permc_spec="NATURAL",
                diag_pivot_thresh=0.0,
                options={"SymmetricMode": True},
            )
        except RuntimeError as exc:
            raise FactorizationError(
                f"LDL^T factorization of {self.n}x{self.n} matrix failed: {exc}"
            ) from exc

        identity = np.arange(self.n)
        if not (np.array_equal(lu.perm_r, identity) and np.array_equal(lu.perm_c, identity)):
            raise FactorizationError(
                "LDL^T factorization required pivoting; matrix is not positive definite"
            )

        pivots = lu.U.diagonal()
        if np.any(pivots <= 0.0) or not np.all(np.isfinite(pivots)):
            n_bad = int(np.sum(~(pivots > 0.0)))
            raise FactorizationError(
                f"Matrix is not positive definite: {n_bad} non-positive pivot(s)"
            )
        self._pivots = pivots
        return lu

    def solve(self, rhs: NDArray[np.float64]) -> NDArray[np.float64]:
        """Solve ``A x = rhs`` for a vector or a block of columns."""
        x = self._lu.solve(np.asarray(rhs, dtype=np.float64))
        if not np.all(np.isfinite(x)):
            raise FactorizationError(
                "Solution contains non-finite entries; matrix is numerically singular"
            )
        return x

    @property
    def cholesky_factor(self) -> sp.csr_matrix:
        """Lower factor ``L sqrt(D)`` with ``A = (L sqrt(D)) (L sqrt(D))^T``.

        Only available for the ``"ldlt"`` method.
        """
        if self.method != "ldlt":
            raise ValueError("cholesky_factor requires method='ldlt'")
        if self._cholesky is None:
            scale = sp.diags(np.sqrt(self._pivots))
            self._cholesky = sp.csr_matrix(self._lu.L @ scale)
        return self._cholesky

    def as_operator(self) -> spla.LinearOperator:
        """Return ``A^{-1}`` as a :class:`~scipy.sparse.linalg.LinearOperator`."""
        return FactorizedOperator(self)


class FactorizedOperator(spla.LinearOperator):
    """Applies the inverse of a factorized matrix."""

    def __init__(self, factorization: SparseFactorization):
        self.factorization = factorization
        super().__init__(
            dtype=np.float64,
            shape=(factorization.n, factorization.n),
        )

    def _matvec(self, x):
        return self.factorization.solve(np.ravel(x))

    def _matmat(self, X):
        return self.factorization.solve(X)


def factorize(matrix, method: str = "lu") -> SparseFactorization:
    return SparseFactorization(matrix, method=method)

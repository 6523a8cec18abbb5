"""Spectral transformations for the sparse generalized eigenproblem.

Solves ``A x = lambda C x`` for a few eigenpairs with ARPACK
(``scipy.sparse.linalg.eigsh``).  Five transformations are available,
selected at runtime by :class:`~structural_stability.eigen.config.SpectraMode`:

=================  ==============================================  ============
Mode               Operator handed to ARPACK                       Shift
=================  ==============================================  ============
Cholesky           ``L^-1 (A - s C) L^-T`` with ``C = L L^T``       added back
RegularInverse     ``C^-1 (A - s C)``  (ARPACK mode 2)             added back
ShiftInvert        ``(A - s C)^-1 C``  (ARPACK mode 3)             absolute
Buckling           ``(A - s C)^-1 A``  (ARPACK mode 4)             absolute
Cayley             ``(A - s C)^-1 (A + s C)``  (ARPACK mode 5)     absolute
=================  ==============================================  ============

For the three shift-invert style modes ARPACK selects eigenvalues of the
*transformed* operator, whose magnitude grows as ``lambda`` approaches the
shift.  Magnitude rules are therefore flipped so that ``SMALLEST_MAGN``
targets the eigenvalues next to the shift.  The buckling and Cayley
transforms need a non-zero shift on the same side of zero as the wanted
eigenvalues.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from numpy.typing import NDArray

from structural_stability.eigen.config import EigenOptions, SortRule, SpectraMode
from structural_stability.eigen.errors import (
    ConvergenceError,
    EigenSolverError,
    FactorizationError,
    UnsupportedOperationError,
)
from structural_stability.eigen.factorization import factorize

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Capability detection (module-level, runs once at import)
# ---------------------------------------------------------------------------
_SPARSE_AVAILABLE = False

try:
    from scipy.sparse.linalg import eigsh

    _SPARSE_AVAILABLE = True
except ImportError:
    eigsh = None
    logger.info("ARPACK eigsh not available; sparse eigen strategies disabled")


def sparse_available() -> bool:
    """Return True if the sparse iterative eigensolver can be used."""
    return _SPARSE_AVAILABLE


# ---------------------------------------------------------------------------
# Selection and sort rules
# ---------------------------------------------------------------------------
_WHICH = {
    SortRule.LARGEST_MAGN: "LM",
    SortRule.LARGEST_REAL: "LA",
    SortRule.LARGEST_ALGE: "LA",
    SortRule.SMALLEST_MAGN: "SM",
    SortRule.SMALLEST_REAL: "SA",
    SortRule.SMALLEST_ALGE: "SA",
    SortRule.BOTH_ENDS: "BE",
}
_FLIP_MAGNITUDE = {"LM": "SM", "SM": "LM"}


def which_for(rule: SortRule, transformed: bool = False) -> str:
    """Translate a selection rule to an ARPACK ``which`` string."""
    try:
        which = _WHICH[SortRule(rule)]
    except KeyError:
        raise ValueError(f"Selection rule {SortRule(rule).name} is not supported") from None
    if transformed:
        which = _FLIP_MAGNITUDE.get(which, which)
    return which


def sort_eigenpairs(
    values: NDArray[np.float64],
    vectors: NDArray[np.float64],
    rule: SortRule,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Order eigenpairs by ``rule``; vectors are columns."""
    rule = SortRule(rule)
    if rule == SortRule.LARGEST_MAGN:
        key = -np.abs(values)
    elif rule in (SortRule.LARGEST_REAL, SortRule.LARGEST_ALGE):
        key = -values
    elif rule == SortRule.SMALLEST_MAGN:
        key = np.abs(values)
    elif rule in (SortRule.SMALLEST_REAL, SortRule.SMALLEST_ALGE, SortRule.BOTH_ENDS):
        key = values
    else:
        raise ValueError(f"Sort rule {rule.name} is not supported")
    order = np.argsort(key, kind="stable")
    return values[order], vectors[:, order]


def subspace_size(n_dof: int, number: int, ncv_fac: int) -> int:
    """Krylov subspace size: ``ncv_fac * number`` clamped to ``(number, n_dof]``."""
    return int(min(n_dof, max(ncv_fac * number, number + 1)))


# ---------------------------------------------------------------------------
# Transform strategies
# ---------------------------------------------------------------------------
class SpectralTransform(ABC):
    """One spectral transformation of ``A x = lambda C x``."""

    mode: SpectraMode
    #: True when ARPACK solves the shifted pencil and the shift must be re-added.
    adds_shift_back: bool = False
    #: True when ARPACK selects on the transformed spectrum.
    transformed: bool = False
    requires_nonzero_shift: bool = False

    @property
    def name(self) -> str:
        return self.mode.name.lower()

    @abstractmethod
    def _solve(
        self,
        A: sp.csr_matrix,
        C: sp.csr_matrix,
        shift: float,
        number: int,
        ncv: int,
        which: str,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        ...

    def solve(
        self,
        A: sp.csr_matrix,
        C: sp.csr_matrix,
        shift: float,
        number: int,
        ncv: int,
        rule: SortRule,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return ``(values, vectors)`` of the original problem, unsorted."""
        if self.requires_nonzero_shift and shift == 0.0:
            raise ValueError(f"{self.mode.name} mode requires a non-zero shift")

        which = which_for(rule, transformed=self.transformed)
        logger.debug(
            "ARPACK %s: k=%d, ncv=%d, which=%s, shift=%.6e",
            self.name,
            number,
            ncv,
            which,
            shift,
        )
        try:
            values, vectors = self._solve(A, C, shift, number, ncv, which)
        except EigenSolverError:
            raise
        except spla.ArpackNoConvergence as exc:
            raise ConvergenceError(
                f"{self.mode.name} mode did not converge: "
                f"{len(exc.eigenvalues)} of {number} eigenpairs found (ncv={ncv})"
            ) from exc
        except spla.ArpackError as exc:
            raise ConvergenceError(f"{self.mode.name} mode failed: {exc}") from exc
        except RuntimeError as exc:
            # SuperLU reports singular factors as RuntimeError
            raise ConvergenceError(
                f"{self.mode.name} mode could not factorize the shifted operator: {exc}"
            ) from exc

        values = np.real(values)
        if self.adds_shift_back:
            values = values + shift
        return values, np.real(vectors)


class _ShiftedPencilTransform(SpectralTransform):
    adds_shift_back = True

    @staticmethod
    def shifted(A: sp.csr_matrix, C: sp.csr_matrix, shift: float) -> sp.csr_matrix:
        if shift == 0.0:
            return A
        return sp.csr_matrix(A - shift * C)


class CholeskyTransform(_ShiftedPencilTransform):
    """Reduce to a standard problem with the Cholesky factor of ``C``."""

    mode = SpectraMode.CHOLESKY

    def _solve(self, A, C, shift, number, ncv, which):
        try:
            L = factorize(C, method="ldlt").cholesky_factor
        except FactorizationError as exc:
            raise ConvergenceError(
                f"Cholesky mode requires a positive definite C: {exc}"
            ) from exc
        Lt = sp.csr_matrix(L.T)
        A_s = self.shifted(A, C, shift)

        def back(y):
            return spla.spsolve_triangular(Lt, y, lower=False)

        def matvec(y):
            return spla.spsolve_triangular(L, A_s @ back(np.ravel(y)), lower=True)

        op = spla.LinearOperator(A.shape, matvec=matvec, dtype=np.float64)
        mu, Y = eigsh(op, k=number, which=which, ncv=ncv)
        return mu, back(Y)


class RegularInverseTransform(_ShiftedPencilTransform):
    """ARPACK regular-inverse mode on the shifted pencil ``(A - s C, C)``."""

    mode = SpectraMode.REGULAR_INVERSE

    def _solve(self, A, C, shift, number, ncv, which):
        try:
            C_inv = factorize(C).as_operator()
            return eigsh(
                self.shifted(A, C, shift), k=number, M=C, Minv=C_inv, which=which, ncv=ncv
            )
        except FactorizationError as exc:
            raise ConvergenceError(
                f"Regular inverse mode requires a non-singular C: {exc}"
            ) from exc


class _ShiftInvertFamily(SpectralTransform):
    transformed = True
    arpack_mode: str = "normal"

    def _solve(self, A, C, shift, number, ncv, which):
        return eigsh(
            A.tocsc(),
            k=number,
            M=C.tocsc(),
            sigma=shift,
            which=which,
            ncv=ncv,
            mode=self.arpack_mode,
        )


class ShiftInvertTransform(_ShiftInvertFamily):
    mode = SpectraMode.SHIFT_INVERT
    arpack_mode = "normal"


class BucklingTransform(_ShiftInvertFamily):
    """Buckling transform; ``A`` must be positive semi-definite."""

    mode = SpectraMode.BUCKLING
    arpack_mode = "buckling"
    requires_nonzero_shift = True


class CayleyTransform(_ShiftInvertFamily):
    mode = SpectraMode.CAYLEY
    arpack_mode = "cayley"
    requires_nonzero_shift = True


TRANSFORMS: dict[SpectraMode, SpectralTransform] = {
    t.mode: t
    for t in (
        CholeskyTransform(),
        RegularInverseTransform(),
        ShiftInvertTransform(),
        BucklingTransform(),
        CayleyTransform(),
    )
}


def get_transform(mode) -> SpectralTransform:
    return TRANSFORMS[SpectraMode(int(mode))]


def solve_sparse(
    A: sp.csr_matrix,
    C: sp.csr_matrix,
    shift: float,
    number: int,
    options: EigenOptions,
    transform: Optional[SpectralTransform] = None,
) -> tuple[NDArray[np.float64], NDArray[np.float64], int]:
    """Compute ``number`` eigenpairs of ``A x = lambda C x``.

    Returns
    -------
    values : ndarray, shape (number,)
        Eigenvalues of the original problem ordered by ``options.sort_rule``.
    vectors : ndarray, shape (n_dof, number)
    ncv : int
        Krylov subspace size used.

    Raises
    ------
    UnsupportedOperationError
        If the sparse eigensolver is not available.
    ConvergenceError
        If ARPACK fails; no retry is attempted.
    ValueError
        If ``number`` is not in ``[1, n_dof)`` or the mode needs a non-zero shift.
    """
    if not sparse_available():
        raise UnsupportedOperationError(
            "Sparse eigen solve requested but scipy ARPACK support is not available"
        )

    n_dof = A.shape[0]
    number = int(number)
    if number < 1 or number >= n_dof:
        raise ValueError(
            f"number must satisfy 1 <= number < {n_dof} for a {n_dof}-DOF system, "
            f"got {number}"
        )

    transform = transform or get_transform(options.solver)
    ncv = subspace_size(n_dof, number, options.ncv_fac)
    values, vectors = transform.solve(
        A, C, float(shift), number, ncv, options.selection_rule
    )
    values, vectors = sort_eigenpairs(values, vectors, options.sort_rule)
    return values, vectors, ncv

"""Tests for the sparse spectral-transformation strategies.

Reference problem: ``A`` is the 10x10 tridiagonal ``[-1, 2, -1]`` matrix
and ``C = diag(1.0 ... 2.0)``; both are SPD so every mode is applicable.
The dense ``scipy.linalg.eigh`` solution is the reference.
"""
from __future__ import annotations

import numpy as np
import pytest
import scipy.linalg as la
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from structural_stability.eigen import spectral_transforms
from structural_stability.eigen.config import EigenOptions, SortRule, SpectraMode
from structural_stability.eigen.errors import ConvergenceError, UnsupportedOperationError
from structural_stability.eigen.factorization import FactorizedOperator
from structural_stability.eigen.spectral_transforms import (
    TRANSFORMS,
    get_transform,
    solve_sparse,
    sort_eigenpairs,
    subspace_size,
    which_for,
)

_N = 10
_NUMBER = 3


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(scope="module")
def pencil():
    A = sp.diags(
        [-np.ones(_N - 1), 2.0 * np.ones(_N), -np.ones(_N - 1)], [-1, 0, 1], format="csr"
    )
    C = sp.diags(np.linspace(1.0, 2.0, _N), format="csr")
    return A, C


@pytest.fixture(scope="module")
def dense_values(pencil):
    A, C = pencil
    return la.eigh(A.toarray(), C.toarray(), eigvals_only=True)


def _residual(A, C, value, vector):
    return np.linalg.norm(A @ vector - value * (C @ vector)) / np.linalg.norm(vector)


# ===========================================================================
# Rules and helpers
# ===========================================================================


class TestRules:
    def test_which_plain(self):
        assert which_for(SortRule.SMALLEST_MAGN) == "SM"
        assert which_for(SortRule.LARGEST_MAGN) == "LM"
        assert which_for(SortRule.LARGEST_REAL) == "LA"
        assert which_for(SortRule.SMALLEST_ALGE) == "SA"
        assert which_for(SortRule.BOTH_ENDS) == "BE"

    def test_which_transformed_flips_magnitude_only(self):
        assert which_for(SortRule.SMALLEST_MAGN, transformed=True) == "LM"
        assert which_for(SortRule.LARGEST_MAGN, transformed=True) == "SM"
        assert which_for(SortRule.SMALLEST_ALGE, transformed=True) == "SA"

    def test_which_imaginary_rejected(self):
        with pytest.raises(ValueError):
            which_for(SortRule.LARGEST_IMAG)

    def test_sort_smallest_magnitude(self):
        values = np.array([3.0, -1.0, 2.0])
        vectors = np.eye(3)
        v, V = sort_eigenpairs(values, vectors, SortRule.SMALLEST_MAGN)
        np.testing.assert_array_equal(v, [-1.0, 2.0, 3.0])
        np.testing.assert_array_equal(V[:, 0], [0.0, 1.0, 0.0])

    def test_sort_largest_algebraic(self):
        values = np.array([3.0, -4.0, 2.0])
        v, _ = sort_eigenpairs(values, np.eye(3), SortRule.LARGEST_ALGE)
        np.testing.assert_array_equal(v, [3.0, 2.0, -4.0])

    def test_sort_largest_magnitude(self):
        values = np.array([3.0, -4.0, 2.0])
        v, _ = sort_eigenpairs(values, np.eye(3), SortRule.LARGEST_MAGN)
        np.testing.assert_array_equal(v, [-4.0, 3.0, 2.0])

    def test_subspace_size_uses_factor(self):
        assert subspace_size(100, 5, 3) == 15
        assert subspace_size(100, 5, 2) == 10

    def test_subspace_size_clamped_to_dofs(self):
        assert subspace_size(3, 2, 3) == 3

    def test_registry_covers_all_modes(self):
        assert set(TRANSFORMS) == set(SpectraMode)
        assert get_transform(0).mode is SpectraMode.CHOLESKY
        assert get_transform(4).mode is SpectraMode.CAYLEY

    def test_shift_handling_flags(self):
        assert get_transform(SpectraMode.CHOLESKY).adds_shift_back
        assert get_transform(SpectraMode.REGULAR_INVERSE).adds_shift_back
        for mode in (SpectraMode.SHIFT_INVERT, SpectraMode.BUCKLING, SpectraMode.CAYLEY):
            assert not get_transform(mode).adds_shift_back


# ===========================================================================
# All modes against the dense reference
# ===========================================================================


class TestSolveSparse:
    @pytest.mark.parametrize("mode", list(SpectraMode))
    def test_modes_agree_with_dense(self, pencil, dense_values, mode):
        """Every transformation returns the smallest eigenvalues of the pencil."""
        A, C = pencil
        shift = 0.5 * dense_values[0]
        values, vectors, ncv = solve_sparse(
            A, C, shift, _NUMBER, EigenOptions(solver=mode)
        )
        np.testing.assert_allclose(values, dense_values[:_NUMBER], rtol=1e-6, atol=1e-9)
        assert vectors.shape == (_N, _NUMBER)
        assert ncv == 9
        for j in range(_NUMBER):
            assert _residual(A, C, values[j], vectors[:, j]) < 1e-6

    @pytest.mark.parametrize("shift", [0.0, 1.0, -1.0])
    def test_cholesky_independent_of_shift(self, pencil, dense_values, shift):
        """Eigenvalues after re-adding the shift match across shifts."""
        A, C = pencil
        values, _, _ = solve_sparse(
            A, C, shift, _NUMBER, EigenOptions(solver=SpectraMode.CHOLESKY,
                                               selection_rule=SortRule.SMALLEST_ALGE,
                                               sort_rule=SortRule.SMALLEST_ALGE)
        )
        np.testing.assert_allclose(values, dense_values[:_NUMBER], atol=1e-8)

    def test_shift_invert_targets_interior(self, pencil, dense_values):
        """Shift-invert around an interior shift finds the nearest eigenvalues."""
        A, C = pencil
        shift = dense_values[5] + 1e-3
        values, _, _ = solve_sparse(
            A, C, shift, 2, EigenOptions(solver=SpectraMode.SHIFT_INVERT)
        )
        nearest = dense_values[np.argsort(np.abs(dense_values - shift))[:2]]
        np.testing.assert_allclose(np.sort(values), np.sort(nearest), rtol=1e-8)

    def test_largest_magnitude_rule(self, pencil, dense_values):
        A, C = pencil
        values, _, _ = solve_sparse(
            A, C, 0.0, 2, EigenOptions(solver=SpectraMode.REGULAR_INVERSE,
                                       selection_rule=SortRule.LARGEST_MAGN,
                                       sort_rule=SortRule.LARGEST_MAGN)
        )
        np.testing.assert_allclose(values, dense_values[::-1][:2], rtol=1e-8)

    def test_ncv_fac_wired_through(self, pencil):
        A, C = pencil
        _, _, ncv = solve_sparse(A, C, 0.0, 2, EigenOptions(ncv_fac=2))
        assert ncv == 4

    @pytest.mark.parametrize("mode", [SpectraMode.BUCKLING, SpectraMode.CAYLEY])
    def test_zero_shift_rejected(self, pencil, mode):
        A, C = pencil
        with pytest.raises(ValueError, match="non-zero shift"):
            solve_sparse(A, C, 0.0, 2, EigenOptions(solver=mode))

    @pytest.mark.parametrize("number", [0, _N])
    def test_number_out_of_range(self, pencil, number):
        A, C = pencil
        with pytest.raises(ValueError, match="number"):
            solve_sparse(A, C, 0.0, number, EigenOptions())


# ===========================================================================
# Failure handling
# ===========================================================================


class TestFailures:
    def test_cholesky_requires_positive_definite_c(self, pencil):
        A, _ = pencil
        C = sp.diags(np.linspace(-1.0, 1.0, _N) + 0.05, format="csr")
        with pytest.raises(ConvergenceError, match="positive definite"):
            solve_sparse(A, C, 0.0, 2, EigenOptions(solver=SpectraMode.CHOLESKY))

    def test_no_convergence_is_reported(self, pencil, monkeypatch):
        A, C = pencil

        def fake_eigsh(*args, **kwargs):
            raise spla.ArpackNoConvergence(
                "ARPACK error -1: No convergence", np.zeros(0), np.zeros((_N, 0))
            )

        monkeypatch.setattr(spectral_transforms, "eigsh", fake_eigsh)
        with pytest.raises(ConvergenceError, match="did not converge"):
            solve_sparse(A, C, 0.0, 2, EigenOptions(solver=SpectraMode.REGULAR_INVERSE))

    def test_regular_inverse_uses_factorized_c(self, pencil, monkeypatch):
        A, C = pencil
        seen = {}
        real_eigsh = spectral_transforms.eigsh

        def recording_eigsh(*args, **kwargs):
            seen.update(kwargs)
            return real_eigsh(*args, **kwargs)

        monkeypatch.setattr(spectral_transforms, "eigsh", recording_eigsh)
        solve_sparse(A, C, 0.0, 2, EigenOptions(solver=SpectraMode.REGULAR_INVERSE))
        assert isinstance(seen["Minv"], FactorizedOperator)
        x = seen["Minv"].matvec(np.ones(_N))
        np.testing.assert_allclose(C @ x, np.ones(_N), atol=1e-12)

    def test_regular_inverse_singular_c(self, pencil):
        A, _ = pencil
        diag = np.ones(_N)
        diag[3] = 0.0
        C = sp.diags(diag, format="csr")
        with pytest.raises(ConvergenceError, match="non-singular C"):
            solve_sparse(A, C, 0.0, 2, EigenOptions(solver=SpectraMode.REGULAR_INVERSE))

    def test_singular_shifted_operator(self):
        """A shift equal to an eigenvalue makes (A - s C) exactly singular."""
        A = sp.diags([1.0, 2.0, 3.0, 4.0], format="csr")
        C = sp.identity(4, format="csr")
        with pytest.raises(ConvergenceError):
            solve_sparse(A, C, 2.0, 1, EigenOptions(solver=SpectraMode.SHIFT_INVERT))

    def test_unavailable_capability(self, pencil, monkeypatch):
        A, C = pencil
        monkeypatch.setattr(spectral_transforms, "_SPARSE_AVAILABLE", False)
        assert not spectral_transforms.sparse_available()
        with pytest.raises(UnsupportedOperationError):
            solve_sparse(A, C, 0.0, 2, EigenOptions())

"""Free-vibration (modal) analysis: ``K phi = omega^2 M phi``."""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from structural_stability.core.logger import StructuredLogger
from structural_stability.eigen.config import EigenOptions
from structural_stability.eigen.factorization import as_csr
from structural_stability.eigen.solver_interface import EigenProblemBase

logger = logging.getLogger(__name__)

_TWO_PI = 2.0 * np.pi


class ModalSolver(EigenProblemBase):
    """Modal analysis sharing every strategy of :class:`EigenProblemBase`.

    ``A`` is the stiffness matrix and ``C`` the mass matrix, so eigenvalues
    are squared angular frequencies ``omega^2``.
    """

    problem_name = "modal"

    def __init__(
        self,
        stiffness,
        mass,
        options: Optional[EigenOptions] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ):
        super().__init__(options=options, structured_logger=structured_logger)
        self._stiffness = as_csr(stiffness, "stiffness")
        self._mass = as_csr(mass, "mass")
        if self._stiffness.shape != self._mass.shape:
            raise ValueError(
                f"stiffness {self._stiffness.shape} and mass {self._mass.shape} "
                "must have the same shape"
            )

    def initialize_matrix(self) -> None:
        self._progress("Using K (nnz=%d) and M (nnz=%d)", self._stiffness.nnz, self._mass.nnz)
        self.set_operators(self._stiffness, self._mass)

    def frequencies_hz(self) -> NDArray[np.float64]:
        """Natural frequencies in Hz of the last solve.

        Eigenvalues near zero can be slightly negative from round-off; the
        absolute value is used.
        """
        return np.sqrt(np.abs(self.values())) / _TWO_PI

    def mass_normalized_vectors(self) -> NDArray[np.float64]:
        """Mode shapes scaled so that ``phi_i^T M phi_i = 1``.

        The buckling spectral mode returns K-orthonormal vectors, so the
        scaling is applied regardless of the strategy used.
        """
        vectors = self.vectors()
        result = vectors.copy()

        for i in range(result.shape[1]):
            phi = result[:, i]
            m_gen = phi @ (self._mass @ phi)

            if m_gen <= 0.0:
                logger.warning(
                    "Mode %d has non-positive generalised mass (%.6e). "
                    "Falling back to L2 normalisation.",
                    i,
                    m_gen,
                )
                norm = np.linalg.norm(phi)
                if norm > 0.0:
                    result[:, i] = phi / norm
            else:
                result[:, i] = phi / np.sqrt(m_gen)

        return result

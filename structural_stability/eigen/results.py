"""Eigen-analysis result containers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple, Optional

import numpy as np


class Mode(NamedTuple):
    """A single eigenpair: load factor (or eigenvalue) and mode shape."""
    value: float
    vector: np.ndarray


@dataclass
class EigenResult:
    """Eigenvalues and column-aligned eigenvectors of one solve."""
    values: np.ndarray                 # (k,)
    vectors: np.ndarray                # (n_dof, k), column j pairs with values[j]
    strategy: str
    shift: float = 0.0
    solve_time_s: float = 0.0
    converged: bool = True
    n_iterations: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    @property
    def n_modes(self) -> int:
        return int(self.values.shape[0])

    @classmethod
    def empty(cls, n_dof: int = 0) -> "EigenResult":
        return cls(
            values=np.zeros(0, dtype=np.float64),
            vectors=np.zeros((n_dof, 0), dtype=np.float64),
            strategy="none",
        )

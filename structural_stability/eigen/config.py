"""Eigen-analysis option values and enumerations."""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import IntEnum
from typing import Optional

from structural_stability.core.config import AppConfig


class SpectraMode(IntEnum):
    """Spectral transformation used by ``compute_sparse``."""
    CHOLESKY = 0
    REGULAR_INVERSE = 1
    SHIFT_INVERT = 2
    BUCKLING = 3
    CAYLEY = 4


class SortRule(IntEnum):
    """Selection / sort rule numbering shared by ``selection_rule`` and ``sort_rule``."""
    LARGEST_MAGN = 0
    LARGEST_REAL = 1
    LARGEST_IMAG = 2
    LARGEST_ALGE = 3
    SMALLEST_MAGN = 4
    SMALLEST_REAL = 5
    SMALLEST_IMAG = 6
    SMALLEST_ALGE = 7
    BOTH_ENDS = 8


# Imaginary parts of a self-adjoint spectrum are all zero
_IMAGINARY_RULES = (SortRule.LARGEST_IMAG, SortRule.SMALLEST_IMAG)

FACTORIZATIONS = ("lu", "ldlt")


@dataclass(frozen=True)
class EigenOptions:
    """Immutable option set shared by all strategies of an eigenproblem.

    Attributes
    ----------
    verbose : bool
        Log progress at INFO instead of DEBUG. Never changes results.
    solver : SpectraMode
        Spectral transformation used by ``compute_sparse``.
    selection_rule : SortRule
        Which part of the spectrum the iterative solver targets.
    sort_rule : SortRule
        Ordering of the returned eigenpairs.
    ncv_fac : int
        Krylov subspace size as a multiple of the requested eigenpairs.
    factorization : str
        Sparse direct factorization for the reference solve, ``"lu"`` or
        ``"ldlt"``.
    """
    verbose: bool = False
    solver: SpectraMode = SpectraMode.CHOLESKY
    selection_rule: SortRule = SortRule.SMALLEST_MAGN
    sort_rule: SortRule = SortRule.SMALLEST_MAGN
    ncv_fac: int = 3
    factorization: str = "lu"

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "solver", SpectraMode(int(self.solver)))
        except ValueError:
            raise ValueError(
                f"solver must be between 0 and 4, got {self.solver!r}"
            ) from None
        for name in ("selection_rule", "sort_rule"):
            raw = getattr(self, name)
            try:
                rule = SortRule(int(raw))
            except ValueError:
                raise ValueError(f"{name} must be between 0 and 8, got {raw!r}") from None
            if rule in _IMAGINARY_RULES:
                raise ValueError(
                    f"{name}={rule.name} is not meaningful for a symmetric eigenproblem"
                )
            object.__setattr__(self, name, rule)
        if int(self.ncv_fac) < 2:
            raise ValueError(f"ncv_fac must be at least 2, got {self.ncv_fac!r}")
        object.__setattr__(self, "ncv_fac", int(self.ncv_fac))
        factorization = str(self.factorization).lower().strip()
        if factorization not in FACTORIZATIONS:
            raise ValueError(
                f"Unsupported factorization: {self.factorization!r}. "
                f"Must be one of {FACTORIZATIONS}."
            )
        object.__setattr__(self, "factorization", factorization)
        object.__setattr__(self, "verbose", bool(self.verbose))

    def with_changes(self, **changes) -> "EigenOptions":
        """Return a new option set with ``changes`` applied."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict) -> "EigenOptions":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown eigen options: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> "EigenOptions":
        """Build options from the ``eigen`` section of an :class:`AppConfig`."""
        config = config or AppConfig()
        return cls.from_dict(config.get("eigen", {}))

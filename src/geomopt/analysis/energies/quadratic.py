"""
Quadratic Energies
==================
``QuadraticEnergy`` is a general sparse quadratic form. ``ConstraintPenalty``
turns any constraint into the energy w ‖c(x)‖².
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy as sp

from geomopt.analysis.functional import Constraint, Functional, check_length, ensure_blocks
from geomopt.errors import UnsupportedOperationError

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.solvers.assembly import TripletList


class QuadraticEnergy(Functional):
    """
    E(x) = w (½ xᵀ A x - bᵀ x + c) with A symmetric positive semi-definite.
    """

    def __init__(
        self,
        A: sp.sparse.spmatrix | npt.ArrayLike,
        b: npt.ArrayLike | None = None,
        c: float = 0.0,
        weight: float = 1.0,
    ) -> None:
        """
        Initialize the quadratic form.

        Args:
            A: Square matrix, sparse or dense. Only its symmetric part is used.
            b: Linear coefficients (zero when omitted).
            c: Constant offset.
            weight: Global weight of the term.
        """
        A = sp.sparse.csr_matrix(A, dtype=np.float64)
        if A.shape[0] != A.shape[1]:
            raise ValueError(f"A must be square, got shape {A.shape}.")
        n = A.shape[0]
        self.A = ((A + A.T) * 0.5).tocsr()
        self.b = np.zeros(n) if b is None else np.array(b, dtype=np.float64).ravel()
        if self.b.shape[0] != n:
            raise ValueError(f"b has length {self.b.shape[0]}, expected {n}.")
        self.c = float(c)
        self.weight = float(weight)

    @property
    def nx(self) -> int:
        return self.A.shape[0]

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        return self.weight * float(0.5 * x @ (self.A @ x) - self.b @ x + self.c)

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        out += self.weight * (self.A @ x - self.b)

    def hessian(self, x: npt.NDArray[np.float64], triplets: TripletList) -> None:
        check_length(self, x)
        H = self.A.tocoo()
        triplets.add(H.row, H.col, self.weight * H.data)


class ConstraintPenalty(Functional):
    """
    Quadratic penalty E(x) = w ‖c(x)‖² of a (possibly stacked) constraint.

    The Hessian is 2w (JᵀJ + Σ_k c_k ∇²c_k) and is only available when the
    constraint provides its own Hessian blocks.
    """

    def __init__(self, constraint: Constraint, weight: float = 1.0) -> None:
        self.constraint = constraint
        self.weight = float(weight)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.constraint!r}, weight={self.weight})"

    @property
    def nx(self) -> int:
        return self.constraint.nx

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        c = self.constraint.value(x)
        return self.weight * float(c @ c)

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        c = self.constraint.value(x)
        J = self.constraint.jacobian_matrix(x)
        out += 2.0 * self.weight * (J.T @ c)

    @property
    def supports_hessian(self) -> bool:
        return self.constraint.supports_hessian

    def hessian(self, x: npt.NDArray[np.float64], triplets: TripletList) -> None:
        check_length(self, x)
        if not self.constraint.supports_hessian:
            raise UnsupportedOperationError(self.constraint, "hessian")

        c = self.constraint.value(x)
        J = self.constraint.jacobian_matrix(x)
        gauss_newton = (J.T @ J).tocoo()
        triplets.add(gauss_newton.row, gauss_newton.col, 2.0 * self.weight * gauss_newton.data)

        blocks: list[TripletList] = []
        ensure_blocks(blocks, self.constraint.nf)
        self.constraint.hessian(x, 0, blocks)
        for k, block in enumerate(blocks):
            rows, cols, vals = block.arrays()
            triplets.add(rows, cols, 2.0 * self.weight * c[k] * vals)

"""
Functional and Constraint Contracts
===================================
Base classes for everything the solvers can evaluate.

A ``Functional`` maps a flat variable vector ``x`` of length ``nx`` to a
scalar. Gradients and Hessians are *accumulated* into caller-owned storage:
``gradient`` adds into ``out`` and ``hessian`` appends triplets, so several
terms can write into the same buffer. Callers zero the buffer first.

A ``Constraint`` maps ``x`` to ``nf`` values. Its Jacobian rows and Hessian
blocks are written at a caller-supplied row offset so that constraints can be
stacked.

Second-order information is optional. A term without it raises
``UnsupportedOperationError`` from ``hessian``; first-order solvers never
call it.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from geomopt.errors import UnsupportedOperationError
from geomopt.solvers.assembly import TripletList

if TYPE_CHECKING:
    import numpy.typing as npt


def check_length(obj: Functional | Constraint, x: npt.NDArray[np.float64]) -> None:
    if x.shape[0] != obj.nx:
        raise ValueError(f"{type(obj).__name__} expects nx={obj.nx}, got a vector of length {x.shape[0]}.")


class Functional(ABC):
    """
    Scalar objective over a fixed-size variable vector.
    """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(nx={self.nx})"

    @property
    @abstractmethod
    def nx(self) -> int:
        """Length of the variable vector."""

    @abstractmethod
    def value(self, x: npt.NDArray[np.float64]) -> float:
        """Evaluate the objective."""

    @abstractmethod
    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        """
        Add the gradient at ``x`` into ``out`` (length ``nx``).
        """

    def hessian(self, x: npt.NDArray[np.float64], triplets: TripletList) -> None:
        """
        Append the Hessian at ``x`` as (row, col, value) triplets.

        Raises:
            UnsupportedOperationError: If the term has no second-order information.
        """
        raise UnsupportedOperationError(self, "hessian")

    @property
    def supports_hessian(self) -> bool:
        return type(self).hessian is not Functional.hessian

    def value_and_gradient(self, x: npt.NDArray[np.float64]) -> tuple[float, npt.NDArray[np.float64]]:
        """
        Value and gradient in a fresh zeroed buffer.
        """
        g = np.zeros(self.nx, dtype=np.float64)
        self.gradient(x, g)
        return float(self.value(x)), g

    def hessian_matrix(self, x: npt.NDArray[np.float64]):
        """Assembled Hessian as an (nx, nx) CSR matrix."""
        triplets = TripletList()
        self.hessian(x, triplets)
        return triplets.to_csr((self.nx, self.nx))


class Constraint(ABC):
    """
    Vector-valued constraint c(x) = 0 with ``nf`` rows.
    """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(nx={self.nx}, nf={self.nf})"

    @property
    @abstractmethod
    def nx(self) -> int:
        """Length of the variable vector."""

    @property
    @abstractmethod
    def nf(self) -> int:
        """Number of constraint rows."""

    @abstractmethod
    def value(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Constraint values, shape (nf,)."""

    @abstractmethod
    def jacobian(self, x: npt.NDArray[np.float64], offset: int, triplets: TripletList) -> None:
        """
        Append Jacobian triplets; row ``k`` of this constraint lands at ``offset + k``.
        """

    def hessian(self, x: npt.NDArray[np.float64], offset: int, blocks: list[TripletList]) -> None:
        """
        Append the Hessian of row ``k`` to ``blocks[offset + k]``.

        Raises:
            UnsupportedOperationError: If the constraint has no second-order information.
        """
        raise UnsupportedOperationError(self, "hessian")

    @property
    def supports_hessian(self) -> bool:
        return type(self).hessian is not Constraint.hessian

    def jacobian_matrix(self, x: npt.NDArray[np.float64]):
        """Assembled Jacobian as an (nf, nx) CSR matrix."""
        triplets = TripletList()
        self.jacobian(x, 0, triplets)
        return triplets.to_csr((self.nf, self.nx))


def ensure_blocks(blocks: list[TripletList], size: int) -> None:
    """Grow ``blocks`` with empty triplet lists up to ``size`` entries."""
    while len(blocks) < size:
        blocks.append(TripletList())


def check_gradient(
    functional: Functional,
    x: npt.ArrayLike,
    step: float = 1e-6,
    n_directions: int = 5,
    seed: int | None = None,
) -> float:
    """
    Compare the analytic gradient with central differences along random directions.

    Args:
        functional: Functional to check.
        x: Evaluation point, length ``nx``.
        step: Finite-difference step.
        n_directions: Number of random unit directions.
        seed: Seed of the direction generator.

    Returns:
        The largest relative error |g·d - (f(x+hd) - f(x-hd))/2h| / max(|g·d|, |fd|, 1e-12).
    """
    x = np.array(x, dtype=np.float64)
    check_length(functional, x)
    rng = np.random.default_rng(seed)
    _, g = functional.value_and_gradient(x)

    worst = 0.0
    for _ in range(n_directions):
        d = rng.standard_normal(functional.nx)
        d /= np.linalg.norm(d)
        analytic = float(g @ d)
        numeric = (functional.value(x + step * d) - functional.value(x - step * d)) / (2.0 * step)
        scale = max(abs(analytic), abs(numeric), 1e-12)
        worst = max(worst, abs(analytic - numeric) / scale)
    return worst


def check_jacobian(
    constraint: Constraint,
    x: npt.ArrayLike,
    step: float = 1e-6,
    n_directions: int = 5,
    seed: int | None = None,
) -> float:
    """
    Central-difference check of ``Constraint.jacobian``; returns the largest relative error.
    """
    x = np.array(x, dtype=np.float64)
    check_length(constraint, x)
    rng = np.random.default_rng(seed)
    J = constraint.jacobian_matrix(x)

    worst = 0.0
    for _ in range(n_directions):
        d = rng.standard_normal(constraint.nx)
        d /= np.linalg.norm(d)
        analytic = J @ d
        numeric = (constraint.value(x + step * d) - constraint.value(x - step * d)) / (2.0 * step)
        scale = max(float(np.max(np.abs(analytic))), float(np.max(np.abs(numeric))), 1e-12)
        worst = max(worst, float(np.max(np.abs(analytic - numeric))) / scale)
    return worst

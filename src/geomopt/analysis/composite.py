"""
Composite Energies and Constraints
==================================
Sums of terms that share one variable space.

Construction validates the collection before anything is evaluated:

- ``None`` entries are skipped
- an empty collection, or one holding only ``None``, raises ``NullInputError``
- a term whose ``nx`` differs from the first usable term raises
  ``DimensionMismatchError`` naming its position in the input

``compose_energy`` and ``compose_constraint`` return the same failures as a
``Composition`` value for callers that check results explicitly.

Composites keep a tuple of references; the terms are owned by whoever built
them (normally a driver) and must outlive the composite.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Iterator, NamedTuple, Optional, TypeVar, Union

import numpy as np

from geomopt.analysis.functional import Constraint, Functional, check_length, ensure_blocks
from geomopt.errors import CompositionError, DimensionMismatchError, NullInputError, UnsupportedOperationError

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.solvers.assembly import TripletList

T = TypeVar("T", Functional, Constraint)


def _collect(terms: Iterable[Optional[T]], kind: str) -> tuple[T, ...]:
    entries = list(terms)
    if not entries:
        raise NullInputError(f"Cannot build a composite {kind} from an empty collection.")

    valid: list[T] = []
    nx: int | None = None
    for position, term in enumerate(entries):
        if term is None:
            continue
        if nx is None:
            nx = term.nx
        elif term.nx != nx:
            raise DimensionMismatchError(expected=nx, found=term.nx, position=position)
        valid.append(term)

    if not valid:
        raise NullInputError(f"Composite {kind} received {len(entries)} entries, none of them usable.")
    return tuple(valid)


class CompositeEnergy(Functional):
    """
    Pointwise sum of energies over one variable vector.
    """

    def __init__(self, terms: Iterable[Optional[Functional]]) -> None:
        """
        Initialize the composite.

        Args:
            terms: Energy terms; ``None`` entries are ignored.

        Raises:
            NullInputError: If no usable term is given.
            DimensionMismatchError: If the terms disagree on ``nx``.
        """
        self.terms: tuple[Functional, ...] = _collect(terms, "energy")
        self._nx = self.terms[0].nx

    def __repr__(self) -> str:
        names = ", ".join(type(t).__name__ for t in self.terms)
        return f"{self.__class__.__name__}(nx={self._nx}, terms=[{names}])"

    def __len__(self) -> int:
        return len(self.terms)

    def __iter__(self) -> Iterator[Functional]:
        return iter(self.terms)

    @property
    def nx(self) -> int:
        return self._nx

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        return float(sum(term.value(x) for term in self.terms))

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        for term in self.terms:
            term.gradient(x, out)

    @property
    def supports_hessian(self) -> bool:
        return all(term.supports_hessian for term in self.terms)

    def hessian(self, x: npt.NDArray[np.float64], triplets: TripletList) -> None:
        """
        Append the Hessian of every term.

        Raises:
            UnsupportedOperationError: If any term lacks a Hessian. Nothing is
                appended in that case.
        """
        check_length(self, x)
        for term in self.terms:
            if not term.supports_hessian:
                raise UnsupportedOperationError(term, "hessian")
        for term in self.terms:
            term.hessian(x, triplets)

    def term_values(self, x: npt.NDArray[np.float64]) -> list[float]:
        """Value of each term, in insertion order."""
        return [float(term.value(x)) for term in self.terms]


class CompositeConstraint(Constraint):
    """
    Constraints stacked row-wise; each member owns a contiguous block of rows.
    """

    def __init__(self, constraints: Iterable[Optional[Constraint]]) -> None:
        """
        Initialize the composite.

        Args:
            constraints: Constraint terms; ``None`` entries are ignored.

        Raises:
            NullInputError: If no usable constraint is given.
            DimensionMismatchError: If the constraints disagree on ``nx``.
        """
        self.terms: tuple[Constraint, ...] = _collect(constraints, "constraint")
        self._nx = self.terms[0].nx

        offsets = []
        nf = 0
        for term in self.terms:
            offsets.append(nf)
            nf += term.nf
        self.offsets: tuple[int, ...] = tuple(offsets)
        self._nf = nf

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(nx={self._nx}, nf={self._nf}, offsets={self.offsets})"

    def __len__(self) -> int:
        return len(self.terms)

    @property
    def nx(self) -> int:
        return self._nx

    @property
    def nf(self) -> int:
        return self._nf

    def value(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        check_length(self, x)
        out = np.empty(self._nf, dtype=np.float64)
        for term, off in zip(self.terms, self.offsets):
            out[off:off + term.nf] = term.value(x)
        return out

    def jacobian(self, x: npt.NDArray[np.float64], offset: int, triplets: TripletList) -> None:
        check_length(self, x)
        for term, off in zip(self.terms, self.offsets):
            term.jacobian(x, offset + off, triplets)

    @property
    def supports_hessian(self) -> bool:
        return all(term.supports_hessian for term in self.terms)

    def hessian(self, x: npt.NDArray[np.float64], offset: int, blocks: list[TripletList]) -> None:
        """
        Append the Hessian of row ``offset + offsets[i] + k`` for every member ``i``.

        ``blocks`` is grown to ``offset + nf`` entries first.
        """
        check_length(self, x)
        for term in self.terms:
            if not term.supports_hessian:
                raise UnsupportedOperationError(term, "hessian")
        ensure_blocks(blocks, offset + self._nf)
        for term, off in zip(self.terms, self.offsets):
            term.hessian(x, offset + off, blocks)

    def block_of(self, position: int) -> slice:
        """Row range owned by the member at ``position``."""
        off = self.offsets[position]
        return slice(off, off + self.terms[position].nf)


class Composition(NamedTuple):
    """
    Outcome of building a composite: exactly one of ``value`` and ``error`` is set.
    """
    value: Optional[Union[CompositeEnergy, CompositeConstraint]]
    error: Optional[CompositionError]

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Union[CompositeEnergy, CompositeConstraint]:
        """Return the composite, raising the stored error if construction failed."""
        if self.error is not None:
            raise self.error
        return self.value


def compose_energy(terms: Iterable[Optional[Functional]]) -> Composition:
    """
    Build a ``CompositeEnergy`` and report failure as a value.

    Callers inspect ``Composition.ok`` (or ``error``) instead of catching.
    """
    try:
        return Composition(CompositeEnergy(terms), None)
    except CompositionError as e:
        return Composition(None, e)


def compose_constraint(constraints: Iterable[Optional[Constraint]]) -> Composition:
    """Same as ``compose_energy`` for stacked constraints."""
    try:
        return Composition(CompositeConstraint(constraints), None)
    except CompositionError as e:
        return Composition(None, e)

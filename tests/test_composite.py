import numpy as np
import pytest

from geomopt.analysis.composite import CompositeConstraint, CompositeEnergy, compose_constraint, compose_energy
from geomopt.analysis.constraints import LinearConstraint
from geomopt.analysis.energies.quadratic import QuadraticEnergy
from geomopt.analysis.functional import Functional
from geomopt.errors import (
    CompositionError,
    DimensionMismatchError,
    NullInputError,
    UnsupportedOperationError,
)
from geomopt.solvers.assembly import TripletList


class CountingEnergy(Functional):
    """Σ x² with a call counter and no Hessian."""

    def __init__(self, n):
        self.n = n
        self.calls = 0

    @property
    def nx(self):
        return self.n

    def value(self, x):
        self.calls += 1
        return float(x @ x)

    def gradient(self, x, out):
        self.calls += 1
        out += 2.0 * x


def test_sum_of_terms():
    rng = np.random.default_rng(1)
    x = rng.standard_normal(4)
    a = QuadraticEnergy(np.diag([1.0, 2.0, 3.0, 4.0]), b=np.ones(4))
    b = CountingEnergy(4)
    energy = CompositeEnergy([a, None, b])

    assert len(energy) == 2
    assert energy.nx == 4
    assert energy.value(x) == pytest.approx(a.value(x) + b.value(x))

    _, g = energy.value_and_gradient(x)
    _, ga = a.value_and_gradient(x)
    _, gb = b.value_and_gradient(x)
    np.testing.assert_allclose(g, ga + gb)
    assert energy.term_values(x) == pytest.approx([a.value(x), b.value(x)])


def test_gradient_accumulates_into_buffer():
    energy = CompositeEnergy([CountingEnergy(2)])
    out = np.array([1.0, 1.0])
    energy.gradient(np.array([1.0, 2.0]), out)
    np.testing.assert_allclose(out, [3.0, 5.0])


def test_dimension_mismatch_is_rejected_before_evaluation():
    first, second = CountingEnergy(3), CountingEnergy(5)
    with pytest.raises(DimensionMismatchError) as info:
        CompositeEnergy([first, None, second])
    assert info.value.expected == 3
    assert info.value.found == 5
    assert info.value.position == 2
    assert first.calls == 0 and second.calls == 0
    assert isinstance(info.value, CompositionError)


@pytest.mark.parametrize("terms", [[], [None], [None, None]])
def test_null_input(terms):
    with pytest.raises(NullInputError):
        CompositeEnergy(terms)
    with pytest.raises(NullInputError):
        CompositeConstraint(terms)


def test_hessian_requires_every_term():
    energy = CompositeEnergy([QuadraticEnergy(np.eye(2)), CountingEnergy(2)])
    assert not energy.supports_hessian

    triplets = TripletList()
    with pytest.raises(UnsupportedOperationError):
        energy.hessian(np.zeros(2), triplets)
    assert len(triplets) == 0


def test_hessian_of_quadratic_terms():
    A = np.array([[2.0, 1.0], [1.0, 3.0]])
    energy = CompositeEnergy([QuadraticEnergy(A), QuadraticEnergy(np.eye(2), weight=2.0)])
    H = energy.hessian_matrix(np.zeros(2)).toarray()
    np.testing.assert_allclose(H, A + 2.0 * np.eye(2))


def test_constraint_offsets_and_stacking():
    c1 = LinearConstraint(np.array([[1.0, 0.0, 0.0]]), b=[1.0])
    c2 = LinearConstraint(np.array([[0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]), b=[2.0, 3.0])
    stacked = CompositeConstraint([c1, None, c2])

    assert stacked.offsets == (0, 1)
    assert stacked.nf == 3
    assert stacked.block_of(1) == slice(1, 3)

    x = np.array([1.0, 1.0, 1.0])
    np.testing.assert_allclose(stacked.value(x), [0.0, -1.0, -2.0])

    triplets = TripletList()
    stacked.jacobian(x, 4, triplets)
    rows, _, _ = triplets.arrays()
    assert sorted(set(rows.tolist())) == [4, 5, 6]
    np.testing.assert_allclose(stacked.jacobian_matrix(x).toarray(), np.eye(3))


def test_constraint_hessian_blocks_are_grown():
    c = LinearConstraint(np.eye(2))
    stacked = CompositeConstraint([c, c])
    blocks = []
    stacked.hessian(np.zeros(2), 3, blocks)
    assert len(blocks) == 7
    assert all(len(b) == 0 for b in blocks)


def test_constraint_mismatch():
    with pytest.raises(DimensionMismatchError) as info:
        CompositeConstraint([LinearConstraint(np.eye(2)), LinearConstraint(np.eye(3))])
    assert info.value.position == 1


def test_compose_reports_failures_as_values():
    a, b = CountingEnergy(3), CountingEnergy(2)
    built = compose_energy([a, b])
    assert not built.ok
    assert built.value is None
    assert isinstance(built.error, DimensionMismatchError)
    assert a.calls == 0 and b.calls == 0
    with pytest.raises(DimensionMismatchError):
        built.unwrap()

    assert isinstance(compose_constraint([None]).error, NullInputError)

    built = compose_energy([a])
    assert built.ok
    assert isinstance(built.unwrap(), CompositeEnergy)
    assert compose_constraint([LinearConstraint(np.eye(2))]).unwrap().nf == 2

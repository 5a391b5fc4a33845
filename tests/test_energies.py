import numpy as np
import pytest

from geomopt.analysis import sh
from geomopt.analysis.composite import CompositeConstraint
from geomopt.analysis.constraints import LinearConstraint, SurfaceAreaConstraint
from geomopt.analysis.energies.align import SHAlignEnergy, SHCoefficientAlignEnergy
from geomopt.analysis.energies.deformation import SurfaceNormalAlignEnergy, TetDistortionEnergy
from geomopt.analysis.energies.frame import BoundaryFixEnergy, FrameOrthEnergy
from geomopt.analysis.energies.quadratic import ConstraintPenalty, QuadraticEnergy
from geomopt.analysis.energies.smooth import (
    L1SmoothEnergy,
    PolySmoothEnergy,
    SHCoefficientSmoothEnergy,
    SHSmoothEnergy,
)
from geomopt.analysis.energies.weights import adjacency_stiffness, boundary_face_weights, normalize_weights
from geomopt.analysis.functional import check_gradient, check_jacobian
from geomopt.errors import UnsupportedOperationError
from geomopt.pre.topology import boundary_faces
from geomopt.solvers.assembly import TripletList

TOL = 1e-5


def perturbed_frames(n, seed=0, scale=0.2):
    rng = np.random.default_rng(seed)
    return (np.eye(3)[None] + scale * rng.standard_normal((n, 3, 3))).ravel()


# ---- Weights ----

def test_normalize_weights():
    np.testing.assert_allclose(normalize_weights([1.0, 3.0]), [0.25, 0.75])
    assert normalize_weights([]).size == 0
    with pytest.raises(ValueError):
        normalize_weights([1.0, -1.0])
    with pytest.raises(ValueError):
        normalize_weights([0.0, 0.0])


def test_mesh_weights_sum_to_one(cube_mesh):
    tets, nodes = cube_mesh
    pairs, stiffness = adjacency_stiffness(tets, nodes)
    assert pairs.shape == (6, 2)
    assert stiffness.sum() == pytest.approx(1.0)

    faces, incident, areas = boundary_face_weights(tets, nodes)
    assert faces.shape == (12, 3)
    assert incident.shape == (12,)
    assert areas.sum() == pytest.approx(1.0)


# ---- Smoothness ----

def test_two_element_smoothness():
    energy = SHCoefficientSmoothEnergy(2, [[0, 1]], [7.0], weight=0.5)
    x = np.concatenate([np.zeros(9), np.ones(9)])

    assert energy.nx == 18
    assert energy.value(x) == pytest.approx(4.5)
    _, g = energy.value_and_gradient(x)
    np.testing.assert_allclose(g, np.concatenate([-np.ones(9), np.ones(9)]))


def test_pair_tables_are_frozen():
    pairs = np.array([[0, 1]])
    energy = SHCoefficientSmoothEnergy(2, pairs, [1.0])
    pairs[0, 1] = 0
    assert energy.pairs[0, 1] == 1
    with pytest.raises(ValueError):
        energy.pairs[0, 0] = 1


def test_pair_index_out_of_range():
    with pytest.raises(IndexError):
        SHCoefficientSmoothEnergy(2, [[0, 2]], [1.0])


def test_coefficient_smoothness_hessian(cube_mesh):
    tets, nodes = cube_mesh
    energy = SHCoefficientSmoothEnergy.from_mesh(tets, nodes, weight=2.0)
    x = np.random.default_rng(0).standard_normal(energy.nx)
    H = energy.hessian_matrix(x)
    _, g = energy.value_and_gradient(x)
    np.testing.assert_allclose(H @ x, g, atol=1e-12)
    assert energy.value(x) == pytest.approx(0.5 * x @ (H @ x))


def test_angle_smoothness_gradient(cube_mesh):
    tets, nodes = cube_mesh
    energy = SHSmoothEnergy.from_mesh(tets, nodes, weight=1.5)
    x = np.random.default_rng(1).uniform(-1.0, 1.0, energy.nx)
    assert energy.nx == 3 * tets.shape[0]
    assert check_gradient(energy, x, seed=0) < TOL


def test_polynomial_smoothness_matches_sh_form(cube_mesh):
    tets, nodes = cube_mesh
    poly = PolySmoothEnergy.from_mesh(tets, nodes, weight=1.5)
    reference = SHSmoothEnergy.from_mesh(tets, nodes, weight=1.5)
    x = np.random.default_rng(12).uniform(-1.0, 1.0, poly.nx)

    assert poly.nx == 3 * tets.shape[0]
    assert poly.value(x) == pytest.approx(reference.value(x), rel=1e-10)
    _, g = poly.value_and_gradient(x)
    _, g_ref = reference.value_and_gradient(x)
    np.testing.assert_allclose(g, g_ref, atol=1e-10)
    assert check_gradient(poly, x, seed=9) < TOL
    assert not poly.supports_hessian


def test_angle_smoothness_has_no_hessian(cube_mesh):
    tets, nodes = cube_mesh
    energy = SHSmoothEnergy.from_mesh(tets, nodes)
    assert not energy.supports_hessian
    with pytest.raises(UnsupportedOperationError) as info:
        energy.hessian(np.zeros(energy.nx), TripletList())
    assert info.value.operation == "hessian"
    assert energy.coefficients().supports_hessian


def test_l1_smoothness_gradient(cube_mesh):
    tets, nodes = cube_mesh
    energy = L1SmoothEnergy.from_mesh(tets, nodes, weight=1.0, eps=1e-2)
    x = perturbed_frames(tets.shape[0])
    assert check_gradient(energy, x, seed=0) < TOL


def test_l1_smoothness_vanishes_for_equal_frames(cube_mesh):
    tets, nodes = cube_mesh
    energy = L1SmoothEnergy.from_mesh(tets, nodes)
    x = np.tile(sh.zyz_to_frames([0.2, 0.3, 0.4]).ravel(), tets.shape[0])
    assert energy.value(x) == pytest.approx(0.0, abs=1e-12)


@pytest.mark.parametrize(
    "make, dim",
    [
        (lambda t, n: SHSmoothEnergy.from_mesh(t, n), 3),
        (lambda t, n: PolySmoothEnergy.from_mesh(t, n), 3),
        (lambda t, n: SHCoefficientSmoothEnergy.from_mesh(t, n), 9),
        (lambda t, n: L1SmoothEnergy.from_mesh(t, n, eps=1e-2), 9),
    ],
)
def test_single_tet_has_no_smoothness(make, dim):
    tets = np.array([[0, 1, 2, 3]])
    nodes = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    energy = make(tets, nodes)
    x = np.random.default_rng(11).standard_normal(dim)

    assert energy.nx == dim
    assert energy.value(x) == 0.0
    _, g = energy.value_and_gradient(x)
    np.testing.assert_array_equal(g, np.zeros(dim))
    if energy.supports_hessian:
        H = energy.hessian_matrix(x)
        assert H.shape == (dim, dim)
        assert H.nnz == 0
    else:
        with pytest.raises(UnsupportedOperationError):
            energy.hessian(x, TripletList())


# ---- Alignment ----

def test_identity_frames_are_aligned_on_a_cube(cube_mesh):
    tets, nodes = cube_mesh
    energy = SHCoefficientAlignEnergy(tets, nodes)
    x = np.tile(sh.reference_frame_sh(), tets.shape[0])
    assert energy.value(x) == pytest.approx(0.0, abs=1e-20)

    angles = SHAlignEnergy(tets, nodes)
    assert angles.value(np.zeros(angles.nx)) == pytest.approx(0.0, abs=1e-20)


def test_alignment_penalizes_rotated_frames(cube_mesh):
    tets, nodes = cube_mesh
    energy = SHAlignEnergy(tets, nodes)
    x = np.tile([0.0, 0.3, 0.0], tets.shape[0])
    assert energy.value(x) > 1e-3


def test_coefficient_alignment_hessian(cube_mesh):
    tets, nodes = cube_mesh
    energy = SHCoefficientAlignEnergy(tets, nodes, weight=3.0)
    rng = np.random.default_rng(2)
    x, y = rng.standard_normal(energy.nx), rng.standard_normal(energy.nx)
    H = energy.hessian_matrix(x)
    _, gx = energy.value_and_gradient(x)
    _, gy = energy.value_and_gradient(y)
    np.testing.assert_allclose(H @ (x - y), gx - gy, atol=1e-10)


def test_angle_alignment_gradient(cube_mesh):
    tets, nodes = cube_mesh
    energy = SHAlignEnergy(tets, nodes, weight=2.0)
    x = np.random.default_rng(3).uniform(-1.0, 1.0, energy.nx)
    assert check_gradient(energy, x, seed=1) < TOL


# ---- Frame matrices ----

def test_orthogonality_energy(cube_mesh):
    tets, nodes = cube_mesh
    energy = FrameOrthEnergy(tets, nodes, weight=2.0)
    rotations = sh.zyz_to_frames(np.random.default_rng(4).uniform(-1.0, 1.0, (tets.shape[0], 3)))
    assert energy.value(rotations.ravel()) == pytest.approx(0.0, abs=1e-20)
    assert check_gradient(energy, perturbed_frames(tets.shape[0], seed=5), seed=2) < TOL


@pytest.mark.parametrize("var_dim", [3, 9])
def test_boundary_fix_energy(cube_mesh, var_dim):
    tets, nodes = cube_mesh
    rng = np.random.default_rng(6)
    x0 = rng.standard_normal(var_dim * tets.shape[0])
    energy = BoundaryFixEnergy(tets, nodes, x0, var_dim, weight=4.0)

    assert energy.value(x0) == 0.0
    # Every Kuhn tetrahedron touches the boundary
    assert energy.elements.size == tets.shape[0]
    assert energy.element_weights.sum() == pytest.approx(1.0)

    x = x0 + rng.standard_normal(x0.size)
    assert check_gradient(energy, x, seed=3) < TOL
    H = energy.hessian_matrix(x)
    _, g = energy.value_and_gradient(x)
    np.testing.assert_allclose(H @ (x - x0), g, atol=1e-12)


def test_boundary_fix_reference_length(cube_mesh):
    tets, nodes = cube_mesh
    with pytest.raises(ValueError):
        BoundaryFixEnergy(tets, nodes, np.zeros(5), 3)


# ---- Deformation ----

def test_distortion_is_rigid_invariant(cube_mesh):
    tets, nodes = cube_mesh
    energy = TetDistortionEnergy(tets, nodes)
    R = sh.zyz_to_frames([0.4, 0.8, -0.3])[0]
    moved = nodes @ R.T + np.array([1.0, -2.0, 0.5])
    assert energy.value(moved.ravel()) == pytest.approx(0.0, abs=1e-20)
    assert energy.value((2.0 * nodes).ravel()) > 0.0


def test_distortion_gradient(cube_mesh):
    tets, nodes = cube_mesh
    energy = TetDistortionEnergy(tets, nodes, weight=2.0)
    x = nodes.ravel() + 0.1 * np.random.default_rng(7).standard_normal(nodes.size)
    assert check_gradient(energy, x, seed=4) < TOL


def test_normal_alignment(cube_mesh):
    tets, nodes = cube_mesh
    faces, _ = boundary_faces(tets, nodes)
    energy = SurfaceNormalAlignEnergy(faces, nodes, weight=1.0, eps=1e-4)

    R = sh.zyz_to_frames([0.5, 0.5, 0.0])[0]
    assert energy.value((nodes @ R.T).ravel()) > energy.value(nodes.ravel())

    x = nodes.ravel() + 0.1 * np.random.default_rng(8).standard_normal(nodes.size)
    assert check_gradient(energy, x, seed=5) < TOL


def test_area_constraint(cube_mesh):
    tets, nodes = cube_mesh
    faces, _ = boundary_faces(tets, nodes)
    constraint = SurfaceAreaConstraint(faces, nodes)

    assert constraint.rest_area == pytest.approx(6.0)
    np.testing.assert_allclose(constraint.value(nodes.ravel()), [0.0], atol=1e-12)
    np.testing.assert_allclose(constraint.value((2.0 * nodes).ravel()), [18.0])

    x = nodes.ravel() + 0.1 * np.random.default_rng(9).standard_normal(nodes.size)
    assert check_jacobian(constraint, x, seed=6) < TOL
    assert not constraint.supports_hessian


def test_constraint_penalty(cube_mesh):
    tets, nodes = cube_mesh
    faces, _ = boundary_faces(tets, nodes)
    penalty = ConstraintPenalty(CompositeConstraint([SurfaceAreaConstraint(faces, nodes)]), weight=0.5)

    assert penalty.value((2.0 * nodes).ravel()) == pytest.approx(0.5 * 18.0 ** 2)
    x = nodes.ravel() + 0.1 * np.random.default_rng(10).standard_normal(nodes.size)
    assert check_gradient(penalty, x, seed=7) < TOL
    assert not penalty.supports_hessian
    with pytest.raises(UnsupportedOperationError):
        penalty.hessian(x, TripletList())


def test_linear_constraint_penalty_hessian():
    A = np.array([[1.0, 2.0], [0.0, 1.0]])
    penalty = ConstraintPenalty(LinearConstraint(A, b=[1.0, 1.0]), weight=3.0)
    assert penalty.supports_hessian
    np.testing.assert_allclose(penalty.hessian_matrix(np.zeros(2)).toarray(), 6.0 * A.T @ A)


def test_quadratic_energy():
    energy = QuadraticEnergy([[2.0, 1.0], [0.0, 2.0]], b=[1.0, 0.0], c=3.0, weight=2.0)
    np.testing.assert_allclose(energy.A.toarray(), [[2.0, 0.5], [0.5, 2.0]])
    x = np.array([1.0, -1.0])
    assert energy.value(x) == pytest.approx(2.0 * (0.5 * (2.0 - 1.0 + 2.0) - 1.0 + 3.0))
    assert check_gradient(energy, x, seed=8) < TOL

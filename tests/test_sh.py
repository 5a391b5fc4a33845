import itertools

import numpy as np
import pytest

from geomopt.analysis import sh


def cube_symmetries():
    """The 24 signed permutation matrices with determinant +1."""
    out = []
    for perm in itertools.permutations(range(3)):
        for signs in itertools.product((1.0, -1.0), repeat=3):
            P = np.zeros((3, 3))
            P[list(perm), range(3)] = signs
            if np.linalg.det(P) > 0.0:
                out.append(P)
    return np.array(out)


def test_quadrature_weights():
    nodes, weights = sh.sphere_quadrature()
    assert weights.sum() == pytest.approx(4.0 * np.pi)
    np.testing.assert_allclose(np.linalg.norm(nodes, axis=1), 1.0)


def test_basis_is_orthonormal():
    nodes, weights = sh.sphere_quadrature()
    Y = sh.real_sh4(nodes)
    np.testing.assert_allclose(Y.T @ (weights[:, None] * Y), np.eye(9), atol=1e-12)


def test_identity_coefficients():
    expected = np.zeros(9)
    expected[4] = np.sqrt(7.0 / 12.0)
    expected[8] = np.sqrt(5.0 / 12.0)
    np.testing.assert_allclose(sh.reference_frame_sh(), expected, atol=1e-12)


def test_rotations_map_to_unit_vectors():
    rng = np.random.default_rng(0)
    frames = sh.zyz_to_frames(rng.uniform(-np.pi, np.pi, (10, 3)))
    np.testing.assert_allclose(np.linalg.norm(sh.frames_to_sh(frames), axis=1), 1.0, atol=1e-12)


def test_cube_symmetry_invariance():
    R = sh.zyz_to_frames([0.3, 1.1, -0.7])[0]
    reference = sh.frames_to_sh(R)
    for P in cube_symmetries():
        np.testing.assert_allclose(sh.frames_to_sh(R @ P), reference, atol=1e-12)


def test_sh_rotation():
    rng = np.random.default_rng(1)
    Q = sh.zyz_to_frames(rng.uniform(-np.pi, np.pi, (4, 3)))
    R = sh.zyz_to_frames(rng.uniform(-np.pi, np.pi, (4, 3)))
    D = sh.sh_rotation(Q)

    assert D.shape == (4, 9, 9)
    np.testing.assert_allclose(np.einsum("nmk,nk->nm", D, sh.frames_to_sh(R)), sh.frames_to_sh(Q @ R), atol=1e-12)
    np.testing.assert_allclose(np.einsum("nki,nkj->nij", D, D), np.broadcast_to(np.eye(9), D.shape), atol=1e-12)


def test_zyz_jacobian_matches_finite_differences():
    abc = np.array([[0.4, 0.9, -1.3], [2.0, 0.2, 0.5]])
    _, jac = sh.zyz_to_sh(abc)
    h = 1e-6
    for k in range(3):
        step = np.zeros(3)
        step[k] = h
        numeric = (sh.zyz_to_sh(abc + step)[0] - sh.zyz_to_sh(abc - step)[0]) / (2.0 * h)
        np.testing.assert_allclose(jac[:, :, k], numeric, atol=1e-7)


def test_vjp_matches_finite_differences():
    rng = np.random.default_rng(2)
    R = rng.standard_normal((3, 3, 3))
    w = rng.standard_normal((3, 9))
    analytic = sh.frames_to_sh_vjp(R, w)

    h = 1e-6
    numeric = np.zeros_like(R)
    for idx in np.ndindex(*R.shape):
        dR = np.zeros_like(R)
        dR[idx] = h
        numeric[idx] = np.sum(w * (sh.frames_to_sh(R + dR) - sh.frames_to_sh(R - dR))) / (2.0 * h)
    np.testing.assert_allclose(analytic, numeric, atol=1e-6)


def test_normal_to_zyz():
    normals = np.array([[0.0, 0.0, 1.0], [1.0, 2.0, -2.0], [0.0, -3.0, 0.0]])
    frames = sh.zyz_to_frames(sh.normal_to_zyz(normals))
    expected = normals / np.linalg.norm(normals, axis=1)[:, None]
    np.testing.assert_allclose(frames[:, :, 2], expected, atol=1e-12)

    with pytest.raises(ValueError):
        sh.normal_to_zyz([0.0, 0.0, 0.0])


def test_convert_zyz_to_mat_is_row_major():
    abc = np.array([0.1, 0.2, 0.3])
    np.testing.assert_allclose(sh.convert_zyz_to_mat(abc)[0], sh.zyz_to_frames(abc)[0].ravel())


@pytest.mark.parametrize("angles", [[0.3, 0.4, 0.2], [1.0, 2.0, -0.5], [-2.0, 0.7, 1.2]])
def test_sh_to_zyz_recovers_frame(angles):
    coeffs = sh.frames_to_sh(sh.zyz_to_frames(angles))
    recovered = sh.sh_to_zyz(coeffs)
    assert recovered.shape == (1, 3)
    np.testing.assert_allclose(sh.frames_to_sh(sh.zyz_to_frames(recovered)), coeffs, atol=1e-6)


def test_sh_to_zyz_normalizes_input():
    coeffs = 3.0 * sh.reference_frame_sh()
    recovered = sh.sh_to_zyz(coeffs)
    np.testing.assert_allclose(sh.frames_to_sh(sh.zyz_to_frames(recovered))[0], sh.reference_frame_sh(), atol=1e-6)

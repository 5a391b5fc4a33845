"""
Spherical-Harmonic Frame Kernels
================================
Band-4 real spherical harmonics as a rotation-friendly encoding of cubic frames.

A frame is a 3×3 matrix whose columns r_i are its axes. Its frame function

    f_R(s) = Σ_i (s · r_i)⁴,   s on the unit sphere

is invariant under the 24 symmetries of the cube when R is a rotation. The
band-4 part of f_R, written in the orthonormal basis Y_4,m (m = -4..4,
coefficient index m + 4), is the 9-vector used by the frame-field energies.
Coefficients are scaled so that any rotation maps to a unit vector; the
identity maps to (0, 0, 0, 0, sqrt(7/12), 0, 0, 0, sqrt(5/12)).

Projections are computed with a product quadrature (Gauss-Legendre in z,
uniform in φ) that is exact for the degree-8 integrands involved.

Euler angles use the zyz convention R = Rz(a) · Ry(b) · Rz(c).
"""
from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

N_COEFFS = 9

_C0 = 0.75 * np.sqrt(35.0 / np.pi)
_C1 = 0.75 * np.sqrt(35.0 / (2.0 * np.pi))
_C2 = 0.75 * np.sqrt(5.0 / np.pi)
_C3 = 0.75 * np.sqrt(5.0 / (2.0 * np.pi))
_C4 = 3.0 / 16.0 * np.sqrt(1.0 / np.pi)
_C6 = 3.0 / 8.0 * np.sqrt(5.0 / np.pi)
_C8 = 3.0 / 16.0 * np.sqrt(35.0 / np.pi)


def real_sh4(directions: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Evaluate the nine band-4 real spherical harmonics.

    Args:
        directions: Unit vectors, shape (..., 3).

    Returns:
        Basis values, shape (..., 9), ordered m = -4..4.
    """
    d = np.asarray(directions, dtype=np.float64)
    x, y, z = d[..., 0], d[..., 1], d[..., 2]
    x2, y2, z2 = x * x, y * y, z * z

    out = np.empty(d.shape[:-1] + (N_COEFFS,), dtype=np.float64)
    out[..., 0] = _C0 * x * y * (x2 - y2)
    out[..., 1] = _C1 * (3.0 * x2 - y2) * y * z
    out[..., 2] = _C2 * x * y * (7.0 * z2 - 1.0)
    out[..., 3] = _C3 * y * z * (7.0 * z2 - 3.0)
    out[..., 4] = _C4 * (35.0 * z2 * z2 - 30.0 * z2 + 3.0)
    out[..., 5] = _C3 * x * z * (7.0 * z2 - 3.0)
    out[..., 6] = _C6 * (x2 - y2) * (7.0 * z2 - 1.0)
    out[..., 7] = _C1 * (x2 - 3.0 * y2) * x * z
    out[..., 8] = _C8 * (x2 * (x2 - 3.0 * y2) - y2 * (3.0 * x2 - y2))
    return out


def sphere_quadrature(n_z: int = 5, n_phi: int = 10) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Product quadrature on the unit sphere.

    Exact for polynomials of degree <= 2 n_z - 1 in z and trigonometric
    degree < n_phi in φ. The weights sum to 4π.

    Returns:
        nodes: Unit vectors, shape (n_z * n_phi, 3).
        weights: Quadrature weights, shape (n_z * n_phi,).
    """
    z, wz = np.polynomial.legendre.leggauss(n_z)
    phi = 2.0 * np.pi * np.arange(n_phi) / n_phi
    r = np.sqrt(1.0 - z * z)

    nodes = np.stack([
        np.outer(r, np.cos(phi)),
        np.outer(r, np.sin(phi)),
        np.outer(z, np.ones(n_phi)),
    ], axis=-1).reshape(-1, 3)
    weights = np.outer(wz, np.full(n_phi, 2.0 * np.pi / n_phi)).ravel()
    return nodes, weights


_NODES, _WEIGHTS = sphere_quadrature()
# Row q holds w_q · Y(s_q); projecting a sampled function f is f @ _PROJECT
_PROJECT = _WEIGHTS[:, None] * real_sh4(_NODES)


def _as_frames(frames: npt.ArrayLike) -> tuple[npt.NDArray[np.float64], bool]:
    R = np.asarray(frames, dtype=np.float64)
    single = R.ndim == 2
    R = R.reshape(-1, 3, 3)
    return R, single


def _frame_function_coeffs(R: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    P = np.einsum("qj,nji->nqi", _NODES, R)
    return np.sum(P ** 4, axis=2) @ _PROJECT


_SCALE = 1.0 / np.linalg.norm(_frame_function_coeffs(np.eye(3)[None]))


def frames_to_sh(frames: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    SH coefficients of the frame function of each 3×3 matrix.

    Args:
        frames: Matrices with the frame axes as columns, shape (n, 3, 3) or (3, 3).

    Returns:
        Coefficients, shape (n, 9) or (9,).
    """
    R, single = _as_frames(frames)
    coeffs = _SCALE * _frame_function_coeffs(R)
    return coeffs[0] if single else coeffs


def frames_to_sh_vjp(frames: npt.ArrayLike, d_coeffs: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Pull a coefficient-space gradient back to the matrix entries.

    Args:
        frames: Matrices, shape (n, 3, 3).
        d_coeffs: dE/dc, shape (n, 9).

    Returns:
        dE/dR, shape (n, 3, 3).
    """
    R, _ = _as_frames(frames)
    dc = np.asarray(d_coeffs, dtype=np.float64).reshape(-1, N_COEFFS)
    P = np.einsum("qj,nji->nqi", _NODES, R)
    df = _SCALE * (dc @ _PROJECT.T)
    return 4.0 * np.einsum("nq,nqi,qj->nji", df, P ** 3, _NODES)


def reference_frame_sh() -> npt.NDArray[np.float64]:
    """Coefficients of the identity frame."""
    return frames_to_sh(np.eye(3))


def _rot_z(t: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    c, s = np.cos(t), np.sin(t)
    R = np.zeros(t.shape + (3, 3))
    R[..., 0, 0] = c
    R[..., 0, 1] = -s
    R[..., 1, 0] = s
    R[..., 1, 1] = c
    R[..., 2, 2] = 1.0
    return R


def _rot_z_derivative(t: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    c, s = np.cos(t), np.sin(t)
    R = np.zeros(t.shape + (3, 3))
    R[..., 0, 0] = -s
    R[..., 0, 1] = -c
    R[..., 1, 0] = c
    R[..., 1, 1] = -s
    return R


def _rot_y(t: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    c, s = np.cos(t), np.sin(t)
    R = np.zeros(t.shape + (3, 3))
    R[..., 0, 0] = c
    R[..., 0, 2] = s
    R[..., 1, 1] = 1.0
    R[..., 2, 0] = -s
    R[..., 2, 2] = c
    return R


def _rot_y_derivative(t: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    c, s = np.cos(t), np.sin(t)
    R = np.zeros(t.shape + (3, 3))
    R[..., 0, 0] = -s
    R[..., 0, 2] = c
    R[..., 2, 0] = -c
    R[..., 2, 2] = -s
    return R


def _as_angles(abc: npt.ArrayLike) -> npt.NDArray[np.float64]:
    return np.asarray(abc, dtype=np.float64).reshape(-1, 3)


def zyz_to_frames(abc: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Rotation matrices Rz(a) · Ry(b) · Rz(c).

    Args:
        abc: Euler angles, shape (n, 3) or flat (3n,).

    Returns:
        Rotations, shape (n, 3, 3).
    """
    angles = _as_angles(abc)
    za, yb, zc = _rot_z(angles[:, 0]), _rot_y(angles[:, 1]), _rot_z(angles[:, 2])
    return za @ yb @ zc


def _zyz_frame_derivatives(angles: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], ...]:
    a, b, c = angles[:, 0], angles[:, 1], angles[:, 2]
    za, yb, zc = _rot_z(a), _rot_y(b), _rot_z(c)
    R = za @ yb @ zc
    dRa = _rot_z_derivative(a) @ yb @ zc
    dRb = za @ _rot_y_derivative(b) @ zc
    dRc = za @ yb @ _rot_z_derivative(c)
    return R, dRa, dRb, dRc


def zyz_to_sh(abc: npt.ArrayLike) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    SH coefficients of zyz-parameterized frames and their angle Jacobian.

    Args:
        abc: Euler angles, shape (n, 3) or flat (3n,).

    Returns:
        coeffs: Shape (n, 9).
        jacobian: d coeffs / d(a, b, c), shape (n, 9, 3).
    """
    angles = _as_angles(abc)
    R, *dR = _zyz_frame_derivatives(angles)
    P = np.einsum("qj,nji->nqi", _NODES, R)
    coeffs = _SCALE * (np.sum(P ** 4, axis=2) @ _PROJECT)

    P3 = 4.0 * P ** 3
    jacobian = np.empty((angles.shape[0], N_COEFFS, 3), dtype=np.float64)
    for k, dR_k in enumerate(dR):
        dP = np.einsum("qj,nji->nqi", _NODES, dR_k)
        jacobian[:, :, k] = _SCALE * (np.einsum("nqi,nqi->nq", P3, dP) @ _PROJECT)
    return coeffs, jacobian


def frame_polynomial_samples(abc: npt.ArrayLike) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Frame functions f_R of zyz-parameterized frames sampled at the quadrature nodes.

    Sample q is scaled by sqrt(w_q) and by the coefficient normalization, so
    for two frames the squared distance of their sample vectors equals the
    normalized L2 distance of their frame functions over the sphere. For
    rotations this matches the squared distance of their SH coefficients.

    Args:
        abc: Euler angles, shape (n, 3) or flat (3n,).

    Returns:
        samples: Shape (n, q).
        jacobian: d samples / d(a, b, c), shape (n, q, 3).
    """
    angles = _as_angles(abc)
    R, *dR = _zyz_frame_derivatives(angles)
    scale = _SCALE * np.sqrt(_WEIGHTS)
    P = np.einsum("qj,nji->nqi", _NODES, R)
    samples = scale * np.sum(P ** 4, axis=2)

    P3 = 4.0 * P ** 3
    jacobian = np.empty(samples.shape + (3,), dtype=np.float64)
    for k, dR_k in enumerate(dR):
        dP = np.einsum("qj,nji->nqi", _NODES, dR_k)
        jacobian[:, :, k] = scale * np.einsum("nqi,nqi->nq", P3, dP)
    return samples, jacobian


def convert_zyz_to_mat(abc: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Frames as flattened row-major 3×3 matrices, shape (n, 9)."""
    return zyz_to_frames(abc).reshape(-1, 9)


def sh_rotation(rotations: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Coefficient-space action of rotations.

    For a rotation Q the returned 9×9 orthogonal matrix D satisfies
    frames_to_sh(Q @ R) == D @ frames_to_sh(R).

    Args:
        rotations: Shape (n, 3, 3) or (3, 3).

    Returns:
        Shape (n, 9, 9) or (9, 9).
    """
    Q, single = _as_frames(rotations)
    # Y(Qᵀ s_q) for all nodes, rows of S @ Q
    rotated = real_sh4(np.einsum("qj,njk->nqk", _NODES, Q))
    D = np.einsum("qm,nqk->nmk", _PROJECT, rotated)
    return D[0] if single else D


def normal_to_zyz(normals: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Euler angles of a rotation taking the z axis to each normal (c = 0).

    Args:
        normals: Shape (n, 3); need not be unit length.

    Returns:
        Angles, shape (n, 3).
    """
    n = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    length = np.linalg.norm(n, axis=1)
    if np.any(length <= 0.0):
        raise ValueError("Cannot align to a zero-length normal.")
    n = n / length[:, None]
    return np.column_stack([
        np.arctan2(n[:, 1], n[:, 0]),
        np.arccos(np.clip(n[:, 2], -1.0, 1.0)),
        np.zeros(n.shape[0]),
    ])


@lru_cache(maxsize=1)
def _candidate_table() -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    a = np.linspace(0.0, 2.0 * np.pi, 12, endpoint=False)
    b = np.linspace(0.0, np.pi, 7)
    c = np.linspace(0.0, 0.5 * np.pi, 4, endpoint=False)
    angles = np.stack(np.meshgrid(a, b, c, indexing="ij"), axis=-1).reshape(-1, 3)
    return angles, frames_to_sh(zyz_to_frames(angles))


def sh_to_zyz(
    coeffs: npt.ArrayLike,
    max_iterations: int = 50,
    tol: float = 1e-14,
) -> npt.NDArray[np.float64]:
    """
    Euler angles of the frames whose SH coefficients best match the input.

    The input is normalized per element, the best of a coarse grid of
    candidate rotations is picked, and the fit is refined with damped
    Gauss-Newton (per-element Levenberg-Marquardt damping).

    Args:
        coeffs: SH coefficients, shape (n, 9) or flat (9n,).
        max_iterations: Refinement iteration cap.
        tol: Squared residual below which an element stops refining.

    Returns:
        Angles, shape (n, 3).
    """
    F = np.asarray(coeffs, dtype=np.float64).reshape(-1, N_COEFFS)
    norm = np.linalg.norm(F, axis=1)
    target = np.zeros_like(F)
    nonzero = norm > 0.0
    target[nonzero] = F[nonzero] / norm[nonzero, None]

    angles, table = _candidate_table()
    abc = angles[np.argmax(target @ table.T, axis=1)].copy()

    sh, jac = zyz_to_sh(abc)
    residual = sh - target
    cost = np.sum(residual ** 2, axis=1)
    damping = np.full(F.shape[0], 1e-3)
    eye = np.eye(3)

    for _ in range(max_iterations):
        active = cost > tol
        if not np.any(active):
            break

        JtJ = np.einsum("nmi,nmj->nij", jac, jac)
        Jtr = np.einsum("nmi,nm->ni", jac, residual)
        step = -np.linalg.solve(JtJ + damping[:, None, None] * eye, Jtr[..., None])[..., 0]

        trial = abc + step
        sh_t, jac_t = zyz_to_sh(trial)
        residual_t = sh_t - target
        cost_t = np.sum(residual_t ** 2, axis=1)

        accept = active & (cost_t < cost)
        abc[accept] = trial[accept]
        jac[accept] = jac_t[accept]
        residual[accept] = residual_t[accept]
        cost[accept] = cost_t[accept]
        damping = np.clip(np.where(accept, damping * 0.3, damping * 10.0), 1e-12, 1e12)

    return abc

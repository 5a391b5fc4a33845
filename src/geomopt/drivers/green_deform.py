"""
Green-Coordinate Cage Deformation (2-D)
=======================================
Points inside a closed polygonal cage are written as

    η = Σ_i φ_i(η) v_i + Σ_j ψ_j(η) n_j

with v_i the cage vertices and n_j the outward unit edge normals. After the
cage moves, the same coordinates give the deformed points, with every normal
term scaled by the stretch s_j = |e'_j| / |e_j| of its edge. The result is
conformal inside the cage.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def _outward_normals(vertices: npt.NDArray[np.float64], edges: npt.NDArray[np.int64]) -> npt.NDArray[np.float64]:
    d = vertices[edges[:, 1]] - vertices[edges[:, 0]]
    n = np.column_stack([d[:, 1], -d[:, 0]]) / np.linalg.norm(d, axis=1)[:, None]
    # (d_y, -d_x) points outward for a counter-clockwise cage
    a, b = vertices[edges[:, 0]], vertices[edges[:, 1]]
    signed_area = 0.5 * np.sum(a[:, 0] * b[:, 1] - b[:, 0] * a[:, 1])
    return n if signed_area > 0.0 else -n


def green_coordinates(
    points: npt.ArrayLike,
    cage: npt.ArrayLike,
    edges: npt.ArrayLike,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    2-D Green coordinates of points strictly inside a closed cage.

    Args:
        points: Query points, shape (P, 2).
        cage: Cage vertices, shape (V, 2).
        edges: Cage edges (start, end), shape (E, 2), forming a closed loop.

    Returns:
        phi: Vertex coordinates, shape (P, V); each row sums to one.
        psi: Normal coordinates, shape (P, E).
    """
    eta = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    v = np.asarray(cage, dtype=np.float64)
    e = np.asarray(edges, dtype=np.int64)
    normals = _outward_normals(v, e)

    v1, v2 = v[e[:, 0]], v[e[:, 1]]
    a = v2 - v1                                  # (E, 2)
    b = v1[None, :, :] - eta[:, None, :]         # (P, E, 2)
    length = np.linalg.norm(a, axis=1)

    Q = np.sum(a * a, axis=1)[None, :]
    S = np.sum(b * b, axis=2)
    R = 2.0 * np.einsum("ek,pek->pe", a, b)
    BA = np.einsum("pek,ek->pe", b, normals) * length[None, :]
    SRT = np.sqrt(np.maximum(4.0 * S * Q - R * R, 0.0))
    if np.any(SRT <= 0.0):
        raise ValueError("Points must lie strictly inside the cage, away from its edges.")

    L0 = np.log(S)
    L1 = np.log(S + Q + R)
    A0 = np.arctan(R / SRT) / SRT
    A1 = np.arctan((2.0 * Q + R) / SRT) / SRT
    A10 = A1 - A0
    L10 = L1 - L0

    psi = -length[None, :] / (4.0 * np.pi) * ((4.0 * S - R * R / Q) * A10 + R / (2.0 * Q) * L10 + L1 - 2.0)

    to_end = BA / (2.0 * np.pi) * (L10 / (2.0 * Q) - A10 * R / Q)
    to_start = -BA / (2.0 * np.pi) * (L10 / (2.0 * Q) - A10 * (2.0 + R / Q))

    n_edges = e.shape[0]
    end_incidence = np.zeros((n_edges, v.shape[0]))
    start_incidence = np.zeros((n_edges, v.shape[0]))
    end_incidence[np.arange(n_edges), e[:, 1]] = 1.0
    start_incidence[np.arange(n_edges), e[:, 0]] = 1.0
    phi = to_end @ end_incidence + to_start @ start_incidence
    return phi, psi


class GreenCageDeformer:
    """
    Deforms a fixed point set by moving the vertices of its cage.
    """

    def __init__(
        self,
        points: npt.ArrayLike,
        cage: npt.ArrayLike,
        edges: npt.ArrayLike | None = None,
    ) -> None:
        """
        Initialize the deformer.

        Args:
            points: Points to deform, shape (P, 2), strictly inside the cage.
            cage: Rest cage vertices, shape (V, 2).
            edges: Cage edges, shape (E, 2). Defaults to the closed loop
                0-1-...-(V-1)-0.
        """
        self.points = np.array(points, dtype=np.float64).reshape(-1, 2)
        self.rest_cage = np.array(cage, dtype=np.float64).reshape(-1, 2)
        n = self.rest_cage.shape[0]
        if n < 3:
            raise ValueError(f"A cage needs at least 3 vertices, got {n}.")
        if edges is None:
            edges = np.column_stack([np.arange(n), np.roll(np.arange(n), -1)])
        self.edges = np.array(edges, dtype=np.int64).reshape(-1, 2)

        self.cage = self.rest_cage.copy()
        self.rest_lengths = self._edge_lengths(self.rest_cage)
        self.phi: npt.NDArray[np.float64] | None = None
        self.psi: npt.NDArray[np.float64] | None = None

    def _edge_lengths(self, vertices: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return np.linalg.norm(vertices[self.edges[:, 1]] - vertices[self.edges[:, 0]], axis=1)

    def outward_normals(self) -> npt.NDArray[np.float64]:
        """Unit outward normals of the current cage edges, shape (E, 2)."""
        return _outward_normals(self.cage, self.edges)

    def compute_coordinates(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Green coordinates of the points with respect to the rest cage."""
        self.phi, self.psi = green_coordinates(self.points, self.rest_cage, self.edges)
        logger.debug(f"Green coordinates for {self.points.shape[0]} points, {self.edges.shape[0]} cage edges.")
        return self.phi, self.psi

    def move_cage_vertex(self, index: int, displacement: npt.ArrayLike) -> None:
        self.cage[index] += np.asarray(displacement, dtype=np.float64)

    def deform(self) -> npt.NDArray[np.float64]:
        """
        Deformed points for the current cage, shape (P, 2).
        """
        if self.phi is None or self.psi is None:
            self.compute_coordinates()
        stretch = self._edge_lengths(self.cage) / self.rest_lengths
        return self.phi @ self.cage + self.psi @ (stretch[:, None] * self.outward_normals())

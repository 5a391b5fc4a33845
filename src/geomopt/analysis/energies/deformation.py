"""
Deformation Energies
====================
Energies over vertex positions x (3 per vertex, row-major (V, 3)).

- ``TetDistortionEnergy``: as-rigid-as-possible style penalty on the
  deformation gradient of every tetrahedron.
- ``SurfaceNormalAlignEnergy``: smoothed L1 norm of the surface normals,
  which is smallest when every face normal is parallel to a coordinate axis.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from geomopt.analysis import kernels
from geomopt.analysis.energies.weights import normalize_weights
from geomopt.analysis.functional import Functional, check_length
from geomopt.pre.geometry import as_points3, tet_edge_matrices, triangle_areas

if TYPE_CHECKING:
    import numpy.typing as npt


class TetDistortionEnergy(Functional):
    """
    E(x) = w Σ_t v_t ‖F_tᵀ F_t - I‖²,  F_t = D_s(x) D_m⁻¹

    D_s and D_m are the current and rest edge matrices; v the normalized rest
    volumes.
    """

    def __init__(self, tets: npt.ArrayLike, rest_nodes: npt.ArrayLike, weight: float = 1.0) -> None:
        """
        Initialize the term.

        Args:
            tets: Tetrahedra, shape (n, 4).
            rest_nodes: Rest vertex positions, shape (V, 3).
            weight: Global weight of the term.

        Raises:
            ValueError: If a rest tetrahedron is degenerate.
        """
        self.tets = np.array(tets, dtype=np.int64).reshape(-1, 4)
        rest = as_points3(rest_nodes)
        self.n_vertices = int(rest.shape[0])

        Dm = tet_edge_matrices(self.tets, rest)
        det = np.linalg.det(Dm)
        if np.any(np.abs(det) <= 0.0):
            raise ValueError(f"{int(np.sum(np.abs(det) <= 0.0))} degenerate rest tetrahedra.")
        self.Dm_inv = np.linalg.inv(Dm)
        self.volumes = normalize_weights(np.abs(det) / 6.0, "volumes")
        self.weight = float(weight)

    @property
    def nx(self) -> int:
        return 3 * self.n_vertices

    def deformation_gradients(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return tet_edge_matrices(self.tets, x.reshape(self.n_vertices, 3)) @ self.Dm_inv

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        F = self.deformation_gradients(x)
        M = np.einsum("nki,nkj->nij", F, F) - np.eye(3)
        return self.weight * float(np.sum(self.volumes * np.sum(M * M, axis=(1, 2))))

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        F = self.deformation_gradients(x)
        M = np.einsum("nki,nkj->nij", F, F) - np.eye(3)
        dF = 4.0 * self.weight * self.volumes[:, None, None] * (F @ M)
        # Columns of dE/dDs belong to vertices 1..3, vertex 0 gets minus their sum
        dDs = dF @ np.transpose(self.Dm_inv, (0, 2, 1))
        per_vertex = np.empty((self.tets.shape[0], 4, 3))
        per_vertex[:, 1:, :] = np.transpose(dDs, (0, 2, 1))
        per_vertex[:, 0, :] = -per_vertex[:, 1:, :].sum(axis=1)

        g = np.zeros((self.n_vertices, 3))
        kernels.scatter_add_rows(g, self.tets.ravel(), per_vertex.reshape(-1, 3))
        out += g.ravel()


class SurfaceNormalAlignEnergy(Functional):
    """
    E(x) = w Σ_f α_f Σ_k (sqrt((N_k / A_f)² + ε) - sqrt(ε))

    N is the current vector area of face f, A_f its rest area and α_f the
    normalized rest areas.
    """

    def __init__(
        self,
        tris: npt.ArrayLike,
        rest_nodes: npt.ArrayLike,
        weight: float = 1.0,
        eps: float = 1e-3,
    ) -> None:
        if eps <= 0.0:
            raise ValueError(f"eps must be positive, got {eps}.")
        self.tris = np.array(tris, dtype=np.int64).reshape(-1, 3)
        rest = as_points3(rest_nodes)
        self.n_vertices = int(rest.shape[0])

        self.rest_areas = triangle_areas(self.tris, rest)
        if np.any(self.rest_areas <= 0.0):
            raise ValueError("Degenerate rest triangles.")
        self.area_weights = normalize_weights(self.rest_areas, "areas")
        self.weight = float(weight)
        self.eps = float(eps)

    @property
    def nx(self) -> int:
        return 3 * self.n_vertices

    def _edges(self, x: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        p = x.reshape(self.n_vertices, 3)[self.tris]
        return p[:, 1] - p[:, 0], p[:, 2] - p[:, 0]

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        e1, e2 = self._edges(x)
        u = 0.5 * np.cross(e1, e2) / self.rest_areas[:, None]
        per_face = np.sum(np.sqrt(u * u + self.eps) - np.sqrt(self.eps), axis=1)
        return self.weight * float(self.area_weights @ per_face)

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        e1, e2 = self._edges(x)
        u = 0.5 * np.cross(e1, e2) / self.rest_areas[:, None]
        # dE/dN per face
        gN = self.weight * (self.area_weights / self.rest_areas)[:, None] * u / np.sqrt(u * u + self.eps)

        per_vertex = np.empty((self.tris.shape[0], 3, 3))
        per_vertex[:, 1, :] = 0.5 * np.cross(e2, gN)
        per_vertex[:, 2, :] = 0.5 * np.cross(gN, e1)
        per_vertex[:, 0, :] = -(per_vertex[:, 1, :] + per_vertex[:, 2, :])

        g = np.zeros((self.n_vertices, 3))
        kernels.scatter_add_rows(g, self.tris.ravel(), per_vertex.reshape(-1, 3))
        out += g.ravel()

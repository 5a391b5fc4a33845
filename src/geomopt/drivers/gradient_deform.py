"""
Gradient-Field Deformation
==========================
Poisson-based editing of a triangle mesh.

1. ``set_fixed_vertices``: pin an anchor region and prefactorize the
   reduced cotangent Laplacian K.
2. ``edit_boundary``: mark the handle region (harmonic field value 1).
3. ``set_handle_transform`` + ``propagate_transform``: solve the harmonic
   field (0 on anchors, 1 on the handle) and blend the handle transform into
   a per-face target gradient field.
4. ``deform``: for each coordinate, solve K x = div(target gradients) with
   the anchors pinned.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

import numpy as np
import scipy as sp

from geomopt.analysis.energies.quadratic import QuadraticEnergy
from geomopt.pre.geometry import as_points3, cotangent_stiffness, gradient_operator, triangle_areas
from geomopt.solvers.dof import DofReducer
from geomopt.solvers.linear import DEFAULT_BACKEND, LinearSolver
from geomopt.solvers.stages import linear_stage

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class GradientFieldDeformer:
    """
    Driver holding the mesh operators, the DOF sets and the deformed state.
    """

    def __init__(
        self,
        tris: npt.ArrayLike,
        nodes: npt.ArrayLike,
        backend: str = DEFAULT_BACKEND,
    ) -> None:
        """
        Precompute the mesh operators.

        Args:
            tris: Triangles, shape (F, 3).
            nodes: Vertex positions, shape (V, 3) or planar (V, 2).
            backend: Linear solver backend name.
        """
        self.tris = np.asarray(tris, dtype=np.int64)
        self.nodes = as_points3(nodes)
        self.backend = backend
        n_vertices = self.nodes.shape[0]

        self.K = cotangent_stiffness(self.tris, self.nodes)
        self.G = gradient_operator(self.tris, self.nodes)
        self._areas = triangle_areas(self.tris, self.nodes)

        self._deformed = self.nodes.copy()
        self._hf = np.zeros(n_vertices)
        self._transform = np.eye(3)
        # Per-coordinate target gradients, column c holds the stacked per-face gradient of coordinate c
        self.target_gradients = self.G @ self.nodes

        self.fixed_dofs: set[int] = set()
        self.edit_dofs: set[int] = set()
        self._reducer = DofReducer(n_vertices)
        self._solver: LinearSolver | None = None

    @property
    def n_vertices(self) -> int:
        return self.nodes.shape[0]

    @property
    def harmonic_field(self) -> npt.NDArray[np.float64]:
        return self._hf

    @property
    def deformed_nodes(self) -> npt.NDArray[np.float64]:
        return self._deformed

    @property
    def element_areas(self) -> npt.NDArray[np.float64]:
        return self._areas

    def set_fixed_vertices(self, idx: Iterable[int]) -> None:
        """
        Pin vertices and factorize the reduced Laplacian.

        Raises:
            LinearSolveError: If the reduced Laplacian is not SPD, e.g. when no
                vertex is pinned.
        """
        self.fixed_dofs = {int(i) for i in idx}
        self._reducer = DofReducer(self.n_vertices, self.fixed_dofs)
        self._solver = LinearSolver(self.backend)
        self._solver.factorize(self._reducer.reduce_matrix(self.K))
        logger.info(f"Prefactorized {self._reducer.n_free} free vertices ({len(self.fixed_dofs)} fixed).")

    def edit_boundary(self, idx: Iterable[int]) -> None:
        """Mark the handle vertices; their harmonic field value becomes 1."""
        self.edit_dofs = {int(i) for i in idx}
        self._hf[list(self.edit_dofs)] = 1.0

    def set_handle_transform(self, transform: npt.ArrayLike) -> None:
        """
        Linear part of the handle transform, 3×3 (2×2 is embedded in the xy plane).
        """
        T = np.asarray(transform, dtype=np.float64)
        if T.shape == (2, 2):
            T = np.block([[T, np.zeros((2, 1))], [np.zeros((1, 2)), np.ones((1, 1))]])
        if T.shape != (3, 3):
            raise ValueError(f"Handle transform must be 2x2 or 3x3, got {T.shape}.")
        self._transform = T

    def propagate_transform(self) -> npt.NDArray[np.float64]:
        """
        Harmonic field over the free vertices, then per-face blended targets.

        The handle transform T = R S (polar decomposition) is applied on face f
        with blend t_f (mean harmonic value of its vertices) as
        T_f = exp(t_f log R) ((1 - t_f) I + t_f S).

        Returns:
            The harmonic field, shape (V,).
        """
        pinned = sorted(self.fixed_dofs | self.edit_dofs)
        energy = QuadraticEnergy(self.K)
        linear_stage(energy, self._hf, excluded=pinned, backend=self.backend)
        logger.info(f"Harmonic field range: [{self._hf.min():.4f}, {self._hf.max():.4f}]")

        U, sigma, Vt = np.linalg.svd(self._transform)
        if np.linalg.det(U @ Vt) < 0.0:
            raise ValueError("Handle transform must preserve orientation.")
        R = U @ Vt
        S = Vt.T @ np.diag(sigma) @ Vt
        rotvec = sp.spatial.transform.Rotation.from_matrix(R).as_rotvec()

        blend = self._hf[self.tris].mean(axis=1)
        rotations = sp.spatial.transform.Rotation.from_rotvec(blend[:, None] * rotvec).as_matrix()
        stretch = (1.0 - blend)[:, None, None] * np.eye(3) + blend[:, None, None] * S
        face_transforms = rotations @ stretch

        # J_f[c, :] is the gradient of coordinate c on face f
        J = (self.G @ self.nodes).reshape(-1, 3, 3).transpose(0, 2, 1)
        target = face_transforms @ J
        self.target_gradients = target.transpose(0, 2, 1).reshape(-1, 3)
        return self._hf

    def calc_divergence(self, field: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Divergence of a per-face vector field: div_v = Σ_f A_f ∇φ_{f,v} · g_f.

        Args:
            field: Stacked face vectors, shape (3F,).

        Returns:
            Vertex values, shape (V,).
        """
        g = np.asarray(field, dtype=np.float64).ravel()
        return self.G.T @ (np.repeat(self._areas, 3) * g)

    def deform(self) -> npt.NDArray[np.float64]:
        """
        Solve the three Poisson problems; fixed vertices keep their position.

        Raises:
            RuntimeError: If ``set_fixed_vertices`` was never called.

        Returns:
            Deformed vertex positions, shape (V, 3).
        """
        if self._solver is None:
            raise RuntimeError("deform() needs set_fixed_vertices() first.")
        for c in range(3):
            X = self._deformed[:, c].copy()
            rhs = self.calc_divergence(self.target_gradients[:, c]) - self.K @ X
            dx = self._solver.solve(self._reducer.reduce_vector(rhs))
            X += self._reducer.expand(dx)
            self._deformed[:, c] = X
        logger.info(f"Deformed {self.n_vertices} vertices.")
        return self._deformed

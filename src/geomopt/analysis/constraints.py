"""
Constraints
===========
Vector-valued constraints c(x) = 0.

- ``LinearConstraint``: c = A x - b, with a (zero) Hessian.
- ``SurfaceAreaConstraint``: total surface area minus the rest area; first order only.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy as sp

from geomopt.analysis.functional import Constraint, check_length, ensure_blocks
from geomopt.pre.geometry import as_points3, triangle_areas

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.solvers.assembly import TripletList


class LinearConstraint(Constraint):
    """
    c(x) = A x - b. The Hessian is zero.
    """

    def __init__(self, A: sp.sparse.spmatrix | npt.ArrayLike, b: npt.ArrayLike | None = None) -> None:
        self.A = sp.sparse.csr_matrix(A, dtype=np.float64)
        self.b = np.zeros(self.A.shape[0]) if b is None else np.array(b, dtype=np.float64).ravel()
        if self.b.shape[0] != self.A.shape[0]:
            raise ValueError(f"b has length {self.b.shape[0]}, expected {self.A.shape[0]}.")

    @property
    def nx(self) -> int:
        return self.A.shape[1]

    @property
    def nf(self) -> int:
        return self.A.shape[0]

    def value(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        check_length(self, x)
        return self.A @ x - self.b

    def jacobian(self, x: npt.NDArray[np.float64], offset: int, triplets: TripletList) -> None:
        check_length(self, x)
        J = self.A.tocoo()
        triplets.add(J.row + offset, J.col, J.data)

    def hessian(self, x: npt.NDArray[np.float64], offset: int, blocks: list[TripletList]) -> None:
        check_length(self, x)
        ensure_blocks(blocks, offset + self.nf)


class SurfaceAreaConstraint(Constraint):
    """
    Keep the total area of a triangle surface at its rest value.

    c(x) = Σ_f A_f(x) - Σ_f A_f(x_rest), one row. Vertex positions are
    stored row-major, 3 per vertex.
    """

    def __init__(self, tris: npt.ArrayLike, rest_nodes: npt.ArrayLike) -> None:
        self.tris = np.array(tris, dtype=np.int64).reshape(-1, 3)
        rest = as_points3(rest_nodes)
        self.n_vertices = int(rest.shape[0])
        self.rest_area = float(np.sum(triangle_areas(self.tris, rest)))

    @property
    def nx(self) -> int:
        return 3 * self.n_vertices

    @property
    def nf(self) -> int:
        return 1

    def value(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        check_length(self, x)
        area = np.sum(triangle_areas(self.tris, x.reshape(self.n_vertices, 3)))
        return np.array([area - self.rest_area])

    def jacobian(self, x: npt.NDArray[np.float64], offset: int, triplets: TripletList) -> None:
        check_length(self, x)
        p = x.reshape(self.n_vertices, 3)[self.tris]
        normal = np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0])
        length = np.linalg.norm(normal, axis=1)
        n_hat = np.zeros_like(normal)
        ok = length > 0.0
        n_hat[ok] = normal[ok] / length[ok, None]

        # dA/dp_i = ½ n̂ × (p_{i+2} - p_{i+1})
        opposite = np.stack([p[:, 2] - p[:, 1], p[:, 0] - p[:, 2], p[:, 1] - p[:, 0]], axis=1)
        dA = 0.5 * np.cross(n_hat[:, None, :], opposite)

        cols = 3 * self.tris[:, :, None] + np.arange(3)
        triplets.add(np.full(cols.size, offset), cols, dA)

"""
Frame Matrix Energies
=====================
Per-element terms on the frame variables themselves.

- ``FrameOrthEnergy``: keeps 3×3 frames close to orthogonal.
- ``BoundaryFixEnergy``: holds boundary elements near a reference, for any
  number of variables per element.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from geomopt.analysis.energies.weights import boundary_face_weights, volume_weights
from geomopt.analysis.functional import Functional, check_length

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.solvers.assembly import TripletList


class FrameOrthEnergy(Functional):
    """
    E(F) = w Σ_t v_t ‖F_tᵀ F_t - I‖², v the normalized tetrahedron volumes and
    F_t the row-major 3×3 frame matrix of element t.
    """

    def __init__(self, tets: npt.ArrayLike, nodes: npt.ArrayLike, weight: float = 1.0) -> None:
        self.volumes = volume_weights(tets, nodes)
        self.n_elements = int(self.volumes.shape[0])
        self.weight = float(weight)

    @property
    def nx(self) -> int:
        return 9 * self.n_elements

    def _defect(self, x: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        F = x.reshape(self.n_elements, 3, 3)
        return F, np.einsum("nki,nkj->nij", F, F) - np.eye(3)

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        _, M = self._defect(x)
        return self.weight * float(np.sum(self.volumes * np.sum(M * M, axis=(1, 2))))

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        F, M = self._defect(x)
        g = 4.0 * self.weight * self.volumes[:, None, None] * (F @ M)
        out += g.ravel()


class BoundaryFixEnergy(Functional):
    """
    Keep the variables of boundary elements close to a reference state.

    E(x) = w Σ_t a_t ‖x_t - x0_t‖², where a_t sums the normalized areas of the
    boundary faces of element t and x_t is its block of ``var_dim`` variables.
    """

    def __init__(
        self,
        tets: npt.ArrayLike,
        nodes: npt.ArrayLike,
        x0: npt.ArrayLike,
        var_dim: int,
        weight: float = 1.0,
    ) -> None:
        """
        Initialize the term.

        Args:
            tets: Tetrahedra, shape (n, 4).
            nodes: Node coordinates, shape (m, 3).
            x0: Reference variables, length ``var_dim * n``. Copied.
            var_dim: Variables per element (3 for zyz angles, 9 for matrices).
            weight: Global weight of the term.
        """
        n_elements = int(np.asarray(tets).shape[0])
        reference = np.array(x0, dtype=np.float64).ravel()
        if reference.shape[0] != var_dim * n_elements:
            raise ValueError(
                f"Reference has length {reference.shape[0]}, expected {var_dim} x {n_elements}."
            )

        _, incident, areas = boundary_face_weights(tets, nodes)
        per_element = np.bincount(incident, weights=areas, minlength=n_elements)

        self.n_elements = n_elements
        self.var_dim = int(var_dim)
        self.elements = np.flatnonzero(per_element > 0.0)
        self.element_weights = per_element[self.elements]
        self.reference = reference.reshape(n_elements, var_dim)
        self.weight = float(weight)

    @property
    def nx(self) -> int:
        return self.var_dim * self.n_elements

    def _difference(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        X = x.reshape(self.n_elements, self.var_dim)
        return X[self.elements] - self.reference[self.elements]

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        d = self._difference(x)
        return self.weight * float(np.sum(self.element_weights * np.sum(d * d, axis=1)))

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        d = self._difference(x)
        view = out.reshape(self.n_elements, self.var_dim)
        view[self.elements] += 2.0 * self.weight * self.element_weights[:, None] * d

    def hessian(self, x: npt.NDArray[np.float64], triplets: TripletList) -> None:
        check_length(self, x)
        rows = self.var_dim * self.elements[:, None] + np.arange(self.var_dim)
        vals = np.repeat(2.0 * self.weight * self.element_weights, self.var_dim)
        triplets.add(rows, rows, vals)

"""
Boundary Alignment Energies
===========================
Pull the frame of every boundary tetrahedron towards a frame that has one
axis along the outward face normal.

For a face with normal n let D_n be the SH rotation taking the z axis to n.
A frame is normal-aligned iff Dₙᵀ F matches the identity coefficients on all
indices except m = ±4 (the free twist about the normal). The energy is

    E = w Σ_f a_f ‖P (Dₙᵀ F_t(f) - c_id)‖²

with a_f the normalized face areas, t(f) the incident tetrahedron and P the
projection dropping coefficients 0 and 8.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from geomopt.analysis import kernels, sh
from geomopt.analysis.energies.weights import boundary_face_weights
from geomopt.analysis.functional import Functional, check_length
from geomopt.pre.geometry import triangle_normals

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.solvers.assembly import TripletList

_TWIST_FREE = np.ones(sh.N_COEFFS)
_TWIST_FREE[[0, 8]] = 0.0


class _AlignBase(Functional):
    var_dim: int = 9

    def __init__(self, tets: npt.ArrayLike, nodes: npt.ArrayLike, weight: float = 1.0) -> None:
        """
        Initialize the alignment term.

        Args:
            tets: Tetrahedra, shape (n, 4).
            nodes: Node coordinates, shape (m, 3).
            weight: Global weight of the term.
        """
        self.n_elements = int(np.asarray(tets).shape[0])
        self.faces, self.incident, self.areas = boundary_face_weights(tets, nodes)
        self.weight = float(weight)
        self._tets = tets
        self._nodes = nodes

        if self.faces.shape[0]:
            rotations = sh.zyz_to_frames(sh.normal_to_zyz(triangle_normals(self.faces, nodes)))
            self.face_rotations = sh.sh_rotation(rotations).reshape(-1, 9, 9)
        else:
            self.face_rotations = np.empty((0, 9, 9))
        self._target = _TWIST_FREE * sh.reference_frame_sh()

    @property
    def nx(self) -> int:
        return self.var_dim * self.n_elements

    def _residual(self, F: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        local = np.einsum("fmk,fm->fk", self.face_rotations, F[self.incident])
        return _TWIST_FREE * local - self._target

    def _energy(self, F: npt.NDArray[np.float64]) -> float:
        r = self._residual(F)
        return self.weight * float(np.sum(self.areas * np.sum(r * r, axis=1)))

    def _coefficient_gradient(self, F: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        r = self._residual(F)
        per_face = 2.0 * self.weight * self.areas[:, None] * np.einsum("fmk,fk->fm", self.face_rotations, r)
        dF = np.zeros_like(F)
        kernels.scatter_add_rows(dF, self.incident, per_face)
        return dF


class SHCoefficientAlignEnergy(_AlignBase):
    """
    Alignment over raw SH coefficients (9 per element). Quadratic with a
    constant Hessian.
    """
    var_dim = 9

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        return self._energy(x.reshape(self.n_elements, 9))

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        out += self._coefficient_gradient(x.reshape(self.n_elements, 9)).ravel()

    def hessian(self, x: npt.NDArray[np.float64], triplets: TripletList) -> None:
        check_length(self, x)
        if self.faces.shape[0] == 0:
            return
        # 2 w a_f D P Dᵀ on the diagonal block of the incident element
        DP = self.face_rotations * _TWIST_FREE
        local = 2.0 * self.weight * self.areas[:, None, None] * np.einsum("fmk,fnk->fmn", DP, self.face_rotations)
        dofs = 9 * self.incident[:, None] + np.arange(9)
        triplets.add_element_matrices(dofs, local)


class SHAlignEnergy(_AlignBase):
    """
    Alignment over zyz-angle frames (3 per element). First order only.
    """
    var_dim = 3

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        return self._energy(sh.frames_to_sh(sh.zyz_to_frames(x)))

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        F, jac = sh.zyz_to_sh(x)
        dF = self._coefficient_gradient(F)
        out += np.einsum("nm,nmk->nk", dF, jac).ravel()

    def coefficients(self) -> SHCoefficientAlignEnergy:
        """The same energy over raw SH coefficients (quadratic, with Hessian)."""
        return SHCoefficientAlignEnergy(self._tets, self._nodes, weight=self.weight)

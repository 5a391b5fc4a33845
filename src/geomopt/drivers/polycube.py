"""
Polycube Deformation
====================
Deforms a tetrahedral mesh so that its boundary faces turn toward the
coordinate axes while the interior stays close to a rigid motion.

The objective over vertex positions (row-major, 3 per vertex) combines

- ``TetDistortionEnergy`` (``weight.distortion.value``),
- ``SurfaceNormalAlignEnergy`` on the boundary (``weight.align.value``,
  smoothing ``abs_eps.value``),
- a quadratic penalty on the total boundary area (``weight.area.value``),

and is minimized with L-BFGS.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from geomopt.analysis.composite import CompositeConstraint, CompositeEnergy
from geomopt.analysis.constraints import SurfaceAreaConstraint
from geomopt.analysis.energies.deformation import SurfaceNormalAlignEnergy, TetDistortionEnergy
from geomopt.analysis.energies.quadratic import ConstraintPenalty
from geomopt.analysis.functional import check_gradient
from geomopt.pre.geometry import triangle_normals
from geomopt.pre.topology import boundary_faces
from geomopt.solvers.lbfgs import LbfgsOptions
from geomopt.solvers.stages import nonlinear_stage

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.config import OptionTree
    from geomopt.solvers.lbfgs import OptimizationResult

logger = logging.getLogger(__name__)


class PolycubeDeformer:
    """
    Driver owning the polycube energy of one tetrahedral mesh.
    """

    def __init__(self, tets: npt.ArrayLike, nodes: npt.ArrayLike, options: OptionTree) -> None:
        """
        Build the energy terms at the rest configuration ``nodes``.

        Args:
            tets: Tetrahedra, shape (n, 4).
            nodes: Rest vertex positions, shape (V, 3).
            options: Needs ``weight.distortion.value``, ``weight.align.value``,
                ``weight.area.value``, ``abs_eps.value`` and the ``lbfgs.*``
                options.
        """
        self.tets = np.asarray(tets, dtype=np.int64)
        self.nodes = np.asarray(nodes, dtype=np.float64)
        self.options = options
        self.surface, _ = boundary_faces(self.tets, self.nodes)

        wd = options.get_float("weight.distortion.value")
        wa = options.get_float("weight.align.value")
        wr = options.get_float("weight.area.value")
        abs_eps = options.get_float("abs_eps.value")

        self.distortion = TetDistortionEnergy(self.tets, self.nodes, weight=wd)
        self.align = SurfaceNormalAlignEnergy(self.surface, self.nodes, weight=wa, eps=abs_eps)
        self.area = ConstraintPenalty(
            CompositeConstraint([SurfaceAreaConstraint(self.surface, self.nodes)]), weight=wr
        )
        self.energy = CompositeEnergy([self.distortion, self.align, self.area])
        logger.info(
            f"Polycube terms: {self.tets.shape[0]} tetrahedra, {self.surface.shape[0]} surface faces, "
            f"{self.energy.nx} variables."
        )

    def rest_positions(self) -> npt.NDArray[np.float64]:
        """Flattened copy of the rest vertex positions, shape (3V,)."""
        return self.nodes.ravel().copy()

    def polycube_error(self, x: npt.ArrayLike) -> float:
        """
        Mean deviation of the surface normals from the nearest axis,
        1 - max_k |n̂_k|, over all surface faces. Zero for a perfect polycube.
        """
        p = np.asarray(x, dtype=np.float64).reshape(-1, 3)
        normals = triangle_normals(self.surface, p)
        return float(np.mean(1.0 - np.max(np.abs(normals), axis=1)))

    def check_gradients(self, x: npt.ArrayLike, step: float = 1e-6) -> dict[str, float]:
        """Finite-difference gradient error of every term, keyed by term name."""
        terms = {"distortion": self.distortion, "align": self.align, "area": self.area}
        return {name: check_gradient(term, x, step=step, seed=0) for name, term in terms.items()}

    def deform(self, x: npt.NDArray[np.float64] | None = None) -> OptimizationResult:
        """
        Minimize the polycube energy.

        Args:
            x: Starting positions, shape (3V,), updated in place. Defaults to
                a copy of the rest positions, available as ``result.x``.

        Raises:
            OptimizationError: If the optimizer fails.
        """
        if x is None:
            x = self.rest_positions()
        logger.info(f"Polycube error before: {self.polycube_error(x):.6e}")
        result = nonlinear_stage(self.energy, x, LbfgsOptions.from_options(self.options))
        logger.info(f"Polycube error after: {self.polycube_error(x):.6e}")
        return result

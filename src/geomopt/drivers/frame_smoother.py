"""
Frame Field Smoothing
=====================
Two smoothing passes for an existing frame field:

- ``smooth_sh``: L2 smoothness of the SH encoding over zyz angles, with the
  boundary frames held near their input. ``smooth.type.value`` picks the
  SH form (``"sh"``, default) or the frame-polynomial form (``"poly"``).
- ``smooth_l1``: smoothed-L1 smoothness over 3×3 matrices plus an
  orthogonality penalty, followed by projection onto the nearest rotations.

Both report the L1 smoothness energy every ``lbfgs.monitor.value`` iterations.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from geomopt.analysis import sh
from geomopt.analysis.composite import CompositeEnergy, compose_energy
from geomopt.analysis.energies.frame import BoundaryFixEnergy, FrameOrthEnergy
from geomopt.analysis.energies.smooth import L1SmoothEnergy, PolySmoothEnergy, SHSmoothEnergy
from geomopt.errors import ConfigurationError
from geomopt.solvers.lbfgs import LbfgsOptions
from geomopt.solvers.stages import nonlinear_stage, orthogonalize_frames

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.analysis.functional import Functional
    from geomopt.config import OptionTree
    from geomopt.solvers.lbfgs import OptimizationResult

logger = logging.getLogger(__name__)

SMOOTH_TERMS = {"sh": SHSmoothEnergy, "poly": PolySmoothEnergy}


class FrameSmoother:
    """
    Driver for the two smoothing passes of one mesh.
    """

    def __init__(self, tets: npt.ArrayLike, nodes: npt.ArrayLike, options: OptionTree) -> None:
        """
        Args:
            tets: Tetrahedra, shape (n, 4).
            nodes: Node coordinates, shape (m, 3).
            options: Needs ``weight.smooth.value``, ``weight.boundary.value``,
                ``abs_eps.value`` and the ``lbfgs.*`` options; ``smooth_l1``
                also needs ``weight.orth.value``.
        """
        self.tets = np.asarray(tets, dtype=np.int64)
        self.nodes = np.asarray(nodes, dtype=np.float64)
        self.options = options
        self.n_elements = int(self.tets.shape[0])

    def _compose(self, terms: list[Functional], label: str) -> CompositeEnergy:
        built = compose_energy(terms)
        if not built.ok:
            logger.error(f"{label} energy could not be assembled: {built.error}")
        return built.unwrap()

    def _monitor(self, l1: L1SmoothEnergy, from_angles: bool):
        def report(iteration: int, x: npt.NDArray[np.float64]) -> None:
            mat = sh.convert_zyz_to_mat(x).ravel() if from_angles else x
            logger.info(f"ITER {iteration}, L1 smoothness {l1.value(mat):.6e}")
        return report

    def smooth_sh(self, abc: npt.NDArray[np.float64]) -> OptimizationResult:
        """
        Smooth zyz angles in place.

        Args:
            abc: Angles, shape (3n,). Its initial value is the boundary reference.

        Raises:
            ConfigurationError: If ``smooth.type.value`` names an unknown term.
            CompositionError: If the terms cannot be combined.
            OptimizationError: If the optimizer fails.
        """
        if abc.shape[0] != 3 * self.n_elements:
            raise ValueError(f"Expected {3 * self.n_elements} angles, got {abc.shape[0]}.")

        ws = self.options.get_float("weight.smooth.value")
        wp = self.options.get_float("weight.boundary.value")
        abs_eps = self.options.get_float("abs_eps.value")

        kind = self.options.get_str("smooth.type.value", "sh")
        if kind not in SMOOTH_TERMS:
            raise ConfigurationError(f"Unknown smoothness term '{kind}'. Choose one of {sorted(SMOOTH_TERMS)}.")

        terms: list[Functional] = [
            SMOOTH_TERMS[kind].from_mesh(self.tets, self.nodes, weight=ws),
            BoundaryFixEnergy(self.tets, self.nodes, abc, 3, weight=wp),
        ]
        energy = self._compose(terms, "SH")
        l1 = L1SmoothEnergy.from_mesh(self.tets, self.nodes, weight=ws, eps=abs_eps)

        return nonlinear_stage(
            energy, abc, LbfgsOptions.from_options(self.options), monitor=self._monitor(l1, from_angles=True)
        )

    def smooth_l1(self, mat: npt.NDArray[np.float64]) -> OptimizationResult:
        """
        Smooth flattened 3×3 frames in place, then make them orthogonal.

        Args:
            mat: Row-major frames, shape (9n,). Its initial value is the
                boundary reference.

        Raises:
            CompositionError: If the terms cannot be combined.
            OptimizationError: If the optimizer fails.
        """
        if mat.shape[0] != 9 * self.n_elements:
            raise ValueError(f"Expected {9 * self.n_elements} matrix entries, got {mat.shape[0]}.")

        ws = self.options.get_float("weight.smooth.value")
        wo = self.options.get_float("weight.orth.value")
        wp = self.options.get_float("weight.boundary.value")
        abs_eps = self.options.get_float("abs_eps.value")

        l1 = L1SmoothEnergy.from_mesh(self.tets, self.nodes, weight=ws, eps=abs_eps)
        terms: list[Functional] = [
            l1,
            FrameOrthEnergy(self.tets, self.nodes, weight=wo),
            BoundaryFixEnergy(self.tets, self.nodes, mat, 9, weight=wp),
        ]
        energy = self._compose(terms, "L1")

        result = nonlinear_stage(
            energy, mat, LbfgsOptions.from_options(self.options), monitor=self._monitor(l1, from_angles=False)
        )
        mat[:] = orthogonalize_frames(mat)
        return result

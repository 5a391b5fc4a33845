"""
Cross-Frame Field Optimization
==============================
Boundary-aligned, smooth cubic frame field on a tetrahedral mesh.

Pipeline:
1. ``solve_laplacian``: smoothness + alignment over raw SH coefficients is
   quadratic, so one sparse solve gives a smooth coefficient field.
2. ``solve_initial_frames``: project every coefficient vector back to the
   closest rotation (zyz angles).
3. ``optimize_frames``: refine the angles with L-BFGS on the same energy
   restricted to true frames.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from geomopt.analysis import sh
from geomopt.analysis.composite import CompositeEnergy
from geomopt.analysis.energies.align import SHAlignEnergy
from geomopt.analysis.energies.smooth import SHSmoothEnergy
from geomopt.solvers.lbfgs import LbfgsOptions
from geomopt.solvers.linear import DEFAULT_BACKEND
from geomopt.solvers.stages import linear_stage, nonlinear_stage

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.analysis.functional import Functional
    from geomopt.config import OptionTree
    from geomopt.solvers.lbfgs import OptimizationResult

logger = logging.getLogger(__name__)


class CrossFrameOptimizer:
    """
    Driver owning the smoothness and alignment terms of one mesh.
    """

    def __init__(self, tets: npt.ArrayLike, nodes: npt.ArrayLike, options: OptionTree) -> None:
        """
        Build the energy terms.

        Args:
            tets: Tetrahedra, shape (n, 4).
            nodes: Node coordinates, shape (m, 3).
            options: Needs ``weight.smooth.value``, ``weight.align.value``
                and the ``lbfgs.*`` options; ``lins.type.value`` is optional.
        """
        self.tets = np.asarray(tets, dtype=np.int64)
        self.nodes = np.asarray(nodes, dtype=np.float64)
        self.options = options
        self.n_elements = int(self.tets.shape[0])

        ws = options.get_float("weight.smooth.value")
        wa = options.get_float("weight.align.value")
        self.smooth = SHSmoothEnergy.from_mesh(self.tets, self.nodes, weight=ws)
        self.align = SHAlignEnergy(self.tets, self.nodes, weight=wa)
        self.terms: list[Functional] = [self.smooth, self.align]
        logger.info(
            f"Cross-frame terms: {self.smooth.pairs.shape[0]} adjacent pairs, "
            f"{self.align.faces.shape[0]} boundary faces, {self.n_elements} elements."
        )

    def _report(self, stage: str, energy: Functional, terms: list[Functional], x: npt.NDArray[np.float64]) -> None:
        _, g = energy.value_and_gradient(x)
        logger.info(f"[{stage}] smoothness energy: {terms[0].value(x):.6e}")
        logger.info(f"[{stage}] alignment energy: {terms[1].value(x):.6e}")
        logger.info(f"[{stage}] gradient norm: {np.linalg.norm(g):.6e}")

    def solve_laplacian(self) -> npt.NDArray[np.float64]:
        """
        Minimize the coefficient-space energy with one linear solve.

        Returns:
            SH coefficients, shape (9n,).

        Raises:
            LinearSolveError: If the system cannot be solved.
        """
        coeff_terms: list[Functional] = [self.smooth.coefficients(), self.align.coefficients()]
        energy = CompositeEnergy(coeff_terms)
        Fs = np.zeros(energy.nx)
        logger.info(f"Linear solve dimension: {energy.nx}")

        self._report("prev", energy, coeff_terms, Fs)
        backend = self.options.get_str("lins.type.value", DEFAULT_BACKEND)
        linear_stage(energy, Fs, backend=backend)
        self._report("post", energy, coeff_terms, Fs)
        logger.info(f"Solution norm: {np.linalg.norm(Fs):.6e}")
        return Fs

    def solve_initial_frames(self, Fs: npt.ArrayLike, max_iterations: int = 50) -> npt.NDArray[np.float64]:
        """
        Closest zyz frames of a coefficient field.

        Returns:
            Angles, shape (3n,).
        """
        coeffs = np.asarray(Fs, dtype=np.float64)
        if coeffs.size != 9 * self.n_elements:
            raise ValueError(f"Expected {9 * self.n_elements} coefficients, got {coeffs.size}.")
        return sh.sh_to_zyz(coeffs, max_iterations=max_iterations).ravel()

    def optimize_frames(self, abc: npt.NDArray[np.float64]) -> OptimizationResult:
        """
        Refine zyz angles in place with L-BFGS.

        Raises:
            OptimizationError: If the optimizer fails.
        """
        energy = CompositeEnergy(self.terms)
        self._report("prev", energy, self.terms, abc)
        result = nonlinear_stage(energy, abc, LbfgsOptions.from_options(self.options))
        self._report("post", energy, self.terms, abc)
        return result

    def run(self) -> npt.NDArray[np.float64]:
        """
        Full pipeline; returns the optimized angles, shape (3n,).
        """
        abc = self.solve_initial_frames(self.solve_laplacian())
        self.optimize_frames(abc)
        return abc

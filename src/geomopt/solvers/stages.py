"""
Solve Stages
============
The two generic strategies the drivers chain together.

1. ``linear_stage``: one Newton step on an objective that is quadratic in the
   free variables. The Hessian and gradient are assembled at ``x``, pinned
   DOFs are removed, one SPD system is solved and ``x`` is updated in place.
   Exact for quadratic energies; every term must provide a Hessian.
2. ``nonlinear_stage``: L-BFGS on any first-order objective.

Post-processing for frame fields (``orthogonalize_frames``) lives here too.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

import numpy as np

from geomopt.errors import OptimizationError
from geomopt.solvers.assembly import TripletList
from geomopt.solvers.dof import DofReducer
from geomopt.solvers.lbfgs import LbfgsOptimizer, LbfgsOptions, OptimizationResult, OptimizerState
from geomopt.solvers.linear import DEFAULT_BACKEND, LinearSolver

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.analysis.functional import Functional
    from geomopt.solvers.lbfgs import MonitorFn

logger = logging.getLogger(__name__)


def linear_stage(
    energy: Functional,
    x: npt.NDArray[np.float64],
    excluded: Iterable[int] = (),
    backend: str = DEFAULT_BACKEND,
) -> npt.NDArray[np.float64]:
    """
    Minimize a quadratic energy over the free DOFs with one sparse solve.

    Args:
        energy: Objective; every term must support ``hessian``.
        x: Current point, updated in place. Excluded entries are not changed.
        excluded: Global indices of pinned DOFs.
        backend: Linear solver backend name.

    Raises:
        UnsupportedOperationError: If a term has no Hessian.
        LinearSolveError: If the reduced system cannot be factorized or solved.

    Returns:
        ``x`` after the update.
    """
    n = energy.nx
    if x.shape[0] != n:
        raise ValueError(f"x has length {x.shape[0]}, energy expects {n}.")

    triplets = TripletList()
    energy.hessian(x, triplets)
    H = triplets.to_csr((n, n))
    _, g = energy.value_and_gradient(x)

    reducer = DofReducer(n, excluded)
    logger.debug(f"Linear stage: {n} DOFs, {reducer.n_free} free, {len(triplets)} Hessian triplets.")
    if reducer.n_free == 0:
        return x

    solver = LinearSolver(backend)
    solver.factorize(reducer.reduce_matrix(H))
    dx = solver.solve(-reducer.reduce_vector(g))
    x[reducer.free] += dx
    return x


def nonlinear_stage(
    energy: Functional,
    x: npt.NDArray[np.float64],
    options: LbfgsOptions,
    monitor: MonitorFn | None = None,
) -> OptimizationResult:
    """
    Minimize ``energy`` with L-BFGS starting at ``x`` (updated in place).

    Raises:
        OptimizationError: If the optimizer ends in the failed state.

    Returns:
        The optimizer result. Reaching the iteration cap is reported as a
        warning, not an error.
    """
    result = LbfgsOptimizer(energy, options, monitor=monitor).minimize(x)
    if result.state is OptimizerState.FAILED:
        raise OptimizationError(f"L-BFGS failed after {result.iterations} iterations: {result.message}.")
    if result.state is OptimizerState.MAX_ITERATIONS_REACHED:
        logger.warning(
            f"L-BFGS did not converge within {result.iterations} iterations "
            f"(value={result.value:.6e}, |g|={result.gradient_norm:.6e})."
        )
    return result


def orthogonalize_frames(frames: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Replace every 3×3 block by the nearest orthogonal matrix U Vᵀ.

    Args:
        frames: Flattened row-major matrices, shape (n, 9) or (9n,), or (n, 3, 3).

    Returns:
        Orthogonal matrices in the same shape as the input.
    """
    F = np.asarray(frames, dtype=np.float64)
    U, _, Vt = np.linalg.svd(F.reshape(-1, 3, 3))
    return (U @ Vt).reshape(F.shape)

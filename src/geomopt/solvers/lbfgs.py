"""
L-BFGS Minimizer
================
Limited-memory BFGS over any ``Functional`` that provides value and gradient.

Each accepted iterate is evaluated exactly once (value and gradient together);
the strong-Wolfe line search is ``scipy.optimize.line_search``. Stopping rules:

- ``epsf`` (``lbfgs.epsf.value``): converged when ‖g‖ <= epsf
- ``ftol`` (``lbfgs.ftol.value``): converged when
  |f_k - f_{k+1}| <= ftol * max(|f_k|, |f_{k+1}|, 1)
- ``epsx`` (``lbfgs.epsx.value``): converged when ‖x_{k+1} - x_k‖ <= epsx
- a tolerance of zero disables its rule; if all three are zero, epsx = 1e-6

Reaching ``max_iterations`` is a normal terminal state, not an error.
"""
from __future__ import annotations

import logging
import warnings
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np
import scipy as sp

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.analysis.functional import Functional
    from geomopt.config import OptionTree

logger = logging.getLogger(__name__)

AUTO_EPSX = 1e-6

MonitorFn = Callable[[int, "npt.NDArray[np.float64]"], None]


class OptimizerState(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FAILED = "failed"


@dataclass
class LbfgsOptions:
    """
    Stopping rules and memory of the L-BFGS minimizer.

    Attributes:
        epsf: Gradient-norm tolerance.
        ftol: Relative function-decrease tolerance.
        epsx: Step-length tolerance.
        max_iterations: Hard iteration cap (at least 1).
        history: Number of stored correction pairs.
        monitor_every: Iteration period of the monitor hook.
        line_search_iterations: Iteration cap of one line search.
    """
    epsf: float = 0.0
    ftol: float = 0.0
    epsx: float = 0.0
    max_iterations: int = 1000
    history: int = 7
    monitor_every: int = 100
    line_search_iterations: int = 20

    def __post_init__(self) -> None:
        if min(self.epsf, self.ftol, self.epsx) < 0.0:
            raise ValueError("Stopping tolerances must be non-negative.")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {self.max_iterations}.")
        if self.history < 1:
            raise ValueError(f"history must be at least 1, got {self.history}.")
        if self.monitor_every < 1:
            raise ValueError(f"monitor_every must be at least 1, got {self.monitor_every}.")
        if self.epsf == 0.0 and self.ftol == 0.0 and self.epsx == 0.0:
            self.epsx = AUTO_EPSX

    @classmethod
    def from_options(cls, options: OptionTree) -> LbfgsOptions:
        """
        Read ``lbfgs.*`` options. ``epsf`` and ``maxits`` are required.
        """
        return cls(
            epsf=options.get_float("lbfgs.epsf.value"),
            ftol=options.get_float("lbfgs.ftol.value", 0.0),
            epsx=options.get_float("lbfgs.epsx.value", 0.0),
            max_iterations=options.get_int("lbfgs.maxits.value"),
            history=options.get_int("lbfgs.history.value", 7),
            monitor_every=options.get_int("lbfgs.monitor.value", 100),
        )


@dataclass
class OptimizationResult:
    x: npt.NDArray[np.float64]
    value: float
    gradient_norm: float
    iterations: int
    evaluations: int
    state: OptimizerState
    message: str

    @property
    def converged(self) -> bool:
        return self.state is OptimizerState.CONVERGED


class _Evaluator:
    """Evaluates value and gradient together and caches the last point."""

    def __init__(self, functional: Functional) -> None:
        self.functional = functional
        self.evaluations = 0
        self._x: npt.NDArray[np.float64] | None = None
        self._f = 0.0
        self._g: npt.NDArray[np.float64] | None = None

    def __call__(self, x: npt.NDArray[np.float64]) -> tuple[float, npt.NDArray[np.float64]]:
        if self._x is None or not np.array_equal(x, self._x):
            f, g = self.functional.value_and_gradient(x)
            self._x = np.array(x, dtype=np.float64)
            self._f = float(f)
            self._g = g
            self.evaluations += 1
        return self._f, self._g.copy()

    def value(self, x: npt.NDArray[np.float64]) -> float:
        return self(x)[0]

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return self(x)[1]


class LbfgsOptimizer:
    """
    L-BFGS driver with an optional read-only monitor hook.
    """

    def __init__(
        self,
        functional: Functional,
        options: LbfgsOptions | None = None,
        monitor: Optional[MonitorFn] = None,
    ) -> None:
        """
        Initialize the optimizer.

        Args:
            functional: Objective providing ``value_and_gradient``.
            options: Stopping rules; defaults to ``LbfgsOptions()``.
            monitor: Called as ``monitor(iteration, x)`` at iteration 0 and
                every ``options.monitor_every`` iterations. ``x`` is a
                read-only copy and cannot affect the trajectory.
        """
        self.functional = functional
        self.options = options or LbfgsOptions()
        self.monitor = monitor
        self._state = OptimizerState.INITIALIZED

    @property
    def state(self) -> OptimizerState:
        return self._state

    def _notify(self, iteration: int, x: npt.NDArray[np.float64]) -> None:
        if self.monitor is None:
            return
        if iteration % self.options.monitor_every != 0:
            return
        snapshot = x.copy()
        snapshot.flags.writeable = False
        self.monitor(iteration, snapshot)

    @staticmethod
    def _direction(
        g: npt.NDArray[np.float64],
        s_hist: deque,
        y_hist: deque,
    ) -> npt.NDArray[np.float64]:
        """Two-loop recursion: returns -H·g."""
        q = g.copy()
        rhos = [1.0 / np.dot(y, s) for s, y in zip(s_hist, y_hist)]
        alphas = []
        for s, y, rho in zip(reversed(s_hist), reversed(y_hist), reversed(rhos)):
            a = rho * np.dot(s, q)
            q -= a * y
            alphas.append(a)

        if s_hist:
            s, y = s_hist[-1], y_hist[-1]
            q *= np.dot(s, y) / np.dot(y, y)

        for (s, y, rho), a in zip(zip(s_hist, y_hist, rhos), reversed(alphas)):
            b = rho * np.dot(y, q)
            q += (a - b) * s
        return -q

    def minimize(self, x: npt.NDArray[np.float64]) -> OptimizationResult:
        """
        Minimize starting from ``x``; ``x`` is updated in place.

        Args:
            x: Starting point, float64 vector of length ``functional.nx``.

        Returns:
            The final point, value, gradient norm, counters and terminal state.
        """
        if x.dtype != np.float64 or x.ndim != 1:
            raise TypeError("x must be a one-dimensional float64 array.")
        if x.shape[0] != self.functional.nx:
            raise ValueError(f"x has length {x.shape[0]}, functional expects {self.functional.nx}.")

        opts = self.options
        self._state = OptimizerState.INITIALIZED
        evaluator = _Evaluator(self.functional)

        f, g = evaluator(x)
        g_norm = float(np.linalg.norm(g))
        iteration = 0
        message = ""
        self._notify(iteration, x)

        s_hist: deque = deque(maxlen=opts.history)
        y_hist: deque = deque(maxlen=opts.history)
        # Same first-step scaling as scipy's BFGS: initial trial step ~ 1/‖g‖
        old_old_f = f + g_norm / 2.0

        if not (np.isfinite(f) and np.all(np.isfinite(g))):
            self._state = OptimizerState.FAILED
            message = "objective is not finite at the starting point"
        elif g_norm == 0.0 or (opts.epsf > 0.0 and g_norm <= opts.epsf):
            self._state = OptimizerState.CONVERGED
            message = "gradient norm below tolerance"
        else:
            self._state = OptimizerState.ITERATING

        while self._state is OptimizerState.ITERATING:
            if iteration >= opts.max_iterations:
                self._state = OptimizerState.MAX_ITERATIONS_REACHED
                message = f"reached {opts.max_iterations} iterations"
                break

            d = self._direction(g, s_hist, y_hist)
            if np.dot(g, d) >= 0.0:
                s_hist.clear()
                y_hist.clear()
                d = -g

            with warnings.catch_warnings():
                warnings.simplefilter("ignore", RuntimeWarning)
                alpha = sp.optimize.line_search(
                    evaluator.value,
                    evaluator.gradient,
                    x,
                    d,
                    gfk=g,
                    old_fval=f,
                    old_old_fval=old_old_f,
                    maxiter=opts.line_search_iterations,
                )[0]

            if alpha is None:
                if s_hist:
                    logger.debug(f"Line search failed at iteration {iteration}, resetting history.")
                    s_hist.clear()
                    y_hist.clear()
                    old_old_f = f + g_norm / 2.0
                    continue
                self._state = OptimizerState.FAILED
                message = "line search failed along the steepest-descent direction"
                break

            step = alpha * d
            x_new = x + step
            f_new, g_new = evaluator(x_new)

            y = g_new - g
            sy = float(np.dot(step, y))
            if sy > np.finfo(np.float64).eps * float(np.dot(y, y)):
                s_hist.append(step)
                y_hist.append(y)

            f_prev = f
            old_old_f = f
            x[:] = x_new
            f, g = f_new, g_new
            g_norm = float(np.linalg.norm(g))
            iteration += 1
            self._notify(iteration, x)

            if g_norm == 0.0 or (opts.epsf > 0.0 and g_norm <= opts.epsf):
                self._state = OptimizerState.CONVERGED
                message = "gradient norm below tolerance"
            elif opts.ftol > 0.0 and abs(f_prev - f) <= opts.ftol * max(abs(f_prev), abs(f), 1.0):
                self._state = OptimizerState.CONVERGED
                message = "function decrease below tolerance"
            elif opts.epsx > 0.0 and float(np.linalg.norm(step)) <= opts.epsx:
                self._state = OptimizerState.CONVERGED
                message = "step length below tolerance"

        result = OptimizationResult(
            x=x,
            value=float(f),
            gradient_norm=g_norm,
            iterations=iteration,
            evaluations=evaluator.evaluations,
            state=self._state,
            message=message,
        )
        logger.debug(
            f"L-BFGS finished: state={result.state.value}, iterations={result.iterations}, "
            f"evaluations={result.evaluations}, value={result.value:.6e}, |g|={result.gradient_norm:.6e}"
        )
        return result

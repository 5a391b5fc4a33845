"""
Sparse SPD Linear Solver
========================
Direct (and one iterative) solver backends for the symmetric positive
definite systems that arise in the harmonic and quadratic solve stages.

Backends are selected by name (``lins.type.value``):

- ``simplicial``: SuperLU in symmetric mode without pivoting. Every pivot must
  be positive, so this behaves like a simplicial LDLᵀ/Cholesky factorization
  and rejects matrices that are not SPD.
- ``superlu``: general SuperLU LU factorization (no SPD check).
- ``cg``: Jacobi-preconditioned conjugate gradient.
- ``pardiso``: Intel MKL PARDISO through ``pypardiso`` (optional extra).

A failed factorization or solve raises ``LinearSolveError``; there is no retry.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

import numpy as np
import scipy as sp

from geomopt.errors import ConfigurationError, LinearSolveError

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

DEFAULT_BACKEND = "simplicial"
BACKENDS = ("simplicial", "superlu", "cg", "pardiso")


class LinearSolver:
    """
    One factorization, any number of solves.

    The solver object is owned by its caller. Calling ``factorize`` again
    discards the previous factorization.
    """

    def __init__(
        self,
        backend: str = DEFAULT_BACKEND,
        cg_rtol: float = 1e-10,
        cg_maxiter: int | None = None,
    ) -> None:
        """
        Initialize the solver.

        Args:
            backend: Backend name, one of ``BACKENDS``.
            cg_rtol: Relative residual tolerance of the ``cg`` backend.
            cg_maxiter: Iteration cap of the ``cg`` backend (default 10·n).

        Raises:
            ConfigurationError: If the backend is unknown or not installed.
        """
        backend = backend.strip().lower()
        if backend not in BACKENDS:
            raise ConfigurationError(f"Unknown linear solver backend '{backend}'. Choose one of {BACKENDS}.")

        self._pardiso_spsolve: Callable | None = None
        if backend == "pardiso":
            try:
                import pypardiso
            except ImportError as e:
                raise ConfigurationError(
                    "Linear solver backend 'pardiso' requires the 'pypardiso' package."
                ) from e
            self._pardiso_spsolve = pypardiso.spsolve

        self.backend = backend
        self.cg_rtol = cg_rtol
        self.cg_maxiter = cg_maxiter

        self._A: sp.sparse.csc_matrix | None = None
        self._solve: Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]] | None = None

    def __repr__(self) -> str:
        n = None if self._A is None else self._A.shape[0]
        return f"{self.__class__.__name__}(backend='{self.backend}', n={n})"

    @property
    def is_factorized(self) -> bool:
        return self._solve is not None

    def factorize(self, A: sp.sparse.spmatrix) -> None:
        """
        Factorize a square sparse matrix.

        Args:
            A: System matrix, expected symmetric positive definite.

        Raises:
            LinearSolveError: If the matrix is not square, has non-finite
                entries, or the factorization fails.
        """
        self._A = None
        self._solve = None

        if A.shape[0] != A.shape[1]:
            raise LinearSolveError(f"System matrix must be square, got shape {A.shape}.")
        A = sp.sparse.csc_matrix(A, dtype=np.float64)
        if not np.all(np.isfinite(A.data)):
            raise LinearSolveError("System matrix contains non-finite entries.")

        n = A.shape[0]
        logger.debug(f"Factorizing {n}x{n} system with {A.nnz} non-zeros using '{self.backend}'.")

        if n == 0:
            self._A = A
            self._solve = lambda b: np.zeros_like(b)
            return

        if self.backend == "simplicial":
            self._solve = self._factorize_simplicial(A)
        elif self.backend == "superlu":
            try:
                lu = sp.sparse.linalg.splu(A)
            except RuntimeError as e:
                raise LinearSolveError(f"LU factorization failed: {e}") from e
            self._solve = lu.solve
        elif self.backend == "cg":
            self._solve = self._prepare_cg(A)
        else:
            A_csr = A.tocsr()
            self._solve = lambda b: self._pardiso_spsolve(A_csr, b)

        self._A = A

    @staticmethod
    def _factorize_simplicial(A: sp.sparse.csc_matrix) -> Callable:
        try:
            lu = sp.sparse.linalg.splu(
                A,
                permc_spec="MMD_AT_PLUS_A",
                diag_pivot_thresh=0.0,
                options=dict(SymmetricMode=True),
            )
        except RuntimeError as e:
            raise LinearSolveError(f"Cholesky factorization failed: {e}") from e

        # An SPD matrix factors without row exchanges and with positive pivots
        if not np.array_equal(lu.perm_r, lu.perm_c):
            raise LinearSolveError("Cholesky factorization failed: matrix needed pivoting, it is not SPD.")
        pivots = lu.U.diagonal()
        if not np.all(pivots > 0.0):
            raise LinearSolveError(
                f"Cholesky factorization failed: {int(np.sum(pivots <= 0.0))} non-positive pivots, "
                f"matrix is not SPD."
            )
        return lu.solve

    def _prepare_cg(self, A: sp.sparse.csc_matrix) -> Callable:
        A_csr = A.tocsr()
        diag = A_csr.diagonal()
        if not np.all(diag > 0.0):
            raise LinearSolveError("Conjugate gradient requires a positive diagonal.")
        M = sp.sparse.diags(1.0 / diag)
        maxiter = self.cg_maxiter or 10 * A.shape[0]

        def solve(b: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            x, info = sp.sparse.linalg.cg(A_csr, b, rtol=self.cg_rtol, atol=0.0, maxiter=maxiter, M=M)
            if info != 0:
                raise LinearSolveError(f"Conjugate gradient did not converge (info={info}).")
            return x

        return solve

    def solve(self, b: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Solve ``A x = b`` with the current factorization.

        Raises:
            LinearSolveError: If nothing is factorized, the right-hand side
                has the wrong length, or the solution is not finite.
        """
        if self._solve is None or self._A is None:
            raise LinearSolveError("solve() called before a successful factorize().")
        b = np.asarray(b, dtype=np.float64)
        if b.shape[0] != self._A.shape[0]:
            raise LinearSolveError(f"Right-hand side has length {b.shape[0]}, expected {self._A.shape[0]}.")

        x = np.asarray(self._solve(b), dtype=np.float64)
        if not np.all(np.isfinite(x)):
            raise LinearSolveError("Linear solve produced non-finite values.")
        return x


def solve_spd(
    A: sp.sparse.spmatrix,
    b: npt.ArrayLike,
    backend: str = DEFAULT_BACKEND,
) -> npt.NDArray[np.float64]:
    """
    Factorize ``A`` and solve ``A x = b`` once.
    """
    solver = LinearSolver(backend)
    solver.factorize(A)
    return solver.solve(b)

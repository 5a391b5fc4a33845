"""
Degree-of-Freedom Reduction
===========================
Removes pinned entries from a global system and scatters the reduced
solution back. Pinned entries keep the value they had before the solve.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

import numpy as np
import scipy as sp

if TYPE_CHECKING:
    import numpy.typing as npt

EXCLUDED = -1


class DofReducer:
    """
    Global-to-local index map that removes pinned DOFs from a linear system.

    Free DOFs keep their relative order; pinned ones map to ``EXCLUDED``.
    """

    def __init__(self, n: int, excluded: Iterable[int] = ()) -> None:
        """
        Build the map.

        Args:
            n: Total number of DOFs.
            excluded: Global indices to remove. Duplicates are ignored.

        Raises:
            IndexError: If an excluded index is outside [0, n).
        """
        excluded_idx = np.unique(np.fromiter((int(i) for i in excluded), dtype=np.int64))
        if excluded_idx.size and (excluded_idx[0] < 0 or excluded_idx[-1] >= n):
            raise IndexError(f"Excluded DOF outside of [0, {n}).")

        mask = np.ones(n, dtype=bool)
        mask[excluded_idx] = False

        self.n = n
        self.excluded: npt.NDArray[np.int64] = excluded_idx
        self.free: npt.NDArray[np.int64] = np.flatnonzero(mask).astype(np.int64)

        self.global_to_local: npt.NDArray[np.int64] = np.full(n, EXCLUDED, dtype=np.int64)
        self.global_to_local[self.free] = np.arange(self.free.size, dtype=np.int64)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n={self.n}, n_free={self.n_free})"

    @property
    def n_free(self) -> int:
        return int(self.free.size)

    @property
    def is_identity(self) -> bool:
        return self.excluded.size == 0

    def reduce_matrix(self, A: sp.sparse.spmatrix) -> sp.sparse.csr_matrix:
        """Strip rows and columns of excluded DOFs."""
        if A.shape != (self.n, self.n):
            raise ValueError(f"Matrix shape {A.shape} does not match {self.n} DOFs.")
        A = sp.sparse.csr_matrix(A)
        if self.is_identity:
            return A
        return A[self.free][:, self.free].tocsr()

    def reduce_vector(self, b: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Strip entries of excluded DOFs."""
        b = np.asarray(b, dtype=np.float64)
        if b.shape[0] != self.n:
            raise ValueError(f"Vector length {b.shape[0]} does not match {self.n} DOFs.")
        return b[self.free]

    def expand(
        self,
        reduced: npt.ArrayLike,
        full: npt.NDArray[np.float64] | None = None,
    ) -> npt.NDArray[np.float64]:
        """
        Scatter a reduced vector back to full size.

        Args:
            reduced: Values for the free DOFs, length ``n_free``.
            full: Target written in place; excluded entries keep their value.
                A zero vector is used when omitted.

        Returns:
            The full-size vector.
        """
        reduced = np.asarray(reduced, dtype=np.float64)
        if reduced.shape[0] != self.n_free:
            raise ValueError(f"Reduced length {reduced.shape[0]} does not match {self.n_free} free DOFs.")
        if full is None:
            full = np.zeros((self.n,) + reduced.shape[1:], dtype=np.float64)
        full[self.free] = reduced
        return full

"""
Sparse Triplet Assembly
=======================
Collects (row, col, value) triplets from the terms of an energy and turns
them into a CSR matrix. Duplicate entries are summed, so element blocks can
be scattered independently.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy as sp

if TYPE_CHECKING:
    import numpy.typing as npt


class TripletList:
    """
    Growable list of (row, col, value) triplets for sparse assembly.

    Energy terms append their Hessian/Jacobian contributions here; duplicate
    (row, col) pairs are allowed and are summed when the matrix is built.
    """

    def __init__(self) -> None:
        """Initialize an empty triplet list."""
        self._rows: list[npt.NDArray[np.int64]] = []
        self._cols: list[npt.NDArray[np.int64]] = []
        self._vals: list[npt.NDArray[np.float64]] = []
        self._size: int = 0

    def __len__(self) -> int:
        """Number of stored triplets (duplicates included)."""
        return self._size

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_triplets={self._size})"

    def clear(self) -> None:
        self._rows.clear()
        self._cols.clear()
        self._vals.clear()
        self._size = 0

    def add(
        self,
        rows: npt.ArrayLike,
        cols: npt.ArrayLike,
        vals: npt.ArrayLike,
    ) -> None:
        """
        Append triplets.

        Args:
            rows: Row indices.
            cols: Column indices, same length as ``rows``.
            vals: Values, same length as ``rows`` or a scalar.
        """
        r = np.asarray(rows, dtype=np.int64).ravel()
        c = np.asarray(cols, dtype=np.int64).ravel()
        v = np.asarray(vals, dtype=np.float64)
        v = v.ravel() if v.size == r.size else np.broadcast_to(v, r.shape)
        if r.shape != c.shape:
            raise ValueError(f"Row and column index counts differ: {r.size} != {c.size}.")
        if r.size == 0:
            return
        self._rows.append(r)
        self._cols.append(c)
        self._vals.append(np.array(v, dtype=np.float64))
        self._size += r.size

    def add_entry(self, row: int, col: int, val: float) -> None:
        self.add([row], [col], [val])

    def add_block(self, row_offset: int, col_offset: int, block: npt.ArrayLike) -> None:
        """Append a dense block whose top-left corner sits at (row_offset, col_offset)."""
        b = np.atleast_2d(np.asarray(block, dtype=np.float64))
        n_rows, n_cols = b.shape
        r = row_offset + np.repeat(np.arange(n_rows), n_cols)
        c = col_offset + np.tile(np.arange(n_cols), n_rows)
        self.add(r, c, b.ravel(order="C"))

    def add_diag_block(self, left: int, right: int, value: float, size: int) -> None:
        """
        Append ``value * I`` as the (left, right) block of a block matrix with
        square blocks of the given size.
        """
        idx = np.arange(size)
        self.add(size * left + idx, size * right + idx, value)

    def add_element_matrices(
        self,
        element_dofs: npt.ArrayLike,
        local_matrices: npt.ArrayLike,
    ) -> None:
        """
        Scatter per-element square matrices into the global system.

        Args:
            element_dofs: Global DOFs per element, shape (n_elements, k).
            local_matrices: Element matrices, shape (n_elements, k, k); entry
                [e, i, j] lands at (element_dofs[e, i], element_dofs[e, j]).
        """
        dofs = np.atleast_2d(np.asarray(element_dofs, dtype=np.int64))
        local = np.asarray(local_matrices, dtype=np.float64)
        n_dofs = dofs.shape[1]
        if local.shape != (dofs.shape[0], n_dofs, n_dofs):
            raise ValueError(
                f"Local matrices of shape {local.shape} do not match element DOFs {dofs.shape}."
            )

        r = np.repeat(dofs, n_dofs, axis=1)
        c = np.tile(dofs, (1, n_dofs))
        self.add(r, c, local.reshape(dofs.shape[0], n_dofs * n_dofs))

    def arrays(self) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float64]]:
        """Concatenated (rows, cols, vals) arrays."""
        if not self._rows:
            return (
                np.empty(0, dtype=np.int64),
                np.empty(0, dtype=np.int64),
                np.empty(0, dtype=np.float64),
            )
        return np.concatenate(self._rows), np.concatenate(self._cols), np.concatenate(self._vals)

    def to_coo(self, shape: tuple[int, int]) -> sp.sparse.coo_matrix:
        rows, cols, vals = self.arrays()
        if rows.size and (rows.max() >= shape[0] or cols.max() >= shape[1] or min(rows.min(), cols.min()) < 0):
            raise IndexError(f"Triplet index outside of matrix shape {shape}.")
        return sp.sparse.coo_matrix((vals, (rows, cols)), shape=shape, dtype=np.float64)

    def to_csr(self, shape: tuple[int, int]) -> sp.sparse.csr_matrix:
        """
        Build a CSR matrix; duplicate (row, col) entries are summed.
        """
        A = self.to_coo(shape).tocsr()
        A.sum_duplicates()
        return A


def assemble_element_matrices(
    element_dofs: npt.ArrayLike,
    local_matrices: npt.ArrayLike,
    n: int,
) -> sp.sparse.csr_matrix:
    """
    Assemble a global n x n matrix from per-element matrices.

    Args:
        element_dofs: Global DOFs per element, shape (n_elements, k).
        local_matrices: Element matrices, shape (n_elements, k, k).
        n: Number of global DOFs.

    Returns:
        The assembled matrix in CSR form.
    """
    triplets = TripletList()
    triplets.add_element_matrices(element_dofs, local_matrices)
    return triplets.to_csr((n, n))

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy as sp

from geomopt.solvers.assembly import assemble_element_matrices

if TYPE_CHECKING:
    import numpy.typing as npt


def as_points3(nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Node coordinates as an (m, 3) float array; planar (m, 2) input gets z = 0.
    """
    x = np.asarray(nodes, dtype=np.float64)
    if x.ndim != 2 or x.shape[1] not in (2, 3):
        raise ValueError(f"Nodes must have shape (m, 2) or (m, 3), got {x.shape}.")
    if x.shape[1] == 2:
        x = np.column_stack([x, np.zeros(x.shape[0])])
    return x


def tet_edge_matrices(tets: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Edge matrices D = [p1-p0, p2-p0, p3-p0] (edges as columns), shape (n, 3, 3).
    """
    t = np.asarray(tets, dtype=np.int64)
    x = as_points3(nodes)
    p = x[t]
    return np.stack([p[:, 1] - p[:, 0], p[:, 2] - p[:, 0], p[:, 3] - p[:, 0]], axis=2)


def tet_signed_volumes(tets: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    return np.linalg.det(tet_edge_matrices(tets, nodes)) / 6.0


def tet_volumes(tets: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Unsigned tetrahedron volumes, shape (n,)."""
    return np.abs(tet_signed_volumes(tets, nodes))


def tet_centroids(tets: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    t = np.asarray(tets, dtype=np.int64)
    return as_points3(nodes)[t].mean(axis=1)


def triangle_vector_areas(tris: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Area-weighted normals ½ (p1 - p0) × (p2 - p0), shape (n, 3).
    """
    f = np.asarray(tris, dtype=np.int64)
    x = as_points3(nodes)
    p0, p1, p2 = x[f[:, 0]], x[f[:, 1]], x[f[:, 2]]
    return 0.5 * np.cross(p1 - p0, p2 - p0)


def triangle_areas(tris: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    return np.linalg.norm(triangle_vector_areas(tris, nodes), axis=1)


def triangle_normals(tris: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Unit normals, shape (n, 3).

    Raises:
        ValueError: If a triangle is degenerate.
    """
    va = triangle_vector_areas(tris, nodes)
    norm = np.linalg.norm(va, axis=1)
    if np.any(norm <= 0.0):
        raise ValueError(f"{int(np.sum(norm <= 0.0))} degenerate triangle(s) without a normal.")
    return va / norm[:, None]


def barycentric_gradients(tris: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Gradients of the three linear hat functions of every triangle.

    ∇φ_i = n̂ × e_i / (2A), where e_i is the edge opposite vertex i traversed
    counter-clockwise.

    Args:
        tris: Triangles, shape (n, 3).
        nodes: Node coordinates, shape (m, 2) or (m, 3).

    Returns:
        Gradients, shape (n, 3, 3); entry [f, i] is ∇φ_i on triangle f.
    """
    f = np.asarray(tris, dtype=np.int64)
    x = as_points3(nodes)
    p0, p1, p2 = x[f[:, 0]], x[f[:, 1]], x[f[:, 2]]

    va = 0.5 * np.cross(p1 - p0, p2 - p0)
    double_area = 2.0 * np.linalg.norm(va, axis=1)
    if np.any(double_area <= 0.0):
        raise ValueError(f"{int(np.sum(double_area <= 0.0))} degenerate triangle(s).")
    n_hat = 2.0 * va / double_area[:, None]

    edges = np.stack([p2 - p1, p0 - p2, p1 - p0], axis=1)
    return np.cross(n_hat[:, None, :], edges) / double_area[:, None, None]


def gradient_operator(tris: npt.ArrayLike, nodes: npt.ArrayLike) -> sp.sparse.csr_matrix:
    """
    Per-face gradient of piecewise-linear vertex functions.

    Returns:
        Sparse matrix G of shape (3F, V); (G u)[3f:3f+3] is the gradient of u on face f.
    """
    f = np.asarray(tris, dtype=np.int64)
    n_vertices = as_points3(nodes).shape[0]
    grads = barycentric_gradients(f, nodes)

    n_faces = f.shape[0]
    rows = 3 * np.repeat(np.arange(n_faces), 9) + np.tile(np.repeat(np.arange(3), 3), n_faces)
    cols = np.repeat(f, 3, axis=0).ravel()
    # grads[f, i, d] -> row 3f+d, col tris[f, i]
    vals = grads.transpose(0, 2, 1).ravel()
    return sp.sparse.coo_matrix((vals, (rows, cols)), shape=(3 * n_faces, n_vertices)).tocsr()


def cotangent_stiffness(tris: npt.ArrayLike, nodes: npt.ArrayLike) -> sp.sparse.csr_matrix:
    """
    Positive semi-definite cotangent Laplacian K = Gᵀ diag(A) G.

    Element matrices K_e[i, j] = A_e ∇φ_i · ∇φ_j are scattered with the usual
    row/column repetition.

    Returns:
        K in CSR form, shape (V, V).
    """
    f = np.asarray(tris, dtype=np.int64)
    n_vertices = as_points3(nodes).shape[0]
    grads = barycentric_gradients(f, nodes)
    areas = triangle_areas(f, nodes)
    local = areas[:, None, None] * np.einsum("fid,fjd->fij", grads, grads)
    return assemble_element_matrices(f, local, n_vertices)

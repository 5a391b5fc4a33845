from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

# Local faces of a tetrahedron, face i is opposite vertex i. For a positively
# oriented tet (det[p1-p0, p2-p0, p3-p0] > 0) all normals point outward.
TET_FACES = np.array([
    [1, 2, 3],
    [0, 3, 2],
    [0, 1, 3],
    [0, 2, 1],
], dtype=np.int64)


def _as_tets(tets: npt.ArrayLike) -> npt.NDArray[np.int64]:
    t = np.asarray(tets, dtype=np.int64)
    if t.ndim != 2 or t.shape[1] != 4:
        raise ValueError(f"Tetrahedra must have shape (n, 4), got {t.shape}.")
    return t


def tet_faces(tets: npt.ArrayLike) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    """
    All four faces of every tetrahedron.

    Args:
        tets: Tetrahedra, shape (n, 4).

    Returns:
        faces: Face vertex triples, shape (4n, 3), faces of tet t at rows 4t..4t+3.
        owner: Tetrahedron index of every face, shape (4n,).
    """
    t = _as_tets(tets)
    faces = t[:, TET_FACES].reshape(-1, 3)
    owner = np.repeat(np.arange(t.shape[0], dtype=np.int64), 4)
    return faces, owner


def _classify_faces(
    tets: npt.ArrayLike,
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    faces, owner = tet_faces(tets)
    if faces.shape[0] == 0:
        empty = np.empty(0, dtype=np.int64)
        return faces, owner, empty, empty

    keys = np.sort(faces, axis=1)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.ravel()
    if np.any(counts > 2):
        raise ValueError("Non-manifold mesh: a face is shared by more than two tetrahedra.")
    return faces, owner, inverse, counts[inverse]


def interior_face_pairs(tets: npt.ArrayLike) -> npt.NDArray[np.int64]:
    """
    Pairs of tetrahedra sharing a face.

    Args:
        tets: Tetrahedra, shape (n, 4).

    Returns:
        Adjacent tetrahedron pairs (a, b) with a < b, shape (k, 2), sorted.
    """
    _, owner, inverse, multiplicity = _classify_faces(tets)
    idx = np.flatnonzero(multiplicity == 2)
    if idx.size == 0:
        return np.empty((0, 2), dtype=np.int64)

    idx = idx[np.argsort(inverse[idx], kind="stable")]
    pairs = np.sort(owner[idx].reshape(-1, 2), axis=1)
    order = np.lexsort((pairs[:, 1], pairs[:, 0]))
    return pairs[order]


def boundary_faces(
    tets: npt.ArrayLike,
    nodes: npt.ArrayLike,
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    """
    Faces that belong to exactly one tetrahedron, oriented outward.

    Args:
        tets: Tetrahedra, shape (n, 4).
        nodes: Node coordinates, shape (m, 3).

    Returns:
        faces: Boundary triangles, shape (k, 3), normals pointing away from
            the incident tetrahedron.
        incident: Index of the tetrahedron owning each face, shape (k,).
    """
    t = _as_tets(tets)
    x = np.asarray(nodes, dtype=np.float64)
    faces, owner, _, multiplicity = _classify_faces(t)
    idx = np.flatnonzero(multiplicity == 1)
    faces = faces[idx].copy()
    incident = owner[idx]
    if idx.size == 0:
        return faces, incident

    p0, p1, p2 = x[faces[:, 0]], x[faces[:, 1]], x[faces[:, 2]]
    normal = np.cross(p1 - p0, p2 - p0)
    outward = (p0 + p1 + p2) / 3.0 - x[t[incident]].mean(axis=1)
    flip = np.einsum("ij,ij->i", normal, outward) < 0.0
    faces[flip] = faces[flip][:, [0, 2, 1]]
    return faces, incident


def boundary_vertices(tets: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.int64]:
    """Sorted indices of the vertices on the boundary surface."""
    faces, _ = boundary_faces(tets, nodes)
    return np.unique(faces)


def triangle_boundary_vertices(tris: npt.ArrayLike) -> npt.NDArray[np.int64]:
    """
    Sorted indices of the vertices on the boundary of a triangle mesh.

    An edge is on the boundary when exactly one triangle uses it.
    """
    f = np.asarray(tris, dtype=np.int64)
    edges = np.sort(f[:, [[0, 1], [1, 2], [2, 0]]].reshape(-1, 2), axis=1)
    if edges.shape[0] == 0:
        return np.empty(0, dtype=np.int64)
    uniq, counts = np.unique(edges, axis=0, return_counts=True)
    return np.unique(uniq[counts == 1])

"""
Term Weights
============
Per-element and per-pair weights, normalized to sum to one when a term is built.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from geomopt.pre.geometry import tet_centroids, tet_volumes, triangle_areas
from geomopt.pre.topology import boundary_faces, interior_face_pairs

if TYPE_CHECKING:
    import numpy.typing as npt


def normalize_weights(weights: npt.ArrayLike, what: str = "weights") -> npt.NDArray[np.float64]:
    """
    Divide weights by their sum.

    An empty array is returned unchanged, so terms without eligible elements
    contribute zero instead of failing.

    Raises:
        ValueError: If the weights are negative, non-finite or sum to zero.
    """
    w = np.asarray(weights, dtype=np.float64).copy()
    if w.size == 0:
        return w
    if not np.all(np.isfinite(w)) or np.any(w < 0.0):
        raise ValueError(f"{what} must be finite and non-negative.")
    total = w.sum()
    if total <= 0.0:
        raise ValueError(f"{what} sum to zero and cannot be normalized.")
    return w / total


def adjacency_stiffness(
    tets: npt.ArrayLike,
    nodes: npt.ArrayLike,
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float64]]:
    """
    Face-adjacent tetrahedron pairs with normalized stiffness.

    stiffness_ab ∝ (vol_a + vol_b) / |c_a - c_b|², c the centroids.

    Returns:
        pairs: Shape (k, 2).
        stiffness: Shape (k,), sums to one.
    """
    pairs = interior_face_pairs(tets)
    vol = tet_volumes(tets, nodes)
    centroids = tet_centroids(tets, nodes)
    a, b = pairs[:, 0], pairs[:, 1]
    dist2 = np.sum((centroids[a] - centroids[b]) ** 2, axis=1)
    return pairs, normalize_weights((vol[a] + vol[b]) / dist2, "stiffness")


def boundary_face_weights(
    tets: npt.ArrayLike,
    nodes: npt.ArrayLike,
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float64]]:
    """
    Outward boundary faces, their incident tetrahedra and normalized areas.
    """
    faces, incident = boundary_faces(tets, nodes)
    return faces, incident, normalize_weights(triangle_areas(faces, nodes), "boundary areas")


def volume_weights(tets: npt.ArrayLike, nodes: npt.ArrayLike) -> npt.NDArray[np.float64]:
    return normalize_weights(tet_volumes(tets, nodes), "volumes")

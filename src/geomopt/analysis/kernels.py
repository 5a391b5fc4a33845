# kernels.py
from __future__ import annotations

import numpy as np
import numpy.typing as npt
import numba as nb

# ---- JIT'd per-pair / per-element accumulation kernels ----
# Accumulation is sequential so that elements sharing an output row never race.


@nb.njit(cache=True, fastmath=True)
def pair_difference_energy(
    values: npt.NDArray[np.float64],
    pairs: npt.NDArray[np.int64],
    weights: npt.NDArray[np.float64],
) -> float:
    """
    Weighted squared differences Σ_k w_k ‖v[a_k] - v[b_k]‖².

    Args:
        values: Per-element vectors, shape (n, d).
        pairs: Element pairs (a, b), shape (k, 2).
        weights: Pair weights, shape (k,).
    """
    total = 0.0
    d = values.shape[1]
    for k in range(pairs.shape[0]):
        a = pairs[k, 0]
        b = pairs[k, 1]
        s = 0.0
        for j in range(d):
            diff = values[a, j] - values[b, j]
            s += diff * diff
        total += weights[k] * s
    return total


@nb.njit(cache=True, fastmath=True)
def pair_difference_gradient(
    values: npt.NDArray[np.float64],
    pairs: npt.NDArray[np.int64],
    weights: npt.NDArray[np.float64],
    out: npt.NDArray[np.float64],
) -> None:
    """
    Add the gradient of ``pair_difference_energy`` w.r.t. ``values`` to ``out`` (n, d).
    """
    d = values.shape[1]
    for k in range(pairs.shape[0]):
        a = pairs[k, 0]
        b = pairs[k, 1]
        w2 = 2.0 * weights[k]
        for j in range(d):
            g = w2 * (values[a, j] - values[b, j])
            out[a, j] += g
            out[b, j] -= g


@nb.njit(cache=True, fastmath=True)
def pair_l1_energy(
    values: npt.NDArray[np.float64],
    pairs: npt.NDArray[np.int64],
    weights: npt.NDArray[np.float64],
    eps: float,
) -> float:
    """
    Smoothed L1 of pair differences Σ_k w_k (sqrt(‖v[a_k] - v[b_k]‖² + eps) - sqrt(eps)).
    """
    total = 0.0
    root_eps = np.sqrt(eps)
    d = values.shape[1]
    for k in range(pairs.shape[0]):
        a = pairs[k, 0]
        b = pairs[k, 1]
        s = 0.0
        for j in range(d):
            diff = values[a, j] - values[b, j]
            s += diff * diff
        total += weights[k] * (np.sqrt(s + eps) - root_eps)
    return total


@nb.njit(cache=True, fastmath=True)
def pair_l1_gradient(
    values: npt.NDArray[np.float64],
    pairs: npt.NDArray[np.int64],
    weights: npt.NDArray[np.float64],
    eps: float,
    out: npt.NDArray[np.float64],
) -> None:
    """
    Add the gradient of ``pair_l1_energy`` w.r.t. ``values`` to ``out`` (n, d).
    """
    d = values.shape[1]
    for k in range(pairs.shape[0]):
        a = pairs[k, 0]
        b = pairs[k, 1]
        s = 0.0
        for j in range(d):
            diff = values[a, j] - values[b, j]
            s += diff * diff
        scale = weights[k] / np.sqrt(s + eps)
        for j in range(d):
            g = scale * (values[a, j] - values[b, j])
            out[a, j] += g
            out[b, j] -= g


@nb.njit(cache=True, fastmath=True)
def scatter_add_rows(
    out: npt.NDArray[np.float64],
    index: npt.NDArray[np.int64],
    rows: npt.NDArray[np.float64],
) -> None:
    """
    out[index[k]] += rows[k] for every k, with repeated indices accumulated.
    """
    d = out.shape[1]
    for k in range(index.shape[0]):
        i = index[k]
        for j in range(d):
            out[i, j] += rows[k, j]

"""
Smoothness Energies
===================
Penalize differences of the frame encoding between face-adjacent tetrahedra.

- ``SHCoefficientSmoothEnergy``: quadratic, variables are 9 SH coefficients
  per element; provides a Hessian and drives the linear Laplacian stage.
- ``SHSmoothEnergy``: same energy with frames parameterized by zyz angles
  (3 variables per element); first order only.
- ``PolySmoothEnergy``: same value as ``SHSmoothEnergy``, computed from the
  sampled quartic frame functions; first order only.
- ``L1SmoothEnergy``: smoothed L1 norm of the SH difference, frames stored as
  3×3 matrices (9 variables per element).

All of them share the pair table and the normalized stiffness.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from geomopt.analysis import kernels, sh
from geomopt.analysis.energies.weights import adjacency_stiffness, normalize_weights
from geomopt.analysis.functional import Functional, check_length

if TYPE_CHECKING:
    import numpy.typing as npt

    from geomopt.solvers.assembly import TripletList


class PairEnergy(Functional):
    """
    Common state of the adjacency-based smoothness terms.
    """
    #: Variables per element
    var_dim: int = 9

    def __init__(
        self,
        n_elements: int,
        pairs: npt.ArrayLike,
        stiffness: npt.ArrayLike,
        weight: float = 1.0,
        normalize: bool = True,
    ) -> None:
        """
        Initialize from an explicit adjacency table.

        Args:
            n_elements: Number of elements (frames).
            pairs: Element pairs (a, b), shape (k, 2).
            stiffness: Pair stiffness, shape (k,).
            weight: Global weight of the term.
            normalize: Divide the stiffness by its sum.
        """
        p = np.array(pairs, dtype=np.int64).reshape(-1, 2)
        s = np.array(stiffness, dtype=np.float64).ravel()
        if p.shape[0] != s.shape[0]:
            raise ValueError(f"Got {p.shape[0]} pairs and {s.shape[0]} stiffness values.")
        if p.size and (p.min() < 0 or p.max() >= n_elements):
            raise IndexError(f"Pair index outside of [0, {n_elements}).")

        self.n_elements = int(n_elements)
        self.pairs = p
        self.stiffness = normalize_weights(s, "stiffness") if normalize else s
        self.weight = float(weight)
        self.pairs.flags.writeable = False
        self.stiffness.flags.writeable = False

    @classmethod
    def from_mesh(cls, tets: npt.ArrayLike, nodes: npt.ArrayLike, weight: float = 1.0, **kwargs):
        """
        Build the term over the interior faces of a tetrahedral mesh.
        """
        pairs, stiffness = adjacency_stiffness(tets, nodes)
        n_elements = np.asarray(tets).shape[0]
        return cls(n_elements, pairs, stiffness, weight=weight, normalize=False, **kwargs)

    @property
    def nx(self) -> int:
        return self.var_dim * self.n_elements


class SHCoefficientSmoothEnergy(PairEnergy):
    """
    E(F) = w Σ_(a,b) s_ab ‖F_a - F_b‖², F_i the 9 SH coefficients of element i.
    """
    var_dim = 9

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        F = x.reshape(self.n_elements, 9)
        return self.weight * kernels.pair_difference_energy(F, self.pairs, self.stiffness)

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        F = x.reshape(self.n_elements, 9)
        g = np.zeros_like(F)
        kernels.pair_difference_gradient(F, self.pairs, self.stiffness, g)
        out += self.weight * g.ravel()

    def hessian(self, x: npt.NDArray[np.float64], triplets: TripletList) -> None:
        check_length(self, x)
        if self.pairs.shape[0] == 0:
            return
        idx = np.arange(9)
        ra = 9 * self.pairs[:, 0, None] + idx
        rb = 9 * self.pairs[:, 1, None] + idx
        v = np.repeat(2.0 * self.weight * self.stiffness, 9)
        triplets.add(ra, ra, v)
        triplets.add(rb, rb, v)
        triplets.add(ra, rb, -v)
        triplets.add(rb, ra, -v)


class SHSmoothEnergy(PairEnergy):
    """
    E(abc) = w Σ_(a,b) s_ab ‖SH(abc_a) - SH(abc_b)‖² over zyz-angle frames.
    """
    var_dim = 3

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        F = sh.frames_to_sh(sh.zyz_to_frames(x))
        return self.weight * kernels.pair_difference_energy(F, self.pairs, self.stiffness)

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        F, jac = sh.zyz_to_sh(x)
        dF = np.zeros_like(F)
        kernels.pair_difference_gradient(F, self.pairs, self.stiffness, dF)
        out += self.weight * np.einsum("nm,nmk->nk", dF, jac).ravel()

    def coefficients(self) -> SHCoefficientSmoothEnergy:
        """The same energy over raw SH coefficients (quadratic, with Hessian)."""
        return SHCoefficientSmoothEnergy(
            self.n_elements, self.pairs, self.stiffness, weight=self.weight, normalize=False
        )


class PolySmoothEnergy(PairEnergy):
    """
    E(abc) = w Σ_(a,b) s_ab c ∫ (f_a(s) - f_b(s))² ds over zyz-angle frames.

    Works on the quartic frame functions f_R(s) = Σ_i (s · r_i)⁴ directly
    instead of their SH coefficients; c normalizes the identity frame
    function to unit band-4 norm, so the value agrees with ``SHSmoothEnergy``.
    """
    var_dim = 3

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        samples, _ = sh.frame_polynomial_samples(x)
        return self.weight * kernels.pair_difference_energy(samples, self.pairs, self.stiffness)

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        samples, jac = sh.frame_polynomial_samples(x)
        dS = np.zeros_like(samples)
        kernels.pair_difference_gradient(samples, self.pairs, self.stiffness, dS)
        out += self.weight * np.einsum("nq,nqk->nk", dS, jac).ravel()


class L1SmoothEnergy(PairEnergy):
    """
    E(R) = w Σ_(a,b) s_ab (sqrt(‖SH(R_a) - SH(R_b)‖² + ε) - sqrt(ε)),
    R_i the row-major 3×3 frame matrix of element i.
    """
    var_dim = 9

    def __init__(
        self,
        n_elements: int,
        pairs: npt.ArrayLike,
        stiffness: npt.ArrayLike,
        weight: float = 1.0,
        normalize: bool = True,
        eps: float = 1e-3,
    ) -> None:
        if eps <= 0.0:
            raise ValueError(f"eps must be positive, got {eps}.")
        super().__init__(n_elements, pairs, stiffness, weight=weight, normalize=normalize)
        self.eps = float(eps)

    def value(self, x: npt.NDArray[np.float64]) -> float:
        check_length(self, x)
        F = sh.frames_to_sh(x.reshape(self.n_elements, 3, 3))
        return self.weight * kernels.pair_l1_energy(F, self.pairs, self.stiffness, self.eps)

    def gradient(self, x: npt.NDArray[np.float64], out: npt.NDArray[np.float64]) -> None:
        check_length(self, x)
        R = x.reshape(self.n_elements, 3, 3)
        F = sh.frames_to_sh(R)
        dF = np.zeros_like(F)
        kernels.pair_l1_gradient(F, self.pairs, self.stiffness, self.eps, dF)
        out += self.weight * sh.frames_to_sh_vjp(R, dF).ravel()

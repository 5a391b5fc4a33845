"""
Energy Framework
================
Functionals, constraints and the terms built on them.

Why is this package needed?
---------------------------
1. Contracts: ``Functional`` and ``Constraint`` define value / gradient /
   Hessian evaluation over one flat variable vector.
2. Terms: the concrete energies (smoothness, alignment, orthogonality,
   boundary fixing, distortion) precompute their weights once from the mesh.
3. Composition: ``CompositeEnergy`` and ``CompositeConstraint`` sum terms that
   share a variable space and reject incompatible collections up front.

Note: This package is pure NumPy / Numba and never touches mesh files.
"""

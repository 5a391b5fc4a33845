"""
geomopt
=======
Composable energy optimization for mesh deformation and frame fields.

Layers:
    pre: Mesh topology and geometry helpers (pure NumPy).
    analysis: Energy terms, constraints, composites and spherical-harmonic kernels.
    solvers: Sparse assembly, DOF reduction, linear and L-BFGS solve stages.
    drivers: End-to-end pipelines built from the layers above.
"""
__version__ = "0.1.0"

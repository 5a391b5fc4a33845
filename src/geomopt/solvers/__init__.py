"""
Solvers
=======
Sparse triplet assembly, DOF reduction, the SPD linear sub-solver, the L-BFGS
minimizer, and the two solve stages the drivers chain together.
"""

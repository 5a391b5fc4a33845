"""
Drivers
=======
Pipelines that build terms from a mesh and configuration, run the linear and
nonlinear solve stages, and post-process the result.

The driver owns every term it creates; composites only hold references.
"""

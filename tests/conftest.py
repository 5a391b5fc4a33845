import numpy as np
import pytest

from geomopt.config import OptionTree


@pytest.fixture
def cube_mesh():
    """Unit cube split into six tetrahedra around the 0-7 diagonal."""
    nodes = np.array(
        [[x, y, z] for z in (0.0, 1.0) for y in (0.0, 1.0) for x in (0.0, 1.0)]
    )
    tets = np.array([
        [0, 1, 3, 7],
        [0, 1, 5, 7],
        [0, 2, 3, 7],
        [0, 2, 6, 7],
        [0, 4, 5, 7],
        [0, 4, 6, 7],
    ])
    return tets, nodes


@pytest.fixture
def grid_mesh():
    """Planar 5 x 3 vertex grid of width 4 and height 2, two triangles per cell."""
    nx, ny = 5, 3
    xs, ys = np.meshgrid(np.arange(nx, dtype=float), np.arange(ny, dtype=float))
    nodes = np.column_stack([xs.ravel(), ys.ravel()])
    tris = []
    for j in range(ny - 1):
        for i in range(nx - 1):
            v = j * nx + i
            tris.append([v, v + 1, v + nx + 1])
            tris.append([v, v + nx + 1, v + nx])
    return np.array(tris), nodes, nx, ny


@pytest.fixture
def option_data():
    return {
        "weight": {
            "smooth": {"value": 1.0},
            "align": {"value": 1.0},
            "orth": {"value": 10.0},
            "boundary": {"value": 0.01},
            "distortion": {"value": 1.0},
            "area": {"value": 1.0},
        },
        "abs_eps": {"value": 1e-3},
        "lbfgs": {
            "epsf": {"value": 1e-6},
            "ftol": {"value": 1e-9},
            "maxits": {"value": 200},
            "monitor": {"value": 10},
        },
    }


@pytest.fixture
def options(option_data):
    return OptionTree(option_data)

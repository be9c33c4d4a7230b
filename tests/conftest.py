import matplotlib

matplotlib.use("Agg")

import pytest

from hpheat.config import DEFAULT_MESH_PATH
from hpheat.fea.pre.mesh import Mesh
from hpheat.fea.pre.mesh_reader import MeshReaderXML


@pytest.fixture
def unit_square() -> Mesh:
    """One bilinear quad on [0, 1]^2 with a marker per side."""
    mesh = Mesh()
    for x, y in [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]:
        mesh.add_node(x, y)
    mesh.add_element([0, 1, 2, 3], "Steel")
    mesh.add_boundary_edge(0, 1, "Bottom")
    mesh.add_boundary_edge(1, 2, "Right")
    mesh.add_boundary_edge(2, 3, "Top")
    mesh.add_boundary_edge(3, 0, "Left")
    return mesh


@pytest.fixture
def mixed_mesh() -> Mesh:
    """
    Rectangle [0, 2] x [0, 1]: a quad in region "Left" and two triangles in
    region "Right", the whole boundary marked "Wall".
    """
    mesh = Mesh()
    for x, y in [(0.0, 0.0), (1.0, 0.0), (2.0, 0.0), (0.0, 1.0), (1.0, 1.0), (2.0, 1.0)]:
        mesh.add_node(x, y)
    mesh.add_element([0, 1, 4, 3], "Left")
    mesh.add_element([1, 2, 5], "Right")
    mesh.add_element([1, 5, 4], "Right")
    for a, b in [(0, 1), (1, 2), (2, 5), (5, 4), (4, 3), (3, 0)]:
        mesh.add_boundary_edge(a, b, "Wall")
    return mesh


@pytest.fixture
def domain_mesh() -> Mesh:
    """The bundled two-material L-shaped domain."""
    return MeshReaderXML().load(DEFAULT_MESH_PATH)


@pytest.fixture
def domain_markers() -> list[str]:
    return ["Bottom", "Inner", "Outer", "Left"]

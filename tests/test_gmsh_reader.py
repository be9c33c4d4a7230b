import pytest

gmsh = pytest.importorskip("gmsh")

from hpheat.fea.analysis.space import H1Space
from hpheat.fea.pre.boundary_conditions import ConstantEssentialBC
from hpheat.fea.pre.mesh_reader import MeshReaderGmsh, load_mesh


@pytest.fixture
def msh_file(tmp_path):
    path = tmp_path / "plate.msh"
    gmsh.initialize()
    try:
        gmsh.option.set_number("General.Terminal", 0)
        gmsh.model.add("plate")
        points = [gmsh.model.geo.add_point(x, y, 0.0, 0.5) for x, y in [(0, 0), (2, 0), (2, 1), (0, 1)]]
        lines = [gmsh.model.geo.add_line(points[i], points[(i + 1) % 4]) for i in range(4)]
        loop = gmsh.model.geo.add_curve_loop(lines)
        surface = gmsh.model.geo.add_plane_surface([loop])
        gmsh.model.geo.synchronize()

        plate = gmsh.model.add_physical_group(2, [surface])
        gmsh.model.set_physical_name(2, plate, "Plate")
        bottom = gmsh.model.add_physical_group(1, [lines[0]])
        gmsh.model.set_physical_name(1, bottom, "Bottom")
        wall = gmsh.model.add_physical_group(1, lines[1:])
        gmsh.model.set_physical_name(1, wall, "Wall")

        gmsh.model.mesh.generate(2)
        gmsh.write(str(path))
    finally:
        gmsh.finalize()
    return path


def test_load_gmsh_mesh(msh_file):
    mesh = load_mesh(msh_file)
    assert mesh.regions == ["Plate"]
    assert set(mesh.boundary_markers) == {"Bottom", "Wall"}
    assert mesh.get_num_active_elements() > 4

    space = H1Space(mesh, ConstantEssentialBC(["Bottom", "Wall"], 0.0), p_init=2)
    assert space.get_num_dofs() == (
        space.get_vertex_functions_count() + space.get_edge_functions_count() + space.get_bubble_functions_count()
    )


def test_missing_gmsh_file(tmp_path):
    from hpheat.errors import MeshIOError

    with pytest.raises(MeshIOError):
        MeshReaderGmsh().load(tmp_path / "missing.msh")

import meshio
import numpy as np
import pytest

from hpheat.errors import MeshIOError
from hpheat.fea.analysis.solution import Solution
from hpheat.fea.analysis.space import H1Space
from hpheat.fea.post.linearizer import Linearizer, Orderizer, quad_lattice, triangle_lattice
from hpheat.fea.pre.boundary_conditions import ConstantEssentialBC
from hpheat.fea.pre.weak_form import WeakFormPoisson
from hpheat.fea.solvers.solver import LinearSolver


@pytest.fixture
def solved(domain_mesh, domain_markers):
    domain_mesh.refine_in_area("Aluminum")
    space = H1Space(domain_mesh, ConstantEssentialBC(domain_markers, 20.0), p_init=2)
    for i, element in enumerate(domain_mesh.active_elements()):
        space.set_element_order(element.id, i % 4 + 1)
    vector = LinearSolver(WeakFormPoisson({"Aluminum": 236.0, "Copper": 386.0}, 5e2), space).solve()
    return space, Solution.vector_to_solution(vector, space)


def test_reference_lattices():
    points, triangles = triangle_lattice(2)
    assert points.shape == (6, 2)
    assert triangles.shape == (4, 3)

    points, quads = quad_lattice(3)
    assert points.shape == (16, 2)
    assert quads.shape == (9, 4)
    assert points.min() == -1.0 and points.max() == 1.0


def test_linearize(solved):
    space, sln = solved
    data = Linearizer().linearize(sln, refinement=2)

    n_cells = sum(len(conn) for _, conn in data.cell_blocks())
    assert n_cells == 4 * space.mesh.get_num_active_elements()
    assert data.points.shape == (data.values.size, 3)
    np.testing.assert_array_equal(data.points[:, 2], 0.0)
    assert np.isclose(data.values, 20.0).any() and data.values.max() > 20.0

    data_3d = Linearizer().linearize(sln, refinement=2, mode_3d=True)
    np.testing.assert_allclose(data_3d.points[:, 2], data_3d.values)

    with pytest.raises(ValueError):
        Linearizer().linearize(sln, refinement=0)


def test_vtk_files_read_back(solved, tmp_path):
    space, sln = solved
    Linearizer().save_solution_vtk(sln, tmp_path / "sln.vtk", "Temperature")
    orderizer = Orderizer()
    orderizer.save_mesh_vtk(space, tmp_path / "mesh.vtk")
    orderizer.save_orders_vtk(space, tmp_path / "ord.vtk")

    solution_mesh = meshio.read(tmp_path / "sln.vtk")
    assert solution_mesh.point_data["Temperature"].shape == (len(solution_mesh.points),)
    assert np.isclose(solution_mesh.point_data["Temperature"], 20.0).any()

    n_active = space.mesh.get_num_active_elements()
    order_mesh = meshio.read(tmp_path / "ord.vtk")
    orders = np.concatenate(order_mesh.cell_data["order"])
    assert orders.size == n_active
    assert sorted(orders.tolist()) == sorted(space.get_element_orders().values())

    region_mesh = meshio.read(tmp_path / "mesh.vtk")
    regions = np.concatenate(region_mesh.cell_data["region"])
    assert set(regions.tolist()) == {0, 1}
    assert len(region_mesh.points) == space.mesh.get_num_vertices()


def test_vtk_write_error_is_reported(solved, tmp_path):
    _, sln = solved
    blocker = tmp_path / "file.txt"
    blocker.write_text("not a directory")
    with pytest.raises(MeshIOError):
        Linearizer().save_solution_vtk(sln, blocker / "sln.vtk")


def test_view_grids(solved):
    pytest.importorskip("pyvista")
    from hpheat.fea.post.views import OrderView, ScalarView, WinGeom

    space, sln = solved
    grid = ScalarView.build_grid(sln, "Temperature", refinement=1)
    assert grid.n_cells == space.mesh.get_num_active_elements()
    assert "Temperature" in grid.point_data

    grid = OrderView.build_grid(space)
    assert grid.n_cells == space.mesh.get_num_active_elements()
    assert sorted(grid.cell_data["order"].tolist()) == sorted(space.get_element_orders().values())

    view = ScalarView("Solution", WinGeom(50, 50, 1000, 800))
    assert view.plotter is None
    view.wait_for_close()


class RecordingRenderWindow:
    def __init__(self):
        self.position = None

    def SetPosition(self, x, y):
        self.position = (x, y)


class RecordingPlotter:
    def __init__(self, title=None, window_size=None):
        self.title = title
        self.window_size = window_size
        self.ren_win = RecordingRenderWindow()

    def set_background(self, color):
        self.background = color

    def enable_parallel_projection(self):
        self.parallel = True

    def close(self):
        self.closed = True


def test_window_geometry_is_applied(monkeypatch):
    pv = pytest.importorskip("pyvista")
    from hpheat.fea.post.views import OrderView, WinGeom

    monkeypatch.setattr(pv, "Plotter", RecordingPlotter)
    view = OrderView("Orders", WinGeom(120, 80, 640, 480))
    plotter = view._create_plotter()

    assert plotter.title == "Orders"
    assert plotter.window_size == [640, 480]
    assert plotter.ren_win.position == (120, 80)

    view.plotter = plotter
    view.wait_for_close()
    assert plotter.closed and view.plotter is None

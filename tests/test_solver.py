import numba as nb
import numpy as np
import pytest

from hpheat.errors import ConfigError, SolverError, StateError
from hpheat.fea.analysis.solution import Solution
from hpheat.fea.analysis.space import H1Space
from hpheat.fea.pre.boundary_conditions import ConstantEssentialBC, FunctionEssentialBC
from hpheat.fea.pre.weak_form import WeakFormPoisson
from hpheat.fea.solvers.solver import LinearSolver, set_num_threads


def exact(x, y):
    return x ** 2 + 2.0 * y ** 2 + x * y


def exact_gradient(x, y):
    return np.array([2.0 * x + y, 4.0 * y + x])


def quadratic_problem(mesh):
    # -div(grad u) = -6 for the quadratic above
    weak_form = WeakFormPoisson({"Left": 1.0, "Right": 1.0}, volume_heat_source=-6.0)
    space = H1Space(mesh, FunctionEssentialBC("Wall", exact), p_init=2)
    return weak_form, space


def sample_points(seed=3, n=25):
    rng = np.random.default_rng(seed)
    return np.column_stack((rng.uniform(0.01, 1.99, n), rng.uniform(0.01, 0.99, n)))


def assert_reproduces_exact(space, weak_form):
    solver = LinearSolver(weak_form, space)
    vector = solver.solve()
    assert vector.shape == (space.get_num_dofs(),)

    sln = Solution.vector_to_solution(vector, space)
    points = sample_points()
    np.testing.assert_allclose(sln.evaluate(points), exact(points[:, 0], points[:, 1]), atol=1e-9)
    np.testing.assert_allclose(sln.get_pt_gradient(0.3, 0.7), exact_gradient(0.3, 0.7), atol=1e-8)


def test_quadratic_solution_is_reproduced(mixed_mesh):
    weak_form, space = quadratic_problem(mixed_mesh)
    assert_reproduces_exact(space, weak_form)


def test_quadratic_solution_is_reproduced_with_hanging_vertices(mixed_mesh):
    mixed_mesh.refine_element(0)
    # refine the child at vertex 1 again: two levels of hanging vertices on edge (1, 4)
    child = next(c for c in mixed_mesh.elements[0].children if 1 in mixed_mesh.elements[c].vertices)
    mixed_mesh.refine_element(child)

    weak_form, space = quadratic_problem(mixed_mesh)
    assert any(space.is_hanging_vertex(v) for e in mixed_mesh.active_elements() for v in e.vertices)
    assert_reproduces_exact(space, weak_form)

    rng = np.random.default_rng(11)
    for element in mixed_mesh.active_elements():
        space.set_element_order(element.id, int(rng.integers(2, 6)))
    assert_reproduces_exact(space, weak_form)


def test_heat_flux_boundary(unit_square):
    weak_form = WeakFormPoisson({"Steel": 1.0}, heat_fluxes={"Right": 1.0})
    space = H1Space(unit_square, ConstantEssentialBC("Left", 0.0), p_init=2)
    sln = Solution.vector_to_solution(LinearSolver(weak_form, space).solve(), space)
    assert sln.get_pt_value(0.7, 0.4) == pytest.approx(0.7, abs=1e-10)


def test_convective_boundary(unit_square):
    weak_form = WeakFormPoisson({"Steel": 1.0}, convection={"Right": (1.0, 3.0)})
    space = H1Space(unit_square, ConstantEssentialBC("Left", 0.0), p_init=2)
    sln = Solution.vector_to_solution(LinearSolver(weak_form, space).solve(), space)
    # u = c x with c = 3 - c
    assert sln.get_pt_value(1.0, 0.5) == pytest.approx(1.5, abs=1e-10)
    assert sln.get_pt_value(0.2, 0.9) == pytest.approx(0.3, abs=1e-10)


def test_two_material_domain(domain_mesh, domain_markers):
    domain_mesh.refine_in_areas(["Aluminum", "Copper"], 1)
    weak_form = WeakFormPoisson({"Aluminum": 236.0, "Copper": 386.0}, volume_heat_source=5e2)
    space = H1Space(domain_mesh, ConstantEssentialBC(domain_markers, 20.0), p_init=2)

    vector = LinearSolver(weak_form, space).solve()
    assert vector.shape == (space.get_num_dofs(),)
    assert np.all(np.isfinite(vector))

    sln = Solution.vector_to_solution(vector, space)
    assert sln.get_pt_value(0.5, -0.5) > 20.0
    assert sln.get_pt_value(-0.5, 0.5) > 20.0
    assert sln.get_pt_value(1.0, -0.5) == pytest.approx(20.0)


def test_conjugate_gradients_match_direct_solver(domain_mesh, domain_markers):
    weak_form = WeakFormPoisson({"Aluminum": 236.0, "Copper": 386.0}, volume_heat_source=5e2)
    space = H1Space(domain_mesh, ConstantEssentialBC(domain_markers, 20.0), p_init=3)

    direct = LinearSolver(weak_form, space).solve()
    iterative = LinearSolver(weak_form, space, solver_type="cg", tolerance=1e-12).solve()
    np.testing.assert_allclose(iterative, direct, rtol=1e-7, atol=1e-9)


def test_non_convergence_raises_solver_error(domain_mesh, domain_markers):
    domain_mesh.refine_all_elements()
    weak_form = WeakFormPoisson({"Aluminum": 236.0, "Copper": 386.0}, volume_heat_source=5e2)
    space = H1Space(domain_mesh, ConstantEssentialBC(domain_markers, 20.0), p_init=3)

    solver = LinearSolver(weak_form, space, solver_type="cg", max_iterations=1)
    with pytest.raises(SolverError):
        solver.solve()
    with pytest.raises(StateError):
        solver.get_sln_vector()


def test_solution_vector_requires_solve(domain_mesh):
    solver = LinearSolver(WeakFormPoisson({"Aluminum": 1.0, "Copper": 1.0}), H1Space(domain_mesh, p_init=1))
    with pytest.raises(StateError):
        solver.get_sln_vector()


def test_region_and_marker_mismatch(domain_mesh, domain_markers):
    space = H1Space(domain_mesh, ConstantEssentialBC(domain_markers, 20.0), p_init=1)
    with pytest.raises(ConfigError):
        LinearSolver(WeakFormPoisson({"Aluminum": 236.0}), space).solve()
    with pytest.raises(ConfigError):
        LinearSolver(WeakFormPoisson({"Aluminum": 1.0, "Copper": 1.0, "Steel": 1.0}), space).solve()
    with pytest.raises(ConfigError):
        LinearSolver(WeakFormPoisson({"Aluminum": 1.0, "Copper": 1.0}, heat_fluxes={"Top": 1.0}), space).solve()
    with pytest.raises(ConfigError):
        LinearSolver(WeakFormPoisson({"Aluminum": 1.0, "Copper": 1.0}), space, solver_type="gmres")


def test_assembled_matrix_is_symmetric(domain_mesh, domain_markers):
    domain_mesh.refine_in_area("Aluminum")
    space = H1Space(domain_mesh, ConstantEssentialBC(domain_markers, 20.0), p_init=3)
    matrix, rhs = LinearSolver(WeakFormPoisson({"Aluminum": 236.0, "Copper": 386.0}), space).assemble()
    assert matrix.shape == (space.get_num_dofs(),) * 2
    assert abs(matrix - matrix.T).max() < 1e-9 * abs(matrix).max()
    assert rhs.shape == (space.get_num_dofs(),)


def test_set_num_threads():
    assert set_num_threads(10_000) == nb.config.NUMBA_NUM_THREADS
    assert set_num_threads(1) == 1
    with pytest.raises(ConfigError):
        set_num_threads(0)

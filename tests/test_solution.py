import numpy as np
import pytest

from hpheat.fea.analysis.solution import Solution
from hpheat.fea.analysis.space import H1Space
from hpheat.fea.pre.boundary_conditions import ConstantEssentialBC
from hpheat.fea.pre.weak_form import WeakFormPoisson
from hpheat.fea.solvers.solver import LinearSolver


@pytest.fixture
def solved_domain(domain_mesh, domain_markers):
    domain_mesh.refine_all_elements()
    space = H1Space(domain_mesh, ConstantEssentialBC(domain_markers, 20.0), p_init=2)
    weak_form = WeakFormPoisson({"Aluminum": 236.0, "Copper": 386.0}, volume_heat_source=5e2)
    vector = LinearSolver(weak_form, space).solve()
    return space, vector


def test_vector_length_must_match_space(solved_domain):
    space, vector = solved_domain
    with pytest.raises(ValueError):
        Solution.vector_to_solution(vector[:-1], space)
    with pytest.raises(ValueError):
        Solution.vector_to_solution(np.zeros((vector.size, 1)), space)


def test_reconstruction_is_deterministic(solved_domain):
    space, vector = solved_domain
    first = Solution.vector_to_solution(vector, space)
    second = Solution.vector_to_solution(vector, space)
    points = [(0.5, -0.5), (-0.5, 0.5), (0.2, 0.3), (0.0, 0.0)]
    np.testing.assert_array_equal(first.evaluate(points), second.evaluate(points))


def test_boundary_values_and_outside_points(solved_domain):
    space, vector = solved_domain
    sln = Solution.vector_to_solution(vector, space)

    assert sln.get_pt_value(0.5, -1.0) == pytest.approx(20.0)
    assert sln.get_pt_value(-1.0, 0.5) == pytest.approx(20.0)
    assert sln.get_pt_value(0.5, -0.5) > 20.0

    with pytest.raises(ValueError):
        sln.get_pt_value(-0.5, -0.5)
    with pytest.raises(ValueError):
        sln.get_pt_value(5.0, 5.0)


def test_out_solution_is_overwritten(solved_domain):
    space, vector = solved_domain
    sln = Solution.vector_to_solution(vector, space)
    returned = Solution.vector_to_solution(np.zeros_like(vector), space, out_solution=sln)

    assert returned is sln
    # only the Dirichlet lift remains: 20 on the boundary, 0 at interior vertices
    assert sln.get_pt_value(0.5, -1.0) == pytest.approx(20.0)
    assert sln.get_pt_value(0.5, -0.5) == pytest.approx(0.0, abs=1e-12)


def test_solution_survives_space_changes(solved_domain):
    space, vector = solved_domain
    sln = Solution.vector_to_solution(vector, space)
    before = sln.get_pt_value(0.3, -0.6)

    space.set_uniform_order(4)
    assert space.get_num_dofs() != vector.size
    assert sln.get_pt_value(0.3, -0.6) == before


def test_element_values_and_gradients(solved_domain):
    space, vector = solved_domain
    sln = Solution.vector_to_solution(vector, space)
    element_id = next(iter(sln.elements))
    fe = sln.elements[element_id].finite_element

    ref = fe.REFERENCE_VERTICES.mean(axis=0)
    x, y = fe.map_to_physical(ref[None, :])[0]
    assert sln.get_element_values(element_id, ref)[0] == pytest.approx(sln.get_pt_value(x, y))
    np.testing.assert_allclose(sln.get_element_gradients(element_id, ref)[0], sln.get_pt_gradient(x, y))

    with pytest.raises(KeyError):
        sln.get_element_values(-1, ref)

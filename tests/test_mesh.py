import numpy as np
import pytest

from hpheat.errors import ConfigError, StateError
from hpheat.fea.pre.mesh import Mesh, edge_key


def test_domain_topology(domain_mesh):
    assert domain_mesh.get_num_vertices() == 8
    assert domain_mesh.get_num_active_elements() == 4
    assert domain_mesh.regions == ["Copper", "Aluminum"]
    assert set(domain_mesh.boundary_markers) == {"Bottom", "Inner", "Outer", "Left"}
    assert domain_mesh.get_num_elements_in_region("Copper") == 2
    assert domain_mesh.get_num_elements_in_region("Aluminum") == 2
    assert domain_mesh.get_boundary_marker(7, 4) == "Outer"
    assert domain_mesh.get_boundary_marker(3, 4) is None


def test_refining_region_leaves_other_regions_unchanged(domain_mesh):
    seq = domain_mesh.seq
    domain_mesh.refine_in_area("Aluminum")
    assert domain_mesh.get_num_elements_in_region("Aluminum") == 8
    assert domain_mesh.get_num_elements_in_region("Copper") == 2
    assert domain_mesh.seq > seq

    domain_mesh.refine_in_areas(["Aluminum", "Copper"], 2)
    assert domain_mesh.get_num_elements_in_region("Aluminum") == 128
    assert domain_mesh.get_num_elements_in_region("Copper") == 32


def test_uniform_refinement_shares_midpoints(domain_mesh):
    domain_mesh.refine_all_elements()
    # 8 vertices + 11 edge midpoints + 2 quad centres
    assert domain_mesh.get_num_vertices() == 21
    assert domain_mesh.get_num_active_elements() == 16
    assert domain_mesh.get_num_elements() == 20
    assert all(not element.active for element in domain_mesh.elements[:4])


def test_children_inherit_region_markers_and_arcs(domain_mesh):
    domain_mesh.refine_element(1)  # triangle (3, 4, 7) with the arc 4 -> 7
    children = domain_mesh.elements[1].children
    assert len(children) == 4
    assert all(domain_mesh.elements[c].region == "Copper" for c in children)
    assert all(domain_mesh.elements[c].parent == 1 for c in children)

    mid = domain_mesh.get_edge_midpoint(edge_key(4, 7))
    assert np.linalg.norm(domain_mesh.nodes[mid].coords) == pytest.approx(1.0)
    np.testing.assert_allclose(
        np.degrees(np.arctan2(domain_mesh.nodes[mid].y, domain_mesh.nodes[mid].x)), 22.5
    )
    assert domain_mesh.get_boundary_marker(4, mid) == "Outer"
    assert domain_mesh.get_boundary_marker(mid, 7) == "Outer"
    assert edge_key(4, mid) in domain_mesh.arcs

    # refining the sub-edge keeps the new vertex on the circle
    child = next(c for c in children if 4 in domain_mesh.elements[c].vertices)
    domain_mesh.refine_element(child)
    sub_mid = domain_mesh.get_edge_midpoint(edge_key(4, mid))
    assert np.linalg.norm(domain_mesh.nodes[sub_mid].coords) == pytest.approx(1.0)


def test_refine_towards_boundary(domain_mesh):
    domain_mesh.refine_towards_boundary("Bottom")
    assert domain_mesh.get_num_active_elements() == 7
    assert not domain_mesh.elements[0].active


def test_invalid_refinements(domain_mesh):
    with pytest.raises(ConfigError):
        domain_mesh.refine_in_area("Steel")
    with pytest.raises(ConfigError):
        domain_mesh.refine_towards_boundary("Top")
    domain_mesh.refine_element(0)
    with pytest.raises(ConfigError):
        domain_mesh.refine_element(0)
    with pytest.raises(ConfigError):
        domain_mesh.refine_element(99)
    with pytest.raises(ConfigError):
        domain_mesh.refine_element(2, refinement_type=1)


def test_clockwise_elements_are_reordered():
    mesh = Mesh()
    for x, y in [(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)]:
        mesh.add_node(x, y)
    mesh.add_element([0, 2, 1], "A")
    assert mesh.elements[0].vertices == (0, 1, 2)


def test_construction_errors(unit_square):
    with pytest.raises(ValueError):
        unit_square.add_boundary_edge(0, 2, "Diagonal")
    with pytest.raises(ValueError):
        unit_square.add_element([0, 1, 7], "A")
    with pytest.raises(ValueError):
        unit_square.add_arc(0, 1, 400.0)
    unit_square.refine_all_elements()
    with pytest.raises(StateError):
        unit_square.add_node(5.0, 5.0)


def test_copy_from_is_deep(domain_mesh):
    copy = Mesh()
    copy.copy_from(domain_mesh)
    domain_mesh.refine_all_elements()
    domain_mesh.nodes[0].coords[0] = 42.0

    assert copy.get_num_active_elements() == 4
    assert copy.nodes[0].x == 0.0

    domain_mesh.free()
    assert copy.get_num_vertices() == 8


def test_freed_mesh_cannot_be_used(domain_mesh):
    domain_mesh.free()
    assert domain_mesh.is_freed
    with pytest.raises(StateError):
        domain_mesh.active_elements()
    with pytest.raises(StateError):
        domain_mesh.refine_in_area("Copper")


def test_plot_returns_figure(domain_mesh):
    import matplotlib.pyplot as plt

    domain_mesh.refine_in_area("Aluminum")
    fig = domain_mesh.plot(show=False)
    assert fig.axes
    plt.close(fig)

import numpy as np
import pytest

from hpheat.errors import FileFormatError, MeshIOError
from hpheat.fea.pre.mesh_reader import MeshReaderXML, evaluate_expression, load_mesh

VALID_HEADER = '<?xml version="1.0"?>\n<mesh:mesh xmlns:mesh="XMLMesh">'


def write(tmp_path, text, name="mesh.xml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def square_document(elements='<mesh:q v1="0" v2="1" v3="2" v4="3" m="Plate"/>', extra=""):
    return f"""{VALID_HEADER}
  <variables><var name="L" value="2.0"/><var name="H" value="L / 2"/></variables>
  <vertices>
    <v x="0" y="0" i="0"/><v x="L" y="0" i="1"/><v x="L" y="H" i="2"/><v x="0" y="H" i="3"/>
  </vertices>
  <elements>{elements}</elements>
  <edges><ed v1="0" v2="1" m="Bottom"/><ed v1="2" v2="3" m="Top"/></edges>
  {extra}
</mesh:mesh>"""


def test_evaluate_expression():
    assert evaluate_expression("2*a + sqrt(4)", {"a": 1.0}) == pytest.approx(4.0)
    assert evaluate_expression("-cos(pi)", {}) == pytest.approx(1.0)
    with pytest.raises(FileFormatError):
        evaluate_expression("b + 1", {"a": 1.0})
    with pytest.raises(FileFormatError):
        evaluate_expression("__import__('os')", {})
    with pytest.raises(FileFormatError):
        evaluate_expression("1 / 0", {})


def test_load_with_variables(tmp_path):
    mesh = MeshReaderXML().load(write(tmp_path, square_document()))
    np.testing.assert_allclose(mesh.coordinates, [[0, 0], [2, 0], [2, 1], [0, 1]])
    assert mesh.regions == ["Plate"]
    assert mesh.boundary_markers == ["Bottom", "Top"]


def test_missing_file_raises_mesh_io_error(tmp_path):
    with pytest.raises(MeshIOError) as info:
        MeshReaderXML().load(tmp_path / "missing.xml")
    assert isinstance(info.value, OSError)
    with pytest.raises(MeshIOError):
        load_mesh(tmp_path / "missing.txt")


@pytest.mark.parametrize("text", [
    "this is not xml",
    '<?xml version="1.0"?><domain></domain>',
    f"{VALID_HEADER}<vertices><v x='0' y='0' i='0'/></vertices><edges/></mesh:mesh>",
    square_document(elements='<mesh:t v1="0" v2="1" v3="9" m="Plate"/>'),
    square_document(elements='<mesh:t v1="0" v2="1" v3="1" m="Plate"/>'),
    square_document(elements='<mesh:p v1="0" v2="1" v3="2" m="Plate"/>'),
    square_document(extra='<curves><nurbs v1="0" v2="1"/></curves>'),
    square_document(extra='<refinements><ref element_id="5" refinement_type="0"/></refinements>'),
])
def test_malformed_documents_raise_file_format_error(tmp_path, text):
    with pytest.raises(FileFormatError):
        MeshReaderXML().load(write(tmp_path, text))


def test_unknown_extension(tmp_path):
    with pytest.raises(FileFormatError):
        load_mesh(write(tmp_path, square_document(), name="mesh.txt"))


def test_refinements_section_is_replayed(tmp_path):
    extra = '<refinements><ref element_id="0" refinement_type="0"/></refinements>'
    mesh = MeshReaderXML().load(write(tmp_path, square_document(extra=extra)))
    assert mesh.get_num_active_elements() == 4
    assert mesh.get_boundary_marker(0, mesh.get_edge_midpoint((0, 1))) == "Bottom"


def test_save_and_reload_reproduces_refined_mesh(tmp_path, domain_mesh):
    domain_mesh.refine_in_areas(["Aluminum", "Copper"])
    domain_mesh.refine_in_area("Aluminum")

    path = tmp_path / "saved.xml"
    MeshReaderXML().save(path, domain_mesh)
    reloaded = load_mesh(path)

    assert reloaded.get_num_active_elements() == domain_mesh.get_num_active_elements()
    assert [e.vertices for e in reloaded.active_elements()] == [e.vertices for e in domain_mesh.active_elements()]
    np.testing.assert_allclose(reloaded.coordinates, domain_mesh.coordinates, atol=1e-14)
    assert reloaded.boundary_edges == domain_mesh.boundary_edges
    assert reloaded.get_num_elements_in_region("Aluminum") == domain_mesh.get_num_elements_in_region("Aluminum")


def test_save_to_unwritable_location(tmp_path, domain_mesh):
    with pytest.raises(MeshIOError):
        MeshReaderXML().save(tmp_path / "missing-dir" / "mesh.xml", domain_mesh)

"""
Mesh readers
============
Load planar meshes from Hermes-style XML documents and gmsh ``.msh`` files,
and save meshes back to XML.

XML layout::

    <mesh:mesh xmlns:mesh="XMLMesh">
      <variables>  <var name="a" value="1.0"/> ...          </variables>
      <vertices>   <v x="0" y="-a" i="0"/> ...               </vertices>
      <elements>   <mesh:q v1="0" v2="1" v3="4" v4="3" m="Copper"/>
                   <mesh:t v1="3" v2="4" v3="7" m="Copper"/> ... </elements>
      <edges>      <ed v1="0" v2="1" m="Bottom"/> ...        </edges>
      <curves>     <arc v1="4" v2="7" angle="45"/> ...       </curves>
      <refinements><ref element_id="0" refinement_type="0"/></refinements>
    </mesh:mesh>
"""
from __future__ import annotations

import ast
import logging
import math
import operator
import os
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Callable, Mapping

import numpy as np

from hpheat.errors import ConfigError, FileFormatError, MeshIOError, StateError
from hpheat.fea.pre.mesh import Mesh

logger = logging.getLogger(__name__)

XML_NAMESPACE = "XMLMesh"

_BINARY_OPERATORS: dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
}
_UNARY_OPERATORS: dict[type, Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
_FUNCTIONS: dict[str, Callable[..., float]] = {
    name: getattr(math, name)
    for name in ("sqrt", "sin", "cos", "tan", "asin", "acos", "atan", "atan2", "exp", "log", "radians", "degrees")
}
_FUNCTIONS["abs"] = abs
_CONSTANTS = {"pi": math.pi, "e": math.e}


def evaluate_expression(expression: str, variables: Mapping[str, float]) -> float:
    """
    Evaluate an arithmetic expression of numbers, variables, ``pi`` and math functions.

    Raises:
        FileFormatError: If the expression is malformed or uses unknown names.
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise FileFormatError(f"Invalid expression '{expression}'.") from e

    def _eval(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return float(node.value)
        if isinstance(node, ast.Name):
            if node.id in variables:
                return float(variables[node.id])
            if node.id in _CONSTANTS:
                return _CONSTANTS[node.id]
            raise FileFormatError(f"Unknown variable '{node.id}' in expression '{expression}'.")
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
            return _BINARY_OPERATORS[type(node.op)](_eval(node.left), _eval(node.right))
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
            return _UNARY_OPERATORS[type(node.op)](_eval(node.operand))
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id in _FUNCTIONS:
            return float(_FUNCTIONS[node.func.id](*(_eval(arg) for arg in node.args)))
        raise FileFormatError(f"Unsupported expression '{expression}'.")

    try:
        return _eval(tree)
    except (ArithmeticError, ValueError, TypeError) as e:
        raise FileFormatError(f"Cannot evaluate expression '{expression}': {e}") from e


def _local_name(tag: str) -> str:
    """Tag without its namespace, ``{XMLMesh}t`` -> ``t``."""
    return tag.rsplit("}", 1)[-1]


def _find_section(root: ET.Element, name: str, required: bool = True) -> ET.Element | None:
    for child in root:
        if _local_name(child.tag) == name:
            return child
    if required:
        raise FileFormatError(f"Missing <{name}> section.")
    return None


def _attribute(node: ET.Element, name: str) -> str:
    value = node.get(name)
    if value is None:
        raise FileFormatError(f"<{_local_name(node.tag)}> is missing the '{name}' attribute.")
    return value


def _index(node: ET.Element, name: str) -> int:
    value = _attribute(node, name)
    try:
        return int(value)
    except ValueError as e:
        raise FileFormatError(f"Attribute '{name}' of <{_local_name(node.tag)}> is not an integer: '{value}'.") from e


def _check_source(path: str | os.PathLike) -> Path:
    path = Path(path)
    if not path.is_file():
        raise MeshIOError(f"Mesh file '{path}' does not exist.")
    return path


class MeshReaderXML:
    """Reader and writer of XML mesh documents."""

    def load(self, path: str | os.PathLike, mesh: Mesh | None = None) -> Mesh:
        """
        Load an XML mesh.

        Args:
            path: Path to the XML file.
            mesh: Optional empty mesh to fill.

        Returns:
            The loaded mesh, refinements from the ``<refinements>`` section applied.

        Raises:
            MeshIOError: If the file is missing or unreadable.
            FileFormatError: If the document is not a valid mesh.
        """
        path = _check_source(path)
        if mesh is None:
            mesh = Mesh()
        elif mesh.get_num_vertices() or mesh.get_num_elements():
            raise StateError("The target mesh must be empty.")

        try:
            root = ET.parse(path).getroot()
        except ET.ParseError as e:
            raise FileFormatError(f"'{path}' is not a valid XML document: {e}") from e
        except OSError as e:
            raise MeshIOError(f"Cannot read mesh file '{path}': {e}") from e

        if _local_name(root.tag) != "mesh":
            raise FileFormatError(f"Unexpected root element <{_local_name(root.tag)}> in '{path}', expected <mesh>.")

        # Variables may refer to previously defined ones.
        variables: dict[str, float] = {}
        variables_section = _find_section(root, "variables", required=False)
        if variables_section is not None:
            for var in variables_section:
                variables[_attribute(var, "name")] = evaluate_expression(_attribute(var, "value"), variables)

        self._read_vertices(_find_section(root, "vertices"), variables, mesh)
        self._read_elements(_find_section(root, "elements"), mesh)
        self._read_edges(_find_section(root, "edges"), mesh)

        curves = _find_section(root, "curves", required=False)
        if curves is not None:
            self._read_curves(curves, mesh)

        refinements = _find_section(root, "refinements", required=False)
        if refinements is not None:
            for ref in refinements:
                try:
                    mesh.refine_element(_index(ref, "element_id"), _index(ref, "refinement_type"))
                except ConfigError as e:
                    raise FileFormatError(f"Invalid refinement in '{path}': {e}") from e

        logger.info(
            f"Loaded mesh '{path.name}': {mesh.get_num_vertices()} vertices, "
            f"{mesh.get_num_active_elements()} active elements, regions {mesh.regions}, "
            f"markers {mesh.boundary_markers}."
        )
        return mesh

    @staticmethod
    def _read_vertices(section: ET.Element, variables: Mapping[str, float], mesh: Mesh) -> None:
        vertices: dict[int, tuple[float, float]] = {}
        for position, node in enumerate(section):
            index = _index(node, "i") if node.get("i") is not None else position
            if index in vertices:
                raise FileFormatError(f"Duplicate vertex index {index}.")
            vertices[index] = (
                evaluate_expression(_attribute(node, "x"), variables),
                evaluate_expression(_attribute(node, "y"), variables),
            )
        if sorted(vertices) != list(range(len(vertices))):
            raise FileFormatError("Vertex indices must be 0 .. n-1 without gaps.")
        for index in range(len(vertices)):
            mesh.add_node(*vertices[index])

    @staticmethod
    def _read_elements(section: ET.Element, mesh: Mesh) -> None:
        n_vertices = {"t": 3, "q": 4}
        for node in section:
            kind = _local_name(node.tag)
            if kind not in n_vertices:
                raise FileFormatError(f"Unknown element type <{kind}>.")
            vertices = [_index(node, f"v{i + 1}") for i in range(n_vertices[kind])]
            for v in vertices:
                if not 0 <= v < mesh.get_num_vertices():
                    raise FileFormatError(f"Element refers to a missing vertex {v}.")
            try:
                mesh.add_element(vertices, _attribute(node, "m"))
            except ValueError as e:
                raise FileFormatError(str(e)) from e
        if not mesh.get_num_elements():
            raise FileFormatError("The mesh has no elements.")

    @staticmethod
    def _read_edges(section: ET.Element, mesh: Mesh) -> None:
        for node in section:
            try:
                mesh.add_boundary_edge(_index(node, "v1"), _index(node, "v2"), _attribute(node, "m"))
            except ValueError as e:
                raise FileFormatError(str(e)) from e

    @staticmethod
    def _read_curves(section: ET.Element, mesh: Mesh) -> None:
        for node in section:
            kind = _local_name(node.tag)
            if kind != "arc":
                raise FileFormatError(f"Unsupported curve type <{kind}>.")
            try:
                angle = float(_attribute(node, "angle"))
                mesh.add_arc(_index(node, "v1"), _index(node, "v2"), angle)
            except ValueError as e:
                raise FileFormatError(str(e)) from e

    def save(self, path: str | os.PathLike, mesh: Mesh) -> None:
        """
        Save a mesh to XML.

        The base topology is written together with the refinement history, so
        loading the file reproduces the current active elements, including
        hanging vertices.

        Raises:
            MeshIOError: If the file cannot be written.
        """
        path = Path(path)
        root = ET.Element("mesh:mesh", {"xmlns:mesh": XML_NAMESPACE})

        vertices = ET.SubElement(root, "vertices")
        for node in mesh.nodes[:mesh.num_base_nodes]:
            ET.SubElement(vertices, "v", {"x": repr(node.x), "y": repr(node.y), "i": str(node.uid)})

        elements = ET.SubElement(root, "elements")
        for element in mesh.elements:
            if element.parent is not None:
                continue
            tag = "mesh:t" if element.is_triangle else "mesh:q"
            attributes = {f"v{i + 1}": str(v) for i, v in enumerate(element.vertices)}
            attributes["m"] = element.region
            ET.SubElement(elements, tag, attributes)

        edges = ET.SubElement(root, "edges")
        for (a, b), marker in mesh.boundary_edges.items():
            if mesh.get_edge_parent((a, b)) is None:
                ET.SubElement(edges, "ed", {"v1": str(a), "v2": str(b), "m": marker})

        base_arcs = [arc for key, arc in mesh.arcs.items() if mesh.get_edge_parent(key) is None]
        if base_arcs:
            curves = ET.SubElement(root, "curves")
            for arc in base_arcs:
                ET.SubElement(curves, "arc", {"v1": str(arc.start), "v2": str(arc.end), "angle": repr(arc.angle)})

        if mesh.refinements:
            refinements = ET.SubElement(root, "refinements")
            for element_id, refinement_type in mesh.refinements:
                ET.SubElement(refinements, "ref", {
                    "element_id": str(element_id),
                    "refinement_type": str(refinement_type),
                })

        tree = ET.ElementTree(root)
        ET.indent(tree)
        try:
            tree.write(path, encoding="utf-8", xml_declaration=True)
        except OSError as e:
            raise MeshIOError(f"Cannot write mesh file '{path}': {e}") from e
        logger.info(f"Saved mesh to '{path}'.")


# gmsh element type -> number of vertices (first-order surface elements)
GMSH_SURFACE_TYPES = {
    2: 3,  # 3-node triangle
    3: 4,  # 4-node quadrangle
}
GMSH_LINE_TYPE = 1  # 2-node line


class MeshReaderGmsh:
    """Reader of gmsh ``.msh`` files through the gmsh Python API."""

    def load(self, path: str | os.PathLike, mesh: Mesh | None = None) -> Mesh:
        """
        Load first-order triangles and quads from physical surfaces and boundary
        markers from physical lines.

        Raises:
            MeshIOError: If the file is missing.
            FileFormatError: If gmsh cannot read it or it holds no usable elements.
        """
        import gmsh

        path = _check_source(path)
        if mesh is None:
            mesh = Mesh()

        gmsh.initialize()
        try:
            gmsh.option.set_number("General.Terminal", 0)
            try:
                gmsh.open(str(path))
            except Exception as e:
                raise FileFormatError(f"gmsh cannot read '{path}': {e}") from e

            # 1) Read all nodes once
            node_tags, flat_coords, _ = gmsh.model.mesh.get_nodes()
            coords = np.asarray(flat_coords).reshape(-1, 3)  # Reshape to (num_nodes, 3)
            tag_to_vertex: dict[int, int] = {}
            for tag, xy in zip(node_tags, coords[:, :2]):  # Use only x and y coordinates
                tag_to_vertex[int(tag)] = mesh.add_node(float(xy[0]), float(xy[1]))

            boundary: list[tuple[int, int, str]] = []

            # 2) Loop all gmsh entities to pick up physical-group names and entities' elements
            for dim, entity_tag in gmsh.model.get_entities():
                physical_tags = gmsh.model.get_physical_groups_for_entity(dim, entity_tag)
                if len(physical_tags) == 0:
                    continue
                physical_tag = int(physical_tags[0])
                name = gmsh.model.get_physical_name(dim, physical_tag) or str(physical_tag)

                element_types, _, node_tags_list = gmsh.model.mesh.get_elements(dim, entity_tag)
                for element_type, flat_node_tags in zip(element_types, node_tags_list):
                    if dim == 2 and element_type in GMSH_SURFACE_TYPES:
                        connectivity = np.asarray(flat_node_tags).reshape(-1, GMSH_SURFACE_TYPES[element_type])
                        for row in connectivity:
                            try:
                                mesh.add_element([tag_to_vertex[int(t)] for t in row], name)
                            except ValueError as e:
                                raise FileFormatError(str(e)) from e
                    elif dim == 1 and element_type == GMSH_LINE_TYPE:
                        for a, b in np.asarray(flat_node_tags).reshape(-1, 2):
                            boundary.append((tag_to_vertex[int(a)], tag_to_vertex[int(b)], name))
        finally:
            gmsh.finalize()

        if not mesh.get_num_elements():
            raise FileFormatError(f"'{path}' holds no first-order triangles or quads in physical surfaces.")
        for a, b, name in boundary:
            try:
                mesh.add_boundary_edge(a, b, name)
            except ValueError as e:
                raise FileFormatError(str(e)) from e

        logger.info(
            f"Loaded gmsh mesh '{path.name}': {mesh.get_num_vertices()} vertices, "
            f"{mesh.get_num_active_elements()} elements, regions {mesh.regions}."
        )
        return mesh


def load_mesh(path: str | os.PathLike, mesh: Mesh | None = None) -> Mesh:
    """
    Load a mesh, choosing the reader by file extension (``.xml`` or ``.msh``).

    Raises:
        MeshIOError: If the file is missing.
        FileFormatError: If the extension is unknown or the content is malformed.
    """
    suffix = Path(path).suffix.lower()
    if suffix == ".msh":
        return MeshReaderGmsh().load(path, mesh)
    if suffix == ".xml":
        return MeshReaderXML().load(path, mesh)
    _check_source(path)
    raise FileFormatError(f"Unknown mesh file extension '{suffix}'.")

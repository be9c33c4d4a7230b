from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Sequence

import numpy as np
import matplotlib.pyplot as plt

from hpheat.errors import ConfigError, StateError
from hpheat.fea.analysis.node import Node

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

EdgeKey = tuple[int, int]

# Only the isotropic split (4 children) is supported.
REFINEMENT_TYPES = (0,)


def edge_key(a: int, b: int) -> EdgeKey:
    """Orientation-independent key of the edge between vertices a and b."""
    return (a, b) if a < b else (b, a)


@dataclass(frozen=True)
class Arc:
    """
    Circular arc between two vertices.

    The arc runs counter-clockwise from ``start`` to ``end`` and spans
    ``angle`` degrees, i.e. its centre lies to the left of the chord.
    """
    start: int
    end: int
    angle: float

    def center_and_radius(
        self,
        p_start: npt.NDArray[np.float64],
        p_end: npt.NDArray[np.float64]
    ) -> tuple[npt.NDArray[np.float64], float]:
        theta = np.radians(self.angle)
        chord = p_end - p_start
        length = float(np.linalg.norm(chord))
        radius = length / (2.0 * np.sin(theta / 2.0))
        left_normal = np.array([-chord[1], chord[0]]) / length
        center = 0.5 * (p_start + p_end) + left_normal * radius * np.cos(theta / 2.0)
        return center, radius

    def midpoint(
        self,
        p_start: npt.NDArray[np.float64],
        p_end: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Point on the arc halfway between its end points."""
        center, radius = self.center_and_radius(p_start, p_end)
        phi = np.arctan2(p_start[1] - center[1], p_start[0] - center[0]) + np.radians(self.angle) / 2.0
        return center + radius * np.array([np.cos(phi), np.sin(phi)])


class MeshElement:
    """
    Topological mesh element: a triangle or a quadrilateral in a named region.
    """
    def __init__(
        self,
        index: int,
        vertices: Sequence[int],
        region: str,
        parent: int | None = None,
        level: int = 0,
    ) -> None:
        self.id = index
        self.vertices = tuple(int(v) for v in vertices)
        self.region = region
        self.parent = parent
        self.level = level
        self.active = True
        self.children: list[int] = []

    def __repr__(self) -> str:
        kind = "Triangle" if self.is_triangle else "Quad"
        return f"{kind}(id={self.id}, vertices={self.vertices}, region='{self.region}', active={self.active})"

    @property
    def is_triangle(self) -> bool:
        return len(self.vertices) == 3

    @property
    def number_of_vertices(self) -> int:
        return len(self.vertices)

    def edges(self) -> list[tuple[int, int]]:
        """Local edges as (vertex, next vertex) pairs in counter-clockwise order."""
        n = len(self.vertices)
        return [(self.vertices[i], self.vertices[(i + 1) % n]) for i in range(n)]

    def copy(self) -> MeshElement:
        element = MeshElement(self.id, self.vertices, self.region, self.parent, self.level)
        element.active = self.active
        element.children = list(self.children)
        return element


class Mesh:
    """
    Planar mesh of triangles and quadrilaterals with named regions and boundary markers.

    Elements are never removed: refinement deactivates the parent and appends
    its children, so element ids follow creation order. Every topology change
    increments ``seq``.
    """
    def __init__(self) -> None:
        self.nodes: list[Node] = []
        self.elements: list[MeshElement] = []
        self.boundary_edges: dict[EdgeKey, str] = {}
        self.arcs: dict[EdgeKey, Arc] = {}
        self.refinements: list[tuple[int, int]] = []
        self.seq = 0
        self._freed = False

        # Refinement bookkeeping: split edge -> midpoint vertex, sub-edge -> split edge,
        # midpoint vertex -> split edge.
        self._edge_midpoints: dict[EdgeKey, int] = {}
        self._edge_parents: dict[EdgeKey, EdgeKey] = {}
        self._midpoint_edges: dict[int, EdgeKey] = {}
        self._num_base_nodes = 0

    def __repr__(self) -> str:
        if self._freed:
            return f"{self.__class__.__name__}(freed)"
        return (
            f"{self.__class__.__name__}(vertices={len(self.nodes)}, "
            f"active_elements={self.get_num_active_elements()}, seq={self.seq})"
        )

    def _check_alive(self) -> None:
        if self._freed:
            raise StateError("The mesh has been freed.")

    def _check_unrefined(self) -> None:
        if self.refinements:
            raise StateError("The base topology of a refined mesh cannot be modified.")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def add_node(self, x: float, y: float) -> int:
        """Add a vertex and return its id."""
        self._check_alive()
        self._check_unrefined()
        index = self._append_node(np.array([x, y], dtype=np.float64))
        self._num_base_nodes = len(self.nodes)
        return index

    def _append_node(self, coords: npt.NDArray[np.float64]) -> int:
        index = len(self.nodes)
        self.nodes.append(Node(index=index, coords=coords))
        return index

    def add_element(self, vertices: Sequence[int], region: str) -> int:
        """
        Add a base triangle (3 vertices) or quadrilateral (4 vertices).

        Clockwise vertex lists are reordered counter-clockwise.

        Raises:
            ValueError: If the vertex count or ids are invalid or the element is degenerate.
        """
        self._check_alive()
        self._check_unrefined()

        vertices = [int(v) for v in vertices]
        if len(vertices) not in (3, 4):
            raise ValueError(f"Elements need 3 or 4 vertices, got {len(vertices)}.")
        if len(set(vertices)) != len(vertices):
            raise ValueError(f"Element vertices must be distinct: {vertices}")
        for v in vertices:
            if not 0 <= v < len(self.nodes):
                raise ValueError(f"Vertex {v} does not exist.")

        area = self._signed_area(vertices)
        if abs(area) <= 1e-14:
            raise ValueError(f"Degenerate element with vertices {vertices}.")
        if area < 0.0:
            vertices = [vertices[0]] + vertices[:0:-1]

        index = len(self.elements)
        self.elements.append(MeshElement(index, vertices, str(region)))
        self.seq += 1
        return index

    def add_boundary_edge(self, a: int, b: int, marker: str) -> None:
        """
        Attach a boundary marker to the edge between vertices a and b.

        Raises:
            ValueError: If the edge is not an edge of any element.
        """
        self._check_alive()
        self._check_unrefined()
        key = edge_key(a, b)
        if key not in self._base_edges():
            raise ValueError(f"Edge {key} is not an element edge.")
        self.boundary_edges[key] = str(marker)
        self.seq += 1

    def add_arc(self, start: int, end: int, angle: float) -> None:
        """
        Make the edge between ``start`` and ``end`` a circular arc of ``angle`` degrees.

        Raises:
            ValueError: If the edge does not exist or the angle is not in (0, 360).
        """
        self._check_alive()
        self._check_unrefined()
        key = edge_key(start, end)
        if key not in self._base_edges():
            raise ValueError(f"Arc {key} is not an element edge.")
        if not 0.0 < angle < 360.0:
            raise ValueError(f"Arc angle must lie in (0, 360) degrees, got {angle}.")
        self.arcs[key] = Arc(int(start), int(end), float(angle))
        self.seq += 1

    def _base_edges(self) -> set[EdgeKey]:
        return {edge_key(a, b) for element in self.elements for a, b in element.edges()}

    def _signed_area(self, vertices: Sequence[int]) -> float:
        xy = np.array([self.nodes[v].coords for v in vertices])
        x, y = xy[:, 0], xy[:, 1]
        return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def coordinates(self) -> npt.NDArray[np.float64]:
        """(n_vertices, 2) array of vertex coordinates."""
        self._check_alive()
        return np.array([node.coords for node in self.nodes], dtype=np.float64).reshape(-1, 2)

    @property
    def regions(self) -> list[str]:
        """Region names in order of first appearance."""
        self._check_alive()
        return list(dict.fromkeys(element.region for element in self.elements))

    @property
    def boundary_markers(self) -> list[str]:
        """Boundary marker names in order of first appearance."""
        self._check_alive()
        return list(dict.fromkeys(self.boundary_edges.values()))

    @property
    def num_base_nodes(self) -> int:
        return self._num_base_nodes

    def get_num_vertices(self) -> int:
        self._check_alive()
        return len(self.nodes)

    def get_num_elements(self) -> int:
        """Number of elements ever created, including inactive parents."""
        self._check_alive()
        return len(self.elements)

    def get_num_active_elements(self) -> int:
        self._check_alive()
        return sum(1 for element in self.elements if element.active)

    def active_elements(self) -> list[MeshElement]:
        """Active elements in creation order."""
        self._check_alive()
        return [element for element in self.elements if element.active]

    def get_element(self, element_id: int) -> MeshElement:
        self._check_alive()
        if not 0 <= element_id < len(self.elements):
            raise ConfigError(f"Element {element_id} does not exist.")
        return self.elements[element_id]

    def get_num_elements_in_region(self, region: str) -> int:
        """Number of active elements in a region."""
        self._check_alive()
        return sum(1 for element in self.elements if element.active and element.region == region)

    def get_element_coords(self, element: MeshElement) -> npt.NDArray[np.float64]:
        return np.array([self.nodes[v].coords for v in element.vertices], dtype=np.float64)

    def get_boundary_marker(self, a: int, b: int) -> str | None:
        self._check_alive()
        return self.boundary_edges.get(edge_key(a, b))

    def edge_users(self) -> dict[EdgeKey, list[tuple[int, int]]]:
        """Map every edge of the active elements to its (element id, local edge) users."""
        self._check_alive()
        users: dict[EdgeKey, list[tuple[int, int]]] = {}
        for element in self.active_elements():
            for local, (a, b) in enumerate(element.edges()):
                users.setdefault(edge_key(a, b), []).append((element.id, local))
        return users

    def get_edge_midpoint(self, key: EdgeKey) -> int | None:
        """Midpoint vertex of an edge that has been split, else None."""
        return self._edge_midpoints.get(key)

    def get_edge_parent(self, key: EdgeKey) -> EdgeKey | None:
        """Edge that was split to create ``key``, else None."""
        return self._edge_parents.get(key)

    def get_midpoint_edge(self, vertex: int) -> EdgeKey | None:
        """Edge whose split created ``vertex``, else None."""
        return self._midpoint_edges.get(vertex)

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------
    def _get_midpoint(self, a: int, b: int) -> int:
        key = edge_key(a, b)
        if key in self._edge_midpoints:
            return self._edge_midpoints[key]

        p_a, p_b = self.nodes[key[0]].coords, self.nodes[key[1]].coords
        arc = self.arcs.get(key)
        if arc is not None:
            coords = arc.midpoint(self.nodes[arc.start].coords, self.nodes[arc.end].coords)
        else:
            coords = 0.5 * (p_a + p_b)

        mid = self._append_node(coords)
        self._edge_midpoints[key] = mid
        self._midpoint_edges[mid] = key

        marker = self.boundary_edges.get(key)
        for child in (edge_key(key[0], mid), edge_key(mid, key[1])):
            self._edge_parents[child] = key
            if marker is not None:
                self.boundary_edges[child] = marker
        if arc is not None:
            self.arcs[edge_key(arc.start, mid)] = Arc(arc.start, mid, arc.angle / 2.0)
            self.arcs[edge_key(mid, arc.end)] = Arc(mid, arc.end, arc.angle / 2.0)
        return mid

    def _add_child(self, parent: MeshElement, vertices: Sequence[int]) -> int:
        index = len(self.elements)
        self.elements.append(MeshElement(index, vertices, parent.region, parent.id, parent.level + 1))
        parent.children.append(index)
        return index

    def refine_element(self, element_id: int, refinement_type: int = 0) -> list[int]:
        """
        Split an active element into four children.

        Returns:
            Ids of the children.

        Raises:
            ConfigError: If the element does not exist or is not active, or the
                refinement type is not supported.
        """
        self._check_alive()
        element = self.get_element(element_id)
        if not element.active:
            raise ConfigError(f"Element {element_id} is not active.")
        if refinement_type not in REFINEMENT_TYPES:
            raise ConfigError(f"Unsupported refinement type {refinement_type}.")

        v = element.vertices
        if element.is_triangle:
            m01, m12, m20 = self._get_midpoint(v[0], v[1]), self._get_midpoint(v[1], v[2]), self._get_midpoint(v[2], v[0])
            children = [
                (v[0], m01, m20),
                (m01, v[1], m12),
                (m20, m12, v[2]),
                (m01, m12, m20),
            ]
        else:
            m01, m12 = self._get_midpoint(v[0], v[1]), self._get_midpoint(v[1], v[2])
            m23, m30 = self._get_midpoint(v[2], v[3]), self._get_midpoint(v[3], v[0])
            c = self._append_node(np.mean([self.nodes[i].coords for i in v], axis=0))
            children = [
                (v[0], m01, c, m30),
                (m01, v[1], m12, c),
                (c, m12, v[2], m23),
                (m30, c, m23, v[3]),
            ]

        element.active = False
        child_ids = [self._add_child(element, vertices) for vertices in children]
        self.refinements.append((element_id, refinement_type))
        self.seq += 1
        logger.debug(f"Refined element {element_id} into {child_ids}.")
        return child_ids

    def refine_all_elements(self) -> None:
        """Refine every active element once."""
        for element in self.active_elements():
            self.refine_element(element.id)

    def refine_in_areas(self, regions: Iterable[str], levels: int = 1) -> None:
        """
        Refine all active elements of the named regions ``levels`` times.

        Raises:
            ConfigError: If a region does not exist in the mesh.
        """
        self._check_alive()
        regions = list(regions)
        known = self.regions
        for region in regions:
            if region not in known:
                raise ConfigError(f"Region '{region}' does not exist. Known regions: {known}")

        for _ in range(levels):
            for element in self.active_elements():
                if element.region in regions:
                    self.refine_element(element.id)
        logger.info(f"Refined regions {regions} {levels}x: {self.get_num_active_elements()} active elements.")

    def refine_in_area(self, region: str, levels: int = 1) -> None:
        """Refine all active elements of one region ``levels`` times."""
        self.refine_in_areas([region], levels)

    def refine_towards_boundary(self, marker: str, depth: int = 1) -> None:
        """
        Refine ``depth`` times the active elements touching the boundary ``marker``.

        Raises:
            ConfigError: If the marker does not exist in the mesh.
        """
        self._check_alive()
        if marker not in self.boundary_markers:
            raise ConfigError(f"Boundary marker '{marker}' does not exist. Known markers: {self.boundary_markers}")

        for _ in range(depth):
            touching = {v for key, name in self.boundary_edges.items() if name == marker for v in key}
            for element in self.active_elements():
                if touching.intersection(element.vertices):
                    self.refine_element(element.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def copy_from(self, other: Mesh) -> None:
        """Replace the content of this mesh by a deep copy of ``other``."""
        other._check_alive()
        self.nodes = [node.copy() for node in other.nodes]
        self.elements = [element.copy() for element in other.elements]
        self.boundary_edges = dict(other.boundary_edges)
        self.arcs = dict(other.arcs)
        self.refinements = list(other.refinements)
        self._edge_midpoints = dict(other._edge_midpoints)
        self._edge_parents = dict(other._edge_parents)
        self._midpoint_edges = dict(other._midpoint_edges)
        self._num_base_nodes = other._num_base_nodes
        self.seq = other.seq + 1
        self._freed = False

    def free(self) -> None:
        """Release all mesh data; any further use raises StateError."""
        self.nodes = []
        self.elements = []
        self.boundary_edges = {}
        self.arcs = {}
        self.refinements = []
        self._edge_midpoints = {}
        self._edge_parents = {}
        self._midpoint_edges = {}
        self._freed = True
        self.seq += 1

    @property
    def is_freed(self) -> bool:
        return self._freed

    def plot(self, show: bool = True) -> plt.Figure:
        """Plot the active elements coloured by region and the boundary edges coloured by marker."""
        self._check_alive()
        plt.rcParams["figure.constrained_layout.use"] = True
        fig, ax = plt.subplots()
        ax.set_aspect("equal")

        unique_tags = self.regions + self.boundary_markers
        cmap = plt.get_cmap("gist_rainbow", max(len(unique_tags), 1))
        tag_to_color = {
            tag: cmap(i % cmap.N) for i, tag in enumerate(unique_tags)
        }
        # keep track of which tags have been seen to avoid duplicate labels
        seen_tags = set()

        for element in self.active_elements():
            color = tag_to_color[element.region]
            coords = self.get_element_coords(element)
            coords = np.vstack((coords, coords[0]))  # Close the polygon

            label = element.region if element.region not in seen_tags else "_nolegend_"
            seen_tags.add(element.region)

            ax.fill(coords[:, 0], coords[:, 1], color=color, lw=1, label=label, alpha=0.1)
            ax.plot(coords[:, 0], coords[:, 1], color='black', lw=1)

            centroid = np.mean(coords[:-1], axis=0)
            ax.text(centroid[0], centroid[1], str(element.id), fontsize=8, color=color, ha='center', va='center')

        active_edges = self.edge_users()
        for key, marker in self.boundary_edges.items():
            if key not in active_edges:
                continue
            color = tag_to_color[marker]
            coords = np.array([self.nodes[v].coords for v in key])

            label = marker if marker not in seen_tags else "_nolegend_"
            seen_tags.add(marker)
            ax.plot(coords[:, 0], coords[:, 1], color=color, lw=2, label=label)

        ax.grid(visible=True, which='major', axis='both', linestyle='-', color='gray', lw=0.5)
        ax.minorticks_on()
        ax.grid(visible=True, which='minor', axis='both', linestyle=':', color='gray', lw=0.5)

        ax.set_title(f"Mesh plotted at {datetime.now().strftime('%d.%m.%Y %H:%M:%S')}")
        ax.set_xlabel("X Coordinate")
        ax.set_ylabel("Y Coordinate")
        ax.legend(loc='best')
        if show:
            plt.show()
        return fig

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from hpheat.errors import ConfigError, StateError
from hpheat.fea.analysis.finite_elements import FiniteElement, Quad, Triangle
from hpheat.fea.analysis.lobatto import LOBATTO, MAX_ORDER, edge_coefficients
from hpheat.fea.pre.boundary_conditions import EssentialBCs
from hpheat.fea.pre.mesh import EdgeKey, Mesh, edge_key

if TYPE_CHECKING:
    import numpy.typing as npt
    from hpheat.fea.pre.boundary_conditions import EssentialBoundaryCondition

logger = logging.getLogger(__name__)

# Key of the Dirichlet lift in a representation {dof: coefficient}.
LIFT = -1

Representation = dict[int, float]


def _accumulate(target: Representation, source: Representation, factor: float) -> None:
    if factor == 0.0:
        return
    for dof, coefficient in source.items():
        target[dof] = target.get(dof, 0.0) + factor * coefficient


@dataclass(frozen=True)
class AssemblyList:
    """
    Mapping of the local functions of one element onto the global DOFs.

    The local coefficients are ``coefficients @ u[dofs] + lift``; regular
    functions have a single unit entry, constrained functions (on hanging
    vertices and edges) a combination of the constraining DOFs, Dirichlet
    functions only a lift.
    """
    element_id: int
    dofs: npt.NDArray[np.int64]
    coefficients: npt.NDArray[np.float64]
    lift: npt.NDArray[np.float64]

    def local_values(self, coefficient_vector: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Local function coefficients for a global coefficient vector."""
        return self.coefficients @ coefficient_vector[self.dofs] + self.lift

    @property
    def entries(self) -> list[tuple[int, int, float]]:
        """(local function, DOF, coefficient) triples with non-zero coefficients."""
        local, column = np.nonzero(self.coefficients)
        return [(int(i), int(self.dofs[j]), float(self.coefficients[i, j])) for i, j in zip(local, column)]


class H1Space:
    """
    Continuous (H1) finite-element space with hierarchical Lobatto shape functions.

    The space holds a default order and per-element orders. The DOF layout is
    recomputed lazily whenever an order changes or the mesh sequence number
    differs from the one the layout was built for. Refined elements pass their
    order to their children.
    """
    def __init__(
        self,
        mesh: Mesh,
        essential_bcs: EssentialBCs | EssentialBoundaryCondition | None = None,
        p_init: int = 1,
    ) -> None:
        """
        Initialize the space.

        Args:
            mesh: Mesh the space is built on.
            essential_bcs: Dirichlet conditions on boundary markers.
            p_init: Uniform initial polynomial order.

        Raises:
            ConfigError: If the order is out of range or a boundary condition
                refers to a marker the mesh does not have.
        """
        self._check_order(p_init)
        if essential_bcs is None:
            essential_bcs = EssentialBCs()
        elif not isinstance(essential_bcs, EssentialBCs):
            essential_bcs = EssentialBCs(essential_bcs)

        known = mesh.boundary_markers
        for marker in essential_bcs.markers:
            if marker not in known:
                raise ConfigError(f"Boundary marker '{marker}' does not exist. Known markers: {known}")

        self.mesh: Mesh | None = mesh
        self.essential_bcs = essential_bcs
        self.default_order = int(p_init)
        self._orders: dict[int, int] = {}
        self._freed = False
        self._invalidate()

    def __repr__(self) -> str:
        if self._freed:
            return f"{self.__class__.__name__}(freed)"
        return f"{self.__class__.__name__}(mesh={self.mesh}, default_order={self.default_order})"

    @classmethod
    def copy(cls, source: H1Space, target_mesh: Mesh) -> H1Space:
        """
        Clone a space onto a new mesh.

        ``target_mesh`` receives a deep copy of the source mesh; the returned space
        has the same orders and boundary conditions and no reference to the
        source space or mesh.
        """
        source._check_alive()
        target_mesh.copy_from(source.mesh)
        space = cls(target_mesh, EssentialBCs(list(source.essential_bcs)), source.default_order)
        space._orders = dict(source._orders)
        logger.debug(f"Copied space onto a new mesh: {space}")
        return space

    def free(self) -> None:
        """Release the space; any further use raises StateError."""
        self.mesh = None
        self._orders = {}
        self._freed = True
        self._invalidate()

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    @staticmethod
    def _check_order(order: int) -> None:
        if isinstance(order, bool) or not isinstance(order, (int, np.integer)) or not 1 <= order <= MAX_ORDER:
            raise ConfigError(f"Polynomial order must be an integer in 1..{MAX_ORDER}, got {order!r}.")

    def _check_alive(self) -> None:
        if self._freed:
            raise StateError("The space has been freed.")
        if self.mesh.is_freed:
            raise StateError("The mesh of the space has been freed.")

    def _active_element(self, element_id: int):
        element = self.mesh.get_element(element_id)
        if not element.active:
            raise ConfigError(f"Element {element_id} is not active.")
        return element

    def _resolve_order(self, element_id: int) -> int:
        # explicit order of the element or of its nearest ancestor
        current: int | None = element_id
        while current is not None:
            if current in self._orders:
                return self._orders[current]
            current = self.mesh.elements[current].parent
        return self.default_order

    def set_element_order(self, element_id: int, order: int) -> None:
        """
        Set the polynomial order of an active element.

        Raises:
            ConfigError: If the order is out of range or the element is unknown or inactive.
        """
        self._check_alive()
        self._check_order(order)
        self._active_element(element_id)
        self._orders[element_id] = int(order)
        self._invalidate()

    def get_element_order(self, element_id: int) -> int:
        self._check_alive()
        self._active_element(element_id)
        return self._resolve_order(element_id)

    def set_uniform_order(self, order: int) -> None:
        """Give every element the same order, dropping per-element orders."""
        self._check_alive()
        self._check_order(order)
        self.default_order = int(order)
        self._orders = {}
        self._invalidate()

    def get_element_orders(self) -> dict[int, int]:
        """Orders of the active elements keyed by element id."""
        self._check_alive()
        return {element.id: self._resolve_order(element.id) for element in self.mesh.active_elements()}

    # ------------------------------------------------------------------
    # DOF queries
    # ------------------------------------------------------------------
    def get_num_dofs(self) -> int:
        self._ensure_assigned()
        return self._n_vertex + self._n_edge + self._n_bubble

    def get_vertex_functions_count(self) -> int:
        self._ensure_assigned()
        return self._n_vertex

    def get_edge_functions_count(self) -> int:
        self._ensure_assigned()
        return self._n_edge

    def get_bubble_functions_count(self) -> int:
        self._ensure_assigned()
        return self._n_bubble

    def get_edge_order(self, a: int, b: int) -> int:
        """Order of an active edge (minimum rule)."""
        self._ensure_assigned()
        key = edge_key(a, b)
        if key not in self._edge_orders:
            raise ConfigError(f"Edge {key} is not an edge of an active element.")
        return self._edge_orders[key]

    def is_hanging_vertex(self, vertex: int) -> bool:
        self._ensure_assigned()
        return vertex in self._hanging

    def get_finite_element(self, element_id: int) -> FiniteElement:
        """Finite element (geometry and local shapeset) of an active element."""
        self._ensure_assigned()
        if element_id not in self._finite_elements:
            self._finite_elements[element_id] = self._build_finite_element(element_id)
        return self._finite_elements[element_id]

    def get_assembly_list(self, element_id: int) -> AssemblyList:
        """Assembly list of an active element."""
        self._ensure_assigned()
        if element_id not in self._assembly_lists:
            self._assembly_lists[element_id] = self._build_assembly_list(element_id)
        return self._assembly_lists[element_id]

    # ------------------------------------------------------------------
    # DOF assignment
    # ------------------------------------------------------------------
    def _invalidate(self) -> None:
        self._assigned_seq: int | None = None
        self._finite_elements: dict[int, FiniteElement] = {}
        self._assembly_lists: dict[int, AssemblyList] = {}

    def _ensure_assigned(self) -> None:
        self._check_alive()
        if self._assigned_seq != self.mesh.seq:
            self._assign_dofs()

    def _active_ancestor(self, key: EdgeKey | None, users: dict) -> EdgeKey | None:
        # nearest edge in the parent chain starting at ``key`` that an active element uses
        while key is not None:
            if key in users:
                return key
            key = self.mesh.get_edge_parent(key)
        return None

    def _assign_dofs(self) -> None:
        mesh = self.mesh
        elements = mesh.active_elements()
        self._finite_elements = {}
        self._assembly_lists = {}

        self._element_orders = {element.id: self._resolve_order(element.id) for element in elements}
        users = mesh.edge_users()

        # Constrained edges lie inside a longer active edge of a coarser neighbour.
        self._roots: dict[EdgeKey, EdgeKey] = {}
        for key in users:
            self._roots[key] = self._active_ancestor(mesh.get_edge_parent(key), users) or key
        self._constrained = {key for key, root in self._roots.items() if root != key}

        # Minimum rule over every element touching the (constraining) edge.
        root_orders: dict[EdgeKey, int] = {}
        for key, key_users in users.items():
            root = self._roots[key]
            for element_id, _ in key_users:
                root_orders[root] = min(root_orders.get(root, MAX_ORDER), self._element_orders[element_id])
        self._edge_orders = {key: root_orders[self._roots[key]] for key in users}

        # Hanging vertices and the active edge they lie on.
        self._hanging: dict[int, EdgeKey] = {}
        for element in elements:
            for v in element.vertices:
                if v in self._hanging:
                    continue
                root = self._active_ancestor(mesh.get_midpoint_edge(v), users)
                if root is not None:
                    self._hanging[v] = root

        # Dirichlet edges and vertices.
        self._dirichlet_edges: dict[EdgeKey, EssentialBoundaryCondition] = {}
        self._dirichlet_vertices: dict[int, float] = {}
        for key, key_users in users.items():
            if len(key_users) != 1 or key in self._constrained or mesh.get_edge_midpoint(key) is not None:
                continue
            bc = self.essential_bcs.get_boundary_condition(mesh.get_boundary_marker(*key))
            if bc is None:
                continue
            self._dirichlet_edges[key] = bc
            for v in key:
                if v not in self._dirichlet_vertices:
                    x, y = mesh.nodes[v].coords
                    self._dirichlet_vertices[v] = float(bc.value(np.array([x]), np.array([y]))[0])

        # Numbering: vertex functions, then edge functions, then bubbles.
        next_dof = 0
        self._vertex_dofs: dict[int, int] = {}
        for element in elements:
            for v in element.vertices:
                if v in self._vertex_dofs or v in self._hanging or v in self._dirichlet_vertices:
                    continue
                self._vertex_dofs[v] = next_dof
                next_dof += 1
        self._n_vertex = next_dof

        self._edge_dofs: dict[EdgeKey, int] = {}
        for element in elements:
            for a, b in element.edges():
                key = edge_key(a, b)
                if key in self._edge_dofs or key in self._constrained or key in self._dirichlet_edges:
                    continue
                if self._edge_orders[key] < 2:
                    continue
                self._edge_dofs[key] = next_dof
                next_dof += self._edge_orders[key] - 1
        self._n_edge = next_dof - self._n_vertex

        self._bubble_dofs: dict[int, int] = {}
        for element in elements:
            element_class = Triangle if element.is_triangle else Quad
            self._bubble_dofs[element.id] = next_dof
            next_dof += element_class.bubble_count(self._element_orders[element.id])
        self._n_bubble = next_dof - self._n_vertex - self._n_edge

        self._vertex_reps: dict[int, Representation] = {}
        self._edge_reps: dict[EdgeKey, list[Representation]] = {}
        self._assigned_seq = mesh.seq

        logger.debug(
            f"Assigned {next_dof} DOFs ({self._n_vertex} vertex, {self._n_edge} edge, "
            f"{self._n_bubble} bubble) on {len(elements)} elements, "
            f"{len(self._hanging)} hanging vertices."
        )

    # ------------------------------------------------------------------
    # Representations of vertex and edge functions in terms of global DOFs
    # ------------------------------------------------------------------
    def _position(self, vertex: int, root: EdgeKey) -> float:
        """Parameter in [-1, 1] of a vertex lying on ``root``, running from its lower to its higher vertex."""
        lo, hi = root
        if vertex == lo:
            return -1.0
        if vertex == hi:
            return 1.0
        a, b = self.mesh.get_midpoint_edge(vertex)
        return 0.5 * (self._position(a, root) + self._position(b, root))

    def _root_generators(self, root: EdgeKey) -> list[tuple[Representation, int]]:
        # trace of the constraining edge: vertex functions l0, l1 and edge functions l_k
        generators = [(self._vertex_rep(root[0]), 0), (self._vertex_rep(root[1]), 1)]
        first = self._edge_dofs.get(root)
        for k in range(2, self._edge_orders[root] + 1):
            generators.append(({first + k - 2: 1.0}, k))
        return generators

    def _vertex_rep(self, vertex: int) -> Representation:
        if vertex in self._vertex_reps:
            return self._vertex_reps[vertex]

        if vertex in self._vertex_dofs:
            rep = {self._vertex_dofs[vertex]: 1.0}
        elif vertex in self._dirichlet_vertices:
            rep = {LIFT: self._dirichlet_vertices[vertex]}
        else:
            root = self._hanging[vertex]
            s = self._position(vertex, root)
            rep = {}
            for generator, k in self._root_generators(root):
                _accumulate(rep, generator, float(LOBATTO[k](s)))

        self._vertex_reps[vertex] = rep
        return rep

    def _edge_rep(self, key: EdgeKey) -> list[Representation]:
        """Representations of the edge functions l_2 .. l_q of an active edge."""
        if key in self._edge_reps:
            return self._edge_reps[key]

        order = self._edge_orders[key]
        if key in self._edge_dofs:
            first = self._edge_dofs[key]
            reps = [{first + k - 2: 1.0} for k in range(2, order + 1)]
        elif key in self._dirichlet_edges:
            reps = [{LIFT: float(c)} for c in self._dirichlet_projection(key, order)]
        elif key in self._constrained:
            root = self._roots[key]
            s_lo, s_hi = self._position(key[0], root), self._position(key[1], root)
            reps = [{} for _ in range(order - 1)]
            for generator, k in self._root_generators(root):
                trace = LOBATTO[k]
                coefficients = edge_coefficients(
                    lambda t, trace=trace: trace(s_lo + 0.5 * (s_hi - s_lo) * (t + 1.0)), order
                )
                for rep, c in zip(reps, coefficients):
                    _accumulate(rep, generator, float(c))
        else:
            reps = []

        self._edge_reps[key] = reps
        return reps

    def _dirichlet_projection(self, key: EdgeKey, order: int) -> npt.NDArray[np.float64]:
        bc = self._dirichlet_edges[key]
        if bc.is_constant or order < 2:
            return np.zeros(max(order - 1, 0))
        p_lo, p_hi = self.mesh.nodes[key[0]].coords, self.mesh.nodes[key[1]].coords

        def trace(t: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            x = 0.5 * (1.0 - t) * p_lo[0] + 0.5 * (1.0 + t) * p_hi[0]
            y = 0.5 * (1.0 - t) * p_lo[1] + 0.5 * (1.0 + t) * p_hi[1]
            return bc.value(x, y)

        return edge_coefficients(trace, order)

    def _build_finite_element(self, element_id: int) -> FiniteElement:
        element = self._active_element(element_id)
        edges = element.edges()
        element_class = Triangle if element.is_triangle else Quad
        return element_class(
            index=element.id,
            region=element.region,
            coords=self.mesh.get_element_coords(element),
            order=self._element_orders[element.id],
            edge_orders=[self._edge_orders[edge_key(a, b)] for a, b in edges],
            edge_orientations=[1 if a < b else -1 for a, b in edges],
        )

    def _build_assembly_list(self, element_id: int) -> AssemblyList:
        element = self._active_element(element_id)
        fe = self.get_finite_element(element_id)
        edges = element.edges()

        reps: list[Representation] = []
        for key in fe.function_keys:
            if key[0] == "vertex":
                reps.append(self._vertex_rep(element.vertices[key[1]]))
            elif key[0] == "edge":
                _, local_edge, k = key
                reps.append(self._edge_rep(edge_key(*edges[local_edge]))[k - 2])
            else:
                reps.append({self._bubble_dofs[element_id] + key[1]: 1.0})

        dofs = sorted({dof for rep in reps for dof in rep if dof != LIFT})
        column = {dof: j for j, dof in enumerate(dofs)}
        coefficients = np.zeros((len(reps), len(dofs)), dtype=np.float64)
        lift = np.zeros(len(reps), dtype=np.float64)
        for i, rep in enumerate(reps):
            for dof, c in rep.items():
                if dof == LIFT:
                    lift[i] = c
                else:
                    coefficients[i, column[dof]] = c

        return AssemblyList(
            element_id=element_id,
            dofs=np.array(dofs, dtype=np.int64),
            coefficients=coefficients,
            lift=lift,
        )

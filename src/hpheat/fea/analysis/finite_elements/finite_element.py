from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, ClassVar, Sequence

import numpy as np

from hpheat.fea.analysis.lobatto import MAX_ORDER
import hpheat.fea.analysis.gauss as gauss

if TYPE_CHECKING:
    import numpy.typing as npt

    Coefficient = Callable[[npt.NDArray[np.float64], npt.NDArray[np.float64]], npt.NDArray[np.float64]]

# Local function keys: ("vertex", i), ("edge", local_edge, k), ("bubble", j)
FunctionKey = tuple


class FiniteElement(ABC):
    """
    Abstract base class for hierarchical H1 finite elements.

    An instance couples the geometry of one mesh element with the local
    shapeset selected by the element order, the orders of its edges and the
    orientation of its edges. Local functions are ordered vertex functions
    first, then edge functions edge by edge (orders 2 .. edge order), then
    bubble functions.
    """

    REFERENCE_VERTICES: ClassVar[npt.NDArray[np.float64]]
    LOCAL_EDGES: ClassVar[tuple[tuple[int, int], ...]]

    def __init__(
        self,
        index: int,
        region: str,
        coords: Sequence[Sequence[float]] | npt.NDArray[np.float64],
        order: int,
        edge_orders: Sequence[int] | None = None,
        edge_orientations: Sequence[int] | None = None,
    ) -> None:
        """
        Initialize the finite element.

        Args:
            index: Element id in the mesh.
            region: Name of the region (material) of the element.
            coords: Vertex coordinates, one row per vertex.
            order: Polynomial order of the element (1 .. MAX_ORDER).
            edge_orders: Order of every local edge; defaults to ``order``.
            edge_orientations: +1 if the local edge runs from the lower to the
                higher global vertex id, -1 otherwise; defaults to +1.
        """
        n_edges = len(self.LOCAL_EDGES)

        self.id = index
        self.region = region
        self.coords = np.array(coords, dtype=np.float64).reshape(-1, 2)
        if self.coords.shape[0] != len(self.REFERENCE_VERTICES):
            raise ValueError(
                f"{self.__class__.__name__} needs {len(self.REFERENCE_VERTICES)} vertices, "
                f"got {self.coords.shape[0]}."
            )
        if not 1 <= order <= MAX_ORDER:
            raise ValueError(f"Element order must be in 1..{MAX_ORDER}, got {order}.")

        self.order = int(order)
        self.edge_orders = tuple(int(q) for q in (edge_orders if edge_orders is not None else [order] * n_edges))
        self.edge_orientations = tuple(
            int(o) for o in (edge_orientations if edge_orientations is not None else [1] * n_edges)
        )
        if len(self.edge_orders) != n_edges or len(self.edge_orientations) != n_edges:
            raise ValueError(f"Expected {n_edges} edge orders and orientations.")
        if any(q < 1 or q > self.order for q in self.edge_orders):
            raise ValueError(f"Edge orders {self.edge_orders} must lie in 1..{self.order}.")

        self.x = self.coords[:, 0]
        self.y = self.coords[:, 1]

        self.function_keys: list[FunctionKey] = self._build_function_keys()

    def __repr__(self) -> str:
        """String representation of the finite element."""
        return f"{self.__class__.__name__}(id={self.id}, region='{self.region}', order={self.order})"

    @property
    def number_of_vertices(self) -> int:
        """Number of vertices of the element."""
        return len(self.REFERENCE_VERTICES)

    @property
    def number_of_functions(self) -> int:
        """Number of local shape functions."""
        return len(self.function_keys)

    def _build_function_keys(self) -> list[FunctionKey]:
        keys: list[FunctionKey] = [("vertex", i) for i in range(self.number_of_vertices)]
        for edge, q in enumerate(self.edge_orders):
            keys.extend(("edge", edge, k) for k in range(2, q + 1))
        keys.extend(("bubble", j) for j in range(len(self.bubble_indices(self.order))))
        return keys

    @staticmethod
    @abstractmethod
    def bubble_indices(order: int) -> list[tuple[int, int]]:
        """Index pairs of the bubble functions of an element of the given order."""
        pass

    @classmethod
    def bubble_count(cls, order: int) -> int:
        """Number of bubble functions of an element of the given order."""
        return len(cls.bubble_indices(order))

    @abstractmethod
    def shape_values(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Values of all local functions at reference points.

        Args:
            ref_points: (n, 2) reference coordinates.

        Returns:
            (number_of_functions, n) array.
        """
        pass

    @abstractmethod
    def shape_gradients(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Reference gradients of all local functions.

        Returns:
            (number_of_functions, n, 2) array of derivatives w.r.t. the reference coordinates.
        """
        pass

    @abstractmethod
    def geometry_jacobian(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Jacobian matrices of the reference map, J[i, j] = d x_j / d xi_i.

        Returns:
            (n, 2, 2) array.
        """
        pass

    @abstractmethod
    def map_to_physical(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Map (n, 2) reference points to physical coordinates."""
        pass

    @abstractmethod
    def inverse_map(self, point: Sequence[float], tol: float = 1e-10) -> npt.NDArray[np.float64] | None:
        """
        Reference coordinates of a physical point.

        Returns:
            (2,) reference coordinates, or None if the point lies outside the element.
        """
        pass

    @abstractmethod
    def get_integration_scheme(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Get the integration scheme for the finite element.

        Returns:
            Tuple of reference points (n, 2) and weights for numerical integration.
        """
        pass

    @property
    def integration_points_per_direction(self) -> int:
        """Gauss points per direction, enough for the stiffness of the element order."""
        return self.order + 2

    def physical_gradients(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Physical gradients of all local functions.

        [B] = [J]⁻¹ ∇_ref[N]

        Returns:
            (number_of_functions, n, 2) array.
        """
        inv_j = np.linalg.inv(self.geometry_jacobian(ref_points))
        return np.einsum("qij,fqj->fqi", inv_j, self.shape_gradients(ref_points))

    def get_stiffness_matrix(self, conductivity: Coefficient) -> npt.NDArray[np.float64]:
        """
        Calculate the conductivity matrix [K] = ∑ (Bᵀ B * λ(x_gp) * |detJ| * w).

        Args:
            conductivity: Vectorised coefficient λ(x, y).

        Returns:
            (number_of_functions, number_of_functions) matrix.
        """
        gauss_points, weights = self.get_integration_scheme()

        jac = self.geometry_jacobian(gauss_points)
        det_j = np.abs(np.linalg.det(jac))
        b = np.einsum("qij,fqj->fqi", np.linalg.inv(jac), self.shape_gradients(gauss_points))

        xy = self.map_to_physical(gauss_points)
        lambda_gp = np.broadcast_to(conductivity(xy[:, 0], xy[:, 1]), weights.shape)

        return np.einsum("fqi,gqi,q->fg", b, b, weights * det_j * lambda_gp)

    def get_load_vector(self, source: Coefficient) -> npt.NDArray[np.float64]:
        """
        Calculate the volumetric load vector {F} = ∑ (N * q(x_gp) * |detJ| * w).

        Args:
            source: Vectorised volumetric heat source q(x, y).
        """
        gauss_points, weights = self.get_integration_scheme()

        det_j = np.abs(np.linalg.det(self.geometry_jacobian(gauss_points)))
        xy = self.map_to_physical(gauss_points)
        q_gp = np.broadcast_to(source(xy[:, 0], xy[:, 1]), weights.shape)

        return self.shape_values(gauss_points) @ (weights * det_j * q_gp)

    def edge_reference_points(self, edge: int, t: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Reference points on a local edge for the edge parameter t in [-1, 1].

        The parameter runs from the first to the second local vertex of the edge.
        """
        a, b = self.LOCAL_EDGES[edge]
        t = np.asarray(t, dtype=np.float64)[:, None]
        return 0.5 * (1.0 - t) * self.REFERENCE_VERTICES[a] + 0.5 * (1.0 + t) * self.REFERENCE_VERTICES[b]

    def edge_length(self, edge: int) -> float:
        """Length of a (straight) local edge."""
        a, b = self.LOCAL_EDGES[edge]
        return float(np.linalg.norm(self.coords[b] - self.coords[a]))

    def _edge_quadrature(self, edge: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        t, w = gauss.gauss_points_weights_edge(self.integration_points_per_direction)
        ref_points = self.edge_reference_points(edge, t)
        det_j = 0.5 * self.edge_length(edge)
        return ref_points, self.map_to_physical(ref_points), w * det_j

    def get_edge_mass_matrix(self, edge: int, coefficient: Coefficient) -> npt.NDArray[np.float64]:
        """
        Boundary matrix ∫ α N Nᵀ ds over one local edge (convective exchange).
        """
        ref_points, xy, weights = self._edge_quadrature(edge)
        n = self.shape_values(ref_points)
        alpha = np.broadcast_to(coefficient(xy[:, 0], xy[:, 1]), weights.shape)
        return np.einsum("fq,gq,q->fg", n, n, weights * alpha)

    def get_edge_load_vector(self, edge: int, coefficient: Coefficient) -> npt.NDArray[np.float64]:
        """
        Boundary load ∫ g N ds over one local edge.
        """
        ref_points, xy, weights = self._edge_quadrature(edge)
        g = np.broadcast_to(coefficient(xy[:, 0], xy[:, 1]), weights.shape)
        return self.shape_values(ref_points) @ (weights * g)

    def values(
        self,
        ref_points: npt.NDArray[np.float64],
        coefficients: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Field values at reference points for the given local coefficients."""
        return coefficients @ self.shape_values(np.atleast_2d(ref_points))

    def gradients(
        self,
        ref_points: npt.NDArray[np.float64],
        coefficients: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Physical field gradients (n, 2) at reference points for the given local coefficients."""
        return np.einsum("f,fqi->qi", coefficients, self.physical_gradients(np.atleast_2d(ref_points)))

    def area(self) -> float:
        """Area of the element."""
        gauss_points, weights = self.get_integration_scheme()
        return float(np.sum(weights * np.abs(np.linalg.det(self.geometry_jacobian(gauss_points)))))

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Sequence

import numpy as np

from hpheat.fea.analysis.finite_elements.finite_element import FiniteElement
from hpheat.fea.analysis.lobatto import lobatto, lobatto_derivative
import hpheat.fea.analysis.gauss as gauss

if TYPE_CHECKING:
    import numpy.typing as npt


# Lobatto indices (ξ, η) of the bilinear vertex functions
VERTEX_INDICES = ((0, 0), (1, 0), (1, 1), (0, 1))

# (axis along the edge, direction, blending axis, blending Lobatto index)
EDGE_PARAMETERS = (
    (0, 1.0, 1, 0),
    (1, 1.0, 0, 1),
    (0, -1.0, 1, 1),
    (1, -1.0, 0, 0),
)


class Quad(FiniteElement):
    """
    Represents a bilinear quadrilateral with a tensor-product Lobatto shapeset.

    The reference square is [-1, 1]² with counter-clockwise vertices
    (-1, -1), (1, -1), (1, 1), (-1, 1).
    """
    REFERENCE_VERTICES: ClassVar[npt.NDArray[np.float64]] = np.array([
        [-1.0, -1.0],
        [1.0, -1.0],
        [1.0, 1.0],
        [-1.0, 1.0],
    ])
    LOCAL_EDGES: ClassVar[tuple[tuple[int, int], ...]] = ((0, 1), (1, 2), (2, 3), (3, 0))

    def __init__(
        self,
        index: int,
        region: str,
        coords: Sequence[Sequence[float]] | npt.NDArray[np.float64],
        order: int,
        edge_orders: Sequence[int] | None = None,
        edge_orientations: Sequence[int] | None = None,
    ) -> None:
        super().__init__(
            index=index,
            region=region,
            coords=coords,
            order=order,
            edge_orders=edge_orders,
            edge_orientations=edge_orientations,
        )
        corners = self.geometry_jacobian(self.REFERENCE_VERTICES)
        if np.any(np.linalg.det(corners) <= 1e-14):
            raise ValueError(f"Degenerate or inverted quad {self.id}: {self.coords.tolist()}")

    @staticmethod
    def bubble_indices(order: int) -> list[tuple[int, int]]:
        """Lobatto index pairs (i, j), 2 <= i, j <= order, grouped by max(i, j)."""
        indices = []
        for n in range(2, order + 1):
            indices.extend((i, n) for i in range(2, n + 1))
            indices.extend((n, j) for j in range(2, n))
        return indices

    def _vertex_values(self, xi, eta):
        return [lobatto(i, xi) * lobatto(j, eta) for i, j in VERTEX_INDICES]

    def shape_values(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        ref_points = np.atleast_2d(ref_points)
        xi, eta = ref_points[:, 0], ref_points[:, 1]

        values = self._vertex_values(xi, eta)

        for edge, (axis, direction, blend_axis, blend_index) in enumerate(EDGE_PARAMETERS):
            sign = direction * self.edge_orientations[edge]
            t = sign * ref_points[:, axis]
            blend = lobatto(blend_index, ref_points[:, blend_axis])
            for k in range(2, self.edge_orders[edge] + 1):
                values.append(lobatto(k, t) * blend)

        for i, j in self.bubble_indices(self.order):
            values.append(lobatto(i, xi) * lobatto(j, eta))

        return np.array(values)

    def shape_gradients(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        ref_points = np.atleast_2d(ref_points)
        xi, eta = ref_points[:, 0], ref_points[:, 1]

        gradients = [
            np.stack([lobatto_derivative(i, xi) * lobatto(j, eta), lobatto(i, xi) * lobatto_derivative(j, eta)], axis=-1)
            for i, j in VERTEX_INDICES
        ]

        for edge, (axis, direction, blend_axis, blend_index) in enumerate(EDGE_PARAMETERS):
            sign = direction * self.edge_orientations[edge]
            t = sign * ref_points[:, axis]
            blend = lobatto(blend_index, ref_points[:, blend_axis])
            d_blend = lobatto_derivative(blend_index, ref_points[:, blend_axis])
            for k in range(2, self.edge_orders[edge] + 1):
                grad = np.empty((ref_points.shape[0], 2))
                grad[:, axis] = sign * lobatto_derivative(k, t) * blend
                grad[:, blend_axis] = lobatto(k, t) * d_blend
                gradients.append(grad)

        for i, j in self.bubble_indices(self.order):
            gradients.append(
                np.stack([lobatto_derivative(i, xi) * lobatto(j, eta), lobatto(i, xi) * lobatto_derivative(j, eta)], axis=-1)
            )

        return np.array(gradients)

    def geometry_jacobian(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        ref_points = np.atleast_2d(ref_points)
        xi, eta = ref_points[:, 0], ref_points[:, 1]
        # dN[v, q, i] = dN_v / dξ_i
        d_n = np.array([
            np.stack([lobatto_derivative(i, xi) * lobatto(j, eta), lobatto(i, xi) * lobatto_derivative(j, eta)], axis=-1)
            for i, j in VERTEX_INDICES
        ])
        return np.einsum("vqi,vj->qij", d_n, self.coords)

    def map_to_physical(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        ref_points = np.atleast_2d(ref_points)
        n = np.array(self._vertex_values(ref_points[:, 0], ref_points[:, 1]))
        return n.T @ self.coords

    def inverse_map(self, point: Sequence[float], tol: float = 1e-10) -> npt.NDArray[np.float64] | None:
        target = np.asarray(point, dtype=np.float64)
        scale = max(float(np.ptp(self.x)), float(np.ptp(self.y)), 1.0)

        # Newton iterations on x(ξ) = point
        ref = np.zeros(2)
        for _ in range(50):
            residual = self.map_to_physical(ref[None, :])[0] - target
            jac = self.geometry_jacobian(ref[None, :])[0]
            try:
                step = np.linalg.solve(jac.T, residual)
            except np.linalg.LinAlgError:
                return None
            ref = ref - step
            if np.linalg.norm(step) < 1e-14 * scale:
                break
            if np.any(np.abs(ref) > 10.0):
                return None

        if np.linalg.norm(self.map_to_physical(ref[None, :])[0] - target) > 1e-9 * scale:
            return None
        if np.all(np.abs(ref) <= 1.0 + tol):
            return np.clip(ref, -1.0, 1.0)
        return None

    def get_integration_scheme(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Get the integration scheme for the quad.

        Returns:
            Tuple of reference points (ξ, η) and weights (summing to 4).
        """
        return gauss.gauss_points_weights_quadrilateral(self.integration_points_per_direction)

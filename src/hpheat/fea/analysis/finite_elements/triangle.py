from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Sequence

import numpy as np
import numba as nb

from hpheat.fea.analysis.finite_elements.finite_element import FiniteElement
from hpheat.fea.analysis.lobatto import kernel, kernel_derivative, legendre, legendre_derivative
import hpheat.fea.analysis.gauss as gauss

if TYPE_CHECKING:
    import numpy.typing as npt


# B_N = [
#   [dλ0(r,s)/dr, dλ1(r,s)/dr, dλ2(r,s)/dr],
#   [dλ0(r,s)/ds, dλ1(r,s)/ds, dλ2(r,s)/ds]
# ]
B_N = np.array([
    [-1.0, 1.0, 0.0],
    [-1.0, 0.0, 1.0],
])

# Gradients of the bubble variables u = λ1 - λ0 and w = 2 λ2 - 1
GRAD_U = np.array([2.0, 1.0])
GRAD_W = np.array([0.0, 2.0])


@nb.jit(cache=True, fastmath=True)
def _inv2(
    a11: float,
    a12: float,
    a21: float,
    a22: float
) -> tuple[tuple[float, float, float, float], float]:
    """
    Compute the inverse and determinant of a 2×2 matrix [[a11, a12], [a21, a22]].

    Args:
        a11, a12, a21, a22: Elements of the 2x2 matrix.

    Returns:
        A tuple containing the elements of the inverse matrix and the determinant.
    """
    det = a11 * a22 - a12 * a21
    inv = (a22 / det, -a12 / det, -a21 / det, a11 / det)
    return inv, det


@nb.jit(cache=True, fastmath=True)
def _triangle_jacobian(
    x: npt.NDArray[np.float64],
    y: npt.NDArray[np.float64]
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], float]:
    """
    Build the constant Jacobian of the affine triangle map and its inverse.

    Args:
        x: (3, ) array of x-coordinates of the element's vertices.
        y: (3, ) array of y-coordinates of the element's vertices.

    Returns:
        J: (2, 2) Jacobian matrix, J = B_N @ [x, y].T
        inv_J: (2, 2) inverse of the Jacobian.
        detJ: Jacobian determinant (positive for counter-clockwise vertices).
    """
    J = np.empty((2, 2), dtype=np.float64)
    J[0, 0] = B_N[0, 0] * x[0] + B_N[0, 1] * x[1] + B_N[0, 2] * x[2]
    J[0, 1] = B_N[0, 0] * y[0] + B_N[0, 1] * y[1] + B_N[0, 2] * y[2]
    J[1, 0] = B_N[1, 0] * x[0] + B_N[1, 1] * x[1] + B_N[1, 2] * x[2]
    J[1, 1] = B_N[1, 0] * y[0] + B_N[1, 1] * y[1] + B_N[1, 2] * y[2]

    (i00, i01, i10, i11), detJ = _inv2(J[0, 0], J[0, 1], J[1, 0], J[1, 1])

    inv_J = np.empty((2, 2), dtype=np.float64)
    inv_J[0, 0] = i00
    inv_J[0, 1] = i01
    inv_J[1, 0] = i10
    inv_J[1, 1] = i11

    return J, inv_J, detJ


class Triangle(FiniteElement):
    """
    Represents a straight-sided triangle with a hierarchical Lobatto shapeset.

    The reference triangle has vertices (0, 0), (1, 0) and (0, 1); the
    barycentric coordinates are [1 - r - s, r, s]. Local edges run between
    vertices (0, 1), (1, 2) and (2, 0).
    """
    REFERENCE_VERTICES: ClassVar[npt.NDArray[np.float64]] = np.array([
        [0.0, 0.0],
        [1.0, 0.0],
        [0.0, 1.0],
    ])
    LOCAL_EDGES: ClassVar[tuple[tuple[int, int], ...]] = ((0, 1), (1, 2), (2, 0))

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
        # twice the signed area, checked before _inv2 divides by it
        det = (self.x[1] - self.x[0]) * (self.y[2] - self.y[0]) - (self.x[2] - self.x[0]) * (self.y[1] - self.y[0])
        if abs(det) <= 1e-14:
            raise ValueError(f"Degenerate triangle {self.id}: {self.coords.tolist()}")
        self._J, self._inv_J, self.det_J = _triangle_jacobian(self.x, self.y)

    @staticmethod
    def bubble_indices(order: int) -> list[tuple[int, int]]:
        """Legendre index pairs (n1, n2) with n1 + n2 <= order - 3."""
        return [(n1, n - n1) for n in range(order - 2) for n1 in range(n + 1)]

    @staticmethod
    def barycentric(ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Barycentric coordinates [1 - r - s, r, s], shape (3, n)."""
        r, s = ref_points[:, 0], ref_points[:, 1]
        return np.array([1.0 - r - s, r, s])

    def shape_values(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        lam = self.barycentric(np.atleast_2d(ref_points))

        values = [lam[i] for i in range(3)]

        for edge, (a, b) in enumerate(self.LOCAL_EDGES):
            sigma = self.edge_orientations[edge]
            t = sigma * (lam[b] - lam[a])
            for k in range(2, self.edge_orders[edge] + 1):
                values.append(lam[a] * lam[b] * kernel(k, t))

        bubble = lam[0] * lam[1] * lam[2]
        u = lam[1] - lam[0]
        w = 2.0 * lam[2] - 1.0
        for n1, n2 in self.bubble_indices(self.order):
            values.append(bubble * legendre(n1, u) * legendre(n2, w))

        return np.array(values)

    def shape_gradients(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        lam = self.barycentric(np.atleast_2d(ref_points))
        grad_lam = B_N.T  # (3, 2), row i = ∇λi
        n_pts = lam.shape[1]

        gradients = [np.broadcast_to(grad_lam[i], (n_pts, 2)) for i in range(3)]

        for edge, (a, b) in enumerate(self.LOCAL_EDGES):
            sigma = self.edge_orientations[edge]
            t = sigma * (lam[b] - lam[a])
            grad_t = sigma * (grad_lam[b] - grad_lam[a])
            grad_ab = lam[b][:, None] * grad_lam[a] + lam[a][:, None] * grad_lam[b]
            ab = lam[a] * lam[b]
            for k in range(2, self.edge_orders[edge] + 1):
                gradients.append(
                    kernel(k, t)[:, None] * grad_ab
                    + (ab * kernel_derivative(k, t))[:, None] * grad_t
                )

        bubble = lam[0] * lam[1] * lam[2]
        grad_bubble = (
            (lam[1] * lam[2])[:, None] * grad_lam[0]
            + (lam[0] * lam[2])[:, None] * grad_lam[1]
            + (lam[0] * lam[1])[:, None] * grad_lam[2]
        )
        u = lam[1] - lam[0]
        w = 2.0 * lam[2] - 1.0
        for n1, n2 in self.bubble_indices(self.order):
            pu, pw = legendre(n1, u), legendre(n2, w)
            dpu, dpw = legendre_derivative(n1, u), legendre_derivative(n2, w)
            gradients.append(
                (pu * pw)[:, None] * grad_bubble
                + (bubble * dpu * pw)[:, None] * GRAD_U
                + (bubble * pu * dpw)[:, None] * GRAD_W
            )

        return np.array([np.asarray(g, dtype=np.float64) for g in gradients])

    def geometry_jacobian(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        n_pts = np.atleast_2d(ref_points).shape[0]
        return np.broadcast_to(self._J, (n_pts, 2, 2)).copy()

    def physical_gradients(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Physical gradients of all local functions, [B] = [J]⁻¹ ∇_ref[N] with a constant [J].
        """
        return np.einsum("ij,fqj->fqi", self._inv_J, self.shape_gradients(ref_points))

    def map_to_physical(self, ref_points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return self.barycentric(np.atleast_2d(ref_points)).T @ self.coords

    def inverse_map(self, point: Sequence[float], tol: float = 1e-10) -> npt.NDArray[np.float64] | None:
        # x - x0 = Jᵀ [r, s]
        ref = self._inv_J.T @ (np.asarray(point, dtype=np.float64) - self.coords[0])
        r, s = ref
        if r >= -tol and s >= -tol and r + s <= 1.0 + tol:
            return ref
        return None

    def get_integration_scheme(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Get the integration scheme for the triangle.

        Returns:
            Tuple of reference points (r, s) and weights (summing to 1/2).
        """
        points, weights = gauss.gauss_points_weights_triangle(self.integration_points_per_direction)
        return points[:, 1:3], weights

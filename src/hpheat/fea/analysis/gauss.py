from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt


def _check_points(n_points: int) -> None:
    if n_points < 1:
        raise ValueError(f"Unsupported number of Gauss points: {n_points}. "
                         f"'n_points' must be a positive integer.")


def gauss_points_weights_edge(n_points: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Generate Gauss points and weights for a 1D Gaussian integration on the interval [-1, +1].

    Args:
        n_points: Number of integration points. The rule is exact for polynomials
            of degree 2 * n_points - 1.

    Raises:
        ValueError: If `n_points` is smaller than 1.

    Returns:
        A tuple containing the Gauss points and weights.
    """
    _check_points(n_points)
    points, weights = np.polynomial.legendre.leggauss(n_points)
    return points, weights


def gauss_points_weights_triangle(n_points: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Generate Gauss points and weights for a triangular Gaussian integration.

    Triangle is assumed to be a unit triangle with vertices at (0,0), (1,0), and (0,1).
    The points are obtained by collapsing an ``n_points x n_points`` Gauss rule on
    the square [-1, 1]^2 onto the triangle (Duffy transform).

    The weights are multiplied by the area of the triangle (1/2 for a unit triangle).

    Args:
        n_points: Number of integration points per direction.

    Raises:
        ValueError: If `n_points` is smaller than 1.

    Returns:
        A tuple containing the Gauss points as isoparametric coordinates
        ``[1 - r - s, r, s]`` and the weights.
    """
    _check_points(n_points)
    u, w_u = np.polynomial.legendre.leggauss(n_points)
    uu, vv = np.meshgrid(u, u, indexing="ij")

    r = 0.5 * (1.0 + uu)
    s = 0.25 * (1.0 - uu) * (1.0 + vv)
    weights = np.outer(w_u, w_u) * (1.0 - uu) / 8.0

    r = r.ravel()
    s = s.ravel()
    return np.column_stack((1.0 - r - s, r, s)), weights.ravel()


def gauss_points_weights_quadrilateral(n_points: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Generate Gauss points and weights for a quadrilateral Gaussian integration.

    Quadrilateral is assumed to be a square with vertices at (-1,-1), (1,-1), (1,1), and (-1,1).

    Args:
        n_points: Number of integration points per direction.

    Raises:
        ValueError: If `n_points` is smaller than 1.

    Returns:
        A tuple containing the Gauss points (n_points**2, 2) and weights.
    """
    _check_points(n_points)
    x, w = np.polynomial.legendre.leggauss(n_points)
    xi, eta = np.meshgrid(x, x, indexing="ij")
    return np.column_stack((xi.ravel(), eta.ravel())), np.outer(w, w).ravel()

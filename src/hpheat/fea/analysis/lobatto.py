from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import numpy as np
from numpy.polynomial import Legendre, Polynomial

if TYPE_CHECKING:
    import numpy.typing as npt

# Highest polynomial order supported by the shapesets.
MAX_ORDER = 10


def _build_lobatto(max_order: int) -> list[Polynomial]:
    """
    Build the Lobatto shape functions l_0 ... l_max_order on [-1, 1].

    l_0 = (1 - x) / 2, l_1 = (1 + x) / 2 and for k >= 2
    l_k = (P_k - P_{k-2}) / sqrt(2 (2k - 1)), which vanish at both end points.
    """
    functions = [Polynomial([0.5, -0.5]), Polynomial([0.5, 0.5])]
    for k in range(2, max_order + 1):
        l_k = (Legendre.basis(k) - Legendre.basis(k - 2)).convert(kind=Polynomial)
        functions.append(l_k / np.sqrt(2.0 * (2 * k - 1)))
    return functions


def _build_kernels(lobatto_functions: list[Polynomial]) -> list[Polynomial | None]:
    """
    Kernel functions phi_k = l_k / (l_0 l_1) used by the triangle edge functions.

    Index k refers to the Lobatto function l_k; entries 0 and 1 are undefined.
    """
    l0_l1 = Polynomial([0.25, 0.0, -0.25])
    kernels: list[Polynomial | None] = [None, None]
    for l_k in lobatto_functions[2:]:
        quotient, _ = divmod(l_k, l0_l1)
        kernels.append(quotient)
    return kernels


LOBATTO = _build_lobatto(MAX_ORDER)
LOBATTO_DERIVATIVES = [f.deriv() for f in LOBATTO]
KERNELS = _build_kernels(LOBATTO)
KERNEL_DERIVATIVES = [None if f is None else f.deriv() for f in KERNELS]
LEGENDRE = [Legendre.basis(n).convert(kind=Polynomial) for n in range(MAX_ORDER + 1)]
LEGENDRE_DERIVATIVES = [f.deriv() for f in LEGENDRE]


def lobatto(k: int, x: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Value of the Lobatto shape function l_k at x."""
    return LOBATTO[k](np.asarray(x, dtype=np.float64))


def lobatto_derivative(k: int, x: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Derivative of the Lobatto shape function l_k at x."""
    return LOBATTO_DERIVATIVES[k](np.asarray(x, dtype=np.float64))


def kernel(k: int, x: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Value of the kernel function belonging to l_k (k >= 2) at x."""
    return KERNELS[k](np.asarray(x, dtype=np.float64))


def kernel_derivative(k: int, x: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Derivative of the kernel function belonging to l_k (k >= 2) at x."""
    return KERNEL_DERIVATIVES[k](np.asarray(x, dtype=np.float64))


def legendre(n: int, x: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Value of the Legendre polynomial P_n at x."""
    return LEGENDRE[n](np.asarray(x, dtype=np.float64))


def legendre_derivative(n: int, x: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Derivative of the Legendre polynomial P_n at x."""
    return LEGENDRE_DERIVATIVES[n](np.asarray(x, dtype=np.float64))


def edge_coefficients(
    func: Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]],
    order: int
) -> npt.NDArray[np.float64]:
    """
    Coefficients of the edge functions l_2 ... l_order reproducing a 1D function.

    The linear part ``func(-1) l_0 + func(1) l_1`` is carried by the vertex
    functions; the remainder is collocated at ``order - 1`` Gauss points, which
    is exact whenever ``func`` is a polynomial of degree <= ``order``.

    Args:
        func: Vectorised function of the edge parameter t in [-1, 1].
        order: Edge order.

    Returns:
        Array of length ``order - 1`` (empty for order < 2).
    """
    if order < 2:
        return np.empty(0, dtype=np.float64)

    ends = np.asarray(func(np.array([-1.0, 1.0])), dtype=np.float64)
    t, _ = np.polynomial.legendre.leggauss(order - 1)
    remainder = np.asarray(func(t), dtype=np.float64) - ends[0] * LOBATTO[0](t) - ends[1] * LOBATTO[1](t)

    collocation = np.array([LOBATTO[k](t) for k in range(2, order + 1)], dtype=np.float64).T
    return np.linalg.solve(collocation, remainder)

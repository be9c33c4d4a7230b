from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt
    from hpheat.fea.analysis.finite_elements import FiniteElement
    from hpheat.fea.analysis.space import H1Space

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ElementSolution:
    """Snapshot of one element: its local shapeset and local coefficients."""
    finite_element: FiniteElement
    coefficients: npt.NDArray[np.float64]


class Solution:
    """
    Temperature field reconstructed from a coefficient vector and the space that produced it.

    The element snapshots are independent of later changes of the space or
    of its mesh.
    """
    def __init__(self) -> None:
        self.elements: dict[int, ElementSolution] = {}
        self._bounding_boxes: npt.NDArray[np.float64] = np.empty((0, 4))
        self._element_ids: list[int] = []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(elements={len(self.elements)})"

    @staticmethod
    def vector_to_solution(
        coefficient_vector: npt.ArrayLike,
        space: H1Space,
        out_solution: Solution | None = None,
    ) -> Solution:
        """
        Build a solution from a coefficient vector.

        Args:
            coefficient_vector: Values of the global DOFs of ``space``.
            space: The space the vector belongs to.
            out_solution: Existing solution to overwrite.

        Raises:
            ValueError: If the vector length differs from the number of DOFs.
        """
        vector = np.asarray(coefficient_vector, dtype=np.float64)
        n_dofs = space.get_num_dofs()
        if vector.ndim != 1 or vector.shape[0] != n_dofs:
            raise ValueError(f"Coefficient vector has shape {vector.shape}, the space has {n_dofs} DOFs.")

        solution = out_solution if out_solution is not None else Solution()
        solution.elements = {}
        for element in space.mesh.active_elements():
            fe = space.get_finite_element(element.id)
            local = space.get_assembly_list(element.id).local_values(vector)
            solution.elements[element.id] = ElementSolution(fe, local.copy())

        solution._element_ids = list(solution.elements)
        solution._bounding_boxes = np.array([
            [item.finite_element.x.min(), item.finite_element.x.max(),
             item.finite_element.y.min(), item.finite_element.y.max()]
            for item in solution.elements.values()
        ]).reshape(-1, 4)
        logger.debug(f"Reconstructed solution on {len(solution.elements)} elements.")
        return solution

    def _locate(self, x: float, y: float, tol: float = 1e-10) -> tuple[ElementSolution, npt.NDArray[np.float64]]:
        boxes = self._bounding_boxes
        pad = tol * max(1.0, float(np.abs(boxes).max()) if boxes.size else 1.0)
        candidates = np.nonzero(
            (boxes[:, 0] - pad <= x) & (x <= boxes[:, 1] + pad)
            & (boxes[:, 2] - pad <= y) & (y <= boxes[:, 3] + pad)
        )[0]
        for index in candidates:
            item = self.elements[self._element_ids[index]]
            ref = item.finite_element.inverse_map((x, y), tol=1e-8)
            if ref is not None:
                return item, ref
        raise ValueError(f"Point ({x}, {y}) lies outside the mesh.")

    def get_pt_value(self, x: float, y: float) -> float:
        """
        Value of the field at a physical point.

        Raises:
            ValueError: If the point lies outside the mesh.
        """
        item, ref = self._locate(x, y)
        return float(item.finite_element.values(ref[None, :], item.coefficients)[0])

    def get_pt_gradient(self, x: float, y: float) -> npt.NDArray[np.float64]:
        """Gradient (du/dx, du/dy) of the field at a physical point."""
        item, ref = self._locate(x, y)
        return item.finite_element.gradients(ref[None, :], item.coefficients)[0]

    def evaluate(self, points: Sequence[Sequence[float]] | npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Values at an (n, 2) array of physical points."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return np.array([self.get_pt_value(x, y) for x, y in points])

    def get_element_values(self, element_id: int, ref_points: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Values on one element at reference points.

        Raises:
            KeyError: If the element is not part of the solution.
        """
        item = self.elements[element_id]
        return item.finite_element.values(np.atleast_2d(np.asarray(ref_points, dtype=np.float64)), item.coefficients)

    def get_element_gradients(self, element_id: int, ref_points: npt.ArrayLike) -> npt.NDArray[np.float64]:
        item = self.elements[element_id]
        return item.finite_element.gradients(np.atleast_2d(np.asarray(ref_points, dtype=np.float64)), item.coefficients)


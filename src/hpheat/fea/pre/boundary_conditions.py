from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Iterable, Iterator

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt


class EssentialBoundaryCondition(ABC):
    """
    Dirichlet condition u = g(x, y) on a set of boundary markers.
    """
    def __init__(self, markers: Iterable[str] | str) -> None:
        if isinstance(markers, str):
            markers = [markers]
        self.markers = tuple(markers)
        if not self.markers:
            raise ValueError("An essential boundary condition needs at least one marker.")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(markers={list(self.markers)})"

    @property
    def is_constant(self) -> bool:
        return False

    @abstractmethod
    def value(self, x: npt.ArrayLike, y: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Prescribed value at the given points."""
        pass


class ConstantEssentialBC(EssentialBoundaryCondition):
    """Constant prescribed value, e.g. a fixed boundary temperature."""

    def __init__(self, markers: Iterable[str] | str, value: float) -> None:
        super().__init__(markers)
        self.constant = float(value)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(markers={list(self.markers)}, value={self.constant})"

    @property
    def is_constant(self) -> bool:
        return True

    def value(self, x: npt.ArrayLike, y: npt.ArrayLike) -> npt.NDArray[np.float64]:
        return np.full(np.shape(x), self.constant, dtype=np.float64)


class FunctionEssentialBC(EssentialBoundaryCondition):
    """Position-dependent prescribed value g(x, y)."""

    def __init__(
        self,
        markers: Iterable[str] | str,
        function: Callable[[npt.NDArray[np.float64], npt.NDArray[np.float64]], npt.ArrayLike],
    ) -> None:
        super().__init__(markers)
        self.function = function

    def value(self, x: npt.ArrayLike, y: npt.ArrayLike) -> npt.NDArray[np.float64]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        return np.broadcast_to(np.asarray(self.function(x, y), dtype=np.float64), x.shape).copy()


class EssentialBCs:
    """
    Set of essential boundary conditions, looked up by boundary marker.

    Raises:
        ValueError: If two conditions claim the same marker.
    """
    def __init__(self, conditions: Iterable[EssentialBoundaryCondition] | EssentialBoundaryCondition = ()) -> None:
        if isinstance(conditions, EssentialBoundaryCondition):
            conditions = [conditions]
        self.conditions: list[EssentialBoundaryCondition] = []
        self._by_marker: dict[str, EssentialBoundaryCondition] = {}
        for condition in conditions:
            self.add_boundary_condition(condition)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.conditions})"

    def __iter__(self) -> Iterator[EssentialBoundaryCondition]:
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    def add_boundary_condition(self, condition: EssentialBoundaryCondition) -> None:
        for marker in condition.markers:
            if marker in self._by_marker:
                raise ValueError(f"Marker '{marker}' already has an essential boundary condition.")
        self.conditions.append(condition)
        for marker in condition.markers:
            self._by_marker[marker] = condition

    @property
    def markers(self) -> list[str]:
        return list(self._by_marker)

    def get_boundary_condition(self, marker: str | None) -> EssentialBoundaryCondition | None:
        """Condition attached to a marker, or None for natural boundaries."""
        if marker is None:
            return None
        return self._by_marker.get(marker)

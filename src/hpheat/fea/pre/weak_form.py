from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Mapping, Union

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

Coefficient = Callable[[np.ndarray, np.ndarray], np.ndarray]
CoefficientLike = Union[float, int, Coefficient]


def as_coefficient(value: CoefficientLike) -> Coefficient:
    """
    Turn a constant or a callable of (x, y) into a vectorised coefficient.

    Raises:
        TypeError: If ``value`` is neither a number nor callable.
    """
    if callable(value):
        def coefficient(x: npt.NDArray[np.float64], y: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            return np.broadcast_to(np.asarray(value(x, y), dtype=np.float64), np.shape(x))

        coefficient.is_constant = False
        return coefficient

    if isinstance(value, (int, float, np.floating, np.integer)) and not isinstance(value, bool):
        constant = float(value)

        def constant_coefficient(x: npt.NDArray[np.float64], y: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            return np.full(np.shape(x), constant, dtype=np.float64)

        constant_coefficient.is_constant = True
        constant_coefficient.value = constant
        return constant_coefficient

    raise TypeError(f"Coefficient must be a number or a callable of (x, y), got {type(value).__name__}.")


class WeakFormPoisson:
    """
    Weak form of the stationary heat equation -div(λ grad u) = q.

    Bilinear form:
        a(u, v) = ∑_regions ∫ λ_r ∇u·∇v dx + ∑_convective ∫ α u v ds
    Linear form:
        l(v) = ∫ q v dx + ∑_flux ∫ g v ds + ∑_convective ∫ α T_ext v ds
    """
    def __init__(
        self,
        conductivities: Mapping[str, CoefficientLike],
        volume_heat_source: CoefficientLike = 0.0,
        heat_fluxes: Mapping[str, CoefficientLike] | None = None,
        convection: Mapping[str, tuple[CoefficientLike, CoefficientLike]] | None = None,
    ) -> None:
        """
        Initialize the weak form.

        Args:
            conductivities: Thermal conductivity λ per region [W/(m K)].
            volume_heat_source: Volumetric heat source q [W/m^3].
            heat_fluxes: Prescribed inward heat flux g per boundary marker [W/m^2].
            convection: (α, T_ext) per boundary marker, heat transfer coefficient
                [W/(m^2 K)] and ambient temperature.
        """
        if not conductivities:
            raise ValueError("At least one region conductivity is required.")

        self.conductivities: Mapping[str, Coefficient] = MappingProxyType(
            {str(region): as_coefficient(value) for region, value in conductivities.items()}
        )
        self.volume_heat_source: Coefficient = as_coefficient(volume_heat_source)
        self.heat_fluxes: Mapping[str, Coefficient] = MappingProxyType(
            {str(marker): as_coefficient(value) for marker, value in (heat_fluxes or {}).items()}
        )
        self.convection: Mapping[str, tuple[Coefficient, Coefficient]] = MappingProxyType(
            {
                str(marker): (as_coefficient(alpha), as_coefficient(t_ext))
                for marker, (alpha, t_ext) in (convection or {}).items()
            }
        )
        overlap = set(self.heat_fluxes) & set(self.convection)
        if overlap:
            raise ValueError(f"Markers {sorted(overlap)} have both a heat flux and a convection condition.")

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(regions={list(self.regions)}, "
            f"heat_fluxes={list(self.heat_fluxes)}, convection={list(self.convection)})"
        )

    @property
    def regions(self) -> list[str]:
        return list(self.conductivities)

    @property
    def natural_markers(self) -> list[str]:
        return list(self.heat_fluxes) + list(self.convection)

    def get_conductivity(self, region: str) -> Coefficient:
        return self.conductivities[region]

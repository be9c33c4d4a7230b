"""
Interactive views
=================
Blocking pyvista windows showing a solution or the element orders of a space.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pyvista as pv

from hpheat.fea.post.linearizer import Linearizer, Orderizer

if TYPE_CHECKING:
    from hpheat.fea.analysis.solution import Solution
    from hpheat.fea.analysis.space import H1Space

logger = logging.getLogger(__name__)

VTK_CELL_TYPES = {
    "triangle": pv.CellType.TRIANGLE,
    "quad": pv.CellType.QUAD,
}


@dataclass(frozen=True)
class WinGeom:
    """Window position and size in pixels."""
    x: int = 50
    y: int = 50
    width: int = 1000
    height: int = 800


def _unstructured_grid(points, blocks) -> pv.UnstructuredGrid:
    return pv.UnstructuredGrid(
        {VTK_CELL_TYPES[kind]: connectivity for kind, connectivity in blocks},
        np.asarray(points, dtype=np.float64),
    )


class _View:
    def __init__(self, title: str, geometry: WinGeom | None = None) -> None:
        self.title = title
        self.geometry = geometry if geometry is not None else WinGeom()
        self.plotter: pv.Plotter | None = None

    def _create_plotter(self) -> pv.Plotter:
        plotter = pv.Plotter(title=self.title, window_size=[self.geometry.width, self.geometry.height])
        plotter.ren_win.SetPosition(self.geometry.x, self.geometry.y)
        plotter.set_background("white")
        plotter.enable_parallel_projection()
        return plotter

    def _show(self) -> None:
        self.plotter.view_xy()
        logger.info(f"Showing '{self.title}'; close the window to continue.")
        self.plotter.show(title=self.title)

    def wait_for_close(self) -> None:
        """Release the window; ``show`` already blocks until it is closed."""
        if self.plotter is not None:
            self.plotter.close()
            self.plotter = None


class ScalarView(_View):
    """Colour map of a scalar solution."""

    def __init__(self, title: str = "Solution", geometry: WinGeom | None = None) -> None:
        super().__init__(title, geometry)

    @staticmethod
    def build_grid(
        sln: Solution,
        quantity_name: str = "Temperature",
        refinement: int | None = None,
    ) -> pv.UnstructuredGrid:
        """Linearized solution as a pyvista grid with the values as point data."""
        data = Linearizer().linearize(sln, refinement=refinement)
        grid = _unstructured_grid(data.points, data.cell_blocks())
        grid.point_data[quantity_name] = data.values
        return grid

    def show(
        self,
        sln: Solution,
        quantity_name: str = "Temperature",
        refinement: int | None = None,
    ) -> None:
        """Open a window with the solution; blocks until the window is closed."""
        grid = self.build_grid(sln, quantity_name, refinement)
        self.plotter = self._create_plotter()
        self.plotter.add_mesh(
            grid,
            scalars=quantity_name,
            cmap="jet",
            show_edges=False,
            scalar_bar_args={"title": quantity_name, "color": "black"},
        )
        self._show()


class OrderView(_View):
    """Element polynomial orders of a space."""

    def __init__(self, title: str = "Polynomial orders", geometry: WinGeom | None = None) -> None:
        super().__init__(title, geometry)

    @staticmethod
    def build_grid(space: H1Space) -> pv.UnstructuredGrid:
        """Active elements as a pyvista grid with ``order`` and ``region`` cell data."""
        points, blocks, cell_data = Orderizer.element_cells(space)
        grid = _unstructured_grid(points, blocks)
        for name, values in cell_data.items():
            grid.cell_data[name] = np.concatenate(values)
        return grid

    def show(self, space: H1Space) -> None:
        """Open a window with the element orders; blocks until the window is closed."""
        grid = self.build_grid(space)
        self.plotter = self._create_plotter()
        self.plotter.add_mesh(
            grid,
            scalars="order",
            cmap="viridis",
            categories=True,
            show_edges=True,
            edge_color="black",
            scalar_bar_args={"title": "Order", "color": "black"},
        )
        self.plotter.add_point_labels(
            grid.cell_centers().points,
            [str(order) for order in grid.cell_data["order"]],
            font_size=12,
            point_size=1,
            shape_opacity=0.0,
        )
        self._show()

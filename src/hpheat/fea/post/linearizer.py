"""
VTK export
==========
Legacy VTK (ASCII) output of solutions, meshes and element orders through meshio.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import meshio

from hpheat.errors import MeshIOError

if TYPE_CHECKING:
    import numpy.typing as npt

    from hpheat.fea.analysis.solution import Solution
    from hpheat.fea.analysis.space import H1Space

logger = logging.getLogger(__name__)


def triangle_lattice(n: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.int64]]:
    """
    Uniform subdivision of the reference triangle into n² triangles.

    Returns:
        Reference points (r, s) and triangle connectivity.
    """
    index: dict[tuple[int, int], int] = {}
    points = []
    for j in range(n + 1):
        for i in range(n + 1 - j):
            index[(i, j)] = len(points)
            points.append((i / n, j / n))

    triangles = []
    for j in range(n):
        for i in range(n - j):
            triangles.append((index[(i, j)], index[(i + 1, j)], index[(i, j + 1)]))
            if i + j < n - 1:
                triangles.append((index[(i + 1, j)], index[(i + 1, j + 1)], index[(i, j + 1)]))
    return np.array(points, dtype=np.float64), np.array(triangles, dtype=np.int64)


def quad_lattice(n: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.int64]]:
    """
    Uniform subdivision of the reference square into n² quads.

    Returns:
        Reference points (ξ, η) and quad connectivity.
    """
    t = np.linspace(-1.0, 1.0, n + 1)
    xi, eta = np.meshgrid(t, t, indexing="xy")
    points = np.column_stack((xi.ravel(), eta.ravel()))

    quads = []
    for j in range(n):
        for i in range(n):
            a = j * (n + 1) + i
            quads.append((a, a + 1, a + n + 2, a + n + 1))
    return points, np.array(quads, dtype=np.int64)


@dataclass
class LinearizedData:
    """Piecewise-linear (and bilinear) approximation of a field for plotting."""
    points: npt.NDArray[np.float64]
    values: npt.NDArray[np.float64]
    cells: dict[str, npt.NDArray[np.int64]] = field(default_factory=dict)

    def cell_blocks(self) -> list[tuple[str, npt.NDArray[np.int64]]]:
        return [(kind, conn) for kind, conn in self.cells.items() if len(conn)]


def _write_vtk(path: str | os.PathLike, mesh: meshio.Mesh) -> None:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        meshio.write(path, mesh, file_format="vtk", binary=False)
    except OSError as e:
        raise MeshIOError(f"Cannot write VTK file '{path}': {e}") from e
    logger.info(f"VTK output written to '{path}'.")


class Linearizer:
    """Samples a solution on a subdivision of every element."""

    def linearize(
        self,
        sln: Solution,
        refinement: int | None = None,
        mode_3d: bool = False,
    ) -> LinearizedData:
        """
        Sample the solution.

        Args:
            sln: Solution to sample.
            refinement: Subdivisions per element edge; defaults to the element order.
            mode_3d: Use the value as z-coordinate.
        """
        if refinement is not None and refinement < 1:
            raise ValueError(f"Refinement must be positive, got {refinement}.")

        points: list[npt.NDArray[np.float64]] = []
        values: list[npt.NDArray[np.float64]] = []
        cells: dict[str, list[npt.NDArray[np.int64]]] = {"triangle": [], "quad": []}
        offset = 0

        for element_id, item in sln.elements.items():
            fe = item.finite_element
            n = refinement if refinement is not None else max(1, fe.order)
            is_triangle = fe.number_of_vertices == 3
            ref_points, connectivity = triangle_lattice(n) if is_triangle else quad_lattice(n)

            points.append(fe.map_to_physical(ref_points))
            values.append(sln.get_element_values(element_id, ref_points))
            cells["triangle" if is_triangle else "quad"].append(connectivity + offset)
            offset += len(ref_points)

        xy = np.vstack(points) if points else np.empty((0, 2))
        z = np.concatenate(values) if values else np.empty(0)
        xyz = np.column_stack((xy, z if mode_3d else np.zeros_like(z)))

        return LinearizedData(
            points=xyz,
            values=z,
            cells={
                kind: np.vstack(parts) if parts else np.empty((0, 3 if kind == "triangle" else 4), dtype=np.int64)
                for kind, parts in cells.items()
            },
        )

    def save_solution_vtk(
        self,
        sln: Solution,
        path: str | os.PathLike,
        quantity_name: str = "Temperature",
        mode_3d: bool = False,
        refinement: int | None = None,
    ) -> None:
        """Write the sampled solution as point data of a legacy VTK unstructured grid."""
        data = self.linearize(sln, refinement=refinement, mode_3d=mode_3d)
        _write_vtk(path, meshio.Mesh(
            points=data.points,
            cells=data.cell_blocks(),
            point_data={quantity_name: data.values},
        ))


class Orderizer:
    """Exports the active elements of a space with their regions and polynomial orders."""

    @staticmethod
    def element_cells(space: H1Space) -> tuple[npt.NDArray[np.float64], list[tuple[str, npt.NDArray[np.int64]]], dict[str, list]]:
        """
        Vertex coordinates, cell blocks and per-block cell data of the active elements.

        Cell data holds the element id, the region index (position in
        ``mesh.regions``) and the element order.
        """
        mesh = space.mesh
        orders = space.get_element_orders()
        region_ids = {region: i for i, region in enumerate(mesh.regions)}

        blocks: dict[str, list] = {"triangle": [], "quad": []}
        data: dict[str, dict[str, list]] = {kind: {"element_id": [], "region": [], "order": []} for kind in blocks}
        for element in mesh.active_elements():
            kind = "triangle" if element.is_triangle else "quad"
            blocks[kind].append(element.vertices)
            data[kind]["element_id"].append(element.id)
            data[kind]["region"].append(region_ids[element.region])
            data[kind]["order"].append(orders[element.id])

        kinds = [kind for kind in blocks if blocks[kind]]
        points = np.column_stack((mesh.coordinates, np.zeros(mesh.get_num_vertices())))
        cells = [(kind, np.array(blocks[kind], dtype=np.int64)) for kind in kinds]
        cell_data = {
            name: [np.array(data[kind][name], dtype=np.int64) for kind in kinds]
            for name in ("element_id", "region", "order")
        }
        return points, cells, cell_data

    def save_mesh_vtk(self, space: H1Space, path: str | os.PathLike) -> None:
        """Write the active elements with their region ids."""
        points, cells, cell_data = self.element_cells(space)
        _write_vtk(path, meshio.Mesh(points, cells, cell_data={"region": cell_data["region"]}))

    def save_orders_vtk(self, space: H1Space, path: str | os.PathLike) -> None:
        """Write the active elements with their polynomial orders."""
        points, cells, cell_data = self.element_cells(space)
        _write_vtk(path, meshio.Mesh(points, cells, cell_data={"order": cell_data["order"]}))

from __future__ import annotations

import logging
import time
import warnings
from typing import TYPE_CHECKING

import numpy as np
import numba as nb
import scipy as sp
from scipy.sparse.linalg import MatrixRankWarning, cg, spsolve

from hpheat.config import SOLVER_TYPES
from hpheat.errors import ConfigError, SolverError, StateError

if TYPE_CHECKING:
    import numpy.typing as npt

    from hpheat.fea.analysis.space import AssemblyList, H1Space
    from hpheat.fea.pre.weak_form import WeakFormPoisson

logger = logging.getLogger(__name__)


def set_num_threads(num_threads: int) -> int:
    """
    Forward the worker-thread hint to numba, clamped to the available maximum.

    Returns:
        The number of threads actually set.
    """
    if num_threads < 1:
        raise ConfigError(f"Number of threads must be positive, got {num_threads}.")
    num_threads = min(int(num_threads), nb.config.NUMBA_NUM_THREADS)
    nb.set_num_threads(num_threads)
    logger.debug(f"Using {num_threads} numba threads.")
    return num_threads


class LinearSolver:
    """
    Assemble and solve the linear system of a stationary heat-transfer problem.
    """

    def __init__(
        self,
        weak_form: WeakFormPoisson,
        space: H1Space,
        solver_type: str = "direct",
        tolerance: float = 1e-10,
        max_iterations: int = 10000,
    ) -> None:
        """
        Initialize the solver.

        Args:
            weak_form: Bilinear and linear forms of the problem.
            space: Space of the unknown temperature.
            solver_type: "direct" (sparse LU) or "cg" (conjugate gradients).
            tolerance: Relative residual tolerance of the iterative solver.
            max_iterations: Iteration limit of the iterative solver.
        """
        if solver_type not in SOLVER_TYPES:
            raise ConfigError(f"Unknown solver type '{solver_type}', expected one of {SOLVER_TYPES}.")
        self.weak_form = weak_form
        self.space = space
        self.solver_type = solver_type
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)

        self.matrix: sp.sparse.csr_matrix | None = None
        self.rhs: npt.NDArray[np.float64] | None = None
        self._sln_vector: npt.NDArray[np.float64] | None = None

    def _check_regions(self) -> None:
        mesh = self.space.mesh
        mesh_regions = set(mesh.regions)
        form_regions = set(self.weak_form.regions)
        if mesh_regions - form_regions:
            raise ConfigError(f"No conductivity for mesh regions {sorted(mesh_regions - form_regions)}.")
        if form_regions - mesh_regions:
            raise ConfigError(f"Weak-form regions {sorted(form_regions - mesh_regions)} do not exist in the mesh.")

        unknown = set(self.weak_form.natural_markers) - set(mesh.boundary_markers)
        if unknown:
            raise ConfigError(f"Boundary markers {sorted(unknown)} do not exist in the mesh.")

    @staticmethod
    def _precompute_pattern_and_scatter(
        assembly_lists: list[AssemblyList],
        neq: int,
    ) -> tuple[sp.sparse.csr_matrix, list[npt.NDArray[np.int64]]]:
        """
        Precompute the sparsity pattern of the global matrix and the scatter vectors for each element.

        Returns:
            A_template: csr_matrix with correct indptr/indices (float64 data, zeros).
            scatter_list: list of 1D arrays; for element e, scatter_list[e] gives
                          data indices in A_template.data where Ke.ravel(order="C") adds.
        """
        # 1) Build the sparsity pattern via COO triplets
        row_parts: list[npt.NDArray[np.int64]] = [np.empty(0, dtype=np.int64)]
        col_parts: list[npt.NDArray[np.int64]] = [np.empty(0, dtype=np.int64)]
        for assembly_list in assembly_lists:
            dofs = assembly_list.dofs
            row_parts.append(np.repeat(dofs, dofs.size))
            col_parts.append(np.tile(dofs, dofs.size))

        rows = np.concatenate(row_parts)
        cols = np.concatenate(col_parts)

        # Use ones for a boolean-like pattern
        pattern = sp.sparse.coo_matrix(
            (np.ones_like(rows, dtype=np.int8), (rows, cols)),
            shape=(neq, neq)
        ).tocsr()

        # Cast to float64 data with zeros, keep structure
        A_template = pattern.astype(np.float64, copy=True)
        A_template.sort_indices()
        A_template.data[:] = 0.0

        # 2) For each element, find where each (row, col) lives in A_template.data
        indptr, indices = A_template.indptr, A_template.indices
        scatter_list: list[npt.NDArray[np.int64]] = []
        for assembly_list in assembly_lists:
            dofs = assembly_list.dofs
            n_dofs = dofs.size
            scatter_e = np.empty(n_dofs * n_dofs, dtype=np.int64)
            for ii, r in enumerate(dofs):
                a, b = indptr[r], indptr[r + 1]  # indices[a:b] sorted
                scatter_e[ii * n_dofs:(ii + 1) * n_dofs] = a + np.searchsorted(indices[a:b], dofs)
            scatter_list.append(scatter_e)

        return A_template, scatter_list

    def _natural_edges(self) -> dict[int, list[tuple[int, str]]]:
        """Boundary edges with natural conditions per element: (local edge, marker)."""
        mesh = self.space.mesh
        markers = set(self.weak_form.natural_markers)
        edges: dict[int, list[tuple[int, str]]] = {}
        if not markers:
            return edges
        for key, users in mesh.edge_users().items():
            marker = mesh.get_boundary_marker(*key)
            if marker in markers and len(users) == 1:
                element_id, local_edge = users[0]
                edges.setdefault(element_id, []).append((local_edge, marker))
        return edges

    def _local_system(self, element_id: int, natural_edges: list[tuple[int, str]]):
        fe = self.space.get_finite_element(element_id)
        wf = self.weak_form

        K = fe.get_stiffness_matrix(wf.get_conductivity(fe.region))
        F = fe.get_load_vector(wf.volume_heat_source)
        for local_edge, marker in natural_edges:
            if marker in wf.heat_fluxes:
                F += fe.get_edge_load_vector(local_edge, wf.heat_fluxes[marker])
            else:
                alpha, t_ext = wf.convection[marker]
                K += fe.get_edge_mass_matrix(local_edge, alpha)
                F += fe.get_edge_load_vector(
                    local_edge, lambda x, y, alpha=alpha, t_ext=t_ext: alpha(x, y) * t_ext(x, y)
                )
        return K, F

    def assemble(self) -> tuple[sp.sparse.csr_matrix, npt.NDArray[np.float64]]:
        """
        Assemble the global matrix and right-hand side.

        Element contributions are reduced through the assembly lists,
        K_red = Cᵀ K C and F_red = Cᵀ (F - K d), where d is the Dirichlet lift.

        Raises:
            ConfigError: If the weak form and the mesh regions or markers do not match.
        """
        self._check_regions()
        start_time = time.perf_counter()

        neq = self.space.get_num_dofs()
        elements = self.space.mesh.active_elements()
        assembly_lists = [self.space.get_assembly_list(element.id) for element in elements]
        A, scatter_list = self._precompute_pattern_and_scatter(assembly_lists, neq)
        rhs = np.zeros(neq, dtype=np.float64)
        natural_edges = self._natural_edges()

        for element, assembly_list, scatter_e in zip(elements, assembly_lists, scatter_list):
            K, F = self._local_system(element.id, natural_edges.get(element.id, []))
            C, d = assembly_list.coefficients, assembly_list.lift
            A.data[scatter_e] += (C.T @ K @ C).ravel(order="C")
            np.add.at(rhs, assembly_list.dofs, C.T @ (F - K @ d))

        self.matrix, self.rhs = A, rhs
        logger.debug(
            f"Assembled {neq} equations ({A.nnz} non-zeros) on {len(elements)} elements "
            f"in {time.perf_counter() - start_time:.3f} s."
        )
        return A, rhs

    def solve(self) -> npt.NDArray[np.float64]:
        """
        Assemble and solve the system.

        Returns:
            Copy of the coefficient vector.

        Raises:
            ConfigError: If the weak form does not match the mesh.
            SolverError: If assembly fails, the matrix is singular, the
                iterative solver does not converge or the result is not finite.
        """
        self._sln_vector = None
        try:
            matrix, rhs = self.assemble()
        except ConfigError:
            raise
        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
            raise SolverError(f"Assembly failed: {e}") from e

        if rhs.size == 0:
            logger.warning("The space has no degrees of freedom; the solution is the Dirichlet lift.")
            self._sln_vector = np.zeros(0, dtype=np.float64)
            return self.get_sln_vector()

        start_time = time.perf_counter()
        if self.solver_type == "direct":
            with warnings.catch_warnings():
                warnings.simplefilter("error", MatrixRankWarning)
                try:
                    solution = spsolve(matrix.tocsc(), rhs)
                except (MatrixRankWarning, RuntimeError) as e:
                    raise SolverError(f"The system matrix is singular: {e}") from e
        else:
            solution, info = cg(matrix, rhs, rtol=self.tolerance, maxiter=self.max_iterations)
            if info != 0:
                raise SolverError(
                    f"Conjugate gradients did not converge in {self.max_iterations} iterations "
                    f"(tolerance {self.tolerance})."
                )

        solution = np.atleast_1d(np.asarray(solution, dtype=np.float64))
        if not np.all(np.isfinite(solution)):
            raise SolverError("The solution contains non-finite values.")

        self._sln_vector = solution
        logger.info(
            f"Solved {rhs.size} equations with the {self.solver_type} solver "
            f"in {time.perf_counter() - start_time:.3f} s."
        )
        return self.get_sln_vector()

    def get_sln_vector(self) -> npt.NDArray[np.float64]:
        """
        Copy of the coefficient vector of the last successful solve.

        Raises:
            StateError: If ``solve()`` has not succeeded yet.
        """
        if self._sln_vector is None:
            raise StateError("No solution available; call solve() first.")
        return self._sln_vector.copy()

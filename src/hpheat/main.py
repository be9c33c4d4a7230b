"""
Driver
======
Runs the stationary heat-transfer pipeline:

    load mesh -> refine -> build space -> clone onto a new mesh and edit the
    element orders -> assemble and solve -> reconstruct the solution ->
    visualise / export.

Usage:
    $ python -m hpheat --vtk --no-view --output-dir results
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from hpheat import __version__
from hpheat.config import RunConfig, SOLVER_TYPES
from hpheat.errors import ConfigError, HpHeatError, SolverError
from hpheat.logging_config import setup_logging
from hpheat.fea.analysis.solution import Solution
from hpheat.fea.analysis.space import H1Space
from hpheat.fea.pre.boundary_conditions import ConstantEssentialBC, EssentialBCs
from hpheat.fea.pre.mesh import Mesh
from hpheat.fea.pre.mesh_reader import MeshReaderXML, load_mesh
from hpheat.fea.pre.weak_form import WeakFormPoisson
from hpheat.fea.post.linearizer import Linearizer, Orderizer
from hpheat.fea.solvers.solver import LinearSolver, set_num_threads

if TYPE_CHECKING:
    import numpy as np
    import numpy.typing as npt

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of one pipeline run."""
    success: bool
    num_dofs: int = 0
    vertex_functions: int = 0
    edge_functions: int = 0
    bubble_functions: int = 0
    sln_vector: Optional[npt.NDArray[np.float64]] = None
    solution: Optional[Solution] = None
    space: Optional[H1Space] = None
    error: Optional[str] = None
    output_files: list[str] = field(default_factory=list)


def build_boundary_conditions(config: RunConfig) -> EssentialBCs:
    """Fixed temperature on all essential boundary markers."""
    return EssentialBCs(ConstantEssentialBC(config.essential_markers, config.fixed_boundary_temperature))


def build_weak_form(config: RunConfig) -> WeakFormPoisson:
    """Per-region conductivities and a uniform volumetric heat source."""
    return WeakFormPoisson(
        conductivities=config.conductivities,
        volume_heat_source=config.volume_heat_source,
    )


def prepare_space(config: RunConfig, essential_bcs: EssentialBCs) -> H1Space:
    """
    Load and refine the mesh, build the space and clone it onto a fresh mesh.

    The loaded mesh and its space are released after cloning; the returned
    space owns its own copy of the mesh.
    """
    mesh = load_mesh(config.mesh_path)
    if config.mesh_save_path:
        MeshReaderXML().save(config.mesh_save_path, mesh)

    if config.init_ref_num > 0 and config.refinement_regions:
        mesh.refine_in_areas(config.refinement_regions, config.init_ref_num)
    if config.extra_refinement_region:
        mesh.refine_in_area(config.extra_refinement_region)

    space = H1Space(mesh, essential_bcs, config.p_init)

    new_mesh = Mesh()
    new_space = H1Space.copy(space, new_mesh)
    space.free()
    mesh.free()

    if config.cycle_element_orders:
        # orders 2, 3, 4, 1, 2, ... in element creation order
        for i, element in enumerate(new_mesh.active_elements(), start=1):
            new_space.set_element_order(element.id, i % 4 + 1)

    logger.info(
        f"Space: {new_space.get_num_dofs()} DOFs = {new_space.get_vertex_functions_count()} vertex + "
        f"{new_space.get_edge_functions_count()} edge + {new_space.get_bubble_functions_count()} bubble functions "
        f"on {new_mesh.get_num_active_elements()} elements."
    )
    return new_space


def _run_sink(name: str, action: Callable[[], None]) -> bool:
    """Run one output step; a failure is logged and does not stop the pipeline."""
    try:
        action()
    except Exception:
        logger.exception(f"{name} failed.")
        return False
    return True


def _show_orders(space: H1Space) -> None:
    from hpheat.fea.post.views import OrderView

    view = OrderView("Polynomial orders")
    view.show(space)
    view.wait_for_close()


def _show_solution(sln: Solution) -> None:
    from hpheat.fea.post.views import ScalarView, WinGeom

    view = ScalarView("Solution", WinGeom(50, 50, 1000, 800))
    view.show(sln, quantity_name="Temperature")
    view.wait_for_close()


def run(config: RunConfig) -> RunResult:
    """
    Run the pipeline.

    Returns:
        RunResult; ``success`` is False when the linear solve failed.

    Raises:
        MeshIOError, FileFormatError: If the mesh cannot be loaded.
        ConfigError: If regions, markers or orders do not fit the mesh.
    """
    set_num_threads(config.num_threads)
    essential_bcs = build_boundary_conditions(config)
    weak_form = build_weak_form(config)

    space = prepare_space(config, essential_bcs)
    result = RunResult(
        success=False,
        num_dofs=space.get_num_dofs(),
        vertex_functions=space.get_vertex_functions_count(),
        edge_functions=space.get_edge_functions_count(),
        bubble_functions=space.get_bubble_functions_count(),
        space=space,
    )

    if config.interactive_view:
        _run_sink("Order view", lambda: _show_orders(space))

    solver = LinearSolver(
        weak_form,
        space,
        solver_type=config.solver_type,
        tolerance=config.tolerance,
        max_iterations=config.max_iterations,
    )
    try:
        solver.solve()
    except SolverError as e:
        logger.error(f"Solve failed: {e}")
        result.error = str(e)
        return result

    result.sln_vector = solver.get_sln_vector()
    result.solution = Solution.vector_to_solution(result.sln_vector, space)
    result.success = True

    if config.vtk_output:
        def export() -> None:
            os.makedirs(config.output_dir, exist_ok=True)
            targets = {name: os.path.join(config.output_dir, name) for name in ("sln.vtk", "mesh.vtk", "ord.vtk")}
            Linearizer().save_solution_vtk(result.solution, targets["sln.vtk"], "Temperature", config.vtk_mode_3d)
            result.output_files.append(targets["sln.vtk"])
            orderizer = Orderizer()
            orderizer.save_mesh_vtk(space, targets["mesh.vtk"])
            result.output_files.append(targets["mesh.vtk"])
            orderizer.save_orders_vtk(space, targets["ord.vtk"])
            result.output_files.append(targets["ord.vtk"])

        _run_sink("VTK output", export)

    if config.interactive_view:
        _run_sink("Solution view", lambda: _show_solution(result.solution))

    return result


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hpheat",
        description="Stationary heat transfer in a two-material domain with hp finite elements.",
    )
    parser.add_argument("--config", help="JSON file with RunConfig fields.")
    parser.add_argument("--mesh", help="Mesh file (.xml or .msh).")
    parser.add_argument("--order", type=int, help="Initial uniform polynomial order.")
    parser.add_argument("--refinements", type=int, help="Number of initial refinements of the refined regions.")
    parser.add_argument("--solver", choices=SOLVER_TYPES, help="Linear solver.")
    parser.add_argument("--threads", type=int, help="Worker-thread hint for numba.")
    parser.add_argument("--vtk", action="store_true", help="Write sln.vtk, mesh.vtk and ord.vtk.")
    parser.add_argument("--no-view", action="store_true", help="Do not open interactive windows.")
    parser.add_argument("--output-dir", help="Directory of the VTK output.")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...).")
    parser.add_argument("--strict", action="store_true", help="Exit with status 1 when the solve fails.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RunConfig:
    """
    Configuration from the optional JSON file with command-line overrides applied.

    Raises:
        ConfigError: If the file or an override is invalid.
    """
    config = RunConfig.from_file(args.config) if args.config else RunConfig()

    overrides = {
        "mesh_path": args.mesh,
        "p_init": args.order,
        "init_ref_num": args.refinements,
        "solver_type": args.solver,
        "num_threads": args.threads,
        "output_dir": args.output_dir,
        "log_level": args.log_level,
    }
    changes = {key: value for key, value in overrides.items() if value is not None}
    if args.vtk:
        changes["vtk_output"] = True
    if args.no_view:
        changes["interactive_view"] = False
    if args.strict:
        changes["strict_exit_status"] = True
    return dataclasses.replace(config, **changes)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Command-line entry point.

    Returns:
        Process exit status: 0 on success and, unless strict mode is on, also
        when the solve failed; 1 for load errors or a failed solve in strict
        mode; 2 for invalid configuration.
    """
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, config.log_file)
    logger.info("Starting stationary heat-transfer run.")

    try:
        result = run(config)
    except HpHeatError as e:
        logger.error(f"Run aborted: {e}")
        return 1

    # DOF counts go to stdout independently of the log level
    for count in (result.num_dofs, result.vertex_functions, result.edge_functions, result.bubble_functions):
        print(count)

    if not result.success:
        print(result.error)
        return 1 if config.strict_exit_status else 0

    logger.info("Run finished.")
    return 0

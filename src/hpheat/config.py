"""
Configuration & Path Management
===============================
This module serves as the central registry for file paths, the default problem
constants and the run configuration passed into the pipeline.

Exports:
    ASSETS_PATH (str): Absolute path to the assets directory.
    DEFAULT_MESH_PATH (str): Absolute path to the bundled L-shaped domain.
    RunConfig: Explicit configuration of one pipeline run.
"""
from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from hpheat.errors import ConfigError
from hpheat.fea.analysis.lobatto import MAX_ORDER


def get_resource_path(relative_path: str) -> str:
    """
    Get absolute path to resource, works for dev and for PyInstaller.
    """
    if hasattr(sys, '_MEIPASS'):
        # PyInstaller temp folder
        base_path: str = getattr(sys, '_MEIPASS')
        return os.path.join(base_path, relative_path)

    # Development mode: resolve relative to this file
    # config.py is in src/hpheat/
    current_file_path: Path = Path(__file__)
    project_root: Path = current_file_path.parent.parent.parent
    return os.path.join(str(project_root), relative_path)


# Global Constants
ASSETS_PATH: str = get_resource_path("assets")
DEFAULT_MESH_PATH: str = os.path.join(ASSETS_PATH, "domain.xml")

SOLVER_TYPES = ("direct", "cg")


@dataclass
class RunConfig:
    """
    Parameters of one stationary heat-transfer run.

    The defaults reproduce the two-material L-shaped demo: aluminum and copper
    heated by a volumetric source with the whole boundary held at 20 degrees.
    """
    mesh_path: str = DEFAULT_MESH_PATH
    mesh_save_path: Optional[str] = None

    # Visualisation
    interactive_view: bool = True       # pyvista windows (blocking)
    vtk_output: bool = False            # sln.vtk, mesh.vtk and ord.vtk
    vtk_mode_3d: bool = False
    output_dir: str = "."

    # Discretisation
    p_init: int = 2                     # uniform polynomial degree of mesh elements
    init_ref_num: int = 1               # number of initial refinements of refinement_regions
    refinement_regions: List[str] = field(default_factory=lambda: ["Aluminum", "Copper"])
    extra_refinement_region: Optional[str] = "Aluminum"
    cycle_element_orders: bool = True   # orders 2, 3, 4, 1, ... in element creation order

    # Problem parameters
    conductivities: Dict[str, float] = field(
        default_factory=lambda: {"Aluminum": 236.0, "Copper": 386.0}
    )  # W/(m K) around 20 deg Celsius
    volume_heat_source: float = 5e2     # W/m^3
    fixed_boundary_temperature: float = 20.0
    essential_markers: List[str] = field(default_factory=lambda: ["Bottom", "Inner", "Outer", "Left"])

    # Solver
    num_threads: int = 8
    solver_type: str = "direct"
    tolerance: float = 1e-10
    max_iterations: int = 10000

    # Driver
    log_level: str = "INFO"
    log_file: Optional[str] = None
    strict_exit_status: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Check the values for consistency.

        Raises:
            ConfigError: If a value is out of its admissible range.
        """
        for name in ("p_init", "init_ref_num", "num_threads", "max_iterations"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"'{name}' must be an integer, got {value!r}.")
        if not 1 <= self.p_init <= MAX_ORDER:
            raise ConfigError(f"'p_init' must be in 1..{MAX_ORDER}, got {self.p_init}.")
        if self.init_ref_num < 0:
            raise ConfigError(f"'init_ref_num' must be non-negative, got {self.init_ref_num}.")
        if self.num_threads < 1:
            raise ConfigError(f"'num_threads' must be at least 1, got {self.num_threads}.")
        if self.solver_type not in SOLVER_TYPES:
            raise ConfigError(f"'solver_type' must be one of {SOLVER_TYPES}, got '{self.solver_type}'.")
        if self.tolerance <= 0.0 or self.max_iterations < 1:
            raise ConfigError("'tolerance' must be positive and 'max_iterations' at least 1.")
        if not self.conductivities:
            raise ConfigError("At least one region conductivity is required.")
        for region, value in self.conductivities.items():
            if float(value) <= 0.0:
                raise ConfigError(f"Conductivity of region '{region}' must be positive, got {value}.")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RunConfig:
        """
        Build a configuration from a plain dictionary.

        Args:
            data: Mapping of field names to values. Missing fields keep defaults.

        Raises:
            ConfigError: If the mapping contains unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {unknown}.")
        try:
            return cls(**data)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, filepath: str) -> RunConfig:
        """
        Load a configuration from a JSON file.

        Relative ``mesh_path`` entries are resolved against the directory of
        the configuration file.
        """
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read configuration file '{filepath}': {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Configuration file '{filepath}' is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file '{filepath}' must contain a JSON object.")

        mesh_path = data.get("mesh_path")
        if mesh_path and not os.path.isabs(mesh_path):
            data["mesh_path"] = os.path.join(os.path.dirname(os.path.abspath(filepath)), mesh_path)

        return cls.from_dict(data)

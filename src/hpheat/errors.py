"""
Exception Hierarchy
===================
All errors raised by the package derive from ``HpHeatError`` so that callers
can catch package failures with a single ``except`` clause.

Classes:
    FileFormatError: Malformed mesh file.
    MeshIOError: Missing or unreadable mesh file.
    ConfigError: Invalid configuration or names not present in the mesh.
    SolverError: Assembly or linear solve failure.
    StateError: Operation not valid in the current object state.
"""


class HpHeatError(Exception):
    """Base class for all package errors."""


class FileFormatError(HpHeatError):
    """Raised when a mesh file cannot be parsed."""


class MeshIOError(HpHeatError, OSError):
    """Raised when a mesh file is missing or cannot be read/written."""


class ConfigError(HpHeatError, ValueError):
    """Raised for invalid configuration, orders, region or boundary names."""


class SolverError(HpHeatError, RuntimeError):
    """Raised when the global system cannot be assembled or solved."""


class StateError(HpHeatError):
    """Raised when an object is used in a state that does not allow it."""

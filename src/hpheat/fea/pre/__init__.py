"""Mesh, mesh readers, boundary conditions and weak forms."""

"""
hpheat
======
Stationary heat transfer in planar multi-material domains with hp finite elements.
"""
__version__ = "0.1.0"

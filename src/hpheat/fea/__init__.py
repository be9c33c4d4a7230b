"""
Finite Element Engine
=====================
The stationary heat-transfer core: mesh handling (``pre``), hierarchical
elements, function spaces and solutions (``analysis``), global assembly and
linear solve (``solvers``) and output (``post``).

Note: This package should be pure Python/NumPy and should NOT open windows
except through ``hpheat.fea.post.views``.
"""

from hpheat.fea.solvers.solver import LinearSolver, set_num_threads

__all__ = ["LinearSolver", "set_num_threads"]

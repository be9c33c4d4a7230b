from hpheat.fea.analysis.finite_elements.finite_element import FiniteElement
from hpheat.fea.analysis.finite_elements.triangle import Triangle
from hpheat.fea.analysis.finite_elements.quad import Quad

__all__ = ["FiniteElement", "Triangle", "Quad"]

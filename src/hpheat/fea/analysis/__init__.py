"""Shape functions, quadrature, finite elements, function spaces and solutions."""

"""
.. include:: ../README.md
"""
from multispline.errors import (MultiSplineError, 
                                DomainError, 
                                ConstructionError, 
                                StructuralError, 
                                SolveError, 
                                FormatError)
from multispline.b_spline_basis import BSplineBasis, KnotVectorType
# BSplineBasis.__module__ = "multispline.b_spline_basis"
from multispline.b_spline_tensor_basis import BSplineTensorBasis
# BSplineTensorBasis.__module__ = "multispline.b_spline_tensor_basis"
from multispline.b_spline import BSpline, BSplineType
# BSpline.__module__ = "multispline.b_spline"
from multispline.data_table import DataTable
from multispline.linear_solvers import SolverStrategy

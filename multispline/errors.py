class MultiSplineError(Exception):
    """Base class of every error raised by `multispline`."""


class DomainError(MultiSplineError, ValueError):
    """Exception raised for evaluating a spline outside its support box"""
    def __init__(self, x, message="Spline evaluation outside domain"):
        self.x = x
        self.message = message
        super().__init__(self.message)


class ConstructionError(MultiSplineError):
    """Malformed basis parameters, control points or sample grid."""


class StructuralError(MultiSplineError):
    """A knot insertion, refinement, regularization or support reduction failed."""


class SolveError(MultiSplineError):
    """The control point equations could not be solved."""


class FormatError(MultiSplineError, ValueError):
    """A persisted spline could not be decoded."""

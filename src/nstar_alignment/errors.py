"""
Alignment Engine Exception Hierarchy

Errors raised by the matrix, transform and configuration layers. The
orchestrator catches the geometric ones and degrades to the identity
mapping, so only configuration and shape errors reach a caller.
"""


class AlignmentError(Exception):
    """Base exception for all alignment engine errors."""

    pass


class ShapeError(AlignmentError, ValueError):
    """Raised when matrix dimensions do not fit the requested operation.

    Non-rectangular construction data, a product of incompatible shapes or
    the inversion of a non-square matrix. Always a programming or
    configuration defect.
    """

    pass


class SingularMatrixError(AlignmentError, ArithmeticError):
    """Raised when a matrix with zero determinant is inverted.

    Three collinear alignment points produce this from the transform
    assembly. Callers treat it as "no transform for this triangle".
    """

    pass


class InsufficientPointsError(AlignmentError):
    """Raised when fewer than three alignment points are available."""

    pass


class ConfigurationError(AlignmentError, ValueError):
    """Raised for invalid alignment settings."""

    pass


class DuplicatePointError(AlignmentError, ValueError):
    """Raised when an alignment point with an Id already in the collection is inserted."""

    pass

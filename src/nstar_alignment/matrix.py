"""
Matrix Algebra for Alignment Transforms

Small dense matrices backed by numpy. 2x2 and 3x3 inverses use the
closed-form cofactor expansion; larger matrices go through scipy.linalg.
A zero determinant is always reported as SingularMatrixError, never as a
matrix of infinities.
"""

import numpy as np
from scipy import linalg

from nstar_alignment.errors import ShapeError, SingularMatrixError


class Matrix:
    """Rectangular matrix of doubles with row/column indexing."""

    def __init__(self, values):
        if isinstance(values, np.ndarray):
            if values.ndim != 2 or 0 in values.shape:
                raise ShapeError(f"Matrix data must be 2-dimensional, got shape {values.shape}")
            self.element = np.array(values, dtype=float)
            return

        try:
            rows = [list(row) for row in values]
        except TypeError as e:
            raise ShapeError("Matrix data must be a sequence of rows") from e
        widths = {len(row) for row in rows}
        if not rows or len(widths) != 1 or 0 in widths:
            raise ShapeError(f"Matrix rows must be non-empty and of equal length, got {sorted(widths)}")
        self.element = np.array(rows, dtype=float)

    @classmethod
    def create_instance(cls, rows=3, cols=3):
        """Returns a zero matrix with the given dimensions."""
        if rows < 1 or cols < 1:
            raise ShapeError(f"Invalid matrix dimensions {rows}x{cols}")
        return cls(np.zeros((rows, cols)))

    @classmethod
    def from_values(cls, values):
        """Builds a matrix from a row-major jagged sequence."""
        return cls(values)

    @property
    def rows(self) -> int:
        return self.element.shape[0]

    @property
    def cols(self) -> int:
        return self.element.shape[1]

    @property
    def shape(self):
        return self.element.shape

    def __getitem__(self, index):
        try:
            return float(self.element[index])
        except IndexError as e:
            raise ShapeError(f"Index {index} outside {self.rows}x{self.cols} matrix") from e

    def __setitem__(self, index, value):
        try:
            self.element[index] = value
        except IndexError as e:
            raise ShapeError(f"Index {index} outside {self.rows}x{self.cols} matrix") from e

    def __matmul__(self, other):
        return self.multiply(other)

    def __repr__(self):
        return f"Matrix({self.element.tolist()!r})"

    def __str__(self):
        return np.array2string(self.element, precision=9, suppress_small=False)

    def tolist(self):
        return self.element.tolist()

    def transpose(self):
        return Matrix(self.element.T)

    def multiply(self, other):
        """Standard matrix product ``self . other``."""
        if self.cols != other.rows:
            raise ShapeError(
                f"Cannot multiply {self.rows}x{self.cols} by {other.rows}x{other.cols}"
            )
        return Matrix(self.element @ other.element)

    def determinant(self) -> float:
        if self.rows != self.cols:
            raise ShapeError(f"Determinant of non-square {self.rows}x{self.cols} matrix")
        a = self.element
        if self.rows == 1:
            return float(a[0, 0])
        if self.rows == 2:
            return float(a[0, 0] * a[1, 1] - a[0, 1] * a[1, 0])
        if self.rows == 3:
            return float(
                a[0, 0] * (a[1, 1] * a[2, 2] - a[2, 1] * a[1, 2])
                - a[0, 1] * (a[1, 0] * a[2, 2] - a[2, 0] * a[1, 2])
                + a[0, 2] * (a[1, 0] * a[2, 1] - a[2, 0] * a[1, 1])
            )
        return float(linalg.det(a))

    def invert(self):
        """Returns the inverse of a square matrix."""
        if self.rows != self.cols:
            raise ShapeError(f"Cannot invert non-square {self.rows}x{self.cols} matrix")

        det = self.determinant()
        if det == 0:
            raise SingularMatrixError(
                f"Cannot invert {self.rows}x{self.cols} matrix with determinant 0"
            )

        a = self.element
        if self.rows == 1:
            return Matrix([[1.0 / det]])

        if self.rows == 2:
            return Matrix(
                [
                    [a[1, 1] / det, -a[0, 1] / det],
                    [-a[1, 0] / det, a[0, 0] / det],
                ]
            )

        if self.rows == 3:
            return Matrix(
                [
                    [
                        (a[1, 1] * a[2, 2] - a[2, 1] * a[1, 2]) / det,
                        (a[0, 2] * a[2, 1] - a[0, 1] * a[2, 2]) / det,
                        (a[0, 1] * a[1, 2] - a[1, 1] * a[0, 2]) / det,
                    ],
                    [
                        (a[1, 2] * a[2, 0] - a[2, 2] * a[1, 0]) / det,
                        (a[0, 0] * a[2, 2] - a[2, 0] * a[0, 2]) / det,
                        (a[0, 2] * a[1, 0] - a[1, 2] * a[0, 0]) / det,
                    ],
                    [
                        (a[1, 0] * a[2, 1] - a[2, 0] * a[1, 1]) / det,
                        (a[0, 1] * a[2, 0] - a[2, 1] * a[0, 0]) / det,
                        (a[0, 0] * a[1, 1] - a[1, 0] * a[0, 1]) / det,
                    ],
                ]
            )

        try:
            return Matrix(linalg.inv(a, check_finite=True))
        except linalg.LinAlgError as e:
            raise SingularMatrixError(str(e)) from e

    def is_equal_to(self, other, tolerance=0.0) -> bool:
        """Element-wise comparison within an absolute tolerance."""
        if self.shape != other.shape:
            return False
        return bool(np.all(np.abs(self.element - other.element) <= tolerance))


def solve_normal_equation(features: Matrix, values: Matrix) -> Matrix:
    """
    Least-squares coefficients for ``features . coeffs ~= values``.

    Solved through the normal equations ``(F^T F)^-1 F^T V``. Raises
    SingularMatrixError when ``F^T F`` cannot be inverted, e.g. fewer than
    three independent points.
    """
    features_t = features.transpose()
    return (features_t @ features).invert() @ (features_t @ values)

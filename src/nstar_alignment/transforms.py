"""
Local correction transforms fitted from alignment point triangles.

Both transforms map a source working-frame point to its destination as
``dest = offset + source . M`` (row vector times matrix). The affine variant
fits a 2x2 matrix to the in-plane deltas; the Taki variant adds the plane
normal as a third direction cosine and fits a 3x3 matrix.
"""

import math

from nstar_alignment.errors import ShapeError
from nstar_alignment.matrix import Matrix, solve_normal_equation
from nstar_alignment.positions import Coord


def pq_matrix(p1, p2, p3):
    """2x2 matrix of the deltas p2-p1 and p3-p1 (one delta per row)."""
    return Matrix(
        [
            [p2.x - p1.x, p2.y - p1.y],
            [p3.x - p1.x, p3.y - p1.y],
        ]
    )


def lmn_matrix(p1, p2, p3):
    """
    3x3 direction-cosine matrix of a point triple.

    Rows 0 and 1 are the deltas p2-p1 and p3-p1, row 2 the unit normal of
    their plane. A degenerate plane leaves the normal row zero.
    """
    d1 = (p2.x - p1.x, p2.y - p1.y, p2.z - p1.z)
    d2 = (p3.x - p1.x, p3.y - p1.y, p3.z - p1.z)
    normal = (
        d1[1] * d2[2] - d1[2] * d2[1],
        d1[2] * d2[0] - d1[0] * d2[2],
        d1[0] * d2[1] - d1[1] * d2[0],
    )
    length = math.sqrt(sum(c * c for c in normal))
    scale = 1.0 / length if length != 0 else 0.0
    return Matrix([list(d1), list(d2), [c * scale for c in normal]])


class AffineTransform:
    """2D affine correction ``dest = offset + source . M``."""

    def __init__(self, matrix, offset):
        if matrix.shape != (2, 2):
            raise ShapeError(f"Affine matrix must be 2x2, got {matrix.shape}")
        self.matrix = matrix
        self.offset = Coord(offset[0], offset[1], 0.0)

    @classmethod
    def identity(cls):
        return cls(Matrix([[1.0, 0.0], [0.0, 1.0]]), (0.0, 0.0))

    @classmethod
    def from_points(cls, a1, a2, a3, m1, m2, m3):
        """
        Fits the transform mapping a1, a2, a3 onto m1, m2, m3.

        Raises SingularMatrixError when the source points are collinear.
        """
        m = pq_matrix(a1, a2, a3).invert() @ pq_matrix(m1, m2, m3)
        offset = (
            m1.x - (a1.x * m[0, 0] + a1.y * m[1, 0]),
            m1.y - (a1.x * m[0, 1] + a1.y * m[1, 1]),
        )
        return cls(m, offset)

    @classmethod
    def fit(cls, sources, destinations):
        """Least-squares fit over three or more point correspondences."""
        if len(sources) != len(destinations):
            raise ShapeError(
                f"Got {len(sources)} sources for {len(destinations)} destinations"
            )
        features = Matrix([[1.0, p.x, p.y] for p in sources])
        values = Matrix([[p.x, p.y] for p in destinations])
        coeffs = solve_normal_equation(features, values)
        m = Matrix([[coeffs[1, 0], coeffs[1, 1]], [coeffs[2, 0], coeffs[2, 1]]])
        return cls(m, (coeffs[0, 0], coeffs[0, 1]))

    def apply(self, pos):
        m = self.matrix
        return Coord(
            self.offset.x + pos.x * m[0, 0] + pos.y * m[1, 0],
            self.offset.y + pos.x * m[0, 1] + pos.y * m[1, 1],
            pos.z,
            getattr(pos, "f", 0.0),
        )

    def __repr__(self):
        return f"AffineTransform(matrix={self.matrix.tolist()}, offset={tuple(self.offset[:2])})"


class TakiTransform:
    """3D direction-cosine correction ``dest = offset + source . M``."""

    def __init__(self, matrix, offset):
        if matrix.shape != (3, 3):
            raise ShapeError(f"Taki matrix must be 3x3, got {matrix.shape}")
        self.matrix = matrix
        self.offset = Coord(*offset)

    @classmethod
    def identity(cls):
        return cls(Matrix([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]), (0.0, 0.0, 0.0))

    @classmethod
    def from_points(cls, a1, a2, a3, m1, m2, m3):
        """
        Fits the transform mapping a1, a2, a3 onto m1, m2, m3.

        Raises SingularMatrixError when the source points do not span a plane.
        """
        m = lmn_matrix(a1, a2, a3).invert() @ lmn_matrix(m1, m2, m3)
        offset = tuple(
            dest - (a1.x * m[0, col] + a1.y * m[1, col] + a1.z * m[2, col])
            for col, dest in enumerate((m1.x, m1.y, m1.z))
        )
        return cls(m, offset)

    def apply(self, pos):
        m = self.matrix
        x, y, z = (
            self.offset[col] + pos.x * m[0, col] + pos.y * m[1, col] + pos.z * m[2, col]
            for col in range(3)
        )
        return Coord(x, y, z, getattr(pos, "f", 0.0))

    def __repr__(self):
        return f"TakiTransform(matrix={self.matrix.tolist()}, offset={tuple(self.offset[:3])})"

"""
Value types shared by the conversion, selection and transform layers.

All positions are immutable tuples. Arithmetic is component-wise so that
``target - encoder`` yields the per-axis delta of an alignment point.
"""

from typing import NamedTuple


class EncoderPosition(NamedTuple):
    """Raw encoder counts of the RA and Dec axes."""

    ra: int
    dec: int

    def __add__(self, other):
        return EncoderPosition(self.ra + other[0], self.dec + other[1])

    def __sub__(self, other):
        return EncoderPosition(self.ra - other[0], self.dec - other[1])

    def __neg__(self):
        return EncoderPosition(-self.ra, -self.dec)


class AxisPosition(NamedTuple):
    """Axis angles: RA axis in hours, Dec axis in degrees."""

    ra: float
    dec: float

    def __add__(self, other):
        return AxisPosition(self.ra + other[0], self.dec + other[1])

    def __sub__(self, other):
        return AxisPosition(self.ra - other[0], self.dec - other[1])


class Coord(NamedTuple):
    """Working-frame point.

    ``z`` is 1 for homogeneous 2D points. ``f`` is a flag carried with the
    point through arithmetic and transforms, taken from the left operand.
    """

    x: float
    y: float
    z: float = 0.0
    f: float = 0.0

    def __add__(self, other):
        return self._replace(x=self.x + other.x, y=self.y + other.y, z=self.z + other.z)

    def __sub__(self, other):
        return self._replace(x=self.x - other.x, y=self.y - other.y, z=self.z - other.z)


class CartesCoord(NamedTuple):
    """Cartesian projection of a polar point.

    ``r`` is the sign of the polar radius (+1 or -1) and ``ra`` the radius
    peak offset; both travel with the point so the inverse projection can
    pick the branch it came from.
    """

    x: float
    y: float
    z: float = 0.0
    r: float = 0.0
    ra: float = 0.0

    def __add__(self, other):
        return self._replace(x=self.x + other.x, y=self.y + other.y, z=self.z + other.z)

    def __sub__(self, other):
        return self._replace(x=self.x - other.x, y=self.y - other.y, z=self.z - other.z)


class SphericalCoord(NamedTuple):
    """Spherical-polar point in encoder-equivalent units.

    ``r`` is 1 when the originating RA encoder lies within a quarter
    revolution of home, otherwise 0.
    """

    x: float
    y: float
    r: float = 0.0

    def __add__(self, other):
        return self._replace(x=self.x + other.x, y=self.y + other.y)

    def __sub__(self, other):
        return self._replace(x=self.x - other.x, y=self.y - other.y)

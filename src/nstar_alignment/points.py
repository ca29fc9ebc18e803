"""
Alignment points and their ordered collection.
"""

from datetime import datetime

from nstar_alignment.errors import DuplicatePointError
from nstar_alignment.positions import AxisPosition, EncoderPosition


class AlignmentPoint:
    """
    One sync event.

    Records the raw encoder reading at sync time, the RA/Dec the operator
    synced on and the theoretical target encoder position of that star,
    together with the working-frame projections of both encoder positions.
    ``id`` stays 0 until the point is inserted into a collection.
    """

    def __init__(
        self,
        encoder,
        orig_ra_dec,
        target,
        encoder_cartesian,
        target_cartesian,
        align_time: datetime = None,
    ):
        self.id = 0
        self.align_time = align_time if align_time is not None else datetime.now()
        self.encoder = EncoderPosition(*encoder)
        self.orig_ra_dec = AxisPosition(*orig_ra_dec)
        self.target = EncoderPosition(*target)
        self.encoder_cartesian = encoder_cartesian
        self.target_cartesian = target_cartesian
        self.selected = False

    @property
    def delta(self) -> EncoderPosition:
        """Target minus encoder, per axis."""
        return self.target - self.encoder

    def __repr__(self):
        return (
            f"AlignmentPoint(id={self.id}, encoder={tuple(self.encoder)}, "
            f"target={tuple(self.target)}, time={self.align_time.isoformat()})"
        )


class AlignmentPointCollection:
    """Insertion-ordered alignment points with unique increasing Ids."""

    def __init__(self, points=()):
        self._points = []
        for point in points:
            self.append(point)

    def __len__(self):
        return len(self._points)

    def __iter__(self):
        return iter(list(self._points))

    def __getitem__(self, index):
        return self._points[index]

    @property
    def max_id(self) -> int:
        return max((p.id for p in self._points), default=0)

    def append(self, point):
        """Inserts a point, assigning the next Id when it has none yet."""
        if point.id == 0:
            point.id = self.max_id + 1
        elif self.get(point.id) is not None:
            raise DuplicatePointError(f"Alignment point Id {point.id} already present")
        self._points.append(point)
        return point.id

    def get(self, point_id):
        for point in self._points:
            if point.id == point_id:
                return point
        return None

    def remove(self, point):
        self._points.remove(point)

    def remove_by_id(self, point_id) -> bool:
        point = self.get(point_id)
        if point is None:
            return False
        self._points.remove(point)
        return True

    def clear(self):
        self._points.clear()

"""
Triangle Selection

Picks three alignment points forming a local basis around a target
working-frame position. Candidates are filtered by the active-points
policy, sorted by distance and capped; every triangle among the survivors
is tested for enclosure with the area-sum test. Enclosing triangles are
produced in policy order, followed by the three globally nearest points as
an explicit fallback.
"""

import itertools
import logging
from enum import Enum
from typing import NamedTuple

from nstar_alignment.errors import InsufficientPointsError

logger = logging.getLogger(__name__)

AREA_SCALE = 10000.0
AREA_TOLERANCE = 2.0


class ActivePoints(Enum):
    ALL = "all"
    PIER_SIDE = "pier_side"
    LOCAL_QUADRANT = "local_quadrant"


class ThreePointAlgorithm(Enum):
    BEST_CENTROID = "best_centroid"
    NEAREST_ENCLOSING = "nearest_enclosing"


class Candidate(NamedTuple):
    """An alignment point as seen by the selector.

    ``position`` is its working-frame projection in the direction being
    corrected, ``raw`` the matching encoder counts.
    """

    point: object
    position: object
    raw: object


class Triangle(NamedTuple):
    candidates: tuple
    enclosing: bool


def triangle_area(p1, p2, p3):
    """Shoelace area of a triangle with each cross product scaled down."""
    total = (
        (p2.x * p1.y - p1.x * p2.y) / AREA_SCALE
        + (p3.x * p2.y - p2.x * p3.y) / AREA_SCALE
        + (p1.x * p3.y - p3.x * p1.y) / AREA_SCALE
    )
    return abs(total) / 2.0


def point_in_triangle(p, p1, p2, p3):
    """True when p lies inside or on the boundary of the triangle."""
    whole = triangle_area(p1, p2, p3)
    t1 = triangle_area(p, p2, p3)
    t2 = triangle_area(p1, p, p3)
    t3 = triangle_area(p1, p2, p)
    return abs(whole - t1 - t2 - t3) < AREA_TOLERANCE


def triangle_centre(p1, p2, p3):
    return ((p1.x + p2.x + p3.x) / 3.0, (p1.y + p2.y + p3.y) / 3.0)


def quadrant(p):
    if p.x >= 0:
        return 0 if p.y >= 0 else 1
    return 2 if p.y >= 0 else 3


def is_active(active_points, target, position):
    if active_points is ActivePoints.PIER_SIDE:
        return position.y * target.y >= 0
    if active_points is ActivePoints.LOCAL_QUADRANT:
        return quadrant(position) == quadrant(target)
    return True


def filter_candidates(active_points, target, candidates):
    return [c for c in candidates if is_active(active_points, target, c.position)]


def squared_distance(a, b):
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2


def sort_by_distance(target, target_raw, candidates, check_local_pier=False):
    """Candidates nearest first, measured in raw counts when check_local_pier is set."""
    if check_local_pier:
        return sorted(candidates, key=lambda c: squared_distance(c.raw, target_raw))
    return sorted(candidates, key=lambda c: squared_distance(c.position, target))


def enclosing_triangles(target, nearest, algorithm):
    """Enclosing triangles among the distance-sorted candidates, in policy order."""
    found = (
        tri
        for tri in itertools.combinations(nearest, 3)
        if point_in_triangle(target, *(c.position for c in tri))
    )
    if algorithm is ThreePointAlgorithm.NEAREST_ENCLOSING:
        yield from found
        return

    def centre_distance(tri):
        return squared_distance(triangle_centre(*(c.position for c in tri)), target)

    yield from sorted(found, key=centre_distance)


def select_triangles(
    target,
    target_raw,
    candidates,
    active_points=ActivePoints.ALL,
    algorithm=ThreePointAlgorithm.BEST_CENTROID,
    max_combination_count=50,
    check_local_pier=False,
):
    """
    Returns an iterator over candidate triangles, best first.

    Raises InsufficientPointsError when fewer than three candidates exist.
    The caller takes the first triangle whose transform can be assembled.
    """
    candidates = list(candidates)
    if len(candidates) < 3:
        raise InsufficientPointsError(f"Need 3 alignment points, have {len(candidates)}")
    return _triangles(
        target,
        target_raw,
        candidates,
        active_points,
        algorithm,
        max_combination_count,
        check_local_pier,
    )


def _triangles(target, target_raw, candidates, active_points, algorithm, cap, check_local_pier):
    active = filter_candidates(active_points, target, candidates)
    nearest = sort_by_distance(target, target_raw, active, check_local_pier)[:cap]
    logger.debug(f"{len(active)} of {len(candidates)} alignment points active, {len(nearest)} kept")

    tried = set()
    if len(nearest) >= 3:
        for tri in enclosing_triangles(target, nearest, algorithm):
            tried.add(frozenset(id(c.point) for c in tri))
            yield Triangle(tri, True)

    fallback = tuple(sort_by_distance(target, target_raw, candidates, check_local_pier)[:3])
    if frozenset(id(c.point) for c in fallback) not in tried:
        logger.debug("No usable enclosing triangle, falling back to the 3 nearest points")
        yield Triangle(fallback, False)

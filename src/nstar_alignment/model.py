"""
N-Star Alignment Model

Owns the alignment points and maps positions between mount encoder space
and corrected sky space. Each correction projects the position into the
working frame, selects a triangle of nearby alignment points, fits an
affine or Taki transform from it and maps the result back to encoder
counts. With fewer than three points, or when no triangle can be fitted,
the mapping is the identity.
"""

import logging
import threading
from datetime import datetime

from nstar_alignment import astro
from nstar_alignment.config import AlignmentMode, AlignmentSettings, TransformKind
from nstar_alignment.coordinates import MountGeometry, internal_home, is_valid_encoder
from nstar_alignment.errors import InsufficientPointsError, SingularMatrixError
from nstar_alignment.points import AlignmentPoint, AlignmentPointCollection
from nstar_alignment.positions import AxisPosition, EncoderPosition
from nstar_alignment.transforms import AffineTransform, TakiTransform
from nstar_alignment.triangle import (
    Candidate,
    filter_candidates,
    select_triangles,
    sort_by_distance,
)

TRANSFORMS = {
    TransformKind.AFFINE: AffineTransform,
    TransformKind.TAKI: TakiTransform,
}


class AlignmentModel:
    """Alignment point store and correction engine.

    Thread Safety:
        All public methods are serialized through one lock around the
        alignment point collection.

    Args:
        settings: AlignmentSettings; defaults are used when omitted.
        logger: Logger for alignment operations.
    """

    def __init__(self, settings=None, logger=None):
        self.settings = settings if settings is not None else AlignmentSettings()
        self._logger = logger or logging.getLogger(__name__)
        self._access_lock = threading.RLock()

        self.geometry = MountGeometry(
            self.settings.latitude,
            self.settings.steps_per_rev,
            hemisphere=self.settings.hemisphere,
            polar_enable=self.settings.polar_enable,
        )
        self.home_encoder = internal_home(self.settings.steps_per_rev)
        self.encoder_mapping_offset = EncoderPosition(0, 0)
        self._transform_class = TRANSFORMS[self.settings.transform]

        self.points = AlignmentPointCollection()
        self.selected_point_ids = ()
        self.last_access_time = None

        self.set_home_position(*self.settings.home_position)

    @classmethod
    def from_config(cls, config=None, logger=None):
        """Builds a model from a configuration dict (see config.DEFAULT_CONFIG)."""
        return cls(AlignmentSettings.from_config(config), logger=logger)

    # Home position and encoder offsets

    def set_home_position(self, ra, dec):
        """Records the raw encoder reading the mount reports at its home position."""
        with self._access_lock:
            self.encoder_mapping_offset = self.home_encoder - (int(ra), int(dec))
            self._logger.info(
                f"Home position set to ({ra}, {dec}), "
                f"encoder offset {tuple(self.encoder_mapping_offset)}"
            )

    def to_internal(self, encoder) -> EncoderPosition:
        return EncoderPosition(*encoder) + self.encoder_mapping_offset

    def to_mount(self, encoder) -> EncoderPosition:
        return EncoderPosition(*encoder) - self.encoder_mapping_offset

    # Alignment points

    @property
    def alignment_points(self):
        """Snapshot of the alignment points in insertion order."""
        with self._access_lock:
            return list(self.points)

    def add_alignment_point(self, encoder, orig_ra_dec, target, time=None) -> int:
        """
        Records a sync and returns the Id of the new alignment point.

        ``encoder`` is the raw mount reading at sync time, ``target`` the raw
        encoder position the synced star should have had. Once more than
        three points exist, points within the proximity limit of the new
        one on both axes are replaced.
        """
        with self._access_lock:
            encoder = self.to_internal(encoder)
            target = self.to_internal(target)
            if len(self.points) > 3:
                self._remove_nearby(encoder)

            point = AlignmentPoint(
                encoder,
                orig_ra_dec,
                target,
                self.geometry.sp_to_cs(encoder),
                self.geometry.sp_to_cs(target),
                align_time=time,
            )
            point_id = self.points.append(point)
            self._logger.info(
                f"Alignment point {point_id} added: encoder {tuple(encoder)}, "
                f"target {tuple(target)}, delta {tuple(point.delta)}"
            )
            return point_id

    def _remove_nearby(self, encoder):
        spr = self.settings.steps_per_rev
        limit_ra = round(self.settings.proximity_limit / 360.0 * spr.ra)
        limit_dec = round(self.settings.proximity_limit / 360.0 * spr.dec)
        for point in self.points:
            if (
                abs(point.encoder.ra - encoder.ra) < limit_ra
                and abs(point.encoder.dec - encoder.dec) < limit_dec
            ):
                self.points.remove(point)
                self._logger.info(f"Alignment point {point.id} replaced by a nearby sync")

    def remove_alignment_point(self, point_id) -> bool:
        with self._access_lock:
            removed = self.points.remove_by_id(point_id)
            if removed:
                self._logger.info(f"Alignment point {point_id} removed")
            return removed

    def clear_alignment_points(self):
        with self._access_lock:
            self.points.clear()
            self._select(())
            self._logger.info("Alignment points cleared")

    # Corrections

    def get_sky_steps(self, encoder) -> EncoderPosition:
        """Raw mount encoder position to the corrected (target) position, in mount counts."""
        encoder = EncoderPosition(*encoder)
        if not is_valid_encoder(encoder):
            return encoder
        with self._access_lock:
            corrected = self._correct(self.to_internal(encoder), forward=True)
            return encoder if corrected is None else self.to_mount(corrected)

    def get_mount_steps(self, target) -> EncoderPosition:
        """Target position in mount counts to the raw mount encoder position to slew to."""
        target = EncoderPosition(*target)
        if not is_valid_encoder(target):
            return target
        with self._access_lock:
            corrected = self._correct(self.to_internal(target), forward=False)
            return target if corrected is None else self.to_mount(corrected)

    def get_sky_axes(self, mount_axes, time=None) -> AxisPosition:
        """Mount axis angles (hours, degrees) to corrected sky axis angles."""
        with self._access_lock:
            self.last_access_time = time or datetime.now()
            corrected = self._correct(self.geometry.axes_to_encoder(mount_axes), forward=True)
            if corrected is None:
                return AxisPosition(*mount_axes)
            return self.geometry.encoder_to_axes(corrected)

    def get_mount_axes(self, sky_axes, time=None) -> AxisPosition:
        """Sky axis angles (hours, degrees) to the mount axis angles to slew to."""
        with self._access_lock:
            self.last_access_time = time or datetime.now()
            corrected = self._correct(self.geometry.axes_to_encoder(sky_axes), forward=False)
            if corrected is None:
                return AxisPosition(*sky_axes)
            return self.geometry.encoder_to_axes(corrected)

    def _select(self, point_ids):
        """Records the points used by the last correction."""
        self.selected_point_ids = point_ids
        for point in self.points:
            point.selected = point.id in point_ids

    def _candidates(self, forward):
        if forward:
            return [Candidate(p, p.encoder_cartesian, p.encoder) for p in self.points]
        return [Candidate(p, p.target_cartesian, p.target) for p in self.points]

    def _correct(self, encoder, forward):
        """Maps an internal encoder position in either direction.

        Returns None when no correction applies: fewer than three points, no
        active point in nearest mode, or no triangle that can be fitted.
        """
        if len(self.points) < 3:
            self._select(())
            return None
        if self.settings.alignment_mode is AlignmentMode.NEAREST:
            return self._nearest_delta(encoder, forward)

        position = self.geometry.sp_to_cs(encoder)
        try:
            triangles = select_triangles(
                position,
                encoder,
                self._candidates(forward),
                self.settings.active_points,
                self.settings.three_point_algorithm,
                self.settings.max_combination_count,
                self.settings.check_local_pier,
            )
        except InsufficientPointsError as e:
            self._logger.debug(f"No correction applied: {e}")
            self._select(())
            return None

        for triangle in triangles:
            points = [c.point for c in triangle.candidates]
            sources = [c.position for c in triangle.candidates]
            if forward:
                destinations = [p.target_cartesian for p in points]
            else:
                destinations = [p.encoder_cartesian for p in points]
            try:
                transform = self._transform_class.from_points(*sources, *destinations)
            except SingularMatrixError:
                self._logger.warning(
                    f"Alignment points {[p.id for p in points]} are degenerate, trying next triangle"
                )
                continue

            self._select(tuple(p.id for p in points))
            self._logger.debug(
                f"Using alignment points {self.selected_point_ids} "
                f"(enclosing={triangle.enclosing}): {transform!r}"
            )
            return self.geometry.apply_transform(encoder, transform)

        self._logger.warning("No alignment triangle could be fitted, correction not applied")
        self._select(())
        return None

    def _nearest_delta(self, encoder, forward):
        position = self.geometry.sp_to_cs(encoder)
        candidates = filter_candidates(
            self.settings.active_points, position, self._candidates(forward)
        )
        if not candidates:
            self._select(())
            return None
        nearest = sort_by_distance(
            position, encoder, candidates, self.settings.check_local_pier
        )[0].point
        self._select((nearest.id,))
        if forward:
            return encoder + nearest.delta
        return encoder - nearest.delta

    # Sky helpers

    def ra_dec_to_axes(self, ra, dec, time=None, flipped=False) -> AxisPosition:
        """RA (hours) and Dec (degrees) to mount axis angles at the site."""
        lst = astro.local_sidereal_time(self.settings.longitude, time)
        return astro.ra_dec_to_axes(ra, dec, lst, flipped)

    def axes_to_ra_dec(self, axes, time=None) -> AxisPosition:
        lst = astro.local_sidereal_time(self.settings.longitude, time)
        return astro.axes_to_ra_dec(axes, lst)

    def ra_dec_to_alt_az(self, ra, dec, time=None):
        """RA (hours) and Dec (degrees) to (alt, az) in degrees at the site."""
        lst = astro.local_sidereal_time(self.settings.longitude, time)
        return astro.ha_dec_to_alt_az(astro.range24(lst - ra), dec, self.settings.latitude)

    def report(self) -> str:
        """Tabular listing of the alignment points."""
        rows = [
            f"{'Id':>4} {'Encoder RA':>10} {'Encoder Dec':>11} {'RA':>9} {'Dec':>9} "
            f"{'Target RA':>10} {'Target Dec':>10}  Synced"
        ]
        for p in self.alignment_points:
            rows.append(
                f"{p.id:>4} {p.encoder.ra:>10} {p.encoder.dec:>11} "
                f"{p.orig_ra_dec.ra:>9.5f} {p.orig_ra_dec.dec:>9.4f} "
                f"{p.target.ra:>10} {p.target.dec:>10}  {p.align_time:%Y-%m-%d %H:%M:%S}"
            )
        return "\n".join(rows)

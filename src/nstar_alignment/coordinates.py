"""
Encoder-space coordinate conversions.

Maps raw encoder counts to hour-angle/degree sky space, to the
spherical-polar (Alt/Az scaled to encoder units) frame and to the
Cartesian working frame in which the alignment transforms are fitted.
All conversions are bound to one fixed home position, steps-per-revolution,
site latitude and hemisphere.
"""

import math
from enum import Enum

from nstar_alignment.astro import get_alt_az, get_ha_dec, range24, range360
from nstar_alignment.positions import (
    AxisPosition,
    CartesCoord,
    Coord,
    EncoderPosition,
    SphericalCoord,
)

HOME_ZERO_POSITION = 0x800000
INVALID_ENCODER = 0x1000000


class Hemisphere(Enum):
    NORTHERN = "northern"
    SOUTHERN = "southern"


def internal_home(steps_per_rev):
    """EQMOD home: RA at 0x800000 (0h), Dec a quarter revolution above it (90 deg)."""
    return EncoderPosition(HOME_ZERO_POSITION, HOME_ZERO_POSITION + steps_per_rev.dec // 4)


def is_valid_encoder(pos):
    """False when either axis carries the out-of-range marker value."""
    return pos[0] < INVALID_ENCODER and pos[1] < INVALID_ENCODER


class MountGeometry:
    """
    Fixed mount geometry used by every conversion.

    Args:
        latitude: Site latitude in degrees, north positive.
        steps_per_rev: Encoder counts per 360 degrees for each axis.
        home_encoder: Internal encoder counts at the home position. Defaults
            to the EQMOD convention.
        hemisphere: Defaults to the hemisphere of ``latitude``.
        polar_enable: Project encoder positions through the spherical-polar
            frame. When off, (RA, Dec) counts are used directly as (x, y).
    """

    def __init__(
        self,
        latitude: float,
        steps_per_rev: EncoderPosition,
        home_encoder: EncoderPosition = None,
        hemisphere: Hemisphere = None,
        polar_enable: bool = True,
    ):
        self.latitude = latitude
        self.steps_per_rev = EncoderPosition(*steps_per_rev)
        self.home_encoder = EncoderPosition(
            *(home_encoder if home_encoder is not None else internal_home(self.steps_per_rev))
        )
        if hemisphere is None:
            hemisphere = Hemisphere.NORTHERN if latitude >= 0 else Hemisphere.SOUTHERN
        self.hemisphere = hemisphere
        self.polar_enable = polar_enable

    @property
    def northern(self) -> bool:
        return self.hemisphere is Hemisphere.NORTHERN

    # Encoder <-> hours/degrees

    def encoder_hours(self, encoder) -> float:
        """RA encoder count to hour angle in [0, 24)."""
        home = self.home_encoder.ra
        spr = self.steps_per_rev.ra
        if encoder > home:
            hours = 24.0 - ((encoder - home) / spr) * 24.0
        else:
            hours = ((home - encoder) / spr) * 24.0

        # +6h puts zero perpendicular to the RA axis
        if self.northern:
            return range24(hours + 6.0)
        return range24((24.0 - hours) + 6.0)

    def encoder_degrees(self, encoder) -> float:
        """Dec encoder count to degrees in [0, 360)."""
        home = self.home_encoder.dec
        spr = self.steps_per_rev.dec
        if encoder > home:
            degrees = ((encoder - home) / spr) * 360.0
        else:
            degrees = 360.0 - ((home - encoder) / spr) * 360.0

        if self.northern:
            return range360(degrees)
        return range360(360.0 - degrees)

    def encoder_from_hours(self, hours) -> int:
        """Hour angle to the nearest RA encoder count."""
        home = self.home_encoder.ra
        spr = self.steps_per_rev.ra
        hours = range24(hours - 6.0)
        if self.northern:
            if hours < 12:
                return round(home - (hours / 24.0) * spr)
            return round(((24.0 - hours) / 24.0) * spr + home)
        if hours < 12:
            return round((hours / 24.0) * spr + home)
        return round(home - ((24.0 - hours) / 24.0) * spr)

    def encoder_from_degrees(self, degrees) -> int:
        """Dec axis degrees to the nearest Dec encoder count."""
        home = self.home_encoder.dec
        spr = self.steps_per_rev.dec
        if not self.northern:
            degrees = 360.0 - degrees
        if degrees > 180:
            return round(home - ((360.0 - degrees) / 360.0) * spr)
        return round((degrees / 360.0) * spr + home)

    def encoder_to_axes(self, encoder) -> AxisPosition:
        return AxisPosition(self.encoder_hours(encoder[0]), self.encoder_degrees(encoder[1]))

    def axes_to_encoder(self, axes) -> EncoderPosition:
        return EncoderPosition(self.encoder_from_hours(axes[0]), self.encoder_from_degrees(axes[1]))

    # Spherical-polar frame

    def spherical_polar(self, encoder) -> SphericalCoord:
        """
        Encoder position to the spherical-polar frame.

        The hour angle and the Dec axis (rotated by 270 degrees) are
        converted to Alt/Az, which is then rescaled to encoder units around
        the home position. ``r`` flags whether the RA encoder lies within a
        quarter revolution of home.
        """
        ha = math.radians(self.encoder_hours(encoder[0]) * 15.0)
        dec = math.radians(range360(self.encoder_degrees(encoder[1]) + 270.0))
        alt, az = get_alt_az(math.radians(self.latitude), ha, dec)

        x = ((math.degrees(az) - 180.0) / 360.0) * self.steps_per_rev.ra + self.home_encoder.ra
        y = ((math.degrees(alt) + 90.0) / 180.0) * self.steps_per_rev.dec + self.home_encoder.dec

        quadrant = self.steps_per_rev.ra / 4.0
        in_range = self.home_encoder.ra - quadrant <= encoder[0] <= self.home_encoder.ra + quadrant
        return SphericalCoord(x, y, 1 if in_range else 0)

    def polar_spherical(self, polar, reference) -> EncoderPosition:
        """
        Inverse of spherical_polar.

        ``reference`` is the spherical-polar point the value was derived
        from; its ``r`` flag selects the branch of the HA/Dec solution.
        """
        az = ((polar.x - self.home_encoder.ra) / self.steps_per_rev.ra) * 360.0 + 180.0
        alt = ((polar.y - self.home_encoder.dec) / self.steps_per_rev.dec) * 180.0 - 90.0
        ha_rad, dec_rad = get_ha_dec(math.radians(self.latitude), math.radians(alt), math.radians(az))
        ha = math.degrees(ha_rad) / 15.0
        dec = math.degrees(dec_rad)

        if (az > 180) == (reference.r == 0):
            dec = range360(180.0 - dec)
        else:
            dec = range360(dec)

        if range360(dec + 90.0) < 180:
            ha = range24(ha)
        else:
            ha = range24(12.0 + ha)

        return EncoderPosition(self.encoder_from_hours(ha), self.encoder_from_degrees(dec + 90.0))

    # Polar <-> Cartesian

    def polar_to_cartes(self, polar) -> CartesCoord:
        """
        Spherical-polar point to Cartesian.

        The polar angle comes from the RA offset to home, the radius from the
        Dec offset. A zero radius is replaced by 1; the radius sign is kept
        in ``r`` for the inverse conversion.
        """
        home = self.home_encoder
        spr = self.steps_per_rev
        if polar.x > home.ra:
            angle = ((polar.x - home.ra) / spr.ra) * 360.0
        else:
            angle = 360.0 - ((home.ra - polar.x) / spr.ra) * 360.0
        theta = math.radians(range360(angle))

        radius = polar.y - home.dec
        if radius == 0:
            radius = 1
        return CartesCoord(
            x=math.cos(theta) * radius,
            y=math.sin(theta) * radius,
            r=1 if radius > 0 else -1,
            ra=0.0,
        )

    def cartes_to_polar(self, cart, rads) -> SphericalCoord:
        """Cartesian point back to spherical-polar, using the flags of ``rads``."""
        radius = math.sqrt(cart.x * cart.x + cart.y * cart.y) * rads.r

        if cart.x == 0:
            angle = math.pi / 2 if cart.y > 0 else -math.pi / 2
        else:
            angle = math.atan2(cart.y, cart.x)
        angle = math.degrees(angle)
        if angle < 0:
            angle += 360.0
        if rads.r < 0:
            angle = range360(angle + 180.0)

        home = self.home_encoder
        spr = self.steps_per_rev
        if angle > 180:
            x = home.ra - ((360.0 - angle) / 360.0) * spr.ra
        else:
            x = (angle / 360.0) * spr.ra + home.ra
        return SphericalCoord(x, radius + home.dec + rads.ra)

    # Working frame

    def sp_to_cs(self, encoder) -> Coord:
        """Encoder position to the Cartesian working frame (z = 1)."""
        if self.polar_enable:
            cart = self.polar_to_cartes(self.spherical_polar(encoder))
            return Coord(cart.x, cart.y, 1.0)
        return Coord(float(encoder[0]), float(encoder[1]), 1.0)

    def apply_transform(self, encoder, transform) -> EncoderPosition:
        """Maps an encoder position through a working-frame transform."""
        if not self.polar_enable:
            result = transform.apply(Coord(float(encoder[0]), float(encoder[1]), 1.0))
            return EncoderPosition(round(result.x), round(result.y))

        polar = self.spherical_polar(encoder)
        cart = self.polar_to_cartes(polar)
        moved = transform.apply(Coord(cart.x, cart.y, 1.0))
        back = self.cartes_to_polar(moved, cart)
        return self.polar_spherical(back, polar)

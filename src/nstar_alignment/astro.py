"""
Astronomical helpers for the alignment engine.

Angle range reduction, the libastro spherical-triangle solver used for
Alt/Az <-> HA/Dec conversion, unit-vector conversions and sidereal time.
"""

import math
from datetime import datetime, timezone

import ephem

from nstar_alignment.positions import AxisPosition


def _wrap(value, period):
    """Reduces value into [0, period)."""
    result = value % period
    # -1e-17 % 24.0 rounds up to 24.0
    if result >= period:
        result -= period
    return result


def range24(hours):
    """Reduces hours into [0, 24)."""
    return _wrap(hours, 24.0)


def range360(degrees):
    """Reduces degrees into [0, 360)."""
    return _wrap(degrees, 360.0)


def range180(degrees):
    """Reduces degrees into (-180, 180]."""
    result = range360(degrees)
    if result > 180.0:
        result -= 360.0
    return result


def range90(degrees):
    """Folds degrees into [-90, 90] by reflection about the poles."""
    d = range180(degrees)
    if d > 90.0:
        d = 180.0 - d
    elif d < -90.0:
        d = -180.0 - d
    return d


def zero_to_value(x, value):
    """Reduces x into [0, value)."""
    return _wrap(x, value)


def solve_sphere(a, b, cos_c, sin_c):
    """
    Solves a spherical triangle given angle A and sides b, c.

    Returns (cos(a), B) with B in [0, 2*pi). ``cos_c`` and ``sin_c`` are
    passed in because side c (the co-latitude) is constant for a site.
    """
    cos_b = math.cos(b)
    sin_b = math.sin(b)
    cos_a = cos_b * cos_c + sin_b * sin_c * math.cos(a)
    cos_a = max(-1.0, min(1.0, cos_a))

    if sin_c < 1e-7:
        big_b = a if cos_c < 0 else math.pi - a
    else:
        y = math.sin(a) * sin_b * sin_c
        x = cos_b - cos_a * cos_c
        big_b = math.atan2(y, x)

    return cos_a, zero_to_value(big_b, 2 * math.pi)


def _aaha_aux(latitude, x, y):
    cos_a, big_b = solve_sphere(-x, math.pi / 2 - y, math.sin(latitude), math.cos(latitude))
    return big_b, math.pi / 2 - math.acos(cos_a)


def get_alt_az(latitude, ha, dec):
    """HA/Dec to (alt, az), all in radians. Azimuth runs east from north."""
    az, alt = _aaha_aux(latitude, ha, dec)
    return alt, az


def get_ha_dec(latitude, alt, az):
    """Alt/Az to (ha, dec), all in radians. HA is reduced to (-pi, pi]."""
    ha, dec = _aaha_aux(latitude, az, alt)
    if ha > math.pi:
        ha -= 2 * math.pi
    return ha, dec


def ha_dec_to_alt_az(hour_angle, declination, latitude):
    """Hour angle (hours) and Dec/latitude (degrees) to (alt, az) in degrees."""
    ha = math.radians(hour_angle * 15.0)
    dec = math.radians(declination)
    lat = math.radians(latitude)

    j = math.sin(dec) * math.cos(lat) - math.cos(ha) * math.cos(dec) * math.sin(lat)
    k = -(math.sin(ha) * math.cos(dec))
    l = math.cos(ha) * math.cos(dec) * math.cos(lat) + math.sin(dec) * math.sin(lat)

    az = math.degrees(math.atan2(k, j))
    alt = math.degrees(math.atan2(l, math.sqrt(j * j + k * k)))
    return range90(alt), range360(az)


def polar_to_cartesian(alt_deg, az_deg):
    """Converts Alt/Az to a 3D unit vector."""
    alt_rad = math.radians(alt_deg)
    az_rad = math.radians(az_deg)
    return [
        math.cos(alt_rad) * math.cos(az_rad),
        math.cos(alt_rad) * math.sin(az_rad),
        math.sin(alt_rad),
    ]


def cartesian_to_polar(vec):
    """Converts a 3D vector to (alt, az) in degrees."""
    norm = math.sqrt(sum(x * x for x in vec))
    if norm < 1e-9:
        return 0.0, 0.0
    vx, vy, vz = [x / norm for x in vec]

    alt_rad = math.asin(max(-1.0, min(1.0, vz)))
    az_rad = math.atan2(vy, vx)
    return math.degrees(alt_rad), range360(math.degrees(az_rad))


def local_sidereal_time(longitude, when=None):
    """Local apparent sidereal time in hours for a longitude in degrees (east +)."""
    observer = ephem.Observer()
    observer.lon = str(longitude)
    if when is None:
        observer.date = ephem.now()
    else:
        if isinstance(when, datetime) and when.tzinfo is not None:
            when = when.astimezone(timezone.utc).replace(tzinfo=None)
        observer.date = when
    return math.degrees(float(observer.sidereal_time())) / 15.0


def ra_dec_to_axes(ra, dec, lst, flipped=False):
    """
    Converts RA (hours) and Dec (degrees) to German-equatorial axis angles.

    The RA axis is the hour angle in hours. The Dec axis is in degrees,
    [-90, 90] mapped into [0, 360) on the normal pier side and reflected
    through 180 when the mount is flipped.
    """
    ha = range24(lst - ra)
    if flipped:
        return AxisPosition(range24(ha - 12.0), range360(180.0 - dec))
    return AxisPosition(ha, range360(dec))


def axes_to_ra_dec(axes, lst):
    """Inverse of ra_dec_to_axes; the pier side is read from the Dec axis."""
    dec_axis = range360(axes[1])
    ha = axes[0]
    if 90.0 < dec_axis < 270.0:
        dec = 180.0 - dec_axis
        ha += 12.0
    elif dec_axis > 90.0:
        dec = dec_axis - 360.0
    else:
        dec = dec_axis
    return AxisPosition(range24(lst - ha), dec)

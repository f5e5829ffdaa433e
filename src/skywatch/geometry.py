"""
Coordinate and geometry utilities.

Every component converts between geographic and Cartesian coordinates through
this module so there is exactly one axis convention in the package:

    Earth-fixed frame, Z up through the north pole,
    X through (0°N, 0°E), Y through (0°N, 90°E).

Positions are 3-element numpy arrays in kilometres.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Tuple, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .aperture import ApertureCone

# =============================================================================
# CONSTANTS
# =============================================================================

EARTH_RADIUS_KM = 6371.0

# Julian date of the J2000 epoch and of the Unix epoch
J2000_JD = 2451545.0
UNIX_EPOCH_JD = 2440587.5
SECONDS_PER_DAY = 86400.0

TWO_PI = 2.0 * math.pi

Vec3 = np.ndarray


class ContainmentStrategy(Enum):
    """How a point is tested against an aperture cone."""

    EXACT = "exact_containment"
    APPROXIMATE_HIGHLIGHT = "approximate_highlight"


# =============================================================================
# GEOGRAPHIC <-> CARTESIAN
# =============================================================================


def to_cartesian(latitude: float, longitude: float, radius: float = EARTH_RADIUS_KM) -> Vec3:
    """
    Convert spherical coordinates to a Cartesian vector.

    Args:
        latitude: Latitude in degrees
        longitude: Longitude in degrees
        radius: Distance from Earth's centre (km)

    Returns:
        numpy array [x, y, z] in the canonical Z-up frame
    """
    lat_rad = math.radians(latitude)
    lon_rad = math.radians(longitude)
    cos_lat = math.cos(lat_rad)
    return np.array(
        [
            radius * cos_lat * math.cos(lon_rad),
            radius * cos_lat * math.sin(lon_rad),
            radius * math.sin(lat_rad),
        ]
    )


def from_cartesian(vector: Vec3) -> Tuple[float, float, float]:
    """
    Inverse of :func:`to_cartesian`.

    Returns:
        Tuple of (latitude_deg, longitude_deg, radius)

    Raises:
        ValueError: If the vector has zero length
    """
    x, y, z = (float(c) for c in vector)
    radius = math.sqrt(x * x + y * y + z * z)
    if radius == 0.0:
        raise ValueError("Cannot derive latitude/longitude from a zero vector")

    latitude = math.degrees(math.asin(max(-1.0, min(1.0, z / radius))))
    longitude = math.degrees(math.atan2(y, x))
    return latitude, longitude, radius


def surface_normal(latitude: float, longitude: float) -> Vec3:
    """Outward unit normal of the spherical Earth at a surface point."""
    return to_cartesian(latitude, longitude, 1.0)


def normalize(vector: Vec3) -> Vec3:
    """Return the unit vector along ``vector``."""
    norm = np.linalg.norm(vector)
    if norm == 0.0:
        raise ValueError("Cannot normalize a zero vector")
    return np.asarray(vector, dtype=float) / norm


def enu_basis(latitude: float, longitude: float) -> Tuple[Vec3, Vec3, Vec3]:
    """
    Local East-North-Up unit vectors at a surface point.

    Returns:
        Tuple of (east, north, up) expressed in the Earth-fixed frame
    """
    lat_rad = math.radians(latitude)
    lon_rad = math.radians(longitude)
    sin_lat, cos_lat = math.sin(lat_rad), math.cos(lat_rad)
    sin_lon, cos_lon = math.sin(lon_rad), math.cos(lon_rad)

    east = np.array([-sin_lon, cos_lon, 0.0])
    north = np.array([-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat])
    up = np.array([cos_lat * cos_lon, cos_lat * sin_lon, sin_lat])
    return east, north, up


def local_direction(
    latitude: float, longitude: float, azimuth_deg: float, elevation_deg: float
) -> Vec3:
    """
    Earth-fixed unit vector pointing along a local azimuth/elevation.

    Azimuth is measured clockwise from north, elevation up from the horizon.
    """
    east, north, up = enu_basis(latitude, longitude)
    az = math.radians(azimuth_deg)
    el = math.radians(elevation_deg)
    horizontal = math.cos(el)
    return normalize(
        horizontal * math.sin(az) * east
        + horizontal * math.cos(az) * north
        + math.sin(el) * up
    )


def look_angles(
    observer_ecef: Vec3, latitude: float, longitude: float, target_ecef: Vec3
) -> Tuple[float, float, float]:
    """
    Elevation, azimuth and slant range from an observer to a target.

    Args:
        observer_ecef: Observer position (km, Earth-fixed)
        latitude: Observer latitude in degrees
        longitude: Observer longitude in degrees
        target_ecef: Target position (km, Earth-fixed)

    Returns:
        Tuple of (elevation_deg, azimuth_deg in [0, 360), range_km)
    """
    rho = np.asarray(target_ecef, dtype=float) - np.asarray(observer_ecef, dtype=float)
    range_km = float(np.linalg.norm(rho))
    if range_km == 0.0:
        # Target coincides with the observer; treat as straight overhead
        return 90.0, 0.0, 0.0

    east, north, up = enu_basis(latitude, longitude)
    e = float(np.dot(rho, east))
    n = float(np.dot(rho, north))
    u = float(np.dot(rho, up))

    elevation = math.degrees(math.asin(max(-1.0, min(1.0, u / range_km))))
    azimuth = math.degrees(math.atan2(e, n)) % 360.0
    if azimuth >= 360.0:
        azimuth = 0.0
    return elevation, azimuth, range_km


# =============================================================================
# SIDEREAL ROTATION
# =============================================================================


def julian_date(when: datetime) -> float:
    """
    Julian date of a UTC instant.

    Naive datetimes are taken to be UTC.
    """
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return UNIX_EPOCH_JD + when.timestamp() / SECONDS_PER_DAY


def greenwich_sidereal_time(when: datetime) -> float:
    """
    Greenwich mean sidereal time (IAU-82) in radians, in [0, 2π).

    This is the same formulation SGP4 implementations use to rotate TEME
    positions into the Earth-fixed frame.
    """
    tut1 = (julian_date(when) - J2000_JD) / 36525.0
    seconds = (
        -6.2e-6 * tut1 ** 3
        + 0.093104 * tut1 ** 2
        + (876600.0 * 3600.0 + 8640184.812866) * tut1
        + 67310.54841
    )
    gmst = math.radians(seconds / 240.0) % TWO_PI
    if gmst < 0.0:
        gmst += TWO_PI
    return gmst


def _rotate_z(vector: Vec3, angle_rad: float) -> Vec3:
    c = math.cos(angle_rad)
    s = math.sin(angle_rad)
    x, y, z = (float(v) for v in vector)
    return np.array([c * x - s * y, s * x + c * y, z])


def eci_to_ecef(vector: Vec3, when: datetime) -> Vec3:
    """Rotate an Earth-centred inertial vector into the Earth-fixed frame."""
    return _rotate_z(vector, -greenwich_sidereal_time(when))


def ecef_to_eci(vector: Vec3, when: datetime) -> Vec3:
    """Rotate an Earth-fixed vector into the Earth-centred inertial frame."""
    return _rotate_z(vector, greenwich_sidereal_time(when))


# =============================================================================
# CONE CONTAINMENT
# =============================================================================


def exact_containment(point: Vec3, cone: "ApertureCone") -> bool:
    """
    Projection-based containment test.

    The point is split into its component along the cone axis and the
    perpendicular remainder; it is inside iff the perpendicular distance does
    not exceed the cone radius at that axial distance.
    """
    v = np.asarray(point, dtype=float) - cone.apex
    along = float(np.dot(v, cone.axis))
    if along <= 0.0:
        return False

    proj = cone.axis * along
    perp = v - proj
    if cone.half_angle_deg >= 90.0:
        return True
    radius = abs(along) * math.tan(math.radians(cone.half_angle_deg))
    return float(np.linalg.norm(perp)) <= radius


def approximate_highlight(point: Vec3, cone: "ApertureCone") -> bool:
    """
    Angle-between-vectors test.

    Cheap visual heuristic: compares the angle from the axis to the
    apex->point direction against the half-angle. Not authoritative.
    """
    v = np.asarray(point, dtype=float) - cone.apex
    norm = float(np.linalg.norm(v))
    if norm == 0.0:
        return True
    cos_angle = max(-1.0, min(1.0, float(np.dot(v, cone.axis)) / norm))
    return math.degrees(math.acos(cos_angle)) <= cone.half_angle_deg


def point_in_cone(
    point: Vec3,
    cone: "ApertureCone",
    strategy: ContainmentStrategy = ContainmentStrategy.EXACT,
) -> bool:
    """
    Test whether a point lies inside an aperture cone.

    Args:
        point: Earth-fixed position (km)
        cone: Aperture cone, in the same frame as ``point``
        strategy: EXACT for visibility decisions, APPROXIMATE_HIGHLIGHT for
            display highlighting only

    Returns:
        True if the point is contained
    """
    if strategy is ContainmentStrategy.APPROXIMATE_HIGHLIGHT:
        return approximate_highlight(point, cone)
    return exact_containment(point, cone)

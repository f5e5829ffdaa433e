"""
Aperture cone model.

An aperture cone restricts visibility to a directional field of view: apex at
the observer, an axis direction, and a half-angle. It is derived per query
from an observer location and an optional azimuth/elevation pointing, and is
consumed by the visibility evaluator (containment) and by renderers (apex,
axis and radius for display).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging
import math

import numpy as np

from .errors import InvalidInputError
from .geometry import (
    ContainmentStrategy,
    local_direction,
    normalize,
    point_in_cone,
)
from .observer import GeoLocation

logger = logging.getLogger(__name__)

# Full aperture used by the globe view when the user has not changed it
DEFAULT_APERTURE_ANGLE_DEG = 90.0
DEFAULT_HALF_ANGLE_DEG = DEFAULT_APERTURE_ANGLE_DEG / 2.0


@dataclass(frozen=True)
class ConeDisplay:
    """Geometry a renderer needs to draw a cone of finite height."""

    apex: np.ndarray
    axis: np.ndarray
    height_km: float
    base_radius_km: float
    base_center: np.ndarray

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apex": [round(float(c), 6) for c in self.apex],
            "axis": [round(float(c), 6) for c in self.axis],
            "height_km": round(self.height_km, 3),
            "base_radius_km": round(self.base_radius_km, 3),
            "base_center": [round(float(c), 6) for c in self.base_center],
        }


@dataclass(frozen=True, eq=False)
class ApertureCone:
    """
    Directional visibility constraint.

    Attributes:
        apex: Earth-fixed apex position (km)
        axis: unit axis direction (normalized on construction)
        half_angle_deg: half-angle in (0, 90]
    """

    apex: np.ndarray
    axis: np.ndarray
    half_angle_deg: float
    _tan_half: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not 0 < self.half_angle_deg <= 90:
            raise InvalidInputError(
                f"half_angle_deg must be in (0, 90], got {self.half_angle_deg}"
            )
        apex = np.asarray(self.apex, dtype=float)
        if apex.shape != (3,):
            raise InvalidInputError(f"apex must be a 3-vector, got shape {apex.shape}")
        try:
            axis = normalize(np.asarray(self.axis, dtype=float))
        except ValueError as e:
            raise InvalidInputError(f"Invalid cone axis: {e}") from e

        # Frozen dataclass: assign normalized copies through object.__setattr__
        object.__setattr__(self, "apex", apex)
        object.__setattr__(self, "axis", axis)
        object.__setattr__(
            self,
            "_tan_half",
            math.inf if self.half_angle_deg >= 90 else math.tan(math.radians(self.half_angle_deg)),
        )

    @classmethod
    def pointing(
        cls,
        observer: GeoLocation,
        azimuth_deg: Optional[float] = None,
        elevation_deg: Optional[float] = None,
        half_angle_deg: float = DEFAULT_HALF_ANGLE_DEG,
    ) -> "ApertureCone":
        """
        Build a cone at the observer pointing along a local direction.

        With no azimuth/elevation the axis is the local zenith. If only one of
        the two is given the other defaults to 0° azimuth / 90° elevation.
        """
        if azimuth_deg is None and elevation_deg is None:
            axis = observer.up
        else:
            az = 0.0 if azimuth_deg is None else azimuth_deg
            el = 90.0 if elevation_deg is None else elevation_deg
            if not -90 <= el <= 90:
                raise InvalidInputError(f"Invalid cone elevation: {el}. Must be between -90 and 90.")
            axis = local_direction(observer.latitude, observer.longitude, az % 360.0, el)
        return cls(apex=observer.position_ecef, axis=axis, half_angle_deg=half_angle_deg)

    @classmethod
    def from_full_aperture(
        cls,
        observer: GeoLocation,
        aperture_deg: float = DEFAULT_APERTURE_ANGLE_DEG,
        azimuth_deg: Optional[float] = None,
        elevation_deg: Optional[float] = None,
    ) -> "ApertureCone":
        """Build a cone from a full aperture angle (the user-facing setting)."""
        return cls.pointing(observer, azimuth_deg, elevation_deg, half_angle_deg=aperture_deg / 2.0)

    @property
    def aperture_deg(self) -> float:
        """Full opening angle of the cone."""
        return self.half_angle_deg * 2.0

    def contains(
        self, point: np.ndarray, strategy: ContainmentStrategy = ContainmentStrategy.EXACT
    ) -> bool:
        return point_in_cone(point, self, strategy)

    def radius_at(self, distance_km: float) -> float:
        """Cone radius at an axial distance from the apex."""
        return distance_km * self._tan_half

    def widened(self, delta_deg: float) -> "ApertureCone":
        """Return a copy with the half-angle changed by ``delta_deg`` (capped at 90°)."""
        return ApertureCone(
            apex=self.apex.copy(),
            axis=self.axis.copy(),
            half_angle_deg=min(90.0, self.half_angle_deg + delta_deg),
        )

    def display_geometry(self, height_km: float) -> ConeDisplay:
        """
        Finite cone for external renderers.

        Args:
            height_km: Axial length of the drawn cone

        Returns:
            ConeDisplay with apex, axis, height, base radius and base centre

        Raises:
            InvalidInputError: If height is not positive or the cone is a
                half-space (90° half-angle has no finite base)
        """
        if height_km <= 0:
            raise InvalidInputError(f"height_km must be positive, got {height_km}")
        if self.half_angle_deg >= 90:
            raise InvalidInputError("A 90° half-angle cone has no finite base to display")
        return ConeDisplay(
            apex=self.apex.copy(),
            axis=self.axis.copy(),
            height_km=height_km,
            base_radius_km=self.radius_at(height_km),
            base_center=self.apex + self.axis * height_km,
        )

    def __repr__(self) -> str:
        return (
            f"ApertureCone(apex={np.round(self.apex, 3).tolist()}, "
            f"axis={np.round(self.axis, 4).tolist()}, half_angle_deg={self.half_angle_deg})"
        )

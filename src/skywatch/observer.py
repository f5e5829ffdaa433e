"""
Observer location model.

A GeoLocation is the point on Earth's surface passes are predicted for.
It is created from user input or a device sensor and never mutated.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import numpy as np

from .errors import InvalidInputError
from .geometry import EARTH_RADIUS_KM, to_cartesian, surface_normal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    """
    Geographic position of an observer.

    Attributes:
        latitude: degrees, -90 to +90
        longitude: degrees, -180 to +180
        accuracy: horizontal accuracy of the fix in metres, if known
        altitude_m: height above the reference sphere in metres
        name: optional label used in logs and output
    """

    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    altitude_m: float = 0.0
    name: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate coordinates after initialization."""
        self._validate_coordinates()
        self._validate_accuracy()

    def _validate_coordinates(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise InvalidInputError(
                f"Invalid latitude: {self.latitude}. Must be between -90 and 90 degrees."
            )
        if not -180 <= self.longitude <= 180:
            raise InvalidInputError(
                f"Invalid longitude: {self.longitude}. Must be between -180 and 180 degrees."
            )

    def _validate_accuracy(self) -> None:
        if self.accuracy is not None and self.accuracy < 0:
            raise InvalidInputError(f"Invalid accuracy: {self.accuracy}. Must be >= 0 metres.")

    @property
    def radius_km(self) -> float:
        """Distance from Earth's centre to the observer."""
        return EARTH_RADIUS_KM + self.altitude_m / 1000.0

    @property
    def position_ecef(self) -> np.ndarray:
        """Earth-fixed Cartesian position (km)."""
        return to_cartesian(self.latitude, self.longitude, self.radius_km)

    @property
    def up(self) -> np.ndarray:
        """Local zenith unit vector."""
        return surface_normal(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude_m": self.altitude_m,
        }
        if self.accuracy is not None:
            result["accuracy"] = self.accuracy
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeoLocation":
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=data.get("accuracy"),
            altitude_m=float(data.get("altitude_m", 0.0)),
            name=data.get("name"),
        )

    def __str__(self) -> str:
        label = f"{self.name} " if self.name else ""
        return f"{label}({self.latitude:.4f}°, {self.longitude:.4f}°)"

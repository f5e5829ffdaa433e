"""
Observer-relative visibility of a tracked object.

This module turns an object's inertial position into elevation and azimuth
as seen by an observer, and decides whether the object counts as visible:
above an elevation mask and, optionally, inside an aperture cone.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .aperture import ApertureCone
from .errors import InvalidInputError, PropagationError
from .geometry import ContainmentStrategy, eci_to_ecef, look_angles
from .observer import GeoLocation
from .orbit import OrbitPredictorProvider, PositionProvider, TrackedObject

logger = logging.getLogger(__name__)

# Elevation mask used when the caller does not supply one
DEFAULT_MIN_ELEVATION_DEG = 0.0


@dataclass(frozen=True)
class VisibilitySample:
    """Visibility of one object from one observer at one instant."""

    time: datetime
    elevation_deg: float
    azimuth_deg: float  # [0, 360), 0 = North
    visible: bool
    range_km: Optional[float] = None
    in_aperture: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "time": self.time.isoformat(),
            "elevation_deg": round(self.elevation_deg, 2),
            "azimuth_deg": round(self.azimuth_deg, 2),
            "visible": self.visible,
        }
        if self.range_km is not None:
            result["range_km"] = round(self.range_km, 2)
        if self.in_aperture is not None:
            result["in_aperture"] = self.in_aperture
        return result


def not_visible_sample(time: datetime) -> VisibilitySample:
    """Placeholder sample reported when no position is available."""
    return VisibilitySample(time=time, elevation_deg=0.0, azimuth_deg=0.0, visible=False)


class VisibilityEvaluator:
    """
    Evaluates elevation/azimuth visibility for an observer.

    The evaluator is cheap to build and holds no time state; callers pass the
    instant explicitly with every call.
    """

    def __init__(
        self,
        min_elevation_deg: float = DEFAULT_MIN_ELEVATION_DEG,
        aperture: Optional[ApertureCone] = None,
        strategy: ContainmentStrategy = ContainmentStrategy.EXACT,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            min_elevation_deg: Object must be strictly above this elevation
            aperture: Optional directional cone gating visibility
            strategy: Cone containment strategy (EXACT for predictions)

        Raises:
            InvalidInputError: If the elevation mask is outside [-90, 90]
        """
        if not -90 <= min_elevation_deg <= 90:
            raise InvalidInputError(
                f"Invalid minimum elevation: {min_elevation_deg}. Must be between -90 and 90 degrees."
            )
        self.min_elevation_deg = min_elevation_deg
        self.aperture = aperture
        self.strategy = strategy
        self._observer_ecef_cache: Dict[Tuple[float, float, float], np.ndarray] = {}

    def _observer_ecef(self, observer: GeoLocation) -> np.ndarray:
        key = (observer.latitude, observer.longitude, observer.altitude_m)
        if key not in self._observer_ecef_cache:
            self._observer_ecef_cache[key] = observer.position_ecef
        return self._observer_ecef_cache[key]

    def evaluate(
        self, position_eci: np.ndarray, observer: GeoLocation, time: datetime
    ) -> VisibilitySample:
        """
        Evaluate visibility of an inertial position.

        Args:
            position_eci: Object position in the Earth-centred inertial frame (km)
            observer: Observer location
            time: UTC instant the position belongs to

        Returns:
            VisibilitySample for this instant
        """
        position_ecef = eci_to_ecef(position_eci, time)
        elevation, azimuth, range_km = look_angles(
            self._observer_ecef(observer), observer.latitude, observer.longitude, position_ecef
        )

        visible = elevation > self.min_elevation_deg
        in_aperture: Optional[bool] = None
        if self.aperture is not None:
            in_aperture = self.aperture.contains(position_ecef, self.strategy)
            visible = visible and in_aperture

        return VisibilitySample(
            time=time,
            elevation_deg=elevation,
            azimuth_deg=azimuth,
            visible=visible,
            range_km=range_km,
            in_aperture=in_aperture,
        )

    def sample(
        self,
        obj: TrackedObject,
        observer: GeoLocation,
        time: datetime,
        provider: PositionProvider,
    ) -> VisibilitySample:
        """
        Propagate an object and evaluate it.

        Raises:
            PropagationError: If the provider cannot produce a position
        """
        try:
            state = provider.propagate(obj.elements, time)
        except PropagationError as e:
            if not e.object_id:
                e.object_id = obj.id
            raise
        except Exception as e:
            raise PropagationError(
                f"Position provider failed for {obj.name} at {time}: {e}", object_id=obj.id
            ) from e

        position = np.asarray(getattr(state, "position", None), dtype=float)
        if position.shape != (3,) or not np.all(np.isfinite(position)):
            raise PropagationError(
                f"Position provider returned no solution for {obj.name} at {time}",
                object_id=obj.id,
            )
        return self.evaluate(position, observer, time)

    def sample_or_default(
        self,
        obj: TrackedObject,
        observer: GeoLocation,
        time: datetime,
        provider: PositionProvider,
    ) -> VisibilitySample:
        """Like :meth:`sample`, but reports 'not visible' instead of raising."""
        try:
            return self.sample(obj, observer, time, provider)
        except PropagationError as e:
            logger.warning(f"No position for {obj.name} at {time}: {e}")
            return not_visible_sample(time)


def evaluate_visibility(
    obj: TrackedObject,
    observer: GeoLocation,
    time: datetime,
    aperture: Optional[ApertureCone] = None,
    provider: Optional[PositionProvider] = None,
    min_elevation_deg: float = DEFAULT_MIN_ELEVATION_DEG,
    strategy: ContainmentStrategy = ContainmentStrategy.EXACT,
) -> VisibilitySample:
    """
    Current visibility of an object from an observer.

    Propagation failures never raise here: they are logged and reported as a
    not-visible sample at elevation 0°.

    Args:
        obj: Object to evaluate
        observer: Observer location
        time: UTC instant
        aperture: Optional directional cone
        provider: Position provider (defaults to orbit-predictor)
        min_elevation_deg: Elevation mask
        strategy: Cone containment strategy

    Returns:
        VisibilitySample
    """
    evaluator = VisibilityEvaluator(min_elevation_deg, aperture, strategy)
    return evaluator.sample_or_default(obj, observer, time, provider or OrbitPredictorProvider())


def is_visible(
    obj: TrackedObject,
    observer: GeoLocation,
    time: datetime,
    aperture: Optional[ApertureCone] = None,
    provider: Optional[PositionProvider] = None,
    min_elevation_deg: float = DEFAULT_MIN_ELEVATION_DEG,
) -> bool:
    """Check if an object is visible from an observer at a specific time."""
    return evaluate_visibility(
        obj, observer, time, aperture=aperture, provider=provider,
        min_elevation_deg=min_elevation_deg,
    ).visible

"""
Tracked objects, orbital element sets and the position provider seam.

Propagation is an external concern: the engine only talks to a
``PositionProvider``. ``OrbitPredictorProvider`` adapts the orbit-predictor
library (SGP4 under the hood) to that contract.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple
import logging
import math

import numpy as np
from orbit_predictor.sources import get_predictor_from_tle_lines  # type: ignore[import-untyped]

from .errors import PropagationError
from .geometry import ecef_to_eci
from .utils import to_naive_utc

logger = logging.getLogger(__name__)

# Two-digit years below this pivot belong to the 21st century
YEAR_PIVOT = 57

MINUTES_PER_DAY = 1440.0


def expand_two_digit_year(two_digit_year: int) -> int:
    """
    Expand a two-digit catalog year to four digits.

    Heuristic: years < 57 map to 20xx, all others to 19xx. 1957 is the first
    year of the satellite catalog, so this is correct for every epoch up to
    2056 and for every launch designator issued so far, but it is a
    convention, not a guaranteed-correct date.
    """
    if not 0 <= two_digit_year <= 99:
        raise ValueError(f"Two-digit year out of range: {two_digit_year}")
    return 2000 + two_digit_year if two_digit_year < YEAR_PIVOT else 1900 + two_digit_year


def _tle_checksum(line: str) -> int:
    total = 0
    for char in line[:68]:
        if char.isdigit():
            total += int(char)
        elif char == "-":
            total += 1
    return total % 10


class ObjectCategory(Enum):
    """Broad mission category of a tracked object."""

    STATION = "ISS"
    WEATHER = "WEATHER"
    COMMUNICATION = "COMMUNICATION"
    NAVIGATION = "NAVIGATION"
    SCIENCE = "SCIENCE"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ObjectCategory"]:
        """Map a feed's type label to a category; unknown labels become OTHER."""
        if value is None or value == "":
            return None
        label = str(value).strip().upper()
        for category in cls:
            if label in (category.value, category.name):
                return category
        return cls.OTHER


@dataclass(frozen=True)
class OrbitalElementSet:
    """
    Two-line element set.

    The record is opaque to the engine; parsed fields are exposed for
    display and catalog filtering. Accessing a field of a malformed record
    raises ValueError, and propagating it fails for every query.
    """

    line1: str
    line2: str

    @classmethod
    def from_lines(cls, *lines: str) -> "OrbitalElementSet":
        """Build from [name, line1, line2] or [line1, line2]."""
        cleaned = [line.rstrip() for line in lines if line and line.strip()]
        if len(cleaned) == 3:
            cleaned = cleaned[1:]
        if len(cleaned) != 2:
            raise ValueError(f"Expected 2 or 3 TLE lines, got {len(cleaned)}")
        return cls(cleaned[0], cleaned[1])

    def _field(self, line: str, start: int, end: int, label: str) -> str:
        text = line[start:end]
        if len(line) < end or not text.strip():
            raise ValueError(f"TLE field '{label}' missing in line: {line!r}")
        return text

    @property
    def lines(self) -> Tuple[str, str]:
        return (self.line1, self.line2)

    @property
    def catalog_number(self) -> str:
        return self._field(self.line1, 2, 7, "catalog number").strip()

    @property
    def international_designator(self) -> str:
        return self._field(self.line1, 9, 17, "international designator").strip()

    @property
    def launch_year(self) -> int:
        """Launch year from the international designator (year-pivot heuristic)."""
        return expand_two_digit_year(int(self._field(self.line1, 9, 11, "launch year")))

    @property
    def epoch(self) -> datetime:
        """Element epoch as a naive UTC datetime (year-pivot heuristic)."""
        year = expand_two_digit_year(int(self._field(self.line1, 18, 20, "epoch year")))
        day_of_year = float(self._field(self.line1, 20, 32, "epoch day"))
        return datetime(year, 1, 1) + timedelta(days=day_of_year - 1.0)

    @property
    def inclination_deg(self) -> float:
        return float(self._field(self.line2, 8, 16, "inclination"))

    @property
    def eccentricity(self) -> float:
        return float("0." + self._field(self.line2, 26, 33, "eccentricity").strip())

    @property
    def mean_motion(self) -> float:
        """Revolutions per day."""
        return float(self._field(self.line2, 52, 63, "mean motion"))

    @property
    def period_minutes(self) -> Optional[float]:
        """Orbital period from mean motion, or None when mean motion is zero."""
        mean_motion = self.mean_motion
        if mean_motion <= 0:
            return None
        return MINUTES_PER_DAY / mean_motion

    @property
    def checksum_valid(self) -> bool:
        for line in self.lines:
            if len(line) < 69 or not line[68].isdigit():
                return False
            if _tle_checksum(line) != int(line[68]):
                return False
        return True


@dataclass(frozen=True)
class TrackedObject:
    """An orbiting object the engine predicts passes for."""

    id: str
    name: str
    elements: OrbitalElementSet
    category: Optional[ObjectCategory] = None
    launch_date: Optional[date] = None

    @classmethod
    def from_tle(
        cls,
        name: str,
        line1: str,
        line2: str,
        category: Optional[ObjectCategory] = None,
        object_id: Optional[str] = None,
    ) -> "TrackedObject":
        elements = OrbitalElementSet.from_lines(line1, line2)
        if object_id is None:
            try:
                object_id = elements.catalog_number
            except ValueError:
                object_id = name
        return cls(id=object_id, name=name, elements=elements, category=category)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "tle": [self.name, self.elements.line1, self.elements.line2],
        }
        if self.category is not None:
            result["type"] = self.category.value
        if self.launch_date is not None:
            result["launchDate"] = self.launch_date.isoformat()
        return result

    def __str__(self) -> str:
        return f"{self.name} [{self.id}]"


@dataclass(frozen=True, eq=False)
class PropagatedState:
    """Earth-centred inertial position (km) and optional velocity (km/s)."""

    position: np.ndarray
    velocity: Optional[np.ndarray] = None


class PositionProvider(Protocol):
    """Source of orbital truth for the engine."""

    def propagate(self, elements: OrbitalElementSet, when: datetime) -> PropagatedState:
        """
        Propagate an element set to a UTC instant.

        Raises:
            PropagationError: If no state can be produced for this time
        """
        ...


class OrbitPredictorProvider:
    """
    Position provider backed by the orbit-predictor library.

    orbit-predictor returns Earth-fixed states; they are rotated back to the
    inertial frame with the package's sidereal time so every provider hands
    the evaluator the same frame. Predictors are cached per element set.
    """

    def __init__(self) -> None:
        self._predictors: Dict[Tuple[str, str], Any] = {}

    def _get_predictor(self, elements: OrbitalElementSet) -> Any:
        key = elements.lines
        predictor = self._predictors.get(key)
        if predictor is None:
            try:
                predictor = get_predictor_from_tle_lines(list(key))
            except Exception as e:
                raise PropagationError(f"Invalid orbital elements: {e}") from e
            self._predictors[key] = predictor
        return predictor

    def propagate(self, elements: OrbitalElementSet, when: datetime) -> PropagatedState:
        predictor = self._get_predictor(elements)
        when_utc = to_naive_utc(when)
        try:
            state = predictor.get_position(when_utc)
        except Exception as e:
            raise PropagationError(f"Propagation failed at {when_utc}: {e}") from e

        position_ecef = np.asarray(state.position_ecef, dtype=float)
        velocity_ecef = np.asarray(state.velocity_ecef, dtype=float)
        if not (np.all(np.isfinite(position_ecef)) and np.all(np.isfinite(velocity_ecef))):
            raise PropagationError(f"Propagation diverged at {when_utc}")

        # orbit-predictor rotates the inertial velocity without the Earth-rate
        # term, so the plain inverse rotation recovers it
        return PropagatedState(
            position=ecef_to_eci(position_ecef, when_utc),
            velocity=ecef_to_eci(velocity_ecef, when_utc),
        )

    def orbital_period(self, elements: OrbitalElementSet) -> timedelta:
        """
        Orbital period of an element set.

        Falls back to the mean-motion derived value, then to 90 minutes.
        """
        try:
            return timedelta(minutes=self._get_predictor(elements).period)
        except Exception as e:
            logger.debug(f"Predictor period unavailable, using mean motion: {e}")
        try:
            period = elements.period_minutes
        except ValueError:
            period = None
        return timedelta(minutes=period if period else 90.0)

    def __getstate__(self) -> Dict[str, Any]:
        # Predictors are rebuilt on demand in worker processes
        return {"_predictors": {}}

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self._predictors = {}

    def __repr__(self) -> str:
        return f"OrbitPredictorProvider(cached={len(self._predictors)})"


def speed_km_s(state: PropagatedState) -> Optional[float]:
    """Magnitude of the inertial velocity, if the provider supplied one."""
    if state.velocity is None:
        return None
    return float(math.sqrt(float(np.dot(state.velocity, state.velocity))))

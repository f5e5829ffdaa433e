"""
Object catalog loading and per-object derived information.

Catalogs come from plain TLE files (3-line or bare 2-line records) or from
JSON feeds of ``{id, name, type, launchDate, tle}`` records.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import json
import logging
import math

import numpy as np

from .errors import PropagationError
from .geometry import EARTH_RADIUS_KM, eci_to_ecef, from_cartesian
from .orbit import (
    ObjectCategory,
    OrbitalElementSet,
    OrbitPredictorProvider,
    PositionProvider,
    TrackedObject,
    speed_km_s,
)

logger = logging.getLogger(__name__)

GROUND_TRACK_POINTS = 90

# (name, line1, line2, category, launch date)
SAMPLE_CATALOG: List[Tuple[str, str, str, ObjectCategory, date]] = [
    (
        "ISS (ZARYA)",
        "1 25544U 98067A   23146.29527412  .00016085  00000+0  29669-3 0  9993",
        "2 25544  51.6423 174.8198 0005748  68.1933 299.4958 15.50442296 47182",
        ObjectCategory.STATION,
        date(1998, 11, 20),
    ),
    (
        "NOAA 19",
        "1 33591U 09005A   23146.14023029  .00000191  00000+0  12455-3 0  9993",
        "2 33591  99.1804 204.7988 0013685 199.5357 160.5206 14.12608929731384",
        ObjectCategory.WEATHER,
        date(2009, 2, 6),
    ),
    (
        "STARLINK-4373",
        "1 48859U 21081BV  23146.24226273  .00012872  00000+0  76124-3 0  9992",
        "2 48859  53.2161 213.9331 0001728  92.0367 268.0841 15.43598811 85459",
        ObjectCategory.COMMUNICATION,
        date(2021, 11, 13),
    ),
    (
        "GPS SVN78",
        "1 44876U 19081A   23145.88120177 -.00000047  00000+0  00000+0 0  9993",
        "2 44876  55.0470  38.1741 0009868 312.9436  47.0202  2.00562671 27394",
        ObjectCategory.NAVIGATION,
        date(2019, 8, 22),
    ),
    (
        "TESS",
        "1 43013U 18038A   23145.01245277  .00000000  00000+0  00000+0 0  9999",
        "2 43013  37.0316 146.8932 9522062 200.2217 116.3770  0.24763872  3968",
        ObjectCategory.SCIENCE,
        date(2018, 4, 18),
    ),
]


def sample_objects() -> List[TrackedObject]:
    """The built-in sample catalog as tracked objects."""
    objects = []
    for name, line1, line2, category, launched in SAMPLE_CATALOG:
        obj = TrackedObject.from_tle(name, line1, line2, category=category)
        objects.append(
            TrackedObject(
                id=obj.id, name=name, elements=obj.elements,
                category=category, launch_date=launched,
            )
        )
    return objects


def create_sample_tle_file(output_file: Union[str, Path]) -> Path:
    """
    Create a sample TLE file with the built-in catalog.

    Args:
        output_file: Path to create sample TLE file

    Returns:
        Path of the written file
    """
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w") as f:
        for name, line1, line2, _, _ in SAMPLE_CATALOG:
            f.write(f"{name}\n{line1}\n{line2}\n")

    logger.info(f"Created sample TLE file: {output_path}")
    return output_path


def _is_element_line(line: str, number: str) -> bool:
    return line.startswith(number + " ") and len(line) >= 63


def parse_tle_text(text: str) -> List[TrackedObject]:
    """
    Parse TLE text into tracked objects.

    Records may carry a name line or be bare line pairs; unnamed records are
    named after their catalog number. Malformed records are skipped.
    """
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]
    objects: List[TrackedObject] = []

    i = 0
    while i < len(lines):
        line = lines[i]
        if _is_element_line(line, "1") and i + 1 < len(lines) and _is_element_line(lines[i + 1], "2"):
            name, line1, line2 = None, line, lines[i + 1]
            i += 2
        elif (
            i + 2 < len(lines)
            and _is_element_line(lines[i + 1], "1")
            and _is_element_line(lines[i + 2], "2")
        ):
            name, line1, line2 = line.strip(), lines[i + 1], lines[i + 2]
            i += 3
        else:
            logger.warning(f"Skipping malformed TLE line {i + 1}: {line!r}")
            i += 1
            continue

        try:
            catalog_number = OrbitalElementSet(line1, line2).catalog_number
        except ValueError as e:
            logger.warning(f"Skipping TLE record with bad catalog number: {e}")
            continue
        objects.append(TrackedObject.from_tle(name or catalog_number, line1, line2))

    return objects


def load_tle_file(tle_file_path: Union[str, Path]) -> List[TrackedObject]:
    """
    Load every object from a TLE file.

    Raises:
        FileNotFoundError: If TLE file doesn't exist
    """
    tle_path = Path(tle_file_path)
    if not tle_path.exists():
        raise FileNotFoundError(f"TLE file not found: {tle_file_path}")

    with open(tle_path, "r") as f:
        objects = parse_tle_text(f.read())

    logger.info(f"Loaded {len(objects)} objects from {tle_path}")
    return objects


def _parse_launch_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Ignoring unparseable launch date: {value!r}")
        return None


def object_from_record(record: Dict[str, Any]) -> TrackedObject:
    """
    Build an object from a feed record.

    Raises:
        ValueError: If the record has no usable element lines
    """
    tle = record.get("tle") or []
    elements = OrbitalElementSet.from_lines(*tle)
    name = record.get("name") or (tle[0].strip() if len(tle) == 3 else None)
    object_id = record.get("id")
    if object_id is None:
        object_id = elements.catalog_number
    return TrackedObject(
        id=str(object_id),
        name=name or str(object_id),
        elements=elements,
        category=ObjectCategory.parse(record.get("type")),
        launch_date=_parse_launch_date(record.get("launchDate")),
    )


def load_catalog_json(json_path: Union[str, Path]) -> List[TrackedObject]:
    """
    Load objects from a JSON feed (a list, or a mapping with ``satellites``).

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the document has the wrong shape
    """
    path = Path(json_path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {json_path}")

    with open(path, "r") as f:
        data = json.load(f)

    records = data.get("satellites", []) if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise ValueError(f"Catalog must be a list of records: {json_path}")

    objects = []
    for record in records:
        try:
            objects.append(object_from_record(record))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping catalog record {record!r}: {e}")

    logger.info(f"Loaded {len(objects)} objects from {path}")
    return objects


def filter_by_category(
    objects: Sequence[TrackedObject], category: Optional[Union[str, ObjectCategory]]
) -> List[TrackedObject]:
    """Keep objects of one category; None or 'ALL' keeps everything."""
    if category is None or (isinstance(category, str) and category.strip().upper() == "ALL"):
        return list(objects)
    wanted = category if isinstance(category, ObjectCategory) else ObjectCategory.parse(category)
    return [obj for obj in objects if obj.category is wanted]


def find_object(objects: Sequence[TrackedObject], query: str) -> Optional[TrackedObject]:
    """
    Find an object by id or name.

    An exact id or name match (case-insensitive) wins over a substring match.
    """
    needle = query.strip().upper()
    for obj in objects:
        if obj.id.upper() == needle or obj.name.upper() == needle:
            return obj
    for obj in objects:
        if needle in obj.name.upper():
            return obj
    return None


@dataclass(frozen=True)
class ObjectInfo:
    """Derived state of an object at an instant."""

    time: datetime
    latitude: float
    longitude: float
    altitude_km: float
    speed_km_s: Optional[float]
    period_minutes: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.isoformat(),
            "latitude": round(self.latitude, 4),
            "longitude": round(self.longitude, 4),
            "altitude_km": round(self.altitude_km, 2),
            "speed_km_s": round(self.speed_km_s, 3) if self.speed_km_s is not None else None,
            "period_minutes": round(self.period_minutes, 2),
        }


def _period_minutes(obj: TrackedObject, provider: PositionProvider) -> float:
    if isinstance(provider, OrbitPredictorProvider):
        return provider.orbital_period(obj.elements).total_seconds() / 60.0
    try:
        period = obj.elements.period_minutes
    except ValueError:
        period = None
    return period if period else 90.0


def describe_object(
    obj: TrackedObject,
    when: datetime,
    provider: Optional[PositionProvider] = None,
) -> ObjectInfo:
    """
    Sub-point, altitude, speed and period of an object.

    Raises:
        PropagationError: If no position is available at ``when``
    """
    provider = provider or OrbitPredictorProvider()
    state = provider.propagate(obj.elements, when)
    position = np.asarray(state.position, dtype=float)
    if position.shape != (3,) or not np.all(np.isfinite(position)):
        raise PropagationError(f"No position for {obj.name} at {when}", object_id=obj.id)

    latitude, longitude, radius = from_cartesian(eci_to_ecef(position, when))
    return ObjectInfo(
        time=when,
        latitude=latitude,
        longitude=longitude,
        altitude_km=radius - EARTH_RADIUS_KM,
        speed_km_s=speed_km_s(state),
        period_minutes=_period_minutes(obj, provider),
    )


def ground_track(
    obj: TrackedObject,
    start_time: datetime,
    provider: Optional[PositionProvider] = None,
    points: int = GROUND_TRACK_POINTS,
) -> List[Tuple[datetime, float, float, float]]:
    """
    Sub-satellite points across one orbital period.

    Args:
        obj: Object to track
        start_time: First point (UTC)
        provider: Position provider
        points: Number of evenly spaced points

    Returns:
        List of tuples: (timestamp, latitude, longitude, altitude_km)
    """
    if points < 2:
        raise ValueError(f"points must be >= 2, got {points}")
    provider = provider or OrbitPredictorProvider()
    step = timedelta(minutes=_period_minutes(obj, provider) / (points - 1))

    track = []
    for i in range(points):
        when = start_time + step * i
        try:
            state = provider.propagate(obj.elements, when)
            lat, lon, radius = from_cartesian(eci_to_ecef(np.asarray(state.position, dtype=float), when))
        except (PropagationError, ValueError) as e:
            logger.warning(f"Skipping ground track point at {when}: {e}")
            continue
        if not math.isfinite(radius):
            continue
        track.append((when, lat, lon, radius - EARTH_RADIUS_KM))

    logger.info(f"Generated ground track with {len(track)} points")
    return track

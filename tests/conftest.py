"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Custom markers for test categorization
- Deterministic fake position providers for scanner scenarios
- Shared fixtures for common test setup
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple

import numpy as np
import pytest
from _pytest.config import Config
from _pytest.python import Function

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from skywatch.config import ScanSettings  # noqa: E402
from skywatch.errors import PropagationError  # noqa: E402
from skywatch.geometry import ecef_to_eci, local_direction, to_cartesian  # noqa: E402
from skywatch.observer import GeoLocation  # noqa: E402
from skywatch.orbit import OrbitalElementSet, PropagatedState, TrackedObject  # noqa: E402


# =============================================================================
# COLLECTION HOOKS
# =============================================================================


def pytest_collection_modifyitems(config: Config, items: List[Function]) -> None:
    """Auto-mark integration tests."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks integration tests")


# =============================================================================
# FAKE POSITION PROVIDERS
# =============================================================================

# (azimuth_deg, elevation_deg) as a function of minutes since the window start
Profile = Callable[[float], Tuple[float, float]]


class ProfileProvider:
    """
    Places the object along a scripted look direction from one observer.

    The object sits ``range_km`` away from the observer along the profile's
    azimuth/elevation, so the evaluator reproduces the scripted angles.
    """

    def __init__(
        self,
        observer: GeoLocation,
        start: datetime,
        profile: Profile,
        range_km: float = 1000.0,
    ) -> None:
        self.observer = observer
        self.start = start
        self.profile = profile
        self.range_km = range_km
        self.calls: List[datetime] = []

    def propagate(self, elements: OrbitalElementSet, when: datetime) -> PropagatedState:
        self.calls.append(when)
        minutes = (when - self.start).total_seconds() / 60.0
        azimuth, elevation = self.profile(minutes)
        direction = local_direction(
            self.observer.latitude, self.observer.longitude, azimuth, elevation
        )
        ecef = self.observer.position_ecef + direction * self.range_km
        return PropagatedState(position=ecef_to_eci(ecef, when))


def scripted_windows(
    windows: List[Tuple[float, float]],
    peak: float = 60.0,
    azimuths: Tuple[float, float] = (10.0, 170.0),
) -> Profile:
    """
    Profile visible inside each (start, end) minute window, -10° elsewhere.

    Elevation is triangular: 5° at the window edges, ``peak`` in the middle.
    Azimuth sweeps linearly across each window.
    """

    def profile(minutes: float) -> Tuple[float, float]:
        for start, end in windows:
            if start <= minutes <= end:
                mid = (start + end) / 2.0
                half = max((end - start) / 2.0, 1e-9)
                elevation = 5.0 + (peak - 5.0) * (1.0 - abs(minutes - mid) / half)
                fraction = (minutes - start) / max(end - start, 1e-9)
                azimuth = azimuths[0] + (azimuths[1] - azimuths[0]) * fraction
                return azimuth, elevation
        return 0.0, -10.0

    return profile


class FixedPointProvider:
    """Object pinned above one Earth-fixed point for the whole window."""

    def __init__(self, latitude: float, longitude: float, altitude_km: float = 400.0) -> None:
        self.ecef = to_cartesian(latitude, longitude, 6371.0 + altitude_km)

    def propagate(self, elements: OrbitalElementSet, when: datetime) -> PropagatedState:
        return PropagatedState(position=ecef_to_eci(self.ecef, when), velocity=np.zeros(3))


class FailingProvider:
    """Provider that cannot propagate anything."""

    def __init__(self, message: str = "decayed elements") -> None:
        self.message = message

    def propagate(self, elements: OrbitalElementSet, when: datetime) -> PropagatedState:
        raise PropagationError(self.message)


class RoutingProvider:
    """Dispatches to a per-object provider keyed by catalog line 1."""

    def __init__(self, routes: dict, default: Optional[Any] = None) -> None:
        self.routes = routes
        self.default = default

    def propagate(self, elements: OrbitalElementSet, when: datetime) -> PropagatedState:
        provider = self.routes.get(elements.line1, self.default)
        if provider is None:
            raise PropagationError("no route")
        return provider.propagate(elements, when)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_root_logger() -> Iterator[None]:
    """Undo setup_logging: drop the console/file handlers it installs."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


ISS_LINES = (
    "1 25544U 98067A   23146.29527412  .00016085  00000+0  29669-3 0  9993",
    "2 25544  51.6423 174.8198 0005748  68.1933 299.4958 15.50442296 47182",
)


@pytest.fixture
def iss_lines() -> Tuple[str, str]:
    """ISS element set from the sample catalog."""
    return ISS_LINES


@pytest.fixture
def iss(iss_lines: Tuple[str, str]) -> TrackedObject:
    return TrackedObject.from_tle("ISS (ZARYA)", *iss_lines)


def make_object(object_id: str, name: Optional[str] = None) -> TrackedObject:
    """Object with a unique, well-formed but synthetic element set."""
    number = object_id.rjust(5, "0")[-5:]
    line1 = f"1 {number}U 20001A   23146.00000000  .00000000  00000+0  00000+0 0  9990"
    line2 = f"2 {number}  51.6000 100.0000 0001000  90.0000 270.0000 15.50000000    10"
    return TrackedObject.from_tle(name or f"OBJ-{object_id}", line1, line2, object_id=object_id)


@pytest.fixture
def object_factory() -> Callable[..., TrackedObject]:
    return make_object


@pytest.fixture
def equator_observer() -> GeoLocation:
    return GeoLocation(latitude=0.0, longitude=0.0)


@pytest.fixture
def london() -> GeoLocation:
    return GeoLocation(latitude=51.5074, longitude=-0.1278, name="London")


@pytest.fixture
def base_datetime() -> datetime:
    """Standard base datetime for tests."""
    return datetime(2023, 5, 26, 0, 0, 0)


@pytest.fixture
def serial_settings() -> ScanSettings:
    """Single-step, in-process scan with the 0° mask used by most scenarios."""
    return ScanSettings(min_elevation_deg=0.0, backend="serial")


@pytest.fixture
def profile_provider() -> Callable[..., ProfileProvider]:
    return ProfileProvider


@pytest.fixture
def window_profile() -> Callable[..., Profile]:
    return scripted_windows


@pytest.fixture
def fixed_point_provider() -> Callable[..., FixedPointProvider]:
    return FixedPointProvider


@pytest.fixture
def failing_provider() -> FailingProvider:
    return FailingProvider()


@pytest.fixture
def routing_provider() -> Callable[..., RoutingProvider]:
    return RoutingProvider


@pytest.fixture
def sample_tle_file(tmp_path: Path) -> Path:
    """TLE file holding the built-in sample catalog."""
    from skywatch.catalog import create_sample_tle_file

    return create_sample_tle_file(tmp_path / "sample.tle")

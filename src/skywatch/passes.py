"""
Pass prediction.

A pass is a continuous interval during which an object is visible from an
observer. Passes are found by stepping through a time window at a fixed
resolution and running a two-state machine over the visibility samples:

    OUTSIDE --(sample visible)--> INSIDE_TRACKING
    INSIDE_TRACKING --(sample not visible)--> OUTSIDE   (pass finalized)

A pass still open when the window ends is closed at the window boundary.
Passes lasting no longer than the minimum duration are discarded.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .aperture import ApertureCone
from .config import ScanSettings
from .errors import InvalidInputError
from .observer import GeoLocation
from .orbit import OrbitPredictorProvider, PositionProvider, TrackedObject
from .parallel import CancellationToken, ParallelPassScanner, ScanResult
from .visibility import VisibilityEvaluator, VisibilitySample

logger = logging.getLogger(__name__)

COMPASS_POINTS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]

# Hours searched ahead by next_pass when the caller does not say
DEFAULT_SEARCH_HOURS = 48


def compass_point(azimuth_deg: float) -> str:
    """
    Bucket an azimuth into one of 8 compass sectors.

    Sectors are 45° wide and centred on N, NE, E, ... NW.
    """
    index = int(math.floor(azimuth_deg / 45.0 + 0.5)) % 8
    return COMPASS_POINTS[index]


def compass_direction(start_azimuth_deg: float, end_azimuth_deg: float) -> str:
    """Describe the travel of a pass, e.g. 'N to SE'."""
    return f"{compass_point(start_azimuth_deg)} to {compass_point(end_azimuth_deg)}"


class ScanState(Enum):
    OUTSIDE = "outside"
    INSIDE_TRACKING = "inside_tracking"


@dataclass(frozen=True)
class Pass:
    """A finalized visibility interval of one object over one observer."""

    object: TrackedObject
    start_time: datetime
    end_time: datetime
    peak_time: datetime
    peak_elevation_deg: float
    duration_minutes: float
    compass_direction: str
    start_azimuth_deg: float
    end_azimuth_deg: float
    peak_azimuth_deg: float
    truncated: bool = False  # closed by the window end rather than a set

    def to_dict(self) -> Dict[str, Any]:
        """Convert pass to a JSON-friendly dictionary."""
        return {
            "object_id": self.object.id,
            "object_name": self.object.name,
            "category": self.object.category.value if self.object.category else None,
            "start_time": self.start_time.isoformat(),
            "peak_time": self.peak_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_minutes": round(self.duration_minutes, 2),
            "peak_elevation_deg": round(self.peak_elevation_deg, 2),
            "compass_direction": self.compass_direction,
            "start_azimuth_deg": round(self.start_azimuth_deg, 2),
            "peak_azimuth_deg": round(self.peak_azimuth_deg, 2),
            "end_azimuth_deg": round(self.end_azimuth_deg, 2),
            "truncated": self.truncated,
        }

    def __str__(self) -> str:
        return (
            f"Pass of {self.object.name}: "
            f"{self.start_time.strftime('%Y-%m-%d %H:%M')} - "
            f"{self.end_time.strftime('%H:%M')} UTC, "
            f"Peak: {self.peak_elevation_deg:.1f}°, {self.compass_direction}"
        )


class _OpenPass:
    """Mutable pass state while the scanner is inside a visible interval."""

    __slots__ = ("start", "peak")

    def __init__(self, first: VisibilitySample) -> None:
        self.start = first
        self.peak = first

    def track(self, sample: VisibilitySample) -> None:
        if sample.elevation_deg > self.peak.elevation_deg:
            self.peak = sample

    def finalize(
        self,
        obj: TrackedObject,
        end_time: datetime,
        end_azimuth_deg: float,
        truncated: bool,
    ) -> Pass:
        duration = (end_time - self.start.time).total_seconds() / 60.0
        return Pass(
            object=obj,
            start_time=self.start.time,
            end_time=end_time,
            peak_time=self.peak.time,
            peak_elevation_deg=self.peak.elevation_deg,
            duration_minutes=duration,
            compass_direction=compass_direction(self.start.azimuth_deg, end_azimuth_deg),
            start_azimuth_deg=self.start.azimuth_deg,
            end_azimuth_deg=end_azimuth_deg,
            peak_azimuth_deg=self.peak.azimuth_deg,
            truncated=truncated,
        )


def validate_scan_inputs(
    observer: GeoLocation, start_time: datetime, duration_hours: float
) -> None:
    """
    Reject contract violations before any scanning begins.

    Raises:
        InvalidInputError: On a bad observer, start time or duration
    """
    if not isinstance(observer, GeoLocation):
        raise InvalidInputError(f"observer must be a GeoLocation, got {type(observer).__name__}")
    if not isinstance(start_time, datetime):
        raise InvalidInputError(f"start_time must be a datetime, got {type(start_time).__name__}")
    try:
        duration = float(duration_hours)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Invalid duration: {duration_hours!r}") from e
    if not math.isfinite(duration) or duration <= 0:
        raise InvalidInputError(f"Duration must be a positive number of hours, got {duration_hours}")


class PassScanner:
    """
    Finds passes of a single object over an observer.

    Propagation errors are not absorbed here; a failing object aborts its own
    scan and the batch layer records the failure.
    """

    def __init__(
        self,
        provider: Optional[PositionProvider] = None,
        settings: Optional[ScanSettings] = None,
        aperture: Optional[ApertureCone] = None,
    ) -> None:
        self.provider = provider or OrbitPredictorProvider()
        self.settings = settings or ScanSettings()
        self.evaluator = VisibilityEvaluator(
            min_elevation_deg=self.settings.min_elevation_deg,
            aperture=aperture,
            strategy=self.settings.strategy,
        )

    def sample_times(self, start_time: datetime, end_time: datetime) -> Iterator[datetime]:
        """Fixed-step sample instants; the window end is always included."""
        step = timedelta(minutes=self.settings.step_minutes)
        index = 0
        current = start_time
        while current < end_time:
            yield current
            index += 1
            current = start_time + step * index
        yield end_time

    def scan(
        self,
        obj: TrackedObject,
        observer: GeoLocation,
        start_time: datetime,
        duration_hours: float,
    ) -> List[Pass]:
        """
        Find all passes of ``obj`` in the window.

        Args:
            obj: Object to scan
            observer: Observer location
            start_time: Start of the window (UTC)
            duration_hours: Window length in hours

        Returns:
            Passes in chronological order

        Raises:
            InvalidInputError: On invalid inputs
            PropagationError: If the provider fails for any sample
        """
        validate_scan_inputs(observer, start_time, duration_hours)
        end_time = start_time + timedelta(hours=float(duration_hours))
        min_duration = self.settings.min_duration_minutes

        passes: List[Pass] = []
        state = ScanState.OUTSIDE
        open_pass: Optional[_OpenPass] = None
        last_sample: Optional[VisibilitySample] = None

        for time in self.sample_times(start_time, end_time):
            sample = self.evaluator.sample(obj, observer, time, self.provider)
            last_sample = sample

            if state is ScanState.INSIDE_TRACKING and open_pass is not None:
                if sample.visible:
                    open_pass.track(sample)
                else:
                    finished = open_pass.finalize(obj, sample.time, sample.azimuth_deg, truncated=False)
                    if finished.duration_minutes > min_duration:
                        passes.append(finished)
                    open_pass = None
                    state = ScanState.OUTSIDE
            elif sample.visible:
                open_pass = _OpenPass(sample)
                state = ScanState.INSIDE_TRACKING

        if state is ScanState.INSIDE_TRACKING and open_pass is not None and last_sample is not None:
            finished = open_pass.finalize(obj, end_time, last_sample.azimuth_deg, truncated=True)
            if finished.duration_minutes > min_duration:
                passes.append(finished)

        logger.debug(f"Found {len(passes)} passes for {obj.name}")
        return passes


def scan_passes(
    objects: Sequence[TrackedObject],
    observer: GeoLocation,
    start_time: datetime,
    duration_hours: float,
    min_elevation_deg: Optional[float] = None,
    *,
    settings: Optional[ScanSettings] = None,
    provider: Optional[PositionProvider] = None,
    aperture: Optional[ApertureCone] = None,
    cancel_token: Optional[CancellationToken] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> ScanResult:
    """
    Scan many objects and report passes together with per-object failures.

    Args:
        objects: Objects to scan
        observer: Observer location
        start_time: Start of the window (UTC)
        duration_hours: Window length in hours
        min_elevation_deg: Elevation mask (defaults to the settings value)
        settings: Scan settings
        provider: Position provider (defaults to orbit-predictor)
        aperture: Optional directional cone
        cancel_token: Checked before each object is scanned
        progress_callback: Optional callback(completed, total)

    Returns:
        ScanResult with passes sorted by start time

    Raises:
        InvalidInputError: On invalid inputs, before scanning starts
    """
    validate_scan_inputs(observer, start_time, duration_hours)
    settings = settings or ScanSettings()
    if min_elevation_deg is not None:
        if not -90 <= min_elevation_deg <= 90:
            raise InvalidInputError(
                f"Invalid minimum elevation: {min_elevation_deg}. Must be between -90 and 90 degrees."
            )
        settings = settings.with_overrides(min_elevation_deg=float(min_elevation_deg))

    runner = ParallelPassScanner(
        provider=provider or OrbitPredictorProvider(),
        settings=settings,
        aperture=aperture,
    )
    return runner.run(
        list(objects),
        observer,
        start_time,
        float(duration_hours),
        cancel_token=cancel_token,
        progress_callback=progress_callback,
    )


def compute_passes(
    objects: Sequence[TrackedObject],
    observer: GeoLocation,
    start_time: datetime,
    duration_hours: float,
    min_elevation_deg: Optional[float] = None,
    **kwargs: Any,
) -> List[Pass]:
    """
    Predict passes of every object over an observer.

    Objects whose propagation fails contribute no passes; see
    :func:`scan_passes` for the failure report.

    Returns:
        Passes of all objects, ordered by start time
    """
    return scan_passes(
        objects, observer, start_time, duration_hours, min_elevation_deg, **kwargs
    ).passes


def next_pass(
    obj: TrackedObject,
    observer: GeoLocation,
    start_time: datetime,
    max_search_hours: float = DEFAULT_SEARCH_HOURS,
    provider: Optional[PositionProvider] = None,
    settings: Optional[ScanSettings] = None,
) -> Optional[Pass]:
    """
    Get the next pass of an object over an observer.

    Args:
        obj: Object to search
        observer: Observer location
        start_time: Start search time (UTC)
        max_search_hours: Maximum hours to search ahead
        provider: Position provider
        settings: Scan settings

    Returns:
        The earliest pass, or None if none is found or propagation fails
    """
    result = scan_passes(
        [obj], observer, start_time, max_search_hours,
        settings=(settings or ScanSettings()).with_overrides(backend="serial"),
        provider=provider,
    )
    if result.failures:
        logger.warning(f"Next pass search for {obj.name} failed: {result.failures[0].reason}")
    return result.passes[0] if result.passes else None

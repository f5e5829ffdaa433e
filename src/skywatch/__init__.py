"""
Skywatch

Satellite visibility and pass prediction for a ground observer: where an
object is in the observer's sky, whether it sits inside a pointing cone,
and when it will next pass overhead.
"""

from .aperture import ApertureCone
from .config import ScanSettings, load_settings
from .errors import InvalidInputError, PropagationError, SkywatchError
from .geometry import ContainmentStrategy, from_cartesian, point_in_cone, to_cartesian
from .observer import GeoLocation
from .orbit import ObjectCategory, OrbitalElementSet, OrbitPredictorProvider, TrackedObject
from .parallel import CancellationToken, ScanResult
from .passes import Pass, compute_passes, next_pass, scan_passes
from .visibility import VisibilitySample, evaluate_visibility, is_visible

__version__ = "0.1.0"

__all__ = [
    "ApertureCone",
    "CancellationToken",
    "ContainmentStrategy",
    "GeoLocation",
    "InvalidInputError",
    "ObjectCategory",
    "OrbitPredictorProvider",
    "OrbitalElementSet",
    "Pass",
    "PropagationError",
    "ScanResult",
    "ScanSettings",
    "SkywatchError",
    "TrackedObject",
    "VisibilitySample",
    "compute_passes",
    "evaluate_visibility",
    "from_cartesian",
    "is_visible",
    "load_settings",
    "next_pass",
    "point_in_cone",
    "scan_passes",
    "to_cartesian",
]

"""
Scan configuration.

Settings come from three layers, later layers winning:
built-in defaults, an optional YAML file, and SKYWATCH_* environment
variables.
"""

from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging
import os

import yaml  # type: ignore[import-untyped]

from .errors import InvalidInputError
from .geometry import ContainmentStrategy

logger = logging.getLogger(__name__)

VALID_BACKENDS = ("serial", "thread", "process")

DEFAULT_CONFIG_PATHS = [
    Path("config/skywatch.yaml"),
    Path("skywatch.yaml"),
]

ENV_OVERRIDES = {
    "SKYWATCH_STEP_MINUTES": ("step_minutes", float),
    "SKYWATCH_MIN_ELEVATION": ("min_elevation_deg", float),
    "SKYWATCH_MIN_DURATION": ("min_duration_minutes", float),
    "SKYWATCH_BACKEND": ("backend", str),
    "SKYWATCH_MAX_WORKERS": ("max_workers", int),
}


@dataclass(frozen=True)
class ScanSettings:
    """
    Parameters of a pass scan.

    Attributes:
        step_minutes: Sampling resolution of the scan
        min_elevation_deg: Elevation mask for pass prediction
        min_duration_minutes: Passes must last strictly longer than this
        strategy: Aperture containment strategy
        backend: 'serial', 'thread' or 'process'
        max_workers: Worker cap (None = auto-detect)
    """

    step_minutes: float = 1.0
    min_elevation_deg: float = 10.0
    min_duration_minutes: float = 1.0
    strategy: ContainmentStrategy = ContainmentStrategy.EXACT
    backend: str = "process"
    max_workers: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.step_minutes <= 0:
            raise InvalidInputError(f"step_minutes must be > 0, got {self.step_minutes}")
        if not -90 <= self.min_elevation_deg <= 90:
            raise InvalidInputError(
                f"min_elevation_deg must be in [-90, 90], got {self.min_elevation_deg}"
            )
        if self.min_duration_minutes < 0:
            raise InvalidInputError(
                f"min_duration_minutes must be >= 0, got {self.min_duration_minutes}"
            )
        if self.backend not in VALID_BACKENDS:
            raise InvalidInputError(
                f"Invalid backend: {self.backend}. Must be one of {list(VALID_BACKENDS)}."
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidInputError(f"max_workers must be >= 1, got {self.max_workers}")
        if not isinstance(self.strategy, ContainmentStrategy):
            object.__setattr__(self, "strategy", _parse_strategy(self.strategy))

    def with_overrides(self, **changes: Any) -> "ScanSettings":
        """Copy with selected fields replaced (None values are ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["strategy"] = self.strategy.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanSettings":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = set(data) - set(known)
        if unknown:
            logger.warning(f"Ignoring unknown scan settings: {sorted(unknown)}")
        return cls(**known)


def _parse_strategy(value: Any) -> ContainmentStrategy:
    text = str(value).strip().lower()
    for strategy in ContainmentStrategy:
        if text in (strategy.value, strategy.name.lower()):
            return strategy
    raise InvalidInputError(
        f"Invalid containment strategy: {value}. "
        f"Must be one of {[s.value for s in ContainmentStrategy]}."
    )


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for var, (field_name, cast) in ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            overrides[field_name] = cast(raw)
        except ValueError as e:
            raise InvalidInputError(f"Invalid value for {var}: {raw!r}") from e
    return overrides


def load_settings(config_path: Optional[Union[str, Path]] = None) -> ScanSettings:
    """
    Load scan settings.

    Args:
        config_path: YAML file with a top-level ``scan`` mapping. When None,
            the default locations are searched.

    Returns:
        ScanSettings with environment overrides applied

    Raises:
        InvalidInputError: If a value in the file or environment is invalid
    """
    data: Dict[str, Any] = {}

    candidates = [Path(config_path)] if config_path else DEFAULT_CONFIG_PATHS
    config_file = next((p for p in candidates if p.exists()), None)

    if config_file is None:
        if config_path:
            logger.warning(f"Configuration file not found: {config_path}, using defaults")
    else:
        try:
            with open(config_file, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InvalidInputError(f"Invalid YAML in {config_file}: {e}") from e
        if not isinstance(raw, dict):
            raise InvalidInputError(f"Configuration root must be a mapping: {config_file}")
        data = dict(raw.get("scan", {}) or {})
        logger.info(f"Loaded scan configuration from {config_file}")

    data.update(_env_overrides())
    return ScanSettings.from_dict(data)

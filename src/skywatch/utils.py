"""
Utility functions for skywatch.

Logging setup, time parsing and display formatting shared by the CLI and
the library.
"""

from datetime import datetime, timezone
from typing import List, Optional
import logging
import os

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the root logger for console output and an optional log file.

    Environment Variables:
        SKYWATCH_LOG_LEVEL: Overrides ``level`` when set
    """
    level_name = (os.environ.get("SKYWATCH_LOG_LEVEL") or level).upper()
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    logger.info(f"Logging configured at {level_name} level")


def to_naive_utc(when: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC."""
    if when.tzinfo is not None:
        return when.astimezone(timezone.utc).replace(tzinfo=None)
    return when


def parse_datetime(date_string: str) -> datetime:
    """
    Parse a user-supplied timestamp into naive UTC.

    Accepts ISO 8601 dates and date-times with a space or ``T`` separator, and
    an optional ``Z`` or numeric UTC offset.

    Raises:
        ValueError: If date string cannot be parsed
    """
    text = date_string.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError as e:
        raise ValueError(f"Could not parse datetime string: {date_string}") from e


def get_current_utc() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current UTC datetime (timezone-naive)
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def validate_coordinates(latitude: float, longitude: float) -> bool:
    """
    Validate latitude and longitude coordinates.

    Returns:
        True if coordinates are valid
    """
    return (-90 <= latitude <= 90) and (-180 <= longitude <= 180)


def format_coordinates(latitude: float, longitude: float) -> str:
    """Format coordinates for display, e.g. '51.5074°N, 0.1278°W'."""
    lat_dir = "N" if latitude >= 0 else "S"
    lon_dir = "E" if longitude >= 0 else "W"
    return f"{abs(latitude):.4f}°{lat_dir}, {abs(longitude):.4f}°{lon_dir}"


def format_duration(minutes: float) -> str:
    """
    Format a duration in minutes, e.g. '45m' or '1h 5m'.

    Args:
        minutes: Duration in minutes

    Returns:
        Formatted duration string
    """
    total = int(round(minutes))
    hours, mins = divmod(total, 60)
    if hours == 0:
        return f"{mins}m"
    return f"{hours}h {mins}m"


def format_pass_time(when: datetime) -> str:
    """Format a pass instant for display."""
    return when.strftime("%Y-%m-%d %H:%M:%S UTC")

"""
Command-line interface for skywatch.

Predict passes, check current visibility and inspect objects from a TLE
catalog without writing any code.
"""

from pathlib import Path
from typing import List, NoReturn, Optional, Tuple
import csv
import io
import json
import logging
import sys

import click

from .aperture import DEFAULT_APERTURE_ANGLE_DEG, ApertureCone
from .catalog import (
    create_sample_tle_file,
    describe_object,
    filter_by_category,
    find_object,
    load_tle_file,
)
from .config import ScanSettings, load_settings
from .errors import SkywatchError
from .geometry import ContainmentStrategy
from .observer import GeoLocation
from .orbit import OrbitPredictorProvider, TrackedObject
from .parallel import cleanup_process_pool
from .passes import DEFAULT_SEARCH_HOURS, Pass, next_pass, scan_passes
from .utils import (
    format_coordinates,
    format_duration,
    format_pass_time,
    get_current_utc,
    parse_datetime,
    setup_logging,
)
from .visibility import VisibilityEvaluator

logger = logging.getLogger(__name__)

CSV_FIELDS = [
    "object_id", "object_name", "start_time", "peak_time", "end_time",
    "duration_minutes", "peak_elevation_deg", "compass_direction", "truncated",
]


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _load_objects(tle: str, names: Tuple[str, ...] = (), category: Optional[str] = None) -> List[TrackedObject]:
    objects = filter_by_category(load_tle_file(tle), category)
    if not names:
        return objects
    selected = []
    for name in names:
        obj = find_object(objects, name)
        if obj is None:
            raise SkywatchError(f"Object '{name}' not found in {tle}")
        selected.append(obj)
    return selected


def _settings(ctx: click.Context) -> ScanSettings:
    return ctx.obj["settings"] if ctx.obj and "settings" in ctx.obj else ScanSettings()


def _passes_table(passes: List[Pass]) -> str:
    lines = [
        f"{'Object':<20} {'Start (UTC)':<20} {'Duration':>9} {'Peak':>6}  Direction",
        "-" * 70,
    ]
    for p in passes:
        marker = " *" if p.truncated else ""
        lines.append(
            f"{p.object.name[:20]:<20} {p.start_time.strftime('%Y-%m-%d %H:%M:%S'):<20} "
            f"{format_duration(p.duration_minutes):>9} {p.peak_elevation_deg:>5.1f}°  "
            f"{p.compass_direction}{marker}"
        )
    if any(p.truncated for p in passes):
        lines.append("* still in progress at the end of the window")
    return "\n".join(lines)


def _passes_csv(passes: List[Pass]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, extrasaction="ignore")
    writer.writeheader()
    for p in passes:
        writer.writerow(p.to_dict())
    return buffer.getvalue()


@click.group()
@click.option('--log-level', default='WARNING',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set logging level')
@click.option('--log-file', type=click.Path(), help='Log file path')
@click.option('--config', 'config_path', type=click.Path(),
              help='YAML file with a "scan" settings section')
@click.pass_context
def main(ctx: click.Context, log_level: str, log_file: Optional[str], config_path: Optional[str]) -> None:
    """Skywatch - predict when satellites pass over you."""
    setup_logging(log_level, log_file)
    ctx.ensure_object(dict)
    try:
        ctx.obj["settings"] = load_settings(config_path)
    except SkywatchError as e:
        _fail(str(e))


@main.command()
@click.option('--tle', required=True, type=click.Path(exists=True),
              help='Path to TLE file')
@click.option('--lat', required=True, type=float, help='Observer latitude in degrees')
@click.option('--lon', required=True, type=float, help='Observer longitude in degrees')
@click.option('--satellite', 'satellites', multiple=True,
              help='Object name or catalog number (repeatable, default: all)')
@click.option('--category', type=str,
              help='Only objects of this category (ISS, WEATHER, ..., ALL)')
@click.option('--start-time', type=str,
              help='Start time (YYYY-MM-DD HH:MM:SS UTC, default: now)')
@click.option('--duration', default=24.0, type=float,
              help='Window length in hours (default: 24)')
@click.option('--min-elevation', type=float,
              help='Minimum elevation in degrees (default: from settings, 10)')
@click.option('--format', 'output_format', default='table',
              type=click.Choice(['table', 'json', 'csv']),
              help='Output format')
@click.option('--output', type=click.Path(), help='Write results to a file')
@click.pass_context
def passes(
    ctx: click.Context,
    tle: str,
    lat: float,
    lon: float,
    satellites: Tuple[str, ...],
    category: Optional[str],
    start_time: Optional[str],
    duration: float,
    min_elevation: Optional[float],
    output_format: str,
    output: Optional[str],
) -> None:
    """Predict passes of catalog objects over a location."""
    try:
        start_dt = parse_datetime(start_time) if start_time else get_current_utc()
        observer = GeoLocation(latitude=lat, longitude=lon)
        objects = _load_objects(tle, satellites, category)
        if not objects:
            _fail("No objects selected")

        click.echo(
            f"Scanning {len(objects)} objects over {format_coordinates(lat, lon)} "
            f"from {format_pass_time(start_dt)} for {duration} hours...",
            err=True,
        )
        result = scan_passes(
            objects, observer, start_dt, duration, min_elevation,
            settings=_settings(ctx),
        )
    except (SkywatchError, ValueError, FileNotFoundError) as e:
        logger.error(f"Pass prediction failed: {e}")
        _fail(str(e))
    finally:
        cleanup_process_pool()

    for failure in result.failures:
        click.echo(f"Warning: {failure.object_name} skipped: {failure.reason}", err=True)

    if output_format == 'json':
        text = json.dumps(result.to_dict(), indent=2)
    elif output_format == 'csv':
        text = _passes_csv(result.passes)
    elif result.is_empty:
        text = "No passes found."
    else:
        text = _passes_table(result.passes)

    if output:
        Path(output).write_text(text)
        click.echo(f"Results saved to: {output}", err=True)
    else:
        click.echo(text)


@main.command()
@click.option('--tle', required=True, type=click.Path(exists=True),
              help='Path to TLE file')
@click.option('--lat', required=True, type=float, help='Observer latitude in degrees')
@click.option('--lon', required=True, type=float, help='Observer longitude in degrees')
@click.option('--time', 'time_str', type=str, help='Instant to evaluate (default: now)')
@click.option('--min-elevation', default=0.0, type=float,
              help='Minimum elevation in degrees (default: 0)')
@click.option('--cone-azimuth', type=float, help='Aperture axis azimuth in degrees')
@click.option('--cone-elevation', type=float, help='Aperture axis elevation in degrees')
@click.option('--aperture', type=float,
              help=f'Full aperture angle in degrees (default when pointing: {DEFAULT_APERTURE_ANGLE_DEG:.0f})')
@click.option('--approximate', is_flag=True,
              help='Use the approximate highlight test instead of exact containment')
def visible(
    tle: str,
    lat: float,
    lon: float,
    time_str: Optional[str],
    min_elevation: float,
    cone_azimuth: Optional[float],
    cone_elevation: Optional[float],
    aperture: Optional[float],
    approximate: bool,
) -> None:
    """Show which objects are visible right now (or at --time)."""
    try:
        when = parse_datetime(time_str) if time_str else get_current_utc()
        observer = GeoLocation(latitude=lat, longitude=lon)
        objects = load_tle_file(tle)

        cone = None
        if cone_azimuth is not None or cone_elevation is not None or aperture is not None:
            cone = ApertureCone.from_full_aperture(
                observer,
                aperture if aperture is not None else DEFAULT_APERTURE_ANGLE_DEG,
                azimuth_deg=cone_azimuth,
                elevation_deg=cone_elevation,
            )
        strategy = (
            ContainmentStrategy.APPROXIMATE_HIGHLIGHT if approximate else ContainmentStrategy.EXACT
        )
        evaluator = VisibilityEvaluator(min_elevation, cone, strategy)
    except (SkywatchError, ValueError, FileNotFoundError) as e:
        _fail(str(e))

    provider = OrbitPredictorProvider()

    click.echo(f"Visibility at {format_pass_time(when)} from {format_coordinates(lat, lon)}")
    count = 0
    for obj in objects:
        sample = evaluator.sample_or_default(obj, observer, when, provider)
        status = "VISIBLE" if sample.visible else "-"
        click.echo(
            f"{obj.name[:24]:<24} el {sample.elevation_deg:>6.1f}°  "
            f"az {sample.azimuth_deg:>6.1f}°  {status}"
        )
        count += int(sample.visible)
    click.echo(f"{count} of {len(objects)} objects visible")


@main.command(name='next-pass')
@click.option('--tle', required=True, type=click.Path(exists=True),
              help='Path to TLE file')
@click.option('--satellite', required=True, help='Object name or catalog number')
@click.option('--lat', required=True, type=float, help='Observer latitude in degrees')
@click.option('--lon', required=True, type=float, help='Observer longitude in degrees')
@click.option('--start-time', type=str, help='Search start (default: now)')
@click.option('--hours', default=float(DEFAULT_SEARCH_HOURS), type=float,
              help=f'Search window in hours (default: {DEFAULT_SEARCH_HOURS})')
@click.pass_context
def next_pass_cmd(
    ctx: click.Context,
    tle: str,
    satellite: str,
    lat: float,
    lon: float,
    start_time: Optional[str],
    hours: float,
) -> None:
    """Find the next pass of one object over a location."""
    try:
        start_dt = parse_datetime(start_time) if start_time else get_current_utc()
        observer = GeoLocation(latitude=lat, longitude=lon)
        obj = _load_objects(tle, (satellite,))[0]
        found = next_pass(obj, observer, start_dt, hours, settings=_settings(ctx))
    except (SkywatchError, ValueError, FileNotFoundError) as e:
        _fail(str(e))

    if found is None:
        click.echo(f"No pass of {obj.name} in the next {hours} hours")
        return

    click.echo(f"Next pass of {obj.name}:")
    click.echo(f"  Start:     {format_pass_time(found.start_time)}")
    click.echo(f"  Peak:      {format_pass_time(found.peak_time)} ({found.peak_elevation_deg:.1f}°)")
    click.echo(f"  End:       {format_pass_time(found.end_time)}")
    click.echo(f"  Duration:  {format_duration(found.duration_minutes)}")
    click.echo(f"  Direction: {found.compass_direction}")


@main.command()
@click.option('--tle', required=True, type=click.Path(exists=True),
              help='Path to TLE file')
@click.option('--satellite', required=True, help='Object name or catalog number')
@click.option('--time', 'time_str', type=str, help='Instant to describe (default: now)')
def info(tle: str, satellite: str, time_str: Optional[str]) -> None:
    """Show orbital information about one object."""
    try:
        when = parse_datetime(time_str) if time_str else get_current_utc()
        obj = _load_objects(tle, (satellite,))[0]
        details = describe_object(obj, when)
        epoch = obj.elements.epoch
        launch_year = obj.elements.launch_year
    except (SkywatchError, ValueError, FileNotFoundError) as e:
        _fail(str(e))

    click.echo(f"{obj.name} (catalog {obj.id})")
    click.echo(f"  Epoch:       {format_pass_time(epoch)}")
    click.echo(f"  Launch year: {launch_year}")
    click.echo(f"  Period:      {details.period_minutes:.1f} min")
    click.echo(f"  Position:    {format_coordinates(details.latitude, details.longitude)}")
    click.echo(f"  Altitude:    {details.altitude_km:.1f} km")
    if details.speed_km_s is not None:
        click.echo(f"  Speed:       {details.speed_km_s:.2f} km/s")


@main.command(name='create-sample-tle')
@click.option('--output', required=True, type=click.Path(),
              help='Output TLE file path')
def create_sample_tle(output: str) -> None:
    """Create a sample TLE file with well-known objects."""
    try:
        path = create_sample_tle_file(output)
        click.echo(f"Sample TLE file created: {path}")
    except OSError as e:
        _fail(str(e))


if __name__ == '__main__':
    main()

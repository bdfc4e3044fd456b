"""CLI for trip history and geofence checks.

Usage:
    fleet-history trip --vehicle GPS-01 --from 2025-06-01T00:00 --to 2025-06-02T00:00
    fleet-history summarize samples.json --level high --output ./trip
    fleet-history check --region depot.json -- -6.2088,106.8456
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click

from history.report import save_trip_report
from history.simplify import OptimizationLevel, simplify_for_display
from history.stats import compute_trip_summary, find_stops
from monitor.config import load_config
from monitor.geofence import contains, region_from_record
from monitor.item_store import FetchError, ItemStoreClient
from shared.geo import GeoPoint
from shared.samples import PositionSample, parse_timestamp, prepare_track, sample_from_record

LEVELS = [level.value for level in OptimizationLevel]


def _load_records(path: Path) -> list[dict]:
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("data", [])
    return [r for r in data if isinstance(r, dict)]


def _dir_name(vehicle_key: str) -> str:
    return vehicle_key.replace("/", "_").replace("\\", "_") or "unknown"


def _report(samples: list[PositionSample], level: str, output: Path, vehicle: str) -> None:
    track = prepare_track(samples)
    rendered = simplify_for_display(track, OptimizationLevel(level))
    summary = compute_trip_summary(track)
    outputs = save_trip_report(rendered, summary, output, vehicle_key=vehicle,
                               raw_points=len(track), stops=find_stops(track))

    click.echo(f"{len(samples)} samples, {len(track)} valid, {len(rendered)} rendered")
    click.echo(summary.summary())
    for name, path in outputs.items():
        click.echo(f"  {name}: {path}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Fleet trip history: simplify tracks and compute trip statistics."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


@cli.command()
@click.option("--vehicle", required=True, help="Vehicle GPS key (gps_id)")
@click.option("--from", "start", required=True, help="Window start, ISO-8601")
@click.option("--to", "end", required=True, help="Window end, ISO-8601")
@click.option("--level", type=click.Choice(LEVELS), default="auto", help="Simplification level")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Monitor config JSON")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=Path("./trip_report"),
              help="Output directory")
def trip(vehicle: str, start: str, end: str, level: str, config_path: Path | None, output: Path):
    """Fetch a vehicle's track from the item store and build a trip report."""
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        raise click.BadParameter("--from/--to must be ISO-8601 timestamps")
    if end_dt < start_dt:
        raise click.BadParameter("--to is before --from")

    config = load_config(config_path)

    async def _fetch() -> list[PositionSample]:
        async with ItemStoreClient(config.api) as client:
            return await client.fetch_sample_range(vehicle, start_dt, end_dt)

    try:
        samples = asyncio.run(_fetch())
    except FetchError as e:
        raise click.ClickException(str(e)) from e

    if not samples:
        click.echo("No tracking data found for the selected period")
        return
    _report(samples, level, output, vehicle)


@cli.command()
@click.argument("samples_file", type=click.Path(exists=True, path_type=Path))
@click.option("--level", type=click.Choice(LEVELS), default="auto", help="Simplification level")
@click.option("--vehicle", default=None, help="Only use samples of this gps_id")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=Path("./trip_report"),
              help="Output directory")
def summarize(samples_file: Path, level: str, vehicle: str | None, output: Path):
    """Build trip reports from a JSON export of vehicle_datas records.

    Trips are per vehicle: an export holding several gps_ids gets one
    report per vehicle, each in its own subdirectory of OUTPUT.
    """
    samples = [sample_from_record(r) for r in _load_records(samples_file)]
    if vehicle is not None:
        samples = [s for s in samples if s.vehicle_key == vehicle]

    by_vehicle: dict[str, list[PositionSample]] = {}
    for s in samples:
        by_vehicle.setdefault(s.vehicle_key, []).append(s)

    if len(by_vehicle) <= 1:
        key = next(iter(by_vehicle), vehicle or "")
        _report(samples, level, output, key)
        return

    click.echo(f"{len(by_vehicle)} vehicles in {samples_file.name}")
    for key, vehicle_samples in sorted(by_vehicle.items()):
        click.echo(f"\n[{key or 'unknown'}]")
        _report(vehicle_samples, level, output / _dir_name(key), key)


@cli.command()
@click.option("--region", "region_file", required=True, type=click.Path(exists=True, path_type=Path),
              help="Geofence record JSON")
@click.argument("point")
def check(region_file: Path, point: str):
    """Check whether LAT,LON lies inside a geofence."""
    record = json.loads(region_file.read_text())
    if isinstance(record, dict) and isinstance(record.get("data"), dict):
        record = record["data"]
    region = region_from_record(record)
    if region is None:
        raise click.ClickException("Geofence definition is invalid")

    try:
        lat, lon = map(float, point.split(","))
    except ValueError as e:
        raise click.BadParameter("point must be LAT,LON") from e

    inside = contains(GeoPoint(lat=lat, lon=lon), region)
    click.echo(f"{region.name} ({region.kind}, {region.rule_type.value}): "
               f"{'inside' if inside else 'outside'}")


if __name__ == "__main__":
    cli()

"""Trip report export.

Writes the simplified track as GeoJSON together with the statistics of
the full track.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from history.stats import TripSummary
from shared.samples import PositionSample


def trip_to_geojson(
    track: Sequence[PositionSample],
    vehicle_key: str = "",
    stops: Sequence[PositionSample] = (),
) -> dict:
    """Convert a (simplified) track to a GeoJSON FeatureCollection.

    ``stops`` are marked as Point features. Pass ``find_stops`` of the
    full track so markers agree with the trip's stop count.
    """
    features = []

    coords = [[s.longitude, s.latitude] for s in track]
    if len(coords) >= 2:
        features.append({
            "type": "Feature",
            "geometry": {"type": "LineString", "coordinates": coords},
            "properties": {
                "type": "trajectory",
                "vehicle": vehicle_key,
                "start": track[0].timestamp.isoformat(),
                "end": track[-1].timestamp.isoformat(),
                "points": len(coords),
            },
        })

    for s in stops:
        features.append({
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [s.longitude, s.latitude]},
            "properties": {
                "type": "stop",
                "timestamp": s.timestamp.isoformat(),
                "speed": s.speed,
            },
        })

    return {"type": "FeatureCollection", "features": features}


def save_trip_report(
    track: Sequence[PositionSample],
    summary: TripSummary,
    output_dir: Path,
    vehicle_key: str = "",
    raw_points: int | None = None,
    stops: Sequence[PositionSample] = (),
) -> dict[str, Path]:
    """Write GeoJSON, stats JSON and a text summary.

    Returns dict of output file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    outputs = {}

    summary_path = output_dir / "trip_summary.txt"
    summary_path.write_text(summary.summary())
    outputs["summary"] = summary_path

    geojson_path = output_dir / "trip_track.geojson"
    with open(geojson_path, "w") as f:
        json.dump(trip_to_geojson(track, vehicle_key, stops), f, indent=2)
    outputs["geojson"] = geojson_path

    stats_path = output_dir / "trip_stats.json"
    with open(stats_path, "w") as f:
        json.dump({
            "vehicle": vehicle_key,
            "raw_points": raw_points if raw_points is not None else len(track),
            "rendered_points": len(track),
            **summary.to_dict(),
        }, f, indent=2)
    outputs["stats_json"] = stats_path

    return outputs

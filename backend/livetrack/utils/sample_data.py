"""
Sample data generator for testing.

Generates synthetic field-worker sessions as per-session CSV files in the
layout read by CsvPointStore.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd


def generate_walking_session(
    output_path: Path,
    n_points: int = 120,
    interval_s: float = 10.0,
    start_ms: Optional[int] = None,
    center_lat: float = 43.5081,  # Example: Split
    center_lon: float = 16.4402,
    mean_speed_ms: float = 1.4,
    include_timestamp_ms: bool = True,
    seed: Optional[int] = None,
) -> Path:
    """
    Generate a random-walk session at walking pace.

    Args:
        output_path: CSV file to write
        n_points: Number of samples
        interval_s: Seconds between samples
        start_ms: Epoch ms of the first sample (defaults to now minus the run length)
        center_lat, center_lon: Starting position
        mean_speed_ms: Average walking speed
        include_timestamp_ms: Write the timestamp_ms column (legacy files lack it)
        seed: Random seed for reproducible output

    Returns:
        output_path
    """
    rng = np.random.default_rng(seed)

    if start_ms is None:
        now_ms = int(datetime.now(tz=timezone.utc).timestamp() * 1000)
        start_ms = now_ms - int(n_points * interval_s * 1000)

    timestamps_ms = start_ms + (np.arange(n_points) * interval_s * 1000).astype(np.int64)

    # Heading drifts slowly; speed jitters around the mean
    heading = np.cumsum(rng.normal(0, 0.3, n_points))
    speed_ms = np.clip(rng.normal(mean_speed_ms, 0.3, n_points), 0.0, None)
    step_m = speed_ms * interval_s

    north = np.cumsum(step_m * np.cos(heading))
    east = np.cumsum(step_m * np.sin(heading))
    north -= north[0]
    east -= east[0]

    # Local meters to GPS coordinates
    meters_per_deg_lat = 111000
    meters_per_deg_lon = 111000 * np.cos(np.radians(center_lat))

    lat = center_lat + north / meters_per_deg_lat
    lon = center_lon + east / meters_per_deg_lon

    df = pd.DataFrame({
        "latitude": np.round(lat, 7),
        "longitude": np.round(lon, 7),
        "speed": np.round(speed_ms, 2),
        "accuracy": np.round(rng.uniform(3.0, 12.0, n_points), 1),
        "timestamp": pd.to_datetime(timestamps_ms, unit="ms", utc=True).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
    })
    if include_timestamp_ms:
        df["timestamp_ms"] = timestamps_ms

    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False)

    return output_path


def generate_demo_data_set(output_folder: Path, seed: Optional[int] = None) -> list[Path]:
    """Generate a small set of demo sessions."""
    output_folder.mkdir(parents=True, exist_ok=True)

    files = []
    files.append(generate_walking_session(
        output_folder / "session_001.csv",
        n_points=180,
        seed=seed,
    ))
    files.append(generate_walking_session(
        output_folder / "session_002.csv",
        n_points=90,
        center_lat=43.5147,
        center_lon=16.4435,
        mean_speed_ms=1.1,
        seed=None if seed is None else seed + 1,
    ))
    # Legacy upload without timestamp_ms
    files.append(generate_walking_session(
        output_folder / "session_003.csv",
        n_points=60,
        center_lat=43.5030,
        center_lon=16.4520,
        include_timestamp_ms=False,
        seed=None if seed is None else seed + 2,
    ))

    return files


if __name__ == "__main__":
    output = Path("./data/sessions")
    files = generate_demo_data_set(output)
    print(f"Generated {len(files)} sample sessions in {output}")
    for f in files:
        print(f"  - {f.name}")

#!/usr/bin/env python3
"""
Triangulate 3D points from multi-camera pixel observations.

Reads calibration state (YAML written by run_calibration.py) and an
observation CSV (columns point_id, camera_id, u, v) and writes one 3D point
per point_id.

Usage:
    python scripts/triangulate_points.py --calibration output/rig.yaml \\
        --observations data/observations.csv --output output/points.csv
"""

import argparse
import csv
import sys
from pathlib import Path

from tqdm import tqdm

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from stereocal.calibration import CalibrationError, DistortionSolver
from stereocal.calibration.calibration_io import load_calibration
from stereocal.data import load_observations_csv
from stereocal.triangulation import StereoTriangulator, TriangulatorConfig
from stereocal.utils.config_loader import load_config
from stereocal.utils.logger import setup_from_config


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Multi-view triangulation with calibrated cameras",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--calibration", type=str, required=True, help="Calibration YAML")
    parser.add_argument(
        "--observations",
        type=str,
        required=True,
        help="Observation CSV with columns point_id, camera_id, u, v",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: stereocal/configs/default.yaml)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="output/points.csv",
        help="Output CSV (default: output/points.csv)",
    )
    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_args()

    config = load_config(args.config)
    logger = setup_from_config(config.get("logging"))

    cameras, _ = load_calibration(args.calibration)
    # YAML may load numeric ids as ints; CSV ids are strings
    cameras = {str(camera_id): camera for camera_id, camera in cameras.items()}
    queries = load_observations_csv(args.observations)
    logger.info(f"{len(cameras)} cameras, {len(queries)} points to triangulate")

    triangulator = StereoTriangulator(
        cameras,
        TriangulatorConfig.from_dict(config.get("triangulation")),
        DistortionSolver.from_config(config.get("distortion")),
    )

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    failures = 0
    with open(output, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["point_id", "x", "y", "z", "quality", "pair_count"])
        for point_id, observations in tqdm(queries.items(), desc="Triangulating", unit="pt"):
            try:
                point = triangulator.triangulate(observations)
            except CalibrationError as e:
                failures += 1
                logger.warning(f"Point {point_id}: {type(e).__name__}: {e}")
                continue
            writer.writerow([point_id, point.x, point.y, point.z, point.quality, point.pair_count])

    print(f"Triangulated {len(queries) - failures}/{len(queries)} points")
    print(f"Saved: {output}")
    return 0 if failures == 0 else 1


if __name__ == "__main__":
    sys.exit(main())

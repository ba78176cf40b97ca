#!/usr/bin/env python3
"""
Calibrate a camera from 3D-2D correspondences.

Reads a correspondence CSV (columns view, X, Y, Z, u, v), runs the
Levenberg–Marquardt calibrator and writes the calibration YAML, one camera
entry per view.

Usage:
    # Planar rig, automatic initialization
    python scripts/run_calibration.py --correspondences data/rig.csv --width 640 --height 480

    # Non-planar rig with an initial guess
    python scripts/run_calibration.py --correspondences data/cube.csv --width 1280 --height 960 \\
        --initial-guess 1000,1000,639.5,479.5

    # Name the views as cameras of a fixed rig
    python scripts/run_calibration.py --correspondences data/rig.csv --width 640 --height 480 \\
        --camera-ids left,right --output output/rig.yaml
"""

import argparse
import sys
import time
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from stereocal.calibration import CalibrationError, CameraParameters, Calibrator, CalibratorConfig
from stereocal.calibration.calibration_io import cameras_from_result, save_calibration
from stereocal.data import load_correspondences_csv
from stereocal.utils.config_loader import load_config
from stereocal.utils.logger import setup_from_config


def parse_initial_guess(text: str) -> CameraParameters:
    """Parse 'fx,fy,cx,cy[,k1,k2,p1,p2]'."""
    values = [float(v) for v in text.split(",")]
    if len(values) not in (4, 8):
        raise argparse.ArgumentTypeError("Initial guess needs 4 or 8 comma-separated values")
    return CameraParameters(*values)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Camera calibration from 3D-2D correspondences",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--correspondences",
        type=str,
        required=True,
        help="Correspondence CSV with columns view, X, Y, Z, u, v",
    )
    parser.add_argument("--width", type=int, required=True, help="Image width in pixels")
    parser.add_argument("--height", type=int, required=True, help="Image height in pixels")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: stereocal/configs/default.yaml)",
    )
    parser.add_argument(
        "--initial-guess",
        type=parse_initial_guess,
        default=None,
        help="Initial intrinsics fx,fy,cx,cy[,k1,k2,p1,p2] (required for non-planar rigs)",
    )
    parser.add_argument(
        "--planar",
        choices=["auto", "yes", "no"],
        default="auto",
        help="Treat the rig as planar (default: detect)",
    )
    parser.add_argument(
        "--camera-ids",
        type=str,
        default=None,
        help="Comma-separated camera id for each view (default: view index)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop optimization after this many seconds",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="output/calibration.yaml",
        help="Output calibration YAML (default: output/calibration.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_args()

    config = load_config(args.config)
    if args.log_level:
        config.setdefault("logging", {})["level"] = args.log_level
    logger = setup_from_config(config.get("logging"))

    views = load_correspondences_csv(args.correspondences)
    logger.info(f"Loaded {len(views)} views from {args.correspondences}")
    for index, view in enumerate(views):
        logger.debug(f"View {index}: {len(view)} correspondences")

    planar = {"auto": None, "yes": True, "no": False}[args.planar]
    deadline = time.monotonic() + args.timeout if args.timeout else None

    calibrator = Calibrator(
        (args.width, args.height),
        CalibratorConfig.from_dict(config.get("calibration")),
    )
    try:
        result = calibrator.calibrate(
            views,
            initial_guess=args.initial_guess,
            planar=planar,
            deadline=deadline,
        )
    except CalibrationError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    ids = args.camera_ids.split(",") if args.camera_ids else None
    cameras = cameras_from_result(result, ids)
    save_calibration(args.output, cameras, result.statistics)

    print(f"\nIntrinsics: {result.parameters}")
    print(f"Iterations: {result.iterations}")
    print(f"Global RMS: {result.statistics.rms:.4f} px (max {result.statistics.max_error:.4f} px)")
    for index, (rms, status) in enumerate(zip(result.statistics.view_rms, result.view_status)):
        print(f"  View {index}: rms={rms:.4f} px  [{status.value}]")
    print(f"Saved: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

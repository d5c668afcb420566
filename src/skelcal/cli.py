"""Command line entry point: python -m skelcal.cli {calibrate,validate,list}."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .calibration import Calibration, CalibrationConfig, CoordinateNormalizer
from .logformat import list_session_files, validate_log_integrity
from .metrics import MetricsExporter
from .network import TrainingMode


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m skelcal.cli")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    cal = sub.add_parser("calibrate", help="Train camera networks on a recorded session")
    cal.add_argument("--session", type=str, required=True, help="Session label HH_mm_ss_fff")
    cal.add_argument("--cameras", type=int, required=True, help="Number of cameras (>=2)")
    cal.add_argument("--log-dir", type=str, default=".", help="Directory with camera logs")
    cal.add_argument("--out", type=str, default=None, help="Directory to save trained networks")
    cal.add_argument("--metrics-json", type=str, default=None, help="Write calibration summary JSON here")
    cal.add_argument("--learning-rate", type=float, default=0.15)
    cal.add_argument("--momentum", type=float, default=0.1)
    cal.add_argument("--seed", type=int, default=555)
    cal.add_argument("--mode", type=str, default="online", choices=["online", "batch"])
    cal.add_argument("--batch-size", type=int, default=0, help="Batch mode flush interval in rounds")
    cal.add_argument("--hidden-size", type=int, default=None, help="Hidden layer size (default: input^2)")
    cal.add_argument("--norm-offset", type=float, default=0.0)
    cal.add_argument("--norm-scale", type=float, default=1.0)
    cal.add_argument("--keep-untracked", action="store_true", help="Train on rounds with untracked joints")

    val = sub.add_parser("validate", help="Check a camera log")
    val.add_argument("file", type=str)
    val.add_argument("--camera-id", type=int, default=None, help="Expected header camera id")

    lst = sub.add_parser("list", help="List recorded sessions")
    lst.add_argument("--log-dir", type=str, default=".")
    return parser


def _calibrate(args: argparse.Namespace) -> int:
    config = CalibrationConfig(
        learning_rate=args.learning_rate,
        momentum=args.momentum,
        seed=args.seed,
        mode=TrainingMode(args.mode),
        batch_size=args.batch_size,
        hidden_size=args.hidden_size,
        skip_untracked=not args.keep_untracked,
        normalizer=CoordinateNormalizer(offset=args.norm_offset, scale=args.norm_scale),
    )
    calibration = Calibration(args.session, args.cameras, log_dir=args.log_dir, config=config)
    summary = calibration.calibrate()
    if args.out:
        summary["networks"] = calibration.save(args.out)
    if args.metrics_json:
        MetricsExporter.to_json(summary, args.metrics_json)
    print(f"rounds: {summary['rounds']}")
    for camera_id, cam in sorted(summary["training"]["cameras"].items()):
        print(f"cam{camera_id}: samples={cam['samples']} skipped={cam['skipped']} loss={cam['rolling_loss']:.6f}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        try:
            return int(e.code)
        except Exception:
            return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "calibrate" and args.cameras < 2:
        print("error: --cameras must be >= 2", file=sys.stderr)
        return 2

    try:
        if args.command == "calibrate":
            return _calibrate(args)
        if args.command == "validate":
            report = validate_log_integrity(args.file, args.camera_id)
            print(json.dumps(report, indent=2))
            return 0 if report["valid"] else 1
        print(json.dumps(list_session_files(args.log_dir), indent=2))
        return 0
    except Exception as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

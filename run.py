#!/usr/bin/env python3
"""
Squat rep counter: offline (video) or live (webcam).
Usage:
  Offline: python run.py --video path/to/video.mp4 [--view side] [--out report.json]
  Live:    python run.py --live [--camera 0] [--view front]
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from functools import partial
from pathlib import Path

from dotenv import load_dotenv

# Load .env so POSEREPS_* overrides are available
load_dotenv()
load_dotenv(Path(__file__).resolve().parent / ".env")

from posereps.analyze import analyze_video
from posereps.config import TARGET_FPS_OPTIONS, parse_view, settings_from_env
from posereps.live import run_live_pipeline
from posereps.pose import POSE_MODELS, create_pose_estimator


def main() -> None:
    settings = settings_from_env()
    ap = argparse.ArgumentParser(description="Squat rep counter: offline video or live webcam")
    ap.add_argument("--video", type=str, default=None, help="Path to video file (offline mode)")
    ap.add_argument("--live", action="store_true", help="Use live webcam")
    ap.add_argument("--camera", type=int, default=0, help="Camera device id (default 0)")
    ap.add_argument("--view", type=str, default=settings["view"].value, help="Camera view: front, side or rear")
    ap.add_argument("--target-fps", type=int, choices=TARGET_FPS_OPTIONS, default=settings["target_fps"])
    ap.add_argument("--model", type=str, choices=POSE_MODELS, default=settings["model"])
    ap.add_argument("--config-override", type=str, default=None, help='JSON patch, e.g. \'{"theta_down_deg": 95}\'')
    ap.add_argument("--out", type=str, default=None, help="Offline report path (default outputs/<video>_analysis.json)")
    ap.add_argument("--output-dir", type=str, default="outputs", help="Output directory")
    ap.add_argument("--debug", action="store_true", help="Emit debug events and verbose logs")
    ap.add_argument("--no-orientation-check", action="store_true", help="Skip facing-direction validation")
    ap.add_argument("--no-plant-check", action="store_true", help="Skip both-feet-planted validation")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.live and args.video:
        print("Error: provide exactly one of --video or --live", file=sys.stderr)
        sys.exit(1)
    if not args.live and not args.video:
        print("Error: provide --video PATH or --live", file=sys.stderr)
        sys.exit(1)

    view = parse_view(args.view)
    if view is None:
        print(f"Error: unknown view {args.view!r} (use front, side or rear)", file=sys.stderr)
        sys.exit(1)

    override = {}
    if args.config_override:
        try:
            override = json.loads(args.config_override)
        except json.JSONDecodeError as e:
            print(f"Error: --config-override is not valid JSON: {e}", file=sys.stderr)
            sys.exit(1)
        if not isinstance(override, dict):
            print("Error: --config-override must be a JSON object", file=sys.stderr)
            sys.exit(1)

    config = settings["config"].patched(override)
    factory = partial(create_pose_estimator, cache_dir=settings["model_dir"], delegate=settings["delegate"])

    if args.live:
        run_live_pipeline(
            camera_id=args.camera,
            view=view,
            target_fps=args.target_fps,
            config=config,
            model=args.model,
            debug=args.debug,
            estimator_factory=factory,
            output_dir=args.output_dir,
            validate_orientation=not args.no_orientation_check,
            validate_plant=not args.no_plant_check,
        )
        return

    if not os.path.isfile(args.video):
        print(f"Error: video file not found: {args.video}", file=sys.stderr)
        sys.exit(1)
    out_path = args.out or os.path.join(
        args.output_dir, f"{Path(args.video).stem}_{view.value}_analysis.json"
    )
    report = analyze_video(
        args.video,
        view=view,
        target_fps=args.target_fps,
        config=config,
        model=args.model,
        debug=True,
        estimator_factory=factory,
        out_path=out_path,
        validate_orientation=not args.no_orientation_check,
        validate_plant=not args.no_plant_check,
    )
    summary = report["summary"]
    print(
        f"Offline done. Reps: {summary['total_reps_detected']} "
        f"(reference {summary['reference_reps']}), pose lost {summary['pose_lost_count']}x. "
        f"Report: {out_path}"
    )


if __name__ == "__main__":
    main()

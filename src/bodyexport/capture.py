"""Command-line capture: record tracked bodies into a CSV export.

Run with: python -m bodyexport.capture --backend synthetic --frames 300 --csv out.csv
"""

from __future__ import annotations

import argparse
import logging
import sys

from .errors import BodyExportError
from .exporter import BodyCsvExporter, ExportConfig, ExportStream
from .images import ColorImageSaver
from .joints import ConfidenceLevel
from .recorder import FrameRecorder
from .sources import (
    K4A_CAMERA_FPS, K4A_DEPTH_MODES, K4A_PROCESSING_MODES,
    AzureKinectSource, BodyFrameSource, SyntheticBodySource, SyntheticSourceConfig,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m bodyexport.capture")
    _ = parser.add_argument("--backend", choices=("synthetic", "k4a"), default="synthetic", help="Frame source")
    _ = parser.add_argument("--offline", type=str, default=None, help="Play a recording instead of a live device (k4a)")
    _ = parser.add_argument("--depth-mode", choices=sorted(K4A_DEPTH_MODES), default="NFOV_UNBINNED", help="k4a depth sensor mode")
    _ = parser.add_argument("--processing-mode", choices=sorted(K4A_PROCESSING_MODES), default="CUDA", help="k4a body tracker processing mode")
    _ = parser.add_argument("--camera-fps", type=int, choices=sorted(K4A_CAMERA_FPS), default=30, help="k4a camera frame rate")
    _ = parser.add_argument("--model", type=str, default=None, help="k4a body tracking model file")
    _ = parser.add_argument("--csv", type=str, default="joint_positions.csv", help="Output CSV file")
    _ = parser.add_argument("--img", type=int, default=None, help="Save every Nth color image")
    _ = parser.add_argument("--img-dir", type=str, default="color_images", help="Folder for color images")
    _ = parser.add_argument("--frames", type=int, default=None, help="Stop after N frames")
    _ = parser.add_argument("--fps", type=float, default=30.0, help="Synthetic frames per second (>0)")
    _ = parser.add_argument("--bodies", type=int, default=1, help="Synthetic body count")
    _ = parser.add_argument("--seed", type=int, default=0, help="Synthetic RNG seed")
    _ = parser.add_argument("--angle", action=argparse.BooleanOptionalAction, default=True, help="Append the ANGLE column")
    _ = parser.add_argument("--time-label", choices=("Time", "FrameCount"), default="Time", help="Label of the time column")
    _ = parser.add_argument(
        "--angle-min-confidence",
        choices=[c.name for c in ConfidenceLevel],
        default=None,
        help="Leave ANGLE empty when a joint it uses is graded below this",
    )
    _ = parser.add_argument("--fail-fast", action="store_true", help="Abort on the first failed export")
    _ = parser.add_argument("--quiet", action="store_true", help="Do not print joint positions")
    _ = parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser


def _make_source(args: argparse.Namespace) -> BodyFrameSource:
    if args.backend == "k4a":
        return AzureKinectSource(
            offline_path=args.offline,
            track_color=args.img is not None,
            depth_mode=args.depth_mode,
            processing_mode=args.processing_mode,
            camera_fps=int(args.camera_fps),
            model_path=args.model,
        )
    return SyntheticBodySource(
        SyntheticSourceConfig(
            num_bodies=int(args.bodies),
            frames=int(args.frames) if args.frames is not None else 300,
            fps=float(args.fps),
            seed=int(args.seed),
            with_color=args.img is not None,
        )
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        try:
            return int(e.code)
        except Exception:
            return 2

    def _err(msg: str) -> int:
        print(f"error: {msg}", file=sys.stderr)
        return 2

    if args.frames is not None and args.frames <= 0:
        return _err("--frames must be > 0")
    if args.fps <= 0:
        return _err("--fps must be > 0")
    if args.img is not None and args.img <= 0:
        return _err("--img must be > 0")
    if args.bodies < 0:
        return _err("--bodies must be >= 0")
    if args.offline and args.backend != "k4a":
        return _err("--offline requires --backend k4a")

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ExportConfig(
        include_angle=bool(args.angle),
        time_label=args.time_label,
        angle_min_confidence=ConfidenceLevel[args.angle_min_confidence] if args.angle_min_confidence else None,
    )
    # Offline playback and frame-counter tables carry no wall-clock time
    if args.time_label == "FrameCount":
        timestamp_mode = "frame_index"
    elif args.backend == "k4a" and not args.offline:
        timestamp_mode = "monotonic"
    else:
        timestamp_mode = "frame"

    try:
        with ExportStream(args.csv) as stream:
            saver = None
            if args.img is not None:
                saver = ColorImageSaver(args.img_dir, lock=stream.lock, every_n=int(args.img))
            recorder = FrameRecorder(
                BodyCsvExporter(stream, config),
                image_saver=saver,
                print_joints=not args.quiet,
                fail_fast=bool(args.fail_fast),
                timestamp_mode=timestamp_mode,
            )
            status = recorder.run(_make_source(args), max_frames=args.frames)
    except BodyExportError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    for k in ["frames_seen", "rows_written", "images_saved", "failures"]:
        print(f"{k}: {status[k]}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""
Recording loop that connects a frame source to the CSV exporter.

Provides the processing chain:
- Frame source -> timestamp -> (terminal summary) -> CSV export
- Periodic color image saving on the same lock as the export stream
- Per-kind failure counters; single-frame failures are logged and skipped
  unless the recorder runs in fail-fast mode
"""

import logging
import threading
import time
from typing import Optional, Dict, Any, List, Callable, Sequence

import numpy as np

from .errors import BodyExportError, ErrorKind, ExportResult
from .exporter import BodyCsvExporter
from .images import ColorImageSaver
from .joints import Body, Frame, JointId
from .sources import BodyFrameSource

logger = logging.getLogger(__name__)


TIMESTAMP_MODES = ("frame", "monotonic", "frame_index")

# Joints shown in the per-frame terminal summary
SUMMARY_JOINTS = (
    JointId.PELVIS,
    JointId.SPINE_CHEST,
    JointId.HEAD,
    JointId.HAND_LEFT,
    JointId.HAND_RIGHT,
    JointId.FOOT_LEFT,
    JointId.FOOT_RIGHT,
)


def monotonic_timestamp_us() -> int:
    """Current monotonic clock reading in microseconds."""
    return time.monotonic_ns() // 1000


def format_joint_summary(bodies: Sequence[Body]) -> str:
    """Text block listing the summary joints of every body."""
    lines: List[str] = []
    for body in bodies:
        lines.append(f"=====Body ID: {body.body_id}=====")
        for joint_id in SUMMARY_JOINTS:
            x, y, z = body.joint(joint_id).position
            lines.append(f"{joint_id.name}: X={x:.3f}, Y={y:.3f}, Z={z:.3f}")
        lines.append("")
    return "\n".join(lines)


class FrameRecorder:
    """
    Exports frames as they arrive.

    Usage:
        with ExportStream("joint_positions.csv") as stream:
            recorder = FrameRecorder(BodyCsvExporter(stream))
            recorder.run(SyntheticBodySource())
    """

    def __init__(
        self,
        exporter: BodyCsvExporter,
        image_saver: Optional[ColorImageSaver] = None,
        print_joints: bool = False,
        fail_fast: bool = False,
        timestamp_mode: str = "frame",
        clock: Callable[[], int] = monotonic_timestamp_us,
        output: Callable[[str], None] = print
    ):
        """
        Initialize the recorder.

        Args:
            exporter: Exporter bound to an open stream
            image_saver: Optional saver for the frames' color images
            print_joints: Print the joint summary of every frame
            fail_fast: Re-raise export failures instead of logging them
            timestamp_mode: "frame" keeps the source timestamp, "monotonic"
                stamps the clock when the frame is recorded, "frame_index"
                writes the frame counter
            clock: Microsecond clock for "monotonic" mode
            output: Sink for the joint summary
        """
        if timestamp_mode not in TIMESTAMP_MODES:
            raise ValueError(f"timestamp_mode must be one of {TIMESTAMP_MODES}")

        self.exporter = exporter
        self.image_saver = image_saver
        self.print_joints = print_joints
        self.fail_fast = fail_fast
        self.timestamp_mode = timestamp_mode
        self._clock = clock
        self._output = output

        self._lock = threading.Lock()
        self.frames_seen = 0
        self.rows_written = 0
        self.images_saved = 0
        self.failures: Dict[ErrorKind, int] = {}
        self.last_error: Optional[str] = None
        self.start_time: Optional[float] = None

    def _timestamp_for(self, frame: Frame) -> int:
        if self.timestamp_mode == "monotonic":
            return int(self._clock())
        if self.timestamp_mode == "frame_index":
            return int(frame.frame_index)
        return int(frame.timestamp)

    def _record_failure(self, exc: BodyExportError, what: str) -> ExportResult:
        result = ExportResult.failure(exc)
        with self._lock:
            self.failures[result.error_kind] = self.failures.get(result.error_kind, 0) + 1
            self.last_error = result.message
        logger.error("Failed to %s: %s", what, exc)
        if self.fail_fast:
            raise exc
        return result

    def record(self, frame: Frame) -> ExportResult:
        """
        Export all bodies of ``frame`` as one batch.

        Returns:
            ExportResult; a failed result when the export failed and the
            recorder is not in fail-fast mode
        """
        with self._lock:
            self.frames_seen += 1

        if self.print_joints and frame.bodies:
            self._output(format_joint_summary(frame.bodies))

        if not frame.bodies:
            return ExportResult.success(0)

        try:
            written = self.exporter.export_batch(frame.bodies, self._timestamp_for(frame))
        except BodyExportError as e:
            return self._record_failure(e, "write CSV data")

        with self._lock:
            self.rows_written += written
        return ExportResult.success(written)

    def save_image(self, image: Optional[np.ndarray], frame_count: int) -> ExportResult:
        """Save one color image through the configured saver."""
        if self.image_saver is None:
            return ExportResult.success(0)
        try:
            path = self.image_saver.save(image, monotonic_timestamp_us(), frame_count)
        except BodyExportError as e:
            return self._record_failure(e, "save image")
        logger.debug("Saved image at frame %d: %s", frame_count, path)
        with self._lock:
            self.images_saved += 1
        return ExportResult.success(1)

    def run(self, source: BodyFrameSource, max_frames: Optional[int] = None) -> Dict[str, Any]:
        """
        Drive ``source`` until it is exhausted or ``max_frames`` were recorded.

        Args:
            source: A BodyFrameSource
            max_frames: Optional frame limit

        Returns:
            Final status dictionary
        """
        self.start_time = time.time()
        if self.image_saver is not None:
            self.image_saver.ensure_folder()

        source.start()
        try:
            frame_count = 0
            while max_frames is None or frame_count < max_frames:
                frame = source.next_frame()
                if frame is None:
                    break
                if self.image_saver is not None and self.image_saver.should_save(frame_count):
                    if frame.color_image is not None:
                        self.save_image(frame.color_image, frame_count)
                    else:
                        logger.warning("No color image available to save at frame %d", frame_count)
                self.record(frame)
                frame_count += 1
        finally:
            source.stop()

        logger.info("Finished body tracking processing: %d frame(s)", self.frames_seen)
        return self.get_status()

    def get_status(self) -> Dict[str, Any]:
        """Get current recorder status."""
        with self._lock:
            return {
                "frames_seen": self.frames_seen,
                "rows_written": self.rows_written,
                "images_saved": self.images_saved,
                "failures": {kind.value: count for kind, count in self.failures.items()},
                "last_error": self.last_error,
                "uptime_seconds": time.time() - self.start_time if self.start_time else 0,
            }

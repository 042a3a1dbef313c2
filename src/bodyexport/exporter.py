"""
CSV exporter for tracked bodies.

Provides functionality to:
- Own a single append-only CSV stream with its own lock
- Write the column header exactly once, only into an empty file
- Serialize one body or a whole frame of bodies as complete rows
- Optionally append the plane-projected arm angle to every row

Usage:
    with ExportStream("joint_positions.csv") as stream:
        exporter = BodyCsvExporter(stream, ExportConfig(include_angle=True))
        exporter.export_batch(bodies, timestamp)
"""

import csv
import io
import logging
import os
import threading
from pathlib import Path
from typing import Optional, List, Sequence, Union
from dataclasses import dataclass

from .errors import InvalidInputError, ExportIOError
from .geo import body_angle
from .joints import (
    Body, ConfidenceLevel, ANGLE_COLUMN, BODY_ID_COLUMN, TIME_LABELS,
    joint_columns,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportConfig:
    """Column layout and angle policy of one export stream."""
    include_angle: bool = False
    time_label: str = "Time"
    # Skip the angle (empty field) when any of its joints is graded below this
    angle_min_confidence: Optional[ConfidenceLevel] = None
    # Write an empty ANGLE field instead of failing when the angle is undefined
    skip_invalid_angle: bool = False

    def __post_init__(self):
        if self.time_label not in TIME_LABELS:
            raise ValueError(
                f"time_label must be one of {TIME_LABELS}, got {self.time_label!r}"
            )


def header_columns(config: ExportConfig) -> List[str]:
    """Full header row for ``config``."""
    columns = [BODY_ID_COLUMN, config.time_label]
    columns.extend(joint_columns())
    if config.include_angle:
        columns.append(ANGLE_COLUMN)
    return columns


class ExportStream:
    """
    Append-only CSV stream bound to one file, guarded by its own lock.

    The header is written only if the file is empty when the first rows
    arrive, so reopening an existing export continues the same table.
    """

    def __init__(self, path: Union[str, os.PathLike]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._handle = None

    @property
    def lock(self) -> threading.Lock:
        """The stream's lock, for collaborators that must serialize with it."""
        return self._lock

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._handle.closed

    def open(self) -> "ExportStream":
        with self._lock:
            if self.is_open:
                return self
            try:
                if self.path.parent and not self.path.parent.exists():
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                self._handle = open(self.path, "ab", buffering=0)
            except OSError as e:
                raise ExportIOError(f"Failed to open CSV file {self.path}: {e}") from e
        return self

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                try:
                    self._handle.close()
                finally:
                    self._handle = None

    def __enter__(self) -> "ExportStream":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def write_rows(self, header: Sequence[str], rows: Sequence[Sequence[object]]) -> int:
        """
        Write ``rows`` as one block, preceded by ``header`` if the file is empty.

        The handle is unbuffered; a failed write or flush truncates the file
        back to where the block started, so only complete blocks remain.

        Args:
            header: Header columns
            rows: Fully serialized data rows

        Returns:
            Number of data rows written

        Raises:
            ExportIOError: If the stream is closed or the write/flush fails
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerows(rows)
        payload = buffer.getvalue()

        with self._lock:
            if not self.is_open:
                raise ExportIOError("Failed to write CSV file - file not open")
            start = None
            try:
                start = self._handle.seek(0, os.SEEK_END)
                if start == 0:
                    header_buf = io.StringIO()
                    csv.writer(header_buf, lineterminator="\n").writerow(header)
                    payload = header_buf.getvalue() + payload
                view = memoryview(payload.encode("utf-8"))
                while view:
                    written = self._handle.write(view)
                    view = view[written:]
                self._handle.flush()
            except (OSError, ValueError) as e:
                if start is not None:
                    self._rollback(start)
                raise ExportIOError(
                    f"Failed to write to CSV file - disk full or I/O error: {e}"
                ) from e
        return len(rows)

    def _rollback(self, offset: int) -> None:
        try:
            os.ftruncate(self._handle.fileno(), offset)
            self._handle.seek(offset)
        except (OSError, ValueError) as e:
            logger.error("Failed to roll back partial CSV write in %s: %s", self.path, e)


def _format_float(value: float) -> str:
    return repr(float(value))


class BodyCsvExporter:
    """
    Serializes bodies to an ExportStream.

    Each row is: body id, timestamp, then x, y, z, confidence ordinal for
    every joint in canonical order, then the ANGLE field when enabled.
    """

    def __init__(self, stream: ExportStream, config: Optional[ExportConfig] = None):
        self.stream = stream
        self.config = config or ExportConfig()
        self._header = header_columns(self.config)

    @property
    def header(self) -> List[str]:
        return list(self._header)

    def _angle_field(self, body: Body) -> str:
        try:
            angle = body_angle(body, min_confidence=self.config.angle_min_confidence)
        except InvalidInputError:
            if self.config.skip_invalid_angle:
                return ""
            raise
        return "" if angle is None else _format_float(angle)

    def build_row(self, body: Body, timestamp: int) -> List[str]:
        """Serialize one body into row fields (no I/O)."""
        row = [str(int(body.body_id)), str(int(timestamp))]
        for joint in body.joints:
            x, y, z = joint.position
            row.append(_format_float(x))
            row.append(_format_float(y))
            row.append(_format_float(z))
            row.append(str(int(joint.confidence)))
        if self.config.include_angle:
            row.append(self._angle_field(body))
        return row

    def export_one(self, body: Body, timestamp: int) -> int:
        """
        Append one row for ``body``.

        Returns:
            Number of rows written (1)

        Raises:
            ExportIOError: Stream not open or write failed
            InvalidInputError: Angle undefined and not configured to skip
        """
        row = self.build_row(body, timestamp)
        return self.stream.write_rows(self._header, [row])

    def export_batch(self, bodies: Sequence[Body], timestamp: int) -> int:
        """
        Append one row per body, all sharing ``timestamp``, in one write and one flush.

        Rows are built before the stream is touched, so a body whose angle
        cannot be computed aborts the whole batch without writing anything.
        An empty sequence writes nothing and returns 0.
        """
        if not bodies:
            return 0
        rows = [self.build_row(body, timestamp) for body in bodies]
        return self.stream.write_rows(self._header, rows)

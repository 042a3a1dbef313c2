"""
Reader for CSV files produced by BodyCsvExporter.

Provides functionality to:
- Load an export back into per-row records (body id, time, joints, angle)
- Check an export for structural integrity

Only the layout written by this package is understood.
"""

import csv
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

import numpy as np

from .joints import (
    ConfidenceLevel, JOINT_COUNT, FIELDS_PER_JOINT,
    ANGLE_COLUMN, BODY_ID_COLUMN, TIME_LABELS, joint_columns,
)


class ExportFormatError(ValueError):
    """File does not follow the exporter's column layout."""


@dataclass
class ExportRow:
    """One serialized body."""
    body_id: int
    time: int
    positions: np.ndarray  # JOINT_COUNT x 3
    confidences: List[ConfidenceLevel]
    angle: Optional[float] = None


@dataclass
class ExportTable:
    """Parsed export file."""
    columns: List[str]
    time_label: str
    has_angle: bool
    rows: List[ExportRow] = field(default_factory=list)
    header_count: int = 0

    @property
    def body_ids(self) -> List[int]:
        return sorted(set(r.body_id for r in self.rows))


def _parse_header(columns: List[str]) -> Dict[str, Any]:
    if len(columns) < 2 or columns[0] != BODY_ID_COLUMN or columns[1] not in TIME_LABELS:
        raise ExportFormatError(f"unexpected leading columns: {columns[:2]}")
    expected = joint_columns()
    joint_part = columns[2:2 + len(expected)]
    if joint_part != expected:
        raise ExportFormatError("joint columns do not match the canonical joint order")
    rest = columns[2 + len(expected):]
    if rest not in ([], [ANGLE_COLUMN]):
        raise ExportFormatError(f"unexpected trailing columns: {rest}")
    return {"time_label": columns[1], "has_angle": bool(rest)}


def _parse_row(values: List[str], has_angle: bool, line_no: int) -> ExportRow:
    expected_len = 2 + JOINT_COUNT * FIELDS_PER_JOINT + (1 if has_angle else 0)
    if len(values) != expected_len:
        raise ExportFormatError(
            f"line {line_no}: expected {expected_len} fields, got {len(values)}"
        )
    try:
        body_id = int(values[0])
        time_value = int(values[1])
        joint_fields = values[2:2 + JOINT_COUNT * FIELDS_PER_JOINT]
        positions = np.empty((JOINT_COUNT, 3), dtype=np.float64)
        confidences: List[ConfidenceLevel] = []
        for j in range(JOINT_COUNT):
            base = j * FIELDS_PER_JOINT
            positions[j] = [float(v) for v in joint_fields[base:base + 3]]
            confidences.append(ConfidenceLevel(int(joint_fields[base + 3])))
        angle = None
        if has_angle and values[-1] != "":
            angle = float(values[-1])
    except ValueError as e:
        raise ExportFormatError(f"line {line_no}: {e}") from e
    return ExportRow(
        body_id=body_id,
        time=time_value,
        positions=positions,
        confidences=confidences,
        angle=angle
    )


def load_export(path: str) -> ExportTable:
    """
    Load an export file.

    Args:
        path: CSV file written by BodyCsvExporter

    Returns:
        ExportTable with all data rows

    Raises:
        FileNotFoundError: If the file does not exist
        ExportFormatError: If the header or any row does not match the layout
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Export file not found: {path}")

    with open(file_path, "r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        try:
            columns = next(reader)
        except StopIteration:
            raise ExportFormatError("empty export file")
        layout = _parse_header(columns)
        table = ExportTable(
            columns=columns,
            time_label=layout["time_label"],
            has_angle=layout["has_angle"],
            header_count=1
        )
        for line_no, values in enumerate(reader, start=2):
            if not values:
                continue
            if values[0] == BODY_ID_COLUMN:
                table.header_count += 1
                continue
            table.rows.append(_parse_row(values, table.has_angle, line_no))
    return table


def validate_export(path: str) -> Dict[str, Any]:
    """
    Validate an export file for integrity and consistency.

    Args:
        path: CSV file written by BodyCsvExporter

    Returns:
        Validation result dictionary
    """
    result = {
        "valid": True,
        "errors": [],
        "warnings": [],
        "stats": {}
    }

    try:
        table = load_export(path)

        if table.header_count != 1:
            result["errors"].append(f"Header written {table.header_count} times")
            result["valid"] = False

        times = [r.time for r in table.rows]
        if any(b < a for a, b in zip(times, times[1:])):
            result["warnings"].append("Time column is not monotonically increasing")

        if table.has_angle:
            missing = sum(1 for r in table.rows if r.angle is None)
            if missing:
                result["warnings"].append(f"{missing} row(s) without an angle value")

        result["stats"] = {
            "total_rows": len(table.rows),
            "body_ids": table.body_ids,
            "time_label": table.time_label,
            "has_angle": table.has_angle,
        }

    except (OSError, ExportFormatError) as e:
        result["valid"] = False
        result["errors"].append(str(e))

    return result

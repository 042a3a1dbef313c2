"""
Body tracking export: skeleton records, CSV export and joint angles.

Modules:
- joints: Joint enumeration, confidence grades, Body/Frame records
- geo: Plane projection and signed joint angles
- exporter: Thread-safe append-only CSV export
- images: Color image saving
- reader: Reading exports back and checking their integrity
- recorder: Frame loop connecting sources to the exporter
- sources: Synthetic and Azure Kinect frame sources
- capture: Command-line entry point
"""

from .errors import (
    ErrorKind, BodyExportError, InvalidInputError, ExportIOError,
    BackendUnavailableError, ExportResult
)
from .joints import (
    ConfidenceLevel, JointId, Joint, Body, Frame,
    JOINT_COUNT, joint_columns
)
from .geo import (
    EPSILON, normal_vector, plane_offset, project_onto_plane,
    signed_angle, projected_signed_angle, body_angle
)
from .exporter import ExportConfig, ExportStream, BodyCsvExporter, header_columns
from .images import ColorImageSaver
from .reader import ExportTable, ExportRow, ExportFormatError, load_export, validate_export
from .recorder import FrameRecorder, format_joint_summary, monotonic_timestamp_us
from .sources import BodyFrameSource, SyntheticBodySource, SyntheticSourceConfig, AzureKinectSource

__all__ = [
    # Errors
    "ErrorKind",
    "BodyExportError",
    "InvalidInputError",
    "ExportIOError",
    "BackendUnavailableError",
    "ExportResult",
    # Records
    "ConfidenceLevel",
    "JointId",
    "Joint",
    "Body",
    "Frame",
    "JOINT_COUNT",
    "joint_columns",
    # Geometry
    "EPSILON",
    "normal_vector",
    "plane_offset",
    "project_onto_plane",
    "signed_angle",
    "projected_signed_angle",
    "body_angle",
    # Export
    "ExportConfig",
    "ExportStream",
    "BodyCsvExporter",
    "header_columns",
    "ColorImageSaver",
    # Reader
    "ExportTable",
    "ExportRow",
    "ExportFormatError",
    "load_export",
    "validate_export",
    # Recorder
    "FrameRecorder",
    "format_joint_summary",
    "monotonic_timestamp_us",
    # Sources
    "BodyFrameSource",
    "SyntheticBodySource",
    "SyntheticSourceConfig",
    "AzureKinectSource",
]

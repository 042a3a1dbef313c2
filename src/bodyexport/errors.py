"""
Error types shared by the geometry, export and capture modules.

Every error carries an explicit ``kind`` so callers can branch on the failure
category without inspecting exception classes, and ``ExportResult`` gives the
orchestration layer a plain value to return instead of raising.
"""

from enum import Enum
from typing import Optional
from dataclasses import dataclass


class ErrorKind(str, Enum):
    """Failure categories reported to callers."""
    INVALID_INPUT = "invalid_input"
    IO = "io"
    BACKEND_UNAVAILABLE = "backend_unavailable"


class BodyExportError(Exception):
    """Base class for all errors raised by this package."""

    kind: ErrorKind = ErrorKind.IO


class InvalidInputError(BodyExportError, ValueError):
    """Input values for which the requested quantity is undefined."""

    kind = ErrorKind.INVALID_INPUT


class ExportIOError(BodyExportError, OSError):
    """Stream not open, or a write/flush did not complete."""

    kind = ErrorKind.IO


class BackendUnavailableError(BodyExportError, RuntimeError):
    """The body-tracking SDK binding could not be loaded."""

    kind = ErrorKind.BACKEND_UNAVAILABLE


@dataclass(frozen=True)
class ExportResult:
    """Outcome of one export attempt."""
    ok: bool
    rows_written: int = 0
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, rows_written: int) -> "ExportResult":
        return cls(ok=True, rows_written=int(rows_written))

    @classmethod
    def failure(cls, exc: BaseException) -> "ExportResult":
        kind = getattr(exc, "kind", None)
        if not isinstance(kind, ErrorKind):
            kind = ErrorKind.IO if isinstance(exc, OSError) else ErrorKind.INVALID_INPUT
        return cls(ok=False, rows_written=0, error_kind=kind, message=str(exc))

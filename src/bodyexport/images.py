"""Color image persistence for the capture loop.

Frames are written as JPEG files named ``color_<timestamp>_<frame:06d>.jpg``.
Writes are serialized on a lock that can be shared with the CSV export
stream, so image and row writes never overlap.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

import cv2
import numpy as np

from .errors import ExportIOError, InvalidInputError


class ColorImageSaver:
    """Save every Nth color frame into a folder."""

    def __init__(
        self,
        folder: str | os.PathLike,
        lock: threading.Lock | None = None,
        every_n: int = 1,
        quality: int = 95,
    ):
        if int(every_n) <= 0:
            raise ValueError("every_n must be > 0")
        if not (0 <= int(quality) <= 100):
            raise ValueError("quality must be in [0, 100]")
        self.folder = Path(folder)
        self.every_n = int(every_n)
        self.quality = int(quality)
        self._lock = lock if lock is not None else threading.Lock()
        self._saved_count = 0

    @property
    def saved_count(self) -> int:
        return self._saved_count

    def should_save(self, frame_count: int) -> bool:
        return int(frame_count) % self.every_n == 0

    def ensure_folder(self) -> Path:
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExportIOError(f"Failed to create directory: {self.folder}: {e}") from e
        if not self.folder.is_dir():
            raise ExportIOError(f"Not a directory: {self.folder}")
        return self.folder

    def filename_for(self, timestamp: int, frame_count: int) -> Path:
        return self.folder / f"color_{int(timestamp)}_{int(frame_count):06d}.jpg"

    def save(self, image: np.ndarray | None, timestamp: int, frame_count: int) -> Path:
        """
        Encode ``image`` (HxW or HxWx3/4, uint8) as JPEG and write it.

        Raises:
            InvalidInputError: No image, or an empty/unsupported array
            ExportIOError: Directory creation, encoding or writing failed
        """
        if image is None:
            raise InvalidInputError("Invalid color image")
        arr = np.asarray(image)
        if arr.size == 0 or arr.ndim not in (2, 3):
            raise InvalidInputError(f"Invalid color image shape: {arr.shape}")
        if arr.ndim == 3 and arr.shape[2] not in (1, 3, 4):
            raise InvalidInputError(f"Unsupported color image channel count: {arr.shape[2]}")
        if arr.ndim == 3 and arr.shape[2] == 4:
            # BGRA buffers from the sensor; JPEG carries no alpha
            arr = cv2.cvtColor(arr, cv2.COLOR_BGRA2BGR)
        if arr.dtype != np.uint8:
            arr = np.clip(arr, 0, 255).astype(np.uint8)

        self.ensure_folder()
        path = self.filename_for(timestamp, frame_count)

        try:
            ok, encoded = cv2.imencode(".jpg", arr, [int(cv2.IMWRITE_JPEG_QUALITY), self.quality])
        except cv2.error as e:
            raise ExportIOError(f"Failed to encode color image for frame {frame_count}: {e}") from e
        if not ok:
            raise ExportIOError(f"Failed to encode color image for frame {frame_count}")

        with self._lock:
            try:
                with open(path, "wb") as f:
                    f.write(encoded.tobytes())
            except OSError as e:
                raise ExportIOError(f"Failed to write color image data: {path}: {e}") from e
            self._saved_count += 1
        return path

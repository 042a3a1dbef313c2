"""Frame sources feeding the recorder.

``SyntheticBodySource`` produces deterministic skeletons so the export path
can be exercised without a sensor. ``AzureKinectSource`` wraps the vendor
body-tracking binding, which is loaded only when the source starts.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Protocol

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from .errors import BackendUnavailableError
from .joints import Body, ConfidenceLevel, Frame, JointId, JOINT_COUNT


class BodyFrameSource(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def next_frame(self) -> Frame | None: ...


# Standing pose in millimeters, body-local: x to the body's left, y up, z backwards
_TEMPLATE_MM: dict[JointId, tuple[float, float, float]] = {
    JointId.PELVIS: (0.0, 0.0, 0.0),
    JointId.SPINE_NAVEL: (0.0, 200.0, 0.0),
    JointId.SPINE_CHEST: (0.0, 380.0, 0.0),
    JointId.NECK: (0.0, 500.0, 0.0),
    JointId.CLAVICLE_LEFT: (40.0, 470.0, 0.0),
    JointId.SHOULDER_LEFT: (170.0, 450.0, 0.0),
    JointId.ELBOW_LEFT: (170.0, 170.0, 0.0),
    JointId.WRIST_LEFT: (170.0, -80.0, 0.0),
    JointId.HAND_LEFT: (170.0, -150.0, 0.0),
    JointId.HANDTIP_LEFT: (170.0, -220.0, 0.0),
    JointId.THUMB_LEFT: (150.0, -170.0, -30.0),
    JointId.CLAVICLE_RIGHT: (-40.0, 470.0, 0.0),
    JointId.SHOULDER_RIGHT: (-170.0, 450.0, 0.0),
    JointId.ELBOW_RIGHT: (-170.0, 170.0, 0.0),
    JointId.WRIST_RIGHT: (-170.0, -80.0, 0.0),
    JointId.HAND_RIGHT: (-170.0, -150.0, 0.0),
    JointId.HANDTIP_RIGHT: (-170.0, -220.0, 0.0),
    JointId.THUMB_RIGHT: (-150.0, -170.0, -30.0),
    JointId.HIP_LEFT: (90.0, -20.0, 0.0),
    JointId.KNEE_LEFT: (95.0, -450.0, 0.0),
    JointId.ANKLE_LEFT: (95.0, -860.0, 0.0),
    JointId.FOOT_LEFT: (95.0, -920.0, -120.0),
    JointId.HIP_RIGHT: (-90.0, -20.0, 0.0),
    JointId.KNEE_RIGHT: (-95.0, -450.0, 0.0),
    JointId.ANKLE_RIGHT: (-95.0, -860.0, 0.0),
    JointId.FOOT_RIGHT: (-95.0, -920.0, -120.0),
    JointId.HEAD: (0.0, 620.0, 0.0),
    JointId.NOSE: (0.0, 650.0, -90.0),
    JointId.EYE_LEFT: (30.0, 680.0, -80.0),
    JointId.EAR_LEFT: (70.0, 660.0, 0.0),
    JointId.EYE_RIGHT: (-30.0, 680.0, -80.0),
    JointId.EAR_RIGHT: (-70.0, 660.0, 0.0),
}

_RIGHT_FOREARM = (
    JointId.ELBOW_RIGHT,
    JointId.WRIST_RIGHT,
    JointId.HAND_RIGHT,
    JointId.HANDTIP_RIGHT,
    JointId.THUMB_RIGHT,
)

_LOW_CONFIDENCE = {JointId.HANDTIP_LEFT, JointId.HANDTIP_RIGHT, JointId.THUMB_LEFT, JointId.THUMB_RIGHT}


def template_positions() -> np.ndarray:
    return np.array([_TEMPLATE_MM[j] for j in JointId], dtype=np.float64)


@dataclass(frozen=True)
class SyntheticSourceConfig:
    num_bodies: int = 1
    frames: int = 300
    fps: float = 30.0
    seed: int = 0
    noise_mm: float = 0.0
    swing_amplitude_deg: float = 40.0
    swing_hz: float = 0.5
    with_color: bool = False
    width: int = 640
    height: int = 360


class SyntheticBodySource:
    """Deterministic multi-body skeleton stream with a swinging right arm."""

    def __init__(self, config: SyntheticSourceConfig | None = None):
        self._config = config if config is not None else SyntheticSourceConfig()
        cfg = self._config
        if cfg.num_bodies < 0:
            raise ValueError("num_bodies must be >= 0")
        if cfg.frames <= 0:
            raise ValueError("frames must be > 0")
        if cfg.fps <= 0.0:
            raise ValueError("fps must be > 0")
        if cfg.noise_mm < 0.0:
            raise ValueError("noise_mm must be >= 0")

        self._rng = np.random.default_rng(int(cfg.seed))
        self._dt_us = int(round(1_000_000.0 / cfg.fps))
        self._frame_index = 0
        self._running = False
        self._template = template_positions()
        self._yaw_offsets = self._rng.uniform(-0.3, 0.3, size=max(cfg.num_bodies, 1))

    @property
    def config(self) -> SyntheticSourceConfig:
        return self._config

    @property
    def frame_index(self) -> int:
        return self._frame_index

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False

    def swing_deg(self, frame_index: int) -> float:
        t_sec = float(frame_index) / self._config.fps
        cfg = self._config
        return float(cfg.swing_amplitude_deg * np.sin(2.0 * np.pi * cfg.swing_hz * t_sec)) + 10.0

    def body_positions(self, body_index: int, frame_index: int) -> np.ndarray:
        pts = self._template.copy()

        shoulder = pts[int(JointId.SHOULDER_RIGHT)]
        arm = Rotation.from_euler("x", self.swing_deg(frame_index), degrees=True)
        idx = [int(j) for j in _RIGHT_FOREARM]
        pts[idx] = arm.apply(pts[idx] - shoulder) + shoulder

        yaw = float(self._yaw_offsets[body_index]) + 0.1 * float(frame_index) / self._config.fps
        pts = Rotation.from_euler("y", yaw).apply(pts)
        pts += np.array([800.0 * body_index - 400.0 * (self._config.num_bodies - 1), 0.0, 2500.0])

        if self._config.noise_mm > 0.0:
            pts += self._rng.normal(0.0, self._config.noise_mm, size=pts.shape)
        return pts

    def _render_color(self, frame_index: int, bodies: list[Body]) -> np.ndarray:
        cfg = self._config
        image = np.full((cfg.height, cfg.width, 3), 40, dtype=np.uint8)
        scale = cfg.height / 2400.0
        for body in bodies:
            for x, y, _ in body.positions_array():
                u = int(cfg.width / 2 + x * scale)
                v = int(cfg.height / 2 - y * scale)
                if 0 <= u < cfg.width and 0 <= v < cfg.height:
                    _ = cv2.circle(image, (u, v), 3, (0, 200, 255), thickness=-1)
        _ = cv2.putText(image, f"{frame_index:06d}", (10, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1)
        return image

    def next_frame(self) -> Frame | None:
        cfg = self._config
        if self._frame_index >= cfg.frames:
            return None

        frame_index = self._frame_index
        confidences = [
            ConfidenceLevel.LOW if j in _LOW_CONFIDENCE else ConfidenceLevel.HIGH
            for j in JointId
        ]
        bodies = [
            Body.from_arrays(body_id=b + 1, positions=self.body_positions(b, frame_index), confidences=confidences)
            for b in range(cfg.num_bodies)
        ]
        color = self._render_color(frame_index, bodies) if cfg.with_color else None

        self._frame_index += 1
        return Frame(
            timestamp=frame_index * self._dt_us,
            bodies=tuple(bodies),
            frame_index=frame_index,
            color_image=color,
        )


# CLI names of the sensor settings mapped to binding constants
K4A_DEPTH_MODES = {
    "NFOV_UNBINNED": "K4A_DEPTH_MODE_NFOV_UNBINNED",
    "WFOV_BINNED": "K4A_DEPTH_MODE_WFOV_2X2BINNED",
}
K4A_PROCESSING_MODES = {
    "CPU": "K4ABT_TRACKER_PROCESSING_MODE_CPU",
    "CUDA": "K4ABT_TRACKER_PROCESSING_MODE_GPU_CUDA",
    "TENSORRT": "K4ABT_TRACKER_PROCESSING_MODE_GPU_TENSORRT",
}
K4A_CAMERA_FPS = {
    5: "K4A_FRAMES_PER_SECOND_5",
    15: "K4A_FRAMES_PER_SECOND_15",
    30: "K4A_FRAMES_PER_SECOND_30",
}


class AzureKinectSource:
    """Live device or recording playback through the ``pykinect_azure`` binding."""

    def __init__(
        self,
        offline_path: str | None = None,
        track_color: bool = False,
        depth_mode: str = "NFOV_UNBINNED",
        processing_mode: str = "CUDA",
        camera_fps: int = 30,
        model_path: str | None = None,
    ):
        if depth_mode not in K4A_DEPTH_MODES:
            raise ValueError(f"depth_mode must be one of {sorted(K4A_DEPTH_MODES)}")
        if processing_mode not in K4A_PROCESSING_MODES:
            raise ValueError(f"processing_mode must be one of {sorted(K4A_PROCESSING_MODES)}")
        if camera_fps not in K4A_CAMERA_FPS:
            raise ValueError(f"camera_fps must be one of {sorted(K4A_CAMERA_FPS)}")
        self._offline_path = offline_path
        self._track_color = bool(track_color)
        self.depth_mode = depth_mode
        self.processing_mode = processing_mode
        self.camera_fps = int(camera_fps)
        self.model_path = model_path
        self._device: Any = None
        self._tracker: Any = None
        self._frame_index = 0

    def _start_tracker(self, sdk: Any, calibration: Any = None) -> Any:
        tracker_config = getattr(sdk, "default_tracker_configuration", None)
        if tracker_config is not None:
            tracker_config.processing_mode = getattr(sdk, K4A_PROCESSING_MODES[self.processing_mode])
        kwargs: dict[str, Any] = {}
        if calibration is not None:
            kwargs["calibration"] = calibration
        if self.model_path:
            kwargs["model_type"] = self.model_path
        return sdk.start_body_tracker(**kwargs)

    def start(self) -> None:
        try:
            sdk: Any = importlib.import_module("pykinect_azure")
        except Exception as exc:
            raise BackendUnavailableError(f"pykinect_azure_import_failed: {exc}") from exc

        try:
            sdk.initialize_libraries(track_body=True)
            if self._offline_path:
                device = sdk.start_playback(self._offline_path)
                tracker = self._start_tracker(sdk, calibration=device.calibration)
            else:
                config = sdk.default_configuration
                config.depth_mode = getattr(sdk, K4A_DEPTH_MODES[self.depth_mode])
                config.camera_fps = getattr(sdk, K4A_CAMERA_FPS[self.camera_fps])
                if not self._track_color:
                    config.color_resolution = sdk.K4A_COLOR_RESOLUTION_OFF
                device = sdk.start_device(config=config)
                tracker = self._start_tracker(sdk)
        except Exception as exc:
            raise BackendUnavailableError(f"k4a_start_failed: {exc}") from exc

        self._device = device
        self._tracker = tracker
        self._frame_index = 0

    def stop(self) -> None:
        if self._device is not None and hasattr(self._device, "close"):
            self._device.close()
        self._device = None
        self._tracker = None

    def next_frame(self) -> Frame | None:
        if self._device is None or self._tracker is None:
            raise BackendUnavailableError("k4a source not started")

        if self._offline_path:
            ret, capture = self._device.update()
            if not ret:
                return None
            body_frame = self._tracker.update(capture=capture)
        else:
            capture = self._device.update()
            body_frame = self._tracker.update()

        bodies: list[Body] = []
        for i in range(int(body_frame.get_num_bodies())):
            skeleton = body_frame.get_body_skeleton(i)
            positions = np.empty((JOINT_COUNT, 3), dtype=np.float64)
            confidences: list[int] = []
            for j in range(JOINT_COUNT):
                joint = skeleton.joints[j]
                xyz = joint.position.xyz
                positions[j] = (xyz.x, xyz.y, xyz.z)
                confidences.append(int(joint.confidence_level))
            bodies.append(Body.from_arrays(int(body_frame.get_body_id(i)), positions, confidences))

        color = None
        if self._track_color:
            ok, image = capture.get_color_image()
            color = image if ok else None

        # Timestamp is stamped by the recorder when the body frame is popped
        frame = Frame(timestamp=0, bodies=tuple(bodies), frame_index=self._frame_index, color_image=color)
        self._frame_index += 1
        return frame

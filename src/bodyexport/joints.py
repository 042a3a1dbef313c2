"""
Skeleton record definitions for body tracking results.

Provides:
- The canonical, ordered joint enumeration (32 joints)
- Joint confidence grades
- Immutable Joint / Body records and the per-frame container
- CSV column naming derived from the joint order
"""

from enum import IntEnum
from typing import Optional, List, Tuple, Sequence, Iterable
from dataclasses import dataclass, field

import numpy as np

from .errors import InvalidInputError


class ConfidenceLevel(IntEnum):
    """Ordered quality grade of a tracked joint position."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class JointId(IntEnum):
    """Skeletal joints in canonical order. Column order follows this order."""
    PELVIS = 0
    SPINE_NAVEL = 1
    SPINE_CHEST = 2
    NECK = 3
    CLAVICLE_LEFT = 4
    SHOULDER_LEFT = 5
    ELBOW_LEFT = 6
    WRIST_LEFT = 7
    HAND_LEFT = 8
    HANDTIP_LEFT = 9
    THUMB_LEFT = 10
    CLAVICLE_RIGHT = 11
    SHOULDER_RIGHT = 12
    ELBOW_RIGHT = 13
    WRIST_RIGHT = 14
    HAND_RIGHT = 15
    HANDTIP_RIGHT = 16
    THUMB_RIGHT = 17
    HIP_LEFT = 18
    KNEE_LEFT = 19
    ANKLE_LEFT = 20
    FOOT_LEFT = 21
    HIP_RIGHT = 22
    KNEE_RIGHT = 23
    ANKLE_RIGHT = 24
    FOOT_RIGHT = 25
    HEAD = 26
    NOSE = 27
    EYE_LEFT = 28
    EAR_LEFT = 29
    EYE_RIGHT = 30
    EAR_RIGHT = 31


JOINT_COUNT = len(JointId)

# Per-joint column suffixes, in write order
JOINT_FIELD_SUFFIXES = ("_X", "_Y", "_Z", "_CONFIDENCE")
FIELDS_PER_JOINT = len(JOINT_FIELD_SUFFIXES)

BODY_ID_COLUMN = "BodyID"
TIME_LABELS = ("Time", "FrameCount")
ANGLE_COLUMN = "ANGLE"


def joint_columns() -> List[str]:
    """Column names for all joints, four per joint, in canonical order."""
    return [
        f"{joint.name}{suffix}"
        for joint in JointId
        for suffix in JOINT_FIELD_SUFFIXES
    ]


@dataclass(frozen=True)
class Joint:
    """A single joint: 3D position (millimeters in sensor space) and confidence."""
    position: Tuple[float, float, float]
    confidence: ConfidenceLevel = ConfidenceLevel.NONE

    def __post_init__(self):
        pos = tuple(float(v) for v in self.position)
        if len(pos) != 3:
            raise InvalidInputError(f"joint position must have 3 coordinates, got {len(pos)}")
        object.__setattr__(self, "position", pos)
        object.__setattr__(self, "confidence", ConfidenceLevel(int(self.confidence)))

    @property
    def x(self) -> float:
        return self.position[0]

    @property
    def y(self) -> float:
        return self.position[1]

    @property
    def z(self) -> float:
        return self.position[2]

    def as_array(self) -> np.ndarray:
        return np.asarray(self.position, dtype=np.float64)


@dataclass(frozen=True)
class Body:
    """
    One tracked skeleton.

    ``joints`` holds exactly one Joint per JointId, indexed by the id value.
    """
    body_id: int
    joints: Tuple[Joint, ...]

    def __post_init__(self):
        joints = tuple(self.joints)
        if len(joints) != JOINT_COUNT:
            raise InvalidInputError(
                f"body {self.body_id} has {len(joints)} joints, expected {JOINT_COUNT}"
            )
        for j in joints:
            if not isinstance(j, Joint):
                raise InvalidInputError(f"body {self.body_id} contains a non-Joint entry: {j!r}")
        object.__setattr__(self, "body_id", int(self.body_id))
        object.__setattr__(self, "joints", joints)

    def joint(self, joint_id: JointId) -> Joint:
        return self.joints[int(joint_id)]

    def position(self, joint_id: JointId) -> np.ndarray:
        return self.joints[int(joint_id)].as_array()

    def confidence(self, joint_id: JointId) -> ConfidenceLevel:
        return self.joints[int(joint_id)].confidence

    def positions_array(self) -> np.ndarray:
        """All joint positions as a (JOINT_COUNT, 3) array."""
        return np.array([j.position for j in self.joints], dtype=np.float64)

    @classmethod
    def from_arrays(
        cls,
        body_id: int,
        positions: Sequence[Sequence[float]],
        confidences: Optional[Iterable[int]] = None
    ) -> "Body":
        """
        Build a body from a (JOINT_COUNT, 3) position array.

        Args:
            body_id: Tracker-assigned body identifier
            positions: Joint positions in canonical joint order
            confidences: Per-joint confidence grades (default: all HIGH)

        Returns:
            Body instance
        """
        pts = np.asarray(positions, dtype=np.float64)
        if pts.shape != (JOINT_COUNT, 3):
            raise InvalidInputError(
                f"positions must be shape ({JOINT_COUNT}, 3), got {pts.shape}"
            )
        if confidences is None:
            conf = [ConfidenceLevel.HIGH] * JOINT_COUNT
        else:
            conf = [ConfidenceLevel(int(c)) for c in confidences]
            if len(conf) != JOINT_COUNT:
                raise InvalidInputError(
                    f"confidences must have {JOINT_COUNT} entries, got {len(conf)}"
                )
        joints = tuple(
            Joint(position=(float(p[0]), float(p[1]), float(p[2])), confidence=c)
            for p, c in zip(pts, conf)
        )
        return cls(body_id=body_id, joints=joints)


@dataclass
class Frame:
    """Bodies observed at one instant, plus the optional color image of that capture."""
    timestamp: int  # microseconds, or a logical frame counter
    bodies: Tuple[Body, ...] = field(default_factory=tuple)
    frame_index: int = 0
    color_image: Optional[np.ndarray] = None

    @property
    def body_count(self) -> int:
        return len(self.bodies)

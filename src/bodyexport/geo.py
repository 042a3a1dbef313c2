"""
Geometry module for plane-projected joint angles.

Provides functionality to:
- Compute the unit normal and offset of a plane through three points
- Project points orthogonally onto a plane
- Compute a signed angle at a vertex, oriented by a plane normal
- Derive the arm angle of a tracked body in its torso plane

All functions are pure and safe to call from multiple threads.
"""

from typing import Optional

import numpy as np
from numpy.typing import ArrayLike

from .errors import InvalidInputError
from .joints import Body, JointId, ConfidenceLevel


EPSILON = 1e-10

# Plane through these joints; angle measured at the middle joint of ARM_ANGLE_TRIPLE
TORSO_PLANE_JOINTS = (JointId.PELVIS, JointId.NECK, JointId.NOSE)
ARM_ANGLE_TRIPLE = (JointId.PELVIS, JointId.SHOULDER_RIGHT, JointId.ELBOW_RIGHT)


def _vec3(p: ArrayLike) -> np.ndarray:
    v = np.asarray(p, dtype=np.float64).reshape(-1)
    if v.shape != (3,):
        raise InvalidInputError(f"expected a 3D point, got shape {np.shape(p)}")
    return v


def normal_vector(p1: ArrayLike, p2: ArrayLike, p3: ArrayLike) -> np.ndarray:
    """
    Unit normal of the plane through three points.

    Computed as the normalized cross product of (p1 - p2) and (p3 - p2).
    Collinear or coincident points give a zero cross product, which is
    returned as-is (the zero vector).
    """
    a, b, c = _vec3(p1), _vec3(p2), _vec3(p3)
    n = np.cross(a - b, c - b)
    length = float(np.linalg.norm(n))
    if length > 0.0:
        n = n / length
    return n


def plane_offset(point: ArrayLike, normal: ArrayLike) -> float:
    """D coefficient of a*x + b*y + c*z + D = 0 for a plane containing ``point``."""
    return float(-np.dot(_vec3(normal), _vec3(point)))


def project_onto_plane(point: ArrayLike, normal: ArrayLike, d: float) -> np.ndarray:
    """Orthogonal projection of ``point`` onto the plane (normal, d)."""
    p = _vec3(point)
    n = _vec3(normal)
    distance = float(np.dot(n, p)) + float(d)
    return p - distance * n


def signed_angle(p1: ArrayLike, p2: ArrayLike, p3: ArrayLike, normal: ArrayLike) -> float:
    """
    Angle at vertex p2 between the rays to p1 and p3, in degrees.

    The sign is positive when cross(p1 - p2, p3 - p2) points along ``normal``
    and negative otherwise, so the result lies in (-180, 180].

    Args:
        p1: First endpoint
        p2: Vertex
        p3: Second endpoint
        normal: Orientation reference for the sign

    Returns:
        Signed angle in degrees

    Raises:
        InvalidInputError: If either endpoint is within EPSILON of the vertex
    """
    a, b, c = _vec3(p1), _vec3(p2), _vec3(p3)
    n = _vec3(normal)

    v1 = a - b
    v2 = c - b
    v1_len = float(np.linalg.norm(v1))
    v2_len = float(np.linalg.norm(v2))
    if v1_len < EPSILON or v2_len < EPSILON:
        raise InvalidInputError("Points are too close or identical")

    cos = float(np.dot(v1, v2)) / (v1_len * v2_len)
    cos = float(np.clip(cos, -1.0, 1.0))
    angle_deg = float(np.degrees(np.arccos(cos)))

    if float(np.dot(np.cross(v1, v2), n)) > 0.0:
        return angle_deg
    # A straight angle keeps its positive sign so the range stays (-180, 180]
    if angle_deg == 180.0:
        return angle_deg
    return -angle_deg


def projected_signed_angle(
    p1: ArrayLike,
    p2: ArrayLike,
    p3: ArrayLike,
    s1: ArrayLike,
    s2: ArrayLike,
    s3: ArrayLike
) -> float:
    """
    Signed angle s1-s2-s3 measured in the plane through p1, p2, p3.

    The three measured points are projected onto the plane first, so the
    result is stable even when they are not coplanar with it.
    """
    normal = normal_vector(p1, p2, p3)
    d = plane_offset(p1, normal)
    ps1 = project_onto_plane(s1, normal, d)
    ps2 = project_onto_plane(s2, normal, d)
    ps3 = project_onto_plane(s3, normal, d)
    return signed_angle(ps1, ps2, ps3, normal)


def body_angle(body: Body, min_confidence: Optional[ConfidenceLevel] = None) -> Optional[float]:
    """
    Right-arm angle of a body, measured in its pelvis/neck/nose plane.

    Args:
        body: Tracked body
        min_confidence: If set, return None when any of the five joints
            used is graded below this level

    Returns:
        Signed angle in degrees, or None when gated out by confidence

    Raises:
        InvalidInputError: If the projected shoulder coincides with the
            projected pelvis or elbow
    """
    if min_confidence is not None:
        for joint_id in set(TORSO_PLANE_JOINTS + ARM_ANGLE_TRIPLE):
            if body.confidence(joint_id) < min_confidence:
                return None

    plane = [body.position(j) for j in TORSO_PLANE_JOINTS]
    triple = [body.position(j) for j in ARM_ANGLE_TRIPLE]
    return projected_signed_angle(*plane, *triple)

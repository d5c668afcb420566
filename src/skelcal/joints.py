"""
Skeleton joint data shared by capture, recording, replay and calibration.

Provides:
- JointType: the fixed set of joints tracked per skeleton
- Skeleton/Joint: live snapshot handed over by a capture station
- SkelFrame: immutable per-frame, per-skeleton, per-camera record
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, List, NamedTuple, Sequence, Tuple

import numpy as np

# Lowest finite float32. A legal position value, but a joint tracked at these
# coordinates is distorted anyway.
UNTRACKED_POSITION_VALUE = float(np.finfo(np.float32).min)


class JointType(IntEnum):
    """Joint ids as assigned by the depth sensor SDK."""
    HIP_CENTER = 0
    SPINE = 1
    SHOULDER_CENTER = 2
    HEAD = 3
    SHOULDER_LEFT = 4
    ELBOW_LEFT = 5
    WRIST_LEFT = 6
    HAND_LEFT = 7
    SHOULDER_RIGHT = 8
    ELBOW_RIGHT = 9
    WRIST_RIGHT = 10
    HAND_RIGHT = 11
    HIP_LEFT = 12
    KNEE_LEFT = 13
    ANKLE_LEFT = 14
    FOOT_LEFT = 15
    HIP_RIGHT = 16
    KNEE_RIGHT = 17
    ANKLE_RIGHT = 18
    FOOT_RIGHT = 19


NUM_JOINTS = len(JointType)
VALUES_PER_JOINT = 3
VECTOR_SIZE = NUM_JOINTS * VALUES_PER_JOINT


class JointTrackingState(IntEnum):
    NOT_TRACKED = 0
    INFERRED = 1
    TRACKED = 2


class SkeletonTrackingState(IntEnum):
    NOT_TRACKED = 0
    POSITION_ONLY = 1
    TRACKED = 2


class SkeletonPoint(NamedTuple):
    """Position of a joint in camera space (meters)."""
    x: float
    y: float
    z: float

    @property
    def is_untracked(self) -> bool:
        return (
            self.x == UNTRACKED_POSITION_VALUE
            and self.y == UNTRACKED_POSITION_VALUE
            and self.z == UNTRACKED_POSITION_VALUE
        )


UNTRACKED_POINT = SkeletonPoint(
    UNTRACKED_POSITION_VALUE, UNTRACKED_POSITION_VALUE, UNTRACKED_POSITION_VALUE
)


@dataclass
class Joint:
    """A single joint of a live skeleton snapshot."""
    joint_type: JointType
    position: SkeletonPoint
    tracking_state: JointTrackingState = JointTrackingState.TRACKED

    @property
    def has_position(self) -> bool:
        return self.tracking_state in (JointTrackingState.TRACKED, JointTrackingState.INFERRED)


@dataclass
class Skeleton:
    """Live skeleton snapshot as reported by a capture station."""
    tracking_id: int
    tracking_state: SkeletonTrackingState
    joints: List[Joint] = field(default_factory=list)


@dataclass(frozen=True)
class SkelFrame:
    """
    One tracked skeleton, seen by one camera, at one frame.

    Attributes:
        camera_id: Camera that tracked the skeleton
        skeleton_id: Tracking id assigned by that camera. Different cameras
            may assign different ids to the same real skeleton.
        frame_offset: Milliseconds since the start of the recording session
        joints: One SkeletonPoint per JointType, in JointType order
    """
    camera_id: int
    skeleton_id: int
    frame_offset: int
    joints: Tuple[SkeletonPoint, ...]

    def __post_init__(self) -> None:
        if len(self.joints) != NUM_JOINTS:
            raise ValueError(f"Expected {NUM_JOINTS} joints, got {len(self.joints)}")
        if not 0 <= self.frame_offset <= 0xFFFFFFFF:
            raise ValueError(f"frame_offset out of uint32 range: {self.frame_offset}")

    @classmethod
    def from_points(
        cls,
        camera_id: int,
        skeleton_id: int,
        frame_offset: int,
        points: Iterable[Sequence[float]],
    ) -> "SkelFrame":
        joints = tuple(SkeletonPoint(float(p[0]), float(p[1]), float(p[2])) for p in points)
        return cls(camera_id, skeleton_id, frame_offset, joints)

    @classmethod
    def from_array(
        cls,
        camera_id: int,
        skeleton_id: int,
        frame_offset: int,
        values: Sequence[float],
    ) -> "SkelFrame":
        """Build a frame from a flat [x0, y0, z0, x1, ...] vector."""
        arr = np.asarray(values, dtype=np.float64).reshape(-1)
        if arr.shape[0] != VECTOR_SIZE:
            raise ValueError(f"Expected {VECTOR_SIZE} values, got {arr.shape[0]}")
        return cls.from_points(camera_id, skeleton_id, frame_offset, arr.reshape(NUM_JOINTS, 3))

    def to_array(self) -> np.ndarray:
        """Flatten joints to a row-major float32 vector of 3 values per joint."""
        return np.asarray(self.joints, dtype=np.float32).reshape(-1)

    def joint(self, joint_type: JointType) -> SkeletonPoint:
        return self.joints[int(joint_type)]

    def untracked_joints(self) -> List[JointType]:
        return [JointType(i) for i, p in enumerate(self.joints) if p.is_untracked]

    @property
    def is_fully_tracked(self) -> bool:
        return not any(p.is_untracked for p in self.joints)

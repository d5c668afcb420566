"""
Binary on-disk format for per-camera skeleton logs.

Layout (little-endian, fixed width):

    int32   camera_id                       header, once
    repeated:
        int32   skeleton_tracking_id
        uint32  frame_offset_ms
        NUM_JOINTS times:
            uint8   joint_type
            float32 x, y, z

Log files are named after the session start time and the camera id,
e.g. "14_03_27_512_cam1.rec".
"""

from __future__ import annotations

import logging
import re
import struct
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Union

from .errors import FatalIOError
from .joints import NUM_JOINTS, SkelFrame, SkeletonPoint

logger = logging.getLogger(__name__)

REC_FILE_PREFIX = "_cam"
REC_FILE_SUFFIX = ".rec"

HEADER = struct.Struct("<i")
RECORD_HEADER = struct.Struct("<iI")
JOINT = struct.Struct("<Bfff")
RECORD_SIZE = RECORD_HEADER.size + NUM_JOINTS * JOINT.size

_FILENAME_RE = re.compile(r"^(\d{2}_\d{2}_\d{2}_\d{3})_cam(\d+)\.rec$")

SessionId = Union[datetime, str]


def session_label(session: SessionId) -> str:
    """Format a session start time as HH_mm_ss_fff (labels pass through)."""
    if isinstance(session, datetime):
        return session.strftime("%H_%M_%S_") + f"{session.microsecond // 1000:03d}"
    return str(session)


def camera_filename(session: SessionId, camera_id: int) -> str:
    return f"{session_label(session)}{REC_FILE_PREFIX}{camera_id}{REC_FILE_SUFFIX}"


def encode_header(camera_id: int) -> bytes:
    return HEADER.pack(camera_id)


def encode_frame(frame: SkelFrame) -> bytes:
    parts = [RECORD_HEADER.pack(frame.skeleton_id, frame.frame_offset)]
    for joint_type, point in enumerate(frame.joints):
        parts.append(JOINT.pack(joint_type, point.x, point.y, point.z))
    return b"".join(parts)


def decode_frame(buf: bytes, offset: int, camera_id: int) -> SkelFrame:
    """Decode one record starting at offset. Joints are placed by their stored type."""
    skeleton_id, frame_offset = RECORD_HEADER.unpack_from(buf, offset)
    offset += RECORD_HEADER.size
    points: List[Optional[SkeletonPoint]] = [None] * NUM_JOINTS
    for _ in range(NUM_JOINTS):
        joint_type, x, y, z = JOINT.unpack_from(buf, offset)
        offset += JOINT.size
        if joint_type >= NUM_JOINTS:
            raise ValueError(f"Invalid joint type {joint_type}")
        points[joint_type] = SkeletonPoint(x, y, z)
    if any(p is None for p in points):
        raise ValueError("Record does not contain every joint type")
    return SkelFrame(camera_id, skeleton_id, frame_offset, tuple(points))


def write_header(fp: BinaryIO, camera_id: int) -> None:
    fp.write(encode_header(camera_id))


def write_frame(fp: BinaryIO, frame: SkelFrame) -> None:
    fp.write(encode_frame(frame))


def read_camera_log(path: Union[str, Path], expected_camera_id: Optional[int] = None) -> List[SkelFrame]:
    """
    Load an entire camera log into memory.

    Args:
        path: Log file path
        expected_camera_id: If given, the header must store this camera id

    Returns:
        Frames in file (chronological) order

    Raises:
        FatalIOError: Missing or unreadable file, truncated record, invalid
            joint type, or header camera id mismatch
    """
    path = Path(path)
    logger.info("Loading camera file %s", path)
    try:
        buf = path.read_bytes()
    except FileNotFoundError as e:
        raise FatalIOError(f"Camera file {path} not found") from e
    except OSError as e:
        raise FatalIOError(f"IO error while opening camera file {path}: {e}") from e

    if len(buf) < HEADER.size:
        raise FatalIOError(f"Camera file {path} is missing its header")

    (camera_id,) = HEADER.unpack_from(buf, 0)
    if expected_camera_id is not None and camera_id != expected_camera_id:
        raise FatalIOError(
            f"Camera file #{expected_camera_id} contains an illegal header: {camera_id}"
        )

    body = len(buf) - HEADER.size
    if body % RECORD_SIZE != 0:
        raise FatalIOError(
            f"Camera file {path} is truncated ({body % RECORD_SIZE} trailing bytes)"
        )

    frames: List[SkelFrame] = []
    offset = HEADER.size
    try:
        while offset < len(buf):
            frames.append(decode_frame(buf, offset, camera_id))
            offset += RECORD_SIZE
    except (struct.error, ValueError) as e:
        raise FatalIOError(f"Corrupt record at byte {offset} of {path}: {e}") from e

    logger.info("Loaded %d frames for camera %d", len(frames), camera_id)
    return frames


def validate_log_integrity(path: Union[str, Path], expected_camera_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Validate a camera log for integrity and consistency.

    Returns:
        Validation result dictionary with valid/errors/warnings/stats
    """
    result: Dict[str, Any] = {
        "valid": True,
        "errors": [],
        "warnings": [],
        "stats": {},
    }

    try:
        frames = read_camera_log(path, expected_camera_id)
    except FatalIOError as e:
        result["valid"] = False
        result["errors"].append(str(e))
        return result

    regressions = sum(
        1 for prev, cur in zip(frames, frames[1:]) if cur.frame_offset < prev.frame_offset
    )
    if regressions:
        result["valid"] = False
        result["errors"].append(f"{regressions} frame offset(s) go back in time")

    partial = sum(1 for f in frames if not f.is_fully_tracked)
    if partial:
        result["warnings"].append(f"{partial} frame(s) contain untracked joints")
    if not frames:
        result["warnings"].append("Log contains no frames")

    result["stats"] = {
        "camera_id": frames[0].camera_id if frames else expected_camera_id,
        "total_frames": len(frames),
        "skeleton_ids": sorted({f.skeleton_id for f in frames}),
        "duration_ms": (frames[-1].frame_offset - frames[0].frame_offset) if frames else 0,
        "frames_with_untracked_joints": partial,
    }
    return result


def list_session_files(log_dir: Union[str, Path] = ".") -> List[Dict[str, Any]]:
    """
    List recorded sessions found in a directory.

    Returns:
        One entry per session label, newest label first, with the camera ids
        and file paths that belong to it
    """
    log_path = Path(log_dir)
    if not log_path.exists():
        return []

    sessions: Dict[str, Dict[str, Any]] = {}
    for f in log_path.glob(f"*{REC_FILE_SUFFIX}"):
        match = _FILENAME_RE.match(f.name)
        if not match:
            continue
        label, camera_id = match.group(1), int(match.group(2))
        entry = sessions.setdefault(label, {"session": label, "cameras": {}, "size_bytes": 0})
        entry["cameras"][camera_id] = str(f)
        entry["size_bytes"] += f.stat().st_size

    return [
        {
            "session": s["session"],
            "camera_ids": sorted(s["cameras"]),
            "files": [s["cameras"][cid] for cid in sorted(s["cameras"])],
            "size_bytes": s["size_bytes"],
        }
        for s in sorted(sessions.values(), key=lambda s: s["session"], reverse=True)
    ]

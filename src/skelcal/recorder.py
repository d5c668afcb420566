"""
Recorder for skeleton frames captured by each camera.

Provides functionality to:
- Open one binary log per camera, named after the session start time
- Append tracked skeletons in real time (see logformat for the layout)
- Close and flush every camera log at the end of the session
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional

from . import logformat
from .errors import FatalIOError
from .joints import (
    NUM_JOINTS,
    UNTRACKED_POINT,
    SkelFrame,
    Skeleton,
    SkeletonPoint,
    SkeletonTrackingState,
)

logger = logging.getLogger(__name__)

MAX_FRAME_OFFSET_MS = 0xFFFFFFFF


class SkelRecorder:
    """
    Append-only per-camera skeleton recorder.

    Files are opened explicitly per camera and must be closed explicitly with
    close_files(); buffered data is not flushed if the recorder is abandoned.

    Usage:
        recorder = SkelRecorder(log_dir="./logs")
        recorder.create_file(0)
        recorder.record_skel_frame(skeleton, 0, datetime.now())
        recorder.close_files()
    """

    def __init__(self, log_dir: str = ".", session_timestamp: Optional[datetime] = None):
        """
        Initialize the recorder.

        Args:
            log_dir: Directory to store camera logs
            session_timestamp: Session start time, used for file names and as
                the baseline of every frame offset (default: now)
        """
        self.log_dir = Path(log_dir)
        self.session_timestamp = session_timestamp or datetime.now()

        self._camera_files: Dict[int, BinaryIO] = {}
        self._paths: Dict[int, Path] = {}
        self._frame_counts: Dict[int, int] = {}
        self._dropped_counts: Dict[int, int] = {}
        self._closed = False
        self._lock = threading.Lock()

    @property
    def session_label(self) -> str:
        return logformat.session_label(self.session_timestamp)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def has_file(self, camera_id: int) -> bool:
        return camera_id in self._camera_files

    def camera_path(self, camera_id: int) -> Path:
        return self.log_dir / logformat.camera_filename(self.session_timestamp, camera_id)

    def create_file(self, camera_id: int) -> str:
        """
        Create a new camera log and write its header.

        Returns:
            Path to the created log file

        Raises:
            FatalIOError: If the camera already has an open file or the file
                cannot be created
            RuntimeError: If the recorder has been closed
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Recorder has already been closed")
            if camera_id in self._camera_files:
                raise FatalIOError(f"SkelRecorder already has a file for camera #{camera_id}")

            path = self.camera_path(camera_id)
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                fp = open(path, "wb")
            except OSError as e:
                raise FatalIOError(f"IO error during creation of camera file {path}: {e}") from e

            try:
                logformat.write_header(fp, camera_id)
            except OSError as e:
                fp.close()
                raise FatalIOError(f"IO error while writing header of {path}: {e}") from e

            self._camera_files[camera_id] = fp
            self._paths[camera_id] = path
            self._frame_counts[camera_id] = 0
            self._dropped_counts[camera_id] = 0

        logger.info("Created camera file %s", path)
        return str(path)

    def frame_offset_ms(self, timestamp: datetime) -> int:
        """Whole milliseconds elapsed between the session start and timestamp."""
        try:
            offset = (timestamp - self.session_timestamp) // timedelta(milliseconds=1)
        except TypeError as e:
            # Naive and timezone-aware datetimes cannot be subtracted
            raise ValueError(f"Timestamp {timestamp} is not comparable with the session start: {e}") from e
        if offset < 0:
            raise ValueError(f"Timestamp {timestamp} precedes the session start")
        if offset > MAX_FRAME_OFFSET_MS:
            raise ValueError(f"Timestamp {timestamp} is too far from the session start")
        return offset

    @staticmethod
    def snapshot(skeleton: Skeleton, camera_id: int, frame_offset: int) -> SkelFrame:
        """
        Convert a live skeleton to a SkelFrame.

        Joints that are neither tracked nor inferred, and joints missing from
        the snapshot, get the untracked sentinel position.
        """
        points = [UNTRACKED_POINT] * NUM_JOINTS
        for joint in skeleton.joints:
            if joint.has_position:
                p = joint.position
                points[int(joint.joint_type)] = SkeletonPoint(float(p[0]), float(p[1]), float(p[2]))
        return SkelFrame(camera_id, skeleton.tracking_id, frame_offset, tuple(points))

    def record_skel_frame(self, skeleton: Skeleton, camera_id: int, timestamp: datetime) -> bool:
        """
        Write one skeleton of a camera, at a given frame, to the camera log.

        Only fully tracked skeletons are recorded; position-only and
        untracked skeletons are dropped.

        Returns:
            True if the skeleton was written

        Raises:
            RuntimeError: If the camera has no open file
            FatalIOError: If the write fails
        """
        with self._lock:
            fp = self._camera_files.get(camera_id)
            if fp is None:
                raise RuntimeError(f"No open file for camera #{camera_id}")

            if skeleton.tracking_state != SkeletonTrackingState.TRACKED:
                self._dropped_counts[camera_id] += 1
                return False

            frame = self.snapshot(skeleton, camera_id, self.frame_offset_ms(timestamp))
            try:
                logformat.write_frame(fp, frame)
            except OSError as e:
                raise FatalIOError(f"IO error while writing to {self._paths[camera_id]}: {e}") from e
            self._frame_counts[camera_id] += 1
            return True

    def close_files(self) -> Dict[str, Any]:
        """
        Flush and close every camera log.

        Returns:
            Metadata about the recording session
        """
        with self._lock:
            if self._closed:
                return {"status": "closed"}
            self._closed = True

            errors = []
            for camera_id, fp in self._camera_files.items():
                try:
                    fp.flush()
                    fp.close()
                except OSError as e:
                    errors.append((camera_id, e))

            metadata = {
                "session": self.session_label,
                "files": {cid: str(p) for cid, p in self._paths.items()},
                "frames": dict(self._frame_counts),
                "dropped_skeletons": dict(self._dropped_counts),
            }
            self._camera_files = {}

        if errors:
            camera_id, e = errors[0]
            raise FatalIOError(f"IO error while closing file of camera #{camera_id}: {e}") from e

        for camera_id, count in metadata["frames"].items():
            logger.info("Closed camera #%d file with %d frames", camera_id, count)
        return metadata

    def __enter__(self) -> "SkelRecorder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close_files()

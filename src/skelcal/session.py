"""
Capture session: the ingestion side of the calibration core.

Skeleton snapshots arrive asynchronously from capture stations. The session
assigns camera ids, opens each camera's log at its first frame and forwards
every snapshot to the recorder.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

from .joints import Skeleton
from .recorder import SkelRecorder

logger = logging.getLogger(__name__)


class CameraRegistry:
    """
    Deterministic camera id assignment.

    Ids are handed out as 0, 1, 2, ... in the order source keys (e.g. the
    network address of a capture station) are first registered. Camera 0 is
    the reference camera; pass reference_key to pin it.
    """

    def __init__(self, reference_key: Optional[Hashable] = None):
        self._ids: Dict[Hashable, int] = {}
        self._lock = threading.Lock()
        if reference_key is not None:
            self.register(reference_key)

    def register(self, key: Hashable) -> int:
        with self._lock:
            if key not in self._ids:
                self._ids[key] = len(self._ids)
                logger.info("Assigned camera #%d to %s", self._ids[key], key)
            return self._ids[key]

    def get(self, key: Hashable) -> Optional[int]:
        with self._lock:
            return self._ids.get(key)

    def items(self) -> List[Tuple[Hashable, int]]:
        with self._lock:
            return sorted(self._ids.items(), key=lambda kv: kv[1])

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._ids


class CaptureSession:
    """
    Records a capture session for later calibration.

    Usage:
        session = CaptureSession(log_dir="./logs")
        session.on_skeletons_captured("10.0.0.12", skeletons, datetime.now())
        ...
        metadata = session.close()
    """

    def __init__(
        self,
        log_dir: str = ".",
        session_timestamp: Optional[datetime] = None,
        registry: Optional[CameraRegistry] = None,
    ):
        self.recorder = SkelRecorder(log_dir=log_dir, session_timestamp=session_timestamp)
        self.registry = registry or CameraRegistry()
        self._lock = threading.Lock()

    @property
    def session_timestamp(self) -> datetime:
        return self.recorder.session_timestamp

    @property
    def session_label(self) -> str:
        return self.recorder.session_label

    def on_frame_captured(self, camera_id: int, skeleton: Skeleton, timestamp: datetime) -> bool:
        """
        Ingestion sink for one skeleton of one camera.

        Returns:
            True if the skeleton was recorded
        """
        with self._lock:
            if not self.recorder.has_file(camera_id):
                self.recorder.create_file(camera_id)
            return self.recorder.record_skel_frame(skeleton, camera_id, timestamp)

    def on_skeletons_captured(
        self,
        source_key: Hashable,
        skeletons: Iterable[Skeleton],
        timestamp: datetime,
    ) -> int:
        """
        Ingest every skeleton of a frame reported by a capture station.

        Returns:
            Number of skeletons recorded
        """
        camera_id = self.registry.register(source_key)
        return sum(1 for skel in skeletons if self.on_frame_captured(camera_id, skel, timestamp))

    def close(self) -> Dict[str, Any]:
        metadata = self.recorder.close_files()
        metadata["cameras"] = {cid: str(key) for key, cid in self.registry.items()}
        return metadata

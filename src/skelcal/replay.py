"""
Replay module for merging per-camera skeleton logs into synchronized frames.

Provides functionality to:
- Load every camera log of a recording session into memory
- Repeatedly emit the next time-aligned set of frames, one per camera,
  using a tolerance join on frame offsets
- Report how many frames were discarded while searching for a common frame
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Generator, List, Optional, Sequence, Union

from . import logformat
from .joints import SkelFrame
from .logformat import SessionId

logger = logging.getLogger(__name__)

# Maximum offset distance from the earliest head for frames to count as the
# same frame. The sensor tracks skeletons at 30 FPS (~33 ms per frame).
FRAME_TIME_THRESHOLD_MS = 24

RoundData = Dict[int, SkelFrame]
ReplayFrameHandler = Callable[[RoundData], None]


class SkelReplay:
    """
    Replay a recorded session frame by frame.

    Each camera log is loaded once at construction and consumed destructively
    as frames are joined.

    Usage:
        replay = SkelReplay(session_timestamp, num_cameras=3, log_dir="./logs")

        while replay.replay_session_frame(handle_round):
            pass

        # Or as a generator
        for round_data in replay.replay():
            process(round_data)
    """

    def __init__(
        self,
        session: SessionId,
        num_cameras: int,
        log_dir: Union[str, Path] = ".",
        tolerance_ms: int = FRAME_TIME_THRESHOLD_MS,
    ):
        """
        Load the camera logs of a recorded session.

        Args:
            session: Session start time (or its HH_mm_ss_fff label)
            num_cameras: Number of cameras in the session; logs 0..N-1 are loaded
            log_dir: Directory containing the camera logs
            tolerance_ms: Join tolerance window

        Raises:
            FatalIOError: If a log is missing, unreadable or has a wrong header
        """
        if num_cameras < 1:
            raise ValueError("A session needs at least one camera")
        log_dir = Path(log_dir)
        paths = [log_dir / logformat.camera_filename(session, cid) for cid in range(num_cameras)]
        logger.info("Loading camera files for session %s", logformat.session_label(session))
        self._init_from_paths(paths, tolerance_ms)

    @classmethod
    def from_paths(
        cls,
        paths: Sequence[Union[str, Path]],
        tolerance_ms: int = FRAME_TIME_THRESHOLD_MS,
    ) -> "SkelReplay":
        """Load explicit log paths; the position of each path is its expected camera id."""
        if len(paths) < 1:
            raise ValueError("A session needs at least one camera")
        replay = cls.__new__(cls)
        replay._init_from_paths([Path(p) for p in paths], tolerance_ms)
        return replay

    def _init_from_paths(self, paths: List[Path], tolerance_ms: int) -> None:
        self.tolerance_ms = tolerance_ms
        self._queues: Dict[int, Deque[SkelFrame]] = {}
        self._loaded_counts: Dict[int, int] = {}
        self._dropped_counts: Dict[int, int] = {}
        self._rounds = 0

        for camera_id, path in enumerate(paths):
            frames = logformat.read_camera_log(path, expected_camera_id=camera_id)
            self._queues[camera_id] = deque(frames)
            self._loaded_counts[camera_id] = len(frames)
            self._dropped_counts[camera_id] = 0

        logger.info("Skeleton capture session replay loaded successfully")

    @property
    def camera_ids(self) -> List[int]:
        return list(self._queues.keys())

    @property
    def num_cameras(self) -> int:
        return len(self._queues)

    @property
    def rounds_replayed(self) -> int:
        return self._rounds

    @property
    def remaining_frames(self) -> Dict[int, int]:
        return {cid: len(q) for cid, q in self._queues.items()}

    @property
    def dropped_frames(self) -> Dict[int, int]:
        return dict(self._dropped_counts)

    def replay_session_frame(self, handler: Optional[ReplayFrameHandler] = None) -> bool:
        """
        Replay a single synchronized frame of the session.

        Cameras are forwarded until a pass finds a frame for every camera
        within the tolerance window of the earliest head. Frames popped during
        a pass that did not synchronize every camera are discarded.

        Args:
            handler: Invoked with {camera_id: SkelFrame} for the replayed frame

        Returns:
            True if a frame was replayed, False if the recording has ended
        """
        while True:
            if any(not q for q in self._queues.values()):
                return False

            min_offset = min(q[0].frame_offset for q in self._queues.values())

            round_data: RoundData = {}
            for camera_id, queue in self._queues.items():
                if queue[0].frame_offset - min_offset < self.tolerance_ms:
                    round_data[camera_id] = queue.popleft()

            if len(round_data) == len(self._queues):
                break

            for camera_id in round_data:
                self._dropped_counts[camera_id] += 1
            logger.debug(
                "Partial sync at %d ms, discarded frames of cameras %s",
                min_offset, sorted(round_data),
            )

        self._rounds += 1
        if handler is not None:
            handler(round_data)
        return True

    def replay(self) -> Generator[RoundData, None, None]:
        """Yield synchronized rounds until any camera log is exhausted."""
        rounds: List[RoundData] = []
        while self.replay_session_frame(rounds.append):
            yield rounds.pop()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "cameras": self.num_cameras,
            "rounds": self._rounds,
            "tolerance_ms": self.tolerance_ms,
            "loaded_frames": dict(self._loaded_counts),
            "remaining_frames": self.remaining_frames,
            "dropped_frames": dict(self._dropped_counts),
        }

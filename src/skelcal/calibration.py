"""
Calibration of every camera against the reference camera.

A network is trained for each pair of (camera i, reference camera 0) on the
synchronized rounds of a recorded session. Once trained, joints seen by
camera i are transformed into reference coordinates by a single feed-forward
pass through the corresponding network.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from .errors import DimensionMismatch
from .joints import NUM_JOINTS, VALUES_PER_JOINT, VECTOR_SIZE, SkelFrame
from .logformat import SessionId
from .metrics import TrainingMetrics
from .network import DEFAULT_SEED, CalibrationNetwork, TrainingMode
from .replay import RoundData, SkelReplay
from .sync_eval import SyncEvaluator

logger = logging.getLogger(__name__)

REFERENCE_CAMERA_ID = 0
NETWORK_FILE_TEMPLATE = "cam{camera_id}.npz"
CONFIG_FILE = "calibration.json"

JointsInput = Union[SkelFrame, Sequence[Sequence[float]], Sequence[float], np.ndarray]


@dataclass
class CoordinateNormalizer:
    """Affine map of joint coordinates into the range the network works in.

    normalize(p) = (p + offset) / scale, denormalize is its inverse.
    The default is the identity.
    """
    offset: float = 0.0
    scale: float = 1.0

    def __post_init__(self) -> None:
        if self.scale == 0:
            raise ValueError("scale must be non-zero")

    def normalize(self, values: np.ndarray) -> np.ndarray:
        return ((np.asarray(values, dtype=np.float64) + self.offset) / self.scale).astype(np.float32)

    def denormalize(self, values: np.ndarray) -> np.ndarray:
        return (np.asarray(values, dtype=np.float64) * self.scale - self.offset).astype(np.float32)


@dataclass
class CalibrationConfig:
    """Network and training parameters shared by every camera pair."""
    learning_rate: float = 0.15
    momentum: float = 0.1
    seed: int = DEFAULT_SEED
    weight_mean: float = 0.0
    weight_variance: float = 1.0
    mode: TrainingMode = TrainingMode.ONLINE
    batch_size: int = 0  # batch mode flush interval in rounds, 0 = once per session
    hidden_size: Optional[int] = None  # default: input size squared
    skip_untracked: bool = True
    normalizer: CoordinateNormalizer = field(default_factory=CoordinateNormalizer)
    progress_interval: int = 300

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "CalibrationConfig":
        config = dict(config or {})
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown calibration option(s): {', '.join(sorted(unknown))}")
        if "mode" in config and not isinstance(config["mode"], TrainingMode):
            config["mode"] = TrainingMode(config["mode"])
        if isinstance(config.get("normalizer"), dict):
            config["normalizer"] = CoordinateNormalizer(**config["normalizer"])
        return cls(**config)

    def to_dict(self) -> Dict[str, Any]:
        config = asdict(self)
        config["mode"] = self.mode.value
        return config


class Calibration:
    """
    Trains one network per non-reference camera and transforms joints.

    Usage:
        calibration = Calibration(session_timestamp, num_cameras=3, log_dir="./logs")
        summary = calibration.calibrate()
        frame = calibration.transform(camera_id=2, skeleton_id=7, joints_in=live_frame)
    """

    def __init__(
        self,
        session: Optional[SessionId],
        num_cameras: int,
        log_dir: Union[str, Path] = ".",
        config: Optional[CalibrationConfig] = None,
        replay: Optional[SkelReplay] = None,
    ):
        """
        Args:
            session: Session start time or label of the recorded session
            num_cameras: Number of cameras, including the reference camera
            log_dir: Directory containing the session's camera logs
            config: Training parameters (defaults to CalibrationConfig())
            replay: Pre-built replay to use instead of loading from log_dir
        """
        if num_cameras < 2:
            raise ValueError("Calibration needs the reference camera and at least one other camera")

        self.num_cameras = num_cameras
        self.config = config or CalibrationConfig()

        # Each network maps one camera's joints to the reference camera's joints
        self.input_size = VECTOR_SIZE
        self.output_size = VECTOR_SIZE
        self.hidden_size = self.config.hidden_size or self.input_size * self.input_size

        self.networks: List[CalibrationNetwork] = [
            CalibrationNetwork(
                self.input_size,
                self.hidden_size,
                self.output_size,
                learning_rate=self.config.learning_rate,
                momentum=self.config.momentum,
                mode=self.config.mode,
                seed=self.config.seed,
                weight_mean=self.config.weight_mean,
                weight_variance=self.config.weight_variance,
            )
            for _ in range(num_cameras - 1)
        ]

        self.metrics = TrainingMetrics()
        self.sync_evaluator = SyncEvaluator()
        self._session = session
        self._log_dir = Path(log_dir)
        self._replay = replay
        self._rounds = 0

    @property
    def replay(self) -> SkelReplay:
        if self._replay is None:
            if self._session is None:
                raise RuntimeError("No session to replay")
            self._replay = SkelReplay(self._session, self.num_cameras, self._log_dir)
        if self._replay.num_cameras != self.num_cameras:
            raise ValueError(
                f"Replay has {self._replay.num_cameras} cameras, calibration expects {self.num_cameras}"
            )
        return self._replay

    def network(self, camera_id: int) -> CalibrationNetwork:
        if not 0 < camera_id < self.num_cameras:
            raise ValueError(f"No calibration network for camera #{camera_id}")
        return self.networks[camera_id - 1]

    def calibrate(self) -> Dict[str, Any]:
        """
        Replay the whole session, training every camera pair on each round.

        Returns:
            Summary with rounds, per camera training metrics and sync status
        """
        replay = self.replay
        dropped_before = replay.dropped_frames

        interval = self.config.progress_interval
        while replay.replay_session_frame(self.process_frame):
            if interval > 0 and self._rounds % interval == 0:
                logger.info("Calibration executing.. %d rounds", self._rounds)

        if self.config.mode is TrainingMode.BATCH:
            for net in self.networks:
                net.flush_batch()

        for camera_id, count in replay.dropped_frames.items():
            dropped = count - dropped_before.get(camera_id, 0)
            if dropped:
                self.sync_evaluator.record_dropped(camera_id, dropped)
                logger.warning("Camera #%d: %d frame(s) discarded while syncing", camera_id, dropped)

        logger.info("Calibration process finished after %d rounds", self._rounds)
        return {
            "rounds": self._rounds,
            "training": self.metrics.get_summary(),
            "sync": self.sync_evaluator.get_status(),
            "replay": replay.get_stats(),
        }

    def process_frame(self, round_data: RoundData) -> None:
        """Train each camera's network on one synchronized round."""
        self._rounds += 1
        self.sync_evaluator.evaluate_round(round_data)

        reference = round_data[REFERENCE_CAMERA_ID]
        normalize = self.config.normalizer.normalize
        expected = normalize(reference.to_array())

        for camera_id in range(1, self.num_cameras):
            frame = round_data[camera_id]
            if self.config.skip_untracked and not (frame.is_fully_tracked and reference.is_fully_tracked):
                self.metrics.record_skip(camera_id)
                continue
            loss = self.network(camera_id).train(normalize(frame.to_array()), expected)
            self.metrics.record_sample(camera_id, loss)

        batch_size = self.config.batch_size
        if self.config.mode is TrainingMode.BATCH and batch_size > 0 and self._rounds % batch_size == 0:
            for net in self.networks:
                net.flush_batch()

    @staticmethod
    def _joints_vector(joints_in: JointsInput) -> np.ndarray:
        if isinstance(joints_in, SkelFrame):
            return joints_in.to_array()
        vec = np.asarray(joints_in, dtype=np.float32).reshape(-1)
        if vec.shape[0] != VECTOR_SIZE:
            raise DimensionMismatch(f"Expected {VECTOR_SIZE} joint values, got {vec.shape[0]}")
        return vec

    def transform(self, camera_id: int, skeleton_id: int, joints_in: JointsInput) -> SkelFrame:
        """
        Convert joints seen by a camera to reference camera coordinates.

        Args:
            camera_id: Camera whose coordinates are converted
            skeleton_id: Skeleton id carried over to the result
            joints_in: SkelFrame, NUM_JOINTS points, or a flat vector of
                NUM_JOINTS * 3 values

        Returns:
            SkelFrame in reference coordinates, frame offset 0

        Raises:
            DimensionMismatch: If joints_in does not hold exactly NUM_JOINTS * 3 values
            NumericDivergence: If the network output is not finite
        """
        values = self._joints_vector(joints_in)
        if camera_id == REFERENCE_CAMERA_ID:
            return SkelFrame.from_array(camera_id, skeleton_id, 0, values)

        normalizer = self.config.normalizer
        output = self.network(camera_id).feed_forward(normalizer.normalize(values))
        out = normalizer.denormalize(output.flatten())

        points = [
            (out[VALUES_PER_JOINT * i], out[VALUES_PER_JOINT * i + 1], out[VALUES_PER_JOINT * i + 2])
            for i in range(NUM_JOINTS)
        ]
        return SkelFrame.from_points(camera_id, skeleton_id, 0, points)

    def save(self, directory: Union[str, Path]) -> List[str]:
        """
        Save every trained network as cam<id>.npz, plus the training config
        (normalizer included) as calibration.json.

        Returns:
            Paths of the written network files
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for camera_id in range(1, self.num_cameras):
            path = directory / NETWORK_FILE_TEMPLATE.format(camera_id=camera_id)
            self.network(camera_id).save(path)
            paths.append(str(path))

        with open(directory / CONFIG_FILE, "w") as f:
            json.dump({"num_cameras": self.num_cameras, "config": self.config.to_dict()}, f, indent=2)

        logger.info("Saved %d calibration networks to %s", len(paths), directory)
        return paths

    def load_networks(self, directory: Union[str, Path]) -> None:
        """
        Replace every network with the one saved in directory.

        The saved config, when present, replaces the current one so that
        transform() applies the normalizer the networks were trained with.

        Raises:
            ValueError: If the saved calibration has a different camera count
            DimensionMismatch: If a saved network has the wrong input/output size
        """
        directory = Path(directory)
        config_path = directory / CONFIG_FILE
        config = self.config
        if config_path.exists():
            with open(config_path) as f:
                saved = json.load(f)
            if saved["num_cameras"] != self.num_cameras:
                raise ValueError(
                    f"Saved calibration has {saved['num_cameras']} cameras, expected {self.num_cameras}"
                )
            config = CalibrationConfig.from_dict(saved["config"])
        else:
            logger.warning("No %s in %s, keeping the current normalizer", CONFIG_FILE, directory)

        loaded = []
        for camera_id in range(1, self.num_cameras):
            net = CalibrationNetwork.load(directory / NETWORK_FILE_TEMPLATE.format(camera_id=camera_id))
            if (net.input_size, net.output_size) != (self.input_size, self.output_size):
                raise DimensionMismatch(
                    f"Network for camera #{camera_id} maps {net.input_size}->{net.output_size} values"
                )
            loaded.append(net)
        self.networks = loaded
        self.config = config
        self.hidden_size = loaded[0].hidden_size if loaded else self.hidden_size

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from skelcal.calibration import Calibration, CalibrationConfig, CoordinateNormalizer
from skelcal.errors import DimensionMismatch, NumericDivergence
from skelcal.joints import NUM_JOINTS, UNTRACKED_POINT, VECTOR_SIZE, SkelFrame
from skelcal.logformat import camera_filename, write_frame, write_header
from skelcal.network import TrainingMode
from skelcal.replay import SkelReplay

SESSION = "08_00_00_000"
SHIFT = np.array([0.25, -0.125, 0.5])


def _reference_points(rng: np.random.Generator) -> np.ndarray:
    return rng.uniform(-1.0, 1.0, size=(NUM_JOINTS, 3)).astype(np.float32)


def _write_session(log_dir: Path, num_cameras: int, rounds: int, untracked_rounds=()) -> None:
    """Camera i sees the reference skeleton shifted by i * SHIFT."""
    rng = np.random.default_rng(0)
    files = [open(log_dir / camera_filename(SESSION, cid), "wb") for cid in range(num_cameras)]
    try:
        for cid, fp in enumerate(files):
            write_header(fp, cid)
        for r in range(rounds):
            ref = _reference_points(rng)
            for cid, fp in enumerate(files):
                points = [tuple(p) for p in (ref + cid * SHIFT).astype(np.float32)]
                if cid == 1 and r in untracked_rounds:
                    points[3] = UNTRACKED_POINT
                # Camera clocks drift a few ms apart
                write_frame(fp, SkelFrame.from_points(cid, 100 + cid, 33 * r + cid * 3, points))
    finally:
        for fp in files:
            fp.close()


def _config(**overrides) -> CalibrationConfig:
    base = dict(
        hidden_size=12,
        learning_rate=0.3,
        momentum=0.1,
        normalizer=CoordinateNormalizer(offset=2.0, scale=4.0),
        progress_interval=0,
    )
    base.update(overrides)
    return CalibrationConfig(**base)


def test_default_config_matches_quadratic_hidden_layer() -> None:
    config = CalibrationConfig()
    assert config.learning_rate == pytest.approx(0.15)
    assert config.momentum == pytest.approx(0.1)
    assert config.mode is TrainingMode.ONLINE


def test_network_sizes(tmp_path) -> None:
    _write_session(tmp_path, 3, rounds=2)
    calibration = Calibration(SESSION, 3, log_dir=tmp_path, config=_config(hidden_size=None))
    assert len(calibration.networks) == 2
    assert calibration.input_size == calibration.output_size == VECTOR_SIZE
    assert calibration.hidden_size == VECTOR_SIZE * VECTOR_SIZE
    assert calibration.network(1).hidden_weights.shape == (VECTOR_SIZE ** 2, VECTOR_SIZE + 1)


def test_calibrate_trains_every_camera_pair(tmp_path) -> None:
    _write_session(tmp_path, 3, rounds=40)
    calibration = Calibration(SESSION, 3, log_dir=tmp_path, config=_config())
    before = calibration.network(2).output_weights.copy()

    summary = calibration.calibrate()

    assert summary["rounds"] == 40
    assert summary["training"]["cameras"][1]["samples"] == 40
    assert summary["training"]["cameras"][2]["samples"] == 40
    assert summary["sync"]["round_count"] == 40
    assert summary["sync"]["spread_ms"]["max"] == 6.0
    assert summary["replay"]["dropped_frames"] == {0: 0, 1: 0, 2: 0}
    assert calibration.network(2).output_weights != before


def test_rounds_with_untracked_joints_are_skipped(tmp_path) -> None:
    _write_session(tmp_path, 2, rounds=10, untracked_rounds=(2, 5))
    calibration = Calibration(SESSION, 2, log_dir=tmp_path, config=_config())
    summary = calibration.calibrate()
    cam = summary["training"]["cameras"][1]
    assert cam["samples"] == 8
    assert cam["skipped"] == 2


def test_training_reduces_loss_on_fixed_mapping(tmp_path) -> None:
    _write_session(tmp_path, 2, rounds=300)
    calibration = Calibration(SESSION, 2, log_dir=tmp_path, config=_config(hidden_size=30))
    replay = calibration.replay
    first = []
    replay.replay_session_frame(first.append)
    probe = first[0]
    calibration.process_frame(probe)

    normalize = calibration.config.normalizer.normalize
    expected = normalize(probe[0].to_array())

    def error() -> float:
        out = calibration.network(1).feed_forward(normalize(probe[1].to_array())).flatten()
        return float(np.mean(np.abs(out - expected)))

    start = error()
    calibration.calibrate()
    assert error() < start


def test_transform_repacks_three_values_per_joint(tmp_path) -> None:
    _write_session(tmp_path, 2, rounds=5)
    calibration = Calibration(SESSION, 2, log_dir=tmp_path, config=_config())
    calibration.calibrate()

    frame = list(SkelReplay(SESSION, 2, log_dir=tmp_path).replay())[0][1]
    result = calibration.transform(1, 42, frame)

    normalizer = calibration.config.normalizer
    raw = calibration.network(1).feed_forward(normalizer.normalize(frame.to_array())).flatten()
    expected = normalizer.denormalize(raw)

    assert result.skeleton_id == 42
    assert result.camera_id == 1
    assert result.frame_offset == 0
    assert len(result.joints) == NUM_JOINTS
    for i, point in enumerate(result.joints):
        assert point.x == pytest.approx(float(expected[3 * i]))
        assert point.y == pytest.approx(float(expected[3 * i + 1]))
        assert point.z == pytest.approx(float(expected[3 * i + 2]))

    # Flat vectors and point lists give the same answer
    assert calibration.transform(1, 42, frame.to_array()) == result
    assert calibration.transform(1, 42, [tuple(p) for p in frame.joints]) == result


def test_transform_reference_camera_is_identity(tmp_path) -> None:
    _write_session(tmp_path, 2, rounds=2)
    calibration = Calibration(SESSION, 2, log_dir=tmp_path, config=_config())
    frame = list(SkelReplay(SESSION, 2, log_dir=tmp_path).replay())[0][0]
    result = calibration.transform(0, frame.skeleton_id, frame)
    assert result.joints == frame.joints


def test_transform_input_size_and_camera_checks(tmp_path) -> None:
    _write_session(tmp_path, 2, rounds=2)
    calibration = Calibration(SESSION, 2, log_dir=tmp_path, config=_config())
    with pytest.raises(DimensionMismatch):
        calibration.transform(1, 0, [0.0] * (VECTOR_SIZE - 1))
    with pytest.raises(ValueError):
        calibration.transform(5, 0, [0.0] * VECTOR_SIZE)


def test_transform_surfaces_numeric_divergence(tmp_path) -> None:
    _write_session(tmp_path, 2, rounds=2)
    calibration = Calibration(SESSION, 2, log_dir=tmp_path, config=_config())
    calibration.network(1).params.output_weights[0, 0] = float("inf")
    calibration.network(1).params.output_weights[0, 1] = float("-inf")
    with pytest.raises(NumericDivergence):
        calibration.transform(1, 0, [0.5] * VECTOR_SIZE)


def test_batch_mode_flushes_every_batch(tmp_path) -> None:
    _write_session(tmp_path, 2, rounds=10)
    calibration = Calibration(
        SESSION, 2, log_dir=tmp_path,
        config=_config(mode=TrainingMode.BATCH, batch_size=4),
    )
    before = calibration.network(1).hidden_weights.copy()
    calibration.calibrate()
    net = calibration.network(1)
    assert net.pending_samples == 0
    assert net.hidden_weights != before


def test_save_and_load_networks(tmp_path) -> None:
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    _write_session(log_dir, 3, rounds=5)
    calibration = Calibration(SESSION, 3, log_dir=log_dir, config=_config())
    calibration.calibrate()
    paths = calibration.save(tmp_path / "nets")
    assert [Path(p).name for p in paths] == ["cam1.npz", "cam2.npz"]
    assert (tmp_path / "nets" / "calibration.json").exists()

    # A fresh process knows nothing about the normalizer used for training
    restored = Calibration(None, 3)
    restored.load_networks(tmp_path / "nets")
    assert restored.config.normalizer == CoordinateNormalizer(offset=2.0, scale=4.0)
    assert restored.config.hidden_size == 12
    joints = [0.25] * VECTOR_SIZE
    assert restored.transform(2, 1, joints) == calibration.transform(2, 1, joints)

    with pytest.raises(ValueError):
        Calibration(None, 2).load_networks(tmp_path / "nets")


def test_requires_two_cameras_and_matching_replay(tmp_path) -> None:
    with pytest.raises(ValueError):
        Calibration(SESSION, 1, log_dir=tmp_path)

    _write_session(tmp_path, 2, rounds=2)
    replay = SkelReplay(SESSION, 2, log_dir=tmp_path)
    calibration = Calibration(None, 3, config=_config(), replay=replay)
    with pytest.raises(ValueError):
        calibration.calibrate()


def test_config_from_dict() -> None:
    config = CalibrationConfig.from_dict(
        {"learning_rate": 0.05, "mode": "batch", "normalizer": {"offset": 1.0, "scale": 2.0}}
    )
    assert config.mode is TrainingMode.BATCH
    assert config.normalizer.scale == 2.0
    with pytest.raises(ValueError):
        CalibrationConfig.from_dict({"learning_rte": 0.1})

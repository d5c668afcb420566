from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from skelcal.errors import FatalIOError
from skelcal.joints import NUM_JOINTS, SkelFrame
from skelcal.logformat import camera_filename, write_frame, write_header
from skelcal.replay import FRAME_TIME_THRESHOLD_MS, SkelReplay

SESSION = "10_15_30_250"


def _frame(camera_id: int, offset: int, skeleton_id: int = 1) -> SkelFrame:
    points = [(float(camera_id), float(offset), float(j)) for j in range(NUM_JOINTS)]
    return SkelFrame.from_points(camera_id, skeleton_id, offset, points)


def _write_log(path: Path, camera_id: int, offsets: Sequence[int], header_id=None) -> Path:
    with open(path, "wb") as fp:
        write_header(fp, camera_id if header_id is None else header_id)
        for offset in offsets:
            write_frame(fp, _frame(camera_id, offset))
    return path


def _write_session(log_dir: Path, offsets_by_camera: Sequence[Sequence[int]]) -> None:
    for camera_id, offsets in enumerate(offsets_by_camera):
        _write_log(log_dir / camera_filename(SESSION, camera_id), camera_id, offsets)


def _drain(replay: SkelReplay) -> List[Dict[int, int]]:
    rounds: List[Dict[int, int]] = []

    def handler(round_data):
        rounds.append({cid: frame.frame_offset for cid, frame in round_data.items()})

    while replay.replay_session_frame(handler):
        pass
    return rounds


def test_default_tolerance_is_below_one_frame_period() -> None:
    assert FRAME_TIME_THRESHOLD_MS == 24


def test_two_cameras_three_rounds(tmp_path) -> None:
    _write_session(tmp_path, [[0, 33, 66], [1, 32, 70]])
    replay = SkelReplay(SESSION, 2, log_dir=tmp_path)

    rounds = _drain(replay)

    assert rounds == [{0: 0, 1: 1}, {0: 33, 1: 32}, {0: 66, 1: 70}]
    assert replay.rounds_replayed == 3
    assert replay.remaining_frames == {0: 0, 1: 0}


def test_truncated_camera_ends_session(tmp_path) -> None:
    _write_session(tmp_path, [[0, 33, 66], [1, 32]])
    replay = SkelReplay(SESSION, 2, log_dir=tmp_path)

    called = []
    assert replay.replay_session_frame(called.append)
    assert replay.replay_session_frame(called.append)
    assert not replay.replay_session_frame(called.append)
    assert len(called) == 2
    assert replay.remaining_frames == {0: 1, 1: 0}


def test_round_frames_are_keyed_by_camera(tmp_path) -> None:
    _write_session(tmp_path, [[0], [5], [10]])
    replay = SkelReplay(SESSION, 3, log_dir=tmp_path)

    rounds = list(replay.replay())
    assert len(rounds) == 1
    for camera_id, frame in rounds[0].items():
        assert frame.camera_id == camera_id
        assert frame.joints[0].x == float(camera_id)


def test_tolerance_is_measured_against_minimum_not_pairwise(tmp_path) -> None:
    # 20 and 40 are within 24 ms of each other but 40 is not within 24 ms of 0
    _write_session(tmp_path, [[0, 40], [20, 50], [40, 45]])
    replay = SkelReplay(SESSION, 3, log_dir=tmp_path)

    rounds = _drain(replay)

    # Pass 1: min 0, cameras 0 and 1 pop (0, 20), camera 2 retained -> discarded
    # Pass 2: min 40, all heads (40, 50, 40) within window -> emitted
    assert rounds == [{0: 40, 1: 50, 2: 40}]
    assert replay.dropped_frames == {0: 1, 1: 1, 2: 0}
    assert replay.remaining_frames == {0: 0, 1: 0, 2: 1}


def test_tolerance_window_is_strict(tmp_path) -> None:
    _write_session(tmp_path, [[0, 100], [24, 110]])
    replay = SkelReplay(SESSION, 2, log_dir=tmp_path)

    rounds = _drain(replay)

    # 24 - 0 is not < 24, so camera 0's first frame is dropped alone
    assert rounds == [{0: 100, 1: 110}]
    assert replay.dropped_frames == {0: 1, 1: 1}


def test_unsynchronized_tail_produces_nothing(tmp_path) -> None:
    _write_session(tmp_path, [[0, 100, 200], [50, 150]])
    replay = SkelReplay(SESSION, 2, log_dir=tmp_path)

    assert _drain(replay) == []
    assert replay.rounds_replayed == 0


def test_single_camera_replays_every_frame(tmp_path) -> None:
    _write_session(tmp_path, [[0, 33, 66, 100]])
    replay = SkelReplay(SESSION, 1, log_dir=tmp_path)
    assert [r[0] for r in _drain(replay)] == [0, 33, 66, 100]


def test_from_paths_and_custom_tolerance(tmp_path) -> None:
    a = _write_log(tmp_path / "a.rec", 0, [0, 33])
    b = _write_log(tmp_path / "b.rec", 1, [10, 43])
    replay = SkelReplay.from_paths([a, b], tolerance_ms=5)
    assert _drain(replay) == []

    replay = SkelReplay.from_paths([a, b], tolerance_ms=11)
    assert len(_drain(replay)) == 2


def test_missing_log_is_fatal(tmp_path) -> None:
    _write_session(tmp_path, [[0, 33]])
    with pytest.raises(FatalIOError):
        SkelReplay(SESSION, 2, log_dir=tmp_path)


def test_header_mismatch_is_fatal(tmp_path) -> None:
    _write_log(tmp_path / camera_filename(SESSION, 0), 0, [0])
    _write_log(tmp_path / camera_filename(SESSION, 1), 1, [0], header_id=7)
    with pytest.raises(FatalIOError, match="illegal header"):
        SkelReplay(SESSION, 2, log_dir=tmp_path)


def test_truncated_record_is_fatal(tmp_path) -> None:
    path = _write_log(tmp_path / camera_filename(SESSION, 0), 0, [0, 33])
    data = path.read_bytes()
    path.write_bytes(data[:-5])
    with pytest.raises(FatalIOError, match="truncated"):
        SkelReplay(SESSION, 1, log_dir=tmp_path)


def test_zero_cameras_rejected(tmp_path) -> None:
    with pytest.raises(ValueError):
        SkelReplay(SESSION, 0, log_dir=tmp_path)


def test_stats(tmp_path) -> None:
    _write_session(tmp_path, [[0, 33, 66], [1, 32, 70]])
    replay = SkelReplay(SESSION, 2, log_dir=tmp_path)
    _drain(replay)
    stats = replay.get_stats()
    assert stats["rounds"] == 3
    assert stats["loaded_frames"] == {0: 3, 1: 3}
    assert stats["dropped_frames"] == {0: 0, 1: 0}

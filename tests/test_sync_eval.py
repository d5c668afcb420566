import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from skelcal.joints import NUM_JOINTS, SkelFrame
from skelcal.sync_eval import SyncEvaluator


def _frame(camera_id: int, offset: int, skeleton_id: int = 1) -> SkelFrame:
    return SkelFrame.from_points(camera_id, skeleton_id, offset, [(0.0, 0.0, 0.0)] * NUM_JOINTS)


def _round(offsets, skeleton_ids=None):
    skeleton_ids = skeleton_ids or {}
    return {cid: _frame(cid, off, skeleton_ids.get(cid, 1)) for cid, off in offsets.items()}


def test_sync_evaluator_basic() -> None:
    ev = SyncEvaluator(tolerance_windows_ms=(8, 16, 24))

    ev.evaluate_round(_round({0: 1000, 1: 1004}))
    ev.evaluate_round(_round({0: 2000, 1: 2016}, skeleton_ids={1: 2}))
    ev.record_dropped(1, 3)
    status = ev.get_status()

    assert status["round_count"] == 2
    assert status["spread_ms"]["max"] == 16.0
    sweep = {w["tolerance_ms"]: w["pass_rounds"] for w in status["window_sweep"]}
    # The window is strict: a 16 ms spread does not pass the 16 ms window
    assert sweep == {8: 1, 16: 1, 24: 2}
    assert status["camera_offsets"][1]["mean_offset_ms"] == 10.0
    assert status["camera_offsets"][0]["mean_offset_ms"] == 0.0
    assert status["dropped_frames"] == {0: 0, 1: 3}
    assert status["skeleton_switches"] == {0: 0, 1: 1}


def test_sync_evaluator_drift() -> None:
    ev = SyncEvaluator()
    ev.evaluate_round(_round({0: 0, 1: 2}))
    ev.evaluate_round(_round({0: 996, 1: 1002}))
    # Offset grew 4 ms over one second
    assert ev.get_status()["camera_offsets"][1]["drift_ms_per_s"] == 4.0


def test_sync_evaluator_reset() -> None:
    ev = SyncEvaluator()
    ev.evaluate_round(_round({0: 100, 1: 101}))
    assert ev.get_status()["round_count"] == 1
    ev.reset()
    assert ev.get_status()["round_count"] == 0
    assert ev.evaluate_round({})["camera_count"] == 0


def test_empty_round_reports_count_without_recording() -> None:
    ev = SyncEvaluator()
    ev.evaluate_round(_round({0: 10, 1: 12}))
    result = ev.evaluate_round({})
    assert result == {"round_count": 1, "spread_ms": 0, "camera_count": 0}
    assert ev.get_status()["round_count"] == 1

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from statistics import mean, median
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping

from .joints import SkelFrame


def _percentile(values: List[float], p: float) -> float:
    if not values:
        return 0.0
    if p <= 0:
        return float(min(values))
    if p >= 100:
        return float(max(values))
    sorted_values = sorted(values)
    rank = (len(sorted_values) - 1) * (p / 100.0)
    lower = int(rank)
    upper = min(lower + 1, len(sorted_values) - 1)
    weight = rank - lower
    return sorted_values[lower] * (1.0 - weight) + sorted_values[upper] * weight


@dataclass
class _CameraState:
    offset_samples: deque = field(default_factory=lambda: deque(maxlen=2000))
    dropped_total: int = 0
    skeleton_switches: int = 0
    last_skeleton_id: int = -1


@dataclass
class _WindowState:
    tolerance_ms: int
    pass_rounds: int = 0


class SyncEvaluator:
    """Join quality statistics for synchronized replay rounds.

    Offsets of every camera are measured against the reference camera
    (the lowest camera id present in a round).
    """

    def __init__(
        self,
        tolerance_windows_ms: Iterable[int] = (8, 16, 24, 33),
        history_size: int = 2000,
    ):
        self.tolerance_windows_ms = sorted(set(int(v) for v in tolerance_windows_ms if int(v) > 0))
        if not self.tolerance_windows_ms:
            self.tolerance_windows_ms = [24]
        self.history_size = history_size
        self._lock = Lock()
        self._round_count = 0
        self._spreads_ms: deque = deque(maxlen=history_size)
        self._window_states: Dict[int, _WindowState] = {
            tol: _WindowState(tolerance_ms=tol) for tol in self.tolerance_windows_ms
        }
        self._camera_states: Dict[int, _CameraState] = {}

    def reset(self) -> None:
        with self._lock:
            self._round_count = 0
            self._spreads_ms.clear()
            self._window_states = {
                tol: _WindowState(tolerance_ms=tol) for tol in self.tolerance_windows_ms
            }
            self._camera_states = {}

    def _camera_state(self, camera_id: int) -> _CameraState:
        return self._camera_states.setdefault(
            camera_id, _CameraState(offset_samples=deque(maxlen=self.history_size))
        )

    def evaluate_round(self, round_data: Mapping[int, SkelFrame]) -> Dict[str, Any]:
        if not round_data:
            with self._lock:
                round_count = self._round_count
            return {"round_count": round_count, "spread_ms": 0, "camera_count": 0}

        offsets = {cid: int(frame.frame_offset) for cid, frame in round_data.items()}
        spread_ms = max(offsets.values()) - min(offsets.values())
        reference_offset = offsets[min(offsets)]

        with self._lock:
            self._round_count += 1
            self._spreads_ms.append(float(spread_ms))

            for tol, state in self._window_states.items():
                if spread_ms < tol:
                    state.pass_rounds += 1

            for camera_id, frame in round_data.items():
                state = self._camera_state(camera_id)
                state.offset_samples.append((offsets[camera_id], offsets[camera_id] - reference_offset))
                if state.last_skeleton_id not in (-1, frame.skeleton_id):
                    state.skeleton_switches += 1
                state.last_skeleton_id = frame.skeleton_id

        return {
            "round_count": self._round_count,
            "spread_ms": spread_ms,
            "camera_count": len(round_data),
        }

    def record_dropped(self, camera_id: int, count: int = 1) -> None:
        with self._lock:
            self._camera_state(camera_id).dropped_total += int(count)

    @staticmethod
    def _estimate_drift_ms_per_s(samples: deque) -> float:
        if len(samples) < 2:
            return 0.0
        first_ts, first_offset = samples[0]
        last_ts, last_offset = samples[-1]
        dt_s = (float(last_ts) - float(first_ts)) / 1000.0
        if dt_s <= 0:
            return 0.0
        return (float(last_offset) - float(first_offset)) / dt_s

    def _camera_offset_summary(self) -> Dict[int, Dict[str, float]]:
        result: Dict[int, Dict[str, float]] = {}
        for camera_id, state in self._camera_states.items():
            offsets = [float(o) for _, o in state.offset_samples]
            if not offsets:
                continue
            avg_offset = mean(offsets)
            result[camera_id] = {
                "mean_offset_ms": avg_offset,
                "median_offset_ms": median(offsets),
                "p95_offset_ms": _percentile(offsets, 95),
                "jitter_std_ms": (mean([(x - avg_offset) ** 2 for x in offsets])) ** 0.5,
                "drift_ms_per_s": self._estimate_drift_ms_per_s(state.offset_samples),
            }
        return result

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            spreads = [float(v) for v in self._spreads_ms]

            sweep = []
            for tol in self.tolerance_windows_ms:
                pass_rounds = self._window_states[tol].pass_rounds
                sweep.append(
                    {
                        "tolerance_ms": tol,
                        "pass_rounds": pass_rounds,
                        "pass_rate": (pass_rounds / self._round_count) if self._round_count else 0.0,
                    }
                )

            return {
                "round_count": self._round_count,
                "spread_ms": {
                    "mean": mean(spreads) if spreads else 0.0,
                    "median": median(spreads) if spreads else 0.0,
                    "p95": _percentile(spreads, 95),
                    "max": max(spreads) if spreads else 0.0,
                },
                "window_sweep": sweep,
                "camera_offsets": self._camera_offset_summary(),
                "dropped_frames": {
                    camera_id: state.dropped_total
                    for camera_id, state in self._camera_states.items()
                },
                "skeleton_switches": {
                    camera_id: state.skeleton_switches
                    for camera_id, state in self._camera_states.items()
                },
            }

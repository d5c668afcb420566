"""
Metrics module for monitoring calibration training.

Provides functionality to:
- Track per camera pair sample counts, skipped rounds and rolling loss
- Measure training throughput
- Export summaries as JSON
"""

import json
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class CameraTrainingMetrics:
    """Training metrics of one non-reference camera."""
    camera_id: int
    samples: int = 0
    skipped: int = 0
    last_loss: float = 0.0

    _losses: deque = field(default_factory=lambda: deque(maxlen=300))

    @property
    def rolling_loss(self) -> float:
        if not self._losses:
            return 0.0
        return sum(self._losses) / len(self._losses)


class TrainingMetrics:
    """
    Thread-safe training metrics collector.

    Usage:
        metrics = TrainingMetrics()
        metrics.record_sample(1, loss=0.02)
        metrics.record_skip(2)
        summary = metrics.get_summary()
    """

    def __init__(self, history_size: int = 300):
        """
        Args:
            history_size: Number of samples kept for the rolling loss
        """
        self.history_size = history_size
        self._cameras: Dict[int, CameraTrainingMetrics] = {}
        self._lock = threading.Lock()
        self._start_time = time.time()

    def _camera(self, camera_id: int) -> CameraTrainingMetrics:
        if camera_id not in self._cameras:
            self._cameras[camera_id] = CameraTrainingMetrics(
                camera_id=camera_id,
                _losses=deque(maxlen=self.history_size),
            )
        return self._cameras[camera_id]

    def record_sample(self, camera_id: int, loss: float) -> None:
        with self._lock:
            cam = self._camera(camera_id)
            cam.samples += 1
            cam.last_loss = float(loss)
            cam._losses.append(float(loss))

    def record_skip(self, camera_id: int) -> None:
        with self._lock:
            self._camera(camera_id).skipped += 1

    def get_camera(self, camera_id: int) -> Optional[CameraTrainingMetrics]:
        with self._lock:
            return self._cameras.get(camera_id)

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            elapsed = time.time() - self._start_time
            total = sum(c.samples for c in self._cameras.values())
            return {
                "global": {
                    "elapsed_seconds": elapsed,
                    "total_samples": total,
                    "samples_per_second": total / elapsed if elapsed > 0 else 0.0,
                },
                "cameras": {
                    cam_id: {
                        "samples": cam.samples,
                        "skipped": cam.skipped,
                        "last_loss": cam.last_loss,
                        "rolling_loss": cam.rolling_loss,
                    }
                    for cam_id, cam in self._cameras.items()
                },
            }


class MetricsExporter:
    """Export metrics summaries to files."""

    @staticmethod
    def to_json(summary: Dict[str, Any], filepath: str) -> None:
        with open(filepath, "w") as f:
            json.dump(summary, f, indent=2, default=str)

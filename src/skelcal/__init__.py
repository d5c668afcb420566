"""
Multi-camera skeleton calibration.

Modules:
- matrix: Dense float matrix
- joints: Joint types, live skeleton snapshots and recorded frames
- logformat: Binary per-camera log format
- recorder: Per-camera skeleton recording
- replay: Synchronized replay of a recorded session
- sync_eval: Join quality statistics
- network: Feed-forward calibration network
- metrics: Training metrics collection
- calibration: Camera pair training and coordinate transform
- session: Capture ingestion and camera id registry
"""

from .errors import DimensionMismatch, FatalIOError, InvalidModeUse, NumericDivergence
from .matrix import Matrix
from .joints import (
    JointType, JointTrackingState, SkeletonTrackingState,
    SkeletonPoint, Joint, Skeleton, SkelFrame,
    NUM_JOINTS, UNTRACKED_POSITION_VALUE,
)
from .logformat import (
    camera_filename, session_label, read_camera_log,
    validate_log_integrity, list_session_files,
)
from .recorder import SkelRecorder
from .replay import SkelReplay, FRAME_TIME_THRESHOLD_MS
from .sync_eval import SyncEvaluator
from .network import (
    Activation, Loss, TrainingMode,
    NetworkParameters, CalibrationNetwork,
)
from .metrics import TrainingMetrics, MetricsExporter
from .calibration import Calibration, CalibrationConfig, CoordinateNormalizer
from .session import CameraRegistry, CaptureSession

__all__ = [
    # Errors
    "DimensionMismatch",
    "FatalIOError",
    "InvalidModeUse",
    "NumericDivergence",
    # Matrix
    "Matrix",
    # Joints
    "JointType",
    "JointTrackingState",
    "SkeletonTrackingState",
    "SkeletonPoint",
    "Joint",
    "Skeleton",
    "SkelFrame",
    "NUM_JOINTS",
    "UNTRACKED_POSITION_VALUE",
    # Log format
    "camera_filename",
    "session_label",
    "read_camera_log",
    "validate_log_integrity",
    "list_session_files",
    # Recording and replay
    "SkelRecorder",
    "SkelReplay",
    "FRAME_TIME_THRESHOLD_MS",
    "SyncEvaluator",
    # Network
    "Activation",
    "Loss",
    "TrainingMode",
    "NetworkParameters",
    "CalibrationNetwork",
    # Calibration
    "TrainingMetrics",
    "MetricsExporter",
    "Calibration",
    "CalibrationConfig",
    "CoordinateNormalizer",
    # Ingestion
    "CameraRegistry",
    "CaptureSession",
]

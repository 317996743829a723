from .coordinator import SyncCoordinator
from .diff import Conflict, SyncPlan, compute_differences
from .limiter import run_bounded
from .progress import ProgressTracker, SyncProgress, SyncStage, SyncStep
from .stores import StoreSet

__all__ = [
    "Conflict",
    "ProgressTracker",
    "StoreSet",
    "SyncCoordinator",
    "SyncPlan",
    "SyncProgress",
    "SyncStage",
    "SyncStep",
    "compute_differences",
    "run_bounded",
]

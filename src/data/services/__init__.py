"""Service layer for change detection, transfers and the sync loop."""

from .change_detector import EMPTY_FINGERPRINT, ChangeDetector
from .sync_orchestrator import SyncOrchestrator
from .sync_types import CycleOutcome, ExitCode, SyncDirection, SyncState

__all__ = [
    "ChangeDetector",
    "CycleOutcome",
    "EMPTY_FINGERPRINT",
    "ExitCode",
    "SyncDirection",
    "SyncOrchestrator",
    "SyncState",
]

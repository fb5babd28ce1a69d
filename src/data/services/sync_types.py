"""Typed contracts for local/remote synchronization flows."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SyncDirection(str, Enum):
    """Direction of a bulk transfer."""

    UP = "up"
    DOWN = "down"


class CycleOutcome(str, Enum):
    """How one pass of the polling loop ended."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SyncState:
    """Per-process loop state. Never shared with other nodes."""

    previous_fingerprint: Optional[str] = None
    consecutive_failures: int = 0
    termination_requested: bool = False
    cycles: int = 0

    @property
    def has_baseline(self) -> bool:
        return self.previous_fingerprint is not None


class ExitCode:
    """Process exit statuses."""

    OK = 0
    FAILURE = 1

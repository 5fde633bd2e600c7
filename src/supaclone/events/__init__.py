"""
Job events for supaclone.

Events are frozen pydantic models. The orchestrator, the recovery engine
and the monitoring system publish them on an EventBus; consumers only read.
"""

from supaclone.events.base import JobEvent
from supaclone.events.migration import (
    AlertCreated,
    FaultRecorded,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobStarted,
    ManualInterventionRequired,
    PhaseCompleted,
    PhaseSkipped,
    PhaseStarted,
    ProgressUpdated,
    RecoveryAttempted,
    RecoveryFailed,
    RecoveryStarted,
    RecoverySucceeded,
    RollbackCompleted,
)

__all__ = [
    "JobEvent",
    "JobStarted",
    "JobCompleted",
    "JobFailed",
    "JobCancelled",
    "PhaseStarted",
    "PhaseCompleted",
    "PhaseSkipped",
    "ProgressUpdated",
    "FaultRecorded",
    "ManualInterventionRequired",
    "RollbackCompleted",
    "RecoveryStarted",
    "RecoveryAttempted",
    "RecoverySucceeded",
    "RecoveryFailed",
    "AlertCreated",
]

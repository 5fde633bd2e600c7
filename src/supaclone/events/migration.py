"""
Events published while clone jobs run.

Job lifecycle:
    - JobStarted, JobCompleted, JobFailed, JobCancelled

Phase lifecycle:
    - PhaseStarted, PhaseCompleted, PhaseSkipped, ProgressUpdated

Faults and recovery:
    - FaultRecorded, ManualInterventionRequired, RollbackCompleted
    - RecoveryStarted, RecoveryAttempted, RecoverySucceeded, RecoveryFailed

Monitoring:
    - AlertCreated

A ManualInterventionRequired event is always published before the
matching JobFailed event so consumers can tell an operator hand-off apart
from an automatic failure.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import Field

from supaclone.events.base import JobEvent


class JobStarted(JobEvent):
    """A job left pending and began executing phases."""

    job: dict[str, Any] = Field(..., description="Snapshot of the job")


class JobCompleted(JobEvent):
    """Every required phase finished."""

    job: dict[str, Any] = Field(..., description="Snapshot of the job")
    duration_seconds: float = Field(..., ge=0)


class JobFailed(JobEvent):
    """An unrecovered fault stopped the job."""

    job: dict[str, Any] = Field(..., description="Snapshot of the job")
    error: str
    error_code: str | None = None
    phase: str | None = None


class JobCancelled(JobEvent):
    """An operator cancelled the job."""

    job: dict[str, Any] = Field(..., description="Snapshot of the job")


class PhaseStarted(JobEvent):
    """A phase attempt began."""

    phase: str
    attempt: int = Field(default=1, ge=1)


class PhaseCompleted(JobEvent):
    """A phase finished successfully."""

    phase: str
    overall_percentage: float


class PhaseSkipped(JobEvent):
    """A phase was skipped by configuration or by recovery."""

    phase: str
    reason: str


class ProgressUpdated(JobEvent):
    """The job's progress record was replaced."""

    phase: str
    overall_percentage: float
    details: str = ""
    stats: dict[str, int] = Field(default_factory=dict)


class FaultRecorded(JobEvent):
    """A phase executor raised and the fault was recorded."""

    error_id: UUID
    phase: str
    error_code: str
    severity: str
    message: str
    auto_recoverable: bool = False


class ManualInterventionRequired(JobEvent):
    """Recovery gave up; an operator has to step in."""

    phase: str
    reason: str
    error_code: str | None = None


class RollbackCompleted(JobEvent):
    """A checkpoint was restored."""

    phase: str
    checkpoint_id: UUID | None = None


class RecoveryStarted(JobEvent):
    """The recovery engine began handling a fault."""

    phase: str
    error_code: str
    attempt_number: int = Field(..., ge=1)


class RecoveryAttempted(JobEvent):
    """One recovery strategy was executed."""

    strategy_id: str
    success: bool
    duration_seconds: float = Field(..., ge=0)


class RecoverySucceeded(JobEvent):
    """A strategy reported success."""

    strategy_id: str
    action: str
    message: str


class RecoveryFailed(JobEvent):
    """A strategy returned a non-retry decision or raised."""

    strategy_id: str | None = None
    action: str | None = None
    error: str


class AlertCreated(JobEvent):
    """The monitoring system raised an alert."""

    alert_id: UUID
    alert_type: str
    severity: str
    title: str
    message: str
    error_id: UUID | None = None


__all__ = [
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

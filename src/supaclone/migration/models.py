"""
Data models for the supaclone migration core.

This module defines the job, progress, configuration, fault and checkpoint
records shared by the orchestrator, the recovery engine and the monitoring
system.

Models in this module:

Enums:
    - JobStatus: Job lifecycle status
    - CloneType: Scope of a clone
    - MigrationPhase: The ten pipeline phases
    - PhaseStatus: Status of one phase within a job
    - RecoveryAction: Decision returned by the recovery engine
    - BackoffKind: Delay policy of a recovery strategy

Configuration:
    - DataFilter: Per-table row filter for data subsets
    - MigrationConfiguration: Immutable job configuration
    - SourceProject: The project being cloned
    - MigrationJobOptions: Everything needed to start a job

Core Models:
    - PhaseProgress / MigrationStats / MigrationProgress: copy-on-write progress
    - MigrationErrorRecord: A fault recorded against a job
    - MigrationJob: The orchestrator-owned job record
    - Checkpoint: Snapshot taken before a phase runs
    - RecoveryAttempt / RecoveryContext / RecoveryResult: recovery bookkeeping
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from supaclone.migration.exceptions import ErrorCode, ErrorSeverity


class JobStatus(Enum):
    """
    Job lifecycle status.

    State machine transitions:
        PENDING -> RUNNING -> COMPLETED
                      |
                      +----> FAILED
                      +----> CANCELLED
        PENDING ----------> CANCELLED

    Attributes:
        PENDING: Job accepted but execution has not started.
        RUNNING: Phases are executing.
        COMPLETED: Every required phase finished.
        FAILED: An unrecovered fault stopped the job.
        CANCELLED: An operator cancelled the job.
    """

    PENDING = "pending"
    """Job accepted but execution has not started."""

    RUNNING = "running"
    """Phases are executing."""

    COMPLETED = "completed"
    """Every required phase finished."""

    FAILED = "failed"
    """An unrecovered fault stopped the job."""

    CANCELLED = "cancelled"
    """An operator cancelled the job."""

    @property
    def is_terminal(self) -> bool:
        """
        Check if this is a terminal status.

        Returns:
            True for COMPLETED, FAILED and CANCELLED.
        """
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        """
        Check if the job counts against the organization concurrency cap.

        Returns:
            True for PENDING and RUNNING.
        """
        return self in (JobStatus.PENDING, JobStatus.RUNNING)

    def can_transition_to(self, target: JobStatus) -> bool:
        """
        Check if transition to target status is valid.

        Args:
            target: The status to transition to.

        Returns:
            True if the transition is valid.
        """
        valid_transitions: dict[JobStatus, tuple[JobStatus, ...]] = {
            JobStatus.PENDING: (JobStatus.RUNNING, JobStatus.CANCELLED),
            JobStatus.RUNNING: (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED),
        }
        return target in valid_transitions.get(self, ())


class CloneType(Enum):
    """Scope of a clone."""

    FULL_CLONE = "full_clone"
    """Schema and every row."""

    SCHEMA_ONLY = "schema_only"
    """Schema without data; the data phase is skipped."""

    DATA_SUBSET = "data_subset"
    """Schema plus rows selected by data filters."""


class MigrationPhase(Enum):
    """
    The ten fixed phases of the clone pipeline, in execution order.

    Attributes:
        PREPARATION: Create the target project and wait until it is healthy.
        SCHEMA_MIGRATION: Read the source schema and apply it to the target.
        DATA_MIGRATION: Copy rows in batches.
        STORAGE_MIGRATION: Mirror buckets then objects.
        CONFIGURATION_MIGRATION: Copy project-level settings.
        EDGE_FUNCTIONS_MIGRATION: Fetch then deploy each edge function.
        SECURITY_MIGRATION: Row-level-security policies and custom roles.
        REALTIME_SETUP: Replication and publication configuration.
        VALIDATION: Integrity checks on the target.
        CUTOVER: Final switchover steps.
    """

    PREPARATION = "preparation"
    SCHEMA_MIGRATION = "schema_migration"
    DATA_MIGRATION = "data_migration"
    STORAGE_MIGRATION = "storage_migration"
    CONFIGURATION_MIGRATION = "configuration_migration"
    EDGE_FUNCTIONS_MIGRATION = "edge_functions_migration"
    SECURITY_MIGRATION = "security_migration"
    REALTIME_SETUP = "realtime_setup"
    VALIDATION = "validation"
    CUTOVER = "cutover"

    @property
    def is_rollback_safe(self) -> bool:
        """
        Check if checkpoints taken before this phase may be rolled back to.

        Returns:
            False for VALIDATION and CUTOVER.
        """
        return self not in (MigrationPhase.VALIDATION, MigrationPhase.CUTOVER)


class PhaseStatus(Enum):
    """Status of a single phase within a job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RecoveryAction(Enum):
    """
    Decision returned by the recovery engine.

    Attributes:
        RETRY: Wait the indicated delay, then run the phase again.
        SKIP: Mark the phase skipped and continue with the next one.
        ROLLBACK: Restore the checkpoint of the indicated phase, then retry.
        MANUAL_INTERVENTION: Stop; no further automatic action is possible.
    """

    RETRY = "retry"
    SKIP = "skip"
    ROLLBACK = "rollback"
    MANUAL_INTERVENTION = "manual_intervention"


class BackoffKind(Enum):
    """Delay policy of a recovery strategy."""

    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


@dataclass(frozen=True)
class DataFilter:
    """Row filter applied to one table of a data subset clone."""

    table: str
    where_clause: str


@dataclass(frozen=True)
class MigrationConfiguration:
    """
    Immutable configuration of a clone job.

    Bounds are not enforced here; validate_configuration() checks every
    field before a job is created so that all problems are reported at once.

    Attributes:
        clone_type: Scope of the clone.
        target_region: Region of the target project.
        target_compute_tier: Compute tier of the target project.
        parallel_threads: Fan-out of the data copy (1 to 20).
        batch_size: Rows per copy batch (100 to 10,000).
        enable_compression: Compress data in transit.
        include_storage: Run the storage phase.
        include_edge_functions: Run the edge functions phase.
        include_auth_config: Copy auth settings during configuration migration.
        preserve_user_data: Copy the auth schema's user rows.
        data_filters: Per-table row filters (data subset clones).
        exclude_tables: Tables never copied.
    """

    clone_type: CloneType
    target_region: str
    target_compute_tier: str = "micro"
    parallel_threads: int = 4
    batch_size: int = 1000
    enable_compression: bool = True
    include_storage: bool = True
    include_edge_functions: bool = True
    include_auth_config: bool = True
    preserve_user_data: bool = False
    data_filters: tuple[DataFilter, ...] = ()
    exclude_tables: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "clone_type": self.clone_type.value,
            "target_region": self.target_region,
            "target_compute_tier": self.target_compute_tier,
            "parallel_threads": self.parallel_threads,
            "batch_size": self.batch_size,
            "enable_compression": self.enable_compression,
            "include_storage": self.include_storage,
            "include_edge_functions": self.include_edge_functions,
            "include_auth_config": self.include_auth_config,
            "preserve_user_data": self.preserve_user_data,
            "data_filters": [
                {"table": f.table, "where_clause": f.where_clause} for f in self.data_filters
            ],
            "exclude_tables": list(self.exclude_tables),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfiguration:
        """
        Create configuration from dictionary.

        Raises:
            ValueError: If clone_type is not a known clone type.
        """
        return cls(
            clone_type=CloneType(data["clone_type"]),
            target_region=data.get("target_region", ""),
            target_compute_tier=data.get("target_compute_tier", "micro"),
            parallel_threads=data.get("parallel_threads", 4),
            batch_size=data.get("batch_size", 1000),
            enable_compression=data.get("enable_compression", True),
            include_storage=data.get("include_storage", True),
            include_edge_functions=data.get("include_edge_functions", True),
            include_auth_config=data.get("include_auth_config", True),
            preserve_user_data=data.get("preserve_user_data", False),
            data_filters=tuple(
                DataFilter(table=f["table"], where_clause=f["where_clause"])
                for f in data.get("data_filters", [])
            ),
            exclude_tables=tuple(data.get("exclude_tables", [])),
        )


@dataclass(frozen=True)
class SourceProject:
    """The hosted project being cloned."""

    id: str
    ref: str
    name: str = ""
    region: str = ""


@dataclass(frozen=True)
class MigrationJobOptions:
    """Everything the orchestrator needs to start a clone job."""

    source_project: SourceProject
    target_project_name: str
    target_region: str
    target_tier: str
    organization_id: str
    configuration: MigrationConfiguration


@dataclass(frozen=True)
class PhaseProgress:
    """Progress of one phase. Replaced, never mutated."""

    name: MigrationPhase
    status: PhaseStatus = PhaseStatus.PENDING
    percentage: float = 0.0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    details: str = ""


@dataclass(frozen=True)
class MigrationStats:
    """Aggregate counters of migrated objects against their totals."""

    tables_migrated: int = 0
    total_tables: int = 0
    rows_migrated: int = 0
    total_rows: int = 0
    storage_objects_migrated: int = 0
    total_storage_objects: int = 0
    functions_migrated: int = 0
    total_functions: int = 0


@dataclass(frozen=True)
class MigrationProgress:
    """
    Copy-on-write progress record of a job.

    Every update produces a new instance; holders of an older instance
    never see it change.

    Attributes:
        overall_percentage: Completion of the whole job, 0 to 100.
        current_phase: Phase currently executing (or last executed).
        phases: One entry per pipeline phase, in pipeline order.
        stats: Aggregate object counters.
    """

    overall_percentage: float = 0.0
    current_phase: MigrationPhase = MigrationPhase.PREPARATION
    phases: tuple[PhaseProgress, ...] = ()
    stats: MigrationStats = field(default_factory=MigrationStats)

    @classmethod
    def initial(cls) -> MigrationProgress:
        """Create the progress record of a freshly accepted job."""
        return cls(phases=tuple(PhaseProgress(name=phase) for phase in MigrationPhase))

    def phase(self, phase: MigrationPhase) -> PhaseProgress:
        """
        Get the progress entry of one phase.

        Raises:
            KeyError: If the phase has no entry.
        """
        for entry in self.phases:
            if entry.name == phase:
                return entry
        raise KeyError(phase)

    def with_phase(self, phase: MigrationPhase, **changes: Any) -> MigrationProgress:
        """Return a copy with one phase entry replaced."""
        return replace(
            self,
            phases=tuple(
                replace(entry, **changes) if entry.name == phase else entry
                for entry in self.phases
            ),
        )

    def with_stats(self, **changes: int) -> MigrationProgress:
        """Return a copy with some counters replaced."""
        return replace(self, stats=replace(self.stats, **changes))


@dataclass
class MigrationErrorRecord:
    """
    A fault recorded against a job.

    Only the recovery flags change after creation.

    Attributes:
        phase: Phase whose executor raised.
        severity: Severity of the fault.
        error_code: Stable fault code.
        message: Human-readable description.
        details: Free-text details (exception type and chain).
        auto_recoverable: Whether the fault looks transient.
        id: Unique record identifier.
        timestamp: When the fault was recorded (UTC).
        recovery_attempted: Set once the recovery engine has handled it.
        recovery_successful: Outcome of that recovery.
        recovered_at: When the recovery outcome was flagged.
        resolution_suggestion: Operator guidance, if any.
    """

    phase: MigrationPhase
    severity: ErrorSeverity
    error_code: ErrorCode
    message: str
    details: str = ""
    auto_recoverable: bool = False
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    recovery_attempted: bool = False
    recovery_successful: bool | None = None
    recovered_at: datetime | None = None
    resolution_suggestion: str | None = None

    def mark_recovery(self, successful: bool, at: datetime | None = None) -> None:
        """Flag the outcome of the recovery attempt for this fault."""
        self.recovery_attempted = True
        self.recovery_successful = successful
        self.recovered_at = at or datetime.now(UTC)

    @property
    def time_to_recovery(self) -> timedelta | None:
        """Time between the fault and its recovery outcome, if flagged."""
        if self.recovered_at is None:
            return None
        return self.recovered_at - self.timestamp

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "phase": self.phase.value,
            "severity": self.severity.value,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "auto_recoverable": self.auto_recoverable,
            "recovery_attempted": self.recovery_attempted,
            "recovery_successful": self.recovery_successful,
            "resolution_suggestion": self.resolution_suggestion,
        }


@dataclass
class MigrationJob:
    """
    A clone job. Owned and mutated only by the orchestrator.

    Consumers receive snapshot() copies and never the live record.

    Attributes:
        source_project_id: Id of the project being cloned.
        organization_id: Organization the job counts against.
        clone_type: Scope of the clone.
        configuration: Immutable configuration.
        created_by: User that requested the job.
        id: Unique job identifier.
        target_project_id: Id of the created target project.
        target_project_ref: Reference of the created target project.
        status: Lifecycle status.
        created_at: When the job was accepted.
        started_at: When execution began.
        completed_at: When the job reached a terminal status.
        estimated_duration: Duration estimate made at submission.
        actual_duration: Measured duration once terminal.
        error_log: Every fault recorded for the job, in order.
        progress: Current progress record.
    """

    source_project_id: str
    organization_id: str
    clone_type: CloneType
    configuration: MigrationConfiguration
    created_by: str
    id: UUID = field(default_factory=uuid4)
    target_project_id: str | None = None
    target_project_ref: str | None = None
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimated_duration: timedelta = timedelta(0)
    actual_duration: timedelta | None = None
    error_log: list[MigrationErrorRecord] = field(default_factory=list)
    progress: MigrationProgress = field(default_factory=MigrationProgress.initial)

    def snapshot(self) -> MigrationJob:
        """Return a deep copy that is safe to hand to consumers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": str(self.id),
            "source_project_id": self.source_project_id,
            "target_project_id": self.target_project_id,
            "organization_id": self.organization_id,
            "status": self.status.value,
            "clone_type": self.clone_type.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "estimated_duration_seconds": self.estimated_duration.total_seconds(),
            "actual_duration_seconds": (
                self.actual_duration.total_seconds() if self.actual_duration else None
            ),
            "overall_percentage": self.progress.overall_percentage,
            "current_phase": self.progress.current_phase.value,
            "error_count": len(self.error_log),
            "created_by": self.created_by,
        }


@dataclass(frozen=True)
class Checkpoint:
    """
    Snapshot of a job taken immediately before a phase runs.

    Attributes:
        job_id: Job the checkpoint belongs to.
        phase: Phase about to run when the checkpoint was taken.
        progress: Progress at capture time.
        state: Opaque phase-specific state.
        can_rollback: Whether the phase may be rolled back.
        rollback_instructions: Ordered steps that undo the phase.
        id: Unique checkpoint identifier.
        timestamp: Capture time (UTC).
    """

    job_id: UUID
    phase: MigrationPhase
    progress: MigrationProgress
    state: dict[str, Any]
    can_rollback: bool
    rollback_instructions: tuple[str, ...] = ()
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class RecoveryAttempt:
    """One strategy execution within a recovery episode."""

    strategy_id: str
    success: bool
    duration: timedelta
    error: str | None = None
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class RecoveryContext:
    """
    Per-job state of one failure episode.

    Created on the first fault of an episode and discarded when the phase
    succeeds or recovery reaches a final decision.

    Attributes:
        job_id: Job being recovered.
        phase: Phase that raised the first fault.
        attempt_number: 1-based count of faults handled in this episode.
        previous_attempts: Strategy executions so far.
        error_history: Faults handled in this episode.
    """

    job_id: UUID
    phase: MigrationPhase
    attempt_number: int = 1
    previous_attempts: list[RecoveryAttempt] = field(default_factory=list)
    error_history: list[MigrationErrorRecord] = field(default_factory=list)


@dataclass(frozen=True)
class RecoveryResult:
    """
    Decision returned by the recovery engine.

    Attributes:
        success: Whether the strategy considers the fault handled.
        action: What the phase runner should do next.
        message: Human-readable explanation.
        delay: Time to wait before retrying.
        rollback_to_phase: Phase whose checkpoint was (or should be) restored.
        requires_manual_intervention: True when an operator must step in.
        strategy_id: Strategy that produced the decision, if any.
    """

    success: bool
    action: RecoveryAction
    message: str
    delay: timedelta = timedelta(0)
    rollback_to_phase: MigrationPhase | None = None
    requires_manual_intervention: bool = False
    strategy_id: str | None = None

    @classmethod
    def manual(cls, message: str, strategy_id: str | None = None) -> RecoveryResult:
        """Create a manual-intervention decision."""
        return cls(
            success=False,
            action=RecoveryAction.MANUAL_INTERVENTION,
            message=message,
            requires_manual_intervention=True,
            strategy_id=strategy_id,
        )


__all__ = [
    "JobStatus",
    "CloneType",
    "MigrationPhase",
    "PhaseStatus",
    "RecoveryAction",
    "BackoffKind",
    "DataFilter",
    "MigrationConfiguration",
    "SourceProject",
    "MigrationJobOptions",
    "PhaseProgress",
    "MigrationStats",
    "MigrationProgress",
    "MigrationErrorRecord",
    "MigrationJob",
    "Checkpoint",
    "RecoveryAttempt",
    "RecoveryContext",
    "RecoveryResult",
]

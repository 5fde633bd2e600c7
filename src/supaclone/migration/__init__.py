"""
Clone job orchestration for hosted database projects.

Runs a fixed ten-phase pipeline that copies a source project into a newly
created target project, with checkpointing, strategy-based error recovery,
fault monitoring and an event stream.

Key Components:
    - MigrationOrchestrator: Accepts jobs and runs them through the phase table
    - ErrorRecoveryEngine: Decides retry, skip, rollback or manual intervention
    - CheckpointStore: Per-job checkpoints with rollback
    - ErrorMonitoringSystem: Fault log, metrics, pattern detection, alerts, health
    - JobEventStreamer: Async iterator over one job's events

Phases:
    preparation, schema_migration, data_migration, storage_migration,
    configuration_migration, edge_functions_migration, security_migration,
    realtime_setup, validation, cutover

Usage:
    >>> from supaclone.migration import (
    ...     MigrationCollaborators,
    ...     MigrationOrchestrator,
    ... )
    >>>
    >>> orchestrator = MigrationOrchestrator(
    ...     MigrationCollaborators(management, inspector, target_database),
    ... )
    >>> job_id = await orchestrator.start(options, requesting_user="user-1")
    >>>
    >>> async for event in JobEventStreamer(orchestrator.event_bus, job_id).stream_events():
    ...     print(event.event_type)
"""

from supaclone.migration.audit import (
    VALIDATION_FAILED_JOB_ID,
    AuditAction,
    AuditEntry,
    AuditLog,
    InMemoryAuditLog,
)
from supaclone.migration.checkpoints import (
    DEFAULT_CHECKPOINT_LIMIT,
    CheckpointStore,
    rollback_instructions_for,
)
from supaclone.migration.classification import ClassifiedFault, classify_fault
from supaclone.migration.collaborators import (
    ApiResult,
    DatabaseConfig,
    DatabaseSchema,
    EdgeFunction,
    LoggingRollbackExecutor,
    NoOpRecoveryActions,
    ProjectInfo,
    ProjectManagementClient,
    RecoveryActions,
    RollbackExecutor,
    SchemaInspector,
    StorageBucket,
    StorageObject,
    TableInfo,
    TargetDatabase,
)
from supaclone.migration.exceptions import (
    CollaboratorError,
    ConcurrencyLimitError,
    ConfigurationValidationError,
    ErrorClassification,
    ErrorCode,
    ErrorRecoverability,
    ErrorSeverity,
    JobNotFoundError,
    JobStateError,
    ManualInterventionRequiredError,
    PhaseRetriesExhaustedError,
    PhaseRolledBackError,
    ProjectNotReadyError,
    SupacloneError,
    ValidationFailedError,
)
from supaclone.migration.health import (
    HealthCheck,
    HealthProbe,
    HealthStatus,
    ProbeDefinition,
    ProbeResult,
    default_probes,
)
from supaclone.migration.metrics import MetricSnapshot, MonitoringMetrics
from supaclone.migration.models import (
    BackoffKind,
    Checkpoint,
    CloneType,
    DataFilter,
    JobStatus,
    MigrationConfiguration,
    MigrationErrorRecord,
    MigrationJob,
    MigrationJobOptions,
    MigrationPhase,
    MigrationProgress,
    MigrationStats,
    PhaseProgress,
    PhaseStatus,
    RecoveryAction,
    RecoveryAttempt,
    RecoveryContext,
    RecoveryResult,
    SourceProject,
)
from supaclone.migration.monitoring import (
    AlertType,
    ErrorAlert,
    ErrorMetrics,
    ErrorMonitoringSystem,
    ErrorPattern,
    ErrorTrends,
    SystemHealth,
)
from supaclone.migration.orchestrator import MigrationOrchestrator
from supaclone.migration.phases import (
    PHASE_TABLE,
    JobRuntime,
    MigrationCollaborators,
    PhaseContext,
    PhaseDescriptor,
    descriptor_for,
)
from supaclone.migration.recovery import (
    ErrorRecoveryEngine,
    RecoveryStrategy,
    StrategyRegistry,
    calculate_backoff_delay,
)
from supaclone.migration.status_streamer import JobEventStreamer, is_terminal_event
from supaclone.migration.validation import (
    validate_configuration,
    validate_job_options,
)

__all__ = [
    # Orchestration
    "MigrationOrchestrator",
    "MigrationCollaborators",
    "PHASE_TABLE",
    "PhaseDescriptor",
    "PhaseContext",
    "JobRuntime",
    "descriptor_for",
    # Models
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
    # Validation
    "validate_configuration",
    "validate_job_options",
    # Recovery
    "ErrorRecoveryEngine",
    "RecoveryStrategy",
    "StrategyRegistry",
    "calculate_backoff_delay",
    "CheckpointStore",
    "DEFAULT_CHECKPOINT_LIMIT",
    "rollback_instructions_for",
    # Classification
    "ClassifiedFault",
    "classify_fault",
    # Monitoring
    "ErrorMonitoringSystem",
    "AlertType",
    "ErrorAlert",
    "ErrorMetrics",
    "ErrorPattern",
    "ErrorTrends",
    "SystemHealth",
    "HealthCheck",
    "HealthProbe",
    "HealthStatus",
    "ProbeDefinition",
    "ProbeResult",
    "default_probes",
    "MonitoringMetrics",
    "MetricSnapshot",
    # Audit
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "InMemoryAuditLog",
    "VALIDATION_FAILED_JOB_ID",
    # Streaming
    "JobEventStreamer",
    "is_terminal_event",
    # Collaborators
    "ApiResult",
    "ProjectInfo",
    "DatabaseConfig",
    "DatabaseSchema",
    "TableInfo",
    "StorageBucket",
    "StorageObject",
    "EdgeFunction",
    "ProjectManagementClient",
    "SchemaInspector",
    "TargetDatabase",
    "RecoveryActions",
    "RollbackExecutor",
    "NoOpRecoveryActions",
    "LoggingRollbackExecutor",
    # Exceptions
    "SupacloneError",
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorCode",
    "ErrorClassification",
    "ConfigurationValidationError",
    "ConcurrencyLimitError",
    "JobNotFoundError",
    "JobStateError",
    "CollaboratorError",
    "ProjectNotReadyError",
    "ValidationFailedError",
    "PhaseRolledBackError",
    "ManualInterventionRequiredError",
    "PhaseRetriesExhaustedError",
]

"""
Exceptions and error taxonomy for the supaclone migration core.

This module defines the closed set of fault codes used for recovery strategy
matching, the severity scale attached to every recorded fault, and the
exception hierarchy raised by the orchestrator and its collaborators.

Exception Hierarchy:
    SupacloneError (base)
    +-- ConfigurationValidationError
    +-- ConcurrencyLimitError
    +-- JobNotFoundError
    +-- JobStateError
    +-- CollaboratorError
    +-- ProjectNotReadyError
    +-- ValidationFailedError
    +-- PhaseRolledBackError
    +-- ManualInterventionRequiredError
    +-- PhaseRetriesExhaustedError

Error Classification:
    - ErrorSeverity: LOW, MEDIUM, HIGH, CRITICAL levels
    - ErrorRecoverability: RECOVERABLE, TRANSIENT, FATAL categories
    - ErrorCode: the stable fault codes recovery strategies match on
    - ErrorClassification: rich metadata for each exception type
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from supaclone.migration.models import JobStatus, MigrationPhase

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """
    Severity level of a recorded fault.

    Used for alerting, pattern detection and logging decisions.

    Attributes:
        LOW: Cosmetic or informational problem.
        MEDIUM: Problem that usually needs an operator decision.
            Examples: permission and authentication faults.
        HIGH: Significant failure of a phase attempt.
            Examples: connection timeouts, unknown faults.
        CRITICAL: Failure that threatens the integrity of the clone.
    """

    LOW = "low"
    """Cosmetic or informational problem."""

    MEDIUM = "medium"
    """Problem that usually needs an operator decision."""

    HIGH = "high"
    """Significant failure of a phase attempt."""

    CRITICAL = "critical"
    """Failure that threatens the integrity of the clone."""

    @property
    def should_alert(self) -> bool:
        """
        Check if this severity level raises an immediate alert.

        Returns:
            True only for CRITICAL.
        """
        return self == ErrorSeverity.CRITICAL

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.HIGH: logging.ERROR,
            ErrorSeverity.MEDIUM: logging.WARNING,
            ErrorSeverity.LOW: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for supaclone exceptions.

    Attributes:
        RECOVERABLE: Can be recovered from with operator action.
        TRANSIENT: Temporary problem that may resolve on retry.
        FATAL: Unrecoverable; the request or job must be abandoned.
    """

    RECOVERABLE = "recoverable"
    """Can be recovered from with operator action."""

    TRANSIENT = "transient"
    """Temporary problem that may resolve on retry."""

    FATAL = "fatal"
    """Unrecoverable; the request or job must be abandoned."""

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT


class ErrorCode(Enum):
    """
    Stable fault codes attached to every recorded phase fault.

    Recovery strategies declare the codes they handle; the set is closed so
    strategy matching never depends on free-form text.
    """

    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    NETWORK_ERROR = "NETWORK_ERROR"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    RESOURCE_LOCKED = "RESOURCE_LOCKED"
    RESOURCE_EXISTS = "RESOURCE_EXISTS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INSUFFICIENT_PRIVILEGES = "INSUFFICIENT_PRIVILEGES"
    AUTH_FAILED = "AUTH_FAILED"
    DATA_CORRUPTION = "DATA_CORRUPTION"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    FOREIGN_KEY_ERROR = "FOREIGN_KEY_ERROR"
    CRITICAL_ERROR = "CRITICAL_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    OPTIONAL_COMPONENT_ERROR = "OPTIONAL_COMPONENT_ERROR"
    FEATURE_NOT_SUPPORTED = "FEATURE_NOT_SUPPORTED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    @property
    def is_transient(self) -> bool:
        """
        Check if faults with this code usually clear up on their own.

        Returns:
            True for connectivity and lock related codes.
        """
        return self in (
            ErrorCode.CONNECTION_TIMEOUT,
            ErrorCode.CONNECTION_REFUSED,
            ErrorCode.NETWORK_ERROR,
            ErrorCode.REQUEST_TIMEOUT,
            ErrorCode.RESOURCE_LOCKED,
        )


@dataclass(frozen=True)
class ErrorClassification:
    """
    Rich metadata for an exception type.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
        fault_code: Fault code used when the error surfaces inside a phase.
        metrics_labels: Labels for metrics instrumentation.

    Example:
        >>> classification = ErrorClassification(
        ...     severity=ErrorSeverity.HIGH,
        ...     recoverability=ErrorRecoverability.TRANSIENT,
        ...     error_code="PROJECT_NOT_READY",
        ...     category="provisioning",
        ...     suggested_action="Check the target project in the dashboard",
        ...     fault_code=ErrorCode.REQUEST_TIMEOUT,
        ... )
    """

    severity: ErrorSeverity
    """The severity level of the error."""

    recoverability: ErrorRecoverability
    """How the error can be recovered from."""

    error_code: str
    """Unique error code for programmatic handling."""

    category: str
    """Error category for grouping related errors."""

    suggested_action: str
    """Human-readable guidance for operators."""

    fault_code: ErrorCode | None = None
    """Fault code used when the error surfaces inside a phase."""

    metrics_labels: dict[str, str] = field(default_factory=dict)
    """Labels for metrics instrumentation."""

    def to_dict(self) -> dict[str, Any]:
        """
        Convert classification to dictionary for serialization.

        Returns:
            Dictionary representation of the classification.
        """
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        if self.fault_code:
            result["fault_code"] = self.fault_code.value
        if self.metrics_labels:
            result["metrics_labels"] = self.metrics_labels
        return result


class SupacloneError(Exception):
    """
    Base exception for all supaclone errors.

    All exceptions raised by the migration core inherit from this class,
    allowing callers to catch every supaclone error with a single handler.

    Attributes:
        message: Human-readable error description.
        job_id: The job that caused the error, if applicable.
        organization_id: The organization involved, if applicable.
        recoverable: Whether this error can be recovered from.
        suggested_action: Suggested action for recovery.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.HIGH,
        recoverability=ErrorRecoverability.FATAL,
        error_code="SUPACLONE_ERROR",
        category="general",
        suggested_action="Review migration logs and contact support if issue persists",
    )

    def __init__(
        self,
        message: str,
        *,
        job_id: UUID | None = None,
        organization_id: str | None = None,
        recoverable: bool = False,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.job_id = job_id
        self.organization_id = organization_id
        self.recoverable = recoverable
        self.suggested_action = suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        parts = [self.message]
        if self.job_id:
            parts.append(f"job_id={self.job_id}")
        if self.organization_id:
            parts.append(f"organization_id={self.organization_id}")
        if self.recoverable:
            parts.append("(recoverable)")
        return " ".join(parts)

    @property
    def classification(self) -> ErrorClassification:
        """
        Get the error classification for this exception.

        Subclasses override _default_classification to provide
        specific classification metadata for their error type.
        """
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        """Get the severity level of this error."""
        return self.classification.severity

    @property
    def recoverability_type(self) -> ErrorRecoverability:
        """Get the recoverability classification of this error."""
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        """
        Get the unique error code for this exception.

        Returns:
            String error code (e.g., "CONCURRENCY_LIMIT").
        """
        return self.classification.error_code

    @property
    def fault_code(self) -> ErrorCode | None:
        """
        Get the fault code recorded when this error escapes a phase.

        Returns:
            ErrorCode, or None when the error never enters the pipeline.
        """
        return self.classification.fault_code

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "job_id": str(self.job_id) if self.job_id else None,
            "organization_id": self.organization_id,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class ConfigurationValidationError(SupacloneError):
    """
    Raised when a migration request fails input validation.

    The request is rejected before any job is registered; this is never
    treated as a retryable fault.

    Attributes:
        errors: Every validation failure found, in check order.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.MEDIUM,
        recoverability=ErrorRecoverability.FATAL,
        error_code="CONFIGURATION_INVALID",
        category="validation",
        suggested_action="Correct the listed configuration problems and resubmit",
    )

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(
            message=f"Migration configuration validation failed: {', '.join(self.errors)}",
            recoverable=False,
        )


class ConcurrencyLimitError(SupacloneError):
    """
    Raised when an organization already has the maximum number of active jobs.

    Attributes:
        active_jobs: Number of pending or running jobs for the organization.
        limit: Configured per-organization limit.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.MEDIUM,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="CONCURRENCY_LIMIT",
        category="capacity",
        suggested_action="Wait for a running migration to finish, then resubmit",
    )

    def __init__(self, organization_id: str, active_jobs: int, limit: int) -> None:
        self.active_jobs = active_jobs
        self.limit = limit
        super().__init__(
            message=f"Maximum concurrent migrations ({limit}) reached for organization",
            organization_id=organization_id,
            recoverable=False,
        )


class JobNotFoundError(SupacloneError):
    """Raised when a job id is not tracked by the orchestrator."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.MEDIUM,
        recoverability=ErrorRecoverability.FATAL,
        error_code="JOB_NOT_FOUND",
        category="lookup",
        suggested_action="Verify the job ID is correct",
    )

    def __init__(self, job_id: UUID) -> None:
        super().__init__(
            message=f"Migration job not found: {job_id}",
            job_id=job_id,
        )


class JobStateError(SupacloneError):
    """
    Raised when an operation is not allowed in the job's current status.

    Attributes:
        status: Status of the job when the operation was attempted.
        operation: The operation that was rejected.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.MEDIUM,
        recoverability=ErrorRecoverability.FATAL,
        error_code="JOB_STATE_ERROR",
        category="state",
        suggested_action="Check the job status before retrying the operation",
    )

    def __init__(self, job_id: UUID, status: JobStatus, operation: str) -> None:
        self.status = status
        self.operation = operation
        super().__init__(
            message=f"Cannot {operation} migration in status {status.value}",
            job_id=job_id,
        )


class CollaboratorError(SupacloneError):
    """
    Raised when an external collaborator reports a failed call.

    Carries a structured fault code derived from the collaborator's own
    error so recovery never has to guess from the message text.

    Attributes:
        operation: Name of the collaborator operation that failed.
        code: Fault code derived from the collaborator error.
        status: Raw collaborator error status, if any.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.HIGH,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="COLLABORATOR_ERROR",
        category="collaborator",
        suggested_action="Check the management API and database availability",
    )

    def __init__(
        self,
        operation: str,
        code: ErrorCode,
        message: str,
        *,
        status: str | None = None,
        job_id: UUID | None = None,
    ) -> None:
        self.operation = operation
        self.code = code
        self.status = status
        super().__init__(
            message=f"{operation} failed: {message}",
            job_id=job_id,
            recoverable=code.is_transient,
        )

    @property
    def fault_code(self) -> ErrorCode:
        return self.code


class ProjectNotReadyError(SupacloneError):
    """
    Raised when a newly created project never reports a healthy status.

    Attributes:
        project_ref: Reference of the project that was polled.
        attempts: Number of polls made before giving up.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.HIGH,
        recoverability=ErrorRecoverability.FATAL,
        error_code="PROJECT_NOT_READY",
        category="provisioning",
        suggested_action="Inspect the target project; provisioning did not finish in time",
        fault_code=ErrorCode.REQUEST_TIMEOUT,
    )

    def __init__(self, project_ref: str, attempts: int) -> None:
        self.project_ref = project_ref
        self.attempts = attempts
        super().__init__(
            message=f"Project {project_ref} did not become ready after {attempts} checks",
        )


class ValidationFailedError(SupacloneError):
    """
    Raised when post-migration integrity checks report problems.

    Attributes:
        problems: Human-readable descriptions of each failed check.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="VALIDATION_FAILED",
        category="integrity",
        suggested_action="Compare source and target manually before retrying the clone",
        fault_code=ErrorCode.DATA_CORRUPTION,
    )

    def __init__(self, problems: list[str], job_id: UUID | None = None) -> None:
        self.problems = list(problems)
        super().__init__(
            message=f"CRITICAL: integrity validation failed: {'; '.join(self.problems)}",
            job_id=job_id,
        )


class PhaseRolledBackError(SupacloneError):
    """
    Raised inside the phase runner after a checkpoint has been restored.

    Ends the current phase attempt; the runner counts it against the
    phase retry ceiling and tries the phase again.

    Attributes:
        phase: The phase whose checkpoint was restored.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.MEDIUM,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="PHASE_ROLLED_BACK",
        category="recovery",
        suggested_action="No action needed; the phase is retried automatically",
    )

    def __init__(self, job_id: UUID, phase: MigrationPhase) -> None:
        self.phase = phase
        super().__init__(
            message=f"Rolled back to {phase.value} phase",
            job_id=job_id,
            recoverable=True,
        )


class ManualInterventionRequiredError(SupacloneError):
    """
    Raised when recovery gives up and an operator has to step in.

    Attributes:
        phase: Phase that could not be recovered.
        reason: Message returned by the recovery engine.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.HIGH,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="MANUAL_INTERVENTION_REQUIRED",
        category="recovery",
        suggested_action="Review the job error log, fix the cause, and start a new migration",
    )

    def __init__(self, job_id: UUID, phase: MigrationPhase, reason: str) -> None:
        self.phase = phase
        self.reason = reason
        super().__init__(
            message=f"Manual intervention required: {reason}",
            job_id=job_id,
        )


class PhaseRetriesExhaustedError(SupacloneError):
    """
    Raised when a phase keeps failing after the retry ceiling is reached.

    Attributes:
        phase: Phase that exhausted its retries.
        attempts: Total number of attempts made.
        last_error: The fault raised by the final attempt.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.HIGH,
        recoverability=ErrorRecoverability.FATAL,
        error_code="PHASE_RETRIES_EXHAUSTED",
        category="recovery",
        suggested_action="Investigate the repeated failure before starting a new migration",
    )

    def __init__(
        self,
        job_id: UUID,
        phase: MigrationPhase,
        attempts: int,
        last_error: BaseException,
    ) -> None:
        self.phase = phase
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            message=f"Phase {phase.value} failed after {attempts} attempts: {last_error}",
            job_id=job_id,
        )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorCode",
    "ErrorClassification",
    "SupacloneError",
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

"""
MigrationOrchestrator - runs clone jobs through the ten-phase pipeline.

The orchestrator owns every job it accepts. It validates requests, enforces
the per-organization concurrency cap, runs each job on its own asyncio task
and walks the fixed phase table for it. Every phase attempt is preceded by a
checkpoint; every fault is classified, logged on the job, pushed to error
monitoring and handed to the recovery engine, whose decision the
orchestrator then carries out.

Job lifecycle:
    PENDING -> RUNNING -> COMPLETED   (job evicted from the registry)
                       -> FAILED      (job kept for inspection)
                       -> CANCELLED   (job kept for inspection)
    PENDING -> CANCELLED

Phase runner, per phase:
    1. Checkpoint before the first attempt
    2. Run the executor; on success mark the phase completed
    3. On a fault: classify, record, ask the recovery engine, then
       - retry: sleep the delay and run the phase again
       - skip: mark the phase skipped and continue
       - rollback: restore the phase checkpoint and run the phase again
       - manual intervention: fail the phase and the job
    4. More than ``max_phase_retries`` retries fail the job

Cancellation is checked between phases only; a phase that is already
running finishes (or fails) before the cancellation takes effect.

Consumers never see live job records: status(), list_jobs() and every
published event carry copies.

Usage:
    >>> orchestrator = MigrationOrchestrator(
    ...     MigrationCollaborators(management, inspector, target_database),
    ...     event_bus=bus,
    ... )
    >>> job_id = await orchestrator.start(options, requesting_user="user-1")
    >>> job = await orchestrator.wait_for_completion(job_id)
    >>> job.status
    <JobStatus.COMPLETED: 'completed'>
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, NoReturn
from uuid import UUID

from supaclone.bus import EventBus, InMemoryEventBus
from supaclone.config import OrchestratorSettings
from supaclone.events import (
    FaultRecorded,
    JobCancelled,
    JobCompleted,
    JobEvent,
    JobFailed,
    JobStarted,
    ManualInterventionRequired,
    PhaseCompleted,
    PhaseSkipped,
    PhaseStarted,
    ProgressUpdated,
    RollbackCompleted,
)
from supaclone.migration.audit import (
    VALIDATION_FAILED_JOB_ID,
    AuditEntry,
    AuditLog,
    InMemoryAuditLog,
)
from supaclone.migration.checkpoints import CheckpointStore
from supaclone.migration.classification import classify_fault
from supaclone.migration.exceptions import (
    ConcurrencyLimitError,
    ConfigurationValidationError,
    JobNotFoundError,
    JobStateError,
    ManualInterventionRequiredError,
    PhaseRetriesExhaustedError,
    PhaseRolledBackError,
)
from supaclone.migration.metrics import MonitoringMetrics
from supaclone.migration.models import (
    Checkpoint,
    CloneType,
    JobStatus,
    MigrationConfiguration,
    MigrationErrorRecord,
    MigrationJob,
    MigrationJobOptions,
    MigrationPhase,
    MigrationProgress,
    PhaseStatus,
    RecoveryAction,
    RecoveryResult,
)
from supaclone.migration.monitoring import ErrorMonitoringSystem
from supaclone.migration.phases import (
    PHASE_TABLE,
    JobRuntime,
    MigrationCollaborators,
    PhaseContext,
    PhaseDescriptor,
)
from supaclone.migration.recovery import ErrorRecoveryEngine
from supaclone.migration.validation import validate_job_options
from supaclone.observability import Tracer, create_tracer
from supaclone.observability.attributes import (
    ATTR_CLONE_TYPE,
    ATTR_ERROR_CODE,
    ATTR_JOB_ID,
    ATTR_JOB_STATUS,
    ATTR_ORGANIZATION_ID,
    ATTR_PHASE,
    ATTR_RETRY_COUNT,
    ATTR_SOURCE_PROJECT,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

BASE_ESTIMATE_MINUTES = 5.0
CLONE_TYPE_MINUTES: dict[CloneType, float] = {
    CloneType.SCHEMA_ONLY: 2.0,
    CloneType.DATA_SUBSET: 15.0,
    CloneType.FULL_CLONE: 30.0,
}
STORAGE_MINUTES = 10.0
EDGE_FUNCTIONS_MINUTES = 5.0
AUTH_CONFIG_MINUTES = 3.0

# 100 is reserved for completed jobs.
MAX_RUNNING_PERCENTAGE = 99.0


class _PhaseOutcome(Enum):
    RETRY = "retry"
    SKIPPED = "skipped"


def _now() -> datetime:
    return datetime.now(UTC)


def _describe_exception(exc: BaseException) -> str:
    """Type and message of an exception and of every exception that caused it."""
    parts = []
    current: BaseException | None = exc
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        parts.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return " <- ".join(parts)


class MigrationOrchestrator:
    """
    Orchestrates the lifecycle of clone jobs.

    Every collaborator is injected; anything not given is constructed with
    defaults and shares this orchestrator's event bus and tracer.

    Attributes:
        _jobs: Registry of pending, running, failed and cancelled jobs.
        _options: Request options by job id.
        _runtimes: Values discovered while each job runs.
        _tasks: Running job tasks by job id.
        _lock: Serializes the registry and the concurrency cap check.
    """

    def __init__(
        self,
        collaborators: MigrationCollaborators,
        *,
        recovery_engine: ErrorRecoveryEngine | None = None,
        monitoring: ErrorMonitoringSystem | None = None,
        event_bus: EventBus | None = None,
        audit_log: AuditLog | None = None,
        settings: OrchestratorSettings | None = None,
        metrics: MonitoringMetrics | None = None,
        sleep: Sleep | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            collaborators: Management API, schema inspector and target database
            recovery_engine: Recovery engine (default: built-in strategies,
                checkpoint store sized by settings.checkpoint_limit)
            monitoring: Error monitoring system
            event_bus: Bus receiving job events (default: InMemoryEventBus)
            audit_log: Audit trail (default: InMemoryAuditLog)
            settings: Limits and timings
            metrics: Metric instruments (default: the monitoring system's)
            sleep: Coroutine used for readiness polling and recovery backoff
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._settings = settings or OrchestratorSettings()
        self._tracer = tracer or create_tracer(
            __name__, enable_tracing and self._settings.enable_tracing
        )
        self._enable_tracing = self._tracer.enabled
        self._collaborators = collaborators

        self._owns_event_bus = event_bus is None
        self._event_bus = event_bus or InMemoryEventBus(tracer=self._tracer)
        self._recovery = recovery_engine or ErrorRecoveryEngine(
            CheckpointStore(limit=self._settings.checkpoint_limit, tracer=self._tracer),
            event_bus=self._event_bus,
            tracer=self._tracer,
        )
        self._monitoring = monitoring or ErrorMonitoringSystem(
            event_bus=self._event_bus, tracer=self._tracer
        )
        self._audit = audit_log or InMemoryAuditLog()
        self._metrics = metrics or self._monitoring.metrics
        self._sleep = sleep or asyncio.sleep

        self._lock = asyncio.Lock()
        self._jobs: dict[UUID, MigrationJob] = {}
        self._options: dict[UUID, MigrationJobOptions] = {}
        self._runtimes: dict[UUID, JobRuntime] = {}
        self._tasks: dict[UUID, asyncio.Task[MigrationJob]] = {}

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def recovery_engine(self) -> ErrorRecoveryEngine:
        return self._recovery

    @property
    def monitoring(self) -> ErrorMonitoringSystem:
        return self._monitoring

    @property
    def audit_log(self) -> AuditLog:
        return self._audit

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    # =========================================================================
    # Public API
    # =========================================================================

    async def start(self, options: MigrationJobOptions, requesting_user: str) -> UUID:
        """
        Accept a clone request and start executing it in the background.

        Args:
            options: Source project, target project and configuration
            requesting_user: User submitting the request, recorded for audit

        Returns:
            The id of the new job

        Raises:
            ConfigurationValidationError: If any validation check fails
            ConcurrencyLimitError: If the organization already has the
                maximum number of pending or running jobs
        """
        with self._tracer.span(
            "supaclone.orchestrator.start",
            {
                ATTR_ORGANIZATION_ID: options.organization_id,
                ATTR_SOURCE_PROJECT: options.source_project.ref,
            },
        ) as span:
            try:
                validate_job_options(options)
            except ConfigurationValidationError as e:
                logger.warning(
                    "Rejected clone request for organization %s: %s",
                    options.organization_id,
                    e,
                    extra={"organization_id": options.organization_id},
                )
                await self._audit.record(
                    AuditEntry.failed(
                        job_id=VALIDATION_FAILED_JOB_ID,
                        user_id=requesting_user,
                        organization_id=options.organization_id,
                        source_project=options.source_project.id,
                        error=str(e),
                        details={"validation_errors": e.errors},
                    )
                )
                raise

            configuration = options.configuration
            async with self._lock:
                active = self._count_active(options.organization_id)
                limit = self._settings.max_concurrent_migrations
                if active >= limit:
                    logger.warning(
                        "Organization %s is at its limit of %d concurrent migrations",
                        options.organization_id,
                        limit,
                        extra={"organization_id": options.organization_id},
                    )
                    raise ConcurrencyLimitError(options.organization_id, active, limit)

                job = MigrationJob(
                    source_project_id=options.source_project.id,
                    organization_id=options.organization_id,
                    clone_type=configuration.clone_type,
                    configuration=configuration,
                    created_by=requesting_user,
                    estimated_duration=self.estimate_duration(configuration),
                )
                self._jobs[job.id] = job
                self._options[job.id] = options
                self._runtimes[job.id] = JobRuntime()

            if span:
                span.set_attribute(ATTR_JOB_ID, str(job.id))
                span.set_attribute(ATTR_CLONE_TYPE, configuration.clone_type.value)

            logger.info(
                "Accepted clone job %s: %s -> %s (%s)",
                job.id,
                options.source_project.ref,
                options.target_project_name,
                configuration.clone_type.value,
                extra={"job_id": str(job.id), "organization_id": job.organization_id},
            )

            await self._audit.record(
                AuditEntry.started(
                    job_id=str(job.id),
                    user_id=requesting_user,
                    organization_id=options.organization_id,
                    source_project=options.source_project.id,
                    target_project=options.target_project_name,
                    details={
                        "configuration": configuration.to_dict(),
                        "estimated_duration_seconds": job.estimated_duration.total_seconds(),
                    },
                )
            )

            task = asyncio.create_task(self._run_job(job), name=f"clone_job_{job.id}")
            self._tasks[job.id] = task
            task.add_done_callback(lambda _, job_id=job.id: self._tasks.pop(job_id, None))
            return job.id

    def status(self, job_id: UUID) -> MigrationJob | None:
        """
        Get a snapshot of a job.

        Returns:
            A copy of the job, or None if the job is unknown or completed
            (completed jobs are evicted from the registry).
        """
        job = self._jobs.get(job_id)
        return job.snapshot() if job is not None else None

    def list_jobs(self, organization_id: str | None = None) -> list[MigrationJob]:
        """Snapshots of registered jobs, optionally for one organization."""
        return [
            job.snapshot()
            for job in self._jobs.values()
            if organization_id is None or job.organization_id == organization_id
        ]

    async def cancel(self, job_id: UUID, requesting_user: str | None = None) -> MigrationJob:
        """
        Cancel a pending or running job.

        The overall percentage drops to 0. A phase that is already running
        is not interrupted; the job stops at the next phase boundary.

        Returns:
            Snapshot of the cancelled job

        Raises:
            JobNotFoundError: If the job is unknown
            JobStateError: If the job is completed, failed or already cancelled
        """
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if not job.status.can_transition_to(JobStatus.CANCELLED):
                raise JobStateError(job_id, job.status, "cancel")

            now = _now()
            job.status = JobStatus.CANCELLED
            job.completed_at = now
            if job.started_at is not None:
                job.actual_duration = now - job.started_at
            job.progress = replace(job.progress, overall_percentage=0.0)

        logger.info(
            "Cancelled clone job %s",
            job_id,
            extra={"job_id": str(job_id), "phase": job.progress.current_phase.value},
        )
        self._metrics.record_job_finished(JobStatus.CANCELLED.value)
        await self._publish(JobCancelled(job=job.to_dict(), **self._event_fields(job)))
        await self._audit.record(
            AuditEntry.cancelled(
                job_id=str(job.id),
                user_id=requesting_user or job.created_by,
                organization_id=job.organization_id,
                source_project=job.source_project_id,
            )
        )
        return job.snapshot()

    async def wait_for_completion(
        self,
        job_id: UUID,
        timeout: float | None = None,
    ) -> MigrationJob:
        """
        Wait until a job's task finishes.

        Returns:
            Final snapshot of the job, also for completed (evicted) jobs
            whose task was still running when this was called

        Raises:
            JobNotFoundError: If the job is unknown and has no running task
            TimeoutError: If the timeout elapses first
        """
        task = self._tasks.get(job_id)
        if task is None:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.snapshot()
        return await asyncio.wait_for(asyncio.shield(task), timeout)

    def get_checkpoints(self, job_id: UUID) -> list[Checkpoint]:
        return self._recovery.get_job_checkpoints(job_id)

    async def shutdown(self) -> None:
        """
        Cancel outstanding job tasks, stop monitoring and drain event dispatch.
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self._monitoring.stop()

        if self._owns_event_bus and isinstance(self._event_bus, InMemoryEventBus):
            await self._event_bus.shutdown()
        elif isinstance(self._event_bus, InMemoryEventBus):
            await self._event_bus.drain()

        logger.info("Orchestrator shut down (%d job task(s) cancelled)", len(tasks))

    @staticmethod
    def estimate_duration(configuration: MigrationConfiguration) -> timedelta:
        """
        Estimate how long a job will take.

        Base time plus clone type and optional components, scaled down for
        parallelism with diminishing returns (never below half).
        """
        minutes = BASE_ESTIMATE_MINUTES + CLONE_TYPE_MINUTES.get(configuration.clone_type, 0.0)
        if configuration.include_storage:
            minutes += STORAGE_MINUTES
        if configuration.include_edge_functions:
            minutes += EDGE_FUNCTIONS_MINUTES
        if configuration.include_auth_config:
            minutes += AUTH_CONFIG_MINUTES

        multiplier = max(0.5, 1 - (configuration.parallel_threads - 1) * 0.1)
        return timedelta(minutes=minutes * multiplier)

    # =========================================================================
    # Job execution
    # =========================================================================

    def _count_active(self, organization_id: str) -> int:
        return sum(
            1
            for job in self._jobs.values()
            if job.organization_id == organization_id and job.status.is_active
        )

    async def _run_job(self, job: MigrationJob) -> MigrationJob:
        """Run every phase of a job; returns the job's final snapshot."""
        if job.status != JobStatus.PENDING:
            return job.snapshot()

        options = self._options[job.id]
        runtime = self._runtimes[job.id]

        job.status = JobStatus.RUNNING
        job.started_at = _now()
        await self._publish(JobStarted(job=job.to_dict(), **self._event_fields(job)))

        try:
            for descriptor in PHASE_TABLE:
                if job.status == JobStatus.CANCELLED:
                    logger.info(
                        "Job %s cancelled, stopping before %s",
                        job.id,
                        descriptor.phase.value,
                        extra={"job_id": str(job.id), "phase": descriptor.phase.value},
                    )
                    break

                if not descriptor.is_enabled(job.configuration):
                    await self._skip_phase(job, descriptor, descriptor.skip_reason)
                    continue

                await self._execute_phase(job, descriptor, options, runtime)

            if job.status == JobStatus.RUNNING:
                await self._complete_job(job)
        except asyncio.CancelledError:
            await self._fail_job(job, "Job execution was interrupted")
            raise
        except Exception as e:
            await self._fail_job(job, e)

        return job.snapshot()

    async def _execute_phase(
        self,
        job: MigrationJob,
        descriptor: PhaseDescriptor,
        options: MigrationJobOptions,
        runtime: JobRuntime,
    ) -> None:
        """
        Run one phase with checkpointing, recovery and the retry ceiling.

        Raises:
            ManualInterventionRequiredError: If recovery hands the fault to an operator
            PhaseRetriesExhaustedError: If the phase keeps failing past the ceiling
        """
        phase = descriptor.phase
        ceiling = self._settings.max_phase_retries

        with self._tracer.span(
            "supaclone.orchestrator.execute_phase",
            {ATTR_JOB_ID: str(job.id), ATTR_PHASE: phase.value},
        ) as span:
            await self._recovery.create_checkpoint(
                job.id,
                phase,
                job.progress,
                {"phase": phase.value, "timestamp": _now().isoformat()},
            )

            retry_count = 0
            while True:
                await self._begin_phase(job, descriptor, attempt=retry_count + 1)
                started = time.monotonic()
                try:
                    await descriptor.execute(self._phase_context(job, descriptor, options, runtime))
                except Exception as exc:
                    self._metrics.record_phase_duration(phase.value, time.monotonic() - started)
                    error = await self._record_fault(job, phase, exc)
                    if span:
                        span.set_attribute(ATTR_ERROR_CODE, error.error_code.value)
                        span.set_attribute(ATTR_RETRY_COUNT, retry_count)

                    if retry_count >= ceiling:
                        self._set_phase(job, phase, status=PhaseStatus.FAILED, details=str(exc))
                        self._recovery.resolve(job.id)
                        raise PhaseRetriesExhaustedError(
                            job.id, phase, retry_count + 1, exc
                        ) from exc

                    decision = await self._recovery.handle_error(job, error, phase)
                    error.mark_recovery(decision.success)
                    suggestions = self._recovery.get_recovery_suggestions(error)
                    if suggestions:
                        error.resolution_suggestion = "; ".join(suggestions)

                    try:
                        outcome = await self._act_on_decision(job, descriptor, error, decision)
                    except PhaseRolledBackError as rolled_back:
                        logger.info(
                            "%s; retrying %s for job %s",
                            rolled_back,
                            phase.value,
                            job.id,
                            extra={"job_id": str(job.id), "phase": phase.value},
                        )
                        outcome = _PhaseOutcome.RETRY

                    if outcome == _PhaseOutcome.SKIPPED:
                        return
                    retry_count += 1
                    continue

                self._metrics.record_phase_duration(phase.value, time.monotonic() - started)
                await self._complete_phase(job, descriptor)
                self._recovery.resolve(job.id)
                return

    async def _act_on_decision(
        self,
        job: MigrationJob,
        descriptor: PhaseDescriptor,
        error: MigrationErrorRecord,
        decision: RecoveryResult,
    ) -> _PhaseOutcome:
        """
        Carry out a recovery decision.

        Raises:
            PhaseRolledBackError: After an explicit rollback decision was carried out
            ManualInterventionRequiredError: If the decision hands off to an operator
        """
        phase = descriptor.phase

        if (
            decision.requires_manual_intervention
            or decision.action == RecoveryAction.MANUAL_INTERVENTION
            or not decision.success
        ):
            await self._require_manual_intervention(job, phase, decision.message, error)

        if decision.action == RecoveryAction.SKIP:
            await self._skip_phase(job, descriptor, decision.message)
            self._recovery.resolve(job.id)
            return _PhaseOutcome.SKIPPED

        if decision.action == RecoveryAction.ROLLBACK:
            await self._rollback_to_phase(job, decision.rollback_to_phase or phase, error)

        if decision.rollback_to_phase is not None:
            # The engine already restored the checkpoint; mirror it in progress.
            checkpoint = self._recovery.checkpoints.latest(job.id, decision.rollback_to_phase)
            if checkpoint is not None:
                self._restore_checkpoint(job, checkpoint)
                await self._publish(
                    RollbackCompleted(
                        phase=checkpoint.phase.value,
                        checkpoint_id=checkpoint.id,
                        **self._event_fields(job),
                    )
                )

        delay = decision.delay.total_seconds()
        if delay > 0:
            logger.info(
                "Retrying %s for job %s in %.1fs",
                phase.value,
                job.id,
                delay,
                extra={"job_id": str(job.id), "phase": phase.value},
            )
            await self._sleep(delay)
        return _PhaseOutcome.RETRY

    async def _rollback_to_phase(
        self,
        job: MigrationJob,
        phase: MigrationPhase,
        error: MigrationErrorRecord,
    ) -> NoReturn:
        """
        Restore the latest checkpoint of a phase and end the current attempt.

        Raises:
            PhaseRolledBackError: Always, once the checkpoint is restored
            ManualInterventionRequiredError: If no eligible checkpoint could be restored
        """
        checkpoint = self._recovery.checkpoints.latest(job.id, phase)
        if checkpoint is None or not await self._recovery.rollback_to_checkpoint(
            job.id, checkpoint.id
        ):
            await self._require_manual_intervention(
                job, phase, f"Rollback to {phase.value} phase failed", error
            )

        self._restore_checkpoint(job, checkpoint)
        await self._publish(
            RollbackCompleted(
                phase=phase.value,
                checkpoint_id=checkpoint.id,
                **self._event_fields(job),
            )
        )
        raise PhaseRolledBackError(job.id, phase)

    async def _require_manual_intervention(
        self,
        job: MigrationJob,
        phase: MigrationPhase,
        reason: str,
        error: MigrationErrorRecord,
    ) -> NoReturn:
        self._set_phase(job, phase, status=PhaseStatus.FAILED, details=reason)
        logger.error(
            "Job %s needs manual intervention in %s: %s",
            job.id,
            phase.value,
            reason,
            extra={
                "job_id": str(job.id),
                "phase": phase.value,
                "error_code": error.error_code.value,
            },
        )
        await self._publish(
            ManualInterventionRequired(
                phase=phase.value,
                reason=reason,
                error_code=error.error_code.value,
                **self._event_fields(job),
            )
        )
        raise ManualInterventionRequiredError(job.id, phase, reason)

    async def _record_fault(
        self,
        job: MigrationJob,
        phase: MigrationPhase,
        exc: BaseException,
    ) -> MigrationErrorRecord:
        """Classify a phase fault, append it to the job and report it."""
        fault = classify_fault(exc)
        error = MigrationErrorRecord(
            phase=phase,
            severity=fault.severity,
            error_code=fault.code,
            message=str(exc) or type(exc).__name__,
            details=_describe_exception(exc),
            auto_recoverable=fault.auto_recoverable,
        )
        job.error_log.append(error)

        await self._monitoring.record_error(error, job)
        await self._publish(
            FaultRecorded(
                error_id=error.id,
                phase=phase.value,
                error_code=error.error_code.value,
                severity=error.severity.value,
                message=error.message,
                auto_recoverable=error.auto_recoverable,
                **self._event_fields(job),
            )
        )
        return error

    async def _complete_job(self, job: MigrationJob) -> None:
        now = _now()
        job.status = JobStatus.COMPLETED
        job.completed_at = now
        job.actual_duration = now - (job.started_at or now)
        job.progress = replace(job.progress, overall_percentage=100.0)

        async with self._lock:
            self._jobs.pop(job.id, None)
            self._options.pop(job.id, None)
            self._runtimes.pop(job.id, None)
        self._recovery.cleanup_job(job.id)
        self._metrics.record_job_finished(JobStatus.COMPLETED.value)

        logger.info(
            "Completed clone job %s in %.1fs",
            job.id,
            job.actual_duration.total_seconds(),
            extra={"job_id": str(job.id)},
        )
        await self._publish(
            JobCompleted(
                job=job.to_dict(),
                duration_seconds=job.actual_duration.total_seconds(),
                **self._event_fields(job),
            )
        )
        await self._audit.record(
            AuditEntry.completed(
                job_id=str(job.id),
                user_id=job.created_by,
                organization_id=job.organization_id,
                source_project=job.source_project_id,
                target_project=job.target_project_id,
                details={"duration_seconds": job.actual_duration.total_seconds()},
            )
        )

    async def _fail_job(self, job: MigrationJob, error: BaseException | str) -> None:
        """Mark a job failed unless it already reached a terminal status."""
        if job.status.is_terminal:
            logger.info(
                "Job %s stopped after it was %s: %s",
                job.id,
                job.status.value,
                error,
                extra={"job_id": str(job.id), "status": job.status.value},
            )
            return

        now = _now()
        job.status = JobStatus.FAILED
        job.completed_at = now
        job.actual_duration = now - (job.started_at or now)
        self._recovery.resolve(job.id)
        self._metrics.record_job_finished(JobStatus.FAILED.value)

        message = str(error)
        error_code = job.error_log[-1].error_code.value if job.error_log else None
        phase = job.progress.current_phase.value

        with self._tracer.span(
            "supaclone.orchestrator.fail_job",
            {ATTR_JOB_ID: str(job.id), ATTR_JOB_STATUS: job.status.value, ATTR_PHASE: phase},
        ):
            logger.error(
                "Clone job %s failed in %s: %s",
                job.id,
                phase,
                message,
                extra={"job_id": str(job.id), "phase": phase, "error_code": error_code},
            )
            await self._publish(
                JobFailed(
                    job=job.to_dict(),
                    error=message,
                    error_code=error_code,
                    phase=phase,
                    **self._event_fields(job),
                )
            )
            await self._audit.record(
                AuditEntry.failed(
                    job_id=str(job.id),
                    user_id=job.created_by,
                    organization_id=job.organization_id,
                    source_project=job.source_project_id,
                    error=message,
                    details={"phase": phase, "error_code": error_code},
                )
            )

    # =========================================================================
    # Progress
    # =========================================================================

    def _replace_progress(self, job: MigrationJob, progress: MigrationProgress) -> bool:
        """
        Install a new progress record.

        Cancelled jobs keep their zeroed progress; updates are dropped.

        Returns:
            True if the record was installed.
        """
        if job.status == JobStatus.CANCELLED:
            return False
        job.progress = progress
        return True

    def _set_phase(self, job: MigrationJob, phase: MigrationPhase, **changes: Any) -> None:
        self._replace_progress(job, job.progress.with_phase(phase, **changes))

    def _advance(self, progress: MigrationProgress, overall: float) -> MigrationProgress:
        overall = min(overall, MAX_RUNNING_PERCENTAGE)
        return replace(progress, overall_percentage=max(progress.overall_percentage, overall))

    async def _begin_phase(
        self, job: MigrationJob, descriptor: PhaseDescriptor, attempt: int
    ) -> None:
        phase = descriptor.phase
        progress = job.progress.with_phase(
            phase,
            status=PhaseStatus.RUNNING,
            started_at=_now(),
            completed_at=None,
            percentage=0.0,
        )
        progress = replace(self._advance(progress, descriptor.start), current_phase=phase)
        self._replace_progress(job, progress)

        logger.info(
            "Starting %s for job %s (attempt %d)",
            phase.value,
            job.id,
            attempt,
            extra={"job_id": str(job.id), "phase": phase.value},
        )
        await self._publish(
            PhaseStarted(phase=phase.value, attempt=attempt, **self._event_fields(job))
        )

    async def _complete_phase(self, job: MigrationJob, descriptor: PhaseDescriptor) -> None:
        phase = descriptor.phase
        progress = job.progress.with_phase(
            phase,
            status=PhaseStatus.COMPLETED,
            percentage=100.0,
            completed_at=_now(),
        )
        progress = self._advance(progress, descriptor.end)
        if not self._replace_progress(job, progress):
            return

        logger.info(
            "Completed %s for job %s",
            phase.value,
            job.id,
            extra={"job_id": str(job.id), "phase": phase.value},
        )
        await self._publish(
            PhaseCompleted(
                phase=phase.value,
                overall_percentage=job.progress.overall_percentage,
                **self._event_fields(job),
            )
        )

    async def _skip_phase(
        self, job: MigrationJob, descriptor: PhaseDescriptor, reason: str
    ) -> None:
        phase = descriptor.phase
        progress = job.progress.with_phase(
            phase,
            status=PhaseStatus.SKIPPED,
            completed_at=_now(),
            details=reason,
        )
        progress = replace(self._advance(progress, descriptor.end), current_phase=phase)
        self._replace_progress(job, progress)

        logger.info(
            "Skipped %s for job %s: %s",
            phase.value,
            job.id,
            reason,
            extra={"job_id": str(job.id), "phase": phase.value},
        )
        await self._publish(
            PhaseSkipped(phase=phase.value, reason=reason, **self._event_fields(job))
        )

    def _restore_checkpoint(self, job: MigrationJob, checkpoint: Checkpoint) -> None:
        """
        Restore phase entries and counters from a checkpoint.

        Values the restored phase discovered are dropped from the job runtime,
        so the retry starts from the checkpointed state. The overall
        percentage never moves backwards while the job runs.
        """
        runtime = self._runtimes.get(job.id)
        if runtime is not None:
            runtime.forget(checkpoint.phase)
        if checkpoint.phase == MigrationPhase.PREPARATION:
            job.target_project_id = None
            job.target_project_ref = None
        restored = replace(
            checkpoint.progress,
            current_phase=job.progress.current_phase,
            overall_percentage=max(
                job.progress.overall_percentage, checkpoint.progress.overall_percentage
            ),
        )
        self._replace_progress(job, restored)

    def _phase_context(
        self,
        job: MigrationJob,
        descriptor: PhaseDescriptor,
        options: MigrationJobOptions,
        runtime: JobRuntime,
    ) -> PhaseContext:
        phase = descriptor.phase

        async def report(fraction: float, details: str = "", **stats: int) -> None:
            fraction = min(max(fraction, 0.0), 1.0)
            progress = job.progress.with_phase(
                phase,
                percentage=fraction * 100,
                details=details or job.progress.phase(phase).details,
            )
            if stats:
                progress = progress.with_stats(**stats)
            progress = self._advance(progress, descriptor.overall_percentage(fraction))
            if not self._replace_progress(job, progress):
                return
            await self._publish(
                ProgressUpdated(
                    phase=phase.value,
                    overall_percentage=progress.overall_percentage,
                    details=details,
                    stats=asdict(progress.stats),
                    **self._event_fields(job),
                )
            )

        return PhaseContext(
            job=job,
            options=options,
            collaborators=self._collaborators,
            runtime=runtime,
            settings=self._settings,
            sleep=self._sleep,
            report=report,
        )

    # =========================================================================
    # Events
    # =========================================================================

    @staticmethod
    def _event_fields(job: MigrationJob) -> dict[str, Any]:
        return {
            "job_id": job.id,
            "organization_id": job.organization_id,
            "actor_id": job.created_by,
            "correlation_id": job.id,
        }

    async def _publish(self, event: JobEvent) -> None:
        await self._event_bus.publish([event], background=True)


__all__ = [
    "MAX_RUNNING_PERCENTAGE",
    "MigrationOrchestrator",
]

"""
Error recovery for clone jobs.

When a phase executor raises, the orchestrator records the fault and asks
the ErrorRecoveryEngine what to do next. The engine looks up the strategies
registered for the fault's code, tries them in priority order, and returns
a RecoveryResult: retry (after a delay), skip, rollback, or manual
intervention.

Features:
- Strategy descriptors with an explicit numeric priority, sorted once at
  registration
- Linear, exponential and fixed backoff
- Per-job recovery context that lives for one failure episode, so the
  attempt number (and with it the backoff delay) grows across retries
- Checkpoint-based partial rollback through an injected CheckpointStore
- Recovery lifecycle events on an optional EventBus

Built-in strategies:

    id                     priority  codes
    connection-retry       10        CONNECTION_TIMEOUT, CONNECTION_REFUSED, NETWORK_ERROR
    resource-cleanup       20        RESOURCE_CONFLICT, RESOURCE_LOCKED, RESOURCE_EXISTS
    data-integrity-repair  30        DATA_CORRUPTION, CONSTRAINT_VIOLATION, FOREIGN_KEY_ERROR
    permission-escalation  40        PERMISSION_DENIED, INSUFFICIENT_PRIVILEGES, AUTH_FAILED
    graceful-degradation   50        OPTIONAL_COMPONENT_ERROR, FEATURE_NOT_SUPPORTED
    partial-rollback       60        CRITICAL_ERROR, SYSTEM_ERROR, UNEXPECTED_ERROR

Usage:
    >>> engine = ErrorRecoveryEngine(CheckpointStore(), event_bus=bus)
    >>> decision = await engine.handle_error(job, error_record, MigrationPhase.DATA_MIGRATION)
    >>> if decision.action == RecoveryAction.RETRY:
    ...     await asyncio.sleep(decision.delay.total_seconds())
"""

from __future__ import annotations

import bisect
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from uuid import UUID

from supaclone.bus import EventBus
from supaclone.events import (
    JobEvent,
    RecoveryAttempted,
    RecoveryFailed,
    RecoveryStarted,
    RecoverySucceeded,
)
from supaclone.migration.checkpoints import CheckpointStore
from supaclone.migration.collaborators import NoOpRecoveryActions, RecoveryActions
from supaclone.migration.exceptions import ErrorCode
from supaclone.migration.models import (
    BackoffKind,
    Checkpoint,
    MigrationErrorRecord,
    MigrationJob,
    MigrationPhase,
    MigrationProgress,
    RecoveryAction,
    RecoveryAttempt,
    RecoveryContext,
    RecoveryResult,
)
from supaclone.observability import Tracer, create_tracer
from supaclone.observability.attributes import (
    ATTR_ERROR_CODE,
    ATTR_JOB_ID,
    ATTR_PHASE,
    ATTR_RECOVERY_ACTION,
    ATTR_RECOVERY_SUCCESS,
    ATTR_STRATEGY_ID,
)

logger = logging.getLogger(__name__)

StrategyExecutor = Callable[[MigrationErrorRecord, RecoveryContext], Awaitable[RecoveryResult]]

NO_STRATEGY_MESSAGE = "No recovery strategy available for this error"
ALL_FAILED_MESSAGE = "All recovery strategies failed"

_CODE_SUGGESTIONS: dict[ErrorCode, tuple[str, ...]] = {
    ErrorCode.CONNECTION_TIMEOUT: (
        "Check network connectivity between source and target",
        "Verify database server is responsive",
    ),
    ErrorCode.PERMISSION_DENIED: (
        "Verify database user has required permissions",
        "Check if service role key is valid",
    ),
    ErrorCode.RESOURCE_CONFLICT: (
        "Ensure target project name is unique",
        "Check if resources are being used by other processes",
    ),
    ErrorCode.DATA_CORRUPTION: (
        "Run data integrity checks on source database",
        "Consider using schema-only migration first",
    ),
}


@dataclass(frozen=True)
class RecoveryStrategy:
    """
    Descriptor of a recovery strategy.

    Attributes:
        id: Stable identifier.
        name: Display name.
        description: What the strategy does.
        applicable_errors: Fault codes the strategy handles.
        max_retries: Highest attempt number the strategy still runs for. Every
            strategy runs for the first attempt of an episode, so a strategy
            with zero retries acts once and is never retried.
        backoff: Delay policy.
        base_delay: Base delay in seconds.
        max_delay: Upper bound of the delay in seconds.
        priority: Lower values are tried first.
        execute: Coroutine producing the decision.
    """

    id: str
    name: str
    description: str
    applicable_errors: frozenset[ErrorCode]
    max_retries: int
    backoff: BackoffKind
    base_delay: float
    max_delay: float
    priority: int
    execute: StrategyExecutor = field(compare=False, repr=False)

    def applies_to(self, code: ErrorCode) -> bool:
        return code in self.applicable_errors

    def allows_attempt(self, attempt_number: int) -> bool:
        return attempt_number <= max(self.max_retries, 1)


def calculate_backoff_delay(strategy: RecoveryStrategy, attempt_number: int) -> timedelta:
    """
    Compute the delay before a retry.

    linear: min(base * n, max); exponential: min(base * 2**(n-1), max);
    fixed: base.
    """
    if strategy.backoff == BackoffKind.LINEAR:
        seconds = min(strategy.base_delay * attempt_number, strategy.max_delay)
    elif strategy.backoff == BackoffKind.EXPONENTIAL:
        seconds = min(strategy.base_delay * 2 ** (attempt_number - 1), strategy.max_delay)
    else:
        seconds = strategy.base_delay
    return timedelta(seconds=seconds)


class StrategyRegistry:
    """
    Strategies ordered by numeric priority.

    Ordering is established at registration time; lookups never sort.
    Strategies with equal priority keep their registration order.
    """

    def __init__(self) -> None:
        self._strategies: list[RecoveryStrategy] = []
        self._priorities: list[int] = []

    def register(self, strategy: RecoveryStrategy) -> None:
        """
        Register a strategy.

        Raises:
            ValueError: If a strategy with the same id is already registered.
        """
        if self.get(strategy.id) is not None:
            raise ValueError(f"Recovery strategy already registered: {strategy.id}")
        index = bisect.bisect_right(self._priorities, strategy.priority)
        self._priorities.insert(index, strategy.priority)
        self._strategies.insert(index, strategy)
        logger.debug(
            "Registered recovery strategy %s (priority %d)",
            strategy.id,
            strategy.priority,
        )

    def unregister(self, strategy_id: str) -> bool:
        for index, strategy in enumerate(self._strategies):
            if strategy.id == strategy_id:
                del self._strategies[index]
                del self._priorities[index]
                return True
        return False

    def get(self, strategy_id: str) -> RecoveryStrategy | None:
        for strategy in self._strategies:
            if strategy.id == strategy_id:
                return strategy
        return None

    def applicable(self, code: ErrorCode) -> list[RecoveryStrategy]:
        """Strategies handling a fault code, in priority order."""
        return [strategy for strategy in self._strategies if strategy.applies_to(code)]

    def __iter__(self) -> Iterator[RecoveryStrategy]:
        return iter(list(self._strategies))

    def __len__(self) -> int:
        return len(self._strategies)


class ErrorRecoveryEngine:
    """
    Selects and runs recovery strategies for phase faults.

    All state (registry, recovery contexts, checkpoints) belongs to the
    instance. Collaborators are injected so tests can substitute fakes.

    Args:
        checkpoints: Checkpoint store used for partial rollback
        registry: Strategy registry (built-ins are added unless disabled)
        actions: Side effects used by cleanup and repair strategies
        event_bus: Bus receiving recovery lifecycle events
        register_builtin_strategies: Whether to add the six built-in strategies
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create a tracer when none is given
    """

    def __init__(
        self,
        checkpoints: CheckpointStore | None = None,
        *,
        registry: StrategyRegistry | None = None,
        actions: RecoveryActions | None = None,
        event_bus: EventBus | None = None,
        register_builtin_strategies: bool = True,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._checkpoints = checkpoints or CheckpointStore(tracer=self._tracer)
        self._registry = registry or StrategyRegistry()
        self._actions = actions or NoOpRecoveryActions()
        self._event_bus = event_bus
        self._active_recoveries: dict[UUID, RecoveryContext] = {}

        if register_builtin_strategies:
            for strategy in self._builtin_strategies():
                self._registry.register(strategy)

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    def _builtin_strategies(self) -> list[RecoveryStrategy]:
        return [
            RecoveryStrategy(
                id="connection-retry",
                name="Connection Retry",
                description="Retry operations that failed due to connection issues",
                applicable_errors=frozenset(
                    {
                        ErrorCode.CONNECTION_TIMEOUT,
                        ErrorCode.CONNECTION_REFUSED,
                        ErrorCode.NETWORK_ERROR,
                    }
                ),
                max_retries=5,
                backoff=BackoffKind.EXPONENTIAL,
                base_delay=1.0,
                max_delay=30.0,
                priority=10,
                execute=self._execute_connection_retry,
            ),
            RecoveryStrategy(
                id="resource-cleanup",
                name="Resource Cleanup",
                description="Clean up resources and retry when resource conflicts occur",
                applicable_errors=frozenset(
                    {
                        ErrorCode.RESOURCE_CONFLICT,
                        ErrorCode.RESOURCE_LOCKED,
                        ErrorCode.RESOURCE_EXISTS,
                    }
                ),
                max_retries=3,
                backoff=BackoffKind.LINEAR,
                base_delay=2.0,
                max_delay=10.0,
                priority=20,
                execute=self._execute_resource_cleanup,
            ),
            RecoveryStrategy(
                id="data-integrity-repair",
                name="Data Integrity Repair",
                description="Repair data integrity issues and continue",
                applicable_errors=frozenset(
                    {
                        ErrorCode.DATA_CORRUPTION,
                        ErrorCode.CONSTRAINT_VIOLATION,
                        ErrorCode.FOREIGN_KEY_ERROR,
                    }
                ),
                max_retries=2,
                backoff=BackoffKind.FIXED,
                base_delay=3.0,
                max_delay=3.0,
                priority=30,
                execute=self._execute_data_integrity_repair,
            ),
            RecoveryStrategy(
                id="permission-escalation",
                name="Permission Escalation",
                description="Attempt to resolve permission issues",
                applicable_errors=frozenset(
                    {
                        ErrorCode.PERMISSION_DENIED,
                        ErrorCode.INSUFFICIENT_PRIVILEGES,
                        ErrorCode.AUTH_FAILED,
                    }
                ),
                max_retries=2,
                backoff=BackoffKind.FIXED,
                base_delay=5.0,
                max_delay=5.0,
                priority=40,
                execute=self._execute_permission_escalation,
            ),
            RecoveryStrategy(
                id="graceful-degradation",
                name="Graceful Degradation",
                description="Skip non-critical components and continue",
                applicable_errors=frozenset(
                    {ErrorCode.OPTIONAL_COMPONENT_ERROR, ErrorCode.FEATURE_NOT_SUPPORTED}
                ),
                max_retries=0,
                backoff=BackoffKind.FIXED,
                base_delay=0.0,
                max_delay=0.0,
                priority=50,
                execute=self._execute_graceful_degradation,
            ),
            RecoveryStrategy(
                id="partial-rollback",
                name="Partial Rollback",
                description="Rollback to previous checkpoint and retry",
                applicable_errors=frozenset(
                    {
                        ErrorCode.CRITICAL_ERROR,
                        ErrorCode.SYSTEM_ERROR,
                        ErrorCode.UNEXPECTED_ERROR,
                    }
                ),
                max_retries=1,
                backoff=BackoffKind.FIXED,
                base_delay=0.0,
                max_delay=0.0,
                priority=60,
                execute=self._execute_partial_rollback,
            ),
        ]

    async def handle_error(
        self,
        job: MigrationJob,
        error: MigrationErrorRecord,
        phase: MigrationPhase,
    ) -> RecoveryResult:
        """
        Decide how to recover from a phase fault.

        Strategies handling the fault's code are tried in priority order
        while the episode's attempt number does not exceed their
        max_retries. The first successful result is returned; a
        non-retry result is returned immediately; a strategy that raises
        is skipped. Without an applicable strategy, or when all of them
        are exhausted, the decision is manual intervention.

        Args:
            job: The job whose phase failed
            error: The recorded fault
            phase: The phase that raised

        Returns:
            The recovery decision
        """
        with self._tracer.span(
            "supaclone.recovery.handle_error",
            {
                ATTR_JOB_ID: str(job.id),
                ATTR_PHASE: phase.value,
                ATTR_ERROR_CODE: error.error_code.value,
            },
        ) as span:
            result = await self._handle_error(job, error, phase)
            if span:
                span.set_attribute(ATTR_RECOVERY_ACTION, result.action.value)
                span.set_attribute(ATTR_RECOVERY_SUCCESS, result.success)
            return result

    async def _handle_error(
        self,
        job: MigrationJob,
        error: MigrationErrorRecord,
        phase: MigrationPhase,
    ) -> RecoveryResult:
        strategies = self._registry.applicable(error.error_code)
        context = self._context_for(job.id, phase, error)

        await self._publish(
            RecoveryStarted(
                job_id=job.id,
                organization_id=job.organization_id,
                phase=phase.value,
                error_code=error.error_code.value,
                attempt_number=context.attempt_number,
            )
        )

        if not strategies:
            logger.warning(
                "No recovery strategy for %s in job %s",
                error.error_code.value,
                job.id,
                extra={"job_id": str(job.id), "error_code": error.error_code.value},
            )
            self._active_recoveries.pop(job.id, None)
            result = RecoveryResult.manual(NO_STRATEGY_MESSAGE)
            await self._publish_failed(job, None, result.action, result.message)
            return result

        for strategy in strategies:
            if not strategy.allows_attempt(context.attempt_number):
                continue

            started = time.monotonic()
            try:
                result = await strategy.execute(error, context)
            except Exception as e:
                logger.error(
                    "Recovery strategy %s raised for job %s: %s",
                    strategy.id,
                    job.id,
                    e,
                    exc_info=True,
                    extra={"job_id": str(job.id), "strategy": strategy.id},
                )
                await self._publish_failed(job, strategy.id, None, str(e))
                continue

            duration = timedelta(seconds=time.monotonic() - started)
            attempt = RecoveryAttempt(
                strategy_id=strategy.id,
                success=result.success,
                duration=duration,
                error=None if result.success else result.message,
            )
            context.previous_attempts.append(attempt)
            await self._publish(
                RecoveryAttempted(
                    job_id=job.id,
                    organization_id=job.organization_id,
                    strategy_id=strategy.id,
                    success=result.success,
                    duration_seconds=duration.total_seconds(),
                )
            )

            if result.success:
                logger.info(
                    "Recovery strategy %s succeeded for job %s: %s",
                    strategy.id,
                    job.id,
                    result.message,
                    extra={
                        "job_id": str(job.id),
                        "strategy": strategy.id,
                        "action": result.action.value,
                    },
                )
                await self._publish(
                    RecoverySucceeded(
                        job_id=job.id,
                        organization_id=job.organization_id,
                        strategy_id=strategy.id,
                        action=result.action.value,
                        message=result.message,
                    )
                )
                return result

            if result.action != RecoveryAction.RETRY:
                if result.requires_manual_intervention:
                    self._active_recoveries.pop(job.id, None)
                await self._publish_failed(job, strategy.id, result.action, result.message)
                return result

        self._active_recoveries.pop(job.id, None)
        logger.warning(
            "All recovery strategies failed for job %s (%s)",
            job.id,
            error.error_code.value,
            extra={"job_id": str(job.id), "error_code": error.error_code.value},
        )
        result = RecoveryResult.manual(ALL_FAILED_MESSAGE)
        await self._publish_failed(job, None, result.action, result.message)
        return result

    def _context_for(
        self,
        job_id: UUID,
        phase: MigrationPhase,
        error: MigrationErrorRecord,
    ) -> RecoveryContext:
        context = self._active_recoveries.get(job_id)
        if context is None or context.phase != phase:
            context = RecoveryContext(job_id=job_id, phase=phase, error_history=[error])
            self._active_recoveries[job_id] = context
        else:
            context.attempt_number += 1
            context.error_history.append(error)
        return context

    def resolve(self, job_id: UUID) -> None:
        """End the job's failure episode (the phase succeeded or was skipped)."""
        self._active_recoveries.pop(job_id, None)

    def get_active_recovery(self, job_id: UUID) -> RecoveryContext | None:
        return self._active_recoveries.get(job_id)

    def get_recovery_suggestions(self, error: MigrationErrorRecord) -> list[str]:
        """
        Operator guidance for a fault.

        Returns:
            One line per applicable strategy followed by code-specific advice.
        """
        suggestions = [
            f"Try {strategy.name}: {strategy.description}"
            for strategy in self._registry.applicable(error.error_code)
        ]
        suggestions.extend(_CODE_SUGGESTIONS.get(error.error_code, ()))
        return suggestions

    async def create_checkpoint(
        self,
        job_id: UUID,
        phase: MigrationPhase,
        progress: MigrationProgress,
        state: dict[str, Any] | None = None,
    ) -> Checkpoint:
        return await self._checkpoints.create_checkpoint(job_id, phase, progress, state)

    async def rollback_to_checkpoint(self, job_id: UUID, checkpoint_id: UUID) -> bool:
        return await self._checkpoints.rollback_to_checkpoint(job_id, checkpoint_id)

    def get_job_checkpoints(self, job_id: UUID) -> list[Checkpoint]:
        return self._checkpoints.get_checkpoints(job_id)

    def cleanup_job(self, job_id: UUID) -> None:
        """Forget the recovery context and checkpoints of a job."""
        self._active_recoveries.pop(job_id, None)
        self._checkpoints.clear(job_id)

    # Built-in strategy executors

    async def _execute_connection_retry(
        self, error: MigrationErrorRecord, context: RecoveryContext
    ) -> RecoveryResult:
        strategy = self._registry.get("connection-retry")
        delay = (
            calculate_backoff_delay(strategy, context.attempt_number)
            if strategy
            else timedelta(0)
        )
        return RecoveryResult(
            success=True,
            action=RecoveryAction.RETRY,
            message="Retrying after connection error",
            delay=delay,
            strategy_id="connection-retry",
        )

    async def _execute_resource_cleanup(
        self, error: MigrationErrorRecord, context: RecoveryContext
    ) -> RecoveryResult:
        await self._actions.cleanup_resources(context.job_id, error.error_code)
        strategy = self._registry.get("resource-cleanup")
        delay = (
            calculate_backoff_delay(strategy, context.attempt_number)
            if strategy
            else timedelta(seconds=2)
        )
        return RecoveryResult(
            success=True,
            action=RecoveryAction.RETRY,
            message="Resources cleaned up, retrying operation",
            delay=delay,
            strategy_id="resource-cleanup",
        )

    async def _execute_permission_escalation(
        self, error: MigrationErrorRecord, context: RecoveryContext
    ) -> RecoveryResult:
        return RecoveryResult.manual(
            "Permission issue requires manual intervention",
            strategy_id="permission-escalation",
        )

    async def _execute_data_integrity_repair(
        self, error: MigrationErrorRecord, context: RecoveryContext
    ) -> RecoveryResult:
        repaired = await self._actions.repair_data(context.job_id, error.error_code)
        strategy = self._registry.get("data-integrity-repair")
        delay = (
            calculate_backoff_delay(strategy, context.attempt_number)
            if strategy
            else timedelta(seconds=3)
        )
        return RecoveryResult(
            success=repaired,
            action=RecoveryAction.RETRY,
            message="Attempted data integrity repair",
            delay=delay,
            strategy_id="data-integrity-repair",
        )

    async def _execute_partial_rollback(
        self, error: MigrationErrorRecord, context: RecoveryContext
    ) -> RecoveryResult:
        checkpoint = self._checkpoints.latest(context.job_id)
        if checkpoint is None:
            return RecoveryResult.manual(
                "No checkpoints available for rollback",
                strategy_id="partial-rollback",
            )

        rolled_back = await self._checkpoints.rollback_to_checkpoint(
            context.job_id, checkpoint.id
        )
        if not rolled_back:
            return RecoveryResult.manual("Rollback failed", strategy_id="partial-rollback")

        return RecoveryResult(
            success=True,
            action=RecoveryAction.RETRY,
            message=f"Rolled back to {checkpoint.phase.value} phase",
            rollback_to_phase=checkpoint.phase,
            strategy_id="partial-rollback",
        )

    async def _execute_graceful_degradation(
        self, error: MigrationErrorRecord, context: RecoveryContext
    ) -> RecoveryResult:
        return RecoveryResult(
            success=True,
            action=RecoveryAction.SKIP,
            message="Skipping optional component due to error",
            strategy_id="graceful-degradation",
        )

    async def _publish(self, event: JobEvent) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish([event], background=True)

    async def _publish_failed(
        self,
        job: MigrationJob,
        strategy_id: str | None,
        action: RecoveryAction | None,
        message: str,
    ) -> None:
        await self._publish(
            RecoveryFailed(
                job_id=job.id,
                organization_id=job.organization_id,
                strategy_id=strategy_id,
                action=action.value if action else None,
                error=message,
            )
        )


__all__ = [
    "RecoveryStrategy",
    "StrategyExecutor",
    "StrategyRegistry",
    "ErrorRecoveryEngine",
    "calculate_backoff_delay",
    "NO_STRATEGY_MESSAGE",
    "ALL_FAILED_MESSAGE",
]

"""
Checkpoint store for clone jobs.

A checkpoint is captured immediately before each phase runs. The store
keeps the most recent checkpoints per job (oldest trimmed first) and can
roll a job back to one of them by replaying its rollback instructions.

Checkpoints taken before the validation and cutover phases are never
rollback-eligible.

Example:
    >>> store = CheckpointStore()
    >>> checkpoint = await store.create_checkpoint(
    ...     job.id, MigrationPhase.SCHEMA_MIGRATION, job.progress, {"phase": "schema_migration"}
    ... )
    >>> await store.rollback_to_checkpoint(job.id, checkpoint.id)
    True
"""

from __future__ import annotations

import copy
import logging
from typing import Any
from uuid import UUID

from supaclone.migration.collaborators import LoggingRollbackExecutor, RollbackExecutor
from supaclone.migration.models import Checkpoint, MigrationPhase, MigrationProgress
from supaclone.observability import Tracer, create_tracer
from supaclone.observability.attributes import ATTR_JOB_ID, ATTR_PHASE

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_LIMIT = 10

ROLLBACK_INSTRUCTIONS: dict[MigrationPhase, tuple[str, ...]] = {
    MigrationPhase.PREPARATION: ("Delete created target project",),
    MigrationPhase.SCHEMA_MIGRATION: (
        "Drop created tables and schemas",
        "Remove database extensions",
    ),
    MigrationPhase.DATA_MIGRATION: ("Truncate migrated tables", "Reset sequences"),
    MigrationPhase.STORAGE_MIGRATION: (
        "Delete created storage buckets",
        "Remove uploaded objects",
    ),
    MigrationPhase.EDGE_FUNCTIONS_MIGRATION: ("Delete deployed functions",),
    MigrationPhase.SECURITY_MIGRATION: ("Remove RLS policies", "Drop custom roles"),
    MigrationPhase.REALTIME_SETUP: ("Remove realtime publications",),
}


def rollback_instructions_for(phase: MigrationPhase) -> tuple[str, ...]:
    """Ordered instructions that undo a phase; empty when there is nothing to undo."""
    return ROLLBACK_INSTRUCTIONS.get(phase, ())


class CheckpointStore:
    """
    Per-job ordered checkpoint storage with rollback.

    State is owned by the instance; nothing is shared between stores.

    Args:
        rollback_executor: Performs each rollback instruction (default: log only)
        limit: Checkpoints retained per job
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create a tracer when none is given
    """

    def __init__(
        self,
        rollback_executor: RollbackExecutor | None = None,
        *,
        limit: int = DEFAULT_CHECKPOINT_LIMIT,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}.")
        self._checkpoints: dict[UUID, list[Checkpoint]] = {}
        self._rollback_executor = rollback_executor or LoggingRollbackExecutor()
        self._limit = limit
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def limit(self) -> int:
        return self._limit

    async def create_checkpoint(
        self,
        job_id: UUID,
        phase: MigrationPhase,
        progress: MigrationProgress,
        state: dict[str, Any] | None = None,
    ) -> Checkpoint:
        """
        Capture a checkpoint and trim the job's list to the limit.

        Returns:
            The stored checkpoint.
        """
        with self._tracer.span(
            "supaclone.checkpoints.create",
            {ATTR_JOB_ID: str(job_id), ATTR_PHASE: phase.value},
        ):
            checkpoint = Checkpoint(
                job_id=job_id,
                phase=phase,
                progress=progress,
                state=copy.deepcopy(state or {}),
                can_rollback=phase.is_rollback_safe,
                rollback_instructions=rollback_instructions_for(phase),
            )
            checkpoints = self._checkpoints.setdefault(job_id, [])
            checkpoints.append(checkpoint)
            if len(checkpoints) > self._limit:
                del checkpoints[: len(checkpoints) - self._limit]

            logger.debug(
                "Created checkpoint %s for job %s before %s",
                checkpoint.id,
                job_id,
                phase.value,
                extra={"job_id": str(job_id), "phase": phase.value},
            )
            return checkpoint

    def get_checkpoints(self, job_id: UUID) -> list[Checkpoint]:
        """Checkpoints of a job, oldest first."""
        return list(self._checkpoints.get(job_id, []))

    def get_checkpoint(self, job_id: UUID, checkpoint_id: UUID) -> Checkpoint | None:
        for checkpoint in self._checkpoints.get(job_id, []):
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None

    def latest(self, job_id: UUID, phase: MigrationPhase | None = None) -> Checkpoint | None:
        """
        Most recent checkpoint of a job, optionally restricted to one phase.
        """
        for checkpoint in reversed(self._checkpoints.get(job_id, [])):
            if phase is None or checkpoint.phase == phase:
                return checkpoint
        return None

    async def rollback_to_checkpoint(self, job_id: UUID, checkpoint_id: UUID) -> bool:
        """
        Replay a checkpoint's rollback instructions and discard later checkpoints.

        Instructions run in order; the first failing instruction fails the
        whole rollback and leaves the checkpoint list untouched.

        Returns:
            True if the rollback succeeded, False if the checkpoint is
            unknown, not rollback-eligible, or an instruction failed.
        """
        checkpoint = self.get_checkpoint(job_id, checkpoint_id)
        if checkpoint is None or not checkpoint.can_rollback:
            logger.warning(
                "Checkpoint %s of job %s cannot be rolled back",
                checkpoint_id,
                job_id,
                extra={"job_id": str(job_id), "checkpoint_id": str(checkpoint_id)},
            )
            return False

        with self._tracer.span(
            "supaclone.checkpoints.rollback",
            {ATTR_JOB_ID: str(job_id), ATTR_PHASE: checkpoint.phase.value},
        ):
            try:
                for instruction in checkpoint.rollback_instructions:
                    await self._rollback_executor.execute(instruction, checkpoint)
            except Exception as e:
                logger.error(
                    "Rollback of job %s to %s failed: %s",
                    job_id,
                    checkpoint.phase.value,
                    e,
                    exc_info=True,
                    extra={"job_id": str(job_id), "phase": checkpoint.phase.value},
                )
                return False

            checkpoints = self._checkpoints.get(job_id, [])
            for index, stored in enumerate(checkpoints):
                if stored.id == checkpoint_id:
                    del checkpoints[index + 1 :]
                    break

            logger.info(
                "Rolled back job %s to %s checkpoint",
                job_id,
                checkpoint.phase.value,
                extra={"job_id": str(job_id), "phase": checkpoint.phase.value},
            )
            return True

    def clear(self, job_id: UUID) -> None:
        """Forget every checkpoint of a job."""
        self._checkpoints.pop(job_id, None)


__all__ = [
    "DEFAULT_CHECKPOINT_LIMIT",
    "ROLLBACK_INSTRUCTIONS",
    "rollback_instructions_for",
    "CheckpointStore",
]

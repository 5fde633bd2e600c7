"""
Append-only audit trail of clone job lifecycle actions.

Every accepted, completed, failed or cancelled job leaves an AuditEntry.
Rejected requests are audited too (as ``failed`` with the job id
``validation-failed``) so that refused submissions stay traceable.

Entries are kept in memory and mirrored to the ``supaclone.audit`` logger;
long-term persistence belongs to whatever handler is attached to that
logger.

Usage:
    >>> audit = InMemoryAuditLog()
    >>> entry = AuditEntry.started(
    ...     job_id=str(job.id),
    ...     user_id="user-1",
    ...     organization_id=job.organization_id,
    ...     source_project=job.source_project_id,
    ...     target_project="analytics-copy",
    ... )
    >>> await audit.record(entry)
    >>> entries = await audit.get_by_job(str(job.id))
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

audit_logger = logging.getLogger("supaclone.audit")

VALIDATION_FAILED_JOB_ID = "validation-failed"
DEFAULT_MAX_ENTRIES = 10_000


class AuditAction(Enum):
    """
    Audited job actions.

    Attributes:
        STARTED: A job was accepted.
        COMPLETED: A job finished every phase.
        FAILED: A job failed, or a request was rejected during validation.
        CANCELLED: An operator cancelled a job.
    """

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AuditEntry:
    """
    One audit record. Immutable once created.

    Attributes:
        action: What happened.
        job_id: Job identifier, or ``validation-failed`` for rejected requests.
        user_id: User that requested the job.
        organization_id: Organization the job belongs to.
        source_project: Id of the project being cloned.
        target_project: Name or id of the target project, if known.
        details: Additional context (configuration, errors).
        occurred_at: When the action happened (UTC).
    """

    action: AuditAction
    job_id: str
    user_id: str
    organization_id: str
    source_project: str
    target_project: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def started(
        cls,
        job_id: str,
        user_id: str,
        organization_id: str,
        source_project: str,
        target_project: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return cls(
            action=AuditAction.STARTED,
            job_id=job_id,
            user_id=user_id,
            organization_id=organization_id,
            source_project=source_project,
            target_project=target_project,
            details=details or {},
        )

    @classmethod
    def completed(
        cls,
        job_id: str,
        user_id: str,
        organization_id: str,
        source_project: str,
        target_project: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return cls(
            action=AuditAction.COMPLETED,
            job_id=job_id,
            user_id=user_id,
            organization_id=organization_id,
            source_project=source_project,
            target_project=target_project,
            details=details or {},
        )

    @classmethod
    def failed(
        cls,
        job_id: str,
        user_id: str,
        organization_id: str,
        source_project: str,
        error: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Create a failure entry; ``error`` is stored under ``details["error"]``."""
        return cls(
            action=AuditAction.FAILED,
            job_id=job_id,
            user_id=user_id,
            organization_id=organization_id,
            source_project=source_project,
            details={**(details or {}), "error": error},
        )

    @classmethod
    def cancelled(
        cls,
        job_id: str,
        user_id: str,
        organization_id: str,
        source_project: str,
    ) -> AuditEntry:
        return cls(
            action=AuditAction.CANCELLED,
            job_id=job_id,
            user_id=user_id,
            organization_id=organization_id,
            source_project=source_project,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": "migration",
            "action": self.action.value,
            "job_id": self.job_id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "source_project": self.source_project,
            "target_project": self.target_project,
            "details": self.details,
            "occurred_at": self.occurred_at.isoformat(),
        }


@runtime_checkable
class AuditLog(Protocol):
    """
    Append-only store of audit entries.

    Implementations must never modify or drop an entry once recorded,
    except for bounded in-memory retention.
    """

    async def record(self, entry: AuditEntry) -> None:
        """Append an entry."""
        ...

    async def get_by_job(self, job_id: str) -> list[AuditEntry]:
        """Entries of one job, oldest first."""
        ...


class InMemoryAuditLog:
    """
    In-memory AuditLog that also writes each entry to the audit logger.

    Retains the most recent ``max_entries`` entries.

    Args:
        max_entries: Entries kept in memory
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}.")
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)

    async def record(self, entry: AuditEntry) -> None:
        self._entries.append(entry)
        audit_logger.info(
            "Migration %s: job=%s user=%s organization=%s",
            entry.action.value,
            entry.job_id,
            entry.user_id,
            entry.organization_id,
            extra={"audit": entry.to_dict()},
        )

    async def get_by_job(self, job_id: str) -> list[AuditEntry]:
        return [entry for entry in self._entries if entry.job_id == job_id]

    async def get_by_action(self, action: AuditAction) -> list[AuditEntry]:
        return [entry for entry in self._entries if entry.action == action]

    @property
    def entries(self) -> list[AuditEntry]:
        """All retained entries, oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "VALIDATION_FAILED_JOB_ID",
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "InMemoryAuditLog",
]

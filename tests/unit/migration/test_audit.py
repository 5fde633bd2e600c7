"""
Unit tests for the audit trail.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest

from supaclone.migration.audit import (
    VALIDATION_FAILED_JOB_ID,
    AuditAction,
    AuditEntry,
    AuditLog,
    InMemoryAuditLog,
)


def entry(action: str = "started", job_id: str = "job-1", **fields) -> AuditEntry:
    base = {
        "job_id": job_id,
        "user_id": "user-1",
        "organization_id": "org-1",
        "source_project": "source-project",
    }
    return getattr(AuditEntry, action)(**base, **fields)


class TestAuditEntry:
    """Tests for the AuditEntry factories and serialization."""

    def test_started(self) -> None:
        started = entry(target_project="staging-copy", details={"clone_type": "full_clone"})

        assert started.action == AuditAction.STARTED
        assert started.target_project == "staging-copy"
        assert started.details == {"clone_type": "full_clone"}
        assert started.occurred_at.tzinfo is not None

    def test_completed(self) -> None:
        completed = entry("completed", target_project="newref")

        assert completed.action == AuditAction.COMPLETED
        assert completed.details == {}

    def test_failed_stores_error_in_details(self) -> None:
        failed = entry("failed", error="disk full", details={"phase": "data_migration"})

        assert failed.action == AuditAction.FAILED
        assert failed.target_project is None
        assert failed.details == {"phase": "data_migration", "error": "disk full"}

    def test_cancelled(self) -> None:
        assert entry("cancelled").action == AuditAction.CANCELLED

    def test_entries_are_immutable(self) -> None:
        with pytest.raises(AttributeError):
            entry().job_id = "other"  # type: ignore[misc]

    def test_to_dict(self) -> None:
        occurred_at = datetime(2024, 5, 1, 12, tzinfo=UTC)
        data = AuditEntry(
            action=AuditAction.STARTED,
            job_id="job-1",
            user_id="user-1",
            organization_id="org-1",
            source_project="source-project",
            target_project="staging-copy",
            occurred_at=occurred_at,
        ).to_dict()

        assert data == {
            "type": "migration",
            "action": "started",
            "job_id": "job-1",
            "user_id": "user-1",
            "organization_id": "org-1",
            "source_project": "source-project",
            "target_project": "staging-copy",
            "details": {},
            "occurred_at": "2024-05-01T12:00:00+00:00",
        }


class TestInMemoryAuditLog:
    """Tests for InMemoryAuditLog."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryAuditLog(), AuditLog)

    @pytest.mark.parametrize("max_entries", [0, -5])
    def test_rejects_non_positive_capacity(self, max_entries: int) -> None:
        with pytest.raises(ValueError, match="max_entries must be positive"):
            InMemoryAuditLog(max_entries=max_entries)

    @pytest.mark.asyncio
    async def test_record_and_query(self) -> None:
        log = InMemoryAuditLog()
        await log.record(entry(job_id="job-1"))
        await log.record(entry(job_id="job-2"))
        await log.record(entry("completed", job_id="job-1"))

        by_job = await log.get_by_job("job-1")
        assert [e.action for e in by_job] == [AuditAction.STARTED, AuditAction.COMPLETED]
        assert len(await log.get_by_action(AuditAction.STARTED)) == 2
        assert await log.get_by_job("missing") == []
        assert len(log) == 3

    @pytest.mark.asyncio
    async def test_oldest_entries_are_dropped(self) -> None:
        log = InMemoryAuditLog(max_entries=2)
        for job_id in ("job-1", "job-2", "job-3"):
            await log.record(entry(job_id=job_id))

        assert [e.job_id for e in log.entries] == ["job-2", "job-3"]

    @pytest.mark.asyncio
    async def test_entries_is_a_copy(self) -> None:
        log = InMemoryAuditLog()
        await log.record(entry())

        log.entries.clear()

        assert len(log) == 1

    @pytest.mark.asyncio
    async def test_records_are_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        log = InMemoryAuditLog()
        rejected = entry("failed", job_id=VALIDATION_FAILED_JOB_ID, error="Invalid clone_type")

        with caplog.at_level(logging.INFO, logger="supaclone.audit"):
            await log.record(rejected)

        record = caplog.records[-1]
        assert record.name == "supaclone.audit"
        assert "Migration failed: job=validation-failed" in record.getMessage()
        audit = record.audit  # type: ignore[attr-defined]
        assert audit["details"] == {"error": "Invalid clone_type"}

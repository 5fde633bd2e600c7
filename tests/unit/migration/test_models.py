"""
Unit tests for the clone job data model.

Tests cover:
- JobStatus state machine helpers
- MigrationPhase ordering and rollback safety
- Copy-on-write progress records
- Job snapshots and serialization
- Configuration round trips
- Fault record recovery bookkeeping
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import UTC, datetime, timedelta

import pytest

from supaclone.migration.exceptions import ErrorCode, ErrorSeverity
from supaclone.migration.models import (
    CloneType,
    DataFilter,
    JobStatus,
    MigrationConfiguration,
    MigrationPhase,
    MigrationProgress,
    PhaseStatus,
    RecoveryAction,
    RecoveryResult,
)
from tests.fixtures import make_configuration, make_error, make_job


class TestJobStatus:
    """Tests for JobStatus enum."""

    def test_terminal_statuses(self) -> None:
        assert {s for s in JobStatus if s.is_terminal} == {
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        }

    def test_active_statuses(self) -> None:
        assert {s for s in JobStatus if s.is_active} == {JobStatus.PENDING, JobStatus.RUNNING}

    @pytest.mark.parametrize(
        ("source", "target"),
        [
            (JobStatus.PENDING, JobStatus.RUNNING),
            (JobStatus.PENDING, JobStatus.CANCELLED),
            (JobStatus.RUNNING, JobStatus.COMPLETED),
            (JobStatus.RUNNING, JobStatus.FAILED),
            (JobStatus.RUNNING, JobStatus.CANCELLED),
        ],
    )
    def test_valid_transitions(self, source: JobStatus, target: JobStatus) -> None:
        assert source.can_transition_to(target)

    @pytest.mark.parametrize(
        ("source", "target"),
        [
            (JobStatus.PENDING, JobStatus.COMPLETED),
            (JobStatus.PENDING, JobStatus.FAILED),
            (JobStatus.RUNNING, JobStatus.PENDING),
            (JobStatus.COMPLETED, JobStatus.RUNNING),
            (JobStatus.FAILED, JobStatus.RUNNING),
            (JobStatus.CANCELLED, JobStatus.RUNNING),
        ],
    )
    def test_invalid_transitions(self, source: JobStatus, target: JobStatus) -> None:
        assert not source.can_transition_to(target)

    def test_terminal_statuses_have_no_exits(self) -> None:
        for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
            assert not any(status.can_transition_to(target) for target in JobStatus)


class TestMigrationPhase:
    """Tests for MigrationPhase enum."""

    def test_pipeline_order(self) -> None:
        assert [phase.value for phase in MigrationPhase] == [
            "preparation",
            "schema_migration",
            "data_migration",
            "storage_migration",
            "configuration_migration",
            "edge_functions_migration",
            "security_migration",
            "realtime_setup",
            "validation",
            "cutover",
        ]

    def test_rollback_safety(self) -> None:
        unsafe = {phase for phase in MigrationPhase if not phase.is_rollback_safe}

        assert unsafe == {MigrationPhase.VALIDATION, MigrationPhase.CUTOVER}


class TestMigrationProgress:
    """Tests for the copy-on-write progress record."""

    def test_initial_has_every_phase_pending(self) -> None:
        progress = MigrationProgress.initial()

        assert progress.overall_percentage == 0.0
        assert progress.current_phase == MigrationPhase.PREPARATION
        assert [entry.name for entry in progress.phases] == list(MigrationPhase)
        assert all(entry.status == PhaseStatus.PENDING for entry in progress.phases)

    def test_with_phase_leaves_original_untouched(self) -> None:
        original = MigrationProgress.initial()

        updated = original.with_phase(
            MigrationPhase.DATA_MIGRATION, status=PhaseStatus.RUNNING, percentage=40.0
        )

        assert updated.phase(MigrationPhase.DATA_MIGRATION).percentage == 40.0
        assert updated.phase(MigrationPhase.DATA_MIGRATION).status == PhaseStatus.RUNNING
        assert original.phase(MigrationPhase.DATA_MIGRATION).status == PhaseStatus.PENDING
        assert updated.phase(MigrationPhase.PREPARATION) is original.phase(
            MigrationPhase.PREPARATION
        )

    def test_with_stats(self) -> None:
        original = MigrationProgress.initial()

        updated = original.with_stats(tables_migrated=3, total_tables=5)

        assert updated.stats.tables_migrated == 3
        assert updated.stats.total_tables == 5
        assert updated.stats.rows_migrated == 0
        assert original.stats.tables_migrated == 0

    def test_missing_phase_raises(self) -> None:
        with pytest.raises(KeyError):
            MigrationProgress().phase(MigrationPhase.CUTOVER)

    def test_is_frozen(self) -> None:
        with pytest.raises(FrozenInstanceError):
            MigrationProgress.initial().overall_percentage = 50.0  # type: ignore[misc]


class TestMigrationConfiguration:
    """Tests for MigrationConfiguration serialization."""

    def test_defaults(self) -> None:
        config = MigrationConfiguration(clone_type=CloneType.SCHEMA_ONLY, target_region="eu")

        assert config.parallel_threads == 4
        assert config.batch_size == 1000
        assert config.include_storage
        assert not config.preserve_user_data

    def test_round_trip(self) -> None:
        config = make_configuration(
            clone_type=CloneType.DATA_SUBSET,
            data_filters=(DataFilter("orders", "total > 100"),),
            exclude_tables=("audit_events",),
            batch_size=500,
        )

        data = config.to_dict()

        assert data["clone_type"] == "data_subset"
        assert data["data_filters"] == [{"table": "orders", "where_clause": "total > 100"}]
        assert data["exclude_tables"] == ["audit_events"]
        assert MigrationConfiguration.from_dict(data) == config

    def test_from_dict_defaults(self) -> None:
        config = MigrationConfiguration.from_dict({"clone_type": "full_clone"})

        assert config.target_region == ""
        assert config.target_compute_tier == "micro"
        assert config.data_filters == ()

    def test_from_dict_rejects_unknown_clone_type(self) -> None:
        with pytest.raises(ValueError):
            MigrationConfiguration.from_dict({"clone_type": "everything"})


class TestMigrationErrorRecord:
    """Tests for fault records."""

    def test_defaults(self) -> None:
        record = make_error()

        assert not record.recovery_attempted
        assert record.recovery_successful is None
        assert record.time_to_recovery is None

    def test_mark_recovery(self) -> None:
        timestamp = datetime(2024, 5, 1, 12, tzinfo=UTC)
        record = make_error(timestamp=timestamp)

        record.mark_recovery(True, at=timestamp + timedelta(seconds=45))

        assert record.recovery_attempted
        assert record.recovery_successful is True
        assert record.time_to_recovery == timedelta(seconds=45)

    def test_to_dict(self) -> None:
        record = make_error(
            ErrorCode.PERMISSION_DENIED,
            severity=ErrorSeverity.MEDIUM,
            message="permission denied for table orders",
        )

        data = record.to_dict()

        assert data["id"] == str(record.id)
        assert data["phase"] == "data_migration"
        assert data["severity"] == "medium"
        assert data["error_code"] == "PERMISSION_DENIED"
        assert data["recovery_successful"] is None


class TestMigrationJob:
    """Tests for MigrationJob."""

    def test_new_job(self) -> None:
        job = make_job()

        assert job.status == JobStatus.PENDING
        assert job.clone_type == CloneType.FULL_CLONE
        assert job.error_log == []
        assert job.progress == MigrationProgress.initial()

    def test_snapshot_is_isolated(self) -> None:
        job = make_job()

        snapshot = job.snapshot()
        job.status = JobStatus.RUNNING
        job.error_log.append(make_error())

        assert snapshot.id == job.id
        assert snapshot.status == JobStatus.PENDING
        assert snapshot.error_log == []

    def test_to_dict(self) -> None:
        job = make_job()
        job.error_log.append(make_error())

        data = job.to_dict()

        assert data["id"] == str(job.id)
        assert data["status"] == "pending"
        assert data["clone_type"] == "full_clone"
        assert data["started_at"] is None
        assert data["actual_duration_seconds"] is None
        assert data["current_phase"] == "preparation"
        assert data["error_count"] == 1
        assert data["created_by"] == "user-1"

    def test_to_dict_durations(self) -> None:
        job = make_job()
        job.estimated_duration = timedelta(minutes=5)
        job.actual_duration = timedelta(seconds=90)

        data = job.to_dict()

        assert data["estimated_duration_seconds"] == 300.0
        assert data["actual_duration_seconds"] == 90.0


class TestRecoveryResult:
    """Tests for RecoveryResult."""

    def test_manual(self) -> None:
        result = RecoveryResult.manual("Permission issue", strategy_id="permission_escalation")

        assert not result.success
        assert result.action == RecoveryAction.MANUAL_INTERVENTION
        assert result.requires_manual_intervention
        assert result.strategy_id == "permission_escalation"
        assert result.delay == timedelta(0)

"""
Unit tests for the phase table and the phase executors.

Executors are run directly against the collaborator fakes with a
recording progress reporter; the orchestrator is not involved.
"""

from __future__ import annotations

from typing import Any

import pytest

from supaclone.config import OrchestratorSettings
from supaclone.migration.collaborators import (
    ApiResult,
    DatabaseConfig,
    DatabaseSchema,
    EdgeFunction,
    ProjectInfo,
    StorageBucket,
    StorageObject,
    TableInfo,
)
from supaclone.migration.exceptions import (
    CollaboratorError,
    ErrorCode,
    ProjectNotReadyError,
    ValidationFailedError,
)
from supaclone.migration.models import (
    CloneType,
    DataFilter,
    MigrationJob,
    MigrationJobOptions,
    MigrationPhase,
)
from supaclone.migration.phases import (
    PHASE_TABLE,
    JobRuntime,
    MigrationCollaborators,
    PhaseContext,
    descriptor_for,
    filters_by_table,
    generate_database_password,
    run_configuration_migration,
    run_data_migration,
    run_edge_functions_migration,
    run_preparation,
    run_schema_migration,
    run_storage_migration,
    run_validation,
    tables_to_copy,
)
from tests.fixtures import (
    ORGANIZATION_ID,
    FakeInspector,
    FakeManagementClient,
    FakeTargetDatabase,
    RecordingSleep,
    make_configuration,
    make_job,
    make_options,
    sample_schema,
)

TARGET = ProjectInfo(
    id="project-1", ref="targetref1", name="staging-copy", status="ACTIVE_HEALTHY"
)


class RecordingReporter:
    """Progress reporter that records every report."""

    def __init__(self) -> None:
        self.reports: list[tuple[float, str, dict[str, int]]] = []

    async def __call__(self, fraction: float, details: str = "", **stats: int) -> None:
        self.reports.append((fraction, details, stats))

    @property
    def fractions(self) -> list[float]:
        return [fraction for fraction, _, _ in self.reports]


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


def make_context(
    collaborators: MigrationCollaborators,
    reporter: RecordingReporter,
    sleep: RecordingSleep,
    *,
    job: MigrationJob | None = None,
    options: MigrationJobOptions | None = None,
    runtime: JobRuntime | None = None,
    **settings: Any,
) -> PhaseContext:
    return PhaseContext(
        job=job or make_job(),
        options=options or make_options(),
        collaborators=collaborators,
        runtime=runtime if runtime is not None else JobRuntime(target_project=TARGET),
        settings=OrchestratorSettings(enable_tracing=False, **settings),
        sleep=sleep,
        report=reporter,
    )


class TestPhaseTable:
    """Tests for PHASE_TABLE and PhaseDescriptor."""

    def test_every_phase_in_order(self) -> None:
        assert [d.phase for d in PHASE_TABLE] == list(MigrationPhase)

    def test_bands_are_contiguous(self) -> None:
        assert PHASE_TABLE[0].start == 0.0
        assert PHASE_TABLE[-1].end == 100.0
        for previous, current in zip(PHASE_TABLE, PHASE_TABLE[1:]):
            assert previous.end == current.start
            assert current.start < current.end

    def test_bands(self) -> None:
        data = descriptor_for(MigrationPhase.DATA_MIGRATION)

        assert (data.start, data.end) == (30.0, 60.0)
        assert data.overall_percentage(0.5) == 45.0
        assert data.overall_percentage(-1.0) == 30.0
        assert data.overall_percentage(2.0) == 60.0

    def test_enabled_predicates(self) -> None:
        schema_only = make_configuration(
            clone_type=CloneType.SCHEMA_ONLY, include_storage=False, include_edge_functions=False
        )
        skipped = [d.phase for d in PHASE_TABLE if not d.is_enabled(schema_only)]

        assert skipped == [
            MigrationPhase.DATA_MIGRATION,
            MigrationPhase.STORAGE_MIGRATION,
            MigrationPhase.EDGE_FUNCTIONS_MIGRATION,
        ]
        assert all(d.is_enabled(make_configuration()) for d in PHASE_TABLE)

    def test_skip_reasons(self) -> None:
        assert descriptor_for(MigrationPhase.DATA_MIGRATION).skip_reason == "Schema-only clone"
        assert (
            descriptor_for(MigrationPhase.STORAGE_MIGRATION).skip_reason
            == "Storage not included"
        )


class TestHelpers:
    """Tests for password generation and table selection."""

    def test_password(self) -> None:
        password = generate_database_password(20)

        assert len(password) == 20
        assert generate_database_password() != generate_database_password()

    def test_tables_to_copy_skips_auth_by_default(self) -> None:
        tables = tables_to_copy(sample_schema(), make_configuration())

        assert [t.qualified_name for t in tables] == [
            "public.customers",
            "public.orders",
            "public.audit_events",
        ]

    def test_tables_to_copy_with_user_data(self) -> None:
        tables = tables_to_copy(sample_schema(), make_configuration(preserve_user_data=True))

        assert "auth.users" in [t.qualified_name for t in tables]

    def test_exclusions_bare_or_qualified(self) -> None:
        config = make_configuration(exclude_tables=("audit_events", "public.orders"))

        assert [t.name for t in tables_to_copy(sample_schema(), config)] == ["customers"]

    def test_filters_only_for_subset_clones(self) -> None:
        data_filter = DataFilter("orders", "total > 100")

        assert filters_by_table(make_configuration(data_filters=(data_filter,))) == {}
        subset = make_configuration(clone_type=CloneType.DATA_SUBSET, data_filters=(data_filter,))
        assert filters_by_table(subset) == {"orders": data_filter}


class TestJobRuntime:
    """Tests for JobRuntime.forget()."""

    @staticmethod
    def discovered() -> JobRuntime:
        return JobRuntime(
            target_project=TARGET,
            source_db=DatabaseConfig("db.sourceref.example.com", 5432, "postgres", "postgres"),
            target_db=DatabaseConfig("db.targetref1.example.com", 5432, "postgres", "postgres"),
            schema=sample_schema(),
        )

    def test_preparation_rollback_forgets_the_target(self) -> None:
        runtime = self.discovered()

        runtime.forget(MigrationPhase.PREPARATION)

        assert runtime.target_project is None
        assert runtime.target_db is None
        assert runtime.schema is None
        assert runtime.source_db is not None

    def test_schema_rollback_forgets_the_schema(self) -> None:
        runtime = self.discovered()

        runtime.forget(MigrationPhase.SCHEMA_MIGRATION)

        assert runtime.schema is None
        assert runtime.target_project == TARGET
        assert runtime.target_db is not None

    def test_later_phases_keep_everything(self) -> None:
        runtime = self.discovered()

        runtime.forget(MigrationPhase.STORAGE_MIGRATION)

        assert runtime == self.discovered()


class TestPreparation:
    """Tests for run_preparation()."""

    @pytest.mark.asyncio
    async def test_creates_project_and_waits(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.ready_after = 2
        ctx = make_context(collaborators, reporter, sleep, runtime=JobRuntime())

        await run_preparation(ctx)

        assert ctx.job.target_project_ref == "targetref1"
        assert ctx.job.target_project_id == "project-1"
        assert ctx.runtime.target_project is not None
        assert ctx.runtime.target_project.is_healthy
        assert management.call_count("get_project") == 3
        assert sleep.delays == [10.0, 10.0]
        assert reporter.fractions == [0.3, 1.0]
        assert management.calls[0] == (
            "create_project",
            (ORGANIZATION_ID, "staging-copy", "us-east-1", "micro"),
        )

    @pytest.mark.asyncio
    async def test_existing_project_is_reused(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.projects[TARGET.ref] = TARGET
        ctx = make_context(collaborators, reporter, sleep)

        await run_preparation(ctx)

        assert management.call_count("create_project") == 0

    @pytest.mark.asyncio
    async def test_project_never_ready(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.ready_after = 100
        ctx = make_context(
            collaborators,
            reporter,
            sleep,
            runtime=JobRuntime(),
            project_ready_attempts=3,
            project_ready_interval_seconds=2.0,
        )

        with pytest.raises(ProjectNotReadyError) as exc_info:
            await run_preparation(ctx)

        assert exc_info.value.attempts == 3
        assert sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_create_failure_is_structured(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.fail("create_project", ApiResult.fail(409, "name taken"))
        ctx = make_context(collaborators, reporter, sleep, runtime=JobRuntime())

        with pytest.raises(CollaboratorError) as exc_info:
            await run_preparation(ctx)

        assert exc_info.value.fault_code == ErrorCode.RESOURCE_CONFLICT
        assert ctx.job.target_project_ref is None


class TestDatabasePhases:
    """Tests for the schema, data and validation executors."""

    @pytest.mark.asyncio
    async def test_schema_migration(
        self,
        collaborators: MigrationCollaborators,
        target_database: FakeTargetDatabase,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        ctx = make_context(collaborators, reporter, sleep)

        await run_schema_migration(ctx)

        assert target_database.schemas_applied == 1
        assert ctx.runtime.schema == sample_schema()
        assert reporter.reports[-1] == (
            1.0,
            "Schema applied",
            {"total_tables": 4, "tables_migrated": 4, "total_rows": 680},
        )

    @pytest.mark.asyncio
    async def test_data_migration(
        self,
        collaborators: MigrationCollaborators,
        target_database: FakeTargetDatabase,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        job = make_job(
            clone_type=CloneType.DATA_SUBSET,
            batch_size=500,
            data_filters=(DataFilter("orders", "total > 100"),),
        )
        ctx = make_context(collaborators, reporter, sleep, job=job)

        await run_data_migration(ctx)

        copied = {name: (f, batch) for name, f, batch in target_database.copied_tables}
        assert set(copied) == {"public.customers", "public.orders", "public.audit_events"}
        assert copied["public.orders"] == (DataFilter("orders", "total > 100"), 500)
        assert copied["public.customers"] == (None, 500)
        assert reporter.fractions[-1] == 1.0
        assert reporter.reports[-1][2] == {"rows_migrated": 650}

    @pytest.mark.asyncio
    async def test_data_migration_without_tables(
        self,
        management: FakeManagementClient,
        target_database: FakeTargetDatabase,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        collaborators = MigrationCollaborators(
            management=management,
            inspector=FakeInspector(DatabaseSchema(tables=(TableInfo("auth", "users"),))),
            target_database=target_database,
        )
        ctx = make_context(collaborators, reporter, sleep)

        await run_data_migration(ctx)

        assert target_database.copied_tables == []
        assert reporter.reports == [(1.0, "No tables to copy", {"rows_migrated": 0})]

    @pytest.mark.asyncio
    async def test_data_migration_propagates_copy_failure(
        self,
        collaborators: MigrationCollaborators,
        target_database: FakeTargetDatabase,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        target_database.fail("copy_table", ConnectionResetError("connection reset"))
        ctx = make_context(collaborators, reporter, sleep)

        with pytest.raises(ConnectionResetError):
            await run_data_migration(ctx)

    @pytest.mark.asyncio
    async def test_validation_problems_raise(
        self,
        collaborators: MigrationCollaborators,
        target_database: FakeTargetDatabase,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        target_database.integrity_problems = ["orders: 480 rows in source, 479 in target"]
        ctx = make_context(collaborators, reporter, sleep)

        with pytest.raises(ValidationFailedError) as exc_info:
            await run_validation(ctx)

        assert exc_info.value.problems == ["orders: 480 rows in source, 479 in target"]
        assert exc_info.value.job_id == ctx.job.id

    @pytest.mark.asyncio
    async def test_schema_is_read_once(
        self,
        collaborators: MigrationCollaborators,
        inspector: FakeInspector,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        ctx = make_context(collaborators, reporter, sleep)

        await run_schema_migration(ctx)
        await run_validation(ctx)

        assert len(inspector.inspected) == 1

    def test_target_ref_requires_project(
        self,
        collaborators: MigrationCollaborators,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        ctx = make_context(collaborators, reporter, sleep, runtime=JobRuntime())

        with pytest.raises(RuntimeError, match="not been created"):
            ctx.target_ref


class TestManagementPhases:
    """Tests for the storage, configuration and edge function executors."""

    @pytest.mark.asyncio
    async def test_storage_migration(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.buckets = [StorageBucket("avatars", "avatars"), StorageBucket("docs", "docs")]
        management.objects = {
            "avatars": [StorageObject("a.png"), StorageObject("b.png")],
            "docs": [StorageObject("terms.pdf")],
        }
        ctx = make_context(collaborators, reporter, sleep)

        await run_storage_migration(ctx)

        assert [bucket.id for _, bucket in management.created_buckets] == ["avatars", "docs"]
        assert management.copied_objects == [
            ("avatars", "a.png"),
            ("avatars", "b.png"),
            ("docs", "terms.pdf"),
        ]
        assert reporter.reports[0][2] == {
            "total_storage_objects": 3,
            "storage_objects_migrated": 0,
        }
        assert reporter.reports[-2][2] == {"storage_objects_migrated": 3}
        assert reporter.fractions[-1] == 1.0

    @pytest.mark.asyncio
    async def test_configuration_without_auth(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.project_config = {"auth": {"site_url": "x"}, "api": {"max_rows": 1000}}
        ctx = make_context(
            collaborators, reporter, sleep, job=make_job(include_auth_config=False)
        )

        await run_configuration_migration(ctx)

        assert management.updated_configs == [("targetref1", {"api": {"max_rows": 1000}})]

    @pytest.mark.asyncio
    async def test_configuration_with_auth(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.project_config = {"auth": {"site_url": "x"}}
        ctx = make_context(collaborators, reporter, sleep)

        await run_configuration_migration(ctx)

        assert management.updated_configs == [("targetref1", {"auth": {"site_url": "x"}})]

    @pytest.mark.asyncio
    async def test_edge_functions(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.functions = [
            EdgeFunction("hello", "Hello", body="export default () => 'hi'"),
            EdgeFunction("webhook", "Webhook", verify_jwt=False),
        ]
        ctx = make_context(collaborators, reporter, sleep)

        await run_edge_functions_migration(ctx)

        deployed = [function for _, function in management.deployed_functions]
        assert [f.slug for f in deployed] == ["hello", "webhook"]
        assert deployed[0].body == "export default () => 'hi'"
        assert management.call_count("get_edge_function") == 2
        assert reporter.reports[0][2] == {"total_functions": 2, "functions_migrated": 0}

    @pytest.mark.asyncio
    async def test_deploy_failure(
        self,
        collaborators: MigrationCollaborators,
        management: FakeManagementClient,
        reporter: RecordingReporter,
        sleep: RecordingSleep,
    ) -> None:
        management.functions = [EdgeFunction("hello", "Hello")]
        management.fail("deploy_edge_function", ApiResult.fail(403, "forbidden"))
        ctx = make_context(collaborators, reporter, sleep)

        with pytest.raises(CollaboratorError) as exc_info:
            await run_edge_functions_migration(ctx)

        assert exc_info.value.fault_code == ErrorCode.PERMISSION_DENIED

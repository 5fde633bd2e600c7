"""
The fixed phase table of the clone pipeline.

Each MigrationPhase is bound to a PhaseDescriptor: its percentage band,
the coroutine that executes it, and the configuration predicate that
decides whether it runs at all. The orchestrator walks PHASE_TABLE in
order; executors never touch job status and only report progress through
PhaseContext.report(), which the orchestrator maps into the phase's band.

Executors talk to the outside world exclusively through the injected
MigrationCollaborators and raise on failure. Management API failures are
raised as CollaboratorError via ApiResult.unwrap() so recovery sees a
structured fault code.

Band layout (overall percentage):

    preparation                0 - 10
    schema_migration          10 - 30
    data_migration            30 - 60
    storage_migration         60 - 70
    configuration_migration   70 - 75
    edge_functions_migration  75 - 80
    security_migration        80 - 85
    realtime_setup            85 - 90
    validation                90 - 95
    cutover                   95 - 100
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from supaclone.config import OrchestratorSettings
from supaclone.migration.collaborators import (
    DatabaseConfig,
    DatabaseSchema,
    ProjectInfo,
    ProjectManagementClient,
    SchemaInspector,
    StorageObject,
    TableInfo,
    TargetDatabase,
)
from supaclone.migration.exceptions import ProjectNotReadyError, ValidationFailedError
from supaclone.migration.models import (
    CloneType,
    DataFilter,
    MigrationConfiguration,
    MigrationJob,
    MigrationJobOptions,
    MigrationPhase,
)

logger = logging.getLogger(__name__)

AUTH_SCHEMA = "auth"
AUTH_CONFIG_KEY = "auth"

_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"


class ProgressReporter(Protocol):
    """Callback executors use to report progress within their phase."""

    async def __call__(self, fraction: float, details: str = "", **stats: int) -> None: ...


@dataclass
class MigrationCollaborators:
    """External systems the phase executors drive."""

    management: ProjectManagementClient
    inspector: SchemaInspector
    target_database: TargetDatabase


@dataclass
class JobRuntime:
    """
    Values discovered while a job runs and shared between its phases.

    Attributes:
        target_project: The created target project, once preparation ran.
        source_db: Connection info of the source database.
        target_db: Connection info of the target database.
        schema: Source schema read during schema migration.
    """

    target_project: ProjectInfo | None = None
    source_db: DatabaseConfig | None = None
    target_db: DatabaseConfig | None = None
    schema: DatabaseSchema | None = None

    def forget(self, phase: MigrationPhase) -> None:
        """
        Drop the values a phase discovered once its checkpoint is restored.

        Rolling back preparation deletes the target project, so the next
        attempt creates a new one and reconnects to it.
        """
        if phase == MigrationPhase.PREPARATION:
            self.target_project = None
            self.target_db = None
            self.schema = None
        elif phase == MigrationPhase.SCHEMA_MIGRATION:
            self.schema = None


@dataclass
class PhaseContext:
    """Everything an executor needs for one phase attempt."""

    job: MigrationJob
    options: MigrationJobOptions
    collaborators: MigrationCollaborators
    runtime: JobRuntime
    settings: OrchestratorSettings
    sleep: Callable[[float], Awaitable[None]]
    report: ProgressReporter

    @property
    def configuration(self) -> MigrationConfiguration:
        return self.job.configuration

    @property
    def source_ref(self) -> str:
        return self.options.source_project.ref

    @property
    def target_ref(self) -> str:
        """
        Reference of the target project.

        Raises:
            RuntimeError: If preparation has not created the project yet.
        """
        if self.runtime.target_project is None:
            raise RuntimeError("Target project has not been created")
        return self.runtime.target_project.ref

    async def source_database(self) -> DatabaseConfig:
        if self.runtime.source_db is None:
            result = await self.collaborators.management.get_database_config(self.source_ref)
            self.runtime.source_db = result.unwrap("get_database_config")
        return self.runtime.source_db

    async def target_database(self) -> DatabaseConfig:
        if self.runtime.target_db is None:
            result = await self.collaborators.management.get_database_config(self.target_ref)
            self.runtime.target_db = result.unwrap("get_database_config")
        return self.runtime.target_db

    async def source_schema(self) -> DatabaseSchema:
        if self.runtime.schema is None:
            connection = await self.source_database()
            self.runtime.schema = await self.collaborators.inspector.get_complete_schema(
                connection
            )
        return self.runtime.schema


PhaseExecutor = Callable[[PhaseContext], Awaitable[None]]


def _always(configuration: MigrationConfiguration) -> bool:
    return True


@dataclass(frozen=True)
class PhaseDescriptor:
    """
    One row of the phase table.

    Attributes:
        phase: The phase this row describes.
        start: Overall percentage when the phase begins.
        end: Overall percentage when the phase has finished.
        execute: Executor coroutine.
        enabled: Predicate over the job configuration; False skips the phase.
        skip_reason: Reason reported when the phase is skipped by configuration.
    """

    phase: MigrationPhase
    start: float
    end: float
    execute: PhaseExecutor = field(compare=False, repr=False)
    enabled: Callable[[MigrationConfiguration], bool] = field(
        default=_always, compare=False, repr=False
    )
    skip_reason: str = ""

    def is_enabled(self, configuration: MigrationConfiguration) -> bool:
        return self.enabled(configuration)

    def overall_percentage(self, fraction: float) -> float:
        """Map a 0..1 fraction of this phase onto the overall percentage."""
        fraction = min(max(fraction, 0.0), 1.0)
        return self.start + (self.end - self.start) * fraction


def generate_database_password(length: int = 16) -> str:
    """Random password for the target database."""
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


async def run_preparation(ctx: PhaseContext) -> None:
    """Create the target project (once) and wait until it reports healthy."""
    management = ctx.collaborators.management

    if ctx.runtime.target_project is None:
        options = ctx.options
        result = await management.create_project(
            options.organization_id,
            options.target_project_name,
            options.target_region,
            options.target_tier,
            generate_database_password(ctx.settings.password_length),
        )
        project = result.unwrap("create_project")
        ctx.runtime.target_project = project
        ctx.job.target_project_id = project.id
        ctx.job.target_project_ref = project.ref
        logger.info(
            "Created target project %s for job %s",
            project.ref,
            ctx.job.id,
            extra={"job_id": str(ctx.job.id), "target_project": project.ref},
        )
        await ctx.report(0.3, f"Created target project {project.name or project.ref}")

    ref = ctx.target_ref
    attempts = ctx.settings.project_ready_attempts
    for attempt in range(1, attempts + 1):
        result = await management.get_project(ref)
        if result.success and result.data is not None and result.data.is_healthy:
            ctx.runtime.target_project = result.data
            await ctx.report(1.0, "Target project is ready")
            return

        logger.debug(
            "Project %s not ready (attempt %d/%d)",
            ref,
            attempt,
            attempts,
            extra={"job_id": str(ctx.job.id), "target_project": ref},
        )
        if attempt < attempts:
            await ctx.sleep(ctx.settings.project_ready_interval_seconds)

    raise ProjectNotReadyError(ref, attempts)


async def run_schema_migration(ctx: PhaseContext) -> None:
    schema = await ctx.source_schema()
    await ctx.report(0.4, f"Read {len(schema.tables)} tables from source")

    target = await ctx.target_database()
    await ctx.collaborators.target_database.apply_schema(target, schema)
    await ctx.report(
        1.0,
        "Schema applied",
        total_tables=len(schema.tables),
        tables_migrated=len(schema.tables),
        total_rows=schema.total_rows,
    )


def tables_to_copy(
    schema: DatabaseSchema, configuration: MigrationConfiguration
) -> list[TableInfo]:
    """
    Tables whose rows the data phase copies.

    Excluded tables may be named bare or schema-qualified. The auth schema
    is only copied when user data is preserved.
    """
    excluded = set(configuration.exclude_tables)
    selected = []
    for table in schema.tables:
        if table.name in excluded or table.qualified_name in excluded:
            continue
        if table.schema == AUTH_SCHEMA and not configuration.preserve_user_data:
            continue
        selected.append(table)
    return selected


def filters_by_table(configuration: MigrationConfiguration) -> dict[str, DataFilter]:
    """Row filters keyed by table name; only data subset clones filter rows."""
    if configuration.clone_type != CloneType.DATA_SUBSET:
        return {}
    return {data_filter.table: data_filter for data_filter in configuration.data_filters}


async def run_data_migration(ctx: PhaseContext) -> None:
    """Copy rows table by table, fanned out across ``parallel_threads``."""
    configuration = ctx.configuration
    schema = await ctx.source_schema()
    source = await ctx.source_database()
    target = await ctx.target_database()

    tables = tables_to_copy(schema, configuration)
    filters = filters_by_table(configuration)
    if not tables:
        await ctx.report(1.0, "No tables to copy", rows_migrated=0)
        return

    semaphore = asyncio.Semaphore(configuration.parallel_threads)
    copied_tables = 0
    copied_rows = 0

    async def copy(table: TableInfo) -> None:
        nonlocal copied_tables, copied_rows
        async with semaphore:
            rows = await ctx.collaborators.target_database.copy_table(
                source,
                target,
                table,
                batch_size=configuration.batch_size,
                data_filter=filters.get(table.name) or filters.get(table.qualified_name),
                compress=configuration.enable_compression,
            )
        copied_tables += 1
        copied_rows += rows
        await ctx.report(
            copied_tables / len(tables),
            f"Copied {table.qualified_name}",
            rows_migrated=copied_rows,
        )

    results = await asyncio.gather(*(copy(table) for table in tables), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result


async def run_storage_migration(ctx: PhaseContext) -> None:
    """Mirror buckets, then copy each bucket's objects."""
    management = ctx.collaborators.management
    source_ref = ctx.source_ref
    target_ref = ctx.target_ref

    buckets = (await management.list_storage_buckets(source_ref)).unwrap("list_storage_buckets")
    objects: list[tuple[str, StorageObject]] = []
    for bucket in buckets:
        (await management.create_storage_bucket(target_ref, bucket)).unwrap(
            "create_storage_bucket"
        )
        listed = (await management.list_storage_objects(source_ref, bucket.id)).unwrap(
            "list_storage_objects"
        )
        objects.extend((bucket.id, obj) for obj in listed)

    await ctx.report(
        0.2,
        f"Created {len(buckets)} buckets",
        total_storage_objects=len(objects),
        storage_objects_migrated=0,
    )

    for index, (bucket_id, obj) in enumerate(objects, start=1):
        (
            await management.copy_storage_object(source_ref, target_ref, bucket_id, obj.name)
        ).unwrap("copy_storage_object")
        await ctx.report(
            0.2 + 0.8 * index / len(objects),
            f"Copied {bucket_id}/{obj.name}",
            storage_objects_migrated=index,
        )

    await ctx.report(1.0, "Storage mirrored")


async def run_configuration_migration(ctx: PhaseContext) -> None:
    management = ctx.collaborators.management
    settings: dict[str, Any] = (await management.get_project_config(ctx.source_ref)).unwrap(
        "get_project_config"
    )
    if not ctx.configuration.include_auth_config:
        settings = {key: value for key, value in settings.items() if key != AUTH_CONFIG_KEY}

    (await management.update_project_config(ctx.target_ref, settings)).unwrap(
        "update_project_config"
    )
    await ctx.report(1.0, f"Copied {len(settings)} configuration sections")


async def run_edge_functions_migration(ctx: PhaseContext) -> None:
    """Fetch each function from the source and deploy it to the target."""
    management = ctx.collaborators.management
    functions = (await management.list_edge_functions(ctx.source_ref)).unwrap(
        "list_edge_functions"
    )
    await ctx.report(0.1, total_functions=len(functions), functions_migrated=0)

    for index, summary in enumerate(functions, start=1):
        function = (await management.get_edge_function(ctx.source_ref, summary.slug)).unwrap(
            "get_edge_function"
        )
        (await management.deploy_edge_function(ctx.target_ref, function)).unwrap(
            "deploy_edge_function"
        )
        await ctx.report(
            0.1 + 0.9 * index / len(functions),
            f"Deployed {function.slug}",
            functions_migrated=index,
        )

    await ctx.report(1.0, "Edge functions deployed")


async def run_security_migration(ctx: PhaseContext) -> None:
    schema = await ctx.source_schema()
    target = await ctx.target_database()
    await ctx.collaborators.target_database.apply_security(target, schema)
    await ctx.report(1.0, f"Applied {len(schema.policies)} policies and {len(schema.roles)} roles")


async def run_realtime_setup(ctx: PhaseContext) -> None:
    schema = await ctx.source_schema()
    target = await ctx.target_database()
    await ctx.collaborators.target_database.configure_realtime(target, schema)
    await ctx.report(1.0, "Realtime configured")


async def run_validation(ctx: PhaseContext) -> None:
    """Run integrity checks; any reported problem fails the phase."""
    schema = await ctx.source_schema()
    source = await ctx.source_database()
    target = await ctx.target_database()
    problems = await ctx.collaborators.target_database.verify_integrity(source, target, schema)
    if problems:
        raise ValidationFailedError(problems, job_id=ctx.job.id)
    await ctx.report(1.0, "Integrity checks passed")


async def run_cutover(ctx: PhaseContext) -> None:
    source = await ctx.source_database()
    target = await ctx.target_database()
    await ctx.collaborators.target_database.perform_cutover(source, target)
    await ctx.report(1.0, "Cutover complete")


PHASE_TABLE: tuple[PhaseDescriptor, ...] = (
    PhaseDescriptor(MigrationPhase.PREPARATION, 0.0, 10.0, run_preparation),
    PhaseDescriptor(MigrationPhase.SCHEMA_MIGRATION, 10.0, 30.0, run_schema_migration),
    PhaseDescriptor(
        MigrationPhase.DATA_MIGRATION,
        30.0,
        60.0,
        run_data_migration,
        enabled=lambda c: c.clone_type != CloneType.SCHEMA_ONLY,
        skip_reason="Schema-only clone",
    ),
    PhaseDescriptor(
        MigrationPhase.STORAGE_MIGRATION,
        60.0,
        70.0,
        run_storage_migration,
        enabled=lambda c: c.include_storage,
        skip_reason="Storage not included",
    ),
    PhaseDescriptor(
        MigrationPhase.CONFIGURATION_MIGRATION, 70.0, 75.0, run_configuration_migration
    ),
    PhaseDescriptor(
        MigrationPhase.EDGE_FUNCTIONS_MIGRATION,
        75.0,
        80.0,
        run_edge_functions_migration,
        enabled=lambda c: c.include_edge_functions,
        skip_reason="Edge functions not included",
    ),
    PhaseDescriptor(MigrationPhase.SECURITY_MIGRATION, 80.0, 85.0, run_security_migration),
    PhaseDescriptor(MigrationPhase.REALTIME_SETUP, 85.0, 90.0, run_realtime_setup),
    PhaseDescriptor(MigrationPhase.VALIDATION, 90.0, 95.0, run_validation),
    PhaseDescriptor(MigrationPhase.CUTOVER, 95.0, 100.0, run_cutover),
)


def descriptor_for(phase: MigrationPhase) -> PhaseDescriptor:
    """
    Look up the descriptor of a phase.

    Raises:
        KeyError: If the phase is not in the table.
    """
    for descriptor in PHASE_TABLE:
        if descriptor.phase == phase:
            return descriptor
    raise KeyError(phase)


__all__ = [
    "AUTH_SCHEMA",
    "PHASE_TABLE",
    "JobRuntime",
    "MigrationCollaborators",
    "PhaseContext",
    "PhaseDescriptor",
    "PhaseExecutor",
    "ProgressReporter",
    "descriptor_for",
    "filters_by_table",
    "generate_database_password",
    "tables_to_copy",
]

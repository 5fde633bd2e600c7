"""
In-memory fakes of the external systems the orchestrator drives.

Every fake records its calls and can be told to fail specific operations.
Failures are queued per operation and consumed in order: an exception is
raised, an ApiResult is returned in place of the normal result.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Any

from supaclone.migration.collaborators import (
    PROJECT_STATUS_ACTIVE_HEALTHY,
    ApiResult,
    DatabaseConfig,
    DatabaseSchema,
    EdgeFunction,
    ProjectInfo,
    StorageBucket,
    StorageObject,
    TableInfo,
)
from supaclone.migration.models import DataFilter


class _FailureQueue:
    def __init__(self) -> None:
        self._failures: dict[str, deque[Any]] = defaultdict(deque)

    def fail(self, operation: str, *outcomes: Any) -> None:
        """Queue failures for an operation: exceptions or ApiResults."""
        self._failures[operation].extend(outcomes)

    def next_failure(self, operation: str) -> Any:
        queue = self._failures.get(operation)
        if not queue:
            return None
        outcome = queue.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeManagementClient(_FailureQueue):
    """
    Fake management API.

    Created projects become healthy after ``ready_after`` get_project calls.
    When ``gate`` is set, create_project waits for it, which holds jobs in
    the running state.
    """

    def __init__(
        self,
        *,
        ready_after: int = 0,
        buckets: list[StorageBucket] | None = None,
        objects: dict[str, list[StorageObject]] | None = None,
        functions: list[EdgeFunction] | None = None,
        project_config: dict[str, Any] | None = None,
    ) -> None:
        super().__init__()
        self.ready_after = ready_after
        self.gate: asyncio.Event | None = None
        self.buckets = list(buckets or [])
        self.objects = dict(objects or {})
        self.functions = list(functions or [])
        self.project_config = dict(project_config or {})
        self.projects: dict[str, ProjectInfo] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.created_buckets: list[tuple[str, StorageBucket]] = []
        self.copied_objects: list[tuple[str, str]] = []
        self.deployed_functions: list[tuple[str, EdgeFunction]] = []
        self.updated_configs: list[tuple[str, dict[str, Any]]] = []
        self._polls: dict[str, int] = defaultdict(int)

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def create_project(
        self,
        organization_id: str,
        name: str,
        region: str,
        tier: str,
        db_password: str,
    ) -> ApiResult[ProjectInfo]:
        self.calls.append(("create_project", (organization_id, name, region, tier)))
        if self.gate is not None:
            await self.gate.wait()
        failure = self.next_failure("create_project")
        if failure is not None:
            return failure
        index = len(self.projects) + 1
        project = ProjectInfo(
            id=f"project-{index}",
            ref=f"targetref{index}",
            name=name,
            status="COMING_UP",
            region=region,
        )
        self.projects[project.ref] = project
        return ApiResult.ok(project)

    async def get_project(self, ref: str) -> ApiResult[ProjectInfo]:
        self.calls.append(("get_project", (ref,)))
        failure = self.next_failure("get_project")
        if failure is not None:
            return failure
        project = self.projects.get(ref)
        if project is None:
            return ApiResult.fail(404, f"Project {ref} not found")
        self._polls[ref] += 1
        if self._polls[ref] > self.ready_after:
            project = ProjectInfo(
                id=project.id,
                ref=project.ref,
                name=project.name,
                status=PROJECT_STATUS_ACTIVE_HEALTHY,
                region=project.region,
            )
            self.projects[ref] = project
        return ApiResult.ok(project)

    async def get_database_config(self, ref: str) -> ApiResult[DatabaseConfig]:
        self.calls.append(("get_database_config", (ref,)))
        failure = self.next_failure("get_database_config")
        if failure is not None:
            return failure
        return ApiResult.ok(
            DatabaseConfig(
                host=f"db.{ref}.example.com",
                port=5432,
                database="postgres",
                user="postgres",
                password="secret",
            )
        )

    async def list_storage_buckets(self, ref: str) -> ApiResult[list[StorageBucket]]:
        self.calls.append(("list_storage_buckets", (ref,)))
        failure = self.next_failure("list_storage_buckets")
        if failure is not None:
            return failure
        return ApiResult.ok(list(self.buckets))

    async def create_storage_bucket(
        self, ref: str, bucket: StorageBucket
    ) -> ApiResult[StorageBucket]:
        self.calls.append(("create_storage_bucket", (ref, bucket.id)))
        failure = self.next_failure("create_storage_bucket")
        if failure is not None:
            return failure
        self.created_buckets.append((ref, bucket))
        return ApiResult.ok(bucket)

    async def list_storage_objects(
        self, ref: str, bucket_id: str
    ) -> ApiResult[list[StorageObject]]:
        self.calls.append(("list_storage_objects", (ref, bucket_id)))
        failure = self.next_failure("list_storage_objects")
        if failure is not None:
            return failure
        return ApiResult.ok(list(self.objects.get(bucket_id, [])))

    async def copy_storage_object(
        self,
        source_ref: str,
        target_ref: str,
        bucket_id: str,
        object_name: str,
    ) -> ApiResult[bool]:
        self.calls.append(("copy_storage_object", (source_ref, target_ref, bucket_id, object_name)))
        failure = self.next_failure("copy_storage_object")
        if failure is not None:
            return failure
        self.copied_objects.append((bucket_id, object_name))
        return ApiResult.ok(True)

    async def list_edge_functions(self, ref: str) -> ApiResult[list[EdgeFunction]]:
        self.calls.append(("list_edge_functions", (ref,)))
        failure = self.next_failure("list_edge_functions")
        if failure is not None:
            return failure
        return ApiResult.ok(
            [
                EdgeFunction(slug=f.slug, name=f.name, verify_jwt=f.verify_jwt)
                for f in self.functions
            ]
        )

    async def get_edge_function(self, ref: str, slug: str) -> ApiResult[EdgeFunction]:
        self.calls.append(("get_edge_function", (ref, slug)))
        failure = self.next_failure("get_edge_function")
        if failure is not None:
            return failure
        for function in self.functions:
            if function.slug == slug:
                return ApiResult.ok(function)
        return ApiResult.fail(404, f"Function {slug} not found")

    async def deploy_edge_function(
        self, ref: str, function: EdgeFunction
    ) -> ApiResult[EdgeFunction]:
        self.calls.append(("deploy_edge_function", (ref, function.slug)))
        failure = self.next_failure("deploy_edge_function")
        if failure is not None:
            return failure
        self.deployed_functions.append((ref, function))
        return ApiResult.ok(function)

    async def get_project_config(self, ref: str) -> ApiResult[dict[str, Any]]:
        self.calls.append(("get_project_config", (ref,)))
        failure = self.next_failure("get_project_config")
        if failure is not None:
            return failure
        return ApiResult.ok(dict(self.project_config))

    async def update_project_config(
        self, ref: str, settings: dict[str, Any]
    ) -> ApiResult[dict[str, Any]]:
        self.calls.append(("update_project_config", (ref,)))
        failure = self.next_failure("update_project_config")
        if failure is not None:
            return failure
        self.updated_configs.append((ref, dict(settings)))
        return ApiResult.ok(dict(settings))


class FakeInspector(_FailureQueue):
    """Fake schema inspector returning a fixed schema."""

    def __init__(self, schema: DatabaseSchema | None = None) -> None:
        super().__init__()
        self.schema = schema or sample_schema()
        self.inspected: list[DatabaseConfig] = []

    async def get_complete_schema(self, connection: DatabaseConfig) -> DatabaseSchema:
        self.next_failure("get_complete_schema")
        self.inspected.append(connection)
        return self.schema


class FakeTargetDatabase(_FailureQueue):
    """
    Fake target database.

    Operations raise queued exceptions first; copy_table returns the
    table's row_count.
    """

    def __init__(self, integrity_problems: list[str] | None = None) -> None:
        super().__init__()
        self.integrity_problems = list(integrity_problems or [])
        self.calls: list[str] = []
        self.copied_tables: list[tuple[str, DataFilter | None, int]] = []
        self.schemas_applied = 0
        self.cutovers = 0

    def call_count(self, operation: str) -> int:
        return self.calls.count(operation)

    async def apply_schema(self, target: DatabaseConfig, schema: DatabaseSchema) -> None:
        self.calls.append("apply_schema")
        self.next_failure("apply_schema")
        self.schemas_applied += 1

    async def copy_table(
        self,
        source: DatabaseConfig,
        target: DatabaseConfig,
        table: TableInfo,
        *,
        batch_size: int,
        data_filter: DataFilter | None = None,
        compress: bool = True,
    ) -> int:
        self.calls.append("copy_table")
        self.next_failure("copy_table")
        self.copied_tables.append((table.qualified_name, data_filter, batch_size))
        return table.row_count

    async def apply_security(self, target: DatabaseConfig, schema: DatabaseSchema) -> None:
        self.calls.append("apply_security")
        self.next_failure("apply_security")

    async def configure_realtime(self, target: DatabaseConfig, schema: DatabaseSchema) -> None:
        self.calls.append("configure_realtime")
        self.next_failure("configure_realtime")

    async def verify_integrity(
        self,
        source: DatabaseConfig,
        target: DatabaseConfig,
        schema: DatabaseSchema,
    ) -> list[str]:
        self.calls.append("verify_integrity")
        self.next_failure("verify_integrity")
        return list(self.integrity_problems)

    async def perform_cutover(self, source: DatabaseConfig, target: DatabaseConfig) -> None:
        self.calls.append("perform_cutover")
        self.next_failure("perform_cutover")
        self.cutovers += 1


class RecordingSleep:
    """Sleep replacement that records delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingRollbackExecutor:
    """Rollback executor that records instructions and can be told to fail."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.instructions: list[str] = []

    async def execute(self, instruction: str, checkpoint: Any) -> None:
        if instruction == self.fail_on:
            raise RuntimeError(f"Could not {instruction.lower()}")
        self.instructions.append(instruction)


def sample_schema() -> DatabaseSchema:
    """A small schema with public tables and one auth table."""
    return DatabaseSchema(
        tables=(
            TableInfo(schema="public", name="customers", row_count=120),
            TableInfo(schema="public", name="orders", row_count=480),
            TableInfo(schema="public", name="audit_events", row_count=50),
            TableInfo(schema="auth", name="users", row_count=30),
        ),
        extensions=("uuid-ossp",),
        policies=({"table": "orders", "name": "owner_only"},),
        roles=("reporting",),
    )

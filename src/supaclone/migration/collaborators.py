"""
Interfaces to the external systems the migration core drives.

The orchestrator never talks to the management API or to a database
directly. It calls the narrow protocols defined here, which lets tests
substitute in-memory fakes and lets deployments plug in real clients.

Protocols:
    - ProjectManagementClient: hosted management API (projects, storage,
      edge functions, project configuration)
    - SchemaInspector: reads the complete schema of a database
    - TargetDatabase: applies schema, data and security to the target
    - RecoveryActions: side effects used by recovery strategies
    - RollbackExecutor: performs a single rollback instruction

Value types:
    - ApiResult: tagged success/error result of a management API call
    - ProjectInfo, DatabaseConfig, StorageBucket, StorageObject, EdgeFunction
    - DatabaseSchema, TableInfo
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from supaclone.migration.exceptions import CollaboratorError, ErrorCode
from supaclone.migration.models import Checkpoint, DataFilter

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROJECT_STATUS_ACTIVE_HEALTHY = "ACTIVE_HEALTHY"


def error_code_for_status(status: str | int | None) -> ErrorCode:
    """
    Map a management API error status to a fault code.

    Args:
        status: HTTP status code or symbolic error code reported by the client.

    Returns:
        The derived ErrorCode; UNKNOWN_ERROR when nothing matches.
    """
    if status is None:
        return ErrorCode.UNKNOWN_ERROR

    symbolic = str(status).upper()
    if symbolic in ("REQUEST_TIMEOUT", "408"):
        return ErrorCode.REQUEST_TIMEOUT
    if symbolic == "NETWORK_ERROR":
        return ErrorCode.NETWORK_ERROR
    if symbolic in ErrorCode.__members__:
        return ErrorCode[symbolic]

    try:
        code = int(symbolic)
    except ValueError:
        return ErrorCode.UNKNOWN_ERROR

    status_map = {
        401: ErrorCode.AUTH_FAILED,
        403: ErrorCode.PERMISSION_DENIED,
        404: ErrorCode.RESOURCE_NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        423: ErrorCode.RESOURCE_LOCKED,
    }
    if code in status_map:
        return status_map[code]
    if 500 <= code < 600:
        return ErrorCode.SYSTEM_ERROR
    return ErrorCode.UNKNOWN_ERROR


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """
    Tagged result of a management API call.

    Clients never raise for API-level failures; they return an ApiResult
    with success=False and the error status/message instead.

    Attributes:
        success: Whether the call succeeded.
        data: Payload of a successful call.
        error_status: HTTP status or symbolic code of a failed call.
        error_message: Message of a failed call.
    """

    success: bool
    data: T | None = None
    error_status: str | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, data: T) -> ApiResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, status: str | int, message: str) -> ApiResult[T]:
        return cls(success=False, error_status=str(status), error_message=message)

    def unwrap(self, operation: str) -> T:
        """
        Return the payload or raise a structured fault.

        Args:
            operation: Name of the call, used in the fault message.

        Raises:
            CollaboratorError: If the call failed or returned no data.
        """
        if self.success and self.data is not None:
            return self.data
        if self.success:
            raise CollaboratorError(
                operation,
                ErrorCode.UNEXPECTED_ERROR,
                "no data returned",
            )
        raise CollaboratorError(
            operation,
            error_code_for_status(self.error_status),
            self.error_message or "unknown error",
            status=self.error_status,
        )


@dataclass(frozen=True)
class ProjectInfo:
    """A hosted project as reported by the management API."""

    id: str
    ref: str
    name: str
    status: str
    region: str = ""

    @property
    def is_healthy(self) -> bool:
        return self.status == PROJECT_STATUS_ACTIVE_HEALTHY


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection information of a project's database."""

    host: str
    port: int
    database: str
    user: str
    password: str = field(default="", repr=False)

    def connection_string(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class StorageBucket:
    """A storage bucket."""

    id: str
    name: str
    public: bool = False


@dataclass(frozen=True)
class StorageObject:
    """An object inside a storage bucket."""

    name: str
    size: int = 0


@dataclass(frozen=True)
class EdgeFunction:
    """An edge function with its deployable source."""

    slug: str
    name: str
    body: str = ""
    verify_jwt: bool = True


@dataclass(frozen=True)
class TableInfo:
    """A table of an inspected schema."""

    schema: str
    name: str
    row_count: int = 0
    rls_enabled: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass(frozen=True)
class DatabaseSchema:
    """
    Structured schema returned by the inspector.

    Only tables are interpreted by the orchestrator; the remaining
    collections are passed through to the TargetDatabase untouched.
    """

    tables: tuple[TableInfo, ...] = ()
    views: tuple[dict[str, Any], ...] = ()
    functions: tuple[dict[str, Any], ...] = ()
    triggers: tuple[dict[str, Any], ...] = ()
    indexes: tuple[dict[str, Any], ...] = ()
    constraints: tuple[dict[str, Any], ...] = ()
    extensions: tuple[str, ...] = ()
    policies: tuple[dict[str, Any], ...] = ()
    roles: tuple[str, ...] = ()

    @property
    def total_rows(self) -> int:
        return sum(table.row_count for table in self.tables)


@runtime_checkable
class ProjectManagementClient(Protocol):
    """Hosted management API. Every call returns an ApiResult."""

    async def create_project(
        self,
        organization_id: str,
        name: str,
        region: str,
        tier: str,
        db_password: str,
    ) -> ApiResult[ProjectInfo]: ...

    async def get_project(self, ref: str) -> ApiResult[ProjectInfo]: ...

    async def get_database_config(self, ref: str) -> ApiResult[DatabaseConfig]: ...

    async def list_storage_buckets(self, ref: str) -> ApiResult[list[StorageBucket]]: ...

    async def create_storage_bucket(
        self, ref: str, bucket: StorageBucket
    ) -> ApiResult[StorageBucket]: ...

    async def list_storage_objects(
        self, ref: str, bucket_id: str
    ) -> ApiResult[list[StorageObject]]: ...

    async def copy_storage_object(
        self,
        source_ref: str,
        target_ref: str,
        bucket_id: str,
        object_name: str,
    ) -> ApiResult[bool]: ...

    async def list_edge_functions(self, ref: str) -> ApiResult[list[EdgeFunction]]: ...

    async def get_edge_function(self, ref: str, slug: str) -> ApiResult[EdgeFunction]: ...

    async def deploy_edge_function(
        self, ref: str, function: EdgeFunction
    ) -> ApiResult[EdgeFunction]: ...

    async def get_project_config(self, ref: str) -> ApiResult[dict[str, Any]]: ...

    async def update_project_config(
        self, ref: str, settings: dict[str, Any]
    ) -> ApiResult[dict[str, Any]]: ...


@runtime_checkable
class SchemaInspector(Protocol):
    """Reads the complete structure of a database."""

    async def get_complete_schema(self, connection: DatabaseConfig) -> DatabaseSchema: ...


@runtime_checkable
class TargetDatabase(Protocol):
    """
    Writes to the target database.

    Implementations raise on failure; CollaboratorError is preferred so the
    fault carries a structured code.
    """

    async def apply_schema(self, target: DatabaseConfig, schema: DatabaseSchema) -> None: ...

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
        """Copy one table in batches; returns the number of rows copied."""
        ...

    async def apply_security(self, target: DatabaseConfig, schema: DatabaseSchema) -> None: ...

    async def configure_realtime(self, target: DatabaseConfig, schema: DatabaseSchema) -> None: ...

    async def verify_integrity(
        self,
        source: DatabaseConfig,
        target: DatabaseConfig,
        schema: DatabaseSchema,
    ) -> list[str]:
        """Run integrity checks; returns a description of every failed check."""
        ...

    async def perform_cutover(self, source: DatabaseConfig, target: DatabaseConfig) -> None: ...


@runtime_checkable
class RecoveryActions(Protocol):
    """Side effects recovery strategies may perform."""

    async def cleanup_resources(self, job_id: Any, error_code: ErrorCode) -> None: ...

    async def repair_data(self, job_id: Any, error_code: ErrorCode) -> bool: ...


@runtime_checkable
class RollbackExecutor(Protocol):
    """Performs one human-readable rollback instruction."""

    async def execute(self, instruction: str, checkpoint: Checkpoint) -> None: ...


class NoOpRecoveryActions:
    """Default recovery actions: nothing to clean up and no repair capability."""

    async def cleanup_resources(self, job_id: Any, error_code: ErrorCode) -> None:
        logger.info(
            "No resource cleanup configured for job %s (%s)",
            job_id,
            error_code.value,
            extra={"job_id": str(job_id), "error_code": error_code.value},
        )

    async def repair_data(self, job_id: Any, error_code: ErrorCode) -> bool:
        logger.warning(
            "No data repair configured for job %s (%s)",
            job_id,
            error_code.value,
            extra={"job_id": str(job_id), "error_code": error_code.value},
        )
        return False


class LoggingRollbackExecutor:
    """Default rollback executor that records each instruction in the log."""

    async def execute(self, instruction: str, checkpoint: Checkpoint) -> None:
        logger.info(
            "Rollback instruction for job %s at %s: %s",
            checkpoint.job_id,
            checkpoint.phase.value,
            instruction,
            extra={
                "job_id": str(checkpoint.job_id),
                "phase": checkpoint.phase.value,
                "instruction": instruction,
            },
        )


__all__ = [
    "PROJECT_STATUS_ACTIVE_HEALTHY",
    "error_code_for_status",
    "ApiResult",
    "ProjectInfo",
    "DatabaseConfig",
    "StorageBucket",
    "StorageObject",
    "EdgeFunction",
    "TableInfo",
    "DatabaseSchema",
    "ProjectManagementClient",
    "SchemaInspector",
    "TargetDatabase",
    "RecoveryActions",
    "RollbackExecutor",
    "NoOpRecoveryActions",
    "LoggingRollbackExecutor",
]

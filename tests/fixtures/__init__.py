"""
Shared test fixtures for supaclone.

This module provides:
- In-memory fakes of the management API, schema inspector and target database
- A recording sleep and rollback executor
- Builders for options, configurations, jobs and fault records

Usage:
    from tests.fixtures import (
        FakeManagementClient,
        FakeInspector,
        FakeTargetDatabase,
        RecordingSleep,
        make_options,
    )
"""

from tests.fixtures.builders import (
    ORGANIZATION_ID,
    OTHER_ORGANIZATION_ID,
    SOURCE_PROJECT,
    make_configuration,
    make_error,
    make_job,
    make_options,
)
from tests.fixtures.collaborators import (
    FakeInspector,
    FakeManagementClient,
    FakeTargetDatabase,
    RecordingRollbackExecutor,
    RecordingSleep,
    sample_schema,
)

__all__ = [
    # Fakes
    "FakeManagementClient",
    "FakeInspector",
    "FakeTargetDatabase",
    "RecordingSleep",
    "RecordingRollbackExecutor",
    "sample_schema",
    # Builders
    "ORGANIZATION_ID",
    "OTHER_ORGANIZATION_ID",
    "SOURCE_PROJECT",
    "make_configuration",
    "make_error",
    "make_job",
    "make_options",
]

"""
Shared pytest fixtures for the supaclone tests.

This module provides:
- Collaborator fakes (management, inspector, target_database, collaborators)
- Core components wired for tests (event_bus, recovery_engine, monitoring)
- An orchestrator with tracing disabled and instant sleeps
- Sample data (organization_id, job, options)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio

from supaclone.bus import InMemoryEventBus
from supaclone.config import MonitoringConfig, OrchestratorSettings
from supaclone.events import JobEvent
from supaclone.migration.audit import InMemoryAuditLog
from supaclone.migration.checkpoints import CheckpointStore
from supaclone.migration.metrics import MonitoringMetrics, reset_meter
from supaclone.migration.models import MigrationJob, MigrationJobOptions
from supaclone.migration.monitoring import ErrorMonitoringSystem
from supaclone.migration.orchestrator import MigrationOrchestrator
from supaclone.migration.phases import MigrationCollaborators
from supaclone.migration.recovery import ErrorRecoveryEngine
from tests.fixtures import (
    ORGANIZATION_ID,
    FakeInspector,
    FakeManagementClient,
    FakeTargetDatabase,
    RecordingSleep,
    make_job,
    make_options,
)

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "otel: marks tests that require the OpenTelemetry SDK")


@pytest.fixture(autouse=True)
def _reset_meter() -> Any:
    """Reset the cached migration meter around every test."""
    reset_meter()
    yield
    reset_meter()


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def organization_id() -> str:
    return ORGANIZATION_ID


@pytest.fixture
def options() -> MigrationJobOptions:
    """A valid full clone request."""
    return make_options()


@pytest.fixture
def job() -> MigrationJob:
    """A pending full clone job."""
    return make_job()


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def management() -> FakeManagementClient:
    return FakeManagementClient()


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def target_database() -> FakeTargetDatabase:
    return FakeTargetDatabase()


@pytest.fixture
def collaborators(
    management: FakeManagementClient,
    inspector: FakeInspector,
    target_database: FakeTargetDatabase,
) -> MigrationCollaborators:
    return MigrationCollaborators(
        management=management,
        inspector=inspector,
        target_database=target_database,
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    """Instant sleep that records requested delays."""
    return RecordingSleep()


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def event_bus() -> AsyncGenerator[InMemoryEventBus, None]:
    bus = InMemoryEventBus(enable_tracing=False)
    yield bus
    await bus.shutdown(timeout=5.0)


@pytest.fixture
def recorded_events(event_bus: InMemoryEventBus) -> list[JobEvent]:
    """Every event published on the event_bus fixture, in order."""
    events: list[JobEvent] = []
    event_bus.subscribe_to_all_events(events.append)
    return events


@pytest.fixture
def metrics() -> MonitoringMetrics:
    return MonitoringMetrics(enable_metrics=False)


@pytest.fixture
def checkpoint_store() -> CheckpointStore:
    return CheckpointStore(enable_tracing=False)


@pytest.fixture
def recovery_engine(
    checkpoint_store: CheckpointStore,
    event_bus: InMemoryEventBus,
) -> ErrorRecoveryEngine:
    return ErrorRecoveryEngine(checkpoint_store, event_bus=event_bus, enable_tracing=False)


@pytest.fixture
def monitoring(
    event_bus: InMemoryEventBus,
    metrics: MonitoringMetrics,
) -> ErrorMonitoringSystem:
    return ErrorMonitoringSystem(
        MonitoringConfig(),
        event_bus=event_bus,
        metrics=metrics,
        enable_tracing=False,
    )


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def settings() -> OrchestratorSettings:
    return OrchestratorSettings(enable_tracing=False)


@pytest_asyncio.fixture
async def orchestrator(
    collaborators: MigrationCollaborators,
    recovery_engine: ErrorRecoveryEngine,
    monitoring: ErrorMonitoringSystem,
    event_bus: InMemoryEventBus,
    audit_log: InMemoryAuditLog,
    settings: OrchestratorSettings,
    metrics: MonitoringMetrics,
    sleep: RecordingSleep,
) -> AsyncGenerator[MigrationOrchestrator, None]:
    orchestrator = MigrationOrchestrator(
        collaborators,
        recovery_engine=recovery_engine,
        monitoring=monitoring,
        event_bus=event_bus,
        audit_log=audit_log,
        settings=settings,
        metrics=metrics,
        sleep=sleep,
        enable_tracing=False,
    )
    yield orchestrator
    await orchestrator.shutdown()

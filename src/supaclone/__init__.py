"""
supaclone - orchestration core for cloning hosted database projects.

This library provides:
- A clone job orchestrator running a fixed ten-phase pipeline
- Strategy-based error recovery with checkpoints and rollback
- Error monitoring with pattern detection, alerts and health probes
- Job events on an in-memory, non-blocking event bus
- OpenTelemetry tracing and metrics
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("supaclone")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from supaclone.bus import EventBus, InMemoryEventBus
from supaclone.config import MonitoringConfig, OrchestratorSettings
from supaclone.events import JobEvent
from supaclone.migration import (
    CloneType,
    ErrorMonitoringSystem,
    ErrorRecoveryEngine,
    JobEventStreamer,
    JobStatus,
    MigrationCollaborators,
    MigrationConfiguration,
    MigrationJob,
    MigrationJobOptions,
    MigrationOrchestrator,
    MigrationPhase,
    SourceProject,
    SupacloneError,
)

__all__ = [
    "__version__",
    # Orchestration
    "MigrationOrchestrator",
    "MigrationCollaborators",
    "MigrationJobOptions",
    "MigrationConfiguration",
    "MigrationJob",
    "SourceProject",
    "CloneType",
    "JobStatus",
    "MigrationPhase",
    # Recovery and monitoring
    "ErrorRecoveryEngine",
    "ErrorMonitoringSystem",
    # Events
    "EventBus",
    "InMemoryEventBus",
    "JobEvent",
    "JobEventStreamer",
    # Configuration
    "OrchestratorSettings",
    "MonitoringConfig",
    # Errors
    "SupacloneError",
]

"""
Health probes of the migration platform.

A probe is a coroutine returning a ProbeResult. The monitoring system runs
every registered probe on a fixed interval and stores the outcome as a
HealthCheck. A probe that raises is reported as critical with the
exception message; it never stops the other probes.

Standard probes (in run order):

    id                     name
    database-connectivity  Database Connectivity
    api-availability       Supabase Management API
    storage-access         Storage Access
    memory-usage           Memory Usage
    error-rate             Error Rate (registered by the monitoring system)

Probes whose backing collaborator is not configured report healthy with
``metadata={"configured": False}``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from supaclone.migration.collaborators import ProjectManagementClient

logger = logging.getLogger(__name__)

MEMORY_WARNING_PERCENT = 75.0
MEMORY_CRITICAL_PERCENT = 90.0


class HealthStatus(Enum):
    """Status reported by a health probe."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe run."""

    status: HealthStatus
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def healthy(cls, **metadata: Any) -> ProbeResult:
        return cls(status=HealthStatus.HEALTHY, metadata=metadata)

    @classmethod
    def unconfigured(cls) -> ProbeResult:
        return cls(status=HealthStatus.HEALTHY, metadata={"configured": False})


HealthProbe = Callable[[], Awaitable[ProbeResult]]


@dataclass(frozen=True)
class ProbeDefinition:
    """A registered probe."""

    id: str
    name: str
    probe: HealthProbe = field(compare=False, repr=False)


@dataclass(frozen=True)
class HealthCheck:
    """
    Latest outcome of a probe.

    Attributes:
        id: Probe identifier.
        name: Display name.
        status: Reported status.
        last_check: When the probe last ran (UTC).
        response_time_ms: How long the probe took, if it ran.
        error_message: Problem description for warning/critical results.
        metadata: Probe-specific values.
    """

    id: str
    name: str
    status: HealthStatus
    last_check: datetime = field(default_factory=lambda: datetime.now(UTC))
    response_time_ms: float | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "response_time_ms": self.response_time_ms,
            "error_message": self.error_message,
            "metadata": dict(self.metadata),
        }


async def run_probe(
    definition: ProbeDefinition,
    now: datetime | None = None,
) -> HealthCheck:
    """
    Run one probe and convert its outcome into a HealthCheck.

    A probe that raises yields a critical check carrying the exception
    message and no response time.
    """
    started = time.monotonic()
    try:
        result = await definition.probe()
    except Exception as e:
        logger.warning(
            "Health probe %s raised: %s",
            definition.id,
            e,
            extra={"health_check": definition.id},
        )
        return HealthCheck(
            id=definition.id,
            name=definition.name,
            status=HealthStatus.CRITICAL,
            last_check=now or datetime.now(UTC),
            error_message=str(e) or type(e).__name__,
        )

    return HealthCheck(
        id=definition.id,
        name=definition.name,
        status=result.status,
        last_check=now or datetime.now(UTC),
        response_time_ms=(time.monotonic() - started) * 1000,
        error_message=result.error,
        metadata=dict(result.metadata),
    )


def database_connectivity_probe(
    check: Callable[[], Awaitable[object]] | None = None,
) -> ProbeDefinition:
    """
    Probe the database by awaiting ``check``; any exception is critical.
    """

    async def probe() -> ProbeResult:
        if check is None:
            return ProbeResult.unconfigured()
        await check()
        return ProbeResult.healthy()

    return ProbeDefinition("database-connectivity", "Database Connectivity", probe)


def api_availability_probe(
    management: ProjectManagementClient | None = None,
    project_ref: str | None = None,
) -> ProbeDefinition:
    """Probe the management API with a project lookup; failures are a warning."""

    async def probe() -> ProbeResult:
        if management is None or project_ref is None:
            return ProbeResult.unconfigured()
        result = await management.get_project(project_ref)
        if not result.success:
            return ProbeResult(
                status=HealthStatus.WARNING,
                error=result.error_message or "Management API call failed",
                metadata={"status": result.error_status},
            )
        return ProbeResult.healthy()

    return ProbeDefinition("api-availability", "Supabase Management API", probe)


def storage_access_probe(
    management: ProjectManagementClient | None = None,
    project_ref: str | None = None,
) -> ProbeDefinition:
    """Probe storage by listing buckets; failures are critical."""

    async def probe() -> ProbeResult:
        if management is None or project_ref is None:
            return ProbeResult.unconfigured()
        result = await management.list_storage_buckets(project_ref)
        if not result.success:
            return ProbeResult(
                status=HealthStatus.CRITICAL,
                error=result.error_message or "Storage access failed",
                metadata={"status": result.error_status},
            )
        return ProbeResult.healthy(buckets=len(result.data or []))

    return ProbeDefinition("storage-access", "Storage Access", probe)


def memory_usage_probe(usage_provider: Callable[[], float] | None = None) -> ProbeDefinition:
    """
    Probe resource usage.

    ``usage_provider`` returns the current memory usage in percent: above
    90 is critical, above 75 is a warning.
    """

    async def probe() -> ProbeResult:
        if usage_provider is None:
            return ProbeResult.unconfigured()
        usage = usage_provider()
        if usage > MEMORY_CRITICAL_PERCENT:
            return ProbeResult(HealthStatus.CRITICAL, "Memory usage critical", {"usage": usage})
        if usage > MEMORY_WARNING_PERCENT:
            return ProbeResult(HealthStatus.WARNING, "Memory usage elevated", {"usage": usage})
        return ProbeResult.healthy(usage=usage)

    return ProbeDefinition("memory-usage", "Memory Usage", probe)


def default_probes(
    *,
    database_check: Callable[[], Awaitable[object]] | None = None,
    management: ProjectManagementClient | None = None,
    project_ref: str | None = None,
    usage_provider: Callable[[], float] | None = None,
) -> list[ProbeDefinition]:
    """The standard probes except error-rate, which needs the monitoring system."""
    return [
        database_connectivity_probe(database_check),
        api_availability_probe(management, project_ref),
        storage_access_probe(management, project_ref),
        memory_usage_probe(usage_provider),
    ]


__all__ = [
    "HealthCheck",
    "HealthProbe",
    "HealthStatus",
    "ProbeDefinition",
    "ProbeResult",
    "api_availability_probe",
    "database_connectivity_probe",
    "default_probes",
    "memory_usage_probe",
    "run_probe",
    "storage_access_probe",
]

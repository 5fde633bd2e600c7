"""
Error monitoring for clone jobs.

The ErrorMonitoringSystem receives every fault the orchestrator records and
turns the stream into:

- windowed metrics (counts per phase, code and severity, hourly rate,
  mean time to recovery, recovery success rate)
- recurring-fault patterns keyed by (error code, phase)
- alerts, with acknowledgement and resolution
- periodic health probes with an overall system health summary
- error trends (hourly buckets, top codes, phase distribution)

Alert rules:
    critical_error      every critical fault, immediately
    threshold_exceeded  critical faults within the critical window reach the
                        threshold; once per crossing, re-armed when the count
                        drops below it again
    pattern_detected    a high-severity pattern reaches the pattern threshold;
                        once per crossing, re-armed when the pattern goes quiet
                        for longer than the pattern window
    system_health       a probe reports critical

Monitoring only reads the faults pushed to it; it never changes job state.

Usage:
    >>> monitoring = ErrorMonitoringSystem(MonitoringConfig(), event_bus=bus)
    >>> await monitoring.start()
    >>> await monitoring.record_error(error_record, job)
    >>> monitoring.get_error_metrics().total_errors
    1
    >>> await monitoring.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from collections import Counter, OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from supaclone.bus import EventBus
from supaclone.config import MonitoringConfig
from supaclone.events import AlertCreated
from supaclone.migration.exceptions import ErrorCode, ErrorSeverity
from supaclone.migration.health import (
    HealthCheck,
    HealthStatus,
    ProbeDefinition,
    ProbeResult,
    default_probes,
    run_probe,
)
from supaclone.migration.metrics import MonitoringMetrics
from supaclone.migration.models import MigrationErrorRecord, MigrationJob
from supaclone.observability import Tracer, create_tracer
from supaclone.observability.attributes import (
    ATTR_ALERT_TYPE,
    ATTR_ERROR_CODE,
    ATTR_ERROR_SEVERITY,
    ATTR_HEALTH_CHECK,
    ATTR_HEALTH_STATUS,
    ATTR_JOB_ID,
    ATTR_PHASE,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_SUGGESTED_ACTIONS: dict[ErrorCode, tuple[str, ...]] = {
    ErrorCode.CONNECTION_TIMEOUT: (
        "Check network stability",
        "Increase connection timeout values",
        "Verify database server capacity",
    ),
    ErrorCode.PERMISSION_DENIED: (
        "Verify user permissions",
        "Check API key validity",
        "Review security policies",
    ),
    ErrorCode.RESOURCE_CONFLICT: (
        "Ensure unique resource names",
        "Check for concurrent operations",
    ),
}
_DEFAULT_ACTIONS = (
    "Review error logs for details",
    "Contact support if issue persists",
)


class AlertType(Enum):
    """Kinds of monitoring alerts."""

    THRESHOLD_EXCEEDED = "threshold_exceeded"
    PATTERN_DETECTED = "pattern_detected"
    CRITICAL_ERROR = "critical_error"
    SYSTEM_HEALTH = "system_health"


@dataclass
class ErrorAlert:
    """
    An alert raised by the monitoring system.

    Only the acknowledgement and resolution fields change after creation.
    """

    type: AlertType
    severity: ErrorSeverity
    title: str
    message: str
    timestamp: datetime
    job_id: UUID | None = None
    error_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    acknowledged: bool = False
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution: str | None = None

    @property
    def is_active(self) -> bool:
        """Neither acknowledged nor resolved."""
        return not self.acknowledged and self.resolved_at is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": str(self.id),
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "job_id": str(self.job_id) if self.job_id else None,
            "error_id": str(self.error_id) if self.error_id else None,
            "acknowledged": self.acknowledged,
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "resolution": self.resolution,
            "metadata": dict(self.metadata),
        }


@dataclass
class ErrorPattern:
    """
    A recurring (error code, phase) combination.

    Attributes:
        id: Pattern key, ``{code}_{phase}``.
        pattern: Short label, ``{code} in {phase} phase``.
        description: Human-readable description.
        frequency: Occurrences in the current crossing.
        last_occurrence: Timestamp of the latest occurrence.
        suggested_actions: Operator guidance.
        severity: Severity of the occurrence that opened the crossing.
        alerted: Whether the current crossing has raised its alert.
    """

    id: str
    pattern: str
    description: str
    frequency: int
    last_occurrence: datetime
    suggested_actions: tuple[str, ...]
    severity: ErrorSeverity
    alerted: bool = False


@dataclass(frozen=True)
class ErrorMetrics:
    """
    Fault statistics for a time window.

    Attributes:
        total_errors: Faults in the window.
        errors_by_phase: Count per phase value.
        errors_by_code: Count per error code value.
        errors_by_severity: Count per severity value (every severity present).
        error_rate: Faults per hour.
        mttr_seconds: Mean time from fault to recovery outcome.
        recovery_success_rate: Percentage of recovery attempts that succeeded.
    """

    total_errors: int
    errors_by_phase: dict[str, int]
    errors_by_code: dict[str, int]
    errors_by_severity: dict[str, int]
    error_rate: float
    mttr_seconds: float
    recovery_success_rate: float


@dataclass(frozen=True)
class HourlyCount:
    hour: datetime
    count: int


@dataclass(frozen=True)
class ShareCount:
    """Count of one key with its share of the window total in percent."""

    key: str
    count: int
    percentage: float


@dataclass(frozen=True)
class SeverityCount:
    severity: str
    count: int
    trend: str = "stable"


@dataclass(frozen=True)
class ErrorTrends:
    hourly_error_counts: list[HourlyCount]
    top_error_codes: list[ShareCount]
    phase_error_distribution: list[ShareCount]
    severity_trend: list[SeverityCount]


@dataclass(frozen=True)
class SystemHealth:
    """Latest probe results with the worst status as overall status."""

    overall: HealthStatus
    checks: list[HealthCheck]
    summary: dict[str, int]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ErrorMonitoringSystem:
    """
    Fault log, pattern detection, alerting and health probes.

    All state belongs to the instance. Timestamps come from an injectable
    clock so windows can be tested deterministically.

    Args:
        config: Thresholds and retention (default: MonitoringConfig())
        probes: Health probes (default: the unconfigured standard probes);
            the error-rate probe is always appended
        event_bus: Bus receiving AlertCreated events
        metrics: Metric instruments (default: MonitoringMetrics())
        clock: Returns the current UTC time
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create a tracer when none is given
    """

    def __init__(
        self,
        config: MonitoringConfig | None = None,
        *,
        probes: Sequence[ProbeDefinition] | None = None,
        event_bus: EventBus | None = None,
        metrics: MonitoringMetrics | None = None,
        clock: Clock | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._config = config or MonitoringConfig()
        self._event_bus = event_bus
        self._metrics = metrics or MonitoringMetrics()
        self._clock = clock or _utcnow

        self._errors: OrderedDict[UUID, MigrationErrorRecord] = OrderedDict()
        self._error_jobs: dict[UUID, UUID] = {}
        self._patterns: dict[str, ErrorPattern] = {}
        self._alerts: OrderedDict[UUID, ErrorAlert] = OrderedDict()
        self._critical_threshold_armed = True

        self._probes: list[ProbeDefinition] = list(
            probes if probes is not None else default_probes()
        )
        self._probes.append(ProbeDefinition("error-rate", "Error Rate", self._check_error_rate))
        now = self._clock()
        self._health_checks: dict[str, HealthCheck] = {
            probe.id: HealthCheck(
                id=probe.id, name=probe.name, status=HealthStatus.HEALTHY, last_check=now
            )
            for probe in self._probes
        }

        self._monitor_task: asyncio.Task[None] | None = None

    @property
    def config(self) -> MonitoringConfig:
        return self._config

    @property
    def metrics(self) -> MonitoringMetrics:
        return self._metrics

    @property
    def is_running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    # Fault intake

    async def record_error(self, error: MigrationErrorRecord, job: MigrationJob) -> None:
        """
        Record a fault, update its pattern and raise any due alerts.

        Args:
            error: The fault record (read, never modified)
            job: The job the fault belongs to (read, never modified)
        """
        with self._tracer.span(
            "supaclone.monitoring.record_error",
            {
                ATTR_JOB_ID: str(job.id),
                ATTR_PHASE: error.phase.value,
                ATTR_ERROR_CODE: error.error_code.value,
                ATTR_ERROR_SEVERITY: error.severity.value,
            },
        ):
            self._errors[error.id] = error
            self._error_jobs[error.id] = job.id
            while len(self._errors) > self._config.max_error_log_size:
                evicted, _ = self._errors.popitem(last=False)
                self._error_jobs.pop(evicted, None)

            self._metrics.record_fault(error.error_code.value, error.severity.value)
            logger.log(
                error.severity.log_level,
                "Fault %s in job %s during %s: %s",
                error.error_code.value,
                job.id,
                error.phase.value,
                error.message,
                extra={
                    "job_id": str(job.id),
                    "phase": error.phase.value,
                    "error_code": error.error_code.value,
                },
            )

            await self._update_pattern(error)
            await self._check_for_alerts(error, job)

    def get_errors(self, job_id: UUID | None = None) -> list[MigrationErrorRecord]:
        """Retained faults, oldest first, optionally for one job."""
        return [
            error
            for error_id, error in self._errors.items()
            if job_id is None or self._error_jobs.get(error_id) == job_id
        ]

    # Metrics and trends

    def _errors_since(self, window: timedelta) -> list[MigrationErrorRecord]:
        cutoff = self._clock() - window
        return [error for error in self._errors.values() if error.timestamp > cutoff]

    def get_error_metrics(self, window: timedelta = timedelta(hours=1)) -> ErrorMetrics:
        """Fault statistics for faults newer than ``window``."""
        recent = self._errors_since(window)

        by_severity = {severity.value: 0 for severity in ErrorSeverity}
        by_severity.update(Counter(error.severity.value for error in recent))

        window_seconds = window.total_seconds()
        error_rate = len(recent) / window_seconds * 3600 if window_seconds > 0 else 0.0

        return ErrorMetrics(
            total_errors=len(recent),
            errors_by_phase=dict(Counter(error.phase.value for error in recent)),
            errors_by_code=dict(Counter(error.error_code.value for error in recent)),
            errors_by_severity=by_severity,
            error_rate=error_rate,
            mttr_seconds=self._mean_time_to_recovery(recent),
            recovery_success_rate=self._recovery_success_rate(recent),
        )

    @staticmethod
    def _mean_time_to_recovery(errors: list[MigrationErrorRecord]) -> float:
        durations = [
            error.time_to_recovery.total_seconds()
            for error in errors
            if error.recovery_attempted and error.time_to_recovery is not None
        ]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    @staticmethod
    def _recovery_success_rate(errors: list[MigrationErrorRecord]) -> float:
        attempted = [error for error in errors if error.recovery_attempted]
        if not attempted:
            return 0.0
        successful = sum(1 for error in attempted if error.recovery_successful)
        return successful / len(attempted) * 100

    def get_error_trends(self, window: timedelta = timedelta(hours=24)) -> ErrorTrends:
        """Hourly buckets, top ten codes, phase distribution and severity counts."""
        recent = sorted(self._errors_since(window), key=lambda error: error.timestamp)
        total = len(recent)

        def shares(counter: Counter[str], limit: int | None = None) -> list[ShareCount]:
            return [
                ShareCount(key=key, count=count, percentage=count / total * 100)
                for key, count in counter.most_common(limit)
            ]

        severity_counts = Counter(error.severity.value for error in recent)
        return ErrorTrends(
            hourly_error_counts=self._hourly_counts(recent, window),
            top_error_codes=shares(Counter(error.error_code.value for error in recent), 10),
            phase_error_distribution=shares(Counter(error.phase.value for error in recent)),
            severity_trend=[
                SeverityCount(severity=severity.value, count=severity_counts[severity.value])
                for severity in ErrorSeverity
            ],
        )

    def _hourly_counts(
        self, errors: list[MigrationErrorRecord], window: timedelta
    ) -> list[HourlyCount]:
        hours = max(1, math.ceil(window.total_seconds() / 3600))
        now = self._clock()
        buckets = []
        for offset in range(hours - 1, -1, -1):
            start = (now - timedelta(hours=offset)).replace(minute=0, second=0, microsecond=0)
            end = start + timedelta(hours=1)
            count = sum(1 for error in errors if start <= error.timestamp < end)
            buckets.append(HourlyCount(hour=start, count=count))
        return buckets

    # Patterns

    def get_error_patterns(self) -> list[ErrorPattern]:
        """Known patterns, most frequent first."""
        return sorted(self._patterns.values(), key=lambda p: p.frequency, reverse=True)

    async def _update_pattern(self, error: MigrationErrorRecord) -> None:
        key = f"{error.error_code.value}_{error.phase.value}"
        pattern = self._patterns.get(key)
        window = timedelta(seconds=self._config.pattern_window_seconds)

        if pattern is None or error.timestamp - pattern.last_occurrence > window:
            pattern = ErrorPattern(
                id=key,
                pattern=f"{error.error_code.value} in {error.phase.value} phase",
                description=(
                    f"Recurring {error.error_code.value} errors during "
                    f"{error.phase.value} phase"
                ),
                frequency=0,
                last_occurrence=error.timestamp,
                suggested_actions=_SUGGESTED_ACTIONS.get(error.error_code, _DEFAULT_ACTIONS),
                severity=error.severity,
            )
            self._patterns[key] = pattern

        pattern.frequency += 1
        pattern.last_occurrence = error.timestamp

        if (
            not pattern.alerted
            and pattern.frequency >= self._config.pattern_detection_threshold
            and pattern.severity == ErrorSeverity.HIGH
        ):
            pattern.alerted = True
            await self._create_alert(
                AlertType.PATTERN_DETECTED,
                ErrorSeverity.HIGH,
                f"Error Pattern Detected: {pattern.pattern}",
                f'Pattern "{pattern.pattern}" has occurred {pattern.frequency} times',
                metadata={"pattern_id": pattern.id, "frequency": pattern.frequency},
            )

    # Alerts

    async def _check_for_alerts(self, error: MigrationErrorRecord, job: MigrationJob) -> None:
        if error.severity.should_alert:
            await self._create_alert(
                AlertType.CRITICAL_ERROR,
                ErrorSeverity.CRITICAL,
                "Critical Migration Error",
                f"Critical error in job {job.id}: {error.message}",
                job_id=job.id,
                error_id=error.id,
            )

        window = timedelta(seconds=self._config.critical_window_seconds)
        critical = self.get_error_metrics(window).errors_by_severity[ErrorSeverity.CRITICAL.value]
        threshold = self._config.critical_error_threshold
        if critical < threshold:
            self._critical_threshold_armed = True
        elif self._critical_threshold_armed:
            self._critical_threshold_armed = False
            minutes = round(window.total_seconds() / 60)
            await self._create_alert(
                AlertType.THRESHOLD_EXCEEDED,
                ErrorSeverity.HIGH,
                "Critical Error Threshold Exceeded",
                f"{critical} critical errors in the last {minutes} minutes",
                metadata={"threshold": threshold, "actual": critical},
            )

    async def _create_alert(
        self,
        alert_type: AlertType,
        severity: ErrorSeverity,
        title: str,
        message: str,
        *,
        job_id: UUID | None = None,
        error_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ErrorAlert:
        with self._tracer.span(
            "supaclone.monitoring.create_alert",
            {ATTR_ALERT_TYPE: alert_type.value, ATTR_ERROR_SEVERITY: severity.value},
        ):
            alert = ErrorAlert(
                type=alert_type,
                severity=severity,
                title=title,
                message=message,
                timestamp=self._clock(),
                job_id=job_id,
                error_id=error_id,
                metadata=metadata or {},
            )
            self._alerts[alert.id] = alert
            self._metrics.record_alert(alert_type.value, severity.value)
            logger.log(
                severity.log_level,
                "Alert %s: %s",
                title,
                message,
                extra={"alert_id": str(alert.id), "alert_type": alert_type.value},
            )

            if self._event_bus is not None:
                await self._event_bus.publish(
                    [
                        AlertCreated(
                            job_id=job_id,
                            alert_id=alert.id,
                            alert_type=alert_type.value,
                            severity=severity.value,
                            title=title,
                            message=message,
                            error_id=error_id,
                        )
                    ],
                    background=True,
                )
            return alert

    def get_alert(self, alert_id: UUID) -> ErrorAlert | None:
        return self._alerts.get(alert_id)

    def get_alerts(self) -> list[ErrorAlert]:
        """Every retained alert, oldest first."""
        return list(self._alerts.values())

    def get_active_alerts(self) -> list[ErrorAlert]:
        """Alerts neither acknowledged nor resolved, newest first."""
        active = [alert for alert in self._alerts.values() if alert.is_active]
        return sorted(active, key=lambda alert: alert.timestamp, reverse=True)

    def acknowledge_alert(self, alert_id: UUID, user_id: str | None = None) -> bool:
        """
        Acknowledge an alert.

        Returns:
            False if the alert is unknown or already acknowledged.
        """
        alert = self._alerts.get(alert_id)
        if alert is None or alert.acknowledged:
            return False
        alert.acknowledged = True
        alert.acknowledged_by = user_id
        alert.acknowledged_at = self._clock()
        logger.info("Alert %s acknowledged by %s", alert_id, user_id)
        return True

    def resolve_alert(
        self,
        alert_id: UUID,
        user_id: str | None = None,
        resolution: str | None = None,
    ) -> bool:
        """
        Resolve an alert with an optional resolution note.

        Returns:
            False if the alert is unknown or already resolved.
        """
        alert = self._alerts.get(alert_id)
        if alert is None or alert.resolved_at is not None:
            return False
        alert.resolved_at = self._clock()
        alert.resolved_by = user_id
        alert.resolution = resolution
        logger.info("Alert %s resolved by %s", alert_id, user_id)
        return True

    # Health

    async def _check_error_rate(self) -> ProbeResult:
        rate = self.get_error_metrics().error_rate
        threshold = self._config.error_rate_threshold
        if rate > threshold * 2:
            return ProbeResult(HealthStatus.CRITICAL, "Error rate critical", {"error_rate": rate})
        if rate > threshold:
            return ProbeResult(HealthStatus.WARNING, "Error rate elevated", {"error_rate": rate})
        return ProbeResult.healthy(error_rate=rate)

    async def run_health_checks(self) -> list[HealthCheck]:
        """
        Run every probe once, in registration order.

        A probe reporting critical raises a system-health alert.

        Returns:
            The refreshed checks.
        """
        results = []
        for definition in self._probes:
            with self._tracer.span(
                "supaclone.monitoring.health_check",
                {ATTR_HEALTH_CHECK: definition.id},
            ) as span:
                check = await run_probe(definition, self._clock())
                if span:
                    span.set_attribute(ATTR_HEALTH_STATUS, check.status.value)

            self._health_checks[definition.id] = check
            if check.response_time_ms is not None:
                self._metrics.record_health_response(definition.id, check.response_time_ms)
            results.append(check)

            if check.status == HealthStatus.CRITICAL:
                await self._create_alert(
                    AlertType.SYSTEM_HEALTH,
                    ErrorSeverity.CRITICAL,
                    f"Health Check Failed: {check.name}",
                    check.error_message or "Health check failed",
                    metadata={"health_check_id": definition.id, **check.metadata},
                )
        return results

    def get_system_health(self) -> SystemHealth:
        checks = list(self._health_checks.values())
        summary = {status.value: 0 for status in HealthStatus}
        for check in checks:
            summary[check.status.value] += 1

        if summary[HealthStatus.CRITICAL.value]:
            overall = HealthStatus.CRITICAL
        elif summary[HealthStatus.WARNING.value]:
            overall = HealthStatus.WARNING
        else:
            overall = HealthStatus.HEALTHY
        return SystemHealth(overall=overall, checks=checks, summary=summary)

    # Housekeeping

    def cleanup_old_data(self) -> int:
        """
        Purge resolved alerts older than the retention period.

        Returns:
            Number of alerts purged.
        """
        cutoff = self._clock() - timedelta(days=self._config.alert_retention_days)
        expired = [
            alert_id
            for alert_id, alert in self._alerts.items()
            if alert.resolved_at is not None and alert.timestamp < cutoff
        ]
        for alert_id in expired:
            del self._alerts[alert_id]
        if expired:
            logger.debug("Purged %d resolved alerts", len(expired))
        return len(expired)

    async def start(self) -> None:
        """Start the periodic health-probe and cleanup loop."""
        if self.is_running:
            return
        self._monitor_task = asyncio.create_task(self._monitor_loop(), name="error_monitoring")
        logger.info(
            "Error monitoring started (interval %.1fs)",
            self._config.health_check_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop the periodic loop and wait for it to exit."""
        task = self._monitor_task
        self._monitor_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Error monitoring stopped")

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.health_check_interval_seconds)
            try:
                await self.run_health_checks()
                self.cleanup_old_data()
            except Exception as e:
                logger.error("Monitoring cycle failed: %s", e, exc_info=True)


__all__ = [
    "AlertType",
    "ErrorAlert",
    "ErrorMetrics",
    "ErrorMonitoringSystem",
    "ErrorPattern",
    "ErrorTrends",
    "HourlyCount",
    "SeverityCount",
    "ShareCount",
    "SystemHealth",
]

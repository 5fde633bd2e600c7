"""
OpenTelemetry metrics for clone jobs and error monitoring.

Metrics Exposed:
    - supaclone.faults.recorded (Counter): Faults recorded by the monitoring system
    - supaclone.alerts.created (Counter): Alerts raised by the monitoring system
    - supaclone.phase.duration (Histogram): Time spent in each phase
    - supaclone.jobs.finished (Counter): Jobs reaching a terminal status
    - supaclone.health.response_time (Histogram): Health probe response time

Fault and alert counters carry ``error_code``/``severity`` and
``alert_type``/``severity`` attributes; phase and job instruments carry
``phase`` and ``status``.

When metrics are disabled every instrument is a no-op, but the snapshot
counters still advance so tests can assert on them.

Example:
    >>> metrics = MonitoringMetrics()
    >>> metrics.record_fault("CONNECTION_TIMEOUT", "high")
    >>> metrics.get_snapshot().faults_recorded
    1
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from opentelemetry import metrics

METER_NAME = "supaclone.migration"

_meter: Any = None


def _get_meter() -> Any:
    """Get or create the shared meter of the migration namespace."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(METER_NAME, version="0.1.0")
    return _meter


def reset_meter() -> None:
    """
    Reset the shared meter instance.

    Useful for testing to ensure fresh meter state between tests.
    """
    global _meter
    _meter = None


class NoOpCounter:
    """No-op counter used when metrics are disabled."""

    def add(self, amount: int | float, attributes: dict[str, Any] | None = None) -> None:
        pass


class NoOpHistogram:
    """No-op histogram used when metrics are disabled."""

    def record(self, value: float, attributes: dict[str, Any] | None = None) -> None:
        pass


@dataclass(frozen=True)
class MetricSnapshot:
    """
    Values recorded so far, independent of the exporter.

    Attributes:
        faults_recorded: Faults counted
        alerts_created: Alerts counted, keyed by alert type
        jobs_finished: Terminal jobs counted, keyed by status
        phase_durations: Total seconds recorded per phase
    """

    faults_recorded: int = 0
    alerts_created: dict[str, int] = field(default_factory=dict)
    jobs_finished: dict[str, int] = field(default_factory=dict)
    phase_durations: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "faults_recorded": self.faults_recorded,
            "alerts_created": dict(self.alerts_created),
            "jobs_finished": dict(self.jobs_finished),
            "phase_durations": dict(self.phase_durations),
        }


@dataclass
class MonitoringMetrics:
    """
    Container for the metric instruments of the migration core.

    Attributes:
        enable_metrics: Whether OpenTelemetry instruments are created (default True)
    """

    enable_metrics: bool = True

    _fault_counter: Any = field(default=None, init=False, repr=False)
    _alert_counter: Any = field(default=None, init=False, repr=False)
    _job_counter: Any = field(default=None, init=False, repr=False)
    _phase_duration_histogram: Any = field(default=None, init=False, repr=False)
    _health_response_histogram: Any = field(default=None, init=False, repr=False)

    _faults_recorded: int = field(default=0, init=False, repr=False)
    _alerts_created: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _jobs_finished: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _phase_durations: dict[str, float] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.enable_metrics:
            self._setup_metrics()
        else:
            self._setup_noop()

    def _setup_metrics(self) -> None:
        meter = _get_meter()
        self._fault_counter = meter.create_counter(
            name="supaclone.faults.recorded",
            unit="faults",
            description="Number of phase faults recorded by error monitoring",
        )
        self._alert_counter = meter.create_counter(
            name="supaclone.alerts.created",
            unit="alerts",
            description="Number of alerts raised by error monitoring",
        )
        self._job_counter = meter.create_counter(
            name="supaclone.jobs.finished",
            unit="jobs",
            description="Number of clone jobs reaching a terminal status",
        )
        self._phase_duration_histogram = meter.create_histogram(
            name="supaclone.phase.duration",
            unit="s",
            description="Time spent in each clone phase in seconds",
        )
        self._health_response_histogram = meter.create_histogram(
            name="supaclone.health.response_time",
            unit="ms",
            description="Health probe response time in milliseconds",
        )

    def _setup_noop(self) -> None:
        self._fault_counter = NoOpCounter()
        self._alert_counter = NoOpCounter()
        self._job_counter = NoOpCounter()
        self._phase_duration_histogram = NoOpHistogram()
        self._health_response_histogram = NoOpHistogram()

    def record_fault(self, error_code: str, severity: str) -> None:
        self._fault_counter.add(1, {"error_code": error_code, "severity": severity})
        self._faults_recorded += 1

    def record_alert(self, alert_type: str, severity: str) -> None:
        self._alert_counter.add(1, {"alert_type": alert_type, "severity": severity})
        self._alerts_created[alert_type] = self._alerts_created.get(alert_type, 0) + 1

    def record_job_finished(self, status: str) -> None:
        self._job_counter.add(1, {"status": status})
        self._jobs_finished[status] = self._jobs_finished.get(status, 0) + 1

    def record_phase_duration(self, phase: str, duration_seconds: float) -> None:
        """
        Record time spent in a phase.

        Durations of repeated attempts accumulate per phase in the snapshot.
        """
        self._phase_duration_histogram.record(duration_seconds, {"phase": phase})
        self._phase_durations[phase] = self._phase_durations.get(phase, 0.0) + duration_seconds

    def record_health_response(self, check_id: str, response_time_ms: float) -> None:
        self._health_response_histogram.record(response_time_ms, {"health_check": check_id})

    def get_snapshot(self) -> MetricSnapshot:
        return MetricSnapshot(
            faults_recorded=self._faults_recorded,
            alerts_created=dict(self._alerts_created),
            jobs_finished=dict(self._jobs_finished),
            phase_durations=dict(self._phase_durations),
        )


__all__ = [
    "METER_NAME",
    "MetricSnapshot",
    "MonitoringMetrics",
    "NoOpCounter",
    "NoOpHistogram",
    "reset_meter",
]

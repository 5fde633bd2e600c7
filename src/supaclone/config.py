"""
Configuration classes for the supaclone migration core.

This module provides:
- OrchestratorSettings: limits and timings of the migration orchestrator
- MonitoringConfig: thresholds and retention of the error monitoring system
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass(frozen=True)
class OrchestratorSettings:
    """
    Settings for the migration orchestrator.

    Attributes:
        max_concurrent_migrations: Pending or running jobs allowed per organization
        max_phase_retries: Retries of a single phase before the job fails
        project_ready_attempts: Polls of the new target project before giving up
        project_ready_interval_seconds: Wait between those polls
        checkpoint_limit: Checkpoints retained per job
        password_length: Length of the generated target database password
        enable_tracing: Whether components create OpenTelemetry spans

    Example:
        >>> settings = OrchestratorSettings(max_concurrent_migrations=2)
        >>> settings.max_phase_retries
        3
    """

    max_concurrent_migrations: int = 5
    max_phase_retries: int = 3
    project_ready_attempts: int = 30
    project_ready_interval_seconds: float = 10.0
    checkpoint_limit: int = 10
    password_length: int = 16
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_concurrent_migrations < 1:
            raise ValueError(
                f"max_concurrent_migrations must be positive, got {self.max_concurrent_migrations}."
            )

        if self.max_phase_retries < 0:
            raise ValueError(f"max_phase_retries must be >= 0, got {self.max_phase_retries}.")

        if self.project_ready_attempts < 1:
            raise ValueError(
                f"project_ready_attempts must be positive, got {self.project_ready_attempts}."
            )

        if self.project_ready_interval_seconds < 0:
            raise ValueError(
                "project_ready_interval_seconds must be >= 0, "
                f"got {self.project_ready_interval_seconds}."
            )

        if self.checkpoint_limit < 1:
            raise ValueError(f"checkpoint_limit must be positive, got {self.checkpoint_limit}.")

        if self.password_length < 12:
            raise ValueError(
                f"password_length must be at least 12, got {self.password_length}. "
                "Use a value like 16 (default)."
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrchestratorSettings:
        """Create settings from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(frozen=True)
class MonitoringConfig:
    """
    Thresholds and retention of the error monitoring system.

    Attributes:
        error_rate_threshold: Faults per hour above which the error-rate
            probe reports warning (critical above twice the value)
        critical_error_threshold: Critical faults within the critical window
            that raise a threshold alert
        critical_window_seconds: Length of the critical-burst window
        pattern_detection_threshold: Occurrences of one (code, phase) pattern
            that raise a pattern alert
        pattern_window_seconds: Window used by pattern-related metrics
        health_check_interval_seconds: Period of the health probe loop
        alert_retention_days: Age after which resolved alerts are purged
        max_error_log_size: Faults kept in the in-memory log
    """

    error_rate_threshold: float = 10.0
    critical_error_threshold: int = 3
    critical_window_seconds: float = 600.0
    pattern_detection_threshold: int = 5
    pattern_window_seconds: float = 3600.0
    health_check_interval_seconds: float = 30.0
    alert_retention_days: int = 30
    max_error_log_size: int = 1000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.error_rate_threshold <= 0:
            raise ValueError(
                f"error_rate_threshold must be positive, got {self.error_rate_threshold}."
            )

        if self.critical_error_threshold < 1:
            raise ValueError(
                f"critical_error_threshold must be positive, got {self.critical_error_threshold}."
            )

        if self.critical_window_seconds <= 0:
            raise ValueError(
                f"critical_window_seconds must be positive, got {self.critical_window_seconds}."
            )

        if self.pattern_detection_threshold < 1:
            raise ValueError(
                "pattern_detection_threshold must be positive, "
                f"got {self.pattern_detection_threshold}."
            )

        if self.health_check_interval_seconds <= 0:
            raise ValueError(
                "health_check_interval_seconds must be positive, "
                f"got {self.health_check_interval_seconds}."
            )

        if self.alert_retention_days < 0:
            raise ValueError(
                f"alert_retention_days must be >= 0, got {self.alert_retention_days}."
            )

        if self.max_error_log_size < 1:
            raise ValueError(
                f"max_error_log_size must be positive, got {self.max_error_log_size}."
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonitoringConfig:
        """Create config from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


__all__ = ["OrchestratorSettings", "MonitoringConfig"]

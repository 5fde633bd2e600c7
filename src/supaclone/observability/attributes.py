"""
Standard span and metric attributes for supaclone.

This module defines attribute constants used by the orchestrator, the
recovery engine and the monitoring system so spans and metrics carry
consistent names. Generic keys follow OpenTelemetry semantic conventions.

Example:
    >>> from supaclone.observability.attributes import ATTR_JOB_ID, ATTR_PHASE
    >>>
    >>> with tracer.span(
    ...     "supaclone.orchestrator.execute_phase",
    ...     {ATTR_JOB_ID: str(job.id), ATTR_PHASE: phase.value},
    ... ):
    ...     pass
"""

# =============================================================================
# Job Attributes
# =============================================================================

ATTR_JOB_ID = "supaclone.job.id"
"""Unique identifier of the clone job (UUID string)."""

ATTR_JOB_STATUS = "supaclone.job.status"
"""Lifecycle status of the clone job (string)."""

ATTR_ORGANIZATION_ID = "supaclone.organization.id"
"""Organization the job counts against (string)."""

ATTR_SOURCE_PROJECT = "supaclone.source_project.ref"
"""Reference of the project being cloned (string)."""

ATTR_TARGET_PROJECT = "supaclone.target_project.ref"
"""Reference of the created target project (string)."""

ATTR_CLONE_TYPE = "supaclone.clone_type"
"""Scope of the clone (string)."""

# =============================================================================
# Phase Attributes
# =============================================================================

ATTR_PHASE = "supaclone.phase"
"""Pipeline phase (string)."""

ATTR_RETRY_COUNT = "supaclone.retry.count"
"""Number of retries made for the current phase (integer)."""

ATTR_TABLE_NAME = "supaclone.table.name"
"""Table being copied (string)."""

ATTR_BATCH_SIZE = "supaclone.batch.size"
"""Rows per copy batch (integer)."""

# =============================================================================
# Error and Recovery Attributes
# =============================================================================

ATTR_ERROR_CODE = "supaclone.error.code"
"""Stable fault code (string)."""

ATTR_ERROR_SEVERITY = "supaclone.error.severity"
"""Severity of the fault (string)."""

ATTR_ERROR_TYPE = "supaclone.error.type"
"""Exception class name (string)."""

ATTR_STRATEGY_ID = "supaclone.recovery.strategy"
"""Recovery strategy identifier (string)."""

ATTR_RECOVERY_ACTION = "supaclone.recovery.action"
"""Recovery decision (string)."""

ATTR_RECOVERY_SUCCESS = "supaclone.recovery.success"
"""Whether the recovery strategy succeeded (boolean)."""

# =============================================================================
# Monitoring Attributes
# =============================================================================

ATTR_ALERT_TYPE = "supaclone.alert.type"
"""Type of the raised alert (string)."""

ATTR_HEALTH_CHECK = "supaclone.health_check.id"
"""Identifier of the health probe (string)."""

ATTR_HEALTH_STATUS = "supaclone.health_check.status"
"""Result status of the health probe (string)."""

# =============================================================================
# Event Bus Attributes
# =============================================================================

ATTR_EVENT_TYPE = "supaclone.event.type"
"""Type name of the published event (string)."""

ATTR_EVENT_ID = "supaclone.event.id"
"""Unique identifier for the event (UUID string)."""

ATTR_HANDLER_NAME = "supaclone.handler.name"
"""Name of the event handler being invoked (string)."""

ATTR_HANDLER_COUNT = "supaclone.handler.count"
"""Number of handlers an event was dispatched to (integer)."""

ATTR_HANDLER_SUCCESS = "supaclone.handler.success"
"""Whether the handler completed without raising (boolean)."""


__all__ = [
    "ATTR_JOB_ID",
    "ATTR_JOB_STATUS",
    "ATTR_ORGANIZATION_ID",
    "ATTR_SOURCE_PROJECT",
    "ATTR_TARGET_PROJECT",
    "ATTR_CLONE_TYPE",
    "ATTR_PHASE",
    "ATTR_RETRY_COUNT",
    "ATTR_TABLE_NAME",
    "ATTR_BATCH_SIZE",
    "ATTR_ERROR_CODE",
    "ATTR_ERROR_SEVERITY",
    "ATTR_ERROR_TYPE",
    "ATTR_STRATEGY_ID",
    "ATTR_RECOVERY_ACTION",
    "ATTR_RECOVERY_SUCCESS",
    "ATTR_ALERT_TYPE",
    "ATTR_HEALTH_CHECK",
    "ATTR_HEALTH_STATUS",
    "ATTR_EVENT_TYPE",
    "ATTR_EVENT_ID",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_SUCCESS",
]

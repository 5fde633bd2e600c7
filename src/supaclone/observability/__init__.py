"""
Observability utilities for supaclone.

This module provides the composition-based tracer and the standard
attribute names used across the migration core.

Example:
    >>> from supaclone.observability import create_tracer
    >>>
    >>> class MyComponent:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from supaclone.observability.attributes import (
    ATTR_ALERT_TYPE,
    ATTR_BATCH_SIZE,
    ATTR_CLONE_TYPE,
    ATTR_ERROR_CODE,
    ATTR_ERROR_SEVERITY,
    ATTR_ERROR_TYPE,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_HEALTH_CHECK,
    ATTR_HEALTH_STATUS,
    ATTR_JOB_ID,
    ATTR_JOB_STATUS,
    ATTR_ORGANIZATION_ID,
    ATTR_PHASE,
    ATTR_RECOVERY_ACTION,
    ATTR_RECOVERY_SUCCESS,
    ATTR_RETRY_COUNT,
    ATTR_SOURCE_PROJECT,
    ATTR_STRATEGY_ID,
    ATTR_TABLE_NAME,
    ATTR_TARGET_PROJECT,
)
from supaclone.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_ALERT_TYPE",
    "ATTR_BATCH_SIZE",
    "ATTR_CLONE_TYPE",
    "ATTR_ERROR_CODE",
    "ATTR_ERROR_SEVERITY",
    "ATTR_ERROR_TYPE",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_SUCCESS",
    "ATTR_HEALTH_CHECK",
    "ATTR_HEALTH_STATUS",
    "ATTR_JOB_ID",
    "ATTR_JOB_STATUS",
    "ATTR_ORGANIZATION_ID",
    "ATTR_PHASE",
    "ATTR_RECOVERY_ACTION",
    "ATTR_RECOVERY_SUCCESS",
    "ATTR_RETRY_COUNT",
    "ATTR_SOURCE_PROJECT",
    "ATTR_STRATEGY_ID",
    "ATTR_TABLE_NAME",
    "ATTR_TARGET_PROJECT",
]

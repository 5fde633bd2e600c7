"""
Fault classification for phase executors.

Maps an exception raised inside a phase to a stable ErrorCode, an
ErrorSeverity and an auto-recoverable flag.

Structured information wins: a SupacloneError that carries a fault code
(for example a CollaboratorError derived from a management API result) or
a built-in OS/network exception type is classified without looking at the
message. Only opaque exceptions fall back to keyword matching on the
message text.

Example:
    >>> fault = classify_fault(TimeoutError("read timed out"))
    >>> fault.code
    <ErrorCode.CONNECTION_TIMEOUT: 'CONNECTION_TIMEOUT'>
    >>> fault.severity
    <ErrorSeverity.HIGH: 'high'>
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from supaclone.migration.exceptions import ErrorCode, ErrorSeverity, SupacloneError

# Ordered: the first matching keyword decides.
_CODE_KEYWORDS: tuple[tuple[str, ErrorCode], ...] = (
    ("timeout", ErrorCode.CONNECTION_TIMEOUT),
    ("permission", ErrorCode.PERMISSION_DENIED),
    ("conflict", ErrorCode.RESOURCE_CONFLICT),
    ("not found", ErrorCode.RESOURCE_NOT_FOUND),
    ("network", ErrorCode.NETWORK_ERROR),
)

# Matched against the raw message; these are upper-case markers.
_SEVERITY_KEYWORDS: tuple[tuple[tuple[str, ...], ErrorSeverity], ...] = (
    (("CRITICAL", "FATAL"), ErrorSeverity.CRITICAL),
    (("CONNECTION", "TIMEOUT"), ErrorSeverity.HIGH),
    (("PERMISSION", "AUTH"), ErrorSeverity.MEDIUM),
)

_RECOVERABLE_KEYWORDS = ("timeout", "network", "temporary", "retry")

_CODE_SEVERITY: dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.PERMISSION_DENIED: ErrorSeverity.MEDIUM,
    ErrorCode.INSUFFICIENT_PRIVILEGES: ErrorSeverity.MEDIUM,
    ErrorCode.AUTH_FAILED: ErrorSeverity.MEDIUM,
    ErrorCode.CRITICAL_ERROR: ErrorSeverity.CRITICAL,
}


@dataclass(frozen=True)
class ClassifiedFault:
    """Result of classifying a phase fault."""

    code: ErrorCode
    severity: ErrorSeverity
    auto_recoverable: bool
    structured: bool
    """True when the code came from the exception type rather than its message."""


def code_for_exception_type(exc: BaseException) -> ErrorCode | None:
    """
    Derive a fault code from structured exception information.

    Returns:
        The fault code, or None when the exception carries no structure.
    """
    if isinstance(exc, SupacloneError):
        return exc.fault_code
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCode.CONNECTION_TIMEOUT
    if isinstance(exc, ConnectionRefusedError):
        return ErrorCode.CONNECTION_REFUSED
    if isinstance(exc, ConnectionError):
        return ErrorCode.NETWORK_ERROR
    if isinstance(exc, PermissionError):
        return ErrorCode.PERMISSION_DENIED
    if isinstance(exc, FileExistsError):
        return ErrorCode.RESOURCE_EXISTS
    return None


def code_from_message(message: str) -> ErrorCode:
    """Keyword fallback for opaque faults. Case-insensitive."""
    lowered = message.lower()
    for keyword, code in _CODE_KEYWORDS:
        if keyword in lowered:
            return code
    return ErrorCode.UNKNOWN_ERROR


def severity_from_message(message: str) -> ErrorSeverity:
    """Severity from upper-case markers in the message; high by default."""
    for keywords, severity in _SEVERITY_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return severity
    return ErrorSeverity.HIGH


def is_auto_recoverable(message: str, code: ErrorCode | None = None) -> bool:
    """Check whether a fault looks transient."""
    if code is not None and code.is_transient:
        return True
    lowered = message.lower()
    return any(keyword in lowered for keyword in _RECOVERABLE_KEYWORDS)


def classify_fault(exc: BaseException) -> ClassifiedFault:
    """
    Classify an exception raised by a phase executor.

    Args:
        exc: The exception to classify.

    Returns:
        ClassifiedFault with code, severity and auto-recoverable flag.
    """
    message = str(exc)
    code = code_for_exception_type(exc)
    structured = code is not None
    if code is None:
        code = code_from_message(message)

    if code in _CODE_SEVERITY:
        severity = _CODE_SEVERITY[code]
    elif isinstance(exc, SupacloneError):
        severity = exc.severity
    else:
        severity = severity_from_message(message)

    return ClassifiedFault(
        code=code,
        severity=severity,
        auto_recoverable=is_auto_recoverable(message, code),
        structured=structured,
    )


__all__ = [
    "ClassifiedFault",
    "classify_fault",
    "code_for_exception_type",
    "code_from_message",
    "severity_from_message",
    "is_auto_recoverable",
]

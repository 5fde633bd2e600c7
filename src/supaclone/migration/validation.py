"""
Input validation for clone requests.

Every check runs and every failure is collected, so a rejected request
reports all of its problems at once. Validation failures are raised as
ConfigurationValidationError before any job is registered.
"""

from __future__ import annotations

import re

from supaclone.migration.exceptions import ConfigurationValidationError
from supaclone.migration.models import (
    CloneType,
    MigrationConfiguration,
    MigrationJobOptions,
)

PROJECT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]{1,50}$")
ORGANIZATION_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
TABLE_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]{0,62}$")

MAX_WHERE_CLAUSE_LENGTH = 1000
_SQL_KEYWORD_PATTERN = re.compile(
    r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|SCRIPT)\b",
    re.IGNORECASE,
)
_FORBIDDEN_FRAGMENTS = ("--", "/*", "*/", ";", "'", "%27", "%2D")

MIN_PARALLEL_THREADS = 1
MAX_PARALLEL_THREADS = 20
MIN_BATCH_SIZE = 100
MAX_BATCH_SIZE = 10_000


def is_valid_project_name(name: str) -> bool:
    return bool(PROJECT_NAME_PATTERN.match(name))


def is_valid_organization_id(organization_id: str) -> bool:
    return bool(ORGANIZATION_ID_PATTERN.match(organization_id))


def is_valid_table_name(table: str) -> bool:
    return bool(TABLE_NAME_PATTERN.match(table))


def is_valid_where_clause(clause: str) -> bool:
    """
    Check a data-filter WHERE clause.

    Rejects empty or overlong clauses, statement keywords, comment markers,
    statement separators and quote characters (raw or URL-encoded).
    """
    if not clause or not clause.strip() or len(clause) > MAX_WHERE_CLAUSE_LENGTH:
        return False
    if _SQL_KEYWORD_PATTERN.search(clause):
        return False
    return not any(fragment in clause for fragment in _FORBIDDEN_FRAGMENTS)


def configuration_errors(configuration: MigrationConfiguration) -> list[str]:
    """
    Collect every problem with a migration configuration.

    Returns:
        Human-readable problems in check order; empty when valid.
    """
    errors: list[str] = []

    if not isinstance(configuration.clone_type, CloneType):
        errors.append("Invalid clone_type")

    region = configuration.target_region
    if not isinstance(region, str) or not region.strip():
        errors.append("Invalid target_region")

    if not MIN_PARALLEL_THREADS <= configuration.parallel_threads <= MAX_PARALLEL_THREADS:
        errors.append(
            f"parallel_threads must be between {MIN_PARALLEL_THREADS} and {MAX_PARALLEL_THREADS}"
        )

    if not MIN_BATCH_SIZE <= configuration.batch_size <= MAX_BATCH_SIZE:
        errors.append(f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}")

    for index, data_filter in enumerate(configuration.data_filters):
        if not is_valid_table_name(data_filter.table):
            errors.append(f"Invalid table name in data_filters[{index}]")
        if not is_valid_where_clause(data_filter.where_clause):
            errors.append(f"Invalid where_clause in data_filters[{index}]")

    for index, table in enumerate(configuration.exclude_tables):
        if not is_valid_table_name(table):
            errors.append(f"Invalid table name in exclude_tables[{index}]")

    return errors


def validate_configuration(configuration: MigrationConfiguration) -> None:
    """
    Validate a migration configuration.

    Raises:
        ConfigurationValidationError: Listing every failed check.
    """
    errors = configuration_errors(configuration)
    if errors:
        raise ConfigurationValidationError(errors)


def validate_job_options(options: MigrationJobOptions) -> None:
    """
    Validate a complete clone request.

    Checks the configuration, the target project name and the organization
    id together so a single rejection lists everything.

    Raises:
        ConfigurationValidationError: Listing every failed check.
    """
    errors = configuration_errors(options.configuration)
    if not is_valid_project_name(options.target_project_name):
        errors.append("Invalid target project name format")
    if not is_valid_organization_id(options.organization_id):
        errors.append("Invalid organization ID format")
    if errors:
        raise ConfigurationValidationError(errors)


__all__ = [
    "is_valid_project_name",
    "is_valid_organization_id",
    "is_valid_table_name",
    "is_valid_where_clause",
    "configuration_errors",
    "validate_configuration",
    "validate_job_options",
]

"""
Unit tests for clone request validation.
"""

from __future__ import annotations

import pytest

from supaclone.migration.exceptions import ConfigurationValidationError
from supaclone.migration.models import CloneType, DataFilter
from supaclone.migration.validation import (
    configuration_errors,
    is_valid_organization_id,
    is_valid_project_name,
    is_valid_table_name,
    is_valid_where_clause,
    validate_configuration,
    validate_job_options,
)
from tests.fixtures import make_configuration, make_options


class TestIdentifiers:
    """Tests for name and id format checks."""

    @pytest.mark.parametrize("name", ["staging", "staging-copy_2", "a", "x" * 50])
    def test_valid_project_names(self, name: str) -> None:
        assert is_valid_project_name(name)

    @pytest.mark.parametrize("name", ["", "x" * 51, "has space", "semi;colon", "dot.name"])
    def test_invalid_project_names(self, name: str) -> None:
        assert not is_valid_project_name(name)

    def test_organization_id_must_be_uuid(self) -> None:
        assert is_valid_organization_id("3f2c8a9e-1b4d-4c6e-9a7b-2d5e8f1a3c4b")
        assert is_valid_organization_id("3F2C8A9E-1B4D-4C6E-9A7B-2D5E8F1A3C4B")
        assert not is_valid_organization_id("org-123")
        assert not is_valid_organization_id("3f2c8a9e-1b4d-0c6e-9a7b-2d5e8f1a3c4b")

    @pytest.mark.parametrize("table", ["orders", "_private", "Order_Items2", "t" * 63])
    def test_valid_table_names(self, table: str) -> None:
        assert is_valid_table_name(table)

    @pytest.mark.parametrize("table", ["", "2fast", "public.orders", "t" * 64, "drop-table"])
    def test_invalid_table_names(self, table: str) -> None:
        assert not is_valid_table_name(table)


class TestWhereClause:
    """Tests for is_valid_where_clause()."""

    @pytest.mark.parametrize(
        "clause",
        ["created_at > now() - interval 30", "tenant_id = 42", "status IN (1, 2)"],
    )
    def test_accepts_plain_predicates(self, clause: str) -> None:
        assert is_valid_where_clause(clause)

    @pytest.mark.parametrize(
        "clause",
        [
            "",
            "   ",
            "1=1; DROP TABLE users",
            "id = 1 -- comment",
            "id = 1 /* x */",
            "name = 'admin'",
            "id IN (select id from admins)",
            "1=1 UNION ALL",
            "name = %27admin%27",
            "id = 1 %2D%2D",
            "x" * 1001,
        ],
    )
    def test_rejects_unsafe_clauses(self, clause: str) -> None:
        assert not is_valid_where_clause(clause)

    def test_keywords_inside_identifiers_are_allowed(self) -> None:
        assert is_valid_where_clause("updated_at > created_at")


class TestConfigurationErrors:
    """Tests for configuration_errors() and validate_configuration()."""

    def test_default_configuration_is_valid(self) -> None:
        assert configuration_errors(make_configuration()) == []
        validate_configuration(make_configuration())

    @pytest.mark.parametrize("threads", [0, 21])
    def test_parallel_threads_bounds(self, threads: int) -> None:
        errors = configuration_errors(make_configuration(parallel_threads=threads))

        assert errors == ["parallel_threads must be between 1 and 20"]

    @pytest.mark.parametrize("batch_size", [99, 10_001])
    def test_batch_size_bounds(self, batch_size: int) -> None:
        errors = configuration_errors(make_configuration(batch_size=batch_size))

        assert errors == ["batch_size must be between 100 and 10000"]

    @pytest.mark.parametrize(("threads", "batch_size"), [(1, 100), (20, 10_000)])
    def test_bounds_are_inclusive(self, threads: int, batch_size: int) -> None:
        config = make_configuration(parallel_threads=threads, batch_size=batch_size)

        assert configuration_errors(config) == []

    def test_invalid_clone_type_and_region(self) -> None:
        config = make_configuration(clone_type="everything", target_region=" ")

        assert configuration_errors(config) == ["Invalid clone_type", "Invalid target_region"]

    def test_data_filter_problems_are_indexed(self) -> None:
        config = make_configuration(
            clone_type=CloneType.DATA_SUBSET,
            data_filters=(
                DataFilter("orders", "total > 100"),
                DataFilter("bad name", "id = 1; DROP TABLE x"),
            ),
        )

        assert configuration_errors(config) == [
            "Invalid table name in data_filters[1]",
            "Invalid where_clause in data_filters[1]",
        ]

    def test_exclude_tables(self) -> None:
        config = make_configuration(exclude_tables=("audit_events", "public.logs"))

        assert configuration_errors(config) == ["Invalid table name in exclude_tables[1]"]

    def test_every_problem_is_reported(self) -> None:
        config = make_configuration(parallel_threads=0, batch_size=5, exclude_tables=("9x",))

        with pytest.raises(ConfigurationValidationError) as exc_info:
            validate_configuration(config)

        assert exc_info.value.errors == [
            "parallel_threads must be between 1 and 20",
            "batch_size must be between 100 and 10000",
            "Invalid table name in exclude_tables[0]",
        ]


class TestValidateJobOptions:
    """Tests for validate_job_options()."""

    def test_valid_request(self) -> None:
        validate_job_options(make_options())

    def test_name_and_organization_checked_after_configuration(self) -> None:
        options = make_options(
            organization_id="not-a-uuid",
            target_project_name="bad name!",
            batch_size=50,
        )

        with pytest.raises(ConfigurationValidationError) as exc_info:
            validate_job_options(options)

        assert exc_info.value.errors == [
            "batch_size must be between 100 and 10000",
            "Invalid target project name format",
            "Invalid organization ID format",
        ]

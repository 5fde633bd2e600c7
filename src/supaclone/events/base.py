"""
Base class for job events.

Job events are immutable notifications published by the orchestrator, the
recovery engine and the monitoring system. Consumers only read them; the
job data they carry is a plain-data snapshot, never the live job record.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, ClassVar, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class JobEvent(BaseModel):
    """
    Base class for all job events with automatic event_type derivation.

    The event_type field is set to the class name unless a subclass
    declares its own value. A declared value that differs from the class
    name logs a warning unless suppress_event_type_warning is set.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Type name of the event (auto-derived from class name if not set)
        event_version: Schema version for this event type
        occurred_at: When the event occurred (UTC timestamp)
        job_id: Job the event relates to (None for system-wide events)
        organization_id: Organization owning the job, if known
        actor_id: User/system that triggered this event
        correlation_id: ID linking events of the same job run
        metadata: Additional event metadata dictionary

    Example:
        >>> class TableCopied(JobEvent):
        ...     table: str
        ...     rows: int
        ...
        >>> event = TableCopied(job_id=uuid4(), table="orders", rows=120)
        >>> assert event.event_type == "TableCopied"
    """

    model_config = ConfigDict(frozen=True)

    suppress_event_type_warning: ClassVar[bool] = False

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier",
    )
    event_type: str = Field(
        default="",
        description="Type of event (auto-derived from class name if not set)",
    )
    event_version: int = Field(
        default=1,
        ge=1,
        description="Event schema version",
    )
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When event occurred (UTC)",
    )

    job_id: UUID | None = Field(
        default=None,
        description="Job this event relates to",
    )
    organization_id: str | None = Field(
        default=None,
        description="Organization owning the job",
    )
    actor_id: str | None = Field(
        default=None,
        description="User/system that triggered this event",
    )
    correlation_id: UUID = Field(
        default_factory=uuid4,
        description="ID linking events of the same job run",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event metadata",
    )

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """
        Hook called when JobEvent is subclassed.

        Sets the event_type default to the class name unless the subclass
        declares event_type itself.
        """
        super().__init_subclass__(**kwargs)

        explicit_type: str | None = None
        if "event_type" in cls.__dict__:
            value = cls.__dict__["event_type"]
            if isinstance(value, str):
                explicit_type = value

        if explicit_type:
            if explicit_type != cls.__name__ and not getattr(
                cls, "suppress_event_type_warning", False
            ):
                logger.warning(
                    "Event class %s has event_type='%s' which differs from class name. "
                    "Set suppress_event_type_warning=True to silence this warning.",
                    cls.__name__,
                    explicit_type,
                )
        elif "event_type" in cls.model_fields:
            cls.model_fields["event_type"].default = cls.__name__

    @model_validator(mode="before")
    @classmethod
    def _ensure_event_type(cls, data: Any) -> Any:
        """
        Ensure event_type is set when constructing from a dict.

        Respects an explicit default declared by the subclass; otherwise
        fills in the class name.
        """
        if isinstance(data, dict):
            provided_event_type = data.get("event_type")
            if not provided_event_type:
                field_info = cls.model_fields.get("event_type")
                field_default = field_info.default if field_info else ""
                if not field_default or provided_event_type == "":
                    data = dict(data)
                    data["event_type"] = cls.__name__
        return data

    def __str__(self) -> str:
        """String representation of event."""
        return f"{self.event_type}(event_id={self.event_id}, job_id={self.job_id})"

    def with_metadata(self, **kwargs: Any) -> Self:
        """
        Create a copy of this event with additional metadata.

        Args:
            **kwargs: Key-value pairs to add to metadata

        Returns:
            New event instance with updated metadata
        """
        return self.model_copy(update={"metadata": {**self.metadata, **kwargs}})

    def to_dict(self) -> dict[str, Any]:
        """
        Convert event to a JSON-compatible dictionary.

        Returns:
            Dictionary representation with UUIDs and datetimes as strings
        """
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Create event from dictionary.

        Raises:
            ValidationError: If data doesn't match event schema
        """
        return cls.model_validate(data)


__all__ = ["JobEvent"]

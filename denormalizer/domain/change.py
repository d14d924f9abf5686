"""Change events observed on watched collections."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OperationType(str, Enum):
    """Kind of mutation a change event describes."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """One mutation observed on a watched collection.

    Change events are produced by a change source for every log entry that
    passes the subscription filter and are handed to exactly one handler per
    stream runner iteration. Only the ``position`` is ever persisted.

    Attributes:
        operation_type: Whether the document was inserted, updated or deleted.
        document_key: Identifier of the affected document.
        event_id: Opaque string identifying the log entry. Identical across
            redeliveries of the same entry, used to make counter updates
            idempotent.
        position: Opaque, totally ordered resume position of this event.
            Stored verbatim and never interpreted.
        full_document: The document after the mutation, when available.
        full_document_before: The document before the mutation, when the
            subscription requested pre-images.
        updated_fields: Fields set by an update, mapped to their new values.

    Example:
        >>> event = ChangeEvent(
        ...     operation_type=OperationType.UPDATE,
        ...     document_key=user_id,
        ...     event_id="8263...",
        ...     position={"_data": "8263..."},
        ...     full_document={"_id": user_id, "bio": "hello"},
        ...     updated_fields={"bio": "hello"},
        ... )
        >>> event.updated_field_names
        frozenset({'bio'})
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    operation_type: OperationType
    document_key: Any
    event_id: str
    position: Any
    full_document: dict[str, Any] | None = None
    full_document_before: dict[str, Any] | None = None
    updated_fields: dict[str, Any] = Field(default_factory=dict)

    @property
    def updated_field_names(self) -> frozenset[str]:
        """Names of the fields an update declared as touched."""
        return frozenset(self.updated_fields)

    def after(self, field: str, default: Any = None) -> Any:
        """Read a field from the post-image, if there is one."""
        if self.full_document is None:
            return default
        return self.full_document.get(field, default)

    def before(self, field: str, default: Any = None) -> Any:
        """Read a field from the pre-image, if there is one."""
        if self.full_document_before is None:
            return default
        return self.full_document_before.get(field, default)

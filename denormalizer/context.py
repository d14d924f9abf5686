import contextvars
from dataclasses import dataclass, field

from ulid import ULID


@dataclass(frozen=True)
class ChangeContext:
    """Immutable context describing the change event being handled.

    The stream runner sets a ChangeContext before invoking a handler and
    clears it afterwards, so every log line emitted while handling an event
    can be traced back to the stream and log entry that caused it.

    Attributes:
        stream_id: Resume-record identifier of the stream, including the
            shard suffix.
        event_id: Opaque identifier of the log entry being handled.
        operation_type: The mutation kind ("insert", "update", "delete").
        delivery_id: Unique identifier of this delivery attempt. A redelivered
            event keeps its event_id but gets a fresh delivery_id.

    Examples:
        >>> ctx = ChangeContext.for_event("article_tag_sync_shard_0_of_1", "articles:7", "update")
        >>> set_context(ctx)
        >>> LOGGER.info("Adjusting tag counts")  # carries stream/event/delivery
        >>> clear_context()
    """

    stream_id: str | None = None
    event_id: str | None = None
    operation_type: str | None = None
    delivery_id: ULID | None = field(default=None)

    @classmethod
    def for_event(cls, stream_id: str, event_id: str, operation_type: str) -> "ChangeContext":
        """Create a context for a new delivery of an event."""
        return cls(
            stream_id=stream_id,
            event_id=event_id,
            operation_type=operation_type,
            delivery_id=ULID(),
        )


_context: contextvars.ContextVar[ChangeContext | None] = contextvars.ContextVar(
    "change_context", default=None
)


def get_context() -> ChangeContext:
    """Get the current change context.

    If no context has been set, returns an empty ChangeContext with all
    fields None.
    """
    ctx = _context.get()
    if ctx is None:
        return ChangeContext()
    return ctx


def set_context(context: ChangeContext) -> None:
    """Set the current change context."""
    _context.set(context)


def clear_context() -> None:
    """Clear the current change context."""
    _context.set(None)

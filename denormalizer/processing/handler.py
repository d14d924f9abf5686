"""Base class for change handlers that maintain denormalized state."""

from typing import ClassVar

from ..domain import ChangeEvent, OperationType
from ..routing import OperationRouter, setup_operation_routing
from .source import WatchOptions


class ChangeHandler:
    """Base class for keeping derived data consistent with a source collection.

    A ChangeHandler watches one source collection and, for each change event,
    applies the minimal set of writes that keeps the derived collections
    consistent. Handlers only have side effects; nothing consumes their
    return value.

    **Contract:**
    Delivery is at-least-once. A crash between a handler completing and the
    resume position being persisted causes the same event to be delivered
    again, so every handler must leave the derived state unchanged when it
    is applied to an event it has already applied.

    **Routing:**
    Decorate methods with ``@handles(OperationType...)`` to declare which
    operations the handler reacts to. Operation types without a method are
    ignored.

    Attributes:
        name: Logical stream name. Combined with the shard to form the
            resume-record identifier.
        collection: The watched source collection.
        watch_options: Document images the handler needs.

    Example:
        >>> class ArticleAudit(ChangeHandler):
        ...     name = "article_audit"
        ...     collection = "articles"
        ...
        ...     @handles(OperationType.DELETE)
        ...     async def on_deleted(self, event: ChangeEvent) -> None:
        ...         ...
    """

    name: ClassVar[str]
    collection: ClassVar[str]
    watch_options: ClassVar[WatchOptions] = WatchOptions()

    _router: ClassVar[OperationRouter]

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls._router = setup_operation_routing(cls)

    @classmethod
    def handled_operations(cls) -> frozenset[OperationType]:
        """Operation types this handler reacts to."""
        return cls._router.operations

    async def handle(self, event: ChangeEvent) -> None:
        """Apply one change event.

        Args:
            event: The change to apply.

        Raises:
            Exception: Any error raised while writing derived state. The
                stream runner logs it and moves on to the next event.
        """
        await self._router.route(self, event)

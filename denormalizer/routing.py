"""Routing of change events to handler methods by operation type."""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .domain import ChangeEvent, OperationType

T = TypeVar("T")

_OPERATIONS_ATTR = "_handles_operations"

ChangeCallback = Callable[[Any, ChangeEvent], Awaitable[None]]


class OperationRouter:
    """Routes change events to the method registered for their operation type.

    Operation types without a registered method are ignored: a handler
    declares exactly which mutations it reacts to and everything else is a
    no-op.
    """

    __slots__ = ("_routes",)

    def __init__(self) -> None:
        self._routes: dict[OperationType, ChangeCallback] = {}

    def register(self, operation: OperationType, method: ChangeCallback) -> None:
        """Register a method for an operation type.

        Args:
            operation: The operation type the method handles.
            method: Unbound coroutine function taking ``(self, event)``.

        Raises:
            ValueError: If another method already handles the operation.
        """
        existing = self._routes.get(operation)
        if existing is not None and existing is not method:
            raise ValueError(
                f"Operation {operation.value!r} is handled by both "
                f"{existing.__name__} and {method.__name__}"
            )
        self._routes[operation] = method

    @property
    def operations(self) -> frozenset[OperationType]:
        """Operation types with a registered method."""
        return frozenset(self._routes)

    async def route(self, instance: Any, event: ChangeEvent) -> None:
        """Invoke the method registered for the event's operation type."""
        method = self._routes.get(event.operation_type)
        if method is None:
            return
        await method(instance, event)


def handles(*operations: OperationType) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator marking a handler method for one or more operation types.

    Example:
        >>> class FavoritesCounter(ChangeHandler):
        ...     @handles(OperationType.INSERT)
        ...     async def on_favorited(self, event: ChangeEvent) -> None:
        ...         ...
    """
    if not operations:
        raise ValueError("handles() requires at least one operation type")

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        setattr(func, _OPERATIONS_ATTR, frozenset(operations))
        return func

    return decorator


def setup_operation_routing(cls: type) -> OperationRouter:
    """Build a router from the ``@handles`` methods of a class.

    The class hierarchy is scanned from the most derived class outwards, so a
    subclass method takes precedence over an inherited one for the same
    operation.

    Args:
        cls: The class to set up routing for.

    Returns:
        A configured OperationRouter.
    """
    router = OperationRouter()
    claimed: set[OperationType] = set()

    for klass in cls.__mro__:
        for value in klass.__dict__.values():
            operations = getattr(value, _OPERATIONS_ATTR, None)
            if not operations:
                continue
            for operation in operations:
                if operation in claimed and klass is not cls:
                    continue
                router.register(operation, value)
            claimed.update(operations)

    return router

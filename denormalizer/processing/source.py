"""Change source and subscription interfaces and implementations.

This module provides:
- WatchOptions: Which document images a subscription materializes
- ChangeSubscription: Abstract interface for consuming an ordered change feed
- ChangeSource: Abstract interface for opening filtered, resumable feeds
- InMemoryChangeLog: Ordered in-memory change log for testing
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Literal

from ..domain import ChangeEvent, OperationType
from ..domain.exceptions import SourceUnavailableError
from ..sharding import ShardAssignment


@dataclass(frozen=True)
class WatchOptions:
    """Controls which document images a subscription delivers.

    The post-image is always requested. The pre-image is only requested by
    handlers that need field-level diffs, since it requires pre/post image
    capture to be enabled on the watched collection.

    Attributes:
        full_document: How the post-image is produced. "updateLookup" reads
            the current document when the event is delivered.
        full_document_before_change: Pre-image mode, or None to omit it.
    """

    full_document: Literal["updateLookup", "whenAvailable", "required"] = "updateLookup"
    full_document_before_change: Literal["whenAvailable", "required"] | None = None

    @property
    def wants_pre_image(self) -> bool:
        return self.full_document_before_change is not None


class ChangeSubscription(ABC):
    """Abstract interface for consuming an ordered, infinite change feed.

    Events are delivered in the log's total order for this subscription
    only. There is no ordering across subscriptions.
    """

    @abstractmethod
    async def try_next(self) -> ChangeEvent | None:
        """Retrieve the next change event, waiting up to one poll interval.

        Returns:
            The next event, or None if none arrived within the poll interval.

        Raises:
            SourceUnavailableError: If the subscription lost its connection.
                The caller should close it and subscribe again from the last
                position it handled.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the subscription and release its resources."""
        ...

    async def __aenter__(self) -> "ChangeSubscription":
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_value: BaseException | None,
        _traceback: TracebackType | None,
    ) -> None:
        await self.close()


class ChangeSource(ABC):
    """Abstract interface for opening change subscriptions.

    Implementations might use:
    - MongoDB change streams
    - In-memory logs (for testing)
    """

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        shard: ShardAssignment,
        resume_from: Any | None,
        options: WatchOptions,
    ) -> ChangeSubscription:
        """Open a filtered subscription to a collection's changes.

        Args:
            collection: Name of the watched collection.
            shard: The shard whose documents should be delivered. Events for
                other shards are never materialized.
            resume_from: Position of the last handled event. Delivery resumes
                strictly after it. When None, delivery starts from now;
                earlier events are not replayed.
            options: Which document images to deliver.

        Returns:
            An open subscription.

        Raises:
            SourceUnavailableError: If the source cannot be reached.
        """
        ...


class InMemoryChangeLog(ChangeSource):
    """Ordered in-memory change log for testing.

    Every appended change gets the next integer position. Subscriptions see
    the changes of their collection and shard, in append order, and block
    for up to ``poll_interval`` seconds when they are caught up.

    This is a minimal implementation for testing - it doesn't support:
    - Persistence (the log is lost when the process exits)
    - Retention limits (every change is kept)
    """

    def __init__(self, poll_interval: float = 0.05) -> None:
        self.poll_interval = poll_interval
        self.entries: list[tuple[str, ChangeEvent]] = []
        self._appended = asyncio.Event()
        self._subscriptions: list["InMemoryChangeSubscription"] = []

    def append(
        self,
        collection: str,
        operation_type: OperationType,
        document_key: Any,
        full_document: dict[str, Any] | None = None,
        full_document_before: dict[str, Any] | None = None,
        updated_fields: dict[str, Any] | None = None,
    ) -> ChangeEvent:
        """Append a change to the log.

        Returns:
            The change event as it will be delivered (with both images).
        """
        position = len(self.entries) + 1
        event = ChangeEvent(
            operation_type=operation_type,
            document_key=document_key,
            event_id=f"{collection}:{position}",
            position=position,
            full_document=full_document,
            full_document_before=full_document_before,
            updated_fields=updated_fields or {},
        )
        self.entries.append((collection, event))
        self._appended.set()
        self._appended = asyncio.Event()
        return event

    def disconnect(self) -> None:
        """Break every open subscription, as a lost connection would."""
        for subscription in self._subscriptions:
            subscription.broken = True

    async def subscribe(
        self,
        collection: str,
        shard: ShardAssignment,
        resume_from: Any | None,
        options: WatchOptions,
    ) -> "InMemoryChangeSubscription":
        start = len(self.entries) if resume_from is None else int(resume_from)
        subscription = InMemoryChangeSubscription(self, collection, shard, options, start)
        self._subscriptions.append(subscription)
        return subscription

    async def wait_for_append(self, timeout: float) -> None:
        """Wait until a change is appended or the timeout elapses."""
        try:
            await asyncio.wait_for(self._appended.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    def release(self, subscription: "InMemoryChangeSubscription") -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


class InMemoryChangeSubscription(ChangeSubscription):
    """Index-based subscription to an InMemoryChangeLog.

    Keeps a cursor into the log and skips entries of other collections and
    other shards.
    """

    def __init__(
        self,
        log: InMemoryChangeLog,
        collection: str,
        shard: ShardAssignment,
        options: WatchOptions,
        start: int,
    ) -> None:
        self.log = log
        self.collection = collection
        self.shard = shard
        self.options = options
        self.index = start
        self.broken = False
        self.closed = False

    def _next_matching(self) -> ChangeEvent | None:
        while self.index < len(self.log.entries):
            collection, event = self.log.entries[self.index]
            self.index += 1
            if collection != self.collection or not self.shard.owns(event.document_key):
                continue
            if not self.options.wants_pre_image:
                event = event.model_copy(update={"full_document_before": None})
            return event
        return None

    async def try_next(self) -> ChangeEvent | None:
        if self.closed:
            raise SourceUnavailableError(f"Subscription to {self.collection!r} is closed")
        if self.broken:
            raise SourceUnavailableError(f"Connection to {self.collection!r} lost")

        event = self._next_matching()
        if event is None:
            await self.log.wait_for_append(self.log.poll_interval)
            event = self._next_matching()
        return event

    async def close(self) -> None:
        self.closed = True
        self.log.release(self)

"""Central test fixtures."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from bson import ObjectId

from denormalizer.domain import ChangeEvent, OperationType
from denormalizer.processing import (
    InMemoryChangeLog,
    InMemoryResumePositionStore,
    ReconnectPolicy,
)
from denormalizer.projections import InMemoryDenormalizedStore
from denormalizer.sharding import ShardAssignment


@pytest.fixture
def change_log() -> InMemoryChangeLog:
    """Create an in-memory change log with a short poll interval."""
    return InMemoryChangeLog(poll_interval=0.01)


@pytest.fixture
def positions() -> InMemoryResumePositionStore:
    """Create an in-memory resume position store."""
    return InMemoryResumePositionStore()


@pytest.fixture
def store() -> InMemoryDenormalizedStore:
    """Create an in-memory derived state store."""
    return InMemoryDenormalizedStore()


@pytest.fixture
def single_shard() -> ShardAssignment:
    """The assignment of an unpartitioned deployment."""
    return ShardAssignment(index=0, count=1)


@pytest.fixture
def fast_reconnect() -> ReconnectPolicy:
    """A reconnect policy that retries almost immediately."""
    return ReconnectPolicy(initial_delay=0.01, max_delay=0.05)


@pytest.fixture
def make_event() -> Callable[..., ChangeEvent]:
    """Factory for change events with sensible defaults."""
    counter = iter(range(1, 1_000_000))

    def factory(
        operation_type: OperationType,
        document_key: Any = None,
        *,
        event_id: str | None = None,
        full_document: dict[str, Any] | None = None,
        full_document_before: dict[str, Any] | None = None,
        updated_fields: dict[str, Any] | None = None,
    ) -> ChangeEvent:
        position = next(counter)
        return ChangeEvent(
            operation_type=operation_type,
            document_key=document_key if document_key is not None else ObjectId(),
            event_id=event_id or f"event-{position}",
            position=position,
            full_document=full_document,
            full_document_before=full_document_before,
            updated_fields=updated_fields or {},
        )

    return factory


@pytest.fixture
def eventually() -> Callable[[Callable[[], bool]], Awaitable[None]]:
    """Wait until a condition holds, failing the test after a timeout."""

    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        async def poll() -> None:
            while not condition():
                await asyncio.sleep(0.005)

        await asyncio.wait_for(poll(), timeout)

    return wait

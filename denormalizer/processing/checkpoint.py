"""Resume-position storage for making change streams restartable."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ResumeState:
    """The last position successfully handled on a stream.

    Attributes:
        stream_id: Stream identifier, including the shard suffix
            (e.g. "article_tag_sync_shard_0_of_4").
        position: Opaque resume position of the last handled event.
    """

    stream_id: str
    position: Any


class ResumePositionStore(ABC):
    """Abstract interface for persisting stream resume positions.

    A stream runner reads its position once at startup and overwrites it
    after every successfully handled event. Positions are never deleted by
    the worker; resetting a stream is an operational action.

    Implementations should handle:
    - Idempotency (saving the same position twice is harmless)
    - Atomic overwrite of the previous position
    - Persistence (positions survive process restarts)
    - Isolation (each stream id has its own record)
    """

    @abstractmethod
    async def get(self, stream_id: str) -> ResumeState | None:
        """Load the resume position of a stream.

        Args:
            stream_id: Identifier of the stream.

        Returns:
            The stored state, or None if the stream has never handled an
            event.

        Raises:
            ResumePositionError: If the store cannot be read.
        """
        ...

    @abstractmethod
    async def set(self, state: ResumeState) -> None:
        """Persist the resume position of a stream.

        Args:
            state: The stream id and position to store.

        Raises:
            ResumePositionError: If the position did not persist. The event
                is then considered not yet fully processed and may be
                redelivered after a restart.
        """
        ...


class InMemoryResumePositionStore(ResumePositionStore):
    """In-memory resume position storage for testing.

    Stores positions in a dictionary keyed by stream id.
    Not suitable for production use as positions are lost on restart.
    """

    def __init__(self) -> None:
        self._states: dict[str, ResumeState] = {}

    async def get(self, stream_id: str) -> ResumeState | None:
        return self._states.get(stream_id)

    async def set(self, state: ResumeState) -> None:
        self._states[state.stream_id] = state

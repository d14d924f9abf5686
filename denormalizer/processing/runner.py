import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..context import ChangeContext, clear_context, set_context
from ..domain import ChangeEvent
from ..domain.exceptions import (
    ResumePositionError,
    SourceUnavailableError,
    StreamStartupError,
)
from ..sharding import ShardAssignment
from .checkpoint import ResumePositionStore, ResumeState
from .handler import ChangeHandler
from .source import ChangeSource, ChangeSubscription

LOGGER = logging.getLogger(__name__)


class RunnerState(str, Enum):
    """Lifecycle states of a StreamRunner."""

    STARTING = "starting"
    ATTACHED = "attached"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff between reconnect attempts of a lost stream.

    Attributes:
        initial_delay: Seconds before the first attempt. Must be positive.
        max_delay: Upper bound for any delay.
        multiplier: Growth factor applied per failed attempt.

    Examples:
        >>> policy = ReconnectPolicy(initial_delay=0.5, max_delay=30.0)
        >>> [policy.delay(n) for n in range(4)]
        [0.5, 1.0, 2.0, 4.0]
    """

    initial_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must not be less than initial_delay")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")

    def delay(self, attempt: int) -> float:
        """Delay in seconds before the given (zero-based) attempt."""
        return min(self.max_delay, self.initial_delay * self.multiplier**attempt)


class StreamRunner:
    """Drives one change subscription through a handler.

    StreamRunner is the consumption loop of a single stream (one collection,
    one shard):
    1. Loads the stream's resume position
    2. Opens a subscription at that position
    3. Pulls events one at a time and hands each to the handler
    4. Persists an event's position only after the handler succeeded

    **State machine:**
    ``STARTING -> ATTACHED -> RUNNING -> (DRAINING -> STOPPED | FAILED)``.
    FAILED is reached when the resume position cannot be loaded or the
    first subscription cannot be opened, in which case ``run()`` raises
    StreamStartupError. It is also reached when the consumption loop itself
    crashes after startup; ``run()`` then re-raises that error.

    **Error isolation:**
    A handler error is logged with the stream id, position and operation
    type, and the runner continues with the next event without recording
    the failed event's position. A lost connection closes the subscription
    and reopens it from the position of the last handled event, with
    exponential backoff, for as long as it takes. Events that failed after
    that position are therefore delivered again by the reopened
    subscription, and get another chance.

    **Shutdown:**
    ``request_stop()`` moves the runner to DRAINING. The event being handled
    at that moment is allowed to finish before the subscription is closed.

    Attributes:
        handler: Change handler applied to every event.
        source: Change source the subscription is opened on.
        positions: Store holding the stream's resume position.
        shard: The shard this runner consumes.
        stream_id: Resume-record identifier of the stream.
        position: Position of the last successfully handled event.
        state: Current lifecycle state.

    Example:
        >>> runner = StreamRunner(
        ...     TagListMaintenance(store),
        ...     source=MongoDBChangeSource(manager),
        ...     positions=MongoDBResumePositionStore(manager),
        ...     shard=ShardAssignment(index=0, count=4),
        ... )
        >>> task = asyncio.create_task(runner.run())
        >>> await runner.wait_until_running()
        >>> runner.request_stop()
        >>> await task
    """

    def __init__(
        self,
        handler: ChangeHandler,
        source: ChangeSource,
        positions: ResumePositionStore,
        shard: ShardAssignment,
        reconnect: ReconnectPolicy | None = None,
    ) -> None:
        self.handler = handler
        self.source = source
        self.positions = positions
        self.shard = shard
        self.reconnect = reconnect or ReconnectPolicy()
        self.stream_id = shard.stream_id(handler.name)

        self.state = RunnerState.STARTING
        self.position: Any | None = None
        self.events_handled = 0
        self.events_failed = 0

        self._subscription: ChangeSubscription | None = None
        self._stop_requested = asyncio.Event()
        self._running = asyncio.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    @property
    def started(self) -> bool:
        """True once the runner has attached and begun consuming."""
        return self._running.is_set()

    async def wait_until_running(self) -> None:
        """Wait until the runner has attached and started consuming."""
        await self._running.wait()

    def request_stop(self) -> None:
        """Ask the runner to drain and stop.

        Safe to call more than once and from any state.
        """
        self._stop_requested.set()
        if self.state in (RunnerState.ATTACHED, RunnerState.RUNNING):
            self._set_state(RunnerState.DRAINING)

    async def run(self) -> None:
        """Run the stream until a stop is requested.

        Raises:
            StreamStartupError: If the resume position cannot be loaded or
                the subscription cannot be opened at startup.
        """
        await self._start()
        if self.stop_requested:
            await self._close_subscription()
            self._set_state(RunnerState.STOPPED)
            return

        self._set_state(RunnerState.RUNNING)
        self._running.set()
        try:
            await self._consume()
        except Exception:
            self._set_state(RunnerState.FAILED)
            raise
        finally:
            await self._close_subscription()
            if self.state is not RunnerState.FAILED:
                self._set_state(RunnerState.STOPPED)
            LOGGER.info(
                "Stream stopped",
                extra={
                    "stream_id": self.stream_id,
                    "events_handled": self.events_handled,
                    "events_failed": self.events_failed,
                },
            )

    async def process_event(self, event: ChangeEvent) -> bool:
        """Apply one event and record its position on success.

        The change context is set for the duration of the call so that log
        lines emitted by the handler carry the stream and event ids.

        Args:
            event: The event to apply.

        Returns:
            True if the handler succeeded and the position was persisted,
            False otherwise.
        """
        set_context(
            ChangeContext.for_event(self.stream_id, event.event_id, event.operation_type.value)
        )
        try:
            try:
                await self.handler.handle(event)
            except Exception:
                self.events_failed += 1
                LOGGER.exception(
                    "Change processing error",
                    extra={
                        "stream_id": self.stream_id,
                        "position": repr(event.position),
                        "operation_type": event.operation_type.value,
                    },
                )
                return False

            self.position = event.position
            self.events_handled += 1
            LOGGER.debug(
                "Change applied",
                extra={"stream_id": self.stream_id, "operation_type": event.operation_type.value},
            )

            try:
                await self.positions.set(ResumeState(self.stream_id, event.position))
            except ResumePositionError:
                LOGGER.exception(
                    "Resume position did not persist",
                    extra={
                        "stream_id": self.stream_id,
                        "position": repr(event.position),
                    },
                )
                return False
            return True
        finally:
            clear_context()

    def _set_state(self, state: RunnerState) -> None:
        LOGGER.debug(
            "Stream state %s -> %s",
            self.state.value,
            state.value,
            extra={"stream_id": self.stream_id},
        )
        self.state = state

    async def _start(self) -> None:
        self._set_state(RunnerState.STARTING)
        try:
            state = await self.positions.get(self.stream_id)
        except ResumePositionError as err:
            self._set_state(RunnerState.FAILED)
            raise StreamStartupError(self.stream_id, str(err)) from err

        self.position = state.position if state is not None else None
        LOGGER.info(
            "Starting stream",
            extra={
                "stream_id": self.stream_id,
                "collection": self.handler.collection,
                "resuming": self.position is not None,
            },
        )

        try:
            self._subscription = await self._subscribe()
        except SourceUnavailableError as err:
            self._set_state(RunnerState.FAILED)
            raise StreamStartupError(self.stream_id, str(err)) from err
        self._set_state(RunnerState.ATTACHED)

    async def _subscribe(self) -> ChangeSubscription:
        return await self.source.subscribe(
            self.handler.collection,
            self.shard,
            self.position,
            self.handler.watch_options,
        )

    async def _consume(self) -> None:
        while not self.stop_requested:
            if self._subscription is None:
                await self._reconnect()
                continue

            try:
                event = await self._subscription.try_next()
            except SourceUnavailableError as err:
                LOGGER.warning(
                    "Stream disconnected: %s",
                    err,
                    extra={"stream_id": self.stream_id},
                )
                await self._close_subscription()
                continue

            if event is not None:
                await self.process_event(event)

    async def _reconnect(self) -> None:
        attempt = 0
        while not self.stop_requested:
            delay = self.reconnect.delay(attempt)
            try:
                await asyncio.wait_for(self._stop_requested.wait(), delay)
                return
            except asyncio.TimeoutError:
                pass

            try:
                self._subscription = await self._subscribe()
            except SourceUnavailableError as err:
                attempt += 1
                LOGGER.error(
                    "Reconnect attempt %d failed: %s",
                    attempt,
                    err,
                    extra={"stream_id": self.stream_id},
                )
                continue

            LOGGER.info(
                "Stream reconnected",
                extra={"stream_id": self.stream_id, "attempts": attempt + 1},
            )
            return

    async def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            await subscription.close()
        except SourceUnavailableError:
            LOGGER.warning("Closing subscription failed", extra={"stream_id": self.stream_id})

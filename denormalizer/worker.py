"""Assembly of a worker process from its settings."""

import asyncio
import logging
import signal

from .config import WorkerSettings
from .integrations.mongodb import (
    MongoDBChangeSource,
    MongoDBConnectionManager,
    MongoDBDenormalizedStore,
    MongoDBResumePositionStore,
)
from .processing import (
    ChangeHandler,
    ChangeSource,
    ReconnectPolicy,
    ResumePositionStore,
    StreamRunner,
    WorkerSupervisor,
)
from .projections import (
    DenormalizedStore,
    FavoritesCounter,
    TagListMaintenance,
    UserProfilePropagation,
)
from .sharding import ShardAssignment

LOGGER = logging.getLogger(__name__)

HANDLER_TYPES: tuple[type[ChangeHandler], ...] = (
    UserProfilePropagation,
    TagListMaintenance,
    FavoritesCounter,
)


def build_handlers(store: DenormalizedStore) -> list[ChangeHandler]:
    """Create one handler per watched collection, all writing to ``store``."""
    return [handler_type(store) for handler_type in HANDLER_TYPES]


def build_supervisor(
    handlers: list[ChangeHandler],
    source: ChangeSource,
    positions: ResumePositionStore,
    shard: ShardAssignment,
    reconnect: ReconnectPolicy | None = None,
) -> WorkerSupervisor:
    """Create a runner per handler and put them under one supervisor."""
    runners = [StreamRunner(handler, source, positions, shard, reconnect) for handler in handlers]
    return WorkerSupervisor(runners, shard)


def install_signal_handlers(supervisor: WorkerSupervisor) -> None:
    """Drain the supervisor's runners on SIGINT and SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.request_shutdown)
        except NotImplementedError:
            LOGGER.warning(
                "Signal handling not supported on this platform",
                extra={"signal": sig.name},
            )


async def run_worker(settings: WorkerSettings) -> None:
    """Run a worker against MongoDB until it is asked to shut down.

    Raises:
        SourceUnavailableError: If pre/post image capture cannot be enabled.
        StreamStartupError: If any stream fails to start.
    """
    shard = settings.shard
    async with MongoDBConnectionManager(settings.mongodb()) as manager:
        LOGGER.info("Connecting to MongoDB", extra={"shard": str(shard)})

        source = MongoDBChangeSource(manager, max_await_time_ms=settings.max_await_time_ms)
        positions = MongoDBResumePositionStore(manager, settings.sync_state_collection)
        store = MongoDBDenormalizedStore(
            manager, applied_change_window=settings.applied_change_window
        )

        handlers = build_handlers(store)
        await source.initialize_schema(handler.collection for handler in handlers)

        supervisor = build_supervisor(
            handlers,
            source,
            positions,
            shard,
            ReconnectPolicy(
                initial_delay=settings.reconnect_initial_delay,
                max_delay=settings.reconnect_max_delay,
            ),
        )
        install_signal_handlers(supervisor)
        await supervisor.run()

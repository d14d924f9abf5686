import asyncio
import logging
import sys
from typing import TextIO

from ..domain.exceptions import DenormalizerError
from ..sharding import ShardAssignment
from .runner import StreamRunner

LOGGER = logging.getLogger(__name__)


class WorkerSupervisor:
    """Runs the stream runners of one worker process side by side.

    The supervisor owns every runner task it starts. Runners share no
    in-process state and have independent lifecycles: a runner crashing
    after startup is logged while its siblings keep running. A runner
    failing during startup signals misconfiguration and aborts the whole
    worker.

    Once every runner is consuming, a single readiness line of the form
    ``READY shard <index> of <count>`` is written to ``ready_stream`` so
    that orchestration and end-to-end tests can wait for it.

    Attributes:
        runners: The stream runners to supervise.
        shard: The shard this worker consumes.
        ready_stream: Where the readiness line is written (stdout by default).

    Examples:
        >>> supervisor = WorkerSupervisor(runners, ShardAssignment(0, 1))
        >>> loop.add_signal_handler(signal.SIGTERM, supervisor.request_shutdown)
        >>> await supervisor.run()
    """

    def __init__(
        self,
        runners: list[StreamRunner],
        shard: ShardAssignment,
        ready_stream: TextIO | None = None,
    ) -> None:
        if not runners:
            raise ValueError("WorkerSupervisor needs at least one runner")
        self.runners = runners
        self.shard = shard
        self.ready_stream = ready_stream
        self.ready = False
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def readiness_marker(self) -> str:
        return f"READY shard {self.shard.index} of {self.shard.count}"

    def request_shutdown(self) -> None:
        """Ask every runner to drain and stop."""
        LOGGER.info("Shutdown requested", extra={"shard": str(self.shard)})
        for runner in self.runners:
            runner.request_stop()

    async def run(self) -> None:
        """Start all runners and wait until every one of them has stopped.

        Raises:
            StreamStartupError: If any runner fails to start. The other
                runners are drained before the error is raised.
            DenormalizerError: If every runner crashed after startup.
        """
        self._tasks = [
            asyncio.create_task(runner.run(), name=runner.stream_id) for runner in self.runners
        ]
        try:
            if await self._wait_until_ready():
                self._announce_ready()
        except BaseException:
            self.request_shutdown()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            raise

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        crashed = [
            (runner, result)
            for runner, result in zip(self.runners, results)
            if isinstance(result, BaseException)
        ]
        for runner, error in crashed:
            LOGGER.error(
                "Stream runner crashed",
                exc_info=error,
                extra={"stream_id": runner.stream_id},
            )
        if crashed and len(crashed) == len(self.runners):
            raise DenormalizerError("Every stream runner crashed") from crashed[0][1]

    async def _wait_until_ready(self) -> bool:
        readiness = asyncio.ensure_future(
            asyncio.gather(*(runner.wait_until_running() for runner in self.runners))
        )
        runners = dict(zip(self._tasks, self.runners))
        pending = set(self._tasks)
        try:
            while not readiness.done():
                if not pending:
                    return False
                done, pending = await asyncio.wait(
                    {readiness, *pending}, return_when=asyncio.FIRST_COMPLETED
                )
                pending.discard(readiness)
                for task in done:
                    if task is readiness or task.cancelled():
                        continue
                    error = task.exception()
                    if error is not None and not runners[task].started:
                        raise error
            return True
        finally:
            if not readiness.done():
                readiness.cancel()

    def _announce_ready(self) -> None:
        self.ready = True
        stream = self.ready_stream or sys.stdout
        print(self.readiness_marker, file=stream, flush=True)
        LOGGER.info(
            "All streams running",
            extra={"shard": str(self.shard), "streams": [r.stream_id for r in self.runners]},
        )

"""Change stream consumption: resume positions, sources, runners.

This module provides the machinery that turns an ordered change feed into
idempotent, resumable writes:
- ResumePositionStore: Where each stream records its progress
- ChangeSource: Opens filtered, resumable change subscriptions
- ChangeHandler: Base class for applying change events
- StreamRunner: Consumption loop of one stream
- WorkerSupervisor: Runs all streams of a worker process
"""

from .checkpoint import InMemoryResumePositionStore, ResumePositionStore, ResumeState
from .handler import ChangeHandler
from .runner import ReconnectPolicy, RunnerState, StreamRunner
from .source import (
    ChangeSource,
    ChangeSubscription,
    InMemoryChangeLog,
    InMemoryChangeSubscription,
    WatchOptions,
)
from .supervisor import WorkerSupervisor

__all__ = [
    "ChangeHandler",
    "ChangeSource",
    "ChangeSubscription",
    "InMemoryChangeLog",
    "InMemoryChangeSubscription",
    "InMemoryResumePositionStore",
    "ReconnectPolicy",
    "ResumePositionStore",
    "ResumeState",
    "RunnerState",
    "StreamRunner",
    "WatchOptions",
    "WorkerSupervisor",
]

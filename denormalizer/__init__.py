"""Denormalizer - change stream worker for denormalized MongoDB data.

This module provides the public API for running and extending the worker.
"""

from .config import WorkerSettings, load_settings
from .domain import ChangeEvent, OperationType
from .processing import ChangeHandler, StreamRunner, WorkerSupervisor
from .routing import handles
from .sharding import ShardAssignment, shard_of

__all__ = [
    # Configuration
    "WorkerSettings",
    "load_settings",
    # Domain primitives
    "ChangeEvent",
    "OperationType",
    "ShardAssignment",
    "shard_of",
    # Processing
    "ChangeHandler",
    "StreamRunner",
    "WorkerSupervisor",
    # Decorators
    "handles",
]

"""MongoDB integration for the denormalizer worker.

This module provides MongoDB implementations of the ChangeSource,
ResumePositionStore and DenormalizedStore interfaces using the async
PyMongo driver.

Usage:
    >>> from denormalizer.integrations.mongodb import (
    ...     MongoDBChangeSource,
    ...     MongoDBConfig,
    ...     MongoDBConnectionManager,
    ...     MongoDBDenormalizedStore,
    ...     MongoDBResumePositionStore,
    ... )
    >>>
    >>> config = MongoDBConfig(uri="mongodb://localhost:27017/conduit?replicaSet=rs0")
    >>> manager = MongoDBConnectionManager(config)
    >>>
    >>> source = MongoDBChangeSource(manager)
    >>> await source.initialize_schema(["users", "articles", "favorites"])
    >>> positions = MongoDBResumePositionStore(manager)
    >>> store = MongoDBDenormalizedStore(manager)
"""

from .change_stream import (
    MongoDBChangeSource,
    MongoDBChangeSubscription,
    change_event_from_document,
)
from .checkpoint import MongoDBResumePositionStore
from .config import MongoDBConfig
from .connection import MongoDBConnectionManager
from .denormalized_store import MongoDBDenormalizedStore

__all__ = [
    "MongoDBChangeSource",
    "MongoDBChangeSubscription",
    "MongoDBConfig",
    "MongoDBConnectionManager",
    "MongoDBDenormalizedStore",
    "MongoDBResumePositionStore",
    "change_event_from_document",
]

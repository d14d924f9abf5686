"""MongoDB change streams as a ChangeSource.

This module provides:
- MongoDBChangeSource: Opens change streams filtered by shard
- MongoDBChangeSubscription: Adapts an AsyncChangeStream to ChangeSubscription
- change_event_from_document: Converts raw change documents to ChangeEvent
"""

import logging
from collections.abc import Iterable
from typing import Any

from bson import json_util
from pymongo.asynchronous.change_stream import AsyncChangeStream
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError

from ...domain import ChangeEvent, OperationType
from ...domain.exceptions import SourceUnavailableError
from ...processing.source import ChangeSource, ChangeSubscription, WatchOptions
from ...sharding import ShardAssignment
from .connection import MongoDBConnectionManager

LOGGER = logging.getLogger(__name__)

NAMESPACE_EXISTS = 48

WATCHED_OPERATIONS = ("insert", "update", "replace", "delete")


def change_event_from_document(change: dict[str, Any]) -> ChangeEvent | None:
    """Convert a raw change stream document to a ChangeEvent.

    Replace events are reported as updates touching every field of the
    replacement document. Removed fields are reported as touched with a
    value of None.

    Args:
        change: A document yielded by a MongoDB change stream.

    Returns:
        The change event, or None for operation types the worker does not
        handle.
    """
    operation = change["operationType"]
    full_document = change.get("fullDocument")
    updated_fields: dict[str, Any] = {}

    if operation == "replace":
        operation_type = OperationType.UPDATE
        updated_fields = {k: v for k, v in (full_document or {}).items() if k != "_id"}
    elif operation == "update":
        operation_type = OperationType.UPDATE
        description = change.get("updateDescription") or {}
        updated_fields = {field: None for field in description.get("removedFields", [])}
        updated_fields.update(description.get("updatedFields") or {})
    elif operation in ("insert", "delete"):
        operation_type = OperationType(operation)
    else:
        return None

    token = change["_id"]
    return ChangeEvent(
        operation_type=operation_type,
        document_key=change["documentKey"]["_id"],
        event_id=json_util.dumps(token),
        position=token,
        full_document=full_document,
        full_document_before=change.get("fullDocumentBeforeChange"),
        updated_fields=updated_fields,
    )


class MongoDBChangeSubscription(ChangeSubscription):
    """A ChangeSubscription backed by a PyMongo AsyncChangeStream.

    The driver transparently resumes once after a resumable error. Errors it
    cannot absorb surface as SourceUnavailableError so the stream runner can
    reconnect from its own last handled position.
    """

    def __init__(self, collection: str, stream: AsyncChangeStream) -> None:
        self.collection = collection
        self._stream = stream

    async def try_next(self) -> ChangeEvent | None:
        if not self._stream.alive:
            raise SourceUnavailableError(f"Change stream on {self.collection!r} is closed")
        try:
            change = await self._stream.try_next()
        except StopAsyncIteration as err:
            raise SourceUnavailableError(
                f"Change stream on {self.collection!r} was invalidated"
            ) from err
        except PyMongoError as err:
            raise SourceUnavailableError(
                f"Change stream on {self.collection!r} failed: {err}"
            ) from err

        if change is None:
            return None

        event = change_event_from_document(change)
        if event is None:
            LOGGER.debug(
                "Skipping %s change",
                change.get("operationType"),
                extra={"collection": self.collection},
            )
        return event

    async def close(self) -> None:
        try:
            await self._stream.close()
        except PyMongoError as err:
            raise SourceUnavailableError(
                f"Closing change stream on {self.collection!r} failed: {err}"
            ) from err


class MongoDBChangeSource(ChangeSource):
    """MongoDB implementation of the ChangeSource interface.

    Subscriptions are change streams on a single collection. The shard
    predicate is part of the aggregation pipeline, so the server never sends
    events belonging to other shards.

    Examples:
        >>> source = MongoDBChangeSource(manager, max_await_time_ms=1000)
        >>> await source.initialize_schema(["users", "articles"])
        >>> subscription = await source.subscribe(
        ...     "articles",
        ...     ShardAssignment(index=0, count=2),
        ...     resume_from=None,
        ...     options=WatchOptions(full_document_before_change="whenAvailable"),
        ... )
        >>> event = await subscription.try_next()
    """

    def __init__(
        self,
        connection_manager: MongoDBConnectionManager,
        max_await_time_ms: int = 1000,
    ) -> None:
        self.connection_manager = connection_manager
        self.max_await_time_ms = max_await_time_ms

    async def initialize_schema(self, collections: Iterable[str]) -> None:
        """Enable pre/post image capture on the watched collections.

        Idempotent: missing collections are created with capture enabled,
        existing ones are modified, and collections that already have it
        enabled are left as they are.

        Raises:
            SourceUnavailableError: If the deployment cannot be reached or
                rejects the change.
        """
        for name in dict.fromkeys(collections):
            try:
                await self.enable_pre_and_post_images(name)
            except PyMongoError as err:
                raise SourceUnavailableError(
                    f"Could not enable pre/post images on {name!r}: {err}"
                ) from err

    async def enable_pre_and_post_images(self, name: str) -> None:
        database = self.connection_manager.database
        options = {"changeStreamPreAndPostImages": {"enabled": True}}

        existing = await database.list_collection_names(filter={"name": name})
        if not existing:
            try:
                await database.create_collection(name, **options)
                LOGGER.info("Created collection with pre/post images", extra={"collection": name})
                return
            except CollectionInvalid:
                pass
            except OperationFailure as err:
                if err.code != NAMESPACE_EXISTS:
                    raise

        await database.command("collMod", name, **options)
        LOGGER.debug("Enabled pre/post images", extra={"collection": name})

    def pipeline(self, shard: ShardAssignment) -> list[dict[str, Any]]:
        """Aggregation pipeline for a shard's subscription."""
        return [
            {"$match": {"operationType": {"$in": list(WATCHED_OPERATIONS)}}},
            *shard.pipeline(),
        ]

    async def subscribe(
        self,
        collection: str,
        shard: ShardAssignment,
        resume_from: Any | None,
        options: WatchOptions,
    ) -> MongoDBChangeSubscription:
        kwargs: dict[str, Any] = {
            "full_document": options.full_document,
            "max_await_time_ms": self.max_await_time_ms,
        }
        if options.full_document_before_change is not None:
            kwargs["full_document_before_change"] = options.full_document_before_change
        if resume_from is not None:
            kwargs["resume_after"] = resume_from

        try:
            stream = await self.connection_manager.database[collection].watch(
                self.pipeline(shard), **kwargs
            )
        except PyMongoError as err:
            raise SourceUnavailableError(f"Could not watch {collection!r}: {err}") from err

        return MongoDBChangeSubscription(collection, stream)

"""MongoDB implementation of DenormalizedStore.

Every derived-state mutation maps to a single atomic MongoDB update. Counter
updates are guarded by a bounded list of recently applied change ids kept on
the target document: the filter requires the change id to be absent and the
update pushes it, so a redelivered event matches nothing.
"""

import asyncio
import logging
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ...projections.store import APPLIED_CHANGES_FIELD, DenormalizedStore
from .connection import MongoDBConnectionManager

LOGGER = logging.getLogger(__name__)


class MongoDBDenormalizedStore(DenormalizedStore):
    """MongoDB implementation of the DenormalizedStore interface.

    Collections:
        - articles: author fields, favoritesCount
        - comments: author fields
        - tags: one document per tag, ``{_id: <tag>, articleCount: <n>}``

    Examples:
        >>> store = MongoDBDenormalizedStore(manager, applied_change_window=100)
        >>> await store.increment_tag("mongodb", event.event_id)
        >>> await store.set_author_fields(user_id, {"authorBio": "hello"})
    """

    def __init__(
        self,
        connection_manager: MongoDBConnectionManager,
        applied_change_window: int = 100,
        articles_collection: str = "articles",
        comments_collection: str = "comments",
        tags_collection: str = "tags",
    ):
        if applied_change_window < 1:
            raise ValueError("applied_change_window must be positive")
        self.connection_manager = connection_manager
        self.applied_change_window = applied_change_window
        self.articles_collection = articles_collection
        self.comments_collection = comments_collection
        self.tags_collection = tags_collection

    @property
    def _articles(self):
        return self.connection_manager.database[self.articles_collection]

    @property
    def _comments(self):
        return self.connection_manager.database[self.comments_collection]

    @property
    def _tags(self):
        return self.connection_manager.database[self.tags_collection]

    def _unapplied(self, document_id: Any, change_id: str) -> dict[str, Any]:
        return {"_id": document_id, APPLIED_CHANGES_FIELD: {"$ne": change_id}}

    def _counter_update(self, field: str, delta: int, change_id: str) -> dict[str, Any]:
        return {
            "$inc": {field: delta},
            "$push": {
                APPLIED_CHANGES_FIELD: {
                    "$each": [change_id],
                    "$slice": -self.applied_change_window,
                }
            },
        }

    async def set_author_fields(self, author_id: Any, fields: dict[str, Any]) -> None:
        results = await asyncio.gather(
            self._articles.update_many({"authorId": author_id}, {"$set": fields}),
            self._comments.update_many({"authorId": author_id}, {"$set": fields}),
            return_exceptions=True,
        )
        # Both writes have settled before an error reaches the handler.
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def increment_tag(self, tag: str, change_id: str) -> None:
        update = self._counter_update("articleCount", 1, change_id)
        try:
            await self._tags.update_one(self._unapplied(tag, change_id), update, upsert=True)
        except DuplicateKeyError:
            # The tag exists and either already holds this change, or was
            # created concurrently by another shard. Only the latter matches.
            await self._tags.update_one(self._unapplied(tag, change_id), update)

    async def decrement_tag(self, tag: str, change_id: str) -> None:
        document = await self._tags.find_one_and_update(
            self._unapplied(tag, change_id),
            self._counter_update("articleCount", -1, change_id),
            return_document=ReturnDocument.AFTER,
        )
        if document is not None and document.get("articleCount", 0) > 0:
            return

        result = await self._tags.delete_one({"_id": tag, "articleCount": {"$lte": 0}})
        if result.deleted_count:
            LOGGER.debug("Deleted exhausted tag %r", tag)

    async def adjust_favorites_count(self, article_id: Any, delta: int, change_id: str) -> None:
        result = await self._articles.update_one(
            self._unapplied(article_id, change_id),
            self._counter_update("favoritesCount", delta, change_id),
        )
        if result.matched_count == 0:
            LOGGER.debug("Article missing or change already applied, favorites unchanged")

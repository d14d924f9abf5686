"""MongoDB implementation of ResumePositionStore.

This module provides a MongoDB-backed store for change stream resume
positions, using PyMongo's async API.
"""

from datetime import datetime, timezone

from pymongo.errors import PyMongoError

from ...domain.exceptions import ResumePositionError
from ...processing.checkpoint import ResumePositionStore, ResumeState
from .connection import MongoDBConnectionManager


class MongoDBResumePositionStore(ResumePositionStore):
    """MongoDB implementation of the ResumePositionStore interface.

    One document per stream, keyed by stream id, overwritten with an
    upsert after every successfully handled event. Positions are stored
    verbatim.

    Collections:
        - sync_state (configurable): one resume record per stream

    Document structure:
        {
            "_id": "article_tag_sync_shard_0_of_4",
            "resumeToken": {"_data": "8265..."},
            "updatedAt": ISODate(...)
        }

    Examples:
        >>> store = MongoDBResumePositionStore(manager)
        >>> state = await store.get("user_profile_sync_shard_0_of_1")
        >>> await store.set(ResumeState("user_profile_sync_shard_0_of_1", token))
    """

    def __init__(
        self,
        connection_manager: MongoDBConnectionManager,
        collection_name: str = "sync_state",
    ):
        self.connection_manager = connection_manager
        self.collection_name = collection_name

    @property
    def _state_collection(self):
        """Get the resume record collection."""
        return self.connection_manager.database[self.collection_name]

    async def get(self, stream_id: str) -> ResumeState | None:
        try:
            doc = await self._state_collection.find_one({"_id": stream_id})
        except PyMongoError as err:
            raise ResumePositionError(
                f"Could not load resume position of {stream_id!r}: {err}"
            ) from err

        if not doc or doc.get("resumeToken") is None:
            return None
        return ResumeState(stream_id=stream_id, position=doc["resumeToken"])

    async def set(self, state: ResumeState) -> None:
        try:
            await self._state_collection.update_one(
                {"_id": state.stream_id},
                {
                    "$set": {
                        "resumeToken": state.position,
                        "updatedAt": datetime.now(timezone.utc),
                    }
                },
                upsert=True,
            )
        except PyMongoError as err:
            raise ResumePositionError(
                f"Could not save resume position of {state.stream_id!r}: {err}"
            ) from err

"""Unit tests for the MongoDB resume position and derived state stores."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import ReturnDocument
from pymongo.errors import AutoReconnect, DuplicateKeyError

from denormalizer.domain.exceptions import ResumePositionError
from denormalizer.integrations.mongodb import (
    MongoDBDenormalizedStore,
    MongoDBResumePositionStore,
)
from denormalizer.processing import ResumeState

TOKEN = {"_data": "8265A1B2C3000000012B022C0100296E5A1004"}


def mock_collection() -> MagicMock:
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collection.update_many = AsyncMock()
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
    return collection


@pytest.fixture
def collections():
    return {name: mock_collection() for name in ("sync_state", "articles", "comments", "tags")}


@pytest.fixture
def manager(collections):
    manager = MagicMock()
    manager.database.__getitem__.side_effect = collections.__getitem__
    return manager


@pytest.fixture
def positions(manager):
    return MongoDBResumePositionStore(manager)


@pytest.fixture
def store(manager):
    return MongoDBDenormalizedStore(manager, applied_change_window=50)


@pytest.mark.asyncio
async def test_get_missing_position(positions, collections):
    assert await positions.get("user_profile_sync_shard_0_of_1") is None
    collections["sync_state"].find_one.assert_awaited_once_with(
        {"_id": "user_profile_sync_shard_0_of_1"}
    )


@pytest.mark.asyncio
async def test_get_stored_position(positions, collections):
    collections["sync_state"].find_one.return_value = {
        "_id": "article_tag_sync_shard_1_of_2",
        "resumeToken": TOKEN,
    }

    state = await positions.get("article_tag_sync_shard_1_of_2")

    assert state == ResumeState("article_tag_sync_shard_1_of_2", TOKEN)


@pytest.mark.asyncio
async def test_set_upserts_token(positions, collections):
    await positions.set(ResumeState("favorites_count_sync_shard_0_of_1", TOKEN))

    args, kwargs = collections["sync_state"].update_one.call_args
    assert args[0] == {"_id": "favorites_count_sync_shard_0_of_1"}
    assert args[1]["$set"]["resumeToken"] == TOKEN
    assert isinstance(args[1]["$set"]["updatedAt"], datetime)
    assert kwargs == {"upsert": True}


@pytest.mark.asyncio
async def test_driver_errors_become_resume_position_errors(positions, collections):
    collections["sync_state"].find_one.side_effect = AutoReconnect("primary stepped down")
    collections["sync_state"].update_one.side_effect = AutoReconnect("primary stepped down")

    with pytest.raises(ResumePositionError):
        await positions.get("users")
    with pytest.raises(ResumePositionError):
        await positions.set(ResumeState("users", TOKEN))


def test_rejects_empty_window(manager):
    with pytest.raises(ValueError):
        MongoDBDenormalizedStore(manager, applied_change_window=0)


@pytest.mark.asyncio
async def test_set_author_fields_updates_both_collections(store, collections):
    await store.set_author_fields("u1", {"authorBio": "v2"})

    for name in ("articles", "comments"):
        collections[name].update_many.assert_awaited_once_with(
            {"authorId": "u1"}, {"$set": {"authorBio": "v2"}}
        )


@pytest.mark.asyncio
async def test_set_author_fields_waits_for_sibling_write_on_error(store, collections):
    """A failed write is reported only once the other one has settled."""
    finished = []

    async def slow_update(*args):
        await asyncio.sleep(0.05)
        finished.append("comments")

    collections["articles"].update_many.side_effect = AutoReconnect("primary stepped down")
    collections["comments"].update_many.side_effect = slow_update

    with pytest.raises(AutoReconnect):
        await store.set_author_fields("u1", {"authorBio": "v2"})

    assert finished == ["comments"]


@pytest.mark.asyncio
async def test_increment_tag_is_guarded_upsert(store, collections):
    await store.increment_tag("mongodb", "c1")

    collections["tags"].update_one.assert_awaited_once_with(
        {"_id": "mongodb", "appliedChanges": {"$ne": "c1"}},
        {
            "$inc": {"articleCount": 1},
            "$push": {"appliedChanges": {"$each": ["c1"], "$slice": -50}},
        },
        upsert=True,
    )


@pytest.mark.asyncio
async def test_increment_tag_retries_without_upsert_on_conflict(store, collections):
    tags = collections["tags"]
    tags.update_one.side_effect = [DuplicateKeyError("E11000"), MagicMock(matched_count=0)]

    await store.increment_tag("mongodb", "c1")

    assert tags.update_one.await_count == 2
    assert tags.update_one.call_args.kwargs == {}


@pytest.mark.asyncio
async def test_decrement_tag_keeps_positive_count(store, collections):
    tags = collections["tags"]
    tags.find_one_and_update.return_value = {"_id": "js", "articleCount": 2}

    await store.decrement_tag("js", "c2")

    args, kwargs = tags.find_one_and_update.call_args
    assert args[0] == {"_id": "js", "appliedChanges": {"$ne": "c2"}}
    assert args[1]["$inc"] == {"articleCount": -1}
    assert kwargs == {"return_document": ReturnDocument.AFTER}
    tags.delete_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_decrement_tag_deletes_exhausted_tag(store, collections):
    tags = collections["tags"]
    tags.find_one_and_update.return_value = {"_id": "perf", "articleCount": 0}

    await store.decrement_tag("perf", "c3")

    tags.delete_one.assert_awaited_once_with({"_id": "perf", "articleCount": {"$lte": 0}})


@pytest.mark.asyncio
async def test_decrement_redelivered_still_cleans_up(store, collections):
    """A change already applied matches nothing, and the delete stays conditional."""
    await store.decrement_tag("perf", "c3")

    collections["tags"].delete_one.assert_awaited_once_with(
        {"_id": "perf", "articleCount": {"$lte": 0}}
    )


@pytest.mark.asyncio
async def test_adjust_favorites_count_never_upserts(store, collections):
    await store.adjust_favorites_count("a1", -1, "c4")

    collections["articles"].update_one.assert_awaited_once_with(
        {"_id": "a1", "appliedChanges": {"$ne": "c4"}},
        {
            "$inc": {"favoritesCount": -1},
            "$push": {"appliedChanges": {"$each": ["c4"], "$slice": -50}},
        },
    )

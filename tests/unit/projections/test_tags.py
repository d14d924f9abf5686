"""Tests for keeping per-tag article counts."""

import pytest
from bson import ObjectId

from denormalizer.domain import OperationType
from denormalizer.domain.exceptions import MissingDocumentImageError
from denormalizer.projections import TagListMaintenance
from denormalizer.projections.tags import tag_list


@pytest.fixture
def handler(store):
    return TagListMaintenance(store)


def counts(store) -> dict[str, int]:
    return {tag: doc["articleCount"] for tag, doc in store.tags.items()}


def seed(store, **article_counts):
    for tag, count in article_counts.items():
        store.tags[tag] = {"_id": tag, "articleCount": count}


def test_tag_list_deduplicates_in_order():
    assert tag_list({"tagList": ["js", "node", "js"]}) == ["js", "node"]
    assert tag_list({"title": "untagged"}) == []
    assert tag_list(None) == []


def test_requests_pre_images():
    assert TagListMaintenance.collection == "articles"
    assert TagListMaintenance.watch_options.wants_pre_image


@pytest.mark.asyncio
async def test_insert_counts_new_tags(handler, store, make_event):
    seed(store, js=1)

    await handler.handle(
        make_event(OperationType.INSERT, full_document={"tagList": ["js", "mongodb"]})
    )

    assert counts(store) == {"js": 2, "mongodb": 1}


@pytest.mark.asyncio
async def test_update_applies_set_difference(handler, store, make_event):
    """Only added and removed tags are touched; kept tags keep their count."""
    seed(store, tech=1, js=4)
    article_id = ObjectId()

    await handler.handle(
        make_event(
            OperationType.UPDATE,
            article_id,
            full_document_before={"_id": article_id, "tagList": ["tech", "js"]},
            full_document={"_id": article_id, "tagList": ["js", "node", "mongodb"]},
            updated_fields={"tagList": ["js", "node", "mongodb"]},
        )
    )

    assert counts(store) == {"js": 4, "node": 1, "mongodb": 1}


@pytest.mark.asyncio
async def test_delete_decrements_and_removes_exhausted_tags(handler, store, make_event):
    seed(store, js=3, node=2, perf=1)

    await handler.handle(
        make_event(
            OperationType.DELETE,
            full_document_before={"tagList": ["js", "node", "perf"]},
        )
    )

    assert counts(store) == {"js": 2, "node": 1}


@pytest.mark.asyncio
async def test_update_without_tag_change_writes_nothing(handler, store, make_event):
    seed(store, js=1)

    await handler.handle(
        make_event(
            OperationType.UPDATE,
            full_document_before={"title": "a", "tagList": ["js"]},
            full_document={"title": "b", "tagList": ["js"]},
            updated_fields={"title": "b"},
        )
    )

    assert store.writes == 0


@pytest.mark.asyncio
async def test_update_missing_pre_image_fails(handler, store, make_event):
    event = make_event(OperationType.UPDATE, full_document={"tagList": ["js"]})

    with pytest.raises(MissingDocumentImageError):
        await handler.handle(event)

    assert store.writes == 0


@pytest.mark.asyncio
async def test_redelivery_does_not_double_count(handler, store, make_event):
    seed(store, js=3)
    insert = make_event(OperationType.INSERT, full_document={"tagList": ["js", "node"]})
    delete = make_event(OperationType.DELETE, full_document_before={"tagList": ["js"]})

    for event in (insert, insert, delete, delete):
        await handler.handle(event)

    assert counts(store) == {"js": 3, "node": 1}


@pytest.mark.asyncio
async def test_delete_missing_pre_image_fails(handler, store, make_event):
    with pytest.raises(MissingDocumentImageError, match="delete"):
        await handler.handle(make_event(OperationType.DELETE))

    assert store.writes == 0

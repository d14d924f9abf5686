"""Maintenance of per-tag article counts."""

import logging
from collections.abc import Iterable
from typing import Any

from ..domain import ChangeEvent, OperationType
from ..domain.exceptions import MissingDocumentImageError
from ..processing import ChangeHandler, WatchOptions
from ..routing import handles
from .store import DenormalizedStore

LOGGER = logging.getLogger(__name__)


def tag_list(document: dict[str, Any] | None) -> list[str]:
    """Read an article's tag list, without duplicates and in order."""
    if document is None:
        return []
    tags: Iterable[str] = document.get("tagList") or []
    return list(dict.fromkeys(tags))


class TagListMaintenance(ChangeHandler):
    """Keep tag records and their ``articleCount`` in step with articles.

    The tags added and removed by an event are the set differences between
    the article's tag list before and after the change. An insert has no
    "before", a delete has no "after". Each tag mutation is independent and
    atomic; their order does not matter.
    """

    name = "article_tag_sync"
    collection = "articles"
    watch_options = WatchOptions(
        full_document="whenAvailable",
        full_document_before_change="whenAvailable",
    )

    def __init__(self, store: DenormalizedStore) -> None:
        self.store = store

    @handles(OperationType.INSERT, OperationType.UPDATE, OperationType.DELETE)
    async def on_article_changed(self, event: ChangeEvent) -> None:
        needs_before = event.operation_type is not OperationType.INSERT
        needs_after = event.operation_type is OperationType.UPDATE
        if (needs_before and event.full_document_before is None) or (
            needs_after and event.full_document is None
        ):
            raise MissingDocumentImageError(
                f"Article {event.operation_type.value} {event.event_id} is missing "
                "its pre- or post-image"
            )

        old_tags = tag_list(event.full_document_before)
        new_tags = tag_list(event.full_document)

        added = [tag for tag in new_tags if tag not in old_tags]
        removed = [tag for tag in old_tags if tag not in new_tags]
        if not added and not removed:
            return

        LOGGER.debug("Tags added %s, removed %s", added, removed)
        for tag in added:
            await self.store.increment_tag(tag, event.event_id)
        for tag in removed:
            await self.store.decrement_tag(tag, event.event_id)

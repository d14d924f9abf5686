"""Maintenance of ``favoritesCount`` on articles."""

import logging

from ..domain import ChangeEvent, OperationType
from ..processing import ChangeHandler, WatchOptions
from ..routing import handles
from .store import DenormalizedStore

LOGGER = logging.getLogger(__name__)


class FavoritesCounter(ChangeHandler):
    """Count favorites on the article they reference.

    Favorites are immutable once created, so only inserts and deletes are
    handled. The article id of a deleted favorite is read from the
    pre-image, when the server still has one. A favorite without an article
    id, or one whose article no longer exists, is ignored.
    """

    name = "favorites_count_sync"
    collection = "favorites"
    watch_options = WatchOptions(
        full_document="updateLookup",
        full_document_before_change="whenAvailable",
    )

    def __init__(self, store: DenormalizedStore) -> None:
        self.store = store

    @handles(OperationType.INSERT)
    async def on_favorited(self, event: ChangeEvent) -> None:
        article_id = event.after("articleId")
        if not article_id:
            LOGGER.debug("Favorite has no article id")
            return
        await self.store.adjust_favorites_count(article_id, 1, event.event_id)

    @handles(OperationType.DELETE)
    async def on_unfavorited(self, event: ChangeEvent) -> None:
        article_id = event.before("articleId")
        if not article_id:
            LOGGER.debug("Deleted favorite has no article id")
            return
        await self.store.adjust_favorites_count(article_id, -1, event.event_id)

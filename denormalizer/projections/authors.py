"""Propagation of user profile edits to the content they authored."""

import logging
from typing import Any

from ..domain import ChangeEvent, OperationType
from ..processing import ChangeHandler, WatchOptions
from ..routing import handles
from .store import AUTHOR_FIELDS, DenormalizedStore

LOGGER = logging.getLogger(__name__)


class UserProfilePropagation(ChangeHandler):
    """Copy username, image and bio edits onto articles and comments.

    Only updates that declare one of the profile fields as touched cause
    writes. Inserting or deleting a user never fans out. Of the touched
    profile fields, only those with a truthy new value are copied, using
    one multi-document update per derived collection.

    Re-applying the same event sets the same values again and leaves the
    derived state unchanged.
    """

    name = "user_profile_sync"
    collection = "users"
    watch_options = WatchOptions(full_document="updateLookup")

    def __init__(self, store: DenormalizedStore) -> None:
        self.store = store

    @staticmethod
    def author_update(event: ChangeEvent) -> dict[str, Any]:
        """Build the author field update an event calls for.

        Returns:
            Author field names mapped to their new values. Empty when no
            profile field was touched or every touched value is falsy.
        """
        update: dict[str, Any] = {}
        for field in sorted(AUTHOR_FIELDS.keys() & event.updated_field_names):
            value = event.updated_fields[field]
            if value:
                update[AUTHOR_FIELDS[field]] = value
        return update

    @handles(OperationType.UPDATE)
    async def on_user_updated(self, event: ChangeEvent) -> None:
        update = self.author_update(event)
        if not update:
            LOGGER.debug("No profile field changed")
            return

        LOGGER.debug("Propagating author fields %s", sorted(update))
        await self.store.set_author_fields(event.document_key, update)

"""Storage interface for denormalized (derived) state.

The propagation handlers never read-modify-write derived documents. Every
mutation they need is expressed as one of the atomic operations below, so
that concurrent shards and rapid successive events cannot lose updates.

Counter operations take the ``change_id`` of the event causing them.
Implementations record recently applied change ids on the target document
and skip an operation whose id is already recorded, which makes counters
safe under redelivery.
"""

from abc import ABC, abstractmethod
from typing import Any

AUTHOR_FIELDS = {
    "username": "authorUsername",
    "image": "authorImage",
    "bio": "authorBio",
}
"""Maps user profile fields to the author fields copied onto articles and comments."""

APPLIED_CHANGES_FIELD = "appliedChanges"


class DenormalizedStore(ABC):
    """Abstract interface for writing derived state.

    Derived state lives in three places:
    - author display fields on articles and comments
    - ``favoritesCount`` on articles
    - tag records keyed by tag name, holding an ``articleCount``
    """

    @abstractmethod
    async def set_author_fields(self, author_id: Any, fields: dict[str, Any]) -> None:
        """Set author fields on every article and comment by an author.

        Args:
            author_id: The user whose content is updated.
            fields: Author field names (e.g. "authorBio") and their values.
        """
        ...

    @abstractmethod
    async def increment_tag(self, tag: str, change_id: str) -> None:
        """Count one more article for a tag, creating the tag at 1 if absent.

        Must be a single atomic upsert-and-increment.
        """
        ...

    @abstractmethod
    async def decrement_tag(self, tag: str, change_id: str) -> None:
        """Count one article less for a tag.

        The decrement is atomic. A tag whose count drops to zero or below is
        deleted.
        """
        ...

    @abstractmethod
    async def adjust_favorites_count(self, article_id: Any, delta: int, change_id: str) -> None:
        """Atomically add ``delta`` to an article's ``favoritesCount``.

        An article that does not exist is left alone.
        """
        ...


class InMemoryDenormalizedStore(DenormalizedStore):
    """In-memory derived state for testing.

    Documents are plain dictionaries keyed by ``_id``. ``writes`` counts the
    write operations issued, matching what the MongoDB store would send.
    """

    def __init__(self, applied_change_window: int = 100) -> None:
        self.applied_change_window = applied_change_window
        self.articles: dict[Any, dict[str, Any]] = {}
        self.comments: dict[Any, dict[str, Any]] = {}
        self.tags: dict[str, dict[str, Any]] = {}
        self.writes = 0

    def _record(self, document: dict[str, Any], change_id: str) -> None:
        applied = document.setdefault(APPLIED_CHANGES_FIELD, [])
        applied.append(change_id)
        del applied[: -self.applied_change_window]

    @staticmethod
    def _already_applied(document: dict[str, Any], change_id: str) -> bool:
        return change_id in document.get(APPLIED_CHANGES_FIELD, ())

    async def set_author_fields(self, author_id: Any, fields: dict[str, Any]) -> None:
        for collection in (self.articles, self.comments):
            self.writes += 1
            for document in collection.values():
                if document.get("authorId") == author_id:
                    document.update(fields)

    async def increment_tag(self, tag: str, change_id: str) -> None:
        self.writes += 1
        document = self.tags.get(tag)
        if document is None:
            document = self.tags[tag] = {"_id": tag, "articleCount": 0}
        elif self._already_applied(document, change_id):
            return
        document["articleCount"] += 1
        self._record(document, change_id)

    async def decrement_tag(self, tag: str, change_id: str) -> None:
        self.writes += 1
        document = self.tags.get(tag)
        if document is None:
            return
        if not self._already_applied(document, change_id):
            document["articleCount"] = document.get("articleCount", 0) - 1
            self._record(document, change_id)
        if document["articleCount"] <= 0:
            self.writes += 1
            del self.tags[tag]

    async def adjust_favorites_count(self, article_id: Any, delta: int, change_id: str) -> None:
        self.writes += 1
        document = self.articles.get(article_id)
        if document is None or self._already_applied(document, change_id):
            return
        document["favoritesCount"] = document.get("favoritesCount", 0) + delta
        self._record(document, change_id)

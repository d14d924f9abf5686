"""Handlers keeping denormalized data consistent with its sources.

- UserProfilePropagation: users -> author fields on articles and comments
- TagListMaintenance: articles -> tag records and their article counts
- FavoritesCounter: favorites -> favoritesCount on articles
"""

from .authors import UserProfilePropagation
from .favorites import FavoritesCounter
from .store import AUTHOR_FIELDS, DenormalizedStore, InMemoryDenormalizedStore
from .tags import TagListMaintenance

__all__ = [
    "AUTHOR_FIELDS",
    "DenormalizedStore",
    "FavoritesCounter",
    "InMemoryDenormalizedStore",
    "TagListMaintenance",
    "UserProfilePropagation",
]

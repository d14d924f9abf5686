"""Static hash partitioning of document identifiers across worker instances.

Each worker instance is configured with a fixed ``(index, count)`` pair and
only consumes change events whose document identifier hashes to its index.
The partitioning has two renditions of the same rule:

- ``ShardAssignment.pipeline()`` pushes the predicate down to MongoDB as a
  ``$match`` stage so that events outside the shard are never delivered.
- ``shard_of()`` evaluates the predicate in-process, for change sources that
  cannot filter server side (such as the in-memory change log).

There is no rebalancing. Changing the shard count of a running deployment
requires resetting the resume records of every shard.
"""

import hashlib
from dataclasses import dataclass
from typing import Any

import bson
from bson.binary import UuidRepresentation
from bson.codec_options import CodecOptions

from .domain.exceptions import ConfigurationError

_CODEC_OPTIONS = CodecOptions(uuid_representation=UuidRepresentation.STANDARD)


def shard_of(document_id: Any, shard_count: int) -> int:
    """Map a document identifier to a shard number in ``[0, shard_count)``.

    The identifier is BSON-encoded so that equal identifiers of any BSON type
    (ObjectId, string, integer, UUID) hash identically across processes and
    interpreter runs. The first eight bytes of the MD5 digest are read as a
    signed little-endian integer, mirroring how MongoDB derives hashed index
    keys.

    Args:
        document_id: The ``_id`` of the document.
        shard_count: Total number of shards. Must be at least 1.

    Returns:
        The shard number owning the document. Always 0 when
        ``shard_count == 1``.

    Raises:
        ConfigurationError: If shard_count is less than 1.
    """
    if shard_count < 1:
        raise ConfigurationError("SHARD_COUNT must be a positive number")
    if shard_count == 1:
        return 0

    encoded = bson.encode({"_id": document_id}, codec_options=_CODEC_OPTIONS)
    digest = hashlib.md5(encoded, usedforsecurity=False).digest()
    key = int.from_bytes(digest[:8], "little", signed=True)
    return abs(key) % shard_count


@dataclass(frozen=True)
class ShardAssignment:
    """The shard a worker instance is responsible for.

    Attributes:
        index: This worker's shard number.
        count: Total number of shards in the deployment.

    Raises:
        ConfigurationError: On construction, if ``count < 1`` or ``index`` is
            outside ``[0, count)``.

    Example:
        >>> shard = ShardAssignment(index=1, count=4)
        >>> shard.owns(ObjectId())
        False
        >>> shard.stream_id("user_profile_sync")
        'user_profile_sync_shard_1_of_4'
    """

    index: int = 0
    count: int = 1

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ConfigurationError("SHARD_COUNT must be a positive number")
        if self.index < 0:
            raise ConfigurationError("SHARD_INDEX must be a non-negative number")
        if self.index >= self.count:
            raise ConfigurationError("SHARD_INDEX must be less than SHARD_COUNT")

    @property
    def is_partitioned(self) -> bool:
        """True when more than one shard shares the workload."""
        return self.count > 1

    def owns(self, document_id: Any) -> bool:
        """Check whether a document belongs to this shard."""
        return shard_of(document_id, self.count) == self.index

    def pipeline(self) -> list[dict[str, Any]]:
        """Build the change-stream stages that keep only this shard's events.

        Returns:
            An empty list when the deployment is not partitioned, otherwise a
            single ``$match`` stage hashing ``documentKey._id``.
        """
        if not self.is_partitioned:
            return []

        hashed_key = {"$toLong": {"$toHashedIndexKey": "$documentKey._id"}}
        return [
            {
                "$match": {
                    "$expr": {
                        "$eq": [
                            {"$mod": [{"$abs": hashed_key}, self.count]},
                            self.index,
                        ]
                    }
                }
            }
        ]

    def stream_id(self, name: str) -> str:
        """Derive the resume-record identifier for a logical stream.

        Every shard tracks its progress under its own identifier, so shards
        never contend over the same resume record.
        """
        return f"{name}_shard_{self.index}_of_{self.count}"

    def __str__(self) -> str:
        return f"shard {self.index} of {self.count}"

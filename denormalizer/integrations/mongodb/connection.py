"""Connection management for the MongoDB integration.

This module provides async connection pooling and database access, using
PyMongo's native async support with AsyncMongoClient.
"""

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from .config import MongoDBConfig

DEFAULT_DATABASE = "test"


class MongoDBConnectionManager:
    """Manages the MongoDB client shared by every stream of a worker.

    The client is created lazily on first use. All streams, the resume
    position store and the derived-state store share its connection pool.

    Attributes:
        config: MongoDB configuration object

    Examples:
        >>> config = MongoDBConfig(uri="mongodb://localhost:27017/conduit")
        >>> async with MongoDBConnectionManager(config) as manager:
        ...     await manager.verify_connectivity()
        ...     users = manager.database["users"]
    """

    def __init__(self, config: MongoDBConfig):
        self.config = config
        self._client: AsyncMongoClient | None = None

    @property
    def client(self) -> AsyncMongoClient:
        """Get or create the MongoDB async client instance."""
        if self._client is None:
            kwargs = {
                "maxPoolSize": self.config.max_pool_size,
                "minPoolSize": self.config.min_pool_size,
                "serverSelectionTimeoutMS": self.config.server_selection_timeout_ms,
                "connectTimeoutMS": self.config.connect_timeout_ms,
            }

            if self.config.socket_timeout_ms is not None:
                kwargs["socketTimeoutMS"] = self.config.socket_timeout_ms

            self._client = AsyncMongoClient(self.config.uri, **kwargs)
        return self._client

    @property
    def database(self) -> AsyncDatabase:
        """Get the configured database.

        Uses the configured database name, otherwise the one in the URI.
        """
        if self.config.database is not None:
            return self.client[self.config.database]
        return self.client.get_default_database(DEFAULT_DATABASE)

    async def verify_connectivity(self) -> bool:
        """Ping the deployment.

        Returns:
            True if the ping succeeded, False otherwise.
        """
        try:
            await self.client.admin.command("ping")
            return True
        except PyMongoError:
            return False

    async def close(self) -> None:
        """Close the client and all pooled connections."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> "MongoDBConnectionManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

"""Pytest fixtures for MongoDB integration tests.

Change streams need a replica set. The tests run against
``DENORMALIZER_TEST_MONGO_URI`` (a local single-node replica set by default)
and are skipped when it cannot be reached.
"""

import os
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from denormalizer.integrations.mongodb import MongoDBConfig, MongoDBConnectionManager

LOCAL_MONGO_URI = os.environ.get(
    "DENORMALIZER_TEST_MONGO_URI",
    "mongodb://localhost:27017/?replicaSet=rs0&directConnection=true",
)


@pytest_asyncio.fixture
async def mongo_manager(request: pytest.FixtureRequest) -> AsyncIterator[MongoDBConnectionManager]:
    """Connection manager bound to a fresh database named after the test."""
    db_name = f"denormalizer_{request.node.name}"[:63]
    manager = MongoDBConnectionManager(
        MongoDBConfig(uri=LOCAL_MONGO_URI, database=db_name, server_selection_timeout_ms=2000)
    )
    if not await manager.verify_connectivity():
        await manager.close()
        pytest.skip(f"MongoDB not reachable at {LOCAL_MONGO_URI}")

    hello = await manager.client.admin.command("hello")
    if "setName" not in hello:
        await manager.close()
        pytest.skip("MongoDB is not running as a replica set")

    await manager.client.drop_database(db_name)
    try:
        yield manager
    finally:
        await manager.client.drop_database(db_name)
        await manager.close()

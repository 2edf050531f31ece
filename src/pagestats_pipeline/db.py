"""MongoDB helpers.

Centralizes creation of the async Mongo client and the snapshot collection
index used by `MongoSnapshotStore`.
"""

from __future__ import annotations

from typing import Any

import certifi
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

SNAPSHOT_INDEX_NAME = "entity_period_unique"


def get_client(uri: str, tls: bool = False) -> AsyncMongoClient:
    """Return a configured async PyMongo client for the provided URI.

    Args:
        uri: MongoDB connection URI.
        tls: Connect with TLS using the certifi CA bundle.

    Returns:
        Configured AsyncMongoClient instance.
    """
    options: dict[str, Any] = {
        "serverSelectionTimeoutMS": 30000,
        "socketTimeoutMS": 30000,
        "connectTimeoutMS": 30000,
    }
    if tls:
        options["tls"] = True
        options["tlsCAFile"] = certifi.where()
    return AsyncMongoClient(uri, **options)


def get_db(
    client: AsyncMongoClient[dict[str, Any]],
    db_name: str,
) -> AsyncDatabase[dict[str, Any]]:
    """Return the named database from an async client.

    Args:
        client: PyMongo AsyncMongoClient.
        db_name: Database name.

    Returns:
        An AsyncDatabase object.
    """
    return client[db_name]


async def ensure_snapshot_indexes(collection: AsyncCollection[dict[str, Any]]) -> str:
    """Create the unique `(entity_id, year, month)` index if it is missing.

    Returns:
        The index name.
    """
    return await collection.create_index(
        [("entity_id", ASCENDING), ("year", ASCENDING), ("month", ASCENDING)],
        unique=True,
        name=SNAPSHOT_INDEX_NAME,
    )

"""Fixtures for tests against a live MongoDB server.

The server is taken from ``ROADKILL_TEST_MONGO_URI`` (default ``mongodb://localhost:27017/roadkill_test``). Tests are
skipped when the server cannot be reached.
"""

import os

import pytest
from pymongo import MongoClient
from pymongo.errors import ServerSelectionTimeoutError

from roadkill.database import MongoRepository, PooledMongoConnectionProvider

MONGO_URI = os.environ.get("ROADKILL_TEST_MONGO_URI", "mongodb://localhost:27017/roadkill_test")


@pytest.fixture(scope="session")
def mongo_uri():
    client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=1000)
    try:
        client.admin.command("ping")
    except ServerSelectionTimeoutError:
        pytest.skip(f"MongoDB is not reachable at {MONGO_URI}")
    finally:
        client.close()
    return MONGO_URI


@pytest.fixture(params=["per_operation", "pooled"])
def mongo_repository(request, mongo_uri):
    if request.param == "pooled":
        repository = MongoRepository(PooledMongoConnectionProvider(mongo_uri))
    else:
        repository = MongoRepository(mongo_uri)
    repository.wipe()
    repository.create_schema()
    try:
        yield repository
    finally:
        repository.wipe()
        repository.dispose()

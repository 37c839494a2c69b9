"""Connection providers used by the repositories.

A repository resolves its connection through a provider on every operation. Whether that means a fresh client
(``MongoConnectionProvider``) or a pooled one (``PooledMongoConnectionProvider``, ``SqlConnectionProvider``) is the
provider's concern and never changes the repository contract.
"""

import threading
from abc import abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional

from pymongo import MongoClient
from pymongo.database import Database
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from roadkill.core import RoadkillABC

MONGO_CLIENT_OPTIONS = {"uuidRepresentation": "standard", "tz_aware": True}


class MongoProvider(RoadkillABC):
    """Hands out the MongoDB database named in the connection string (``mongodb://host/database``)."""

    def __init__(self, connection_string: str, **kwargs):
        super().__init__(**kwargs)
        self.connection_string = connection_string

    @abstractmethod
    def database(self) -> Iterator[Database]:
        """Context manager yielding the database for one operation."""
        pass

    def dispose(self) -> None:
        pass

    def _create_client(self) -> MongoClient:
        return MongoClient(self.connection_string, **MONGO_CLIENT_OPTIONS)


class MongoConnectionProvider(MongoProvider):
    """Opens a new client for every operation and closes it afterwards."""

    @contextmanager
    def database(self) -> Iterator[Database]:
        client = self._create_client()
        try:
            # Raises ConfigurationError when the URI names no database
            yield client.get_default_database()
        finally:
            client.close()


class PooledMongoConnectionProvider(MongoProvider):
    """Shares one client across operations; the driver pools the underlying connections.

    Example:
        .. code-block:: python

            provider = PooledMongoConnectionProvider("mongodb://localhost:27017/roadkill")
            with MongoRepository(provider) as repository:
                repository.create_schema()
            # leaving the block disposes the provider and closes the shared client
    """

    def __init__(self, connection_string: str, **kwargs):
        super().__init__(connection_string, **kwargs)
        self._client: Optional[MongoClient] = None
        self._lock = threading.Lock()

    @property
    def client(self) -> MongoClient:
        with self._lock:
            if self._client is None:
                self._client = self._create_client()
                self.logger.debug("Created pooled MongoDB client.")
            return self._client

    @contextmanager
    def database(self) -> Iterator[Database]:
        yield self.client.get_default_database()

    def dispose(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                self.logger.debug("Closed pooled MongoDB client.")


class SqlConnectionProvider(RoadkillABC):
    """Owns one SQLAlchemy engine and opens a session with its own transaction per operation.

    The engine is created on first use, so a malformed URL surfaces from the first operation rather than from
    construction. SQLite URLs get ``check_same_thread=False``; an in-memory SQLite database additionally uses a
    ``StaticPool`` so every session sees the same database.

    Args:
        connection_string: Any SQLAlchemy URL.
        engine_options: Extra keyword arguments for ``create_engine``.
    """

    def __init__(self, connection_string: str, engine_options: Optional[dict] = None, **kwargs):
        super().__init__(**kwargs)
        self.connection_string = connection_string
        self.engine_options = dict(engine_options or {})
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        self._get_session_factory()
        return self._engine

    def _get_session_factory(self) -> sessionmaker:
        with self._lock:
            if self._engine is None:
                self._engine = create_engine(self.connection_string, **self._engine_options())
                self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
                self.logger.debug(f"Created SQL engine for dialect {self._engine.dialect.name}.")
            return self._session_factory

    def _engine_options(self) -> dict:
        options = dict(self.engine_options)
        if self.connection_string.startswith("sqlite"):
            options.setdefault("connect_args", {"check_same_thread": False})
            if self.connection_string in ("sqlite://", "sqlite:///:memory:"):
                options.setdefault("poolclass", StaticPool)
        return options

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session inside a transaction; commits on success and rolls back on error."""
        session_factory = self._get_session_factory()
        with session_factory() as session, session.begin():
            yield session

    def dispose(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None
                self._session_factory = None
                self.logger.debug("Disposed SQL engine.")

"""Selects the repository implementation for the configured database."""

from enum import Enum

from roadkill.core.config import ApplicationSettings
from roadkill.database.backends.connections import (
    MongoConnectionProvider,
    PooledMongoConnectionProvider,
    SqlConnectionProvider,
)
from roadkill.database.backends.memory_repository import InMemoryRepository
from roadkill.database.backends.mongo_repository import MongoRepository
from roadkill.database.backends.roadkill_repository import RoadkillRepository
from roadkill.database.backends.sql_repository import SqlRepository


class SupportedDatabase(str, Enum):
    MONGODB = "MongoDB"
    SQLSERVER2008 = "SqlServer2008"
    POSTGRES = "Postgres"
    MYSQL = "MySQL"
    SQLITE = "Sqlite"
    INMEMORY = "InMemory"

    @classmethod
    def from_name(cls, name: str) -> "SupportedDatabase":
        """Look up a database by name, ignoring case.

        Raises:
            ValueError: If the name is not a supported database.
        """
        for database in cls:
            if database.value.lower() == (name or "").strip().lower():
                return database
        supported = ", ".join(database.value for database in cls)
        raise ValueError(f"Unsupported database {name!r}. Supported databases: {supported}.")

    @property
    def is_relational(self) -> bool:
        return self not in (SupportedDatabase.MONGODB, SupportedDatabase.INMEMORY)


def create_repository(settings: ApplicationSettings, *, pooled: bool = False, **kwargs) -> RoadkillRepository:
    """Create the repository for ``settings.database_name``, connected to ``settings.connection_string``.

    Args:
        settings: Application settings.
        pooled: Use one shared MongoDB client instead of a client per operation. SQL engines always pool.
        **kwargs: Passed on to the repository (logger options).

    Raises:
        ValueError: If ``settings.database_name`` is not a supported database.

    Example:
        .. code-block:: python

            from roadkill.core.config import ApplicationSettings
            from roadkill.database import create_repository

            settings = ApplicationSettings(database_name="MongoDB", connection_string="mongodb://localhost/roadkill")
            with create_repository(settings, pooled=True) as repository:
                print(repository.get_site_settings().site_name)
    """
    database = SupportedDatabase.from_name(settings.database_name)
    if database is SupportedDatabase.MONGODB:
        provider_cls = PooledMongoConnectionProvider if pooled else MongoConnectionProvider
        repository = MongoRepository(provider_cls(settings.connection_string.get_secret_value()), **kwargs)
    elif database is SupportedDatabase.INMEMORY:
        repository = InMemoryRepository(**kwargs)
    else:
        repository = SqlRepository(SqlConnectionProvider(settings.connection_string.get_secret_value()), **kwargs)
    repository.logger.info(f"Using {type(repository).__name__} for database {database.value}.")
    return repository

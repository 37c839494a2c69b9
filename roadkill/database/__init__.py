from roadkill.database.backends.connections import (
    MongoConnectionProvider,
    PooledMongoConnectionProvider,
    SqlConnectionProvider,
)
from roadkill.database.backends.factory import SupportedDatabase, create_repository
from roadkill.database.backends.memory_repository import InMemoryDatabase, InMemoryRepository
from roadkill.database.backends.mongo_repository import MongoRepository
from roadkill.database.backends.roadkill_repository import (
    InstallerRepository,
    PageRepository,
    RoadkillRepository,
    SettingsRepository,
    UserRepository,
)
from roadkill.database.backends.sql_repository import SqlRepository
from roadkill.database.core.entities import (
    SITE_SETTINGS_ID,
    DataStoreEntity,
    Page,
    PageContent,
    SiteConfigurationEntity,
    SiteSettings,
    User,
)
from roadkill.database.core.exceptions import (
    DataIntegrityError,
    DocumentNotFoundError,
    DuplicateInsertError,
    RepositoryError,
    StorageUnavailableError,
)

__all__ = [
    "DataIntegrityError",
    "DataStoreEntity",
    "DocumentNotFoundError",
    "DuplicateInsertError",
    "InMemoryDatabase",
    "InMemoryRepository",
    "InstallerRepository",
    "MongoConnectionProvider",
    "MongoRepository",
    "Page",
    "PageContent",
    "PageRepository",
    "PooledMongoConnectionProvider",
    "RepositoryError",
    "RoadkillRepository",
    "SITE_SETTINGS_ID",
    "SettingsRepository",
    "SiteConfigurationEntity",
    "SiteSettings",
    "SqlConnectionProvider",
    "SqlRepository",
    "StorageUnavailableError",
    "SupportedDatabase",
    "User",
    "UserRepository",
    "create_repository",
]
